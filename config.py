"""
Configuration loader for the VobSub to SRT converter.
Loads from config.yaml and allows CLI argument overrides.
"""

import yaml
import logging
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent / "config.yaml"


@dataclass
class OCRConfig:
    tessdata_dir: Optional[str] = None   # None = Tesseract's own default
    language: str = "eng"
    psm: int = 6                         # 6 = uniform block of text
    oem: int = 3                         # 3 = default engine
    invert: bool = True                  # DVD subs are light text on dark
    margin: int = 10
    tesseract_cmd: Optional[str] = None
    timeout_sec: int = 0                 # 0 = no timeout


@dataclass
class VobSubConfig:
    stream_index: Optional[int] = None   # None = first track with subtitles
    default_duration_ms: int = 3000


@dataclass
class OutputConfig:
    encoding: str = "utf-8"
    dump_images: bool = False
    dump_dir: Optional[str] = None


@dataclass
class LoggingConfig:
    level: str = "INFO"
    file: Optional[str] = None


@dataclass
class AppConfig:
    """Top-level application configuration."""
    ocr: OCRConfig = field(default_factory=OCRConfig)
    vobsub: VobSubConfig = field(default_factory=VobSubConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def update_from_args(self, args):
        """Override config values from CLI arguments."""
        if getattr(args, "language", None):
            self.ocr.language = args.language
        if getattr(args, "tessdata", None):
            self.ocr.tessdata_dir = str(args.tessdata)
        if getattr(args, "stream", None) is not None:
            self.vobsub.stream_index = args.stream
        if getattr(args, "dump_images", False):
            self.output.dump_images = True


def _dict_to_dataclass(cls, data: dict):
    """Convert a dict to a dataclass, ignoring unknown keys."""
    if data is None:
        return cls()
    field_names = {f.name for f in cls.__dataclass_fields__.values()}
    unknown = set(data) - field_names
    if unknown:
        logger.warning(f"Ignoring unknown {cls.__name__} keys: {sorted(unknown)}")
    filtered = {k: v for k, v in data.items() if k in field_names}
    return cls(**filtered)


def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """
    Load configuration from a YAML file.
    Falls back to defaults if file is missing.
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    if not path.exists():
        logger.warning(f"Config file not found at {path}, using defaults.")
        return AppConfig()

    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    config = AppConfig(
        ocr=_dict_to_dataclass(OCRConfig, raw.get("ocr")),
        vobsub=_dict_to_dataclass(VobSubConfig, raw.get("vobsub")),
        output=_dict_to_dataclass(OutputConfig, raw.get("output")),
        logging=_dict_to_dataclass(LoggingConfig, raw.get("logging")),
    )

    logger.info(f"Configuration loaded from {path}")
    return config
