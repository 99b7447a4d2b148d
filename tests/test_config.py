"""
Tests for configuration loading and CLI overrides.
"""

from argparse import Namespace

import pytest
from config import AppConfig, OCRConfig, load_config


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "ocr:\n"
        "  language: deu\n"
        "  psm: 7\n"
        "vobsub:\n"
        "  stream_index: 1\n"
        "  default_duration_ms: 2500\n"
        "output:\n"
        "  encoding: latin-1\n",
        encoding="utf-8",
    )
    return path


class TestLoadConfig:

    def test_missing_file_gives_defaults(self, tmp_path):
        config = load_config(tmp_path / "nope.yaml")
        assert config == AppConfig()

    def test_values_from_yaml(self, config_file):
        config = load_config(config_file)
        assert config.ocr.language == "deu"
        assert config.ocr.psm == 7
        assert config.ocr.oem == 3
        assert config.vobsub.stream_index == 1
        assert config.vobsub.default_duration_ms == 2500
        assert config.output.encoding == "latin-1"
        assert config.logging.level == "INFO"

    def test_empty_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")
        assert load_config(path) == AppConfig()

    def test_unknown_keys_ignored(self, tmp_path, caplog):
        path = tmp_path / "config.yaml"
        path.write_text("ocr:\n  language: fra\n  font_size: 12\n")
        config = load_config(path)
        assert config.ocr.language == "fra"
        assert "font_size" in caplog.text

    def test_bundled_config_loads(self):
        config = load_config()
        assert config.ocr.language == OCRConfig().language


class TestArgOverrides:

    def test_overrides_applied(self):
        config = AppConfig()
        config.update_from_args(Namespace(
            language="spa", tessdata="/opt/tessdata", stream=0, dump_images=True,
        ))
        assert config.ocr.language == "spa"
        assert config.ocr.tessdata_dir == "/opt/tessdata"
        assert config.vobsub.stream_index == 0
        assert config.output.dump_images is True

    def test_unset_args_keep_config(self):
        config = AppConfig()
        config.ocr.language = "ita"
        config.update_from_args(Namespace(
            language=None, tessdata=None, stream=None, dump_images=False,
        ))
        assert config.ocr.language == "ita"
        assert config.vobsub.stream_index is None
        assert config.output.dump_images is False
