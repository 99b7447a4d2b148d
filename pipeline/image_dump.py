"""
Image Dump — Saves subtitle bitmaps as binary PGM files for inspection.
"""

import logging
from pathlib import Path
from typing import Optional

from .vobsub import SubtitleBitmap

logger = logging.getLogger(__name__)


class ImageDumper:
    """Writes <stem>-<counter>.pgm for each bitmap it is given."""

    def __init__(self, stream_name: str, directory: Optional[Path] = None):
        base = Path(stream_name)
        self.directory = Path(directory) if directory else base.parent
        self.stem = base.name
        self.count = 0

    def path_for(self, counter: int) -> Path:
        return self.directory / f"{self.stem}-{counter}.pgm"

    def dump(self, bitmap: SubtitleBitmap, counter: int) -> Optional[Path]:
        """Save a bitmap. Failures are logged and never raised."""
        path = self.path_for(counter)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            bitmap.to_image().save(path, format="PPM")
        except (OSError, ValueError) as e:
            logger.warning(f"Could not dump subtitle image {path}: {e}")
            return None
        self.count += 1
        logger.debug(f"Dumped {bitmap!r} to {path}")
        return path
