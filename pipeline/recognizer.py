"""
Text Recognizer — Tesseract OCR over decoded subtitle bitmaps.

Uses pytesseract to drive the Tesseract binary. The engine is checked
once when the recognizer is opened (binary present, language data
installed); after that every bitmap yields either Recognized(text) or
RecognitionFailed(reason). A failed recognition never raises.
"""

import logging
from dataclasses import dataclass
from typing import List, Union

import pytesseract
from PIL import ImageOps

from .vobsub import SubtitleBitmap

logger = logging.getLogger(__name__)


class OCRInitError(RuntimeError):
    """Tesseract is missing or cannot load the requested language."""


@dataclass(frozen=True)
class Recognized:
    text: str


@dataclass(frozen=True)
class RecognitionFailed:
    reason: str


RecognizedText = Union[Recognized, RecognitionFailed]


def normalize_text(raw: str) -> str:
    """Drop Tesseract's page break and blank lines, keep line structure."""
    lines = [line.rstrip() for line in raw.replace("\f", "").splitlines()]
    return "\n".join(line for line in lines if line.strip())


class TesseractRecognizer:
    """
    OCR engine wrapper with an explicit lifetime.

    Usage:
        with TesseractRecognizer(config.ocr) as ocr:
            result = ocr.recognize(bitmap)
    """

    def __init__(self, config):
        self.language = getattr(config, "language", "eng")
        self.tessdata_dir = getattr(config, "tessdata_dir", None)
        self.psm = getattr(config, "psm", 6)
        self.oem = getattr(config, "oem", 3)
        self.invert = getattr(config, "invert", True)
        self.margin = getattr(config, "margin", 10)
        self.tesseract_cmd = getattr(config, "tesseract_cmd", None)
        self.timeout = getattr(config, "timeout_sec", 0)

        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    def _build_config(self) -> str:
        parts = [f"--psm {self.psm}", f"--oem {self.oem}"]
        if self.tessdata_dir:
            parts.insert(0, f'--tessdata-dir "{self.tessdata_dir}"')
        return " ".join(parts)

    def open(self):
        """
        Initialize the engine.

        Raises:
            OCRInitError: If Tesseract is not installed or the language
                data is not available.
        """
        if self.tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = self.tesseract_cmd

        try:
            version = pytesseract.get_tesseract_version()
        except (pytesseract.TesseractNotFoundError, OSError) as e:
            raise OCRInitError(
                f"Tesseract not found: {e}\n"
                "Install Tesseract OCR and make sure it is on PATH."
            ) from e

        tessdata = f'--tessdata-dir "{self.tessdata_dir}"' if self.tessdata_dir else ""
        try:
            languages: List[str] = pytesseract.get_languages(config=tessdata)
        except pytesseract.TesseractError as e:
            raise OCRInitError(f"Cannot list Tesseract languages: {e}") from e

        if self.language not in languages:
            where = self.tessdata_dir or "the default tessdata directory"
            raise OCRInitError(
                f"Tesseract language '{self.language}' not found in {where} "
                f"(available: {', '.join(sorted(languages)) or 'none'})"
            )

        logger.info(f"Tesseract {version} ready (lang={self.language}, "
                    f"psm={self.psm}, oem={self.oem})")
        self._open = True
        return self

    def close(self):
        if self._open:
            logger.debug("Tesseract recognizer closed")
        self._open = False

    def __enter__(self):
        return self.open()

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def prepare_image(self, bitmap: SubtitleBitmap):
        """Grayscale image over (0, 0, width, height), dark text on white."""
        img = bitmap.to_image()
        if self.invert:
            img = ImageOps.invert(img)
        if self.margin > 0:
            img = ImageOps.expand(img, border=self.margin, fill=255)
        return img

    def recognize(self, bitmap: SubtitleBitmap) -> RecognizedText:
        if not self._open:
            raise RuntimeError("recognizer is not open")
        if bitmap.width == 0 or bitmap.height == 0:
            return RecognitionFailed("empty bitmap")

        try:
            raw = pytesseract.image_to_string(
                self.prepare_image(bitmap),
                lang=self.language,
                config=self._build_config(),
                timeout=self.timeout,
            )
        except (pytesseract.TesseractError, RuntimeError, OSError) as e:
            return RecognitionFailed(f"Tesseract error: {e}")

        if raw is None:
            return RecognitionFailed("no result")

        text = normalize_text(raw)
        if not text:
            return RecognitionFailed("no text")
        return Recognized(text)
