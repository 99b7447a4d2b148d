"""
SRT Writer — Incremental SubRip subtitle file writer.

Writes one record at a time with sequential indices, HH:MM:SS,mmm
timestamps and a trailing blank line. Every record is flushed as soon
as it is written, so an interrupted conversion leaves only whole records
behind.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List

from .timestamps import pts_to_srt

logger = logging.getLogger(__name__)


class OutputWriteError(RuntimeError):
    """The SRT output could not be created or written."""


@dataclass(frozen=True)
class SubtitleRecord:
    """A single SRT record ready for output."""
    index: int
    start: str
    end: str
    text: str

    def render(self) -> str:
        return f"{self.index}\n{self.start} --> {self.end}\n{self.text}\n\n"

    def __repr__(self):
        return f"Sub#{self.index}({self.start} --> {self.end}, '{self.text[:50]}')"


class SRTWriter:
    """
    Writes subtitle records to a standard SRT (SubRip) file.

    SRT format:
        1
        00:00:01,200 --> 00:00:04,800
        Hello everyone, welcome to the show.

        2
        00:00:05,100 --> 00:00:06,300
        (Audience clapping)

    Usage:
        with SRTWriter(Path("movie.srt")) as writer:
            writer.emit(1, start_pts, end_pts, "Hello")
    """

    def __init__(self, output_path: Path, encoding: str = "utf-8"):
        self.output_path = Path(output_path)
        self.encoding = encoding
        self.records_written = 0
        self._file = None

    def open(self):
        """
        Create the output file.

        Raises:
            OutputWriteError: If the file cannot be created.
        """
        try:
            self.output_path.parent.mkdir(parents=True, exist_ok=True)
            self._file = open(self.output_path, "w", encoding=self.encoding,
                              newline="\n")
        except OSError as e:
            raise OutputWriteError(
                f"Could not open {self.output_path} for writing: {e}"
            ) from e
        logger.debug(f"Writing subtitles to {self.output_path}")
        return self

    def emit(self, index: int, start_pts: int, end_pts: int, text: str) -> SubtitleRecord:
        """
        Append one record to the output.

        Args:
            index: 1-based record number; must follow the previous one.
            start_pts: Start time in 90 kHz ticks.
            end_pts: End time in 90 kHz ticks.
            text: Subtitle body.

        Returns:
            The record that was written.

        Raises:
            OutputWriteError: If the output is closed or cannot be written.
        """
        if self._file is None:
            raise OutputWriteError(f"{self.output_path} is not open")
        if index != self.records_written + 1:
            raise ValueError(
                f"Record index {index} out of sequence "
                f"(expected {self.records_written + 1})"
            )

        record = SubtitleRecord(index, pts_to_srt(start_pts), pts_to_srt(end_pts), text)
        try:
            offset = self._file.tell()
        except OSError as e:
            self._abandon(None)
            raise OutputWriteError(f"Cannot write to {self.output_path}: {e}") from e

        try:
            self._file.write(record.render())
            self._file.flush()
        except (OSError, UnicodeEncodeError) as e:
            self._abandon(offset)
            raise OutputWriteError(
                f"Failed writing record {index} to {self.output_path}: {e}"
            ) from e

        self.records_written += 1
        return record

    def _abandon(self, offset):
        """Cut the file back to `offset` (the end of the last whole record) and close it."""
        f, self._file = self._file, None
        try:
            if offset is not None:
                f.seek(offset)
                f.truncate()
        except OSError as e:
            logger.error(f"Could not remove a partial record from {self.output_path}: {e}")
        try:
            f.close()
        except OSError as e:
            logger.error(f"Failed closing {self.output_path}: {e}")

    def close(self):
        if self._file is None:
            return
        f, self._file = self._file, None
        try:
            f.close()
        except OSError as e:
            raise OutputWriteError(f"Failed closing {self.output_path}: {e}") from e
        logger.info(
            f"SRT written: {self.records_written} subtitles → {self.output_path}"
        )

    def __enter__(self):
        return self.open()

    def __exit__(self, exc_type, exc, tb):
        self.close()

    @staticmethod
    def write_preview(records: List[SubtitleRecord], max_entries: int = 10) -> str:
        """
        Generate a text preview of subtitle records.

        Args:
            records: SubtitleRecord objects.
            max_entries: Maximum entries to include in preview.

        Returns:
            Formatted string preview.
        """
        lines = []
        shown = min(len(records), max_entries)

        for record in records[:shown]:
            text_preview = record.text.replace("\n", " / ")[:80]
            if len(record.text) > 80:
                text_preview += "..."
            lines.append(f"  [{record.start} → {record.end}] {text_preview}")

        if len(records) > shown:
            lines.append(f"  ... and {len(records) - shown} more entries")

        return "\n".join(lines)
