"""
Pipeline Orchestrator — Converts a VobSub stream into an SRT file.

Stages per packet:
  1. Extraction (VobSub demuxer + SPU decoder)
  2. Text recognition (Tesseract)
  3. SRT record output

Packets are handled strictly one at a time. A subtitle whose OCR fails
is skipped without using up a record number; decoder and output errors
stop the run and leave the records written so far intact.
"""

import time
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional

from .extractor import (
    DecodeFailure,
    EndOfStream,
    PacketWithoutTiming,
    SubtitleImageExtractor,
)
from .image_dump import ImageDumper
from .recognizer import RecognitionFailed, TesseractRecognizer
from .srt_writer import OutputWriteError, SRTWriter, SubtitleRecord
from .timestamps import ms_to_pts, pts_to_srt
from .vobsub import SpuDecoder, VobSubStream

logger = logging.getLogger(__name__)

# Type alias for progress callbacks: (message: str, percent: int) -> None
ProgressCallback = Optional[Callable[[str, int], None]]

PREVIEW_ENTRIES = 5


class PipelineState(Enum):
    AWAIT_PACKET = "await_packet"
    HAVE_IMAGE = "have_image"
    RECOGNIZING = "recognizing"
    DONE = "done"
    FAILED = "failed"


@dataclass
class ConversionResult:
    """Summary of a finished conversion."""
    output_path: Path
    records_written: int
    recognition_failures: int
    packets_read: int
    elapsed_sec: float


def default_output_path(stream_name) -> Path:
    """<stream name>.srt, next to the .idx/.sub pair."""
    return Path(str(stream_name) + ".srt")


class SubtitlePipeline:
    """
    Main pipeline orchestrator for VobSub to SRT conversion.

    Usage:
        config = load_config()
        pipeline = SubtitlePipeline(config)
        pipeline.process("movie")          # reads movie.idx/.sub, writes movie.srt

    The OCR engine, stream opener and decoder can be swapped out, which
    is how the tests drive the pipeline without Tesseract or disc images.
    """

    def __init__(self, config, recognizer_factory=None, stream_opener=None,
                 decoder_factory=None):
        self.config = config
        self.recognizer_factory = recognizer_factory or (
            lambda: TesseractRecognizer(config.ocr)
        )
        self.stream_opener = stream_opener or VobSubStream.open
        self.decoder_factory = decoder_factory or self._default_decoder
        self.state = PipelineState.AWAIT_PACKET

    def _default_decoder(self, stream) -> SpuDecoder:
        return SpuDecoder(
            stream.palette,
            default_duration=ms_to_pts(self.config.vobsub.default_duration_ms),
        )

    def process(
        self,
        stream_name,
        output_path: Optional[Path] = None,
        ifo_path: Optional[Path] = None,
        progress_cb: ProgressCallback = None
    ) -> ConversionResult:
        """
        Run the full conversion.

        Resources are acquired in the order OCR engine, stream, output
        file and released in reverse order on every exit path.

        Args:
            stream_name: VobSub base name without the .idx/.sub suffix.
            output_path: Path for the .srt file (default: <stream_name>.srt).
            ifo_path: Optional DVD IFO file to take the palette from.
            progress_cb: Optional callback for progress updates.

        Returns:
            ConversionResult describing the finished run.

        Raises:
            FileNotFoundError: If the stream files are missing.
            OCRInitError: If Tesseract cannot be initialized.
            VobSubError: If the stream cannot be parsed or decoding fails.
            OutputWriteError: If the .srt file cannot be written.
        """
        output_path = Path(output_path) if output_path else default_output_path(stream_name)
        start_time = time.monotonic()
        self.state = PipelineState.AWAIT_PACKET

        logger.info(f"{'='*60}")
        logger.info(f"VobSub to SRT")
        logger.info(f"Input:  {stream_name}.idx / .sub")
        if ifo_path:
            logger.info(f"IFO:    {ifo_path}")
        logger.info(f"Output: {output_path}")
        logger.info(f"OCR:    Tesseract ({self.config.ocr.language})")
        logger.info(f"{'='*60}")

        try:
            recognizer = self.recognizer_factory()
            recognizer.open()
            try:
                stream = self.stream_opener(
                    stream_name,
                    ifo_path=ifo_path,
                    stream_index=self.config.vobsub.stream_index,
                )
                try:
                    extractor = SubtitleImageExtractor(stream, self.decoder_factory(stream))
                    dumper = None
                    if self.config.output.dump_images:
                        dumper = ImageDumper(str(stream_name), self.config.output.dump_dir)

                    writer = SRTWriter(output_path, encoding=self.config.output.encoding)
                    writer.open()
                    try:
                        records, failures = self._run(
                            extractor, recognizer, writer, dumper, stream, progress_cb
                        )
                    except BaseException:
                        self._close_after_error(writer)
                        raise
                    writer.close()
                finally:
                    stream.close()
            finally:
                recognizer.close()
        except Exception:
            self.state = PipelineState.FAILED
            raise

        elapsed = time.monotonic() - start_time
        self._report(progress_cb, f"Done! ({elapsed:.1f}s)", 100)

        logger.info(f"{'='*60}")
        logger.info(f"Conversion complete in {elapsed:.1f}s")
        logger.info(f"  Packets read: {extractor.packets_read}")
        logger.info(f"  Subtitles: {writer.records_written}")
        logger.info(f"  OCR failures: {failures}")
        if dumper:
            logger.info(f"  Images dumped: {dumper.count}")
        logger.info(f"  Output: {output_path}")
        logger.info(f"{'='*60}")

        preview = writer.write_preview(records, max_entries=PREVIEW_ENTRIES)
        if preview:
            logger.info(f"Preview:\n{preview}")

        return ConversionResult(
            output_path=output_path,
            records_written=writer.records_written,
            recognition_failures=failures,
            packets_read=extractor.packets_read,
            elapsed_sec=elapsed,
        )

    def _run(self, extractor, recognizer, writer, dumper, stream, progress_cb):
        """
        Packet loop. Returns (first records for the preview, OCR failures).
        """
        index = 1
        failures = 0
        images = 0
        preview: List[SubtitleRecord] = []

        self._report(progress_cb, "Converting subtitles...", 0)

        while True:
            self.state = PipelineState.AWAIT_PACKET
            result = extractor.next()

            if isinstance(result, EndOfStream):
                self.state = PipelineState.DONE
                return preview, failures
            if isinstance(result, DecodeFailure):
                self.state = PipelineState.FAILED
                raise result.error
            if isinstance(result, PacketWithoutTiming):
                continue

            self.state = PipelineState.HAVE_IMAGE
            images += 1
            bitmap, interval = result.bitmap, result.interval
            if dumper:
                dumper.dump(bitmap, images)

            self.state = PipelineState.RECOGNIZING
            text = recognizer.recognize(bitmap)
            if isinstance(text, RecognitionFailed):
                failures += 1
                logger.warning(
                    f"OCR failed for subtitle at {pts_to_srt(interval.start)}: "
                    f"{text.reason}"
                )
                continue

            logger.debug(f"Text: {text.text!r}")
            record = writer.emit(index, interval.start, interval.end, text.text)
            index += 1
            if len(preview) < PREVIEW_ENTRIES:
                preview.append(record)

            if progress_cb:
                progress_cb(f"Subtitle {record.index} at {record.start}",
                            self._percent(stream))

    @staticmethod
    def _close_after_error(writer: SRTWriter):
        """Close the output without masking the error that stopped the run."""
        try:
            writer.close()
        except OutputWriteError as e:
            logger.error(f"{e}")

    @staticmethod
    def _percent(stream) -> int:
        size = getattr(stream, "size", 0)
        if not size:
            return 0
        return min(99, int(100 * getattr(stream, "position", 0) / size))

    @staticmethod
    def _report(cb: ProgressCallback, msg: str, pct: int):
        """Report progress to logger and optional callback."""
        logger.info(f"[{pct:3d}%] {msg}")
        if cb:
            cb(msg, pct)
