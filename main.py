"""
VobSub to SRT — CLI Entry Point

Usage:
    python main.py movie                   # reads movie.idx/movie.sub, writes movie.srt
    python main.py movie VTS_01_0.IFO      # take the palette from the DVD IFO
    python main.py movie -o subs/movie.srt --lang deu
"""

import sys
import argparse
import logging
from pathlib import Path

from config import load_config
from pipeline.orchestrator import SubtitlePipeline, default_output_path


def setup_logging(level: str = "INFO", log_file: str = None):
    """Configure logging for the application."""
    log_format = (
        "%(asctime)s | %(levelname)-7s | %(name)-20s | %(message)s"
    )
    date_format = "%H:%M:%S"

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=log_format,
        datefmt=date_format,
        handlers=handlers
    )

    # Suppress noisy third-party loggers
    logging.getLogger("PIL").setLevel(logging.WARNING)


def print_banner():
    """Print the application banner."""
    banner = """
==========================================================
                    VobSub to SRT

  DVD bitmap subtitles (.idx/.sub)  ->  SubRip text
  Powered by Tesseract OCR
==========================================================
"""
    print(banner)


def print_progress(message: str, percent: int):
    """Console progress callback with progress bar."""
    bar_width = 30
    filled = int(bar_width * percent / 100)
    bar = "#" * filled + "-" * (bar_width - filled)
    print(f"\r  [{bar}] {percent:3d}%  {message:<50}", end="", flush=True)
    if percent >= 100:
        print()  # Newline at completion


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Convert VobSub (.idx/.sub) DVD subtitles into SRT "
                    "text subtitles using OCR.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py movie                        # movie.idx/.sub -> movie.srt
  python main.py movie VTS_01_0.IFO           # Palette from the IFO file
  python main.py movie -o out/movie.srt       # Custom output path
  python main.py movie --lang fra             # French language data
  python main.py movie --stream 1             # Second subtitle track
  python main.py movie --dump-images          # Also save movie-N.pgm images
        """
    )

    parser.add_argument(
        "subname",
        help="Subtitle base name, without the .idx/.sub suffix"
    )
    parser.add_argument(
        "ifo",
        nargs="?",
        type=Path,
        default=None,
        help="Optional path to the DVD .IFO file"
    )
    parser.add_argument(
        "-o", "--output",
        type=Path,
        default=None,
        help="Output SRT file path (default: <subname>.srt)"
    )
    parser.add_argument(
        "-l", "--lang",
        dest="language",
        default=None,
        help="Tesseract language code (default: from config.yaml, usually 'eng')"
    )
    parser.add_argument(
        "--tessdata",
        type=Path,
        default=None,
        help="Tesseract tessdata directory (default: Tesseract's own)"
    )
    parser.add_argument(
        "--stream",
        type=int,
        default=None,
        help="Subtitle track index from the .idx file (default: first track)"
    )
    parser.add_argument(
        "--dump-images",
        action="store_true",
        help="Save every subtitle bitmap as <subname>-<n>.pgm"
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to custom config.yaml file"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging"
    )
    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress all output except errors"
    )
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    output_path = args.output or default_output_path(args.subname)

    # ── Load config ──
    config = load_config(args.config)
    config.update_from_args(args)

    # ── Setup logging ──
    log_level = "DEBUG" if args.verbose else ("WARNING" if args.quiet else config.logging.level)
    setup_logging(level=log_level, log_file=config.logging.file)

    # ── Banner ──
    if not args.quiet:
        print_banner()
        print(f"  Input:    {args.subname}.idx / {args.subname}.sub")
        if args.ifo:
            print(f"  IFO:      {args.ifo}")
        print(f"  Output:   {output_path}")
        print(f"  Language: {config.ocr.language}")
        print()

    # ── Run pipeline ──
    try:
        pipeline = SubtitlePipeline(config)
        progress_fn = print_progress if not args.quiet else None
        result = pipeline.process(
            args.subname, output_path, ifo_path=args.ifo, progress_cb=progress_fn
        )
    except KeyboardInterrupt:
        print("\n\n  [WARN] Conversion interrupted by user.", file=sys.stderr)
        return 130
    except FileNotFoundError as e:
        print(f"\n  [ERROR] File error: {e}", file=sys.stderr)
        return 1
    except RuntimeError as e:
        print(f"\n  [ERROR] {type(e).__name__}: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        logging.exception("Unexpected error")
        print(f"\n  [ERROR] Unexpected error: {e}", file=sys.stderr)
        return 1

    if not args.quiet:
        print(f"\n  [OK] Wrote subtitles to '{result.output_path}'")
        print(f"  [INFO] Total entries: {result.records_written}")
        if result.recognition_failures:
            print(f"  [WARN] OCR failed for {result.recognition_failures} subtitles")

    return 0


if __name__ == "__main__":
    sys.exit(main())
