"""
VobSub to SRT — Pipeline Package

Conversion pipeline from DVD bitmap subtitles to SubRip text:
  - timestamps: 90 kHz presentation timestamps to SRT time codes
  - vobsub: .idx/.sub demuxer, IFO palette reader and SPU decoder
  - extractor: packet-by-packet subtitle bitmap extraction
  - recognizer: Tesseract OCR via pytesseract
  - srt_writer: incremental SRT file output
  - image_dump: optional PGM dump of subtitle bitmaps
  - orchestrator: the conversion loop
"""
