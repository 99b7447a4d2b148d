"""
VobSub Reader — Demuxer and SPU decoder for DVD subtitle streams.

A VobSub stream is an .idx/.sub pair:
  - .idx: text index with the palette, frame size and one
    "timestamp: HH:MM:SS:mmm, filepos: XXXXXXXXX" line per subtitle
  - .sub: MPEG-2 program stream holding the subtitle units (SPUs)
    in private stream 1 PES packets, substream 0x20 + track index

VobSubStream hands out raw packets in file order. SpuDecoder holds the
assembly state and renders each completed SPU into a grayscale bitmap.
"""

import logging
import re
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Deque, List, Optional, Tuple

import numpy as np

from .timestamps import PTS_PER_MS, ms_to_pts

logger = logging.getLogger(__name__)

PACK_START = b"\x00\x00\x01\xba"
START_CODE_PREFIX = b"\x00\x00\x01"
PRIVATE_STREAM_1 = 0xBD
SUBSTREAM_BASE = 0x20

# SPU control dates count in units of 1024 ticks of the 90 kHz clock
SPU_DATE_TICKS = 1024

IFO_BLOCK_SIZE = 0x800
IFO_MAGIC = b"DVDVIDEO-VTS"


class VobSubError(RuntimeError):
    """The VobSub stream could not be opened or parsed."""


class DecodeError(VobSubError):
    """A subtitle packet is structurally broken."""


@dataclass
class RawPacket:
    """A chunk of subtitle data as stored in the .sub file."""
    payload: bytes
    pts: Optional[int]   # 90 kHz ticks, None when the packet carries no timing

    def __repr__(self):
        return f"RawPacket({len(self.payload)} bytes, pts={self.pts})"


@dataclass
class SubtitleBitmap:
    """
    A decoded 8-bit grayscale subtitle raster.

    Rows are `stride` bytes apart; the bytes past `width` in each row are
    padding. The buffer belongs to the decoder and may be replaced by the
    next decode.
    """
    width: int
    height: int
    stride: int
    pixels: np.ndarray   # uint8, flat, stride * height

    @property
    def size(self) -> int:
        return int(self.pixels.size)

    def rows(self) -> np.ndarray:
        """Return a (height, width) view without the row padding."""
        return self.pixels.reshape(self.height, self.stride)[:, : self.width]

    def to_image(self):
        """Build a Pillow 'L' image over the full bitmap region."""
        from PIL import Image

        return Image.frombuffer(
            "L", (self.width, self.height), self.pixels.tobytes(),
            "raw", "L", self.stride, 1
        )

    def __repr__(self):
        return (f"SubtitleBitmap({self.width}x{self.height}, "
                f"stride={self.stride}, size={self.size})")


@dataclass(frozen=True)
class SubtitleInterval:
    """Display interval of a subtitle in 90 kHz ticks."""
    start: int
    end: int


# ── .idx / .ifo metadata ──

@dataclass
class IdxTrack:
    """One subtitle track declared in the .idx file."""
    index: int
    language: str
    entries: List[Tuple[int, int]] = field(default_factory=list)  # (pts, filepos)


@dataclass
class IdxInfo:
    width: int = 720
    height: int = 480
    palette: Optional[List[int]] = None   # 16 luma values
    tracks: List[IdxTrack] = field(default_factory=list)


_TIME = r"(\d+):(\d\d):(\d\d)[:.](\d{3})"
_TIMESTAMP_RE = re.compile(
    r"timestamp:\s*" + _TIME + r"\s*,\s*filepos:\s*([0-9A-Fa-f]+)", re.IGNORECASE
)
_DELAY_RE = re.compile(r"delay:\s*([-+]?)\s*" + _TIME, re.IGNORECASE)
_ID_RE = re.compile(r"id:\s*([A-Za-z-]*)\s*,\s*index:\s*(\d+)", re.IGNORECASE)
_SIZE_RE = re.compile(r"size:\s*(\d+)\s*x\s*(\d+)", re.IGNORECASE)


def _time_to_ms(match, first_group: int) -> int:
    h, m, s, ms = (int(match.group(first_group + i)) for i in range(4))
    return ((h * 3600 + m * 60 + s) * 1000) + ms


def rgb_to_luma(rgb: int) -> int:
    """Rec. 601 luma of a 0xRRGGBB colour."""
    r = (rgb >> 16) & 0xFF
    g = (rgb >> 8) & 0xFF
    b = rgb & 0xFF
    return (299 * r + 587 * g + 114 * b) // 1000


def parse_idx(idx_path: Path) -> IdxInfo:
    """
    Parse a VobSub .idx file.

    Timestamps are converted to 90 kHz ticks and shifted by the most
    recent "delay:" line of their track.
    """
    info = IdxInfo()
    track: Optional[IdxTrack] = None
    delay_ms = 0

    with open(idx_path, "r", encoding="utf-8", errors="replace") as f:
        for raw_line in f:
            line = raw_line.strip()
            if not line or line.startswith("#"):
                continue

            m = _TIMESTAMP_RE.match(line)
            if m:
                if track is None:
                    # Timestamps before any "id:" line belong to track 0
                    track = IdxTrack(index=0, language="")
                    info.tracks.append(track)
                start_ms = max(0, _time_to_ms(m, 1) + delay_ms)
                track.entries.append((ms_to_pts(start_ms), int(m.group(5), 16)))
                continue

            m = _ID_RE.match(line)
            if m:
                track = IdxTrack(index=int(m.group(2)), language=m.group(1))
                info.tracks.append(track)
                delay_ms = 0
                continue

            m = _DELAY_RE.match(line)
            if m:
                delay_ms = _time_to_ms(m, 2)
                if m.group(1) == "-":
                    delay_ms = -delay_ms
                continue

            m = _SIZE_RE.match(line)
            if m:
                info.width = int(m.group(1))
                info.height = int(m.group(2))
                continue

            if line.lower().startswith("palette:"):
                _, rest = line.split(":", 1)
                parts = [x.strip() for x in rest.split(",") if x.strip()]
                if len(parts) < 16:
                    raise VobSubError(
                        f"{idx_path}: palette has {len(parts)} entries, expected 16"
                    )
                try:
                    info.palette = [rgb_to_luma(int(x, 16)) for x in parts[:16]]
                except ValueError:
                    raise VobSubError(f"{idx_path}: malformed palette line: {line}")

    return info


def _be32(b: bytes, off: int) -> int:
    return int.from_bytes(b[off:off + 4], "big")


def parse_ifo_palette(ifo_path: Path) -> List[int]:
    """
    Read the subtitle palette from a DVD VTS .IFO file.

    The palette lives in the first program chain: the PGCI table sector
    is stored at 0xCC of the header, the PGC offset at 0x0C of that
    table, and the 16 palette entries (0, Y, Cr, Cb) at PGC + 0xA4.

    Returns:
        16 luma values.
    """
    ifo_path = Path(ifo_path)
    if not ifo_path.exists():
        raise FileNotFoundError(f"IFO file not found: {ifo_path}")

    with open(ifo_path, "rb") as f:
        header = f.read(IFO_BLOCK_SIZE)
        if len(header) < IFO_BLOCK_SIZE or not header.startswith(IFO_MAGIC):
            raise VobSubError(f"{ifo_path}: not a DVD VTS IFO file")

        pgci_sector = _be32(header, 0xCC)
        f.seek(pgci_sector * IFO_BLOCK_SIZE)
        pgci = f.read(IFO_BLOCK_SIZE)

    pgc_offset = _be32(pgci, 0x0C)
    start = pgc_offset + 0xA4
    if len(pgci) < IFO_BLOCK_SIZE or start + 16 * 4 > len(pgci):
        raise VobSubError(f"{ifo_path}: cannot read palette from PGCI table")

    return [pgci[start + 4 * i + 1] for i in range(16)]


# ── .sub demuxing ──

@dataclass
class PesPacket:
    substream: int
    payload: bytes   # without the substream id byte
    end: int         # offset just past this packet


class VobSubStream:
    """
    Sequential packet source over an .idx/.sub pair.

    Each indexed subtitle is returned as a single RawPacket carrying the
    complete SPU and the timestamp from the index. Packets of the same
    substream that no index entry points at are returned without a
    timestamp.

    Usage:
        with VobSubStream.open("movie") as stream:
            while (packet := stream.next_packet()) is not None:
                ...
    """

    def __init__(self, sub_data: bytes, track: IdxTrack, palette: List[int]):
        self.track = track
        self.palette = palette
        self.substream = SUBSTREAM_BASE + track.index
        self._data = sub_data
        self._entries = track.entries
        self._entry_pos = 0
        self._pos = 0
        self._closed = False

    @classmethod
    def open(cls, name, ifo_path: Optional[Path] = None,
             stream_index: Optional[int] = None) -> "VobSubStream":
        """
        Open a VobSub stream by base name (without .idx/.sub suffix).

        Raises:
            FileNotFoundError: If the .idx, .sub or IFO file is missing.
            VobSubError: If the metadata cannot be parsed or has no
                subtitles for the requested track.
        """
        base = str(name)
        idx_path = Path(base + ".idx")
        sub_path = Path(base + ".sub")
        if not idx_path.exists():
            raise FileNotFoundError(f"IDX file not found: {idx_path}")
        if not sub_path.exists():
            raise FileNotFoundError(f"SUB file not found: {sub_path}")

        idx = parse_idx(idx_path)
        track = cls._select_track(idx, stream_index, idx_path)

        palette = idx.palette
        if palette is None and ifo_path is not None:
            palette = parse_ifo_palette(ifo_path)
            logger.info(f"Palette read from {ifo_path}")
        elif ifo_path is not None:
            logger.debug(f"IDX has its own palette, ignoring {ifo_path}")
        if palette is None:
            logger.warning(f"No palette in {idx_path.name}, using a gray ramp")
            palette = [i * 17 for i in range(16)]

        sub_data = sub_path.read_bytes()
        logger.info(
            f"Opened VobSub {base}: track {track.index} "
            f"({track.language or 'unknown'}), {len(track.entries)} subtitles, "
            f"{idx.width}x{idx.height}"
        )
        return cls(sub_data, track, palette)

    @staticmethod
    def _select_track(idx: IdxInfo, stream_index: Optional[int],
                      idx_path: Path) -> IdxTrack:
        if stream_index is not None:
            for track in idx.tracks:
                if track.index == stream_index:
                    if not track.entries:
                        raise VobSubError(
                            f"{idx_path}: track {stream_index} has no timestamps"
                        )
                    return track
            raise VobSubError(f"{idx_path}: no track with index {stream_index}")

        for track in idx.tracks:
            if track.entries:
                return track
        raise VobSubError(
            f"{idx_path}: no 'timestamp: ..., filepos: ...' entries found"
        )

    @property
    def position(self) -> int:
        return self._pos

    @property
    def size(self) -> int:
        return len(self._data)

    def next_packet(self) -> Optional[RawPacket]:
        """
        Return the next packet, or None at end of stream.

        Raises:
            DecodeError: If an indexed subtitle cannot be read.
        """
        if self._closed:
            raise VobSubError("stream is closed")

        while self._entry_pos < len(self._entries):
            pts, filepos = self._entries[self._entry_pos]

            if self._pos < filepos:
                pes = self._read_pes(self._pos, limit=filepos)
                if pes is not None:
                    self._pos = pes.end
                    if pes.substream == self.substream:
                        return RawPacket(pes.payload, None)
                    continue

            self._entry_pos += 1
            payload, self._pos = self._read_spu(filepos)
            return RawPacket(payload, pts)

        while True:
            pes = self._read_pes(self._pos, limit=len(self._data))
            if pes is None:
                self._pos = len(self._data)
                return None
            self._pos = pes.end
            if pes.substream == self.substream:
                return RawPacket(pes.payload, None)

    def _read_pes(self, offset: int, limit: int) -> Optional[PesPacket]:
        """
        Find and parse the next private stream 1 PES packet that starts
        before `limit`. Pack headers and other streams are skipped.
        """
        data = self._data
        while True:
            pos = data.find(START_CODE_PREFIX, offset)
            if pos < 0 or pos >= limit or pos + 4 > len(data):
                return None

            stream_id = data[pos + 3]
            if stream_id == 0xBA:
                # Pack header: MPEG-2 is 14 bytes plus stuffing, MPEG-1 is 12
                if pos + 14 <= len(data) and (data[pos + 4] & 0xC0) == 0x40:
                    offset = pos + 14 + (data[pos + 13] & 0x07)
                else:
                    offset = pos + 12
                continue

            if stream_id < 0xBC or pos + 6 > len(data):
                offset = pos + 3
                continue

            length = (data[pos + 4] << 8) | data[pos + 5]
            body_start = pos + 6
            end = body_start + length
            if end > len(data):
                raise DecodeError(
                    f"PES packet at 0x{pos:x} runs past the end of the file"
                )
            if stream_id != PRIVATE_STREAM_1:
                offset = end
                continue

            body = data[body_start:end]
            if len(body) >= 3 and (body[0] & 0xC0) == 0x80:
                body = body[3 + body[2]:]
            if not body:
                offset = end
                continue
            return PesPacket(substream=body[0], payload=bytes(body[1:]), end=end)

    def _read_spu(self, filepos: int) -> Tuple[bytes, int]:
        """Collect the PES fragments of one SPU starting at `filepos`."""
        if filepos >= len(self._data):
            raise DecodeError(f"filepos 0x{filepos:x} is past the end of the SUB file")

        spu = bytearray()
        total_size = None
        offset = filepos
        while total_size is None or len(spu) < total_size:
            pes = self._read_pes(offset, limit=len(self._data))
            if pes is None:
                raise DecodeError(f"SPU at filepos 0x{filepos:x} is truncated")
            offset = pes.end
            if pes.substream != self.substream:
                continue
            spu.extend(pes.payload)
            if total_size is None and len(spu) >= 2:
                total_size = (spu[0] << 8) | spu[1]
                if total_size < 4:
                    raise DecodeError(
                        f"Implausible SPU size {total_size} at filepos 0x{filepos:x}"
                    )

        return bytes(spu[:total_size]), offset

    def close(self):
        self._closed = True
        self._data = b""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


# ── SPU decoding ──

@dataclass
class DecodedSpu:
    packet_pts: int
    interval: SubtitleInterval
    bitmap: SubtitleBitmap


def _read_be16(b: bytes, off: int) -> int:
    return (b[off] << 8) | b[off + 1]


class SpuDecoder:
    """
    Assembly state for one subtitle stream.

    Packets are fed with assemble(); a timed packet starts a new SPU and
    untimed packets extend it. Completed SPUs wait in a queue until
    heartbeat() moves the clock past their packet timestamp, after which
    get_data() returns them.
    """

    def __init__(self, palette: List[int], default_duration: int = 3000 * PTS_PER_MS):
        if len(palette) < 16:
            raise ValueError("palette must have 16 entries")
        self.palette = list(palette[:16])
        self.default_duration = default_duration

        self._pending: Optional[bytearray] = None
        self._pending_pts = 0
        self._queue: Deque[DecodedSpu] = deque()
        self._current: Optional[DecodedSpu] = None

    def assemble(self, payload: bytes, pts: Optional[int]) -> Optional[DecodedSpu]:
        """
        Submit a packet to the assembly state.

        Returns:
            The SPU this packet completed, or None while it is still
            incomplete. A completed SPU is queued until heartbeat()
            reaches its packet timestamp.

        Raises:
            DecodeError: If a completed SPU cannot be decoded.
        """
        if pts is not None:
            if self._pending:
                logger.debug(
                    f"Discarding incomplete SPU ({len(self._pending)} bytes) "
                    f"from pts {self._pending_pts}"
                )
            self._pending = bytearray(payload)
            self._pending_pts = pts
        elif self._pending is None:
            logger.debug(f"Ignoring {len(payload)}-byte packet with no SPU in progress")
            return None
        else:
            self._pending.extend(payload)

        if len(self._pending) < 2:
            return None
        size = _read_be16(self._pending, 0)
        if size < 4:
            self._pending = None
            raise DecodeError(f"Implausible SPU size {size}")
        if len(self._pending) < size:
            return None

        spu = bytes(self._pending[:size])
        self._pending = None
        decoded = self.decode(spu, self._pending_pts)
        self._queue.append(decoded)
        return decoded

    def heartbeat(self, pts: int):
        """Queued subtitles due by `pts` become current."""
        while self._queue and self._queue[0].packet_pts <= pts:
            self._current = self._queue.popleft()

    @property
    def has_data(self) -> bool:
        return self._current is not None

    def get_data(self) -> Tuple[SubtitleBitmap, SubtitleInterval]:
        if self._current is None:
            raise DecodeError("no subtitle image has been assembled yet")
        return self._current.bitmap, self._current.interval

    def decode(self, spu: bytes, pts: int) -> DecodedSpu:
        """
        Decode a complete SPU.

        Layout: total size (2 bytes), control offset (2 bytes), RLE
        pixel data, then linked control sequences of
        [date, next offset, commands..., 0xFF].
        """
        if len(spu) < 6:
            raise DecodeError("SPU too short")

        ctrl_pos = _read_be16(spu, 2)
        if ctrl_pos < 4 or ctrl_pos + 4 > len(spu):
            raise DecodeError(f"Invalid control sequence offset {ctrl_pos}")

        colormap = [0, 1, 2, 3]
        alpha = [0, 0xF, 0xF, 0xF]
        x1 = y1 = x2 = y2 = None
        offset_top = offset_bottom = None
        start_date = None
        stop_date = None

        seq_pos = ctrl_pos
        visited = set()
        while seq_pos not in visited and seq_pos + 4 <= len(spu):
            visited.add(seq_pos)
            date = _read_be16(spu, seq_pos)
            next_pos = _read_be16(spu, seq_pos + 2)
            pos = seq_pos + 4

            while pos < len(spu):
                cmd = spu[pos]
                pos += 1
                if cmd == 0xFF:
                    break
                if cmd in (0x00, 0x01):  # FSTA_DSP / STA_DSP
                    if start_date is None:
                        start_date = date
                elif cmd == 0x02:  # STP_DSP
                    if stop_date is None:
                        stop_date = date
                elif cmd in (0x03, 0x04):  # SET_COLOR / SET_CONTR
                    if pos + 2 > len(spu):
                        raise DecodeError("Truncated colour command")
                    b1, b2 = spu[pos], spu[pos + 1]
                    pos += 2
                    # Nibbles are e2 e1 p b; pixel values are b p e1 e2
                    values = [b2 & 0xF, (b2 >> 4) & 0xF, b1 & 0xF, (b1 >> 4) & 0xF]
                    if cmd == 0x03:
                        colormap = values
                    else:
                        alpha = values
                elif cmd == 0x05:  # SET_DAREA
                    if pos + 6 > len(spu):
                        raise DecodeError("Truncated display area command")
                    b = spu[pos:pos + 6]
                    pos += 6
                    x1 = (b[0] << 4) | (b[1] >> 4)
                    x2 = ((b[1] & 0x0F) << 8) | b[2]
                    y1 = (b[3] << 4) | (b[4] >> 4)
                    y2 = ((b[4] & 0x0F) << 8) | b[5]
                elif cmd == 0x06:  # SET_DSPXA
                    if pos + 4 > len(spu):
                        raise DecodeError("Truncated pixel address command")
                    offset_top = _read_be16(spu, pos)
                    offset_bottom = _read_be16(spu, pos + 2)
                    pos += 4
                elif cmd == 0x07:  # CHG_COLCON, size includes itself
                    if pos + 2 > len(spu):
                        raise DecodeError("Truncated colour change command")
                    pos += max(2, _read_be16(spu, pos))
                else:
                    raise DecodeError(f"Unknown SPU command 0x{cmd:02x}")

            if next_pos == seq_pos:
                break
            seq_pos = next_pos

        if x1 is None or x2 < x1 or y2 < y1:
            raise DecodeError("Missing or invalid display area")
        if offset_top is None:
            raise DecodeError("Missing pixel data offsets")

        width = x2 - x1 + 1
        height = y2 - y1 + 1
        stride = (width + 7) & ~7

        indices = np.zeros((height, stride), dtype=np.uint8)
        self._decode_field(spu, offset_top, indices[0::2, :width], ctrl_pos)
        self._decode_field(spu, offset_bottom, indices[1::2, :width], ctrl_pos)

        # Gray level per pixel value: palette luma scaled by contrast
        levels = np.array(
            [self.palette[colormap[v] & 0xF] * alpha[v] // 15 for v in range(4)],
            dtype=np.uint8,
        )
        pixels = levels[indices]
        pixels[:, width:] = 0

        start = pts + (start_date or 0) * SPU_DATE_TICKS
        if stop_date is not None and stop_date * SPU_DATE_TICKS + pts >= start:
            end = pts + stop_date * SPU_DATE_TICKS
        else:
            end = start + self.default_duration

        bitmap = SubtitleBitmap(width=width, height=height, stride=stride,
                                pixels=pixels.reshape(-1))
        return DecodedSpu(packet_pts=pts, interval=SubtitleInterval(start, end),
                          bitmap=bitmap)

    @staticmethod
    def _decode_field(spu: bytes, start: int, out: np.ndarray, limit: int):
        """Decode 2-bit RLE lines from nibble offset `start * 2` into `out`."""
        if out.shape[0] == 0:
            return
        if start >= limit:
            raise DecodeError(f"Pixel data offset {start} overlaps control data")

        nibble_pos = start * 2
        end = limit * 2

        def get_nibble() -> int:
            nonlocal nibble_pos
            if nibble_pos >= end:
                raise DecodeError("RLE data runs into control data")
            b = spu[nibble_pos >> 1]
            nib = (b >> 4) if (nibble_pos & 1) == 0 else (b & 0x0F)
            nibble_pos += 1
            return nib

        height, width = out.shape
        for y in range(height):
            x = 0
            while x < width:
                # Codes are 1 to 4 nibbles: 01cc.., 00nn nncc, 0000 nnnn nncc,
                # 0000 00nn nnnn nncc; a zero run fills the rest of the line
                v = 0
                t = 1
                while v < t and t <= 0x40:
                    v = (v << 4) | get_nibble()
                    t <<= 2
                run = v >> 2
                color = v & 0x03
                if run == 0 or run > width - x:
                    run = width - x
                out[y, x:x + run] = color
                x += run
            if nibble_pos & 1:
                nibble_pos += 1
