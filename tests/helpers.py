"""
Builders for synthetic VobSub data used across the tests.
"""

import struct

# Palette lumas after RGB conversion: black, white, mid gray, dark gray
PALETTE_RGB = ["000000", "ffffff", "808080", "404040"] + ["000000"] * 12


def encode_row(runs):
    """Encode (run, colour) pairs as 4-nibble RLE codes. Runs must be 1..255."""
    return b"".join(struct.pack(">H", (run << 2) | color) for run, color in runs)


def build_spu(rows, start_date=0, stop_date=None, colors=(0, 1, 2, 3),
              alpha=(0, 15, 15, 15), x=0, y=0):
    """
    Build a complete SPU from per-row runs.

    rows: list of encoded rows (bytes) or lists of (run, colour) pairs.
    """
    encoded = [r if isinstance(r, bytes) else encode_row(r) for r in rows]
    first = rows[0]
    width = sum(run for run, _ in first) if not isinstance(first, bytes) else None
    if width is None:
        raise ValueError("first row must be given as runs")
    height = len(rows)

    top = b"".join(encoded[0::2])
    bottom = b"".join(encoded[1::2])
    top_off = 4
    bottom_off = 4 + len(top)
    ctrl = 4 + len(top) + len(bottom)

    x2 = x + width - 1
    y2 = y + height - 1
    area = bytes([
        x >> 4, ((x & 0xF) << 4) | (x2 >> 8), x2 & 0xFF,
        y >> 4, ((y & 0xF) << 4) | (y2 >> 8), y2 & 0xFF,
    ])
    c, a = colors, alpha
    cmds = (
        bytes([0x03, (c[3] << 4) | c[2], (c[1] << 4) | c[0]])
        + bytes([0x04, (a[3] << 4) | a[2], (a[1] << 4) | a[0]])
        + bytes([0x05]) + area
        + bytes([0x06]) + struct.pack(">HH", top_off, bottom_off)
        + bytes([0x01, 0xFF])
    )

    if stop_date is None:
        control = struct.pack(">HH", start_date, ctrl) + cmds
    else:
        stop_off = ctrl + 4 + len(cmds)
        control = (
            struct.pack(">HH", start_date, stop_off) + cmds
            + struct.pack(">HH", stop_date, stop_off) + bytes([0x02, 0xFF])
        )

    body = top + bottom + control
    return struct.pack(">HH", 4 + len(body), ctrl) + body


def simple_spu(stop_date=100):
    """A 10x4 subtitle with a few lit pixels."""
    rows = [
        [(10, 0)],
        [(3, 0), (4, 1), (3, 0)],
        [(2, 1), (8, 0)],
        [(10, 1)],
    ]
    return build_spu(rows, stop_date=stop_date)


def pack_header():
    return b"\x00\x00\x01\xba" + bytes([0x44, 0, 4, 0, 4, 1, 0x01, 0x89, 0xC3, 0xF8])


def pes_packet(substream, payload):
    body = bytes([0x81, 0x00, 0x00, substream]) + payload
    return b"\x00\x00\x01\xbd" + struct.pack(">H", len(body)) + body


def padding_packet(length=8):
    return b"\x00\x00\x01\xbe" + struct.pack(">H", length) + b"\xff" * length


def build_sub(spus, substream=0x20, split_at=None):
    """
    Lay SPUs out in a program stream, one pack per PES.

    Returns (sub bytes, filepos of each SPU). When split_at is given,
    each SPU is cut into two PES packets at that offset.
    """
    data = bytearray()
    positions = []
    for spu in spus:
        positions.append(len(data))
        parts = [spu] if split_at is None else [spu[:split_at], spu[split_at:]]
        for part in parts:
            data += pack_header() + pes_packet(substream, part)
    return bytes(data), positions


def idx_text(entries, index=0, language="en", palette=True, delay=None):
    """entries: list of (HH:MM:SS:mmm, filepos)."""
    lines = ["# VobSub index file, v7 (do not modify this line!)", "size: 720x480"]
    if palette:
        lines.append("palette: " + ", ".join(PALETTE_RGB))
    lines.append(f"id: {language}, index: {index}")
    if delay:
        lines.append(f"delay: {delay}")
    for ts, pos in entries:
        lines.append(f"timestamp: {ts}, filepos: {pos:09x}")
    return "\n".join(lines) + "\n"


def write_vobsub(directory, name, spus, timestamps, **kwargs):
    """Write name.idx / name.sub and return the base path as a string."""
    split_at = kwargs.pop("split_at", None)
    sub, positions = build_sub(spus, split_at=split_at)
    base = directory / name
    (directory / f"{name}.sub").write_bytes(sub)
    (directory / f"{name}.idx").write_text(
        idx_text(list(zip(timestamps, positions)), **kwargs), encoding="utf-8"
    )
    return str(base)


def build_ifo(lumas):
    """A minimal VTS IFO: header block plus one PGCI block."""
    header = bytearray(0x800)
    header[0:12] = b"DVDVIDEO-VTS"
    header[0xCC:0xD0] = (1).to_bytes(4, "big")
    pgci = bytearray(0x800)
    pgc_offset = 0x10
    pgci[0x0C:0x10] = pgc_offset.to_bytes(4, "big")
    for i, y in enumerate(lumas):
        pos = pgc_offset + 0xA4 + 4 * i
        pgci[pos:pos + 4] = bytes([0, y, 0x80, 0x80])
    return bytes(header + pgci)


class FailingFile:
    """
    Wraps an open text file. The next write puts only its first `keep`
    characters on disk and then fails like a full disk would.
    """

    def __init__(self, f, keep=0):
        self._f = f
        self.keep = keep

    def write(self, data):
        self._f.write(data[:self.keep])
        self._f.flush()
        raise OSError(28, "No space left on device")

    def __getattr__(self, name):
        return getattr(self._f, name)
