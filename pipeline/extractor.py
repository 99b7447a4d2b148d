"""
Subtitle Image Extractor — Turns raw VobSub packets into subtitle bitmaps.

Each call to next() pulls one packet from the stream and reports what it
produced. Decoder errors are returned as a DecodeFailure rather than
raised, so the caller decides how to stop.
"""

import logging
from dataclasses import dataclass
from typing import Union

from .vobsub import SpuDecoder, SubtitleBitmap, SubtitleInterval, VobSubError

logger = logging.getLogger(__name__)


@dataclass
class PacketWithImage:
    """A new subtitle image is ready."""
    bitmap: SubtitleBitmap
    interval: SubtitleInterval


@dataclass
class PacketWithoutTiming:
    """A packet that did not make a new image current."""


@dataclass
class EndOfStream:
    """No more packets."""


@dataclass
class DecodeFailure:
    """The decoder hit a structural error. The extractor is unusable."""
    error: Exception


ExtractResult = Union[PacketWithImage, PacketWithoutTiming, EndOfStream, DecodeFailure]


class SubtitleImageExtractor:
    """
    Drives a packet source and an SPU decoder one packet at a time.

    The stream must provide next_packet() returning a RawPacket or None;
    the decoder must provide assemble(), heartbeat(), has_data and
    get_data(). Both are owned by the caller.

    A packet yields an image only when it makes a new subtitle current:
    either a timed packet carrying a whole SPU, or an untimed packet that
    completes the SPU a timed packet started. Each image is handed out
    once.
    """

    def __init__(self, stream, decoder: SpuDecoder):
        self.stream = stream
        self.decoder = decoder
        self.packets_read = 0
        self._failure = None
        self._last_bitmap = None

    def next(self) -> ExtractResult:
        if self._failure is not None:
            return self._failure

        try:
            packet = self.stream.next_packet()
            if packet is None:
                return EndOfStream()

            self.packets_read += 1
            completed = self.decoder.assemble(packet.payload, packet.pts)
            if packet.pts is not None:
                self.decoder.heartbeat(packet.pts)
            elif completed is not None:
                self.decoder.heartbeat(completed.packet_pts)

            if not self.decoder.has_data:
                return PacketWithoutTiming()
            bitmap, interval = self.decoder.get_data()

        except VobSubError as e:
            logger.error(f"Decode error after {self.packets_read} packets: {e}")
            self._failure = DecodeFailure(e)
            return self._failure

        if bitmap is self._last_bitmap:
            logger.debug(f"Packet {self.packets_read}: no new subtitle image")
            return PacketWithoutTiming()
        self._last_bitmap = bitmap

        logger.debug(
            f"Packet {self.packets_read}: pts={packet.pts} "
            f"interval={interval.start}..{interval.end} {bitmap!r}"
        )
        return PacketWithImage(bitmap, interval)
