"""
Timestamp conversion between DVD presentation timestamps and SRT time codes.

DVD subtitle packets are stamped with a 90 kHz clock (hardware ticks).
SRT expects HH:MM:SS,mmm.
"""

PTS_PER_SECOND = 90000
PTS_PER_MS = PTS_PER_SECOND // 1000


def ms_to_pts(ms: int) -> int:
    """Convert milliseconds to 90 kHz ticks."""
    return ms * PTS_PER_MS


def pts_to_srt(pts: int) -> str:
    """
    Convert a presentation timestamp to an SRT timestamp: HH:MM:SS,mmm

    Milliseconds are truncated, never rounded. The hour field is at least
    two digits and widens for timestamps past 99 hours.

    Args:
        pts: Timestamp in 90 kHz ticks (e.g., 90000 for one second)

    Returns:
        Formatted timestamp string (e.g., "00:00:01,000")
    """
    if pts < 0:
        pts = 0

    ms = pts // PTS_PER_MS
    hours, ms = divmod(ms, 3600 * 1000)
    minutes, ms = divmod(ms, 60 * 1000)
    secs, ms = divmod(ms, 1000)

    return f"{hours:02d}:{minutes:02d}:{secs:02d},{ms:03d}"
