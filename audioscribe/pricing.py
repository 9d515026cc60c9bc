"""
Credit pricing for transcription jobs.

Billing and display use different rounding and must never be mixed up:

* billing always floors the precise product ``(seconds / 60) * rate``
* display always rounds the duration up to whole minutes

Pricing (RM per minute, RM1 = 10 credits):

* 3 days:  RM6.20 = 62 credits/min
* 7 days:  RM5.30 = 53 credits/min
* 14 days: RM4.40 = 44 credits/min
* 21 days: RM3.50 = 35 credits/min
"""
import logging
import math
from dataclasses import dataclass

from .errors import InvalidInputError

logger = logging.getLogger(__name__)

# Credits per minute by processing tier (days)
TIER_RATES = {
    3: 62,   # Express
    7: 53,   # Standard
    14: 44,  # Extended
    21: 35,  # Archive (cheapest)
}

PROCESSING_TIERS = tuple(sorted(TIER_RATES))
FALLBACK_TIER = 21

# Plan level shown next to each tier
TIER_MULTIPLIERS = {3: 4, 7: 3, 14: 2, 21: 1}

# Average bitrates (bits/s) used when the real duration cannot be probed
AVERAGE_BITRATES = {
    "mp3": 128_000,
    "wav": 1_411_200,
    "flac": 1_000_000,
    "mp4": 1_000_000,
    "mov": 1_500_000,
    "avi": 2_000_000,
}
DEFAULT_BITRATE = 128_000


@dataclass(frozen=True)
class PriceQuote:
    """Everything the UI needs to show a price for one file."""
    duration_seconds: float
    processing_days: int
    credits_per_minute: int
    credits: int
    display_minutes: int
    base_minutes: int


def validate_duration(duration_seconds) -> float:
    """
    Check a media duration and return it as a float.

    Raises:
        InvalidInputError: If the duration is not a finite number >= 0
    """
    if isinstance(duration_seconds, bool) or not isinstance(duration_seconds, (int, float)):
        raise InvalidInputError(f"Duration must be a number, got {duration_seconds!r}")
    if not math.isfinite(duration_seconds):
        raise InvalidInputError(f"Duration must be finite, got {duration_seconds!r}")
    if duration_seconds < 0:
        raise InvalidInputError(f"Duration cannot be negative, got {duration_seconds!r}")
    return float(duration_seconds)


def credits_per_minute(processing_days: int) -> int:
    """Return the per-minute rate for a tier, falling back to the 21-day rate."""
    rate = TIER_RATES.get(processing_days)
    if rate is None:
        logger.warning(
            f"Unknown processing duration: {processing_days} days. "
            f"Using {FALLBACK_TIER}-day pricing ({TIER_RATES[FALLBACK_TIER]} credits/minute)."
        )
        return TIER_RATES[FALLBACK_TIER]
    return rate


def calculate_credits(duration_seconds: float, processing_days: int = FALLBACK_TIER) -> int:
    """
    Calculate the exact credits billed for processing a media file.

    Args:
        duration_seconds: Exact media duration in seconds (decimals allowed)
        processing_days: Processing tier (3, 7, 14 or 21 days)

    Returns:
        Credits to bill, floored to an integer
    """
    duration = validate_duration(duration_seconds)
    minutes = duration / 60
    rate = credits_per_minute(processing_days)
    total = minutes * rate

    logger.debug(f"{duration}s = {minutes:.3f} min x {rate} credits/min = {total:.3f} credits")

    return math.floor(total)


def display_minutes(duration_seconds: float) -> int:
    """Minutes shown to the user, rounded up. Never used for billing."""
    return math.ceil(validate_duration(duration_seconds) / 60)


def base_minutes(duration_seconds: float) -> int:
    """Whole minutes tracked alongside a job, rounded down."""
    return math.floor(validate_duration(duration_seconds) / 60)


def processing_multiplier(processing_days: int) -> int:
    return TIER_MULTIPLIERS.get(processing_days, 1)


def quote(duration_seconds: float, processing_days: int = FALLBACK_TIER) -> PriceQuote:
    """Build a full price quote for a file."""
    duration = validate_duration(duration_seconds)
    return PriceQuote(
        duration_seconds=duration,
        processing_days=processing_days,
        credits_per_minute=credits_per_minute(processing_days),
        credits=calculate_credits(duration, processing_days),
        display_minutes=display_minutes(duration),
        base_minutes=base_minutes(duration),
    )


def format_duration(seconds: float) -> str:
    """
    Format seconds as M:SS, or H:MM:SS for an hour or more.

    Args:
        seconds: Duration in seconds

    Returns:
        Formatted duration string
    """
    rounded = round(seconds)
    hours = rounded // 3600
    minutes = (rounded % 3600) // 60
    secs = rounded % 60

    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def format_file_size(size_bytes: int) -> str:
    """Human readable file size using 1024-based units."""
    if size_bytes == 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    value = float(size_bytes)
    i = 0
    while value >= 1024 and i < len(units) - 1:
        value /= 1024
        i += 1
    return f"{round(value, 2):g} {units[i]}"


def estimate_duration_from_size(size_bytes: int, mime_type: str = "") -> float:
    """
    Estimate a media duration from its size when metadata probing fails.

    The estimate is bounded to at least 10 seconds and at most one second
    per 100 KiB of file.
    """
    bitrate = DEFAULT_BITRATE
    for marker, value in AVERAGE_BITRATES.items():
        if marker in (mime_type or ""):
            bitrate = value
            break

    estimated = (size_bytes * 8) / bitrate
    bounded = max(10.0, min(estimated, size_bytes / (100 * 1024)))

    logger.info(f"Estimated duration for {format_file_size(size_bytes)} ({mime_type or 'unknown'}): {bounded:.2f}s")
    return bounded
