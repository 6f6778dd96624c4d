"""
Challenge date utilities.

The ladder sheet stores challenge start times as local display strings such as
``3/14, 7:05 PM EDT`` with no year. These helpers render that format, parse it
back (inferring the year), and derive fast-store TTLs from it.
"""

import re
from datetime import datetime, timedelta
from typing import Optional, Tuple

import pytz

from ladder_bot.config import Config
from ladder_bot.constants import ChallengeTiming
from ladder_bot.utils.logger import setup_logger

logger = setup_logger(__name__)

TIMEZONE_SUFFIX = re.compile(r'\s+([A-Za-z]{3,4})$')

# M/D, h:mm A  or  M/D/YYYY, h:mm A
DATE_PATTERN = re.compile(
    r'^(\d{1,2})/(\d{1,2})(?:/(\d{4}))?,\s*(\d{1,2}):(\d{2})\s*([AaPp][Mm])$'
)


def get_ladder_timezone():
    return pytz.timezone(Config.LADDER_TIMEZONE)


def ladder_now() -> datetime:
    """Current time in the ladder time zone."""
    return datetime.now(get_ladder_timezone())


def split_timezone_suffix(text: str) -> Tuple[str, str]:
    """Split ``'3/14, 7:05 PM EDT'`` into ``('3/14, 7:05 PM', 'EDT')``."""
    text = (text or '').strip()
    match = TIMEZONE_SUFFIX.search(text)
    if not match:
        return text, ''
    return text[:match.start()].strip(), match.group(1).upper()


def format_challenge_date(moment: datetime, suffix: Optional[str] = None) -> str:
    """
    Render a datetime as ``M/D, h:mm AM TZ`` in the ladder time zone.

    Args:
        moment: Aware datetime
        suffix: Timezone abbreviation to append; defaults to the zone's own
            abbreviation at that moment. Pass ``''`` to omit it.
    """
    local = moment.astimezone(get_ladder_timezone())
    hour = local.hour % 12 or 12
    meridiem = 'AM' if local.hour < 12 else 'PM'
    text = f"{local.month}/{local.day}, {hour}:{local.minute:02d} {meridiem}"
    if suffix is None:
        suffix = local.strftime('%Z')
    return f"{text} {suffix}" if suffix else text


def _localize(tz, year: int, month: int, day: int, hour: int, minute: int) -> Optional[datetime]:
    try:
        naive = datetime(year, month, day, hour, minute)
    except ValueError:
        return None
    return tz.localize(naive)


def parse_challenge_date(text: str, now: Optional[datetime] = None) -> Optional[datetime]:
    """
    Parse a ladder challenge date into an aware datetime.

    Strings without a year get the most recent of last, this or next year
    that is no further ahead than ``FUTURE_DATE_GRACE_DAYS``. A December
    challenge read in January belongs to last year; a January date read on
    New Year's Eve (an extension) belongs to next year.

    Returns:
        Aware datetime in the ladder time zone, or None if the text matches no
        accepted format
    """
    if not text or not text.strip():
        return None

    clean, _ = split_timezone_suffix(text)
    match = DATE_PATTERN.match(clean)
    if not match:
        return None

    month, day = int(match.group(1)), int(match.group(2))
    hour, minute = int(match.group(4)), int(match.group(5))
    if not 1 <= hour <= 12 or minute > 59:
        return None
    hour = hour % 12 + (12 if match.group(6).upper() == 'PM' else 0)

    tz = get_ladder_timezone()
    if match.group(3):
        return _localize(tz, int(match.group(3)), month, day, hour, minute)

    now_local = (now or ladder_now()).astimezone(tz)
    latest = now_local + timedelta(days=ChallengeTiming.FUTURE_DATE_GRACE_DAYS)
    candidates = [
        _localize(tz, year, month, day, hour, minute)
        for year in (now_local.year - 1, now_local.year, now_local.year + 1)
    ]
    # Most recent reading that is not further ahead than the grace window
    eligible = [c for c in candidates if c is not None and c <= latest]
    return max(eligible) if eligible else None


def add_days_keep_wall_clock(moment: datetime, days: int) -> datetime:
    """Add whole days keeping the local wall-clock time across DST changes."""
    tz = get_ladder_timezone()
    local = moment.astimezone(tz)
    return tz.localize(local.replace(tzinfo=None) + timedelta(days=days))


def challenge_expiry(start: datetime) -> datetime:
    return start + timedelta(days=ChallengeTiming.CHALLENGE_DAYS)


def ttl_until(expiry: datetime, now: Optional[datetime] = None) -> int:
    """Seconds until ``expiry``, never below the minimum record TTL."""
    now = now or ladder_now()
    return max(ChallengeTiming.MIN_TTL, int((expiry - now).total_seconds()))


def ttl_from_challenge_date(text: str, now: Optional[datetime] = None) -> int:
    """
    Fast-store TTL for a challenge that started at the given ladder date.

    Unparseable dates fall back to the full challenge lifetime and are logged
    as a data-quality warning.
    """
    start = parse_challenge_date(text, now)
    if start is None:
        logger.warning(
            f"Could not parse challenge date {text!r}; using default TTL "
            f"of {ChallengeTiming.CHALLENGE_TTL}s"
        )
        return ChallengeTiming.CHALLENGE_TTL
    return ttl_until(challenge_expiry(start), now)


def warning_ttl(challenge_ttl: int) -> int:
    """TTL for the warning record: 24 hours before the challenge expires."""
    return max(ChallengeTiming.MIN_TTL, challenge_ttl - ChallengeTiming.WARNING_LEAD)


def challenge_age_days(start: datetime, now: Optional[datetime] = None) -> float:
    now = now or ladder_now()
    return (now - start).total_seconds() / 86400


def is_challenge_expired(start: datetime, now: Optional[datetime] = None) -> bool:
    return challenge_age_days(start, now) > ChallengeTiming.CHALLENGE_DAYS
