"""
Timezone utilities for the Smart ESS controller.

Rate windows are defined in local wall-clock time while occurrences are
compared on a single absolute (UTC) timeline. This module owns the configured
local timezone and the single local -> UTC conversion.
"""

import pytz
from datetime import datetime, tzinfo
from typing import Optional
import logging

log = logging.getLogger(__name__)

UTC = pytz.UTC
CONFIGURED_TZ = None


def initialize_timezones(configured_timezone: str = "UTC"):
    """
    Initialize the configured timezone.
    This should be called once at application startup.

    Args:
        configured_timezone: The timezone string from config (e.g., "Europe/London")
    """
    global CONFIGURED_TZ
    try:
        CONFIGURED_TZ = pytz.timezone(configured_timezone)
    except pytz.UnknownTimeZoneError:
        log.error(f"Unknown timezone '{configured_timezone}', falling back to UTC")
        CONFIGURED_TZ = UTC
        return CONFIGURED_TZ
    log.info(f"Configured timezone set to: {configured_timezone}")
    return CONFIGURED_TZ


def get_configured_timezone() -> tzinfo:
    """Get the configured timezone, UTC until initialize_timezones() runs."""
    if CONFIGURED_TZ is None:
        return UTC
    return CONFIGURED_TZ


def resolve_timezone(tz: Optional[tzinfo] = None) -> tzinfo:
    return tz if tz is not None else get_configured_timezone()


def now_utc() -> datetime:
    """Get current time in UTC."""
    return datetime.now(UTC)


def localize(naive: datetime, tz: Optional[tzinfo] = None) -> datetime:
    """
    Attach a timezone to a naive local datetime.

    pytz zones must be attached with localize() so the correct UTC offset for
    that date is picked; other tzinfo implementations are attached directly.
    """
    tz = resolve_timezone(tz)
    if naive.tzinfo is not None:
        raise ValueError("localize() expects a naive datetime")
    if hasattr(tz, "localize"):
        return tz.localize(naive)
    return naive.replace(tzinfo=tz)


def ensure_aware(dt: datetime, tz: Optional[tzinfo] = None) -> datetime:
    """Naive datetimes are taken to be local time in the configured timezone."""
    if dt.tzinfo is None:
        return localize(dt, tz)
    return dt


def to_configured(dt: datetime, tz: Optional[tzinfo] = None) -> datetime:
    """Convert any datetime to the configured local timezone."""
    return ensure_aware(dt, tz).astimezone(resolve_timezone(tz))


def to_utc(dt: datetime, tz: Optional[tzinfo] = None) -> datetime:
    return ensure_aware(dt, tz).astimezone(UTC)
