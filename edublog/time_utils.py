import logging
import os
from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

_LOCAL_TZ = None


def utc_now():
    """Naive UTC timestamp; the one clock every stored timestamp comes from."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _resolve_local_tz():
    global _LOCAL_TZ
    if _LOCAL_TZ is not None:
        return _LOCAL_TZ
    tz_name = os.environ.get("APP_TIMEZONE") or os.environ.get("TZ")
    if tz_name:
        try:
            _LOCAL_TZ = ZoneInfo(tz_name)
            return _LOCAL_TZ
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Unknown timezone %r, falling back to system time", tz_name)
    _LOCAL_TZ = datetime.now().astimezone().tzinfo
    return _LOCAL_TZ


def to_local(value):
    """Convert a stored naive-UTC timestamp to local time for display."""
    if value is None:
        return None
    tz = _resolve_local_tz()
    if not tz:
        return value
    return value.replace(tzinfo=timezone.utc).astimezone(tz).replace(tzinfo=None)


def member_since(value):
    local = to_local(value)
    return local.strftime("%B %Y") if local else ""
