from datetime import datetime, timedelta
from typing import Optional
import pytz
from school_library.config import settings

# School-local timezone (Nepal by default)
LOCAL_TZ = pytz.timezone(settings.timezone)

def now_local() -> datetime:
    """Get current datetime in the school's timezone."""
    return datetime.now(LOCAL_TZ)

def to_local(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize a stored datetime to the school's timezone.
    Backends without timezone support hand back naive values holding local wall time."""
    if value is None:
        return None
    if value.tzinfo is None:
        return LOCAL_TZ.localize(value)
    return value.astimezone(LOCAL_TZ)

def days_after(base: datetime, days: int) -> datetime:
    """Return base shifted by whole days, keeping local wall time across DST changes."""
    shifted = to_local(base).replace(tzinfo=None) + timedelta(days=days)
    return LOCAL_TZ.localize(shifted)

def whole_days_between(start: datetime, end: datetime) -> int:
    """Calendar days from start to end in local time (negative if end is earlier)."""
    return (to_local(end).date() - to_local(start).date()).days
