"""Regular trading hours policy for US equities."""

from __future__ import annotations

from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

EXCHANGE_TZ = ZoneInfo("America/New_York")

MARKET_OPEN_MINUTE = 9 * 60 + 30  # 09:30
MARKET_CLOSE_MINUTE = 16 * 60  # 16:00
_MARKET_OPEN = time(9, 30)


def minutes_since_midnight(ts: datetime) -> int:
    """Exchange-local minutes since midnight for an aware timestamp."""
    local = ts.astimezone(EXCHANGE_TZ)
    return local.hour * 60 + local.minute


def is_regular_hours(ts: datetime) -> bool:
    """True when ``ts`` falls inside [09:30, 16:00] exchange time.

    Both ends are inclusive at minute resolution, so 16:00:59 still counts.
    Weekends are not considered here.
    """
    return MARKET_OPEN_MINUTE <= minutes_since_midnight(ts) <= MARKET_CLOSE_MINUTE


def most_recent_session_open(now: datetime | None = None) -> datetime:
    """Start of the latest regular session that has already opened, in UTC.

    Today's 09:30 open if it has passed on a weekday, otherwise 09:30 of the
    previous weekday. Holidays are not modelled.
    """
    now = now or datetime.now(timezone.utc)
    local_now = now.astimezone(EXCHANGE_TZ)
    day = local_now.date()

    open_today = datetime.combine(day, _MARKET_OPEN, tzinfo=EXCHANGE_TZ)
    if local_now < open_today or day.weekday() >= 5:
        day -= timedelta(days=1)
        while day.weekday() >= 5:
            day -= timedelta(days=1)

    return datetime.combine(day, _MARKET_OPEN, tzinfo=EXCHANGE_TZ).astimezone(timezone.utc)
