"""Settlement period resolution.

Weekly settlements close Monday..Sunday weeks in the business timezone.
The resolver always returns the most recently *completed* week, so it can
be run any day of the following week and still produce the same period.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from app.core.config import settings


@dataclass(frozen=True)
class SettlementPeriod:
    """Inclusive calendar-date range covered by one settlement report."""

    start: date
    end: date

    @property
    def window_start(self) -> datetime:
        """Selector lower bound: ``start`` at 00:00:00."""
        return datetime.combine(self.start, time.min)

    @property
    def window_end(self) -> datetime:
        """Selector upper bound: ``end`` at 23:59:59.999999."""
        return datetime.combine(self.end, time.max)

    def as_dict(self) -> dict[str, str]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


def resolve_previous_week(
    now: Optional[datetime] = None,
    tz_name: Optional[str] = None,
) -> SettlementPeriod:
    """Return the most recently completed Monday..Sunday week.

    The end is the most recent Sunday strictly before today in the
    business timezone; on a Sunday that is the Sunday a week earlier,
    since today's week has not closed yet.

    Args:
        now: Current instant.  Naive values are taken as UTC.  Defaults to
            the wall clock.
        tz_name: IANA timezone name; defaults to ``settings.business_timezone``.
    """
    tz = ZoneInfo(tz_name or settings.business_timezone)
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    today = now.astimezone(tz).date()

    # date.weekday(): Monday=0 .. Sunday=6
    days_since_sunday = (today.weekday() + 1) % 7
    if days_since_sunday == 0:
        days_since_sunday = 7

    last_sunday = today - timedelta(days=days_since_sunday)
    last_monday = last_sunday - timedelta(days=6)
    return SettlementPeriod(start=last_monday, end=last_sunday)
