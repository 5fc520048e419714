"""Business clock — fixed-offset civil timezone for "today" / "tomorrow".

The reminder job works on business days in one configured timezone
(Asia/Kolkata by default). The UTC offset is supplied explicitly, so the
result never depends on the host's local time. No daylight-saving rules
are applied.

All instants handed back are timezone-aware UTC datetimes, which is what
the database columns store.
"""

import re
from datetime import datetime, time, timedelta, timezone

_OFFSET_RE = re.compile(r"^([+-])(\d{2}):?(\d{2})$")


def parse_utc_offset(value):
    """Parse "+05:30" / "-0800" into a timedelta.

    Raises:
        ValueError: If the string is not a valid offset.
    """
    match = _OFFSET_RE.match((value or "").strip())
    if not match:
        raise ValueError(f"Invalid UTC offset '{value}'. Expected e.g. '+05:30'.")
    sign, hours, minutes = match.groups()
    delta = timedelta(hours=int(hours), minutes=int(minutes))
    if delta >= timedelta(hours=24):
        raise ValueError(f"UTC offset '{value}' is out of range.")
    return -delta if sign == "-" else delta


def as_utc(value):
    """Normalise a datetime to aware UTC. Naive values are taken as UTC.

    SQLite hands back naive datetimes even for timezone=True columns.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class BusinessClock:
    """Converts business-local calendar days into absolute UTC ranges."""

    def __init__(self, tz_name="Asia/Kolkata", utc_offset="+05:30"):
        self.tz_name = tz_name
        self.offset = parse_utc_offset(utc_offset)
        self.tz = timezone(self.offset, tz_name)

    @classmethod
    def from_config(cls, config):
        return cls(
            tz_name=config.get("BUSINESS_TIMEZONE", "Asia/Kolkata"),
            utc_offset=config.get("BUSINESS_UTC_OFFSET", "+05:30"),
        )

    def now(self):
        return datetime.now(timezone.utc).astimezone(self.tz)

    def to_local(self, value):
        return as_utc(value).astimezone(self.tz)

    def day_window(self, day):
        """First and last instant (inclusive) of a business-local date, in UTC."""
        start_local = datetime.combine(day, time.min, tzinfo=self.tz)
        end_local = datetime.combine(day, time.max, tzinfo=self.tz)
        return (
            start_local.astimezone(timezone.utc),
            end_local.astimezone(timezone.utc),
        )

    def tomorrow_window(self, now=None):
        """UTC bounds of the business day after the one containing `now`."""
        local_now = self.to_local(now) if now is not None else self.now()
        return self.day_window(local_now.date() + timedelta(days=1))

    def format_local(self, value):
        """e.g. "Tuesday, June 10, 2025 9:00 AM"."""
        local = self.to_local(value)
        hour = local.hour % 12 or 12
        return (
            f"{local.strftime('%A, %B')} {local.day}, {local.year} "
            f"{hour}:{local.strftime('%M %p')}"
        )

    def __repr__(self):
        return f"<BusinessClock {self.tz_name} {self.tz.utcoffset(None)}>"
