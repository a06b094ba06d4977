from datetime import datetime, timezone
from typing import Optional, Union

INTERVALS = (
    ('year', 31536000),
    ('month', 2592000),
    ('week', 604800),
    ('day', 86400),
    ('hour', 3600),
    ('min', 60),
    ('sec', 1)
)


def format_time_ago(timestamp: Union[datetime, int, float, None], now: Optional[datetime] = None) -> str:
    """
    Two most significant units of elapsed time, e.g. "3 hours 12 mins ago".
    Accepts datetimes (naive ones are taken as UTC) or unix timestamps.
    """
    if isinstance(timestamp, datetime):
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        timestamp = timestamp.timestamp()

    if not timestamp or timestamp <= 0:
        return "Never"

    now = now or datetime.now(timezone.utc)
    seconds = now.timestamp() - timestamp

    parts = []
    for name, secs in INTERVALS:
        value = int(seconds // secs)
        if value > 0:
            plural = 's' if value != 1 else ''
            parts.append(f"{value} {name}{plural}")
            seconds -= value * secs

        if len(parts) >= 2:
            break

    return " ".join(parts) + " ago" if parts else "Just now"
