from datetime import date, datetime, time
from typing import Union


def parse_clock(value: Union[str, time]) -> time:
    """Parse an ``HH:MM`` or ``HH:MM:SS`` wall-clock string."""
    if isinstance(value, time):
        return value.replace(tzinfo=None)
    text = value.strip()
    for fmt in ("%H:%M", "%H:%M:%S"):
        try:
            return datetime.strptime(text, fmt).time()
        except ValueError:
            continue
    raise ValueError(f"Invalid time of day: {value!r}")


def format_clock(value: time) -> str:
    return value.strftime("%H:%M")


def format_12h(value: time) -> str:
    """9:00 AM style label without a leading zero on the hour."""
    hour = value.hour % 12 or 12
    suffix = "AM" if value.hour < 12 else "PM"
    return f"{hour}:{value.minute:02d} {suffix}"


def slot_label(start: time, end: time) -> str:
    return f"{format_12h(start)} - {format_12h(end)}"


def minutes_of_day(value: time) -> int:
    return value.hour * 60 + value.minute


def clock_from_minutes(minutes: int) -> time:
    return time(hour=minutes // 60, minute=minutes % 60)


def remote_weekday(day: date) -> int:
    """Weekday as the marketplace API encodes it: 0 = Sunday ... 6 = Saturday."""
    return (day.weekday() + 1) % 7
