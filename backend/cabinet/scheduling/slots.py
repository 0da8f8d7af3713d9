"""Default bookable times of a day, from the configured opening hours."""

from datetime import datetime, timedelta

from cabinet.config import settings

TIME_FORMAT = "%H:%M"


def parse_time(value: str) -> datetime:
    return datetime.strptime(value, TIME_FORMAT)


def _range(start: str, end: str, step_minutes: int) -> list[str]:
    current, last = parse_time(start), parse_time(end)
    times = []
    while current <= last:
        times.append(current.strftime(TIME_FORMAT))
        current += timedelta(minutes=step_minutes)
    return times


def default_slot_times() -> list[str]:
    step = settings.slot_step_minutes
    return _range(settings.slot_morning_start, settings.slot_morning_end, step) + _range(
        settings.slot_afternoon_start, settings.slot_afternoon_end, step
    )


def normalize_time(value: str) -> str:
    """'9:00' -> '09:00'. Raises ValueError on anything that is not a clock time."""
    return parse_time(value.strip()).strftime(TIME_FORMAT)
