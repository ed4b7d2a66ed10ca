"""Rest-day calendar shared by the business-hours Lambdas.

A rest day is a Saturday, a Sunday, or a Japanese public holiday listed in
HOLIDAYS. The list covers 2024-2026 and has to be extended by hand.
"""
from datetime import date, datetime
from zoneinfo import ZoneInfo

DEFAULT_TIMEZONE = "Asia/Tokyo"

HOLIDAYS = frozenset(
    date.fromisoformat(day)
    for day in (
        # 2024
        "2024-01-01", "2024-01-08", "2024-02-11", "2024-02-12", "2024-02-23",
        "2024-03-20", "2024-04-29", "2024-05-03", "2024-05-04", "2024-05-05",
        "2024-05-06", "2024-07-15", "2024-08-11", "2024-08-12", "2024-09-16",
        "2024-09-22", "2024-09-23", "2024-10-14", "2024-11-03", "2024-11-04",
        "2024-11-23",
        # 2025
        "2025-01-01", "2025-01-13", "2025-02-11", "2025-02-23", "2025-02-24",
        "2025-03-20", "2025-04-29", "2025-05-03", "2025-05-04", "2025-05-05",
        "2025-05-06", "2025-07-21", "2025-08-11", "2025-09-15", "2025-09-23",
        "2025-10-13", "2025-11-03", "2025-11-23", "2025-11-24",
        # 2026
        "2026-01-01", "2026-01-12", "2026-02-11", "2026-02-23", "2026-03-20",
        "2026-04-29", "2026-05-03", "2026-05-04", "2026-05-05", "2026-05-06",
        "2026-07-20", "2026-08-11", "2026-09-21", "2026-09-22", "2026-09-23",
        "2026-10-12", "2026-11-03", "2026-11-23",
    )
)

START_ACTIONS = frozenset({"start", "up"})


def is_rest_day(day: date) -> bool:
    """Return True for weekends and listed public holidays."""
    if isinstance(day, datetime):
        day = day.date()
    # Monday=0 ... Saturday=5, Sunday=6
    return day.weekday() >= 5 or day in HOLIDAYS


def local_now(tz_name: str = DEFAULT_TIMEZONE) -> datetime:
    return datetime.now(ZoneInfo(tz_name))


def should_skip(action: str, today: date) -> bool:
    """Start/up triggers are suppressed on rest days; stop/down never is."""
    return action in START_ACTIONS and is_rest_day(today)
