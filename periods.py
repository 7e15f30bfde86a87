from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date


def resolve_window(
    start: Optional[str],
    days: Optional[int],
    *,
    today: Optional[date] = None,
) -> Period:
    today = today or date.today()
    start_date = date.fromisoformat(start) if start else today
    span = 14 if days is None else days
    if span < 0:
        raise ValueError("Window length must not be negative")
    return Period("window", start_date, start_date + timedelta(days=span))
