"""Billing-cycle calendar arithmetic.

Everything here is pure. Dates are ``datetime.date`` values and months are
``"YYYY-MM"`` keys. Bill, closing and due days are always clamped to 1..28 so
every computed date exists in every month, February included.
"""

import re
from datetime import date

MAX_BILLING_DAY = 28

_MONTH_KEY_RE = re.compile(r"^(\d{4})-(\d{2})$")


def day_clamp(day: int) -> int:
    if day < 1:
        return 1
    if day > MAX_BILLING_DAY:
        return MAX_BILLING_DAY
    return day


def month_key(d: date) -> str:
    return f"{d.year:04d}-{d.month:02d}"


def parse_month_key(key: str) -> tuple[int, int]:
    match = _MONTH_KEY_RE.match(key or "")
    if not match:
        raise ValueError(f"Invalid month key: {key!r}")
    year, month = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12:
        raise ValueError(f"Invalid month key: {key!r}")
    return year, month


def _shift(year: int, month: int, months: int) -> tuple[int, int]:
    total_months = year * 12 + (month - 1) + months
    return total_months // 12, total_months % 12 + 1


def shift_month_key(key: str, months: int) -> str:
    year, month = _shift(*parse_month_key(key), months)
    return f"{year:04d}-{month:02d}"


def shift_date_months(d: date, months: int) -> date:
    """Move ``d`` by whole months, keeping the day but never past the 28th."""
    year, month = _shift(d.year, d.month, months)
    return date(year, month, min(d.day, MAX_BILLING_DAY))


def month_bounds(key: str) -> tuple[date, date]:
    year, month = parse_month_key(key)
    first = date(year, month, 1)
    next_year, next_month = _shift(year, month, 1)
    return first, date(next_year, next_month, 1) - date.resolution


def _on_day(key: str, day: int) -> date:
    year, month = parse_month_key(key)
    return date(year, month, day_clamp(day))


def statement_month(purchase_date: date, closing_day: int) -> str:
    """Statement (invoice) month a card purchase belongs to.

    A purchase on the closing day itself still lands in the current cycle;
    only purchases strictly after it roll into the next one.
    """
    current = month_key(purchase_date)
    if purchase_date.day > day_clamp(closing_day):
        return shift_month_key(current, 1)
    return current


def due_date(statement: str, due_day: int, offset_months: int) -> date:
    return _on_day(shift_month_key(statement, offset_months), due_day)


def due_date_for_bill(key: str, due_day: int) -> date:
    return _on_day(key, due_day)


def charge_date_for_statement_month(
    target_statement: str, charge_day: int, closing_day: int
) -> date:
    """Purchase date whose statement month is ``target_statement``.

    Inverse of :func:`statement_month` for the same ``closing_day``: a charge
    day after the closing day has to happen in the previous month.
    """
    if day_clamp(charge_day) > day_clamp(closing_day):
        return _on_day(shift_month_key(target_statement, -1), charge_day)
    return _on_day(target_statement, charge_day)
