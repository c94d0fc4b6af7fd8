import calendar
from datetime import date, datetime
from typing import Any, Iterable, NamedTuple


class Month(NamedTuple):
    year: int
    month: int

    @classmethod
    def of(cls, day: date) -> "Month":
        return cls(day.year, day.month)

    def first_day(self) -> date:
        return date(self.year, self.month, 1)

    def days_in_month(self) -> int:
        return calendar.monthrange(self.year, self.month)[1]

    def next(self) -> "Month":
        if self.month == 12:
            return Month(self.year + 1, 1)
        return Month(self.year, self.month + 1)

    def bounds(self) -> tuple[date, date]:
        """First day of the month and first day of the following month."""
        return self.first_day(), self.next().first_day()

    def days(self) -> list[date]:
        return [date(self.year, self.month, d) for d in range(1, self.days_in_month() + 1)]

    def label(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


def as_calendar_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        # Only the YYYY-MM-DD prefix matters, any time or offset is ignored.
        return date.fromisoformat(value.strip()[:10])
    raise TypeError(f"Unsupported visit_date value: {value!r}")


def visit_date_of(visit: Any) -> date:
    raw = visit.get("visit_date") if isinstance(visit, dict) else getattr(visit, "visit_date")
    return as_calendar_date(raw)


def project(visits: Iterable[Any], month: Month) -> dict[date, list[Any]]:
    buckets: dict[date, list[Any]] = {}
    for visit in visits:
        day = visit_date_of(visit)
        if (day.year, day.month) != (month.year, month.month):
            continue
        buckets.setdefault(day, []).append(visit)
    return buckets


def month_grid(month: Month) -> list[list[date | None]]:
    """Weeks of ``month``, Sunday first; days of neighbouring months are None."""
    cal = calendar.Calendar(firstweekday=calendar.SUNDAY)
    return [
        [date(month.year, month.month, d) if d else None for d in week]
        for week in cal.monthdayscalendar(month.year, month.month)
    ]
