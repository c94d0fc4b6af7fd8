from dataclasses import dataclass, field
from datetime import date

import structlog
from sqlalchemy.orm import Session

from . import store
from .errors import PlanningInvariantError, ValidationError
from .projection import Month, project

log = structlog.get_logger("fieldplan.transfer")


def day_of_week(day: date) -> int:
    """0 = Sunday ... 6 = Saturday."""
    return (day.weekday() + 1) % 7


def week_of_month_index(day: date) -> int:
    return (day.day - 1) // 7


def weekday_buckets(month: Month) -> dict[int, list[date]]:
    buckets: dict[int, list[date]] = {dow: [] for dow in range(7)}
    for day in month.days():
        buckets[day_of_week(day)].append(day)
    return buckets


def map_to_target(source_day: date, target_buckets: dict[int, list[date]]) -> date:
    bucket = target_buckets.get(day_of_week(source_day)) or []
    if not bucket:
        raise PlanningInvariantError(
            f"No date in the target month shares the weekday of {source_day.isoformat()}"
        )
    index = week_of_month_index(source_day)
    return bucket[min(index, len(bucket) - 1)]


@dataclass
class TransferPlan:
    operator_id: int
    source_month: Month
    target_month: Month
    rows: list[dict] = field(default_factory=list)


@dataclass
class TransferResult:
    operator_id: int
    source_month: Month
    target_month: Month
    created_count: int
    visits: list = field(default_factory=list)


def plan_transfer(visits, operator_id: int, source_month: Month) -> TransferPlan:
    """Compute the new visit rows without touching the store.

    ``visits`` may contain anything; only the operator's visits inside
    ``source_month`` are planned, in input order within each weekday.
    """
    target_month = source_month.next()
    target_buckets = weekday_buckets(target_month)

    by_weekday: dict[int, list] = {}
    for day, day_visits in project(visits, source_month).items():
        for visit in day_visits:
            if visit.operator_id != operator_id:
                continue
            by_weekday.setdefault(day_of_week(day), []).append((day, visit))

    plan = TransferPlan(operator_id=operator_id, source_month=source_month, target_month=target_month)
    for weekday in sorted(by_weekday):
        for day, visit in by_weekday[weekday]:
            plan.rows.append(
                {
                    "customer_id": visit.customer_id,
                    "branch_id": visit.branch_id,
                    "operator_id": visit.operator_id,
                    "visit_date": map_to_target(day, target_buckets),
                    "visit_type": visit.visit_type,
                    "status": "planned",
                }
            )
    return plan


def transfer(
    db: Session,
    operator_id: int | None,
    source_month: Month,
    *,
    dry_run: bool = False,
) -> TransferResult:
    if not operator_id:
        raise ValidationError("no operator selected")

    start, end = source_month.bounds()
    source = store.list_visits(db, start=start, end=end, operator_id=operator_id)
    plan = plan_transfer(source, operator_id, source_month)

    if dry_run:
        return TransferResult(
            operator_id=operator_id,
            source_month=source_month,
            target_month=plan.target_month,
            created_count=0,
            visits=plan.rows,
        )

    created = store.insert_visits(db, plan.rows)
    log.info(
        "month_transfer_completed",
        operator_id=operator_id,
        source_month=source_month.label(),
        target_month=plan.target_month.label(),
        source_count=len(source),
        created_count=len(created),
    )
    return TransferResult(
        operator_id=operator_id,
        source_month=source_month,
        target_month=plan.target_month,
        created_count=len(created),
        visits=created,
    )
