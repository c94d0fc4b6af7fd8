from datetime import date

import structlog
from sqlalchemy.orm import Session

from . import directory, store
from .config import settings
from .errors import DataLossError, NotFoundError, StoreError, ValidationError
from .intents import (
    BranchRef,
    ContextUpdate,
    CustomerRef,
    ExistingVisitRef,
    Intent,
    OperatorRef,
    VisitCreated,
    VisitMoved,
    VisitMutation,
)
from .models import VISIT_TYPES, normalize_visit_type
from .projection import Month, as_calendar_date

log = structlog.get_logger("fieldplan.resolver")


def _resolve_visit_type(visit_type: str | None) -> str:
    resolved = normalize_visit_type(visit_type or settings.DEFAULT_VISIT_TYPE)
    if resolved not in VISIT_TYPES:
        raise ValidationError(f"Unknown visit type: {visit_type}")
    return resolved


def _require_active_operator(db: Session, operator_id: int | None):
    if operator_id is None:
        raise ValidationError("no operator selected")
    operator = directory.get_operator(db, operator_id)
    if operator is None:
        raise ValidationError(f"Operator {operator_id} not found")
    if not operator.is_active:
        raise ValidationError(f"Operator {operator.name} is not active")
    return operator


def _select_operator(db: Session, intent: OperatorRef) -> ContextUpdate:
    operator = _require_active_operator(db, intent.operator_id)
    log.info("operator_selected", operator_id=operator.id)
    return ContextUpdate(operator_id=operator.id)


def _create_visit(
    db: Session,
    intent: CustomerRef | BranchRef,
    target_date: date,
    operator_context: int | None,
    visit_type: str | None,
) -> VisitCreated:
    if operator_context is None:
        raise ValidationError("no operator selected")
    resolved_type = _resolve_visit_type(visit_type)
    operator = _require_active_operator(db, operator_context)

    customer_id = intent.customer_id
    branch_id = None
    if isinstance(intent, BranchRef):
        branch = directory.get_branch(db, intent.branch_id)
        if branch is None:
            raise ValidationError(f"Branch {intent.branch_id} not found")
        if branch.customer_id != intent.customer_id:
            raise ValidationError(
                f"Branch {branch.id} does not belong to customer {intent.customer_id}"
            )
        branch_id = branch.id
    if directory.get_customer(db, customer_id) is None:
        raise ValidationError(f"Customer {customer_id} not found")
    if not directory.assignment_scope(db, operator.id).allows(customer_id, branch_id):
        raise ValidationError(
            f"Operator {operator.name} is not assigned to customer {customer_id}"
            + (f" branch {branch_id}" if branch_id is not None else "")
        )

    (visit,) = store.insert_visits(
        db,
        [
            {
                "customer_id": customer_id,
                "branch_id": branch_id,
                "operator_id": operator.id,
                "visit_date": target_date,
                "visit_type": resolved_type,
                "status": "planned",
            }
        ],
    )
    log.info(
        "visit_created",
        visit_id=visit.id,
        customer_id=customer_id,
        branch_id=branch_id,
        operator_id=operator.id,
        visit_date=target_date.isoformat(),
    )
    return VisitCreated(visit=visit, touched_months=[Month.of(target_date)])


def _reinsert(db: Session, visit, target_date: date):
    fields = store.visit_fields(visit)
    store.delete_visit(db, visit.id)
    replacement = dict(fields, visit_date=target_date, status="planned")
    try:
        (moved,) = store.insert_visits(db, [replacement])
    except StoreError as exc:
        log.error("visit_lost_on_move", visit_id=visit.id, **{k: str(v) for k, v in fields.items()})
        raise DataLossError(
            f"Visit {visit.id} was deleted but could not be recreated: {exc.message}",
            lost_visit=fields,
        ) from exc
    return moved


def _move_visit(
    db: Session,
    intent: ExistingVisitRef,
    target_date: date,
    move_strategy: str | None,
) -> VisitMoved:
    visit = store.get_visit(db, intent.visit_id)
    if visit is None:
        raise NotFoundError(f"Visit {intent.visit_id} not found")

    from_date = as_calendar_date(visit.visit_date)
    if from_date == target_date:
        if visit.status == "planned":
            return VisitMoved(visit=visit, from_date=from_date, touched_months=[])
        visit = store.update_visit(db, visit.id, status="planned")
        log.info("visit_replanned", visit_id=visit.id, visit_date=from_date.isoformat())
        return VisitMoved(visit=visit, from_date=from_date, touched_months=[Month.of(from_date)])

    strategy = move_strategy or settings.MOVE_STRATEGY
    if strategy == "reinsert":
        moved = _reinsert(db, visit, target_date)
    else:
        moved = store.update_visit(db, visit.id, visit_date=target_date, status="planned")

    log.info(
        "visit_moved",
        visit_id=moved.id,
        source_visit_id=intent.visit_id,
        from_date=from_date.isoformat(),
        to_date=target_date.isoformat(),
        strategy=strategy,
    )
    touched = [Month.of(from_date)]
    if Month.of(target_date) not in touched:
        touched.append(Month.of(target_date))
    return VisitMoved(visit=moved, from_date=from_date, touched_months=touched)


def resolve(
    db: Session,
    intent: Intent,
    target_date,
    operator_context: int | None,
    *,
    visit_type: str | None = None,
    move_strategy: str | None = None,
) -> VisitMutation:
    """Apply one drop of ``intent`` onto ``target_date``.

    ``operator_context`` is the operator currently selected by the planner; it
    is only read, never changed here. Dropping an operator returns a
    :class:`ContextUpdate` that the caller should keep for following drops.
    ``visit_type`` is the default type for newly created visits; moved visits
    keep their own.
    """
    day = as_calendar_date(target_date)

    if isinstance(intent, OperatorRef):
        return _select_operator(db, intent)
    if isinstance(intent, (CustomerRef, BranchRef)):
        return _create_visit(db, intent, day, operator_context, visit_type)
    if isinstance(intent, ExistingVisitRef):
        return _move_visit(db, intent, day, move_strategy)
    raise ValidationError(f"Unsupported drop: {type(intent).__name__}")
