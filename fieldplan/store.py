from datetime import date

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import NotFoundError, StoreError, ValidationError
from .models import Visit

log = structlog.get_logger("fieldplan.store")

VISIT_FIELDS = ("customer_id", "branch_id", "operator_id", "visit_date", "visit_type", "status")
UPDATABLE_FIELDS = {"visit_date", "visit_type", "status"}


def _fail(db: Session, action: str, exc: SQLAlchemyError) -> StoreError:
    db.rollback()
    log.error("store_error", action=action, error=str(exc))
    return StoreError(f"Visit store {action} failed: {exc}")


def visit_fields(visit: Visit) -> dict:
    return {name: getattr(visit, name) for name in VISIT_FIELDS}


def list_visits(
    db: Session,
    *,
    start: date,
    end: date,
    operator_id: int | None = None,
    customer_ids=None,
    branch_ids=None,
) -> list[Visit]:
    """Visits with ``start <= visit_date < end``, oldest first.

    Empty or missing ``customer_ids``/``branch_ids`` do not filter.
    """
    stmt = select(Visit).where(Visit.visit_date >= start, Visit.visit_date < end)
    if operator_id is not None:
        stmt = stmt.where(Visit.operator_id == operator_id)
    if customer_ids:
        stmt = stmt.where(Visit.customer_id.in_(sorted(customer_ids)))
    if branch_ids:
        stmt = stmt.where(Visit.branch_id.in_(sorted(branch_ids)))
    stmt = stmt.order_by(Visit.visit_date.asc(), Visit.id.asc())
    try:
        return list(db.execute(stmt).scalars().all())
    except SQLAlchemyError as exc:
        raise _fail(db, "list", exc) from exc


def get_visit(db: Session, visit_id: int) -> Visit | None:
    try:
        return db.get(Visit, visit_id)
    except SQLAlchemyError as exc:
        raise _fail(db, "get", exc) from exc


def insert_visits(db: Session, rows: list[dict]) -> list[Visit]:
    """Insert all rows in one transaction and return them with assigned ids."""
    if not rows:
        return []
    visits = [Visit(**{name: row.get(name) for name in VISIT_FIELDS}) for row in rows]
    try:
        db.add_all(visits)
        db.commit()
        for visit in visits:
            db.refresh(visit)
    except SQLAlchemyError as exc:
        raise _fail(db, "insert", exc) from exc
    return visits


def delete_visit(db: Session, visit_id: int) -> None:
    visit = get_visit(db, visit_id)
    if visit is None:
        raise NotFoundError(f"Visit {visit_id} not found")
    try:
        db.delete(visit)
        db.commit()
    except SQLAlchemyError as exc:
        raise _fail(db, "delete", exc) from exc
    log.info("visit_deleted", visit_id=visit_id)


def update_visit(db: Session, visit_id: int, **fields) -> Visit:
    """Apply ``fields`` with a single ``UPDATE ... WHERE id = :visit_id``."""
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValidationError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")
    if not fields:
        raise ValidationError("No fields to update")

    try:
        result = db.execute(update(Visit).where(Visit.id == visit_id).values(**fields))
        if result.rowcount == 0:
            db.rollback()
            raise NotFoundError(f"Visit {visit_id} not found")
        db.commit()
    except SQLAlchemyError as exc:
        raise _fail(db, "update", exc) from exc

    visit = get_visit(db, visit_id)
    db.refresh(visit)
    return visit
