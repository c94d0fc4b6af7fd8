from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from . import directory, store
from .config import settings
from .db import get_db
from .errors import DataLossError, SchedulingError
from .intents import (
    BranchRef,
    ContextUpdate,
    CustomerRef,
    ExistingVisitRef,
    OperatorRef,
    VisitCreated,
)
from .models import Visit
from .projection import Month, month_grid, project
from .resolver import resolve
from .schemas import (
    BranchDrop,
    BranchOut,
    CalendarDayOut,
    CalendarOut,
    CustomerDrop,
    CustomerOut,
    DropIn,
    DropOut,
    OperatorDrop,
    OperatorOut,
    PlannedVisitOut,
    TransferIn,
    TransferOut,
    VisitOut,
)
from .transfer import transfer

router = APIRouter(prefix="/api")


async def scheduling_error_handler(request: Request, exc: SchedulingError):
    content = {"detail": exc.message}
    if isinstance(exc, DataLossError):
        content["lost_visit"] = {
            k: (v.isoformat() if hasattr(v, "isoformat") else v) for k, v in exc.lost_visit.items()
        }
    return JSONResponse(status_code=exc.status_code, content=content)


def _to_visit_out(v: Visit) -> VisitOut:
    return VisitOut(
        id=v.id,
        customer_id=v.customer_id,
        branch_id=v.branch_id,
        operator_id=v.operator_id,
        visit_date=v.visit_date,
        visit_type=v.visit_type,
        status=v.status,
        customer_name=v.customer.name if v.customer else None,
        branch_name=v.branch.name if v.branch else None,
        operator_name=v.operator.name if v.operator else None,
    )


def _to_intent(payload):
    if isinstance(payload, OperatorDrop):
        return OperatorRef(operator_id=payload.operator_id)
    if isinstance(payload, CustomerDrop):
        return CustomerRef(customer_id=payload.customer_id)
    if isinstance(payload, BranchDrop):
        return BranchRef(branch_id=payload.branch_id, customer_id=payload.customer_id)
    return ExistingVisitRef(visit_id=payload.visit_id)


@router.get("/operators", response_model=List[OperatorOut])
def get_operators(db: Session = Depends(get_db)):
    return [OperatorOut(id=o.id, name=o.name, email=o.email) for o in directory.list_active_operators(db)]


@router.get("/customers", response_model=List[CustomerOut])
def get_customers(
    search: Optional[str] = Query(None, max_length=120),
    operator_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
):
    rows = directory.list_customers(db, search=search, operator_id=operator_id)
    return [CustomerOut(id=c.id, name=c.name) for c in rows]


@router.get("/branches", response_model=List[BranchOut])
def get_branches(
    customer_id: Optional[int] = Query(None),
    search: Optional[str] = Query(None, max_length=120),
    operator_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
):
    rows = directory.list_branches(db, customer_id=customer_id, search=search, operator_id=operator_id)
    return [
        BranchOut(
            id=b.id,
            name=b.name,
            customer_id=b.customer_id,
            customer_name=b.customer.name if b.customer else None,
        )
        for b in rows
    ]


@router.get("/calendar", response_model=CalendarOut)
def get_calendar(
    year: int = Query(..., ge=1900, le=9998),
    month: int = Query(..., ge=1, le=12),
    operator_id: Optional[int] = Query(None),
    assigned_only: bool = Query(False),
    db: Session = Depends(get_db),
):
    if assigned_only and operator_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="assigned_only needs operator_id")
    current = Month(year, month)
    start, end = current.bounds()
    customer_ids = branch_ids = None
    if assigned_only:
        customer_ids, branch_ids = directory.assignment_scope(db, operator_id)
    visits = store.list_visits(
        db,
        start=start,
        end=end,
        operator_id=operator_id,
        customer_ids=customer_ids,
        branch_ids=branch_ids,
    )
    buckets = project(visits, current)
    return CalendarOut(
        month=current.label(),
        operator_id=operator_id,
        visits_count=sum(len(v) for v in buckets.values()),
        days=[
            CalendarDayOut(day=day, visits=[_to_visit_out(v) for v in buckets[day]])
            for day in sorted(buckets)
        ],
        weeks=month_grid(current),
    )


@router.post("/calendar/drop", response_model=DropOut)
def drop_on_day(payload: DropIn, db: Session = Depends(get_db)):
    result = resolve(
        db,
        _to_intent(payload.intent),
        payload.target_date,
        payload.operator_id,
        visit_type=payload.visit_type,
    )
    if isinstance(result, ContextUpdate):
        return DropOut(action="context_update", operator_id=result.operator_id)

    touched = [m.label() for m in result.touched_months]
    if isinstance(result, VisitCreated):
        return DropOut(
            action="created",
            operator_id=result.visit.operator_id,
            visit=_to_visit_out(result.visit),
            touched_months=touched,
        )
    return DropOut(
        action="moved",
        operator_id=result.visit.operator_id,
        visit=_to_visit_out(result.visit),
        from_date=result.from_date,
        touched_months=touched,
    )


@router.post("/calendar/transfer", response_model=TransferOut)
def transfer_to_next_month(payload: TransferIn, db: Session = Depends(get_db)):
    if settings.TRANSFER_REQUIRE_CONFIRM and not payload.dry_run and not payload.confirm:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Transfer duplicates visits into the next month; resend with confirm=true",
        )

    result = transfer(
        db,
        payload.operator_id,
        Month(payload.year, payload.month),
        dry_run=payload.dry_run,
    )
    if payload.dry_run:
        planned = [PlannedVisitOut(**row) for row in result.visits]
    else:
        planned = [
            PlannedVisitOut(
                customer_id=v.customer_id,
                branch_id=v.branch_id,
                operator_id=v.operator_id,
                visit_date=v.visit_date,
                visit_type=v.visit_type,
                status=v.status,
            )
            for v in result.visits
        ]
    return TransferOut(
        operator_id=result.operator_id,
        source_month=result.source_month.label(),
        target_month=result.target_month.label(),
        created_count=result.created_count,
        dry_run=payload.dry_run,
        visits=planned,
    )


@router.delete("/visits/{visit_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_visit(visit_id: int, db: Session = Depends(get_db)):
    store.delete_visit(db, visit_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


def register_exception_handlers(app) -> None:
    app.add_exception_handler(SchedulingError, scheduling_error_handler)
