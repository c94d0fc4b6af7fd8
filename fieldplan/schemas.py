from datetime import date
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, validator

from .projection import as_calendar_date


class OperatorOut(BaseModel):
    id: int
    name: str
    email: str | None = None


class CustomerOut(BaseModel):
    id: int
    name: str


class BranchOut(BaseModel):
    id: int
    name: str
    customer_id: int
    customer_name: str | None = None


class VisitOut(BaseModel):
    id: int
    customer_id: int
    branch_id: int | None = None
    operator_id: int
    visit_date: date
    visit_type: str
    status: str
    customer_name: str | None = None
    branch_name: str | None = None
    operator_name: str | None = None


class PlannedVisitOut(BaseModel):
    customer_id: int
    branch_id: int | None = None
    operator_id: int
    visit_date: date
    visit_type: str
    status: str = "planned"


class CalendarDayOut(BaseModel):
    day: date
    visits: list[VisitOut]


class CalendarOut(BaseModel):
    month: str
    operator_id: int | None = None
    visits_count: int
    days: list[CalendarDayOut]
    weeks: list[list[date | None]]


class OperatorDrop(BaseModel):
    kind: Literal["operator"]
    operator_id: int


class CustomerDrop(BaseModel):
    kind: Literal["customer"]
    customer_id: int


class BranchDrop(BaseModel):
    kind: Literal["branch"]
    branch_id: int
    customer_id: int


class VisitDrop(BaseModel):
    kind: Literal["visit"]
    visit_id: int


DropIntent = Annotated[
    Union[OperatorDrop, CustomerDrop, BranchDrop, VisitDrop],
    Field(discriminator="kind"),
]


class DropIn(BaseModel):
    intent: DropIntent
    target_date: date
    operator_id: int | None = None
    visit_type: str | None = Field(default=None, min_length=2, max_length=32)

    @validator("target_date", pre=True)
    @classmethod
    def strip_time_component(cls, value):
        if isinstance(value, (str, date)):
            return as_calendar_date(value)
        return value


class DropOut(BaseModel):
    action: Literal["context_update", "created", "moved"]
    operator_id: int | None = None
    visit: VisitOut | None = None
    from_date: date | None = None
    touched_months: list[str] = []


class TransferIn(BaseModel):
    operator_id: int | None = None
    year: int = Field(ge=1900, le=9998)
    month: int = Field(ge=1, le=12)
    confirm: bool = False
    dry_run: bool = False


class TransferOut(BaseModel):
    operator_id: int
    source_month: str
    target_month: str
    created_count: int
    dry_run: bool = False
    visits: list[PlannedVisitOut]
