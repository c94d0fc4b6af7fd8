from dataclasses import dataclass, field
from datetime import date
from typing import Union

from .models import Visit
from .projection import Month


@dataclass(frozen=True)
class OperatorRef:
    operator_id: int


@dataclass(frozen=True)
class CustomerRef:
    customer_id: int


@dataclass(frozen=True)
class BranchRef:
    branch_id: int
    customer_id: int


@dataclass(frozen=True)
class ExistingVisitRef:
    visit_id: int


Intent = Union[OperatorRef, CustomerRef, BranchRef, ExistingVisitRef]


@dataclass
class ContextUpdate:
    """The operator context to use for following drops. Nothing was written."""

    operator_id: int
    touched_months: list[Month] = field(default_factory=list)


@dataclass
class VisitCreated:
    visit: Visit
    touched_months: list[Month]


@dataclass
class VisitMoved:
    visit: Visit
    from_date: date
    touched_months: list[Month]


VisitMutation = Union[ContextUpdate, VisitCreated, VisitMoved]
