from typing import NamedTuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .models import Branch, Customer, Operator, OperatorBranch, OperatorCustomer


class AssignmentScope(NamedTuple):
    customer_ids: frozenset
    branch_ids: frozenset

    def allows(self, customer_id: int, branch_id: int | None) -> bool:
        if self.customer_ids and customer_id not in self.customer_ids:
            return False
        if self.branch_ids and branch_id not in self.branch_ids:
            return False
        return True


def _search_clause(column, search: str | None):
    term = (search or "").strip().lower()
    if not term:
        return None
    return func.lower(column).contains(term, autoescape=True)


def assignment_scope(db: Session, operator_id: int) -> AssignmentScope:
    customer_ids = db.execute(
        select(OperatorCustomer.customer_id).where(OperatorCustomer.operator_id == operator_id)
    ).scalars().all()
    branch_ids = db.execute(
        select(OperatorBranch.branch_id).where(OperatorBranch.operator_id == operator_id)
    ).scalars().all()
    return AssignmentScope(frozenset(customer_ids), frozenset(branch_ids))


def list_active_operators(db: Session) -> list[Operator]:
    stmt = select(Operator).where(Operator.is_active.is_(True)).order_by(Operator.name.asc(), Operator.id.asc())
    return list(db.execute(stmt).scalars().all())


def list_customers(
    db: Session,
    search: str | None = None,
    operator_id: int | None = None,
) -> list[Customer]:
    stmt = select(Customer).order_by(Customer.name.asc(), Customer.id.asc())
    clause = _search_clause(Customer.name, search)
    if clause is not None:
        stmt = stmt.where(clause)
    if operator_id is not None:
        scope = assignment_scope(db, operator_id)
        if scope.customer_ids:
            stmt = stmt.where(Customer.id.in_(sorted(scope.customer_ids)))
    return list(db.execute(stmt).scalars().all())


def list_branches(
    db: Session,
    customer_id: int | None = None,
    search: str | None = None,
    operator_id: int | None = None,
) -> list[Branch]:
    stmt = select(Branch).order_by(Branch.name.asc(), Branch.id.asc())
    if customer_id is not None:
        stmt = stmt.where(Branch.customer_id == customer_id)
    clause = _search_clause(Branch.name, search)
    if clause is not None:
        stmt = stmt.where(clause)
    if operator_id is not None:
        scope = assignment_scope(db, operator_id)
        if scope.customer_ids:
            stmt = stmt.where(Branch.customer_id.in_(sorted(scope.customer_ids)))
        if scope.branch_ids:
            stmt = stmt.where(Branch.id.in_(sorted(scope.branch_ids)))
    return list(db.execute(stmt).scalars().all())


def get_operator(db: Session, operator_id: int) -> Operator | None:
    return db.get(Operator, operator_id)


def get_customer(db: Session, customer_id: int) -> Customer | None:
    return db.get(Customer, customer_id)


def get_branch(db: Session, branch_id: int) -> Branch | None:
    return db.get(Branch, branch_id)
