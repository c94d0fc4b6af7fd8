from datetime import date, datetime, timezone

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base

VISIT_STATUSES = {"planned", "completed", "cancelled"}

VISIT_TYPES = {
    "first",
    "paid",
    "emergency",
    "technical",
    "periodic",
    "workplace",
    "observation",
    "final",
}
# Codes used by the legacy planning screens.
VISIT_TYPE_ALIASES = {
    "ilk": "first",
    "ucretli": "paid",
    "acil": "emergency",
    "teknik": "technical",
    "periyodik": "periodic",
    "isyeri": "workplace",
    "gozlem": "observation",
    "son": "final",
}


def normalize_visit_type(value: str | None) -> str:
    raw = (value or "").strip().lower()
    return VISIT_TYPE_ALIASES.get(raw, raw)


def utc_now_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Customer(Base):
    __tablename__ = "customers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(160), index=True)

    branches = relationship("Branch", back_populates="customer")


class Branch(Base):
    __tablename__ = "branches"
    __table_args__ = (UniqueConstraint("customer_id", "name", name="uq_branches_customer_name"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    customer_id: Mapped[int] = mapped_column(ForeignKey("customers.id"), index=True)
    name: Mapped[str] = mapped_column(String(160), index=True)

    customer = relationship("Customer", back_populates="branches")


class Operator(Base):
    __tablename__ = "operators"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(120), index=True)
    email: Mapped[str | None] = mapped_column(String(200), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)

    customer_assignments = relationship("OperatorCustomer", cascade="all, delete-orphan")
    branch_assignments = relationship("OperatorBranch", cascade="all, delete-orphan")


# An operator with no rows in a table below is not restricted on that axis.
class OperatorCustomer(Base):
    __tablename__ = "operator_customers"
    __table_args__ = (UniqueConstraint("operator_id", "customer_id", name="uq_operator_customers"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    operator_id: Mapped[int] = mapped_column(ForeignKey("operators.id"), index=True)
    customer_id: Mapped[int] = mapped_column(ForeignKey("customers.id"), index=True)


class OperatorBranch(Base):
    __tablename__ = "operator_branches"
    __table_args__ = (UniqueConstraint("operator_id", "branch_id", name="uq_operator_branches"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    operator_id: Mapped[int] = mapped_column(ForeignKey("operators.id"), index=True)
    branch_id: Mapped[int] = mapped_column(ForeignKey("branches.id"), index=True)


class Visit(Base):
    __tablename__ = "visits"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    customer_id: Mapped[int] = mapped_column(ForeignKey("customers.id"), index=True)
    branch_id: Mapped[int | None] = mapped_column(ForeignKey("branches.id"), nullable=True, index=True)
    operator_id: Mapped[int] = mapped_column(ForeignKey("operators.id"), index=True)
    visit_date: Mapped[date] = mapped_column(Date, index=True)
    visit_type: Mapped[str] = mapped_column(String(32), default="periodic")
    status: Mapped[str] = mapped_column(String(32), default="planned", index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive)

    customer = relationship("Customer")
    branch = relationship("Branch")
    operator = relationship("Operator")


class IdempotencyRecord(Base):
    __tablename__ = "idempotency_records"
    __table_args__ = (
        UniqueConstraint("method", "path", "idempotency_key", name="uq_idempotency_method_path_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive, index=True)
    method: Mapped[str] = mapped_column(String(10))
    path: Mapped[str] = mapped_column(String(300))
    idempotency_key: Mapped[str] = mapped_column(String(120))
    request_hash: Mapped[str] = mapped_column(String(64))
    status_code: Mapped[int] = mapped_column(Integer)
    content_type: Mapped[str | None] = mapped_column(String(120), nullable=True)
    response_body_b64: Mapped[str] = mapped_column(String, default="")
