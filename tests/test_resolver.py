from datetime import date

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker

from fieldplan import store
from fieldplan.db import Base
from fieldplan.errors import DataLossError, NotFoundError, StoreError, ValidationError
from fieldplan.intents import (
    BranchRef,
    ContextUpdate,
    CustomerRef,
    ExistingVisitRef,
    OperatorRef,
    VisitCreated,
    VisitMoved,
)
from fieldplan.models import Branch, Customer, Operator, OperatorBranch, OperatorCustomer, Visit
from fieldplan.projection import Month, project
from fieldplan.resolver import resolve


def make_session(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'test_resolver.db'}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)()


def _seed(db):
    acme = Customer(name="Acme Foods")
    globex = Customer(name="Globex")
    db.add_all([acme, globex])
    db.flush()
    harbour = Branch(customer_id=acme.id, name="Harbour")
    ali = Operator(name="Ali", email="ali@example.com", is_active=True)
    retired = Operator(name="Retired", is_active=False)
    db.add_all([harbour, ali, retired])
    db.commit()
    return {"acme": acme, "globex": globex, "harbour": harbour, "ali": ali, "retired": retired}


def _visit_count(db) -> int:
    return db.execute(select(func.count(Visit.id))).scalar_one()


def test_dropping_operator_only_updates_context(tmp_path):
    db = make_session(tmp_path)
    rows = _seed(db)

    result = resolve(db, OperatorRef(rows["ali"].id), date(2024, 3, 4), None)

    assert isinstance(result, ContextUpdate)
    assert result.operator_id == rows["ali"].id
    assert _visit_count(db) == 0


def test_inactive_operator_cannot_be_selected(tmp_path):
    db = make_session(tmp_path)
    rows = _seed(db)

    with pytest.raises(ValidationError):
        resolve(db, OperatorRef(rows["retired"].id), date(2024, 3, 4), None)


def test_customer_drop_without_operator_creates_nothing(tmp_path):
    db = make_session(tmp_path)
    rows = _seed(db)

    with pytest.raises(ValidationError) as exc_info:
        resolve(db, CustomerRef(rows["acme"].id), date(2024, 3, 4), None)

    assert exc_info.value.message == "no operator selected"
    with pytest.raises(ValidationError):
        resolve(db, BranchRef(rows["harbour"].id, rows["acme"].id), date(2024, 3, 4), None)
    assert _visit_count(db) == 0


def test_customer_drop_creates_one_planned_visit(tmp_path):
    db = make_session(tmp_path)
    rows = _seed(db)

    result = resolve(db, CustomerRef(rows["acme"].id), date(2024, 3, 4), rows["ali"].id)

    assert isinstance(result, VisitCreated)
    assert _visit_count(db) == 1
    visit = result.visit
    assert visit.visit_date == date(2024, 3, 4)
    assert visit.status == "planned"
    assert visit.branch_id is None
    assert visit.operator_id == rows["ali"].id
    assert visit.visit_type == "periodic"
    assert result.touched_months == [Month(2024, 3)]


def test_branch_drop_uses_branch_and_legacy_type_code(tmp_path):
    db = make_session(tmp_path)
    rows = _seed(db)

    result = resolve(
        db,
        BranchRef(rows["harbour"].id, rows["acme"].id),
        "2024-03-04T00:00:00Z",
        rows["ali"].id,
        visit_type="acil",
    )

    assert result.visit.branch_id == rows["harbour"].id
    assert result.visit.customer_id == rows["acme"].id
    assert result.visit.visit_type == "emergency"
    assert result.visit.visit_date == date(2024, 3, 4)


def test_branch_of_another_customer_is_rejected(tmp_path):
    db = make_session(tmp_path)
    rows = _seed(db)

    with pytest.raises(ValidationError):
        resolve(db, BranchRef(rows["harbour"].id, rows["globex"].id), date(2024, 3, 4), rows["ali"].id)
    assert _visit_count(db) == 0


def test_unknown_references_and_types_are_rejected(tmp_path):
    db = make_session(tmp_path)
    rows = _seed(db)

    with pytest.raises(ValidationError):
        resolve(db, CustomerRef(999), date(2024, 3, 4), rows["ali"].id)
    with pytest.raises(ValidationError):
        resolve(db, CustomerRef(rows["acme"].id), date(2024, 3, 4), rows["retired"].id)
    with pytest.raises(ValidationError):
        resolve(db, CustomerRef(rows["acme"].id), date(2024, 3, 4), rows["ali"].id, visit_type="weekly")
    assert _visit_count(db) == 0


def test_duplicate_drops_on_same_day_are_allowed(tmp_path):
    db = make_session(tmp_path)
    rows = _seed(db)

    resolve(db, CustomerRef(rows["acme"].id), date(2024, 3, 4), rows["ali"].id)
    resolve(db, CustomerRef(rows["acme"].id), date(2024, 3, 4), rows["ali"].id)

    assert _visit_count(db) == 2


def test_moving_a_visit_between_months(tmp_path):
    db = make_session(tmp_path)
    rows = _seed(db)
    (visit,) = store.insert_visits(
        db,
        [
            {
                "customer_id": rows["acme"].id,
                "branch_id": rows["harbour"].id,
                "operator_id": rows["ali"].id,
                "visit_date": date(2024, 3, 28),
                "visit_type": "observation",
                "status": "completed",
            }
        ],
    )

    result = resolve(db, ExistingVisitRef(visit.id), date(2024, 4, 2), None)

    assert isinstance(result, VisitMoved)
    assert result.from_date == date(2024, 3, 28)
    assert result.touched_months == [Month(2024, 3), Month(2024, 4)]
    assert result.visit.id == visit.id

    everything = store.list_visits(db, start=date(2024, 3, 1), end=date(2024, 5, 1))
    assert project(everything, Month(2024, 3)) == {}
    april = project(everything, Month(2024, 4))
    (moved,) = april[date(2024, 4, 2)]
    assert (moved.customer_id, moved.branch_id, moved.operator_id, moved.visit_type) == (
        rows["acme"].id,
        rows["harbour"].id,
        rows["ali"].id,
        "observation",
    )
    assert moved.status == "planned"


def test_dropping_visit_on_its_own_day_is_a_no_op(tmp_path):
    db = make_session(tmp_path)
    rows = _seed(db)
    created = resolve(db, CustomerRef(rows["acme"].id), date(2024, 3, 4), rows["ali"].id)

    result = resolve(db, ExistingVisitRef(created.visit.id), date(2024, 3, 4), None)

    assert result.touched_months == []
    assert result.visit.id == created.visit.id
    assert _visit_count(db) == 1


def test_moving_a_deleted_visit_is_not_found(tmp_path):
    db = make_session(tmp_path)
    _seed(db)

    with pytest.raises(NotFoundError):
        resolve(db, ExistingVisitRef(404), date(2024, 3, 4), None)


def test_reinsert_strategy_replaces_the_row(tmp_path):
    db = make_session(tmp_path)
    rows = _seed(db)
    created = resolve(db, CustomerRef(rows["acme"].id), date(2024, 3, 4), rows["ali"].id)
    old_id = created.visit.id

    result = resolve(db, ExistingVisitRef(old_id), date(2024, 3, 6), None, move_strategy="reinsert")

    assert result.visit.id != old_id
    assert result.visit.visit_date == date(2024, 3, 6)
    assert store.get_visit(db, old_id) is None
    assert _visit_count(db) == 1


def test_reinsert_failure_after_delete_reports_data_loss(tmp_path, monkeypatch):
    db = make_session(tmp_path)
    rows = _seed(db)
    created = resolve(db, CustomerRef(rows["acme"].id), date(2024, 3, 4), rows["ali"].id)

    def broken_insert(db, rows):
        raise StoreError("Visit store insert failed: connection reset")

    monkeypatch.setattr(store, "insert_visits", broken_insert)

    with pytest.raises(DataLossError) as exc_info:
        resolve(db, ExistingVisitRef(created.visit.id), date(2024, 3, 6), None, move_strategy="reinsert")

    assert isinstance(exc_info.value, StoreError)
    assert exc_info.value.lost_visit["customer_id"] == rows["acme"].id
    assert exc_info.value.lost_visit["visit_date"] == date(2024, 3, 4)
    assert _visit_count(db) == 0


def test_drop_outside_operator_assignments_is_rejected(tmp_path):
    db = make_session(tmp_path)
    rows = _seed(db)
    centre = Branch(customer_id=rows["acme"].id, name="Centre")
    db.add(centre)
    db.add_all(
        [
            OperatorCustomer(operator_id=rows["ali"].id, customer_id=rows["acme"].id),
            OperatorBranch(operator_id=rows["ali"].id, branch_id=rows["harbour"].id),
        ]
    )
    db.commit()
    ali = rows["ali"].id

    with pytest.raises(ValidationError):
        resolve(db, CustomerRef(rows["globex"].id), date(2024, 3, 4), ali)
    with pytest.raises(ValidationError):
        resolve(db, BranchRef(centre.id, rows["acme"].id), date(2024, 3, 4), ali)
    with pytest.raises(ValidationError):
        resolve(db, CustomerRef(rows["acme"].id), date(2024, 3, 4), ali)
    assert _visit_count(db) == 0

    result = resolve(db, BranchRef(rows["harbour"].id, rows["acme"].id), date(2024, 3, 4), ali)
    assert isinstance(result, VisitCreated)
    assert _visit_count(db) == 1


def test_customer_only_assignment_allows_any_of_its_branches(tmp_path):
    db = make_session(tmp_path)
    rows = _seed(db)
    db.add(OperatorCustomer(operator_id=rows["ali"].id, customer_id=rows["acme"].id))
    db.commit()

    resolve(db, CustomerRef(rows["acme"].id), date(2024, 3, 4), rows["ali"].id)
    resolve(db, BranchRef(rows["harbour"].id, rows["acme"].id), date(2024, 3, 5), rows["ali"].id)
    with pytest.raises(ValidationError):
        resolve(db, CustomerRef(rows["globex"].id), date(2024, 3, 6), rows["ali"].id)
    assert _visit_count(db) == 2


def test_dropping_a_finished_visit_on_its_own_day_replans_it(tmp_path):
    db = make_session(tmp_path)
    rows = _seed(db)
    created = resolve(db, CustomerRef(rows["acme"].id), date(2024, 3, 4), rows["ali"].id)
    store.update_visit(db, created.visit.id, status="completed")

    result = resolve(db, ExistingVisitRef(created.visit.id), date(2024, 3, 4), None)

    assert result.visit.id == created.visit.id
    assert result.visit.status == "planned"
    assert result.visit.visit_date == date(2024, 3, 4)
    assert result.touched_months == [Month(2024, 3)]
    assert _visit_count(db) == 1
