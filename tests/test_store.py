from datetime import date

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker

from fieldplan import directory, store
from fieldplan.db import Base
from fieldplan.errors import NotFoundError, StoreError, ValidationError
from fieldplan.models import Branch, Customer, Operator, OperatorBranch, OperatorCustomer


def make_session(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'test_store.db'}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)()


def _seed(db):
    customer = Customer(name="Acme Foods")
    db.add(customer)
    db.flush()
    ali = Operator(name="Ali", is_active=True)
    veli = Operator(name="Veli", is_active=True)
    db.add_all([Branch(customer_id=customer.id, name="Harbour"), ali, veli])
    db.commit()
    return customer, ali, veli


def _row(customer, operator, day):
    return {
        "customer_id": customer.id,
        "branch_id": None,
        "operator_id": operator.id,
        "visit_date": day,
        "visit_type": "periodic",
        "status": "planned",
    }


def test_list_visits_filters_by_range_and_operator(tmp_path):
    db = make_session(tmp_path)
    customer, ali, veli = _seed(db)
    store.insert_visits(
        db,
        [
            _row(customer, ali, date(2024, 3, 31)),
            _row(customer, ali, date(2024, 3, 1)),
            _row(customer, veli, date(2024, 3, 15)),
            _row(customer, ali, date(2024, 4, 1)),
        ],
    )

    march_ali = store.list_visits(db, start=date(2024, 3, 1), end=date(2024, 4, 1), operator_id=ali.id)
    assert [v.visit_date for v in march_ali] == [date(2024, 3, 1), date(2024, 3, 31)]

    march_all = store.list_visits(db, start=date(2024, 3, 1), end=date(2024, 4, 1))
    assert len(march_all) == 3


def test_insert_returns_ids_and_accepts_empty_batch(tmp_path):
    db = make_session(tmp_path)
    customer, ali, _ = _seed(db)

    assert store.insert_visits(db, []) == []
    created = store.insert_visits(db, [_row(customer, ali, date(2024, 3, 1)), _row(customer, ali, date(2024, 3, 2))])
    assert all(v.id for v in created)
    assert len({v.id for v in created}) == 2


def test_update_visit_is_a_single_row_update(tmp_path):
    db = make_session(tmp_path)
    customer, ali, _ = _seed(db)
    (visit,) = store.insert_visits(db, [_row(customer, ali, date(2024, 3, 1))])

    updated = store.update_visit(db, visit.id, visit_date=date(2024, 3, 9), status="completed")
    assert updated.id == visit.id
    assert updated.visit_date == date(2024, 3, 9)
    assert updated.status == "completed"

    with pytest.raises(ValidationError):
        store.update_visit(db, visit.id, operator_id=ali.id)
    with pytest.raises(ValidationError):
        store.update_visit(db, visit.id)
    with pytest.raises(NotFoundError):
        store.update_visit(db, 404, status="cancelled")


def test_delete_missing_visit_is_not_found(tmp_path):
    db = make_session(tmp_path)
    customer, ali, _ = _seed(db)
    (visit,) = store.insert_visits(db, [_row(customer, ali, date(2024, 3, 1))])

    store.delete_visit(db, visit.id)
    assert store.get_visit(db, visit.id) is None
    with pytest.raises(NotFoundError):
        store.delete_visit(db, visit.id)


def test_database_failures_become_store_errors(tmp_path):
    db = make_session(tmp_path)
    customer, ali, _ = _seed(db)
    db.execute(text("DROP TABLE visits"))
    db.commit()

    with pytest.raises(StoreError):
        store.list_visits(db, start=date(2024, 3, 1), end=date(2024, 4, 1))
    with pytest.raises(StoreError):
        store.insert_visits(db, [_row(customer, ali, date(2024, 3, 1))])


def test_directory_reads(tmp_path):
    db = make_session(tmp_path)
    customer, ali, veli = _seed(db)
    veli.is_active = False
    db.commit()

    assert [o.name for o in directory.list_active_operators(db)] == ["Ali"]
    assert [b.name for b in directory.list_branches(db, customer_id=customer.id)] == ["Harbour"]
    assert directory.list_branches(db, customer_id=customer.id, search="zzz") == []
    assert [c.name for c in directory.list_customers(db, search="ACME")] == ["Acme Foods"]
    assert directory.get_operator(db, veli.id).is_active is False


def test_directory_scoped_to_operator_assignments(tmp_path):
    db = make_session(tmp_path)
    acme, ali, veli = _seed(db)
    globex = Customer(name="Globex")
    db.add(globex)
    db.flush()
    north = Branch(customer_id=globex.id, name="North")
    centre = Branch(customer_id=acme.id, name="Centre")
    db.add_all([north, centre])
    db.flush()
    harbour = directory.list_branches(db, customer_id=acme.id, search="harbour")[0]
    db.add_all(
        [
            OperatorCustomer(operator_id=ali.id, customer_id=acme.id),
            OperatorBranch(operator_id=ali.id, branch_id=harbour.id),
        ]
    )
    db.commit()

    assert [c.name for c in directory.list_customers(db, operator_id=ali.id)] == ["Acme Foods"]
    assert [b.name for b in directory.list_branches(db, operator_id=ali.id)] == ["Harbour"]
    assert [b.name for b in directory.list_branches(db, operator_id=ali.id, customer_id=globex.id)] == []

    # no assignments means no restriction
    assert [c.name for c in directory.list_customers(db, operator_id=veli.id)] == ["Acme Foods", "Globex"]
    assert len(directory.list_branches(db, operator_id=veli.id)) == 3

    scope = directory.assignment_scope(db, ali.id)
    assert scope.allows(acme.id, harbour.id)
    assert not scope.allows(acme.id, centre.id)
    assert not scope.allows(acme.id, None)
    assert not scope.allows(globex.id, north.id)
    assert directory.assignment_scope(db, veli.id).allows(globex.id, None)


def test_list_visits_filters_by_customer_and_branch_ids(tmp_path):
    db = make_session(tmp_path)
    customer, ali, _ = _seed(db)
    other = Customer(name="Globex")
    db.add(other)
    db.commit()
    harbour = directory.list_branches(db, customer_id=customer.id)[0]
    store.insert_visits(
        db,
        [
            dict(_row(customer, ali, date(2024, 3, 4)), branch_id=harbour.id),
            _row(customer, ali, date(2024, 3, 5)),
            _row(other, ali, date(2024, 3, 6)),
        ],
    )
    march = {"start": date(2024, 3, 1), "end": date(2024, 4, 1)}

    assert len(store.list_visits(db, **march, customer_ids=set())) == 3
    by_customer = store.list_visits(db, **march, customer_ids={customer.id})
    assert [v.visit_date for v in by_customer] == [date(2024, 3, 4), date(2024, 3, 5)]
    by_branch = store.list_visits(db, **march, customer_ids={customer.id}, branch_ids={harbour.id})
    assert [v.visit_date for v in by_branch] == [date(2024, 3, 4)]
