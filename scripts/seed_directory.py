"""Load customers, branches and operators from a JSON file.

Expected shape::

    {
      "customers": [{"name": "Acme", "branches": ["Centre", "Harbour"]}],
      "operators": [
        {
          "name": "Ali",
          "email": "ali@example.com",
          "is_active": true,
          "assigned_customers": ["Acme"],
          "assigned_branches": [{"customer": "Acme", "branch": "Harbour"}]
        }
      ]
    }
"""

import argparse
import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from sqlalchemy import select  # noqa: E402

from fieldplan.db import Base, SessionLocal, engine  # noqa: E402
from fieldplan.models import Branch, Customer, Operator, OperatorBranch, OperatorCustomer  # noqa: E402


def _assign(db, operator: Operator, item: dict) -> None:
    if "assigned_customers" in item:
        names = [str(n).strip() for n in item["assigned_customers"]]
        wanted = set(db.execute(select(Customer.id).where(Customer.name.in_(names))).scalars().all())
        for link in list(operator.customer_assignments):
            if link.customer_id not in wanted:
                operator.customer_assignments.remove(link)
        have = {link.customer_id for link in operator.customer_assignments}
        for customer_id in sorted(wanted - have):
            operator.customer_assignments.append(OperatorCustomer(customer_id=customer_id))
    if "assigned_branches" in item:
        wanted = set()
        for ref in item["assigned_branches"]:
            branch_id = db.execute(
                select(Branch.id)
                .join(Customer, Customer.id == Branch.customer_id)
                .where(Customer.name == str(ref["customer"]).strip(), Branch.name == str(ref["branch"]).strip())
            ).scalar_one_or_none()
            if branch_id is not None:
                wanted.add(branch_id)
        for link in list(operator.branch_assignments):
            if link.branch_id not in wanted:
                operator.branch_assignments.remove(link)
        have = {link.branch_id for link in operator.branch_assignments}
        for branch_id in sorted(wanted - have):
            operator.branch_assignments.append(OperatorBranch(branch_id=branch_id))


def seed(db, payload: dict) -> dict:
    counts = {"customers": 0, "branches": 0, "operators": 0}
    for item in payload.get("customers", []):
        name = str(item["name"]).strip()
        customer = db.execute(select(Customer).where(Customer.name == name)).scalar_one_or_none()
        if customer is None:
            customer = Customer(name=name)
            db.add(customer)
            db.flush()
            counts["customers"] += 1
        for branch_name in item.get("branches", []):
            branch_name = str(branch_name).strip()
            exists = db.execute(
                select(Branch).where(Branch.customer_id == customer.id, Branch.name == branch_name)
            ).scalar_one_or_none()
            if exists is None:
                db.add(Branch(customer_id=customer.id, name=branch_name))
                counts["branches"] += 1

    db.flush()
    for item in payload.get("operators", []):
        name = str(item["name"]).strip()
        operator = db.execute(select(Operator).where(Operator.name == name)).scalar_one_or_none()
        if operator is None:
            operator = Operator(name=name)
            db.add(operator)
            counts["operators"] += 1
        operator.email = (item.get("email") or "").strip() or None
        operator.is_active = bool(item.get("is_active", True))
        db.flush()
        _assign(db, operator, item)

    db.commit()
    return counts


def main() -> int:
    parser = argparse.ArgumentParser(description="Seed the planning directory from JSON")
    parser.add_argument("path", type=Path)
    args = parser.parse_args()

    payload = json.loads(args.path.read_text(encoding="utf-8"))
    Base.metadata.create_all(bind=engine)
    with SessionLocal() as db:
        print(seed(db, payload))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
