import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from fieldplan.db import SessionLocal  # noqa: E402
from fieldplan.errors import SchedulingError  # noqa: E402
from fieldplan.logging_config import setup_logging  # noqa: E402
from fieldplan.projection import Month  # noqa: E402
from fieldplan.transfer import transfer  # noqa: E402


def _parse_month(raw: str) -> Month:
    year, sep, month = (raw or "").strip().partition("-")
    if not (sep and year.isdigit() and month.isdigit()):
        raise ValueError(f"month must look like YYYY-MM, got {raw!r}")
    if not 1 <= int(month) <= 12:
        raise ValueError(f"month must be between 01 and 12, got {raw!r}")
    return Month(int(year), int(month))


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Copy an operator's visits from one month into the next, keeping weekday order"
    )
    parser.add_argument("--operator-id", type=int, required=True)
    parser.add_argument("--month", required=True, help="source month as YYYY-MM")
    parser.add_argument("--dry-run", action="store_true", help="print the plan without writing")
    parser.add_argument("--yes", action="store_true", help="skip the confirmation prompt")
    args = parser.parse_args()

    try:
        source_month = _parse_month(args.month)
    except ValueError as exc:
        parser.error(str(exc))

    setup_logging()
    with SessionLocal() as db:
        try:
            preview = transfer(db, args.operator_id, source_month, dry_run=True)
            for row in preview.visits:
                print(f"{row['visit_date'].isoformat()} customer={row['customer_id']} branch={row['branch_id']} type={row['visit_type']}")
            print(f"{len(preview.visits)} visits planned for {preview.target_month.label()}")
            if args.dry_run or not preview.visits:
                return 0

            if not args.yes:
                answer = input("Create these visits? Running twice creates duplicates. [y/N] ")
                if answer.strip().lower() not in {"y", "yes"}:
                    print("Aborted.")
                    return 1

            result = transfer(db, args.operator_id, source_month)
        except SchedulingError as exc:
            print(f"ERROR: {exc.message}")
            return 2

    print(f"Created {result.created_count} visits in {result.target_month.label()}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
