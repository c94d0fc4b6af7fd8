import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from fieldplan.config import settings  # noqa: E402
from fieldplan.db import SessionLocal  # noqa: E402
from fieldplan.idempotency import cleanup_idempotency_records  # noqa: E402


def main() -> int:
    parser = argparse.ArgumentParser(description="Delete stored Idempotency-Key responses")
    parser.add_argument("--older-than-hours", type=int, default=settings.IDEMPOTENCY_RETENTION_HOURS)
    args = parser.parse_args()

    with SessionLocal() as db:
        deleted = cleanup_idempotency_records(db, older_than_hours=args.older_than_hours)
    print({"deleted_records": deleted})
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
