import argparse
import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from labbook.db import SessionLocal, init_db  # noqa: E402
from labbook.reports import upsert_service_price  # noqa: E402
from labbook.roster import register_assignment  # noqa: E402


def load_reference(db, data: dict) -> dict:
    """Load manpower assignments and service prices from a JSON document.

    Expected shape::

        {
          "manpower": [{"service_id": 3, "service_name": "XRD", "name": "Jane Doe"}],
          "prices": [{"service_id": 3, "price_type": "internal", "rate": 500,
                      "service_name": "XRD", "category": "Testing"}]
        }
    """
    counts = {"manpower": 0, "prices": 0}
    for row in data.get("manpower") or []:
        register_assignment(
            db,
            service_id=int(row["service_id"]),
            name=row["name"],
            service_name=row.get("service_name"),
        )
        counts["manpower"] += 1
    for row in data.get("prices") or []:
        upsert_service_price(
            db,
            service_id=int(row["service_id"]),
            price_type=row["price_type"],
            rate=float(row.get("rate") or 0),
            service_name=row.get("service_name"),
            category=row.get("category"),
        )
        counts["prices"] += 1
    return counts


def main() -> int:
    parser = argparse.ArgumentParser(description="Seed manpower roster and service prices")
    parser.add_argument("path", help="JSON file with 'manpower' and 'prices' lists")
    args = parser.parse_args()

    data = json.loads(Path(args.path).read_text(encoding="utf-8"))
    init_db()
    with SessionLocal() as db:
        counts = load_reference(db, data)
    print(f"[OK] manpower rows: {counts['manpower']}, price rows: {counts['prices']}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
