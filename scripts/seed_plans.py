import argparse
from decimal import Decimal

from dotenv import load_dotenv

from app.db import SessionLocal
from app.models.catalog import DurationUnit, Plan

DEFAULT_PLANS = [
    ("1 Hour", DurationUnit.hour, 1, Decimal("10.00"), "5M/5M"),
    ("24 Hours", DurationUnit.day, 1, Decimal("50.00"), "10M/10M"),
    ("Weekly", DurationUnit.week, 1, Decimal("250.00"), "10M/10M"),
    ("Monthly", DurationUnit.month, 1, Decimal("800.00"), "20M/20M"),
]


def parse_args():
    parser = argparse.ArgumentParser(description="Seed the default hotspot plans.")
    parser.add_argument(
        "--vouchers",
        type=int,
        default=0,
        help="Also issue this many vouchers for each plan.",
    )
    return parser.parse_args()


def main():
    load_dotenv()
    args = parse_args()
    db = SessionLocal()
    try:
        for name, unit, value, price, rate_limit in DEFAULT_PLANS:
            plan = db.query(Plan).filter(Plan.name == name).first()
            if plan:
                print(f"Plan {name!r} already exists.")
            else:
                plan = Plan(
                    name=name,
                    duration_unit=unit,
                    duration_value=value,
                    price=price,
                    rate_limit=rate_limit,
                )
                db.add(plan)
                db.commit()
                db.refresh(plan)
                print(f"Plan {name!r} created.")
            if args.vouchers:
                from app.services.vouchers import vouchers

                issued = vouchers.create_vouchers(db, plan.id, quantity=args.vouchers)
                for voucher in issued:
                    print(f"  {voucher.code}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
