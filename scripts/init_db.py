# scripts/init_db.py
import argparse
import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from sqlalchemy import inspect
from sqlmodel import Session

from crm.db import create_db_and_tables, engine
from crm.seed import seed_defaults, seed_demo_data


def main() -> None:
    parser = argparse.ArgumentParser(description="Create CRM tables and seed default rules.")
    parser.add_argument("--demo", action="store_true", help="also create demo users, prospects and leads")
    args = parser.parse_args()

    print("Using engine:", engine.url)
    print("Creating SQLModel tables...")
    create_db_and_tables()

    with Session(engine) as session:
        seed_defaults(session)
        if args.demo:
            created = seed_demo_data(session)
            print("✅ demo data created" if created else "✅ demo data already present")

    insp = inspect(engine)
    print("Tables now in DB:", insp.get_table_names())


if __name__ == "__main__":
    main()
