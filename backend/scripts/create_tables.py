from sqlalchemy import create_engine, inspect

from backend.config import DATABASE_URL
from backend.models import Base

# Creates missing tables only; existing tables are left untouched.

def main():
    engine = create_engine(DATABASE_URL)
    before = set(inspect(engine).get_table_names())
    print(f"[INFO] Database: {engine.url.render_as_string(hide_password=True)}")

    Base.metadata.create_all(engine)

    after = set(inspect(engine).get_table_names())
    created = sorted(after - before)
    for name in created:
        print(f"Created: {name}")
    print(f"\n[RESULT] Created: {len(created)}, Already present: {len(before & after)}")

if __name__ == "__main__":
    main()
