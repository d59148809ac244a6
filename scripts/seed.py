"""Seed the questionnaire catalog.

Loads the packaged tests from ``mindconnect/test_catalog.json`` into the
database pointed at by DATABASE_URL. Does nothing if any test already exists.
"""

from __future__ import annotations
from mindconnect.db import init_db, Base
from mindconnect import models_db  # noqa: F401 registers table models
from mindconnect.questionnaire import seed_catalog
from sqlalchemy.orm import sessionmaker

def main():
    engine = init_db()
    Base.metadata.create_all(bind=engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    with SessionLocal() as db:
        added = seed_catalog(db)

    if added:
        print(f"Seeded {added} tests.")
    else:
        print("Catalog already present; nothing to do.")

if __name__ == "__main__":
    main()
