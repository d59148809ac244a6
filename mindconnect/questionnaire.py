from __future__ import annotations
import json
from pathlib import Path
from sqlalchemy.orm import Session
from .crud import count_tests, create_test

_CATALOG_PATH = Path(__file__).resolve().parent / "test_catalog.json"

def load_catalog() -> dict:
    return json.loads(_CATALOG_PATH.read_text(encoding="utf-8"))

def seed_catalog(db: Session) -> int:
    """Insert the packaged tests unless any test exists. Returns how many were added."""
    if count_tests(db) > 0:
        return 0
    added = 0
    for t in load_catalog().get("tests", []):
        create_test(
            db,
            questions=t.get("questions", []),
            title=t["title"],
            description=t["description"],
            category=t["category"],
            estimated_time=t["estimated_time"],
            cover_image=t.get("cover_image"),
            is_public=t.get("is_public", True),
        )
        added += 1
    return added
