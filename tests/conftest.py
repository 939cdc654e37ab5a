import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture
def temp_db(monkeypatch, tmp_path):
    import db

    db_path = tmp_path / "test.db"
    monkeypatch.setattr(db, "DB_PATH", db.DB_PATH)
    monkeypatch.setattr(db, "_pool", db._pool)
    monkeypatch.setenv("DB_PATH", str(db_path))

    db.configure(str(db_path))
    db.init()
    yield str(db_path)
    db.close()


def _qcm(slug: str, ordre: int, **overrides):
    exercise = {
        "slug": slug,
        "title": f"Question {slug}",
        "instruction": "Choisis la bonne réponse",
        "type": "QCM",
        "difficulty": "decouverte",
        "points": 10,
        "estimated_minutes": 2,
        "ordre": ordre,
        "configuration": {
            "type": "QCM",
            "question": "Combien font 2 + 2 ?",
            "choices": ["3", "4", "5"],
            "correct_index": 1,
        },
    }
    exercise.update(overrides)
    return exercise


@pytest.fixture
def curriculum(temp_db):
    """Two CP modules (one inactive) and one CE1 module with exercises."""
    import db

    cp_module = db.upsert_module(
        {"slug": "cp-maths", "title": "Maths CP", "level": "CP", "subject": "MATHEMATIQUES", "period": "P1"}
    )
    cp_ids = db.upsert_exercises(
        cp_module,
        [
            _qcm("cp-3", 3),
            _qcm("cp-1", 1, points=15),
            _qcm("cp-2", 2),
            _qcm("cp-hidden", 1, active=False),
        ],
    )
    inactive_module = db.upsert_module(
        {
            "slug": "cp-old",
            "title": "Ancien module",
            "level": "CP",
            "subject": "FRANCAIS",
            "period": "P2",
            "active": False,
        }
    )
    inactive_ids = db.upsert_exercises(inactive_module, [_qcm("old-1", 1)])
    ce1_module = db.upsert_module(
        {"slug": "ce1-maths", "title": "Maths CE1", "level": "CE1", "subject": "MATHEMATIQUES", "period": "P1"}
    )
    ce1_ids = db.upsert_exercises(ce1_module, [_qcm("ce1-1", 1)])
    student_id = db.create_student("Lina", "Martin", 6, "CP")
    return {
        "student_id": student_id,
        "cp": dict(zip(["cp-3", "cp-1", "cp-2", "cp-hidden"], cp_ids)),
        "inactive": inactive_ids,
        "ce1": ce1_ids,
    }


class FakeClock:
    """Mutable UTC clock for progression tests."""

    def __init__(self, start=None):
        self.now = start or datetime(2024, 3, 4, 9, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()
