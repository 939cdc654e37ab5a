import asyncio

import pytest

import db
from engines.caching import CacheService
from engines.monitoring import MetricsCollector
from engines.progression import ProgressionTracker
from engines.recommendation import RecommendationSelector, clamp_limit
from engines.validation import NotFoundError


def _selector(clock, metrics=None):
    cache = CacheService(metrics=metrics)
    tracker = ProgressionTracker(cache, clock=clock)
    return RecommendationSelector(cache, tracker)


@pytest.mark.parametrize(
    "raw, expected",
    [(5, 5), (0, 1), (-3, 1), (50, 20), (20, 20), ("7", 7), (None, 5), ("abc", 5)],
)
def test_clamp_limit(raw, expected):
    assert clamp_limit(raw) == expected


def test_recommends_active_exercises_at_level_in_order(curriculum, clock):
    selector = _selector(clock)
    result = asyncio.run(selector.recommend(curriculum["student_id"], limit=10))
    cp = curriculum["cp"]
    assert [item["id"] for item in result] == [cp["cp-1"], cp["cp-2"], cp["cp-3"]]
    assert cp["cp-hidden"] not in [item["id"] for item in result]
    assert not set(curriculum["inactive"]) & {item["id"] for item in result}
    assert not set(curriculum["ce1"]) & {item["id"] for item in result}


def test_limit_is_applied(curriculum, clock):
    selector = _selector(clock)
    result = asyncio.run(selector.recommend(curriculum["student_id"], limit=1))
    assert [item["id"] for item in result] == [curriculum["cp"]["cp-1"]]
    assert asyncio.run(selector.recommend(curriculum["student_id"], limit=0)) == result


def test_completed_exercises_are_excluded(curriculum, clock):
    selector = _selector(clock)
    student_id = curriculum["student_id"]
    cp = curriculum["cp"]

    async def scenario():
        await selector.tracker.record_attempt(student_id, cp["cp-1"], {"success": True, "elapsed_seconds": 12})
        await selector.tracker.record_attempt(student_id, cp["cp-2"], {"success": False, "elapsed_seconds": 12})
        return await selector.recommend(student_id, limit=5)

    result = asyncio.run(scenario())
    assert [item["id"] for item in result] == [cp["cp-2"], cp["cp-3"]]


def test_results_are_cached_per_student(curriculum, clock):
    metrics = MetricsCollector()
    selector = _selector(clock, metrics)
    student_id = curriculum["student_id"]

    async def scenario():
        first = await selector.recommend(student_id, limit=2)
        second = await selector.recommend(student_id, limit=3)
        return first, second

    first, second = asyncio.run(scenario())
    assert len(first) == 2
    assert len(second) == 3
    assert second[:2] == first
    snapshot = metrics.snapshot()["cache"]
    assert snapshot["misses"] == 1
    assert snapshot["hits"] == 1


def test_empty_catalog_returns_empty_list(temp_db, clock):
    student_id = db.create_student("Tom", "Durand", 7, "CE1")
    selector = _selector(clock)
    assert asyncio.run(selector.recommend(student_id)) == []


def test_unknown_student(temp_db, clock):
    selector = _selector(clock)
    with pytest.raises(NotFoundError) as excinfo:
        asyncio.run(selector.recommend(12345))
    assert excinfo.value.code == "STUDENT_NOT_FOUND"


def test_remaining_exercises_in_order_after_six_completed(temp_db, clock):
    module_id = db.upsert_module(
        {"slug": "cp-nombres", "title": "Nombres", "level": "CP", "subject": "MATHEMATIQUES", "period": "P1"}
    )
    # stored out of order so ordering comes from ``ordre``
    ordres = [7, 2, 10, 5, 1, 9, 3, 8, 6, 4]
    ids = db.upsert_exercises(
        module_id,
        [
            {
                "slug": f"nombre-{ordre}",
                "title": f"Nombre {ordre}",
                "instruction": "Calcule",
                "type": "CALCUL",
                "difficulty": "decouverte",
                "ordre": ordre,
                "configuration": {"type": "CALCUL", "question": "1 + 1", "operation": "addition", "result": 2},
            }
            for ordre in ordres
        ],
    )
    by_ordre = dict(zip(ordres, ids))
    student_id = db.create_student("Inès", "Robert", 6, "CP")
    selector = _selector(clock)

    async def scenario():
        for ordre in (1, 3, 4, 6, 8, 9):
            await selector.tracker.record_attempt(
                student_id, by_ordre[ordre], {"success": True, "elapsed_seconds": 15}
            )
        return await selector.recommend(student_id, limit=5)

    result = asyncio.run(scenario())
    assert [item["id"] for item in result] == [by_ordre[2], by_ordre[5], by_ordre[7], by_ordre[10]]
