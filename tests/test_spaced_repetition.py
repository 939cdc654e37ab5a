from datetime import datetime, timedelta, timezone

import pytest

from engines.spaced_repetition import RevisionItem, SpacedRepetitionScheduler, performance_rating

NOW = datetime(2024, 3, 4, 9, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "success, hints, rating",
    [(False, 0, 0), (True, 0, 3), (True, 1, 2), (True, 2, 1), (True, 7, 1)],
)
def test_performance_rating(success, hints, rating):
    assert performance_rating(success, hints) == rating


def test_intervals_grow_with_successful_reviews():
    scheduler = SpacedRepetitionScheduler()
    item = None
    intervals = []
    for _ in range(8):
        item = scheduler.schedule(1, 2, 1, previous=item, review_time=NOW)
        intervals.append(item.interval_days)
    assert intervals == [1, 3, 7, 14, 30, 60, 120, 120]
    assert item.review_count == 8


def test_intervals_are_bounded():
    scheduler = SpacedRepetitionScheduler()
    assert scheduler.next_interval(100, 3) == 120
    assert scheduler.next_interval(0, 0) == 1


def test_failure_restarts_ladder():
    scheduler = SpacedRepetitionScheduler()
    item = RevisionItem(1, 2, NOW, interval_days=30, review_count=4, difficulty_factor=2.5)
    failed = scheduler.schedule(1, 2, 0, previous=item, review_time=NOW)
    assert failed.interval_days == 1
    assert failed.review_count == 1
    assert failed.difficulty_factor < item.difficulty_factor
    assert failed.next_review == NOW + timedelta(days=1)


def test_difficulty_factor_is_clamped():
    scheduler = SpacedRepetitionScheduler()
    assert scheduler.adjust_factor(5.0, 3) == 5.0
    assert scheduler.adjust_factor(0.1, 0) == 0.1
    assert scheduler.adjust_factor(2.5, 3) == 2.6


def test_due_reviews_sorted_and_load():
    scheduler = SpacedRepetitionScheduler()
    items = [
        RevisionItem(1, 3, NOW - timedelta(hours=1), 1, 1),
        RevisionItem(1, 1, NOW - timedelta(days=1), 1, 1),
        RevisionItem(1, 2, NOW + timedelta(days=2), 3, 2),
    ]
    due = scheduler.get_due_reviews(items, NOW)
    assert [item.exercise_id for item in due] == [1, 3]

    load = scheduler.review_load(items, NOW, days=3)
    assert load == {"2024-03-04": 1, "2024-03-05": 0, "2024-03-06": 1}


def test_to_dict():
    item = RevisionItem(1, 2, NOW, 1, 1)
    assert item.to_dict()["next_review"] == NOW.isoformat()
    assert item.to_dict()["last_review"] is None
