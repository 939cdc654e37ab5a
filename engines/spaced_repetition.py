"""Spaced repetition scheduling for exercise revisions."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional, Any


@dataclass(frozen=True)
class RevisionItem:
    student_id: int
    exercise_id: int
    next_review: datetime
    interval_days: int
    review_count: int
    difficulty_factor: float = 2.5
    last_review: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "student_id": self.student_id,
            "exercise_id": self.exercise_id,
            "next_review": self.next_review.isoformat(),
            "interval_days": self.interval_days,
            "review_count": self.review_count,
            "difficulty_factor": self.difficulty_factor,
            "last_review": self.last_review.isoformat() if self.last_review else None,
        }


def performance_rating(success: bool, hints_used: int = 0) -> int:
    """Map an attempt onto the 0..3 rating scale; each hint costs one step."""
    if not success:
        return 0
    return max(1, 3 - max(0, hints_used))


class SpacedRepetitionScheduler:
    def __init__(self):
        # SM-2 algorithm parameters
        self.intervals = [1, 3, 7, 14, 30, 60, 120]  # Days between reviews
        self.ease_factors = {
            0: 1.3,  # Difficult
            1: 1.5,  # Good
            2: 1.8,  # Easy
            3: 2.0   # Very Easy
        }
        self.minimum_interval = 1
        self.maximum_interval = 120
        self.minimum_factor = 0.1
        self.maximum_factor = 5.0

    def next_interval(self, review_count: int, performance: int) -> int:
        """Interval in days for the review following ``review_count`` reviews."""
        index = min(max(review_count, 0), len(self.intervals) - 1)
        ease_factor = self.ease_factors.get(performance, 1.5)
        interval_days = self.intervals[index] * ease_factor / 1.5
        return int(round(max(self.minimum_interval, min(self.maximum_interval, interval_days))))

    def adjust_factor(self, factor: float, performance: int) -> float:
        # SM-2 ease update on a 0..3 scale
        quality = performance + 2
        updated = factor + (0.1 - (5 - quality) * (0.08 + (5 - quality) * 0.02))
        return round(max(self.minimum_factor, min(self.maximum_factor, updated)), 2)

    def schedule(self,
                 student_id: int,
                 exercise_id: int,
                 performance: int,
                 previous: Optional[RevisionItem] = None,
                 review_time: Optional[datetime] = None) -> RevisionItem:
        """Return the revision entry after an attempt rated ``performance``.

        A failed attempt (rating 0) restarts the interval ladder.
        """
        if review_time is None:
            review_time = datetime.now(timezone.utc)

        if previous is None:
            review_count = 0
            factor = 2.5
        else:
            review_count = previous.review_count
            factor = previous.difficulty_factor

        if performance <= 0:
            review_count = 0
        interval = self.next_interval(review_count, performance)

        return RevisionItem(
            student_id=student_id,
            exercise_id=exercise_id,
            next_review=review_time + timedelta(days=interval),
            interval_days=interval,
            review_count=review_count + 1,
            difficulty_factor=self.adjust_factor(factor, performance),
            last_review=review_time,
        )

    def get_due_reviews(self,
                        reviews: List[RevisionItem],
                        current_time: Optional[datetime] = None) -> List[RevisionItem]:
        """Get list of items due for review, earliest first."""
        if current_time is None:
            current_time = datetime.now(timezone.utc)
        due = [item for item in reviews if item.next_review <= current_time]
        return sorted(due, key=lambda item: (item.next_review, item.exercise_id))

    def review_load(self,
                    reviews: List[RevisionItem],
                    current_time: Optional[datetime] = None,
                    days: int = 7) -> Dict[str, int]:
        """Count reviews falling on each of the next ``days`` days."""
        if current_time is None:
            current_time = datetime.now(timezone.utc)
        load = {}
        for i in range(days):
            date = (current_time + timedelta(days=i)).date()
            load[date.isoformat()] = len(
                [r for r in reviews if r.next_review.date() == date]
            )
        return load

