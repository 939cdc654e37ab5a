"""Next-exercise recommendations for a student."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List

import db

from engines.caching import CacheService
from engines.progression import ProgressionTracker
from engines.validation import NotFoundError

_LOGGER = logging.getLogger(__name__)

DEFAULT_LIMIT = 5
MAX_LIMIT = 20


def clamp_limit(limit: Any, max_limit: int = MAX_LIMIT) -> int:
    try:
        value = int(limit)
    except (TypeError, ValueError):
        value = DEFAULT_LIMIT
    return max(1, min(value, max_limit))


def _summary(exercise: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": exercise["id"],
        "title": exercise["title"],
        "instruction": exercise["instruction"],
        "type": exercise["type"],
        "difficulty": exercise["difficulty"],
        "points": exercise["points"],
        "estimated_minutes": exercise["estimated_minutes"],
        "ordre": exercise["ordre"],
        "module_id": exercise["module_id"],
        "subject": exercise["subject"],
        "configuration": exercise["configuration"],
    }


class RecommendationSelector:
    """Picks the next not-yet-completed exercises at the student's level.

    The full candidate list (up to ``max_limit`` entries) is cached per
    student; each call returns its first ``limit`` entries. Ordering is by
    exercise ``ordre`` then id, with no randomization.
    """

    def __init__(
        self,
        cache: CacheService,
        tracker: ProgressionTracker,
        max_limit: int = MAX_LIMIT,
    ) -> None:
        self.cache = cache
        self.tracker = tracker
        self.max_limit = int(max_limit)

    async def recommend(self, student_id: int, limit: int = DEFAULT_LIMIT) -> List[Dict[str, Any]]:
        limit = clamp_limit(limit, self.max_limit)

        cached = await self.cache.get_cached_student_recommendations(student_id)
        if cached is not None:
            _LOGGER.debug("Recommendation cache hit for student %s", student_id)
            return cached[:limit]

        student = await asyncio.to_thread(db.get_student, student_id)
        if student is None:
            raise NotFoundError(f"Student {student_id} not found", "STUDENT_NOT_FOUND")

        completed = await self.tracker.completed_exercise_ids(student_id)
        candidates = await asyncio.to_thread(db.list_active_exercises, student["level"])
        selected = [
            _summary(exercise) for exercise in candidates if int(exercise["id"]) not in completed
        ][: self.max_limit]

        await self.cache.cache_student_recommendations(student_id, selected)
        _LOGGER.debug(
            "Computed %d recommendations for student %s (%d completed)",
            len(selected),
            student_id,
            len(completed),
        )
        return selected[:limit]
