"""Student progression tracking.

Every submitted attempt is folded into the per (student, exercise)
progression record by :func:`apply_attempt`, a pure state machine:

* a success marks the exercise ``COMPLETED`` (``MASTERED`` is kept),
  awards the exercise points and stamps the first success once;
* a failure moves ``NOT_STARTED`` and ``IN_PROGRESS`` to ``IN_PROGRESS``,
  and only demotes ``COMPLETED``/``MASTERED`` once the record already holds
  three or more attempts.

:class:`ProgressionTracker` wraps the state machine with validation, the
atomic datastore upsert, streak and session bookkeeping, revision
scheduling and student cache invalidation.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional, Set, Tuple

import db

from engines.caching import CacheService
from engines.monitoring import MetricsCollector
from engines.spaced_repetition import RevisionItem, SpacedRepetitionScheduler, performance_rating
from engines.validation import Attempt, NotFoundError, ValidationError, validate_attempt

_LOGGER = logging.getLogger(__name__)

NOT_STARTED = "NOT_STARTED"
IN_PROGRESS = "IN_PROGRESS"
COMPLETED = "COMPLETED"
MASTERED = "MASTERED"
STATUSES: Tuple[str, ...] = (NOT_STARTED, IN_PROGRESS, COMPLETED, MASTERED)
DONE_STATUSES = frozenset({COMPLETED, MASTERED})

DEMOTION_ATTEMPTS = 3
MAX_PAGE_SIZE = 100
MAX_SESSION_DAYS = 90


@dataclass(frozen=True)
class ProgressionRecord:
    """Aggregate of every attempt a student made on one exercise."""

    student_id: int
    exercise_id: int
    status: str = NOT_STARTED
    attempts: int = 0
    successes: int = 0
    success_rate: float = 0.0
    points: int = 0
    first_success_at: Optional[str] = None
    last_attempt_at: Optional[str] = None
    history: Tuple[Dict[str, Any], ...] = field(default_factory=tuple)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ProgressionRecord":
        return cls(
            student_id=int(data["student_id"]),
            exercise_id=int(data["exercise_id"]),
            status=str(data.get("status") or NOT_STARTED),
            attempts=int(data.get("attempts") or 0),
            successes=int(data.get("successes") or 0),
            success_rate=float(data.get("success_rate") or 0.0),
            points=int(data.get("points") or 0),
            first_success_at=data.get("first_success_at"),
            last_attempt_at=data.get("last_attempt_at"),
            history=tuple(data.get("history") or ()),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["history"] = list(self.history)
        return data


def _next_status(current: str, success: bool, prior_attempts: int) -> str:
    if success:
        return MASTERED if current == MASTERED else COMPLETED
    if current in DONE_STATUSES:
        return IN_PROGRESS if prior_attempts >= DEMOTION_ATTEMPTS else current
    return IN_PROGRESS


def apply_attempt(
    previous: Optional[ProgressionRecord],
    attempt: Attempt,
    *,
    student_id: int,
    exercise_id: int,
    reward_points: int,
    now: datetime,
) -> ProgressionRecord:
    """Return the record that results from folding ``attempt`` into ``previous``."""
    if previous is None:
        previous = ProgressionRecord(student_id=student_id, exercise_id=exercise_id)

    stamp = now.isoformat()
    awarded = int(reward_points) if attempt.success else 0
    attempts = previous.attempts + 1
    successes = previous.successes + (1 if attempt.success else 0)
    first_success_at = previous.first_success_at
    if attempt.success and first_success_at is None:
        first_success_at = stamp

    entry = {
        "at": stamp,
        "success": attempt.success,
        "elapsed_seconds": attempt.elapsed_seconds,
        "hints_used": attempt.hints_used,
        "points": awarded,
        "answer": attempt.answer,
    }

    return ProgressionRecord(
        student_id=student_id,
        exercise_id=exercise_id,
        status=_next_status(previous.status, attempt.success, previous.attempts),
        attempts=attempts,
        successes=successes,
        success_rate=round(successes / attempts * 100, 2),
        points=previous.points + awarded,
        first_success_at=first_success_at,
        last_attempt_at=stamp,
        history=previous.history + (entry,),
    )


def compute_streak(last_access: Optional[datetime], current_streak: int, today: date) -> int:
    """Calendar-day streak after an access on ``today``."""
    if last_access is None:
        return 1
    gap = (today - last_access.date()).days
    if gap <= 0:
        return max(current_streak, 1)
    if gap == 1:
        return current_streak + 1
    return 1


class ProgressionTracker:
    """Records attempts and serves progress views for students.

    Parameters
    ----------
    cache:
        Shared :class:`CacheService`; student entries are invalidated after
        every recorded attempt.
    scheduler:
        Revision scheduler; a default :class:`SpacedRepetitionScheduler` is
        created when omitted.
    clock:
        Returns the current timezone-aware UTC time.
    metrics:
        Optional collector notified of slow attempt recordings.
    """

    def __init__(
        self,
        cache: CacheService,
        scheduler: Optional[SpacedRepetitionScheduler] = None,
        clock: Callable[[], datetime] = db.utcnow,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self.cache = cache
        self.scheduler = scheduler or SpacedRepetitionScheduler()
        self._clock = clock
        self.metrics = metrics

    def now(self) -> datetime:
        return self._clock()

    async def _require_student(self, student_id: int) -> Dict[str, Any]:
        student = await asyncio.to_thread(db.get_student, student_id)
        if student is None:
            raise NotFoundError(f"Student {student_id} not found", "STUDENT_NOT_FOUND")
        return student

    async def _require_exercise(self, exercise_id: int) -> Dict[str, Any]:
        exercise = await asyncio.to_thread(db.get_exercise, exercise_id)
        if exercise is None:
            raise NotFoundError(f"Exercise {exercise_id} not found", "EXERCISE_NOT_FOUND")
        return exercise

    async def record_attempt(self, student_id: int, exercise_id: int, attempt: Any) -> ProgressionRecord:
        started = time.perf_counter()
        validated = validate_attempt(attempt)
        await self._require_student(student_id)
        exercise = await self._require_exercise(exercise_id)
        now = self._clock()

        def update(existing: Optional[Dict[str, Any]]) -> Dict[str, Any]:
            previous = ProgressionRecord.from_dict(existing) if existing else None
            return apply_attempt(
                previous,
                validated,
                student_id=student_id,
                exercise_id=exercise_id,
                reward_points=int(exercise["points"]),
                now=now,
            ).to_dict()

        stored = await asyncio.to_thread(
            db.save_attempt,
            student_id,
            exercise_id,
            update,
            day=now.date(),
            minutes=math.ceil(validated.elapsed_seconds / 60),
        )
        record = ProgressionRecord.from_dict(stored)

        await self.update_streak(student_id)
        await self._schedule_revision(student_id, exercise_id, validated, now)
        await self.cache.invalidate_student_cache(student_id)

        _LOGGER.info(
            "Recorded attempt student=%s exercise=%s success=%s status=%s",
            student_id,
            exercise_id,
            validated.success,
            record.status,
        )
        if self.metrics is not None:
            self.metrics.record_slow_operation(
                "record_attempt", (time.perf_counter() - started) * 1000.0
            )
        return record

    async def _schedule_revision(
        self, student_id: int, exercise_id: int, attempt: Attempt, now: datetime
    ) -> Optional[RevisionItem]:
        row = await asyncio.to_thread(db.get_revision, student_id, exercise_id)
        previous = _revision_from_row(row) if row is not None else None
        if previous is None and not attempt.success:
            return None
        item = self.scheduler.schedule(
            student_id,
            exercise_id,
            performance_rating(attempt.success, attempt.hints_used),
            previous=previous,
            review_time=now,
        )
        await asyncio.to_thread(
            db.upsert_revision,
            student_id,
            exercise_id,
            item.next_review,
            item.interval_days,
            item.review_count,
            item.difficulty_factor,
            item.last_review,
        )
        return item

    async def update_streak(self, student_id: int) -> int:
        student = await self._require_student(student_id)
        now = self._clock()
        last_access = db.parse_timestamp(student.get("last_access_at"))
        streak = compute_streak(last_access, int(student.get("streak_days") or 0), now.date())
        await asyncio.to_thread(db.update_student_access, student_id, streak, now)
        return streak

    async def update_preferences(
        self,
        student_id: int,
        preferences: Optional[Mapping[str, Any]] = None,
        adaptations: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        student = await self._require_student(student_id)
        merged_preferences = {**student["preferences"], **dict(preferences or {})}
        merged_adaptations = {**student["adaptations"], **dict(adaptations or {})}
        await asyncio.to_thread(
            db.update_student_settings, student_id, merged_preferences, merged_adaptations
        )
        await self.cache.invalidate_student_cache(student_id)
        student["preferences"] = merged_preferences
        student["adaptations"] = merged_adaptations
        return student

    async def get_progress(
        self,
        student_id: int,
        status: Optional[str] = None,
        page: int = 1,
        limit: int = 50,
        subject: Optional[str] = None,
    ) -> Dict[str, Any]:
        if status is not None and status not in STATUSES:
            raise ValidationError(f"Unknown status: {status}", "INVALID_STATUS")
        if subject is not None and subject not in db.SUBJECTS:
            raise ValidationError(f"Unknown subject: {subject}", "INVALID_SUBJECT")
        if page < 1 or not (1 <= limit <= MAX_PAGE_SIZE):
            raise ValidationError(
                f"page must be >= 1 and limit between 1 and {MAX_PAGE_SIZE}", "INVALID_PAGINATION"
            )
        cacheable = status is None and subject is None and page == 1 and limit == 50
        if cacheable:
            cached = await self.cache.get_cached_student_progress(student_id)
            if cached is not None:
                _LOGGER.debug("Progress cache hit for student %s", student_id)
                return cached

        await self._require_student(student_id)
        offset = (page - 1) * limit
        items = await asyncio.to_thread(db.list_progressions, student_id, status, limit, offset, subject)
        total = await asyncio.to_thread(db.count_progressions, student_id, status, subject)
        lookup = await asyncio.to_thread(db.bulk_exercise_lookup, [row["exercise_id"] for row in items])
        for row in items:
            exercise = lookup.get(int(row["exercise_id"]))
            row["exercise_title"] = exercise["title"] if exercise else None
        payload = {
            "items": items,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": math.ceil(total / limit) if total else 0,
            },
        }
        if cacheable:
            await self.cache.cache_student_progress(student_id, payload)
        return payload

    async def get_sessions(self, student_id: int, days: int = 30) -> Dict[str, Any]:
        if not (1 <= days <= MAX_SESSION_DAYS):
            raise ValidationError(f"days must be between 1 and {MAX_SESSION_DAYS}", "INVALID_DAYS")
        await self._require_student(student_id)
        since = self._clock().date() - timedelta(days=days - 1)
        rows = await asyncio.to_thread(db.list_sessions, student_id, since)
        sessions = [dict(row) for row in rows]
        attempted = sum(s["exercises_attempted"] for s in sessions)
        succeeded = sum(s["exercises_succeeded"] for s in sessions)
        return {
            "days": days,
            "sessions": sessions,
            "totals": {
                "active_days": len(sessions),
                "exercises_attempted": attempted,
                "exercises_succeeded": succeeded,
                "points": sum(s["points"] for s in sessions),
                "minutes": sum(s["minutes"] for s in sessions),
                "success_rate": round(succeeded / attempted * 100, 2) if attempted else 0.0,
            },
        }

    async def completed_exercise_ids(self, student_id: int) -> Set[int]:
        return await asyncio.to_thread(db.completed_exercise_ids, student_id)

    async def revisions(self, student_id: int, due_only: bool = True) -> List[RevisionItem]:
        await self._require_student(student_id)
        rows = await asyncio.to_thread(db.list_revisions, student_id)
        items = [_revision_from_row(row) for row in rows]
        if due_only:
            return self.scheduler.get_due_reviews(items, self._clock())
        return items


def _revision_from_row(row: Mapping[str, Any]) -> RevisionItem:
    return RevisionItem(
        student_id=int(row["student_id"]),
        exercise_id=int(row["exercise_id"]),
        next_review=db.parse_timestamp(row["next_review"]),
        interval_days=int(row["interval_days"]),
        review_count=int(row["review_count"]),
        difficulty_factor=float(row["difficulty_factor"]),
        last_review=db.parse_timestamp(row["last_review"]),
    )
