# app.py - REVED Kids core API
# - Phonics and math challenge catalogs
# - Student progression, recommendations and revisions
# - Envelope responses: {"success": bool, "data" | "error": ...}

import asyncio
import logging
import random
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from fastapi import Body, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

import db
from engines.caching import CacheService
from engines.maths_generator import CHALLENGE_KINDS, DIFFICULTIES, LEVELS, MathsCatalog
from engines.monitoring import MetricsCollector
from engines.phonics_generator import (
    DIFFICULTY_TIERS,
    PhonicsChallenge,
    challenges_for_difficulty,
    challenges_for_period,
    generate_all_challenges,
)
from engines.progression import ProgressionTracker
from engines.recommendation import DEFAULT_LIMIT, RecommendationSelector
from engines.validation import NotFoundError, ValidationError
from env_validation import Settings, validate_environment
from exercise_bank import ExerciseBank, check_answer
from schemas import AnswerCheckRequest, PreferencesUpdate, StudentCreate

logger = logging.getLogger(__name__)


@dataclass
class Services:
    cache: CacheService
    metrics: MetricsCollector
    tracker: ProgressionTracker
    recommender: RecommendationSelector
    phonics: Tuple[PhonicsChallenge, ...]
    maths: MathsCatalog


def build_services(
    settings: Settings,
    *,
    cache_client: Any = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> Services:
    """Construct every service once; the result is stored on ``app.state``."""
    metrics = MetricsCollector()
    cache = CacheService(
        settings.redis_url,
        namespace=settings.cache_namespace,
        default_ttl=settings.cache_default_ttl,
        timeout=settings.cache_timeout_seconds,
        metrics=metrics,
        client=cache_client,
    )
    tracker = ProgressionTracker(cache, clock=clock or db.utcnow, metrics=metrics)
    recommender = RecommendationSelector(cache, tracker, max_limit=settings.recommendation_max_limit)
    return Services(
        cache=cache,
        metrics=metrics,
        tracker=tracker,
        recommender=recommender,
        phonics=generate_all_challenges(),
        maths=MathsCatalog(),
    )


@asynccontextmanager
async def _lifespan(application: FastAPI):
    try:
        # Validate environment variables first
        settings = validate_environment()
        db.configure(settings.db_path)
        db.init()
        if settings.seed_catalog:
            counts = await asyncio.to_thread(ExerciseBank.from_catalog().sync)
            logger.info("Seeded catalog: %s", counts)
        services = build_services(settings)
        await services.cache.connect()
        application.state.services = services
    except Exception as e:
        logger.error("Failed to initialize application: %s", str(e), exc_info=True)
        raise
    try:
        yield
    finally:
        await services.cache.disconnect()
        db.close()


app = FastAPI(title="REVED Kids core", version="1.0.0", lifespan=_lifespan)


def _services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="services not initialised")
    return services


def _ok(data: Any, status_code: int = 200) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": True, "data": data})


def _error(status_code: int, message: str, code: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": {"message": message, "code": code}},
    )


@app.exception_handler(ValidationError)
async def _validation_error(_: Request, exc: ValidationError):
    return _error(400, exc.message, exc.code)


@app.exception_handler(NotFoundError)
async def _not_found(_: Request, exc: NotFoundError):
    return _error(404, exc.message, exc.code)


@app.exception_handler(db.DatastoreError)
async def _datastore_error(_: Request, exc: db.DatastoreError):
    logger.error("Datastore failure: %s", exc)
    return _error(500, "Internal datastore error", "DATASTORE_ERROR")


@app.exception_handler(RequestValidationError)
async def _request_validation_error(_: Request, exc: RequestValidationError):
    return _error(400, str(exc.errors()), "INVALID_REQUEST")


@app.exception_handler(StarletteHTTPException)
async def _http_error(_: Request, exc: StarletteHTTPException):
    return _error(exc.status_code, str(exc.detail), f"HTTP_{exc.status_code}")


@app.middleware("http")
async def _track_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    services = getattr(request.app.state, "services", None)
    if services is not None:
        services.metrics.record_request(failed=response.status_code >= 500)
        services.metrics.record_slow_operation(
            f"{request.method} {request.url.path}",
            (time.perf_counter() - started) * 1000.0,
        )
    return response


@app.get("/health")
async def health(request: Request):
    services = _services(request)
    return _ok({"status": "ok", "cache_connected": services.cache.connected})


# -------------- phonics catalog --------------
@app.get("/defis/massifs")
async def phonics_challenges(request: Request):
    challenges = _services(request).phonics
    return _ok({"total": len(challenges), "challenges": [c.to_dict() for c in challenges]})


@app.get("/defis/periode/{period}")
async def phonics_by_period(period: int, request: Request):
    if not 1 <= period <= 5:
        raise ValidationError("Period must be between 1 and 5", "INVALID_PERIOD")
    selected = challenges_for_period(period, _services(request).phonics)
    return _ok({"period": period, "total": len(selected), "challenges": [c.to_dict() for c in selected]})


@app.get("/defis/difficulte/{difficulty}")
async def phonics_by_difficulty(difficulty: str, request: Request):
    if difficulty not in DIFFICULTY_TIERS:
        raise ValidationError(
            f"Difficulty must be one of: {', '.join(DIFFICULTY_TIERS)}", "INVALID_DIFFICULTY"
        )
    selected = challenges_for_difficulty(difficulty, _services(request).phonics)
    return _ok({"difficulty": difficulty, "total": len(selected), "challenges": [c.to_dict() for c in selected]})


# -------------- math catalog --------------
def _check_level(level: int) -> None:
    if level not in LEVELS:
        raise ValidationError("Level must be between 1 and 5", "INVALID_LEVEL")


@app.get("/maths/defis")
async def maths_challenges(request: Request):
    catalog = _services(request).maths
    return _ok({"total": len(catalog.challenges), "challenges": [c.to_dict() for c in catalog.challenges]})


@app.get("/maths/defis/aleatoire")
async def maths_random(request: Request, niveau: Optional[int] = None, seed: Optional[int] = None):
    if niveau is not None:
        _check_level(niveau)
    challenge = _services(request).maths.random_challenge(random.Random(seed), niveau)
    if challenge is None:
        raise NotFoundError("No challenge available", "CHALLENGE_NOT_FOUND")
    return _ok(challenge.to_dict())


@app.get("/maths/defis/progression/{student_level}")
async def maths_for_student(student_level: int, request: Request):
    if student_level < 0:
        raise ValidationError("Student level must be positive", "INVALID_LEVEL")
    selected = _services(request).maths.for_student_level(student_level)
    return _ok({"total": len(selected), "challenges": [c.to_dict() for c in selected]})


@app.get("/maths/defis/niveau/{level}")
async def maths_by_level(level: int, request: Request):
    _check_level(level)
    selected = _services(request).maths.by_level(level)
    return _ok({"level": level, "total": len(selected), "challenges": [c.to_dict() for c in selected]})


@app.get("/maths/defis/type/{kind}")
async def maths_by_kind(kind: str, request: Request):
    if kind not in CHALLENGE_KINDS:
        raise ValidationError(f"Type must be one of: {', '.join(CHALLENGE_KINDS)}", "INVALID_TYPE")
    selected = _services(request).maths.by_kind(kind)
    return _ok({"type": kind, "total": len(selected), "challenges": [c.to_dict() for c in selected]})


@app.get("/maths/defis/difficulte/{difficulty}")
async def maths_by_difficulty(difficulty: str, request: Request):
    if difficulty not in DIFFICULTIES:
        raise ValidationError(
            f"Difficulty must be one of: {', '.join(DIFFICULTIES)}", "INVALID_DIFFICULTY"
        )
    selected = _services(request).maths.by_difficulty(difficulty)
    return _ok({"difficulty": difficulty, "total": len(selected), "challenges": [c.to_dict() for c in selected]})


@app.get("/maths/defis/{challenge_id}")
async def maths_challenge(challenge_id: str, request: Request):
    challenge = _services(request).maths.get(challenge_id)
    if challenge is None:
        raise NotFoundError(f"Challenge {challenge_id} not found", "CHALLENGE_NOT_FOUND")
    return _ok(challenge.to_dict())


@app.get("/maths/stats")
async def maths_stats(request: Request):
    return _ok(_services(request).maths.stats())


# -------------- curriculum --------------
@app.get("/curriculum/{level}")
async def curriculum(level: str, request: Request):
    if level not in db.STUDENT_LEVELS:
        raise ValidationError(f"Level must be one of: {', '.join(db.STUDENT_LEVELS)}", "INVALID_LEVEL")
    cache = _services(request).cache
    cached = await cache.get_cached_exercise_hierarchy(level)
    if cached is not None:
        return _ok(cached)

    modules = await asyncio.to_thread(db.list_modules, level)
    exercises = await asyncio.to_thread(db.list_active_exercises, level)
    by_module: Dict[int, List[Dict[str, Any]]] = {}
    for exercise in exercises:
        by_module.setdefault(int(exercise["module_id"]), []).append(
            {
                "id": exercise["id"],
                "title": exercise["title"],
                "type": exercise["type"],
                "difficulty": exercise["difficulty"],
                "ordre": exercise["ordre"],
            }
        )
    hierarchy = [
        {
            "id": row["id"],
            "title": row["title"],
            "subject": row["subject"],
            "period": row["period"],
            "ordre": row["ordre"],
            "exercises": by_module.get(int(row["id"]), []),
        }
        for row in modules
        if row["active"]
    ]
    await cache.cache_exercise_hierarchy(level, hierarchy)
    return _ok(hierarchy)


# -------------- students --------------
async def _student_or_404(student_id: int) -> Dict[str, Any]:
    student = await asyncio.to_thread(db.get_student, student_id)
    if student is None:
        raise NotFoundError(f"Student {student_id} not found", "STUDENT_NOT_FOUND")
    return student


@app.post("/students")
async def create_student(req: StudentCreate):
    student_id = await asyncio.to_thread(
        db.create_student,
        req.first_name,
        req.last_name,
        req.age,
        req.level,
        preferences=req.preferences,
        adaptations=req.adaptations,
    )
    return _ok(await _student_or_404(student_id), status_code=201)


@app.get("/students/{student_id}")
async def get_student(student_id: int):
    return _ok(await _student_or_404(student_id))


@app.get("/students/{student_id}/recommendations")
async def recommendations(student_id: int, request: Request, limit: int = DEFAULT_LIMIT):
    exercises = await _services(request).recommender.recommend(student_id, limit)
    return _ok({"total": len(exercises), "exercises": exercises})


@app.post("/students/{student_id}/attempts")
async def submit_attempt(student_id: int, request: Request, payload: Any = Body(None)):
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be an object", "INVALID_ATTEMPT_DATA")
    exercise_id = payload.get("exercise_id")
    if isinstance(exercise_id, bool) or not isinstance(exercise_id, int):
        raise ValidationError("exercise_id must be an integer", "INVALID_EXERCISE_ID")
    record = await _services(request).tracker.record_attempt(student_id, exercise_id, payload.get("attempt"))
    return _ok(record.to_dict())


@app.get("/students/{student_id}/progress")
async def student_progress(
    student_id: int,
    request: Request,
    status: Optional[str] = None,
    page: int = 1,
    limit: int = 50,
    subject: Optional[str] = None,
):
    return _ok(await _services(request).tracker.get_progress(student_id, status, page, limit, subject))


@app.get("/students/{student_id}/sessions")
async def student_sessions(student_id: int, request: Request, days: int = 30):
    return _ok(await _services(request).tracker.get_sessions(student_id, days))


@app.get("/students/{student_id}/revisions")
async def student_revisions(student_id: int, request: Request, due_only: bool = True):
    tracker = _services(request).tracker
    scheduled = await tracker.revisions(student_id, due_only=False)
    now = tracker.now()
    items = tracker.scheduler.get_due_reviews(scheduled, now) if due_only else scheduled
    return _ok(
        {
            "revisions": [item.to_dict() for item in items],
            "load": tracker.scheduler.review_load(scheduled, now),
        }
    )


@app.patch("/students/{student_id}/preferences")
async def update_preferences(student_id: int, req: PreferencesUpdate, request: Request):
    student = await _services(request).tracker.update_preferences(
        student_id, req.preferences, req.adaptations
    )
    return _ok(student)


# -------------- exercises --------------
@app.post("/exercises/{exercise_id}/check")
async def check_exercise_answer(exercise_id: int, req: AnswerCheckRequest):
    exercise = await asyncio.to_thread(db.get_exercise, exercise_id)
    if exercise is None:
        raise NotFoundError(f"Exercise {exercise_id} not found", "EXERCISE_NOT_FOUND")
    return _ok({"exercise_id": exercise_id, "correct": check_answer(exercise["configuration"], req.answer)})


# -------------- monitoring --------------
@app.get("/monitoring/cache")
async def cache_monitoring(request: Request):
    services = _services(request)
    return _ok({"cache": await services.cache.stats(), "metrics": services.metrics.snapshot()})
