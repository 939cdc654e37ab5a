"""Exercise bank: authored modules built from the generated catalogs or JSON files."""
from __future__ import annotations

import json
import logging
import math
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from pydantic import ValidationError

import db
from engines.maths_generator import MathChallenge, generate_all_maths_challenges
from engines.phonics_generator import PhonicsChallenge, generate_all_challenges
from schemas import (
    CalculConfiguration,
    DragDropConfiguration,
    ModuleDefinition,
    QcmConfiguration,
    parse_configuration,
)

logger = logging.getLogger(__name__)

_MATHS_DIFFICULTY = {"facile": "decouverte", "moyen": "consolidation", "difficile": "maitrise"}


class ExerciseValidationError(ValueError):
    """Raised when a module or exercise from the JSON bank fails validation."""


def _phonics_difficulty(period: int) -> str:
    if period <= 2:
        return "decouverte"
    if period <= 4:
        return "consolidation"
    return "maitrise"


def phonics_exercise(challenge: PhonicsChallenge, ordre: int) -> Dict[str, Any]:
    ordered = sorted(challenge.components, key=lambda block: block.correct_position)
    solution = [block.content for block in ordered]
    return {
        "slug": f"phonics:{challenge.id}",
        "title": challenge.target,
        "instruction": challenge.hint,
        "type": "DRAG_DROP",
        "difficulty": _phonics_difficulty(challenge.period),
        "points": 5 + 5 * challenge.period,
        "estimated_minutes": 3 if challenge.time_limit else 2,
        "ordre": ordre,
        "configuration": {
            "type": "DRAG_DROP",
            "question": challenge.hint,
            "items": sorted(solution),
            "zones": [zone.id for zone in challenge.drop_zones],
            "solution": solution,
        },
    }


def maths_exercise(challenge: MathChallenge, ordre: int) -> Dict[str, Any]:
    minutes = math.ceil(challenge.time_limit / 60) if challenge.time_limit else 3
    return {
        "slug": f"maths:{challenge.id}",
        "title": f"{challenge.creature.emoji} {challenge.creature.name}",
        "instruction": challenge.prompt,
        "type": "CALCUL",
        "difficulty": _MATHS_DIFFICULTY.get(challenge.difficulty, "decouverte"),
        "points": 10 * challenge.level,
        "estimated_minutes": max(1, min(60, minutes)),
        "ordre": ordre,
        "configuration": {
            "type": "CALCUL",
            "question": challenge.prompt,
            "operation": challenge.kind,
            "result": challenge.target,
            "stones": list(challenge.stones),
            "solutions": [list(solution) for solution in challenge.solutions],
        },
    }


def build_catalog_modules(
    phonics: Optional[Sequence[PhonicsChallenge]] = None,
    maths: Optional[Sequence[MathChallenge]] = None,
) -> List[ModuleDefinition]:
    """One CP module per phonics period and per math level, in catalog order."""

    phonics = generate_all_challenges() if phonics is None else phonics
    maths = generate_all_maths_challenges() if maths is None else maths

    raw: List[Dict[str, Any]] = []
    for period in sorted({challenge.period for challenge in phonics}):
        selected = [c for c in phonics if c.period == period]
        raw.append(
            {
                "slug": f"cp-francais-p{period}",
                "title": f"Lecture magique - période {period}",
                "level": "CP",
                "subject": "FRANCAIS",
                "period": f"P{period}",
                "ordre": period,
                "exercises": [phonics_exercise(c, index) for index, c in enumerate(selected, start=1)],
            }
        )
    for level in sorted({challenge.level for challenge in maths}):
        selected = [c for c in maths if c.level == level]
        raw.append(
            {
                "slug": f"cp-maths-niveau-{level}",
                "title": f"Pierres magiques - niveau {level}",
                "level": "CP",
                "subject": "MATHEMATIQUES",
                "period": f"P{min(level, 5)}",
                "ordre": level,
                "exercises": [maths_exercise(c, index) for index, c in enumerate(selected, start=1)],
            }
        )
    return _validate_modules(raw)


def _validate_modules(raw: Any) -> List[ModuleDefinition]:
    if not isinstance(raw, list):
        raise ExerciseValidationError("Exercise bank root must be a JSON list")

    modules: List[ModuleDefinition] = []
    module_slugs: set[str] = set()
    exercise_slugs: set[str] = set()
    for entry in raw:
        if not isinstance(entry, dict):
            raise ExerciseValidationError("Each module must be an object")
        try:
            module = ModuleDefinition.model_validate(entry)
        except ValidationError as exc:
            raise ExerciseValidationError(f"Module {entry.get('slug')} is invalid: {exc}") from exc

        if module.slug in module_slugs:
            raise ExerciseValidationError(f"Duplicate module slug detected: {module.slug}")
        module_slugs.add(module.slug)
        for exercise in module.exercises:
            if exercise.slug in exercise_slugs:
                raise ExerciseValidationError(f"Duplicate exercise slug detected: {exercise.slug}")
            exercise_slugs.add(exercise.slug)
        modules.append(module)
    return modules


class ExerciseBank:
    """Holds validated module definitions and syncs them into the datastore."""

    def __init__(self, modules: Sequence[ModuleDefinition]) -> None:
        self._modules = list(modules)

    @classmethod
    def from_catalog(cls) -> "ExerciseBank":
        return cls(build_catalog_modules())

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "ExerciseBank":
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Exercise bank file not found: {path}")
        with path.open("r", encoding="utf-8") as fh:
            try:
                raw = json.load(fh)
            except json.JSONDecodeError as exc:
                raise ExerciseValidationError(f"Exercise bank is not valid JSON: {exc}") from exc
        return cls(_validate_modules(raw))

    @property
    def modules(self) -> List[ModuleDefinition]:
        return list(self._modules)

    def exercise_count(self) -> int:
        return sum(len(module.exercises) for module in self._modules)

    def sync(self) -> Dict[str, int]:
        """Upsert every module and exercise; return how many of each were written."""
        exercises = 0
        for module in self._modules:
            payload = module.model_dump(exclude={"exercises"})
            module_id = db.upsert_module(payload)
            ids = db.upsert_exercises(
                module_id,
                [exercise.model_dump() for exercise in module.exercises],
            )
            exercises += len(ids)
        logger.info("Synced %d modules and %d exercises", len(self._modules), exercises)
        return {"modules": len(self._modules), "exercises": exercises}


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def _check_calcul(config: CalculConfiguration, answer: Any) -> bool:
    if isinstance(answer, (list, tuple)):
        values = [_as_int(v) for v in answer]
        if not values or any(v is None for v in values):
            return False
        if config.stones and any(v not in config.stones for v in values):
            return False
        if config.operation == "subtraction":
            if config.solutions:
                return list(values) in config.solutions
            return len(values) == 2 and values[0] - values[1] == config.result
        if config.solutions:
            return sorted(values) in [sorted(s) for s in config.solutions]
        return sum(values) == config.result
    value = _as_int(answer)
    return value is not None and value == config.result


def check_answer(configuration: Any, answer: Any) -> bool:
    """Grade ``answer`` against a QCM, CALCUL or DRAG_DROP configuration."""
    if isinstance(configuration, dict):
        configuration = parse_configuration(configuration)

    if isinstance(configuration, QcmConfiguration):
        index = _as_int(answer)
        return index == configuration.correct_index
    if isinstance(configuration, CalculConfiguration):
        return _check_calcul(configuration, answer)
    if isinstance(configuration, DragDropConfiguration):
        if not isinstance(answer, (list, tuple)):
            return False
        return [str(item) for item in answer] == configuration.solution
    raise TypeError(f"Unsupported exercise configuration: {type(configuration).__name__}")
