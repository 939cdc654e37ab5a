"""Pydantic schemas for request bodies, catalog files and exercise configuration."""

from __future__ import annotations

from typing import Annotated, Any, Dict, List, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, model_validator

__all__ = [
    "QcmConfiguration",
    "CalculConfiguration",
    "DragDropConfiguration",
    "ExerciseConfiguration",
    "CONFIGURATION_ADAPTER",
    "ExerciseDefinition",
    "ModuleDefinition",
    "StudentCreate",
    "PreferencesUpdate",
    "AnswerCheckRequest",
    "parse_configuration",
]

StudentLevel = Literal["CP", "CE1", "CE2", "CM1", "CM2"]
Subject = Literal["MATHEMATIQUES", "FRANCAIS", "SCIENCES", "HISTOIRE_GEOGRAPHIE", "ANGLAIS"]
Period = Literal["P1", "P2", "P3", "P4", "P5"]
ExerciseDifficulty = Literal["decouverte", "consolidation", "maitrise"]


class QcmConfiguration(BaseModel):
    """Multiple choice question with a single correct choice."""
    type: Literal["QCM"] = "QCM"
    question: str = Field(min_length=1)
    choices: List[str] = Field(min_length=2)
    correct_index: int = Field(ge=0)

    @model_validator(mode="after")
    def _check_index(self) -> "QcmConfiguration":
        if self.correct_index >= len(self.choices):
            raise ValueError("correct_index must point at one of the choices")
        return self


class CalculConfiguration(BaseModel):
    type: Literal["CALCUL"] = "CALCUL"
    question: str = Field(min_length=1)
    operation: str = Field(
        description="Kind of computation (addition, subtraction, decomposition, complement, ...).",
    )
    result: int
    stones: List[int] = Field(
        default_factory=list,
        description="Numbers the learner may combine; empty when any number is allowed.",
    )
    solutions: List[List[int]] = Field(
        default_factory=list,
        description="Accepted combinations; subtraction solutions are ordered (minuend, subtrahend).",
    )


class DragDropConfiguration(BaseModel):
    """Items to drop into ordered zones; ``solution`` lists the expected item per zone."""
    type: Literal["DRAG_DROP"] = "DRAG_DROP"
    question: str = Field(min_length=1)
    items: List[str] = Field(min_length=1)
    zones: List[str] = Field(min_length=1)
    solution: List[str]

    @model_validator(mode="after")
    def _check_solution(self) -> "DragDropConfiguration":
        if len(self.solution) != len(self.zones):
            raise ValueError("solution must name one item per zone")
        unknown = [item for item in self.solution if item not in self.items]
        if unknown:
            raise ValueError(f"solution references unknown items: {', '.join(unknown)}")
        return self


ExerciseConfiguration = Annotated[
    Union[QcmConfiguration, CalculConfiguration, DragDropConfiguration],
    Field(discriminator="type"),
]

CONFIGURATION_ADAPTER: TypeAdapter[ExerciseConfiguration] = TypeAdapter(ExerciseConfiguration)


def parse_configuration(raw: Any) -> Union[QcmConfiguration, CalculConfiguration, DragDropConfiguration]:
    """Validate a stored configuration payload into its tagged variant."""
    return CONFIGURATION_ADAPTER.validate_python(raw)


class ExerciseDefinition(BaseModel):
    slug: str = Field(min_length=1)
    title: str = Field(min_length=1)
    instruction: str = Field(min_length=1)
    type: Literal["QCM", "CALCUL", "DRAG_DROP"]
    difficulty: ExerciseDifficulty = "decouverte"
    points: int = Field(default=10, ge=1, le=100)
    estimated_minutes: int = Field(default=5, ge=1, le=60)
    ordre: int = Field(default=1, ge=1)
    configuration: ExerciseConfiguration
    active: bool = True

    @model_validator(mode="after")
    def _check_type(self) -> "ExerciseDefinition":
        if self.configuration.type != self.type:
            raise ValueError(
                f"configuration type {self.configuration.type} does not match exercise type {self.type}"
            )
        return self


class ModuleDefinition(BaseModel):
    slug: str = Field(min_length=1)
    title: str = Field(min_length=1)
    description: str | None = None
    level: StudentLevel
    subject: Subject
    period: Period
    ordre: int = Field(default=1, ge=1)
    active: bool = True
    exercises: List[ExerciseDefinition] = Field(default_factory=list)


class StudentCreate(BaseModel):
    first_name: str = Field(min_length=2, max_length=50)
    last_name: str = Field(min_length=2, max_length=50)
    age: int = Field(ge=5, le=12)
    level: StudentLevel = "CP"
    preferences: Dict[str, Any] = Field(default_factory=dict)
    adaptations: Dict[str, Any] = Field(default_factory=dict)


class PreferencesUpdate(BaseModel):
    preferences: Dict[str, Any] | None = None
    adaptations: Dict[str, Any] | None = None


class AnswerCheckRequest(BaseModel):
    answer: Any = Field(description="Choice index (QCM), number or list of numbers (CALCUL), ordered items (DRAG_DROP).")
