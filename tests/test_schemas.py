import pytest
from pydantic import ValidationError

from schemas import (
    CalculConfiguration,
    DragDropConfiguration,
    ExerciseDefinition,
    QcmConfiguration,
    StudentCreate,
    parse_configuration,
)


def test_configuration_union_dispatches_on_type():
    assert isinstance(
        parse_configuration({"type": "QCM", "question": "?", "choices": ["a", "b"], "correct_index": 0}),
        QcmConfiguration,
    )
    assert isinstance(
        parse_configuration({"type": "CALCUL", "question": "?", "operation": "addition", "result": 3}),
        CalculConfiguration,
    )
    assert isinstance(
        parse_configuration(
            {"type": "DRAG_DROP", "question": "?", "items": ["a"], "zones": ["z"], "solution": ["a"]}
        ),
        DragDropConfiguration,
    )


def test_unknown_configuration_type_is_rejected():
    with pytest.raises(ValidationError):
        parse_configuration({"type": "TEXTE_LIBRE", "question": "?"})


def test_qcm_index_must_be_in_range():
    with pytest.raises(ValidationError):
        QcmConfiguration(question="?", choices=["a", "b"], correct_index=2)


def test_exercise_bounds():
    base = {
        "slug": "e",
        "title": "t",
        "instruction": "i",
        "type": "CALCUL",
        "configuration": {"type": "CALCUL", "question": "?", "operation": "addition", "result": 1},
    }
    exercise = ExerciseDefinition.model_validate(base)
    assert exercise.points == 10
    assert exercise.difficulty == "decouverte"
    for field, value in (("points", 0), ("points", 101), ("estimated_minutes", 61), ("ordre", 0)):
        with pytest.raises(ValidationError):
            ExerciseDefinition.model_validate({**base, field: value})


@pytest.mark.parametrize(
    "overrides",
    [{"first_name": "A"}, {"last_name": "x" * 51}, {"age": 4}, {"age": 13}, {"level": "CM3"}],
)
def test_student_constraints(overrides):
    data = {"first_name": "Lina", "last_name": "Martin", "age": 6, "level": "CP"}
    data.update(overrides)
    with pytest.raises(ValidationError):
        StudentCreate.model_validate(data)
