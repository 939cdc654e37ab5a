"""Export the generated challenge catalogs or validate/sync an exercise bank."""
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, Sequence

import db
from engines.maths_generator import MathsCatalog
from engines.phonics_generator import generate_all_challenges
from exercise_bank import ExerciseBank, ExerciseValidationError


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--kind",
        choices=("phonics", "maths", "modules", "stats"),
        default="stats",
        help="What to export (default: stats)",
    )
    parser.add_argument(
        "--bank",
        type=str,
        default=None,
        help="Optional exercise bank JSON file to use instead of the generated catalog",
    )
    parser.add_argument(
        "--sync",
        action="store_true",
        help="Write the modules and exercises into the database at DB_PATH",
    )
    parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Optional path to write the JSON export",
    )
    return parser


def _build_export(kind: str, bank: ExerciseBank) -> Any:
    if kind == "phonics":
        return [challenge.to_dict() for challenge in generate_all_challenges()]
    if kind == "maths":
        return [challenge.to_dict() for challenge in MathsCatalog().challenges]
    if kind == "modules":
        return [module.model_dump() for module in bank.modules]

    phonics = generate_all_challenges()
    per_period: Dict[int, int] = {}
    for challenge in phonics:
        per_period[challenge.period] = per_period.get(challenge.period, 0) + 1
    return {
        "phonics": {"total": len(phonics), "per_period": per_period},
        "maths": MathsCatalog().stats(),
        "modules": len(bank.modules),
        "exercises": bank.exercise_count(),
    }


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        bank = ExerciseBank.from_file(args.bank) if args.bank else ExerciseBank.from_catalog()
    except (ExerciseValidationError, FileNotFoundError) as exc:
        print(f"Invalid exercise bank: {exc}", file=sys.stderr)
        return 1

    if args.sync:
        db.init()
        counts = bank.sync()
        print(f"Synced {counts['modules']} modules and {counts['exercises']} exercises", file=sys.stderr)

    payload = json.dumps(_build_export(args.kind, bank), indent=2, ensure_ascii=False)
    if args.output:
        Path(args.output).write_text(payload + "\n", encoding="utf-8")
    print(payload)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
