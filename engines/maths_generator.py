"""Math "magic stone" challenges for numbers up to 20.

The catalog is enumerated level by level with plain nested loops, then the
subtraction challenges are appended. ``MathsCatalog`` wraps a generated
catalog with the lookups the API needs; it never mutates the challenges.
"""

from __future__ import annotations

import logging
import random
from collections import Counter
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

_LOGGER = logging.getLogger(__name__)

CHALLENGE_KINDS: Tuple[str, ...] = (
    "decomposition",
    "complement",
    "addition",
    "subtraction",
    "comparison",
)
DIFFICULTIES: Tuple[str, ...] = ("facile", "moyen", "difficile")
LEVELS: Tuple[int, ...] = (1, 2, 3, 4, 5)
TEN_STONE = 10

Solution = Tuple[int, ...]


@dataclass(frozen=True)
class Creature:
    number: int
    name: str
    emoji: str
    power: str


CREATURES: Dict[int, Creature] = {
    creature.number: creature
    for creature in (
        Creature(0, "Vide Mystique", "🫥", "Disparition"),
        Creature(1, "Luciole Solitaire", "✨", "Lumière"),
        Creature(2, "Papillons Jumeaux", "🦋", "Symétrie"),
        Creature(3, "Trèfle Magique", "🍀", "Chance"),
        Creature(4, "Tortue Sage", "🐢", "Stabilité"),
        Creature(5, "Étoile Dorée", "⭐", "Éclat"),
        Creature(6, "Abeille Travailleuse", "🐝", "Industrie"),
        Creature(7, "Arc-en-ciel", "🌈", "Magie"),
        Creature(8, "Pieuvre Câline", "🐙", "Câlins"),
        Creature(9, "Chat à 9 Vies", "🐱", "Résurrection"),
        Creature(10, "Dragon Gardien", "🐉", "Feu Sacré"),
        Creature(11, "Tours Jumelles", "🏗️", "Construction"),
        Creature(12, "Horloge Magique", "🕐", "Temps"),
        Creature(13, "Sorcier Mystère", "🧙", "Mystère"),
        Creature(14, "Coeur d'Amour", "💖", "Amour"),
        Creature(15, "Cristal de Glace", "💎", "Purification"),
        Creature(16, "Château Fort", "🏰", "Protection"),
        Creature(17, "Fée Danseuse", "🧚", "Grâce"),
        Creature(18, "Lune Pleine", "🌕", "Nuit"),
        Creature(19, "Soleil Couchant", "🌅", "Aurore"),
        Creature(20, "Roi des Nombres", "👑", "Royauté"),
    )
}


@dataclass(frozen=True)
class MathChallenge:
    id: str
    kind: str
    level: int
    target: int
    stones: Tuple[int, ...]
    solutions: Tuple[Solution, ...]
    prompt: str
    hint: str
    creature: Creature
    difficulty: str
    bonus_objective: Optional[str] = None
    time_limit: Optional[int] = None

    def is_solution(self, values: Iterable[int]) -> bool:
        """True when ``values`` matches one solution.

        Order is ignored except for subtractions, which are read as
        (minuend, subtrahend).
        """
        if self.kind == "subtraction":
            ordered = tuple(int(v) for v in values)
            return ordered in self.solutions
        candidate = tuple(sorted(int(v) for v in values))
        return any(tuple(sorted(solution)) == candidate for solution in self.solutions)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Reward:
    crystals: int
    stars: int
    powers: Tuple[str, ...] = field(default=())
    achievement: str = ""
    visual_effect: str = "sparkles"
    tier: str = "bronze"


def _dedupe_solutions(solutions: Iterable[Solution]) -> Tuple[Solution, ...]:
    seen: set[Solution] = set()
    unique: List[Solution] = []
    for solution in solutions:
        key = tuple(sorted(solution))
        if key in seen:
            continue
        seen.add(key)
        unique.append(tuple(solution))
    return tuple(unique)


def _stones(values: Iterable[int]) -> Tuple[int, ...]:
    return tuple(sorted({int(v) for v in values if v > 0}))


def _pairs_up_to_half(target: int) -> List[Solution]:
    # (a, target - a) with a <= target - a, so 2+3 and 3+2 are one solution
    return [(a, target - a) for a in range(1, target) if a <= target - a]


def _ten_plus_units(target: int) -> List[Solution]:
    units = target - TEN_STONE
    solutions: List[Solution] = [(TEN_STONE, units)]
    for a in range(1, units):
        solutions.append((TEN_STONE, a, units - a))
    return solutions


def _decomposition_challenges(start_seq: int) -> List[MathChallenge]:
    challenges: List[MathChallenge] = []
    seq = start_seq

    for target in range(2, 6):
        creature = CREATURES[target]
        solutions = _pairs_up_to_half(target)
        stones = [v for pair in solutions for v in pair]
        stones.extend(range(1, target + 3))
        challenges.append(
            MathChallenge(
                id=f"decomp_{target}_{seq}",
                kind="decomposition",
                level=1,
                target=target,
                stones=_stones(stones),
                solutions=_dedupe_solutions(solutions),
                prompt=f"Réveille {creature.name} en trouvant comment faire {target} !",
                hint=f"Cherche deux pierres qui font {target} ensemble",
                creature=creature,
                difficulty="facile",
            )
        )
        seq += 1

    for target in range(6, 11):
        creature = CREATURES[target]
        solutions = _pairs_up_to_half(target)
        stones = [v for pair in solutions for v in pair]
        stones.extend(range(1, 13))
        challenges.append(
            MathChallenge(
                id=f"decomp_{target}_{seq}",
                kind="decomposition",
                level=2,
                target=target,
                stones=_stones(stones),
                solutions=_dedupe_solutions(solutions),
                prompt=f"Libère la magie de {creature.name} ({target}) !",
                hint=f"{target} = ? + ?",
                creature=creature,
                difficulty="facile" if target <= 7 else "moyen",
            )
        )
        seq += 1
    return challenges


def _complement_challenges(start_seq: int) -> List[MathChallenge]:
    dragon = CREATURES[TEN_STONE]
    challenges: List[MathChallenge] = []
    for offset, missing in enumerate(range(1, 10)):
        complement = TEN_STONE - missing
        challenges.append(
            MathChallenge(
                id=f"complement_10_{missing}_{start_seq + offset}",
                kind="complement",
                level=3,
                target=TEN_STONE,
                stones=_stones(list(range(1, 10)) + [complement]),
                solutions=((missing, complement),),
                prompt=f"Le Dragon Gardien a {missing}... Que lui manque-t-il pour avoir 10 ?",
                hint=f"{missing} + ? = 10",
                creature=dragon,
                difficulty="moyen",
                bonus_objective="Trouve en moins de 10 secondes",
                time_limit=20,
            )
        )
    return challenges


def _addition_challenges(start_seq: int) -> List[MathChallenge]:
    challenges: List[MathChallenge] = []
    seq = start_seq

    for target in range(11, 16):
        creature = CREATURES[target]
        solutions = _ten_plus_units(target)
        stones = [v for solution in solutions for v in solution]
        stones.extend(range(1, 10))
        challenges.append(
            MathChallenge(
                id=f"tens_{target}_{seq}",
                kind="addition",
                level=4,
                target=target,
                stones=_stones(stones),
                solutions=_dedupe_solutions(solutions),
                prompt=f"Aide {creature.name} à atteindre {target} avec le Cristal Dragon !",
                hint="Utilise le Cristal Dragon (10) + d'autres pierres",
                creature=creature,
                difficulty="moyen",
            )
        )
        seq += 1

    for target in range(16, 21):
        creature = CREATURES[target]
        solutions = _ten_plus_units(target)
        for first in range(5, 10):
            rest = target - first
            if first <= rest <= 15:
                solutions.append((first, rest))
        stones = [v for solution in solutions for v in solution]
        challenges.append(
            MathChallenge(
                id=f"expert_{target}_{seq}",
                kind="addition",
                level=5,
                target=target,
                stones=_stones(stones),
                solutions=_dedupe_solutions(solutions),
                prompt=f"Défi EXPERT ! Réveille {creature.name} !",
                hint=f"Nombreuses façons de faire {target}... Sois créatif !",
                creature=creature,
                difficulty="difficile",
                bonus_objective="Trouve 2 solutions différentes",
                time_limit=60,
            )
        )
        seq += 1
    return challenges


def _subtraction_challenges() -> List[MathChallenge]:
    """Subtraction solutions are ``(minuend, subtrahend)`` pairs."""

    challenges: List[MathChallenge] = []
    seq = 1

    for minuend in range(5, 11):
        for subtrahend in range(1, minuend):
            result = minuend - subtrahend
            challenges.append(
                MathChallenge(
                    id=f"subtraction_{minuend}_{subtrahend}_{seq}",
                    kind="subtraction",
                    level=1 if minuend <= 7 else 2,
                    target=result,
                    stones=_stones([minuend, subtrahend, result, result + 1, result - 1]),
                    solutions=((minuend, subtrahend),),
                    prompt=f"Tu as {minuend} cristaux. Tu en donnes {subtrahend}. Combien te reste-t-il ?",
                    hint=f"{minuend} - {subtrahend} = ?",
                    creature=CREATURES[result],
                    difficulty="facile" if minuend <= 7 else "moyen",
                )
            )
            seq += 1

    for minuend in range(15, 21):
        for subtrahend in range(5, 11):
            result = minuend - subtrahend
            challenges.append(
                MathChallenge(
                    id=f"subtraction_tens_{minuend}_{subtrahend}_{seq}",
                    kind="subtraction",
                    level=3,
                    target=result,
                    stones=_stones(
                        [minuend, subtrahend, result, TEN_STONE, result + 2, result - 2]
                    ),
                    solutions=((minuend, subtrahend),),
                    prompt=f"Le Dragon a {minuend} trésors. Il en partage {subtrahend}. Combien garde-t-il ?",
                    hint="Utilise le Cristal Dragon (10) pour t'aider",
                    creature=CREATURES[result],
                    difficulty="moyen",
                    bonus_objective="Trouve en moins de 15 secondes",
                    time_limit=30,
                )
            )
            seq += 1
    return challenges


def generate_all_maths_challenges() -> Tuple[MathChallenge, ...]:
    """Return the full math catalog: levels 1 to 5, then subtractions."""

    challenges: List[MathChallenge] = []
    challenges.extend(_decomposition_challenges(len(challenges) + 1))
    challenges.extend(_complement_challenges(len(challenges) + 1))
    challenges.extend(_addition_challenges(len(challenges) + 1))
    challenges.extend(_subtraction_challenges())
    _LOGGER.debug("Generated %d math challenges", len(challenges))
    return tuple(challenges)


def compute_reward(
    challenge: MathChallenge,
    elapsed_seconds: float,
    solutions_found: int = 1,
    bonus_achieved: bool = False,
) -> Reward:
    """Crystals and stars earned for a solved challenge.

    Speed, creativity (several solutions) and the bonus objective each upgrade
    the tier; the last one that applies wins.
    """

    crystals = 10 * challenge.level
    stars = challenge.level
    powers: List[str] = []
    achievement = ""
    visual_effect = "sparkles"
    tier = "bronze"

    if challenge.time_limit and elapsed_seconds <= challenge.time_limit * 0.5:
        crystals += 20
        stars += 2
        powers.append("Vitesse Éclair")
        tier = "or"
        achievement = "⚡ Matheux Rapide !"
        visual_effect = "lightning"
    elif challenge.time_limit and elapsed_seconds <= challenge.time_limit * 0.75:
        crystals += 10
        stars += 1
        tier = "argent"

    if solutions_found > 1:
        crystals += solutions_found * 5
        stars += solutions_found
        powers.append("Esprit Créatif")
        tier = "platine"
        achievement = "🧠 Génie des Maths !"
        visual_effect = "rainbow"

    if bonus_achieved:
        crystals += 30
        stars += 3
        powers.append("Maître des Défis")
        tier = "diamant"
        achievement = "💎 Perfection Mathématique !"
        visual_effect = "diamond_explosion"

    if not achievement:
        achievement = {
            "complement": "🐉 Ami du Dragon !",
            "decomposition": "🔍 Explorateur de Nombres !",
            "subtraction": "➖ Maître de la Soustraction !",
        }.get(challenge.kind, "✨ Magicien Débutant !")

    return Reward(
        crystals=crystals,
        stars=stars,
        powers=tuple(powers),
        achievement=achievement,
        visual_effect=visual_effect,
        tier=tier,
    )


class MathsCatalog:
    """Read-only queries over a generated math catalog."""

    def __init__(self, challenges: Optional[Sequence[MathChallenge]] = None) -> None:
        self._challenges: Tuple[MathChallenge, ...] = (
            generate_all_maths_challenges() if challenges is None else tuple(challenges)
        )
        self._by_id = {challenge.id: challenge for challenge in self._challenges}

    @property
    def challenges(self) -> Tuple[MathChallenge, ...]:
        return self._challenges

    def get(self, challenge_id: str) -> Optional[MathChallenge]:
        return self._by_id.get(challenge_id)

    def by_level(self, level: int) -> List[MathChallenge]:
        return [c for c in self._challenges if c.level == level]

    def by_kind(self, kind: str) -> List[MathChallenge]:
        return [c for c in self._challenges if c.kind == kind]

    def by_difficulty(self, difficulty: str) -> List[MathChallenge]:
        return [c for c in self._challenges if c.difficulty == difficulty]

    def random_challenge(
        self, rng: random.Random, level: Optional[int] = None
    ) -> Optional[MathChallenge]:
        pool = self._challenges if level is None else self.by_level(level)
        if not pool:
            return None
        return rng.choice(pool)

    def for_student_level(self, student_level: int) -> List[MathChallenge]:
        """Sliding window of levels matched to the learner's progress."""
        if student_level <= 1:
            return self.by_level(1)
        if student_level <= 3:
            return self.by_level(1) + self.by_level(2)
        if student_level <= 5:
            return self.by_level(2) + self.by_level(3)
        if student_level <= 7:
            return self.by_level(3) + self.by_level(4)
        return list(self._challenges)

    def stats(self) -> Dict[str, Any]:
        per_level = Counter(c.level for c in self._challenges)
        per_kind = Counter(c.kind for c in self._challenges)
        per_difficulty = Counter(c.difficulty for c in self._challenges)
        return {
            "total": len(self._challenges),
            "per_level": {level: per_level.get(level, 0) for level in LEVELS},
            "per_kind": {kind: per_kind.get(kind, 0) for kind in CHALLENGE_KINDS},
            "per_difficulty": {d: per_difficulty.get(d, 0) for d in DIFFICULTIES},
        }
