"""Phonics challenge catalog for the CP year.

Challenges are generated from the hand-authored ``PHONICS_PROGRESSION``
seed table. Generation is pure: the same seed table always yields the same
tuple of frozen :class:`PhonicsChallenge` objects, so callers can compare
two catalogs element-wise.
"""

from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

_LOGGER = logging.getLogger(__name__)

DIFFICULTY_TIERS: Tuple[str, ...] = ("bronze", "silver", "gold", "platinum", "diamond")
CHALLENGE_KINDS: Tuple[str, ...] = ("assembly", "dictation", "speed", "creativity")
COMPONENT_TYPES: Tuple[str, ...] = ("phoneme", "syllable", "word")

_VOWEL_PATTERN = re.compile(r"[aeiouyéèêëàâäôöùûüÿ]")

_COLORS = {
    "phoneme": "from-red-400 to-red-600",
    "syllable": "from-blue-400 to-blue-600",
    "word": "from-green-400 to-green-600",
}

# Seed words are unique within a period.
PHONICS_PROGRESSION: Dict[int, Dict[str, Tuple[str, ...]]] = {
    1: {
        "phonemes": ("a", "i", "o", "u", "é", "l", "r", "f", "j", "ou", "eu", "m", "n", "s", "p"),
        "syllables": ("la", "li", "lo", "lu", "lé", "ra", "ri", "ro", "ru", "ré", "fa", "fi", "fo", "fu", "fé"),
        "words": ("papa", "mama", "papi", "mamie", "ami", "amie", "rue", "roue", "lune", "soleil", "chat", "rat"),
    },
    2: {
        "phonemes": ("v", "ch", "p", "t", "b", "d", "c", "k", "qu", "g", "e", "x"),
        "syllables": ("va", "vi", "vo", "vu", "vé", "cha", "chi", "cho", "chu", "ché", "pa", "pi", "po", "pu", "pé"),
        "words": ("chat", "chaud", "cheval", "cheveu", "chute", "vache", "voiture", "table", "tapis", "tortue"),
    },
    3: {
        "phonemes": ("z", "w", "y", "h", "ph", "th", "gn", "ai", "ei", "oi", "ui"),
        "syllables": ("za", "zi", "zo", "zu", "zé", "wa", "wi", "wo", "wu", "wé", "ya", "yi", "yo", "yu", "yé"),
        "words": ("zoo", "zèbre", "zéro", "wagon", "watt", "yacht", "yaourt", "yeux"),
    },
    4: {
        "phonemes": ("an", "en", "in", "on", "un", "ain", "ein", "oin", "ien"),
        "syllables": ("an", "en", "in", "on", "un", "ain", "ein", "oin", "ien"),
        "words": ("enfant", "maman", "papa", "chat", "rat"),
    },
    5: {
        "phonemes": ("er", "ir", "ur", "or", "ar", "air", "oir", "eur"),
        "syllables": ("er", "ir", "ur", "or", "ar", "air", "oir", "eur"),
        "words": ("manger", "dormir", "courir", "parler", "chanter", "danser", "jouer"),
    },
}


@dataclass(frozen=True)
class MagicBlock:
    """A movable component the learner drags into a drop zone."""

    id: str
    type: str
    content: str
    correct_position: int
    color: str
    size: str
    audio_key: str
    magnetism: int = 1
    vibration: bool = False
    sparkle_intensity: int = 1


@dataclass(frozen=True)
class DropZone:
    id: str
    position: int
    accepted_types: Tuple[str, ...]


@dataclass(frozen=True)
class PhonicsChallenge:
    """One assembly challenge: place every block in its correct zone."""

    id: str
    target: str
    difficulty: str
    period: int
    kind: str
    components: Tuple[MagicBlock, ...]
    drop_zones: Tuple[DropZone, ...]
    hint: str
    success_message: str
    magic_effect: str
    required_accuracy: int
    time_limit: Optional[int] = None
    bonus_objective: Optional[str] = None

    def assembled(self) -> str:
        """Return the target rebuilt from components in correct order."""
        ordered = sorted(self.components, key=lambda block: block.correct_position)
        return "".join(block.content for block in ordered)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def difficulty_for_period(period: int) -> str:
    if 1 <= period <= len(DIFFICULTY_TIERS):
        return DIFFICULTY_TIERS[period - 1]
    return DIFFICULTY_TIERS[0]


def split_into_syllables(word: str) -> List[str]:
    """Cut ``word`` into syllable-like chunks.

    This is a reading aid heuristic, not a linguistic syllabifier: a chunk is
    closed before a consonant that is followed by a vowel, once the chunk holds
    more than one character. ``"".join(result) == word`` always holds.
    """

    chunks: List[str] = []
    current = ""
    for index, char in enumerate(word):
        current += char
        if index >= len(word) - 1:
            continue
        is_vowel = bool(_VOWEL_PATTERN.match(char))
        next_is_vowel = bool(_VOWEL_PATTERN.match(word[index + 1]))
        if not is_vowel and next_is_vowel and len(current) > 1:
            chunks.append(current[:-1])
            current = char
    if current:
        chunks.append(current)
    return chunks or [word]


def _zones(count: int, accepted: str) -> Tuple[DropZone, ...]:
    return tuple(
        DropZone(id=f"zone_{pos}", position=pos, accepted_types=(accepted,))
        for pos in range(count)
    )


def _phoneme_challenge(phoneme: str, period: int, seq: int) -> PhonicsChallenge:
    block = MagicBlock(
        id=f"phoneme_{phoneme}",
        type="phoneme",
        content=phoneme,
        correct_position=0,
        color=_COLORS["phoneme"],
        size="petit",
        audio_key=f"phoneme_{phoneme}",
        magnetism=3,
        vibration=True,
        sparkle_intensity=2,
    )
    return PhonicsChallenge(
        id=f"phoneme_{phoneme}_{seq}",
        target=phoneme,
        difficulty=difficulty_for_period(period),
        period=period,
        kind="assembly",
        components=(block,),
        drop_zones=_zones(1, "phoneme"),
        hint=f"🔤 Assemble le son \"{phoneme}\"",
        success_message=f"✨ Parfait ! Tu maîtrises le son \"{phoneme}\" !",
        magic_effect="phoneme_glow",
        required_accuracy=90,
    )


def _syllable_challenge(syllable: str, period: int, seq: int) -> PhonicsChallenge:
    letters = list(syllable)
    blocks = tuple(
        MagicBlock(
            id=f"letter_{letter}_{pos}",
            type="phoneme",
            content=letter,
            correct_position=pos,
            color=_COLORS["syllable"],
            size="petit",
            audio_key=f"phoneme_{letter}",
            magnetism=2,
            sparkle_intensity=3,
        )
        for pos, letter in enumerate(letters)
    )
    return PhonicsChallenge(
        id=f"syllable_{syllable}_{seq}",
        target=syllable,
        difficulty=difficulty_for_period(period),
        period=period,
        kind="assembly",
        components=blocks,
        drop_zones=_zones(len(blocks), "phoneme"),
        hint=f"📝 Forme la syllabe \"{syllable}\"",
        success_message=f"🎉 Excellent ! La syllabe \"{syllable}\" est parfaite !",
        magic_effect="syllable_fusion",
        required_accuracy=95,
    )


def _word_challenge(word: str, period: int, seq: int) -> PhonicsChallenge:
    chunks = split_into_syllables(word)
    blocks = tuple(
        MagicBlock(
            id=f"syllable_{chunk}_{pos}",
            type="syllable",
            content=chunk,
            correct_position=pos,
            color=_COLORS["word"],
            size="moyen",
            audio_key=f"syllable_{chunk}",
            magnetism=1,
            vibration=True,
            sparkle_intensity=4,
        )
        for pos, chunk in enumerate(chunks)
    )
    return PhonicsChallenge(
        id=f"word_{word}_{seq}",
        target=word,
        difficulty=difficulty_for_period(period),
        period=period,
        kind="assembly",
        components=blocks,
        drop_zones=_zones(len(blocks), "syllable"),
        hint=f"📚 Assemble le mot \"{word}\"",
        success_message=f"🌟 Fantastique ! Tu sais lire \"{word}\" !",
        magic_effect="word_creation",
        required_accuracy=98,
        time_limit=30,
    )


def generate_all_challenges(
    progression: Optional[Mapping[int, Mapping[str, Sequence[str]]]] = None,
) -> Tuple[PhonicsChallenge, ...]:
    """Build the full phonics catalog, period by period.

    Within a period, phonemes come first, then syllables, then words. A
    period with empty seed lists contributes nothing.
    """

    table = PHONICS_PROGRESSION if progression is None else progression
    challenges: List[PhonicsChallenge] = []
    seq = 1
    for period in sorted(table):
        seeds = table[period] or {}
        for phoneme in seeds.get("phonemes", ()):
            challenges.append(_phoneme_challenge(phoneme, period, seq))
            seq += 1
        for syllable in seeds.get("syllables", ()):
            challenges.append(_syllable_challenge(syllable, period, seq))
            seq += 1
        for word in seeds.get("words", ()):
            challenges.append(_word_challenge(word, period, seq))
            seq += 1
    _LOGGER.debug("Generated %d phonics challenges", len(challenges))
    return tuple(challenges)


def challenges_for_period(
    period: int, challenges: Optional[Sequence[PhonicsChallenge]] = None
) -> List[PhonicsChallenge]:
    source = generate_all_challenges() if challenges is None else challenges
    return [challenge for challenge in source if challenge.period == period]


def challenges_for_difficulty(
    difficulty: str, challenges: Optional[Sequence[PhonicsChallenge]] = None
) -> List[PhonicsChallenge]:
    source = generate_all_challenges() if challenges is None else challenges
    return [challenge for challenge in source if challenge.difficulty == difficulty]
