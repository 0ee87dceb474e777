"""Best-effort recovery of integers from speech-recognition transcripts.

Recognizers hand back things like ``"twenty-three"``, ``"5"``, ``"fifty six"``
or ``"seven please"``. ``parse_spoken_number`` favors getting a usable number out of
noisy input over being strict about multi-word numbers, so ``"five six"`` reads
as 56 and ``"one hundred and five"`` stops at 100.
"""
from __future__ import annotations

import logging
import re

from .normalize import norm_transcript

logger = logging.getLogger(__name__)

_UNITS = {
    "zero": 0, "one": 1, "two": 2, "three": 3, "four": 4,
    "five": 5, "six": 6, "seven": 7, "eight": 8, "nine": 9,
}
_TEENS = {
    "ten": 10, "eleven": 11, "twelve": 12, "thirteen": 13, "fourteen": 14,
    "fifteen": 15, "sixteen": 16, "seventeen": 17, "eighteen": 18, "nineteen": 19,
}
_TENS = {
    "twenty": 20, "thirty": 30, "forty": 40, "fifty": 50,
    "sixty": 60, "seventy": 70, "eighty": 80, "ninety": 90,
}
_SCALES = {"hundred": 100, "thousand": 1000}

LEXICON: dict[str, int] = {**_UNITS, **_TEENS, **_TENS, **_SCALES}


def _combine(acc: int, value: int) -> int:
    if acc == 0:
        return value
    if acc % 100 == 0 and value < 100:
        # "one hundred" + "twenty"
        return acc + value
    if acc % 10 == 0 and value < 10:
        # "twenty" + "three"
        return acc + value
    if acc < 10 and value < 10:
        # "five six" -> 56
        return acc * 10 + value
    return acc + value


def _token_value(token: str) -> int | None:
    if token in LEXICON:
        return LEXICON[token]
    if token.isdigit():
        return int(token)
    return None


def parse_spoken_number(transcript: str | None) -> int | None:
    if not transcript:
        return None
    cleaned = norm_transcript(str(transcript))
    if not cleaned:
        return None

    if re.fullmatch(r"-?\d+", cleaned):
        return int(cleaned)

    if cleaned in LEXICON:
        return LEXICON[cleaned]

    tokens = [t for t in re.split(r"[\s-]+", cleaned) if t]
    total = 0
    current = 0
    folded = False
    for token in tokens:
        value = _token_value(token)
        if value is None:
            if folded:
                break
            logger.debug("spoken_number_unparsed: transcript=%r token=%r", cleaned, token)
            return None
        if value == 100 and token == "hundred":
            current = (current or 1) * 100
        elif value == 1000 and token == "thousand":
            total += (current or 1) * 1000
            current = 0
        else:
            current = _combine(current, value)
        folded = True

    result = total + current
    if result == 0:
        return 0 if cleaned in ("zero", "0") else None
    return result


class SpokenNumberParser:
    """Callable wrapper so the parser can be injected where a strategy is expected."""

    def parse(self, transcript: str | None) -> int | None:
        return parse_spoken_number(transcript)

    __call__ = parse
