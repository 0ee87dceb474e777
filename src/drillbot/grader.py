from __future__ import annotations
from dataclasses import dataclass

from .choices import resolve_choice
from .normalize import norm_answer_text, norm_cmp_text, parse_int_literal
from .problems import Problem
from .spoken_numbers import parse_spoken_number

@dataclass
class GradeResult:
    verdict: str            # correct | wrong
    user_answer_norm: str
    canonical: str

    @property
    def correct(self) -> bool:
        return self.verdict == "correct"

def coerce_numeric(raw: str) -> int | None:
    value = parse_int_literal(raw)
    if value is None:
        # typed "twelve" is as good as a dictated one
        value = parse_spoken_number(raw)
    return value

def coerce_answer(problem: Problem, raw: str) -> str | None:
    """Turn raw input into the form that gets graded, or None if it is not an answer yet."""
    text = norm_answer_text(raw)
    if not text:
        return None
    if problem.answer_kind == "numeric":
        value = coerce_numeric(text)
        return None if value is None else str(value)
    if problem.answer_kind == "choice":
        resolved = resolve_choice(text, list(problem.options))
        return resolved if resolved is not None else text
    return text

def grade_numeric(user: str, canonical: str | int) -> GradeResult:
    user_value = coerce_numeric(user)
    canonical_value = parse_int_literal(str(canonical))
    user_norm = str(user_value) if user_value is not None else norm_answer_text(user)
    if user_value is not None and user_value == canonical_value:
        return GradeResult("correct", user_norm, str(canonical))
    return GradeResult("wrong", user_norm, str(canonical))

def grade_text(user: str, canonical: str) -> GradeResult:
    user_norm = norm_answer_text(user)
    canonical_display = (canonical or "").strip()
    user_cmp = norm_cmp_text(user)
    if user_cmp and user_cmp == norm_cmp_text(canonical_display):
        return GradeResult("correct", user_norm, canonical_display)
    return GradeResult("wrong", user_norm, canonical_display)

def grade_choice(user: str, canonical: str, options: list[str]) -> GradeResult:
    resolved = resolve_choice(user, options)
    answer_text = resolved if resolved is not None else user
    return grade_text(answer_text, canonical)

def grade(problem: Problem, user: str) -> GradeResult:
    if problem.answer_kind == "numeric":
        return grade_numeric(user, problem.canonical_answer)
    if problem.answer_kind == "choice":
        return grade_choice(user, str(problem.canonical_answer), list(problem.options))
    return grade_text(user, str(problem.canonical_answer))
