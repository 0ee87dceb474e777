from __future__ import annotations

from dataclasses import dataclass

from .normalize import norm_cmp_text, parse_int_literal
from .problems import ANSWER_KINDS, Problem


@dataclass(frozen=True)
class ValidationIssue:
    severity: str  # "error" | "warning"
    message: str
    item_key: str | None = None


def validate_problem(problem: Problem) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []
    key = problem.item_key
    if problem.answer_kind not in ANSWER_KINDS:
        issues.append(ValidationIssue("error", f"unknown answer_kind {problem.answer_kind!r}", key))
        return issues
    if not (problem.prompt or "").strip():
        issues.append(ValidationIssue("error", "prompt required", key))
    if not (problem.narration or "").strip():
        issues.append(ValidationIssue("warning", "narration empty; prompt will not be spoken", key))
    canonical = str(problem.canonical_answer).strip()
    if not canonical:
        issues.append(ValidationIssue("error", "canonical_answer required", key))
        return issues

    if problem.answer_kind == "numeric":
        if parse_int_literal(canonical) is None:
            issues.append(ValidationIssue("error", "numeric canonical_answer must be an integer", key))
        if problem.options:
            issues.append(ValidationIssue("warning", "numeric problem carries options", key))

    if problem.answer_kind == "choice":
        options = [str(x) for x in problem.options]
        if len(options) < 2:
            issues.append(ValidationIssue("error", "choice problem needs at least 2 options", key))
        target = norm_cmp_text(canonical)
        matches = sum(1 for opt in options if norm_cmp_text(opt) == target)
        if matches == 0:
            issues.append(ValidationIssue("error", "canonical_answer not in options", key))
        elif matches > 1:
            issues.append(ValidationIssue("error", "canonical_answer matches multiple options", key))
        keys = [norm_cmp_text(opt) for opt in options]
        if len(set(keys)) != len(keys):
            issues.append(ValidationIssue("warning", "duplicate options", key))
    return issues


def has_errors(issues: list[ValidationIssue]) -> bool:
    return any(issue.severity == "error" for issue in issues)
