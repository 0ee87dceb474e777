from __future__ import annotations

import asyncio
import json
import logging
import random
from dataclasses import dataclass
from typing import Any, Callable, Protocol

from .choices import option_label
from .errors import ContentGenerationFailure
from .llm import LLMClient
from .normalize import norm_cmp_text, norm_text, parse_int_literal
from .problems import Problem, ProblemParams
from .turn import TurnPolicy
from .validation import has_errors, validate_problem

logger = logging.getLogger(__name__)

OPERATIONS = {
    "+": ("+", "plus", "addition"),
    "-": ("-", "minus", "subtraction"),
    "*": ("×", "times", "multiplication"),
    "/": ("÷", "divided by", "division"),
}
_OPERATION_ALIASES = {
    "+": "+", "add": "+", "addition": "+", "plus": "+",
    "-": "-", "sub": "-", "subtraction": "-", "minus": "-",
    "*": "*", "x": "*", "×": "*", "mul": "*", "multiplication": "*", "times": "*",
    "/": "/", "÷": "/", "div": "/", "division": "/",
}
# operand upper bounds per difficulty: (add/sub, multiplication, division answer)
_ARITH_RANGES = {
    "easy": (12, 10, 10),
    "medium": (50, 12, 12),
    "hard": (100, 20, 15),
}
_COMPARISON_RANGES = {"easy": 20, "medium": 100, "hard": 1000}
SEQUENCE_STEPS = (1, 2, 3, 5, 10)
SEQUENCE_LENGTH = 4
MAX_OPTIONS = 4
MAX_SUGGESTIONS = 10
SUGGEST_WORD_LENGTHS = range(2, 11)
LLM_ATTEMPTS = 2


class ContentProvider(Protocol):
    name: str

    async def generate(self, params: ProblemParams, item: str | None = None) -> Problem: ...


def parse_operation(raw: str | None) -> str | None:
    """Operation selector from a category string; None means random."""
    key = (raw or "").strip().lower()
    if not key or key == "random":
        return None
    op = _OPERATION_ALIASES.get(key)
    if op is None:
        raise ValueError(f"unknown operation {raw!r}")
    return op


def _checked(problem: Problem, exercise: str) -> Problem:
    issues = validate_problem(problem)
    for issue in issues:
        if issue.severity == "warning":
            logger.warning("problem_warning: exercise=%s item=%s message=%s", exercise, issue.item_key, issue.message)
    if has_errors(issues):
        messages = "; ".join(i.message for i in issues if i.severity == "error")
        logger.warning("problem_rejected: exercise=%s errors=%s", exercise, messages)
        raise ContentGenerationFailure(f"invalid {exercise} problem: {messages}", exercise=exercise)
    return problem


def _spoken_options(options: tuple[str, ...]) -> str:
    return " ".join(f"Option {option_label(i)}: {opt}." for i, opt in enumerate(options))


# ---------------- local generators ----------------

class ArithmeticProvider:
    name = "arithmetic"

    def __init__(self, rng: random.Random | None = None):
        self._rng = rng or random.Random()

    def build(self, params: ProblemParams) -> Problem:
        rng = self._rng
        try:
            op = parse_operation(params.category)
        except ValueError as exc:
            raise ContentGenerationFailure(str(exc), exercise=self.name) from exc
        if op is None:
            op = rng.choice(list(OPERATIONS))
        add_max, mul_max, div_max = _ARITH_RANGES[params.difficulty]
        if op == "+":
            a, b = rng.randint(1, add_max), rng.randint(1, add_max)
            answer = a + b
        elif op == "-":
            a, b = rng.randint(1, add_max), rng.randint(1, add_max)
            if b > a:
                a, b = b, a
            answer = a - b
        elif op == "*":
            a, b = rng.randint(1, mul_max), rng.randint(1, mul_max)
            answer = a * b
        else:
            b = rng.randint(1, 10)
            answer = rng.randint(1, div_max)
            a = answer * b
        symbol, spoken, _ = OPERATIONS[op]
        return Problem(
            prompt=f"{a} {symbol} {b} = ?",
            narration=f"What is {a} {spoken} {b}?",
            answer_kind="numeric",
            canonical_answer=answer,
        )

    async def generate(self, params: ProblemParams, item: str | None = None) -> Problem:
        return _checked(self.build(params), self.name)


class TimesTableProvider:
    name = "times-table"

    def __init__(self, rng: random.Random | None = None):
        self._rng = rng or random.Random()

    async def generate(self, params: ProblemParams, item: str | None = None) -> Problem:
        table = parse_int_literal(params.category or "")
        if table is None:
            table = self._rng.randint(1, 12)
        if not 1 <= table <= 12:
            raise ContentGenerationFailure("times table must be between 1 and 12", exercise=self.name)
        multiplier = self._rng.randint(1, 12)
        problem = Problem(
            prompt=f"{table} × {multiplier} = ?",
            narration=f"{table} times {multiplier} equals what?",
            answer_kind="numeric",
            canonical_answer=table * multiplier,
        )
        return _checked(problem, self.name)


class ComparisonProvider:
    name = "comparison"

    def __init__(self, rng: random.Random | None = None):
        self._rng = rng or random.Random()

    async def generate(self, params: ProblemParams, item: str | None = None) -> Problem:
        rng = self._rng
        upper = _COMPARISON_RANGES[params.difficulty]
        a, b = rng.sample(range(1, upper + 1), 2)
        mode = (params.category or "").strip().lower()
        if mode not in ("bigger", "smaller"):
            mode = rng.choice(("bigger", "smaller"))
        answer = max(a, b) if mode == "bigger" else min(a, b)
        question = f"Which number is {mode}: {a} or {b}?"
        problem = Problem(
            prompt=question,
            narration=question,
            answer_kind="numeric",
            canonical_answer=answer,
        )
        return _checked(problem, self.name)


class SequencingProvider:
    name = "sequencing"

    def __init__(self, rng: random.Random | None = None):
        self._rng = rng or random.Random()

    async def generate(self, params: ProblemParams, item: str | None = None) -> Problem:
        rng = self._rng
        start = rng.randint(1, 20)
        step = rng.choice(SEQUENCE_STEPS)
        numbers = [start + i * step for i in range(SEQUENCE_LENGTH)]
        blank = rng.randint(1, SEQUENCE_LENGTH - 1)
        shown = [str(n) if i != blank else "__" for i, n in enumerate(numbers)]
        spoken = [str(n) if i != blank else "blank" for i, n in enumerate(numbers)]
        problem = Problem(
            prompt=f"{', '.join(shown)}\nWhat number is missing?",
            narration=f"{', '.join(spoken)}. What number is missing?",
            answer_kind="numeric",
            canonical_answer=numbers[blank],
            explanation=f"The numbers go up by {step}.",
        )
        return _checked(problem, self.name)


class SpellingProvider:
    name = "spelling"

    def __init__(self, rng: random.Random | None = None):
        self._rng = rng or random.Random()

    async def generate(self, params: ProblemParams, item: str | None = None) -> Problem:
        word = norm_text(item or "")
        if not word:
            raise ContentGenerationFailure("spelling needs a word from the word list", exercise=self.name)
        letters = list(word.lower())
        self._rng.shuffle(letters)
        problem = Problem(
            prompt=f"Spell the word you hear. It has {len(word)} letters.",
            narration=f"Spell the word: {word}. {word}.",
            answer_kind="text",
            canonical_answer=word,
            hint=f"The letters are: {', '.join(sorted(letters))}.",
            item_key=word,
        )
        return _checked(problem, self.name)


class IdentifyProvider:
    """Hear a word from the list and pick it among other words from the same list."""
    name = "identify"

    def __init__(self, rng: random.Random | None = None):
        self._rng = rng or random.Random()

    async def generate(self, params: ProblemParams, item: str | None = None) -> Problem:
        word = norm_text(item or "")
        if not word:
            raise ContentGenerationFailure("identify needs a word from the word list", exercise=self.name)
        pool = list(params.word_list)
        self._rng.shuffle(pool)
        try:
            options = _clean_options(pool, word, self._rng)
        except ValueError:
            raise ContentGenerationFailure("identify needs at least two different words", exercise=self.name) from None
        problem = Problem(
            prompt="Which word did you hear?",
            narration=f"Which word is it? {word}. {word}.",
            answer_kind="choice",
            canonical_answer=word,
            options=options,
            hint=f'It starts with "{word[0]}".',
            item_key=word,
        )
        return _checked(problem, self.name)


# ---------------- LLM-backed generators ----------------

def _strip_code_fence(raw: str) -> str:
    text = raw.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        if text.rstrip().endswith("```"):
            text = text.rstrip()[:-3]
    return text.strip()


def _clean_options(options: Any, correct: str, rng: random.Random) -> tuple[str, ...]:
    """Deduplicate, make sure the correct entry is present once, cap and shuffle."""
    if not isinstance(options, list):
        raise ValueError("options list required")
    correct_key = norm_cmp_text(correct)
    seen = {correct_key}
    distractors: list[str] = []
    for opt in options:
        if not isinstance(opt, str):
            continue
        text = norm_text(opt)
        key = norm_cmp_text(text)
        if key and key not in seen:
            seen.add(key)
            distractors.append(text)
    if not distractors:
        raise ValueError("options need at least one distractor")
    picked = distractors[: MAX_OPTIONS - 1] + [correct]
    rng.shuffle(picked)
    return tuple(picked)


def _required_str(payload: dict, key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{key} required")
    return norm_text(value)


def _optional_str(payload: dict, key: str) -> str | None:
    value = payload.get(key)
    if isinstance(value, str) and value.strip():
        return norm_text(value)
    return None


class _LLMProvider:
    name = "llm"

    def __init__(self, llm_client: LLMClient | None, rng: random.Random | None = None):
        self._llm = llm_client
        self._rng = rng or random.Random()

    async def _request(
        self,
        call: Callable[[str | None], str],
        build: Callable[[dict], Any],
        *,
        check: bool = True,
    ) -> Any:
        if self._llm is None:
            raise ContentGenerationFailure("content generator is not configured", exercise=self.name)
        extra: str | None = None
        last_error = "no output"
        for attempt in range(1, LLM_ATTEMPTS + 1):
            try:
                raw = await asyncio.to_thread(call, extra)
            except Exception as exc:
                logger.exception("llm_call_failed: exercise=%s attempt=%s", self.name, attempt)
                last_error = str(exc) or type(exc).__name__
                continue
            try:
                if not raw:
                    raise ValueError("empty output")
                payload = json.loads(_strip_code_fence(raw))
                if not isinstance(payload, dict):
                    raise ValueError("payload must be an object")
                result = build(payload)
                return _checked(result, self.name) if check else result
            except (ValueError, ContentGenerationFailure) as exc:
                # json.JSONDecodeError is a ValueError
                last_error = str(exc)
                logger.warning("llm_output_rejected: exercise=%s attempt=%s error=%s", self.name, attempt, last_error)
                extra = (
                    f"The previous output was rejected ({last_error}). "
                    "Return ONLY one valid JSON object matching the schema."
                )
        raise ContentGenerationFailure(f"could not generate {self.name}: {last_error}", exercise=self.name)


class DefinitionMatchProvider(_LLMProvider):
    name = "definition-match"

    async def generate(self, params: ProblemParams, item: str | None = None) -> Problem:
        word = norm_text(item or "")
        if not word:
            raise ContentGenerationFailure("definition match needs a word", exercise=self.name)

        def call(extra: str | None) -> str:
            return self._llm.generate_definition_match(
                word=word,
                difficulty=params.difficulty,
                word_list=list(params.word_list),
                extra_constraints=extra,
            )

        def build(payload: dict) -> Problem:
            correct = _required_str(payload, "correct_definition")
            options = _clean_options(payload.get("options"), correct, self._rng)
            question = f'What does "{word}" mean?'
            return Problem(
                prompt=question,
                narration=f"{question} {_spoken_options(options)}",
                answer_kind="choice",
                canonical_answer=correct,
                options=options,
                hint=_optional_str(payload, "hint"),
                item_key=word,
            )

        return await self._request(call, build)


class FillBlankProvider(_LLMProvider):
    name = "fill-blank"

    async def generate(self, params: ProblemParams, item: str | None = None) -> Problem:
        word = norm_text(item or "")
        if not word:
            raise ContentGenerationFailure("fill in the blank needs a word", exercise=self.name)

        def call(extra: str | None) -> str:
            return self._llm.generate_fill_blank(
                word=word,
                difficulty=params.difficulty,
                word_list=list(params.word_list),
                extra_constraints=extra,
            )

        def build(payload: dict) -> Problem:
            sentence = _required_str(payload, "sentence_with_blank")
            if "__" not in sentence:
                raise ValueError("sentence_with_blank has no blank")
            correct = _required_str(payload, "correct_word")
            options = _clean_options(payload.get("options"), correct, self._rng)
            spoken_sentence = sentence
            while "__" in spoken_sentence:
                start = spoken_sentence.index("__")
                end = start
                while end < len(spoken_sentence) and spoken_sentence[end] == "_":
                    end += 1
                spoken_sentence = f"{spoken_sentence[:start]}blank{spoken_sentence[end:]}"
            return Problem(
                prompt=f"Fill in the blank:\n{sentence}",
                narration=f"{spoken_sentence} Which word fits? {_spoken_options(options)}",
                answer_kind="choice",
                canonical_answer=correct,
                options=options,
                hint=_optional_str(payload, "hint"),
                item_key=word,
            )

        return await self._request(call, build)


class WordProblemProvider(_LLMProvider):
    name = "word-problem"

    async def generate(self, params: ProblemParams, item: str | None = None) -> Problem:
        try:
            op = parse_operation(params.category)
        except ValueError as exc:
            raise ContentGenerationFailure(str(exc), exercise=self.name) from exc
        operation = OPERATIONS[op][2] if op else "random"

        def call(extra: str | None) -> str:
            return self._llm.generate_word_problem(
                difficulty=params.difficulty,
                operation=operation,
                topic=params.topic,
                learner_name=params.learner_name,
                extra_constraints=extra,
            )

        def build(payload: dict) -> Problem:
            text = _required_str(payload, "problem_text")
            answer = payload.get("numerical_answer")
            if isinstance(answer, float) and answer.is_integer():
                answer = int(answer)
            elif isinstance(answer, str):
                answer = parse_int_literal(answer)
            if not isinstance(answer, int) or isinstance(answer, bool):
                raise ValueError("numerical_answer must be a whole number")
            return Problem(
                prompt=text,
                narration=text,
                answer_kind="numeric",
                canonical_answer=answer,
                explanation=_optional_str(payload, "explanation"),
            )

        return await self._request(call, build)


# ---------------- registry ----------------


class WordSuggester(_LLMProvider):
    """New sight words for the learner's list, skipping words already known."""
    name = "suggest-words"

    async def suggest(
        self,
        *,
        difficulty: str,
        word_length: int,
        mastered: list[str] | tuple[str, ...] = (),
        known: list[str] | tuple[str, ...] = (),
    ) -> list[str]:
        if word_length not in SUGGEST_WORD_LENGTHS:
            raise ValueError(f"word length must be {SUGGEST_WORD_LENGTHS.start}-{SUGGEST_WORD_LENGTHS.stop - 1}")
        skip = {norm_cmp_text(w) for w in (*mastered, *known)}

        def call(extra: str | None) -> str:
            return self._llm.suggest_words(
                difficulty=difficulty,
                word_length=word_length,
                mastered_words=list(mastered),
                extra_constraints=extra,
            )

        def build(payload: dict) -> list[str]:
            raw = payload.get("suggested_words")
            if not isinstance(raw, list):
                raise ValueError("suggested_words list required")
            seen = set(skip)
            words: list[str] = []
            for entry in raw:
                if not isinstance(entry, str):
                    continue
                word = norm_text(entry)
                key = norm_cmp_text(word)
                if not word.isalpha() or len(word) != word_length or key in seen:
                    continue
                seen.add(key)
                words.append(word)
            if not words:
                raise ValueError(f"no new {word_length}-letter words")
            return words[:MAX_SUGGESTIONS]

        words = await self._request(call, build, check=False)
        logger.info("words_suggested: count=%s length=%s difficulty=%s", len(words), word_length, difficulty)
        return words


@dataclass(frozen=True)
class Exercise:
    name: str
    title: str
    provider: ContentProvider
    policy: TurnPolicy
    list_backed: bool = False
    tracks_mastery: bool = False
    min_items: int = 1


def build_exercises(
    llm_client: LLMClient | None,
    *,
    hint_after: int = 2,
    rng: random.Random | None = None,
) -> dict[str, Exercise]:
    rng = rng or random.Random()
    single = TurnPolicy(multi_attempt=False, hint_after=hint_after)
    exercises = [
        Exercise("arithmetic", "Arithmetic", ArithmeticProvider(rng), single),
        Exercise("times-table", "Times tables", TimesTableProvider(rng), single),
        Exercise("comparison", "Bigger or smaller", ComparisonProvider(rng), single),
        Exercise("sequencing", "Missing number", SequencingProvider(rng), single),
        Exercise("word-problem", "Word problems", WordProblemProvider(llm_client, rng), single),
        Exercise(
            "spelling",
            "Spelling",
            SpellingProvider(rng),
            TurnPolicy(multi_attempt=True, hint_after=hint_after),
            list_backed=True,
            tracks_mastery=True,
        ),
        Exercise("definition-match", "Word meanings", DefinitionMatchProvider(llm_client, rng), single, list_backed=True),
        Exercise("fill-blank", "Fill in the blank", FillBlankProvider(llm_client, rng), single, list_backed=True),
        Exercise("identify", "Which word?", IdentifyProvider(rng), single, list_backed=True, min_items=2),
    ]
    return {ex.name: ex for ex in exercises}
