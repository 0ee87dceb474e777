from __future__ import annotations

from dataclasses import dataclass, field

ANSWER_KINDS = ("numeric", "choice", "text")
DIFFICULTIES = ("easy", "medium", "hard")


@dataclass(frozen=True)
class Problem:
    prompt: str                      # shown text
    narration: str                   # spoken text
    answer_kind: str                 # numeric | choice | text
    canonical_answer: str | int
    options: tuple[str, ...] = ()
    explanation: str | None = None
    hint: str | None = None
    item_key: str | None = None      # source item for list-backed sessions

    @property
    def display_answer(self) -> str:
        return str(self.canonical_answer)


@dataclass(frozen=True)
class ProblemParams:
    difficulty: str = "easy"
    topic: str | None = None
    category: str | None = None      # operation / table / exercise-specific selector
    learner_name: str | None = None
    word_list: tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if self.difficulty not in DIFFICULTIES:
            raise ValueError(f"difficulty must be one of {', '.join(DIFFICULTIES)}")
