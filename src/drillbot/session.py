from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field

from .liveness import LivenessToken
from .normalize import norm_cmp_text

logger = logging.getLogger(__name__)

COVER_ALL = "cover-all-items"


@dataclass
class SessionState:
    score_correct: int = 0
    resolved_items: set[str] = field(default_factory=set)
    turns_attempted: int = 0
    wrong_answers: int = 0
    target: int | str = 5
    completed: bool = False


@dataclass(frozen=True)
class SessionReward:
    turns_correct: int
    total_turns: int
    bonus: int


def completion_bonus(base_bonus: int, wrong_answers: int, penalty_per_wrong: int) -> int:
    return max(0, base_bonus - wrong_answers * penalty_per_wrong)


class SessionTracker:
    """Score and completion for one visit to an exercise.

    Quota sessions finish after ``target`` resolved turns. List sessions
    (``items`` given) finish once every distinct item was answered correctly at
    least once; wrong resolutions put the item back in rotation.
    """

    def __init__(
        self,
        *,
        target: int = 5,
        items: list[str] | None = None,
        base_bonus: int = 5,
        penalty_per_wrong: int = 1,
        rng: random.Random | None = None,
    ):
        if items is None and target <= 0:
            raise ValueError("target must be positive")
        self._items: list[str] = []
        if items is not None:
            seen: set[str] = set()
            for item in items:
                key = norm_cmp_text(item)
                if key and key not in seen:
                    seen.add(key)
                    self._items.append(item)
            if not self._items:
                raise ValueError("items list is empty")
        self.list_backed = items is not None
        self.base_bonus = base_bonus
        self.penalty_per_wrong = penalty_per_wrong
        self._rng = rng or random.Random()
        self.order: list[str] = []
        self._cursor = 0
        self.token = LivenessToken("session")
        self.state = SessionState(target=COVER_ALL if self.list_backed else target)
        self._quota = target
        self._reward_issued = False
        self.restart()

    # --- lifecycle -----------------------------------------------------

    def restart(self) -> None:
        self.token.revoke()
        self.token = LivenessToken("session")
        self.state = SessionState(target=COVER_ALL if self.list_backed else self._quota)
        self.order = list(self._items)
        self._rng.shuffle(self.order)
        self._cursor = 0
        self._reward_issued = False
        logger.info("session_restart: token=%s list_backed=%s items=%s", self.token.id, self.list_backed, len(self.order))

    def stop(self) -> None:
        self.token.revoke()

    @property
    def completed(self) -> bool:
        return self.state.completed

    @property
    def total_items(self) -> int:
        return len(self.order) if self.list_backed else self._quota

    @property
    def bonus(self) -> int:
        return completion_bonus(self.base_bonus, self.state.wrong_answers, self.penalty_per_wrong)

    # --- sequencing ----------------------------------------------------

    def next_item(self) -> str | None:
        if not self.list_backed or self.state.completed:
            return None
        n = len(self.order)
        for step in range(n):
            idx = (self._cursor + step) % n
            item = self.order[idx]
            if norm_cmp_text(item) not in self.state.resolved_items:
                self._cursor = (idx + 1) % n
                return item
        return None

    # --- scoring -------------------------------------------------------

    def record_attempt(self, correct: bool) -> None:
        if self.state.completed:
            logger.debug("session_record_ignored: completed token=%s", self.token.id)
            return
        if not correct:
            self.state.wrong_answers += 1

    def resolve_turn(self, item_key: str | None, correct: bool) -> bool:
        """Count a finished turn; returns True when this turn completed the session."""
        st = self.state
        if st.completed:
            logger.debug("session_resolve_ignored: completed token=%s", self.token.id)
            return False
        st.turns_attempted += 1
        if correct:
            st.score_correct += 1
            if item_key:
                st.resolved_items.add(norm_cmp_text(item_key))
        if self.list_backed:
            done = all(norm_cmp_text(item) in st.resolved_items for item in self.order)
        else:
            done = st.turns_attempted >= self._quota
        if done:
            st.completed = True
            logger.info(
                "session_complete: token=%s score=%s turns=%s wrong=%s bonus=%s",
                self.token.id,
                st.score_correct,
                st.turns_attempted,
                st.wrong_answers,
                self.bonus,
            )
        return done

    def take_reward(self) -> SessionReward | None:
        """The completion reward, handed out once per completed session."""
        if not self.state.completed or self._reward_issued:
            return None
        self._reward_issued = True
        return SessionReward(
            turns_correct=self.state.score_correct,
            total_turns=self.state.turns_attempted,
            bonus=self.bonus,
        )
