"""One problem instance from presentation to advance.

State flow::

    idle -> presented -> awaiting_answer -> evaluating -> feedback -> advancing
                              ^                              |
                              +---- re-armed (multi-attempt) +

Narration of the prompt and answer capture run side by side: the turn is
``awaiting_answer`` as soon as the prompt starts playing. Feedback chains to
advance through a one-shot gate that either the feedback utterance's end or a
timer can open, never both. Every deferred effect is bound to the turn's
liveness token, so a closed turn ignores late engine events.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable

from .grader import GradeResult, coerce_answer, grade
from .liveness import LivenessToken
from .narration import NarrationHandle, NarrationQueue
from .problems import Problem

logger = logging.getLogger(__name__)


class TurnState:
    IDLE = "idle"
    PRESENTED = "presented"
    AWAITING = "awaiting_answer"
    EVALUATING = "evaluating"
    FEEDBACK = "feedback"
    ADVANCING = "advancing"
    CLOSED = "closed"


@dataclass(frozen=True)
class TurnPolicy:
    multi_attempt: bool = False
    hint_after: int = 2
    echo_correct: bool = True

    @property
    def reveal_after(self) -> int:
        return self.hint_after + 2


@dataclass(frozen=True)
class EngineTiming:
    feedback_min_s: float = 1.2
    feedback_per_char_s: float = 0.04
    feedback_max_s: float = 6.0
    reveal_delay_s: float = 2.5
    # backstop for the narrated path in case the utterance is dropped
    narration_fallback_s: float = 20.0

    def feedback_delay(self, message: str) -> float:
        delay = self.feedback_min_s + self.feedback_per_char_s * len(message or "")
        return min(delay, max(self.feedback_max_s, self.feedback_min_s))


class TurnListener:
    """Receives turn events; the engine and surfaces override what they need."""

    def turn_attempted(self, turn: "ExerciseTurn", result: GradeResult) -> None:
        pass

    def turn_feedback(self, turn: "ExerciseTurn", message: str, correct: bool) -> None:
        pass

    def turn_notice(self, turn: "ExerciseTurn", text: str, level: str) -> None:
        pass

    def turn_rearmed(self, turn: "ExerciseTurn") -> None:
        pass

    def turn_hint_unlocked(self, turn: "ExerciseTurn", hint: str) -> None:
        pass

    def turn_reveal_unlocked(self, turn: "ExerciseTurn") -> None:
        pass

    def turn_highlight(self, turn: "ExerciseTurn", char_index: int, char_length: int) -> None:
        pass

    def turn_finished(self, turn: "ExerciseTurn") -> None:
        pass


class _AdvanceGate:
    def __init__(self, turn: "ExerciseTurn"):
        self._turn = turn
        self.fired = False
        self.timer: asyncio.TimerHandle | None = None

    def fire(self) -> None:
        if self.fired:
            return
        self.fired = True
        self.disarm()
        if not self._turn.live:
            return
        self._turn._advance()

    def disarm(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None


class ExerciseTurn:
    def __init__(
        self,
        problem: Problem,
        *,
        narration: NarrationQueue,
        token: LivenessToken,
        policy: TurnPolicy | None = None,
        timing: EngineTiming | None = None,
        listener: TurnListener | None = None,
        learner_name: str | None = None,
    ):
        self.problem = problem
        self.token = token
        self.policy = policy or TurnPolicy()
        self.timing = timing or EngineTiming()
        self.listener = listener or TurnListener()
        self.learner_name = learner_name
        self._narration = narration

        self.state = TurnState.IDLE
        self.raw_input = ""
        self.attempt_state = "unattempted"  # unattempted | correct | incorrect
        self.attempts_made = 0
        self.revealed = False
        self.hint_unlocked = False
        self.reveal_unlocked = False
        self.last_result: GradeResult | None = None

        self._handles: list[NarrationHandle] = []
        self._timers: list[asyncio.TimerHandle] = []
        self._gate: _AdvanceGate | None = None

    # --- status --------------------------------------------------------

    @property
    def live(self) -> bool:
        return self.state != TurnState.CLOSED and self.token.alive

    @property
    def accepting(self) -> bool:
        return self.state == TurnState.AWAITING and self.token.alive

    @property
    def hint_text(self) -> str:
        if self.problem.hint:
            return self.problem.hint
        answer = self.problem.display_answer
        if self.problem.answer_kind == "numeric":
            digits = len(answer.lstrip("-"))
            return f"The answer has {digits} digit{'s' if digits != 1 else ''}."
        return f'It starts with "{answer[:1]}" and has {len(answer)} letters.'

    # --- transitions ---------------------------------------------------

    def present(self) -> None:
        if self.state != TurnState.IDLE or not self.token.alive:
            return
        self.state = TurnState.PRESENTED
        logger.info(
            "turn_present: token=%s kind=%s item=%s",
            self.token.id,
            self.problem.answer_kind,
            self.problem.item_key,
        )
        self._speak(self.problem.narration)
        self.state = TurnState.AWAITING

    def replay_prompt(self) -> bool:
        if not self.accepting:
            return False
        self._speak(self.problem.narration)
        return True

    def submit(self, raw: str | None = None, *, source: str = "typed") -> GradeResult | None:
        if not self.accepting:
            logger.info("turn_submit_ignored: token=%s state=%s source=%s", self.token.id, self.state, source)
            return None
        if raw is not None:
            self.raw_input = raw
        answer = coerce_answer(self.problem, self.raw_input)
        if answer is None:
            if self.problem.answer_kind == "numeric" and self.raw_input.strip():
                self._notice("Please enter a valid number.", "info")
            else:
                self._notice("Please enter an answer.", "info")
            return None

        self.state = TurnState.EVALUATING
        result = grade(self.problem, answer)
        self.attempts_made += 1
        self.last_result = result
        self.attempt_state = "correct" if result.correct else "incorrect"
        self.state = TurnState.FEEDBACK
        logger.info(
            "turn_evaluated: token=%s source=%s verdict=%s attempt=%s",
            self.token.id,
            source,
            result.verdict,
            self.attempts_made,
        )
        self.listener.turn_attempted(self, result)
        if not self.live:
            return result

        if result.correct:
            self._feedback_correct(result)
        elif self.policy.multi_attempt:
            self._rearm(result)
        else:
            self._feedback_incorrect(result)
        return result

    def request_hint(self) -> str | None:
        if not self.accepting or not self.hint_unlocked:
            return None
        hint = self.hint_text
        self._speak(hint)
        return hint

    def reveal(self) -> bool:
        if not self.accepting or not self.reveal_unlocked:
            return False
        self.revealed = True
        self.state = TurnState.FEEDBACK
        message = f'The answer is "{self.problem.display_answer}".'
        logger.info("turn_reveal: token=%s attempts=%s", self.token.id, self.attempts_made)
        self.listener.turn_feedback(self, message, False)
        self._speak(message)
        gate = self._new_gate()
        gate.timer = self._schedule(self.timing.reveal_delay_s, gate.fire)
        return True

    def close(self) -> None:
        if self.state == TurnState.CLOSED:
            return
        self.state = TurnState.CLOSED
        self.token.revoke()
        if self._gate is not None:
            self._gate.disarm()
        for handle in self._handles:
            if handle.active:
                handle.cancel()
        self._handles.clear()
        for timer in self._timers:
            timer.cancel()
        self._timers.clear()
        logger.debug("turn_closed: token=%s", self.token.id)

    # --- feedback ------------------------------------------------------

    def _greeting(self, text: str) -> str:
        if self.learner_name:
            return f"{self.learner_name}, {text[0].lower()}{text[1:]}"
        return text

    def _feedback_correct(self, result: GradeResult) -> None:
        if self.problem.answer_kind == "text":
            message = self._greeting(f'Correct! "{result.canonical}" is right.')
        else:
            message = self._greeting(f"Correct! The answer is {result.canonical}.")
        self.listener.turn_feedback(self, message, True)
        self._chain_advance(message if self.policy.echo_correct else "")

    def _feedback_incorrect(self, result: GradeResult) -> None:
        message = f"Not quite. You answered {result.user_answer_norm}. The correct answer was {result.canonical}."
        if self.problem.explanation:
            message = f"{message} {self.problem.explanation}"
        self.listener.turn_feedback(self, message, False)
        self._chain_advance(message)

    def _rearm(self, result: GradeResult) -> None:
        self.raw_input = ""
        self.state = TurnState.AWAITING
        message = "Not quite. Keep trying!"
        self.listener.turn_feedback(self, message, False)
        self._speak(message)
        if not self.hint_unlocked and self.attempts_made >= self.policy.hint_after:
            self.hint_unlocked = True
            self.listener.turn_hint_unlocked(self, self.hint_text)
        if not self.reveal_unlocked and self.attempts_made >= self.policy.reveal_after:
            self.reveal_unlocked = True
            self.listener.turn_reveal_unlocked(self)
        self.listener.turn_rearmed(self)

    # --- chaining ------------------------------------------------------

    def _new_gate(self) -> _AdvanceGate:
        if self._gate is not None:
            self._gate.disarm()
        self._gate = _AdvanceGate(self)
        return self._gate

    def _chain_advance(self, message: str) -> None:
        gate = self._new_gate()
        if self._narration.available and message:
            gate.timer = self._schedule(
                self.timing.narration_fallback_s + self.timing.feedback_delay(message),
                gate.fire,
            )
            self._speak(message, on_end=gate.fire)
        else:
            gate.timer = self._schedule(self.timing.feedback_delay(message), gate.fire)

    def _advance(self) -> None:
        if self.state == TurnState.ADVANCING:
            return
        self.state = TurnState.ADVANCING
        logger.info(
            "turn_advance: token=%s correct=%s revealed=%s attempts=%s",
            self.token.id,
            self.attempt_state == "correct",
            self.revealed,
            self.attempts_made,
        )
        self.listener.turn_finished(self)

    # --- helpers -------------------------------------------------------

    def _notice(self, text: str, level: str) -> None:
        self.listener.turn_notice(self, text, level)

    def _speak(self, text: str, on_end: Callable[[], None] | None = None) -> None:
        if not text:
            if on_end is not None:
                on_end()
            return
        self._handles = [h for h in self._handles if not h.finished]
        handle = self._narration.speak(
            text,
            on_end=self.token.guard(on_end) if on_end is not None else None,
            on_boundary=self.token.guard(
                lambda idx, length: self.listener.turn_highlight(self, idx, length)
            ),
        )
        if not handle.finished:
            self._handles.append(handle)

    def _schedule(self, delay: float, fn: Callable[[], None]) -> asyncio.TimerHandle:
        timer = asyncio.get_running_loop().call_later(max(0.0, delay), self.token.guard(fn))
        self._timers.append(timer)
        return timer
