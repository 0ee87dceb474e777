from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from .answer_input import AnswerInputController
from .errors import ContentGenerationFailure
from .grader import GradeResult
from .liveness import LivenessToken
from .narration import NarrationQueue
from .problems import Problem, ProblemParams
from .providers import Exercise
from .rewards import RewardLedger
from .session import SessionReward, SessionTracker
from .turn import EngineTiming, ExerciseTurn, TurnListener

logger = logging.getLogger(__name__)


class DrillView(Protocol):
    """What a surface shows; every method is called on the event loop and must not block."""

    def show_problem(self, problem: Problem, number: int, total: int) -> None: ...
    def feedback(self, message: str, correct: bool) -> None: ...
    def notice(self, text: str, level: str) -> None: ...
    def hint(self, text: str) -> None: ...
    def reveal_available(self) -> None: ...
    def show_retry(self, message: str) -> None: ...
    def show_completion(self, reward: SessionReward, coins: int | None) -> None: ...


class Drill(TurnListener):
    """Runs one exercise session: fetch a problem, run its turn, score it, repeat."""

    def __init__(
        self,
        exercise: Exercise,
        *,
        params: ProblemParams,
        tracker: SessionTracker,
        narration: NarrationQueue,
        answers: AnswerInputController,
        view: DrillView,
        rewards: RewardLedger | None = None,
        learner_id: int | None = None,
        timing: EngineTiming | None = None,
    ):
        self.exercise = exercise
        self.params = params
        self.tracker = tracker
        self.narration = narration
        self.answers = answers
        self.view = view
        self.rewards = rewards
        self.learner_id = learner_id
        self.timing = timing or EngineTiming()
        self.turn: ExerciseTurn | None = None
        self.awaiting_retry = False
        self.coins: int | None = None
        self._tasks: set[asyncio.Task] = set()
        self._loading = None

    # --- lifecycle -----------------------------------------------------

    @property
    def completed(self) -> bool:
        return self.tracker.completed

    async def start(self) -> ExerciseTurn | None:
        logger.info(
            "drill_start: exercise=%s learner_id=%s difficulty=%s items=%s",
            self.exercise.name,
            self.learner_id,
            self.params.difficulty,
            self.tracker.total_items,
        )
        return await self.load_next()

    async def load_next(self, token: LivenessToken | None = None) -> ExerciseTurn | None:
        """Fetch and present the next problem for the session ``token`` belongs to.

        A continuation scheduled for an earlier session passes that session's
        token and is dropped once a restart or leave replaced it.
        """
        session_token = token or self.tracker.token
        if not self._current(session_token) or self.tracker.completed:
            return None
        if self._loading is session_token:
            return None
        item = self.tracker.next_item() if self.exercise.list_backed else None
        self._loading = session_token
        try:
            problem = await self.exercise.provider.generate(self.params, item)
        except ContentGenerationFailure as exc:
            if not self._current(session_token):
                return None
            logger.warning("drill_content_failed: exercise=%s item=%s error=%s", self.exercise.name, item, exc)
            self.awaiting_retry = True
            self.view.show_retry(str(exc))
            return None
        finally:
            if self._loading is session_token:
                self._loading = None
        if not self._current(session_token):
            # restarted or left while the provider was working
            logger.info("drill_problem_discarded: exercise=%s token=%s", self.exercise.name, session_token.id)
            return None
        self.awaiting_retry = False
        turn = ExerciseTurn(
            problem,
            narration=self.narration,
            token=session_token.child("turn"),
            policy=self.exercise.policy,
            timing=self.timing,
            listener=self,
            learner_name=self.params.learner_name,
        )
        self.turn = turn
        self.answers.bind(turn)
        st = self.tracker.state
        number = st.turns_attempted + 1 if not self.tracker.list_backed else len(st.resolved_items) + 1
        self.view.show_problem(problem, number, self.tracker.total_items)
        turn.present()
        return turn

    async def retry(self) -> ExerciseTurn | None:
        if not self.awaiting_retry:
            return None
        return await self.load_next()

    async def restart(self) -> ExerciseTurn | None:
        self._close_turn()
        self.narration.cancel_all()
        self._cancel_tasks()
        self.tracker.restart()
        self.awaiting_retry = False
        self.coins = None
        logger.info("drill_restart: exercise=%s token=%s", self.exercise.name, self.tracker.token.id)
        return await self.load_next()

    def leave(self) -> None:
        self._close_turn()
        self.narration.cancel_all()
        self.tracker.stop()
        self._cancel_tasks()
        logger.info("drill_leave: exercise=%s learner_id=%s", self.exercise.name, self.learner_id)

    # --- learner actions -----------------------------------------------

    def submit_text(self, text: str) -> GradeResult | None:
        return self.answers.submit_typed(text)

    def start_dictation(self) -> bool:
        return self.answers.start_dictation()

    def replay(self) -> bool:
        return self.turn is not None and self.turn.replay_prompt()

    def request_hint(self) -> str | None:
        turn = self.turn
        if turn is None:
            return None
        hint = turn.request_hint()
        if hint is None:
            self.view.notice("No hint yet. Give it a try first!", "info")
            return None
        self.view.hint(hint)
        return hint

    def reveal(self) -> bool:
        turn = self.turn
        if turn is None or not turn.reveal():
            self.view.notice("Keep trying a little longer before revealing the answer.", "info")
            return False
        return True

    # --- turn events ---------------------------------------------------

    def turn_attempted(self, turn: ExerciseTurn, result: GradeResult) -> None:
        self.tracker.record_attempt(result.correct)
        if result.correct and self.exercise.tracks_mastery and turn.problem.item_key:
            self._spawn(self._record_mastery(turn.problem.item_key))

    def turn_feedback(self, turn: ExerciseTurn, message: str, correct: bool) -> None:
        self.view.feedback(message, correct)

    def turn_notice(self, turn: ExerciseTurn, text: str, level: str) -> None:
        self.view.notice(text, level)

    def turn_hint_unlocked(self, turn: ExerciseTurn, hint: str) -> None:
        self.view.notice("Need help? Ask for a hint.", "info")

    def turn_reveal_unlocked(self, turn: ExerciseTurn) -> None:
        self.view.reveal_available()

    def turn_finished(self, turn: ExerciseTurn) -> None:
        if turn is not self.turn:
            return
        correct = turn.attempt_state == "correct" and not turn.revealed
        done = self.tracker.resolve_turn(turn.problem.item_key, correct)
        self._close_turn()
        token = self.tracker.token
        if done:
            self._spawn(self._complete(token))
        else:
            self._spawn(self.load_next(token))

    # --- internals -----------------------------------------------------

    async def _complete(self, token: LivenessToken) -> None:
        if not self._current(token):
            return
        reward = self.tracker.take_reward()
        if reward is None:
            return
        coins = None
        if self.rewards is not None and self.learner_id is not None:
            try:
                coins = await asyncio.shield(self.rewards.record_session(self.learner_id, self.exercise.name, reward))
            except Exception:
                logger.exception("reward_record_failed: learner_id=%s exercise=%s", self.learner_id, self.exercise.name)
                self.view.notice("Couldn't save your coins this time.", "error")
        if not self._current(token):
            logger.info("drill_completion_discarded: exercise=%s token=%s", self.exercise.name, token.id)
            return
        self.coins = coins
        self.view.show_completion(reward, coins)
        self.narration.speak(
            f"Great job! You got {reward.turns_correct} out of {reward.total_turns}. "
            f"You earned {reward.bonus} golden coins."
        )

    async def _record_mastery(self, word: str) -> None:
        if self.rewards is None or self.learner_id is None:
            return
        try:
            await asyncio.shield(self.rewards.add_mastered_word(self.learner_id, word))
        except Exception:
            logger.exception("mastery_record_failed: learner_id=%s", self.learner_id)

    def _current(self, token: LivenessToken) -> bool:
        return token is self.tracker.token and token.alive

    def _cancel_tasks(self) -> None:
        for task in list(self._tasks):
            task.cancel()

    def _close_turn(self) -> None:
        self.answers.bind(None)
        if self.turn is not None:
            self.turn.close()
            self.turn = None

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
