import asyncio
import random

from drillbot.answer_input import AnswerInputController
from drillbot.dictation import DictationChannel
from drillbot.engine import Drill
from drillbot.errors import ContentGenerationFailure
from drillbot.narration import NarrationQueue
from drillbot.problems import Problem, ProblemParams
from drillbot.providers import Exercise, build_exercises
from drillbot.session import SessionTracker
from drillbot.turn import EngineTiming, TurnPolicy

FAST = EngineTiming(
    feedback_min_s=0.005,
    feedback_per_char_s=0.0,
    feedback_max_s=0.01,
    reveal_delay_s=0.005,
    narration_fallback_s=0.05,
)


class FakeView:
    def __init__(self):
        self.problems = []
        self.feedbacks = []
        self.notices = []
        self.hints = []
        self.reveals = 0
        self.retries = []
        self.completions = []

    def show_problem(self, problem, number, total):
        self.problems.append((problem, number, total))

    def feedback(self, message, correct):
        self.feedbacks.append((message, correct))

    def notice(self, text, level):
        self.notices.append((level, text))

    def hint(self, text):
        self.hints.append(text)

    def reveal_available(self):
        self.reveals += 1

    def show_retry(self, message):
        self.retries.append(message)

    def show_completion(self, reward, coins):
        self.completions.append((reward, coins))


class FakeRewards:
    def __init__(self):
        self.sessions = []
        self.mastered = []

    async def record_session(self, learner_id, exercise, reward):
        self.sessions.append((learner_id, exercise, reward))
        return 40 + reward.bonus

    async def add_mastered_word(self, learner_id, word):
        self.mastered.append(word)
        return True


class FakeSynth:
    def __init__(self):
        self.spoken = []

    def speak(self, utterance):
        self.spoken.append(utterance)

    def pause(self):
        pass

    def resume(self):
        pass

    def cancel(self):
        pass


class FlakyProvider:
    name = "flaky"

    def __init__(self, failures):
        self.failures = failures

    async def generate(self, params, item=None):
        if self.failures:
            self.failures -= 1
            raise ContentGenerationFailure("service unavailable", exercise=self.name)
        return Problem(prompt="1 + 1 = ?", narration="What is 1 plus 1?", answer_kind="numeric", canonical_answer=2)


def _drill(exercise, *, tracker, synth=None, view=None, rewards=None):
    view = view or FakeView()
    narration = NarrationQueue(synth, enabled=synth is not None, watchdog_s=0)
    answers = AnswerInputController(DictationChannel(None), notice=view.notice)
    drill = Drill(
        exercise,
        params=ProblemParams(),
        tracker=tracker,
        narration=narration,
        answers=answers,
        view=view,
        rewards=rewards,
        learner_id=7,
        timing=FAST,
    )
    return drill, view


async def _settle():
    await asyncio.sleep(0.05)


def test_quota_session_all_correct_reports_reward_once():
    async def _run():
        exercises = build_exercises(None, rng=random.Random(9))
        rewards = FakeRewards()
        drill, view = _drill(exercises["arithmetic"], tracker=SessionTracker(target=5), rewards=rewards)
        await drill.start()
        for _ in range(5):
            assert drill.turn is not None
            drill.submit_text(str(drill.turn.problem.canonical_answer))
            await _settle()
        assert drill.completed
        assert drill.turn is None
        assert [n for _, n, _ in view.problems] == [1, 2, 3, 4, 5]
        assert len(view.completions) == 1
        reward, coins = view.completions[0]
        assert (reward.turns_correct, reward.total_turns, reward.bonus) == (5, 5, 5)
        assert coins == 45
        assert len(rewards.sessions) == 1 and rewards.sessions[0][1] == "arithmetic"

    asyncio.run(_run())


def test_wrong_answers_reduce_bonus():
    async def _run():
        exercises = build_exercises(None, rng=random.Random(2))
        drill, view = _drill(exercises["times-table"], tracker=SessionTracker(target=3))
        await drill.start()
        drill.submit_text("-1")
        await _settle()
        for _ in range(2):
            drill.submit_text(str(drill.turn.problem.canonical_answer))
            await _settle()
        reward, coins = view.completions[0]
        assert (reward.turns_correct, reward.total_turns, reward.bonus) == (2, 3, 4)
        assert coins is None

    asyncio.run(_run())


def test_spelling_list_session_covers_every_word():
    async def _run():
        exercises = build_exercises(None, rng=random.Random(5))
        rewards = FakeRewards()
        tracker = SessionTracker(items=["cat", "dog"], rng=random.Random(5))
        drill, view = _drill(exercises["spelling"], tracker=tracker, rewards=rewards)
        await drill.start()
        missed_once = False
        for _ in range(2):
            turn = drill.turn
            word = turn.problem.item_key
            if word == "dog" and not missed_once:
                missed_once = True
                drill.submit_text("dgo")
                assert drill.turn is turn
            drill.submit_text(word.upper())
            await _settle()
        assert drill.completed
        reward, _ = view.completions[0]
        assert (reward.turns_correct, reward.total_turns, reward.bonus) == (2, 2, 4)
        assert sorted(rewards.mastered) == ["cat", "dog"]

    asyncio.run(_run())


def test_revealed_word_returns_to_rotation():
    async def _run():
        exercises = build_exercises(None, hint_after=1, rng=random.Random(1))
        tracker = SessionTracker(items=["sun"], rng=random.Random(1))
        drill, view = _drill(exercises["spelling"], tracker=tracker)
        await drill.start()
        for attempt in ("s", "su", "sn"):
            drill.submit_text(attempt)
        assert view.reveals == 1
        assert drill.request_hint() is not None
        assert drill.reveal()
        await _settle()
        assert not drill.completed
        assert drill.turn is not None and drill.turn.problem.item_key == "sun"
        drill.submit_text("sun")
        await _settle()
        assert drill.completed

    asyncio.run(_run())


def test_generation_failure_offers_retry_without_turn():
    async def _run():
        exercise = Exercise("flaky", "Flaky", FlakyProvider(failures=1), TurnPolicy())
        drill, view = _drill(exercise, tracker=SessionTracker(target=1))
        assert await drill.start() is None
        assert drill.turn is None
        assert drill.awaiting_retry
        assert view.retries == ["service unavailable"]
        turn = await drill.retry()
        assert turn is not None and drill.turn is turn
        assert not drill.awaiting_retry

    asyncio.run(_run())


def test_restart_mid_narration_ignores_stale_callbacks():
    async def _run():
        synth = FakeSynth()
        exercises = build_exercises(None, rng=random.Random(4))
        tracker = SessionTracker(target=5)
        drill, view = _drill(exercises["arithmetic"], tracker=tracker, synth=synth)
        await drill.start()
        old_turn = drill.turn
        drill.submit_text(str(old_turn.problem.canonical_answer))
        feedback_utterance = synth.spoken[-1]
        assert feedback_utterance.text.startswith("Correct!")

        new_turn = await drill.restart()
        assert new_turn is not old_turn and not old_turn.live
        feedback_utterance.on_end()
        await asyncio.sleep(0.1)

        assert drill.turn is new_turn
        assert new_turn.accepting
        assert tracker.state.turns_attempted == 0
        assert tracker.state.score_correct == 0
        assert len(view.problems) == 2

    asyncio.run(_run())


def test_leave_discards_pending_advance():
    async def _run():
        exercises = build_exercises(None, rng=random.Random(8))
        tracker = SessionTracker(target=5)
        drill, view = _drill(exercises["comparison"], tracker=tracker)
        await drill.start()
        drill.submit_text(str(drill.turn.problem.canonical_answer))
        drill.leave()
        await _settle()
        assert drill.turn is None
        assert len(view.problems) == 1
        assert tracker.state.turns_attempted == 0

    asyncio.run(_run())


def test_hint_before_unlock_is_a_notice():
    async def _run():
        exercises = build_exercises(None, rng=random.Random(8))
        drill, view = _drill(exercises["sequencing"], tracker=SessionTracker(target=1))
        await drill.start()
        assert drill.request_hint() is None
        assert not drill.reveal()
        assert [level for level, _ in view.notices] == ["info", "info"]

    asyncio.run(_run())


def test_restart_after_advance_drops_the_old_sessions_next_problem():
    async def _run():
        synth = FakeSynth()
        exercises = build_exercises(None, rng=random.Random(6))
        tracker = SessionTracker(target=5)
        drill, view = _drill(exercises["arithmetic"], tracker=tracker, synth=synth)
        await drill.start()
        drill.submit_text(str(drill.turn.problem.canonical_answer))
        # the advance is scheduled but its load has not run yet
        synth.spoken[-1].on_end()
        assert drill.turn is None

        new_turn = await drill.restart()
        await asyncio.sleep(0.1)

        assert len(view.problems) == 2
        assert drill.turn is new_turn
        assert new_turn.accepting
        assert tracker.state.turns_attempted == 0

    asyncio.run(_run())


class SlowRewards(FakeRewards):
    async def record_session(self, learner_id, exercise, reward):
        await asyncio.sleep(0.1)
        return await super().record_session(learner_id, exercise, reward)


def test_restart_while_saving_reward_skips_stale_completion():
    async def _run():
        exercises = build_exercises(None, rng=random.Random(3))
        rewards = SlowRewards()
        tracker = SessionTracker(target=1)
        drill, view = _drill(exercises["comparison"], tracker=tracker, rewards=rewards)
        await drill.start()
        drill.submit_text(str(drill.turn.problem.canonical_answer))
        await asyncio.sleep(0.03)
        assert tracker.completed and not rewards.sessions

        new_turn = await drill.restart()
        await asyncio.sleep(0.2)

        assert view.completions == []
        assert drill.coins is None
        # the earned coins are still saved
        assert len(rewards.sessions) == 1
        assert drill.turn is new_turn and new_turn.accepting
        assert len(view.problems) == 2

    asyncio.run(_run())


def test_identify_session_repeats_missed_word():
    async def _run():
        exercises = build_exercises(None, rng=random.Random(11))
        tracker = SessionTracker(items=["cat", "dog"], rng=random.Random(11))
        drill, view = _drill(exercises["identify"], tracker=tracker)
        drill.params = ProblemParams(word_list=("cat", "dog"))
        await drill.start()
        first = drill.turn.problem
        wrong = next(o for o in first.options if o != first.canonical_answer)
        drill.submit_text(wrong)
        await _settle()
        for _ in range(2):
            drill.submit_text(drill.turn.problem.canonical_answer)
            await _settle()
        assert drill.completed
        assert [p.item_key for p, _, _ in view.problems][1:].count(first.item_key) == 1
        reward, _ = view.completions[0]
        assert (reward.turns_correct, reward.total_turns, reward.bonus) == (2, 3, 4)

    asyncio.run(_run())
