import asyncio

from drillbot.liveness import LivenessToken
from drillbot.narration import NarrationQueue
from drillbot.problems import Problem
from drillbot.turn import EngineTiming, ExerciseTurn, TurnListener, TurnPolicy, TurnState

FAST = EngineTiming(
    feedback_min_s=0.01,
    feedback_per_char_s=0.0,
    feedback_max_s=0.05,
    reveal_delay_s=0.01,
    narration_fallback_s=0.1,
)

SUM = Problem(
    prompt="7 + 5 = ?",
    narration="What is 7 plus 5?",
    answer_kind="numeric",
    canonical_answer=12,
    explanation="Seven and five make twelve.",
)
WORD = Problem(prompt="Spell it", narration="Spell the word: cat.", answer_kind="text", canonical_answer="cat", item_key="cat")


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


class Listener(TurnListener):
    def __init__(self):
        self.events = []
        self.feedback = []
        self.notices = []

    def turn_feedback(self, turn, message, correct):
        self.feedback.append((message, correct))

    def turn_notice(self, turn, text, level):
        self.notices.append((level, text))

    def turn_hint_unlocked(self, turn, hint):
        self.events.append("hint")

    def turn_reveal_unlocked(self, turn):
        self.events.append("reveal")

    def turn_rearmed(self, turn):
        self.events.append("rearmed")

    def turn_finished(self, turn):
        self.events.append("finished")


def _turn(problem=SUM, *, synth=None, multi=False, listener=None, learner_name=None, token=None):
    listener = listener or Listener()
    narration = NarrationQueue(synth, watchdog_s=0)
    turn = ExerciseTurn(
        problem,
        narration=narration,
        token=token or LivenessToken("turn"),
        policy=TurnPolicy(multi_attempt=multi, hint_after=2),
        timing=FAST,
        listener=listener,
        learner_name=learner_name,
    )
    return turn, listener


def test_silent_turn_advances_on_timer():
    async def _run():
        turn, listener = _turn()
        turn.present()
        assert turn.state == TurnState.AWAITING
        result = turn.submit("12")
        assert result.correct
        assert listener.feedback == [("Correct! The answer is 12.", True)]
        assert "finished" not in listener.events
        await asyncio.sleep(0.1)
        assert listener.events.count("finished") == 1
        assert turn.state == TurnState.ADVANCING

    asyncio.run(_run())


def test_narrated_feedback_end_drives_advance_exactly_once():
    async def _run():
        synth = FakeSynth()
        turn, listener = _turn(synth=synth)
        turn.present()
        assert synth.spoken[0].text == "What is 7 plus 5?"
        # answering while the prompt is still playing is allowed
        turn.submit("12")
        feedback = synth.spoken[-1]
        assert feedback.text == "Correct! The answer is 12."
        await asyncio.sleep(0.02)
        assert "finished" not in listener.events
        feedback.on_end()
        assert listener.events.count("finished") == 1
        await asyncio.sleep(0.2)
        assert listener.events.count("finished") == 1

    asyncio.run(_run())


def test_dropped_feedback_utterance_falls_back_to_timer():
    async def _run():
        synth = FakeSynth()
        turn, listener = _turn(synth=synth)
        turn.present()
        turn.submit("12")
        await asyncio.sleep(0.25)
        assert listener.events.count("finished") == 1

    asyncio.run(_run())


def test_incorrect_single_attempt_shows_answer_and_advances():
    async def _run():
        turn, listener = _turn()
        turn.present()
        result = turn.submit("13")
        assert not result.correct
        message, correct = listener.feedback[0]
        assert not correct
        assert message == (
            "Not quite. You answered 13. The correct answer was 12. Seven and five make twelve."
        )
        assert turn.attempt_state == "incorrect"
        await asyncio.sleep(0.1)
        assert listener.events == ["finished"]

    asyncio.run(_run())


def test_submissions_locked_out_after_evaluation():
    async def _run():
        turn, listener = _turn()
        turn.present()
        assert turn.submit("12") is not None
        assert turn.submit("12") is None
        assert turn.attempts_made == 1

    asyncio.run(_run())


def test_invalid_input_is_a_notice_not_an_attempt():
    turn, listener = _turn()
    turn.present()
    assert turn.submit("banana") is None
    assert turn.submit("   ") is None
    assert listener.notices == [
        ("info", "Please enter a valid number."),
        ("info", "Please enter an answer."),
    ]
    assert turn.attempts_made == 0
    assert turn.state == TurnState.AWAITING


def test_multi_attempt_unlocks_hint_then_reveal():
    async def _run():
        turn, listener = _turn(WORD, multi=True)
        turn.present()
        assert turn.request_hint() is None
        turn.submit("kat")
        assert turn.state == TurnState.AWAITING
        turn.submit("cot")
        assert turn.hint_unlocked
        assert turn.request_hint() == 'It starts with "c" and has 3 letters.'
        assert not turn.reveal()
        turn.submit("kot")
        turn.submit("ca")
        assert turn.reveal_unlocked
        assert listener.events == ["rearmed", "hint", "rearmed", "rearmed", "reveal", "rearmed"]
        assert turn.reveal()
        assert turn.revealed
        assert listener.feedback[-1] == ('The answer is "cat".', False)
        assert turn.submit("cat") is None
        await asyncio.sleep(0.05)
        assert listener.events.count("finished") == 1

    asyncio.run(_run())


def test_multi_attempt_correct_after_wrong():
    async def _run():
        turn, listener = _turn(WORD, multi=True)
        turn.present()
        turn.submit("kat")
        turn.submit("CAT")
        assert turn.attempt_state == "correct"
        assert listener.feedback[-1] == ('Correct! "cat" is right.', True)
        await asyncio.sleep(0.1)
        assert listener.events.count("finished") == 1

    asyncio.run(_run())


def test_close_cancels_pending_advance():
    async def _run():
        turn, listener = _turn()
        turn.present()
        turn.submit("12")
        turn.close()
        await asyncio.sleep(0.1)
        assert "finished" not in listener.events
        assert turn.state == TurnState.CLOSED

    asyncio.run(_run())


def test_dead_session_token_locks_the_turn():
    session = LivenessToken("session")
    turn, listener = _turn(token=session.child("turn"))
    turn.present()
    session.revoke()
    assert not turn.accepting
    assert turn.submit("12") is None


def test_learner_name_prefixes_praise():
    async def _run():
        turn, listener = _turn(learner_name="Sam")
        turn.present()
        turn.submit("12")
        assert listener.feedback[0][0] == "Sam, correct! The answer is 12."

    asyncio.run(_run())


def test_default_numeric_hint_counts_digits():
    turn, _ = _turn()
    assert turn.hint_text == "The answer has 2 digits."


def test_feedback_delay_is_capped():
    timing = EngineTiming()
    assert timing.feedback_delay("") == timing.feedback_min_s
    assert timing.feedback_delay("x" * 10_000) == timing.feedback_max_s
