import asyncio

import pytest

from drillbot.answer_input import AnswerInputController
from drillbot.dictation import DictationChannel
from drillbot.errors import SpeechInputFailure
from drillbot.liveness import LivenessToken
from drillbot.narration import NarrationQueue
from drillbot.problems import Problem
from drillbot.turn import ExerciseTurn, TurnListener, TurnPolicy, TurnState


class FakeRecognizer:
    def __init__(self, fail_start: bool = False):
        self.starts = []
        self.stops = 0
        self.fail_start = fail_start

    def start(self, on_result, on_error, on_end):
        if self.fail_start:
            raise RuntimeError("audio-capture")
        self.starts.append((on_result, on_error, on_end))

    def stop(self):
        self.stops += 1

    def result(self, transcript, index=-1):
        on_result, _, on_end = self.starts[index]
        on_result(transcript)
        on_end()

    def error(self, reason, index=-1):
        self.starts[index][1](reason)


class Listener(TurnListener):
    def __init__(self):
        self.attempts = []
        self.notices = []

    def turn_attempted(self, turn, result):
        self.attempts.append(result)

    def turn_notice(self, turn, text, level):
        self.notices.append((level, text))


def _turn(problem, listener, *, multi=False):
    turn = ExerciseTurn(
        problem,
        narration=NarrationQueue(None),
        token=LivenessToken("turn"),
        policy=TurnPolicy(multi_attempt=multi),
        listener=listener,
    )
    turn.present()
    return turn


NUMERIC = Problem(prompt="7 × 8 = ?", narration="7 times 8 equals what?", answer_kind="numeric", canonical_answer=56)
CHOICE = Problem(
    prompt="Pick",
    narration="Pick",
    answer_kind="choice",
    canonical_answer="dog",
    options=("cat", "dog", "bird"),
)


def _controller(recognizer=None, *, enabled=True):
    notices = []
    ctl = AnswerInputController(
        DictationChannel(recognizer, enabled=enabled, timeout_s=0),
        notice=lambda text, level: notices.append((level, text)),
    )
    return ctl, notices


def test_dictated_number_auto_submits():
    async def _run():
        rec = FakeRecognizer()
        listener = Listener()
        turn = _turn(NUMERIC, listener)
        ctl, notices = _controller(rec)
        ctl.bind(turn)
        assert ctl.start_dictation()
        assert ctl.listening
        rec.result("fifty six")
        assert len(listener.attempts) == 1
        assert listener.attempts[0].correct
        assert turn.raw_input == "56"
        assert any("Taking" in text for _, text in notices)
        assert not ctl.listening

    asyncio.run(_run())


def test_unparseable_transcript_keeps_input_open():
    async def _run():
        rec = FakeRecognizer()
        listener = Listener()
        turn = _turn(NUMERIC, listener)
        ctl, notices = _controller(rec)
        ctl.bind(turn)
        ctl.start_dictation()
        rec.result("banana")
        assert listener.attempts == []
        assert turn.state == TurnState.AWAITING
        assert notices[-1][1].startswith('Heard: "banana"')

    asyncio.run(_run())


def test_spoken_choice_by_option_letter():
    async def _run():
        rec = FakeRecognizer()
        listener = Listener()
        turn = _turn(CHOICE, listener)
        ctl, _ = _controller(rec)
        ctl.bind(turn)
        ctl.start_dictation()
        rec.result("option b")
        assert listener.attempts and listener.attempts[0].correct

    asyncio.run(_run())


def test_no_recognizer_falls_back_to_typing():
    async def _run():
        listener = Listener()
        turn = _turn(NUMERIC, listener)
        ctl, notices = _controller(None)
        ctl.bind(turn)
        assert not ctl.start_dictation()
        assert notices and "type your answer" in notices[0][1]
        ctl.submit_typed("56")
        assert listener.attempts[0].correct

    asyncio.run(_run())


def test_disabled_dictation_gives_notice():
    ctl, notices = _controller(FakeRecognizer(), enabled=False)
    ctl.bind(_turn(NUMERIC, Listener()))
    assert not ctl.start_dictation()
    assert "turned off" in notices[0][1]


def test_start_failure_is_a_notice_not_a_crash():
    ctl, notices = _controller(FakeRecognizer(fail_start=True))
    ctl.bind(_turn(NUMERIC, Listener()))
    assert not ctl.start_dictation()
    assert notices[0][0] == "warning"
    assert not ctl.listening


def test_recognition_error_reports_and_allows_typing():
    async def _run():
        rec = FakeRecognizer()
        listener = Listener()
        turn = _turn(NUMERIC, listener)
        ctl, notices = _controller(rec)
        ctl.bind(turn)
        ctl.start_dictation()
        rec.error("not-allowed")
        assert "permission" in notices[-1][1]
        assert not ctl.listening
        ctl.submit_typed("56")
        assert listener.attempts[0].correct

    asyncio.run(_run())


def test_second_start_is_a_no_op_while_listening():
    async def _run():
        rec = FakeRecognizer()
        ctl, _ = _controller(rec)
        ctl.bind(_turn(NUMERIC, Listener()))
        assert ctl.start_dictation()
        assert not ctl.start_dictation()
        assert len(rec.starts) == 1

    asyncio.run(_run())


def test_late_transcript_after_typed_submit_cannot_double_evaluate():
    async def _run():
        rec = FakeRecognizer()
        listener = Listener()
        turn = _turn(NUMERIC, listener)
        ctl, _ = _controller(rec)
        ctl.bind(turn)
        ctl.start_dictation()
        ctl.submit_typed("56")
        rec.result("fifty six")
        assert len(listener.attempts) == 1

    asyncio.run(_run())


def test_transcript_for_closed_turn_is_dropped():
    async def _run():
        rec = FakeRecognizer()
        listener = Listener()
        turn = _turn(NUMERIC, listener)
        ctl, _ = _controller(rec)
        ctl.bind(turn)
        ctl.start_dictation()
        on_result = rec.starts[0][0]
        turn.close()
        on_result("fifty six")
        assert listener.attempts == []

    asyncio.run(_run())


def test_channel_supersedes_previous_capture():
    async def _run():
        rec = FakeRecognizer()
        channel = DictationChannel(rec, timeout_s=0)
        heard = []
        first = channel.begin(on_transcript=lambda t: heard.append(("first", t)))
        second = channel.begin(on_transcript=lambda t: heard.append(("second", t)))
        assert not first.active and second.active
        rec.starts[0][0]("late")
        rec.starts[1][0]("fresh")
        assert heard == [("second", "fresh")]
        assert second.transcript == "fresh"

    asyncio.run(_run())


def test_channel_watchdog_reports_no_speech():
    async def _run():
        rec = FakeRecognizer()
        channel = DictationChannel(rec, timeout_s=0.01)
        errors = []
        channel.begin(on_transcript=lambda t: None, on_error=errors.append)
        await asyncio.sleep(0.05)
        assert errors == ["no-speech"]
        assert rec.stops == 1
        assert channel.session is None

    asyncio.run(_run())


def test_channel_without_engine_raises():
    with pytest.raises(SpeechInputFailure) as exc:
        DictationChannel(None).begin(on_transcript=lambda t: None)
    assert exc.value.reason == "no-engine"


def test_capture_ending_without_transcript_reports_no_match():
    async def _run():
        rec = FakeRecognizer()
        listener = Listener()
        turn = _turn(NUMERIC, listener)
        ctl, notices = _controller(rec)
        ctl.bind(turn)
        ctl.start_dictation()
        rec.starts[0][2]()
        assert notices[-1] == ("warning", "I couldn't make that out. Try again or type your answer.")
        assert not ctl.listening
        assert listener.attempts == []
        assert turn.state == TurnState.AWAITING

    asyncio.run(_run())


def test_aborted_capture_ends_quietly():
    async def _run():
        rec = FakeRecognizer()
        ctl, notices = _controller(rec)
        ctl.bind(_turn(NUMERIC, Listener()))
        ctl.start_dictation()
        before = list(notices)
        rec.error("aborted")
        assert notices == before
        assert not ctl.listening

    asyncio.run(_run())
