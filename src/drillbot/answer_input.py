from __future__ import annotations

import logging
from typing import Callable

from .choices import resolve_spoken_choice
from .dictation import DictationChannel, DictationSession
from .errors import SpeechInputFailure
from .normalize import norm_answer_text
from .spoken_numbers import parse_spoken_number
from .turn import ExerciseTurn

logger = logging.getLogger(__name__)

NoticeSink = Callable[[str, str], None]

_INPUT_ERROR_NOTICES = {
    "not-allowed": "Microphone permission was denied. Please type your answer.",
    "service-not-allowed": "Microphone permission was denied. Please type your answer.",
    "no-speech": "I didn't hear anything. Try again or type your answer.",
    "no-match": "I couldn't make that out. Try again or type your answer.",
    "audio-capture": "No microphone found. Please type your answer.",
    "network": "I couldn't reach the speech service. Please type your answer.",
    "no-engine": "Voice input isn't available here. Please type your answer.",
    "disabled": "Voice input is turned off. Please type your answer.",
}


def input_error_notice(reason: str) -> str:
    return _INPUT_ERROR_NOTICES.get(reason, f"Voice input error ({reason}). Please type your answer.")


class AnswerInputController:
    """Typed and dictated answer entry for whichever turn is currently bound."""

    def __init__(
        self,
        dictation: DictationChannel,
        *,
        notice: NoticeSink | None = None,
        number_parser: Callable[[str], int | None] = parse_spoken_number,
        audio_enabled: Callable[[], bool] | None = None,
        listening_notice: str = "Listening... speak your answer.",
    ):
        self._dictation = dictation
        self._notice_sink = notice
        self._parse_number = number_parser
        self._audio_enabled = audio_enabled or (lambda: True)
        self.listening_notice = listening_notice
        self._turn: ExerciseTurn | None = None
        self._session: DictationSession | None = None

    @property
    def turn(self) -> ExerciseTurn | None:
        return self._turn

    @property
    def listening(self) -> bool:
        return self._session is not None and self._session.active

    @property
    def dictation_available(self) -> bool:
        return self._dictation.available and self._audio_enabled()

    def bind(self, turn: ExerciseTurn | None) -> None:
        self.cancel()
        self._turn = turn

    def cancel(self) -> None:
        if self._session is not None:
            self._dictation.stop(self._session)
            self._session = None

    # --- typed ---------------------------------------------------------

    def set_text(self, text: str) -> None:
        turn = self._turn
        if turn is not None and turn.accepting:
            turn.raw_input = text or ""

    def submit_typed(self, text: str | None = None):
        turn = self._turn
        if turn is None:
            return None
        self.cancel()
        return turn.submit(text, source="typed")

    # --- dictated ------------------------------------------------------

    def start_dictation(self) -> bool:
        turn = self._turn
        if turn is None or not turn.accepting:
            return False
        if self.listening:
            return False
        if not self._audio_enabled():
            self._notice(input_error_notice("disabled"), "info")
            return False
        token = turn.token
        try:
            self._session = self._dictation.begin(
                on_transcript=token.guard(lambda transcript: self._on_transcript(turn, transcript)),
                on_error=token.guard(lambda reason: self._on_error(turn, reason)),
                on_end=token.guard(lambda: self._on_end(turn)),
            )
        except SpeechInputFailure as exc:
            self._session = None
            logger.info("dictation_unavailable: reason=%s", exc.reason)
            self._notice(input_error_notice(exc.reason), "warning" if exc.reason not in ("no-engine", "disabled") else "info")
            return False
        self._notice(self.listening_notice, "info")
        return True

    def stop_dictation(self) -> None:
        self.cancel()

    def _on_transcript(self, turn: ExerciseTurn, transcript: str) -> None:
        session = self._session
        self._session = None
        if turn is not self._turn or not turn.accepting:
            logger.info("dictation_result_dropped: token=%s", turn.token.id)
            return
        answer = self.interpret(turn, transcript)
        if session is not None:
            session.parsed_value = answer
        if answer is None:
            self._notice(f'Heard: "{transcript}". Please try again or type your answer.', "info")
            return
        self._notice(f'You said: "{transcript}". Taking "{answer}".', "info")
        turn.raw_input = str(answer)
        turn.submit(str(answer), source="dictation")

    def interpret(self, turn: ExerciseTurn, transcript: str) -> int | str | None:
        kind = turn.problem.answer_kind
        if kind == "numeric":
            return self._parse_number(transcript)
        if kind == "choice":
            return resolve_spoken_choice(transcript, list(turn.problem.options))
        text = norm_answer_text(transcript)
        return text or None

    def _on_error(self, turn: ExerciseTurn, reason: str) -> None:
        self._session = None
        self._notice(input_error_notice(reason), "warning")

    def _on_end(self, turn: ExerciseTurn) -> None:
        session = self._session
        self._session = None
        if session is not None and session.aborted:
            return
        if turn is not self._turn or not turn.accepting:
            return
        # capture ended without a transcript or an error
        self._notice(input_error_notice("no-match"), "warning")

    def _notice(self, text: str, level: str) -> None:
        if self._notice_sink is None:
            return
        try:
            self._notice_sink(text, level)
        except Exception:
            logger.exception("notice_failed")
