from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Protocol

from .errors import CANCEL_REASONS, SpeechInputFailure

logger = logging.getLogger(__name__)


class SpeechRecognizer(Protocol):
    """Single-shot recognizer: one final transcript or an error, then end."""

    def start(
        self,
        on_result: Callable[[str], None],
        on_error: Callable[[str], None],
        on_end: Callable[[], None],
    ) -> None: ...

    def stop(self) -> None: ...


@dataclass
class DictationSession:
    active: bool = True
    transcript: str = ""
    parsed_value: int | str | None = None
    aborted: bool = False
    on_transcript: Callable[[str], None] | None = None
    on_error: Callable[[str], None] | None = None
    on_end: Callable[[], None] | None = None
    _watchdog: asyncio.TimerHandle | None = field(default=None, repr=False)


def _call(fn, *args) -> None:
    if fn is None:
        return
    try:
        fn(*args)
    except Exception:
        logger.exception("dictation_callback_failed: callback=%r", fn)


class DictationChannel:
    """Owner of the recognizer; a new capture supersedes the previous one."""

    def __init__(self, recognizer: SpeechRecognizer | None = None, *, enabled: bool = True, timeout_s: float = 10.0):
        self._recognizer = recognizer
        self.enabled = enabled
        self.timeout_s = timeout_s
        self._session: DictationSession | None = None

    @property
    def available(self) -> bool:
        return self.enabled and self._recognizer is not None

    @property
    def session(self) -> DictationSession | None:
        return self._session

    def begin(
        self,
        on_transcript: Callable[[str], None],
        on_error: Callable[[str], None] | None = None,
        on_end: Callable[[], None] | None = None,
    ) -> DictationSession:
        if self._recognizer is None:
            raise SpeechInputFailure("no-engine")
        if not self.enabled:
            raise SpeechInputFailure("disabled")
        self.stop()
        session = DictationSession(on_transcript=on_transcript, on_error=on_error, on_end=on_end)
        self._session = session
        try:
            self._recognizer.start(
                lambda transcript: self._result(session, transcript),
                lambda reason: self._error(session, reason),
                lambda: self._end(session),
            )
        except Exception as exc:
            logger.warning("dictation_start_failed: error=%s", exc)
            self._finish(session)
            raise SpeechInputFailure(str(exc) or "start-failed") from exc
        self._arm_watchdog(session)
        logger.debug("dictation_start")
        return session

    def stop(self, session: DictationSession | None = None) -> None:
        current = self._session
        if current is None or (session is not None and session is not current):
            return
        self._finish(current)
        try:
            self._recognizer.stop()
        except Exception:
            logger.exception("dictation_stop_failed")

    # --- recognizer events ---------------------------------------------

    def _result(self, session: DictationSession, transcript: str) -> None:
        if session is not self._session or not session.active:
            return
        session.transcript = transcript or ""
        self._finish(session)
        logger.info("dictation_result: chars=%s", len(session.transcript))
        _call(session.on_transcript, session.transcript)

    def _error(self, session: DictationSession, reason: str) -> None:
        if session is not self._session or not session.active:
            return
        self._finish(session)
        if reason in CANCEL_REASONS:
            logger.info("dictation_aborted: reason=%s", reason)
            session.aborted = True
            _call(session.on_end)
            return
        logger.warning("dictation_error: reason=%s", reason)
        _call(session.on_error, reason)

    def _end(self, session: DictationSession) -> None:
        if session is not self._session or not session.active:
            return
        self._finish(session)
        _call(session.on_end)

    def _timeout(self, session: DictationSession) -> None:
        if session is not self._session or not session.active:
            return
        self._error(session, "no-speech")
        try:
            self._recognizer.stop()
        except Exception:
            logger.exception("dictation_stop_failed")

    # --- internals -----------------------------------------------------

    def _finish(self, session: DictationSession) -> None:
        session.active = False
        if session._watchdog is not None:
            session._watchdog.cancel()
            session._watchdog = None
        if self._session is session:
            self._session = None

    def _arm_watchdog(self, session: DictationSession) -> None:
        if self.timeout_s <= 0:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        if session.active:
            session._watchdog = loop.call_later(self.timeout_s, self._timeout, session)
