"""Text-to-speech ownership: one active utterance, superseded rather than queued.

``NarrationQueue.speak`` cancels whatever is playing and starts the new text.
Whatever happens to an utterance (finishes, fails, engine never answers) the
caller's ``on_end`` fires exactly once, unless the utterance was superseded or
cancelled, in which case nothing fires.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Protocol

from .errors import CANCEL_REASONS

logger = logging.getLogger(__name__)

NoticeSink = Callable[[str, str], None]


@dataclass
class Utterance:
    text: str
    on_boundary: Callable[[int, int], None]
    on_end: Callable[[], None]
    on_error: Callable[[str], None]


class SpeechSynthesizer(Protocol):
    def speak(self, utterance: Utterance) -> None: ...
    def pause(self) -> None: ...
    def resume(self) -> None: ...
    def cancel(self) -> None: ...


@dataclass
class NarrationRequest:
    text: str
    on_end: Callable[[], None] | None = None
    on_boundary: Callable[[int, int], None] | None = None
    on_error: Callable[[str], None] | None = None


def _safe_call(fn, *args) -> None:
    if fn is None:
        return
    try:
        fn(*args)
    except Exception:
        logger.exception("narration_callback_failed: callback=%r", fn)


def _running_loop() -> asyncio.AbstractEventLoop | None:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


class NarrationHandle:
    def __init__(self, queue: "NarrationQueue", request: NarrationRequest):
        self._queue = queue
        self.request = request
        self.finished = False
        self.paused = False
        self._watchdog: asyncio.TimerHandle | None = None

    @property
    def active(self) -> bool:
        return self._queue._active is self

    def pause(self) -> None:
        if self.active and not self.paused:
            self.paused = True
            self._queue._pause(self)

    def resume(self) -> None:
        if self.active and self.paused:
            self.paused = False
            self._queue._resume(self)

    def cancel(self) -> None:
        if self.active:
            self._queue._stop_active(reason="canceled")
        self.finished = True


class NarrationQueue:
    def __init__(
        self,
        synthesizer: SpeechSynthesizer | None = None,
        *,
        enabled: bool = True,
        notice: NoticeSink | None = None,
        watchdog_s: float = 15.0,
        watchdog_per_char_s: float = 0.08,
    ):
        self._synth = synthesizer
        self._enabled = enabled
        self.notice = notice
        self.watchdog_s = watchdog_s
        self.watchdog_per_char_s = watchdog_per_char_s
        self._active: NarrationHandle | None = None

    @property
    def enabled(self) -> bool:
        return self._enabled

    @enabled.setter
    def enabled(self, value: bool) -> None:
        self._enabled = bool(value)
        if not self._enabled:
            self.cancel_all()

    @property
    def available(self) -> bool:
        return self._enabled and self._synth is not None

    @property
    def speaking(self) -> bool:
        return self._active is not None

    def speak(
        self,
        text: str,
        on_end: Callable[[], None] | None = None,
        on_boundary: Callable[[int, int], None] | None = None,
        on_error: Callable[[str], None] | None = None,
    ) -> NarrationHandle:
        request = NarrationRequest(text=text, on_end=on_end, on_boundary=on_boundary, on_error=on_error)
        if not self.available or not (text or "").strip():
            if self.available:
                self._stop_active(reason="interrupted")
            handle = NarrationHandle(self, request)
            handle.finished = True
            _safe_call(on_end)
            return handle

        self._stop_active(reason="interrupted")
        handle = NarrationHandle(self, request)
        self._active = handle
        utterance = Utterance(
            text=text,
            on_boundary=lambda idx, length: self._boundary(handle, idx, length),
            on_end=lambda: self._end(handle),
            on_error=lambda reason: self._error(handle, reason),
        )
        self._arm_watchdog(handle)
        logger.debug("narration_start: chars=%s", len(text))
        try:
            self._synth.speak(utterance)
        except Exception as exc:
            logger.exception("narration_speak_failed")
            self._error(handle, str(exc) or type(exc).__name__)
        return handle

    def cancel_all(self) -> None:
        self._stop_active(reason="canceled")

    # --- engine events -------------------------------------------------

    def _boundary(self, handle: NarrationHandle, char_index: int, char_length: int) -> None:
        if handle is not self._active:
            return
        _safe_call(handle.request.on_boundary, char_index, char_length)

    def _end(self, handle: NarrationHandle) -> None:
        if handle is not self._active:
            return
        self._finish(handle)
        _safe_call(handle.request.on_end)

    def _error(self, handle: NarrationHandle, reason: str) -> None:
        if handle is not self._active:
            # superseded or cancelled by us
            return
        self._finish(handle)
        if reason in CANCEL_REASONS:
            logger.info("narration_interrupted: reason=%s", reason)
        else:
            logger.warning("narration_error: reason=%s", reason)
            if self.notice is not None:
                _safe_call(self.notice, f"Narration problem ({reason}). Carrying on without audio.", "warning")
            _safe_call(handle.request.on_error, reason)
        _safe_call(handle.request.on_end)

    # --- internals -----------------------------------------------------

    def _finish(self, handle: NarrationHandle) -> None:
        self._disarm_watchdog(handle)
        handle.finished = True
        if self._active is handle:
            self._active = None

    def _stop_active(self, *, reason: str) -> None:
        prev = self._active
        if prev is None:
            return
        self._finish(prev)
        logger.debug("narration_stop: reason=%s", reason)
        try:
            self._synth.cancel()
        except Exception:
            logger.exception("narration_cancel_failed")

    def _pause(self, handle: NarrationHandle) -> None:
        self._disarm_watchdog(handle)
        try:
            self._synth.pause()
        except Exception:
            logger.exception("narration_pause_failed")

    def _resume(self, handle: NarrationHandle) -> None:
        self._arm_watchdog(handle)
        try:
            self._synth.resume()
        except Exception:
            logger.exception("narration_resume_failed")

    def _arm_watchdog(self, handle: NarrationHandle) -> None:
        loop = _running_loop()
        if loop is None or self.watchdog_s <= 0:
            return
        delay = self.watchdog_s + self.watchdog_per_char_s * len(handle.request.text)
        handle._watchdog = loop.call_later(delay, self._error, handle, "timeout")

    @staticmethod
    def _disarm_watchdog(handle: NarrationHandle) -> None:
        if handle._watchdog is not None:
            handle._watchdog.cancel()
            handle._watchdog = None
