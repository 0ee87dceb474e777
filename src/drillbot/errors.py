from __future__ import annotations

# reasons reported by speech engines when an utterance or capture was
# superseded or stopped on purpose
CANCEL_REASONS = frozenset({"interrupted", "canceled", "cancelled", "aborted"})


class DrillError(Exception):
    """Base class for drill engine errors."""


class ContentGenerationFailure(DrillError):
    def __init__(self, message: str, *, exercise: str | None = None):
        super().__init__(message)
        self.exercise = exercise


class SpeechOutputFailure(DrillError):
    def __init__(self, reason: str):
        super().__init__(f"speech output failed: {reason}")
        self.reason = reason

    @property
    def is_cancel(self) -> bool:
        return self.reason in CANCEL_REASONS


class SpeechInputFailure(DrillError):
    def __init__(self, reason: str):
        super().__init__(f"speech input failed: {reason}")
        self.reason = reason

    @property
    def is_cancel(self) -> bool:
        return self.reason in CANCEL_REASONS
