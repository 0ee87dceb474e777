from __future__ import annotations

import itertools
from typing import Callable

_ids = itertools.count(1)


class LivenessToken:
    """Identity of a session or turn that async callbacks check before acting.

    A child token dies with its parent, so revoking a session token also makes
    every turn issued under it stale.
    """

    def __init__(self, label: str, parent: "LivenessToken | None" = None):
        self.id = next(_ids)
        self.label = label
        self.parent = parent
        self._revoked = False

    @property
    def alive(self) -> bool:
        if self._revoked:
            return False
        return self.parent.alive if self.parent is not None else True

    def revoke(self) -> None:
        self._revoked = True

    def child(self, label: str) -> "LivenessToken":
        return LivenessToken(label, parent=self)

    def guard(self, fn: Callable[..., None]) -> Callable[..., None]:
        """Wrap ``fn`` so it silently does nothing once the token is dead."""

        def _guarded(*args, **kwargs):
            if not self.alive:
                return None
            return fn(*args, **kwargs)

        return _guarded

    def __repr__(self) -> str:
        state = "alive" if self.alive else "dead"
        return f"<LivenessToken {self.label}#{self.id} {state}>"
