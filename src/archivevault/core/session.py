"""Per-call transfer session: lifecycle state plus stage timings.

A session is created for every upload or download and dropped when the call
ends. It never holds key material and never outlives its request.
"""

from __future__ import annotations

import logging
import time
from typing import Dict, List, Optional, Tuple

from .exceptions import InvalidStateTransition
from .models import TransferState

logger = logging.getLogger(__name__)

_ORDER = [
    TransferState.IDLE,
    TransferState.VALIDATING,
    TransferState.TRANSFERRING,
    TransferState.FINALIZING,
    TransferState.COMMITTED,
]
TERMINAL_STATES = (TransferState.COMMITTED, TransferState.ROLLED_BACK)


class StageTimer:
    """Records elapsed time at named marks and renders a per-stage report."""

    def __init__(self):
        self._start = time.perf_counter()
        self._marks: List[Tuple[str, float]] = []

    def mark(self, label: str) -> None:
        self._marks.append((label, time.perf_counter() - self._start))

    def report(self) -> Dict[str, str]:
        report = {}
        previous = 0.0
        for label, elapsed in self._marks:
            report[label] = f"{(elapsed - previous) * 1000:.1f}ms (total: {elapsed * 1000:.1f}ms)"
            previous = elapsed
        return report

    def log(self, prefix: str) -> None:
        if not logger.isEnabledFor(logging.DEBUG):
            return
        for label, timing in self.report().items():
            logger.debug("%s %s: %s", prefix, label, timing)


class TransferSession:
    """State machine for one transfer.

    IDLE -> VALIDATING -> TRANSFERRING -> FINALIZING -> COMMITTED, with a move
    to ROLLED_BACK allowed from any non-terminal state. States are never
    re-entered.
    """

    __slots__ = ("kind", "object_id", "state", "history", "timer")

    def __init__(self, kind: str, object_id: Optional[str] = None):
        self.kind = kind
        self.object_id = object_id
        self.state = TransferState.IDLE
        self.history = [TransferState.IDLE]
        self.timer = StageTimer()

    @property
    def finished(self) -> bool:
        return self.state in TERMINAL_STATES

    def advance(self, target: TransferState) -> None:
        if self.finished:
            raise InvalidStateTransition(
                f"{self.kind} session is already {self.state.value}"
            )
        if target is TransferState.ROLLED_BACK:
            allowed = True
        else:
            allowed = _ORDER.index(target) == _ORDER.index(self.state) + 1
        if not allowed:
            raise InvalidStateTransition(
                f"{self.kind} session cannot move from {self.state.value} to {target.value}"
            )
        self.state = target
        self.history.append(target)
        self.timer.mark(target.value)
        logger.debug("%s %s -> %s", self.kind, self.object_id, target.value)

    def rollback(self) -> None:
        """Move to ROLLED_BACK unless the session already ended."""
        if not self.finished:
            self.advance(TransferState.ROLLED_BACK)
