"""Generation tokens that keep superseded async results out of shared state.

Each operation class owns a monotonically increasing counter. An operation
captures ``(class, counter, mode)`` when it starts and may only commit while
both the counter and the active mode still match. Stale writers become no-ops;
their network calls are left to finish on their own.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from loguru import logger

from cocreator.models.graph import Mode
from cocreator.services.retry import ProgressCallback, notify


class OperationClass(str, Enum):
    ANALYSIS = "analysis"  # belief graph + clarifications
    CONTENT = "content"  # image / story / video


@dataclass(frozen=True)
class GenerationToken:
    operation: OperationClass
    value: int
    mode: Mode


class RequestCoordinator:
    def __init__(self, mode: Mode = Mode.IMAGE):
        self._mode = mode
        self._counters: dict[OperationClass, int] = {op: 0 for op in OperationClass}

    @property
    def mode(self) -> Mode:
        return self._mode

    def counter(self, operation: OperationClass) -> int:
        return self._counters[operation]

    def issue(self, operation: OperationClass) -> GenerationToken:
        self._counters[operation] += 1
        return GenerationToken(operation=operation, value=self._counters[operation], mode=self._mode)

    def is_current(self, token: GenerationToken) -> bool:
        return self._mode == token.mode and self._counters[token.operation] == token.value

    def invalidate(self, operation: Optional[OperationClass] = None) -> None:
        targets = [operation] if operation is not None else list(OperationClass)
        for op in targets:
            self._counters[op] += 1

    def set_mode(self, mode: Mode) -> bool:
        """Switch the active mode; every in-flight operation becomes stale."""
        if mode == self._mode:
            return False
        self.invalidate()
        self._mode = mode
        return True

    def commit(self, token: GenerationToken, apply: Callable[[], None]) -> bool:
        if not self.is_current(token):
            logger.debug(
                f"Discarding superseded {token.operation.value} result "
                f"(token={token.value}, mode={token.mode.value})"
            )
            return False
        apply()
        return True

    def guard(
        self, token: GenerationToken, on_progress: Optional[ProgressCallback]
    ) -> ProgressCallback:
        """Progress callback that goes silent once ``token`` is superseded."""

        def _forward(message: str) -> None:
            if self.is_current(token):
                notify(on_progress, message)

        return _forward
