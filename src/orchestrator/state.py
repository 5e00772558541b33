"""Per-stack results for an orchestration run.

Tracks status (pending, running, completed, failed, skipped) for each stack
in a batch. Nothing is persisted: deployed state lives in the provider.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

logger = logging.getLogger(__name__)


@dataclass
class StackResult:
    """Per-stack outcome.

    Attributes:
        name: Stack name
        status: pending, running, completed, failed or skipped
        tier: Tier the stack ran in
        message: Action message on success
        started_at: Timestamp when execution started
        completed_at: Timestamp when execution completed
        error: Error message if failed or skipped
    """
    name: str
    status: str = 'pending'
    tier: int = 0
    message: str = ''
    started_at: Optional[float] = None
    completed_at: Optional[float] = None
    error: Optional[str] = None

    def start(self) -> None:
        self.status = 'running'
        self.started_at = time.time()

    def complete(self, message: str = '') -> None:
        self.status = 'completed'
        self.completed_at = time.time()
        self.message = message

    def fail(self, error: str) -> None:
        self.status = 'failed'
        self.completed_at = time.time()
        self.error = error

    def skip(self, error: str) -> None:
        self.status = 'skipped'
        self.completed_at = time.time()
        self.error = error

    @property
    def ok(self) -> bool:
        return self.status == 'completed'

    @property
    def duration(self) -> Optional[float]:
        if self.started_at and self.completed_at:
            return self.completed_at - self.started_at
        return None

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            'name': self.name,
            'status': self.status,
            'tier': self.tier,
        }
        if self.message:
            d['message'] = self.message
        if self.error is not None:
            d['error'] = self.error
        if self.duration is not None:
            d['duration'] = round(self.duration, 2)
        return d


class RunResult:
    """Results of one batch operation, keyed by stack name."""

    def __init__(self, operation: str):
        self.operation = operation
        self._results: dict[str, StackResult] = {}
        self.started_at: Optional[float] = None
        self.completed_at: Optional[float] = None

    def add(self, name: str, tier: int = 0) -> StackResult:
        result = StackResult(name=name, tier=tier)
        self._results[name] = result
        return result

    def get(self, name: str) -> StackResult:
        """Get a stack's result.

        Raises:
            KeyError: If the stack is not part of this run
        """
        return self._results[name]

    @property
    def results(self) -> dict[str, StackResult]:
        return dict(self._results)

    @property
    def success(self) -> bool:
        return all(r.ok for r in self._results.values())

    def start(self) -> None:
        self.started_at = time.time()

    def finish(self) -> None:
        self.completed_at = time.time()

    def to_dict(self) -> dict:
        duration = None
        if self.started_at and self.completed_at:
            duration = round(self.completed_at - self.started_at, 2)
        return {
            'operation': self.operation,
            'success': self.success,
            'duration': duration,
            'stacks': [r.to_dict() for r in self._results.values()],
        }
