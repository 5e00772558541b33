"""Concurrency-safe registry of stack definitions."""

import logging
import threading
from typing import Callable, Iterable, Optional

from config import ConfigError
from stack import Stack

logger = logging.getLogger(__name__)


class Registry:
    """Named collection of stacks, safe for concurrent readers and writers.

    Each call is atomic on its own; nothing is atomic across calls. Callers
    that check and then act must hold to one in-flight mutating operation
    per stack.
    """

    def __init__(self, stacks: Optional[Iterable[Stack]] = None):
        self._lock = threading.RLock()
        self._stacks: dict[str, Stack] = {}
        for stack in stacks or []:
            self.add(stack)

    def add(self, stack: Stack) -> None:
        """Register a stack.

        Raises:
            ConfigError: If the name is already registered
        """
        with self._lock:
            if stack.name in self._stacks:
                raise ConfigError(f"Duplicate stack name: {stack.name}")
            self._stacks[stack.name] = stack

    def get(self, name: str) -> Optional[Stack]:
        with self._lock:
            return self._stacks.get(name)

    def must_get(self, name: str) -> Stack:
        """Get a stack the caller has already confirmed exists.

        Raises:
            KeyError: If the name is absent (a caller bug)
        """
        with self._lock:
            return self._stacks[name]

    def range(self, visit: Callable[[str, Stack], bool]) -> bool:
        """Call visit(name, stack) for each entry until it returns False.

        Iterates a snapshot taken under the lock, so visit may call back
        into the registry. Order is unspecified.

        Returns:
            True if every entry was visited, False if stopped early
        """
        with self._lock:
            items = list(self._stacks.items())
        for name, stack in items:
            if not visit(name, stack):
                return False
        return True

    def count(self) -> int:
        with self._lock:
            return len(self._stacks)

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._stacks)

    def actioned(self) -> list[str]:
        """Names of stacks selected for the current run, sorted."""
        with self._lock:
            return sorted(n for n, s in self._stacks.items() if s.actioned)

    def mark_actioned(self, names: Iterable[str]) -> None:
        """Flag stacks for the current run.

        Raises:
            ConfigError: If any name is not registered
        """
        with self._lock:
            names = list(names)
            missing = [n for n in names if n not in self._stacks]
            if missing:
                raise ConfigError(f"Stack(s) not found in config: {', '.join(missing)}")
            for name in names:
                self._stacks[name].actioned = True

    def clear_actioned(self) -> None:
        with self._lock:
            for stack in self._stacks.values():
                stack.actioned = False

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._stacks

    def __len__(self) -> int:
        return self.count()
