"""Common types for stack operations."""

from dataclasses import dataclass


@dataclass
class ActionResult:
    """Result returned by a per-stack action.

    Actions report failures here instead of raising so that batch runs can
    record them per stack and carry on.
    """
    success: bool
    message: str = ''
    duration: float = 0.0
