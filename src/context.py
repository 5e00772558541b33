"""Explicit run context passed to every operation."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from config import Options
from registry import Registry


@dataclass
class Context:
    """Everything an operation needs, in place of process-wide globals.

    Attributes:
        project: Project name from the document
        registry: Stack definitions
        provider: Remote provider client (CloudFormationProvider or a fake)
        options: Run options
        base_dir: Directory relative source locators resolve against
    """
    project: str
    registry: Registry
    provider: object
    options: Options = field(default_factory=Options)
    base_dir: Optional[Path] = None

    def regions_for(self, stack) -> list[Optional[str]]:
        """Regions a stack is deployed to; [None] means the provider default."""
        return list(stack.regions) or [None]
