"""Stack model.

A Stack is one named unit of infrastructure: a template source, the config
values it is rendered against, the parameters mirrored to the provider and the
last observed deployed state.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class StackStatus(Enum):
    """Local view of a stack's deployment status."""
    UNKNOWN = 'unknown'
    NOT_DEPLOYED = 'not-deployed'
    DEPLOYED = 'deployed'
    IN_PROGRESS = 'in-progress'
    FAILED = 'failed'

    @classmethod
    def from_provider(cls, stack_status: Optional[str]) -> 'StackStatus':
        """Map a raw provider status (e.g. UPDATE_COMPLETE) to StackStatus."""
        if not stack_status or stack_status == 'DELETE_COMPLETE':
            return cls.NOT_DEPLOYED
        if stack_status.endswith('_IN_PROGRESS'):
            return cls.IN_PROGRESS
        if stack_status.endswith('_FAILED') or stack_status == 'ROLLBACK_COMPLETE':
            return cls.FAILED
        if stack_status.endswith('_COMPLETE'):
            return cls.DEPLOYED
        return cls.UNKNOWN


@dataclass
class Parameter:
    """A key/value input mirrored to the provider at deploy time."""
    key: str
    value: str

    def to_provider(self) -> dict:
        return {'ParameterKey': self.key, 'ParameterValue': self.value}


@dataclass
class StackInstance:
    """One deployed instance of a logical stack (one per region).

    Attributes:
        region: Region the instance lives in
        stack_id: Provider identifier
        stack_status: Raw provider status string
        outputs: (key, value) pairs in provider order
        parameters: (key, value) pairs as deployed
    """
    region: str
    stack_id: str = ''
    stack_status: str = ''
    outputs: list[tuple[str, str]] = field(default_factory=list)
    parameters: list[tuple[str, str]] = field(default_factory=list)

    def get_output(self, key: str) -> Optional[str]:
        for k, v in self.outputs:
            if k == key:
                return v
        return None


@dataclass
class Stack:
    """A named stack definition plus its resolved and observed state.

    Attributes:
        name: Unique key within a registry
        project: Project name (prefix of the remote stack name)
        source: Template locator (path, http(s)://, s3://)
        template_body: Raw template text, loaded lazily from source
        values: Validated config value mapping
        parameters: Ordered parameters mirrored to the provider
        policy: Policy document locator
        regions: Regions the stack is deployed to; empty means provider default
        template: Rendered template text (set by the resolver)
        output: Deployed instances as last observed; None if never fetched
        fetched_at: When output was last refreshed
        actioned: Selected for the current orchestration run
        status: Local status view
    """
    name: str
    project: str = ''
    source: str = ''
    template_body: str = ''
    values: dict = field(default_factory=dict)
    parameters: list[Parameter] = field(default_factory=list)
    policy: str = ''
    regions: list[str] = field(default_factory=list)
    template: str = ''
    output: Optional[list[StackInstance]] = None
    fetched_at: Optional[float] = None
    actioned: bool = False
    status: StackStatus = StackStatus.UNKNOWN

    @property
    def stackname(self) -> str:
        """Remote stack name."""
        if self.project:
            return f'{self.project}-{self.name}'
        return self.name

    @property
    def deployed(self) -> bool:
        """True if the last snapshot holds at least one instance."""
        return bool(self.output)

    def set_output(self, instances: list[StackInstance]) -> None:
        """Replace the output snapshot in one assignment."""
        self.output = instances
        self.fetched_at = time.time()

    def outputs_stale(self, ttl: Optional[float]) -> bool:
        """Whether the snapshot must be refreshed before it is read.

        Empty or never-fetched snapshots are always stale. A ttl of None
        means a non-empty snapshot never expires.
        """
        if not self.output or self.fetched_at is None:
            return True
        if ttl is None:
            return False
        return time.time() - self.fetched_at > ttl

    def find_output(self, key: str) -> Optional[str]:
        """Look up an output key across instances, first instance wins."""
        for instance in self.output or []:
            value = instance.get_output(key)
            if value is not None:
                return value
        return None

    def provider_parameters(self) -> list[dict]:
        return [p.to_provider() for p in self.parameters]
