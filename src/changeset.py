"""Staged change lifecycle for a single stack.

State machine:

    NONE -> CREATED -> DESCRIBED -> EXECUTED
              |            |
              +------------+--> REMOVED
    any non-terminal state  --> FAILED (provider error)

Transitions are strictly monotonic. execute() and remove() are rejected
unless the change-set is CREATED or DESCRIBED, whatever gated the call.
"""

import json
import logging
import random
import threading
from enum import Enum
from typing import Any, Optional

from config import ConfigError
from context import Context
from outputs import refresh_outputs
from prompt import Confirm
from provider import RemoteAPIError
from resolver import TemplateResolver
from stack import Stack

logger = logging.getLogger(__name__)

_NO_CHANGE_REASONS = ("didn't contain changes", "No updates are to be performed")


class ChangeSetState(Enum):
    NONE = 'none'
    CREATED = 'created'
    DESCRIBED = 'described'
    EXECUTED = 'executed'
    REMOVED = 'removed'
    FAILED = 'failed'


class ChangeSetStateError(Exception):
    """Operation attempted from an invalid lifecycle state."""

    def __init__(self, message: str, state: Optional[ChangeSetState] = None):
        self.state = state
        super().__init__(message)


class NoChanges(ChangeSetStateError):
    """Rendered template matches what is deployed; nothing to stage."""

    def __init__(self, stackname: str):
        super().__init__(f"{stackname}: no changes to deploy", ChangeSetState.NONE)


def new_change_name(stack: Stack) -> str:
    """Random change-set name for a stack."""
    return f"{stack.stackname}-change-{random.randint(0, 2**31 - 1)}"


def _same_template(rendered: str, deployed: Any) -> bool:
    if deployed is None:
        return False
    if isinstance(deployed, str):
        return deployed.strip() == rendered.strip()
    # boto3 returns JSON template bodies already parsed
    try:
        return bool(json.loads(rendered) == deployed)
    except ValueError:
        return False


def _same_parameters(stack: Stack, described: dict) -> bool:
    deployed = {p['ParameterKey']: p.get('ParameterValue', '')
                for p in described.get('Parameters', [])}
    return all(deployed.get(p.key) == p.value for p in stack.parameters)


def format_changes(description: dict) -> str:
    """Human-readable summary of a describe_change_set response."""
    lines = [f"Change-set {description.get('ChangeSetName', '')} "
             f"[{description.get('Status', '')}]"]
    changes = description.get('Changes', [])
    if not changes:
        lines.append("  (no resource changes)")
    for change in changes:
        rc = change.get('ResourceChange', {})
        line = (f"  {rc.get('Action', '?'):<8} {rc.get('LogicalResourceId', '?')} "
                f"({rc.get('ResourceType', '?')})")
        if rc.get('Replacement') in ('True', 'Conditional'):
            line += f" replacement={rc['Replacement']}"
        lines.append(line)
    return '\n'.join(lines)


class ChangeSet:
    """A staged change to one stack in one region.

    Attributes:
        stack: Owning stack (must hold a resolved template)
        name: Change-set name
        region: Target region (None: provider default)
        state: Current lifecycle state
        change_type: CREATE or UPDATE, decided by create()
        summary: Text from the last describe()
    """

    def __init__(self, ctx: Context, stack: Stack, name: str, region: Optional[str] = None):
        self.ctx = ctx
        self.stack = stack
        self.name = name
        self.region = region if region is not None else ctx.regions_for(stack)[0]
        self.state = ChangeSetState.NONE
        self.change_type = ''
        self.change_id = ''
        self.summary = ''
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"ChangeSet({self.name}, stack={self.stack.name}, state={self.state.value})"

    @property
    def provider(self):
        return self.ctx.provider

    def _require(self, operation: str, *allowed: ChangeSetState) -> None:
        if not self.stack.template:
            raise ChangeSetStateError(
                f"{operation} {self.name}: stack {self.stack.name} has no resolved template",
                self.state)
        if self.state not in allowed:
            expected = ' or '.join(s.value for s in allowed)
            raise ChangeSetStateError(
                f"cannot {operation} change-set {self.name} in state "
                f"'{self.state.value}' (expected {expected})",
                self.state)

    def _fail(self, error: Exception) -> None:
        logger.error(f"[{self.stack.name}] change-set {self.name} failed: {error}")
        self.state = ChangeSetState.FAILED

    def create(self) -> None:
        """Register the change with the provider: NONE -> CREATED.

        Raises:
            NoChanges: Template and parameters match the deployed stack;
                state stays NONE
            ChangeSetStateError: Wrong state or no resolved template
            RemoteAPIError: Provider failure (state -> FAILED)
        """
        with self._lock:
            self._require('create', ChangeSetState.NONE)
            stackname = self.stack.stackname
            try:
                described = self.provider.describe_stack(stackname, self.region)
                if described is not None:
                    deployed = self.provider.get_template_body(stackname, self.region)
                    if (_same_template(self.stack.template, deployed)
                            and _same_parameters(self.stack, described)):
                        raise NoChanges(stackname)
                self.change_type = 'UPDATE' if described is not None else 'CREATE'

                logger.info(f"[{self.stack.name}] creating {self.change_type} change-set {self.name}")
                self.change_id = self.provider.create_change_set(
                    stackname, self.name, self.stack.template,
                    self.stack.provider_parameters(), self.change_type, self.region)
                self._wait_created()
            except RemoteAPIError as e:
                self._fail(e)
                raise
            self.state = ChangeSetState.CREATED

    def _wait_created(self) -> None:
        stackname = self.stack.stackname
        try:
            self.provider.wait('change_set_create_complete', self.region,
                               StackName=stackname, ChangeSetName=self.name)
        except RemoteAPIError as e:
            info = self.provider.describe_change_set(stackname, self.name, self.region)
            reason = info.get('StatusReason', '')
            if any(r in reason for r in _NO_CHANGE_REASONS):
                self.provider.delete_change_set(stackname, self.name, self.region)
                raise NoChanges(stackname) from e
            raise RemoteAPIError('ChangeSetFailed', reason or e.message) from e

    def describe(self) -> str:
        """Fetch a summary of the staged change: CREATED -> DESCRIBED."""
        with self._lock:
            self._require('describe', ChangeSetState.CREATED)
            try:
                description = self.provider.describe_change_set(
                    self.stack.stackname, self.name, self.region)
            except RemoteAPIError as e:
                self._fail(e)
                raise
            self.summary = format_changes(description)
            self.state = ChangeSetState.DESCRIBED
            return self.summary

    def execute(self) -> None:
        """Apply the staged change: CREATED|DESCRIBED -> EXECUTED.

        Not idempotent: a second call raises ChangeSetStateError.
        """
        with self._lock:
            self._require('execute', ChangeSetState.CREATED, ChangeSetState.DESCRIBED)
            stackname = self.stack.stackname
            try:
                logger.info(f"[{self.stack.name}] executing change-set {self.name}")
                self.provider.execute_change_set(stackname, self.name, self.region)
                if self.ctx.options.wait:
                    waiter = ('stack_create_complete' if self.change_type == 'CREATE'
                              else 'stack_update_complete')
                    self.provider.wait(waiter, self.region, StackName=stackname)
            except RemoteAPIError as e:
                self._fail(e)
                raise
            self.state = ChangeSetState.EXECUTED

        try:
            refresh_outputs(self.ctx, self.stack)
        except RemoteAPIError as e:
            logger.warning(f"[{self.stack.name}] executed, but output refresh failed: {e}")

    def remove(self) -> None:
        """Discard an unexecuted change: CREATED|DESCRIBED -> REMOVED."""
        with self._lock:
            self._require('remove', ChangeSetState.CREATED, ChangeSetState.DESCRIBED)
            try:
                self.provider.delete_change_set(self.stack.stackname, self.name, self.region)
            except RemoteAPIError as e:
                self._fail(e)
                raise
            self.state = ChangeSetState.REMOVED
            logger.info(f"[{self.stack.name}] change-set {self.name} removed")


def update_stack(ctx: Context, name: str, confirm: Confirm,
                 change_name: Optional[str] = None) -> ChangeSet:
    """Resolve, stage, describe and, on confirmation, apply a change.

    A declined confirmation removes the change-set. NoChanges is reported as
    "already up to date" and returns the un-transitioned change-set.

    Raises:
        ConfigError: Unknown stack or no source configured
        TemplateResolutionError: Template could not be rendered
        RemoteAPIError: Provider failure
    """
    stack = ctx.registry.get(name)
    if stack is None:
        raise ConfigError(f"stack [{name}] not found in config")
    if not stack.source and not stack.template_body:
        raise ConfigError(f"stack [{name}] has no source in config")

    TemplateResolver(ctx).resolve(stack)
    change = ChangeSet(ctx, stack, change_name or new_change_name(stack))
    try:
        change.create()
    except NoChanges:
        logger.info(f"[{name}] already up to date")
        return change

    logger.info(change.describe())
    if confirm("The above will be updated, do you want to proceed?"):
        change.execute()
        logger.info(f"[{name}] update completed successfully")
    else:
        change.remove()
    return change
