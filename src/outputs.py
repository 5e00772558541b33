"""Output synchronization with the remote provider.

Fetches a stack's live state (outputs, parameters, status) and replaces the
stack's output snapshot. A failed fetch leaves the previous snapshot alone.
"""

import json
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

import yaml

from config import ConfigError
from context import Context
from stack import Stack, StackInstance, StackStatus

logger = logging.getLogger(__name__)

# Precedence when instances in different regions disagree
_STATUS_RANK = {
    StackStatus.IN_PROGRESS: 0,
    StackStatus.FAILED: 1,
    StackStatus.UNKNOWN: 2,
    StackStatus.DEPLOYED: 3,
    StackStatus.NOT_DEPLOYED: 4,
}


def _instance_from(described: dict, region: str) -> StackInstance:
    return StackInstance(
        region=region,
        stack_id=described.get('StackId', ''),
        stack_status=described.get('StackStatus', ''),
        outputs=[(o['OutputKey'], o.get('OutputValue', ''))
                 for o in described.get('Outputs', [])],
        parameters=[(p['ParameterKey'], p.get('ParameterValue', ''))
                    for p in described.get('Parameters', [])],
    )


def refresh_outputs(ctx: Context, stack: Stack) -> list[StackInstance]:
    """Fetch live state for every region of a stack and store it.

    Raises:
        RemoteAPIError: On provider failure (snapshot unchanged)
    """
    default_region = getattr(ctx.provider, 'default_region', None) or ''
    instances: list[StackInstance] = []
    for region in ctx.regions_for(stack):
        described = ctx.provider.describe_stack(stack.stackname, region)
        if described is None:
            logger.debug(f"[{stack.name}] not deployed in {region or default_region}")
            continue
        instances.append(_instance_from(described, region or default_region))

    stack.set_output(instances)
    if instances:
        statuses = [StackStatus.from_provider(i.stack_status) for i in instances]
        stack.status = min(statuses, key=lambda s: _STATUS_RANK[s])
    else:
        stack.status = StackStatus.NOT_DEPLOYED
    logger.debug(f"[{stack.name}] refreshed {len(instances)} instance(s), status={stack.status.value}")
    return instances


def refresh_many(ctx: Context, names: list[str]) -> dict[str, Optional[Exception]]:
    """Refresh several stacks in parallel.

    Returns:
        Map of stack name to the error raised, or None on success
    """
    results: dict[str, Optional[Exception]] = {}

    def _refresh(name: str) -> Optional[Exception]:
        stack = ctx.registry.get(name)
        if stack is None:
            return ConfigError(f"{name}: does not exist in config")
        try:
            refresh_outputs(ctx, stack)
        except Exception as e:  # reported per stack
            logger.error(f"[{name}] failed to fetch outputs: {e}")
            return e
        return None

    with ThreadPoolExecutor(max_workers=ctx.options.max_workers) as pool:
        for name, error in zip(names, pool.map(_refresh, names)):
            results[name] = error
    return results


def dump_outputs(stack: Stack) -> list[str]:
    """Key-ordered JSON of outputs, one document per deployed instance."""
    return [json.dumps(dict(instance.outputs), indent=2, sort_keys=True)
            for instance in stack.output or []]


def dump_parameters(stack: Stack) -> list[str]:
    """Deployed parameters sorted by key, flagging divergent local values.

    A divergent line reads ``Key  deployed vs. local``.
    """
    local = {p.key: p.value for p in stack.parameters}
    lines: list[str] = []
    for instance in stack.output or []:
        params = sorted(instance.parameters)
        width = max((len(k) for k, _ in params), default=0)
        for key, value in params:
            line = f"{key.ljust(width)}  {value}"
            if key in local and local[key] != value:
                line += f" vs. {local[key]}"
            lines.append(line)
    return lines


def dump_values(stack: Stack) -> str:
    """Local config values in YAML."""
    dumped: str = yaml.safe_dump(stack.values, default_flow_style=False, sort_keys=True)
    return dumped


def list_exports(ctx: Context) -> list[tuple[str, str, str]]:
    """(name, value, exporting stack id) for every export in the default region."""
    exports = ctx.provider.list_exports()
    return sorted((e.get('Name', ''), e.get('Value', ''), e.get('ExportingStackId', ''))
                  for e in exports)


def stack_status(ctx: Context, stack: Stack) -> StackStatus:
    """Refresh a stack and return its aggregated status.

    Raises:
        RemoteAPIError: On provider failure
    """
    refresh_outputs(ctx, stack)
    return stack.status
