"""Project document loading and validation.

A project document names the project and lists its stacks:

    project: demo
    region: eu-west-1
    stacks:
      - name: vpc
        source: templates/vpc.yml
        values: {cidr: 10.0.0.0/16}
        parameters:
          - {key: Env, value: dev}
        policy: policies/vpc.json
        regions: [eu-west-1, us-east-1]

``stacks`` may also be a mapping keyed by stack name. Values are validated
once here so later stages never guess their shape.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from config import ConfigError, _parse_yaml, get_config_path
from registry import Registry
from stack import Parameter, Stack
from values import validate_values

logger = logging.getLogger(__name__)

STACK_KEYS = {'name', 'source', 'values', 'parameters', 'policy', 'regions'}


def _scalar_text(value: Any, where: str) -> str:
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, (str, int, float)):
        return str(value)
    raise ConfigError(f"{where}: parameter value must be a scalar, got {type(value).__name__}")


def _parse_parameters(raw: Any, stack: str) -> list[Parameter]:
    """Accept [{key, value}], [{Key: Value}] or {Key: Value}."""
    where = f"stack [{stack}]"
    if raw is None:
        return []
    if isinstance(raw, dict):
        return [Parameter(str(k), _scalar_text(v, where)) for k, v in raw.items()]
    if not isinstance(raw, list):
        raise ConfigError(f"{where}: parameters must be a list or mapping")

    params: list[Parameter] = []
    for item in raw:
        if not isinstance(item, dict):
            raise ConfigError(f"{where}: each parameter must be a mapping")
        if 'key' in item:
            params.append(Parameter(str(item['key']), _scalar_text(item.get('value', ''), where)))
        elif len(item) == 1:
            key, value = next(iter(item.items()))
            params.append(Parameter(str(key), _scalar_text(value, where)))
        else:
            raise ConfigError(f"{where}: parameter entry needs 'key'/'value': {item}")
    return params


@dataclass
class Project:
    """A loaded project document.

    Attributes:
        name: Project name (prefix for remote stack names)
        registry: Stack definitions
        region: Default region, if set in the document
        base_dir: Directory relative locators resolve against
    """
    name: str
    registry: Registry
    region: Optional[str] = None
    base_dir: Optional[Path] = None
    stack_order: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict, base_dir: Optional[Path] = None) -> 'Project':
        """Build a project from parsed document data.

        Raises:
            ConfigError: On missing or invalid fields
        """
        if not isinstance(data, dict):
            raise ConfigError("project document must be a mapping")
        name = data.get('project')
        if not name or not isinstance(name, str):
            raise ConfigError("project document is missing required field 'project'")

        raw_stacks = data.get('stacks') or []
        if isinstance(raw_stacks, dict):
            raw_stacks = [{'name': k, **(v or {})} for k, v in raw_stacks.items()]
        if not isinstance(raw_stacks, list):
            raise ConfigError("'stacks' must be a list or mapping")

        registry = Registry()
        order: list[str] = []
        for entry in raw_stacks:
            stack = cls._stack_from_dict(entry, name)
            registry.add(stack)
            order.append(stack.name)

        logger.debug(f"Loaded project {name} with {len(order)} stack(s)")
        return cls(name=name, registry=registry, region=data.get('region'),
                   base_dir=base_dir, stack_order=order)

    @staticmethod
    def _stack_from_dict(entry: Any, project: str) -> Stack:
        if not isinstance(entry, dict) or not entry.get('name'):
            raise ConfigError(f"stack entry is missing required field 'name': {entry}")
        name = str(entry['name'])
        unknown = set(entry) - STACK_KEYS
        if unknown:
            logger.warning(f"stack [{name}]: ignoring unknown keys {sorted(unknown)}")

        values = validate_values(entry.get('values') or {}, name)
        if not isinstance(values, dict):
            raise ConfigError(f"stack [{name}]: values must be a mapping")

        regions = entry.get('regions') or []
        if isinstance(regions, str):
            regions = [regions]

        return Stack(
            name=name,
            project=project,
            source=str(entry.get('source') or ''),
            values=values,
            parameters=_parse_parameters(entry.get('parameters'), name),
            policy=str(entry.get('policy') or ''),
            regions=[str(r) for r in regions],
        )


def load_project(path: Optional[str] = None, raw: Optional[str] = None) -> Project:
    """Load a project from a YAML file or an inline YAML string.

    Args:
        path: Document path (default: STACKCTL_CONFIG or config.yml)
        raw: Inline YAML; takes precedence over path

    Raises:
        ConfigError: If the document cannot be read or is invalid
    """
    if raw is not None:
        try:
            data = yaml.safe_load(raw) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid project YAML: {e}") from e
        return Project.from_dict(data, base_dir=Path.cwd())

    doc = get_config_path(path)
    if not doc.exists():
        raise ConfigError(f"Project document not found: {doc}")
    return Project.from_dict(_parse_yaml(doc), base_dir=doc.resolve().parent)
