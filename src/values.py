"""Config value validation and lookup.

Stack values come from the project document as arbitrary nested YAML. They
are validated once at load time so the resolver only ever sees one of:

- str, int, float, bool (scalars)
- list of values
- dict of str -> value

Anything else (None, dates, binary, non-string keys) is rejected up front.
"""

import json
from typing import Any, Union

from config import ConfigError

Scalar = Union[str, int, float, bool]
Value = Union[Scalar, list, dict]


def validate_values(data: Any, path: str = '') -> Value:
    """Validate a value tree and return a plain copy.

    Args:
        data: Raw value parsed from YAML
        path: Dotted location, used in error messages

    Raises:
        ConfigError: If a node is not one of the supported variants
    """
    where = path or '<root>'
    # bool before int: bool is an int subclass
    if isinstance(data, bool):
        return data
    if isinstance(data, (str, int, float)):
        return data
    if isinstance(data, list):
        return [validate_values(item, f'{path}[{i}]') for i, item in enumerate(data)]
    if isinstance(data, dict):
        result = {}
        for key, item in data.items():
            if not isinstance(key, str):
                raise ConfigError(f"Value key at {where} must be a string, got {type(key).__name__}")
            child = f'{path}.{key}' if path else key
            result[key] = validate_values(item, child)
        return result
    raise ConfigError(f"Unsupported value at {where}: {type(data).__name__}")


def lookup(values: dict, path: list[str]) -> Value:
    """Walk a validated value tree by path segments.

    Integer segments index into lists.

    Raises:
        KeyError: If any segment does not exist
    """
    node: Any = values
    for segment in path:
        if isinstance(node, dict):
            if segment not in node:
                raise KeyError(segment)
            node = node[segment]
        elif isinstance(node, list):
            try:
                node = node[int(segment)]
            except (ValueError, IndexError) as e:
                raise KeyError(segment) from e
        else:
            raise KeyError(segment)
    return node


def render_value(value: Value) -> str:
    """Render a value for substitution into template text.

    Collections render as compact, key-sorted JSON so output is stable.
    """
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, (list, dict)):
        return json.dumps(value, sort_keys=True, separators=(',', ':'))
    return str(value)
