"""Template reference scanning and resolution errors.

Two reference classes are recognised inside ``{{ }}``:

- ``{{ .path.to.value }}``   local config lookup (leading dot)
- ``{{ stack-name.key }}``   output of another stack

CloudFormation dynamic references (``{{resolve:...}}``) are left untouched.
"""

import re
from dataclasses import dataclass, field
from typing import Optional

OPEN = '{{'
CLOSE = '}}'

_VALUE_RE = re.compile(r'^\.([A-Za-z0-9_-]+(?:\.[A-Za-z0-9_-]+)*)$')
_OUTPUT_RE = re.compile(r'^([A-Za-z0-9][A-Za-z0-9_-]*)\.([A-Za-z0-9_:-]+)$')
_DYNAMIC_PREFIX = 'resolve:'


class TemplateResolutionError(Exception):
    """Base exception for template resolution errors."""

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(f"{code}: {message}")


class EmptySource(TemplateResolutionError):
    """Stack has no template source or the source is empty."""

    def __init__(self, stack: str):
        super().__init__("E101", f"No template source for stack: {stack}")


class MalformedReference(TemplateResolutionError):
    """Reference syntax inside {{ }} is invalid."""

    def __init__(self, stack: str, detail: str):
        super().__init__("E102", f"Malformed reference in {stack}: {detail}")


class UnresolvedReference(TemplateResolutionError):
    """Referenced stack, output key or value path does not exist."""

    def __init__(self, stack: str, reference: str, reason: str):
        self.reference = reference
        super().__init__("E103", f"Unresolved reference {{{{{reference}}}}} in {stack}: {reason}")


class CyclicDependency(TemplateResolutionError):
    """Resolution path revisits a stack already being resolved."""

    def __init__(self, chain: list[str]):
        self.chain = list(chain)
        super().__init__("E104", f"Cyclic dependency: {' -> '.join(chain)}")


class RemoteFetchError(TemplateResolutionError):
    """Fetching a dependency's outputs from the provider failed."""

    def __init__(self, stack: str, dependency: str, cause: Exception):
        self.cause = cause
        super().__init__("E105", f"Failed to fetch outputs of {dependency} for {stack}: {cause}")


@dataclass(frozen=True)
class Reference:
    """One ``{{ }}`` occurrence in a template body.

    Attributes:
        kind: 'value' or 'output'
        raw: Text between the braces, stripped
        start: Offset of the opening braces
        end: Offset just past the closing braces
        stack: Referenced stack name (output references)
        key: Output key (output references)
        path: Value path segments (value references)
    """
    kind: str
    raw: str
    start: int
    end: int
    stack: Optional[str] = None
    key: Optional[str] = None
    path: tuple = field(default=())


def scan(body: str, stack: str = '<template>') -> list[Reference]:
    """Find all references in a template body, in order.

    Pure text scan: no lookups, no network.

    Raises:
        MalformedReference: On unterminated or unrecognised references
    """
    refs: list[Reference] = []
    pos = 0
    while True:
        start = body.find(OPEN, pos)
        if start < 0:
            return refs
        close = body.find(CLOSE, start + len(OPEN))
        if close < 0:
            line = body.count('\n', 0, start) + 1
            raise MalformedReference(stack, f"unterminated '{{{{' on line {line}")
        end = close + len(CLOSE)
        raw = body[start + len(OPEN):close].strip()
        pos = end

        if raw.startswith(_DYNAMIC_PREFIX):
            continue
        if not raw:
            raise MalformedReference(stack, "empty reference '{{}}'")

        m = _VALUE_RE.match(raw)
        if m:
            refs.append(Reference(kind='value', raw=raw, start=start, end=end,
                                  path=tuple(m.group(1).split('.'))))
            continue
        m = _OUTPUT_RE.match(raw)
        if m:
            refs.append(Reference(kind='output', raw=raw, start=start, end=end,
                                  stack=m.group(1), key=m.group(2)))
            continue
        raise MalformedReference(stack, f"'{{{{{raw}}}}}'")


def dependencies(body: str, stack: str = '<template>') -> list[str]:
    """Names of stacks referenced by a body, deduplicated, in first-seen order."""
    seen: list[str] = []
    for ref in scan(body, stack):
        if ref.kind == 'output' and ref.stack not in seen:
            seen.append(ref.stack)
    return seen
