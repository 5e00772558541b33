"""Template resolution against config values and other stacks' outputs.

Resolution is a pure function of the stack's values and the output
snapshots of the stacks it references: resolving twice with unchanged
inputs yields byte-identical text.
"""

import logging
from typing import Optional

from context import Context
from outputs import refresh_outputs
from provider import RemoteAPIError
from resolver.base import (
    CyclicDependency,
    EmptySource,
    RemoteFetchError,
    UnresolvedReference,
    dependencies,
    scan,
)
from sources import load_source
from stack import Stack
from values import lookup, render_value

logger = logging.getLogger(__name__)


def load_body(ctx: Context, stack: Stack) -> str:
    """Return the stack's raw template body, reading the source on first use.

    Returns an empty string if the stack has no source.

    Raises:
        SourceError: If the source cannot be read
    """
    if not stack.template_body and stack.source:
        stack.template_body = load_source(stack.source, ctx.base_dir)
    return stack.template_body


class TemplateResolver:
    """Renders stack templates from a registry.

    Each resolve() call keeps its own resolution stack, so one resolver can
    serve concurrent requests for distinct stacks.
    """

    def __init__(self, ctx: Context):
        self.ctx = ctx

    def references(self, stack: Stack) -> list[str]:
        """Stacks referenced by a stack's template, without resolving."""
        body = load_body(self.ctx, stack)
        if not body:
            return []
        return dependencies(body, stack.name)

    def check_cycles(self, stack: Stack) -> None:
        """Walk the reference graph from a stack.

        Raises:
            CyclicDependency: If a path revisits a stack on the current chain
        """
        done: set[str] = set()

        def _walk(current: Stack, chain: list[str]) -> None:
            for dep_name in self.references(current):
                if dep_name in chain:
                    raise CyclicDependency(chain + [dep_name])
                if dep_name in done:
                    continue
                dep = self.ctx.registry.get(dep_name)
                if dep is not None:
                    _walk(dep, chain + [dep_name])
            done.add(current.name)

        _walk(stack, [stack.name])

    def resolve(self, stack: Stack) -> str:
        """Render a stack's template and store it on stack.template.

        Raises:
            EmptySource: No source, or the source is empty
            MalformedReference: Invalid {{ }} syntax
            UnresolvedReference: Missing stack, output key or value path
            CyclicDependency: Reference chain loops back
            RemoteFetchError: Provider failure fetching a dependency's outputs
        """
        body = load_body(self.ctx, stack)
        if not body:
            raise EmptySource(stack.name)

        refs = scan(body, stack.name)
        self.check_cycles(stack)

        parts: list[str] = []
        pos = 0
        for ref in refs:
            parts.append(body[pos:ref.start])
            if ref.kind == 'value':
                parts.append(self._value(stack, ref.raw, list(ref.path)))
            else:
                parts.append(self._output(stack, ref.raw, ref.stack, ref.key))
            pos = ref.end
        parts.append(body[pos:])

        stack.template = ''.join(parts)
        logger.debug(f"[{stack.name}] resolved template ({len(refs)} reference(s))")
        return stack.template

    def _value(self, stack: Stack, raw: str, path: list[str]) -> str:
        try:
            return render_value(lookup(stack.values, path))
        except KeyError as e:
            raise UnresolvedReference(stack.name, raw, f"no value at '{'.'.join(path)}'") from e

    def _output(self, stack: Stack, raw: str, dep_name: Optional[str], key: Optional[str]) -> str:
        dep = self.ctx.registry.get(dep_name) if dep_name else None
        if dep is None:
            raise UnresolvedReference(stack.name, raw, f"stack '{dep_name}' not found in config")

        if dep.outputs_stale(self.ctx.options.output_ttl):
            logger.debug(f"[{stack.name}] fetching outputs of {dep.name}")
            try:
                refresh_outputs(self.ctx, dep)
            except RemoteAPIError as e:
                raise RemoteFetchError(stack.name, dep.name, e) from e

        if not dep.deployed:
            raise UnresolvedReference(stack.name, raw, f"stack '{dep.name}' is not deployed")
        value = dep.find_output(key or '')
        if value is None:
            raise UnresolvedReference(stack.name, raw, f"stack '{dep.name}' has no output '{key}'")
        return value
