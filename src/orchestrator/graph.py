"""Dependency graph for multi-stack orchestration.

Builds edges from the cross-stack references in each actioned stack's
template (reference scan only, no resolution) and groups stacks into tiers
for deploy (dependencies first) and terminate (dependents first).
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from config import ConfigError
from context import Context
from resolver import TemplateResolutionError, TemplateResolver

logger = logging.getLogger(__name__)


class OrchestrationError(Exception):
    """Dependency cycle, or a stack blocked by an upstream failure."""


@dataclass
class GraphNode:
    """A stack in the dependency graph.

    Attributes:
        name: Stack name
        depends_on: In-run stacks this stack references
        dependents: In-run stacks that reference this stack
        external: Referenced stacks outside the run (must already be deployed)
        external_dependents: Stacks outside the run that reference this
            stack, or whose references are unknown (terminate only)
        tier: 0 for no in-run dependencies, else 1 + max dependency tier
        error: Why the template could not be scanned, if it could not
    """
    name: str
    depends_on: list[str] = field(default_factory=list)
    dependents: list[str] = field(default_factory=list)
    external: list[str] = field(default_factory=list)
    external_dependents: list[str] = field(default_factory=list)
    tier: int = 0
    error: Optional[str] = None

    def __repr__(self) -> str:
        return f"GraphNode({self.name}, tier={self.tier}, depends_on={self.depends_on})"


class DependencyGraph:
    """Dependency graph over a set of stacks.

    Raises OrchestrationError on construction if the stacks reference each
    other in a cycle, so nothing is mutated remotely for a cyclic batch.

    With scan_registry, every other stack in the registry is scanned too so
    that terminate can see dependents outside the run.
    """

    def __init__(self, ctx: Context, names: list[str], scan_registry: bool = False):
        self.ctx = ctx
        self._nodes: dict[str, GraphNode] = {name: GraphNode(name=name) for name in sorted(names)}
        self._build_edges()
        if scan_registry:
            self._find_external_dependents()
        self._tiers = self._compute_tiers()

    def _build_edges(self) -> None:
        resolver = TemplateResolver(self.ctx)
        for name, node in self._nodes.items():
            stack = self.ctx.registry.must_get(name)
            try:
                refs = resolver.references(stack)
            except (TemplateResolutionError, ConfigError) as e:
                node.error = str(e)
                logger.error(f"[{name}] cannot scan template: {e}")
                continue
            for ref in refs:
                if ref in self._nodes:
                    node.depends_on.append(ref)
                    self._nodes[ref].dependents.append(name)
                else:
                    node.external.append(ref)

    def _find_external_dependents(self) -> None:
        resolver = TemplateResolver(self.ctx)
        for name in self.ctx.registry.names():
            if name in self._nodes:
                continue
            try:
                refs = resolver.references(self.ctx.registry.must_get(name))
            except (TemplateResolutionError, ConfigError) as e:
                # References unknown: it may depend on any stack in the run
                logger.warning(f"[{name}] cannot scan template, treating as a dependent of every stack: {e}")
                refs = list(self._nodes)
            for ref in refs:
                if ref in self._nodes:
                    self._nodes[ref].external_dependents.append(name)

    def _compute_tiers(self) -> list[list[str]]:
        remaining = {name: set(node.depends_on) for name, node in self._nodes.items()}
        tiers: list[list[str]] = []
        while remaining:
            ready = sorted(name for name, deps in remaining.items() if not deps)
            if not ready:
                chain = self._find_cycle(set(remaining))
                raise OrchestrationError(f"Dependency cycle among actioned stacks: {' -> '.join(chain)}")
            for name in ready:
                self._nodes[name].tier = len(tiers)
                del remaining[name]
            for deps in remaining.values():
                deps.difference_update(ready)
            tiers.append(ready)
        return tiers

    def _find_cycle(self, candidates: set[str]) -> list[str]:
        """Return one cycle (first node repeated at the end) among candidates."""
        start = min(candidates)
        chain = [start]
        seen = {start: 0}
        current = start
        while True:
            # Every candidate still has an unresolved in-run dependency
            nxt = min(d for d in self._nodes[current].depends_on if d in candidates)
            if nxt in seen:
                return chain[seen[nxt]:] + [nxt]
            seen[nxt] = len(chain)
            chain.append(nxt)
            current = nxt

    @property
    def names(self) -> list[str]:
        return list(self._nodes)

    def get_node(self, name: str) -> GraphNode:
        """Get a node by name.

        Raises:
            KeyError: If the stack is not in the graph
        """
        return self._nodes[name]

    def tiers(self) -> list[list[str]]:
        """Deploy order: each tier's dependencies are in earlier tiers."""
        return [list(t) for t in self._tiers]

    @property
    def unscanned(self) -> list[str]:
        """Stacks whose references are unknown because their template could not be scanned."""
        return [name for name, node in self._nodes.items() if node.error]

    def reverse_tiers(self) -> list[list[str]]:
        """Terminate order: dependents before the stacks they reference.

        Unscanned stacks may reference anything in the run, so they form
        the first tier on their own.
        """
        unscanned = self.unscanned
        tiers = [[n for n in t if n not in unscanned] for t in reversed(self._tiers)]
        if unscanned:
            tiers.insert(0, unscanned)
        return [t for t in tiers if t]

    def teardown_prerequisites(self, name: str) -> list[str]:
        """In-run stacks that must be torn down before this one."""
        node = self._nodes[name]
        if node.error:
            return []
        return node.dependents + [n for n in self.unscanned if n not in node.dependents]
