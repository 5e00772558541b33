"""Stack executor for dependency-aware batch operations.

Walks the dependency graph tier by tier. Stacks within a tier run in
parallel on a bounded thread pool; tiers run one after another. A stack
whose in-run prerequisites did not complete is skipped without an attempt,
while unrelated stacks carry on.

Deploy prerequisites are the stacks a stack references. Terminate
prerequisites are the stacks that reference it.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Callable, Optional, Protocol, runtime_checkable

from actions import DeployStackAction, SetPolicyAction, TerminateStackAction
from common import ActionResult
from context import Context
from orchestrator.graph import DependencyGraph, GraphNode, OrchestrationError
from orchestrator.state import RunResult
from prompt import Confirm
from provider import RemoteAPIError
from stack import StackStatus

logger = logging.getLogger(__name__)


@runtime_checkable
class StackAction(Protocol):
    """Protocol for per-stack actions that implement run()."""

    def run(self, ctx: Context) -> ActionResult:
        """Execute the action."""


@dataclass
class StackExecutor:
    """Runs deploy, terminate and set-policy over the actioned stacks.

    Actioned flags are cleared when a run ends, whatever the outcome.

    Attributes:
        ctx: Run context
        confirm: When set, updates to existing stacks go through a
            change-set and this confirmation
        dry_run: Print the plan without touching the provider
    """
    ctx: Context
    confirm: Optional[Confirm] = None
    dry_run: bool = False

    def deploy(self) -> RunResult:
        """Create or update actioned stacks, dependencies first.

        Raises:
            OrchestrationError: If actioned stacks form a dependency cycle
        """
        return self._run(
            'deploy',
            order=lambda graph: graph.tiers(),
            prerequisites=lambda graph, node: node.depends_on,
            make_action=lambda name: DeployStackAction(name=name, confirm=self.confirm),
        )

    def terminate(self) -> RunResult:
        """Delete actioned stacks, dependents first.

        A stack is not deleted while a stack outside the run that references
        it is still deployed. A stack whose template cannot be scanned is
        still deleted, ahead of every other actioned stack.

        Raises:
            OrchestrationError: If actioned stacks form a dependency cycle
        """
        return self._run(
            'terminate',
            order=lambda graph: graph.reverse_tiers(),
            prerequisites=lambda graph, node: graph.teardown_prerequisites(node.name),
            make_action=lambda name: TerminateStackAction(name=name),
            scan_registry=True,
            blockers=self._deployed_external_dependents,
            fail_unscanned=False,
        )

    def apply_policies(self) -> RunResult:
        """Push policy documents for actioned stacks, in no particular order."""
        registry = self.ctx.registry
        result = RunResult('set-policy')
        result.start()
        try:
            names = registry.actioned()
            for name in names:
                result.add(name)
            if self.dry_run:
                self._preview('set-policy', [names])
            else:
                self._run_tier(result, names, lambda name: SetPolicyAction(name=name))
        finally:
            registry.clear_actioned()
        result.finish()
        return result

    def _deployed_external_dependents(self, node: GraphNode) -> list[str]:
        """Stacks outside the run that reference node and are still deployed.

        Raises:
            RemoteAPIError: If a dependent's state cannot be fetched
        """
        deployed = []
        for name in node.external_dependents:
            dependent = self.ctx.registry.must_get(name)
            for region in self.ctx.regions_for(dependent):
                if self.ctx.provider.describe_stack(dependent.stackname, region) is not None:
                    deployed.append(name)
                    break
        return deployed

    def _run(
        self,
        operation: str,
        order: Callable[[DependencyGraph], list[list[str]]],
        prerequisites: Callable[[DependencyGraph, GraphNode], list[str]],
        make_action: Callable[[str], StackAction],
        scan_registry: bool = False,
        blockers: Optional[Callable[[GraphNode], list[str]]] = None,
        fail_unscanned: bool = True,
    ) -> RunResult:
        registry = self.ctx.registry
        result = RunResult(operation)
        result.start()
        try:
            names = registry.actioned()
            if not names:
                logger.warning(f"No stacks selected for {operation}")
                result.finish()
                return result

            graph = DependencyGraph(self.ctx, names, scan_registry=scan_registry)
            tiers = order(graph)
            for name in names:
                result.add(name, tier=graph.get_node(name).tier)

            if self.dry_run:
                self._preview(operation, tiers, graph)
                result.finish()
                return result

            for index, tier in enumerate(tiers):
                logger.info(f"[{operation}] tier {index + 1}/{len(tiers)}: {', '.join(tier)}")
                runnable = []
                for name in tier:
                    node = graph.get_node(name)
                    if node.error and fail_unscanned:
                        result.get(name).fail(node.error)
                    else:
                        reason = self._blocked_reason(operation, graph, node, result,
                                                      prerequisites, blockers)
                        if reason is None:
                            runnable.append(name)
                            continue
                        logger.error(reason)
                        result.get(name).skip(reason)
                    registry.must_get(name).status = StackStatus.FAILED
                self._run_tier(result, runnable, make_action)
        finally:
            registry.clear_actioned()

        result.finish()
        failed = [n for n, r in result.results.items() if not r.ok]
        if failed:
            logger.error(f"[{operation}] finished with failures: {', '.join(failed)}")
        else:
            logger.info(f"[{operation}] completed for {len(result.results)} stack(s)")
        return result

    def _blocked_reason(
        self,
        operation: str,
        graph: DependencyGraph,
        node: GraphNode,
        result: RunResult,
        prerequisites: Callable[[DependencyGraph, GraphNode], list[str]],
        blockers: Optional[Callable[[GraphNode], list[str]]],
    ) -> Optional[str]:
        """Why a stack must not run now, or None if it may."""
        blocked = [p for p in prerequisites(graph, node) if not result.get(p).ok]
        if blocked:
            return str(OrchestrationError(
                f"{node.name}: skipped, {operation} did not complete for {', '.join(blocked)}"))

        if blockers is not None:
            try:
                still_deployed = blockers(node)
            except RemoteAPIError as e:
                return str(OrchestrationError(
                    f"{node.name}: skipped, cannot check dependents outside this run: {e}"))
            if still_deployed:
                return str(OrchestrationError(
                    f"{node.name}: skipped, still referenced by deployed stack(s) "
                    f"{', '.join(still_deployed)}"))
        return None

    def _run_tier(self, result: RunResult, names: list[str],
                  make_action: Callable[[str], StackAction]) -> None:
        if not names:
            return
        for name in names:
            result.get(name).start()

        workers = min(self.ctx.options.max_workers, len(names))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = {pool.submit(self._run_one, make_action(name)): name for name in names}
            for future in as_completed(futures):
                name = futures[future]
                action_result = future.result()
                if action_result.success:
                    result.get(name).complete(action_result.message)
                    logger.info(f"[{name}] {action_result.message}")
                else:
                    result.get(name).fail(action_result.message)

    def _run_one(self, action: StackAction) -> ActionResult:
        try:
            return action.run(self.ctx)
        except Exception as e:
            name = getattr(action, 'name', '?')
            logger.exception(f"[{name}] unexpected error")
            stack = self.ctx.registry.get(name)
            if stack is not None:
                stack.status = StackStatus.FAILED
            return ActionResult(success=False, message=f"{type(e).__name__}: {e}")

    def _preview(self, operation: str, tiers: list[list[str]],
                 graph: Optional[DependencyGraph] = None) -> None:
        print("")
        print("=" * 65)
        print(f"  DRY-RUN {operation.upper()}: {self.ctx.project}")
        print("=" * 65)
        print("")
        for index, tier in enumerate(tiers):
            for name in tier:
                line = f"  [{index + 1}] {name}"
                if graph is not None:
                    node = graph.get_node(name)
                    if node.depends_on:
                        line += f" (depends on: {', '.join(node.depends_on)})"
                    if node.external:
                        line += f" (external: {', '.join(node.external)})"
                    if node.external_dependents:
                        line += f" (referenced by: {', '.join(node.external_dependents)})"
                    if node.error:
                        line += f" [error: {node.error}]"
                print(line)
        print("")
