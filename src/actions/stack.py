"""Per-stack deploy and terminate actions."""

import logging
import time
from dataclasses import dataclass
from typing import Optional

from changeset import ChangeSet, ChangeSetStateError, NoChanges, new_change_name
from common import ActionResult
from config import ConfigError
from context import Context
from outputs import refresh_outputs
from prompt import Confirm
from provider import NoUpdates, RemoteAPIError
from resolver import TemplateResolutionError, TemplateResolver
from stack import Stack, StackStatus

logger = logging.getLogger(__name__)

STACK_ERRORS = (ConfigError, TemplateResolutionError, RemoteAPIError, ChangeSetStateError)


@dataclass
class DeployStackAction:
    """Resolve a stack's template and create or update it in every region.

    New stacks are created directly. Existing stacks are updated directly,
    or through a change-set when a confirm callback is given.
    """
    name: str
    confirm: Optional[Confirm] = None

    def run(self, ctx: Context) -> ActionResult:
        start = time.time()
        stack = ctx.registry.must_get(self.name)
        try:
            TemplateResolver(ctx).resolve(stack)
            stack.status = StackStatus.IN_PROGRESS
            messages = [self._deploy_region(ctx, stack, region)
                        for region in ctx.regions_for(stack)]
            refresh_outputs(ctx, stack)
        except STACK_ERRORS as e:
            stack.status = StackStatus.FAILED
            logger.error(f"[{self.name}] deploy failed: {e}")
            return ActionResult(success=False, message=str(e), duration=time.time() - start)

        return ActionResult(
            success=True,
            message='; '.join(messages),
            duration=time.time() - start,
        )

    def _deploy_region(self, ctx: Context, stack: Stack, region: Optional[str]) -> str:
        provider = ctx.provider
        where = region or 'default region'
        if provider.describe_stack(stack.stackname, region) is None:
            logger.info(f"[{self.name}] creating {stack.stackname} in {where}")
            provider.create_stack(stack.stackname, stack.template,
                                  stack.provider_parameters(), region)
            if ctx.options.wait:
                provider.wait('stack_create_complete', region, StackName=stack.stackname)
            return f"created in {where}"

        if self.confirm is not None:
            return self._update_via_change_set(ctx, stack, region, where, self.confirm)

        logger.info(f"[{self.name}] updating {stack.stackname} in {where}")
        try:
            provider.update_stack(stack.stackname, stack.template,
                                  stack.provider_parameters(), region)
        except NoUpdates:
            logger.info(f"[{self.name}] already up to date in {where}")
            return f"up to date in {where}"
        if ctx.options.wait:
            provider.wait('stack_update_complete', region, StackName=stack.stackname)
        return f"updated in {where}"

    def _update_via_change_set(self, ctx: Context, stack: Stack,
                               region: Optional[str], where: str, confirm: Confirm) -> str:
        change = ChangeSet(ctx, stack, new_change_name(stack), region)
        try:
            change.create()
        except NoChanges:
            logger.info(f"[{self.name}] already up to date in {where}")
            return f"up to date in {where}"
        logger.info(change.describe())
        if confirm(f"Stack {stack.stackname} ({where}) will be updated, do you want to proceed?"):
            change.execute()
            return f"updated in {where} via {change.name}"
        change.remove()
        return f"update declined in {where}"


@dataclass
class TerminateStackAction:
    """Delete a stack from every region it is deployed to."""
    name: str

    def run(self, ctx: Context) -> ActionResult:
        start = time.time()
        stack = ctx.registry.must_get(self.name)
        provider = ctx.provider
        deleted = 0
        try:
            for region in ctx.regions_for(stack):
                if provider.describe_stack(stack.stackname, region) is None:
                    logger.info(f"[{self.name}] {stack.stackname} not deployed in "
                                f"{region or 'default region'}")
                    continue
                logger.info(f"[{self.name}] deleting {stack.stackname} in {region or 'default region'}")
                stack.status = StackStatus.IN_PROGRESS
                provider.delete_stack(stack.stackname, region)
                if ctx.options.wait:
                    provider.wait('stack_delete_complete', region, StackName=stack.stackname)
                deleted += 1
            refresh_outputs(ctx, stack)
        except RemoteAPIError as e:
            stack.status = StackStatus.FAILED
            logger.error(f"[{self.name}] terminate failed: {e}")
            return ActionResult(success=False, message=str(e), duration=time.time() - start)

        message = f"deleted in {deleted} region(s)" if deleted else "already absent"
        return ActionResult(success=True, message=message, duration=time.time() - start)
