"""Stack policy action."""

import json
import logging
import time
from dataclasses import dataclass

from common import ActionResult
from config import ConfigError
from context import Context
from provider import RemoteAPIError
from sources import load_source

logger = logging.getLogger(__name__)


@dataclass
class SetPolicyAction:
    """Push a stack's configured protection-policy document."""
    name: str

    def run(self, ctx: Context) -> ActionResult:
        start = time.time()
        stack = ctx.registry.must_get(self.name)
        try:
            if not stack.policy:
                raise ConfigError(f"stack [{self.name}] has no policy configured")
            body = load_source(stack.policy, ctx.base_dir)
            try:
                json.loads(body)
            except ValueError as e:
                raise ConfigError(f"policy for [{self.name}] is not valid JSON: {e}") from e

            for region in ctx.regions_for(stack):
                logger.info(f"[{self.name}] setting stack policy in {region or 'default region'}")
                ctx.provider.set_stack_policy(stack.stackname, body, region)
        except (ConfigError, RemoteAPIError) as e:
            logger.error(f"[{self.name}] set-policy failed: {e}")
            return ActionResult(success=False, message=str(e), duration=time.time() - start)

        return ActionResult(success=True, message='policy applied', duration=time.time() - start)
