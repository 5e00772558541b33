"""Reusable per-stack actions."""

from actions.stack import DeployStackAction, TerminateStackAction
from actions.policy import SetPolicyAction

__all__ = [
    'DeployStackAction',
    'TerminateStackAction',
    'SetPolicyAction',
]
