"""Tests for per-stack actions."""

import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from actions import DeployStackAction, SetPolicyAction, TerminateStackAction
from provider import RemoteAPIError
from stack import Stack, StackStatus


class TestDeployStackAction:
    """Tests for DeployStackAction."""

    def test_create_waits_for_completion(self, make_ctx, provider):
        ctx = make_ctx(Stack(name='topic', template_body='Resources: {}'))
        result = DeployStackAction(name='topic').run(ctx)
        assert result.success
        assert result.message == 'created in default region'
        assert provider.calls_for('wait') == ['demo-topic']

    def test_no_wait(self, make_ctx, provider):
        ctx = make_ctx(Stack(name='topic', template_body='Resources: {}'), wait=False)
        DeployStackAction(name='topic').run(ctx)
        assert provider.calls_for('wait') == []

    def test_resolution_error_fails_without_remote_mutation(self, make_ctx, provider):
        stack = Stack(name='topic')
        ctx = make_ctx(stack)
        result = DeployStackAction(name='topic').run(ctx)
        assert not result.success
        assert 'E101' in result.message
        assert stack.status == StackStatus.FAILED
        assert provider.calls == []


class TestTerminateStackAction:
    """Tests for TerminateStackAction."""

    def test_multi_region(self, make_ctx, provider):
        stack = Stack(name='topic', regions=['eu-west-1', 'us-west-2'])
        ctx = make_ctx(stack)
        provider.deploy('demo-topic', region='eu-west-1')
        result = TerminateStackAction(name='topic').run(ctx)
        assert result.message == 'deleted in 1 region(s)'
        assert stack.status == StackStatus.NOT_DEPLOYED

    def test_provider_error(self, make_ctx, provider):
        stack = Stack(name='topic')
        ctx = make_ctx(stack)
        provider.deploy('demo-topic')
        provider.fail_on[('delete_stack', 'demo-topic')] = RemoteAPIError('Denied', 'no')
        result = TerminateStackAction(name='topic').run(ctx)
        assert not result.success
        assert stack.status == StackStatus.FAILED


class TestSetPolicyAction:
    """Tests for SetPolicyAction."""

    def test_every_region(self, make_ctx, provider, tmp_path):
        (tmp_path / 'p.json').write_text('{"Statement": []}')
        ctx = make_ctx(Stack(name='db', policy='p.json', regions=['a', 'b']))
        assert SetPolicyAction(name='db').run(ctx).success
        assert sorted(provider.policies) == [('demo-db', 'a'), ('demo-db', 'b')]

    def test_missing_policy_file(self, make_ctx, provider):
        ctx = make_ctx(Stack(name='db', policy='missing.json'))
        result = SetPolicyAction(name='db').run(ctx)
        assert not result.success
        assert 'Cannot read' in result.message
