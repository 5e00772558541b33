"""Tests for changeset module."""

import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from changeset import (
    ChangeSet,
    ChangeSetState,
    ChangeSetStateError,
    NoChanges,
    format_changes,
    update_stack,
)
from config import ConfigError
from provider import RemoteAPIError
from stack import Parameter, Stack


@pytest.fixture
def topic(make_ctx):
    """Context with a single resolved 'topic' stack."""
    stack = Stack(name='topic', template_body='Resources: {}\n',
                  parameters=[Parameter('Env', 'dev')])
    stack.template = stack.template_body
    return make_ctx(stack), stack


class TestLifecycle:
    """State machine transitions."""

    def test_create_for_new_stack(self, topic, provider):
        ctx, stack = topic
        change = ChangeSet(ctx, stack, 'cs-1')
        change.create()
        assert change.state == ChangeSetState.CREATED
        assert change.change_type == 'CREATE'

    def test_create_for_existing_stack_is_update(self, topic, provider):
        ctx, stack = topic
        provider.deploy('demo-topic', template='Resources: {old: 1}\n')
        change = ChangeSet(ctx, stack, 'cs-1')
        change.create()
        assert change.change_type == 'UPDATE'

    def test_describe_then_execute(self, topic, provider):
        ctx, stack = topic
        provider.planned_outputs['demo-topic'] = {'TopicArn': 'arn:topic'}
        change = ChangeSet(ctx, stack, 'cs-1')
        change.create()
        summary = change.describe()
        assert 'Add' in summary
        assert change.state == ChangeSetState.DESCRIBED
        change.execute()
        assert change.state == ChangeSetState.EXECUTED
        # outputs refreshed after execution
        assert stack.find_output('TopicArn') == 'arn:topic'

    def test_execute_straight_from_created(self, topic):
        ctx, stack = topic
        change = ChangeSet(ctx, stack, 'cs-1')
        change.create()
        change.execute()
        assert change.state == ChangeSetState.EXECUTED

    def test_execute_before_create_rejected(self, topic, provider):
        ctx, stack = topic
        change = ChangeSet(ctx, stack, 'cs-1')
        with pytest.raises(ChangeSetStateError, match="state 'none'"):
            change.execute()
        assert provider.calls_for('execute_change_set') == []

    def test_execute_twice_rejected(self, topic, provider):
        ctx, stack = topic
        change = ChangeSet(ctx, stack, 'cs-1')
        change.create()
        change.execute()
        with pytest.raises(ChangeSetStateError):
            change.execute()
        assert provider.calls_for('execute_change_set') == ['demo-topic']

    def test_describe_requires_created(self, topic):
        ctx, stack = topic
        with pytest.raises(ChangeSetStateError):
            ChangeSet(ctx, stack, 'cs-1').describe()

    def test_remove(self, topic, provider):
        ctx, stack = topic
        change = ChangeSet(ctx, stack, 'cs-1')
        change.create()
        change.remove()
        assert change.state == ChangeSetState.REMOVED
        assert provider.change_sets == {}
        with pytest.raises(ChangeSetStateError):
            change.execute()

    def test_remove_after_execute_rejected(self, topic):
        ctx, stack = topic
        change = ChangeSet(ctx, stack, 'cs-1')
        change.create()
        change.execute()
        with pytest.raises(ChangeSetStateError):
            change.remove()

    def test_unresolved_stack_rejected(self, make_ctx):
        stack = Stack(name='topic', template_body='x')
        ctx = make_ctx(stack)
        with pytest.raises(ChangeSetStateError, match='no resolved template'):
            ChangeSet(ctx, stack, 'cs-1').create()

    def test_provider_failure_moves_to_failed(self, topic, provider):
        ctx, stack = topic
        provider.fail_on[('create_change_set', 'demo-topic')] = RemoteAPIError(
            'ValidationError', 'bad template')
        change = ChangeSet(ctx, stack, 'cs-1')
        with pytest.raises(RemoteAPIError):
            change.create()
        assert change.state == ChangeSetState.FAILED
        with pytest.raises(ChangeSetStateError):
            change.create()

    def test_execute_failure_moves_to_failed(self, topic, provider):
        ctx, stack = topic
        change = ChangeSet(ctx, stack, 'cs-1')
        change.create()
        provider.fail_on[('execute_change_set', 'demo-topic')] = RemoteAPIError('Boom', 'no')
        with pytest.raises(RemoteAPIError):
            change.execute()
        assert change.state == ChangeSetState.FAILED


class TestNoChanges:
    """Unchanged templates never stage a change-set."""

    def test_local_comparison(self, topic, provider):
        ctx, stack = topic
        provider.deploy('demo-topic', template='Resources: {}\n',
                        parameters=[{'ParameterKey': 'Env', 'ParameterValue': 'dev'}])
        change = ChangeSet(ctx, stack, 'cs-1')
        with pytest.raises(NoChanges):
            change.create()
        assert change.state == ChangeSetState.NONE
        assert provider.calls_for('create_change_set') == []

    def test_changed_parameter_is_a_change(self, topic, provider):
        ctx, stack = topic
        provider.deploy('demo-topic', template='Resources: {}\n',
                        parameters=[{'ParameterKey': 'Env', 'ParameterValue': 'prod'}])
        change = ChangeSet(ctx, stack, 'cs-1')
        change.create()
        assert change.state == ChangeSetState.CREATED

    def test_provider_reports_no_changes(self, topic, provider):
        ctx, stack = topic
        provider.deploy('demo-topic', template='Resources: {}\n',
                        parameters=[{'ParameterKey': 'Env', 'ParameterValue': 'dev'}])
        # provider-side template unavailable, so only the provider can tell
        provider.get_template_body = MagicMock(return_value=None)
        change = ChangeSet(ctx, stack, 'cs-1')
        with pytest.raises(NoChanges):
            change.create()
        assert change.state == ChangeSetState.NONE
        assert provider.calls_for('delete_change_set') == ['demo-topic']

    def test_json_template_compared_structurally(self, make_ctx, provider):
        stack = Stack(name='topic', template_body='{"Resources": {}}')
        stack.template = stack.template_body
        ctx = make_ctx(stack)
        provider.deploy('demo-topic')
        provider.get_template_body = MagicMock(return_value={'Resources': {}})
        with pytest.raises(NoChanges):
            ChangeSet(ctx, stack, 'cs-1').create()


class TestFormatChanges:
    """Tests for change summaries."""

    def test_lists_resource_changes(self):
        text = format_changes({
            'ChangeSetName': 'cs-1',
            'Status': 'CREATE_COMPLETE',
            'Changes': [{'ResourceChange': {
                'Action': 'Modify', 'LogicalResourceId': 'Bucket',
                'ResourceType': 'AWS::S3::Bucket', 'Replacement': 'True'}}],
        })
        assert 'cs-1' in text
        assert 'Modify' in text
        assert 'replacement=True' in text

    def test_empty_changes(self):
        assert 'no resource changes' in format_changes({'ChangeSetName': 'x'})


class TestUpdateStack:
    """Full update workflow gated by confirmation."""

    def _deployed(self, make_ctx, provider):
        stack = Stack(name='topic', template_body='Resources: {new: 1}\n')
        ctx = make_ctx(stack)
        provider.deploy('demo-topic', template='Resources: {old: 1}\n')
        return ctx

    def test_confirmed_executes(self, make_ctx, provider):
        ctx = self._deployed(make_ctx, provider)
        confirm = MagicMock(return_value=True)
        change = update_stack(ctx, 'topic', confirm, change_name='cs-1')
        assert change.state == ChangeSetState.EXECUTED
        confirm.assert_called_once()
        assert provider.stacks[('demo-topic', 'us-east-1')]['TemplateBody'] == 'Resources: {new: 1}\n'

    def test_declined_removes(self, make_ctx, provider):
        ctx = self._deployed(make_ctx, provider)
        change = update_stack(ctx, 'topic', MagicMock(return_value=False), change_name='cs-1')
        assert change.state == ChangeSetState.REMOVED
        assert provider.calls_for('execute_change_set') == []
        assert provider.stacks[('demo-topic', 'us-east-1')]['TemplateBody'] == 'Resources: {old: 1}\n'

    def test_up_to_date_does_not_prompt(self, make_ctx, provider):
        stack = Stack(name='topic', template_body='Resources: {}\n')
        ctx = make_ctx(stack)
        provider.deploy('demo-topic', template='Resources: {}\n')
        confirm = MagicMock()
        change = update_stack(ctx, 'topic', confirm)
        assert change.state == ChangeSetState.NONE
        confirm.assert_not_called()

    def test_unknown_stack(self, make_ctx):
        with pytest.raises(ConfigError, match='not found'):
            update_stack(make_ctx(), 'ghost', MagicMock())

    def test_stack_without_source(self, make_ctx):
        ctx = make_ctx(Stack(name='topic'))
        with pytest.raises(ConfigError, match='no source'):
            update_stack(ctx, 'topic', MagicMock())
