"""Shared pytest fixtures for stackctl tests."""

import sys
import threading
from pathlib import Path
from typing import Optional

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from config import Options
from context import Context
from provider import NoUpdates, RemoteAPIError
from registry import Registry
from stack import Stack


class FakeProvider:
    """In-memory stand-in for CloudFormationProvider.

    Deployed stacks live in ``self.stacks`` keyed by (stackname, region).
    Outputs a stack gets when created/updated come from ``planned_outputs``.
    ``fail_on[(operation, stackname)]`` makes that call raise.
    """

    default_region = 'us-east-1'

    def __init__(self):
        self.stacks: dict[tuple, dict] = {}
        self.change_sets: dict[tuple, dict] = {}
        self.policies: dict[tuple, str] = {}
        self.planned_outputs: dict[str, dict] = {}
        self.fail_on: dict[tuple, Exception] = {}
        self.calls: list[tuple] = []
        self._lock = threading.Lock()

    def _record(self, operation: str, stackname: str = '') -> None:
        with self._lock:
            self.calls.append((operation, stackname))
        error = self.fail_on.get((operation, stackname))
        if error is not None:
            raise error

    def _region(self, region: Optional[str]) -> str:
        return region or self.default_region

    def calls_for(self, operation: str) -> list[str]:
        return [name for op, name in self.calls if op == operation]

    def deploy(self, stackname: str, outputs: Optional[dict] = None, template: str = '',
               parameters: Optional[list] = None, region: Optional[str] = None,
               status: str = 'CREATE_COMPLETE') -> None:
        """Seed an already deployed stack."""
        self.stacks[(stackname, self._region(region))] = {
            'StackId': f'arn:aws:cloudformation:{self._region(region)}:123456789012:stack/{stackname}/1',
            'StackName': stackname,
            'StackStatus': status,
            'Outputs': [{'OutputKey': k, 'OutputValue': v} for k, v in (outputs or {}).items()],
            'Parameters': list(parameters or []),
            'TemplateBody': template,
        }

    def describe_stack(self, stackname, region=None):
        self._record('describe_stack', stackname)
        stack = self.stacks.get((stackname, self._region(region)))
        return dict(stack) if stack else None

    def get_template_body(self, stackname, region=None):
        self._record('get_template_body', stackname)
        stack = self.stacks.get((stackname, self._region(region)))
        return stack['TemplateBody'] if stack else None

    def create_stack(self, stackname, template, parameters, region=None):
        self._record('create_stack', stackname)
        self.deploy(stackname, self.planned_outputs.get(stackname), template, parameters, region)
        return f'arn:{stackname}'

    def update_stack(self, stackname, template, parameters, region=None):
        self._record('update_stack', stackname)
        stack = self.stacks[(stackname, self._region(region))]
        if stack['TemplateBody'] == template and stack['Parameters'] == parameters:
            raise NoUpdates(stackname)
        self.deploy(stackname, self.planned_outputs.get(stackname), template, parameters,
                    region, status='UPDATE_COMPLETE')
        return f'arn:{stackname}'

    def delete_stack(self, stackname, region=None):
        self._record('delete_stack', stackname)
        self.stacks.pop((stackname, self._region(region)), None)

    def wait(self, waiter_name, region=None, **kwargs):
        self._record('wait', kwargs.get('StackName', ''))
        if waiter_name == 'change_set_create_complete':
            cs = self.change_sets[(kwargs['StackName'], kwargs['ChangeSetName'])]
            if cs['Status'] == 'FAILED':
                raise RemoteAPIError('WaiterError', 'Waiter ChangeSetCreateComplete failed')

    def create_change_set(self, stackname, change_name, template, parameters,
                          change_set_type, region=None):
        self._record('create_change_set', stackname)
        stack = self.stacks.get((stackname, self._region(region)))
        unchanged = (stack is not None and stack['TemplateBody'] == template
                     and stack['Parameters'] == parameters)
        self.change_sets[(stackname, change_name)] = {
            'ChangeSetName': change_name,
            'Status': 'FAILED' if unchanged else 'CREATE_COMPLETE',
            'StatusReason': ("The submitted information didn't contain changes."
                             if unchanged else ''),
            'Type': change_set_type,
            'Template': template,
            'Parameters': parameters,
            'Changes': [{'ResourceChange': {
                'Action': 'Add' if change_set_type == 'CREATE' else 'Modify',
                'LogicalResourceId': 'Resource',
                'ResourceType': 'AWS::SNS::Topic',
                'Replacement': 'False',
            }}],
        }
        return f'arn:changeset/{change_name}'

    def describe_change_set(self, stackname, change_name, region=None):
        self._record('describe_change_set', stackname)
        return dict(self.change_sets[(stackname, change_name)])

    def execute_change_set(self, stackname, change_name, region=None):
        self._record('execute_change_set', stackname)
        cs = self.change_sets.pop((stackname, change_name))
        status = 'CREATE_COMPLETE' if cs['Type'] == 'CREATE' else 'UPDATE_COMPLETE'
        self.deploy(stackname, self.planned_outputs.get(stackname), cs['Template'],
                    cs['Parameters'], region, status=status)

    def delete_change_set(self, stackname, change_name, region=None):
        self._record('delete_change_set', stackname)
        self.change_sets.pop((stackname, change_name), None)

    def set_stack_policy(self, stackname, policy_body, region=None):
        self._record('set_stack_policy', stackname)
        self.policies[(stackname, self._region(region))] = policy_body

    def validate_template(self, template, region=None):
        self._record('validate_template')
        return {'Parameters': [], 'Capabilities': []}

    def list_exports(self, region=None):
        self._record('list_exports')
        return []


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def make_ctx(provider, tmp_path):
    """Build a Context from Stack objects (project 'demo')."""

    def _make(*stacks: Stack, **options) -> Context:
        for stack in stacks:
            stack.project = stack.project or 'demo'
        return Context(
            project='demo',
            registry=Registry(stacks),
            provider=provider,
            options=Options(**options),
            base_dir=tmp_path,
        )

    return _make


@pytest.fixture
def vpc_subnet(make_ctx):
    """Context with vpc and subnet, where subnet references vpc.vpc_id."""
    vpc = Stack(name='vpc', template_body='cidr: {{ .cidr }}\n', values={'cidr': '10.0.0.0/16'})
    subnet = Stack(name='subnet', template_body='vpc: {{vpc.vpc_id}}\n')
    return make_ctx(vpc, subnet)
