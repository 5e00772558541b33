"""Remote provider client (AWS CloudFormation via boto3).

All remote calls go through CloudFormationProvider._call(), which holds a
slot on a bounded semaphore for the duration of the call and maps botocore
errors to RemoteAPIError. Nothing here retries beyond boto3's own defaults.
"""

import logging
import threading
from typing import Any, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError, WaiterError

from config import DEFAULT_MAX_REMOTE_CALLS

logger = logging.getLogger(__name__)

CAPABILITIES = ['CAPABILITY_IAM', 'CAPABILITY_NAMED_IAM', 'CAPABILITY_AUTO_EXPAND']


class RemoteAPIError(Exception):
    """Provider rejection, network failure or throttling."""

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(f"{code}: {message}")


class NoUpdates(RemoteAPIError):
    """update_stack was called with a template identical to the deployed one."""

    def __init__(self, stackname: str):
        super().__init__("NoUpdates", f"No updates are to be performed on {stackname}")


def _is_missing(error: ClientError) -> bool:
    message = error.response.get('Error', {}).get('Message', '')
    return 'does not exist' in message


def _to_remote_error(error: Exception) -> RemoteAPIError:
    if isinstance(error, ClientError):
        err = error.response.get('Error', {})
        return RemoteAPIError(err.get('Code', 'ClientError'), err.get('Message', str(error)))
    if isinstance(error, WaiterError):
        return RemoteAPIError('WaiterError', str(error))
    return RemoteAPIError(type(error).__name__, str(error))


class CloudFormationProvider:
    """Thin wrapper over the boto3 cloudformation client.

    One client is created per region on first use. boto3 sessions are not
    thread-safe, so client creation happens under a lock; the clients
    themselves are safe to share.
    """

    def __init__(
        self,
        region: Optional[str] = None,
        profile: Optional[str] = None,
        max_remote_calls: int = DEFAULT_MAX_REMOTE_CALLS,
        session: Optional[Any] = None,
    ):
        self._session = session or boto3.session.Session(profile_name=profile, region_name=region)
        self._clients: dict[Optional[str], Any] = {}
        self._client_lock = threading.Lock()
        self._slots = threading.BoundedSemaphore(max_remote_calls)
        self.default_region = region or self._session.region_name

    def client(self, region: Optional[str] = None):
        region = region or self.default_region
        with self._client_lock:
            if region not in self._clients:
                logger.debug(f"Creating cloudformation client for region {region}")
                self._clients[region] = self._session.client('cloudformation', region_name=region)
            return self._clients[region]

    def _call(self, region: Optional[str], operation: str, **kwargs) -> dict:
        logger.debug(f"cloudformation.{operation} region={region or self.default_region}")
        with self._slots:
            try:
                response: dict = getattr(self.client(region), operation)(**kwargs)
                return response
            except (ClientError, BotoCoreError) as e:
                raise _to_remote_error(e) from e

    def describe_stack(self, stackname: str, region: Optional[str] = None) -> Optional[dict]:
        """Describe a stack; None if it does not exist."""
        try:
            with self._slots:
                response = self.client(region).describe_stacks(StackName=stackname)
        except ClientError as e:
            if _is_missing(e):
                return None
            raise _to_remote_error(e) from e
        except BotoCoreError as e:
            raise _to_remote_error(e) from e

        stacks = response.get('Stacks', [])
        if not stacks or stacks[0].get('StackStatus') == 'DELETE_COMPLETE':
            return None
        stack: dict = stacks[0]
        return stack

    def get_template_body(self, stackname: str, region: Optional[str] = None) -> Optional[Any]:
        """Return the deployed template body (str, or dict for JSON templates)."""
        try:
            with self._slots:
                response = self.client(region).get_template(
                    StackName=stackname, TemplateStage='Original')
        except ClientError as e:
            if _is_missing(e):
                return None
            raise _to_remote_error(e) from e
        except BotoCoreError as e:
            raise _to_remote_error(e) from e
        return response.get('TemplateBody')

    def create_stack(self, stackname: str, template: str, parameters: list[dict],
                     region: Optional[str] = None) -> str:
        response = self._call(
            region, 'create_stack',
            StackName=stackname,
            TemplateBody=template,
            Parameters=parameters,
            Capabilities=CAPABILITIES,
        )
        stack_id: str = response.get('StackId', '')
        return stack_id

    def update_stack(self, stackname: str, template: str, parameters: list[dict],
                     region: Optional[str] = None) -> str:
        """Update a stack directly.

        Raises:
            NoUpdates: If the provider reports nothing to update
        """
        try:
            response = self._call(
                region, 'update_stack',
                StackName=stackname,
                TemplateBody=template,
                Parameters=parameters,
                Capabilities=CAPABILITIES,
            )
        except RemoteAPIError as e:
            if 'No updates are to be performed' in e.message:
                raise NoUpdates(stackname) from e
            raise
        stack_id: str = response.get('StackId', '')
        return stack_id

    def delete_stack(self, stackname: str, region: Optional[str] = None) -> None:
        self._call(region, 'delete_stack', StackName=stackname)

    def wait(self, waiter_name: str, region: Optional[str] = None, **kwargs) -> None:
        """Block on a boto3 waiter (e.g. stack_create_complete)."""
        logger.debug(f"Waiting on {waiter_name} {kwargs}")
        with self._slots:
            try:
                self.client(region).get_waiter(waiter_name).wait(**kwargs)
            except (WaiterError, ClientError, BotoCoreError) as e:
                raise _to_remote_error(e) from e

    def create_change_set(self, stackname: str, change_name: str, template: str,
                          parameters: list[dict], change_set_type: str,
                          region: Optional[str] = None) -> str:
        response = self._call(
            region, 'create_change_set',
            StackName=stackname,
            ChangeSetName=change_name,
            TemplateBody=template,
            Parameters=parameters,
            Capabilities=CAPABILITIES,
            ChangeSetType=change_set_type,
        )
        change_id: str = response.get('Id', '')
        return change_id

    def describe_change_set(self, stackname: str, change_name: str,
                            region: Optional[str] = None) -> dict:
        """Describe a change-set, following NextToken to collect all changes."""
        response = self._call(region, 'describe_change_set',
                              StackName=stackname, ChangeSetName=change_name)
        changes = list(response.get('Changes', []))
        token = response.get('NextToken')
        while token:
            page = self._call(region, 'describe_change_set',
                              StackName=stackname, ChangeSetName=change_name, NextToken=token)
            changes.extend(page.get('Changes', []))
            token = page.get('NextToken')
        response['Changes'] = changes
        return response

    def execute_change_set(self, stackname: str, change_name: str,
                           region: Optional[str] = None) -> None:
        self._call(region, 'execute_change_set', StackName=stackname, ChangeSetName=change_name)

    def delete_change_set(self, stackname: str, change_name: str,
                          region: Optional[str] = None) -> None:
        self._call(region, 'delete_change_set', StackName=stackname, ChangeSetName=change_name)

    def set_stack_policy(self, stackname: str, policy_body: str,
                         region: Optional[str] = None) -> None:
        self._call(region, 'set_stack_policy', StackName=stackname, StackPolicyBody=policy_body)

    def validate_template(self, template: str, region: Optional[str] = None) -> dict:
        return self._call(region, 'validate_template', TemplateBody=template)

    def list_exports(self, region: Optional[str] = None) -> list[dict]:
        exports: list[dict] = []
        kwargs: dict = {}
        while True:
            page = self._call(region, 'list_exports', **kwargs)
            exports.extend(page.get('Exports', []))
            token = page.get('NextToken')
            if not token:
                return exports
            kwargs['NextToken'] = token
