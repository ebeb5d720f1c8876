"""
CloudFormation service for stack deployment operations.

Deployments go through change sets, the same way `aws cloudformation deploy`
does: create a change set, wait for it, execute it, wait for the stack.
"""
import datetime as dt
import uuid
from dataclasses import dataclass, field
from datetime import timezone
from typing import Dict, Any, Optional, List, Iterable, TYPE_CHECKING

import boto3
from botocore.exceptions import ClientError, WaiterError

from cfn_templates import render
from logger_config import get_logger
from utils.exceptions import DeploymentError, StackOutputError

if TYPE_CHECKING:
    from mypy_boto3_cloudformation import CloudFormationClient
else:
    CloudFormationClient = Any

logger = get_logger(__name__)

# Change sets that would change nothing come back FAILED with one of these reasons
EMPTY_CHANGE_SET_REASONS = (
    "didn't contain changes",
    "No updates are to be performed",
)

NEW_STACK_STATUSES = {"REVIEW_IN_PROGRESS"}
UNRECOVERABLE_STATUSES = {"ROLLBACK_COMPLETE", "ROLLBACK_FAILED", "DELETE_FAILED"}


@dataclass
class DeployResult:
    """Outcome of a single deploy() call."""

    stack_name: str
    change_set_type: str
    change_set_id: Optional[str] = None
    changes: List[Dict[str, str]] = field(default_factory=list)
    executed: bool = False
    status: Optional[str] = None

    @property
    def has_changes(self) -> bool:
        return bool(self.changes)


class CloudFormationService:
    """Service for CloudFormation stack operations."""

    def __init__(
        self,
        region: str = "us-east-1",
        wait_delay: int = 15,
        wait_max_attempts: int = 240
    ) -> None:
        """
        Initialize CloudFormation service.

        Args:
            region: AWS region the stacks live in
            wait_delay: Seconds between waiter polls
            wait_max_attempts: Waiter polls before giving up
        """
        self.region = region
        self.wait_delay = wait_delay
        self.wait_max_attempts = wait_max_attempts
        self._client: Optional[CloudFormationClient] = None

    @property
    def client(self) -> CloudFormationClient:
        """Lazy initialization of CloudFormation client."""
        if self._client is None:
            self._client = boto3.client('cloudformation', region_name=self.region)
        return self._client

    @property
    def _waiter_config(self) -> Dict[str, int]:
        return {'Delay': self.wait_delay, 'MaxAttempts': self.wait_max_attempts}

    def get_stack_status(self, stack_name: str) -> Optional[str]:
        """
        Get the current status of a stack.

        Returns:
            The StackStatus string, or None if the stack does not exist
        """
        try:
            response = self.client.describe_stacks(StackName=stack_name)
        except ClientError as e:
            message = e.response.get('Error', {}).get('Message', '')
            if 'does not exist' in message:
                return None
            logger.error(f'describe_stacks failed for {stack_name}: {str(e)}')
            raise
        return response['Stacks'][0]['StackStatus']

    def stack_exists(self, stack_name: str) -> bool:
        status = self.get_stack_status(stack_name)
        return status is not None and status not in NEW_STACK_STATUSES

    def validate_template(self, template: Dict[str, Any]) -> Dict[str, Any]:
        """
        Validate a template with CloudFormation.

        Returns:
            The ValidateTemplate response (parameters, capabilities)

        Raises:
            DeploymentError: If CloudFormation rejects the template
        """
        try:
            response = self.client.validate_template(TemplateBody=render(template))
        except ClientError as e:
            message = e.response.get('Error', {}).get('Message', str(e))
            raise DeploymentError(f'Template validation failed: {message}') from e
        logger.info(
            f"Template is valid ({len(response.get('Parameters', []))} parameters)"
        )
        return response

    def get_stack_parameters(self, stack_name: str) -> Dict[str, str]:
        """Get the current parameter values of a stack."""
        response = self.client.describe_stacks(StackName=stack_name)
        parameters = response['Stacks'][0].get('Parameters', [])
        return {p['ParameterKey']: p.get('ParameterValue', '') for p in parameters}

    def get_stack_resources(
        self,
        stack_name: str,
        resource_type: Optional[str] = None
    ) -> Dict[str, str]:
        """Map logical resource IDs to physical IDs, optionally for one resource type."""
        resources: Dict[str, str] = {}
        paginator = self.client.get_paginator('list_stack_resources')
        for page in paginator.paginate(StackName=stack_name):
            for summary in page.get('StackResourceSummaries', []):
                if resource_type and summary['ResourceType'] != resource_type:
                    continue
                if summary.get('PhysicalResourceId'):
                    resources[summary['LogicalResourceId']] = summary['PhysicalResourceId']
        return resources

    def get_stack_outputs(self, stack_name: str) -> Dict[str, str]:
        """
        Get the outputs of a stack as a key/value mapping.

        Raises:
            StackOutputError: If the stack does not exist
        """
        try:
            response = self.client.describe_stacks(StackName=stack_name)
        except ClientError as e:
            raise StackOutputError(
                f'Could not read outputs of stack {stack_name}: {e}',
                stack_name=stack_name
            ) from e
        outputs = response['Stacks'][0].get('Outputs', [])
        return {o['OutputKey']: o['OutputValue'] for o in outputs}

    def get_output(self, stack_name: str, output_key: str) -> str:
        """
        Get a single stack output.

        Raises:
            StackOutputError: If the stack or the output does not exist
        """
        outputs = self.get_stack_outputs(stack_name)
        if output_key not in outputs:
            raise StackOutputError(
                f'Stack {stack_name} has no output named {output_key}',
                stack_name=stack_name,
                output_key=output_key
            )
        return outputs[output_key]

    def deploy(
        self,
        stack_name: str,
        template: Optional[Dict[str, Any]] = None,
        parameters: Optional[Dict[str, str]] = None,
        capabilities: Iterable[str] = ('CAPABILITY_IAM',),
        tags: Optional[Dict[str, str]] = None,
        execute: bool = True,
        fail_on_empty: bool = False,
        use_previous_template: bool = False
    ) -> DeployResult:
        """
        Create or update a stack through a change set.

        Args:
            stack_name: Name of the stack
            template: Template dict; omitted when use_previous_template is set
            parameters: Parameter overrides. On update, template parameters
                not listed here keep their previous values.
            capabilities: Capabilities acknowledged for the change set
            tags: Stack tags
            execute: Execute the change set (False only previews it)
            fail_on_empty: Treat a change set without changes as a failure
            use_previous_template: Reuse the stack's current template

        Returns:
            DeployResult describing the change set and final status

        Raises:
            DeploymentError: If the change set or the stack operation fails
        """
        if template is None and not use_previous_template:
            raise ValueError('deploy() needs a template unless use_previous_template is set')

        parameters = dict(parameters or {})
        status = self.get_stack_status(stack_name)

        if status in UNRECOVERABLE_STATUSES:
            raise DeploymentError(
                f'Stack {stack_name} is in {status} state and must be deleted '
                f'before it can be deployed again',
                stack_name=stack_name,
                status=status
            )
        if status and status.endswith('_IN_PROGRESS') and status not in NEW_STACK_STATUSES:
            raise DeploymentError(
                f'Stack {stack_name} is busy ({status}), try again when it settles',
                stack_name=stack_name,
                status=status
            )

        change_set_type = 'CREATE' if status is None or status in NEW_STACK_STATUSES else 'UPDATE'
        if use_previous_template and change_set_type == 'CREATE':
            raise DeploymentError(
                f'Stack {stack_name} does not exist, there is no previous template to reuse',
                stack_name=stack_name
            )

        request_parameters = self._build_parameters(
            stack_name, template, parameters, change_set_type, use_previous_template
        )

        started_at = dt.datetime.now(timezone.utc)
        change_set_name = f"deploy-{started_at.strftime('%Y%m%d%H%M%S')}-{uuid.uuid4().hex[:8]}"

        create_kwargs: Dict[str, Any] = {
            'StackName': stack_name,
            'ChangeSetName': change_set_name,
            'ChangeSetType': change_set_type,
            'Parameters': request_parameters,
            'Capabilities': list(capabilities),
            'Description': f'Created by portfolio-deploy at {started_at.isoformat()}',
        }
        if use_previous_template:
            create_kwargs['UsePreviousTemplate'] = True
        else:
            create_kwargs['TemplateBody'] = render(template)
        if tags:
            create_kwargs['Tags'] = [{'Key': k, 'Value': v} for k, v in tags.items()]

        logger.info(f'Creating {change_set_type} change set {change_set_name} for {stack_name}')
        try:
            response = self.client.create_change_set(**create_kwargs)
        except ClientError as e:
            message = e.response.get('Error', {}).get('Message', str(e))
            raise DeploymentError(
                f'Could not create change set: {message}',
                stack_name=stack_name,
                status=status
            ) from e

        result = DeployResult(
            stack_name=stack_name,
            change_set_type=change_set_type,
            change_set_id=response['Id'],
            status=status,
        )

        if not self._wait_for_change_set(result, fail_on_empty):
            return result

        result.changes = self._describe_changes(result.change_set_id)
        for change in result.changes:
            logger.info(
                f"  {change['action']:<8} {change['logical_id']} ({change['resource_type']})"
                + (f" replacement={change['replacement']}" if change.get('replacement') else '')
            )

        if not execute:
            logger.info(f'Change set {change_set_name} left unexecuted for review')
            return result

        self._execute_change_set(result, started_at)
        return result

    def delete_stack(self, stack_name: str) -> None:
        """
        Delete a stack and wait until it is gone.

        Raises:
            DeploymentError: If the deletion fails
        """
        if self.get_stack_status(stack_name) is None:
            logger.info(f'Stack {stack_name} does not exist, nothing to delete')
            return

        started_at = dt.datetime.now(timezone.utc)
        logger.info(f'Deleting stack {stack_name}')
        self.client.delete_stack(StackName=stack_name)
        try:
            self.client.get_waiter('stack_delete_complete').wait(
                StackName=stack_name,
                WaiterConfig=self._waiter_config
            )
        except WaiterError as e:
            raise DeploymentError(
                f'Stack deletion did not complete: {e}',
                stack_name=stack_name,
                status=self.get_stack_status(stack_name),
                reasons=self.get_failure_reasons(stack_name, since=started_at)
            ) from e
        logger.info(f'Stack {stack_name} deleted')

    def get_failure_reasons(
        self,
        stack_name: str,
        since: Optional[dt.datetime] = None,
        limit: int = 10
    ) -> List[str]:
        """
        Collect the reasons of *_FAILED stack events, newest first.

        Lookup errors are logged and produce an empty list, since this only
        decorates an error that is already being raised.
        """
        reasons: List[str] = []
        try:
            paginator = self.client.get_paginator('describe_stack_events')
            for page in paginator.paginate(StackName=stack_name):
                for event in page.get('StackEvents', []):
                    if since and event['Timestamp'] < since:
                        return reasons
                    if not event.get('ResourceStatus', '').endswith('FAILED'):
                        continue
                    reason = event.get('ResourceStatusReason', 'no reason given')
                    reasons.append(f"{event['LogicalResourceId']}: {reason}")
                    if len(reasons) >= limit:
                        return reasons
        except ClientError as e:
            logger.warning(f'Could not read stack events for {stack_name}: {str(e)}')
        return reasons

    def _build_parameters(
        self,
        stack_name: str,
        template: Optional[Dict[str, Any]],
        overrides: Dict[str, str],
        change_set_type: str,
        use_previous_template: bool
    ) -> List[Dict[str, Any]]:
        request_parameters: List[Dict[str, Any]] = [
            {'ParameterKey': key, 'ParameterValue': str(value)}
            for key, value in overrides.items()
        ]
        if change_set_type != 'UPDATE':
            return request_parameters

        existing = self.get_stack_parameters(stack_name)
        if use_previous_template:
            declared = set(existing)
        else:
            declared = set((template or {}).get('Parameters', {}))

        for key in sorted(declared & set(existing)):
            if key not in overrides:
                request_parameters.append({'ParameterKey': key, 'UsePreviousValue': True})
        return request_parameters

    def _wait_for_change_set(self, result: DeployResult, fail_on_empty: bool) -> bool:
        """Wait for change set creation. Returns False for an empty change set."""
        try:
            self.client.get_waiter('change_set_create_complete').wait(
                ChangeSetName=result.change_set_id,
                WaiterConfig={'Delay': 5, 'MaxAttempts': self.wait_max_attempts}
            )
            return True
        except WaiterError as e:
            description = self.client.describe_change_set(ChangeSetName=result.change_set_id)
            change_set_status = description.get('Status')
            reason = description.get('StatusReason', '')

            if change_set_status == 'FAILED' and any(r in reason for r in EMPTY_CHANGE_SET_REASONS):
                self.client.delete_change_set(ChangeSetName=result.change_set_id)
                if fail_on_empty:
                    raise DeploymentError(
                        f'No changes to deploy for stack {result.stack_name}',
                        stack_name=result.stack_name,
                        status=result.status
                    ) from e
                logger.info(f'No changes to deploy. Stack {result.stack_name} is up to date')
                return False

            raise DeploymentError(
                f'Change set creation failed: {reason or e}',
                stack_name=result.stack_name,
                status=change_set_status
            ) from e

    def _describe_changes(self, change_set_id: str) -> List[Dict[str, str]]:
        changes: List[Dict[str, str]] = []
        kwargs: Dict[str, Any] = {'ChangeSetName': change_set_id}
        while True:
            response = self.client.describe_change_set(**kwargs)
            for change in response.get('Changes', []):
                resource_change = change.get('ResourceChange', {})
                changes.append({
                    'action': resource_change.get('Action', ''),
                    'logical_id': resource_change.get('LogicalResourceId', ''),
                    'resource_type': resource_change.get('ResourceType', ''),
                    'replacement': resource_change.get('Replacement', ''),
                })
            next_token = response.get('NextToken')
            if not next_token:
                return changes
            kwargs['NextToken'] = next_token

    def _execute_change_set(self, result: DeployResult, started_at: dt.datetime) -> None:
        stack_name = result.stack_name
        waiter_name = (
            'stack_create_complete' if result.change_set_type == 'CREATE'
            else 'stack_update_complete'
        )

        logger.info(f'Executing change set for {stack_name}')
        self.client.execute_change_set(ChangeSetName=result.change_set_id)
        result.executed = True

        logger.info(f'Waiting for stack {stack_name} to reach a complete state')
        try:
            self.client.get_waiter(waiter_name).wait(
                StackName=stack_name,
                WaiterConfig=self._waiter_config
            )
        except WaiterError as e:
            status = self.get_stack_status(stack_name)
            result.status = status
            raise DeploymentError(
                f'Stack {stack_name} did not deploy successfully (status {status})',
                stack_name=stack_name,
                status=status,
                reasons=self.get_failure_reasons(stack_name, since=started_at)
            ) from e

        result.status = self.get_stack_status(stack_name)
        logger.info(f'Stack {stack_name} is {result.status}')
