"""AWS CloudFormation provider.

Resources are rendered into one CloudFormation template and applied as a
single stack named after the working directory. Database credentials live in
Secrets Manager; the stack exposes their ARNs as '<name>Secret' outputs.
"""

import logging
import re
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from config import OplatConfig
from manifest import Manifest
from providers.base import (
    STATUS_CREATING,
    STATUS_RUNNING,
    STATUS_STOPPED,
    STATUS_UNKNOWN,
    AlreadyExistsError,
    BackendUnavailableError,
    InfrastructureProvider,
    InfrastructureStatus,
    InvalidFormatError,
    NoChangesError,
    NotFoundError,
    ProviderError,
    UnknownBackendError,
)
from resources.postgres import CloudFormationPostgres
from scaffold import Scaffolder

logger = logging.getLogger(__name__)

PROVIDER_NAME = 'aws-cloudformation'
TEMPLATE_FILE = 'cloudformation-template.yaml'
CAPABILITIES = ['CAPABILITY_NAMED_IAM']

NO_UPDATES_MESSAGE = 'No updates are to be performed.'

IN_PROGRESS_STATES = ('CREATE_IN_PROGRESS', 'UPDATE_IN_PROGRESS')
COMPLETE_STATES = ('CREATE_COMPLETE', 'UPDATE_COMPLETE')

ARN_PATTERN = re.compile(
    r'^arn:(?P<partition>[^:]+):(?P<service>[^:]+):(?P<region>[^:]*):(?P<account_id>[^:]*):'
    r'((?P<resource_type>[^:]*)[:/])?(?P<resource_id>.+)$'
)
SECRET_ID_PATTERN = re.compile(r'^(?P<name>.*)-(?P<version>[^-]+)$')


@dataclass(frozen=True)
class ParsedArn:
    """Structural parts of an AWS ARN."""
    partition: str
    service: str
    region: str
    account_id: str
    resource_id: str
    resource_type: Optional[str] = None
    resource_version: Optional[str] = None


def parse_arn(arn: str) -> ParsedArn:
    """Decompose arn:<partition>:<service>:<region>:<account>:[<type>(:|/)]<id>.

    For secrets the id carries a '-<version>' suffix, which is split off so
    resource_id is the bare secret name.

    Raises:
        InvalidFormatError: If arn or a secret id does not match
    """
    match = ARN_PATTERN.match(arn or '')
    if not match:
        raise InvalidFormatError(f"Invalid ARN: {arn}")

    resource_type = match.group('resource_type')
    resource_id = match.group('resource_id')
    resource_version = None

    if resource_type == 'secret':
        secret_match = SECRET_ID_PATTERN.match(resource_id)
        if not secret_match:
            raise InvalidFormatError(f"Invalid secret ARN: {resource_id}")
        resource_id = secret_match.group('name')
        resource_version = secret_match.group('version')

    return ParsedArn(
        partition=match.group('partition'),
        service=match.group('service'),
        region=match.group('region'),
        account_id=match.group('account_id'),
        resource_type=resource_type,
        resource_id=resource_id,
        resource_version=resource_version,
    )


def _error_code(error: ClientError) -> str:
    return error.response.get('Error', {}).get('Code', '')


def _error_message(error: ClientError) -> str:
    return error.response.get('Error', {}).get('Message', str(error))


def _is_missing_stack(error: ClientError) -> bool:
    return _error_code(error) == 'ValidationError' and 'does not exist' in _error_message(error)


class AwsCloudFormationProvider(InfrastructureProvider):
    """Provider backed by a CloudFormation stack."""

    name = PROVIDER_NAME

    def __init__(
        self,
        config: Optional[OplatConfig] = None,
        stack_name: Optional[str] = None,
        region: Optional[str] = None,
        cloudformation_client=None,
        secrets_client=None,
        scaffolder: Optional[Scaffolder] = None,
    ):
        super().__init__(config, stack_name)
        self.region = region or self.config.region
        try:
            self.client = cloudformation_client or boto3.client('cloudformation', region_name=self.region)
            self.secrets_client = secrets_client or boto3.client('secretsmanager', region_name=self.region)
        except BotoCoreError as e:
            raise BackendUnavailableError(f"Cannot create AWS clients for region {self.region}: {e}") from e
        self.scaffolder = scaffolder
        self.available_resources = (CloudFormationPostgres(self),)

    def render_template(self, resources: list[Manifest], work_dir: Path) -> str:
        """Render all manifests into one template body."""
        scaffolder = self.scaffolder or Scaffolder()
        try:
            template_name = scaffolder.init(self.config.get_template(PROVIDER_NAME), work_dir)
            for manifest in resources:
                scaffolder.run_partial(template_name, manifest.kind, manifest.to_dict(), work_dir)
        finally:
            # Injected scaffolders keep their cache for reuse
            if scaffolder is not self.scaffolder:
                scaffolder.cleanup()

        body_path = work_dir / TEMPLATE_FILE
        if not body_path.exists():
            raise NotFoundError(f"Template {template_name} did not produce {TEMPLATE_FILE}")
        return body_path.read_text(encoding='utf-8')

    def create_infrastructure(self, resources: list[Manifest]) -> None:
        """Create the stack, or update it if it already exists."""
        work_dir = Path(tempfile.mkdtemp(prefix='oplat-cfn-'))
        try:
            template_body = self.render_template(resources, work_dir)
        finally:
            shutil.rmtree(work_dir, ignore_errors=True)

        try:
            self._create_stack(template_body)
            logger.info('Creating resource...')
        except AlreadyExistsError:
            try:
                self._update_stack(template_body)
                logger.info('Updating resource...')
            except NoChangesError:
                logger.info('No updates are to be performed')
            except ProviderError as e:
                logger.error(f"Failed to create or update stack: {e.message}")
                raise
        except ProviderError as e:
            logger.error(f"Failed to create or update stack: {e.message}")
            raise

    def _create_stack(self, template_body: str) -> None:
        try:
            self.client.create_stack(
                StackName=self.stack_name,
                TemplateBody=template_body,
                Capabilities=CAPABILITIES,
            )
        except ClientError as e:
            if _error_code(e) == 'AlreadyExistsException':
                raise AlreadyExistsError(_error_message(e)) from e
            raise self._translate(e) from e
        except BotoCoreError as e:
            raise BackendUnavailableError(f"AWS backend unavailable: {e}") from e

    def _update_stack(self, template_body: str) -> None:
        try:
            self.client.update_stack(
                StackName=self.stack_name,
                TemplateBody=template_body,
                Capabilities=CAPABILITIES,
            )
        except ClientError as e:
            if _error_message(e) == NO_UPDATES_MESSAGE:
                raise NoChangesError(NO_UPDATES_MESSAGE) from e
            raise self._translate(e) from e
        except BotoCoreError as e:
            raise BackendUnavailableError(f"AWS backend unavailable: {e}") from e

    def destroy_infrastructure(self) -> None:
        """Delete the stack. A stack that does not exist is left alone."""
        try:
            self._describe_stack()
        except NotFoundError:
            logger.warning(f"Stack {self.stack_name} not found, nothing to delete")
            return
        except ProviderError as e:
            logger.error(f"Failed to delete stack: {e.message}")
            raise

        try:
            self.client.delete_stack(StackName=self.stack_name)
        except ClientError as e:
            logger.error(f"Failed to delete stack: {_error_message(e)}")
            raise self._translate(e) from e
        except BotoCoreError as e:
            logger.error(f"Failed to delete stack: {e}")
            raise BackendUnavailableError(f"AWS backend unavailable: {e}") from e
        logger.info('Deleting resource...')

    def get_infrastructure_status(self) -> InfrastructureStatus:
        """Map the CloudFormation stack status onto the four-way status.

        Unclassified backend failures report 'unknown'; a missing stack or
        unreachable backend raises.
        """
        try:
            stack = self._describe_stack()
        except UnknownBackendError as e:
            logger.warning(f"Cannot determine status of stack {self.stack_name}: {e.message}")
            return InfrastructureStatus(STATUS_UNKNOWN)
        except ProviderError as e:
            logger.error(f"Error getting stack status: {e.message}")
            raise

        stack_status = stack.get('StackStatus', '')
        logger.debug(f"Stack {self.stack_name} status: {stack_status}")
        if stack_status in IN_PROGRESS_STATES:
            return InfrastructureStatus(STATUS_CREATING)
        if stack_status in COMPLETE_STATES:
            return InfrastructureStatus(STATUS_RUNNING)
        return InfrastructureStatus(STATUS_STOPPED)

    def get_stack_output(self) -> dict[str, str]:
        """Stack outputs as {OutputKey: OutputValue}, verbatim."""
        try:
            stack = self._describe_stack()
        except ProviderError as e:
            logger.error(f"Error getting stack output: {e.message}")
            raise

        output_values = {}
        for output in stack.get('Outputs') or []:
            key = output.get('OutputKey')
            if key:
                output_values[key] = output.get('OutputValue')
        return output_values

    def get_secret_value(self, secret_id: str) -> str:
        """Fetch a secret's string payload from Secrets Manager."""
        try:
            data = self.secrets_client.get_secret_value(SecretId=secret_id)
        except ClientError as e:
            logger.error(f"Error getting secret value: {_error_message(e)}")
            if _error_code(e) == 'ResourceNotFoundException':
                raise NotFoundError(f"Secret {secret_id} not found") from e
            raise self._translate(e) from e
        except BotoCoreError as e:
            raise BackendUnavailableError(f"AWS backend unavailable: {e}") from e

        secret_string = data.get('SecretString')
        if secret_string is None:
            raise NotFoundError(f"Secret {secret_id} has no string value")
        return secret_string

    def parse_arn(self, arn: str) -> ParsedArn:
        return parse_arn(arn)

    def _describe_stack(self) -> dict:
        """Return the bound stack's description.

        Raises:
            NotFoundError: If the stack does not exist
        """
        try:
            data = self.client.describe_stacks(StackName=self.stack_name)
        except ClientError as e:
            if _is_missing_stack(e):
                raise NotFoundError(f"Stack {self.stack_name} not found") from e
            raise self._translate(e) from e
        except BotoCoreError as e:
            raise BackendUnavailableError(f"AWS backend unavailable: {e}") from e

        stacks = data.get('Stacks') or []
        if not stacks:
            raise NotFoundError(f"Stack {self.stack_name} not found")
        return stacks[0]

    def _translate(self, error: ClientError) -> ProviderError:
        """Map an unexpected ClientError onto the provider error taxonomy."""
        code = _error_code(error)
        message = _error_message(error)
        if code in ('ExpiredToken', 'ExpiredTokenException', 'UnrecognizedClientException',
                    'InvalidClientTokenId', 'AccessDenied', 'AccessDeniedException'):
            return BackendUnavailableError(f"{code}: {message}")
        return UnknownBackendError(f"{code}: {message}" if code else message)
