"""Infrastructure provider contract shared by all backends.

A provider drives one backend (a cloud stack engine or a local container
orchestrator) through the same lifecycle: create, destroy, status, and raw
stack output. Resource catalog entries turn that raw output into typed
ResourceOutputValue lists, so callers never see backend-specific data.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Protocol, runtime_checkable

from config import OplatConfig, normalize_stack_name
from manifest import Manifest

logger = logging.getLogger(__name__)

STATUS_CREATING = 'creating'
STATUS_RUNNING = 'running'
STATUS_STOPPED = 'stopped'
STATUS_UNKNOWN = 'unknown'

VALID_STATUSES = (STATUS_CREATING, STATUS_RUNNING, STATUS_STOPPED, STATUS_UNKNOWN)


class ProviderError(Exception):
    """Base exception for provider errors."""

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(f"{code}: {message}")


class InvalidFormatError(ProviderError):
    """Malformed identifier or payload (ARN, secret JSON)."""

    def __init__(self, message: str):
        super().__init__("E100", message)


class NotFoundError(ProviderError):
    """Stack, resource kind, secret, or output key absent."""

    def __init__(self, message: str):
        super().__init__("E200", message)


class AlreadyExistsError(ProviderError):
    """Stack already exists (recovered by updating it)."""

    def __init__(self, message: str):
        super().__init__("E300", message)


class NoChangesError(ProviderError):
    """Update carried no changes (recovered as success)."""

    def __init__(self, message: str):
        super().__init__("E301", message)


class BackendUnavailableError(ProviderError):
    """Backend tooling missing or unreachable."""

    def __init__(self, message: str):
        super().__init__("E500", message)


class UnknownBackendError(ProviderError):
    """Unclassified backend failure."""

    def __init__(self, message: str):
        super().__init__("E900", message)


@dataclass(frozen=True)
class ResourceOutput:
    """A named output a resource kind declares."""
    key: str
    description: str


@dataclass(frozen=True)
class ResourceOutputValue:
    """A resolved output of one provisioned resource."""
    key: str
    description: str
    value: str

    @classmethod
    def from_output(cls, output: ResourceOutput, value) -> 'ResourceOutputValue':
        return cls(key=output.key, description=output.description, value=str(value))


@dataclass(frozen=True)
class InfrastructureStatus:
    """Backend state folded into one of four values."""
    status: str

    def __post_init__(self):
        if self.status not in VALID_STATUSES:
            raise ValueError(f"Invalid status '{self.status}'. Expected one of: {', '.join(VALID_STATUSES)}")


@runtime_checkable
class Resource(Protocol):
    """Protocol for resource catalog entries.

    Class attributes:
        kind: Manifest kind this entry handles (e.g., 'Postgres')
        description: Human-readable description
    """
    kind: str
    description: str

    def get_outputs(self) -> list[ResourceOutput]:
        """Return the declared output schema, in order."""
        ...

    def get_output_values(self, manifest: Manifest) -> list[ResourceOutputValue]:
        """Resolve every declared output for a manifest."""
        ...


class InfrastructureProvider:
    """Base class for backend providers.

    Subclasses implement the lifecycle methods and build their resource
    catalog in __init__. get_resource_outputs() is shared and must not be
    overridden.
    """

    name = ''

    def __init__(self, config: Optional[OplatConfig] = None, stack_name: Optional[str] = None):
        self.config = config or OplatConfig()
        self.stack_name = normalize_stack_name(stack_name) if stack_name else self.config.get_stack_name()
        self.available_resources: tuple = ()

    def get_provider_name(self) -> str:
        return self.name

    def create_infrastructure(self, resources: list[Manifest]) -> None:
        raise NotImplementedError

    def destroy_infrastructure(self) -> None:
        raise NotImplementedError

    def get_infrastructure_status(self) -> InfrastructureStatus:
        raise NotImplementedError

    def get_stack_output(self) -> dict[str, str]:
        raise NotImplementedError

    def list_available_resources(self) -> list:
        return list(self.available_resources)

    def find_resource(self, kind: str) -> Resource:
        """Find the catalog entry for a manifest kind.

        Raises:
            NotFoundError: If this provider has no entry for kind
        """
        for resource in self.list_available_resources():
            if resource.kind == kind:
                return resource
        raise NotFoundError(f"Resource {kind} not found")

    def get_resource_outputs(self, manifest: Manifest) -> list[ResourceOutputValue]:
        """Resolve the outputs of one manifest through its catalog entry."""
        resource = self.find_resource(manifest.kind)
        logger.debug(f"Resolving outputs for {manifest.kind}/{manifest.name} via {self.get_provider_name()}")
        return resource.get_output_values(manifest)
