"""
Deployment request planning.

A create-deployment request names its configuration in one of two ways: an
existing configuration id, or a configuration to create first. The planner
validates the request, turns it into a ``ConfigurationSource`` and executes
the resulting plan against an ``AIPlatformClient``.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, Union

import httpx

from devportal.domain.errors import (
    FieldValidationError,
    InvalidRequestError,
    PortalError,
    UpstreamTransportError,
    wrap,
)
from devportal.infrastructure.aicore.aicore_client import AIPlatformClient
from devportal.schemas.aicore import (
    ConfigurationRequest,
    DeploymentModificationRequest,
    DeploymentRequest,
    DeploymentResponse,
)

logger = logging.getLogger(__name__)

MISSING_CONFIGURATION_SOURCE = "Either configurationId or configurationRequest must be provided"
CONFLICTING_CONFIGURATION_SOURCE = "ConfigurationId and configurationRequest cannot both be provided"
EMPTY_MODIFICATION = "At least one of targetStatus or configurationId must be provided"

# Checked in this order; the first missing one is reported.
REQUIRED_CONFIGURATION_FIELDS = (
    ("name", "name"),
    ("executableId", "executable_id"),
    ("scenarioId", "scenario_id"),
)


@dataclass(frozen=True)
class ExistingConfiguration:
    configuration_id: str


@dataclass(frozen=True)
class NewConfiguration:
    request: ConfigurationRequest


ConfigurationSource = Union[ExistingConfiguration, NewConfiguration]


@dataclass(frozen=True)
class DeploymentPlan:
    source: ConfigurationSource
    ttl: Optional[str] = None

    @property
    def is_composed(self) -> bool:
        return isinstance(self.source, NewConfiguration)


@dataclass
class DeploymentOutcome:
    deployment: DeploymentResponse
    configuration_id: str
    created_configuration_id: Optional[str] = field(default=None)


def _is_set(value: Optional[str]) -> bool:
    return bool(value and value.strip())


def validate_configuration_request(request: ConfigurationRequest) -> None:
    """Raise FieldValidationError naming the first required field that is missing."""
    for wire_name, attribute in REQUIRED_CONFIGURATION_FIELDS:
        if not _is_set(getattr(request, attribute)):
            raise FieldValidationError(wire_name)


def plan_deployment(request: DeploymentRequest) -> DeploymentPlan:
    """
    Validate a create-deployment request and classify it.

    Args:
        request: The bound request body

    Returns:
        A direct plan for an existing configuration id, or a composed plan
        that creates the configuration first

    Raises:
        InvalidRequestError: If neither or both configuration sources are set
        FieldValidationError: If the embedded configuration misses a required field
    """
    # Any non-null id counts as given, even an empty one
    has_id = request.configuration_id is not None
    has_configuration = request.configuration_request is not None

    if not has_id and not has_configuration:
        raise InvalidRequestError(MISSING_CONFIGURATION_SOURCE)
    if has_id and has_configuration:
        raise InvalidRequestError(CONFLICTING_CONFIGURATION_SOURCE)

    if has_configuration:
        validate_configuration_request(request.configuration_request)
        return DeploymentPlan(source=NewConfiguration(request.configuration_request), ttl=request.ttl)

    if not _is_set(request.configuration_id):
        raise InvalidRequestError(MISSING_CONFIGURATION_SOURCE)

    return DeploymentPlan(source=ExistingConfiguration(request.configuration_id), ttl=request.ttl)


def validate_modification(request: DeploymentModificationRequest) -> DeploymentModificationRequest:
    if not _is_set(request.target_status) and not _is_set(request.configuration_id):
        raise InvalidRequestError(EMPTY_MODIFICATION)
    return request


def _upstream_failure(operation: str, error: Exception) -> PortalError:
    """Prefix the failing operation; transport errors become UpstreamTransportError."""
    if isinstance(error, PortalError):
        return wrap(operation, error)
    return UpstreamTransportError(f"{operation}: {error or type(error).__name__}")


async def execute_plan(plan: DeploymentPlan, client: AIPlatformClient) -> DeploymentOutcome:
    """
    Run a deployment plan against the upstream platform.

    A composed plan creates the configuration and then the deployment. When the
    second call fails the configuration stays upstream; it is logged so it can
    be cleaned up by hand.
    """
    created_configuration_id = None

    if isinstance(plan.source, NewConfiguration):
        try:
            configuration = await client.create_configuration(plan.source.request)
        except (PortalError, httpx.HTTPError) as e:
            raise _upstream_failure("failed to create configuration", e)
        created_configuration_id = configuration.id
        configuration_id = configuration.id
        logger.info(f"Created configuration {configuration_id} for composed deployment")
    else:
        configuration_id = plan.source.configuration_id

    try:
        deployment = await client.create_deployment(configuration_id, plan.ttl)
    except (PortalError, httpx.HTTPError) as e:
        if created_configuration_id:
            logger.warning(
                f"Deployment creation failed, configuration {created_configuration_id} left in place: {e}"
            )
        raise _upstream_failure("failed to create deployment", e)

    if deployment.ttl is None and plan.ttl:
        deployment.ttl = plan.ttl

    return DeploymentOutcome(
        deployment=deployment,
        configuration_id=configuration_id,
        created_configuration_id=created_configuration_id,
    )
