"""
AI Core proxy service.

Every operation takes the authenticated caller explicitly, resolves the
caller's team through the member directory and the team's upstream
credentials, and then talks to AI Core through an ``AIPlatformClient``.
Request validation always runs before any of that.
"""

import asyncio
import base64
import json
import logging
import mimetypes
from contextlib import aclosing
from typing import AsyncIterator, Callable, List, Optional, Tuple

import httpx

from devportal.domain.errors import (
    TEAM_NOT_IN_DB,
    USER_EMAIL_NOT_FOUND,
    USER_NOT_ASSIGNED_TO_TEAM,
    USER_NOT_IN_DB,
    AuthenticationError,
    AuthorizationError,
    ConfigurationError,
    InvalidRequestError,
    NotFoundError,
    PortalError,
)
from devportal.domain.services import inference
from devportal.domain.services.deployment_planner import (
    execute_plan,
    plan_deployment,
    validate_configuration_request,
    validate_modification,
)
from devportal.infrastructure.aicore.aicore_client import AIPlatformClient
from devportal.infrastructure.aicore.credentials import AICoreCredentials, CredentialStore
from devportal.infrastructure.database.member_repository import MemberRepository
from devportal.infrastructure.database.models import TEAM_ROLE_MANAGER, TEAM_ROLE_MMM, Group, Organization, User
from devportal.schemas.aicore import (
    ConfigurationRequest,
    ConfigurationResponse,
    ConfigurationsResponse,
    Deployment,
    DeploymentDeletionResponse,
    DeploymentDetails,
    DeploymentModificationRequest,
    DeploymentModificationResponse,
    DeploymentRequest,
    DeploymentResponse,
    DeploymentsResponse,
    InferenceRequest,
    InferenceResponse,
    MeResponse,
    ModelsResponse,
    TeamDeployments,
    UploadedFile,
)
from devportal.schemas.auth import UserPrincipal

logger = logging.getLogger(__name__)

ClientFactory = Callable[[AICoreCredentials], AIPlatformClient]

MISSING_SCENARIO_ID = "scenarioId query parameter is required"

# Extensions whose MIME type is pinned regardless of the platform's mimetypes table
ATTACHMENT_TYPES = {
    ".json": "application/json",
    ".txt": "text/plain",
    ".html": "text/html",
    ".htm": "text/html",
    ".csv": "text/csv",
    ".xml": "application/xml",
    ".yaml": "application/x-yaml",
    ".yml": "application/x-yaml",
    ".md": "text/markdown",
    ".pdf": "application/pdf",
}


def attachment_mime_type(filename: str, declared: Optional[str] = None) -> str:
    lower = filename.lower()
    for extension, mime_type in ATTACHMENT_TYPES.items():
        if lower.endswith(extension):
            return mime_type
    guessed, _ = mimetypes.guess_type(lower)
    return guessed or declared or "application/octet-stream"


def encode_attachment(filename: str, content: bytes, declared_type: Optional[str] = None) -> UploadedFile:
    """Wrap an uploaded file as a base64 data URL usable in multimodal chat messages."""
    mime_type = attachment_mime_type(filename, declared_type)
    data = base64.b64encode(content).decode("ascii")
    return UploadedFile(url=f"data:{mime_type};base64,{data}", mime_type=mime_type, filename=filename, size=len(content))


class AICoreService:
    def __init__(
        self,
        members: MemberRepository,
        credentials: CredentialStore,
        client_factory: ClientFactory,
        team_limit: int,
    ):
        self.members = members
        self.credentials = credentials
        self.client_factory = client_factory
        self.team_limit = team_limit

    # Identity and team resolution

    def _email(self, principal: UserPrincipal) -> str:
        if not principal.email:
            logger.error("AI Core: caller has no email, authentication did not run")
            raise AuthenticationError(USER_EMAIL_NOT_FOUND)
        return principal.email

    def _user(self, principal: UserPrincipal) -> User:
        email = self._email(principal)
        try:
            return self.members.get_user_by_email(email)
        except NotFoundError:
            logger.error(f"AI Core: user {email} not found in database")
            raise AuthorizationError(USER_NOT_IN_DB)

    def _team_name(self, user: User) -> str:
        if not user.team_id:
            raise AuthorizationError(USER_NOT_ASSIGNED_TO_TEAM)
        try:
            return self.members.get_team(user.team_id).name
        except NotFoundError:
            logger.error(f"AI Core: team {user.team_id} of {user.email} not found in database")
            raise AuthorizationError(TEAM_NOT_IN_DB)

    def resolve_team(self, principal: UserPrincipal) -> str:
        user = self._user(principal)
        team = self._team_name(user)
        logger.info(f"AI Core: {user.email} resolved to team {team}")
        return team

    def resolve_all_teams(self, user: User) -> List[str]:
        """The assigned team followed by ``metadata.ai_core_member_of``, without duplicates."""
        teams: List[str] = []
        if user.team_id:
            teams.append(self._team_name(user))
        for team in user.metadata_list("ai_core_member_of"):
            if team not in teams:
                teams.append(team)
        if not teams:
            raise AuthorizationError(USER_NOT_ASSIGNED_TO_TEAM)
        return teams

    def visible_teams(self, principal: UserPrincipal) -> List[str]:
        return self.resolve_all_teams(self._user(principal))

    def client_for_team(self, team: str) -> AIPlatformClient:
        return self.client_factory(self.credentials.get(team))

    async def _client(self, principal: UserPrincipal) -> AIPlatformClient:
        team = await asyncio.to_thread(self.resolve_team, principal)
        try:
            return self.client_for_team(team)
        except ConfigurationError as e:
            logger.error(f"AI Core: no usable credentials for team {team}: {e}")
            raise

    # Deployments

    async def list_deployments(self, principal: UserPrincipal) -> DeploymentsResponse:
        """Deployments of every team the caller can see; teams that cannot be reached are skipped."""
        teams = await asyncio.to_thread(self.visible_teams, principal)
        result = DeploymentsResponse()

        for team in teams:
            try:
                client = self.client_for_team(team)
                listing = await client.list_deployments()
            except (PortalError, httpx.HTTPError) as e:
                logger.warning(f"AI Core: skipping deployments of team {team}: {e}")
                continue
            result.deployments.append(TeamDeployments(team=team, deployments=listing.resources))
            result.count += listing.count

        return result

    async def get_deployment(self, principal: UserPrincipal, deployment_id: str) -> DeploymentDetails:
        client = await self._client(principal)
        return await client.get_deployment(deployment_id)

    async def create_deployment(self, principal: UserPrincipal, request: DeploymentRequest) -> DeploymentResponse:
        plan = plan_deployment(request)
        client = await self._client(principal)
        outcome = await execute_plan(plan, client)
        logger.info(
            f"AI Core: team {client.team} created deployment {outcome.deployment.id} "
            f"from configuration {outcome.configuration_id}"
        )
        return outcome.deployment

    async def update_deployment(
        self, principal: UserPrincipal, deployment_id: str, request: DeploymentModificationRequest
    ) -> DeploymentModificationResponse:
        validate_modification(request)
        client = await self._client(principal)
        return await client.update_deployment(deployment_id, request)

    async def delete_deployment(self, principal: UserPrincipal, deployment_id: str) -> DeploymentDeletionResponse:
        client = await self._client(principal)
        return await client.delete_deployment(deployment_id)

    # Configurations and models

    async def list_configurations(self, principal: UserPrincipal) -> ConfigurationsResponse:
        client = await self._client(principal)
        return await client.list_configurations()

    async def create_configuration(
        self, principal: UserPrincipal, request: ConfigurationRequest
    ) -> ConfigurationResponse:
        validate_configuration_request(request)
        client = await self._client(principal)
        return await client.create_configuration(request)

    async def list_models(self, principal: UserPrincipal, scenario_id: Optional[str]) -> ModelsResponse:
        if not scenario_id or not scenario_id.strip():
            raise InvalidRequestError(MISSING_SCENARIO_ID)
        client = await self._client(principal)
        return await client.list_models(scenario_id)

    # AI instances

    def _owned_group(self, user: User, username: str) -> Optional[Group]:
        own_group = None
        if user.team_id:
            try:
                own_group = self.members.get_group(self.members.get_team(user.team_id).group_id)
            except NotFoundError:
                own_group = None

        if own_group is not None:
            if own_group.owner == username:
                return own_group
            for group in self.members.list_groups_by_organization(own_group.org_id, self.team_limit):
                if group.owner == username:
                    return group

        for org in self.members.list_organizations(self.team_limit):
            for group in self.members.list_groups_by_organization(org.id, self.team_limit):
                if group.owner == username:
                    return group

        return own_group

    def _owned_organization(self, user: User, username: str) -> Optional[Organization]:
        if user.team_id:
            try:
                team = self.members.get_team(user.team_id)
                org = self.members.get_organization(self.members.get_group(team.group_id).org_id)
                if org.owner == username:
                    return org
            except NotFoundError:
                pass

        for org in self.members.list_organizations(self.team_limit):
            if org.owner == username:
                return org
        return None

    def _role_instances(self, user: User, username: str) -> List[str]:
        if user.team_role == TEAM_ROLE_MANAGER:
            group = self._owned_group(user, username)
            if group is None:
                return []
            return [team.name for team in self.members.list_teams_by_group(group.id, self.team_limit)]

        if user.team_role == TEAM_ROLE_MMM:
            org = self._owned_organization(user, username)
            if org is None:
                return []
            return [
                team.name
                for group in self.members.list_groups_by_organization(org.id, self.team_limit)
                for team in self.members.list_teams_by_group(group.id, self.team_limit)
            ]

        if user.team_id:
            try:
                return [self.members.get_team(user.team_id).name]
            except NotFoundError:
                return []
        return []

    async def get_me(self, principal: UserPrincipal) -> MeResponse:
        """
        AI instances the caller may use.

        Role decides the starting set: a manager gets every team of the group
        they own, an mmm every team of the organization they own, anyone else
        their own team. That set is narrowed to teams with credentials (when
        credentials are configured at all) and then extended with
        ``metadata.ai_instances``.
        """
        username = principal.name or principal.login_id
        if not username:
            raise AuthenticationError(USER_EMAIL_NOT_FOUND)
        return await asyncio.to_thread(self._ai_instances, username)

    def _ai_instances(self, username: str) -> MeResponse:
        try:
            user = self.members.get_user_by_name(username)
        except NotFoundError:
            raise AuthorizationError(USER_NOT_IN_DB)

        discovered = self._role_instances(user, username)
        if self.credentials.is_configured():
            known = set(self.credentials.teams())
            discovered = [name for name in discovered if name in known]

        instances: List[str] = []
        for name in discovered + user.metadata_list("ai_instances"):
            if name and name not in instances:
                instances.append(name)

        logger.info(f"AI Core: {username} has {len(instances)} AI instance(s)")
        return MeResponse(user=username, ai_instances=instances)

    # Inference

    async def _find_deployment(self, principal: UserPrincipal, deployment_id: str) -> Tuple[Deployment, str]:
        listing = await self.list_deployments(principal)
        for team_deployments in listing.deployments:
            for deployment in team_deployments.deployments:
                if deployment.id == deployment_id:
                    if not deployment.deployment_url:
                        raise InvalidRequestError(f"deployment URL not available for deployment {deployment_id}")
                    return deployment, team_deployments.team
        raise NotFoundError(
            "deployment", f"deployment {deployment_id} not found or user does not have access to it"
        )

    async def _prepare_inference(
        self, principal: UserPrincipal, request: InferenceRequest, stream: bool
    ) -> Tuple[AIPlatformClient, inference.InferenceCall]:
        deployment, team = await self._find_deployment(principal, request.deployment_id)
        client = self.client_for_team(team)
        call = inference.build_inference_call(deployment, request, stream=stream)
        logger.info(
            f"AI Core: {call.family.value} inference on deployment {deployment.id} "
            f"(model {call.model_name or 'unknown'}, team {team})"
        )
        return client, call

    async def chat_inference(self, principal: UserPrincipal, request: InferenceRequest) -> InferenceResponse:
        client, call = await self._prepare_inference(principal, request, stream=False)
        data = await client.infer(call.url, call.payload)
        return inference.normalize_response(call, data)

    async def stream_chat_inference(self, principal: UserPrincipal, request: InferenceRequest) -> AsyncIterator[str]:
        """
        Relay an upstream event stream as SSE frames.

        Failures before or during the relay end the stream with an ``error``
        event instead of raising, since the response status is already sent.
        """
        try:
            client, call = await self._prepare_inference(principal, request, stream=True)
            async with aclosing(client.stream(call.url, call.payload)) as lines:
                async for raw_line in lines:
                    line = raw_line.strip()
                    if not line.startswith("data: "):
                        continue

                    data = line[len("data: "):]
                    if data == "[DONE]":
                        break

                    try:
                        chunk = json.loads(data)
                    except ValueError:
                        logger.warning(f"AI Core: skipping unparsable stream chunk: {data[:80]}")
                        continue

                    if call.family is inference.ModelFamily.GEMINI:
                        converted = inference.convert_gemini_chunk(chunk, call.model_name)
                        if converted is not None:
                            yield inference.sse_frame(json.dumps(converted))
                            continue

                    yield inference.sse_frame(data)
        except (PortalError, httpx.HTTPError) as e:
            logger.error(f"AI Core: streaming inference failed: {e}")
            yield inference.sse_error(str(e))
            return

        yield inference.sse_frame("[DONE]")
