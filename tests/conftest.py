import json
from typing import Any, Dict, List, Optional

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from devportal.dependencies import get_aicore_service, get_current_user
from devportal.domain.services.aicore_service import AICoreService
from devportal.infrastructure.aicore.credentials import CredentialStore
from devportal.infrastructure.database.member_repository import MemberRepository
from devportal.infrastructure.database.models import (
    TEAM_ROLE_MANAGER,
    TEAM_ROLE_MMM,
    Base,
    Group,
    Organization,
    Team,
    User,
)
from devportal.main import create_app
from devportal.schemas.aicore import (
    ConfigurationResponse,
    ConfigurationsResponse,
    DeploymentDeletionResponse,
    DeploymentDetails,
    DeploymentList,
    DeploymentModificationResponse,
    DeploymentResponse,
    ModelsResponse,
)
from devportal.schemas.auth import UserPrincipal

CREDENTIALS = [
    {
        "team": team,
        "clientId": f"{team}-client",
        "clientSecret": f"{team}-secret",
        "oauthUrl": f"https://auth.example.com/{team}/oauth/token",
        "apiUrl": f"https://api.{team}.example.com",
        "resourceGroup": f"rg-{team}",
    }
    for team in ("team-a", "team-b")
]


class FakePlatformClient:
    """In-memory AIPlatformClient recording every call in order."""

    def __init__(self, team: str = "team-a", deployments: Optional[List[Dict[str, Any]]] = None):
        self.team = team
        self.calls: List[tuple] = []
        self.deployments = deployments or []
        self.new_configuration_id = "config-new"
        self.failures: Dict[str, Exception] = {}
        self.inference_result: Dict[str, Any] = {}
        self.stream_lines: List[str] = []

    def _record(self, name: str, *args) -> None:
        self.calls.append((name, *args))
        if name in self.failures:
            raise self.failures[name]

    @property
    def call_names(self) -> List[str]:
        return [call[0] for call in self.calls]

    async def list_deployments(self) -> DeploymentList:
        self._record("list_deployments")
        return DeploymentList(count=len(self.deployments), resources=self.deployments)

    async def get_deployment(self, deployment_id: str) -> DeploymentDetails:
        self._record("get_deployment", deployment_id)
        return DeploymentDetails(id=deployment_id, status="RUNNING")

    async def create_deployment(self, configuration_id: str, ttl: Optional[str] = None) -> DeploymentResponse:
        self._record("create_deployment", configuration_id, ttl)
        return DeploymentResponse(id="dep-1", message="Deployment scheduled.", status="PENDING")

    async def update_deployment(self, deployment_id, request) -> DeploymentModificationResponse:
        self._record("update_deployment", deployment_id, request)
        return DeploymentModificationResponse(id=deployment_id, message="Deployment modification scheduled")

    async def delete_deployment(self, deployment_id: str) -> DeploymentDeletionResponse:
        self._record("delete_deployment", deployment_id)
        return DeploymentDeletionResponse(id=deployment_id, message="Deletion scheduled")

    async def list_configurations(self) -> ConfigurationsResponse:
        self._record("list_configurations")
        return ConfigurationsResponse(count=0, resources=[])

    async def create_configuration(self, request) -> ConfigurationResponse:
        self._record("create_configuration", request)
        return ConfigurationResponse(id=self.new_configuration_id, message="Configuration created")

    async def list_models(self, scenario_id: str) -> ModelsResponse:
        self._record("list_models", scenario_id)
        return ModelsResponse(count=1, resources=[{"model": "gpt-4o"}])

    async def infer(self, url: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        self._record("infer", url, payload)
        return self.inference_result

    async def stream(self, url: str, payload: Dict[str, Any]):
        self._record("stream", url, payload)
        for line in self.stream_lines:
            yield line


@pytest.fixture
def db_session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def directory(db_session):
    """
    Platform (owner olivia)
      AI group (owner gary): team-a, team-b
      Data group: team-c
    """
    org = Organization(id="org-1", name="Platform", owner="olivia")
    ai_group = Group(id="grp-ai", org_id=org.id, name="AI", owner="gary")
    data_group = Group(id="grp-data", org_id=org.id, name="Data", owner="")
    teams = [
        Team(id="t-a", group_id=ai_group.id, name="team-a"),
        Team(id="t-b", group_id=ai_group.id, name="team-b"),
        Team(id="t-c", group_id=data_group.id, name="team-c"),
    ]
    users = [
        User(
            name="alice",
            email="alice@example.com",
            team_id="t-a",
            metadata_json={"ai_core_member_of": ["team-b", "team-a"], "ai_instances": ["sandbox"]},
        ),
        User(name="bob", email="bob@example.com", team_id=None),
        User(name="carol", email="carol@example.com", team_id="t-c"),
        User(name="dave", email="dave@example.com", team_id="t-missing"),
        User(name="gary", email="gary@example.com", team_id="t-a", team_role=TEAM_ROLE_MANAGER),
        User(name="olivia", email="olivia@example.com", team_id="t-c", team_role=TEAM_ROLE_MMM),
    ]
    db_session.add_all([org, ai_group, data_group, *teams, *users])
    db_session.commit()
    return MemberRepository(db_session)


@pytest.fixture
def principal() -> UserPrincipal:
    return UserPrincipal(user_id="u-alice", login_id="alice@example.com", email="alice@example.com", name="alice")


def make_principal(name: str) -> UserPrincipal:
    return UserPrincipal(user_id=f"u-{name}", login_id=f"{name}@example.com", email=f"{name}@example.com", name=name)


@pytest.fixture
def credential_store() -> CredentialStore:
    return CredentialStore(json.dumps(CREDENTIALS))


@pytest.fixture
def platform_clients() -> Dict[str, FakePlatformClient]:
    return {
        "team-a": FakePlatformClient("team-a"),
        "team-b": FakePlatformClient("team-b"),
    }


@pytest.fixture
def aicore_service(directory, credential_store, platform_clients) -> AICoreService:
    return AICoreService(
        members=directory,
        credentials=credential_store,
        client_factory=lambda credentials: platform_clients[credentials.team],
        team_limit=1000,
    )


@pytest.fixture
def app(aicore_service, principal):
    application = create_app()
    application.dependency_overrides[get_current_user] = lambda: principal
    application.dependency_overrides[get_aicore_service] = lambda: aicore_service
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as http_client:
        yield http_client
