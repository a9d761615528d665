from __future__ import annotations

import logging
from functools import lru_cache
from typing import Optional

import httpx
from descope import REFRESH_SESSION_TOKEN_NAME
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from devportal.config import settings
from devportal.domain.services.aicore_service import AICoreService
from devportal.domain.services.sonar_service import SonarService
from devportal.infrastructure.aicore.aicore_client import AICoreClient
from devportal.infrastructure.aicore.credentials import AICoreCredentials, CredentialStore, TokenProvider
from devportal.infrastructure.auth.descope_client import DescopeAuthError, descope_client
from devportal.infrastructure.database.member_repository import MemberRepository
from devportal.infrastructure.database.session import get_db
from devportal.infrastructure.sonar.sonar_client import SonarClient
from devportal.schemas.auth import UserPrincipal

logger = logging.getLogger(__name__)
_security = HTTPBearer(auto_error=False)

AUTHENTICATION_REQUIRED = "Authentication required"


async def get_current_user(
    request: Request,
    creds: Optional[HTTPAuthorizationCredentials] = Depends(_security),
) -> UserPrincipal:
    """
    Authenticate the caller with Descope.

    Supports:
      - Authorization: Bearer <session_token>
      - Optional refresh token from cookies
      - AUTH_ALLOW_ANONYMOUS for local development (principal without email)
    """
    if settings.AUTH_ALLOW_ANONYMOUS:
        logger.info("Anonymous access is allowed - returning anonymous user")
        return UserPrincipal(user_id="anonymous", login_id="anonymous", name="Anonymous User", roles=["anonymous"])

    session_token = creds.credentials if creds and creds.credentials else None
    refresh_token = request.cookies.get(REFRESH_SESSION_TOKEN_NAME)

    if not session_token:
        logger.warning("No session token found in Authorization header")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=AUTHENTICATION_REQUIRED,
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not descope_client.is_configured():
        logger.error("Descope client not configured")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Authentication service not configured",
        )

    try:
        jwt_response = descope_client.validate_session(
            session_token=session_token, refresh_token=refresh_token, audience=settings.DESCOPE_AUDIENCE
        )
    except DescopeAuthError as e:
        logger.warning(f"Authentication failed: {e.detail}")
        raise HTTPException(
            status_code=e.status_code,
            detail=AUTHENTICATION_REQUIRED,
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = descope_client.extract_user_principal(jwt_response, session_token)
    logger.info(f"Authenticated user {user.user_id} ({user.email or 'no email'})")
    return user


# Process-wide upstream clients


@lru_cache
def get_aicore_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=settings.AI_CORE_HTTP_TIMEOUT)


@lru_cache
def get_sonar_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=settings.SONAR_HTTP_TIMEOUT)


@lru_cache
def get_credential_store() -> CredentialStore:
    return CredentialStore.from_settings()


@lru_cache
def get_token_provider() -> TokenProvider:
    return TokenProvider(get_aicore_http_client())


async def close_http_clients() -> None:
    for factory in (get_aicore_http_client, get_sonar_http_client):
        if factory.cache_info().currsize:
            await factory().aclose()
            factory.cache_clear()
    get_token_provider.cache_clear()


def build_aicore_client(credentials: AICoreCredentials) -> AICoreClient:
    return AICoreClient(credentials, get_aicore_http_client(), get_token_provider())


# Service dependencies


def get_member_repository(db: Session = Depends(get_db)) -> MemberRepository:
    return MemberRepository(db)


def get_aicore_service(members: MemberRepository = Depends(get_member_repository)) -> AICoreService:
    return AICoreService(
        members=members,
        credentials=get_credential_store(),
        client_factory=build_aicore_client,
        team_limit=settings.team_limit,
    )


def get_sonar_service() -> SonarService:
    return SonarService(SonarClient(get_sonar_http_client()))
