from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from descope import AuthException, DescopeClient
from fastapi import HTTPException, status

from devportal.config import settings
from devportal.schemas.auth import UserPrincipal

logger = logging.getLogger(__name__)


class DescopeAuthError(HTTPException):
    def __init__(self, detail: str, status_code: int = status.HTTP_401_UNAUTHORIZED):
        super().__init__(status_code=status_code, detail=detail)


class DescopeAuthClient:
    """
    Descope session validation.
    Turns a bearer session token into the portal's UserPrincipal.
    """

    def __init__(self, project_id: Optional[str] = None):
        project_id = project_id or settings.DESCOPE_PROJECT_ID
        if not project_id:
            logger.warning("DESCOPE_PROJECT_ID not configured - authentication will be disabled")
            self.client = None
            return

        try:
            self.client = DescopeClient(project_id=project_id)
            logger.info(f"Descope client initialized for project: {project_id}")
        except AuthException as error:
            logger.error(f"Failed to initialize Descope client: {error}")
            self.client = None

    def is_configured(self) -> bool:
        return self.client is not None

    def validate_session(
        self, session_token: str, refresh_token: Optional[str] = None, audience: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Validate session token and optionally refresh if expired.

        Args:
            session_token: The session token to validate
            refresh_token: Optional refresh token for automatic refresh
            audience: Optional audience claim to validate

        Returns:
            JWT response with user claims

        Raises:
            DescopeAuthError: If validation fails
        """
        if not self.client:
            raise DescopeAuthError("Descope client not configured")

        try:
            if refresh_token:
                return self.client.validate_and_refresh_session(
                    session_token=session_token, refresh_token=refresh_token
                )
            if audience:
                return self.client.validate_session(session_token=session_token, audience=audience)
            return self.client.validate_session(session_token=session_token)
        except AuthException as e:
            logger.error(f"Session validation failed: {e}")
            raise DescopeAuthError(f"Session validation error: {e}")

    @staticmethod
    def _roles(jwt_response: Dict[str, Any]) -> List[str]:
        roles = jwt_response.get("roles") or []
        if isinstance(roles, str):
            return [roles]
        return [str(role) for role in roles]

    def extract_user_principal(self, jwt_response: Dict[str, Any], session_token: str) -> UserPrincipal:
        """Build the caller principal from validated JWT claims."""
        user_id = jwt_response.get("sub") or jwt_response.get("userId")
        email = jwt_response.get("email")
        login_id = jwt_response.get("loginId") or email or jwt_response.get("login_id")
        name = jwt_response.get("name") or jwt_response.get("user_name") or jwt_response.get("username")

        return UserPrincipal(
            user_id=str(user_id) if user_id else "unknown",
            login_id=login_id,
            email=email,
            name=name,
            roles=self._roles(jwt_response),
            token=session_token,
        )


# Global instance
descope_client = DescopeAuthClient()
