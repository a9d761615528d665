"""Per-team AI Core credentials and OAuth access tokens."""

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Dict, List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from devportal.config import settings
from devportal.domain.errors import AICoreAPIError, ConfigurationError

logger = logging.getLogger(__name__)

# Tokens are treated as expired this many seconds before upstream says so.
TOKEN_EXPIRY_BUFFER_SECONDS = 300
# Assumed lifetime when the token response carries no usable expires_in.
DEFAULT_TOKEN_LIFETIME_SECONDS = 3600


class AICoreCredentials(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    team: str
    client_id: str = Field(..., alias="clientId")
    client_secret: str = Field(..., alias="clientSecret")
    oauth_url: str = Field(..., alias="oauthUrl")
    api_url: str = Field(..., alias="apiUrl")
    resource_group: str = Field("default", alias="resourceGroup")


class CredentialStore:
    """Read-only view over the ``AI_CORE_CREDENTIALS`` JSON list, keyed by team name."""

    def __init__(self, raw: Optional[str] = None):
        self._raw = raw
        self._credentials: Optional[Dict[str, AICoreCredentials]] = None

    @classmethod
    def from_settings(cls) -> "CredentialStore":
        return cls(settings.AI_CORE_CREDENTIALS)

    def _load(self) -> Dict[str, AICoreCredentials]:
        if self._credentials is not None:
            return self._credentials

        if not self._raw:
            raise ConfigurationError("AI_CORE_CREDENTIALS environment variable not set")

        try:
            entries = json.loads(self._raw)
            if not isinstance(entries, list):
                raise ValueError("expected a JSON list")
            credentials: List[AICoreCredentials] = [AICoreCredentials.model_validate(entry) for entry in entries]
        except (ValueError, ValidationError) as e:
            raise ConfigurationError(f"failed to parse AI_CORE_CREDENTIALS: {e}")

        # Later entries for the same team win
        self._credentials = {cred.team: cred for cred in credentials}
        logger.info(f"Loaded AI Core credentials for {len(self._credentials)} team(s)")
        return self._credentials

    def get(self, team: str) -> AICoreCredentials:
        credentials = self._load().get(team)
        if credentials is None:
            raise ConfigurationError(f"no credentials found for team: {team}")
        return credentials

    def teams(self) -> List[str]:
        return list(self._load().keys())

    def is_configured(self) -> bool:
        try:
            self._load()
        except ConfigurationError:
            return False
        return True


@dataclass
class CachedToken:
    token: str
    expires_at: float

    def is_valid(self, now: float) -> bool:
        return now < self.expires_at


class TokenProvider:
    """
    OAuth client-credentials tokens, cached per team.

    The cache is shared by every request in the process; refreshes are
    serialized by a lock so concurrent callers for the same team trigger one
    token request.
    """

    def __init__(self, http_client: httpx.AsyncClient):
        self._http = http_client
        self._cache: Dict[str, CachedToken] = {}
        self._lock = asyncio.Lock()

    async def get_token(self, credentials: AICoreCredentials) -> str:
        cached = self._cache.get(credentials.team)
        if cached and cached.is_valid(time.monotonic()):
            return cached.token

        async with self._lock:
            cached = self._cache.get(credentials.team)
            if cached and cached.is_valid(time.monotonic()):
                return cached.token

            token, expires_in = await self._request_token(credentials)
            self._cache[credentials.team] = CachedToken(
                token=token,
                expires_at=time.monotonic() + expires_in - TOKEN_EXPIRY_BUFFER_SECONDS,
            )
            return token

    def invalidate(self, team: str) -> None:
        self._cache.pop(team, None)

    async def _request_token(self, credentials: AICoreCredentials) -> tuple[str, int]:
        logger.info(f"Requesting AI Core access token for team {credentials.team}")
        response = await self._http.post(
            credentials.oauth_url,
            data={
                "grant_type": "client_credentials",
                "client_id": credentials.client_id,
                "client_secret": credentials.client_secret,
            },
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )

        if response.status_code != 200:
            raise AICoreAPIError(
                response.status_code,
                response.text,
                message=f"token request failed with status {response.status_code}: {response.text}",
            )

        try:
            payload = response.json()
            token = payload["access_token"]
            expires_in = int(payload.get("expires_in") or 0)
        except (ValueError, KeyError, TypeError) as e:
            raise AICoreAPIError(response.status_code, response.text, message=f"failed to decode token response: {e}")

        if expires_in <= 0:
            logger.warning(
                f"Token response for team {credentials.team} has no expires_in, "
                f"caching it for {DEFAULT_TOKEN_LIFETIME_SECONDS}s"
            )
            expires_in = DEFAULT_TOKEN_LIFETIME_SECONDS
        return token, expires_in
