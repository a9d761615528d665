"""HTTP client for the AI Core REST API."""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional, Protocol

import httpx

from devportal.domain.errors import AICoreAPIError, NotFoundError
from devportal.infrastructure.aicore.credentials import AICoreCredentials, TokenProvider
from devportal.schemas.aicore import (
    ConfigurationRequest,
    ConfigurationResponse,
    ConfigurationsResponse,
    DeploymentDeletionResponse,
    DeploymentDetails,
    DeploymentList,
    DeploymentModificationRequest,
    DeploymentModificationResponse,
    DeploymentResponse,
    ModelsResponse,
)

logger = logging.getLogger(__name__)


class AIPlatformClient(Protocol):
    """Operations on one team's AI Core tenant."""

    team: str

    async def list_deployments(self) -> DeploymentList: ...

    async def get_deployment(self, deployment_id: str) -> DeploymentDetails: ...

    async def create_deployment(self, configuration_id: str, ttl: Optional[str] = None) -> DeploymentResponse: ...

    async def update_deployment(
        self, deployment_id: str, request: DeploymentModificationRequest
    ) -> DeploymentModificationResponse: ...

    async def delete_deployment(self, deployment_id: str) -> DeploymentDeletionResponse: ...

    async def list_configurations(self) -> ConfigurationsResponse: ...

    async def create_configuration(self, request: ConfigurationRequest) -> ConfigurationResponse: ...

    async def list_models(self, scenario_id: str) -> ModelsResponse: ...

    async def infer(self, url: str, payload: Dict[str, Any]) -> Dict[str, Any]: ...

    def stream(self, url: str, payload: Dict[str, Any]) -> AsyncIterator[str]: ...


class AICoreClient:
    """
    AIPlatformClient backed by httpx.

    One instance is bound to one team's credentials; the underlying
    ``httpx.AsyncClient`` and token cache are shared across instances.
    """

    def __init__(self, credentials: AICoreCredentials, http_client: httpx.AsyncClient, tokens: TokenProvider):
        self.team = credentials.team
        self._credentials = credentials
        self._http = http_client
        self._tokens = tokens

    def _url(self, path: str) -> str:
        return f"{self._credentials.api_url.rstrip('/')}{path}"

    async def _headers(self) -> Dict[str, str]:
        token = await self._tokens.get_token(self._credentials)
        return {
            "Authorization": f"Bearer {token}",
            "AI-Resource-Group": self._credentials.resource_group,
            "Content-Type": "application/json",
        }

    def _drop_rejected_token(self, response: httpx.Response) -> None:
        # The next call fetches a fresh token
        if response.status_code == 401:
            logger.warning(f"AI Core rejected the access token of team {self.team}")
            self._tokens.invalidate(self.team)

    async def _request(
        self,
        method: str,
        url: str,
        expected_status: int,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, str]] = None,
        not_found: Optional[str] = None,
    ) -> Dict[str, Any]:
        response = await self._http.request(method, url, json=json, params=params, headers=await self._headers())
        self._drop_rejected_token(response)

        if not_found and response.status_code == 404:
            raise NotFoundError(not_found)
        if response.status_code != expected_status:
            logger.error(f"AI Core {method} {url} for team {self.team} returned {response.status_code}")
            raise AICoreAPIError(response.status_code, response.text)

        try:
            return response.json()
        except ValueError as e:
            raise AICoreAPIError(response.status_code, response.text, message=f"failed to decode AI Core response: {e}")

    async def list_deployments(self) -> DeploymentList:
        data = await self._request("GET", self._url("/v2/lm/deployments"), 200)
        return DeploymentList.model_validate(data)

    async def get_deployment(self, deployment_id: str) -> DeploymentDetails:
        data = await self._request(
            "GET", self._url(f"/v2/lm/deployments/{deployment_id}"), 200, not_found="deployment"
        )
        return DeploymentDetails.model_validate(data)

    async def create_deployment(self, configuration_id: str, ttl: Optional[str] = None) -> DeploymentResponse:
        body: Dict[str, Any] = {"configurationId": configuration_id}
        if ttl:
            body["ttl"] = ttl
        data = await self._request("POST", self._url("/v2/lm/deployments"), 202, json=body)
        return DeploymentResponse.model_validate(data)

    async def update_deployment(
        self, deployment_id: str, request: DeploymentModificationRequest
    ) -> DeploymentModificationResponse:
        body = request.model_dump(by_alias=True, exclude_none=True)
        data = await self._request(
            "PATCH", self._url(f"/v2/lm/deployments/{deployment_id}"), 202, json=body, not_found="deployment"
        )
        return DeploymentModificationResponse.model_validate(data)

    async def delete_deployment(self, deployment_id: str) -> DeploymentDeletionResponse:
        data = await self._request(
            "DELETE", self._url(f"/v2/lm/deployments/{deployment_id}"), 202, not_found="deployment"
        )
        return DeploymentDeletionResponse.model_validate(data)

    async def list_configurations(self) -> ConfigurationsResponse:
        data = await self._request("GET", self._url("/v2/lm/configurations"), 200)
        return ConfigurationsResponse.model_validate(data)

    async def create_configuration(self, request: ConfigurationRequest) -> ConfigurationResponse:
        body = request.model_dump(by_alias=True)
        if not body["inputArtifactBindings"]:
            del body["inputArtifactBindings"]
        data = await self._request("POST", self._url("/v2/lm/configurations"), 201, json=body)
        return ConfigurationResponse.model_validate(data)

    async def list_models(self, scenario_id: str) -> ModelsResponse:
        data = await self._request("GET", self._url(f"/v2/lm/scenarios/{scenario_id}/models"), 200)
        return ModelsResponse.model_validate(data)

    async def infer(self, url: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        response = await self._http.post(url, json=payload, headers=await self._headers())
        self._drop_rejected_token(response)
        if response.status_code != 200:
            raise AICoreAPIError(
                response.status_code,
                response.text,
                message=f"inference request failed with status {response.status_code}: {response.text}",
            )
        try:
            return response.json()
        except ValueError as e:
            raise AICoreAPIError(response.status_code, response.text, message=f"failed to decode inference response: {e}")

    async def stream(self, url: str, payload: Dict[str, Any]) -> AsyncIterator[str]:
        """Yield the upstream response body line by line; the connection closes when the caller stops iterating."""
        headers = await self._headers()
        async with self._open_stream(url, payload, headers) as response:
            async for line in response.aiter_lines():
                yield line

    @asynccontextmanager
    async def _open_stream(self, url: str, payload: Dict[str, Any], headers: Dict[str, str]):
        async with self._http.stream("POST", url, json=payload, headers=headers) as response:
            self._drop_rejected_token(response)
            if response.status_code != 200:
                body = (await response.aread()).decode(errors="replace")
                raise AICoreAPIError(
                    response.status_code,
                    body,
                    message=f"inference request failed with status {response.status_code}: {body}",
                )
            yield response
