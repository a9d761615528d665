"""SonarQube Web API client."""

import logging
from typing import Any, Dict, Optional

import httpx

from devportal.config import settings
from devportal.domain.errors import SonarError

logger = logging.getLogger(__name__)

METRIC_KEYS = "coverage,vulnerabilities,code_smells"


def normalize_host(host: str) -> str:
    if not host.startswith(("http://", "https://")):
        host = f"https://{host}"
    return host.rstrip("/")


class SonarClient:
    def __init__(self, http_client: httpx.AsyncClient, host: Optional[str] = None, token: Optional[str] = None):
        self.client = http_client
        self._host = settings.SONAR_HOST if host is None else host
        self._token = settings.SONAR_TOKEN if token is None else token

    def is_configured(self) -> bool:
        return bool(self._host and self._token)

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self._token}", "Accept": "application/json"}

    async def _get_json(self, path: str, params: Dict[str, str]) -> Dict[str, Any]:
        if not self.is_configured():
            raise SonarError("sonar configuration missing (SONAR_HOST or SONAR_TOKEN)")

        url = f"{normalize_host(self._host)}{path}"
        logger.info(f"Invoking Sonar API GET {url}")
        response = await self.client.get(url, params=params, headers=self._headers())

        if not 200 <= response.status_code < 300:
            raise SonarError(f"sonar request failed: status={response.status_code} body={response.text}")
        try:
            return response.json()
        except ValueError as e:
            raise SonarError(f"failed to decode sonar response: {e}")

    async def fetch_measures(self, component: str) -> Dict[str, Any]:
        return await self._get_json("/api/measures/component", {"component": component, "metricKeys": METRIC_KEYS})

    async def fetch_quality_gate(self, component: str) -> Dict[str, Any]:
        return await self._get_json("/api/qualitygates/project_status", {"projectKey": component})
