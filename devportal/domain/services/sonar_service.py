import asyncio
import logging

import httpx

from devportal.domain.errors import InvalidRequestError, SonarError
from devportal.infrastructure.sonar.sonar_client import SonarClient
from devportal.schemas.sonar import SonarMeasure, SonarMeasuresResponse

logger = logging.getLogger(__name__)


class SonarService:
    def __init__(self, client: SonarClient):
        self.client = client

    async def get_component_measures(self, component: str) -> SonarMeasuresResponse:
        """Fetch measures and quality gate status concurrently; the first failure is reported."""
        if not component:
            raise InvalidRequestError("missing query parameter: component")

        measures, gate = await asyncio.gather(
            self.client.fetch_measures(component),
            self.client.fetch_quality_gate(component),
            return_exceptions=True,
        )

        for label, result in (("sonar measures", measures), ("sonar quality gate status", gate)):
            if isinstance(result, (SonarError, httpx.HTTPError)):
                logger.error(f"Failed to fetch {label} for {component}: {result}")
                raise SonarError(f"failed to fetch {label}: {result}")
            if isinstance(result, BaseException):
                raise result

        raw_measures = (measures.get("component") or {}).get("measures") or []
        return SonarMeasuresResponse(
            measures=[SonarMeasure.model_validate(m) for m in raw_measures],
            status=(gate.get("projectStatus") or {}).get("status", ""),
        )
