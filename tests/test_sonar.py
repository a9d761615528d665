from unittest.mock import AsyncMock

import httpx
import pytest

from devportal.dependencies import get_sonar_service
from devportal.domain.errors import InvalidRequestError, SonarError
from devportal.domain.services.sonar_service import SonarService
from devportal.infrastructure.sonar.sonar_client import SonarClient, normalize_host
from devportal.schemas.sonar import SonarMeasuresResponse

MEASURES = {
    "component": {
        "key": "portal",
        "measures": [
            {"metric": "coverage", "value": "81.5", "bestValue": False},
            {"metric": "vulnerabilities", "value": "0", "bestValue": True},
        ],
    }
}
GATE = {"projectStatus": {"status": "OK"}}


def sonar_service(handler, host="sonar.example.com/", token="secret"):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return SonarService(SonarClient(http_client, host=host, token=token))


def healthy(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/api/measures/component":
        return httpx.Response(200, json=MEASURES)
    return httpx.Response(200, json=GATE)


@pytest.mark.parametrize(
    "host, expected",
    [
        ("sonar.example.com", "https://sonar.example.com"),
        ("http://sonar.local:9000/", "http://sonar.local:9000"),
        ("https://sonar.example.com", "https://sonar.example.com"),
    ],
)
def test_normalize_host(host, expected):
    assert normalize_host(host) == expected


async def test_measures_and_gate():
    seen = []

    def handler(request):
        seen.append(request)
        return healthy(request)

    result = await sonar_service(handler).get_component_measures("portal")

    assert result.status == "OK"
    assert [(m.metric, m.value, m.best_value) for m in result.measures] == [
        ("coverage", "81.5", False),
        ("vulnerabilities", "0", True),
    ]
    by_path = {r.url.path: r for r in seen}
    assert by_path["/api/measures/component"].url.params["metricKeys"] == "coverage,vulnerabilities,code_smells"
    assert by_path["/api/qualitygates/project_status"].url.params["projectKey"] == "portal"
    assert all(r.url.host == "sonar.example.com" for r in seen)
    assert all(r.headers["Authorization"] == "Bearer secret" for r in seen)


async def test_missing_component():
    with pytest.raises(InvalidRequestError):
        await sonar_service(healthy).get_component_measures("")


async def test_unconfigured_client():
    with pytest.raises(SonarError) as exc_info:
        await sonar_service(healthy, host="", token="").get_component_measures("portal")
    assert "sonar configuration missing" in str(exc_info.value)


async def test_measures_failure_is_reported_first():
    def handler(request):
        return httpx.Response(500, text="down")

    with pytest.raises(SonarError) as exc_info:
        await sonar_service(handler).get_component_measures("portal")

    assert str(exc_info.value) == "failed to fetch sonar measures: sonar request failed: status=500 body=down"


async def test_quality_gate_failure():
    def handler(request):
        if request.url.path == "/api/qualitygates/project_status":
            return httpx.Response(404, text="unknown project")
        return healthy(request)

    with pytest.raises(SonarError) as exc_info:
        await sonar_service(handler).get_component_measures("portal")

    assert str(exc_info.value).startswith("failed to fetch sonar quality gate status: ")


async def test_route_returns_measures(app, client):
    app.dependency_overrides[get_sonar_service] = lambda: sonar_service(healthy)

    response = await client.get("/api/v1/sonar/measures", params={"component": "portal"})

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "OK"
    assert body["measures"][1] == {"metric": "vulnerabilities", "value": "0", "bestValue": True}


async def test_route_requires_component(app, client):
    app.dependency_overrides[get_sonar_service] = lambda: sonar_service(healthy)

    response = await client.get("/api/v1/sonar/measures")

    assert response.status_code == 400
    assert response.json() == {"error": "missing query parameter: component"}


async def test_route_reports_upstream_failure_as_bad_gateway(app, client):
    app.dependency_overrides[get_sonar_service] = lambda: sonar_service(lambda r: httpx.Response(503, text="x"))

    response = await client.get("/api/v1/sonar/measures", params={"component": "portal"})

    assert response.status_code == 502
    assert response.json()["error"].startswith("sonar request failed: failed to fetch sonar measures")


async def test_route_passes_component_to_service(app, client):
    service = AsyncMock(spec=SonarService)
    service.get_component_measures.return_value = SonarMeasuresResponse(status="ERROR")
    app.dependency_overrides[get_sonar_service] = lambda: service

    response = await client.get("/api/v1/sonar/measures", params={"component": "portal"})

    assert response.json() == {"measures": [], "status": "ERROR"}
    service.get_component_measures.assert_awaited_once_with("portal")
