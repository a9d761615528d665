import httpx
import pytest

from conftest import make_principal
from devportal.dependencies import get_current_user
from devportal.domain.errors import AICoreAPIError, NotFoundError

VALID_CONFIGURATION = {"name": "my-llm-config", "executableId": "aicore-llm", "scenarioId": "foundation-models"}


def act_as(app, name):
    app.dependency_overrides[get_current_user] = lambda: make_principal(name)


async def test_create_deployment_from_configuration_id(client, platform_clients):
    response = await client.post("/api/v1/ai-core/deployments", json={"configurationId": "config-1", "ttl": "1h"})

    assert response.status_code == 202
    body = response.json()
    assert body["id"] == "dep-1"
    assert body["status"] == "PENDING"
    assert body["ttl"] == "1h"
    assert platform_clients["team-a"].calls == [("create_deployment", "config-1", "1h")]


async def test_create_deployment_with_new_configuration(client, platform_clients):
    team_client = platform_clients["team-a"]
    team_client.new_configuration_id = "config-77"

    response = await client.post(
        "/api/v1/ai-core/deployments",
        json={"configurationRequest": VALID_CONFIGURATION, "ttl": "2h"},
    )

    assert response.status_code == 202
    assert team_client.call_names == ["create_configuration", "create_deployment"]
    assert team_client.calls[0][1].executable_id == "aicore-llm"
    assert team_client.calls[1] == ("create_deployment", "config-77", "2h")


async def test_create_deployment_without_source_is_rejected(client, platform_clients):
    response = await client.post("/api/v1/ai-core/deployments", json={"ttl": "1h"})

    assert response.status_code == 400
    assert response.json() == {"error": "Either configurationId or configurationRequest must be provided"}
    assert platform_clients["team-a"].calls == []


async def test_create_deployment_with_both_sources_is_rejected(client, platform_clients):
    response = await client.post(
        "/api/v1/ai-core/deployments",
        json={"configurationId": "config-1", "configurationRequest": VALID_CONFIGURATION},
    )

    assert response.status_code == 400
    assert response.json() == {"error": "ConfigurationId and configurationRequest cannot both be provided"}
    assert platform_clients["team-a"].calls == []


async def test_create_deployment_with_empty_id_and_configuration_is_rejected(client, platform_clients):
    response = await client.post(
        "/api/v1/ai-core/deployments",
        json={"configurationId": "", "configurationRequest": VALID_CONFIGURATION},
    )

    assert response.status_code == 400
    assert response.json() == {"error": "ConfigurationId and configurationRequest cannot both be provided"}
    assert platform_clients["team-a"].calls == []


@pytest.mark.parametrize("missing", ["name", "executableId", "scenarioId"])
async def test_create_deployment_missing_field(client, platform_clients, missing):
    configuration = {k: v for k, v in VALID_CONFIGURATION.items() if k != missing}

    response = await client.post("/api/v1/ai-core/deployments", json={"configurationRequest": configuration})

    assert response.status_code == 400
    assert missing in response.json()["error"]
    assert platform_clients["team-a"].calls == []


async def test_validation_runs_before_team_resolution(app, client):
    act_as(app, "bob")  # no team at all

    response = await client.post("/api/v1/ai-core/deployments", json={})

    assert response.status_code == 400


async def test_malformed_body_is_bad_request(client):
    response = await client.post(
        "/api/v1/ai-core/deployments",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 400
    assert "error" in response.json()


@pytest.mark.parametrize(
    "method, path, body",
    [
        ("POST", "/api/v1/ai-core/deployments", {"configurationId": "config-1"}),
        ("PATCH", "/api/v1/ai-core/deployments/dep-1", {"targetStatus": "STOPPED"}),
        ("DELETE", "/api/v1/ai-core/deployments/dep-1", None),
        ("GET", "/api/v1/ai-core/deployments/dep-1", None),
        ("GET", "/api/v1/ai-core/configurations", None),
        ("GET", "/api/v1/ai-core/models?scenarioId=foundation-models", None),
    ],
)
async def test_team_without_credentials_gets_fixed_403(app, client, method, path, body):
    act_as(app, "carol")  # team-c has no credentials

    response = await client.request(method, path, json=body)

    assert response.status_code == 403
    assert response.json() == {"error": "No AI Core credentials configured for your team"}


async def test_user_without_team_is_forbidden(app, client):
    act_as(app, "bob")

    response = await client.get("/api/v1/ai-core/deployments/dep-1")

    assert response.status_code == 403
    assert response.json() == {"error": "user is not assigned to any team"}


async def test_principal_without_email_is_unauthenticated(app, client):
    app.dependency_overrides[get_current_user] = lambda: make_principal("anon").model_copy(update={"email": None})

    response = await client.get("/api/v1/ai-core/deployments/dep-1")

    assert response.status_code == 401
    assert response.json() == {"error": "Authentication required"}


async def test_missing_bearer_token_is_unauthenticated(app, client):
    del app.dependency_overrides[get_current_user]

    response = await client.get("/api/v1/ai-core/deployments")

    assert response.status_code == 401
    assert response.json() == {"error": "Authentication required"}


async def test_update_deployment(client, platform_clients):
    response = await client.patch("/api/v1/ai-core/deployments/dep-1", json={"targetStatus": "STOPPED"})

    assert response.status_code == 202
    name, deployment_id, request = platform_clients["team-a"].calls[0]
    assert (name, deployment_id, request.target_status) == ("update_deployment", "dep-1", "STOPPED")


async def test_update_deployment_requires_a_field(client, platform_clients):
    response = await client.patch("/api/v1/ai-core/deployments/dep-1", json={})

    assert response.status_code == 400
    assert response.json() == {"error": "At least one of targetStatus or configurationId must be provided"}
    assert platform_clients["team-a"].calls == []


async def test_delete_deployment(client):
    response = await client.delete("/api/v1/ai-core/deployments/dep-1")

    assert response.status_code == 202
    assert response.json()["id"] == "dep-1"


async def test_get_deployment_not_found(client, platform_clients):
    platform_clients["team-a"].failures["get_deployment"] = NotFoundError("deployment")

    response = await client.get("/api/v1/ai-core/deployments/missing")

    assert response.status_code == 404
    assert response.json() == {"error": "deployment not found"}


async def test_upstream_failure_is_internal_error(client, platform_clients):
    platform_clients["team-a"].failures["create_deployment"] = AICoreAPIError(503, "unavailable")

    response = await client.post("/api/v1/ai-core/deployments", json={"configurationId": "config-1"})

    assert response.status_code == 500
    assert response.json() == {
        "error": "failed to create deployment: AI Core API request failed with status 503: unavailable"
    }


async def test_unreachable_upstream_names_the_failing_step(client, platform_clients):
    platform_clients["team-a"].failures["create_deployment"] = httpx.ConnectError("All connection attempts failed")

    response = await client.post("/api/v1/ai-core/deployments", json={"configurationId": "config-1"})

    assert response.status_code == 500
    assert response.json() == {"error": "failed to create deployment: All connection attempts failed"}


async def test_list_deployments_groups_by_team(client, platform_clients):
    platform_clients["team-a"].deployments = [{"id": "d-a", "status": "RUNNING"}]
    platform_clients["team-b"].deployments = [{"id": "d-b1"}, {"id": "d-b2"}]

    response = await client.get("/api/v1/ai-core/deployments")

    assert response.status_code == 200
    body = response.json()
    assert body["count"] == 3
    assert [(entry["team"], len(entry["deployments"])) for entry in body["deployments"]] == [
        ("team-a", 1),
        ("team-b", 2),
    ]


async def test_list_models_requires_scenario(client, platform_clients):
    response = await client.get("/api/v1/ai-core/models")

    assert response.status_code == 400
    assert response.json() == {"error": "scenarioId query parameter is required"}
    assert platform_clients["team-a"].calls == []


async def test_list_models(client, platform_clients):
    response = await client.get("/api/v1/ai-core/models", params={"scenarioId": "foundation-models"})

    assert response.status_code == 200
    assert platform_clients["team-a"].calls == [("list_models", "foundation-models")]


async def test_create_configuration(client, platform_clients):
    response = await client.post("/api/v1/ai-core/configurations", json=VALID_CONFIGURATION)

    assert response.status_code == 201
    assert response.json()["id"] == "config-new"


async def test_create_configuration_validates_fields(client, platform_clients):
    response = await client.post("/api/v1/ai-core/configurations", json={"name": "x", "scenarioId": "s"})

    assert response.status_code == 400
    assert response.json() == {"error": "validation error: executableId - is required"}
    assert platform_clients["team-a"].calls == []


async def test_me(client):
    response = await client.get("/api/v1/ai-core/me")

    assert response.status_code == 200
    assert response.json() == {"user": "alice", "ai_instances": ["team-a", "sandbox"]}


async def test_health(client):
    response = await client.get("/api/v1/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert "X-Process-Time" in response.headers


async def test_chat_inference(client, platform_clients):
    platform_clients["team-a"].deployments = [
        {
            "id": "d-gpt",
            "deploymentUrl": "https://inference.example.com/v2/inference/deployments/d-gpt",
            "details": {"resources": {"backend_details": {"model": {"name": "gpt-4o"}}}},
        }
    ]
    platform_clients["team-a"].inference_result = {
        "id": "chatcmpl-1",
        "choices": [{"index": 0, "message": {"role": "assistant", "content": "hello"}, "finish_reason": "stop"}],
    }

    response = await client.post(
        "/api/v1/ai-core/chat/inference",
        json={"deploymentId": "d-gpt", "messages": [{"role": "user", "content": "hi"}]},
    )

    assert response.status_code == 200
    assert response.json()["choices"][0]["message"]["content"] == "hello"


async def test_chat_inference_unknown_deployment(client):
    response = await client.post(
        "/api/v1/ai-core/chat/inference",
        json={"deploymentId": "nope", "messages": [{"role": "user", "content": "hi"}]},
    )

    assert response.status_code == 404
    assert response.json() == {"error": "deployment nope not found or user does not have access to it"}


async def test_chat_inference_streams_events(client, platform_clients):
    platform_clients["team-a"].deployments = [
        {
            "id": "d-gpt",
            "deploymentUrl": "https://inference.example.com/v2/inference/deployments/d-gpt",
            "details": {"resources": {"backend_details": {"model": {"name": "gpt-4o"}}}},
        }
    ]
    platform_clients["team-a"].stream_lines = ['data: {"choices": []}', "data: [DONE]"]

    response = await client.post(
        "/api/v1/ai-core/chat/inference",
        json={"deploymentId": "d-gpt", "messages": [{"role": "user", "content": "hi"}], "stream": True},
    )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers["cache-control"] == "no-cache"
    assert response.text == 'data: {"choices": []}\n\ndata: [DONE]\n\n'


async def test_upload_returns_data_urls(client):
    response = await client.post(
        "/api/v1/ai-core/upload",
        files=[
            ("files", ("notes.txt", b"hello", "application/octet-stream")),
            ("files", ("data.json", b"{}", "application/json")),
        ],
    )

    assert response.status_code == 200
    body = response.json()
    assert body["count"] == 2
    assert body["totalSize"] == 7
    assert body["files"][0] == {
        "url": "data:text/plain;base64,aGVsbG8=",
        "mimeType": "text/plain",
        "filename": "notes.txt",
        "size": 5,
    }


async def test_upload_accepts_single_file_field(client):
    response = await client.post("/api/v1/ai-core/upload", files={"file": ("a.md", b"# hi", "text/plain")})

    assert response.status_code == 200
    assert response.json()["files"][0]["mimeType"] == "text/markdown"


async def test_upload_without_files(client):
    response = await client.post("/api/v1/ai-core/upload", files={"other": ("a.txt", b"x", "text/plain")})

    assert response.status_code == 400
    assert response.json() == {"error": "No files provided"}


async def test_upload_size_limit(client):
    oversized = b"x" * (5 * 1024 * 1024 + 1)

    response = await client.post("/api/v1/ai-core/upload", files={"files": ("big.bin", oversized, "image/png")})

    assert response.status_code == 400
    assert response.json() == {
        "error": "Combined file size exceeds 5MB limit",
        "totalSize": 5 * 1024 * 1024 + 1,
        "maxSize": 5 * 1024 * 1024,
    }
