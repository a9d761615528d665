"""
Chat inference payloads for the model families hosted on AI Core.

Each family has its own endpoint, request body and response shape. Requests
are built from the portal's OpenAI-style message list and responses are
normalized back to an OpenAI ``chat.completion`` object.
"""

import json
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from devportal.domain.errors import AICoreAPIError
from devportal.schemas.aicore import (
    Deployment,
    InferenceChoice,
    InferenceChoiceMessage,
    InferenceMessage,
    InferenceRequest,
    InferenceResponse,
    InferenceUsage,
)

DEFAULT_MAX_TOKENS = 1000
DEFAULT_TEMPERATURE = 0.7
DEFAULT_ORCHESTRATION_MODEL = "gpt-4o-mini"
ANTHROPIC_VERSION = "bedrock-2023-05-31"
REASONING_API_VERSION = "2024-12-01-preview"
STANDARD_API_VERSION = "2023-05-15"

# First match wins, so more specific names come first.
CONTEXT_LIMITS = (
    (("gpt-5",), 50),
    (("gpt-4-32k",), 40),
    (("gpt-4",), 30),
    (("gpt-3.5",), 25),
    (("o1", "o3"), 20),
    (("claude",), 35),
    (("gemini-1.5",), 40),
    (("gemini",), 30),
)
DEFAULT_CONTEXT_LIMIT = 20


class ModelFamily(str, Enum):
    GEMINI = "gemini"
    ORCHESTRATION = "orchestration"
    GPT = "gpt"
    ANTHROPIC = "anthropic"


@dataclass(frozen=True)
class InferenceCall:
    family: ModelFamily
    model_name: str
    url: str
    payload: Dict[str, Any]


def extract_model_name(details: Optional[Dict[str, Any]]) -> str:
    """Model name from ``details.resources.backend_details.model.name`` (or its camelCase twin)."""
    if not isinstance(details, dict):
        return ""
    resources = details.get("resources")
    if not isinstance(resources, dict):
        return ""
    for key in ("backend_details", "backendDetails"):
        backend = resources.get(key)
        if isinstance(backend, dict):
            model = backend.get("model")
            if isinstance(model, dict) and isinstance(model.get("name"), str) and model["name"]:
                return model["name"]
    return ""


def detect_family(deployment: Deployment, model_name: str) -> ModelFamily:
    lower = model_name.lower()
    if "gemini" in lower:
        return ModelFamily.GEMINI
    if "orchestration" in deployment.scenario_id.lower():
        return ModelFamily.ORCHESTRATION
    if any(marker in lower for marker in ("gpt", "o1", "o3", "openai")):
        return ModelFamily.GPT
    return ModelFamily.ANTHROPIC


def context_limit(model_name: str) -> int:
    lower = model_name.lower()
    for markers, limit in CONTEXT_LIMITS:
        if any(marker in lower for marker in markers):
            return limit
    return DEFAULT_CONTEXT_LIMIT


def trim_messages(messages: List[InferenceMessage], limit: int) -> List[InferenceMessage]:
    """Keep every system message plus the most recent conversation messages that fit."""
    if len(messages) <= limit:
        return messages

    system = [m for m in messages if m.role == "system"]
    conversation = [m for m in messages if m.role != "system"]
    slots = max(limit - len(system), 1)
    return system + conversation[-slots:]


def is_reasoning_model(model_name: str) -> bool:
    lower = model_name.lower()
    return "o1" in lower or "o3-mini" in lower or "gpt-5" in lower


def gpt_api_version(model_name: str) -> str:
    return REASONING_API_VERSION if is_reasoning_model(model_name) else STANDARD_API_VERSION


def message_text(message: InferenceMessage) -> str:
    if isinstance(message.content, str):
        return message.content
    for part in message.content:
        if part.get("type") == "text" and isinstance(part.get("text"), str):
            return part["text"]
    return ""


def _sampling(request: InferenceRequest) -> Dict[str, Any]:
    params: Dict[str, Any] = {
        "max_tokens": request.max_tokens if request.max_tokens > 0 else DEFAULT_MAX_TOKENS,
        "temperature": request.temperature if request.temperature > 0 else DEFAULT_TEMPERATURE,
    }
    return params


def _gemini_payload(request: InferenceRequest, messages: List[InferenceMessage]) -> Dict[str, Any]:
    parts: List[Dict[str, Any]] = []
    for message in messages:
        if message.role == "system":
            parts.append({"text": f"[System]: {message_text(message)}"})
            continue
        if isinstance(message.content, str):
            parts.append({"text": message.content})
            continue
        for part in message.content:
            if part.get("type") == "text":
                parts.append({"text": part.get("text")})
            elif part.get("type") == "image_url" and isinstance(part.get("image_url"), dict):
                parts.append({"fileData": {"mimeType": "image/png", "fileUri": part["image_url"].get("url")}})

    payload: Dict[str, Any] = {"contents": {"role": "user", "parts": parts}}
    generation_config: Dict[str, Any] = {}
    if request.max_tokens > 0:
        generation_config["maxOutputTokens"] = request.max_tokens
    if request.temperature > 0:
        generation_config["temperature"] = request.temperature
    if generation_config:
        payload["generation_config"] = generation_config
    return payload


def _orchestration_payload(
    request: InferenceRequest, messages: List[InferenceMessage], model_name: str, stream: bool
) -> Dict[str, Any]:
    model_params = {"frequency_penalty": 0, "presence_penalty": 0, **_sampling(request)}
    payload: Dict[str, Any] = {
        "orchestration_config": {
            "module_configurations": {
                "templating_module_config": {
                    "template": [{"role": m.role, "content": m.content} for m in messages],
                },
                "llm_module_config": {
                    "model_name": model_name,
                    "model_params": model_params,
                    "model_version": "latest",
                },
            },
        },
        "input_params": {},
    }
    if stream:
        payload["stream"] = True
    return payload


def _gpt_payload(
    request: InferenceRequest, messages: List[InferenceMessage], model_name: str, stream: bool
) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"messages": [{"role": m.role, "content": m.content} for m in messages]}
    # Reasoning models reject sampling parameters
    if not is_reasoning_model(model_name):
        payload.update(_sampling(request))
        if request.top_p > 0:
            payload["top_p"] = request.top_p
    if stream:
        payload["stream"] = True
    return payload


def _anthropic_payload(request: InferenceRequest, messages: List[InferenceMessage], stream: bool) -> Dict[str, Any]:
    system_prompt = ""
    turns = []
    for message in messages:
        if message.role == "system":
            system_prompt = message_text(message)
        else:
            turns.append({"role": message.role, "content": message_text(message)})

    payload: Dict[str, Any] = {"anthropic_version": ANTHROPIC_VERSION, "messages": turns}
    if system_prompt:
        payload["system"] = system_prompt
    payload.update(_sampling(request))
    if request.top_p > 0:
        payload["top_p"] = request.top_p
    if stream:
        payload["stream"] = True
    return payload


def build_inference_call(deployment: Deployment, request: InferenceRequest, stream: bool = False) -> InferenceCall:
    """
    Build the upstream URL and body for a chat request against a deployment.

    Args:
        deployment: Target deployment; must carry a deployment URL
        request: Portal chat request
        stream: Build the streaming variant of the call

    Returns:
        The model family, resolved model name, URL and JSON payload
    """
    model_name = extract_model_name(deployment.details)
    family = detect_family(deployment, model_name)
    messages = trim_messages(request.messages, context_limit(model_name))
    base_url = deployment.deployment_url.rstrip("/")

    if family is ModelFamily.GEMINI:
        action = "streamGenerateContent" if stream else "generateContent"
        return InferenceCall(family, model_name, f"{base_url}/models/{model_name}:{action}", _gemini_payload(request, messages))

    if family is ModelFamily.ORCHESTRATION:
        model_name = model_name or DEFAULT_ORCHESTRATION_MODEL
        return InferenceCall(
            family, model_name, f"{base_url}/completion", _orchestration_payload(request, messages, model_name, stream)
        )

    if family is ModelFamily.GPT:
        url = f"{base_url}/chat/completions?api-version={gpt_api_version(model_name)}"
        return InferenceCall(family, model_name, url, _gpt_payload(request, messages, model_name, stream))

    endpoint = "invoke-with-response-stream" if stream else "invoke"
    return InferenceCall(family, model_name, f"{base_url}/{endpoint}", _anthropic_payload(request, messages, stream))


def _mapping(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _mappings(value: Any) -> List[Dict[str, Any]]:
    """Dict entries of a list; anything else in the body is skipped."""
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""


def normalize_response(call: InferenceCall, data: Any) -> InferenceResponse:
    """
    Convert a family-specific response body to an OpenAI-style chat completion.

    Unexpected shapes in Gemini, orchestration and Anthropic bodies yield empty
    text rather than failing. A GPT body is passed through and must validate.
    """
    now = int(time.time())
    body = _mapping(data)

    if call.family is ModelFamily.GEMINI:
        usage = _mapping(body.get("usageMetadata"))
        choices = []
        for index, candidate in enumerate(_mappings(body.get("candidates"))):
            parts = _mappings(_mapping(candidate.get("content")).get("parts"))
            text = "".join(_text(part.get("text")) for part in parts)
            choices.append(
                InferenceChoice(
                    index=index,
                    message=InferenceChoiceMessage(content=text),
                    finish_reason=_text(candidate.get("finishReason")).lower(),
                )
            )
        return InferenceResponse(
            id=f"gemini-{now}",
            created=now,
            model=call.model_name,
            choices=choices,
            usage=InferenceUsage(
                prompt_tokens=usage.get("promptTokenCount", 0),
                completion_tokens=usage.get("candidatesTokenCount", 0),
                total_tokens=usage.get("totalTokenCount", 0),
            ),
        )

    if call.family is ModelFamily.ORCHESTRATION:
        result = _mapping(body.get("orchestration_result"))
        choices = [
            InferenceChoice(
                index=choice.get("index", 0),
                message=InferenceChoiceMessage(content=_text(_mapping(choice.get("message")).get("content"))),
                finish_reason=choice.get("finish_reason"),
            )
            for choice in _mappings(result.get("choices"))
        ]
        return InferenceResponse(id=f"orch-{now}", created=now, model=call.model_name, choices=choices)

    if call.family is ModelFamily.GPT:
        try:
            return InferenceResponse.model_validate(data)
        except ValidationError as e:
            raise AICoreAPIError(200, json.dumps(data), message=f"failed to decode inference response: {e}")

    content = _mappings(body.get("content"))
    text = _text(content[0].get("text")) if content else ""
    usage = _mapping(body.get("usage"))
    input_tokens = usage.get("input_tokens", 0)
    output_tokens = usage.get("output_tokens", 0)
    return InferenceResponse(
        id=_text(body.get("id")),
        created=now,
        model=_text(body.get("model")),
        choices=[
            InferenceChoice(
                index=0,
                message=InferenceChoiceMessage(content=text),
                finish_reason=body.get("stop_reason"),
            )
        ],
        usage=InferenceUsage(
            prompt_tokens=input_tokens,
            completion_tokens=output_tokens,
            total_tokens=input_tokens + output_tokens,
        ),
    )


def convert_gemini_chunk(chunk: Dict[str, Any], model_name: str) -> Optional[Dict[str, Any]]:
    """Turn a Gemini stream chunk into a ``chat.completion.chunk``; None when it carries no text."""
    candidates = chunk.get("candidates")
    if not isinstance(candidates, list) or not candidates or not isinstance(candidates[0], dict):
        return None
    candidate = candidates[0]
    parts = (candidate.get("content") or {}).get("parts")
    if not isinstance(parts, list) or not parts or not isinstance(parts[0], dict):
        return None
    text = parts[0].get("text")
    if not isinstance(text, str):
        return None

    finish_reason = candidate.get("finishReason")
    return {
        "id": f"gemini-{time.time_ns()}",
        "object": "chat.completion.chunk",
        "created": int(time.time()),
        "model": model_name,
        "choices": [
            {
                "index": 0,
                "delta": {"content": text},
                "finish_reason": finish_reason.lower() if isinstance(finish_reason, str) and finish_reason else None,
            }
        ],
    }


def sse_frame(data: str, event: Optional[str] = None) -> str:
    prefix = f"event: {event}\n" if event else ""
    return f"{prefix}data: {data}\n\n"


def sse_error(message: str) -> str:
    return sse_frame(json.dumps({"error": message}), event="error")
