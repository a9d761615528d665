"""
Request and response models for the AI Core proxy endpoints.

Field names follow the upstream platform's camelCase JSON; Python attributes
are snake_case and the models accept either form on input.
"""

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class AICoreModel(BaseModel):
    """Base model accepting both attribute names and camelCase aliases."""

    model_config = ConfigDict(populate_by_name=True)


class UpstreamModel(AICoreModel):
    """Upstream-owned payload; unknown fields are kept and passed back to the caller."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")


# Requests


class ParameterBinding(AICoreModel):
    key: str = Field(..., description="Parameter name")
    value: str = Field(..., description="Parameter value")


class ConfigurationRequest(AICoreModel):
    """
    Configuration to create upstream.

    Required fields default to empty strings so the deployment planner can
    report the first missing one instead of failing at JSON binding.
    """

    name: str = Field("", description="Configuration name")
    executable_id: str = Field("", alias="executableId", description="Upstream executable (model family)")
    scenario_id: str = Field("", alias="scenarioId", description="Upstream scenario")
    parameter_bindings: List[ParameterBinding] = Field(
        default_factory=list, alias="parameterBindings", description="Ordered key/value bindings"
    )
    input_artifact_bindings: List[Dict[str, str]] = Field(
        default_factory=list, alias="inputArtifactBindings", description="Ordered artifact bindings"
    )


class DeploymentRequest(AICoreModel):
    configuration_id: Optional[str] = Field(None, alias="configurationId")
    configuration_request: Optional[ConfigurationRequest] = Field(None, alias="configurationRequest")
    ttl: Optional[str] = Field(None, description="Requested lifetime, passed through unvalidated")


class DeploymentModificationRequest(AICoreModel):
    target_status: Optional[str] = Field(None, alias="targetStatus")
    configuration_id: Optional[str] = Field(None, alias="configurationId")


class InferenceMessage(AICoreModel):
    role: Literal["system", "user", "assistant"]
    content: Union[str, List[Dict[str, Any]]] = Field(..., description="Text or multimodal content parts")


class InferenceRequest(AICoreModel):
    deployment_id: str = Field(..., alias="deploymentId", min_length=1)
    messages: List[InferenceMessage] = Field(..., min_length=1)
    max_tokens: int = 0
    temperature: float = 0.0
    top_p: float = 0.0
    stream: bool = False


# Responses


class ConfigurationResponse(UpstreamModel):
    id: str
    message: str = ""


class Configuration(UpstreamModel):
    id: str
    name: str = ""
    executable_id: str = Field("", alias="executableId")
    scenario_id: str = Field("", alias="scenarioId")
    parameter_bindings: List[Dict[str, str]] = Field(default_factory=list, alias="parameterBindings")
    input_artifact_bindings: List[Dict[str, str]] = Field(default_factory=list, alias="inputArtifactBindings")
    created_at: str = Field("", alias="createdAt")


class ConfigurationsResponse(UpstreamModel):
    count: int = 0
    resources: List[Configuration] = Field(default_factory=list)


class DeploymentResponse(UpstreamModel):
    id: str
    message: str = ""
    deployment_url: Optional[str] = Field(None, alias="deploymentUrl")
    status: Optional[str] = None
    ttl: Optional[str] = None


class DeploymentModificationResponse(UpstreamModel):
    id: str
    message: str = ""
    deployment_url: Optional[str] = Field(None, alias="deploymentUrl")
    status: Optional[str] = None
    target_status: Optional[str] = Field(None, alias="targetStatus")


class DeploymentDeletionResponse(UpstreamModel):
    id: str
    message: str = ""


class Deployment(UpstreamModel):
    id: str
    configuration_id: str = Field("", alias="configurationId")
    configuration_name: str = Field("", alias="configurationName")
    scenario_id: str = Field("", alias="scenarioId")
    status: str = ""
    status_message: Optional[str] = Field("", alias="statusMessage")
    target_status: str = Field("", alias="targetStatus")
    deployment_url: str = Field("", alias="deploymentUrl")
    created_at: str = Field("", alias="createdAt")
    modified_at: str = Field("", alias="modifiedAt")
    details: Optional[Dict[str, Any]] = None


class DeploymentDetails(Deployment):
    executable_id: str = Field("", alias="executableId")
    last_operation: str = Field("", alias="lastOperation")
    latest_running_configuration_id: str = Field("", alias="latestRunningConfigurationId")
    ttl: Optional[str] = None
    submission_time: str = Field("", alias="submissionTime")
    start_time: str = Field("", alias="startTime")
    completion_time: str = Field("", alias="completionTime")
    status_details: Optional[Dict[str, Any]] = Field(None, alias="statusDetails")


class DeploymentList(UpstreamModel):
    count: int = 0
    resources: List[Deployment] = Field(default_factory=list)


class TeamDeployments(AICoreModel):
    team: str
    deployments: List[Deployment] = Field(default_factory=list)


class DeploymentsResponse(AICoreModel):
    count: int = 0
    deployments: List[TeamDeployments] = Field(default_factory=list)


class ModelsResponse(UpstreamModel):
    count: int = 0
    resources: List[Dict[str, Any]] = Field(default_factory=list)


class MeResponse(AICoreModel):
    user: str
    ai_instances: List[str] = Field(default_factory=list)


class InferenceChoiceMessage(AICoreModel):
    role: str = "assistant"
    content: Union[str, List[Dict[str, Any]], None] = ""


class InferenceChoice(AICoreModel):
    index: int = 0
    message: InferenceChoiceMessage = Field(default_factory=InferenceChoiceMessage)
    finish_reason: Optional[str] = None


class InferenceUsage(AICoreModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class InferenceResponse(UpstreamModel):
    id: str = ""
    object: str = "chat.completion"
    created: int = 0
    model: str = ""
    choices: List[InferenceChoice] = Field(default_factory=list)
    usage: InferenceUsage = Field(default_factory=InferenceUsage)
    system_fingerprint: Optional[str] = None


class UploadedFile(AICoreModel):
    url: str
    mime_type: str = Field(..., alias="mimeType")
    filename: str
    size: int


class UploadResponse(AICoreModel):
    files: List[UploadedFile] = Field(default_factory=list)
    count: int = 0
    total_size: int = Field(0, alias="totalSize")
