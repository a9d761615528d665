from typing import List, Optional

from fastapi import APIRouter, Depends, File, Query, UploadFile, status
from fastapi.responses import JSONResponse, StreamingResponse

from devportal.dependencies import get_aicore_service, get_current_user
from devportal.domain.errors import InvalidRequestError
from devportal.domain.services.aicore_service import AICoreService, encode_attachment
from devportal.schemas.aicore import (
    ConfigurationRequest,
    ConfigurationResponse,
    ConfigurationsResponse,
    DeploymentDeletionResponse,
    DeploymentDetails,
    DeploymentModificationRequest,
    DeploymentModificationResponse,
    DeploymentRequest,
    DeploymentResponse,
    DeploymentsResponse,
    InferenceRequest,
    InferenceResponse,
    MeResponse,
    ModelsResponse,
    UploadResponse,
)
from devportal.schemas.auth import UserPrincipal

router = APIRouter(prefix="/ai-core", tags=["ai-core"])

MAX_UPLOAD_BYTES = 5 * 1024 * 1024

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


@router.get("/deployments", response_model=DeploymentsResponse)
async def list_deployments(
    user: UserPrincipal = Depends(get_current_user),
    service: AICoreService = Depends(get_aicore_service),
):
    """Deployments of every team visible to the caller, grouped by team."""
    return await service.list_deployments(user)


@router.post(
    "/deployments",
    response_model=DeploymentResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def create_deployment(
    request: DeploymentRequest,
    user: UserPrincipal = Depends(get_current_user),
    service: AICoreService = Depends(get_aicore_service),
):
    """
    Create a deployment from an existing configuration id, or create the
    configuration first when ``configurationRequest`` is given.
    """
    return await service.create_deployment(user, request)


@router.get("/deployments/{deployment_id}", response_model=DeploymentDetails)
async def get_deployment(
    deployment_id: str,
    user: UserPrincipal = Depends(get_current_user),
    service: AICoreService = Depends(get_aicore_service),
):
    return await service.get_deployment(user, deployment_id)


@router.patch(
    "/deployments/{deployment_id}",
    response_model=DeploymentModificationResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def update_deployment(
    deployment_id: str,
    request: DeploymentModificationRequest,
    user: UserPrincipal = Depends(get_current_user),
    service: AICoreService = Depends(get_aicore_service),
):
    """Change the target status and/or configuration of a deployment."""
    return await service.update_deployment(user, deployment_id, request)


@router.delete(
    "/deployments/{deployment_id}",
    response_model=DeploymentDeletionResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def delete_deployment(
    deployment_id: str,
    user: UserPrincipal = Depends(get_current_user),
    service: AICoreService = Depends(get_aicore_service),
):
    return await service.delete_deployment(user, deployment_id)


@router.get("/models", response_model=ModelsResponse)
async def list_models(
    scenario_id: Optional[str] = Query(None, alias="scenarioId"),
    user: UserPrincipal = Depends(get_current_user),
    service: AICoreService = Depends(get_aicore_service),
):
    return await service.list_models(user, scenario_id)


@router.get("/configurations", response_model=ConfigurationsResponse)
async def list_configurations(
    user: UserPrincipal = Depends(get_current_user),
    service: AICoreService = Depends(get_aicore_service),
):
    return await service.list_configurations(user)


@router.post(
    "/configurations",
    response_model=ConfigurationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_configuration(
    request: ConfigurationRequest,
    user: UserPrincipal = Depends(get_current_user),
    service: AICoreService = Depends(get_aicore_service),
):
    return await service.create_configuration(user, request)


@router.get("/me", response_model=MeResponse)
async def get_me(
    user: UserPrincipal = Depends(get_current_user),
    service: AICoreService = Depends(get_aicore_service),
):
    """AI instances (team names) the caller may use."""
    return await service.get_me(user)


@router.post("/chat/inference", response_model=InferenceResponse)
async def chat_inference(
    request: InferenceRequest,
    user: UserPrincipal = Depends(get_current_user),
    service: AICoreService = Depends(get_aicore_service),
):
    """Run a chat completion; ``stream: true`` answers with server-sent events."""
    if request.stream:
        return StreamingResponse(
            service.stream_chat_inference(user, request),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )
    return await service.chat_inference(user, request)


@router.post("/upload", response_model=UploadResponse)
async def upload_attachments(
    files: Optional[List[UploadFile]] = File(None),
    file: Optional[List[UploadFile]] = File(None),
    user: UserPrincipal = Depends(get_current_user),
):
    """Turn uploaded files into data URLs for multimodal chat; combined size is capped at 5MB."""
    uploads = (files or []) + (file or [])
    if not uploads:
        raise InvalidRequestError("No files provided")

    contents = [await upload.read() for upload in uploads]
    total_size = sum(len(content) for content in contents)
    if total_size > MAX_UPLOAD_BYTES:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "error": "Combined file size exceeds 5MB limit",
                "totalSize": total_size,
                "maxSize": MAX_UPLOAD_BYTES,
            },
        )

    encoded = [
        encode_attachment(upload.filename or "upload", content, upload.content_type)
        for upload, content in zip(uploads, contents)
    ]
    return UploadResponse(files=encoded, count=len(encoded), total_size=total_size)
