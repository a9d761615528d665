from fastapi import APIRouter, Depends, Query, status

from devportal.dependencies import get_current_user, get_sonar_service
from devportal.domain.errors import SonarError
from devportal.domain.services.sonar_service import SonarService
from devportal.middleware.error_handling import error_response
from devportal.schemas.auth import UserPrincipal
from devportal.schemas.sonar import SonarMeasuresResponse

router = APIRouter(prefix="/sonar", tags=["sonar"])


@router.get("/measures", response_model=SonarMeasuresResponse)
async def get_measures(
    component: str = Query("", description="Sonar project key"),
    user: UserPrincipal = Depends(get_current_user),
    service: SonarService = Depends(get_sonar_service),
):
    """Coverage, vulnerabilities and code smells plus the quality gate status of a project."""
    try:
        return await service.get_component_measures(component)
    except SonarError as e:
        return error_response(status.HTTP_502_BAD_GATEWAY, f"sonar request failed: {e}")
