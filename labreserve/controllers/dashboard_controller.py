"""Controller layer for login and dashboard read endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response, status
from fastapi.security import HTTPAuthorizationCredentials
from pydantic import BaseModel, Field

from labreserve.controllers.dependencies import (
    bearer_scheme,
    get_auth_service,
    get_caller_identity,
    get_view_projector,
    require_admin,
    to_http_exception,
)
from labreserve.controllers.schemas import RequestResponse, SystemResponse
from labreserve.domain.errors import LabReservationError
from labreserve.domain.models import CallerIdentity, Role
from labreserve.services.auth_service import AuthService
from labreserve.services.dashboard_service import ViewProjector
from labreserve.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["dashboard"])


class LoginRequest(BaseModel):
    admin_token: str = Field(min_length=1)


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class IdentityTokenRequest(BaseModel):
    uid: str = Field(min_length=1)
    login_id: str = Field(min_length=1)
    role: Role
    name: str = ""


class StatsResponse(BaseModel):
    total_systems: int = Field(ge=0)
    systems_by_status: dict[str, int]
    systems_by_category: dict[str, int]
    requests_by_status: dict[str, int]
    pending_requests: int = Field(ge=0)


class IntegrityIssueResponse(BaseModel):
    kind: str
    system_id: int
    request_id: str | None = None
    detail: str


class IntegrityResponse(BaseModel):
    consistent: bool
    issues: list[IntegrityIssueResponse]


@router.post("/login", response_model=LoginResponse, status_code=status.HTTP_200_OK)
async def login(
    payload: LoginRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> LoginResponse:
    try:
        return LoginResponse(access_token=auth_service.login(payload.admin_token))
    except LabReservationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected login failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to login",
        ) from exc


@router.post(
    "/logout",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(get_caller_identity)],
)
async def logout(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    auth_service: AuthService = Depends(get_auth_service),
) -> Response:
    """Revoke the bearer token used for this call."""
    auth_service.revoke(credentials.credentials)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/identities/token",
    response_model=LoginResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
async def issue_identity_token(
    payload: IdentityTokenRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> LoginResponse:
    """Mint a bearer token for an identity vouched for by the identity provider."""
    identity = CallerIdentity(
        uid=payload.uid,
        login_id=payload.login_id,
        role=payload.role,
        name=payload.name,
    )
    return LoginResponse(access_token=auth_service.issue_token(identity))


@router.get(
    "/systems",
    response_model=list[SystemResponse],
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(get_caller_identity)],
)
async def list_systems(
    projector: ViewProjector = Depends(get_view_projector),
) -> list[SystemResponse]:
    try:
        return [SystemResponse.from_domain(system) for system in projector.snapshot().systems]
    except LabReservationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected inventory listing failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load systems",
        ) from exc


@router.get(
    "/stats",
    response_model=StatsResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
async def get_stats(
    projector: ViewProjector = Depends(get_view_projector),
) -> StatsResponse:
    try:
        return StatsResponse(**projector.stats())
    except LabReservationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected dashboard stats failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to compute stats",
        ) from exc


@router.get(
    "/requests/pending",
    response_model=list[RequestResponse],
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
async def pending_queue(
    projector: ViewProjector = Depends(get_view_projector),
) -> list[RequestResponse]:
    try:
        return [RequestResponse.from_domain(request) for request in projector.pending_queue()]
    except LabReservationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected pending queue failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load pending requests",
        ) from exc


@router.get(
    "/integrity",
    response_model=IntegrityResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
async def integrity(
    projector: ViewProjector = Depends(get_view_projector),
) -> IntegrityResponse:
    try:
        issues = projector.integrity_report()
        return IntegrityResponse(
            consistent=not any(issue.kind == "unbacked_hold" for issue in issues),
            issues=[IntegrityIssueResponse(**issue.to_dict()) for issue in issues],
        )
    except LabReservationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected integrity check failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to check integrity",
        ) from exc
