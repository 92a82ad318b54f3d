"""HTTP controller layer for administrator allocation and inventory actions."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from labreserve.controllers.dependencies import (
    get_allocation_engine,
    require_admin,
    to_http_exception,
)
from labreserve.controllers.schemas import RequestResponse, SystemResponse
from labreserve.domain.errors import LabReservationError
from labreserve.domain.models import CallerIdentity
from labreserve.services.allocation_service import AllocationEngine
from labreserve.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["allocation"])


class AllocateRequest(BaseModel):
    system_ids: list[int]
    time_slot: str


class AllocateResponse(BaseModel):
    request: RequestResponse
    systems: list[SystemResponse]


class MaintenanceRequest(BaseModel):
    in_maintenance: bool


@router.post(
    "/requests/{request_id}/allocate",
    response_model=AllocateResponse,
    status_code=status.HTTP_200_OK,
)
async def allocate(
    request_id: str,
    payload: AllocateRequest,
    admin: CallerIdentity = Depends(require_admin),
    engine: AllocationEngine = Depends(get_allocation_engine),
) -> AllocateResponse:
    """Reserve systems for a pending request and approve it atomically."""
    try:
        result = engine.allocate(admin, request_id, payload.system_ids, payload.time_slot)
        return AllocateResponse(
            request=RequestResponse.from_domain(result.request),
            systems=[SystemResponse.from_domain(system) for system in result.systems],
        )
    except LabReservationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected allocation failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to allocate systems",
        ) from exc


@router.post(
    "/requests/{request_id}/approve",
    response_model=RequestResponse,
    status_code=status.HTTP_200_OK,
)
async def approve(
    request_id: str,
    admin: CallerIdentity = Depends(require_admin),
    engine: AllocationEngine = Depends(get_allocation_engine),
) -> RequestResponse:
    try:
        return RequestResponse.from_domain(engine.approve_without_allocation(admin, request_id))
    except LabReservationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected approval failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to approve request",
        ) from exc


@router.post(
    "/requests/{request_id}/reject",
    response_model=RequestResponse,
    status_code=status.HTTP_200_OK,
)
async def reject(
    request_id: str,
    admin: CallerIdentity = Depends(require_admin),
    engine: AllocationEngine = Depends(get_allocation_engine),
) -> RequestResponse:
    try:
        return RequestResponse.from_domain(engine.reject(admin, request_id))
    except LabReservationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected rejection failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to reject request",
        ) from exc


@router.post(
    "/systems/{system_id}/maintenance",
    response_model=SystemResponse,
    status_code=status.HTTP_200_OK,
)
async def toggle_maintenance(
    system_id: int,
    payload: MaintenanceRequest,
    admin: CallerIdentity = Depends(require_admin),
    engine: AllocationEngine = Depends(get_allocation_engine),
) -> SystemResponse:
    try:
        system = engine.set_maintenance(admin, system_id, payload.in_maintenance)
        return SystemResponse.from_domain(system)
    except LabReservationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected maintenance toggle failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to toggle maintenance",
        ) from exc


@router.post(
    "/systems/{system_id}/occupy",
    response_model=SystemResponse,
    status_code=status.HTTP_200_OK,
)
async def occupy(
    system_id: int,
    admin: CallerIdentity = Depends(require_admin),
    engine: AllocationEngine = Depends(get_allocation_engine),
) -> SystemResponse:
    try:
        return SystemResponse.from_domain(engine.mark_occupied(admin, system_id))
    except LabReservationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected check-in failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to mark system occupied",
        ) from exc


@router.post(
    "/systems/{system_id}/release",
    response_model=SystemResponse,
    status_code=status.HTTP_200_OK,
)
async def release(
    system_id: int,
    admin: CallerIdentity = Depends(require_admin),
    engine: AllocationEngine = Depends(get_allocation_engine),
) -> SystemResponse:
    try:
        return SystemResponse.from_domain(engine.release_system(admin, system_id))
    except LabReservationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected release failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to release system",
        ) from exc
