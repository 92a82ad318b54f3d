"""HTTP controller layer for requester-owned reservation requests."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from labreserve.controllers.dependencies import (
    get_allocation_engine,
    get_caller_identity,
    get_view_projector,
    to_http_exception,
)
from labreserve.controllers.schemas import RequestResponse
from labreserve.domain.errors import LabReservationError
from labreserve.domain.models import CallerIdentity
from labreserve.services.allocation_service import AllocationEngine
from labreserve.services.dashboard_service import ViewProjector
from labreserve.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["requests"])


class SubmitRequest(BaseModel):
    """Input DTO; the engine validates purpose, date, and window."""

    purpose: str
    date: str
    start: str
    end: str
    expected_count: Optional[int] = None


class RequesterSummaryResponse(BaseModel):
    total: int = Field(ge=0)
    pending: int = Field(ge=0)
    approved: int = Field(ge=0)
    rejected: int = Field(ge=0)
    cancelled: int = Field(ge=0)


class MyRequestsResponse(BaseModel):
    summary: RequesterSummaryResponse
    requests: list[RequestResponse]


@router.post(
    "/requests",
    response_model=RequestResponse,
    status_code=status.HTTP_201_CREATED,
)
async def submit_request(
    payload: SubmitRequest,
    identity: CallerIdentity = Depends(get_caller_identity),
    engine: AllocationEngine = Depends(get_allocation_engine),
) -> RequestResponse:
    try:
        created = engine.submit_request(
            identity,
            purpose=payload.purpose,
            date=payload.date,
            start=payload.start,
            end=payload.end,
            expected_count=payload.expected_count,
        )
        return RequestResponse.from_domain(created)
    except LabReservationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected request submission failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to submit request",
        ) from exc


@router.get(
    "/requests/mine",
    response_model=MyRequestsResponse,
    status_code=status.HTTP_200_OK,
)
async def my_requests(
    identity: CallerIdentity = Depends(get_caller_identity),
    projector: ViewProjector = Depends(get_view_projector),
) -> MyRequestsResponse:
    try:
        snapshot = projector.snapshot()
        return MyRequestsResponse(
            summary=RequesterSummaryResponse(**snapshot.requester_summary(identity.uid)),
            requests=[
                RequestResponse.from_domain(request)
                for request in snapshot.my_requests(identity.uid)
            ],
        )
    except LabReservationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected request listing failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load requests",
        ) from exc


@router.post(
    "/requests/{request_id}/cancel",
    response_model=RequestResponse,
    status_code=status.HTTP_200_OK,
)
async def cancel_request(
    request_id: str,
    identity: CallerIdentity = Depends(get_caller_identity),
    engine: AllocationEngine = Depends(get_allocation_engine),
) -> RequestResponse:
    try:
        return RequestResponse.from_domain(engine.cancel(identity, request_id))
    except LabReservationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected cancellation failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to cancel request",
        ) from exc
