"""
Hold endpoints
"""

from typing import Any, List, Optional
from fastapi import APIRouter, Depends, Query, status
from uuid import UUID

from boxoffice.api.v1.deps import get_container
from boxoffice.core.container import ServiceContainer
from boxoffice.schemas.holds import HoldCreate, HoldExtend, HoldResponse, SessionReleaseResponse

router = APIRouter()


@router.post("", response_model=HoldResponse, status_code=status.HTTP_201_CREATED)
async def place_hold(
    hold_in: HoldCreate,
    container: ServiceContainer = Depends(get_container)
) -> Any:
    """
    Hold every requested unit for the session, or none of them
    """
    return await container.holds.place_hold(
        hold_in.unit_ids,
        hold_in.session_id,
        duration_minutes=hold_in.duration_minutes
    )


@router.get("", response_model=List[HoldResponse])
async def list_session_holds(
    session_id: str = Query(..., min_length=1, max_length=255),
    container: ServiceContainer = Depends(get_container)
) -> Any:
    """
    Active holds for a checkout session
    """
    return await container.holds.list_session_holds(session_id)


@router.delete("", response_model=SessionReleaseResponse)
async def release_session_holds(
    session_id: str = Query(..., min_length=1, max_length=255),
    container: ServiceContainer = Depends(get_container)
) -> Any:
    released = await container.holds.release_session_holds(session_id)
    return SessionReleaseResponse(session_id=session_id, released=released)


@router.get("/{hold_id}", response_model=HoldResponse)
async def get_hold(
    hold_id: UUID,
    session_id: Optional[str] = None,
    container: ServiceContainer = Depends(get_container)
) -> Any:
    return await container.holds.get_hold(hold_id, session_id)


@router.post("/{hold_id}/extend", response_model=HoldResponse)
async def extend_hold(
    hold_id: UUID,
    extend_in: HoldExtend,
    container: ServiceContainer = Depends(get_container)
) -> Any:
    return await container.holds.extend_hold(
        hold_id,
        extend_in.additional_minutes,
        session_id=extend_in.session_id
    )


@router.delete("/{hold_id}", response_model=HoldResponse)
async def release_hold(
    hold_id: UUID,
    session_id: Optional[str] = None,
    container: ServiceContainer = Depends(get_container)
) -> Any:
    return await container.holds.release_hold(hold_id, session_id)
