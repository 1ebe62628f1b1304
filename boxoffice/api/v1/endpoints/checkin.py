"""
Venue entry endpoints
"""

from dataclasses import asdict
from typing import Any
from fastapi import APIRouter, Depends, Request

from boxoffice.api.v1.deps import client_ip, get_container, require_staff
from boxoffice.core.container import ServiceContainer
from boxoffice.schemas.checkin import (
    BulkValidateRequest,
    BulkValidationResponse,
    CheckInRequest,
    CheckInResponse,
    CredentialRequest,
    ValidationResponse
)

router = APIRouter()


@router.post("/validate", response_model=ValidationResponse)
async def validate_credential(
    credential_in: CredentialRequest,
    request: Request,
    container: ServiceContainer = Depends(get_container)
) -> Any:
    """
    Read-only credential check; never changes ticket state
    """
    return await container.checkin.validate(credential_in.credential, client_ip(request))


@router.post("", response_model=CheckInResponse)
async def check_in(
    checkin_in: CheckInRequest,
    request: Request,
    staff: str = Depends(require_staff),
    container: ServiceContainer = Depends(get_container)
) -> Any:
    return await container.checkin.check_in(checkin_in.ticket_id, checked_in_by=staff, client_ip=client_ip(request))


@router.post("/scan", response_model=CheckInResponse)
async def scan(
    credential_in: CredentialRequest,
    request: Request,
    staff: str = Depends(require_staff),
    container: ServiceContainer = Depends(get_container)
) -> Any:
    """
    Validate a scanned credential and admit the holder in one call
    """
    return await container.checkin.validate_and_check_in(
        credential_in.credential,
        checked_in_by=staff,
        client_ip=client_ip(request)
    )


@router.post("/bulk-validate", response_model=BulkValidationResponse)
async def bulk_validate(
    bulk_in: BulkValidateRequest,
    request: Request,
    staff: str = Depends(require_staff),
    container: ServiceContainer = Depends(get_container)
) -> Any:
    report = await container.checkin.bulk_validate(bulk_in.credentials, client_ip(request), actor=staff)
    return BulkValidationResponse(results=[asdict(result) for result in report.results], summary=report.summary)
