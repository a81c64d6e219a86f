"""FastAPI dependencies."""

from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header, HTTPException, Request, status

from assethub.services.quota import QuotaValidator
from assethub.services.uploads import UploadSessionManager
from assethub.services.usage import UsageService


def _parse_uuid(value: str | None, header: str) -> UUID:
    if not value:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{header} header is required",
        )
    try:
        return UUID(value)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {header} format",
        )


async def get_tenant_id(
    x_tenant_id: Annotated[str | None, Header()] = None,
) -> UUID:
    """Extract tenant ID from header."""
    return _parse_uuid(x_tenant_id, "X-Tenant-ID")


async def get_user_id(
    x_user_id: Annotated[str | None, Header()] = None,
) -> UUID:
    """Extract user ID from header."""
    return _parse_uuid(x_user_id, "X-User-ID")


def get_upload_manager(request: Request) -> UploadSessionManager:
    """Upload manager built at startup."""
    return request.app.state.upload_manager


def get_usage_service(request: Request) -> UsageService:
    return request.app.state.usage_service


def get_quota_validator(request: Request) -> QuotaValidator:
    return request.app.state.upload_manager.quota


# Type aliases for dependency injection
TenantId = Annotated[UUID, Depends(get_tenant_id)]
UserId = Annotated[UUID, Depends(get_user_id)]
UploadManager = Annotated[UploadSessionManager, Depends(get_upload_manager)]
Usage = Annotated[UsageService, Depends(get_usage_service)]
Quota = Annotated[QuotaValidator, Depends(get_quota_validator)]
