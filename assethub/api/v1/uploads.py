"""Chunked upload endpoints."""

from fastapi import APIRouter, HTTPException, status

from assethub.core.exceptions import (
    ChunkIndexOutOfRangeError,
    QuotaExceededError,
    SessionNotFoundError,
    UploadValidationError,
)
from assethub.deps import Quota, TenantId, UploadManager, UserId
from assethub.schemas.upload import (
    BulkUploadRequest,
    BulkUploadValidation,
    CancelResult,
    ChunkConfirmation,
    ChunkUploadUrl,
    ConfirmChunkRequest,
    InitializeUploadRequest,
    InitializeUploadResponse,
    UploadProgress,
)

router = APIRouter()


def _not_found(e: SessionNotFoundError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)


def _bad_index(e: ChunkIndexOutOfRangeError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)


@router.post("", response_model=InitializeUploadResponse, status_code=status.HTTP_201_CREATED)
async def initialize_upload(
    body: InitializeUploadRequest,
    tenant_id: TenantId,
    user_id: UserId,
    manager: UploadManager,
) -> InitializeUploadResponse:
    """Open a chunked upload session."""
    try:
        return await manager.initialize_upload(
            tenant_id=tenant_id,
            user_id=user_id,
            file_name=body.file_name,
            declared_size=body.file_size,
            mime_type=body.mime_type,
            metadata=body.metadata,
        )
    except UploadValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=e.message,
        )
    except QuotaExceededError as e:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"message": e.reason, "remaining": e.remaining},
        )


@router.post("/validate", response_model=BulkUploadValidation)
async def validate_bulk_upload(
    body: BulkUploadRequest,
    tenant_id: TenantId,
    quota: Quota,
) -> BulkUploadValidation:
    """Pre-flight check of a multi-file upload against the tenant's limits."""
    return await quota.validate_bulk(tenant_id, body.files)


@router.get("/{session_id}/chunks/{chunk_index}/url", response_model=ChunkUploadUrl)
async def get_chunk_upload_url(
    session_id: str,
    chunk_index: int,
    tenant_id: TenantId,
    manager: UploadManager,
) -> ChunkUploadUrl:
    """Pre-signed URL for uploading one chunk."""
    try:
        return await manager.get_chunk_upload_url(session_id, chunk_index, tenant_id=tenant_id)
    except SessionNotFoundError as e:
        raise _not_found(e)
    except ChunkIndexOutOfRangeError as e:
        raise _bad_index(e)


@router.post("/{session_id}/chunks/{chunk_index}/confirm", response_model=ChunkConfirmation)
async def confirm_chunk_upload(
    session_id: str,
    chunk_index: int,
    body: ConfirmChunkRequest,
    tenant_id: TenantId,
    manager: UploadManager,
) -> ChunkConfirmation:
    """Confirm a chunk was stored; the last one creates the asset."""
    try:
        return await manager.confirm_chunk_upload(
            session_id,
            chunk_index,
            etag=body.etag,
            tenant_id=tenant_id,
        )
    except SessionNotFoundError as e:
        raise _not_found(e)
    except ChunkIndexOutOfRangeError as e:
        raise _bad_index(e)


@router.get("/{session_id}/progress", response_model=UploadProgress)
async def get_upload_progress(
    session_id: str,
    tenant_id: TenantId,
    manager: UploadManager,
) -> UploadProgress:
    """Progress of an upload session."""
    progress = await manager.get_upload_progress(session_id, tenant_id=tenant_id)
    if progress is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Upload session not found or expired",
        )
    return progress


@router.delete("/{session_id}", response_model=CancelResult)
async def cancel_upload(
    session_id: str,
    tenant_id: TenantId,
    manager: UploadManager,
) -> CancelResult:
    """Cancel an upload session. Succeeds even if nothing was left to cancel."""
    return await manager.cancel_upload(session_id, tenant_id=tenant_id)
