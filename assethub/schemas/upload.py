"""Chunked upload schemas."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field


class UploadState(str, Enum):
    """Live states of an upload session.

    Completed, cancelled and expired sessions no longer exist in the store.
    """

    INITIALIZED = "initialized"
    UPLOADING = "uploading"
    FINALIZING = "finalizing"


class UploadSession(BaseModel):
    """Server-side record of one resumable upload attempt."""

    session_id: str
    tenant_id: UUID
    user_id: UUID
    file_name: str
    declared_size: int
    mime_type: str
    storage_key: str
    chunk_size: int
    total_chunks: int
    created_at: datetime
    expires_at: datetime
    metadata: dict = Field(default_factory=dict)

    # Stored separately from the JSON record
    uploaded_chunks: list[int] = Field(default_factory=list, exclude=True)
    state: UploadState = Field(default=UploadState.INITIALIZED, exclude=True)

    @property
    def is_complete(self) -> bool:
        return len(self.uploaded_chunks) == self.total_chunks

    def chunk_key(self, chunk_index: int) -> str:
        return chunk_key(self.storage_key, chunk_index)

    def all_chunk_keys(self) -> list[str]:
        return [self.chunk_key(i) for i in range(self.total_chunks)]

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


def chunk_key(storage_key: str, chunk_index: int) -> str:
    """Object key of one chunk of ``storage_key``."""
    return f"{storage_key}.chunk.{chunk_index}"


# --- Requests / responses ---


class InitializeUploadRequest(BaseModel):
    file_name: str = Field(..., min_length=1)
    file_size: int
    mime_type: str
    metadata: dict | None = None


class InitializeUploadResponse(BaseModel):
    session_id: str
    total_chunks: int
    chunk_size: int
    expires_at: datetime


class ChunkUploadUrl(BaseModel):
    """Pre-signed URL for a chunk, or no URL if the chunk is already stored."""

    chunk_index: int
    upload_url: str | None = None
    expires_in: int | None = None
    already_uploaded: bool = False
    is_complete: bool = False


class ConfirmChunkRequest(BaseModel):
    etag: str | None = None


class ChunkConfirmation(BaseModel):
    chunk_index: int
    uploaded_chunks: int
    total_chunks: int
    is_complete: bool
    asset_id: UUID | None = None


class UploadProgress(BaseModel):
    session_id: str
    uploaded_chunks: int
    total_chunks: int
    percent_complete: int
    is_complete: bool
    state: UploadState


class CancelResult(BaseModel):
    """Outcome of a cancellation; ``found`` is reported for observability."""

    session_id: str
    found: bool
    cancelled: bool
    deleted_chunks: int = 0
    failed_chunks: list[str] = Field(default_factory=list)


class BulkUploadFile(BaseModel):
    name: str
    size: int
    mime_type: str


class BulkUploadRequest(BaseModel):
    files: list[BulkUploadFile]


class BulkUploadValidation(BaseModel):
    """Pre-flight verdict on a multi-file upload; counts cover valid files only."""

    is_valid: bool
    errors: list[str] = Field(default_factory=list)
    valid_files: int = 0
    total_size: int = 0
