"""Pydantic schemas for API request/response validation."""

from assethub.schemas.upload import (
    CancelResult,
    ChunkConfirmation,
    ChunkUploadUrl,
    ConfirmChunkRequest,
    InitializeUploadRequest,
    InitializeUploadResponse,
    UploadProgress,
    UploadSession,
    UploadState,
)
from assethub.schemas.usage import (
    QuotaDecision,
    RemainingQuota,
    UsageHistoryEntry,
    UsageLimits,
    UsageSnapshot,
    UsageSummary,
)

__all__ = [
    "CancelResult",
    "ChunkConfirmation",
    "ChunkUploadUrl",
    "ConfirmChunkRequest",
    "InitializeUploadRequest",
    "InitializeUploadResponse",
    "UploadProgress",
    "UploadSession",
    "UploadState",
    "QuotaDecision",
    "RemainingQuota",
    "UsageHistoryEntry",
    "UsageLimits",
    "UsageSnapshot",
    "UsageSummary",
]
