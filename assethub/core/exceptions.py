"""Upload coordinator error taxonomy.

Every error carries a ``message`` that is safe to show to the end user.
"""


class UploadError(Exception):
    """Base class for upload coordinator errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class UploadValidationError(UploadError):
    """Malformed file name, mismatched MIME type or unacceptable size."""


class QuotaExceededError(UploadError):
    """Tenant asset-count, storage or file-size limit would be exceeded."""

    def __init__(self, reason: str, remaining: dict | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.remaining = remaining or {}


class SessionNotFoundError(UploadError):
    """Upload session is absent, expired or owned by another tenant."""

    def __init__(self, session_id: str) -> None:
        super().__init__("Upload session not found or expired")
        self.session_id = session_id


class ChunkIndexOutOfRangeError(UploadError):
    """Chunk index outside ``[0, total_chunks)``."""

    def __init__(self, chunk_index: int, total_chunks: int) -> None:
        super().__init__(
            f"Invalid chunk index {chunk_index}. Expected 0-{total_chunks - 1}"
        )
        self.chunk_index = chunk_index
        self.total_chunks = total_chunks


class MergeFailureError(UploadError):
    """Background merge of chunk objects failed after finalization."""
