"""Quota validation for uploads and user creation."""

import asyncio
import logging
from typing import Protocol
from uuid import UUID

from assethub.core.validation import validate_bulk_upload
from assethub.schemas.upload import BulkUploadFile, BulkUploadValidation
from assethub.schemas.usage import (
    MIB,
    QuotaDecision,
    RemainingQuota,
    UsageLimits,
    UsageSnapshot,
)

logger = logging.getLogger(__name__)

UNABLE_TO_VALIDATE_UPLOAD = "Unable to validate upload limits"
UNABLE_TO_VALIDATE_USERS = "Unable to validate user limits"


class UsageSource(Protocol):
    """What the validator needs from the usage tracker."""

    async def get_current_usage(self, tenant_id: UUID) -> UsageSnapshot: ...

    async def get_limits(self, tenant_id: UUID) -> UsageLimits: ...


def remaining_quota(usage: UsageSnapshot, limits: UsageLimits) -> RemainingQuota:
    return RemainingQuota(
        assets=limits.max_assets - usage.total_assets,
        storage_bytes=limits.max_storage_bytes - usage.total_storage_bytes,
        users=limits.max_users - usage.total_users,
    )


def evaluate_upload(
    usage: UsageSnapshot,
    limits: UsageLimits,
    candidate_bytes: int,
) -> QuotaDecision:
    """Decide whether an upload of ``candidate_bytes`` is admissible.

    Checks run in a fixed order (asset count, storage, file size) so the
    reported reason is deterministic. Raw byte comparisons only.
    """
    remaining = remaining_quota(usage, limits)

    if usage.total_assets >= limits.max_assets:
        return QuotaDecision(
            allowed=False,
            reason=f"Asset limit reached ({limits.max_assets} assets)",
            usage=usage,
            limits=limits,
            remaining=remaining,
        )

    if usage.total_storage_bytes + candidate_bytes > limits.max_storage_bytes:
        remaining_mb = max(0, remaining.storage_bytes) / MIB
        return QuotaDecision(
            allowed=False,
            reason=f"Storage quota exceeded. Remaining: {remaining_mb:.2f}MB",
            usage=usage,
            limits=limits,
            remaining=remaining,
        )

    if candidate_bytes > limits.max_file_size_bytes:
        return QuotaDecision(
            allowed=False,
            reason=f"File size exceeds limit ({limits.max_file_size_mb}MB)",
            usage=usage,
            limits=limits,
            remaining=remaining,
        )

    return QuotaDecision(allowed=True, usage=usage, limits=limits, remaining=remaining)


class QuotaValidator:
    """Admission checks against a tenant's usage snapshot and limits.

    Side-effect free: an admitted upload is only counted when it completes.
    Any failure to load usage or limits denies the request.
    """

    def __init__(self, usage: UsageSource) -> None:
        self.usage = usage

    async def _load(self, tenant_id: UUID) -> tuple[UsageSnapshot, UsageLimits]:
        usage, limits = await asyncio.gather(
            self.usage.get_current_usage(tenant_id),
            self.usage.get_limits(tenant_id),
        )
        return usage, limits

    async def validate(self, tenant_id: UUID, candidate_bytes: int) -> QuotaDecision:
        """Check whether ``tenant_id`` may upload ``candidate_bytes`` more."""
        try:
            usage, limits = await self._load(tenant_id)
        except Exception:
            logger.exception(f"Failed to load usage or limits for tenant {tenant_id}")
            return QuotaDecision(allowed=False, reason=UNABLE_TO_VALIDATE_UPLOAD)

        decision = evaluate_upload(usage, limits, candidate_bytes)
        if not decision.allowed:
            logger.info(f"Upload of {candidate_bytes} bytes denied for tenant {tenant_id}: {decision.reason}")
        return decision

    async def validate_user_creation(self, tenant_id: UUID) -> QuotaDecision:
        """Check whether ``tenant_id`` may add another user."""
        try:
            usage, limits = await self._load(tenant_id)
        except Exception:
            logger.exception(f"Failed to load usage or limits for tenant {tenant_id}")
            return QuotaDecision(allowed=False, reason=UNABLE_TO_VALIDATE_USERS)

        remaining = remaining_quota(usage, limits)
        if usage.total_users >= limits.max_users:
            return QuotaDecision(
                allowed=False,
                reason=f"User limit reached ({limits.max_users} users)",
                usage=usage,
                limits=limits,
                remaining=remaining,
            )
        return QuotaDecision(allowed=True, usage=usage, limits=limits, remaining=remaining)

    async def validate_bulk(
        self, tenant_id: UUID, files: list[BulkUploadFile]
    ) -> BulkUploadValidation:
        """Check a multi-file upload per file, then in aggregate against quota."""
        try:
            usage, limits = await self._load(tenant_id)
        except Exception:
            logger.exception(f"Failed to load usage or limits for tenant {tenant_id}")
            return BulkUploadValidation(is_valid=False, errors=[UNABLE_TO_VALIDATE_UPLOAD])

        result = validate_bulk_upload(files, limits)
        remaining = remaining_quota(usage, limits)

        if result.valid_files > remaining.assets:
            result.errors.append(f"Asset limit reached ({limits.max_assets} assets)")
        if result.total_size > remaining.storage_bytes:
            remaining_mb = max(0, remaining.storage_bytes) / MIB
            result.errors.append(f"Storage quota exceeded. Remaining: {remaining_mb:.2f}MB")

        result.is_valid = not result.errors
        if not result.is_valid:
            logger.info(f"Bulk upload of {len(files)} files denied for tenant {tenant_id}")
        return result
