"""Usage endpoints."""

from fastapi import APIRouter, HTTPException, Query, status

from assethub.deps import Quota, TenantId, Usage
from assethub.schemas.usage import QuotaDecision, UsageHistoryEntry, UsageSummary

router = APIRouter()


@router.get("", response_model=UsageSummary)
async def get_current_usage(
    tenant_id: TenantId,
    usage: Usage,
) -> UsageSummary:
    """Get current usage summary with limits."""
    try:
        return await usage.get_usage_summary(tenant_id)
    except LookupError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(e),
        )


@router.get("/history", response_model=list[UsageHistoryEntry])
async def get_usage_history(
    tenant_id: TenantId,
    usage: Usage,
    months: int = Query(12, ge=1, le=60),
) -> list[UsageHistoryEntry]:
    """Get usage for past months, most recent first."""
    return await usage.get_usage_history(tenant_id, months)


@router.get("/quota", response_model=QuotaDecision)
async def check_upload_quota(
    tenant_id: TenantId,
    quota: Quota,
    size: int = Query(..., gt=0),
) -> QuotaDecision:
    """Check whether an upload of ``size`` bytes would be admitted."""
    return await quota.validate(tenant_id, size)


@router.get("/quota/users", response_model=QuotaDecision)
async def check_user_quota(
    tenant_id: TenantId,
    quota: Quota,
) -> QuotaDecision:
    """Check whether the tenant may add another user."""
    return await quota.validate_user_creation(tenant_id)
