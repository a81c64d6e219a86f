"""Usage and quota schemas."""

from pydantic import BaseModel, Field

GIB = 1024 * 1024 * 1024
MIB = 1024 * 1024


class UsageSnapshot(BaseModel):
    """Point-in-time resource consumption for a tenant."""

    total_assets: int = 0
    total_storage_bytes: int = 0
    total_users: int = 0
    total_asset_groups: int = 0
    monthly_uploads: int = 0
    monthly_downloads: int = 0
    monthly_active_users: int = 0


class UsageLimits(BaseModel):
    """Per-tenant ceilings, from the tier with overrides applied."""

    max_users: int
    max_assets: int
    max_storage_gb: int
    max_file_size_mb: int
    max_asset_groups: int
    max_files_per_upload: int = 10
    # MIME types or "type/*" wildcards; empty allows every supported type
    allowed_file_types: list[str] = Field(default_factory=list)

    @property
    def max_storage_bytes(self) -> int:
        return self.max_storage_gb * GIB

    @property
    def max_file_size_bytes(self) -> int:
        return self.max_file_size_mb * MIB


class RemainingQuota(BaseModel):
    """Headroom left under each limit (may be negative when over quota)."""

    assets: int
    storage_bytes: int
    users: int


class QuotaDecision(BaseModel):
    """Outcome of an admission check."""

    allowed: bool
    reason: str | None = None
    usage: UsageSnapshot | None = None
    limits: UsageLimits | None = None
    remaining: RemainingQuota | None = None


class UsagePercentages(BaseModel):
    assets: int
    storage: int
    users: int


class UsageTrend(BaseModel):
    uploads_this_month: int
    downloads_this_month: int
    active_users_this_month: int


class UsageSummary(BaseModel):
    """Current usage vs limits, for display."""

    current: UsageSnapshot
    limits: UsageLimits
    percentages: UsagePercentages
    remaining: RemainingQuota
    trend: UsageTrend


class UsageHistoryEntry(UsageSnapshot):
    """Stored counters for one calendar month."""

    month: str
