"""SQLAlchemy models package."""

from assethub.models.tenant import Tenant, Tier
from assethub.models.user import User
from assethub.models.asset import Asset, AssetStatus
from assethub.models.usage import UsageMetric

__all__ = [
    "Tier",
    "Tenant",
    "User",
    "Asset",
    "AssetStatus",
    "UsageMetric",
]
