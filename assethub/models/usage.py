"""Monthly usage metrics model."""

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, DateTime, ForeignKey, String, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from assethub.database import Base

if TYPE_CHECKING:
    from assethub.models.tenant import Tenant


class UsageMetric(Base):
    """Usage counters per tenant per calendar month."""

    __tablename__ = "usage_metrics"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    tenant_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    month: Mapped[str] = mapped_column(String(7), nullable=False)  # YYYY-MM

    # Totals as of the last recomputation
    total_assets: Mapped[int] = mapped_column(default=0)
    total_storage_bytes: Mapped[int] = mapped_column(BigInteger, default=0)
    total_users: Mapped[int] = mapped_column(default=0)
    total_asset_groups: Mapped[int] = mapped_column(default=0)

    # Monthly counters
    monthly_uploads: Mapped[int] = mapped_column(default=0)
    monthly_downloads: Mapped[int] = mapped_column(default=0)
    monthly_active_users: Mapped[int] = mapped_column(default=0)

    calculated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    # Relationships
    tenant: Mapped["Tenant"] = relationship("Tenant", back_populates="usage_metrics")

    __table_args__ = (
        UniqueConstraint("tenant_id", "month", name="uq_usage_metrics_tenant_month"),
    )
