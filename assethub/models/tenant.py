"""Tenant and tier models."""

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import DateTime, ForeignKey, String, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from assethub.database import Base

if TYPE_CHECKING:
    from assethub.models.asset import Asset
    from assethub.models.usage import UsageMetric
    from assethub.models.user import User


class Tier(Base):
    """Plan definition; ``limits`` holds the UsageLimits fields."""

    __tablename__ = "tiers"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    limits: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


class Tenant(Base):
    """Tenant represents a customer organization."""

    __tablename__ = "tenants"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    tier_id: Mapped[UUID | None] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("tiers.id", ondelete="SET NULL"),
        nullable=True,
    )
    # Partial UsageLimits; present keys win over the tier
    tier_overrides: Mapped[dict | None] = mapped_column(JSONB, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    # Relationships
    tier: Mapped["Tier | None"] = relationship("Tier")
    users: Mapped[list["User"]] = relationship(
        "User",
        back_populates="tenant",
        cascade="all, delete-orphan",
    )
    assets: Mapped[list["Asset"]] = relationship(
        "Asset",
        back_populates="tenant",
        cascade="all, delete-orphan",
    )
    usage_metrics: Mapped[list["UsageMetric"]] = relationship(
        "UsageMetric",
        back_populates="tenant",
        cascade="all, delete-orphan",
    )
