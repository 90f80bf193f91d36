"""Per-site pricing configuration (fee schedule + reserve program)."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, DateTime, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base


class PricingConfig(Base):
    """Fee schedule for one merchant site.

    ``reserve_collected`` is a running total advanced by the report writer
    and never exceeds ``reserve_amount``.
    """

    __tablename__ = "site_pricing"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )
    site_id: Mapped[str] = mapped_column(
        String(100),
        unique=True,
        nullable=False,
        index=True,
    )
    site_name: Mapped[Optional[str]] = mapped_column(
        String(255),
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
    )
    percentage_fee: Mapped[Decimal] = mapped_column(
        Numeric(7, 4),
        nullable=False,
        default=Decimal("0"),
        comment="2.9 means 2.9% of net",
    )
    per_transaction_fee: Mapped[Decimal] = mapped_column(
        Numeric(15, 4),
        nullable=False,
        default=Decimal("0"),
    )
    refund_fee: Mapped[Decimal] = mapped_column(
        Numeric(15, 4),
        nullable=False,
        default=Decimal("0"),
    )
    chargeback_fee: Mapped[Decimal] = mapped_column(
        Numeric(15, 4),
        nullable=False,
        default=Decimal("0"),
    )
    reserve_amount: Mapped[Decimal] = mapped_column(
        Numeric(15, 2),
        nullable=False,
        default=Decimal("0"),
    )
    reserve_collected: Mapped[Decimal] = mapped_column(
        Numeric(15, 2),
        nullable=False,
        default=Decimal("0"),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=func.now(),
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        onupdate=func.now(),
    )

    __table_args__ = (
        CheckConstraint("reserve_collected >= 0", name="ck_reserve_collected_nonneg"),
    )

    def __repr__(self) -> str:
        return (
            f"<PricingConfig(site_id={self.site_id!r}, "
            f"percentage_fee={self.percentage_fee}, "
            f"reserve={self.reserve_collected}/{self.reserve_amount})>"
        )
