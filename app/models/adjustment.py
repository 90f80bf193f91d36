"""Settlement adjustment model — money clawed back after a report was issued."""

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import DateTime, Enum, ForeignKey, Index, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base


class AdjustmentReason(str, enum.Enum):
    REFUND = "refund"
    CHARGEBACK = "chargeback"


class AdjustmentStatus(str, enum.Enum):
    PENDING = "pending"
    APPLIED = "applied"


class SettlementAdjustment(Base):
    """A refund or chargeback against a transaction that was already settled.

    Recorded against the report that paid the transaction out, then carried
    as ``pending`` into the site's next manually created report, which
    deducts it from the payout and credits back the processing fee.
    """

    __tablename__ = "settlement_adjustments"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )
    site_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    reason: Mapped[AdjustmentReason] = mapped_column(
        Enum(
            AdjustmentReason,
            name="adjustment_reason",
            values_callable=lambda reasons: [r.value for r in reasons],
        ),
        nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(
        Numeric(15, 2),
        nullable=False,
    )
    original_session_id: Mapped[str] = mapped_column(
        String(120),
        nullable=False,
    )
    original_settlement_report_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("settlement_reports.id"),
        nullable=False,
        index=True,
    )
    status: Mapped[AdjustmentStatus] = mapped_column(
        Enum(
            AdjustmentStatus,
            name="adjustment_status",
            values_callable=lambda statuses: [s.value for s in statuses],
        ),
        nullable=False,
        default=AdjustmentStatus.PENDING,
    )
    applied_to_settlement_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("settlement_reports.id"),
        nullable=True,
        index=True,
    )
    applied_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
    )
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_by: Mapped[Optional[str]] = mapped_column(String(100))
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=func.now(),
    )

    __table_args__ = (
        Index("ix_settlement_adjustments_site_status", "site_id", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<SettlementAdjustment(site_id={self.site_id!r}, "
            f"reason={self.reason!r}, amount={self.amount}, status={self.status!r})>"
        )
