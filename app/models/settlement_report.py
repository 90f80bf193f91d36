"""Settlement report models — the immutable weekly ledger entries."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base
from app.models.transaction import TransactionKind


class SettlementReport(Base):
    """Accounting statement for one site and period.

    Written once by the report writer and read-only afterwards.  The money
    columns are stored at currency precision and satisfy:

        net_amount = gross_amount - refunds_amount - chargebacks_amount
        merchant_payout = net_amount - adjustments_total - total_fees - reserve_deducted

    ``total_fees`` already has ``processing_fee_credit`` subtracted.  Both
    adjustment columns stay 0 on weekly reports.
    """

    __tablename__ = "settlement_reports"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )
    report_number: Mapped[str] = mapped_column(
        String(40),
        unique=True,
        nullable=False,
        index=True,
    )
    site_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    site_name: Mapped[Optional[str]] = mapped_column(
        String(255),
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="pending",
        comment="pending | paid",
    )
    period_start: Mapped[date] = mapped_column(
        Date,
        nullable=False,
    )
    period_end: Mapped[date] = mapped_column(
        Date,
        nullable=False,
    )

    # -- Counts --
    total_transactions: Mapped[int] = mapped_column(Integer, default=0)
    sale_count: Mapped[int] = mapped_column(Integer, default=0)
    refund_count: Mapped[int] = mapped_column(Integer, default=0)
    chargeback_count: Mapped[int] = mapped_column(Integer, default=0)

    # -- Totals --
    gross_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    refunds_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    chargebacks_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    net_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)

    # -- Adjustments carried in from earlier reports --
    adjustments_total: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=Decimal("0")
    )
    adjustments_count: Mapped[int] = mapped_column(Integer, default=0)

    # -- Itemized fees --
    processing_fee_percent: Mapped[Decimal] = mapped_column(Numeric(7, 4))
    processing_fee_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2))
    transaction_fee_per: Mapped[Decimal] = mapped_column(Numeric(15, 4))
    transaction_fees_total: Mapped[Decimal] = mapped_column(Numeric(15, 2))
    refund_fee_per: Mapped[Decimal] = mapped_column(Numeric(15, 4))
    refund_fees_total: Mapped[Decimal] = mapped_column(Numeric(15, 2))
    chargeback_fee_per: Mapped[Decimal] = mapped_column(Numeric(15, 4))
    chargeback_fees_total: Mapped[Decimal] = mapped_column(Numeric(15, 2))
    processing_fee_credit: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=Decimal("0")
    )
    total_fees: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)

    # -- Reserve + payout --
    reserve_deducted: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    reserve_balance: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    merchant_payout: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)

    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_by: Mapped[Optional[str]] = mapped_column(String(100))
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=func.now(),
    )

    # -- Relationships --
    items: Mapped[list[SettlementReportItem]] = relationship(
        "SettlementReportItem",
        back_populates="report",
        cascade="all, delete-orphan",
        order_by="SettlementReportItem.occurred_at",
        lazy="select",
    )

    __table_args__ = (
        Index("ix_settlement_reports_site_period", "site_id", "period_start"),
    )

    def __repr__(self) -> str:
        return (
            f"<SettlementReport(report_number={self.report_number!r}, "
            f"site_id={self.site_id!r}, merchant_payout={self.merchant_payout})>"
        )


class SettlementReportItem(Base):
    """Snapshot of one consumed transaction.

    Denormalized so the report stays self-contained if the source row is
    later altered by a resync.
    """

    __tablename__ = "settlement_report_items"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )
    settlement_report_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("settlement_reports.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    session_id: Mapped[str] = mapped_column(String(120), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    kind: Mapped[TransactionKind] = mapped_column(
        Enum(
            TransactionKind,
            name="transaction_kind",
            values_callable=lambda kinds: [k.value for k in kinds],
        ),
        nullable=False,
    )
    processor: Mapped[Optional[str]] = mapped_column(String(20))

    report: Mapped[SettlementReport] = relationship(
        "SettlementReport",
        back_populates="items",
    )

    def __repr__(self) -> str:
        return (
            f"<SettlementReportItem(session_id={self.session_id!r}, "
            f"kind={self.kind!r}, amount={self.amount})>"
        )
