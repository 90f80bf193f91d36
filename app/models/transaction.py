"""Settled transaction model — rows pulled in by the provider sync jobs."""

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import DateTime, Enum, ForeignKey, Index, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base


class TransactionKind(str, enum.Enum):
    """Classification of a single settled event.

    Refunds and chargebacks are separate positive records layered on top
    of the original sale, never negative adjustments of it.
    """

    SALE = "sale"
    REFUND = "refund"
    CHARGEBACK = "chargeback"


class Transaction(Base):
    """One settled event for a merchant site.

    Provider identifiers are not unique across import batches, so a row is
    addressed by the compound key (session_id, occurred_at).  Once
    ``settlement_report_id`` is set the row belongs to that report forever.
    """

    __tablename__ = "transactions"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )
    session_id: Mapped[str] = mapped_column(
        String(120),
        nullable=False,
    )
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(
        Numeric(15, 2),
        nullable=False,
    )
    kind: Mapped[TransactionKind] = mapped_column(
        Enum(
            TransactionKind,
            name="transaction_kind",
            values_callable=lambda kinds: [k.value for k in kinds],
        ),
        nullable=False,
        default=TransactionKind.SALE,
    )
    site_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="complete",
        comment="complete | pending | failed; only complete rows are settled",
    )
    processor: Mapped[Optional[str]] = mapped_column(
        String(20),
        comment="stripe | airwallex | cpt",
    )
    currency: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
        default="CAD",
    )
    settlement_report_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("settlement_reports.id"),
        nullable=True,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=func.now(),
    )

    settlement_report: Mapped[Optional[SettlementReport]] = relationship(
        "SettlementReport",
        lazy="select",
    )

    __table_args__ = (
        Index("ix_transactions_site_occurred", "site_id", "occurred_at"),
        Index("ix_transactions_claim_key", "session_id", "occurred_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<Transaction(session_id={self.session_id!r}, kind={self.kind!r}, "
            f"amount={self.amount}, site_id={self.site_id!r})>"
        )
