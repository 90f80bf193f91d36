"""Settlement storage — every read and write the settlement runner performs.

The store only ``flush()``es.  Commit and rollback belong to the caller so
that one site's report, items, claims and reserve update land as a single
database transaction.
"""

from __future__ import annotations

import secrets
import time
from datetime import datetime
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session, selectinload

from app.core.logging import get_logger
from app.models.adjustment import (
    AdjustmentReason,
    AdjustmentStatus,
    SettlementAdjustment,
)
from app.models.pricing import PricingConfig
from app.models.settlement_report import SettlementReport, SettlementReportItem
from app.models.transaction import Transaction, TransactionKind
from app.services.settlement.calculator import FeeCalculation
from app.services.settlement.errors import (
    AdjustmentError,
    AdjustmentsRequireConfirmationError,
    ClaimConflictError,
    ReportNotFoundError,
    ReportStatusError,
    ReserveInvariantError,
)
from app.services.settlement.period import SettlementPeriod

logger = get_logger(__name__)

SETTLED_STATUS = "complete"

REPORT_PENDING = "pending"
REPORT_PAID = "paid"

_BASE36 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


def _base36(value: int) -> str:
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits)) or "0"


def generate_report_number(epoch_ms: Optional[int] = None) -> str:
    """``SR-<base36 epoch millis>-<4 hex>``.

    The random suffix keeps numbers unique when several sites settle
    within the same millisecond.
    """
    if epoch_ms is None:
        epoch_ms = time.time_ns() // 1_000_000
    return f"SR-{_base36(epoch_ms)}-{secrets.token_hex(2).upper()}"


class SettlementStore:
    """Data access for transactions, pricing and settlement reports."""

    def __init__(self, db: Session) -> None:
        self.db = db

    # ── Reads ────────────────────────────────────────────────────────

    def active_site_ids(self) -> list[str]:
        """Every site with an active pricing config, in a stable order."""
        stmt = (
            select(PricingConfig.site_id)
            .where(PricingConfig.is_active.is_(True))
            .order_by(PricingConfig.site_id)
        )
        return list(self.db.scalars(stmt))

    def get_pricing(self, site_id: str) -> Optional[PricingConfig]:
        stmt = select(PricingConfig).where(PricingConfig.site_id == site_id)
        return self.db.scalars(stmt).first()

    def list_pricing(self) -> list[PricingConfig]:
        return list(self.db.scalars(select(PricingConfig).order_by(PricingConfig.site_id)))

    def fetch_unreported(
        self,
        site_id: str,
        period: SettlementPeriod,
    ) -> list[Transaction]:
        """Settled, unclaimed transactions of a site inside the period.

        Ordered by ``occurred_at`` so report items list deterministically.
        """
        stmt = (
            select(Transaction)
            .where(
                Transaction.site_id == site_id,
                Transaction.status == SETTLED_STATUS,
                Transaction.kind.in_(list(TransactionKind)),
                Transaction.settlement_report_id.is_(None),
                Transaction.occurred_at >= period.window_start,
                Transaction.occurred_at <= period.window_end,
            )
            .order_by(Transaction.occurred_at, Transaction.session_id)
        )
        return list(self.db.scalars(stmt))

    def fetch_by_keys(
        self,
        site_id: str,
        keys: Sequence[tuple[str, datetime]],
    ) -> list[Transaction]:
        """Settled transactions of a site addressed by (session_id, occurred_at).

        Claimed rows are returned too so the caller can refuse them; keys
        that match nothing are ignored.
        """
        found: dict = {}
        for session_id, occurred_at in dict.fromkeys(keys):
            stmt = select(Transaction).where(
                Transaction.site_id == site_id,
                Transaction.session_id == session_id,
                Transaction.occurred_at == occurred_at,
                Transaction.status == SETTLED_STATUS,
                Transaction.kind.in_(list(TransactionKind)),
            )
            for txn in self.db.scalars(stmt):
                found[txn.id] = txn
        return sorted(found.values(), key=lambda t: (t.occurred_at, t.session_id))

    def pending_report(self, site_id: str) -> Optional[SettlementReport]:
        stmt = (
            select(SettlementReport)
            .where(
                SettlementReport.site_id == site_id,
                SettlementReport.status == REPORT_PENDING,
            )
            .order_by(SettlementReport.period_start)
        )
        return self.db.scalars(stmt).first()

    def list_adjustments(
        self,
        site_id: Optional[str] = None,
        status: Optional[AdjustmentStatus] = None,
    ) -> list[SettlementAdjustment]:
        stmt = select(SettlementAdjustment)
        if site_id:
            stmt = stmt.where(SettlementAdjustment.site_id == site_id)
        if status is not None:
            stmt = stmt.where(SettlementAdjustment.status == status)
        stmt = stmt.order_by(
            SettlementAdjustment.created_at, SettlementAdjustment.original_session_id
        )
        return list(self.db.scalars(stmt))

    def pending_adjustments(self, site_id: str) -> list[SettlementAdjustment]:
        return self.list_adjustments(site_id=site_id, status=AdjustmentStatus.PENDING)

    def get_report(self, report_number: str) -> SettlementReport:
        stmt = (
            select(SettlementReport)
            .options(selectinload(SettlementReport.items))
            .where(SettlementReport.report_number == report_number)
        )
        report = self.db.scalars(stmt).first()
        if report is None:
            raise ReportNotFoundError(report_number)
        return report

    def list_reports(
        self,
        site_id: Optional[str] = None,
        page: int = 1,
        limit: int = 50,
    ) -> list[SettlementReport]:
        stmt = select(SettlementReport)
        if site_id:
            stmt = stmt.where(SettlementReport.site_id == site_id)
        stmt = (
            stmt.order_by(
                SettlementReport.period_start.desc(),
                SettlementReport.report_number.desc(),
            )
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(self.db.scalars(stmt))

    # ── Writes ───────────────────────────────────────────────────────

    def write_report(
        self,
        *,
        pricing: PricingConfig,
        period: SettlementPeriod,
        fees: FeeCalculation,
        transactions: Sequence[Transaction],
        currency: str,
        created_by: Optional[str] = None,
        notes: Optional[str] = None,
        adjustments: Sequence[SettlementAdjustment] = (),
    ) -> SettlementReport:
        """Insert the report and its items, claim the transactions, move the reserve.

        ``fees`` must already be quantized to cents and include
        ``adjustments``, which are marked applied to the new report.
        """
        report = SettlementReport(
            report_number=generate_report_number(),
            site_id=pricing.site_id,
            site_name=pricing.site_name,
            status=REPORT_PENDING,
            period_start=period.start,
            period_end=period.end,
            total_transactions=fees.transaction_count,
            sale_count=fees.sale_count,
            refund_count=fees.refund_count,
            chargeback_count=fees.chargeback_count,
            gross_amount=fees.gross,
            refunds_amount=fees.refunds_amount,
            chargebacks_amount=fees.chargebacks_amount,
            net_amount=fees.net,
            adjustments_total=fees.adjustments_total,
            adjustments_count=fees.adjustments_count,
            processing_fee_percent=fees.processing_fee_percent,
            processing_fee_amount=fees.processing_fee_amount,
            transaction_fee_per=fees.transaction_fee_per,
            transaction_fees_total=fees.transaction_fees_total,
            refund_fee_per=fees.refund_fee_per,
            refund_fees_total=fees.refund_fees_total,
            chargeback_fee_per=fees.chargeback_fee_per,
            chargeback_fees_total=fees.chargeback_fees_total,
            processing_fee_credit=fees.processing_fee_credit,
            total_fees=fees.total_fees,
            reserve_deducted=fees.reserve_deducted,
            reserve_balance=fees.reserve_balance,
            merchant_payout=fees.merchant_payout,
            created_by=created_by,
            notes=notes,
        )
        report.items = [
            SettlementReportItem(
                session_id=txn.session_id,
                occurred_at=txn.occurred_at,
                amount=txn.amount if txn.amount is not None else Decimal("0"),
                currency=txn.currency or currency,
                kind=txn.kind,
                processor=txn.processor,
            )
            for txn in transactions
        ]
        self.db.add(report)
        self.db.flush()

        claimed = self.claim_transactions(report, transactions)
        if claimed != len(transactions):
            raise ClaimConflictError(pricing.site_id, len(transactions), claimed)

        for adjustment in adjustments:
            adjustment.status = AdjustmentStatus.APPLIED
            adjustment.applied_to_settlement_id = report.id
            adjustment.applied_at = func.now()

        if fees.reserve_deducted > 0:
            pricing.reserve_collected = fees.reserve_balance
        self.db.flush()

        logger.info(
            "Report %s written: site=%s items=%d adjustments=%d reserve_deducted=%s",
            report.report_number,
            report.site_id,
            len(report.items),
            len(adjustments),
            fees.reserve_deducted,
        )
        return report

    def claim_transactions(
        self,
        report: SettlementReport,
        transactions: Sequence[Transaction],
    ) -> int:
        """Link transactions to ``report``; returns how many rows were claimed.

        Each update only touches rows that are still unclaimed, so a row
        settled by a concurrent run is simply not counted.
        """
        claimed = 0
        seen: set[tuple] = set()
        for txn in transactions:
            key = (txn.session_id, txn.occurred_at)
            if key in seen:
                # Duplicate import rows share a key; the first update took them all
                continue
            seen.add(key)
            result = self.db.execute(
                update(Transaction)
                .where(
                    Transaction.site_id == report.site_id,
                    Transaction.session_id == txn.session_id,
                    Transaction.occurred_at == txn.occurred_at,
                    Transaction.status == SETTLED_STATUS,
                    Transaction.settlement_report_id.is_(None),
                )
                .values(settlement_report_id=report.id)
                .execution_options(synchronize_session=False)
            )
            claimed += result.rowcount
        return claimed

    def delete_report(self, report_number: str, force: bool = False) -> dict:
        """Remove a report, release its transactions and give back its reserve.

        Adjustments recorded against the report are deleted with it, which
        needs ``force``; adjustments it had applied go back to pending.
        """
        report = self.get_report(report_number)

        originating = list(
            self.db.scalars(
                select(SettlementAdjustment).where(
                    SettlementAdjustment.original_settlement_report_id == report.id
                )
            )
        )
        if originating and not force:
            applied = sum(1 for a in originating if a.status == AdjustmentStatus.APPLIED)
            raise AdjustmentsRequireConfirmationError(
                report.report_number, len(originating) - applied, applied
            )
        if originating:
            self.db.execute(
                delete(SettlementAdjustment).where(
                    SettlementAdjustment.original_settlement_report_id == report.id
                )
            )

        result = self.db.execute(
            update(Transaction)
            .where(Transaction.settlement_report_id == report.id)
            .values(settlement_report_id=None)
            .execution_options(synchronize_session=False)
        )
        transactions_unsettled = result.rowcount

        reset = self.db.execute(
            update(SettlementAdjustment)
            .where(SettlementAdjustment.applied_to_settlement_id == report.id)
            .values(
                status=AdjustmentStatus.PENDING,
                applied_to_settlement_id=None,
                applied_at=None,
            )
        )

        reserve_restored = Decimal("0")
        reserve_deducted = report.reserve_deducted or Decimal("0")
        if reserve_deducted > 0:
            pricing = self.get_pricing(report.site_id)
            if pricing is not None:
                current = pricing.reserve_collected or Decimal("0")
                new_collected = max(Decimal("0"), current - reserve_deducted)
                reserve_restored = current - new_collected
                pricing.reserve_collected = new_collected

        summary = {
            "report_number": report.report_number,
            "site_id": report.site_id,
            "net_amount": report.net_amount,
            "merchant_payout": report.merchant_payout,
            "transactions_unsettled": transactions_unsettled,
            "adjustments_deleted": len(originating),
            "adjustments_reset": reset.rowcount,
            "reserve_restored": reserve_restored,
        }
        self.db.delete(report)
        self.db.flush()
        return summary

    def add_adjustment(
        self,
        report_number: str,
        *,
        session_id: str,
        reason: AdjustmentReason,
        amount: Decimal,
        notes: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> SettlementAdjustment:
        """Record a refund or chargeback of a transaction ``report_number`` paid out."""
        report = self.get_report(report_number)
        if not any(item.session_id == session_id for item in report.items):
            raise AdjustmentError(
                f"Session {session_id!r} is not part of report {report_number}"
            )
        if amount <= 0:
            raise AdjustmentError("Adjustment amount must be positive")

        adjustment = SettlementAdjustment(
            site_id=report.site_id,
            reason=reason,
            amount=amount,
            original_session_id=session_id,
            original_settlement_report_id=report.id,
            status=AdjustmentStatus.PENDING,
            notes=notes,
            created_by=created_by,
        )
        self.db.add(adjustment)
        self.db.flush()
        return adjustment

    def mark_report_paid(self, report_number: str) -> SettlementReport:
        """Close a pending report once its payout has been sent."""
        report = self.get_report(report_number)
        if report.status != REPORT_PENDING:
            raise ReportStatusError(
                f"Report {report_number} is {report.status!r}; only pending "
                f"reports can be marked paid"
            )
        report.status = REPORT_PAID
        self.db.flush()
        return report

    def upsert_pricing(self, site_id: str, **fields) -> PricingConfig:
        """Create or update a site's fee schedule.

        ``reserve_collected`` is owned by the report writer and is never
        accepted here.
        """
        fields.pop("reserve_collected", None)
        pricing = self.get_pricing(site_id)
        if pricing is None:
            pricing = PricingConfig(site_id=site_id, reserve_collected=Decimal("0"))
            self.db.add(pricing)

        for name, value in fields.items():
            if value is not None:
                setattr(pricing, name, value)

        reserve_amount = pricing.reserve_amount or Decimal("0")
        collected = pricing.reserve_collected or Decimal("0")
        if reserve_amount < collected:
            raise ReserveInvariantError(
                f"reserve_amount {reserve_amount} is below the {collected} "
                f"already collected for site {site_id!r}"
            )
        self.db.flush()
        return pricing
