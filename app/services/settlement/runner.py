"""Weekly settlement runner — the orchestrator of a settlement batch.

For each site on the roster, one at a time:
  1. Select the settled, unclaimed transactions of the period.
  2. Skip the site when there are none, or when it has no active pricing.
  3. Calculate fees and round them to cents.
  4. Write report + items, claim the transactions, advance the reserve,
     all inside one database transaction.
  5. Record the outcome.

A failure while settling one site rolls that site back and becomes its
ERROR outcome; the batch moves on.  One audit entry summarizes the run.
Sites run sequentially to bound the load on the shared store.

The runner also carries the operator-driven operations: reports built from
an explicit selection of transactions (which also apply the site's pending
adjustments), recording adjustments, marking reports paid and deleting them.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy.orm import Session

from app.core.config import Settings, settings
from app.core.logging import get_logger, site_logger
from app.models.adjustment import AdjustmentReason, SettlementAdjustment
from app.models.pricing import PricingConfig
from app.models.settlement_report import SettlementReport
from app.services.settlement.audit import (
    ACTION_ADJUSTMENT_RECORDED,
    ACTION_REPORT_CREATED,
    ACTION_REPORT_DELETED,
    ACTION_REPORT_PAID,
    ACTION_WEEKLY_RUN,
    record_audit,
)
from app.services.settlement.calculator import FeeCalculation, FeeLine, calculate_fees
from app.services.settlement.errors import (
    NoTransactionsError,
    PendingReportExistsError,
    PricingNotConfiguredError,
    TransactionAlreadySettledError,
)
from app.services.settlement.period import SettlementPeriod, resolve_previous_week
from app.services.settlement.store import SettlementStore

logger = get_logger(__name__)

STATUS_SUCCESS = "success"
STATUS_SKIPPED = "skipped"
STATUS_ERROR = "error"

SKIP_NO_TRANSACTIONS = "No transactions for this period"
SKIP_NO_PRICING = "No pricing configured"

TransactionKey = tuple[str, datetime]


@dataclass
class SiteOutcome:
    """Result of settling one site; optional fields are omitted when unset."""

    site: str
    status: str
    report_number: Optional[str] = None
    transaction_count: Optional[int] = None
    merchant_payout: Optional[Decimal] = None
    error: Optional[str] = None

    def as_dict(self) -> dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}


@dataclass
class BatchResult:
    period: SettlementPeriod
    results: list[SiteOutcome] = field(default_factory=list)
    audit_recorded: bool = True

    def count(self, status: str) -> int:
        return sum(1 for outcome in self.results if outcome.status == status)


@dataclass
class SettlementPreview:
    site_id: str
    period: SettlementPeriod
    calculation: FeeCalculation


class SettlementRunner:
    """Runs settlement batches and ad-hoc settlement operations."""

    def __init__(self, db: Session, config: Settings = settings) -> None:
        self.db = db
        self.config = config
        self.store = SettlementStore(db)

    # ── Weekly batch ─────────────────────────────────────────────────

    def run_weekly(
        self,
        now: Optional[datetime] = None,
        sites: Optional[Iterable[str]] = None,
    ) -> BatchResult:
        """Settle the previous completed week for every site on the roster.

        Args:
            now: Instant used to resolve the period (defaults to now).
            sites: Explicit roster; defaults to the configured roster, or
                every site with an active pricing config.

        Returns:
            The period and one outcome per site, in roster order.  The
            batch is returned even when its audit entry could not be
            written, since the per-site reports are already committed.
        """
        period = resolve_previous_week(now, self.config.business_timezone)
        roster = self._roster(sites)
        logger.info(
            "Weekly settlement started: period=%s..%s sites=%d",
            period.start,
            period.end,
            len(roster),
        )

        batch = BatchResult(period=period)
        for site_id in roster:
            batch.results.append(self.settle_site(site_id, period))

        try:
            record_audit(
                self.db,
                actor=self.config.settlement_system_actor,
                action=ACTION_WEEKLY_RUN,
                details={
                    "period_start": period.start,
                    "period_end": period.end,
                    "results": [outcome.as_dict() for outcome in batch.results],
                },
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            batch.audit_recorded = False
            logger.exception(
                "Audit entry for weekly settlement %s..%s could not be written",
                period.start,
                period.end,
            )

        logger.info(
            "Weekly settlement complete: period=%s..%s success=%d skipped=%d error=%d",
            period.start,
            period.end,
            batch.count(STATUS_SUCCESS),
            batch.count(STATUS_SKIPPED),
            batch.count(STATUS_ERROR),
        )
        return batch

    def settle_site(self, site_id: str, period: SettlementPeriod) -> SiteOutcome:
        """Settle one site; never raises, failures become an ERROR outcome."""
        try:
            outcome = self._settle(site_id, period)
        except Exception as exc:
            self.db.rollback()
            site_logger(logger, site_id).exception("Settlement failed")
            return SiteOutcome(site=site_id, status=STATUS_ERROR, error=str(exc))
        return outcome

    # ── Previews ─────────────────────────────────────────────────────

    def preview(self, site_id: str, period: SettlementPeriod) -> SettlementPreview:
        """Calculate what a weekly report for ``period`` would contain, without writing.

        Raises:
            NoTransactionsError: nothing unclaimed in the period.
            PricingNotConfiguredError: the site has no active fee schedule.
        """
        transactions = self.store.fetch_unreported(site_id, period)
        if not transactions:
            raise NoTransactionsError(site_id)
        pricing = self._active_pricing(site_id)
        if pricing is None:
            raise PricingNotConfiguredError(site_id)

        fees = self._calculate(transactions, pricing)
        return SettlementPreview(site_id=site_id, period=period, calculation=fees)

    def preview_selection(
        self,
        site_id: str,
        keys: Sequence[TransactionKey],
        include_pending_adjustments: bool = True,
    ) -> SettlementPreview:
        """Calculate what :meth:`create_report` would write for ``keys``."""
        transactions, pricing = self._selection(site_id, keys)
        adjustments = (
            self.store.pending_adjustments(site_id) if include_pending_adjustments else []
        )
        fees = self._calculate(transactions, pricing, adjustments)
        return SettlementPreview(
            site_id=site_id,
            period=self._span(transactions),
            calculation=fees,
        )

    # ── Manual reports and adjustments ───────────────────────────────

    def create_report(
        self,
        site_id: str,
        keys: Sequence[TransactionKey],
        actor: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> SettlementReport:
        """Build a report from an operator's selection of transactions.

        The site's pending adjustments are deducted and marked applied.  The
        period is the span of the selected transactions.

        Raises:
            PendingReportExistsError: the site has an unresolved report.
            TransactionAlreadySettledError: a selected row is already claimed.
            NoTransactionsError: no key matched a settled transaction.
            PricingNotConfiguredError: the site has no active fee schedule.
        """
        actor = actor or self.config.settlement_system_actor
        try:
            pending = self.store.pending_report(site_id)
            if pending is not None:
                raise PendingReportExistsError(site_id, pending.report_number)

            transactions, pricing = self._selection(site_id, keys)
            adjustments = self.store.pending_adjustments(site_id)
            fees = self._calculate(transactions, pricing, adjustments)
            report = self.store.write_report(
                pricing=pricing,
                period=self._span(transactions),
                fees=fees,
                transactions=transactions,
                currency=self.config.settlement_currency,
                created_by=actor,
                notes=notes,
                adjustments=adjustments,
            )
            record_audit(
                self.db,
                actor=actor,
                action=ACTION_REPORT_CREATED,
                details={
                    "report_number": report.report_number,
                    "site_id": site_id,
                    "transaction_count": fees.transaction_count,
                    "adjustments_applied": fees.adjustments_count,
                    "merchant_payout": fees.merchant_payout,
                },
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        site_logger(logger, site_id).info(
            "Manual report %s created by %s: transactions=%d adjustments=%d payout=%s",
            report.report_number,
            actor,
            fees.transaction_count,
            fees.adjustments_count,
            fees.merchant_payout,
        )
        return report

    def record_adjustment(
        self,
        report_number: str,
        *,
        session_id: str,
        reason: AdjustmentReason,
        amount: Decimal,
        actor: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> SettlementAdjustment:
        """Record a refund or chargeback of a transaction an issued report paid out."""
        actor = actor or self.config.settlement_system_actor
        try:
            adjustment = self.store.add_adjustment(
                report_number,
                session_id=session_id,
                reason=reason,
                amount=amount,
                notes=notes,
                created_by=actor,
            )
            record_audit(
                self.db,
                actor=actor,
                action=ACTION_ADJUSTMENT_RECORDED,
                details={
                    "report_number": report_number,
                    "site_id": adjustment.site_id,
                    "session_id": session_id,
                    "reason": AdjustmentReason(reason).value,
                    "amount": amount,
                },
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return adjustment

    def mark_paid(self, report_number: str, actor: Optional[str] = None) -> SettlementReport:
        actor = actor or self.config.settlement_system_actor
        try:
            report = self.store.mark_report_paid(report_number)
            record_audit(
                self.db,
                actor=actor,
                action=ACTION_REPORT_PAID,
                details={"report_number": report_number, "site_id": report.site_id},
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return report

    def delete_report(
        self,
        report_number: str,
        actor: Optional[str] = None,
        force: bool = False,
    ) -> dict:
        """Delete a report and release everything it consumed, atomically.

        Raises:
            ReportNotFoundError: no such report.
            AdjustmentsRequireConfirmationError: adjustments were recorded
                against the report and ``force`` is not set.
        """
        actor = actor or self.config.settlement_system_actor
        try:
            summary = self.store.delete_report(report_number, force=force)
            record_audit(
                self.db,
                actor=actor,
                action=ACTION_REPORT_DELETED,
                details=summary,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            "Report %s deleted by %s: transactions_unsettled=%d "
            "adjustments_deleted=%d adjustments_reset=%d",
            report_number,
            actor,
            summary["transactions_unsettled"],
            summary["adjustments_deleted"],
            summary["adjustments_reset"],
        )
        return summary

    # ── Private helpers ──────────────────────────────────────────────

    def _roster(self, sites: Optional[Iterable[str]]) -> list[str]:
        if sites:
            return list(dict.fromkeys(sites))
        if self.config.settlement_site_roster:
            return list(dict.fromkeys(self.config.settlement_site_roster))
        return self.store.active_site_ids()

    def _active_pricing(self, site_id: str) -> Optional[PricingConfig]:
        # A deactivated schedule counts as no schedule, even for explicit rosters
        pricing = self.store.get_pricing(site_id)
        if pricing is None or not pricing.is_active:
            return None
        return pricing

    def _selection(self, site_id: str, keys: Sequence[TransactionKey]):
        transactions = self.store.fetch_by_keys(site_id, keys)
        for txn in transactions:
            if txn.settlement_report_id is not None:
                raise TransactionAlreadySettledError(txn.session_id)
        if not transactions:
            raise NoTransactionsError(site_id)
        pricing = self._active_pricing(site_id)
        if pricing is None:
            raise PricingNotConfiguredError(site_id)
        return transactions, pricing

    @staticmethod
    def _span(transactions) -> SettlementPeriod:
        dates = [txn.occurred_at.date() for txn in transactions]
        return SettlementPeriod(start=min(dates), end=max(dates))

    def _calculate(self, transactions, pricing, adjustments=()) -> FeeCalculation:
        lines = [FeeLine.from_transaction(txn) for txn in transactions]
        reserve_collected = pricing.reserve_collected or Decimal("0")
        return calculate_fees(lines, pricing, reserve_collected, adjustments).quantized()

    def _settle(self, site_id: str, period: SettlementPeriod) -> SiteOutcome:
        log = site_logger(logger, site_id)
        transactions = self.store.fetch_unreported(site_id, period)
        if not transactions:
            log.info("Skipped: no transactions")
            return SiteOutcome(
                site=site_id, status=STATUS_SKIPPED, error=SKIP_NO_TRANSACTIONS
            )

        pricing = self._active_pricing(site_id)
        if pricing is None:
            log.warning("Skipped: no active pricing configured")
            return SiteOutcome(site=site_id, status=STATUS_SKIPPED, error=SKIP_NO_PRICING)

        fees = self._calculate(transactions, pricing)
        report = self.store.write_report(
            pricing=pricing,
            period=period,
            fees=fees,
            transactions=transactions,
            currency=self.config.settlement_currency,
            created_by=self.config.settlement_system_actor,
            notes=(
                f"Auto-generated weekly settlement for {period.start} to {period.end}"
            ),
        )
        report_number = report.report_number
        self.db.commit()

        log.info(
            "Settled: report=%s transactions=%d payout=%s",
            report_number,
            fees.transaction_count,
            fees.merchant_payout,
        )
        return SiteOutcome(
            site=site_id,
            status=STATUS_SUCCESS,
            report_number=report_number,
            transaction_count=fees.transaction_count,
            merchant_payout=fees.merchant_payout,
        )
