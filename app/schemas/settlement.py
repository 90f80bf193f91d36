"""Pydantic schemas for settlement runs, previews and reports."""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.models.adjustment import AdjustmentReason, AdjustmentStatus
from app.models.transaction import TransactionKind


class PeriodSchema(BaseModel):
    start: date
    end: date


class SiteResult(BaseModel):
    """Outcome of one site inside a settlement batch."""

    site: str
    status: str = Field(..., description="success | skipped | error")
    report_number: Optional[str] = None
    transaction_count: Optional[int] = None
    merchant_payout: Optional[Decimal] = None
    error: Optional[str] = Field(
        None,
        description="Skip reason or the underlying error message",
    )


class WeeklyRunResponse(BaseModel):
    """Batch response; ``success`` only says the batch ran.

    Callers must inspect each entry of ``results``.
    """

    success: bool
    period: PeriodSchema
    results: list[SiteResult] = Field(default_factory=list)
    audit_recorded: bool = Field(
        True,
        description="False when the run's audit entry could not be written",
    )


class TransactionKey(BaseModel):
    """Compound key addressing one transaction row."""

    session_id: str = Field(..., max_length=120)
    occurred_at: datetime

    @field_validator("occurred_at")
    @classmethod
    def _naive_utc(cls, value: datetime) -> datetime:
        # Stored timestamps are naive UTC
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value


class PreviewRequest(BaseModel):
    """Fee preview over a period, or over an explicit transaction selection.

    Give either ``period_start`` and ``period_end`` or ``transaction_keys``.
    Pending adjustments only apply to a selection, as they do when the
    report is created.
    """

    site_id: str = Field(..., max_length=100)
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    transaction_keys: Optional[list[TransactionKey]] = None
    include_pending_adjustments: bool = True

    @model_validator(mode="after")
    def _check_range(self) -> PreviewRequest:
        has_period = self.period_start is not None or self.period_end is not None
        if self.transaction_keys is not None:
            if has_period:
                raise ValueError("give either a period or transaction_keys, not both")
            if not self.transaction_keys:
                raise ValueError("transaction_keys must not be empty")
            return self
        if self.period_start is None or self.period_end is None:
            raise ValueError("period_start and period_end are required")
        if self.period_end < self.period_start:
            raise ValueError("period_end must not be before period_start")
        return self


class CreateReportRequest(BaseModel):
    """Manual report over an operator's selection of transactions."""

    site_id: str = Field(..., max_length=100)
    transaction_keys: list[TransactionKey] = Field(..., min_length=1)
    notes: Optional[str] = None
    created_by: Optional[str] = Field(None, max_length=100)


class FeeCalculationSchema(BaseModel):
    """Every figure of a settlement at currency precision."""

    transaction_count: int
    sale_count: int
    refund_count: int
    chargeback_count: int
    gross: Decimal
    refunds_amount: Decimal
    chargebacks_amount: Decimal
    net: Decimal
    processing_fee_percent: Decimal
    processing_fee_amount: Decimal
    transaction_fee_per: Decimal
    transaction_fees_total: Decimal
    refund_fee_per: Decimal
    refund_fees_total: Decimal
    chargeback_fee_per: Decimal
    chargeback_fees_total: Decimal
    processing_fee_credit: Decimal
    total_fees: Decimal
    adjustments_total: Decimal
    adjustments_count: int
    adjustment_refund_count: int
    adjustment_chargeback_count: int
    net_after_adjustments: Decimal
    payout_pre_reserve: Decimal
    reserve_target: Decimal
    reserve_collected_before: Decimal
    reserve_deducted: Decimal
    reserve_balance: Decimal
    merchant_payout: Decimal


class PreviewResponse(BaseModel):
    site_id: str
    period: PeriodSchema
    calculation: FeeCalculationSchema


class SettlementReportItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    session_id: str
    occurred_at: datetime
    amount: Decimal
    currency: str
    kind: TransactionKind
    processor: Optional[str] = None


class SettlementReportResponse(BaseModel):
    """Report header as listed by ``GET /reports``."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    report_number: str
    site_id: str
    site_name: Optional[str] = None
    status: str
    period_start: date
    period_end: date
    total_transactions: int
    sale_count: int
    refund_count: int
    chargeback_count: int
    gross_amount: Decimal
    refunds_amount: Decimal
    chargebacks_amount: Decimal
    net_amount: Decimal
    adjustments_total: Decimal
    adjustments_count: int
    processing_fee_percent: Decimal
    processing_fee_amount: Decimal
    transaction_fee_per: Decimal
    transaction_fees_total: Decimal
    refund_fee_per: Decimal
    refund_fees_total: Decimal
    chargeback_fee_per: Decimal
    chargeback_fees_total: Decimal
    processing_fee_credit: Decimal
    total_fees: Decimal
    reserve_deducted: Decimal
    reserve_balance: Decimal
    merchant_payout: Decimal
    notes: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None


class SettlementReportDetail(SettlementReportResponse):
    """Report with its item snapshot."""

    items: list[SettlementReportItemResponse] = Field(default_factory=list)


class DeleteReportResponse(BaseModel):
    success: bool = True
    report_number: str
    site_id: str
    transactions_unsettled: int
    adjustments_deleted: int
    adjustments_reset: int
    reserve_restored: Decimal


class AdjustmentCreate(BaseModel):
    """A refund or chargeback of a transaction an issued report paid out."""

    report_number: str = Field(..., max_length=40)
    session_id: str = Field(..., max_length=120)
    reason: AdjustmentReason
    amount: Decimal = Field(..., gt=0, max_digits=15, decimal_places=2)
    notes: Optional[str] = None
    created_by: Optional[str] = Field(None, max_length=100)


class AdjustmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    site_id: str
    reason: AdjustmentReason
    amount: Decimal
    original_session_id: str
    status: AdjustmentStatus
    notes: Optional[str] = None
    created_by: Optional[str] = None
    applied_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
