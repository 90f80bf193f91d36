"""SQLAlchemy models for the PayOps settlement engine."""

from app.models.adjustment import (
    AdjustmentReason,
    AdjustmentStatus,
    SettlementAdjustment,
)
from app.models.audit_log import AuditLogEntry
from app.models.pricing import PricingConfig
from app.models.settlement_report import SettlementReport, SettlementReportItem
from app.models.transaction import Transaction, TransactionKind

__all__ = [
    "AdjustmentReason",
    "AdjustmentStatus",
    "AuditLogEntry",
    "PricingConfig",
    "SettlementAdjustment",
    "SettlementReport",
    "SettlementReportItem",
    "Transaction",
    "TransactionKind",
]
