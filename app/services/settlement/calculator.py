"""Settlement fee calculator — the pure core of the weekly settlement.

Given the transactions consumed by one report, the site's fee schedule and
the reserve already withheld, produce every figure the report carries.

Accounting rules:
  * Refund and chargeback records are positive rows layered on top of
    the original sale, so *every* row adds to gross and the refund /
    chargeback totals are subtracted back out to reach net.
  * The percentage fee applies to net, never gross.
  * The per-transaction fee is charged on every row, any kind.
  * Reserve is only withheld from a positive payout, and never beyond the
    site's remaining reserve target.
  * Adjustments (refunds or chargebacks of transactions paid out by an
    earlier report) come off the payout, pay their refund or chargeback
    fee, and earn back the processing fee charged on them the first time.

Everything is ``Decimal`` at full precision; rounding to cents happens once,
in :meth:`FeeCalculation.quantized`, right before the figures are persisted.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Sequence

from app.core.logging import get_logger
from app.models.adjustment import AdjustmentReason
from app.models.transaction import TransactionKind

logger = get_logger(__name__)

ZERO = Decimal("0")
CENT = Decimal("0.01")
HUNDRED = Decimal("100")


def coerce_amount(value: Any) -> Decimal:
    """Turn a raw stored amount into a ``Decimal``.

    ``None`` becomes zero silently; anything non-numeric or non-finite
    becomes zero with a warning so bad source rows are visible in the logs
    without stopping a site's settlement.
    """
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            logger.warning("Malformed amount %r coerced to 0", value)
            return ZERO
    if not amount.is_finite():
        logger.warning("Non-finite amount %r coerced to 0", value)
        return ZERO
    return amount


def to_cents(value: Decimal) -> Decimal:
    """Round to the currency minor unit (half-up)."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def apply_reserve(
    payout_pre_reserve: Decimal,
    reserve_target: Decimal,
    reserve_collected: Decimal,
) -> Decimal:
    """Amount to withhold for the reserve program from this payout."""
    remaining = max(ZERO, reserve_target - reserve_collected)
    if remaining > 0 and payout_pre_reserve > 0:
        return min(payout_pre_reserve, remaining)
    return ZERO


@dataclass(frozen=True)
class FeeLine:
    """Minimal calculator input: an amount and what kind of event it was."""

    amount: Decimal
    kind: TransactionKind

    @classmethod
    def from_transaction(cls, txn: Any) -> FeeLine:
        return cls(amount=coerce_amount(txn.amount), kind=TransactionKind(txn.kind))


@dataclass(frozen=True)
class FeeCalculation:
    """Every figure of one settlement, before or after cent rounding."""

    # Counts
    sale_count: int
    refund_count: int
    chargeback_count: int

    # Totals
    gross: Decimal
    refunds_amount: Decimal
    chargebacks_amount: Decimal
    net: Decimal

    # Fee rates and totals
    processing_fee_percent: Decimal
    processing_fee_amount: Decimal
    transaction_fee_per: Decimal
    transaction_fees_total: Decimal
    refund_fee_per: Decimal
    refund_fees_total: Decimal
    chargeback_fee_per: Decimal
    chargeback_fees_total: Decimal
    total_fees: Decimal

    # Reserve + payout
    payout_pre_reserve: Decimal
    reserve_target: Decimal
    reserve_collected_before: Decimal
    reserve_deducted: Decimal
    reserve_balance: Decimal
    merchant_payout: Decimal

    # Adjustments carried in from earlier reports
    adjustments_total: Decimal = ZERO
    adjustments_count: int = 0
    adjustment_refund_count: int = 0
    adjustment_chargeback_count: int = 0
    processing_fee_credit: Decimal = ZERO

    @property
    def transaction_count(self) -> int:
        return self.sale_count + self.refund_count + self.chargeback_count

    @property
    def net_after_adjustments(self) -> Decimal:
        return self.net - self.adjustments_total

    def quantized(self) -> FeeCalculation:
        """Return a copy rounded to cents with the ledger identities intact.

        Fee components are rounded one by one and summed, then the reserve
        rule is re-applied on the rounded pre-reserve payout, so the stored
        report never carries a stray cent between its columns.
        """
        gross = to_cents(self.gross)
        refunds = to_cents(self.refunds_amount)
        chargebacks = to_cents(self.chargebacks_amount)
        net = gross - refunds - chargebacks

        processing = to_cents(self.processing_fee_amount)
        per_txn = to_cents(self.transaction_fees_total)
        refund_fees = to_cents(self.refund_fees_total)
        chargeback_fees = to_cents(self.chargeback_fees_total)
        credit = to_cents(self.processing_fee_credit)
        total_fees = processing + per_txn + refund_fees + chargeback_fees - credit

        adjustments_total = to_cents(self.adjustments_total)
        payout_pre_reserve = net - adjustments_total - total_fees
        collected = to_cents(self.reserve_collected_before)
        reserve_deducted = to_cents(
            apply_reserve(payout_pre_reserve, self.reserve_target, collected)
        )

        return replace(
            self,
            gross=gross,
            refunds_amount=refunds,
            chargebacks_amount=chargebacks,
            net=net,
            processing_fee_amount=processing,
            transaction_fees_total=per_txn,
            refund_fees_total=refund_fees,
            chargeback_fees_total=chargeback_fees,
            processing_fee_credit=credit,
            total_fees=total_fees,
            adjustments_total=adjustments_total,
            payout_pre_reserve=payout_pre_reserve,
            reserve_collected_before=collected,
            reserve_deducted=reserve_deducted,
            reserve_balance=collected + reserve_deducted,
            merchant_payout=payout_pre_reserve - reserve_deducted,
        )

    def as_dict(self) -> dict[str, Any]:
        data = {name: getattr(self, name) for name in self.__dataclass_fields__}
        data["transaction_count"] = self.transaction_count
        data["net_after_adjustments"] = self.net_after_adjustments
        return data


def calculate_fees(
    transactions: Sequence[Any],
    pricing: Any,
    reserve_already_collected: Decimal,
    adjustments: Sequence[Any] = (),
) -> FeeCalculation:
    """Compute the settlement figures for a non-empty batch of transactions.

    Args:
        transactions: Objects exposing ``amount`` (Decimal) and ``kind``
            (``TransactionKind`` or its string value).  Amounts must already
            be coerced with :func:`coerce_amount`.
        pricing: Object exposing ``percentage_fee``, ``per_transaction_fee``,
            ``refund_fee``, ``chargeback_fee`` and ``reserve_amount``.
        reserve_already_collected: Reserve withheld by earlier reports.
        adjustments: Pending adjustments exposing ``amount`` and ``reason``
            (``AdjustmentReason`` or its string value).

    Returns:
        A full-precision :class:`FeeCalculation`.
    """
    gross = ZERO
    refunds_amount = ZERO
    chargebacks_amount = ZERO
    sale_count = refund_count = chargeback_count = 0

    for txn in transactions:
        amount = txn.amount
        gross += amount
        kind = TransactionKind(txn.kind)
        if kind is TransactionKind.REFUND:
            refunds_amount += amount
            refund_count += 1
        elif kind is TransactionKind.CHARGEBACK:
            chargebacks_amount += amount
            chargeback_count += 1
        else:
            sale_count += 1

    net = gross - refunds_amount - chargebacks_amount
    total_count = sale_count + refund_count + chargeback_count

    adjustments_total = ZERO
    adj_refund_count = adj_chargeback_count = 0
    for adjustment in adjustments:
        adjustments_total += coerce_amount(adjustment.amount)
        if AdjustmentReason(adjustment.reason) is AdjustmentReason.CHARGEBACK:
            adj_chargeback_count += 1
        else:
            adj_refund_count += 1

    processing_fee_percent = coerce_amount(pricing.percentage_fee)
    processing_fee_amount = net * (processing_fee_percent / HUNDRED)

    transaction_fee_per = coerce_amount(pricing.per_transaction_fee)
    transaction_fees_total = total_count * transaction_fee_per

    refund_fee_per = coerce_amount(pricing.refund_fee)
    refund_fees_total = (refund_count + adj_refund_count) * refund_fee_per

    chargeback_fee_per = coerce_amount(pricing.chargeback_fee)
    chargeback_fees_total = (
        chargeback_count + adj_chargeback_count
    ) * chargeback_fee_per

    # Processing fee already charged on adjusted money comes back
    processing_fee_credit = adjustments_total * (processing_fee_percent / HUNDRED)

    total_fees = (
        processing_fee_amount
        + transaction_fees_total
        + refund_fees_total
        + chargeback_fees_total
        - processing_fee_credit
    )
    # May go negative when fees exceed net; never clamped
    payout_pre_reserve = net - adjustments_total - total_fees

    reserve_target = coerce_amount(pricing.reserve_amount)
    collected = coerce_amount(reserve_already_collected)
    reserve_deducted = apply_reserve(payout_pre_reserve, reserve_target, collected)

    return FeeCalculation(
        sale_count=sale_count,
        refund_count=refund_count,
        chargeback_count=chargeback_count,
        gross=gross,
        refunds_amount=refunds_amount,
        chargebacks_amount=chargebacks_amount,
        net=net,
        processing_fee_percent=processing_fee_percent,
        processing_fee_amount=processing_fee_amount,
        transaction_fee_per=transaction_fee_per,
        transaction_fees_total=transaction_fees_total,
        refund_fee_per=refund_fee_per,
        refund_fees_total=refund_fees_total,
        chargeback_fee_per=chargeback_fee_per,
        chargeback_fees_total=chargeback_fees_total,
        total_fees=total_fees,
        payout_pre_reserve=payout_pre_reserve,
        reserve_target=reserve_target,
        reserve_collected_before=collected,
        reserve_deducted=reserve_deducted,
        reserve_balance=collected + reserve_deducted,
        merchant_payout=payout_pre_reserve - reserve_deducted,
        adjustments_total=adjustments_total,
        adjustments_count=adj_refund_count + adj_chargeback_count,
        adjustment_refund_count=adj_refund_count,
        adjustment_chargeback_count=adj_chargeback_count,
        processing_fee_credit=processing_fee_credit,
    )
