"""Unit tests for the settlement fee calculator.

All tests are *pure* — no database, no I/O.  SimpleNamespace stand-ins
carry exactly the attributes the calculator reads.
"""

from __future__ import annotations

from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from app.models.adjustment import AdjustmentReason
from app.models.transaction import TransactionKind
from app.services.settlement import calculator
from app.services.settlement.calculator import (
    FeeLine,
    apply_reserve,
    calculate_fees,
    coerce_amount,
    to_cents,
)

D = Decimal


# ── Helpers ──────────────────────────────────────────────────────────


def _pricing(
    percentage_fee: str = "2.9",
    per_transaction_fee: str = "0.30",
    refund_fee: str = "0",
    chargeback_fee: str = "0",
    reserve_amount: str = "0",
) -> SimpleNamespace:
    return SimpleNamespace(
        percentage_fee=D(percentage_fee),
        per_transaction_fee=D(per_transaction_fee),
        refund_fee=D(refund_fee),
        chargeback_fee=D(chargeback_fee),
        reserve_amount=D(reserve_amount),
    )


def _sale(amount: str) -> FeeLine:
    return FeeLine(amount=D(amount), kind=TransactionKind.SALE)


def _refund(amount: str) -> FeeLine:
    return FeeLine(amount=D(amount), kind=TransactionKind.REFUND)


def _chargeback(amount: str) -> FeeLine:
    return FeeLine(amount=D(amount), kind=TransactionKind.CHARGEBACK)


def _assert_identities(calc) -> None:
    assert calc.gross - calc.refunds_amount - calc.chargebacks_amount == calc.net
    assert calc.total_fees == (
        calc.processing_fee_amount
        + calc.transaction_fees_total
        + calc.refund_fees_total
        + calc.chargeback_fees_total
        - calc.processing_fee_credit
    )
    assert (
        calc.net - calc.adjustments_total - calc.total_fees - calc.reserve_deducted
        == calc.merchant_payout
    )
    assert calc.reserve_balance == calc.reserve_collected_before + calc.reserve_deducted


# ── Reference scenarios ──────────────────────────────────────────────


class TestScenarios:
    def test_three_sales_no_reserve(self):
        """$100 + $50 + $25 at 2.9% + $0.30."""
        calc = calculate_fees(
            [_sale("100"), _sale("50"), _sale("25")], _pricing(), D("0")
        )

        assert calc.gross == D("175")
        assert calc.net == D("175")
        assert calc.processing_fee_amount == D("5.075")
        assert calc.transaction_fees_total == D("0.90")
        assert calc.total_fees == D("5.975")
        assert calc.reserve_deducted == 0
        assert calc.merchant_payout == D("169.025")
        assert calc.sale_count == 3
        assert calc.transaction_count == 3
        _assert_identities(calc)

    def test_refund_record_adds_to_gross_and_nets_out(self):
        """A refund row is layered on top of its sale, so net is unchanged.

        The refund row is still a transaction, so it pays the
        per-transaction fee as well as the refund fee.
        """
        calc = calculate_fees(
            [_sale("100"), _sale("50"), _sale("25"), _refund("50")],
            _pricing(refund_fee="1.00"),
            D("0"),
        )

        assert calc.gross == D("225")
        assert calc.refunds_amount == D("50")
        assert calc.net == D("175")
        assert calc.refund_count == 1
        assert calc.processing_fee_amount == D("5.075")
        assert calc.transaction_fees_total == D("1.20")
        assert calc.refund_fees_total == D("1.00")
        assert calc.total_fees == D("7.275")
        assert calc.merchant_payout == D("167.725")
        _assert_identities(calc)

    def test_reserve_tops_up_to_target(self):
        calc = calculate_fees(
            [_sale("50")],
            _pricing(percentage_fee="0", per_transaction_fee="0", reserve_amount="500"),
            D("480"),
        )

        assert calc.payout_pre_reserve == D("50")
        assert calc.reserve_deducted == D("20")
        assert calc.merchant_payout == D("30")
        assert calc.reserve_balance == D("500")
        _assert_identities(calc)

    @pytest.mark.parametrize("amount", ["50", "0.01", "100000"])
    def test_full_reserve_withholds_nothing(self, amount):
        calc = calculate_fees(
            [_sale(amount)],
            _pricing(percentage_fee="0", per_transaction_fee="0", reserve_amount="500"),
            D("500"),
        )

        assert calc.reserve_deducted == 0
        assert calc.merchant_payout == D(amount)
        assert calc.reserve_balance == D("500")


# ── Fee components ───────────────────────────────────────────────────


class TestFeeComponents:
    def test_chargebacks_reduce_net_and_pay_their_fee(self):
        calc = calculate_fees(
            [_sale("200"), _chargeback("80"), _chargeback("20")],
            _pricing(percentage_fee="3", per_transaction_fee="0.25", chargeback_fee="15"),
            D("0"),
        )

        assert calc.gross == D("300")
        assert calc.chargebacks_amount == D("100")
        assert calc.net == D("200")
        assert calc.processing_fee_amount == D("6")
        assert calc.chargeback_count == 2
        assert calc.chargeback_fees_total == D("30")
        assert calc.transaction_fees_total == D("0.75")
        _assert_identities(calc)

    def test_fee_counts(self):
        lines = [_sale("10")] * 5 + [_refund("10")] * 2 + [_chargeback("10")]
        pricing = _pricing(
            per_transaction_fee="0.30", refund_fee="1.50", chargeback_fee="25"
        )

        calc = calculate_fees(lines, pricing, D("0"))

        assert calc.transaction_count == 8
        assert calc.transaction_fees_total == 8 * D("0.30")
        assert calc.refund_fees_total == 2 * D("1.50")
        assert calc.chargeback_fees_total == 1 * D("25")

    def test_percentage_fee_is_charged_on_net(self):
        calc = calculate_fees(
            [_sale("100"), _refund("100")],
            _pricing(percentage_fee="10", per_transaction_fee="0"),
            D("0"),
        )
        assert calc.gross == D("200")
        assert calc.net == D("100")
        assert calc.processing_fee_amount == D("10")
        _assert_identities(calc)

    def test_kind_accepts_string_values(self):
        lines = [
            SimpleNamespace(amount=D("40"), kind="sale"),
            SimpleNamespace(amount=D("15"), kind="refund"),
        ]
        calc = calculate_fees(lines, _pricing(), D("0"))
        assert calc.refund_count == 1
        assert calc.sale_count == 1

    def test_missing_pricing_values_count_as_zero(self):
        pricing = SimpleNamespace(
            percentage_fee=None,
            per_transaction_fee=None,
            refund_fee=None,
            chargeback_fee=None,
            reserve_amount=None,
        )
        calc = calculate_fees([_sale("12.34")], pricing, D("0"))
        assert calc.total_fees == 0
        assert calc.merchant_payout == D("12.34")


# ── Reserve guard ────────────────────────────────────────────────────


class TestReserve:
    def test_negative_payout_is_not_clamped_and_skips_reserve(self):
        """Fees above net leave a negative payout and no reserve withheld."""
        calc = calculate_fees(
            [_sale("1"), _refund("1"), _chargeback("1")],
            _pricing(chargeback_fee="25", reserve_amount="1000"),
            D("0"),
        )

        assert calc.payout_pre_reserve < 0
        assert calc.reserve_deducted == 0
        assert calc.merchant_payout == calc.payout_pre_reserve
        assert calc.reserve_balance == 0
        _assert_identities(calc)

    def test_zero_payout_skips_reserve(self):
        calc = calculate_fees(
            [_sale("1")],
            _pricing(percentage_fee="0", per_transaction_fee="1", reserve_amount="100"),
            D("0"),
        )
        assert calc.payout_pre_reserve == 0
        assert calc.reserve_deducted == 0

    def test_small_payout_is_withheld_entirely(self):
        calc = calculate_fees(
            [_sale("10")],
            _pricing(percentage_fee="0", per_transaction_fee="0", reserve_amount="500"),
            D("100"),
        )
        assert calc.reserve_deducted == D("10")
        assert calc.merchant_payout == 0
        assert calc.reserve_balance == D("110")

    def test_no_reserve_program(self):
        calc = calculate_fees([_sale("10")], _pricing(reserve_amount="0"), D("0"))
        assert calc.reserve_deducted == 0

    @pytest.mark.parametrize(
        "payout, target, collected, expected",
        [
            ("50", "500", "480", "20"),
            ("50", "500", "500", "0"),
            ("50", "500", "600", "0"),
            ("-5", "500", "0", "0"),
            ("0", "500", "0", "0"),
            ("5", "500", "0", "5"),
        ],
    )
    def test_apply_reserve(self, payout, target, collected, expected):
        assert apply_reserve(D(payout), D(target), D(collected)) == D(expected)

    @pytest.mark.parametrize("collected", ["0", "123.45", "499.99", "500"])
    def test_balance_never_exceeds_target(self, collected):
        calc = calculate_fees(
            [_sale("1000")] * 3,
            _pricing(reserve_amount="500"),
            D(collected),
        )
        assert calc.reserve_balance >= D(collected)
        assert calc.reserve_balance <= D("500")


# ── Adjustments ──────────────────────────────────────────────────────


def _adjustment(amount: str, reason=AdjustmentReason.REFUND) -> SimpleNamespace:
    return SimpleNamespace(amount=D(amount), reason=reason)


class TestAdjustments:
    def test_adjustments_come_off_payout_with_fee_credit(self):
        calc = calculate_fees(
            [_sale("100"), _sale("50")],
            _pricing(refund_fee="1.00", chargeback_fee="15"),
            D("0"),
            adjustments=[
                _adjustment("20"),
                _adjustment("10", AdjustmentReason.CHARGEBACK),
            ],
        )

        assert calc.net == D("150")
        assert calc.adjustments_total == D("30")
        assert calc.adjustments_count == 2
        assert calc.adjustment_refund_count == 1
        assert calc.adjustment_chargeback_count == 1
        assert calc.net_after_adjustments == D("120")
        assert calc.processing_fee_amount == D("4.350")
        assert calc.processing_fee_credit == D("0.870")
        assert calc.refund_fees_total == D("1.00")
        assert calc.chargeback_fees_total == D("15")
        assert calc.total_fees == D("20.080")
        assert calc.merchant_payout == D("99.920")
        # Adjustments are not transactions of this report
        assert calc.transaction_count == 2
        _assert_identities(calc)

    def test_reason_accepts_string_values(self):
        calc = calculate_fees(
            [_sale("100")],
            _pricing(),
            D("0"),
            adjustments=[_adjustment("5", "chargeback")],
        )
        assert calc.adjustment_chargeback_count == 1
        assert calc.adjustment_refund_count == 0

    def test_large_adjustment_skips_reserve(self):
        calc = calculate_fees(
            [_sale("10")],
            _pricing(percentage_fee="0", per_transaction_fee="0", reserve_amount="500"),
            D("0"),
            adjustments=[_adjustment("50")],
        )
        assert calc.payout_pre_reserve == D("-40")
        assert calc.reserve_deducted == 0
        assert calc.merchant_payout == D("-40")
        _assert_identities(calc)

    def test_no_adjustments_leaves_defaults(self):
        calc = calculate_fees([_sale("10")], _pricing(), D("0"))
        assert calc.adjustments_total == 0
        assert calc.adjustments_count == 0
        assert calc.processing_fee_credit == 0
        assert calc.net_after_adjustments == calc.net

    def test_quantized_keeps_identities(self):
        calc = calculate_fees(
            [_sale("33.33")],
            _pricing(),
            D("0"),
            adjustments=[_adjustment("12.34")],
        ).quantized()

        assert calc.processing_fee_amount == D("0.97")
        assert calc.processing_fee_credit == D("0.36")
        assert calc.total_fees == D("0.91")
        assert calc.merchant_payout == D("20.08")
        _assert_identities(calc)


# ── Rounding ─────────────────────────────────────────────────────────


class TestQuantized:
    def test_rounds_components_and_keeps_identities(self):
        calc = calculate_fees(
            [_sale("100"), _sale("50"), _sale("25")], _pricing(), D("0")
        ).quantized()

        assert calc.processing_fee_amount == D("5.08")
        assert calc.total_fees == D("5.98")
        assert calc.merchant_payout == D("169.02")
        _assert_identities(calc)

    def test_odd_cents_do_not_leak(self):
        lines = [_sale("33.33")] * 7 + [_refund("12.37"), _chargeback("8.11")]
        calc = calculate_fees(
            lines,
            _pricing(percentage_fee="2.75", per_transaction_fee="0.33", refund_fee="0.5"),
            D("0"),
        ).quantized()

        for value in (calc.processing_fee_amount, calc.total_fees, calc.merchant_payout):
            assert value == to_cents(value)
        _assert_identities(calc)

    def test_reserve_is_reapplied_on_rounded_payout(self):
        # Unrounded payout 9.995 fully withheld; rounded pre-reserve is 9.99
        calc = calculate_fees(
            [_sale("10")],
            _pricing(percentage_fee="0.05", per_transaction_fee="0", reserve_amount="500"),
            D("0"),
        )
        assert calc.reserve_deducted == D("9.995")

        rounded = calc.quantized()
        assert rounded.processing_fee_amount == D("0.01")
        assert rounded.reserve_deducted == D("9.99")
        assert rounded.merchant_payout == 0
        _assert_identities(rounded)

    def test_to_cents_rounds_half_up(self):
        assert to_cents(D("0.005")) == D("0.01")
        assert to_cents(D("2.344")) == D("2.34")
        assert to_cents(D("-1.005")) == D("-1.01")


# ── Amount coercion ──────────────────────────────────────────────────


class TestCoerceAmount:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            (D("12.50"), D("12.50")),
            ("7.25", D("7.25")),
            (" 3 ", D("3")),
            (4, D("4")),
            (None, D("0")),
        ],
    )
    def test_valid_values(self, raw, expected):
        assert coerce_amount(raw) == expected

    @pytest.mark.parametrize("raw", ["abc", "", "NaN", "Infinity", D("NaN")])
    def test_malformed_values_become_zero(self, raw):
        with patch.object(calculator.logger, "warning") as warning:
            assert coerce_amount(raw) == 0
        warning.assert_called_once()

    def test_fee_line_from_transaction_coerces(self):
        line = FeeLine.from_transaction(SimpleNamespace(amount="oops", kind="refund"))
        assert line.amount == 0
        assert line.kind is TransactionKind.REFUND
