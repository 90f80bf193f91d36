"""Domain errors raised by the settlement services.

Routes translate these into HTTP status codes; the batch runner turns
them into per-site outcomes.
"""

from __future__ import annotations


class SettlementError(Exception):
    """Base class for every settlement-domain failure."""


class PricingNotConfiguredError(SettlementError):
    def __init__(self, site_id: str) -> None:
        super().__init__(f"No pricing configured for site {site_id!r}")
        self.site_id = site_id


class NoTransactionsError(SettlementError):
    def __init__(self, site_id: str) -> None:
        super().__init__(f"No unsettled transactions for site {site_id!r} in period")
        self.site_id = site_id


class ClaimConflictError(SettlementError):
    """Fewer transactions were claimed than were selected.

    Another run linked some of them to a different report between the
    select and the claim; the whole site write is rolled back.
    """

    def __init__(self, site_id: str, expected: int, claimed: int) -> None:
        super().__init__(
            f"Claim conflict for site {site_id!r}: expected {expected} "
            f"transactions, claimed {claimed}"
        )
        self.site_id = site_id
        self.expected = expected
        self.claimed = claimed


class ReportNotFoundError(SettlementError):
    def __init__(self, report_number: str) -> None:
        super().__init__(f"Settlement report {report_number!r} not found")
        self.report_number = report_number


class ReserveInvariantError(SettlementError):
    """A pricing change would put reserve_collected above reserve_amount."""


class PendingReportExistsError(SettlementError):
    """The site still has an unresolved report; it must be paid or deleted first."""

    def __init__(self, site_id: str, report_number: str) -> None:
        super().__init__(
            f"A pending report already exists for site {site_id!r}: "
            f"{report_number}. Resolve it first."
        )
        self.site_id = site_id
        self.report_number = report_number


class TransactionAlreadySettledError(SettlementError):
    def __init__(self, session_id: str) -> None:
        super().__init__(
            f"Transaction {session_id!r} is already included in a settlement report"
        )
        self.session_id = session_id


class AdjustmentError(SettlementError):
    """An adjustment does not match anything the referenced report paid out."""


class AdjustmentsRequireConfirmationError(SettlementError):
    """Deleting the report would also delete adjustments recorded against it."""

    def __init__(self, report_number: str, pending: int, applied: int) -> None:
        message = (
            f"Report {report_number} has {pending + applied} adjustment(s) "
            f"referencing it."
        )
        if applied:
            message += f" {applied} have been applied to other reports."
        if pending:
            message += f" {pending} are pending."
        message += " Deleting this report will also delete these adjustments."
        super().__init__(message)
        self.report_number = report_number
        self.pending = pending
        self.applied = applied


class ReportStatusError(SettlementError):
    """A report status change that is not allowed from the current status."""
