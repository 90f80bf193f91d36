"""Settlement endpoints.

Runs the weekly settlement batch (scheduled or on demand), previews fees
for a site, builds reports from an operator's selection of transactions,
records post-settlement adjustments, and reads, pays or deletes
settlement reports.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.database import get_db
from app.core.logging import get_logger
from app.models.adjustment import AdjustmentStatus, SettlementAdjustment
from app.models.settlement_report import SettlementReport
from app.schemas.settlement import (
    AdjustmentCreate,
    AdjustmentResponse,
    CreateReportRequest,
    DeleteReportResponse,
    FeeCalculationSchema,
    PeriodSchema,
    PreviewRequest,
    PreviewResponse,
    SettlementReportDetail,
    SettlementReportResponse,
    SiteResult,
    WeeklyRunResponse,
)
from app.services.settlement.errors import (
    AdjustmentError,
    AdjustmentsRequireConfirmationError,
    NoTransactionsError,
    PendingReportExistsError,
    PricingNotConfiguredError,
    ReportNotFoundError,
    ReportStatusError,
    TransactionAlreadySettledError,
)
from app.services.settlement.period import SettlementPeriod
from app.services.settlement.runner import SettlementRunner

logger = get_logger(__name__)

router = APIRouter()


def _keys(body) -> list[tuple[str, datetime]]:
    return [(key.session_id, key.occurred_at) for key in body.transaction_keys]


@router.api_route("/weekly-run", methods=["GET", "POST"], response_model=WeeklyRunResponse)
def run_weekly_settlement(
    as_of: Optional[datetime] = Query(
        None,
        description="Instant used to resolve the previous week (default: now)",
    ),
    site: Optional[List[str]] = Query(
        None,
        description="Override the site roster; repeat for several sites",
    ),
    db: Session = Depends(get_db),
):
    """Settle the previous completed Monday..Sunday week for every site.

    No body is required, so the scheduler can call it with a bare GET.
    ``success`` only reports that the batch ran; every entry of
    ``results`` carries its own status.
    """
    runner = SettlementRunner(db=db, config=settings)
    try:
        batch = runner.run_weekly(now=as_of, sites=site)
    except Exception as exc:
        db.rollback()
        logger.exception("Weekly settlement batch failed")
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": str(exc) or "Internal server error"},
        )

    return WeeklyRunResponse(
        success=True,
        period=PeriodSchema(start=batch.period.start, end=batch.period.end),
        results=[SiteResult(**outcome.as_dict()) for outcome in batch.results],
        audit_recorded=batch.audit_recorded,
    )


@router.post("/preview", response_model=PreviewResponse)
def preview_settlement(
    body: PreviewRequest,
    db: Session = Depends(get_db),
) -> PreviewResponse:
    """Calculate fees without writing a report.

    Over a period this previews the weekly report; over ``transaction_keys``
    it previews a manual report, pending adjustments included.
    """
    runner = SettlementRunner(db=db, config=settings)
    try:
        if body.transaction_keys is not None:
            preview = runner.preview_selection(
                body.site_id,
                _keys(body),
                include_pending_adjustments=body.include_pending_adjustments,
            )
        else:
            period = SettlementPeriod(start=body.period_start, end=body.period_end)
            preview = runner.preview(body.site_id, period)
    except PricingNotConfiguredError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except (NoTransactionsError, TransactionAlreadySettledError) as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    return PreviewResponse(
        site_id=preview.site_id,
        period=PeriodSchema(start=preview.period.start, end=preview.period.end),
        calculation=FeeCalculationSchema(**preview.calculation.as_dict()),
    )


@router.post("/reports", response_model=SettlementReportDetail, status_code=201)
def create_report(
    body: CreateReportRequest,
    db: Session = Depends(get_db),
) -> SettlementReport:
    """Create a report from selected transactions, applying pending adjustments."""
    runner = SettlementRunner(db=db, config=settings)
    try:
        return runner.create_report(
            body.site_id,
            _keys(body),
            actor=body.created_by,
            notes=body.notes,
        )
    except PendingReportExistsError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except PricingNotConfiguredError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except (NoTransactionsError, TransactionAlreadySettledError) as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@router.get("/reports", response_model=List[SettlementReportResponse])
def list_reports(
    site_id: Optional[str] = Query(None, description="Filter by site"),
    page: int = Query(1, ge=1, description="Page number"),
    limit: int = Query(50, ge=1, le=500, description="Items per page"),
    db: Session = Depends(get_db),
) -> List[SettlementReport]:
    """List settlement reports, newest period first."""
    runner = SettlementRunner(db=db, config=settings)
    return runner.store.list_reports(site_id=site_id, page=page, limit=limit)


@router.get("/reports/{report_number}", response_model=SettlementReportDetail)
def get_report(
    report_number: str,
    db: Session = Depends(get_db),
) -> SettlementReport:
    """Retrieve one settlement report with its item snapshot."""
    runner = SettlementRunner(db=db, config=settings)
    try:
        return runner.store.get_report(report_number)
    except ReportNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))


@router.post("/reports/{report_number}/paid", response_model=SettlementReportResponse)
def mark_report_paid(
    report_number: str,
    actor: Optional[str] = Query(None, description="Who sent the payout"),
    db: Session = Depends(get_db),
) -> SettlementReport:
    """Close a pending report so the site can be settled manually again."""
    runner = SettlementRunner(db=db, config=settings)
    try:
        return runner.mark_paid(report_number, actor=actor)
    except ReportNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except ReportStatusError as exc:
        raise HTTPException(status_code=409, detail=str(exc))


@router.delete("/reports/{report_number}", response_model=DeleteReportResponse)
def delete_report(
    report_number: str,
    actor: Optional[str] = Query(None, description="Who requested the deletion"),
    force: bool = Query(
        False,
        description="Also delete adjustments recorded against this report",
    ),
    db: Session = Depends(get_db),
) -> DeleteReportResponse:
    """Delete a report, release its transactions and restore its reserve."""
    runner = SettlementRunner(db=db, config=settings)
    try:
        summary = runner.delete_report(report_number, actor=actor, force=force)
    except ReportNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except AdjustmentsRequireConfirmationError as exc:
        raise HTTPException(status_code=409, detail=str(exc))

    return DeleteReportResponse(
        report_number=summary["report_number"],
        site_id=summary["site_id"],
        transactions_unsettled=summary["transactions_unsettled"],
        adjustments_deleted=summary["adjustments_deleted"],
        adjustments_reset=summary["adjustments_reset"],
        reserve_restored=summary["reserve_restored"],
    )


@router.post("/adjustments", response_model=AdjustmentResponse, status_code=201)
def record_adjustment(
    body: AdjustmentCreate,
    db: Session = Depends(get_db),
) -> SettlementAdjustment:
    """Record a refund or chargeback of an already settled transaction."""
    runner = SettlementRunner(db=db, config=settings)
    try:
        return runner.record_adjustment(
            body.report_number,
            session_id=body.session_id,
            reason=body.reason,
            amount=body.amount,
            actor=body.created_by,
            notes=body.notes,
        )
    except ReportNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except AdjustmentError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@router.get("/adjustments", response_model=List[AdjustmentResponse])
def list_adjustments(
    site_id: Optional[str] = Query(None, description="Filter by site"),
    status: Optional[AdjustmentStatus] = Query(None, description="pending | applied"),
    db: Session = Depends(get_db),
) -> List[SettlementAdjustment]:
    runner = SettlementRunner(db=db, config=settings)
    return runner.store.list_adjustments(site_id=site_id, status=status)
