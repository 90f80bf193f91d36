"""Per-site pricing configuration endpoints."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.logging import get_logger
from app.models.pricing import PricingConfig
from app.schemas.pricing import PricingResponse, PricingUpsert
from app.services.settlement.errors import ReserveInvariantError
from app.services.settlement.store import SettlementStore

logger = get_logger(__name__)

router = APIRouter()


@router.get("", response_model=List[PricingResponse])
def list_pricing(db: Session = Depends(get_db)) -> List[PricingConfig]:
    """List every site's fee schedule."""
    return SettlementStore(db).list_pricing()


@router.get("/{site_id}", response_model=PricingResponse)
def get_pricing(site_id: str, db: Session = Depends(get_db)) -> PricingConfig:
    pricing = SettlementStore(db).get_pricing(site_id)
    if pricing is None:
        raise HTTPException(status_code=404, detail=f"No pricing configured for {site_id!r}")
    return pricing


@router.put("/{site_id}", response_model=PricingResponse)
def upsert_pricing(
    site_id: str,
    body: PricingUpsert,
    db: Session = Depends(get_db),
) -> PricingConfig:
    """Create or update a site's fee schedule.

    The collected reserve is left untouched; lowering ``reserve_amount``
    below it is rejected with 409.
    """
    store = SettlementStore(db)
    try:
        pricing = store.upsert_pricing(site_id, **body.model_dump(exclude_unset=True))
        db.commit()
    except ReserveInvariantError as exc:
        db.rollback()
        raise HTTPException(status_code=409, detail=str(exc))

    db.refresh(pricing)
    logger.info("Pricing upserted for site %s", site_id)
    return pricing
