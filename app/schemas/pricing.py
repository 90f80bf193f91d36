"""Pydantic schemas for per-site pricing configuration."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class PricingUpsert(BaseModel):
    """Fee schedule fields an operator may set.

    ``reserve_collected`` is absent on purpose: only settlement runs move it.
    Omitted fields keep their stored value.
    """

    site_name: Optional[str] = Field(None, max_length=255)
    is_active: Optional[bool] = None
    percentage_fee: Optional[Decimal] = Field(
        None,
        ge=0,
        le=100,
        max_digits=7,
        decimal_places=4,
        description="Percent of net, e.g. 2.9",
    )
    per_transaction_fee: Optional[Decimal] = Field(
        None, ge=0, max_digits=15, decimal_places=4
    )
    refund_fee: Optional[Decimal] = Field(None, ge=0, max_digits=15, decimal_places=4)
    chargeback_fee: Optional[Decimal] = Field(
        None, ge=0, max_digits=15, decimal_places=4
    )
    reserve_amount: Optional[Decimal] = Field(
        None,
        ge=0,
        max_digits=15,
        decimal_places=2,
        description="Reserve target; 0 disables the reserve program",
    )


class PricingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    site_id: str
    site_name: Optional[str] = None
    is_active: bool
    percentage_fee: Decimal
    per_transaction_fee: Decimal
    refund_fee: Decimal
    chargeback_fee: Decimal
    reserve_amount: Decimal
    reserve_collected: Decimal
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
