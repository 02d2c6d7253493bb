from __future__ import annotations

from datetime import date, datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class SupplierDeliveryRecordRead(BaseModel):
    """Supplier scorecard row of one shipment."""
    id: UUID = Field(..., description="Record ID")
    shipment_id: UUID = Field(..., description="Shipment")
    supplier_id: Optional[UUID] = Field(None, description="Supplier")
    supplier_name: Optional[str] = Field(None)
    delivery_date: date = Field(..., description="Date the delivery was recorded")
    has_quality_issues: bool = Field(...)
    final_outcome: str = Field(..., description="successful | partial_issue | major_issue | rejected")
    confirmed_by_user_id: Optional[str] = Field(None)
    updated_at: datetime = Field(..., description="Updated at")

    class Config:
        from_attributes = True


class SupplierDeliveryStats(BaseModel):
    """Delivery totals per outcome for one supplier."""
    supplier_id: UUID = Field(..., description="Supplier ID")
    supplier_name: Optional[str] = Field(None)
    total_deliveries: int = Field(0)
    successful: int = Field(0)
    partial_issues: int = Field(0)
    major_issues: int = Field(0)
    rejected: int = Field(0)
    success_rate: Optional[float] = Field(None, description="Percentage of successful deliveries (1 decimal)")
