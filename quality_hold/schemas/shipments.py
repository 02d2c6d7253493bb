from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class DeliveryConfirm(BaseModel):
    """Delivery confirmation payload."""
    has_issues: bool = Field(..., description="True when the goods arrived with quality issues")
    notes: Optional[str] = Field(None, max_length=500)
