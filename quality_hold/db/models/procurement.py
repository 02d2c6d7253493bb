from __future__ import annotations

import uuid
from datetime import date
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, Date, ForeignKey, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from quality_hold.db.base import Base, UUIDPkMixin, TimestampMixin


class DeliveryOutcome(str, Enum):
    """Supplier-facing verdict for a single delivery."""
    SUCCESSFUL = "successful"
    PARTIAL_ISSUE = "partial_issue"
    MAJOR_ISSUE = "major_issue"
    REJECTED = "rejected"


class Supplier(UUIDPkMixin, TimestampMixin, Base):
    """Supplier/vendor master."""
    __tablename__ = "suppliers"

    code: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)


class SupplierDeliveryRecord(UUIDPkMixin, TimestampMixin, Base):
    """Delivery scorecard row; exactly one per shipment."""
    __tablename__ = "supplier_delivery_records"

    shipment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("shipments.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    supplier_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("suppliers.id", ondelete="SET NULL"), nullable=True, index=True
    )
    supplier_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    delivery_date: Mapped[date] = mapped_column(Date, nullable=False)
    has_quality_issues: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    final_outcome: Mapped[str] = mapped_column(Text, nullable=False, default=DeliveryOutcome.SUCCESSFUL.value)
    confirmed_by_user_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
