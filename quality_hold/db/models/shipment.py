from __future__ import annotations

import uuid
from typing import Optional

from sqlalchemy import Boolean, ForeignKey, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from quality_hold.db.base import Base, SoftDeleteMixin, TimestampMixin, UUIDPkMixin
from quality_hold.db.models.procurement import Supplier


class Shipment(UUIDPkMixin, SoftDeleteMixin, TimestampMixin, Base):
    """
    Inbound shipment. Owned by the logistics module; this service only reads it
    and mutates the hold columns (through HoldController) and the delivery status.
    """
    __tablename__ = "shipments"

    sn: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    supplier_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("suppliers.id", ondelete="SET NULL"), nullable=True
    )
    status: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    hold_status: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    hold_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # Tag of the workflow that placed the current hold, e.g. "quality_incident:<id>".
    hold_source: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    supplier: Mapped[Optional[Supplier]] = relationship(Supplier, lazy="joined")
