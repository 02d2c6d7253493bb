"""
Database seeding utilities for a minimal demo data set.

Seeds:
- Demo supplier (SUP-DEMO)
- Demo shipment (SN-DEMO-0001) linked to that supplier, not on hold

Usage:
  python -m quality_hold.db.run_migrations upgrade head
  python -m quality_hold.db.seed
"""

from __future__ import annotations

import asyncio
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from quality_hold.db.models.procurement import Supplier
from quality_hold.db.models.shipment import Shipment
from quality_hold.db.session import session_scope

logger = logging.getLogger(__name__)

DEMO_SUPPLIER_CODE = "SUP-DEMO"
DEMO_SHIPMENT_SN = "SN-DEMO-0001"


# PUBLIC_INTERFACE
async def seed_all() -> None:
    """
    Seed the database with demo reference data. Safe to run repeatedly.
    """
    async with session_scope() as session:
        supplier = await _ensure_supplier(session, DEMO_SUPPLIER_CODE, "Demo Supplier Ltd.")
        await _ensure_shipment(session, DEMO_SHIPMENT_SN, supplier)


async def _ensure_supplier(session: AsyncSession, code: str, name: str) -> Supplier:
    supplier = (await session.execute(select(Supplier).where(Supplier.code == code))).scalar_one_or_none()
    if supplier is None:
        supplier = Supplier(code=code, name=name)
        session.add(supplier)
        await session.flush()
        logger.info("Seeded supplier %s", code)
    return supplier


async def _ensure_shipment(session: AsyncSession, sn: str, supplier: Supplier) -> Shipment:
    shipment = (await session.execute(select(Shipment).where(Shipment.sn == sn))).scalar_one_or_none()
    if shipment is None:
        shipment = Shipment(sn=sn, supplier_id=supplier.id, status="arrived", hold_status=False)
        session.add(shipment)
        await session.flush()
        logger.info("Seeded shipment %s", sn)
    return shipment


if __name__ == "__main__":
    asyncio.run(seed_all())
