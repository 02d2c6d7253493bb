from __future__ import annotations

from typing import Any, Iterable, Optional

from sqlalchemy import Executable
from sqlalchemy.ext.asyncio import AsyncSession


class BaseRepository:
    """
    Thin async data-access helpers shared by the repositories.

    Repositories never commit: the calling service owns the transaction
    (BaseService.transaction) so hold, incident and scorecard writes of one
    operation land together or not at all.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def execute(self, statement: Executable, params: Optional[dict[str, Any]] = None):
        return await self.session.execute(statement, params or {})

    async def scalars(self, statement: Executable, params: Optional[dict[str, Any]] = None):
        return (await self.execute(statement, params)).scalars()

    async def scalar_one_or_none(self, statement: Executable, params: Optional[dict[str, Any]] = None):
        return (await self.execute(statement, params)).scalar_one_or_none()

    async def add(self, entity: Any) -> None:
        self.session.add(entity)

    async def add_all(self, entities: Iterable[Any]) -> None:
        self.session.add_all(list(entities))

    async def delete(self, entity: Any) -> None:
        await self.session.delete(entity)

    async def flush(self) -> None:
        """Push pending writes so constraint violations surface before commit."""
        await self.session.flush()
