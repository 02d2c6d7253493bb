from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession


class BaseService:
    """
    Base class for services. Holds a session for use across multiple repositories.

    Services keep business logic and orchestration, delegating data access
    to repositories, and own the transaction boundaries.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """
        All-or-nothing unit of work: commit when the block exits cleanly,
        roll back everything on any exception.

        Nested use (a service calling another service's operation inside its
        own transaction) is not supported; collaborators expose helpers that
        run inside the caller's transaction instead.
        """
        try:
            yield self.session
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
