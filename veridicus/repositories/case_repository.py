from datetime import datetime
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from veridicus.database.models import Case
from veridicus.repositories.base_repository import BaseRepository


class CaseRepository(BaseRepository[Case]):
    """Case queries, always filtered by the owning user."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, Case)

    async def list_for_user(self, user_id: str) -> List[Case]:
        try:
            result = await self.session.execute(
                select(Case).where(Case.user_id == user_id).order_by(Case.updated_at.desc())
            )
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise self._fail("listing", e) from e

    async def get_owned(
        self, case_id: UUID, user_id: str, with_evidence: bool = False
    ) -> Optional[Case]:
        """Return the case only when ``user_id`` owns it."""
        query = select(Case).where(Case.id == case_id, Case.user_id == user_id)
        if with_evidence:
            query = query.options(selectinload(Case.evidence))
        try:
            result = await self.session.execute(query)
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise self._fail("retrieving", e) from e

    async def set_context_cache(
        self, case: Case, cache_id: str, expires_at: datetime
    ) -> Case:
        return await self.update(case, cache_id=cache_id, cache_expires_at=expires_at)
