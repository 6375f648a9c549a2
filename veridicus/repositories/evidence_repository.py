from typing import Iterable, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from veridicus.database.models import Case, Evidence
from veridicus.repositories.base_repository import BaseRepository


class EvidenceRepository(BaseRepository[Evidence]):
    """Evidence queries; ownership is derived through the parent case."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, Evidence)

    async def list_for_case(
        self, case_id: UUID, file_type: Optional[str] = None
    ) -> List[Evidence]:
        query = select(Evidence).where(Evidence.case_id == case_id)
        if file_type:
            query = query.where(Evidence.file_type == file_type)
        try:
            result = await self.session.execute(query.order_by(Evidence.created_at.desc()))
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise self._fail("listing", e) from e

    async def get_owned(self, evidence_id: UUID, user_id: str) -> Optional[Evidence]:
        """Return the evidence row only when its case belongs to ``user_id``."""
        try:
            result = await self.session.execute(
                select(Evidence)
                .join(Case, Evidence.case_id == Case.id)
                .where(Evidence.id == evidence_id, Case.user_id == user_id)
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise self._fail("retrieving", e) from e

    async def get_in_case(self, evidence_id: UUID, case_id: UUID) -> Optional[Evidence]:
        try:
            result = await self.session.execute(
                select(Evidence).where(Evidence.id == evidence_id, Evidence.case_id == case_id)
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise self._fail("retrieving", e) from e

    async def get_with_case(self, evidence_id: UUID) -> Optional[Evidence]:
        try:
            result = await self.session.execute(
                select(Evidence)
                .options(selectinload(Evidence.case))
                .where(Evidence.id == evidence_id)
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise self._fail("retrieving", e) from e

    async def list_unfinished(self, statuses: Iterable[str]) -> List[Tuple[UUID, int]]:
        """Return ``(id, processing_attempts)`` for rows in the given statuses."""
        try:
            result = await self.session.execute(
                select(Evidence.id, Evidence.processing_attempts)
                .where(Evidence.processing_status.in_(list(statuses)))
                .order_by(Evidence.created_at)
            )
            return [(row.id, row.processing_attempts or 0) for row in result.all()]
        except SQLAlchemyError as e:
            raise self._fail("listing", e) from e

    async def mark_failed(self, evidence_id: UUID, reason: str) -> Optional[Evidence]:
        evidence = await self.get_by_id(evidence_id)
        if evidence is None:
            return None
        return await self.update(
            evidence,
            evidence_metadata={
                **(evidence.evidence_metadata or {}),
                "processing_error": reason,
                "processed": False,
            },
            processing_status="failed",
        )
