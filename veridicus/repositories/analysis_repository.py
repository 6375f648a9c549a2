from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from veridicus.database.models import Analysis, Case, Contradiction
from veridicus.repositories.base_repository import BaseRepository


class AnalysisRepository(BaseRepository[Analysis]):
    def __init__(self, session: AsyncSession):
        super().__init__(session, Analysis)

    async def list_for_case(self, case_id: UUID) -> List[Analysis]:
        try:
            result = await self.session.execute(
                select(Analysis)
                .where(Analysis.case_id == case_id)
                .order_by(Analysis.created_at.desc())
            )
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise self._fail("listing", e) from e

    async def get_owned(self, analysis_id: UUID, user_id: str) -> Optional[Analysis]:
        try:
            result = await self.session.execute(
                select(Analysis)
                .join(Case, Analysis.case_id == Case.id)
                .where(Analysis.id == analysis_id, Case.user_id == user_id)
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise self._fail("retrieving", e) from e

    async def create_with_contradictions(
        self, contradictions: List[Dict[str, Any]], **fields: Any
    ) -> Tuple[Analysis, List[Contradiction]]:
        """Insert an analysis and the contradictions parsed from it in one transaction."""
        try:
            analysis = Analysis(**fields)
            self.session.add(analysis)
            await self.session.flush()

            rows = [
                Contradiction(**item, analysis_id=analysis.id, case_id=analysis.case_id)
                for item in contradictions
            ]
            self.session.add_all(rows)
            await self.session.flush()
            await self.session.commit()

            await self.session.refresh(analysis)
            for row in rows:
                await self.session.refresh(row)
            return analysis, rows
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise self._fail("creating", e) from e


class ContradictionRepository(BaseRepository[Contradiction]):
    def __init__(self, session: AsyncSession):
        super().__init__(session, Contradiction)

    async def list_for_case(self, case_id: UUID) -> List[Contradiction]:
        try:
            result = await self.session.execute(
                select(Contradiction)
                .where(Contradiction.case_id == case_id)
                .order_by(Contradiction.created_at.desc())
            )
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise self._fail("listing", e) from e

    async def get_owned(self, contradiction_id: UUID, user_id: str) -> Optional[Contradiction]:
        try:
            result = await self.session.execute(
                select(Contradiction)
                .join(Case, Contradiction.case_id == Case.id)
                .where(Contradiction.id == contradiction_id, Case.user_id == user_id)
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise self._fail("retrieving", e) from e

