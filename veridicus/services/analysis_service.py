"""Read access to persisted analyses and contradictions."""

from typing import List

from sqlalchemy.ext.asyncio import AsyncSession

from veridicus.core.exceptions import AnalysisNotFoundError, ContradictionNotFoundError
from veridicus.database.models import Analysis, Contradiction
from veridicus.repositories.analysis_repository import (
    AnalysisRepository,
    ContradictionRepository,
)
from veridicus.services.case_service import CaseService
from veridicus.utils.validation import parse_uuid


class AnalysisService:
    """Case-scoped reads; a row outside the caller's cases is reported as not found."""

    def __init__(self, session: AsyncSession):
        self.analysis_repo = AnalysisRepository(session)
        self.contradiction_repo = ContradictionRepository(session)
        self.case_service = CaseService(session)

    async def list_analyses(self, case_id: str, user_id: str) -> List[Analysis]:
        case = await self.case_service.require_owned_case(case_id, user_id)
        return await self.analysis_repo.list_for_case(case.id)

    async def get_analysis(self, analysis_id: str, user_id: str) -> Analysis:
        analysis = await self.analysis_repo.get_owned(
            parse_uuid(analysis_id, "analysis ID"), user_id
        )
        if analysis is None:
            raise AnalysisNotFoundError("Analysis not found")
        return analysis

    async def list_contradictions(self, case_id: str, user_id: str) -> List[Contradiction]:
        case = await self.case_service.require_owned_case(case_id, user_id)
        return await self.contradiction_repo.list_for_case(case.id)

    async def get_contradiction(self, contradiction_id: str, user_id: str) -> Contradiction:
        contradiction = await self.contradiction_repo.get_owned(
            parse_uuid(contradiction_id, "contradiction ID"), user_id
        )
        if contradiction is None:
            raise ContradictionNotFoundError("Contradiction not found")
        return contradiction
