import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import IntegrityError

from veridicus.core.exceptions import DatabaseError
from veridicus.repositories.analysis_repository import AnalysisRepository


@pytest.fixture
def session() -> MagicMock:
    session = MagicMock()
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.refresh = AsyncMock()
    return session


class TestCreateWithContradictions:
    @pytest.mark.asyncio
    async def test_analysis_and_contradictions_commit_together(self, session):
        repo = AnalysisRepository(session)
        case_id = uuid.uuid4()

        analysis, rows = await repo.create_with_contradictions(
            [{"description": "Gate log vs statement", "severity": "high", "timestamps": {}}],
            id=uuid.uuid4(),
            case_id=case_id,
            query="Compare accounts",
            thoughts=[],
            result={},
            citations=[],
        )

        session.commit.assert_awaited_once()
        assert rows[0].analysis_id == analysis.id
        assert rows[0].case_id == case_id

    @pytest.mark.asyncio
    async def test_failed_contradiction_insert_rolls_back_the_analysis(self, session):
        session.flush.side_effect = [None, IntegrityError("INSERT", {}, Exception("fk violation"))]
        repo = AnalysisRepository(session)

        with pytest.raises(DatabaseError):
            await repo.create_with_contradictions(
                [{"description": "Gate log vs statement", "evidence_a_id": uuid.uuid4()}],
                id=uuid.uuid4(),
                case_id=uuid.uuid4(),
                query="Compare accounts",
            )

        session.commit.assert_not_called()
        session.rollback.assert_awaited_once()
