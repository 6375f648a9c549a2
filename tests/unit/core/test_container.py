import uuid
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from veridicus.core.config import Settings
from veridicus.core.container import ATTEMPTS_EXHAUSTED_ERROR, ServiceContainer
from veridicus.services.task_queue import EvidenceTaskQueue


@pytest.fixture
def container() -> ServiceContainer:
    container = ServiceContainer(Settings())

    @asynccontextmanager
    async def session():
        yield MagicMock()

    container.database = MagicMock()
    container.database.session = session
    container.task_queue = EvidenceTaskQueue(AsyncMock(), max_attempts=3, retry_delay=0)
    return container


class TestRecoverUnfinishedEvidence:
    @pytest.mark.asyncio
    async def test_exhausted_rows_are_marked_failed(self, container):
        resumable, spent = uuid.uuid4(), uuid.uuid4()
        repo = MagicMock()
        repo.list_unfinished = AsyncMock(return_value=[(resumable, 1), (spent, 3)])
        repo.mark_failed = AsyncMock()

        with patch("veridicus.core.container.EvidenceRepository", return_value=repo):
            recovered = await container.recover_unfinished_evidence()

        assert recovered == 1
        assert container.task_queue.pending == 1
        repo.mark_failed.assert_awaited_once_with(spent, ATTEMPTS_EXHAUSTED_ERROR)

    @pytest.mark.asyncio
    async def test_database_failure_recovers_nothing(self, container):
        repo = MagicMock()
        repo.list_unfinished = AsyncMock(side_effect=RuntimeError("connection refused"))

        with patch("veridicus.core.container.EvidenceRepository", return_value=repo):
            recovered = await container.recover_unfinished_evidence()

        assert recovered == 0
        assert container.task_queue.pending == 0
