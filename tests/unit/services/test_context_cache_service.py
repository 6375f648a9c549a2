import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from veridicus.core.exceptions import ValidationError
from veridicus.core.gemini_client import ContextCacheInfo
from veridicus.database.models import Evidence
from veridicus.services.context_cache_service import ContextCacheService, build_evidence_index
from tests.conftest import TEST_USER_ID


def make_service(case, gemini, storage, max_files=20) -> ContextCacheService:
    service = ContextCacheService(MagicMock(), storage, gemini, ttl_hours=12, max_files=max_files)
    service.case_service.case_repo = AsyncMock()
    service.case_service.case_repo.get_owned.return_value = case
    service.case_repo = AsyncMock()
    return service


class TestContextCacheService:
    @pytest.mark.asyncio
    async def test_cache_is_created_and_recorded(self, sample_case, sample_evidence, sample_pdf_content):
        expires = datetime.now(timezone.utc) + timedelta(hours=12)
        gemini = MagicMock()
        gemini.create_context_cache = AsyncMock(
            return_value=ContextCacheInfo("cachedContents/xyz", 5120, expires)
        )
        storage = AsyncMock()
        storage.download.return_value = sample_pdf_content
        service = make_service(sample_case, gemini, storage)

        info = await service.execute(str(sample_case.id), TEST_USER_ID)

        assert info.cache_id == "cachedContents/xyz"
        contents = gemini.create_context_cache.await_args.args[0]
        # index text, label, blob
        assert len(contents[0].parts) == 3
        assert str(sample_evidence.id) in contents[0].parts[0].text
        assert gemini.create_context_cache.await_args.kwargs["ttl_hours"] == 12
        service.case_repo.set_context_cache.assert_awaited_once_with(
            sample_case, "cachedContents/xyz", expires
        )

    @pytest.mark.asyncio
    async def test_blob_count_is_capped(self, sample_case, sample_pdf_content):
        sample_case.evidence = [
            Evidence(
                id=uuid.uuid4(),
                case_id=sample_case.id,
                file_path=f"{sample_case.id}/photo_{i}.png",
                file_type="image",
                mime_type="image/png",
                evidence_metadata={"originalName": f"photo_{i}.png"},
            )
            for i in range(3)
        ]
        gemini = MagicMock()
        gemini.create_context_cache = AsyncMock(
            return_value=ContextCacheInfo("cachedContents/xyz", 1, datetime.now(timezone.utc))
        )
        storage = AsyncMock()
        storage.download.return_value = sample_pdf_content
        service = make_service(sample_case, gemini, storage, max_files=2)

        await service.execute(str(sample_case.id), TEST_USER_ID)

        assert storage.download.await_count == 2

    @pytest.mark.asyncio
    async def test_case_without_evidence_is_rejected(self, sample_case):
        gemini = MagicMock()
        service = make_service(sample_case, gemini, AsyncMock())

        with pytest.raises(ValidationError, match="no evidence"):
            await service.execute(str(sample_case.id), TEST_USER_ID)


def test_evidence_index_uses_original_name(sample_evidence):
    index = build_evidence_index([sample_evidence])

    assert "statement.pdf" in index
    assert "No summary available" in index
