from unittest.mock import AsyncMock, MagicMock

import pytest

from veridicus.core.config import PolicySettings
from veridicus.core.exceptions import (
    StorageError,
    UnsupportedMediaTypeError,
    ValidationError,
)
from veridicus.database.models import Evidence
from veridicus.services.evidence_service import EvidenceIngestionService, EvidenceUpload
from tests.conftest import TEST_USER_ID


@pytest.fixture
def service(sample_case) -> EvidenceIngestionService:
    storage = AsyncMock()
    storage.upload_bytes.side_effect = lambda path, content, content_type: path
    service = EvidenceIngestionService(MagicMock(), storage, MagicMock(), PolicySettings())
    service.case_service.case_repo = AsyncMock()
    service.case_service.case_repo.get_owned.return_value = sample_case
    service.evidence_repo = AsyncMock()
    service.evidence_repo.create.side_effect = lambda **kw: Evidence(**kw)
    service.audit_repo = AsyncMock()
    return service


class TestCheckContent:
    def test_octet_stream_is_accepted_without_sniffing(self, service):
        service.check_content("application/octet-stream", b"\x00\x01anything")

    def test_text_types_are_accepted(self, service):
        service.check_content("text/plain", b"Interview transcript")

    def test_png_with_jpeg_bytes_is_rejected(self, service):
        with pytest.raises(UnsupportedMediaTypeError):
            service.check_content("image/png", b"\xff\xd8\xff\xe0JFIF")

    def test_sniffing_can_be_disabled(self, service):
        service.policy.enable_content_sniffing = False

        service.check_content("application/pdf", b"not a pdf")

    def test_size_limit_is_checked_first(self, service):
        service.policy.max_file_size_mb = 1

        with pytest.raises(ValidationError, match="File exceeds maximum size of 1MB"):
            service.check_content("application/x-msdownload", b"0" * (1024 * 1024 + 1))


class TestIngestion:
    @pytest.mark.asyncio
    async def test_upload_stores_blob_and_enqueues(self, service, sample_case, sample_pdf_content):
        evidence = await service.execute(
            EvidenceUpload(
                user_id=TEST_USER_ID,
                case_id=str(sample_case.id),
                filename="../Witness Statement.pdf",
                content_type="application/pdf; charset=binary",
                content=sample_pdf_content,
            )
        )

        assert evidence.mime_type == "application/pdf"
        assert evidence.file_size == len(sample_pdf_content)
        assert evidence.file_path.startswith(f"{sample_case.id}/")
        assert evidence.file_path.endswith("-Witness_Statement.pdf")
        assert evidence.evidence_metadata == {
            "originalName": "../Witness Statement.pdf",
            "processed": False,
        }
        service.task_queue.enqueue.assert_called_once_with(evidence.id)

    @pytest.mark.asyncio
    async def test_octet_stream_upload_is_stored(self, service, sample_case):
        evidence = await service.execute(
            EvidenceUpload(
                user_id=TEST_USER_ID,
                case_id=str(sample_case.id),
                filename="dump.bin",
                content_type=None,
                content=b"\x00\x01\x02",
            )
        )

        assert evidence.mime_type == "application/octet-stream"
        assert evidence.file_type == "application"
        service.storage.upload_bytes.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_malformed_case_id_is_rejected_before_lookup(self, service, sample_pdf_content):
        with pytest.raises(ValidationError, match="Invalid case ID format"):
            await service.execute(
                EvidenceUpload(
                    user_id=TEST_USER_ID,
                    case_id="abc",
                    filename="a.pdf",
                    content_type="application/pdf",
                    content=sample_pdf_content,
                )
            )

        service.case_service.case_repo.get_owned.assert_not_called()

    @pytest.mark.asyncio
    async def test_storage_failure_leaves_no_row(self, service, sample_case, sample_pdf_content):
        service.storage.upload_bytes.side_effect = StorageError("bucket unavailable")

        with pytest.raises(StorageError):
            await service.execute(
                EvidenceUpload(
                    user_id=TEST_USER_ID,
                    case_id=str(sample_case.id),
                    filename="a.pdf",
                    content_type="application/pdf",
                    content=sample_pdf_content,
                )
            )

        service.evidence_repo.create.assert_not_called()
        service.task_queue.enqueue.assert_not_called()
