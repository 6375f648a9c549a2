"""Tests for evidence upload and read endpoints."""

import uuid
from unittest.mock import AsyncMock, MagicMock

from fastapi.testclient import TestClient

from veridicus.api.v1.endpoints.evidence import (
    get_evidence_processor,
    get_evidence_service,
    get_ingestion_service,
)
from veridicus.core.config import PolicySettings
from veridicus.database.models import Evidence
from veridicus.main import app
from veridicus.services.evidence_service import EvidenceIngestionService, EvidenceService
from tests.conftest import AUTH_HEADERS, TEST_USER_ID


class InMemoryEvidenceStore:
    """Stands in for the evidence table across an upload and a later read."""

    def __init__(self):
        self.rows = {}

    async def create(self, **kwargs) -> Evidence:
        evidence = Evidence(id=uuid.uuid4(), **kwargs)
        self.rows[evidence.id] = evidence
        return evidence

    async def get_owned(self, evidence_id, user_id):
        return self.rows.get(evidence_id)


def make_ingestion_service(case, store=None, policy=None):
    storage = AsyncMock()
    storage.upload_bytes.side_effect = lambda path, content, content_type: path
    service = EvidenceIngestionService(
        MagicMock(), storage, MagicMock(), policy or PolicySettings()
    )
    service.case_service.case_repo = AsyncMock()
    service.case_service.case_repo.get_owned.return_value = case
    service.evidence_repo = store or AsyncMock()
    service.audit_repo = AsyncMock()
    return service


class TestEvidenceUpload:
    def test_pdf_upload_then_read_is_unprocessed(
        self, test_client: TestClient, authenticated, sample_case, sample_pdf_content
    ) -> None:
        store = InMemoryEvidenceStore()
        ingestion = make_ingestion_service(sample_case, store)
        app.dependency_overrides[get_ingestion_service] = lambda: ingestion

        response = test_client.post(
            f"/api/v1/evidence/upload?caseId={sample_case.id}",
            files={"file": ("statement.pdf", sample_pdf_content, "application/pdf")},
            headers=AUTH_HEADERS,
        )

        assert response.status_code == 201
        created = response.json()
        assert created["metadata"]["processed"] is False
        assert created["metadata"]["originalName"] == "statement.pdf"
        assert created["processing_status"] == "pending"
        assert created["file_type"] == "application"
        assert created["file_path"].startswith(f"{sample_case.id}/")
        ingestion.task_queue.enqueue.assert_called_once()
        ingestion.audit_repo.log_action.assert_awaited_once()
        assert ingestion.audit_repo.log_action.await_args.args[2] == "evidence_upload"

        reader = EvidenceService(MagicMock())
        reader.evidence_repo = store
        app.dependency_overrides[get_evidence_service] = lambda: reader

        response = test_client.get(f"/api/v1/evidence/{created['id']}", headers=AUTH_HEADERS)

        assert response.status_code == 200
        assert response.json()["metadata"]["processed"] is False

    def test_missing_file_is_400(self, test_client: TestClient, authenticated, sample_case) -> None:
        app.dependency_overrides[get_ingestion_service] = lambda: make_ingestion_service(sample_case)

        response = test_client.post(
            f"/api/v1/evidence/upload?caseId={sample_case.id}", headers=AUTH_HEADERS
        )

        assert response.status_code == 400
        assert response.json() == {"error": "No file uploaded"}

    def test_missing_case_id_is_400(
        self, test_client: TestClient, authenticated, sample_case, sample_pdf_content
    ) -> None:
        app.dependency_overrides[get_ingestion_service] = lambda: make_ingestion_service(sample_case)

        response = test_client.post(
            "/api/v1/evidence/upload",
            files={"file": ("statement.pdf", sample_pdf_content, "application/pdf")},
            headers=AUTH_HEADERS,
        )

        assert response.status_code == 400
        assert response.json() == {"error": "caseId is required"}

    def test_upload_to_foreign_case_is_404(
        self, test_client: TestClient, authenticated, sample_pdf_content
    ) -> None:
        ingestion = make_ingestion_service(None)
        app.dependency_overrides[get_ingestion_service] = lambda: ingestion

        response = test_client.post(
            f"/api/v1/evidence/upload?caseId={uuid.uuid4()}",
            files={"file": ("statement.pdf", sample_pdf_content, "application/pdf")},
            headers=AUTH_HEADERS,
        )

        assert response.status_code == 404
        ingestion.storage.upload_bytes.assert_not_called()

    def test_oversized_file_never_reaches_storage(
        self, test_client: TestClient, authenticated, sample_case
    ) -> None:
        policy = PolicySettings()
        policy.max_file_size_mb = 1
        ingestion = make_ingestion_service(sample_case, policy=policy)
        app.dependency_overrides[get_ingestion_service] = lambda: ingestion

        response = test_client.post(
            f"/api/v1/evidence/upload?caseId={sample_case.id}",
            files={"file": ("big.pdf", b"%PDF" + b"0" * (1024 * 1024), "application/pdf")},
            headers=AUTH_HEADERS,
        )

        assert response.status_code == 400
        assert response.json() == {"error": "File exceeds maximum size of 1MB"}
        ingestion.storage.upload_bytes.assert_not_called()
        ingestion.evidence_repo.create.assert_not_called()

    def test_mismatched_signature_is_415(
        self, test_client: TestClient, authenticated, sample_case
    ) -> None:
        ingestion = make_ingestion_service(sample_case)
        app.dependency_overrides[get_ingestion_service] = lambda: ingestion

        response = test_client.post(
            f"/api/v1/evidence/upload?caseId={sample_case.id}",
            files={"file": ("fake.pdf", b"MZ\x90\x00 not a pdf", "application/pdf")},
            headers=AUTH_HEADERS,
        )

        assert response.status_code == 415
        ingestion.storage.upload_bytes.assert_not_called()

    def test_unsupported_type_is_415(
        self, test_client: TestClient, authenticated, sample_case
    ) -> None:
        app.dependency_overrides[get_ingestion_service] = lambda: make_ingestion_service(sample_case)

        response = test_client.post(
            f"/api/v1/evidence/upload?caseId={sample_case.id}",
            files={"file": ("tool.exe", b"MZ\x90\x00", "application/x-msdownload")},
            headers=AUTH_HEADERS,
        )

        assert response.status_code == 415
        assert response.json() == {"error": "Unsupported file type: application/x-msdownload"}


class TestEvidenceReads:
    def test_list_for_foreign_case_is_404(self, test_client: TestClient, authenticated) -> None:
        reader = EvidenceService(MagicMock())
        reader.case_service.case_repo = AsyncMock()
        reader.case_service.case_repo.get_owned.return_value = None
        app.dependency_overrides[get_evidence_service] = lambda: reader

        response = test_client.get(f"/api/v1/evidence/case/{uuid.uuid4()}", headers=AUTH_HEADERS)

        assert response.status_code == 404
        assert response.json() == {"error": "Case not found"}

    def test_malformed_evidence_id_is_400(self, test_client: TestClient, authenticated) -> None:
        reader = EvidenceService(MagicMock())
        reader.evidence_repo = AsyncMock()
        app.dependency_overrides[get_evidence_service] = lambda: reader

        response = test_client.get("/api/v1/evidence/123", headers=AUTH_HEADERS)

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid evidence ID format"}
        reader.evidence_repo.get_owned.assert_not_called()

    def test_download_url(self, test_client: TestClient, authenticated, sample_evidence) -> None:
        storage = AsyncMock()
        storage.get_signed_url.return_value = {
            "signed_url": "https://test-project.supabase.co/storage/v1/object/sign/evidence/x?token=t",
            "storage_path": sample_evidence.file_path,
        }
        reader = EvidenceService(MagicMock(), storage)
        reader.evidence_repo = AsyncMock()
        reader.evidence_repo.get_owned.return_value = sample_evidence
        app.dependency_overrides[get_evidence_service] = lambda: reader

        response = test_client.get(
            f"/api/v1/evidence/{sample_evidence.id}/download", headers=AUTH_HEADERS
        )

        assert response.status_code == 200
        assert response.json()["storage_path"] == sample_evidence.file_path
        reader.evidence_repo.get_owned.assert_awaited_once_with(sample_evidence.id, TEST_USER_ID)

    def test_process_runs_inline(self, test_client: TestClient, authenticated, sample_evidence) -> None:
        reader = EvidenceService(MagicMock())
        reader.evidence_repo = AsyncMock()
        reader.evidence_repo.get_owned.return_value = sample_evidence
        processor = AsyncMock()
        processor.process.return_value = {"summary": "Signed statement", "confidence": 0.9}
        app.dependency_overrides[get_evidence_service] = lambda: reader
        app.dependency_overrides[get_evidence_processor] = lambda: processor

        response = test_client.post(
            f"/api/v1/evidence/{sample_evidence.id}/process", headers=AUTH_HEADERS
        )

        assert response.status_code == 200
        assert response.json()["summary"] == "Signed statement"
        processor.process.assert_awaited_once_with(sample_evidence.id, final_attempt=True)
