"""Evidence reads and upload ingestion."""

import time
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from veridicus.core.config import PolicySettings
from veridicus.core.exceptions import (
    EvidenceNotFoundError,
    UnsupportedMediaTypeError,
    ValidationError,
)
from veridicus.database.models import Evidence
from veridicus.repositories.audit_log_repository import AuditLogRepository
from veridicus.repositories.evidence_repository import EvidenceRepository
from veridicus.services.base_service import BaseService
from veridicus.services.case_service import CaseService
from veridicus.services.storage_service import StorageService
from veridicus.services.task_queue import EvidenceTaskQueue
from veridicus.utils.file_types import (
    OCTET_STREAM,
    is_allowed_type,
    matches_signature,
    normalize_mime,
    sanitize_filename,
    top_level_type,
)
from veridicus.utils.logging import get_logger
from veridicus.utils.validation import parse_uuid

LOGGER = get_logger(__name__)

SIGNED_URL_TTL_SECONDS = 3600


class EvidenceService:
    """Case-scoped evidence reads."""

    def __init__(self, session: AsyncSession, storage: Optional[StorageService] = None):
        self.session = session
        self.storage = storage
        self.evidence_repo = EvidenceRepository(session)
        self.case_service = CaseService(session)

    async def list_for_case(self, case_id: str, user_id: str) -> List[Evidence]:
        case = await self.case_service.require_owned_case(case_id, user_id)
        return await self.evidence_repo.list_for_case(case.id)

    async def get_evidence(self, evidence_id: str, user_id: str) -> Evidence:
        """Load an evidence row whose case the caller owns.

        Raises:
            ValidationError: If ``evidence_id`` is malformed
            EvidenceNotFoundError: If absent or not owned
        """
        evidence = await self.evidence_repo.get_owned(
            parse_uuid(evidence_id, "evidence ID"), user_id
        )
        if evidence is None:
            raise EvidenceNotFoundError("Evidence not found")
        return evidence

    async def download_url(self, evidence_id: str, user_id: str) -> Dict[str, Any]:
        evidence = await self.get_evidence(evidence_id, user_id)
        return await self.storage.get_signed_url(evidence.file_path, SIGNED_URL_TTL_SECONDS)


@dataclass
class EvidenceUpload:
    """One multipart upload as received by the HTTP layer."""

    user_id: str
    case_id: Optional[str]
    filename: Optional[str]
    content_type: Optional[str]
    content: Optional[bytes]


class EvidenceIngestionService(BaseService):
    """Validate an upload, store its blob, record it, and queue extraction."""

    def __init__(
        self,
        session: AsyncSession,
        storage: StorageService,
        task_queue: EvidenceTaskQueue,
        policy: PolicySettings,
    ):
        super().__init__()
        self.storage = storage
        self.task_queue = task_queue
        self.policy = policy
        self.evidence_repo = EvidenceRepository(session)
        self.audit_repo = AuditLogRepository(session)
        self.case_service = CaseService(session)

    def validate(self, upload: EvidenceUpload) -> None:
        if upload.content is None:
            raise ValidationError("No file uploaded")
        if not upload.case_id:
            raise ValidationError("caseId is required")
        parse_uuid(upload.case_id, "case ID")

    def check_content(self, mime_type: str, content: bytes) -> None:
        """Enforce the size limit and content-type policy.

        Raises:
            ValidationError: If the file is larger than the configured maximum
            UnsupportedMediaTypeError: If the type is not accepted or its
                leading bytes do not match the declared type
        """
        if len(content) > self.policy.max_file_size_bytes:
            raise ValidationError(
                f"File exceeds maximum size of {self.policy.max_file_size_mb}MB"
            )

        if mime_type == OCTET_STREAM:
            return

        if not is_allowed_type(mime_type):
            raise UnsupportedMediaTypeError(f"Unsupported file type: {mime_type}")

        if self.policy.enable_content_sniffing and not matches_signature(mime_type, content[:16]):
            raise UnsupportedMediaTypeError(
                f"File content does not match declared type {mime_type}"
            )

    @staticmethod
    def storage_key(case_id: uuid.UUID, filename: Optional[str]) -> str:
        stamp = int(time.time() * 1000)
        return f"{case_id}/{stamp}-{uuid.uuid4().hex[:8]}-{sanitize_filename(filename)}"

    async def run(self, upload: EvidenceUpload) -> Evidence:
        case = await self.case_service.require_owned_case(upload.case_id, upload.user_id)

        mime_type = normalize_mime(upload.content_type)
        content = upload.content
        self.check_content(mime_type, content)

        path = await self.storage.upload_bytes(
            self.storage_key(case.id, upload.filename), content, mime_type
        )

        original_name = upload.filename or "upload"
        evidence = await self.evidence_repo.create(
            case_id=case.id,
            file_path=path,
            file_type=top_level_type(mime_type),
            mime_type=mime_type,
            file_size=len(content),
            evidence_metadata={"originalName": original_name, "processed": False},
            processing_status="pending",
            processing_attempts=0,
        )

        await self.audit_repo.log_action(
            case.id,
            upload.user_id,
            "evidence_upload",
            {"filename": original_name, "size": len(content), "mime": mime_type},
        )

        self.task_queue.enqueue(evidence.id)

        LOGGER.info(
            "Evidence uploaded",
            extra={"evidence_id": str(evidence.id), "case_id": str(case.id), "size": len(content)},
        )
        return evidence
