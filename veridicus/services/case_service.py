"""Case management with per-request ownership checks."""

from typing import List, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from veridicus.core.exceptions import CaseNotFoundError
from veridicus.database.models import AuditLog, Case
from veridicus.repositories.audit_log_repository import AuditLogRepository
from veridicus.repositories.case_repository import CaseRepository
from veridicus.services.storage_service import StorageService
from veridicus.utils.logging import get_logger
from veridicus.utils.validation import parse_uuid

LOGGER = get_logger(__name__)


class CaseService:
    """Service for creating, reading and deleting a user's cases."""

    def __init__(self, session: AsyncSession, storage: Optional[StorageService] = None):
        self.session = session
        self.storage = storage
        self.case_repo = CaseRepository(session)
        self.audit_repo = AuditLogRepository(session)

    async def require_owned_case(
        self, case_id: str, user_id: str, with_evidence: bool = False
    ) -> Case:
        """Load a case the caller owns.

        Raises:
            ValidationError: If ``case_id`` is malformed
            CaseNotFoundError: If the case is absent or owned by someone else
        """
        case = await self.case_repo.get_owned(
            parse_uuid(case_id, "case ID"), user_id, with_evidence=with_evidence
        )
        if case is None:
            LOGGER.info("Case not found for user", extra={"case_id": case_id, "user_id": user_id})
            raise CaseNotFoundError("Case not found")
        return case

    async def list_cases(self, user_id: str) -> List[Case]:
        return await self.case_repo.list_for_user(user_id)

    async def get_case(self, case_id: str, user_id: str) -> Case:
        return await self.require_owned_case(case_id, user_id, with_evidence=True)

    async def create_case(self, user_id: str, name: str, description: Optional[str] = None) -> Case:
        case = await self.case_repo.create(name=name, description=description, user_id=user_id)
        LOGGER.info("Case created", extra={"case_id": str(case.id), "user_id": user_id})
        return case

    async def delete_case(self, case_id: str, user_id: str) -> None:
        """Delete a case; evidence, analyses and contradictions cascade."""
        case = await self.require_owned_case(case_id, user_id, with_evidence=True)
        blob_paths = [item.file_path for item in case.evidence]
        case_uuid: UUID = case.id

        await self.case_repo.delete(case)
        LOGGER.info("Case deleted", extra={"case_id": str(case_uuid), "evidence": len(blob_paths)})

        if self.storage is not None and blob_paths:
            await self.storage.remove(blob_paths)

    async def list_audit_logs(self, case_id: str, user_id: str) -> List[AuditLog]:
        case = await self.require_owned_case(case_id, user_id)
        return await self.audit_repo.list_for_case(case.id)
