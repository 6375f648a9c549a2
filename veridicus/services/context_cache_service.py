"""Builds a Gemini context cache holding a case's evidence."""

from typing import List, Optional

from google.genai import types
from sqlalchemy.ext.asyncio import AsyncSession

from veridicus.core.exceptions import ConfigurationError, ValidationError
from veridicus.core.gemini_client import (
    FORENSIC_SYSTEM_INSTRUCTION,
    ContextCacheInfo,
    GeminiForensicClient,
)
from veridicus.database.models import Evidence
from veridicus.repositories.case_repository import CaseRepository
from veridicus.services.base_service import BaseService
from veridicus.services.case_service import CaseService
from veridicus.services.forensic_tools import evidence_summary
from veridicus.services.storage_service import StorageService
from veridicus.utils.logging import get_logger

LOGGER = get_logger(__name__)


def build_evidence_index(evidence: List[Evidence]) -> str:
    lines = ["Evidence index for this case (id | name | summary):"]
    for item in evidence:
        metadata = item.evidence_metadata or {}
        name = metadata.get("originalName") or item.file_path
        lines.append(f"- {item.id} | {name} | {evidence_summary(metadata)}")
    return "\n".join(lines)


class ContextCacheService(BaseService):
    """Create a context cache for a case and remember it on the case row."""

    def __init__(
        self,
        session: AsyncSession,
        storage: StorageService,
        gemini: Optional[GeminiForensicClient],
        ttl_hours: int = 24,
        max_files: int = 20,
    ):
        super().__init__()
        self.storage = storage
        self.gemini = gemini
        self.ttl_hours = ttl_hours
        self.max_files = max_files
        self.case_repo = CaseRepository(session)
        self.case_service = CaseService(session)

    async def run(self, case_id: str, user_id: str) -> ContextCacheInfo:
        case = await self.case_service.require_owned_case(case_id, user_id, with_evidence=True)
        if not case.evidence:
            raise ValidationError("Case has no evidence to cache")
        if self.gemini is None:
            raise ConfigurationError("Gemini API key is not configured")

        parts = [types.Part(text=build_evidence_index(case.evidence))]
        for item in case.evidence[: self.max_files]:
            data = await self.storage.download(item.file_path)
            parts.append(types.Part(text=f"Evidence {item.id}:"))
            parts.append(types.Part.from_bytes(data=data, mime_type=item.mime_type))

        info = await self.gemini.create_context_cache(
            [types.Content(role="user", parts=parts)],
            FORENSIC_SYSTEM_INSTRUCTION,
            ttl_hours=self.ttl_hours,
        )
        await self.case_repo.set_context_cache(case, info.cache_id, info.expires_at)

        LOGGER.info(
            "Context cache created",
            extra={
                "case_id": str(case.id),
                "cache_id": info.cache_id,
                "token_count": info.token_count,
                "files": min(len(case.evidence), self.max_files),
            },
        )
        return info
