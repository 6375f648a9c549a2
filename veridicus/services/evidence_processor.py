"""Forensic metadata extraction for uploaded evidence."""

from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import UUID

from google.genai import types
from sqlalchemy.ext.asyncio import AsyncSession

from veridicus.core.exceptions import ConfigurationError, EvidenceNotFoundError
from veridicus.core.gemini_client import GeminiForensicClient
from veridicus.database.models import Evidence
from veridicus.repositories.audit_log_repository import AuditLogRepository
from veridicus.repositories.evidence_repository import EvidenceRepository
from veridicus.services.storage_service import StorageService
from veridicus.utils.json_parser import parse_json_safely
from veridicus.utils.logging import get_logger

LOGGER = get_logger(__name__)

EXTRACTION_PROMPT = """Analyze this forensic evidence file for the case "{case_name}".
Perform a deep forensic analysis.
Return ONLY a JSON object with:
{{
  "summary": "Brief forensic summary",
  "entities": ["Person A", "Org B"],
  "findings": ["Finding 1", "Finding 2"],
  "dates": ["YYYY-MM-DD"],
  "confidence": 0.95
}}"""


class EvidenceProcessor:
    """Download a blob, ask Gemini for forensic metadata, and merge it into the row.

    Re-running overwrites the ``forensic`` sub-object; there is no locking
    between concurrent runs on the same row.
    """

    def __init__(
        self,
        session: AsyncSession,
        storage: StorageService,
        gemini: Optional[GeminiForensicClient],
    ):
        self.storage = storage
        self.gemini = gemini
        self.evidence_repo = EvidenceRepository(session)
        self.audit_repo = AuditLogRepository(session)

    async def process(self, evidence_id: UUID, final_attempt: bool = True) -> Dict[str, Any]:
        """Extract metadata for one evidence row.

        Args:
            evidence_id: Row to process
            final_attempt: Whether a failure should mark the row ``failed``
                rather than return it to ``pending`` for a retry

        Returns:
            The parsed forensic object

        Raises:
            EvidenceNotFoundError: If the row does not exist
        """
        evidence = await self.evidence_repo.get_with_case(evidence_id)
        if evidence is None:
            raise EvidenceNotFoundError("Evidence not found")

        await self.evidence_repo.update(
            evidence,
            processing_status="processing",
            processing_attempts=(evidence.processing_attempts or 0) + 1,
        )

        try:
            forensic = await self._extract(evidence)
        except Exception as e:
            await self._record_failure(evidence_id, e, final_attempt)
            raise

        LOGGER.info(
            "Evidence processed",
            extra={"evidence_id": str(evidence_id), "token_count": evidence.token_count},
        )
        return forensic

    async def _extract(self, evidence: Evidence) -> Dict[str, Any]:
        if self.gemini is None:
            raise ConfigurationError("Gemini API key is not configured")

        content = await self.storage.download(evidence.file_path)
        prompt = EXTRACTION_PROMPT.format(case_name=evidence.case.name)
        blob = types.Content(
            role="user",
            parts=[types.Part.from_bytes(data=content, mime_type=evidence.mime_type)],
        )
        result = await self.gemini.generate_with_thinking(prompt, contents=[blob])

        parsed = parse_json_safely(result.text)
        forensic = parsed if isinstance(parsed, dict) else {"raw_output": result.text}

        await self.evidence_repo.update(
            evidence,
            evidence_metadata={
                **(evidence.evidence_metadata or {}),
                "forensic": forensic,
                "analysis_at": datetime.now(timezone.utc).isoformat(),
                "processed": True,
            },
            token_count=result.usage.total,
            processing_status="done",
        )

        await self.audit_repo.log_action(
            evidence.case_id,
            evidence.case.user_id or "system",
            "evidence_processed",
            {"evidence_id": str(evidence.id), "summary": forensic.get("summary")},
        )
        return forensic

    async def _record_failure(self, evidence_id: UUID, error: Exception, final_attempt: bool) -> None:
        LOGGER.error(
            f"Metadata extraction failed for {evidence_id}: {error}",
            extra={"evidence_id": str(evidence_id), "final_attempt": final_attempt},
        )
        try:
            # Reload: a failed write earlier in the run rolls back and expires the row
            evidence = await self.evidence_repo.get_by_id(evidence_id)
            if evidence is None:
                return
            await self.evidence_repo.update(
                evidence,
                evidence_metadata={
                    **(evidence.evidence_metadata or {}),
                    "processing_error": str(error) or "Unknown error",
                    "processed": False,
                },
                processing_status="failed" if final_attempt else "pending",
            )
        except Exception as e:
            LOGGER.error(
                f"Could not record processing failure: {e}",
                extra={"evidence_id": str(evidence_id)},
            )
