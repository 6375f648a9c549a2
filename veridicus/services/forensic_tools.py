"""Tools the reasoning model may call while answering a query."""

import json
from typing import Any, Dict, List, Optional
from uuid import UUID

from google.genai import types

from veridicus.repositories.evidence_repository import EvidenceRepository
from veridicus.schemas.evidence import EvidenceResponse
from veridicus.utils.logging import get_logger
from veridicus.utils.validation import optional_uuid

LOGGER = get_logger(__name__)

SEARCH_RESULT_LIMIT = 5

FORENSIC_TOOL_DECLARATIONS: List[types.FunctionDeclaration] = [
    types.FunctionDeclaration(
        name="search_evidence",
        description=(
            "Search the case's evidence metadata for a keyword or phrase. "
            "Returns matching evidence ids, storage paths and summaries."
        ),
        parameters=types.Schema(
            type=types.Type.OBJECT,
            properties={
                "query": types.Schema(
                    type=types.Type.STRING, description="Keyword or phrase to look for"
                ),
                "fileType": types.Schema(
                    type=types.Type.STRING,
                    description="Optional top-level MIME category, e.g. image, audio, application",
                ),
            },
            required=["query"],
        ),
    ),
    types.FunctionDeclaration(
        name="get_evidence_metadata",
        description="Return the full stored record for one evidence item in this case.",
        parameters=types.Schema(
            type=types.Type.OBJECT,
            properties={
                "evidenceId": types.Schema(
                    type=types.Type.STRING, description="Evidence UUID"
                ),
            },
            required=["evidenceId"],
        ),
    ),
]


def evidence_summary(metadata: Optional[Dict[str, Any]]) -> str:
    metadata = metadata or {}
    forensic = metadata.get("forensic")
    if isinstance(forensic, dict) and forensic.get("summary"):
        return forensic["summary"]
    return metadata.get("summary") or "No summary available"


class ForensicToolbox:
    """Executes model tool calls against one case's evidence."""

    def __init__(self, evidence_repo: EvidenceRepository, case_id: UUID):
        self.evidence_repo = evidence_repo
        self.case_id = case_id
        self.cited: Dict[str, Dict[str, Any]] = {}

    @property
    def citations(self) -> List[Dict[str, Any]]:
        """Evidence the model looked at through tools, in first-seen order."""
        return list(self.cited.values())

    def _cite(self, evidence_id: Any, path: str, tool: str) -> None:
        key = str(evidence_id)
        if key not in self.cited:
            self.cited[key] = {"source": key, "path": path, "tool": tool}

    async def execute(self, name: str, args: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        args = args or {}
        LOGGER.info(f"Executing forensic tool: {name}", extra={"case_id": str(self.case_id), "args": args})

        if name == "search_evidence":
            return await self.search_evidence(args.get("query", ""), args.get("fileType"))
        if name == "get_evidence_metadata":
            return await self.get_evidence_metadata(args.get("evidenceId"))
        return {"error": f"Tool {name} not found"}

    async def search_evidence(self, query: str, file_type: Optional[str] = None) -> Dict[str, Any]:
        needle = str(query or "").lower()
        rows = await self.evidence_repo.list_for_case(self.case_id, file_type=file_type)
        matches = [
            row
            for row in rows
            if needle in json.dumps(row.evidence_metadata or {}, default=str).lower()
        ]

        results = []
        for row in matches[:SEARCH_RESULT_LIMIT]:
            self._cite(row.id, row.file_path, "search_evidence")
            results.append(
                {
                    "id": str(row.id),
                    "path": row.file_path,
                    "summary": evidence_summary(row.evidence_metadata),
                }
            )
        return {"count": len(matches), "results": results}

    async def get_evidence_metadata(self, evidence_id: Any) -> Dict[str, Any]:
        evidence_uuid = optional_uuid(evidence_id)
        if evidence_uuid is None:
            return {"error": f"Invalid evidence ID: {evidence_id}"}

        evidence = await self.evidence_repo.get_in_case(evidence_uuid, self.case_id)
        if evidence is None:
            return {"error": "Evidence not found in this case"}

        self._cite(evidence.id, evidence.file_path, "get_evidence_metadata")
        return EvidenceResponse.model_validate(evidence).model_dump(mode="json")
