"""Reasoning orchestrator: cached-context tool loop and direct thinking calls.

A case with a live context cache is answered by a bounded multi-turn loop in
which the model may call the forensic tools; otherwise a single thinking
call is made without tools. The analysis and any contradictions parsed from
the answer are persisted.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set, Tuple
from uuid import UUID

from google.genai import types
from sqlalchemy.ext.asyncio import AsyncSession

from veridicus.core.exceptions import ConfigurationError
from veridicus.core.gemini_client import (
    FORENSIC_SYSTEM_INSTRUCTION,
    GeminiForensicClient,
    TokenUsage,
    split_response_parts,
)
from veridicus.database.models import Case
from veridicus.repositories.analysis_repository import AnalysisRepository
from veridicus.repositories.evidence_repository import EvidenceRepository
from veridicus.schemas.analysis import (
    AnalysisQueryRequest,
    AnalysisQueryResponse,
    AnalysisResponse,
    ContradictionResponse,
)
from veridicus.schemas.auth import CurrentUser
from veridicus.services.base_service import BaseService
from veridicus.services.case_service import CaseService
from veridicus.services.forensic_tools import FORENSIC_TOOL_DECLARATIONS, ForensicToolbox
from veridicus.utils.json_parser import extract_fenced_json
from veridicus.utils.logging import get_logger
from veridicus.utils.validation import normalize_severity, optional_uuid

LOGGER = get_logger(__name__)


@dataclass
class ToolLoopOutcome:
    """Final answer of a tool loop plus what it took to get there."""

    text: str = ""
    thoughts: List[str] = field(default_factory=list)
    usage: TokenUsage = field(default_factory=TokenUsage)
    generation_calls: int = 0
    tool_calls: int = 0
    truncated: bool = False

    def stats(self) -> Dict[str, Any]:
        return {
            "generation_calls": self.generation_calls,
            "tool_calls": self.tool_calls,
            "truncated": self.truncated,
        }


async def run_tool_loop(
    gemini: GeminiForensicClient,
    cache_id: str,
    query: str,
    toolbox: ForensicToolbox,
    max_turns: int = 5,
) -> ToolLoopOutcome:
    """Answer ``query`` against a context cache, executing requested tools.

    At most ``max_turns`` generation calls are made. If the model still
    requests tools on the last allowed call, that response is used as the
    answer and the outcome is marked truncated.
    """
    config = gemini.cached_tools_config(cache_id, FORENSIC_TOOL_DECLARATIONS)
    contents: List[types.Content] = [
        types.Content(role="user", parts=[types.Part(text=query)])
    ]
    outcome = ToolLoopOutcome()

    response = await gemini.generate(contents, config)
    outcome.generation_calls = 1

    while True:
        parts = split_response_parts(response)
        outcome.thoughts.extend(parts.thoughts)
        outcome.usage.add(parts.usage)

        function_calls = response.function_calls or []
        if not function_calls:
            break
        if outcome.generation_calls >= max_turns:
            outcome.truncated = True
            LOGGER.warning(
                "Tool loop stopped at turn limit with calls still pending",
                extra={"pending_calls": [call.name for call in function_calls], "max_turns": max_turns},
            )
            break

        contents.append(response.candidates[0].content)
        response_parts = []
        for call in function_calls:
            result = await toolbox.execute(call.name, dict(call.args or {}))
            outcome.tool_calls += 1
            response_parts.append(
                types.Part.from_function_response(name=call.name, response=result)
            )
        contents.append(types.Content(role="user", parts=response_parts))

        response = await gemini.generate(contents, config)
        outcome.generation_calls += 1

    outcome.text = parts.text
    return outcome


def parse_reasoning_output(text: str) -> Tuple[str, List[Dict[str, Any]]]:
    """Pull contradictions (and an optional summary) out of a fenced JSON block.

    Malformed JSON is ignored: the text is returned unchanged with no
    contradictions.
    """
    try:
        payload = extract_fenced_json(text)
    except (json.JSONDecodeError, ValueError) as e:
        LOGGER.warning(f"Ignoring malformed JSON block in model answer: {e}")
        return text, []

    if not isinstance(payload, dict):
        return text, []

    contradictions = []
    for item in payload.get("contradictions") or []:
        if not isinstance(item, dict):
            continue
        timestamps = item.get("timestamps")
        contradictions.append(
            {
                "description": str(item.get("description") or "Unspecified contradiction"),
                "severity": normalize_severity(item.get("severity")),
                "evidence_a_id": optional_uuid(item.get("evidence_a_id")),
                "evidence_b_id": optional_uuid(item.get("evidence_b_id")),
                "timestamps": timestamps if isinstance(timestamps, dict) else {},
            }
        )

    summary = payload.get("summary")
    if isinstance(summary, str) and summary and summary not in text:
        text = f"{summary}\n\n{text}"

    return text, contradictions


def drop_foreign_evidence_ids(
    contradictions: List[Dict[str, Any]], known_ids: Set[UUID]
) -> List[Dict[str, Any]]:
    """Null out evidence references that are not part of the case."""
    for item in contradictions:
        for key in ("evidence_a_id", "evidence_b_id"):
            if item[key] is not None and item[key] not in known_ids:
                LOGGER.warning(f"Dropping unknown evidence reference {item[key]} from contradiction")
                item[key] = None
    return contradictions


def has_live_cache(case: Case, now: Optional[datetime] = None) -> bool:
    if not case.cache_id or case.cache_expires_at is None:
        return False
    now = now or datetime.now(timezone.utc)
    expires_at = case.cache_expires_at
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return expires_at > now


class ReasoningService(BaseService):
    """Run one investigator query and persist the analysis."""

    def __init__(
        self,
        session: AsyncSession,
        gemini: Optional[GeminiForensicClient],
        max_tool_turns: int = 5,
    ):
        super().__init__()
        self.gemini = gemini
        self.max_tool_turns = max_tool_turns
        self.case_service = CaseService(session)
        self.evidence_repo = EvidenceRepository(session)
        self.analysis_repo = AnalysisRepository(session)

    async def run(self, request: AnalysisQueryRequest, user: CurrentUser) -> AnalysisQueryResponse:
        case = await self.case_service.require_owned_case(request.caseId, user.id)
        if self.gemini is None:
            raise ConfigurationError("Gemini API key is not configured")

        citations: List[Dict[str, Any]] = []
        contradictions: List[Dict[str, Any]] = []

        path = "cached" if has_live_cache(case) else "direct"
        if path == "cached":
            toolbox = ForensicToolbox(self.evidence_repo, case.id)
            outcome = await run_tool_loop(
                self.gemini, case.cache_id, request.query, toolbox, self.max_tool_turns
            )
            text, contradictions = parse_reasoning_output(outcome.text)
            if contradictions:
                rows = await self.evidence_repo.list_for_case(case.id)
                contradictions = drop_foreign_evidence_ids(contradictions, {row.id for row in rows})
            thoughts, usage, tool_loop = outcome.thoughts, outcome.usage, outcome.stats()
            citations = toolbox.citations
        else:
            result = await self.gemini.generate_with_thinking(
                request.query, system_instruction=FORENSIC_SYSTEM_INSTRUCTION
            )
            text, thoughts, usage = result.text, result.thoughts, result.usage
            tool_loop = ToolLoopOutcome(generation_calls=1).stats()

        analysis, saved = await self.analysis_repo.create_with_contradictions(
            contradictions,
            case_id=case.id,
            query=request.query,
            thought_signature=None,
            thoughts=thoughts,
            result={"text": text, "usage": usage.to_dict(), "tool_loop": tool_loop},
            citations=citations,
        )

        LOGGER.info(
            "Analysis completed",
            extra={
                "analysis_id": str(analysis.id),
                "case_id": str(case.id),
                "path": path,
                "contradictions": len(saved),
            },
        )

        return AnalysisQueryResponse(
            **AnalysisResponse.model_validate(analysis).model_dump(),
            contradictions=[ContradictionResponse.model_validate(c) for c in saved],
        )
