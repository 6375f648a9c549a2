import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from google.genai import types

from veridicus.core.exceptions import ConfigurationError
from veridicus.core.gemini_client import GenerationResult, TokenUsage
from veridicus.database.models import Analysis, Contradiction
from veridicus.schemas.analysis import AnalysisQueryRequest
from veridicus.schemas.auth import CurrentUser
from veridicus.services.reasoning_service import (
    ReasoningService,
    drop_foreign_evidence_ids,
    has_live_cache,
    parse_reasoning_output,
    run_tool_loop,
)
from tests.conftest import TEST_USER_ID


def text_response(text: str) -> types.GenerateContentResponse:
    return types.GenerateContentResponse(
        candidates=[
            types.Candidate(
                content=types.Content(
                    role="model",
                    parts=[
                        types.Part(text="Checking the gate log first.", thought=True),
                        types.Part(text=text),
                    ],
                )
            )
        ],
        usage_metadata=types.GenerateContentResponseUsageMetadata(
            prompt_token_count=100, candidates_token_count=20
        ),
    )


def tool_call_response(name: str = "search_evidence", args=None) -> types.GenerateContentResponse:
    return types.GenerateContentResponse(
        candidates=[
            types.Candidate(
                content=types.Content(
                    role="model",
                    parts=[
                        types.Part(
                            function_call=types.FunctionCall(
                                name=name, args=args or {"query": "gate"}
                            )
                        )
                    ],
                )
            )
        ]
    )


def make_gemini(*responses) -> MagicMock:
    gemini = MagicMock()
    gemini.cached_tools_config.return_value = types.GenerateContentConfig()
    gemini.generate = AsyncMock(side_effect=list(responses))
    return gemini


GATE_LOG_ID = uuid.UUID("0b1c2d3e-4f50-4a6b-8c7d-9e0f1a2b3c4d")

CONTRADICTION_ANSWER = """The timelines do not line up.

```json
{
  "summary": "Two witnesses place the suspect in different locations.",
  "contradictions": [
    {"description": "Gate log vs statement", "severity": "high",
     "evidence_a_id": "0b1c2d3e-4f50-4a6b-8c7d-9e0f1a2b3c4d", "timestamps": {"a": "21:40"}},
    {"description": "CCTV vs receipt", "severity": "catastrophic"},
    {"description": "Phone ping vs alibi"}
  ]
}
```"""


class TestToolLoop:
    @pytest.mark.asyncio
    async def test_answer_without_function_calls_makes_one_call(self):
        gemini = make_gemini(text_response("No contradictions found."))
        toolbox = AsyncMock()

        outcome = await run_tool_loop(gemini, "cachedContents/1", "What happened?", toolbox)

        assert outcome.text == "No contradictions found."
        assert outcome.thoughts == ["Checking the gate log first."]
        assert outcome.generation_calls == 1
        assert outcome.tool_calls == 0
        assert outcome.truncated is False
        assert outcome.usage.total == 120
        toolbox.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_tool_results_are_fed_back(self):
        gemini = make_gemini(tool_call_response(), text_response("Found it."))
        toolbox = AsyncMock()
        toolbox.execute.return_value = {"count": 0, "results": []}

        outcome = await run_tool_loop(gemini, "cachedContents/1", "Gate?", toolbox)

        assert outcome.text == "Found it."
        assert outcome.generation_calls == 2
        toolbox.execute.assert_awaited_once_with("search_evidence", {"query": "gate"})

        second_contents = gemini.generate.await_args_list[1].args[0]
        assert [content.role for content in second_contents] == ["user", "model", "user"]
        assert second_contents[-1].parts[0].function_response.name == "search_evidence"

    @pytest.mark.asyncio
    async def test_blocked_candidate_ends_the_loop(self):
        blocked = types.GenerateContentResponse(
            candidates=[types.Candidate(content=None, finish_reason=types.FinishReason.SAFETY)]
        )
        gemini = make_gemini(tool_call_response(), blocked)
        toolbox = AsyncMock()
        toolbox.execute.return_value = {"count": 0, "results": []}

        outcome = await run_tool_loop(gemini, "cachedContents/1", "Gate?", toolbox)

        assert outcome.text == ""
        assert outcome.generation_calls == 2
        assert all(content is not None for content in gemini.generate.await_args_list[1].args[0])

    @pytest.mark.asyncio
    async def test_loop_stops_at_turn_limit(self):
        gemini = make_gemini(*[tool_call_response() for _ in range(10)])
        toolbox = AsyncMock()
        toolbox.execute.return_value = {"count": 0, "results": []}

        outcome = await run_tool_loop(gemini, "cachedContents/1", "Gate?", toolbox, max_turns=5)

        assert gemini.generate.await_count == 5
        assert outcome.generation_calls == 5
        assert outcome.tool_calls == 4
        assert outcome.truncated is True


class TestParseReasoningOutput:
    def test_contradictions_get_default_severity(self):
        text, contradictions = parse_reasoning_output(CONTRADICTION_ANSWER)

        assert len(contradictions) == 3
        assert [c["severity"] for c in contradictions] == ["high", "medium", "medium"]
        assert contradictions[0]["evidence_a_id"] == uuid.UUID("0b1c2d3e-4f50-4a6b-8c7d-9e0f1a2b3c4d")
        assert contradictions[1]["evidence_a_id"] is None
        assert contradictions[2]["timestamps"] == {}
        assert text.startswith("Two witnesses place the suspect")

    def test_malformed_block_is_ignored(self):
        answer = "Answer.\n```json\n{not json\n```"

        text, contradictions = parse_reasoning_output(answer)

        assert text == answer
        assert contradictions == []

    def test_plain_text_has_no_contradictions(self):
        assert parse_reasoning_output("Nothing odd.") == ("Nothing odd.", [])


class TestHasLiveCache:
    def test_expired_cache_is_not_live(self, sample_case):
        sample_case.cache_id = "cachedContents/1"
        sample_case.cache_expires_at = datetime.now(timezone.utc) - timedelta(minutes=1)

        assert has_live_cache(sample_case) is False

    def test_unexpired_cache_is_live(self, sample_case):
        sample_case.cache_id = "cachedContents/1"
        sample_case.cache_expires_at = datetime.now(timezone.utc) + timedelta(hours=1)

        assert has_live_cache(sample_case) is True


def persist_analysis(contradictions, **fields):
    analysis = Analysis(id=uuid.uuid4(), **fields)
    rows = [
        Contradiction(id=uuid.uuid4(), analysis_id=analysis.id, case_id=analysis.case_id, **item)
        for item in contradictions
    ]
    return analysis, rows


class TestReasoningService:
    @pytest.fixture
    def user(self) -> CurrentUser:
        return CurrentUser(id=TEST_USER_ID)

    def make_service(self, case, gemini) -> ReasoningService:
        service = ReasoningService(MagicMock(), gemini, max_tool_turns=5)
        service.case_service.case_repo = AsyncMock()
        service.case_service.case_repo.get_owned.return_value = case
        service.evidence_repo = AsyncMock()
        service.analysis_repo = AsyncMock()
        service.analysis_repo.create_with_contradictions.side_effect = persist_analysis
        return service

    @pytest.mark.asyncio
    async def test_cached_case_persists_contradictions(self, sample_case, user):
        sample_case.cache_id = "cachedContents/1"
        sample_case.cache_expires_at = datetime.now(timezone.utc) + timedelta(hours=1)
        gemini = make_gemini(text_response(CONTRADICTION_ANSWER))
        service = self.make_service(sample_case, gemini)
        service.evidence_repo.list_for_case.return_value = [MagicMock(id=GATE_LOG_ID)]

        response = await service.run(
            AnalysisQueryRequest(caseId=str(sample_case.id), query="Compare accounts"), user
        )

        assert len(response.contradictions) == 3
        assert response.contradictions[1].severity == "medium"
        assert response.contradictions[0].evidence_a_id == GATE_LOG_ID
        assert response.result["tool_loop"]["generation_calls"] == 1
        assert response.citations == []
        gemini.generate_with_thinking.assert_not_called()

    @pytest.mark.asyncio
    async def test_uncached_case_uses_direct_thinking_call(self, sample_case, user):
        gemini = MagicMock()
        gemini.generate_with_thinking = AsyncMock(
            return_value=GenerationResult(
                text=CONTRADICTION_ANSWER,
                thoughts=["Reading the statement."],
                usage=TokenUsage(input_tokens=50, output_tokens=10),
            )
        )
        service = self.make_service(sample_case, gemini)

        response = await service.run(
            AnalysisQueryRequest(caseId=str(sample_case.id), query="Compare accounts"), user
        )

        assert response.thoughts == ["Reading the statement."]
        assert response.contradictions == []
        assert response.result["usage"] == {"input_tokens": 50, "output_tokens": 10}
        assert service.analysis_repo.create_with_contradictions.await_args.args == ([],)

    @pytest.mark.asyncio
    async def test_missing_gemini_client_is_configuration_error(self, sample_case, user):
        service = self.make_service(sample_case, None)

        with pytest.raises(ConfigurationError):
            await service.run(
                AnalysisQueryRequest(caseId=str(sample_case.id), query="Anything"), user
            )


def test_unknown_evidence_references_are_dropped():
    outside = uuid.uuid4()
    contradictions = [
        {"description": "a", "evidence_a_id": GATE_LOG_ID, "evidence_b_id": outside},
        {"description": "b", "evidence_a_id": None, "evidence_b_id": None},
    ]

    drop_foreign_evidence_ids(contradictions, {GATE_LOG_ID})

    assert contradictions[0]["evidence_a_id"] == GATE_LOG_ID
    assert contradictions[0]["evidence_b_id"] is None
    assert contradictions[1]["evidence_a_id"] is None
