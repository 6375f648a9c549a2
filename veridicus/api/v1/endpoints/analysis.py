from typing import Annotated, List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from veridicus.api.v1.deps import get_container, get_session
from veridicus.core.auth import get_current_user
from veridicus.core.container import ServiceContainer
from veridicus.core.exceptions import AppError, NotFoundError, ValidationError
from veridicus.schemas.analysis import (
    AnalysisQueryRequest,
    AnalysisQueryResponse,
    AnalysisResponse,
    ContradictionResponse,
)
from veridicus.schemas.auth import CurrentUser
from veridicus.services.analysis_service import AnalysisService
from veridicus.services.reasoning_service import ReasoningService
from veridicus.utils.logging import get_logger

LOGGER = get_logger(__name__)

# Mounted at /analysis, /analyses and /contradictions respectively
query_router = APIRouter()
analyses_router = APIRouter()
contradictions_router = APIRouter()


async def get_reasoning_service(
    db_session: Annotated[AsyncSession, Depends(get_session)],
    container: Annotated[ServiceContainer, Depends(get_container)],
) -> ReasoningService:
    return ReasoningService(
        db_session, container.gemini, max_tool_turns=container.settings.policy.max_tool_turns
    )


async def get_analysis_service(
    db_session: Annotated[AsyncSession, Depends(get_session)],
) -> AnalysisService:
    return AnalysisService(db_session)


@query_router.post(
    "/query",
    response_model=AnalysisQueryResponse,
    summary="Run a reasoning query over a case",
    operation_id="run_analysis_query",
)
async def run_query(
    body: AnalysisQueryRequest,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    reasoning_service: Annotated[ReasoningService, Depends(get_reasoning_service)],
) -> AnalysisQueryResponse:
    """Answer a query; any failure other than case ownership is reported as 400."""
    try:
        return await reasoning_service.execute(body, current_user)
    except NotFoundError:
        raise
    except AppError as e:
        LOGGER.warning(
            f"Analysis query failed: {e.message}",
            extra={"case_id": body.caseId, "error_type": type(e).__name__},
        )
        raise ValidationError(e.message, original_error=e) from e


@analyses_router.get(
    "/case/{case_id}",
    response_model=List[AnalysisResponse],
    summary="List analyses for a case",
    operation_id="list_case_analyses",
)
async def list_analyses(
    case_id: str,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    analysis_service: Annotated[AnalysisService, Depends(get_analysis_service)],
) -> List[AnalysisResponse]:
    rows = await analysis_service.list_analyses(case_id, current_user.id)
    return [AnalysisResponse.model_validate(row) for row in rows]


@analyses_router.get(
    "/{analysis_id}",
    response_model=AnalysisResponse,
    summary="Get analysis",
    operation_id="get_analysis",
)
async def get_analysis(
    analysis_id: str,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    analysis_service: Annotated[AnalysisService, Depends(get_analysis_service)],
) -> AnalysisResponse:
    analysis = await analysis_service.get_analysis(analysis_id, current_user.id)
    return AnalysisResponse.model_validate(analysis)


@contradictions_router.get(
    "/case/{case_id}",
    response_model=List[ContradictionResponse],
    summary="List contradictions for a case",
    operation_id="list_case_contradictions",
)
async def list_contradictions(
    case_id: str,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    analysis_service: Annotated[AnalysisService, Depends(get_analysis_service)],
) -> List[ContradictionResponse]:
    rows = await analysis_service.list_contradictions(case_id, current_user.id)
    return [ContradictionResponse.model_validate(row) for row in rows]


@contradictions_router.get(
    "/{contradiction_id}",
    response_model=ContradictionResponse,
    summary="Get contradiction",
    operation_id="get_contradiction",
)
async def get_contradiction(
    contradiction_id: str,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    analysis_service: Annotated[AnalysisService, Depends(get_analysis_service)],
) -> ContradictionResponse:
    contradiction = await analysis_service.get_contradiction(contradiction_id, current_user.id)
    return ContradictionResponse.model_validate(contradiction)
