from typing import Annotated, List

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from veridicus.api.v1.deps import get_container, get_session
from veridicus.core.auth import get_current_user
from veridicus.core.container import ServiceContainer
from veridicus.schemas.auth import CurrentUser
from veridicus.schemas.cases import (
    AuditLogResponse,
    CaseCreate,
    CaseDetailResponse,
    CaseResponse,
    ContextCacheResponse,
)
from veridicus.services.case_service import CaseService
from veridicus.services.context_cache_service import ContextCacheService
from veridicus.utils.logging import get_logger

LOGGER = get_logger(__name__)

router = APIRouter()


async def get_case_service(
    db_session: Annotated[AsyncSession, Depends(get_session)],
    container: Annotated[ServiceContainer, Depends(get_container)],
) -> CaseService:
    return CaseService(db_session, container.storage)


async def get_context_cache_service(
    db_session: Annotated[AsyncSession, Depends(get_session)],
    container: Annotated[ServiceContainer, Depends(get_container)],
) -> ContextCacheService:
    policy = container.settings.policy
    return ContextCacheService(
        db_session,
        container.storage,
        container.gemini,
        ttl_hours=policy.context_cache_ttl_hours,
        max_files=policy.context_cache_max_files,
    )


@router.get(
    "",
    response_model=List[CaseResponse],
    summary="List cases",
    operation_id="list_cases",
)
async def list_cases(
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    case_service: Annotated[CaseService, Depends(get_case_service)],
) -> List[CaseResponse]:
    """List the caller's cases, most recently updated first."""
    cases = await case_service.list_cases(current_user.id)
    return [CaseResponse.model_validate(case) for case in cases]


@router.get(
    "/{case_id}",
    response_model=CaseDetailResponse,
    summary="Get case with evidence",
    operation_id="get_case",
)
async def get_case(
    case_id: str,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    case_service: Annotated[CaseService, Depends(get_case_service)],
) -> CaseDetailResponse:
    case = await case_service.get_case(case_id, current_user.id)
    return CaseDetailResponse.model_validate(case)


@router.post(
    "",
    response_model=CaseResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create case",
    operation_id="create_case",
)
async def create_case(
    body: CaseCreate,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    case_service: Annotated[CaseService, Depends(get_case_service)],
) -> CaseResponse:
    case = await case_service.create_case(current_user.id, body.name, body.description)
    return CaseResponse.model_validate(case)


@router.delete(
    "/{case_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete case",
    operation_id="delete_case",
)
async def delete_case(
    case_id: str,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    case_service: Annotated[CaseService, Depends(get_case_service)],
) -> Response:
    """Delete a case together with its evidence, analyses and contradictions."""
    await case_service.delete_case(case_id, current_user.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/{case_id}/context-cache",
    response_model=ContextCacheResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Build a Gemini context cache for the case's evidence",
    operation_id="create_case_context_cache",
)
async def create_context_cache(
    case_id: str,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    cache_service: Annotated[ContextCacheService, Depends(get_context_cache_service)],
) -> ContextCacheResponse:
    info = await cache_service.execute(case_id, current_user.id)
    return ContextCacheResponse(
        cacheId=info.cache_id, tokenCount=info.token_count, expiresAt=info.expires_at
    )


@router.get(
    "/{case_id}/audit-logs",
    response_model=List[AuditLogResponse],
    summary="List audit log entries for a case",
    operation_id="list_case_audit_logs",
)
async def list_audit_logs(
    case_id: str,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    case_service: Annotated[CaseService, Depends(get_case_service)],
) -> List[AuditLogResponse]:
    logs = await case_service.list_audit_logs(case_id, current_user.id)
    return [AuditLogResponse.model_validate(entry) for entry in logs]
