from typing import Annotated, Any, Dict, List, Optional

from fastapi import APIRouter, Depends, File, Query, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from veridicus.api.v1.deps import get_container, get_session
from veridicus.core.auth import get_current_user
from veridicus.core.container import ServiceContainer
from veridicus.schemas.auth import CurrentUser
from veridicus.schemas.evidence import DownloadUrlResponse, EvidenceResponse
from veridicus.services.evidence_processor import EvidenceProcessor
from veridicus.services.evidence_service import (
    EvidenceIngestionService,
    EvidenceService,
    EvidenceUpload,
)
from veridicus.utils.logging import get_logger

LOGGER = get_logger(__name__)

router = APIRouter()


async def get_evidence_service(
    db_session: Annotated[AsyncSession, Depends(get_session)],
    container: Annotated[ServiceContainer, Depends(get_container)],
) -> EvidenceService:
    return EvidenceService(db_session, container.storage)


async def get_ingestion_service(
    db_session: Annotated[AsyncSession, Depends(get_session)],
    container: Annotated[ServiceContainer, Depends(get_container)],
) -> EvidenceIngestionService:
    return EvidenceIngestionService(
        db_session, container.storage, container.task_queue, container.settings.policy
    )


async def get_evidence_processor(
    db_session: Annotated[AsyncSession, Depends(get_session)],
    container: Annotated[ServiceContainer, Depends(get_container)],
) -> EvidenceProcessor:
    return EvidenceProcessor(db_session, container.storage, container.gemini)


@router.get(
    "/case/{case_id}",
    response_model=List[EvidenceResponse],
    summary="List evidence for a case",
    operation_id="list_case_evidence",
)
async def list_case_evidence(
    case_id: str,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    evidence_service: Annotated[EvidenceService, Depends(get_evidence_service)],
) -> List[EvidenceResponse]:
    items = await evidence_service.list_for_case(case_id, current_user.id)
    return [EvidenceResponse.model_validate(item) for item in items]


@router.post(
    "/upload",
    response_model=EvidenceResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Upload an evidence file",
    operation_id="upload_evidence",
)
async def upload_evidence(
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    ingestion_service: Annotated[EvidenceIngestionService, Depends(get_ingestion_service)],
    file: Optional[UploadFile] = File(None, description="Evidence file"),
    caseId: Optional[str] = Query(None, description="Case to attach the evidence to"),
) -> EvidenceResponse:
    """Store the file and queue forensic extraction.

    The response is returned before extraction runs, so ``metadata.processed``
    is false until the row is re-read after the worker finishes.
    """
    content = await file.read() if file is not None else None
    evidence = await ingestion_service.execute(
        EvidenceUpload(
            user_id=current_user.id,
            case_id=caseId,
            filename=file.filename if file is not None else None,
            content_type=file.content_type if file is not None else None,
            content=content,
        )
    )
    return EvidenceResponse.model_validate(evidence)


@router.get(
    "/{evidence_id}",
    response_model=EvidenceResponse,
    summary="Get evidence",
    operation_id="get_evidence",
)
async def get_evidence(
    evidence_id: str,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    evidence_service: Annotated[EvidenceService, Depends(get_evidence_service)],
) -> EvidenceResponse:
    evidence = await evidence_service.get_evidence(evidence_id, current_user.id)
    return EvidenceResponse.model_validate(evidence)


@router.get(
    "/{evidence_id}/download",
    response_model=DownloadUrlResponse,
    summary="Get a signed download URL",
    operation_id="get_evidence_download_url",
)
async def get_download_url(
    evidence_id: str,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    evidence_service: Annotated[EvidenceService, Depends(get_evidence_service)],
) -> DownloadUrlResponse:
    result = await evidence_service.download_url(evidence_id, current_user.id)
    return DownloadUrlResponse(**result)


@router.post(
    "/{evidence_id}/process",
    summary="Run forensic extraction now",
    operation_id="process_evidence",
)
async def process_evidence(
    evidence_id: str,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    evidence_service: Annotated[EvidenceService, Depends(get_evidence_service)],
    processor: Annotated[EvidenceProcessor, Depends(get_evidence_processor)],
) -> Dict[str, Any]:
    """Re-run extraction inline and return the forensic metadata."""
    evidence = await evidence_service.get_evidence(evidence_id, current_user.id)
    return await processor.process(evidence.id, final_attempt=True)
