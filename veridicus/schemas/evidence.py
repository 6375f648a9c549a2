"""Pydantic schemas for evidence items."""

from datetime import datetime
from typing import Any, Dict, Literal, Optional
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class EvidenceResponse(BaseModel):
    """Evidence row as returned to clients."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(..., description="Evidence ID")
    case_id: UUID = Field(..., description="Parent case ID")
    file_path: str = Field(..., description="Storage object key")
    file_type: str = Field(..., description="Top-level MIME category")
    mime_type: str = Field(..., description="Declared MIME type")
    file_size: int = Field(0, description="Size in bytes")
    token_count: Optional[int] = Field(None, description="Tokens used by extraction")
    metadata: Dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("evidence_metadata", "metadata"),
        description="originalName, processed, forensic, analysis_at, processing_error",
    )
    processing_status: Literal["pending", "processing", "done", "failed"] = "pending"
    processing_attempts: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class DownloadUrlResponse(BaseModel):
    signed_url: str = Field(..., description="Time-limited Supabase Storage URL")
    storage_path: str = Field(..., description="Storage object key")
