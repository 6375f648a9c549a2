"""Pydantic schemas for cases, context caches, and audit logs."""

from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from veridicus.schemas.evidence import EvidenceResponse


class CaseCreate(BaseModel):
    """Request body for creating a case."""

    name: str = Field(..., min_length=1, max_length=255, description="Case name")
    description: Optional[str] = Field(None, description="Free-text case description")

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Case name must not be empty")
        return value


class CaseResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(..., description="Case ID")
    name: str = Field(..., description="Case name")
    description: Optional[str] = Field(None, description="Case description")
    user_id: str = Field(..., description="Owning Supabase user ID")
    cache_id: Optional[str] = Field(None, description="Gemini context cache name")
    cache_expires_at: Optional[datetime] = Field(None, description="Context cache expiry")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CaseDetailResponse(CaseResponse):
    """Case with its evidence items."""

    evidence: list[EvidenceResponse] = Field(default_factory=list)


class ContextCacheResponse(BaseModel):
    """Result of building a Gemini context cache for a case."""

    cacheId: str = Field(..., description="Provider cache name")
    tokenCount: int = Field(..., description="Tokens held by the cache")
    expiresAt: datetime = Field(..., description="Cache expiry (UTC)")


class AuditLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    case_id: UUID
    user_id: str
    action: str = Field(..., description="Action tag, e.g. evidence_upload")
    details: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
