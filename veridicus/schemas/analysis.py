"""Pydantic schemas for reasoning queries, analyses, and contradictions."""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from veridicus.utils.validation import is_valid_uuid


class AnalysisQueryRequest(BaseModel):
    """Body of ``POST /analysis/query``."""

    caseId: str = Field(..., description="Case to reason over")
    query: str = Field(..., min_length=1, description="Investigator question")

    @field_validator("caseId")
    @classmethod
    def case_id_is_uuid(cls, value: str) -> str:
        if not is_valid_uuid(value):
            raise ValueError("Invalid case ID format")
        return value

    @field_validator("query")
    @classmethod
    def query_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Query must not be empty")
        return value


class ContradictionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    analysis_id: UUID
    case_id: UUID
    description: str
    severity: Literal["low", "medium", "high", "critical"] = "medium"
    evidence_a_id: Optional[UUID] = None
    evidence_b_id: Optional[UUID] = None
    timestamps: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None


class AnalysisResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    case_id: UUID
    query: str
    thought_signature: Optional[str] = None
    thoughts: List[str] = Field(default_factory=list, description="Model reasoning trace")
    result: Dict[str, Any] = Field(
        default_factory=dict, description="text, usage and tool_loop statistics"
    )
    citations: List[Dict[str, Any]] = Field(default_factory=list)
    created_at: Optional[datetime] = None


class AnalysisQueryResponse(AnalysisResponse):
    contradictions: List[ContradictionResponse] = Field(default_factory=list)
