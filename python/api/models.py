"""
Pydantic request/response schemas for the Conflict Check API

Mirrors the engine types in conflict_models.py for API validation.
"""

from typing import List, Optional, Dict, Any, Union

from pydantic import BaseModel, Field, field_validator

PARTY_TYPES = ('legal', 'individual')


class AffiliateInput(BaseModel):
    """Related company or person attached to a prospective case."""
    name: Optional[str] = Field(default=None, max_length=500)
    type: Optional[str] = Field(default=None, description="legal or individual")
    inn: Optional[str] = Field(default=None, max_length=20, description="Company identifier (9 or 12 digits)")
    pinfl: Optional[str] = Field(default=None, max_length=20, description="Person identifier (14 digits)")


class AffiliatesInput(BaseModel):
    """Affiliate lists per role category; entries may be plain names."""
    related_companies: List[Union[str, AffiliateInput]] = Field(default_factory=list)
    related_individuals: List[Union[str, AffiliateInput]] = Field(default_factory=list)
    founders: List[Union[str, AffiliateInput]] = Field(default_factory=list)
    directors: List[Union[str, AffiliateInput]] = Field(default_factory=list)
    beneficiaries: List[Union[str, AffiliateInput]] = Field(default_factory=list)

    def to_raw(self) -> Dict[str, List[Any]]:
        return {
            role: [
                entry.model_dump(exclude_none=True) if isinstance(entry, AffiliateInput) else entry
                for entry in getattr(self, role)
            ]
            for role in type(self).model_fields
        }


class ConflictSearchRequest(BaseModel):
    """Request schema for an ad-hoc conflict search.

    The company identifier is used only for legal parties, the person
    identifier only for individuals.
    """
    client_name: Optional[str] = Field(default=None, max_length=500)
    client_type: str = Field(default='legal', description="legal or individual")
    client_inn: Optional[str] = Field(default=None, max_length=20)
    client_pinfl: Optional[str] = Field(default=None, max_length=20)
    opponent_name: Optional[str] = Field(default=None, max_length=500)
    opponent_type: str = Field(default='legal', description="legal or individual")
    opponent_inn: Optional[str] = Field(default=None, max_length=20)
    opponent_pinfl: Optional[str] = Field(default=None, max_length=20)
    affiliates: Optional[AffiliatesInput] = None
    lawyer_ids: List[int] = Field(default_factory=list)

    @field_validator('client_type', 'opponent_type')
    @classmethod
    def validate_party_type(cls, v: str) -> str:
        value = (v or 'legal').strip().lower()
        if value not in PARTY_TYPES:
            raise ValueError("Party type must be 'legal' or 'individual'")
        return value


class ConflictCheckRequest(BaseModel):
    """Optional body for checking a stored case."""
    checked_by: Optional[int] = Field(default=None, description="User id recorded in the check history")


class FindingResponse(BaseModel):
    kind: str
    reason: str
    case_id: int
    matched_by: str


class ConflictReportResponse(BaseModel):
    """Conflict check result."""
    conflict_level: str = Field(..., description="none, low, medium, high or error")
    conflict_reasons: List[str] = Field(default_factory=list)
    conflicting_cases: List[int] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    checked_at: str = Field(..., description="Check timestamp (ISO 8601)")
    findings: List[FindingResponse] = Field(default_factory=list)
    case_id: Optional[int] = Field(default=None, description="Checked case (absent for ad-hoc searches)")
    processing_time_ms: int = Field(..., ge=0)


class ConflictHistoryItem(BaseModel):
    id: int
    case_id: int
    conflict_level: str
    conflict_reason: Optional[str] = None
    conflicting_cases: List[int] = Field(default_factory=list)
    checked_by: Optional[int] = None
    checked_by_name: Optional[str] = None
    checked_at: Optional[str] = None


class NameVariantsRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=500)


class NameVariantsResponse(BaseModel):
    name: str
    script: str = Field(..., description="cyrillic, latin, mixed or none")
    normalized: str
    variants: List[str]


class SimilarNamesRequest(BaseModel):
    query: str = Field(..., min_length=1, max_length=500)
    candidates: List[str] = Field(..., min_length=1, max_length=1000)
    limit: int = Field(default=10, ge=1, le=100)


class NameSuggestionResponse(BaseModel):
    name: str
    score: float
    tier: str


class SimilarNamesResponse(BaseModel):
    query: str
    suggestions: List[NameSuggestionResponse]


class HealthResponse(BaseModel):
    """Response schema for health check endpoint."""
    status: str = Field(default="healthy", description="Service status")
    database: str = Field(default="unknown", description="Database connectivity")
    algorithm_version: str = Field(..., description="Algorithm version")
    cache_enabled: bool = Field(default=True)
    uptime_seconds: Optional[int] = Field(default=None, description="Server uptime in seconds")
    error_message: Optional[str] = None


class ErrorDetail(BaseModel):
    """Detailed error information."""
    code: str = Field(..., description="Error code for programmatic handling")
    message: str = Field(..., description="Human-readable error message")
    field: Optional[str] = Field(default=None, description="Field that caused error")
    suggestion: Optional[str] = Field(default=None, description="How to fix the error")
    timestamp: str = Field(..., description="Error timestamp (ISO 8601)")


class ErrorResponse(BaseModel):
    """Standardized error response format."""
    error: ErrorDetail


class CacheStatsResponse(BaseModel):
    """Cache counters plus per-operation query timings."""
    cache: Dict[str, Any]
    database: Dict[str, Any] = Field(default_factory=dict)


class CacheClearResponse(BaseModel):
    results: int = Field(..., ge=0, description="Cached conflict reports removed")
    lawyers: int = Field(..., ge=0, description="Cached lawyer names removed")
