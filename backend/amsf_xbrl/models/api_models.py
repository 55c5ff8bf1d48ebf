"""
API Models

Pydantic models for validation results and the reporting API responses.
"""

from pydantic import BaseModel, Field
from typing import List, Optional, Dict, Any
from datetime import datetime

SERVICE_ERROR = "SERVICE_ERROR"
INVALID_CONTENT = "INVALID_CONTENT"


class ValidationIssue(BaseModel):
    """One error or warning reported by the validator."""

    code: Optional[str] = Field(None, description="Validator error code")
    message: Optional[str] = Field(None, description="Human-readable message")
    element: Optional[str] = Field(None, description="Element the finding refers to")


class ValidationResult(BaseModel):
    """Outcome of one validation call (real or synthetic)."""

    valid: bool = Field(..., description="Whether the document passed validation")
    errors: List[ValidationIssue] = Field(default_factory=list, description="Validation errors")
    warnings: List[ValidationIssue] = Field(default_factory=list, description="Validation warnings")
    attempts: int = Field(1, description="HTTP attempts made")

    @property
    def is_service_error(self) -> bool:
        return any(e.code == SERVICE_ERROR for e in self.errors)

    @classmethod
    def service_error(cls, message: str, attempts: int = 1) -> "ValidationResult":
        return cls(
            valid=False,
            errors=[ValidationIssue(code=SERVICE_ERROR, message=message)],
            attempts=attempts,
        )


class TaxonomyElementInfo(BaseModel):
    """Registry entry as exposed over HTTP."""

    name: str
    type: str
    label: Optional[str] = None
    verbose_label: Optional[str] = None
    short_label: Optional[str] = None
    section: Optional[str] = None
    order: int = 0
    dimensional: bool = False
    unit_ref: Optional[str] = None


class SectionInfo(BaseModel):
    id: str = Field(..., description="Questionnaire section id (e.g. 1.2, C1.5)")
    title: str
    elements: List[str] = Field(default_factory=list)


class PopulateResponse(BaseModel):
    submission_id: int
    created: int
    updated: int
    unchanged: int
    skipped: int


class ManifestEntry(BaseModel):
    name: str
    type: str
    label: Optional[str] = None
    section: Optional[str] = None
    order: int = 0
    value: Optional[str] = None
    formatted_value: Optional[str] = None
    source: Optional[str] = None
    overridden: bool = False
    confirmed: bool = False
    needs_review: bool = False
    visible: bool = True
    country_breakdown: Optional[Dict[str, Any]] = None


class ManifestResponse(BaseModel):
    submission_id: int
    year: int
    sections: Dict[str, List[ManifestEntry]] = Field(default_factory=dict)


class ComparisonInfo(BaseModel):
    element_name: str
    current: Optional[str] = None
    previous: Optional[str] = None
    change_percent: Optional[float] = None
    significant: bool = False


class ComparisonResponse(BaseModel):
    submission_id: int
    year: int
    previous_year: Optional[int] = None
    first_submission: bool = False
    significant_changes: List[ComparisonInfo] = Field(default_factory=list)


class HealthResponse(BaseModel):
    """Response model for health check."""

    status: str = Field(..., description="Service status")
    service: str = Field(..., description="Service name")
    version: str = Field(..., description="Service version")
    taxonomy_loaded: bool = Field(..., description="Whether the taxonomy registry is loaded")
    taxonomy_version: str = Field(..., description="Taxonomy version served")
    validator_healthy: Optional[bool] = Field(None, description="External validator reachability")
    timestamp: datetime = Field(default_factory=datetime.now, description="Health check timestamp")
