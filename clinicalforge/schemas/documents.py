"""Submission document contracts.

These models mirror the stored document shape (camelCase on the wire) and are
shared by the builder, the storage gateway and the HTTP layer.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from clinicalforge.models.enums import FormType, Priority, SubmissionStatus


class DocumentModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ValidationScores(DocumentModel):
    """Derived scores, all in ``[0, 100]``."""

    overall_score: int = 0
    completeness_score: int = 0
    data_quality_score: int = 0
    clinical_relevance_score: int = 0
    missing_sections: List[str] = Field(default_factory=list)
    validation_warnings: List[str] = Field(default_factory=list)
    validation_errors: List[str] = Field(default_factory=list)


class SupplementaryScore(DocumentModel):
    """Extra quality indicator; ``placeholder`` marks values that are not computed."""

    name: str
    value: int
    placeholder: bool = False


class SearchIndex(DocumentModel):
    disease_name: str = ""
    keywords: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    categories: List[str] = Field(default_factory=list)
    regions: List[str] = Field(default_factory=list)
    clinical_areas: List[str] = Field(default_factory=list)
    implementation_status: str = ""


class AccessControl(DocumentModel):
    read_access: List[str] = Field(default_factory=list)
    write_access: List[str] = Field(default_factory=list)
    admin_access: List[str] = Field(default_factory=list)


class VersionHistoryEntry(DocumentModel):
    version: str
    timestamp: datetime
    changes: List[str] = Field(default_factory=list)
    modified_by: str


class SubmissionMetadata(DocumentModel):
    created_at: datetime
    updated_at: datetime
    created_by: str
    last_modified_by: str
    access_control: AccessControl
    version_history: List[VersionHistoryEntry] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    priority: Priority = Priority.MEDIUM
    status: SubmissionStatus = SubmissionStatus.DRAFT


class SubmissionDocument(DocumentModel):
    submission_id: str
    collaborator_id: str
    form_type: FormType
    status: SubmissionStatus = SubmissionStatus.DRAFT
    version: str = "1.0"
    revision: int = 1
    submitted_at: datetime
    is_synthetic: Optional[bool] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    validation: ValidationScores = Field(default_factory=ValidationScores)
    supplementary_scores: List[SupplementaryScore] = Field(default_factory=list)
    advanced_analytics: Dict[str, Any] = Field(default_factory=dict)
    metadata: SubmissionMetadata
    search_index: SearchIndex = Field(default_factory=SearchIndex)


# === Request bodies ===

class SubmissionCreate(DocumentModel):
    form_type: FormType
    payload: Dict[str, Any] = Field(default_factory=dict)
    priority: Priority = Priority.MEDIUM
    is_synthetic: Optional[bool] = None


class DraftUpdate(DocumentModel):
    payload: Dict[str, Any] = Field(default_factory=dict)
    expected_revision: Optional[int] = None


class StatusUpdate(DocumentModel):
    status: SubmissionStatus
    expected_revision: Optional[int] = None


class SubmissionListResponse(DocumentModel):
    submissions: List[SubmissionDocument]
    total: int
