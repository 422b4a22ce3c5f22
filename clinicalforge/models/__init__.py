"""ORM models, re-exported for convenient imports."""

from clinicalforge.models.enums import (
    STATUS_TRANSITIONS,
    ClinicalImpact,
    DiseaseKind,
    FormType,
    ImplementationReadiness,
    Priority,
    QualityRating,
    SubmissionStatus,
    UserRole,
)
from clinicalforge.models.submission import Submission, SubmissionCategory, SubmissionKeyword
from clinicalforge.models.user import User

__all__ = [
    "STATUS_TRANSITIONS",
    "ClinicalImpact",
    "DiseaseKind",
    "FormType",
    "ImplementationReadiness",
    "Priority",
    "QualityRating",
    "Submission",
    "SubmissionCategory",
    "SubmissionKeyword",
    "SubmissionStatus",
    "User",
    "UserRole",
]
