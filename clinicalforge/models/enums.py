"""Enumerations shared by the ORM models, form schemas and services."""

import enum


class FormType(str, enum.Enum):
    """Form variants that produce submissions."""
    COMPREHENSIVE_PARAMETER_VALIDATION = "comprehensive-parameter-validation"
    ADVANCED_CLINICAL_ANALYTICS = "advanced-clinical-analytics"


class SubmissionStatus(str, enum.Enum):
    """Submission lifecycle.

    draft -> submitted -> in-review -> approved | rejected, forward only.
    """
    DRAFT = "draft"
    SUBMITTED = "submitted"
    IN_REVIEW = "in-review"
    APPROVED = "approved"
    REJECTED = "rejected"


# Allowed forward moves; approved/rejected are terminal
STATUS_TRANSITIONS = {
    SubmissionStatus.DRAFT: {SubmissionStatus.SUBMITTED},
    SubmissionStatus.SUBMITTED: {SubmissionStatus.IN_REVIEW},
    SubmissionStatus.IN_REVIEW: {SubmissionStatus.APPROVED, SubmissionStatus.REJECTED},
    SubmissionStatus.APPROVED: set(),
    SubmissionStatus.REJECTED: set(),
}


class Priority(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class DiseaseKind(str, enum.Enum):
    ACUTE = "acute"
    CHRONIC = "chronic"
    RECURRENT = "recurrent"
    CONGENITAL = "congenital"


class ClinicalImpact(str, enum.Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class QualityRating(str, enum.Enum):
    """Four-step rating used for data quality and clinical relevance."""
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"


class ImplementationReadiness(str, enum.Enum):
    READY = "ready"
    NEEDS_IMPROVEMENT = "needs-improvement"
    NOT_READY = "not-ready"


class UserRole(str, enum.Enum):
    """Contributing physician or administrator."""
    CONTRIBUTOR = "contributor"
    ADMIN = "admin"
