"""Per-contributor statistics for the profile page."""

from __future__ import annotations

import logging
from collections import Counter
from typing import List, Optional, Sequence

from clinicalforge.models.enums import FormType, SubmissionStatus
from clinicalforge.schemas.dashboard import (
    ProfileActivity,
    ProfileAnalytics,
    ProfileTopDisease,
    UserProfile,
    UserStatistics,
)
from clinicalforge.schemas.documents import SubmissionDocument
from clinicalforge.services.dashboard import disease_of, monthly_contributions
from clinicalforge.services.repository import SubmissionRepository
from clinicalforge.services.scoring import percent
from clinicalforge.utils.dates import ensure_utc

logger = logging.getLogger(__name__)

FORM_LABELS = {
    FormType.COMPREHENSIVE_PARAMETER_VALIDATION: "Parameter Validation",
    FormType.ADVANCED_CLINICAL_ANALYTICS: "Advanced Analytics",
}
UNKNOWN_DISEASE = "Unknown Disease"


def calculate_user_statistics(
    documents: Sequence[SubmissionDocument],
    *,
    recent: int = 5,
    top_n: int = 5,
    monthly_buckets: int = 6,
) -> UserStatistics:
    """Statistics over every form type of one user, newest document first.

    Anything past draft counts as completed.
    """

    incomplete = sum(1 for document in documents if document.status == SubmissionStatus.DRAFT)
    completed = len(documents) - incomplete

    activity: List[ProfileActivity] = []
    for document in documents[:recent]:
        label = FORM_LABELS.get(document.form_type, document.form_type.value)
        disease = disease_of(document) or UNKNOWN_DISEASE
        activity.append(
            ProfileActivity(
                id=document.submission_id,
                form_type=label,
                disease_name=disease,
                status=document.status.value,
                submitted_at=ensure_utc(document.submitted_at),
                description=f"{label} - {disease_of(document) or 'Clinical Data'}",
            )
        )

    counts: Counter = Counter(disease_of(document) or UNKNOWN_DISEASE for document in documents)
    ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)[:top_n]

    return UserStatistics(
        forms_completed=completed,
        forms_incomplete=incomplete,
        total_contributions=len(documents),
        completion_rate=percent(completed, len(documents)),
        recent_activity=activity,
        top_diseases=[ProfileTopDisease(disease_name=name, count=count) for name, count in ranked],
        monthly_contributions=monthly_contributions(documents, monthly_buckets),
    )


class ProfileAnalyticsService:
    def __init__(self, repository: SubmissionRepository) -> None:
        self.repository = repository

    async def get_profile_analytics(
        self, uid: str, profile: Optional[UserProfile] = None
    ) -> ProfileAnalytics:
        """Fail-soft: on storage failure ``isRealData`` is false and statistics are empty."""

        user_profile = profile or UserProfile(uid=uid)
        try:
            documents = await self.repository.list_by_owner(uid)
            if profile is None:
                user_profile = await self.repository.get_profile(uid) or user_profile
        except Exception:
            logger.warning("Profile analytics failed for %s", uid, exc_info=True)
            return ProfileAnalytics(
                user_profile=user_profile, statistics=UserStatistics(), is_real_data=False
            )
        return ProfileAnalytics(
            user_profile=user_profile,
            statistics=calculate_user_statistics(documents),
            is_real_data=True,
        )
