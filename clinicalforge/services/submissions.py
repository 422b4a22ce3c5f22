"""Submission workflows: drafts, submit, review decisions and lookups.

Writes always raise past this boundary so the caller can keep the user's form
state and offer a retry. Nothing here retries on its own.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from clinicalforge.errors import PermissionDenied, SubmissionNotFound, Unauthenticated, ValidationFailed
from clinicalforge.models.enums import FormType, Priority, SubmissionStatus
from clinicalforge.schemas.documents import SubmissionDocument
from clinicalforge.services.builder import build_submission
from clinicalforge.services.repository import SubmissionRepository
from clinicalforge.services.scoring import SupplementaryScorer

logger = logging.getLogger(__name__)

# statuses a reviewer may set; draft -> submitted belongs to the owner
REVIEW_STATUSES = frozenset(
    {SubmissionStatus.IN_REVIEW, SubmissionStatus.APPROVED, SubmissionStatus.REJECTED}
)



def can_read(document: SubmissionDocument, viewer_id: Optional[str], is_admin: bool = False) -> bool:
    """Admins read everything; others read approved work and what they were granted."""

    if is_admin or document.status == SubmissionStatus.APPROVED:
        return True
    return viewer_id is not None and viewer_id in document.metadata.access_control.read_access

class SubmissionService:
    def __init__(
        self,
        repository: SubmissionRepository,
        scorer: Optional[SupplementaryScorer] = None,
    ) -> None:
        self.repository = repository
        self.scorer = scorer

    async def create_draft(
        self,
        actor_id: Optional[str],
        form_type: FormType,
        payload: Dict[str, Any],
        *,
        priority: Priority = Priority.MEDIUM,
        is_synthetic: Optional[bool] = None,
        actor_name: Optional[str] = None,
    ) -> SubmissionDocument:
        """Validate, build and store a new draft. Exactly one write."""

        document = build_submission(
            actor_id,
            form_type,
            payload,
            is_synthetic=is_synthetic,
            priority=priority,
            actor_name=actor_name,
            scorer=self.scorer,
        )
        await self.repository.create(document)
        return document

    async def update_draft(
        self,
        actor_id: Optional[str],
        submission_id: str,
        payload: Dict[str, Any],
        expected_revision: Optional[int] = None,
    ) -> SubmissionDocument:
        if not actor_id:
            raise Unauthenticated()
        return await self.repository.update_draft(submission_id, payload, actor_id, expected_revision)

    async def submit(
        self,
        actor_id: Optional[str],
        submission_id: str,
        expected_revision: Optional[int] = None,
    ) -> SubmissionDocument:
        """Owner hands a draft over for review.

        The comprehensive form needs research consent before it can leave draft.
        """

        if not actor_id:
            raise Unauthenticated()
        document = await self.repository.get_by_id(submission_id)
        if document is None:
            raise SubmissionNotFound(f"Submission {submission_id} not found")
        if actor_id not in document.metadata.access_control.write_access:
            raise PermissionDenied(f"{actor_id} cannot submit {submission_id}")
        if document.form_type == FormType.COMPREHENSIVE_PARAMETER_VALIDATION:
            consent = document.payload.get("physicianConsent") or {}
            if not consent.get("consentForResearch"):
                raise ValidationFailed(
                    [
                        {
                            "field": "physicianConsent.consentForResearch",
                            "message": "Research consent is required before submitting",
                            "type": "missing_consent",
                        }
                    ]
                )
        return await self.repository.update_status(
            submission_id, SubmissionStatus.SUBMITTED, actor_id, expected_revision
        )

    async def change_status(
        self,
        admin_id: Optional[str],
        submission_id: str,
        status: SubmissionStatus,
        expected_revision: Optional[int] = None,
    ) -> SubmissionDocument:
        """Reviewer decision: in-review, approved or rejected."""

        if not admin_id:
            raise Unauthenticated()
        status = SubmissionStatus(status)
        if status not in REVIEW_STATUSES:
            raise PermissionDenied(f"Reviewers cannot set status {status.value}")
        return await self.repository.update_status(submission_id, status, admin_id, expected_revision)

    async def get(
        self, submission_id: str, viewer_id: str, is_admin: bool = False
    ) -> SubmissionDocument:
        document = await self.repository.get_by_id(submission_id)
        if document is None:
            raise SubmissionNotFound(f"Submission {submission_id} not found")
        if not can_read(document, viewer_id, is_admin):
            raise PermissionDenied(f"{viewer_id} cannot read {submission_id}")
        return document

    async def list_mine(self, actor_id: str, limit: Optional[int] = None) -> List[SubmissionDocument]:
        return await self.repository.list_by_owner(actor_id, limit)

    async def list_by_status(
        self, status: SubmissionStatus, limit: Optional[int] = None
    ) -> List[SubmissionDocument]:
        return await self.repository.list_by_status(status, limit)

    async def list_approved(self, limit: Optional[int] = None) -> List[SubmissionDocument]:
        return await self.repository.list_by_status(SubmissionStatus.APPROVED, limit)

    async def search(
        self,
        keyword: str,
        limit: Optional[int] = None,
        viewer_id: Optional[str] = None,
        is_admin: bool = False,
    ) -> List[SubmissionDocument]:
        """Single-token lookup; the keyword is lower-cased, never stemmed.

        Only documents the viewer may read are returned.
        """

        token = keyword.strip().lower()
        if not token:
            return []
        if is_admin:
            return await self.repository.search_by_keyword(token, limit)
        documents = await self.repository.search_by_keyword(token)
        return _visible(documents, viewer_id, limit)

    async def list_by_disease_type(
        self,
        disease_type: str,
        limit: Optional[int] = None,
        viewer_id: Optional[str] = None,
        is_admin: bool = False,
    ) -> List[SubmissionDocument]:
        if is_admin:
            return await self.repository.list_by_disease_type(disease_type, limit)
        documents = await self.repository.list_by_disease_type(disease_type)
        return _visible(documents, viewer_id, limit)


def _visible(
    documents: List[SubmissionDocument], viewer_id: Optional[str], limit: Optional[int]
) -> List[SubmissionDocument]:
    # limit counts readable documents only
    readable = [doc for doc in documents if can_read(doc, viewer_id)]
    return readable[:limit] if limit else readable
