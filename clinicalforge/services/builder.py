"""Submission builder: raw form state -> canonical submission document."""

from __future__ import annotations

import copy
import logging
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional
from uuid import uuid4

from clinicalforge.errors import Unauthenticated
from clinicalforge.models.enums import FormType, Priority, SubmissionStatus
from clinicalforge.schemas.documents import (
    AccessControl,
    SearchIndex,
    SubmissionDocument,
    SubmissionMetadata,
    SupplementaryScore,
    ValidationScores,
    VersionHistoryEntry,
)
from clinicalforge.schemas.forms import validate_form_payload
from clinicalforge.services.scoring import (
    NullSupplementaryScorer,
    SupplementaryScorer,
    build_advanced_analytics,
    build_search_index,
    extract_tags,
    score_submission,
)
from clinicalforge.services.synthetic import looks_synthetic
from clinicalforge.utils.dates import utcnow

logger = logging.getLogger(__name__)

DOCUMENT_VERSION = "1.0"


class DerivedBlocks:
    """Everything computed from a payload, recomputed together."""

    def __init__(
        self,
        validation: ValidationScores,
        search_index: SearchIndex,
        advanced_analytics: Dict[str, Any],
        supplementary_scores: List[SupplementaryScore],
        tags: List[str],
    ) -> None:
        self.validation = validation
        self.search_index = search_index
        self.advanced_analytics = advanced_analytics
        self.supplementary_scores = supplementary_scores
        self.tags = tags


def derive(
    form_type: FormType,
    payload: Mapping[str, Any],
    scorer: Optional[SupplementaryScorer] = None,
) -> DerivedBlocks:
    scorer = scorer or NullSupplementaryScorer()
    return DerivedBlocks(
        validation=score_submission(form_type, payload),
        search_index=build_search_index(form_type, payload),
        advanced_analytics=build_advanced_analytics(form_type, payload),
        supplementary_scores=scorer.score(form_type, payload),
        tags=extract_tags(form_type, payload),
    )


def _require_actor(actor_id: Optional[str]) -> str:
    if not actor_id:
        raise Unauthenticated("A signed-in user is required to save submissions")
    return actor_id


def build_submission(
    actor_id: Optional[str],
    form_type: FormType,
    raw_payload: Mapping[str, Any],
    *,
    is_synthetic: Optional[bool] = None,
    priority: Priority = Priority.MEDIUM,
    actor_name: Optional[str] = None,
    scorer: Optional[SupplementaryScorer] = None,
    now: Optional[datetime] = None,
) -> SubmissionDocument:
    """Compose a new draft document.

    Raises ``Unauthenticated`` without an actor and ``ValidationFailed`` on bad
    fields; nothing is written in either case. ``raw_payload`` is never mutated.
    """

    owner = _require_actor(actor_id)
    form_type = FormType(form_type)
    payload = validate_form_payload(form_type, copy.deepcopy(dict(raw_payload or {})))
    now = now or utcnow()
    derived = derive(form_type, payload, scorer)
    synthetic = is_synthetic if is_synthetic is not None else looks_synthetic(payload, actor_name)

    document = SubmissionDocument(
        submission_id=str(uuid4()),
        collaborator_id=owner,
        form_type=form_type,
        status=SubmissionStatus.DRAFT,
        version=DOCUMENT_VERSION,
        revision=1,
        submitted_at=now,
        is_synthetic=synthetic,
        payload=payload,
        validation=derived.validation,
        supplementary_scores=derived.supplementary_scores,
        advanced_analytics=derived.advanced_analytics,
        metadata=SubmissionMetadata(
            created_at=now,
            updated_at=now,
            created_by=owner,
            last_modified_by=owner,
            access_control=AccessControl(
                read_access=[owner], write_access=[owner], admin_access=[owner]
            ),
            version_history=[
                VersionHistoryEntry(
                    version=DOCUMENT_VERSION,
                    timestamp=now,
                    changes=["Initial submission"],
                    modified_by=owner,
                )
            ],
            tags=derived.tags,
            priority=priority,
            status=SubmissionStatus.DRAFT,
        ),
        search_index=derived.search_index,
    )
    logger.debug(
        "Built submission %s (%s) for %s, synthetic=%s",
        document.submission_id,
        form_type.value,
        owner,
        synthetic,
    )
    return document


def rebuild_payload(
    document: SubmissionDocument,
    actor_id: Optional[str],
    raw_payload: Mapping[str, Any],
    *,
    scorer: Optional[SupplementaryScorer] = None,
    now: Optional[datetime] = None,
) -> SubmissionDocument:
    """Return a copy of ``document`` with a new payload and every derived block recomputed."""

    actor = _require_actor(actor_id)
    payload = validate_form_payload(document.form_type, copy.deepcopy(dict(raw_payload or {})))
    return restamp(document, payload, actor, ["Draft updated"], scorer=scorer, now=now)


def restamp(
    document: SubmissionDocument,
    payload: Dict[str, Any],
    actor_id: str,
    changes: List[str],
    *,
    status: Optional[SubmissionStatus] = None,
    scorer: Optional[SupplementaryScorer] = None,
    now: Optional[datetime] = None,
) -> SubmissionDocument:
    """Copy with payload, derived blocks, status mirror and modifier stamp refreshed."""

    now = now or utcnow()
    derived = derive(document.form_type, payload, scorer)
    new_status = status or document.status
    metadata = document.metadata.model_copy(
        update={
            "updated_at": now,
            "last_modified_by": actor_id,
            "status": new_status,
            "tags": derived.tags,
            "version_history": [
                *document.metadata.version_history,
                VersionHistoryEntry(
                    version=document.version,
                    timestamp=now,
                    changes=changes,
                    modified_by=actor_id,
                ),
            ],
        }
    )
    return document.model_copy(
        update={
            "status": new_status,
            "payload": payload,
            "validation": derived.validation,
            "supplementary_scores": derived.supplementary_scores,
            "advanced_analytics": derived.advanced_analytics,
            "search_index": derived.search_index,
            "metadata": metadata,
        }
    )
