import copy
import random
from datetime import datetime, timezone

import pytest

from clinicalforge.errors import Unauthenticated, ValidationFailed
from clinicalforge.models.enums import FormType, Priority, SubmissionStatus
from clinicalforge.services.builder import build_submission, rebuild_payload
from clinicalforge.services.scoring import PlaceholderSupplementaryScorer, score_submission

COMPREHENSIVE = FormType.COMPREHENSIVE_PARAMETER_VALIDATION
NOW = datetime(2025, 3, 14, 9, 30, tzinfo=timezone.utc)


def test_build_stamps_identity_and_defaults(comprehensive_payload) -> None:
    document = build_submission("uid-1", COMPREHENSIVE, comprehensive_payload, now=NOW)

    assert len(document.submission_id) == 36
    assert document.collaborator_id == "uid-1"
    assert document.status == SubmissionStatus.DRAFT
    assert document.version == "1.0"
    assert document.revision == 1
    assert document.submitted_at == NOW
    assert document.metadata.created_by == "uid-1"
    assert document.metadata.access_control.read_access == ["uid-1"]
    assert document.metadata.access_control.admin_access == ["uid-1"]
    assert document.metadata.priority == Priority.MEDIUM
    assert document.metadata.status == SubmissionStatus.DRAFT
    assert document.metadata.version_history[0].changes == ["Initial submission"]


def test_derived_blocks_match_payload(comprehensive_payload) -> None:
    document = build_submission("uid-1", COMPREHENSIVE, comprehensive_payload, now=NOW)

    assert document.validation == score_submission(COMPREHENSIVE, document.payload)
    assert "kidney" not in document.search_index.keywords
    assert "diabetes" in document.search_index.keywords
    assert "chronic" in document.metadata.tags
    assert document.advanced_analytics["redFlags"]["hospitalizationRequired"] == 1


def test_ids_are_unique(comprehensive_payload) -> None:
    ids = {build_submission("uid-1", COMPREHENSIVE, comprehensive_payload).submission_id for _ in range(20)}
    assert len(ids) == 20


def test_missing_actor_is_unauthenticated(comprehensive_payload) -> None:
    with pytest.raises(Unauthenticated):
        build_submission(None, COMPREHENSIVE, comprehensive_payload)
    with pytest.raises(Unauthenticated):
        build_submission("", COMPREHENSIVE, comprehensive_payload)


def test_invalid_payload_fails_before_build() -> None:
    with pytest.raises(ValidationFailed):
        build_submission("uid-1", COMPREHENSIVE, {"diseaseOverview": {"diseaseName": {"clinical": ""}}})


def test_caller_payload_is_not_mutated(comprehensive_payload) -> None:
    original = copy.deepcopy(comprehensive_payload)
    document = build_submission("uid-1", COMPREHENSIVE, comprehensive_payload)
    document.payload["medications"].clear()

    assert comprehensive_payload == original


def test_synthetic_flag_explicit_wins(comprehensive_payload) -> None:
    comprehensive_payload["diseaseOverview"]["diseaseName"]["clinical"] = "Test Disease"

    assert build_submission("uid-1", COMPREHENSIVE, comprehensive_payload).is_synthetic is True
    assert (
        build_submission("uid-1", COMPREHENSIVE, comprehensive_payload, is_synthetic=False).is_synthetic
        is False
    )


def test_synthetic_flag_from_actor_name(comprehensive_payload) -> None:
    document = build_submission("uid-1", COMPREHENSIVE, comprehensive_payload, actor_name="Demo User")
    assert document.is_synthetic is True

    document = build_submission("uid-1", COMPREHENSIVE, comprehensive_payload, actor_name="Dr. Amina Rahman")
    assert document.is_synthetic is False


def test_placeholder_scorer_output_is_kept_apart(comprehensive_payload) -> None:
    scorer = PlaceholderSupplementaryScorer(random.Random(3))
    document = build_submission("uid-1", COMPREHENSIVE, comprehensive_payload, scorer=scorer)

    assert len(document.supplementary_scores) == 3
    assert all(score.placeholder for score in document.supplementary_scores)
    assert document.validation == score_submission(COMPREHENSIVE, document.payload)


def test_rebuild_recomputes_everything(comprehensive_payload) -> None:
    document = build_submission("uid-1", COMPREHENSIVE, comprehensive_payload, now=NOW)
    later = datetime(2025, 3, 15, tzinfo=timezone.utc)
    comprehensive_payload["diseaseOverview"]["diseaseName"]["clinical"] = "Chronic Kidney Disease"
    comprehensive_payload["labValues"] = [{"labName": "eGFR", "isSufficient": False}]

    updated = rebuild_payload(document, "uid-1", comprehensive_payload, now=later)

    assert updated.submission_id == document.submission_id
    assert "kidney" in updated.search_index.keywords
    assert "diabetes" not in updated.search_index.keywords
    assert updated.validation.data_quality_score == 67
    assert updated.metadata.updated_at == later
    assert updated.metadata.created_at == NOW
    assert len(updated.metadata.version_history) == 2
    # the original document is untouched
    assert "diabetes" in document.search_index.keywords
