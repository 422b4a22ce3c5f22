import random

import pytest

from clinicalforge.models.enums import FormType
from clinicalforge.services.scoring import (
    COMPREHENSIVE_DEFINITION,
    NullSupplementaryScorer,
    PlaceholderSupplementaryScorer,
    get_definition,
    round_half_up,
    score_submission,
)

COMPREHENSIVE = FormType.COMPREHENSIVE_PARAMETER_VALIDATION
ANALYTICS = FormType.ADVANCED_CLINICAL_ANALYTICS


def _full_comprehensive_payload():
    record = {"notes": "documented", "isSufficient": True}
    payload = {
        "diseaseOverview": {"diseaseName": {"clinical": "Asthma"}},
        "pediatricVsAdult": {"pediatricPresentation": "Wheeze", "adultPresentation": "Cough"},
        "regionalPractices": {"urbanDiagnosisMethods": "Spirometry"},
        "additionalNotes": "Seasonal peaks",
        "physicianConsent": {"physicianName": "Dr. Karim", "consentForResearch": True},
    }
    for section in COMPREHENSIVE_DEFINITION.list_sections:
        payload[section] = [dict(record)]
    return payload


def test_diabetes_example_scores(comprehensive_payload) -> None:
    scores = score_submission(COMPREHENSIVE, comprehensive_payload)

    assert scores.data_quality_score == 100
    assert scores.clinical_relevance_score == 100
    assert scores.completeness_score == 17  # 3 of 18 sections
    assert scores.overall_score == 72
    expected_missing = [
        section
        for section in COMPREHENSIVE_DEFINITION.sections
        if section not in {"diseaseOverview", "medications", "redFlags"}
    ]
    assert scores.missing_sections == expected_missing


def test_scoring_is_idempotent(comprehensive_payload, analytics_payload) -> None:
    assert score_submission(COMPREHENSIVE, comprehensive_payload) == score_submission(
        COMPREHENSIVE, comprehensive_payload
    )
    assert score_submission(ANALYTICS, analytics_payload) == score_submission(
        ANALYTICS, analytics_payload
    )


def test_analytics_form_scores(analytics_payload) -> None:
    scores = score_submission(ANALYTICS, analytics_payload)

    assert scores.completeness_score == 100
    assert scores.missing_sections == []
    # 4 of 6 checkable records are sufficient / resolved / implemented
    assert scores.data_quality_score == 67
    # high(100) + low(40) + sufficient critical point(100) + good(80)
    assert scores.clinical_relevance_score == 80
    assert scores.overall_score == 82
    assert "Unresolved conflict: Timing of insulin" in scores.validation_warnings


def test_completeness_is_100_only_when_every_section_present() -> None:
    full = _full_comprehensive_payload()
    assert score_submission(COMPREHENSIVE, full).completeness_score == 100

    for section in COMPREHENSIVE_DEFINITION.sections:
        partial = dict(full)
        partial.pop(section)
        scores = score_submission(COMPREHENSIVE, partial)
        assert scores.completeness_score < 100
        assert scores.missing_sections == [section]


def test_empty_payload_scores_zero() -> None:
    scores = score_submission(COMPREHENSIVE, {})

    assert scores.overall_score == 0
    assert scores.completeness_score == 0
    assert scores.data_quality_score == 0
    assert scores.clinical_relevance_score == 0
    assert scores.missing_sections == list(COMPREHENSIVE_DEFINITION.sections)
    assert len(scores.validation_warnings) == 2


def test_blank_records_do_not_count_as_present() -> None:
    payload = {
        "medications": [{"drugClass": "", "stage": "   "}],
        "physicianConsent": {"consentForResearch": False, "physicianName": ""},
        "additionalNotes": "  ",
    }
    scores = score_submission(COMPREHENSIVE, payload)

    assert scores.completeness_score == 0
    assert {"medications", "physicianConsent", "additionalNotes"} <= set(scores.missing_sections)


def test_records_without_flags_are_not_checkable() -> None:
    payload = {"medications": [{"drugClass": "Statin"}], "labValues": [{"labName": "LDL", "isSufficient": False}]}

    assert score_submission(COMPREHENSIVE, payload).data_quality_score == 0

    payload["medications"][0]["isSufficient"] = True
    assert score_submission(COMPREHENSIVE, payload).data_quality_score == 50


def test_relevance_averages_only_rated_items() -> None:
    payload = {
        "decisionModels": [
            {"model": "A", "clinicalImpact": "medium"},
            {"model": "B"},
        ],
    }
    scores = score_submission(ANALYTICS, payload)
    assert scores.clinical_relevance_score == 70


def test_malformed_sections_are_reported_and_missing() -> None:
    scores = score_submission(COMPREHENSIVE, {"medications": "metformin"})

    assert "medications" in scores.missing_sections
    assert scores.validation_errors == ["Section 'medications' must be a list of records"]


@pytest.mark.parametrize(
    "payload",
    [
        {},
        {"decisionModels": [{"model": "x", "clinicalImpact": "high", "isSufficient": True}]},
        {"feedbackLoops": [{"loop": "x", "isImplemented": False}], "overallAssessment": {"clinicalRelevance": "poor"}},
        {"sections": [{"name": "a", "isSufficient": True}, {"name": "b", "isSufficient": False}]},
    ],
)
def test_overall_is_rounded_mean(payload) -> None:
    scores = score_submission(ANALYTICS, payload)
    mean = (scores.completeness_score + scores.data_quality_score + scores.clinical_relevance_score) / 3

    assert scores.overall_score == round_half_up(mean)
    for value in (
        scores.overall_score,
        scores.completeness_score,
        scores.data_quality_score,
        scores.clinical_relevance_score,
    ):
        assert 0 <= value <= 100


def test_round_half_up() -> None:
    assert round_half_up(16.5) == 17
    assert round_half_up(2.5) == 3
    assert round_half_up(66.66) == 67
    assert round_half_up(0) == 0


def test_definition_lookup_accepts_strings() -> None:
    assert get_definition("advanced-clinical-analytics").form_type == ANALYTICS
    with pytest.raises(ValueError):
        get_definition("clinical-logic")


def test_placeholder_scores_are_labelled(comprehensive_payload) -> None:
    scores = PlaceholderSupplementaryScorer(random.Random(7)).score(COMPREHENSIVE, comprehensive_payload)

    assert [score.name for score in scores] == ["accuracy", "consistency", "evidenceBased"]
    assert all(score.placeholder for score in scores)
    assert all(80 <= score.value <= 99 for score in scores)
    assert NullSupplementaryScorer().score(COMPREHENSIVE, comprehensive_payload) == []


def test_placeholder_scores_do_not_touch_core_scores(comprehensive_payload) -> None:
    before = score_submission(COMPREHENSIVE, comprehensive_payload)
    PlaceholderSupplementaryScorer(random.Random(1)).score(COMPREHENSIVE, comprehensive_payload)
    assert score_submission(COMPREHENSIVE, comprehensive_payload) == before
