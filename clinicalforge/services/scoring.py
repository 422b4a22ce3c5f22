"""Scoring engine: validation scores, search index and analytics summary.

Every function here is a pure function of ``(form_type, payload)``; no I/O and no
randomness. The only random values in the system come from
``PlaceholderSupplementaryScorer`` and are labelled as placeholders.

Each form type registers a ``FormDefinition`` that declares its own ordered
section list, presence predicate, checkable-record flags and rated fields, so the
scoring rules are looked up per form instead of inferred from the payload shape.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Protocol, Tuple, Union

from clinicalforge.models.enums import FormType
from clinicalforge.schemas.documents import SearchIndex, SupplementaryScore, ValidationScores
from clinicalforge.utils.text_processing import dedupe, tokenize


IMPACT_POINTS = {"high": 100, "medium": 70, "low": 40}
RELEVANCE_POINTS = {"excellent": 100, "good": 80, "fair": 60, "poor": 40}

# enum-like fields: indexed as tags, not keyword tokens
CATEGORICAL_KEYS = frozenset(
    {
        "primary",
        "severity",
        "clinicalImpact",
        "dataQuality",
        "clinicalRelevance",
        "implementationReadiness",
    }
)
# attribution and bookkeeping fields never enter the index
UNINDEXED_KEYS = frozenset({"physicianName", "institution", "submissionDate", "id", "unit"})

DEFAULT_IMPLEMENTATION_STATUS = "needs-improvement"


def round_half_up(value: float) -> int:
    """Round a non-negative score to the nearest integer, halves going up."""

    return int(value + 0.5)


def percent(part: int, whole: int) -> int:
    if whole <= 0:
        return 0
    return round_half_up(part * 100 / whole)


# === Presence predicates ===

def has_value(value: Any) -> bool:
    """True when the value (or any leaf under it) carries data."""

    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, Mapping):
        return any(has_value(item) for item in value.values())
    if isinstance(value, (list, tuple)):
        return any(has_value(item) for item in value)
    return bool(value)


def record_presence(value: Any) -> bool:
    """A list counts once one of its records carries a value; objects and text likewise."""

    if isinstance(value, list):
        return any(isinstance(item, Mapping) and has_value(item) for item in value)
    return has_value(value)


def shape_presence(value: Any) -> bool:
    """A non-empty list counts; objects need one non-empty scalar."""

    if isinstance(value, list):
        return len(value) > 0
    return has_value(value)


# === Categorical extractors ===

def _disease_name(payload: Mapping[str, Any]) -> str:
    overview = payload.get("diseaseOverview")
    if not isinstance(overview, Mapping):
        return ""
    name = overview.get("diseaseName")
    # legacy documents store the name as a plain string
    if isinstance(name, str):
        return name.strip()
    if isinstance(name, Mapping):
        return str(name.get("clinical") or "").strip()
    return ""


def _comprehensive_categories(payload: Mapping[str, Any]) -> List[str]:
    overview = payload.get("diseaseOverview")
    if not isinstance(overview, Mapping):
        return []
    disease_type = overview.get("diseaseType")
    if not isinstance(disease_type, Mapping):
        return []
    values = [disease_type.get("primary") or ""]
    secondary = disease_type.get("secondary") or []
    if isinstance(secondary, list):
        values.extend(str(item) for item in secondary)
    return [value.strip().lower() for value in values if isinstance(value, str)]


def _comprehensive_regions(payload: Mapping[str, Any]) -> List[str]:
    practices = payload.get("regionalPractices")
    if not isinstance(practices, Mapping):
        return []
    regions = []
    for prefix in ("urban", "rural"):
        if any(
            has_value(value) for key, value in practices.items() if key.startswith(prefix)
        ):
            regions.append(prefix)
    return regions


def _comprehensive_areas(payload: Mapping[str, Any]) -> List[str]:
    stages = payload.get("clinicalStages")
    if not isinstance(stages, list):
        return []
    return [
        str(stage.get("stageName")).strip().lower()
        for stage in stages
        if isinstance(stage, Mapping) and stage.get("stageName")
    ]


def _analytics_areas(payload: Mapping[str, Any]) -> List[str]:
    areas: List[str] = []
    models = payload.get("decisionModels")
    if isinstance(models, list):
        for model in models:
            if isinstance(model, Mapping) and isinstance(model.get("sections"), list):
                areas.extend(str(section).strip().lower() for section in model["sections"])
    return areas


def _no_values(payload: Mapping[str, Any]) -> List[str]:
    return []


def _no_analytics(payload: Mapping[str, Any]) -> Dict[str, Any]:
    return {}


# === Advanced analytics summaries ===

def _records(payload: Mapping[str, Any], section: str) -> List[Mapping[str, Any]]:
    value = payload.get(section)
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, Mapping)]


def _count_true(records: Iterable[Mapping[str, Any]], flag: str) -> int:
    return sum(1 for record in records if record.get(flag) is True)


def _comprehensive_analytics(payload: Mapping[str, Any]) -> Dict[str, Any]:
    medications = _records(payload, "medications")
    comorbidities = _records(payload, "comorbidities")
    red_flags = _records(payload, "redFlags")
    complicating = _count_true(comorbidities, "complicatesTreatment")
    hospital = _count_true(red_flags, "hospitalizationRequired")

    factors = []
    if len(medications) > 1:
        factors.append("Multiple medications")
    if comorbidities:
        factors.append("Comorbidities present")
    if complicating:
        factors.append("Comorbidities complicate treatment")
    if hospital:
        factors.append("Red flags requiring hospitalization")

    return {
        "treatmentComplexity": {
            "score": min(10, len(medications) + 2 * complicating + hospital),
            "factors": factors,
        },
        "medications": {
            "total": len(medications),
            "linesOfTreatment": dedupe(
                str(item.get("lineOfTreatment") or "").strip() for item in medications
            ),
        },
        "comorbidities": {"total": len(comorbidities), "complicatingTreatment": complicating},
        "redFlags": {"total": len(red_flags), "hospitalizationRequired": hospital},
    }


def _analytics_analytics(payload: Mapping[str, Any]) -> Dict[str, Any]:
    models = _records(payload, "decisionModels")
    points = _records(payload, "criticalPoints")
    conflicts = _records(payload, "conflictZones")
    loops = _records(payload, "feedbackLoops")
    sections = _records(payload, "sections")
    assessment = payload.get("overallAssessment")
    readiness = (
        assessment.get("implementationReadiness") if isinstance(assessment, Mapping) else None
    )
    return {
        "decisionModels": {"total": len(models), "sufficient": _count_true(models, "isSufficient")},
        "criticalPoints": {"total": len(points), "sufficient": _count_true(points, "isSufficient")},
        "conflictZones": {
            "total": len(conflicts),
            "unresolved": [
                str(item.get("conflict") or "")
                for item in conflicts
                if item.get("isResolved") is not True
            ],
        },
        "feedbackLoops": {"total": len(loops), "implemented": _count_true(loops, "isImplemented")},
        "sections": {"total": len(sections), "sufficient": _count_true(sections, "isSufficient")},
        "implementationReadiness": readiness or DEFAULT_IMPLEMENTATION_STATUS,
    }


# === Form registry ===

@dataclass(frozen=True)
class FormDefinition:
    """Scoring contract of one form type.

    - ``sections``: ordered keys counted for completeness.
    - ``is_present``: presence predicate applied to each section value.
    - ``checkable``: list section -> boolean flag counted for data quality.
    - ``impact_sections``: list sections whose records carry ``clinicalImpact``.
    - ``sufficiency_rated``: list sections where a sufficient record rates 100, else 0.
    """

    form_type: FormType
    sections: Tuple[str, ...]
    is_present: Callable[[Any], bool]
    checkable: Mapping[str, str]
    list_sections: Tuple[str, ...] = ()
    impact_sections: Tuple[str, ...] = ()
    sufficiency_rated: Tuple[str, ...] = ()
    categories: Callable[[Mapping[str, Any]], List[str]] = _no_values
    regions: Callable[[Mapping[str, Any]], List[str]] = _no_values
    clinical_areas: Callable[[Mapping[str, Any]], List[str]] = _no_values
    analytics: Callable[[Mapping[str, Any]], Dict[str, Any]] = _no_analytics


_COMPREHENSIVE_RECORD_SECTIONS = (
    "diseaseSubtypes",
    "geneticRiskFactors",
    "clinicalStages",
    "symptomsByStage",
    "comorbidities",
    "medications",
    "redFlags",
    "progressionTimeline",
    "lifestyleManagement",
    "labValues",
    "contraindications",
    "monitoringRequirements",
    "misdiagnoses",
)

COMPREHENSIVE_DEFINITION = FormDefinition(
    form_type=FormType.COMPREHENSIVE_PARAMETER_VALIDATION,
    sections=(
        "diseaseOverview",
        "diseaseSubtypes",
        "geneticRiskFactors",
        "clinicalStages",
        "symptomsByStage",
        "comorbidities",
        "medications",
        "redFlags",
        "progressionTimeline",
        "lifestyleManagement",
        "pediatricVsAdult",
        "labValues",
        "contraindications",
        "monitoringRequirements",
        "misdiagnoses",
        "regionalPractices",
        "additionalNotes",
        "physicianConsent",
    ),
    is_present=record_presence,
    checkable={section: "isSufficient" for section in _COMPREHENSIVE_RECORD_SECTIONS},
    list_sections=_COMPREHENSIVE_RECORD_SECTIONS,
    categories=_comprehensive_categories,
    regions=_comprehensive_regions,
    clinical_areas=_comprehensive_areas,
    analytics=_comprehensive_analytics,
)

ANALYTICS_DEFINITION = FormDefinition(
    form_type=FormType.ADVANCED_CLINICAL_ANALYTICS,
    sections=(
        "decisionModels",
        "criticalPoints",
        "conflictZones",
        "feedbackLoops",
        "sections",
        "overallAssessment",
    ),
    is_present=shape_presence,
    checkable={
        "decisionModels": "isSufficient",
        "criticalPoints": "isSufficient",
        "conflictZones": "isResolved",
        "feedbackLoops": "isImplemented",
        "sections": "isSufficient",
    },
    list_sections=("decisionModels", "criticalPoints", "conflictZones", "feedbackLoops", "sections"),
    impact_sections=("decisionModels",),
    sufficiency_rated=("criticalPoints",),
    clinical_areas=_analytics_areas,
    analytics=_analytics_analytics,
)

FORM_DEFINITIONS: Dict[FormType, FormDefinition] = {
    definition.form_type: definition
    for definition in (COMPREHENSIVE_DEFINITION, ANALYTICS_DEFINITION)
}


def get_definition(form_type: Union[FormType, str]) -> FormDefinition:
    return FORM_DEFINITIONS[FormType(form_type)]


# === Scores ===

def _shape_errors(definition: FormDefinition, payload: Mapping[str, Any]) -> List[str]:
    errors = []
    for section in definition.list_sections:
        value = payload.get(section)
        if value is not None and not isinstance(value, list):
            errors.append(f"Section '{section}' must be a list of records")
    assessment = payload.get("overallAssessment")
    if assessment is not None and not isinstance(assessment, Mapping):
        errors.append("Section 'overallAssessment' must be an object")
    return errors


def completeness(definition: FormDefinition, payload: Mapping[str, Any]) -> Tuple[int, List[str]]:
    """Score plus the ordered list of sections that are not present."""

    missing = []
    for section in definition.sections:
        value = payload.get(section)
        if section in definition.list_sections and not isinstance(value, list):
            missing.append(section)
        elif not definition.is_present(value):
            missing.append(section)
    present = len(definition.sections) - len(missing)
    return percent(present, len(definition.sections)), missing


def data_quality(definition: FormDefinition, payload: Mapping[str, Any]) -> Tuple[int, int]:
    """Share of checkable records whose flag is true, and the number checked.

    Records without a boolean flag are not checkable.
    """

    flagged = 0
    checked = 0
    for section, flag in definition.checkable.items():
        for record in _records(payload, section):
            value = record.get(flag)
            if isinstance(value, bool):
                checked += 1
                flagged += int(value)
    return percent(flagged, checked), checked


def clinical_relevance(definition: FormDefinition, payload: Mapping[str, Any]) -> Tuple[int, int]:
    """Average of every rated item, and the number of rated items."""

    points: List[int] = []
    for section in definition.impact_sections:
        for record in _records(payload, section):
            impact = record.get("clinicalImpact")
            if impact in IMPACT_POINTS:
                points.append(IMPACT_POINTS[impact])
    for section in definition.sufficiency_rated:
        for record in _records(payload, section):
            if isinstance(record.get("isSufficient"), bool):
                points.append(100 if record["isSufficient"] else 0)
    assessment = payload.get("overallAssessment")
    if isinstance(assessment, Mapping) and assessment.get("clinicalRelevance") in RELEVANCE_POINTS:
        points.append(RELEVANCE_POINTS[assessment["clinicalRelevance"]])
    if not points:
        return 0, 0
    return round_half_up(sum(points) / len(points)), len(points)


def score_submission(form_type: Union[FormType, str], payload: Mapping[str, Any]) -> ValidationScores:
    """Compute the four validation scores for a payload."""

    definition = get_definition(form_type)
    payload = payload or {}

    completeness_score, missing = completeness(definition, payload)
    quality_score, checked = data_quality(definition, payload)
    relevance_score, rated = clinical_relevance(definition, payload)
    overall = round_half_up((completeness_score + quality_score + relevance_score) / 3)

    warnings: List[str] = []
    if not checked:
        warnings.append("No checkable records; data quality score is 0")
    if not rated:
        warnings.append("No rated items; clinical relevance score is 0")
    for conflict in _records(payload, "conflictZones"):
        if conflict.get("isResolved") is False:
            warnings.append(f"Unresolved conflict: {conflict.get('conflict') or 'unnamed'}")

    return ValidationScores(
        overall_score=overall,
        completeness_score=completeness_score,
        data_quality_score=quality_score,
        clinical_relevance_score=relevance_score,
        missing_sections=missing,
        validation_warnings=warnings,
        validation_errors=_shape_errors(definition, payload),
    )


# === Search index ===

def _walk(value: Any, key: str, keywords: List[str], tags: List[str]) -> None:
    if key in UNINDEXED_KEYS:
        return
    if isinstance(value, Mapping):
        for child_key, child in value.items():
            _walk(child, str(child_key), keywords, tags)
    elif isinstance(value, list):
        for item in value:
            _walk(item, key, keywords, tags)
    elif isinstance(value, str):
        if key in CATEGORICAL_KEYS:
            tags.extend(tokenize(value))
        else:
            keywords.extend(tokenize(value))


def build_search_index(form_type: Union[FormType, str], payload: Mapping[str, Any]) -> SearchIndex:
    """Keyword and tag sets for containment lookups."""

    definition = get_definition(form_type)
    payload = payload or {}
    keywords: List[str] = []
    tags: List[str] = []
    _walk(payload, "", keywords, tags)

    assessment = payload.get("overallAssessment")
    readiness = (
        assessment.get("implementationReadiness") if isinstance(assessment, Mapping) else None
    )
    return SearchIndex(
        disease_name=_disease_name(payload),
        keywords=dedupe(keywords),
        tags=dedupe(tags),
        categories=dedupe(definition.categories(payload)),
        regions=dedupe(definition.regions(payload)),
        clinical_areas=dedupe(definition.clinical_areas(payload)),
        implementation_status=readiness or DEFAULT_IMPLEMENTATION_STATUS,
    )


def extract_tags(form_type: Union[FormType, str], payload: Mapping[str, Any]) -> List[str]:
    """Metadata tags: categorical values plus the disease categories."""

    index = build_search_index(form_type, payload)
    return dedupe(index.categories + index.tags)


def build_advanced_analytics(
    form_type: Union[FormType, str], payload: Mapping[str, Any]
) -> Dict[str, Any]:
    return get_definition(form_type).analytics(payload or {})


def disease_name_of(payload: Mapping[str, Any]) -> str:
    return _disease_name(payload or {})


# === Supplementary scores ===

class SupplementaryScorer(Protocol):
    def score(
        self, form_type: Union[FormType, str], payload: Mapping[str, Any]
    ) -> List[SupplementaryScore]:
        ...


class NullSupplementaryScorer:
    """Emits nothing. The default."""

    def score(
        self, form_type: Union[FormType, str], payload: Mapping[str, Any]
    ) -> List[SupplementaryScore]:
        return []


class PlaceholderSupplementaryScorer:
    """Random stand-in accuracy, consistency and evidence scores.

    These are not computed from the payload. Every value is tagged
    ``placeholder=True`` so consumers can tell them apart from real scores.
    """

    RANGES = {
        "accuracy": (80, 99),
        "consistency": (85, 99),
        "evidenceBased": (80, 99),
    }

    def __init__(self, rng: Optional[random.Random] = None) -> None:
        self._rng = rng or random.Random()

    def score(
        self, form_type: Union[FormType, str], payload: Mapping[str, Any]
    ) -> List[SupplementaryScore]:
        return [
            SupplementaryScore(name=name, value=self._rng.randint(low, high), placeholder=True)
            for name, (low, high) in self.RANGES.items()
        ]
