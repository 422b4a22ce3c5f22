"""Form schemas, one model tree per form type.

Field names are snake_case in Python and camelCase on the wire and in stored
payloads (``diseaseOverview``, ``redFlags``, ``isSufficient``), matching the
document shape the dashboards read.
"""

from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic.alias_generators import to_camel

from clinicalforge.errors import ValidationFailed
from clinicalforge.models.enums import (
    ClinicalImpact,
    DiseaseKind,
    FormType,
    ImplementationReadiness,
    QualityRating,
)


class FormModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# === Comprehensive parameter validation ===

class DiseaseName(FormModel):
    clinical: str = Field(min_length=1)
    common: Optional[str] = None
    icd10_code: Optional[str] = None
    icd11_code: Optional[str] = None


class DiseaseType(FormModel):
    primary: DiseaseKind
    secondary: List[str] = Field(default_factory=list)
    severity: Optional[str] = None


class AgeOfOnset(FormModel):
    min: float = Field(ge=0, le=150)
    max: float = Field(ge=0, le=150)
    unit: str = "years"
    notes: Optional[str] = None

    @model_validator(mode="after")
    def _check_range(self) -> "AgeOfOnset":
        if self.min > self.max:
            raise ValueError("min must not exceed max")
        return self


class GenderPrevalence(FormModel):
    male: float = Field(default=0, ge=0, le=100)
    female: float = Field(default=0, ge=0, le=100)
    equal: Optional[bool] = None
    context_dependent: Optional[bool] = None
    notes: Optional[str] = None


class Demographics(FormModel):
    typical_age_of_onset: Optional[AgeOfOnset] = None
    gender_prevalence: Optional[GenderPrevalence] = None


class DiseaseOverview(FormModel):
    disease_name: DiseaseName
    disease_type: Optional[DiseaseType] = None
    demographics: Optional[Demographics] = None
    rural_urban_differences: Optional[str] = None


class ReviewedRecord(FormModel):
    """Repeatable record a reviewer can mark as sufficient."""

    notes: Optional[str] = None
    is_sufficient: Optional[bool] = None


class DiseaseSubtype(ReviewedRecord):
    name: str = ""
    diagnostic_criteria: str = ""
    distinct_treatment: bool = False


class GeneticRiskFactor(ReviewedRecord):
    risk_factor: str = ""
    inheritance_pattern: str = ""
    influence_on_onset: str = ""


class ClinicalStage(ReviewedRecord):
    stage_name: str = ""
    diagnostic_criteria: str = ""
    duration: str = ""
    transition_triggers: str = ""


class SymptomsByStage(ReviewedRecord):
    stage: str = ""
    major_symptoms: str = ""
    early_symptoms: str = ""
    symptom_prevalence: str = ""


class Comorbidity(ReviewedRecord):
    comorbidity: str = ""
    frequency: str = ""
    onset_stage: str = ""
    complicates_treatment: bool = False


class Medication(ReviewedRecord):
    stage: str = ""
    line_of_treatment: str = ""
    drug_class: str = ""
    standard_dosage: str = ""
    trigger_to_start: str = ""


class RedFlag(ReviewedRecord):
    symptom: str = ""
    stage: str = ""
    hospitalization_required: bool = False
    critical_action: str = ""


class ProgressionTimeline(ReviewedRecord):
    stage: str = ""
    average_duration: str = ""
    triggers_for_progression: str = ""


class LifestyleManagement(ReviewedRecord):
    intervention_type: str = ""
    description: str = ""
    recommended_stages: str = ""


class LabValue(ReviewedRecord):
    stage: str = ""
    lab_name: str = ""
    expected_range: str = ""
    critical_values: str = ""
    units: str = ""


class Contraindication(ReviewedRecord):
    drug_procedure: str = ""
    contraindicated_in: str = ""


class MonitoringRequirement(ReviewedRecord):
    stage: str = ""
    follow_up_frequency: str = ""
    key_metrics: str = ""


class Misdiagnosis(ReviewedRecord):
    often_misdiagnosed_as: str = ""
    key_differentiators: str = ""


class PediatricVsAdult(FormModel):
    pediatric_presentation: str = ""
    adult_presentation: str = ""


class RegionalPractices(FormModel):
    urban_diagnosis_methods: str = ""
    rural_diagnosis_methods: str = ""
    urban_medication_use: str = ""
    rural_medication_use: str = ""
    urban_patient_behavior: str = ""
    rural_patient_behavior: str = ""


class PhysicianConsent(FormModel):
    physician_name: Optional[str] = None
    institution: Optional[str] = None
    consent_for_acknowledgment: bool = False
    consent_for_research: bool = False
    submission_date: Optional[str] = None


class OverallAssessment(FormModel):
    clinical_relevance: QualityRating
    implementation_readiness: ImplementationReadiness = ImplementationReadiness.NEEDS_IMPROVEMENT
    additional_sections: Optional[str] = None
    overall_feedback: Optional[str] = None


class ComprehensiveParameterValidationForm(FormModel):
    """The 18-section disease parameter form."""

    disease_overview: Optional[DiseaseOverview] = None
    disease_subtypes: List[DiseaseSubtype] = Field(default_factory=list)
    genetic_risk_factors: List[GeneticRiskFactor] = Field(default_factory=list)
    clinical_stages: List[ClinicalStage] = Field(default_factory=list)
    symptoms_by_stage: List[SymptomsByStage] = Field(default_factory=list)
    comorbidities: List[Comorbidity] = Field(default_factory=list)
    medications: List[Medication] = Field(default_factory=list)
    red_flags: List[RedFlag] = Field(default_factory=list)
    progression_timeline: List[ProgressionTimeline] = Field(default_factory=list)
    lifestyle_management: List[LifestyleManagement] = Field(default_factory=list)
    pediatric_vs_adult: Optional[PediatricVsAdult] = None
    lab_values: List[LabValue] = Field(default_factory=list)
    contraindications: List[Contraindication] = Field(default_factory=list)
    monitoring_requirements: List[MonitoringRequirement] = Field(default_factory=list)
    misdiagnoses: List[Misdiagnosis] = Field(default_factory=list)
    regional_practices: Optional[RegionalPractices] = None
    additional_notes: Optional[str] = None
    physician_consent: Optional[PhysicianConsent] = None
    # optional reviewer assessment, rated like the analytics form
    overall_assessment: Optional[OverallAssessment] = None


# === Advanced clinical analytics ===

class DecisionModel(FormModel):
    model: str = Field(min_length=1)
    sections: List[str] = Field(default_factory=list)
    dependencies: str = ""
    clinical_impact: Optional[ClinicalImpact] = None
    is_sufficient: bool = False
    suggestions: Optional[str] = None


class CriticalPoint(FormModel):
    section: str = Field(min_length=1)
    reason: str = ""
    use_case: str = ""
    dependencies: str = ""
    is_sufficient: bool = False
    suggestions: Optional[str] = None


class ConflictZone(FormModel):
    sections: str = ""
    conflict: str = Field(min_length=1)
    resolution: str = ""
    is_resolved: bool = False
    suggestions: Optional[str] = None


class FeedbackLoop(FormModel):
    loop: str = Field(min_length=1)
    purpose: str = ""
    is_implemented: bool = False
    suggestions: Optional[str] = None


class SectionValidation(FormModel):
    id: str = ""
    name: str = Field(min_length=1)
    is_sufficient: bool = False
    suggestions: Optional[str] = None
    clinical_impact: Optional[ClinicalImpact] = None
    data_quality: Optional[QualityRating] = None


class AdvancedClinicalAnalyticsForm(FormModel):
    """Decision-model and section sufficiency review form."""

    decision_models: List[DecisionModel] = Field(default_factory=list)
    critical_points: List[CriticalPoint] = Field(default_factory=list)
    conflict_zones: List[ConflictZone] = Field(default_factory=list)
    feedback_loops: List[FeedbackLoop] = Field(default_factory=list)
    sections: List[SectionValidation] = Field(default_factory=list)
    overall_assessment: Optional[OverallAssessment] = None


FORM_MODELS: Dict[FormType, Type[FormModel]] = {
    FormType.COMPREHENSIVE_PARAMETER_VALIDATION: ComprehensiveParameterValidationForm,
    FormType.ADVANCED_CLINICAL_ANALYTICS: AdvancedClinicalAnalyticsForm,
}


def _format_errors(exc: ValidationError) -> List[Dict[str, Any]]:
    errors: List[Dict[str, Any]] = []
    for item in exc.errors():
        errors.append(
            {
                "field": ".".join(str(part) for part in item.get("loc", ())),
                "message": item.get("msg", "invalid value"),
                "type": item.get("type", "value_error"),
            }
        )
    return errors


def validate_form_payload(form_type: FormType, raw: Dict[str, Any]) -> Dict[str, Any]:
    """Validate raw form state and return the normalised camelCase payload.

    Raises ``ValidationFailed`` with per-field errors; nothing reaches storage then.
    """

    model_cls = FORM_MODELS[form_type]
    try:
        form = model_cls.model_validate(raw or {})
    except ValidationError as exc:
        raise ValidationFailed(_format_errors(exc)) from exc
    return form.model_dump(mode="json", by_alias=True, exclude_none=True)
