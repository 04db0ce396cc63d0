"""
MedSafety Condition Classifier
Derives clinical condition keys from ICD-10 codes and maps them to effects to avoid

Architecture: hierarchical prefix matching
- Codes are normalized (uppercase, separators removed)
- Every prefix from full length down to 3 characters is probed against a
  prefix -> condition index built once at construction
- One code may activate several conditions (prefixes are not disjoint)
"""

import logging
import re
from functools import lru_cache
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from medsafety.knowledge.effects_vocabulary import validate_effects

logger = logging.getLogger(__name__)

MIN_PREFIX_LENGTH = 3

_CODE_SEPARATORS = re.compile(r"[\s.\-]")
_PREFIX_PATTERN = re.compile(r"^[A-Z0-9]{3,}$")


def normalize_code(code) -> str:
    """Uppercase a diagnosis code and strip dots, hyphens and whitespace"""
    if code is None:
        return ""
    return _CODE_SEPARATORS.sub("", str(code)).upper()


def normalize_condition_text(text) -> str:
    """Legacy free-text condition -> snake_case lookup form"""
    if not isinstance(text, str):
        return ""
    return re.sub(r"[\s\-']+", "_", text.strip().lower()).strip("_")


# =============================================================================
# Condition Groupers
# =============================================================================

class ConditionGrouper(BaseModel):
    """Condition key with its ICD prefixes and contraindicated effects"""
    model_config = ConfigDict(frozen=True)

    condition_key: str
    code_prefixes: Tuple[str, ...]
    avoid_effects: frozenset = Field(default_factory=frozenset)
    exclude_drugs: Tuple[str, ...] = ()
    reason: str = ""
    note: str = ""

    @field_validator("code_prefixes")
    @classmethod
    def validate_prefixes(cls, v):
        for prefix in v:
            if not _PREFIX_PATTERN.match(prefix):
                raise ValueError(
                    f"Code prefix '{prefix}' must be uppercase, dot-free and at least {MIN_PREFIX_LENGTH} characters"
                )
        return v

    @field_validator("avoid_effects", mode="before")
    @classmethod
    def validate_avoid_effects(cls, v):
        result = validate_effects(list(v or []))
        if not result.valid:
            raise ValueError(f"Unknown avoid-effect tag(s): {', '.join(result.invalid)}")
        return frozenset(result.normalized)

    @field_validator("exclude_drugs")
    @classmethod
    def lowercase_exclusions(cls, v):
        return tuple(d.strip().lower() for d in v)

    def excludes(self, drug_name: str) -> bool:
        """Case-insensitive substring check against the exclusion list"""
        lowered = (drug_name or "").lower()
        return any(excluded in lowered for excluded in self.exclude_drugs)


CONDITION_GROUPERS: Tuple[ConditionGrouper, ...] = (
    ConditionGrouper(
        condition_key="dementia",
        code_prefixes=("F01", "F02", "F03", "G30", "G31"),
        avoid_effects={"anticholinergic", "sedating"},
        reason="Cognitive worsening, confusion, delirium",
        note="Antipsychotics increase mortality in dementia",
    ),
    ConditionGrouper(
        condition_key="falls_history_fracture_risk",
        code_prefixes=("W18", "W19", "R296", "Z8739", "M80", "M81"),
        avoid_effects={"sedating", "hypotensive", "fall_risk"},
        reason="High fall risk and injury risk; sedatives and hypotensive agents increase falls",
        note="Consider fall-risk mitigation and deprescribing where feasible",
    ),
    ConditionGrouper(
        condition_key="heart_failure",
        code_prefixes=("I50", "I110", "I130", "I132"),
        avoid_effects={"fluid_retention", "nephrotoxic"},
        reason="Fluid retention and renal perfusion vulnerability worsen heart failure outcomes",
        note="Avoid agents that worsen edema/volume overload; monitor renal function closely",
    ),
    ConditionGrouper(
        condition_key="syncope",
        code_prefixes=("R55",),
        avoid_effects={"hypotensive", "bradycardic", "qt_prolonging"},
        reason="Syncope risk increases with hypotension, bradycardia, and QT-prolonging agents",
        note="Review BP/HR/QTc-lowering contributors and orthostasis risk",
    ),
    ConditionGrouper(
        condition_key="parkinsons_disease",
        code_prefixes=("G20", "G21"),
        avoid_effects={"dopamine_blocking"},
        exclude_drugs=("quetiapine", "clozapine"),
        reason="Dopamine blockade can worsen parkinsonism and precipitate severe rigidity",
        note="Quetiapine and clozapine are the preferred antipsychotics when one is required",
    ),
    ConditionGrouper(
        condition_key="seizure_disorder",
        code_prefixes=("G40", "G41", "R56"),
        avoid_effects={"seizure_lowering"},
        reason="Lowering seizure threshold increases seizure risk",
        note="Prioritize alternatives with neutral seizure-threshold profile",
    ),
    ConditionGrouper(
        condition_key="gi_bleed_peptic_ulcer_history",
        code_prefixes=("K25", "K26", "K27", "K920", "K921", "K922"),
        avoid_effects={"gi_bleeding", "antiplatelet"},
        reason="History of ulcer/bleeding increases recurrence risk with GI-toxic agents and platelet inhibition",
        note="Consider gastroprotection where indicated and avoid unnecessary combinations",
    ),
    ConditionGrouper(
        condition_key="ckd_stage_4_5",
        code_prefixes=("N184", "N185", "N186"),
        avoid_effects={"nephrotoxic"},
        reason="Advanced CKD increases toxicity risk from nephrotoxic agents and renally-cleared drugs",
        note="Dose adjustments and avoidance decisions should be conservative",
    ),
    ConditionGrouper(
        condition_key="urinary_retention_bph",
        code_prefixes=("R33", "N40"),
        avoid_effects={"anticholinergic"},
        reason="Anticholinergic effects worsen urinary retention and obstructive symptoms",
        note="Prefer non-anticholinergic alternatives when feasible",
    ),
    ConditionGrouper(
        condition_key="chronic_constipation",
        code_prefixes=("K590",),
        avoid_effects={"anticholinergic", "constipating"},
        reason="Constipation worsens with anticholinergic and constipating agents",
        note="Ensure bowel regimen if constipating therapy unavoidable",
    ),
    ConditionGrouper(
        condition_key="narrow_angle_glaucoma",
        code_prefixes=("H402",),
        avoid_effects={"anticholinergic"},
        reason="Anticholinergic effects can precipitate angle closure and vision-threatening events",
        note="Avoid anticholinergics unless ophthalmology-cleared",
    ),
    ConditionGrouper(
        condition_key="qt_prolongation",
        code_prefixes=("I4581", "R9431"),
        avoid_effects={"qt_prolonging"},
        reason="QT prolongation increases torsades risk with QT-prolonging agents",
        note="Monitor ECG and electrolytes; avoid stacking QT-prolongers",
    ),
    ConditionGrouper(
        condition_key="bradycardia",
        code_prefixes=("R001", "I495"),
        avoid_effects={"bradycardic"},
        reason="Bradycardia worsens with bradycardic agents and can contribute to syncope",
        note="Assess conduction disease and medication contributors",
    ),
    ConditionGrouper(
        condition_key="orthostatic_hypotension",
        code_prefixes=("I951",),
        avoid_effects={"hypotensive"},
        reason="Orthostasis worsens with hypotensive agents and increases falls/syncope risk",
        note="Review volume status and BP-lowering burden",
    ),
    ConditionGrouper(
        condition_key="delirium",
        code_prefixes=("F05", "R410"),
        avoid_effects={"anticholinergic", "sedating", "dopamine_blocking"},
        reason="Delirium worsens with anticholinergic burden, sedation, and dopamine blockade",
        note="Prefer non-deliriogenic alternatives; minimize polypharmacy",
    ),
    ConditionGrouper(
        condition_key="copd_respiratory_disease",
        code_prefixes=("J44", "J43", "J45"),
        avoid_effects={"respiratory_depressant", "sedating"},
        reason="Respiratory depression and sedation increase hypoventilation and exacerbation risk",
        note="Avoid stacking respiratory depressants; consider naloxone education when opioids used",
    ),
    ConditionGrouper(
        condition_key="cirrhosis_liver_disease",
        code_prefixes=("K70", "K74", "K76"),
        avoid_effects={"hepatotoxic", "sedating"},
        reason="Hepatic impairment increases toxicity risk and sedation sensitivity; hepatotoxicity risk is higher",
        note="Dose-adjust hepatically cleared meds and avoid hepatotoxic agents when possible",
    ),
    ConditionGrouper(
        condition_key="osteoporosis",
        code_prefixes=("M80", "M81"),
        avoid_effects={"fall_risk", "ppi_effects"},
        reason="Fracture risk increases with falls; long-term PPI-associated effects may worsen bone health",
        note="Minimize fall-risk agents; reassess long-term PPI necessity",
    ),
    ConditionGrouper(
        condition_key="atrial_fibrillation",
        code_prefixes=("I48",),
        avoid_effects=set(),
        reason="Atrial fibrillation impacts anticoagulation decisions and bleed/stroke risk modeling",
        note="Indication for anticoagulation; not an avoid-effects driver",
    ),
    ConditionGrouper(
        condition_key="diabetes_hypoglycemia_risk",
        code_prefixes=("E1164", "E1165"),
        avoid_effects={"hypoglycemia_prolonged"},
        reason="History of hypoglycemia increases risk with long-acting sulfonylureas",
        note="Avoid glyburide/chlorpropamide; prefer shorter-acting agents",
    ),
)


# Legacy free-text condition -> canonical condition key
LEGACY_CONDITION_SYNONYMS: Dict[str, str] = {
    "cognitive_impairment": "dementia",
    "alzheimers": "dementia",
    "falls_history": "falls_history_fracture_risk",
    "fracture_history": "falls_history_fracture_risk",
    "falls": "falls_history_fracture_risk",
    "chf": "heart_failure",
    "hf": "heart_failure",
    "parkinson": "parkinsons_disease",
    "parkinsons": "parkinsons_disease",
    "epilepsy": "seizure_disorder",
    "seizures": "seizure_disorder",
    "gi_bleed_history": "gi_bleed_peptic_ulcer_history",
    "gi_bleed": "gi_bleed_peptic_ulcer_history",
    "peptic_ulcer": "gi_bleed_peptic_ulcer_history",
    "ckd_stage_4": "ckd_stage_4_5",
    "ckd_stage_5": "ckd_stage_4_5",
    "esrd": "ckd_stage_4_5",
    "urinary_retention": "urinary_retention_bph",
    "bph": "urinary_retention_bph",
    "constipation": "chronic_constipation",
    "glaucoma_narrow_angle": "narrow_angle_glaucoma",
    "long_qt": "qt_prolongation",
    "copd": "copd_respiratory_disease",
    "asthma": "copd_respiratory_disease",
    "cirrhosis": "cirrhosis_liver_disease",
    "liver_disease": "cirrhosis_liver_disease",
    "afib": "atrial_fibrillation",
    "hypoglycemia_history": "diabetes_hypoglycemia_risk",
}


class ContraindicationProfile(BaseModel):
    """Derived conditions with their combined avoid-effects"""
    condition_keys: List[str] = Field(default_factory=list)
    avoid_effects: List[str] = Field(default_factory=list)
    by_condition: Dict[str, ConditionGrouper] = Field(default_factory=dict)


# =============================================================================
# Classifier
# =============================================================================

class ConditionClassifier:
    """
    Read-only diagnosis-code -> condition-key classifier

    Grouper tables are validated at construction; duplicate condition keys
    or synonyms pointing at unknown keys raise ValueError.
    """

    def __init__(
        self,
        groupers: Sequence[ConditionGrouper] = CONDITION_GROUPERS,
        synonyms: Mapping[str, str] = LEGACY_CONDITION_SYNONYMS
    ):
        by_key: Dict[str, ConditionGrouper] = {}
        for grouper in groupers:
            if grouper.condition_key in by_key:
                raise ValueError(f"Duplicate condition key: {grouper.condition_key}")
            by_key[grouper.condition_key] = grouper

        index: Dict[str, List[str]] = {}
        for grouper in groupers:
            for prefix in grouper.code_prefixes:
                keys = index.setdefault(normalize_code(prefix), [])
                if grouper.condition_key not in keys:
                    keys.append(grouper.condition_key)

        lookup: Dict[str, str] = {key: key for key in by_key}
        for synonym, target in synonyms.items():
            if target not in by_key:
                raise ValueError(f"Condition synonym '{synonym}' points at unknown key '{target}'")
            lookup[normalize_condition_text(synonym)] = target

        self._groupers = MappingProxyType(by_key)
        self._prefix_index = MappingProxyType({p: tuple(keys) for p, keys in index.items()})
        self._legacy_lookup = MappingProxyType(lookup)

        logger.info(
            f"Loaded condition classifier with {len(self._groupers)} conditions "
            f"and {len(self._prefix_index)} code prefixes"
        )

    @property
    def prefix_index(self) -> Mapping[str, Tuple[str, ...]]:
        return self._prefix_index

    @property
    def condition_keys(self) -> List[str]:
        return list(self._groupers)

    def grouper(self, condition_key: str) -> Optional[ConditionGrouper]:
        return self._groupers.get(condition_key)

    def derive_conditions(self, codes: Optional[Iterable]) -> List[str]:
        """
        Condition keys for a set of diagnosis codes

        Probes every prefix of each normalized code from longest down to
        three characters and unions the matches, in first-seen order.
        """
        found: Dict[str, None] = {}
        for raw_code in codes or []:
            code = normalize_code(raw_code)
            for length in range(len(code), MIN_PREFIX_LENGTH - 1, -1):
                for key in self._prefix_index.get(code[:length], ()):
                    found.setdefault(key, None)
        return list(found)

    def normalize_legacy_condition(self, text) -> Optional[str]:
        """Canonical key for a legacy free-text condition, or None"""
        key = self._legacy_lookup.get(normalize_condition_text(text))
        if key is None and text:
            logger.debug(f"Unmapped legacy condition: {text!r}")
        return key

    def resolve_conditions(self, codes: Optional[Iterable] = None, legacy_conditions: Optional[Iterable] = None) -> List[str]:
        """Code-derived conditions followed by mapped legacy conditions, deduplicated"""
        resolved: Dict[str, None] = dict.fromkeys(self.derive_conditions(codes))
        for text in legacy_conditions or []:
            key = self.normalize_legacy_condition(text)
            if key is not None:
                resolved.setdefault(key, None)
        return list(resolved)

    def contraindicated_effects(
        self,
        codes: Optional[Iterable] = None,
        legacy_conditions: Optional[Iterable] = None
    ) -> ContraindicationProfile:
        """Derived condition keys, union of their avoid-effects, and per-condition detail"""
        keys = self.resolve_conditions(codes, legacy_conditions)
        effects: Dict[str, None] = {}
        by_condition: Dict[str, ConditionGrouper] = {}
        for key in keys:
            grouper = self._groupers[key]
            by_condition[key] = grouper
            for effect in sorted(grouper.avoid_effects):
                effects.setdefault(effect, None)
        return ContraindicationProfile(
            condition_keys=keys,
            avoid_effects=list(effects),
            by_condition=by_condition
        )


@lru_cache(maxsize=1)
def default_classifier() -> ConditionClassifier:
    """Process-wide classifier built from the bundled groupers"""
    return ConditionClassifier()
