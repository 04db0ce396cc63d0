"""
MedSafety Effect Vocabulary
Closed set of canonical pharmacological effect tags

All tags are lowercase_snake_case. Legacy spellings (QT_prolonging,
GI_bleeding, PPI_effects, SIADH, CNS_effects) are accepted at the input
boundary and rewritten to their canonical tag.
"""

import logging
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

from medsafety.schemas import EffectValidation

logger = logging.getLogger(__name__)

AliasCallback = Callable[[str, str], None]


# =============================================================================
# Vocabulary
# =============================================================================

EFFECTS_VOCABULARY: Dict[str, Dict[str, Any]] = {
    # Cardiovascular
    "hypotensive": {
        "description": "Lowers blood pressure",
        "examples": ["ACE inhibitors", "ARBs", "diuretics", "alpha blockers"],
    },
    "hypertensive": {
        "description": "Raises blood pressure",
        "examples": ["venlafaxine", "decongestants"],
    },
    "rebound_hypertension": {
        "description": "Blood pressure rebound on abrupt withdrawal",
        "examples": ["clonidine"],
    },
    "reflex_tachycardia": {
        "description": "Reflex tachycardia from rapid vasodilation",
        "examples": ["immediate-release nifedipine"],
    },
    "bradycardic": {
        "description": "Slows heart rate",
        "examples": ["beta blockers", "diltiazem", "verapamil", "digoxin"],
    },
    "qt_prolonging": {
        "description": "Prolongs QT interval, torsades risk",
        "examples": ["amiodarone", "sotalol", "fluoroquinolones", "antipsychotics"],
        "aliases": ["QT_prolonging"],
    },
    "arrhythmogenic": {
        "description": "Can provoke arrhythmias",
        "examples": ["digoxin", "theophylline"],
    },
    "fluid_retention": {
        "description": "Causes edema/volume overload",
        "examples": ["NSAIDs", "thiazolidinediones", "some CCBs"],
    },

    # CNS / neurological
    "sedating": {
        "description": "Causes sedation, drowsiness",
        "examples": ["benzodiazepines", "opioids", "antihistamines", "TCAs"],
    },
    "anticholinergic": {
        "description": "Anticholinergic burden - confusion, urinary retention, constipation",
        "examples": ["diphenhydramine", "oxybutynin", "TCAs"],
    },
    "dopamine_blocking": {
        "description": "Blocks dopamine receptors - EPS, worsens Parkinson's",
        "examples": ["antipsychotics", "metoclopramide", "prochlorperazine"],
    },
    "serotonergic": {
        "description": "Increases serotonin activity - serotonin syndrome risk",
        "examples": ["SSRIs", "SNRIs", "tramadol", "trazodone", "MAOIs"],
    },
    "seizure_lowering": {
        "description": "Lowers seizure threshold",
        "examples": ["tramadol", "bupropion", "fluoroquinolones", "antipsychotics"],
    },
    "fall_risk": {
        "description": "Increases fall risk via multiple mechanisms",
        "examples": ["sedatives", "antihypertensives", "anticholinergics"],
    },
    "respiratory_depressant": {
        "description": "Depresses respiratory drive",
        "examples": ["opioids", "benzodiazepines", "barbiturates"],
    },
    "muscle_relaxant_effect": {
        "description": "Skeletal muscle relaxation",
        "examples": ["diazepam"],
    },
    "neurotoxic": {
        "description": "Neurotoxic parent drug or metabolite",
        "examples": ["meperidine (normeperidine)"],
    },
    "cns_effects": {
        "description": "Non-specific CNS adverse effects (confusion, dizziness)",
        "examples": ["indomethacin", "fluoroquinolones"],
        "aliases": ["CNS_effects"],
    },
    "cognitive_effects": {
        "description": "Cognitive slowing, word-finding difficulty",
        "examples": ["topiramate"],
    },

    # Opioid-specific
    "opioid": {
        "description": "Opioid agonist activity",
        "examples": ["morphine", "oxycodone", "hydrocodone", "fentanyl"],
    },
    "constipating": {
        "description": "Causes constipation",
        "examples": ["opioids", "anticholinergics", "calcium channel blockers"],
    },

    # Renal / metabolic
    "nephrotoxic": {
        "description": "Causes kidney injury or worsens CKD",
        "examples": ["NSAIDs", "aminoglycosides", "contrast dye", "lithium"],
    },
    "hyperkalemia_risk": {
        "description": "Raises potassium levels",
        "examples": ["ACE inhibitors", "ARBs", "potassium-sparing diuretics", "TMP-SMX"],
    },
    "hypokalemia_risk": {
        "description": "Lowers potassium levels",
        "examples": ["loop diuretics", "thiazides", "corticosteroids"],
    },
    "lactic_acidosis_risk": {
        "description": "Risk of lactic acidosis",
        "examples": ["metformin (in renal impairment)"],
    },
    "hypoglycemia": {
        "description": "Risk of hypoglycemia (short-acting)",
        "examples": ["glipizide", "glimepiride", "insulin"],
    },
    "hypoglycemia_prolonged": {
        "description": "Risk of prolonged/severe hypoglycemia",
        "examples": ["glyburide", "chlorpropamide"],
    },
    "thyroid_effects": {
        "description": "Thyroid dysfunction",
        "examples": ["amiodarone", "lithium"],
    },
    "narrow_therapeutic_index": {
        "description": "Small margin between therapeutic and toxic levels",
        "examples": ["digoxin", "phenytoin", "lithium", "warfarin"],
    },
    "drug_interactions": {
        "description": "Clinically significant enzyme-mediated interactions",
        "examples": ["cimetidine"],
    },

    # GI / hepatic
    "gi_bleeding": {
        "description": "Increases GI bleeding risk",
        "examples": ["NSAIDs", "aspirin", "corticosteroids"],
        "aliases": ["GI_bleeding"],
    },
    "hepatotoxic": {
        "description": "Causes liver injury",
        "examples": ["acetaminophen (high dose)", "statins", "amiodarone"],
    },
    "ppi_effects": {
        "description": "Long-term PPI effects - fracture risk, hypomagnesemia, C.diff",
        "examples": ["omeprazole", "pantoprazole", "esomeprazole"],
        "aliases": ["PPI_effects"],
    },
    "siadh": {
        "description": "Causes SIADH / hyponatremia",
        "examples": ["SSRIs", "carbamazepine", "chlorpropamide"],
        "aliases": ["SIADH"],
    },

    # Pulmonary / musculoskeletal
    "pulmonary_toxicity": {
        "description": "Pulmonary fibrosis or pneumonitis",
        "examples": ["amiodarone", "nitrofurantoin"],
    },
    "tendon_rupture": {
        "description": "Tendinopathy and tendon rupture",
        "examples": ["fluoroquinolones"],
    },

    # Hematologic
    "antiplatelet": {
        "description": "Inhibits platelet function",
        "examples": ["aspirin", "clopidogrel", "NSAIDs"],
    },
    "anticoagulant": {
        "description": "Anticoagulant effect",
        "examples": ["warfarin", "apixaban", "rivaroxaban", "heparin"],
    },
    "bleeding_risk": {
        "description": "General bleeding risk",
        "examples": ["anticoagulants", "antiplatelets", "SSRIs"],
    },
}

ALLOWED_EFFECTS = frozenset(EFFECTS_VOCABULARY)


def _build_alias_map() -> Dict[str, str]:
    aliases: Dict[str, str] = {}
    for canonical, definition in EFFECTS_VOCABULARY.items():
        aliases[canonical] = canonical
        for alias in definition.get("aliases", []):
            aliases[alias] = canonical
            aliases[alias.lower()] = canonical
    return aliases


ALIAS_TO_CANONICAL = MappingProxyType(_build_alias_map())


# =============================================================================
# Normalization & Validation
# =============================================================================

def normalize_effect(tag: Any, on_alias: Optional[AliasCallback] = None) -> str:
    """
    Normalize an effect tag to its canonical form

    Never raises. Unresolvable input falls back to its lowercase form,
    which will then fail is_valid_effect(). Non-string input gives "".

    Args:
        tag: Raw effect tag
        on_alias: Called with (alias, canonical) when a legacy alias is rewritten

    Returns:
        Canonical tag or lowercase fallback
    """
    if not isinstance(tag, str):
        return ""
    trimmed = tag.strip()
    canonical = ALIAS_TO_CANONICAL.get(trimmed)
    if canonical is None:
        return trimmed.lower()
    if trimmed != canonical and on_alias is not None:
        on_alias(trimmed, canonical)
    return canonical


def is_valid_effect(tag: Any) -> bool:
    """Check that a tag (canonical or alias) belongs to the vocabulary"""
    return normalize_effect(tag) in ALLOWED_EFFECTS


def validate_effects(tags: Optional[Iterable[Any]], on_alias: Optional[AliasCallback] = None) -> EffectValidation:
    """
    Validate and normalize a list of effect tags

    Non-string and empty entries are skipped. Invalid entries are reported
    in their original spelling; normalized tags are deduplicated in first-seen order.
    """
    normalized: List[str] = []
    seen: Set[str] = set()
    invalid: List[str] = []

    for tag in tags or []:
        if not isinstance(tag, str) or not tag.strip():
            continue
        norm = normalize_effect(tag, on_alias)
        if norm in ALLOWED_EFFECTS:
            if norm not in seen:
                seen.add(norm)
                normalized.append(norm)
        else:
            invalid.append(tag)

    return EffectValidation(valid=not invalid, invalid=invalid, normalized=normalized)


def normalize_all(tags: Optional[Iterable[Any]], on_alias: Optional[AliasCallback] = None) -> Tuple[frozenset, List[str]]:
    """
    Normalize tags to a canonical set, dropping invalid entries

    Returns:
        (canonical tag set, dropped invalid entries)
    """
    result = validate_effects(tags, on_alias)
    return frozenset(result.normalized), result.invalid


def describe_effect(tag: str) -> Optional[str]:
    """Description of a tag, or None if it is not in the vocabulary"""
    definition = EFFECTS_VOCABULARY.get(normalize_effect(tag))
    return definition["description"] if definition else None


class AliasUsageLogger:
    """
    Deprecation side channel for legacy effect aliases

    Logs one warning per alias spelling for the lifetime of the instance.
    Pass an instance as ``on_alias`` to the normalization functions.
    """

    def __init__(self, log: Optional[logging.Logger] = None):
        self._log = log or logger
        self._seen: Set[str] = set()

    def __call__(self, alias: str, canonical: str) -> None:
        if alias in self._seen:
            return
        self._seen.add(alias)
        self._log.warning(f"Deprecated effect alias '{alias}' - use '{canonical}' instead")

    @property
    def seen(self) -> frozenset:
        return frozenset(self._seen)
