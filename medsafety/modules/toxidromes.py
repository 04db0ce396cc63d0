"""
MedSafety Toxidrome Identification
Suggests toxidromes from a free-form symptom list
"""

import logging
from typing import Any, Dict, Iterable, List

from medsafety.schemas import ToxidromeMatch

logger = logging.getLogger(__name__)

MIN_MATCHED_SYMPTOMS = 2

TOXIDROMES: Dict[str, Dict[str, Any]] = {
    "anticholinergic": {
        "symptoms": [
            "tachycardia", "dry_skin", "mydriasis", "urinary_retention",
            "altered_mental_status", "hyperthermia", "decreased_bowel_sounds"
        ],
        "mnemonic": "Hot as a hare, dry as a bone, red as a beet, blind as a bat, mad as a hatter",
    },
    "cholinergic": {
        "symptoms": [
            "bradycardia", "salivation", "lacrimation", "urination",
            "defecation", "miosis", "bronchospasm"
        ],
        "mnemonic": "SLUDGE + killer Bs (bradycardia, bronchospasm)",
    },
    "serotonin": {
        "symptoms": [
            "hyperthermia", "clonus", "hyperreflexia", "agitation",
            "diaphoresis", "tremor", "mydriasis"
        ],
        "criteria": "Hunter criteria",
    },
    "opioid": {
        "symptoms": ["miosis", "respiratory_depression", "decreased_loc", "hypotension", "bradycardia"],
        "antidote": "naloxone",
    },
    "sympathomimetic": {
        "symptoms": ["tachycardia", "hypertension", "hyperthermia", "mydriasis", "diaphoresis", "agitation"],
    },
    "sedative_hypnotic": {
        "symptoms": ["decreased_loc", "respiratory_depression", "hypotension", "hypothermia", "ataxia"],
        "antidote": "flumazenil (benzos only)",
    },
}


def normalize_symptom(symptom) -> str:
    """'Decreased LOC' -> 'decreased_loc'"""
    if not isinstance(symptom, str):
        return ""
    return "_".join(symptom.strip().lower().replace("-", " ").split())


def identify_toxidromes(symptoms: Iterable[str]) -> List[ToxidromeMatch]:
    """
    Score every toxidrome by the fraction of its symptoms present

    A toxidrome is reported once at least two of its symptoms match.
    Results are sorted by descending confidence; ties keep table order.
    """
    present = {normalize_symptom(s) for s in symptoms or []}
    present.discard("")
    if not present:
        return []

    matches = []
    for name, definition in TOXIDROMES.items():
        matched = [s for s in definition["symptoms"] if s in present]
        if len(matched) < MIN_MATCHED_SYMPTOMS:
            continue
        matches.append(ToxidromeMatch(
            toxidrome=name,
            confidence=len(matched) / len(definition["symptoms"]),
            matched_symptoms=matched,
            mnemonic=definition.get("mnemonic"),
            criteria=definition.get("criteria"),
            antidote=definition.get("antidote")
        ))

    matches.sort(key=lambda m: m.confidence, reverse=True)
    if matches:
        logger.debug(f"Identified {len(matches)} candidate toxidromes from {len(present)} symptoms")
    return matches
