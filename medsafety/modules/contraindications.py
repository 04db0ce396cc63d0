"""
MedSafety Contraindication Matcher
Cross-references drug effects against condition avoid-lists and scores cumulative burden
"""

import logging
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence

from medsafety.schemas import BurdenScore, ContraindicationRecord
from medsafety.knowledge.conditions import ConditionClassifier
from medsafety.knowledge.drug_knowledge import DrugKnowledgeBase, UnknownDrugCallback

logger = logging.getLogger(__name__)

# Effects that count a medication as CNS-active
CNS_ACTIVE_EFFECTS = frozenset({"opioid", "sedating", "fall_risk"})

ACB_ALERT_THRESHOLD = 3
CNS_ALERT_THRESHOLD = 3


def match_contraindications(
    drugs: Sequence[str],
    condition_keys: Sequence[str],
    knowledge: DrugKnowledgeBase,
    classifier: ConditionClassifier,
    source: str = "",
    on_unknown: Optional[UnknownDrugCallback] = None
) -> List[ContraindicationRecord]:
    """
    Find drugs whose effects are on a derived condition's avoid-list

    Each drug's effect set is computed once. A drug may produce one record
    per triggering condition; records are ordered by drug, then condition.

    Args:
        drugs: Medication names as supplied
        condition_keys: Canonical condition keys (unknown keys are ignored)
        knowledge: Drug knowledge base
        classifier: Condition classifier holding the avoid-lists
        source: Module name reported with unresolved drug names
        on_unknown: Unknown-drug notification callback

    Returns:
        Interaction records
    """
    groupers = [g for g in (classifier.grouper(key) for key in condition_keys) if g is not None]
    if not groupers:
        return []

    records: List[ContraindicationRecord] = []
    for drug in drugs:
        effects = knowledge.effects_of(drug, source, on_unknown)
        if not effects:
            continue
        for grouper in groupers:
            harmful = effects & grouper.avoid_effects
            if not harmful or grouper.excludes(drug):
                continue
            records.append(ContraindicationRecord(
                drug=drug,
                condition_key=grouper.condition_key,
                harmful_effects=sorted(harmful),
                reason=grouper.reason
            ))

    logger.debug(f"Matched {len(records)} drug-condition interactions")
    return records


def anticholinergic_burden(drugs: Iterable[str], knowledge: DrugKnowledgeBase) -> BurdenScore:
    """Sum of ACB scores over all medications, with the per-drug contributions"""
    by_drug: Dict[str, int] = {}
    total = 0
    for drug in drugs:
        score = knowledge.acb_of(drug)
        total += score
        by_drug[drug] = by_drug.get(drug, 0) + score
    return BurdenScore(total=total, by_drug=by_drug)


def is_cns_active(effects: FrozenSet[str]) -> bool:
    return bool(effects & CNS_ACTIVE_EFFECTS)


def cns_active_drugs(
    drugs: Iterable[str],
    knowledge: DrugKnowledgeBase,
    source: str = "",
    on_unknown: Optional[UnknownDrugCallback] = None
) -> List[str]:
    """Medication names whose effects include opioid, sedating or fall_risk"""
    return [
        drug for drug in drugs
        if is_cns_active(knowledge.effects_of(drug, source, on_unknown))
    ]
