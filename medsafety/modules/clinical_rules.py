"""
MedSafety Clinical Rules
Medication safety rule modules: renal dosing, triple whammy, opioid safety,
antithrombotic combinations, serotonin syndrome and Beers criteria
"""

import logging
import math
import re
from datetime import date
from typing import Any, Dict, FrozenSet, Iterable, List, NamedTuple, Optional, Sequence, Tuple
from enum import Enum

from medsafety.alert_codes import AlertCode
from medsafety.schemas import Alert, AlertSeverity, Medication, PatientState, RuleResult
from medsafety.knowledge.conditions import ConditionClassifier
from medsafety.knowledge.drug_knowledge import DrugKnowledgeBase, UnknownDrugCallback
from medsafety.knowledge.drug_tables import PIM_DATABASE
from medsafety.modules.contraindications import (
    ACB_ALERT_THRESHOLD, CNS_ALERT_THRESHOLD, anticholinergic_burden,
    cns_active_drugs, match_contraindications
)
from medsafety.modules.toxidromes import identify_toxidromes

logger = logging.getLogger(__name__)


# =============================================================================
# Clinical Rule Base Classes
# =============================================================================

class RuleCategory(str, Enum):
    """Categories of medication safety rules"""
    RENAL_DOSING = "renal_dosing"
    DRUG_COMBINATION = "drug_combination"
    OPIOID_SAFETY = "opioid_safety"
    ANTITHROMBOTIC = "antithrombotic"
    SEROTONIN_SYNDROME = "serotonin_syndrome"
    GERIATRIC_PRESCRIBING = "geriatric_prescribing"


class RuleContext:
    """
    Read-only collaborators shared by every rule in one evaluation

    Args:
        knowledge: Drug knowledge base
        classifier: Condition classifier
        today: Evaluation date used for washout and post-procedure intervals
        on_unknown: Called with (drug_name, module) for unresolved drug names
    """

    def __init__(
        self,
        knowledge: DrugKnowledgeBase,
        classifier: ConditionClassifier,
        today: date,
        on_unknown: Optional[UnknownDrugCallback] = None
    ):
        self.knowledge = knowledge
        self.classifier = classifier
        self.today = today
        self.on_unknown = on_unknown

    def effects_of(self, drug_name: str, source: str = "") -> FrozenSet[str]:
        return self.knowledge.effects_of(drug_name, source, self.on_unknown)

    def acb_of(self, drug_name: str) -> int:
        return self.knowledge.acb_of(drug_name)


class ClinicalRule:
    """Base class for medication safety rule modules"""

    alert_codes: FrozenSet[AlertCode] = frozenset()
    eligibility = "Always applies"

    def __init__(self, rule_id: str, rule_name: str, category: RuleCategory, source: str):
        self.rule_id = rule_id
        self.rule_name = rule_name
        self.category = category
        self.source = source

    def applies(self, patient: PatientState) -> bool:
        """Static eligibility predicate, evaluated before the rule runs"""
        return True

    def evaluate(self, patient: PatientState, context: RuleContext) -> RuleResult:
        """
        Evaluate rule against patient state

        Args:
            patient: Validated patient state
            context: Shared knowledge collaborators

        Returns:
            Alerts plus module metadata
        """
        raise NotImplementedError("Subclasses must implement evaluate()")

    def skipped(self) -> RuleResult:
        return RuleResult.skipped(self.eligibility)

    def _create_alert(
        self,
        code: AlertCode,
        severity: AlertSeverity,
        message: str,
        reason: Optional[str] = None,
        action: Optional[str] = None,
        drug: Optional[str] = None,
        drugs_involved: Optional[List[str]] = None,
        **extras: Any
    ) -> Alert:
        """Helper method to create an alert stamped with this rule's source"""
        if code not in self.alert_codes:
            raise ValueError(f"{self.rule_id} emitted undeclared alert code {code.value}")
        return Alert(
            alert_code=code,
            severity=severity,
            message=message,
            reason=reason,
            action=action,
            drug=drug,
            drugs_involved=drugs_involved,
            source=self.source,
            **extras
        )


# =============================================================================
# Shared Helpers
# =============================================================================

_NUMBER = re.compile(r"(\d+(?:\.\d+)?)")


def _lower(text: Optional[str]) -> str:
    return (text or "").lower()


def matches_drug_list(med_name: Optional[str], drug_list: Iterable[str]) -> bool:
    """Case-insensitive substring match of a medication name against a name list"""
    name = _lower(med_name)
    return any(drug in name for drug in drug_list)


def first_number(text: Optional[str]) -> Optional[float]:
    match = _NUMBER.search(text or "")
    return float(match.group(1)) if match else None


def medication_dose(med: Medication) -> Tuple[Optional[float], str]:
    """Numeric dose and the text it came from; falls back to the name when the dose has no number"""
    dose_text = _lower(med.dose)
    value = first_number(dose_text)
    if value is None:
        dose_text = _lower(med.name)
        value = first_number(dose_text)
    return value, dose_text


def with_class(meds: Sequence[Medication], classes: Iterable[str]) -> List[Medication]:
    wanted = set(classes)
    return [m for m in meds if m.drug_class in wanted]


def names(meds: Iterable[Medication]) -> List[str]:
    return [m.name for m in meds]


def ckd_stage(egfr: float) -> str:
    """KDIGO GFR category for an eGFR value"""
    if egfr >= 90:
        return "1"
    if egfr >= 60:
        return "2"
    if egfr >= 45:
        return "3a"
    if egfr >= 30:
        return "3b"
    if egfr >= 15:
        return "4"
    return "5"


NSAID_CLASSES = ("NSAID", "COX2_inhibitor")


# =============================================================================
# Renal Dosing Rules
# =============================================================================

class RenalThreshold(NamedTuple):
    egfr_max: float
    action: str
    severity: AlertSeverity
    code: AlertCode
    message: str


# Thresholds per drug, most restrictive first
RENAL_DRUG_RULES: Dict[str, Tuple[RenalThreshold, ...]] = {
    "metformin": (
        RenalThreshold(30, "CONTRAINDICATED", AlertSeverity.CRITICAL, AlertCode.RENAL_METFORMIN_CONTRAINDICATED,
                       "Contraindicated below eGFR 30 (lactic acidosis risk)"),
        RenalThreshold(45, "REDUCE", AlertSeverity.HIGH, AlertCode.RENAL_METFORMIN_REDUCE,
                       "Reduce to max 1000mg/day; hold if acute illness"),
        RenalThreshold(60, "CAUTION", AlertSeverity.MODERATE, AlertCode.RENAL_DOSE_CAUTION,
                       "Monitor eGFR every 3-6 months; may need dose reduction"),
    ),
    "gabapentin": (
        RenalThreshold(15, "REDUCE", AlertSeverity.HIGH, AlertCode.RENAL_GABAPENTINOID_ADJUST,
                       "Max 300mg daily; give post-dialysis dose on HD days"),
        RenalThreshold(30, "REDUCE", AlertSeverity.HIGH, AlertCode.RENAL_GABAPENTINOID_ADJUST,
                       "Max 300mg BID"),
        RenalThreshold(60, "REDUCE", AlertSeverity.MODERATE, AlertCode.RENAL_GABAPENTINOID_ADJUST,
                       "Max 600mg BID"),
    ),
    "pregabalin": (
        RenalThreshold(15, "REDUCE", AlertSeverity.HIGH, AlertCode.RENAL_GABAPENTINOID_ADJUST,
                       "Max 75mg daily"),
        RenalThreshold(30, "REDUCE", AlertSeverity.HIGH, AlertCode.RENAL_GABAPENTINOID_ADJUST,
                       "Max 150mg daily in 1-2 doses"),
        RenalThreshold(60, "REDUCE", AlertSeverity.MODERATE, AlertCode.RENAL_GABAPENTINOID_ADJUST,
                       "Max 300mg daily in 2-3 doses"),
    ),
    "apixaban": (
        RenalThreshold(15, "CAUTION", AlertSeverity.HIGH, AlertCode.RENAL_DOAC_ADJUST,
                       "Limited data <15; consider 2.5mg BID if 2+ of: age>=80, weight<=60kg, Cr>=1.5"),
        RenalThreshold(25, "REDUCE", AlertSeverity.HIGH, AlertCode.RENAL_DOAC_ADJUST,
                       "Use 2.5mg BID if also age>=80 or weight<=60kg"),
    ),
    "rivaroxaban": (
        RenalThreshold(15, "AVOID", AlertSeverity.CRITICAL, AlertCode.RENAL_DOAC_CONTRAINDICATED,
                       "Avoid rivaroxaban if eGFR <15"),
        RenalThreshold(50, "REDUCE", AlertSeverity.HIGH, AlertCode.RENAL_DOAC_ADJUST,
                       "Use 15mg daily (not 20mg) for AFib"),
    ),
    "dabigatran": (
        RenalThreshold(30, "AVOID", AlertSeverity.CRITICAL, AlertCode.RENAL_DOAC_CONTRAINDICATED,
                       "Contraindicated if eGFR <30"),
        RenalThreshold(50, "REDUCE", AlertSeverity.HIGH, AlertCode.RENAL_DOAC_ADJUST,
                       "Use 75mg BID (not 150mg BID)"),
    ),
    "edoxaban": (
        RenalThreshold(15, "AVOID", AlertSeverity.CRITICAL, AlertCode.RENAL_DOAC_CONTRAINDICATED,
                       "Avoid if eGFR <15"),
        RenalThreshold(50, "REDUCE", AlertSeverity.HIGH, AlertCode.RENAL_DOAC_ADJUST,
                       "Use 30mg daily (not 60mg)"),
    ),
    "ibuprofen": (
        RenalThreshold(30, "AVOID", AlertSeverity.HIGH, AlertCode.RENAL_NSAID_AVOID,
                       "Avoid NSAIDs in CKD 4-5; use acetaminophen"),
        RenalThreshold(60, "CAUTION", AlertSeverity.MODERATE, AlertCode.RENAL_DOSE_CAUTION,
                       "Limit NSAID use; monitor kidney function"),
    ),
    "naproxen": (
        RenalThreshold(30, "AVOID", AlertSeverity.HIGH, AlertCode.RENAL_NSAID_AVOID,
                       "Avoid NSAIDs in CKD 4-5"),
        RenalThreshold(60, "CAUTION", AlertSeverity.MODERATE, AlertCode.RENAL_DOSE_CAUTION,
                       "Limit use; prefer acetaminophen"),
    ),
    "celecoxib": (
        RenalThreshold(30, "AVOID", AlertSeverity.HIGH, AlertCode.RENAL_NSAID_AVOID,
                       "Avoid in severe CKD"),
    ),
    "glyburide": (
        RenalThreshold(60, "AVOID", AlertSeverity.HIGH, AlertCode.RENAL_GLYBURIDE_AVOID,
                       "Avoid glyburide in CKD; active metabolites accumulate causing prolonged "
                       "hypoglycemia. Use glipizide instead."),
    ),
    "nitrofurantoin": (
        RenalThreshold(30, "AVOID", AlertSeverity.HIGH, AlertCode.RENAL_NITROFURANTOIN_AVOID,
                       "Ineffective and risk of pulmonary toxicity if eGFR <30"),
    ),
}

RENAL_ELIGIBILITY_EGFR = 90
NSAID_CATCH_ALL_EGFR = 30


class RenalDosingRule(ClinicalRule):
    """
    Rule: Renally cleared drugs need dose adjustment or avoidance as eGFR falls
    Evidence: KDIGO 2024, FDA labeling
    """

    alert_codes = frozenset({
        AlertCode.RENAL_METFORMIN_CONTRAINDICATED, AlertCode.RENAL_METFORMIN_REDUCE,
        AlertCode.RENAL_DOSE_CAUTION, AlertCode.RENAL_GABAPENTINOID_ADJUST,
        AlertCode.RENAL_DOAC_ADJUST, AlertCode.RENAL_DOAC_CONTRAINDICATED,
        AlertCode.RENAL_NSAID_AVOID, AlertCode.RENAL_GLYBURIDE_AVOID,
        AlertCode.RENAL_NITROFURANTOIN_AVOID,
    })
    eligibility = f"Requires eGFR below {RENAL_ELIGIBILITY_EGFR}"

    def __init__(self):
        super().__init__(
            rule_id="RENAL_001",
            rule_name="Renal Dosing",
            category=RuleCategory.RENAL_DOSING,
            source="RENAL"
        )

    def applies(self, patient: PatientState) -> bool:
        return patient.egfr is not None and patient.egfr < RENAL_ELIGIBILITY_EGFR

    def evaluate(self, patient: PatientState, context: RuleContext) -> RuleResult:
        if not self.applies(patient):
            return self.skipped()

        egfr = patient.egfr
        alerts: List[Alert] = []
        flagged: List[str] = []

        for med in patient.current_medications:
            name_lower = _lower(med.name)

            for drug, thresholds in RENAL_DRUG_RULES.items():
                if drug not in name_lower:
                    continue
                # First (most restrictive) threshold only
                for threshold in thresholds:
                    if egfr < threshold.egfr_max:
                        flagged.append(med.name)
                        stop = threshold.action in ("CONTRAINDICATED", "AVOID")
                        alerts.append(self._create_alert(
                            threshold.code,
                            threshold.severity,
                            message=f"{threshold.action}: {med.name} at eGFR {egfr:g}",
                            reason=threshold.message,
                            action=f"STOP {med.name}" if stop else "Adjust dose per renal guidelines",
                            drug=med.name,
                            egfr_threshold=threshold.egfr_max,
                            current_egfr=egfr
                        ))
                        break
                break

            # Class-based NSAID catch-all
            if med.drug_class in NSAID_CLASSES and egfr < NSAID_CATCH_ALL_EGFR:
                if not any(a.drug == med.name for a in alerts):
                    alerts.append(self._create_alert(
                        AlertCode.RENAL_NSAID_AVOID,
                        AlertSeverity.HIGH,
                        message=f"Avoid {med.name} (NSAID) with eGFR <{NSAID_CATCH_ALL_EGFR}",
                        reason="NSAIDs cause AKI and accelerate CKD progression",
                        action="Discontinue; use acetaminophen for pain",
                        drug=med.name
                    ))

        return RuleResult(alerts=alerts, metadata={
            "applies": True,
            "checked": True,
            "egfr": egfr,
            "ckd_stage": ckd_stage(egfr),
            "drugs_flagged": len(flagged),
        })


# =============================================================================
# Triple Whammy / RAAS Rules
# =============================================================================

RAAS_CLASSES = ("ACE_inhibitor", "ARB", "ARNI")
DIURETIC_CLASSES = ("thiazide", "loop_diuretic", "K_sparing_diuretic")

NSAID_CKD_EGFR = 60


def sick_day_protocol(hold_meds: Sequence[Medication], nsaid_meds: Sequence[Medication]) -> str:
    """Patient-facing sick-day instructions for held RAAS blockers and diuretics"""
    lines = ["TEMPORARILY HOLD during illness with vomiting, diarrhea, or poor oral intake:"]
    lines.extend(f"  - {m.name} ({m.drug_class})" for m in hold_meds)

    if nsaid_meds:
        lines.append("AVOID these NSAIDs:")
        lines.extend(f"  - {m.name}" for m in nsaid_meds)

    lines.extend([
        "",
        "RESUME when:",
        "  - Eating and drinking normally for 24-48 hours",
        "  - No more vomiting or diarrhea",
        "",
        "SEEK CARE if:",
        "  - Unable to keep fluids down >24 hours",
        "  - Symptoms worsen or don't improve in 48 hours",
        "  - Signs of dehydration (dizziness, dark urine, confusion)",
    ])
    return "\n".join(lines)


class TripleWhammyRule(ClinicalRule):
    """
    Rule: RAAS blocker + diuretic + NSAID sharply raises acute kidney injury risk
    Evidence: KDIGO AKI guidelines, TGA safety alert, ONTARGET
    """

    alert_codes = frozenset({
        AlertCode.TRIPLE_WHAMMY_PRESENT, AlertCode.TRIPLE_WHAMMY_NSAID_CKD,
        AlertCode.TRIPLE_WHAMMY_VOLUME_DEPLETION, AlertCode.DUAL_RAAS_ACE_ARB,
        AlertCode.DUAL_RAAS_ARNI_OVERLAP,
    })

    def __init__(self):
        super().__init__(
            rule_id="RAAS_001",
            rule_name="Triple Whammy",
            category=RuleCategory.DRUG_COMBINATION,
            source="TRIPLE_WHAMMY"
        )

    def evaluate(self, patient: PatientState, context: RuleContext) -> RuleResult:
        meds = patient.current_medications
        illness = patient.active_illness
        egfr = patient.egfr
        alerts: List[Alert] = []

        raas_meds = with_class(meds, RAAS_CLASSES)
        diuretic_meds = with_class(meds, DIURETIC_CLASSES)
        nsaid_meds = with_class(meds, NSAID_CLASSES)

        has_triple = bool(raas_meds and diuretic_meds and nsaid_meds)
        if has_triple:
            alerts.append(self._create_alert(
                AlertCode.TRIPLE_WHAMMY_PRESENT,
                AlertSeverity.HIGH,
                message="TRIPLE WHAMMY - High AKI Risk",
                reason="ACE/ARB + Diuretic + NSAID combination dramatically increases acute kidney injury risk",
                action="STOP NSAID immediately; issue sick-day protocol",
                drugs_involved=names(raas_meds) + names(diuretic_meds) + names(nsaid_meds),
                monitoring="Check creatinine within 1 week if NSAID cannot be stopped",
                guideline="Australian TGA Alert; KDIGO AKI Guidelines"
            ))

        if nsaid_meds and egfr is not None and egfr < NSAID_CKD_EGFR:
            alerts.append(self._create_alert(
                AlertCode.TRIPLE_WHAMMY_NSAID_CKD,
                AlertSeverity.HIGH,
                message="NSAID use in CKD - Avoid",
                reason=f"eGFR {egfr:g}: NSAIDs accelerate CKD progression and cause AKI",
                action="Discontinue NSAID; use acetaminophen",
                drugs_involved=names(nsaid_meds),
                alternative="Topical NSAIDs if needed (lower systemic absorption)"
            ))

        sick_day = illness.has_volume_risk and bool(raas_meds or diuretic_meds)
        if sick_day:
            hold_meds = raas_meds + diuretic_meds
            severity = (
                AlertSeverity.CRITICAL if illness.volume_depleted or illness.sepsis
                else AlertSeverity.HIGH
            )
            alerts.append(self._create_alert(
                AlertCode.TRIPLE_WHAMMY_VOLUME_DEPLETION,
                severity,
                message="SICK DAY PROTOCOL - Hold nephrotoxic meds",
                reason="Volume depletion + RAAS blockers/diuretics = high AKI risk",
                action="HOLD: " + ", ".join(names(hold_meds)),
                drugs_involved=names(hold_meds),
                sick_day_rules=sick_day_protocol(hold_meds, nsaid_meds),
                monitoring="Resume when eating/drinking normally; check creatinine if prolonged illness"
            ))

        ace_count = len(with_class(raas_meds, ["ACE_inhibitor"]))
        arb_count = len(with_class(raas_meds, ["ARB"]))
        arni_count = len(with_class(raas_meds, ["ARNI"]))

        if ace_count and arb_count:
            alerts.append(self._create_alert(
                AlertCode.DUAL_RAAS_ACE_ARB,
                AlertSeverity.HIGH,
                message="Dual RAAS Blockade: ACE + ARB",
                reason="ONTARGET trial showed increased AKI, hyperkalemia without CV benefit",
                action="Stop one agent; use single RAAS blocker only",
                drugs_involved=names(raas_meds),
                guideline="ONTARGET Trial; AHA/ACC Guidelines"
            ))

        if arni_count and (ace_count or arb_count):
            alerts.append(self._create_alert(
                AlertCode.DUAL_RAAS_ARNI_OVERLAP,
                AlertSeverity.CRITICAL,
                message="ARNI + ACE/ARB - CONTRAINDICATED",
                reason=(
                    "Sacubitril/valsartan (ARNI) already contains ARB; adding ACE/ARB causes "
                    "severe hypotension and angioedema"
                ),
                action="STOP ACE/ARB immediately; 36-hour washout required before starting ARNI",
                drugs_involved=names(raas_meds),
                guideline="Entresto FDA labeling"
            ))

        return RuleResult(alerts=alerts, metadata={
            "applies": True,
            "has_triple_whammy": has_triple,
            "has_dual_raas": bool(ace_count and arb_count) or bool(arni_count and (ace_count or arb_count)),
            "sick_day_triggered": sick_day,
            "raas_count": len(raas_meds),
            "diuretic_count": len(diuretic_meds),
            "nsaid_count": len(nsaid_meds),
        })


# =============================================================================
# Opioid Safety Rules
# =============================================================================

# Oral morphine milligram equivalents per mg
MME_FACTORS: Dict[str, float] = {
    "morphine": 1,
    "hydrocodone": 1,
    "oxycodone": 1.5,
    "hydromorphone": 4,
    "oxymorphone": 3,
    "codeine": 0.15,
    "tramadol": 0.1,
    "tapentadol": 0.4,
    "buprenorphine": 0,
}

# mcg/hr (patch) or mg to daily MME
FENTANYL_FACTOR = 2.4

# (max daily mg, factor); conversion rises with total methadone dose
METHADONE_TIERS: Tuple[Tuple[float, float], ...] = ((20, 4), (40, 8), (60, 10), (math.inf, 12))

FREQUENCY_MULTIPLIERS: Tuple[Tuple[Tuple[str, ...], int], ...] = (
    (("bid", "q12", "twice"), 2),
    (("tid", "q8", "three"), 3),
    (("qid", "q6", "four"), 4),
    (("q4",), 6),
)

OPIOID_CLASSES = ("opioid", "opioid_long_acting")

OPIOID_NAMES = (
    "morphine", "hydrocodone", "oxycodone", "hydromorphone", "oxymorphone",
    "fentanyl", "codeine", "tramadol", "tapentadol", "methadone", "buprenorphine", "meperidine",
    "norco", "vicodin", "percocet", "dilaudid", "opana", "duragesic", "nucynta", "ultram",
)

BENZO_NAMES = (
    "alprazolam", "lorazepam", "diazepam", "clonazepam", "temazepam",
    "triazolam", "midazolam", "chlordiazepoxide", "oxazepam", "clorazepate", "flurazepam",
    "xanax", "ativan", "valium", "klonopin", "restoril", "halcion",
)

Z_DRUG_NAMES = ("zolpidem", "eszopiclone", "zaleplon", "ambien", "lunesta", "sonata")

GABAPENTINOID_NAMES = ("gabapentin", "pregabalin", "neurontin", "lyrica")

MUSCLE_RELAXANT_NAMES = (
    "cyclobenzaprine", "carisoprodol", "methocarbamol", "tizanidine",
    "baclofen", "orphenadrine", "metaxalone", "flexeril", "soma", "robaxin", "zanaflex",
)

ER_OPIOID_PATTERN = re.compile(r"\b(er|xr|sr|cr|contin|duragesic|patch)\b")

HIGH_MME = 90
MODERATE_MME = 50


def frequency_multiplier(dose_text: str) -> int:
    """Doses per day implied by a free-text dose; 1 when no frequency is found"""
    text = dose_text.lower()
    for tokens, multiplier in FREQUENCY_MULTIPLIERS:
        if any(token in text for token in tokens):
            return multiplier
    return 1


def calculate_mme(med: Medication) -> float:
    """
    Daily morphine milligram equivalents for one opioid

    Returns 0 when no numeric dose is available or the opioid has no
    conversion factor.
    """
    name = _lower(med.name)
    dose, dose_text = medication_dose(med)
    if dose is None:
        return 0.0
    freq = frequency_multiplier(dose_text)

    if "fentanyl" in name or "duragesic" in name:
        if "patch" in name or "duragesic" in name:
            return dose * FENTANYL_FACTOR
        return dose * FENTANYL_FACTOR * freq

    if "methadone" in name:
        daily = dose * freq
        for ceiling, factor in METHADONE_TIERS:
            if daily <= ceiling:
                return daily * factor

    # Longest name first so hydromorphone/oxymorphone are not read as morphine
    for drug in sorted(MME_FACTORS, key=len, reverse=True):
        if drug in name:
            return dose * MME_FACTORS[drug] * freq

    return 0.0


class OpioidSafetyRule(ClinicalRule):
    """
    Rule: Opioids combined with CNS depressants or at high MME need naloxone and review
    Evidence: CDC Opioid Guidelines 2022, FDA Black Box Warnings
    """

    alert_codes = frozenset({
        AlertCode.OPIOID_BENZO_COMBINATION, AlertCode.OPIOID_CNS_POLYPHARMACY,
        AlertCode.OPIOID_HIGH_MME, AlertCode.OPIOID_NALOXONE_NEEDED,
        AlertCode.OPIOID_ER_NAIVE,
    })

    def __init__(self):
        super().__init__(
            rule_id="OPIOID_001",
            rule_name="Opioid Safety",
            category=RuleCategory.OPIOID_SAFETY,
            source="OPIOID"
        )

    def evaluate(self, patient: PatientState, context: RuleContext) -> RuleResult:
        meds = patient.current_medications
        alerts: List[Alert] = []

        def detect(drug_class: str, name_list: Sequence[str]) -> List[Medication]:
            return [m for m in meds if m.drug_class == drug_class or matches_drug_list(m.name, name_list)]

        opioid_meds = [
            m for m in meds
            if m.drug_class in OPIOID_CLASSES or matches_drug_list(m.name, OPIOID_NAMES)
        ]
        if not opioid_meds:
            return RuleResult(alerts=[], metadata={"applies": True, "has_opioid": False})

        benzo_meds = detect("benzodiazepine", BENZO_NAMES)
        cns_meds = (
            benzo_meds
            + detect("Z_drug", Z_DRUG_NAMES)
            + detect("gabapentinoid", GABAPENTINOID_NAMES)
            + detect("muscle_relaxant", MUSCLE_RELAXANT_NAMES)
        )

        total_mme = sum(calculate_mme(m) for m in opioid_meds)

        if benzo_meds:
            alerts.append(self._create_alert(
                AlertCode.OPIOID_BENZO_COMBINATION,
                AlertSeverity.CRITICAL,
                message="OPIOID + BENZODIAZEPINE - FDA Black Box Warning",
                reason="Concurrent use causes profound sedation, respiratory depression, coma, and death",
                action="Avoid combination if possible; if necessary, use lowest doses for shortest duration",
                drugs_involved=names(opioid_meds) + names(benzo_meds),
                monitoring="Monitor closely for sedation and respiratory depression",
                naloxone="PRESCRIBE NALOXONE",
                guideline="FDA Black Box Warning 2016"
            ))

        total_cns = len(opioid_meds) + len(cns_meds)
        if total_cns >= 3:
            alerts.append(self._create_alert(
                AlertCode.OPIOID_CNS_POLYPHARMACY,
                AlertSeverity.HIGH,
                message=f"CNS Polypharmacy: {total_cns} CNS-active medications",
                reason="Multiple CNS depressants dramatically increase overdose risk",
                action="Minimize CNS depressant count; taper unnecessary agents",
                drugs_involved=names(opioid_meds) + names(cns_meds),
                naloxone="PRESCRIBE NALOXONE"
            ))

        if total_mme >= HIGH_MME:
            alerts.append(self._create_alert(
                AlertCode.OPIOID_HIGH_MME,
                AlertSeverity.HIGH,
                message=f"High opioid dose: {total_mme:.0f} MME/day (>={HIGH_MME} threshold)",
                reason=f">={HIGH_MME} MME/day associated with significantly increased overdose risk",
                action="Evaluate for tapering; maximize non-opioid therapies",
                naloxone="PRESCRIBE NALOXONE",
                guideline="CDC Opioid Guidelines 2022"
            ))
        elif total_mme >= MODERATE_MME:
            alerts.append(self._create_alert(
                AlertCode.OPIOID_HIGH_MME,
                AlertSeverity.MODERATE,
                message=f"Moderate opioid dose: {total_mme:.0f} MME/day (>={MODERATE_MME} threshold)",
                reason=f">={MODERATE_MME} MME/day increases overdose risk; reassess benefits vs risks",
                action="Consider dose reduction or rotation if efficacy declining",
                naloxone="Consider prescribing naloxone"
            ))

        naloxone_criteria = []
        if total_mme >= MODERATE_MME:
            naloxone_criteria.append(f"MME >={MODERATE_MME}")
        if benzo_meds:
            naloxone_criteria.append("Concurrent benzodiazepine")
        if len(cns_meds) >= 2:
            naloxone_criteria.append("Multiple CNS depressants")
        if patient.respiratory_disease:
            naloxone_criteria.append("Respiratory disease (COPD/OSA)")
        if patient.egfr is not None and patient.egfr < 30:
            naloxone_criteria.append("CKD stage 4-5")
        if patient.patient_age is not None and patient.patient_age >= 65:
            naloxone_criteria.append("Age >=65")

        if naloxone_criteria:
            alerts.append(self._create_alert(
                AlertCode.OPIOID_NALOXONE_NEEDED,
                AlertSeverity.HIGH,
                message="Naloxone co-prescribing indicated",
                reason=f"Criteria met: {'; '.join(naloxone_criteria)}",
                action="Prescribe naloxone (Narcan) 4mg nasal spray; educate patient/family on use",
                patient_education=[
                    "Keep naloxone accessible",
                    "Teach family/caregiver how to administer",
                    "Signs of overdose: slow/stopped breathing, unresponsive, blue lips",
                    "Call 911 after administering naloxone",
                ]
            ))

        er_opioids = [
            m for m in opioid_meds
            if m.drug_class == "opioid_long_acting" or ER_OPIOID_PATTERN.search(_lower(m.name))
        ]
        if er_opioids and patient.opioid_naive:
            alerts.append(self._create_alert(
                AlertCode.OPIOID_ER_NAIVE,
                AlertSeverity.HIGH,
                message="Extended-release opioid in opioid-naive patient",
                reason="ER/LA opioids contraindicated in opioid-naive patients due to overdose risk",
                action="Use immediate-release opioid first to establish tolerance",
                drugs_involved=names(er_opioids),
                guideline="FDA REMS; CDC Guidelines"
            ))

        return RuleResult(alerts=alerts, metadata={
            "applies": True,
            "has_opioid": True,
            "total_mme": round(total_mme, 1),
            "opioid_count": len(opioid_meds),
            "benzo_count": len(benzo_meds),
            "cns_depressant_count": total_cns,
            "naloxone_indicated": bool(naloxone_criteria),
            "naloxone_criteria": naloxone_criteria,
        })


# =============================================================================
# Antithrombotic Rules
# =============================================================================

ANTICOAGULANT_CLASSES = ("anticoagulant_DOAC", "anticoagulant_warfarin")
ANTIPLATELET_CLASSES = ("antiplatelet_aspirin", "antiplatelet_P2Y12", "antiplatelet_other")

TRIPLE_THERAPY_PCI_WINDOW_DAYS = 30
BLEED_RISK_FACTOR_THRESHOLD = 3


class AntithromboticRule(ClinicalRule):
    """
    Rule: Overlapping antithrombotics and mis-dosed DOACs drive major bleeding
    Evidence: AHA/ACC AFib guidelines, AUGUSTUS, RE-DUAL PCI
    """

    alert_codes = frozenset({
        AlertCode.ANTITHROMB_DUAL_ANTICOAG, AlertCode.ANTITHROMB_TRIPLE_THERAPY,
        AlertCode.ANTITHROMB_DOAC_DOSE_CHECK, AlertCode.ANTITHROMB_HIGH_BLEED_RISK,
        AlertCode.ANTITHROMB_NO_INDICATION,
    })

    def __init__(self):
        super().__init__(
            rule_id="ANTITHROMB_001",
            rule_name="Antithrombotic Combination",
            category=RuleCategory.ANTITHROMBOTIC,
            source="ANTITHROMB"
        )

    def evaluate(self, patient: PatientState, context: RuleContext) -> RuleResult:
        meds = patient.current_medications
        age = patient.patient_age
        egfr = patient.egfr
        weight = patient.weight_kg
        alerts: List[Alert] = []

        anticoag_meds = with_class(meds, ANTICOAGULANT_CLASSES)
        doac_meds = with_class(anticoag_meds, ["anticoagulant_DOAC"])
        warfarin_meds = with_class(anticoag_meds, ["anticoagulant_warfarin"])
        antiplatelet_meds = with_class(meds, ANTIPLATELET_CLASSES)
        aspirin_meds = with_class(antiplatelet_meds, ["antiplatelet_aspirin"])
        p2y12_meds = with_class(antiplatelet_meds, ["antiplatelet_P2Y12"])
        on_chronic_nsaid = bool(with_class(meds, NSAID_CLASSES))

        on_anticoag = bool(anticoag_meds)
        on_aspirin = bool(aspirin_meds)
        on_p2y12 = bool(p2y12_meds)

        if len(anticoag_meds) >= 2:
            alerts.append(self._create_alert(
                AlertCode.ANTITHROMB_DUAL_ANTICOAG,
                AlertSeverity.CRITICAL,
                message="DUAL ANTICOAGULATION - Never indicated",
                reason="Multiple anticoagulants have no added benefit and dramatically increase bleeding",
                action="STOP one anticoagulant immediately; choose single agent based on indication",
                drugs_involved=names(anticoag_meds)
            ))

        if on_anticoag and on_aspirin and on_p2y12:
            days_since_pci = (
                (context.today - patient.recent_pci_date).days
                if patient.recent_pci_date else None
            )
            severity = AlertSeverity.CRITICAL
            action = "Minimize duration; transition to dual therapy ASAP"
            if (
                days_since_pci is not None
                and days_since_pci < TRIPLE_THERAPY_PCI_WINDOW_DAYS
                and patient.stent_type == "DES"
            ):
                severity = AlertSeverity.HIGH
                action = (
                    "Triple therapy appropriate post-DES but limit to 1-4 weeks; "
                    "then drop aspirin (AUGUSTUS trial)"
                )
            alerts.append(self._create_alert(
                AlertCode.ANTITHROMB_TRIPLE_THERAPY,
                severity,
                message="TRIPLE ANTITHROMBOTIC THERAPY",
                reason="Anticoagulant + aspirin + P2Y12 inhibitor = very high bleeding risk",
                action=action,
                drugs_involved=names(anticoag_meds) + names(aspirin_meds) + names(p2y12_meds),
                guideline="AUGUSTUS, RE-DUAL PCI trials: drop aspirin first, continue DOAC + P2Y12",
                ppi_required=True
            ))

        for doac in doac_meds:
            alerts.extend(self._check_doac_dose(doac, age, weight, egfr))

        if on_anticoag or on_aspirin:
            factors = []
            if age is not None and age >= 65:
                factors.append("Age >=65")
            if patient.prior_gi_bleed:
                factors.append("Prior GI bleed")
            if patient.liver_disease:
                factors.append("Liver disease")
            if egfr is not None and egfr < 30:
                factors.append("CKD stage 4-5")
            if patient.hb_low:
                factors.append("Anemia")
            if on_chronic_nsaid:
                factors.append("Chronic NSAID use")
            if on_anticoag and on_aspirin:
                factors.append("Anticoag + aspirin")

            if len(factors) >= BLEED_RISK_FACTOR_THRESHOLD:
                alerts.append(self._create_alert(
                    AlertCode.ANTITHROMB_HIGH_BLEED_RISK,
                    AlertSeverity.HIGH,
                    message=f"High bleeding risk: {len(factors)} risk factors",
                    reason="; ".join(factors),
                    action="Ensure PPI co-prescribed; minimize antithrombotic intensity; close monitoring",
                    ppi_required=True
                ))

        has_afib = (
            patient.atrial_fibrillation
            or "atrial_fibrillation" in context.classifier.derive_conditions(patient.icd_codes)
        )
        if on_anticoag and not has_afib and not patient.recent_pci_date:
            alerts.append(self._create_alert(
                AlertCode.ANTITHROMB_NO_INDICATION,
                AlertSeverity.MODERATE,
                message="Anticoagulant prescribed - verify indication",
                reason="No AFib or recent PCI documented; ensure indication is current",
                action="Confirm indication (AFib, VTE, mechanical valve, etc); document clearly",
                drugs_involved=names(anticoag_meds)
            ))

        return RuleResult(alerts=alerts, metadata={
            "applies": True,
            "on_anticoagulant": on_anticoag,
            "on_doac": bool(doac_meds),
            "on_warfarin": bool(warfarin_meds),
            "on_dual_antiplatelet": on_aspirin and on_p2y12,
            "on_triple_therapy": on_anticoag and on_aspirin and on_p2y12,
            "anticoag_count": len(anticoag_meds),
            "antiplatelet_count": len(antiplatelet_meds),
        })

    def _check_doac_dose(
        self,
        doac: Medication,
        age: Optional[float],
        weight: Optional[float],
        egfr: Optional[float]
    ) -> List[Alert]:
        name = _lower(doac.name)
        dose, _ = medication_dose(doac)
        alerts = []

        if "apixaban" in name or "eliquis" in name:
            # eGFR <25 stands in for creatinine >=1.5
            criteria = sum([
                age is not None and age >= 80,
                weight is not None and weight <= 60,
                egfr is not None and egfr < 25,
            ])
            if criteria >= 2 and dose is not None and dose >= 5:
                alerts.append(self._create_alert(
                    AlertCode.ANTITHROMB_DOAC_DOSE_CHECK,
                    AlertSeverity.HIGH,
                    message="Apixaban dose reduction may be needed",
                    reason=(
                        f"Patient has {criteria} of 3 dose-reduction criteria "
                        "(age>=80, weight<=60kg, Cr>=1.5)"
                    ),
                    action="Consider reducing to 2.5mg BID per FDA labeling",
                    drug=doac.name
                ))

        if "rivaroxaban" in name or "xarelto" in name:
            if egfr is not None and egfr <= 50 and dose is not None and dose >= 20:
                alerts.append(self._create_alert(
                    AlertCode.ANTITHROMB_DOAC_DOSE_CHECK,
                    AlertSeverity.HIGH,
                    message="Rivaroxaban dose reduction needed for renal function",
                    reason=f"eGFR {egfr:g}: use 15mg daily (not 20mg) for AFib",
                    action="Reduce to rivaroxaban 15mg daily with evening meal",
                    drug=doac.name
                ))

        if "dabigatran" in name or "pradaxa" in name:
            if egfr is not None and egfr < 30:
                alerts.append(self._create_alert(
                    AlertCode.ANTITHROMB_DOAC_DOSE_CHECK,
                    AlertSeverity.CRITICAL,
                    message="Dabigatran contraindicated at this eGFR",
                    reason=f"eGFR {egfr:g} <30: dabigatran contraindicated",
                    action="Switch to apixaban (renally safer) or warfarin",
                    drug=doac.name
                ))

        return alerts


# =============================================================================
# Serotonin Syndrome Rules
# =============================================================================

SEROTONIN_HIGH_CLASSES = ("MAOI", "SSRI", "SNRI", "methylene_blue", "linezolid")
SEROTONIN_MODERATE_CLASSES = (
    "TCA", "tramadol", "fentanyl", "meperidine", "tapentadol",
    "trazodone", "mirtazapine", "buspirone", "lithium", "St_Johns_wort",
)
SEROTONIN_LOWER_CLASSES = (
    "triptan", "ondansetron", "metoclopramide", "cyclobenzaprine",
    "dextromethorphan", "carbamazepine", "valproate",
)

HIGH_RISK_NAMES = ("linezolid", "methylene blue")
MODERATE_RISK_NAMES = ("tramadol", "trazodone", "mirtazapine")
LOWER_RISK_NAMES = ("triptan", "ondansetron")

# Washout in days after stopping the listed drug
MAOI_WASHOUT: Dict[str, int] = {
    "phenelzine": 14,
    "tranylcypromine": 14,
    "isocarboxazid": 14,
    "selegiline": 14,
    "rasagiline": 14,
    "linezolid": 14,
    "methylene blue": 14,
    "fluoxetine": 35,
}
DEFAULT_WASHOUT_DAYS = 14


def is_maoi(med: Medication) -> bool:
    return med.drug_class == "MAOI" or matches_drug_list(med.name, HIGH_RISK_NAMES)


def required_washout(drug_name: Optional[str]) -> int:
    name = _lower(drug_name)
    for drug, days in MAOI_WASHOUT.items():
        if drug in name:
            return days
    return DEFAULT_WASHOUT_DAYS


class SerotoninSyndromeRule(ClinicalRule):
    """
    Rule: Stacked serotonergic drugs, especially with MAOIs, risk serotonin syndrome
    Evidence: Hunter criteria, FDA drug safety communications
    """

    alert_codes = frozenset({
        AlertCode.SEROTONIN_MAOI_COMBINATION, AlertCode.SEROTONIN_WASHOUT_VIOLATION,
        AlertCode.SEROTONIN_HIGH_RISK, AlertCode.SEROTONIN_MODERATE_RISK,
    })

    def __init__(self):
        super().__init__(
            rule_id="SEROTONIN_001",
            rule_name="Serotonin Syndrome",
            category=RuleCategory.SEROTONIN_SYNDROME,
            source="SEROTONIN"
        )

    def evaluate(self, patient: PatientState, context: RuleContext) -> RuleResult:
        alerts: List[Alert] = []
        high_risk: List[Medication] = []
        moderate_risk: List[Medication] = []
        lower_risk: List[Medication] = []

        for med in patient.current_medications:
            med_class = med.drug_class or ""
            if med_class in SEROTONIN_HIGH_CLASSES or matches_drug_list(med.name, HIGH_RISK_NAMES):
                high_risk.append(med)
            elif med_class in SEROTONIN_MODERATE_CLASSES or matches_drug_list(med.name, MODERATE_RISK_NAMES):
                moderate_risk.append(med)
            elif med_class in SEROTONIN_LOWER_CLASSES or matches_drug_list(med.name, LOWER_RISK_NAMES):
                lower_risk.append(med)

        maoi_meds = [m for m in high_risk if is_maoi(m)]
        has_maoi = bool(maoi_meds)

        if has_maoi:
            others = [m for m in high_risk if not is_maoi(m)] + moderate_risk + lower_risk
            if others:
                alerts.append(self._create_alert(
                    AlertCode.SEROTONIN_MAOI_COMBINATION,
                    AlertSeverity.CRITICAL,
                    message="MAOI + SEROTONERGIC DRUG - CONTRAINDICATED",
                    reason="Life-threatening serotonin syndrome risk",
                    action="STOP one immediately. If MAOI needed, wait appropriate washout period.",
                    drugs_involved=names(maoi_meds) + names(others),
                    monitoring="Monitor for hyperthermia, rigidity, autonomic instability",
                    guideline="FDA Black Box Warning"
                ))

        recent = patient.recent_maoi_use
        if recent is not None and recent.stopped_date is not None:
            days_since = (context.today - recent.stopped_date).days
            washout = required_washout(recent.drug)
            current = high_risk + moderate_risk
            if days_since < washout and current:
                alerts.append(self._create_alert(
                    AlertCode.SEROTONIN_WASHOUT_VIOLATION,
                    AlertSeverity.CRITICAL,
                    message=f"MAOI WASHOUT NOT COMPLETE - {days_since}/{washout} days",
                    reason=f"{recent.drug} stopped {days_since} days ago; requires {washout} day washout",
                    action="Wait until washout complete before starting serotonergic",
                    drugs_involved=[recent.drug] + names(current),
                    guideline="FDA labeling; clinical pharmacology"
                ))

        if not has_maoi and len(high_risk) >= 2:
            alerts.append(self._create_alert(
                AlertCode.SEROTONIN_HIGH_RISK,
                AlertSeverity.HIGH,
                message="MULTIPLE HIGH-POTENCY SEROTONERGIC DRUGS",
                reason="Elevated serotonin syndrome risk with concurrent use",
                action="Avoid combination if possible; use lowest doses; monitor closely",
                drugs_involved=names(high_risk),
                monitoring="Watch for: tremor, hyperreflexia, agitation, hyperthermia, diaphoresis",
                guideline="Hunter Criteria for diagnosis"
            ))

        total_serotonergic = len(high_risk) + len(moderate_risk)
        if not has_maoi and len(high_risk) == 1 and moderate_risk:
            impaired_clearance = patient.liver_disease or (patient.egfr is not None and patient.egfr < 30)
            alerts.append(self._create_alert(
                AlertCode.SEROTONIN_MODERATE_RISK,
                AlertSeverity.HIGH if impaired_clearance else AlertSeverity.MODERATE,
                message="SEROTONERGIC COMBINATION - Monitor",
                reason=f"{total_serotonergic} serotonergic agents concurrent",
                action="Use caution; counsel on serotonin syndrome symptoms",
                drugs_involved=names(high_risk) + names(moderate_risk),
                monitoring="Educate patient on warning signs; reassess if dose changes"
            ))

        triptans = [m for m in lower_risk if m.drug_class == "triptan" or "triptan" in _lower(m.name)]
        ssri_snri = [m for m in high_risk if m.drug_class in ("SSRI", "SNRI")]
        if triptans and ssri_snri:
            alerts.append(self._create_alert(
                AlertCode.SEROTONIN_MODERATE_RISK,
                AlertSeverity.MODERATE,
                message="Triptan + SSRI/SNRI combination",
                reason="FDA warning exists though clinical risk appears low",
                action="Generally acceptable with monitoring; counsel on symptoms",
                drugs_involved=names(ssri_snri) + names(triptans),
                guideline="FDA Safety Communication 2006 (risk lower than initially reported)"
            ))

        return RuleResult(alerts=alerts, metadata={
            "applies": True,
            "high_risk_count": len(high_risk),
            "moderate_risk_count": len(moderate_risk),
            "has_maoi": has_maoi,
            "total_serotonergic": total_serotonergic + len(lower_risk),
        })


# =============================================================================
# Beers Criteria Rules
# =============================================================================

BEERS_MIN_AGE = 65
PPI_MAX_WEEKS = 8


class BeersCriteriaRule(ClinicalRule):
    """
    Rule: Potentially inappropriate medications in adults 65 and older
    Evidence: AGS 2023 Beers Criteria (Table 1 PIMs, Table 2 drug-disease interactions)

    Drug-disease interactions are driven by pharmacological effects: each
    medication's effect tags are intersected with the avoid-effects of the
    conditions derived from diagnosis codes and legacy condition names.
    """

    alert_codes = frozenset({
        AlertCode.BEERS_PIM_TABLE1, AlertCode.BEERS_DISEASE_INTERACTION,
        AlertCode.BEERS_ACB_HIGH, AlertCode.BEERS_CNS_POLYPHARMACY,
        AlertCode.BEERS_PPI_LONG_TERM,
    })
    eligibility = f"Requires patient age >= {BEERS_MIN_AGE}"

    def __init__(self):
        super().__init__(
            rule_id="BEERS_001",
            rule_name="Beers Criteria",
            category=RuleCategory.GERIATRIC_PRESCRIBING,
            source="BEERS"
        )

    def applies(self, patient: PatientState) -> bool:
        return patient.patient_age is not None and patient.patient_age >= BEERS_MIN_AGE

    def evaluate(self, patient: PatientState, context: RuleContext) -> RuleResult:
        if not self.applies(patient):
            return self.skipped()

        drug_names = patient.medication_names
        knowledge = context.knowledge
        alerts: List[Alert] = []

        condition_keys = context.classifier.resolve_conditions(patient.icd_codes, patient.conditions)
        drug_effects = {name: context.effects_of(name, self.source) for name in drug_names}

        # Table 1 PIMs
        pim_count = 0
        for name in drug_names:
            resolution = knowledge.resolve(name, PIM_DATABASE)
            if resolution is None:
                continue
            pim = PIM_DATABASE[resolution.canonical_name]
            avoid = pim["severity"] == "AVOID"
            pim_count += 1
            alerts.append(self._create_alert(
                AlertCode.BEERS_PIM_TABLE1,
                AlertSeverity.HIGH if avoid else AlertSeverity.MODERATE,
                message=f"Beers Criteria PIM: {name}",
                reason=pim["reason"],
                action="Avoid; consider alternative" if avoid else "Use with caution",
                drug=name,
                alternatives=", ".join(pim.get("alternatives") or []) or "Non-pharmacologic approaches"
            ))

        # Table 2 drug-disease interactions, one alert per drug
        interactions = match_contraindications(
            drug_names, condition_keys, knowledge, context.classifier,
            source=self.source, on_unknown=context.on_unknown
        )
        by_drug: Dict[str, List] = {}
        for record in interactions:
            by_drug.setdefault(record.drug, []).append(record)

        for drug, records in by_drug.items():
            keys = [r.condition_key for r in records]
            harmful = sorted({e for r in records for e in r.harmful_effects})
            reasons = list(dict.fromkeys(r.reason for r in records))
            condition = ", ".join(keys)
            alerts.append(self._create_alert(
                AlertCode.BEERS_DISEASE_INTERACTION,
                AlertSeverity.HIGH,
                message=f"Beers: {drug} has {', '.join(harmful)} effects - inappropriate with {condition}",
                reason="; ".join(reasons),
                action="Avoid in this patient; consider alternative",
                drug=drug,
                condition=condition,
                condition_keys=keys,
                harmful_effects=harmful
            ))

        burden = anticholinergic_burden(drug_names, knowledge)
        if burden.total >= ACB_ALERT_THRESHOLD:
            alerts.append(self._create_alert(
                AlertCode.BEERS_ACB_HIGH,
                AlertSeverity.HIGH,
                message=f"High Anticholinergic Burden (ACB Score: {burden.total})",
                reason=f"ACB >={ACB_ALERT_THRESHOLD} associated with cognitive impairment, delirium, falls",
                action="Review all anticholinergic medications; reduce where possible",
                drugs_involved=[d for d, score in burden.by_drug.items() if score > 0],
                acb_score=burden.total,
                monitoring="Assess cognition; monitor for confusion, dry mouth, constipation, urinary retention"
            ))

        cns_drugs = cns_active_drugs(drug_names, knowledge, self.source, context.on_unknown)
        if len(cns_drugs) >= CNS_ALERT_THRESHOLD:
            alerts.append(self._create_alert(
                AlertCode.BEERS_CNS_POLYPHARMACY,
                AlertSeverity.HIGH,
                message=f"CNS Polypharmacy: {len(cns_drugs)} CNS-active medications",
                reason=f">={CNS_ALERT_THRESHOLD} CNS-active drugs increases falls, fractures, and delirium risk",
                action="Minimize CNS-active medications; review necessity of each",
                drugs_involved=cns_drugs
            ))

        weeks = patient.ppi_duration_weeks
        if weeks is not None and weeks > PPI_MAX_WEEKS:
            if any("ppi_effects" in effects for effects in drug_effects.values()):
                alerts.append(self._create_alert(
                    AlertCode.BEERS_PPI_LONG_TERM,
                    AlertSeverity.MODERATE,
                    message=f"PPI use >{PPI_MAX_WEEKS} weeks without clear indication",
                    reason="Long-term PPI associated with C. diff, bone loss, hypomagnesemia, B12 deficiency",
                    action="Reassess indication; attempt step-down or discontinuation if appropriate"
                ))

        toxidromes = identify_toxidromes(patient.symptoms) if patient.symptoms else []

        return RuleResult(alerts=alerts, metadata={
            "applies": True,
            "patient_age": patient.patient_age,
            "pim_count": pim_count,
            "condition_interaction_count": len(interactions),
            "acb_score": burden.total,
            "cns_active_count": len(cns_drugs),
            "drug_effects": {name: sorted(effects) for name, effects in drug_effects.items()},
            "derived_conditions": condition_keys,
            "toxidrome_matches": [m.model_dump() for m in toxidromes],
        })


def default_rules() -> List[ClinicalRule]:
    """Every rule module, in evaluation order"""
    return [
        RenalDosingRule(),
        TripleWhammyRule(),
        OpioidSafetyRule(),
        AntithromboticRule(),
        SerotoninSyndromeRule(),
        BeersCriteriaRule(),
    ]
