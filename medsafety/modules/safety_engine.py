"""
MedSafety Engine
Runs the registered rule modules with per-module failure isolation, then
merges, deduplicates and severity-sorts their alerts

Evaluation flow per call:
    validate -> (for each rule: eligibility -> isolated run) -> merge
    -> deduplicate -> sort -> summarize
"""

import logging
import time
from datetime import date
from functools import partial
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from pydantic import ValidationError

from medsafety.alert_codes import AlertCode, validate_alert_codes
from medsafety.config import Settings, settings as default_settings
from medsafety.schemas import (
    Alert, AlertSeverity, EvaluationResult, ModuleOutcome, ModuleStatus,
    PatientState, RuleResult
)
from medsafety.knowledge.conditions import ConditionClassifier, default_classifier
from medsafety.knowledge.drug_knowledge import DrugKnowledgeBase, default_knowledge_base
from medsafety.modules.clinical_rules import (
    AntithromboticRule, BeersCriteriaRule, ClinicalRule, OpioidSafetyRule,
    RenalDosingRule, RuleCategory, RuleContext, SerotoninSyndromeRule,
    TripleWhammyRule, default_rules
)
from medsafety.services.unknown_drugs import UnknownDrugRecorder, get_unknown_drug_recorder

logger = logging.getLogger(__name__)

MAX_VALIDATION_ALERTS = 10

Timer = Callable[[], float]


# =============================================================================
# Isolated Invocation
# =============================================================================

def invoke_isolated(
    rule: ClinicalRule,
    patient: PatientState,
    context: RuleContext,
    timer: Timer = time.perf_counter
) -> ModuleOutcome:
    """
    Run one rule module under the single failure-isolation policy

    Eligibility and evaluation both run inside the boundary; any exception
    becomes a FAILED outcome instead of propagating. Duration is recorded
    whatever the outcome.
    """
    started = timer()
    try:
        if not rule.applies(patient):
            status, result = ModuleStatus.SKIPPED, rule.skipped()
        else:
            status, result = ModuleStatus.SUCCEEDED, rule.evaluate(patient, context)
        error = None
    except Exception as e:
        logger.error(f"Error evaluating rule {rule.rule_id}: {e}", exc_info=True)
        status, result, error = ModuleStatus.FAILED, None, str(e) or type(e).__name__

    return ModuleOutcome(
        source=rule.source,
        status=status,
        result=result,
        error=error,
        duration_ms=round((timer() - started) * 1000, 3)
    )


def module_failure_alert(rule: ClinicalRule, error: str) -> Alert:
    """Synthetic alert standing in for a failed module's output"""
    return Alert(
        alert_code=AlertCode.SYSTEM_FUNCTION_ERROR,
        severity=AlertSeverity.HIGH,
        message=f"{rule.rule_name}: {error}",
        reason="Rule module failed; its checks were not applied to this evaluation",
        action="Review this patient's medications manually for this domain",
        source="SYSTEM",
        failed_module=rule.source
    )


def validation_alerts(error: ValidationError) -> List[Alert]:
    """CRITICAL boundary alerts for malformed patient input"""
    alerts = []
    for item in error.errors()[:MAX_VALIDATION_ALERTS]:
        field = ".".join(str(part) for part in item.get("loc", ())) or "patient_state"
        alerts.append(Alert(
            alert_code=AlertCode.VALIDATION_INPUT_INVALID,
            severity=AlertSeverity.CRITICAL,
            message=f"Invalid patient input at '{field}': {item.get('msg', 'invalid value')}",
            reason="Safety checks cannot be trusted on malformed input",
            action="Correct the patient data and re-run the evaluation",
            source="VALIDATION",
            field=field
        ))
    return alerts


# =============================================================================
# Aggregation
# =============================================================================

def dedup_key(alert: Alert) -> Tuple[str, ...]:
    """
    (alert code, primary drug) lower-cased

    Multi-drug alerts without a primary drug also key on their sorted drug
    set, and module-failure alerts on the failed module.
    """
    code = alert.alert_code.value.lower()
    drug = (alert.drug or "").lower()
    key: Tuple[str, ...] = (code, drug)
    if not drug and alert.drugs_involved:
        key += tuple(sorted({d.lower() for d in alert.drugs_involved if d}))
    failed_module = getattr(alert, "failed_module", None)
    if failed_module:
        key += (f"module:{failed_module}".lower(),)
    return key


def _merge_sources(first: str, second: str) -> str:
    labels = [s for s in first.split("+") if s]
    for label in second.split("+"):
        if label and label not in labels:
            labels.append(label)
    return "+".join(labels)


def deduplicate_alerts(alerts: Sequence[Alert]) -> List[Alert]:
    """
    Collapse alerts sharing a dedup key

    The more severe alert replaces the stored one in place; on equal
    severity the first-seen alert is kept and the sources are concatenated.
    """
    kept: Dict[Tuple[str, ...], Alert] = {}
    for alert in alerts:
        key = dedup_key(alert)
        existing = kept.get(key)
        if existing is None:
            kept[key] = alert
        elif alert.severity.rank < existing.severity.rank:
            kept[key] = alert
        elif alert.severity.rank == existing.severity.rank:
            kept[key] = existing.model_copy(update={"source": _merge_sources(existing.source, alert.source)})
    return list(kept.values())


def sort_by_severity(alerts: Sequence[Alert]) -> List[Alert]:
    """Stable sort, CRITICAL first; ties keep insertion order"""
    return sorted(alerts, key=lambda a: a.severity.rank)


# =============================================================================
# Engine
# =============================================================================

class MedicationSafetyEngine:
    """
    Main medication safety engine
    Evaluates every registered rule module and aggregates their alerts

    Args:
        rules: Rule modules in evaluation order (defaults to all modules)
        knowledge: Drug knowledge base
        classifier: Condition classifier
        recorder: Unknown-drug recorder; None disables recording
        clock: Returns the evaluation date
        timer: Monotonic seconds source for per-module timing
    """

    def __init__(
        self,
        rules: Optional[Sequence[ClinicalRule]] = None,
        knowledge: Optional[DrugKnowledgeBase] = None,
        classifier: Optional[ConditionClassifier] = None,
        recorder: Optional[UnknownDrugRecorder] = None,
        clock: Callable[[], date] = date.today,
        timer: Timer = time.perf_counter
    ):
        self.rules: List[ClinicalRule] = list(rules) if rules is not None else default_rules()
        self.knowledge = knowledge or default_knowledge_base()
        self.classifier = classifier or default_classifier()
        self.recorder = recorder
        self.clock = clock
        self.timer = timer

        sources = set()
        for rule in self.rules:
            validate_alert_codes(rule.alert_codes, owner=rule.rule_id)
            if rule.source in sources:
                raise ValueError(f"Duplicate rule module source: {rule.source}")
            sources.add(rule.source)

        logger.info(f"Initialized medication safety engine with {len(self.rules)} rules")

    def get_rules_by_category(self, category: RuleCategory) -> List[ClinicalRule]:
        """Get all rules in a specific category"""
        return [r for r in self.rules if r.category == category]

    def _context(self, patient: PatientState) -> RuleContext:
        on_unknown = None
        if self.recorder is not None:
            on_unknown = partial(
                self.recorder.record,
                patient_context={"age": patient.patient_age, "conditions": list(patient.conditions)}
            )
        return RuleContext(
            knowledge=self.knowledge,
            classifier=self.classifier,
            today=self.clock(),
            on_unknown=on_unknown
        )

    def evaluate(self, patient_state: Union[PatientState, Dict[str, Any]]) -> EvaluationResult:
        """
        Evaluate all rule modules against one patient snapshot

        Args:
            patient_state: PatientState or raw dict; extra fields are ignored

        Returns:
            Deduplicated, severity-sorted alerts with per-module metadata and timing
        """
        try:
            patient = (
                patient_state if isinstance(patient_state, PatientState)
                else PatientState.model_validate(patient_state)
            )
        except ValidationError as e:
            logger.warning(f"Rejected patient input with {e.error_count()} validation errors")
            return EvaluationResult(alerts=validation_alerts(e))

        context = self._context(patient)
        all_alerts: List[Alert] = []
        function_results: Dict[str, Dict[str, Any]] = {}
        timing: Dict[str, float] = {}

        logger.info(
            f"Evaluating {len(self.rules)} rules against "
            f"{len(patient.current_medications)} medications"
        )

        for rule in self.rules:
            outcome = invoke_isolated(rule, patient, context, self.timer)
            timing[rule.source] = outcome.duration_ms

            if outcome.status == ModuleStatus.FAILED:
                all_alerts.append(module_failure_alert(rule, outcome.error))
                function_results[rule.source] = {"applies": True, "error": outcome.error}
                continue

            result: RuleResult = outcome.result
            function_results[rule.source] = result.metadata
            if result.alerts:
                logger.info(f"Rule {rule.rule_id} triggered {len(result.alerts)} alerts")
                all_alerts.extend(result.alerts)

        alerts = sort_by_severity(deduplicate_alerts(all_alerts))
        logger.info(f"Total alerts generated: {len(alerts)} ({len(all_alerts)} before deduplication)")

        return EvaluationResult(alerts=alerts, function_results=function_results, timing_ms=timing)


def build_engine(config: Optional[Settings] = None) -> MedicationSafetyEngine:
    """
    Engine with rule modules registered per the feature flags

    Wires the JSON-file unknown-drug recorder when recording is enabled.
    """
    config = config or default_settings
    flags = config.enabled_rule_flags
    registry = [
        ("rules_renal_dosing", RenalDosingRule),
        ("rules_triple_whammy", TripleWhammyRule),
        ("rules_opioid_safety", OpioidSafetyRule),
        ("rules_antithrombotic", AntithromboticRule),
        ("rules_serotonin", SerotoninSyndromeRule),
        ("rules_beers", BeersCriteriaRule),
    ]
    rules = [rule_cls() for flag, rule_cls in registry if flags.get(flag)]

    recorder = None
    if config.unknown_drug_log_enabled:
        recorder = get_unknown_drug_recorder(config.unknown_drug_log_path)

    return MedicationSafetyEngine(rules=rules, recorder=recorder)


# =============================================================================
# Public API
# =============================================================================

def evaluate_patient(
    patient_state: Union[PatientState, Dict[str, Any]],
    engine: Optional[MedicationSafetyEngine] = None
) -> EvaluationResult:
    """
    Evaluate a patient snapshot and return prioritized safety alerts

    Args:
        patient_state: PatientState or raw dict
        engine: Engine to use; built from settings when omitted

    Returns:
        Evaluation result
    """
    engine = engine or build_engine()
    return engine.evaluate(patient_state)
