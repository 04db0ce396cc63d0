"""
Unit tests for the medication safety engine
"""

import logging

import pytest

from medsafety.alert_codes import AlertCode
from medsafety.config import Settings
from medsafety.schemas import Alert, AlertSeverity, ModuleStatus, PatientState
from medsafety.modules.clinical_rules import (
    ClinicalRule,
    RenalDosingRule,
    RuleCategory,
    TripleWhammyRule
)
from medsafety.modules.safety_engine import (
    MedicationSafetyEngine,
    build_engine,
    deduplicate_alerts,
    evaluate_patient,
    invoke_isolated,
    sort_by_severity
)


class ExplodingRule(ClinicalRule):
    """Rule module that always fails"""

    def __init__(self, source="BOOM"):
        super().__init__("BOOM_001", "Exploding Rule", RuleCategory.RENAL_DOSING, source)

    def evaluate(self, patient, context):
        raise RuntimeError("boom")


class UndeclaredCodeRule(ClinicalRule):
    """Rule module that emits a code it did not declare"""

    def __init__(self):
        super().__init__("ROGUE_001", "Rogue Rule", RuleCategory.RENAL_DOSING, "ROGUE")

    def evaluate(self, patient, context):
        return self._create_alert(AlertCode.BEERS_ACB_HIGH, AlertSeverity.LOW, "not allowed")


def alert(code, severity, drug=None, source="TEST", **extras):
    return Alert(alert_code=code, severity=severity, message="m", drug=drug, source=source, **extras)


class TestEvaluation:
    """Test end-to-end evaluations"""

    def test_clean_patient_has_no_alerts(self, engine, recorder):
        """Test a healthy 55 year old on common medications"""
        result = engine.evaluate({
            "patient_age": 55,
            "egfr": 95,
            "current_medications": [{"name": "lisinopril"}, {"name": "atorvastatin"}]
        })

        assert result.alerts == []
        assert result.alert_count == 0
        assert result.function_results["RENAL"]["applies"] is False
        assert result.function_results["BEERS"]["applies"] is False
        assert set(result.timing_ms) == {"RENAL", "TRIPLE_WHAMMY", "OPIOID", "ANTITHROMB", "SEROTONIN", "BEERS"}
        assert recorder.entries() == []

    def test_metformin_in_severe_ckd(self, engine):
        """Test metformin at eGFR 25 is blocking"""
        result = engine.evaluate({"egfr": 25, "current_medications": [{"name": "metformin"}]})

        assert result.alerts[0].alert_code == AlertCode.RENAL_METFORMIN_CONTRAINDICATED
        assert result.alerts[0].severity == AlertSeverity.CRITICAL
        assert result.critical_count == 1
        assert result.has_blocking_alerts is True

    def test_metformin_with_normal_renal_function(self, engine):
        """Test metformin at eGFR 95 raises nothing"""
        result = engine.evaluate({"egfr": 95, "current_medications": [{"name": "metformin"}]})

        assert result.alerts == []

    def test_anticholinergic_burden(self, engine):
        """Test an 80 year old on three strong anticholinergics"""
        result = engine.evaluate({
            "patient_age": 80,
            "current_medications": [
                {"name": "diphenhydramine"}, {"name": "oxybutynin"}, {"name": "amitriptyline"}
            ]
        })

        acb = [a for a in result.alerts if a.alert_code == AlertCode.BEERS_ACB_HIGH]
        assert acb[0].acb_score == 9
        assert result.function_results["BEERS"]["acb_score"] == 9

    def test_alerts_sorted_by_severity(self, engine):
        """Test CRITICAL alerts come first"""
        result = engine.evaluate({
            "patient_age": 78,
            "egfr": 25,
            "current_medications": [
                {"name": "metformin"},
                {"name": "oxycodone 10mg"},
                {"name": "lorazepam 1mg"},
                {"name": "diphenhydramine"},
            ]
        })

        ranks = [a.severity.rank for a in result.alerts]
        assert ranks == sorted(ranks)
        assert result.alerts[0].severity == AlertSeverity.CRITICAL

    def test_distinct_multi_drug_alerts_kept(self, engine):
        """Test two alerts with one code but different drug sets both survive"""
        result = engine.evaluate({"current_medications": [
            {"name": "sertraline", "class": "SSRI"},
            {"name": "tramadol"},
            {"name": "sumatriptan", "class": "triptan"},
        ]})

        assert result.codes() == [AlertCode.SEROTONIN_MODERATE_RISK.value] * 2

    def test_evaluation_is_idempotent(self, engine):
        """Test the same input gives the same output"""
        state = {
            "patient_age": 82,
            "egfr": 40,
            "icd_codes": ["G30.9"],
            "current_medications": [{"name": "oxybutynin"}, {"name": "gabapentin 300mg"}]
        }

        assert engine.evaluate(state).model_dump() == engine.evaluate(state).model_dump()

    def test_accepts_patient_state_model(self, engine):
        """Test a validated PatientState is accepted directly"""
        state = PatientState(egfr=25, current_medications=[{"name": "metformin"}])

        assert engine.evaluate(state).critical_count == 1

    def test_evaluate_patient_function(self, engine):
        """Test the public entry point"""
        result = evaluate_patient({"egfr": 25, "current_medications": [{"name": "metformin"}]}, engine=engine)

        assert result.has_blocking_alerts


class TestInputValidation:
    """Test malformed input handling"""

    def test_invalid_fields_become_critical_alerts(self, engine):
        """Test malformed input is reported, not raised"""
        result = engine.evaluate({"patient_age": "old", "current_medications": "metformin"})

        assert result.alerts
        assert all(a.alert_code == AlertCode.VALIDATION_INPUT_INVALID for a in result.alerts)
        assert all(a.severity == AlertSeverity.CRITICAL for a in result.alerts)
        assert {a.field for a in result.alerts} == {"patient_age", "current_medications"}
        assert result.function_results == {}

    def test_validation_alerts_are_capped(self, engine):
        """Test at most ten validation alerts"""
        result = engine.evaluate({"current_medications": [{"name": ["bad"]}] * 15})

        assert result.alert_count == 10

    def test_missing_fields_are_defaults(self, engine):
        """Test an empty snapshot evaluates cleanly"""
        result = engine.evaluate({})

        assert result.alerts == []

    def test_unknown_stent_type_does_not_block_other_modules(self, engine, caplog):
        """Test an unrecognized stent type is dropped with a warning"""
        with caplog.at_level(logging.WARNING, logger="medsafety.schemas"):
            result = engine.evaluate({
                "egfr": 20,
                "stent_type": "drug-eluting",
                "current_medications": [{"name": "metformin"}]
            })

        assert AlertCode.RENAL_METFORMIN_CONTRAINDICATED.value in result.codes()
        assert AlertCode.VALIDATION_INPUT_INVALID.value not in result.codes()
        assert "ANTITHROMB" in result.function_results
        assert any("stent_type" in r.getMessage() for r in caplog.records)

    def test_unparseable_pci_date_does_not_block_other_modules(self, engine):
        """Test a free-text PCI date is treated as absent"""
        result = engine.evaluate({
            "patient_age": 80,
            "recent_pci_date": "last week",
            "current_medications": [
                {"name": "diphenhydramine"}, {"name": "oxybutynin"}, {"name": "amitriptyline"}
            ]
        })

        assert AlertCode.BEERS_ACB_HIGH.value in result.codes()
        assert AlertCode.VALIDATION_INPUT_INVALID.value not in result.codes()

    def test_unparseable_stop_date_is_absent(self, engine):
        """Test a bad MAOI stop date skips only the washout check"""
        state = PatientState.model_validate({
            "recent_maoi_use": {"drug": "phenelzine", "stopped_date": "two weeks ago"}
        })
        result = engine.evaluate({
            "egfr": 25,
            "recent_maoi_use": {"drug": "phenelzine", "stopped_date": "two weeks ago"},
            "current_medications": [{"name": "metformin"}, {"name": "sertraline"}]
        })

        assert state.recent_maoi_use.stopped_date is None
        assert AlertCode.RENAL_METFORMIN_CONTRAINDICATED.value in result.codes()
        assert AlertCode.VALIDATION_INPUT_INVALID.value not in result.codes()
        assert "SEROTONIN" in result.function_results


class TestFailureIsolation:
    """Test per-module failure isolation"""

    def test_failing_module_does_not_stop_others(self, knowledge, classifier):
        """Test one failure becomes a SYSTEM alert while other modules run"""
        engine = MedicationSafetyEngine(
            rules=[ExplodingRule(), RenalDosingRule()],
            knowledge=knowledge,
            classifier=classifier,
            timer=lambda: 0.0
        )
        result = engine.evaluate({"egfr": 25, "current_medications": [{"name": "metformin"}]})

        assert result.codes() == [
            AlertCode.RENAL_METFORMIN_CONTRAINDICATED.value,
            AlertCode.SYSTEM_FUNCTION_ERROR.value,
        ]
        system = result.alerts[1]
        assert system.severity == AlertSeverity.HIGH
        assert system.source == "SYSTEM"
        assert system.failed_module == "BOOM"
        assert result.function_results["BOOM"] == {"applies": True, "error": "boom"}
        assert result.timing_ms["BOOM"] == 0.0

    def test_two_failures_are_not_collapsed(self):
        """Test failures of different modules stay distinct"""
        engine = MedicationSafetyEngine(rules=[ExplodingRule("A"), ExplodingRule("B")])
        result = engine.evaluate({})

        assert [a.failed_module for a in result.alerts] == ["A", "B"]

    def test_undeclared_code_fails_the_module(self):
        """Test a module emitting an undeclared code is isolated"""
        engine = MedicationSafetyEngine(rules=[UndeclaredCodeRule()])
        result = engine.evaluate({})

        assert result.codes() == [AlertCode.SYSTEM_FUNCTION_ERROR.value]

    def test_invoke_isolated_statuses(self, context):
        """Test SKIPPED, SUCCEEDED and FAILED outcomes"""
        skipped = invoke_isolated(RenalDosingRule(), PatientState(), context)
        succeeded = invoke_isolated(TripleWhammyRule(), PatientState(), context)
        failed = invoke_isolated(ExplodingRule(), PatientState(), context)

        assert skipped.status == ModuleStatus.SKIPPED
        assert succeeded.ok
        assert failed.status == ModuleStatus.FAILED
        assert failed.error == "boom"
        assert failed.result is None


class TestAggregation:
    """Test deduplication and ordering helpers"""

    def test_alert_drug_list_is_immutable(self):
        """Test involved drugs cannot be changed after the alert is built"""
        built = alert(AlertCode.SEROTONIN_HIGH_RISK, AlertSeverity.HIGH, drugs_involved=["tramadol", "linezolid"])

        assert built.drugs_involved == ("tramadol", "linezolid")
        with pytest.raises(AttributeError):
            built.drugs_involved.append("sertraline")

    def test_more_severe_duplicate_wins(self):
        """Test the higher severity alert replaces the stored one"""
        alerts = deduplicate_alerts([
            alert(AlertCode.RENAL_DOSE_CAUTION, AlertSeverity.MODERATE, drug="Metformin", source="RENAL"),
            alert(AlertCode.RENAL_DOSE_CAUTION, AlertSeverity.HIGH, drug="metformin", source="OTHER"),
        ])

        assert len(alerts) == 1
        assert alerts[0].severity == AlertSeverity.HIGH
        assert alerts[0].source == "OTHER"

    def test_equal_severity_merges_sources(self):
        """Test first-seen alert kept with concatenated sources"""
        alerts = deduplicate_alerts([
            alert(AlertCode.RENAL_DOSE_CAUTION, AlertSeverity.HIGH, drug="metformin", source="RENAL"),
            alert(AlertCode.RENAL_DOSE_CAUTION, AlertSeverity.HIGH, drug="metformin", source="BEERS"),
            alert(AlertCode.RENAL_DOSE_CAUTION, AlertSeverity.HIGH, drug="metformin", source="RENAL"),
        ])

        assert len(alerts) == 1
        assert alerts[0].source == "RENAL+BEERS"

    def test_different_drugs_not_merged(self):
        """Test the primary drug is part of the key"""
        alerts = deduplicate_alerts([
            alert(AlertCode.BEERS_PIM_TABLE1, AlertSeverity.HIGH, drug="lorazepam"),
            alert(AlertCode.BEERS_PIM_TABLE1, AlertSeverity.HIGH, drug="diazepam"),
        ])

        assert len(alerts) == 2

    def test_stable_sort(self):
        """Test ties keep insertion order"""
        first = alert(AlertCode.BEERS_PIM_TABLE1, AlertSeverity.HIGH, drug="a")
        second = alert(AlertCode.RENAL_DOSE_CAUTION, AlertSeverity.CRITICAL, drug="b")
        third = alert(AlertCode.BEERS_PIM_TABLE1, AlertSeverity.HIGH, drug="c")

        assert sort_by_severity([first, second, third]) == [second, first, third]


class TestEngineConstruction:
    """Test engine setup and settings wiring"""

    def test_duplicate_sources_rejected(self):
        """Test two modules cannot share a source label"""
        with pytest.raises(ValueError, match="Duplicate"):
            MedicationSafetyEngine(rules=[ExplodingRule(), ExplodingRule()])

    def test_unregistered_code_rejected(self):
        """Test modules may only declare registered codes"""
        class BadRule(ExplodingRule):
            alert_codes = frozenset({"NOT_A_CODE"})

        with pytest.raises(ValueError, match="unregistered"):
            MedicationSafetyEngine(rules=[BadRule()])

    def test_build_engine_respects_flags(self):
        """Test disabled modules are not registered"""
        config = Settings(rules_beers=False, rules_serotonin=False, unknown_drug_log_enabled=False)
        engine = build_engine(config)

        assert [r.source for r in engine.rules] == ["RENAL", "TRIPLE_WHAMMY", "OPIOID", "ANTITHROMB"]
        assert engine.recorder is None

    def test_build_engine_file_recorder(self, tmp_path):
        """Test the JSON recorder is wired when enabled"""
        config = Settings(unknown_drug_log_path=str(tmp_path / "unknown.json"))
        engine = build_engine(config)

        assert engine.recorder is not None
        assert engine.recorder.store.path == tmp_path / "unknown.json"

    def test_all_modules_disabled_rejected(self):
        """Test at least one module must stay enabled"""
        with pytest.raises(ValueError):
            Settings(
                rules_renal_dosing=False, rules_triple_whammy=False, rules_opioid_safety=False,
                rules_antithrombotic=False, rules_serotonin=False, rules_beers=False
            )

    def test_rules_by_category(self, engine):
        """Test category lookup"""
        rules = engine.get_rules_by_category(RuleCategory.RENAL_DOSING)

        assert [r.rule_id for r in rules] == ["RENAL_001"]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
