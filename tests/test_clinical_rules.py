"""
Unit tests for clinical rule modules
"""

from datetime import timedelta

import pytest

from medsafety.alert_codes import AlertCode
from medsafety.schemas import AlertSeverity, Medication, PatientState
from medsafety.modules.clinical_rules import (
    AntithromboticRule,
    BeersCriteriaRule,
    OpioidSafetyRule,
    RenalDosingRule,
    SerotoninSyndromeRule,
    TripleWhammyRule,
    calculate_mme,
    ckd_stage,
    frequency_multiplier,
    required_washout
)


def patient(**fields) -> PatientState:
    return PatientState.model_validate(fields)


def med(name, drug_class=None, dose=None) -> dict:
    return {"name": name, "class": drug_class, "dose": dose}


def codes(result):
    return [a.alert_code for a in result.alerts]


class TestRenalDosingRule:
    """Test renal dose adjustments"""

    @pytest.fixture
    def rule(self):
        return RenalDosingRule()

    def test_metformin_contraindicated(self, rule, context):
        """Test metformin below eGFR 30"""
        result = rule.evaluate(patient(egfr=25, current_medications=[med("metformin 500mg")]), context)

        assert codes(result) == [AlertCode.RENAL_METFORMIN_CONTRAINDICATED]
        assert result.alerts[0].severity == AlertSeverity.CRITICAL
        assert result.alerts[0].drug == "metformin 500mg"
        assert result.metadata["ckd_stage"] == "4"

    def test_first_threshold_wins(self, rule, context):
        """Test only the most restrictive matching threshold fires"""
        result = rule.evaluate(patient(egfr=40, current_medications=[med("metformin")]), context)

        assert codes(result) == [AlertCode.RENAL_METFORMIN_REDUCE]
        assert result.alerts[0].severity == AlertSeverity.HIGH

    def test_gabapentin_moderate_reduction(self, rule, context):
        """Test the gabapentinoid tier between 30 and 60"""
        result = rule.evaluate(patient(egfr=45, current_medications=[med("gabapentin 300mg TID")]), context)

        assert codes(result) == [AlertCode.RENAL_GABAPENTINOID_ADJUST]
        assert result.alerts[0].severity == AlertSeverity.MODERATE

    def test_nsaid_class_catch_all(self, rule, context):
        """Test an NSAID not in the drug table"""
        result = rule.evaluate(patient(egfr=20, current_medications=[med("ketorolac", "NSAID")]), context)

        assert codes(result) == [AlertCode.RENAL_NSAID_AVOID]

    def test_named_nsaid_not_duplicated(self, rule, context):
        """Test the catch-all skips drugs already flagged"""
        result = rule.evaluate(patient(egfr=20, current_medications=[med("ibuprofen", "NSAID")]), context)

        assert codes(result) == [AlertCode.RENAL_NSAID_AVOID]

    def test_not_applicable_without_egfr(self, rule):
        """Test eligibility"""
        assert not rule.applies(patient(current_medications=[med("metformin")]))
        assert not rule.applies(patient(egfr=95))
        assert rule.applies(patient(egfr=89))

    def test_skipped_result(self, rule, context):
        """Test a skipped evaluation has no alerts"""
        result = rule.evaluate(patient(egfr=95, current_medications=[med("metformin")]), context)

        assert result.alerts == []
        assert result.metadata["applies"] is False

    @pytest.mark.parametrize("egfr,stage", [(95, "1"), (60, "2"), (45, "3a"), (30, "3b"), (15, "4"), (10, "5")])
    def test_ckd_stage(self, egfr, stage):
        """Test KDIGO staging boundaries"""
        assert ckd_stage(egfr) == stage


class TestTripleWhammyRule:
    """Test RAAS + diuretic + NSAID combinations"""

    @pytest.fixture
    def rule(self):
        return TripleWhammyRule()

    @pytest.fixture
    def triple(self):
        return [
            med("lisinopril", "ACE_inhibitor"),
            med("hydrochlorothiazide", "thiazide"),
            med("ibuprofen", "NSAID"),
        ]

    def test_triple_whammy(self, rule, context, triple):
        """Test the three-class combination"""
        result = rule.evaluate(patient(current_medications=triple), context)

        assert codes(result) == [AlertCode.TRIPLE_WHAMMY_PRESENT]
        assert result.alerts[0].drugs_involved == ("lisinopril", "hydrochlorothiazide", "ibuprofen")
        assert result.metadata["has_triple_whammy"] is True

    def test_nsaid_in_ckd(self, rule, context, triple):
        """Test NSAID alert when eGFR is below 60"""
        result = rule.evaluate(patient(egfr=50, current_medications=triple), context)

        assert AlertCode.TRIPLE_WHAMMY_NSAID_CKD in codes(result)

    def test_sick_day_protocol(self, rule, context):
        """Test volume depletion escalates to CRITICAL"""
        state = patient(
            active_illness={"volume_depleted": True},
            current_medications=[med("losartan", "ARB"), med("furosemide", "loop_diuretic")]
        )
        result = rule.evaluate(state, context)

        alert = result.alerts[0]
        assert alert.alert_code == AlertCode.TRIPLE_WHAMMY_VOLUME_DEPLETION
        assert alert.severity == AlertSeverity.CRITICAL
        assert "losartan" in alert.sick_day_rules

    def test_vomiting_is_high(self, rule, context):
        """Test other illness flags give HIGH"""
        state = patient(active_illness={"vomiting_diarrhea": True}, current_medications=[med("losartan", "ARB")])

        assert rule.evaluate(state, context).alerts[0].severity == AlertSeverity.HIGH

    def test_arni_overlap(self, rule, context):
        """Test ARNI with an ACE inhibitor"""
        state = patient(current_medications=[
            med("sacubitril/valsartan", "ARNI"), med("enalapril", "ACE_inhibitor")
        ])
        result = rule.evaluate(state, context)

        assert codes(result) == [AlertCode.DUAL_RAAS_ARNI_OVERLAP]
        assert result.alerts[0].severity == AlertSeverity.CRITICAL

    def test_ace_plus_arb(self, rule, context):
        """Test dual RAAS blockade"""
        state = patient(current_medications=[med("lisinopril", "ACE_inhibitor"), med("losartan", "ARB")])

        assert codes(rule.evaluate(state, context)) == [AlertCode.DUAL_RAAS_ACE_ARB]

    def test_no_classes_no_alerts(self, rule, context):
        """Test unclassified medications"""
        result = rule.evaluate(patient(current_medications=[med("lisinopril")]), context)

        assert result.alerts == []


class TestOpioidSafetyRule:
    """Test opioid combination and dose rules"""

    @pytest.fixture
    def rule(self):
        return OpioidSafetyRule()

    def test_opioid_benzo(self, rule, context):
        """Test the black box combination"""
        state = patient(current_medications=[med("oxycodone 5mg"), med("lorazepam 1mg")])
        result = rule.evaluate(state, context)

        assert result.alerts[0].alert_code == AlertCode.OPIOID_BENZO_COMBINATION
        assert result.alerts[0].severity == AlertSeverity.CRITICAL
        assert AlertCode.OPIOID_NALOXONE_NEEDED in codes(result)

    def test_high_mme(self, rule, context):
        """Test total MME of 90 or more"""
        state = patient(opioid_naive=False, current_medications=[med("oxycodone", dose="30mg TID")])
        result = rule.evaluate(state, context)

        assert result.metadata["total_mme"] == 135.0
        high = [a for a in result.alerts if a.alert_code == AlertCode.OPIOID_HIGH_MME]
        assert high[0].severity == AlertSeverity.HIGH

    def test_er_opioid_in_naive_patient(self, rule, context):
        """Test extended-release opioids in opioid-naive patients"""
        state = patient(current_medications=[med("morphine ER 15mg")])

        assert AlertCode.OPIOID_ER_NAIVE in codes(rule.evaluate(state, context))

    def test_no_opioid(self, rule, context):
        """Test no opioid gives no alerts"""
        result = rule.evaluate(patient(current_medications=[med("lorazepam")]), context)

        assert result.alerts == []
        assert result.metadata == {"applies": True, "has_opioid": False}

    @pytest.mark.parametrize("name,dose,expected", [
        ("hydromorphone", "4mg", 16.0),
        ("morphine", "10mg q4h", 60.0),
        ("fentanyl patch", "25", 60.0),
        ("methadone", "10mg BID", 80.0),
        ("methadone", "15mg TID", 450.0),
        ("tramadol 50mg", None, 5.0),
        ("oxycodone", None, 0.0),
    ])
    def test_calculate_mme(self, name, dose, expected):
        """Test MME conversion factors"""
        assert calculate_mme(Medication(name=name, dose=dose)) == pytest.approx(expected)

    def test_frequency_multiplier(self):
        """Test dose frequency parsing"""
        assert frequency_multiplier("5mg bid") == 2
        assert frequency_multiplier("5mg q6h") == 4
        assert frequency_multiplier("5mg") == 1


class TestAntithromboticRule:
    """Test antithrombotic combinations"""

    @pytest.fixture
    def rule(self):
        return AntithromboticRule()

    def test_dual_anticoagulation(self, rule, context):
        """Test two anticoagulants"""
        state = patient(atrial_fibrillation=True, current_medications=[
            med("apixaban", "anticoagulant_DOAC", "5mg BID"), med("warfarin", "anticoagulant_warfarin")
        ])

        assert codes(rule.evaluate(state, context))[0] == AlertCode.ANTITHROMB_DUAL_ANTICOAG

    def test_triple_therapy_after_des(self, rule, context):
        """Test recent DES placement downgrades triple therapy to HIGH"""
        state = patient(
            atrial_fibrillation=True,
            recent_pci_date=(context.today - timedelta(days=10)).isoformat(),
            stent_type="des",
            current_medications=[
                med("apixaban", "anticoagulant_DOAC", "5mg BID"),
                med("aspirin", "antiplatelet_aspirin", "81mg"),
                med("clopidogrel", "antiplatelet_P2Y12", "75mg"),
            ]
        )
        alert = rule.evaluate(state, context).alerts[0]

        assert alert.alert_code == AlertCode.ANTITHROMB_TRIPLE_THERAPY
        assert alert.severity == AlertSeverity.HIGH

    def test_unknown_stent_type_treated_as_absent(self, rule, context):
        """Test an unrecognized stent type keeps triple therapy CRITICAL"""
        state = patient(
            atrial_fibrillation=True,
            recent_pci_date=(context.today - timedelta(days=10)).isoformat(),
            stent_type="drug-eluting",
            current_medications=[
                med("apixaban", "anticoagulant_DOAC", "5mg BID"),
                med("aspirin", "antiplatelet_aspirin", "81mg"),
                med("clopidogrel", "antiplatelet_P2Y12", "75mg"),
            ]
        )

        assert state.stent_type is None
        assert rule.evaluate(state, context).alerts[0].severity == AlertSeverity.CRITICAL

    def test_triple_therapy_without_pci(self, rule, context):
        """Test triple therapy with no recent PCI is CRITICAL"""
        state = patient(atrial_fibrillation=True, current_medications=[
            med("apixaban", "anticoagulant_DOAC", "5mg BID"),
            med("aspirin", "antiplatelet_aspirin"),
            med("ticagrelor", "antiplatelet_P2Y12"),
        ])
        alert = rule.evaluate(state, context).alerts[0]

        assert alert.severity == AlertSeverity.CRITICAL

    def test_apixaban_dose_check(self, rule, context):
        """Test two reduction criteria with a full dose"""
        state = patient(patient_age=82, weight_kg=55, atrial_fibrillation=True,
                        current_medications=[med("apixaban", "anticoagulant_DOAC", "5mg BID")])

        assert AlertCode.ANTITHROMB_DOAC_DOSE_CHECK in codes(rule.evaluate(state, context))

    def test_apixaban_reduced_dose_not_flagged(self, rule, context):
        """Test 2.5mg is not read as a full dose"""
        state = patient(patient_age=82, weight_kg=55, atrial_fibrillation=True,
                        current_medications=[med("apixaban", "anticoagulant_DOAC", "2.5mg BID")])

        assert AlertCode.ANTITHROMB_DOAC_DOSE_CHECK not in codes(rule.evaluate(state, context))

    def test_no_indication(self, rule, context):
        """Test anticoagulant without documented indication"""
        state = patient(current_medications=[med("warfarin", "anticoagulant_warfarin")])

        assert codes(rule.evaluate(state, context)) == [AlertCode.ANTITHROMB_NO_INDICATION]

    def test_afib_from_icd_code(self, rule, context):
        """Test an I48 code counts as an indication"""
        state = patient(icd_codes=["I48.91"], current_medications=[med("warfarin", "anticoagulant_warfarin")])

        assert rule.evaluate(state, context).alerts == []

    def test_high_bleed_risk(self, rule, context):
        """Test three bleeding risk factors"""
        state = patient(patient_age=78, prior_gi_bleed=True, hb_low=True, atrial_fibrillation=True,
                        current_medications=[med("warfarin", "anticoagulant_warfarin")])

        assert codes(rule.evaluate(state, context)) == [AlertCode.ANTITHROMB_HIGH_BLEED_RISK]


class TestSerotoninSyndromeRule:
    """Test serotonergic combinations"""

    @pytest.fixture
    def rule(self):
        return SerotoninSyndromeRule()

    def test_maoi_combination(self, rule, context):
        """Test MAOI with an SSRI"""
        state = patient(current_medications=[med("phenelzine", "MAOI"), med("sertraline", "SSRI")])
        result = rule.evaluate(state, context)

        assert codes(result) == [AlertCode.SEROTONIN_MAOI_COMBINATION]
        assert result.metadata["has_maoi"] is True

    def test_washout_violation(self, rule, context):
        """Test fluoxetine's 35 day washout"""
        state = patient(
            recent_maoi_use={"drug": "fluoxetine", "stopped_date": (context.today - timedelta(days=20)).isoformat()},
            current_medications=[med("sertraline", "SSRI")]
        )
        result = rule.evaluate(state, context)

        assert codes(result) == [AlertCode.SEROTONIN_WASHOUT_VIOLATION]
        assert "20/35" in result.alerts[0].message

    def test_washout_complete(self, rule, context):
        """Test no alert once washout is complete"""
        state = patient(
            recent_maoi_use={"drug": "phenelzine", "stopped_date": (context.today - timedelta(days=20)).isoformat()},
            current_medications=[med("sertraline", "SSRI")]
        )

        assert rule.evaluate(state, context).alerts == []

    def test_two_high_risk(self, rule, context):
        """Test two high-potency serotonergic drugs"""
        state = patient(current_medications=[med("sertraline", "SSRI"), med("duloxetine", "SNRI")])

        assert codes(rule.evaluate(state, context)) == [AlertCode.SEROTONIN_HIGH_RISK]

    def test_moderate_risk_escalates_with_liver_disease(self, rule, context):
        """Test impaired clearance raises severity"""
        meds = [med("sertraline", "SSRI"), med("tramadol 50mg")]

        normal = rule.evaluate(patient(current_medications=meds), context)
        impaired = rule.evaluate(patient(liver_disease=True, current_medications=meds), context)

        assert normal.alerts[0].severity == AlertSeverity.MODERATE
        assert impaired.alerts[0].severity == AlertSeverity.HIGH

    def test_triptan_with_ssri(self, rule, context):
        """Test the triptan warning"""
        state = patient(current_medications=[med("sertraline", "SSRI"), med("sumatriptan", "triptan")])
        result = rule.evaluate(state, context)

        assert codes(result) == [AlertCode.SEROTONIN_MODERATE_RISK]
        assert result.alerts[0].drugs_involved == ("sertraline", "sumatriptan")

    def test_required_washout(self):
        """Test washout lookup"""
        assert required_washout("Fluoxetine") == 35
        assert required_washout("phenelzine") == 14
        assert required_washout(None) == 14


class TestBeersCriteriaRule:
    """Test geriatric prescribing rules"""

    @pytest.fixture
    def rule(self):
        return BeersCriteriaRule()

    def test_anticholinergic_burden(self, rule, context):
        """Test an ACB total of 9"""
        state = patient(patient_age=80, current_medications=[
            med("diphenhydramine"), med("oxybutynin"), med("amitriptyline")
        ])
        result = rule.evaluate(state, context)

        acb = [a for a in result.alerts if a.alert_code == AlertCode.BEERS_ACB_HIGH]
        assert len(acb) == 1
        assert acb[0].acb_score == 9
        assert result.metadata["acb_score"] == 9

    def test_pim_table(self, rule, context):
        """Test a Table 1 PIM"""
        result = rule.evaluate(patient(patient_age=70, current_medications=[med("Diphenhydramine 25mg")]), context)

        pims = [a for a in result.alerts if a.alert_code == AlertCode.BEERS_PIM_TABLE1]
        assert pims[0].drug == "Diphenhydramine 25mg"
        assert pims[0].severity == AlertSeverity.HIGH

    def test_disease_interaction_from_icd(self, rule, context):
        """Test one interaction alert per drug with its conditions"""
        state = patient(patient_age=80, icd_codes=["G30.9", "N40.1"], current_medications=[med("oxybutynin")])
        result = rule.evaluate(state, context)

        interactions = [a for a in result.alerts if a.alert_code == AlertCode.BEERS_DISEASE_INTERACTION]
        assert len(interactions) == 1
        assert interactions[0].condition_keys == ["dementia", "urinary_retention_bph"]
        assert interactions[0].harmful_effects == ["anticholinergic"]
        assert result.metadata["derived_conditions"] == ["dementia", "urinary_retention_bph"]

    def test_legacy_conditions(self, rule, context):
        """Test legacy free-text conditions drive interactions"""
        state = patient(patient_age=80, conditions=["cognitive_impairment"], current_medications=[med("lorazepam")])
        result = rule.evaluate(state, context)

        assert AlertCode.BEERS_DISEASE_INTERACTION in codes(result)

    def test_parkinsons_preferred_antipsychotic(self, rule, context):
        """Test quetiapine is not flagged for Parkinson's"""
        state = patient(patient_age=80, icd_codes=["G20"], current_medications=[med("quetiapine"), med("haloperidol")])
        result = rule.evaluate(state, context)

        flagged = [a.drug for a in result.alerts if a.alert_code == AlertCode.BEERS_DISEASE_INTERACTION]
        assert flagged == ["haloperidol"]

    def test_cns_polypharmacy(self, rule, context):
        """Test three CNS-active drugs"""
        state = patient(patient_age=72, current_medications=[
            med("oxycodone 5mg"), med("zolpidem"), med("gabapentin")
        ])

        assert AlertCode.BEERS_CNS_POLYPHARMACY in codes(rule.evaluate(state, context))

    def test_long_term_ppi(self, rule, context):
        """Test PPI use beyond eight weeks"""
        state = patient(patient_age=70, ppi_duration_weeks=12, current_medications=[med("omeprazole 20mg")])

        assert codes(rule.evaluate(state, context)) == [AlertCode.BEERS_PPI_LONG_TERM]

    def test_toxidrome_metadata(self, rule, context):
        """Test symptoms are scored into metadata"""
        state = patient(patient_age=70, symptoms=["miosis", "respiratory_depression"])
        matches = rule.evaluate(state, context).metadata["toxidrome_matches"]

        assert matches[0]["toxidrome"] == "opioid"

    def test_under_65_not_applicable(self, rule, context):
        """Test age eligibility"""
        state = patient(patient_age=60, current_medications=[med("diphenhydramine")])

        assert not rule.applies(state)
        assert rule.evaluate(state, context).metadata["applies"] is False


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
