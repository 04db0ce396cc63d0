"""
MedSafety Static Drug Tables
Drug -> effect tags, anticholinergic burden (ACB) scores, and Beers Table 1 PIMs

Table order matters: fuzzy name resolution scans entries in declaration order.
"""

from typing import Dict, List, Any


# =============================================================================
# Drug Effects
# =============================================================================

DRUG_EFFECTS: Dict[str, List[str]] = {
    # First-generation antihistamines
    "diphenhydramine": ["anticholinergic", "sedating"],
    "hydroxyzine": ["anticholinergic", "sedating"],
    "chlorpheniramine": ["anticholinergic", "sedating"],
    "promethazine": ["anticholinergic", "sedating", "dopamine_blocking"],
    "meclizine": ["anticholinergic", "sedating"],
    "dimenhydrinate": ["anticholinergic", "sedating"],
    "brompheniramine": ["anticholinergic", "sedating"],
    "doxylamine": ["anticholinergic", "sedating"],
    "cyproheptadine": ["anticholinergic", "sedating"],

    # Tricyclic antidepressants
    "amitriptyline": ["anticholinergic", "sedating", "qt_prolonging"],
    "imipramine": ["anticholinergic", "sedating", "qt_prolonging"],
    "doxepin": ["anticholinergic", "sedating"],
    "nortriptyline": ["anticholinergic", "sedating", "qt_prolonging"],
    "desipramine": ["anticholinergic", "qt_prolonging"],
    "clomipramine": ["anticholinergic", "sedating", "serotonergic", "qt_prolonging"],
    "trimipramine": ["anticholinergic", "sedating"],
    "protriptyline": ["anticholinergic"],

    # Anticholinergic bladder agents
    "oxybutynin": ["anticholinergic"],
    "tolterodine": ["anticholinergic"],
    "solifenacin": ["anticholinergic"],
    "darifenacin": ["anticholinergic"],
    "fesoterodine": ["anticholinergic"],
    "trospium": ["anticholinergic"],

    # Antispasmodics
    "dicyclomine": ["anticholinergic"],
    "hyoscyamine": ["anticholinergic"],
    "belladonna": ["anticholinergic"],
    "propantheline": ["anticholinergic"],
    "glycopyrrolate": ["anticholinergic"],
    "scopolamine": ["anticholinergic", "sedating"],

    # Benzodiazepines
    "diazepam": ["sedating", "muscle_relaxant_effect", "fall_risk"],
    "lorazepam": ["sedating", "fall_risk"],
    "alprazolam": ["sedating", "fall_risk"],
    "clonazepam": ["sedating", "fall_risk"],
    "temazepam": ["sedating", "fall_risk"],
    "triazolam": ["sedating", "fall_risk"],
    "chlordiazepoxide": ["sedating", "fall_risk"],
    "clorazepate": ["sedating", "fall_risk"],
    "flurazepam": ["sedating", "fall_risk"],
    "midazolam": ["sedating", "fall_risk"],

    # Z-drugs
    "zolpidem": ["sedating", "fall_risk"],
    "eszopiclone": ["sedating", "fall_risk"],
    "zaleplon": ["sedating", "fall_risk"],

    # Muscle relaxants
    "cyclobenzaprine": ["anticholinergic", "sedating"],
    "methocarbamol": ["sedating"],
    "carisoprodol": ["sedating"],
    "metaxalone": ["sedating"],
    "orphenadrine": ["anticholinergic", "sedating"],
    "tizanidine": ["sedating", "hypotensive"],
    "baclofen": ["sedating"],

    # Antipsychotics / dopamine antagonists
    "haloperidol": ["dopamine_blocking", "qt_prolonging", "fall_risk"],
    "chlorpromazine": ["dopamine_blocking", "anticholinergic", "sedating", "qt_prolonging", "seizure_lowering"],
    "thioridazine": ["dopamine_blocking", "anticholinergic", "qt_prolonging", "seizure_lowering"],
    "quetiapine": ["sedating", "dopamine_blocking", "hypotensive"],
    "olanzapine": ["sedating", "dopamine_blocking", "anticholinergic"],
    "risperidone": ["dopamine_blocking", "hypotensive"],
    "aripiprazole": ["dopamine_blocking"],
    "ziprasidone": ["dopamine_blocking", "qt_prolonging"],
    "clozapine": ["sedating", "anticholinergic", "seizure_lowering"],
    "prochlorperazine": ["dopamine_blocking"],
    "metoclopramide": ["dopamine_blocking"],

    # Opioids
    "morphine": ["opioid", "sedating", "respiratory_depressant"],
    "hydrocodone": ["opioid", "sedating"],
    "oxycodone": ["opioid", "sedating"],
    "hydromorphone": ["opioid", "sedating", "respiratory_depressant"],
    "fentanyl": ["opioid", "sedating", "respiratory_depressant"],
    "codeine": ["opioid", "sedating"],
    "tramadol": ["opioid", "serotonergic", "seizure_lowering"],
    "meperidine": ["opioid", "sedating", "seizure_lowering", "neurotoxic"],
    "methadone": ["opioid", "sedating", "qt_prolonging"],
    "buprenorphine": ["opioid", "sedating"],
    "tapentadol": ["opioid", "serotonergic"],

    # NSAIDs
    "ibuprofen": ["nephrotoxic", "gi_bleeding", "fluid_retention"],
    "naproxen": ["nephrotoxic", "gi_bleeding", "fluid_retention"],
    "diclofenac": ["nephrotoxic", "gi_bleeding", "fluid_retention"],
    "meloxicam": ["nephrotoxic", "gi_bleeding", "fluid_retention"],
    "indomethacin": ["nephrotoxic", "gi_bleeding", "fluid_retention", "cns_effects"],
    "ketorolac": ["nephrotoxic", "gi_bleeding", "fluid_retention"],
    "piroxicam": ["nephrotoxic", "gi_bleeding", "fluid_retention"],
    "celecoxib": ["nephrotoxic", "fluid_retention"],
    "aspirin": ["gi_bleeding", "antiplatelet"],

    # Cardiovascular
    "digoxin": ["arrhythmogenic", "narrow_therapeutic_index"],
    "amiodarone": ["qt_prolonging", "thyroid_effects", "pulmonary_toxicity"],
    "sotalol": ["qt_prolonging"],
    "dofetilide": ["qt_prolonging"],
    "dronedarone": ["fluid_retention"],
    "nifedipine": ["hypotensive", "reflex_tachycardia"],
    "diltiazem": ["bradycardic", "hypotensive"],
    "verapamil": ["bradycardic", "hypotensive", "constipating"],
    "doxazosin": ["hypotensive", "fall_risk"],
    "prazosin": ["hypotensive", "fall_risk"],
    "terazosin": ["hypotensive", "fall_risk"],
    "clonidine": ["sedating", "hypotensive", "bradycardic", "rebound_hypertension"],
    "methyldopa": ["sedating", "hypotensive"],

    # Diabetes
    "glyburide": ["hypoglycemia_prolonged"],
    "glipizide": ["hypoglycemia"],
    "glimepiride": ["hypoglycemia"],
    "chlorpropamide": ["hypoglycemia_prolonged", "siadh"],
    "insulin": ["hypoglycemia"],

    # Anticonvulsants
    "phenytoin": ["sedating", "fall_risk", "narrow_therapeutic_index"],
    "phenobarbital": ["sedating", "fall_risk"],
    "carbamazepine": ["sedating", "siadh", "narrow_therapeutic_index"],
    "valproate": ["sedating"],
    "gabapentin": ["sedating", "fall_risk"],
    "pregabalin": ["sedating", "fall_risk"],
    "topiramate": ["sedating", "cognitive_effects"],
    "levetiracetam": ["sedating"],

    # Antidepressants
    "fluoxetine": ["serotonergic", "fall_risk"],
    "sertraline": ["serotonergic", "fall_risk"],
    "paroxetine": ["serotonergic", "anticholinergic", "fall_risk"],
    "citalopram": ["serotonergic", "qt_prolonging", "fall_risk"],
    "escitalopram": ["serotonergic", "qt_prolonging", "fall_risk"],
    "venlafaxine": ["serotonergic", "hypertensive"],
    "duloxetine": ["serotonergic"],
    "mirtazapine": ["sedating", "fall_risk"],
    "trazodone": ["sedating", "hypotensive", "fall_risk"],
    "bupropion": ["seizure_lowering"],

    # GI
    "omeprazole": ["ppi_effects"],
    "pantoprazole": ["ppi_effects"],
    "esomeprazole": ["ppi_effects"],
    "lansoprazole": ["ppi_effects"],
    "rabeprazole": ["ppi_effects"],
    "dexlansoprazole": ["ppi_effects"],
    "cimetidine": ["anticholinergic", "drug_interactions"],
    "ranitidine": ["cns_effects"],
    "famotidine": [],

    # Antibiotics
    "nitrofurantoin": ["nephrotoxic", "pulmonary_toxicity"],
    "fluoroquinolones": ["qt_prolonging", "tendon_rupture", "cns_effects"],
    "ciprofloxacin": ["qt_prolonging", "tendon_rupture", "cns_effects"],
    "levofloxacin": ["qt_prolonging", "tendon_rupture", "cns_effects"],
    "moxifloxacin": ["qt_prolonging", "tendon_rupture"],

    # Other
    "theophylline": ["arrhythmogenic", "seizure_lowering", "narrow_therapeutic_index"],
    "lithium": ["narrow_therapeutic_index", "nephrotoxic"],
    "warfarin": ["bleeding_risk", "narrow_therapeutic_index"],
    "cilostazol": ["fluid_retention"],
}


# =============================================================================
# Anticholinergic Burden
# ACB scale: 1 = possible, 2 = definite moderate, 3 = definite high
# =============================================================================

ACB_SCORES: Dict[str, int] = {
    # Score 3
    "amitriptyline": 3,
    "atropine": 3,
    "benztropine": 3,
    "chlorpheniramine": 3,
    "chlorpromazine": 3,
    "clomipramine": 3,
    "clozapine": 3,
    "cyproheptadine": 3,
    "desipramine": 3,
    "dicyclomine": 3,
    "diphenhydramine": 3,
    "doxepin": 3,
    "doxylamine": 3,
    "fesoterodine": 3,
    "hydroxyzine": 3,
    "hyoscyamine": 3,
    "imipramine": 3,
    "meclizine": 3,
    "nortriptyline": 3,
    "olanzapine": 3,
    "orphenadrine": 3,
    "oxybutynin": 3,
    "paroxetine": 3,
    "perphenazine": 3,
    "promethazine": 3,
    "scopolamine": 3,
    "thioridazine": 3,
    "tolterodine": 3,
    "trifluoperazine": 3,
    "trihexyphenidyl": 3,
    "trimipramine": 3,

    # Score 2
    "amantadine": 2,
    "baclofen": 2,
    "carbamazepine": 2,
    "cetirizine": 2,
    "cimetidine": 2,
    "cyclobenzaprine": 2,
    "darifenacin": 2,
    "loperamide": 2,
    "loratadine": 2,
    "meperidine": 2,
    "nifedipine": 2,
    "oxcarbazepine": 2,
    "pimozide": 2,
    "solifenacin": 2,
    "trospium": 2,

    # Score 1
    "alprazolam": 1,
    "aripiprazole": 1,
    "atenolol": 1,
    "bupropion": 1,
    "captopril": 1,
    "citalopram": 1,
    "codeine": 1,
    "diazepam": 1,
    "digoxin": 1,
    "duloxetine": 1,
    "escitalopram": 1,
    "fentanyl": 1,
    "fluoxetine": 1,
    "fluvoxamine": 1,
    "furosemide": 1,
    "haloperidol": 1,
    "hydralazine": 1,
    "hydrocortisone": 1,
    "isosorbide": 1,
    "levocetirizine": 1,
    "lithium": 1,
    "metformin": 1,
    "metoprolol": 1,
    "morphine": 1,
    "oxycodone": 1,
    "prednisone": 1,
    "quetiapine": 1,
    "ranitidine": 1,
    "risperidone": 1,
    "sertraline": 1,
    "theophylline": 1,
    "trazodone": 1,
    "venlafaxine": 1,
    "warfarin": 1,
}


# =============================================================================
# Beers Table 1 - Potentially Inappropriate Medications
# AVOID -> HIGH, CAUTION / AVOID_HTN -> MODERATE
# =============================================================================

PIM_DATABASE: Dict[str, Dict[str, Any]] = {
    # First-generation antihistamines
    "diphenhydramine": {"severity": "AVOID", "reason": "Highly anticholinergic; confusion, urinary retention, constipation", "alternatives": ["loratadine", "cetirizine", "fexofenadine"]},
    "hydroxyzine": {"severity": "AVOID", "reason": "Highly anticholinergic", "alternatives": ["loratadine", "cetirizine"]},
    "chlorpheniramine": {"severity": "AVOID", "reason": "Highly anticholinergic", "alternatives": ["loratadine", "cetirizine"]},
    "promethazine": {"severity": "AVOID", "reason": "Highly anticholinergic; EPS risk", "alternatives": ["ondansetron"]},
    "meclizine": {"severity": "AVOID", "reason": "Anticholinergic", "alternatives": ["repositioning maneuvers"]},

    # Benzodiazepines
    "diazepam": {"severity": "AVOID", "reason": "Long half-life; falls, cognitive impairment, delirium", "alternatives": ["non-benzo sleep hygiene", "melatonin"]},
    "lorazepam": {"severity": "AVOID", "reason": "Falls, cognitive impairment, delirium", "alternatives": ["non-benzo sleep hygiene"]},
    "alprazolam": {"severity": "AVOID", "reason": "Falls, cognitive impairment, delirium", "alternatives": ["buspirone for anxiety"]},
    "clonazepam": {"severity": "AVOID", "reason": "Falls, cognitive impairment", "alternatives": ["non-benzo options"]},
    "temazepam": {"severity": "AVOID", "reason": "Falls, fractures", "alternatives": ["sleep hygiene", "melatonin"]},
    "triazolam": {"severity": "AVOID", "reason": "Falls, cognitive impairment", "alternatives": ["melatonin"]},
    "flurazepam": {"severity": "AVOID", "reason": "Very long half-life; prolonged sedation", "alternatives": ["sleep hygiene"]},
    "chlordiazepoxide": {"severity": "AVOID", "reason": "Long half-life", "alternatives": ["short-acting if needed"]},

    # Z-drugs
    "zolpidem": {"severity": "AVOID", "reason": "Similar risks to benzos; ER visits, falls, fractures", "alternatives": ["sleep hygiene", "melatonin"]},
    "eszopiclone": {"severity": "AVOID", "reason": "Falls, fractures", "alternatives": ["sleep hygiene"]},
    "zaleplon": {"severity": "AVOID", "reason": "Falls", "alternatives": ["sleep hygiene"]},

    # Muscle relaxants
    "cyclobenzaprine": {"severity": "AVOID", "reason": "Anticholinergic, sedation, fracture risk", "alternatives": ["physical therapy", "topical agents"]},
    "methocarbamol": {"severity": "AVOID", "reason": "Sedation, anticholinergic effects", "alternatives": ["physical therapy"]},
    "carisoprodol": {"severity": "AVOID", "reason": "Sedation, abuse potential", "alternatives": ["physical therapy"]},
    "metaxalone": {"severity": "AVOID", "reason": "Sedation", "alternatives": ["physical therapy"]},
    "orphenadrine": {"severity": "AVOID", "reason": "Anticholinergic", "alternatives": ["physical therapy"]},

    # Antispasmodics / bladder
    "dicyclomine": {"severity": "AVOID", "reason": "Highly anticholinergic", "alternatives": ["peppermint oil"]},
    "hyoscyamine": {"severity": "AVOID", "reason": "Highly anticholinergic", "alternatives": ["peppermint oil"]},
    "oxybutynin": {"severity": "AVOID", "reason": "Highly anticholinergic; cognitive impairment", "alternatives": ["mirabegron", "behavioral therapy"]},
    "tolterodine": {"severity": "CAUTION", "reason": "Anticholinergic", "alternatives": ["mirabegron"]},
    "solifenacin": {"severity": "CAUTION", "reason": "Anticholinergic", "alternatives": ["mirabegron"]},

    # TCAs
    "amitriptyline": {"severity": "AVOID", "reason": "Highly anticholinergic; cognitive impairment, constipation", "alternatives": ["nortriptyline", "SSRI"]},
    "imipramine": {"severity": "AVOID", "reason": "Highly anticholinergic", "alternatives": ["SSRI"]},
    "doxepin": {"severity": "AVOID", "reason": "Highly anticholinergic (doses >6mg)", "alternatives": ["trazodone", "mirtazapine"]},

    # Diabetes
    "glyburide": {"severity": "AVOID", "reason": "Prolonged hypoglycemia risk", "alternatives": ["glipizide", "glimepiride"]},
    "chlorpropamide": {"severity": "AVOID", "reason": "Prolonged hypoglycemia, SIADH", "alternatives": ["glipizide"]},

    # GI
    "metoclopramide": {"severity": "AVOID", "reason": "EPS, tardive dyskinesia", "alternatives": ["domperidone if available", "erythromycin"]},

    # Pain
    "meperidine": {"severity": "AVOID", "reason": "Neurotoxic metabolite, seizure risk", "alternatives": ["morphine", "hydromorphone"]},
    "indomethacin": {"severity": "AVOID", "reason": "Highest GI and CNS adverse effects", "alternatives": ["acetaminophen", "topical NSAIDs"]},
    "ketorolac": {"severity": "AVOID", "reason": "High GI bleed risk", "alternatives": ["acetaminophen"]},

    # Cardiovascular
    "nifedipine": {"severity": "AVOID", "reason": "Hypotension, MI risk (immediate-release)", "alternatives": ["amlodipine"]},
    "doxazosin": {"severity": "AVOID_HTN", "reason": "Orthostatic hypotension; OK for BPH", "alternatives": ["other antihypertensives"]},
    "prazosin": {"severity": "AVOID_HTN", "reason": "Orthostatic hypotension", "alternatives": ["other antihypertensives"]},
    "terazosin": {"severity": "AVOID_HTN", "reason": "Orthostatic hypotension; OK for BPH", "alternatives": ["tamsulosin"]},
    "clonidine": {"severity": "AVOID", "reason": "CNS effects, bradycardia, rebound HTN", "alternatives": ["other antihypertensives"]},
    "methyldopa": {"severity": "AVOID", "reason": "CNS effects, bradycardia", "alternatives": ["other antihypertensives"]},
}
