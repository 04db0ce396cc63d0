"""
MedSafety - Patient State and Alert Schemas
Pydantic models shared by the knowledge layer, rule modules and API
"""

import logging

from pydantic import BaseModel, ConfigDict, Field, field_validator, computed_field
from typing import Optional, List, Dict, Any, Tuple
from datetime import date, datetime
from enum import Enum

from medsafety.alert_codes import AlertCode

logger = logging.getLogger(__name__)


# ============================================================================
# Enumerations
# ============================================================================

class AlertSeverity(str, Enum):
    """Alert severity levels, most to least urgent"""
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MODERATE = "MODERATE"
    LOW = "LOW"
    INFO = "INFO"

    @property
    def rank(self) -> int:
        """Sort rank: CRITICAL=1 ... INFO=5"""
        return SEVERITY_ORDER[self]


SEVERITY_ORDER = {
    AlertSeverity.CRITICAL: 1,
    AlertSeverity.HIGH: 2,
    AlertSeverity.MODERATE: 3,
    AlertSeverity.LOW: 4,
    AlertSeverity.INFO: 5,
}


class ModuleStatus(str, Enum):
    """Outcome of one isolated rule-module invocation"""
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


def _coerce_date(v, field: str = "date"):
    """Accept ISO date or datetime strings; unparseable values become None"""
    if v is None or v == "":
        return None
    if isinstance(v, datetime):
        return v.date()
    if isinstance(v, date):
        return v
    if isinstance(v, str):
        try:
            return date.fromisoformat(v.strip()[:10])
        except ValueError:
            pass
    logger.warning(f"Ignoring unparseable {field}: {v!r}")
    return None


# ============================================================================
# Patient State Models
# ============================================================================

class Medication(BaseModel):
    """Current medication as supplied by the caller"""
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    name: str = Field("", description="Free-text name; may carry strength or formulation")
    drug_class: Optional[str] = Field(None, alias="class", description="Pre-classified therapeutic class")
    dose: Optional[str] = Field(None, description="Free-text dose, e.g. '50mg TID'")

    @field_validator("name", mode="before")
    @classmethod
    def name_as_text(cls, v):
        return "" if v is None else v

    @field_validator("dose", mode="before")
    @classmethod
    def dose_as_text(cls, v):
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v


class ActiveIllness(BaseModel):
    """Acute illness flags that trigger sick-day rules"""
    model_config = ConfigDict(frozen=True, extra="ignore")

    volume_depleted: bool = False
    vomiting_diarrhea: bool = False
    sepsis: bool = False
    recent_surgery: bool = False
    acute_infection: bool = False

    @computed_field
    @property
    def has_volume_risk(self) -> bool:
        """Any flag that puts renal perfusion at risk"""
        return any([
            self.volume_depleted, self.vomiting_diarrhea, self.sepsis,
            self.recent_surgery, self.acute_infection
        ])


class RecentMaoiUse(BaseModel):
    """Recently discontinued MAOI (or other long-washout serotonergic)"""
    model_config = ConfigDict(frozen=True, extra="ignore")

    drug: str = ""
    stopped_date: Optional[date] = None

    @field_validator("stopped_date", mode="before")
    @classmethod
    def parse_stopped_date(cls, v):
        return _coerce_date(v, "recent_maoi_use.stopped_date")


class PatientState(BaseModel):
    """Snapshot of the patient's clinical state for one evaluation"""
    model_config = ConfigDict(frozen=True, extra="ignore")

    patient_age: Optional[float] = Field(None, ge=0, le=130)
    patient_sex: Optional[str] = None
    weight_kg: Optional[float] = Field(None, gt=0, le=700)
    egfr: Optional[float] = Field(None, ge=0, le=250, description="mL/min/1.73m2")

    # Comorbidity flags
    liver_disease: bool = False
    heart_failure: bool = False
    atrial_fibrillation: bool = False
    prior_gi_bleed: bool = False
    hb_low: bool = False
    respiratory_disease: bool = False
    opioid_naive: bool = True

    # Procedures
    recent_pci_date: Optional[date] = None
    stent_type: Optional[str] = Field(None, pattern="^(DES|BMS)$")

    active_illness: ActiveIllness = Field(default_factory=ActiveIllness)
    current_medications: List[Medication] = Field(default_factory=list)
    conditions: List[str] = Field(default_factory=list, description="Legacy free-text conditions")
    icd_codes: List[str] = Field(default_factory=list)
    recent_maoi_use: Optional[RecentMaoiUse] = None
    ppi_duration_weeks: Optional[float] = Field(None, ge=0)
    symptoms: List[str] = Field(default_factory=list)

    @field_validator(
        "liver_disease", "heart_failure", "atrial_fibrillation", "prior_gi_bleed",
        "hb_low", "respiratory_disease", mode="before"
    )
    @classmethod
    def missing_flag_is_false(cls, v):
        return False if v is None else v

    @field_validator("opioid_naive", mode="before")
    @classmethod
    def missing_naive_flag(cls, v):
        return True if v is None else v

    @field_validator("current_medications", "conditions", "icd_codes", "symptoms", mode="before")
    @classmethod
    def missing_list_is_empty(cls, v):
        return [] if v is None else v

    @field_validator("active_illness", mode="before")
    @classmethod
    def missing_illness(cls, v):
        return {} if v is None else v

    @field_validator("recent_pci_date", mode="before")
    @classmethod
    def parse_pci_date(cls, v):
        return _coerce_date(v, "recent_pci_date")

    @field_validator("stent_type", mode="before")
    @classmethod
    def normalize_stent_type(cls, v):
        if v is None:
            return None
        stent = v.strip().upper() if isinstance(v, str) else v
        if stent in ("", "DES", "BMS"):
            return stent or None
        logger.warning(f"Ignoring unknown stent_type: {v!r}")
        return None

    @property
    def medication_names(self) -> List[str]:
        """Medication names in input order"""
        return [m.name for m in self.current_medications]


# ============================================================================
# Alert Models
# ============================================================================

class Alert(BaseModel):
    """
    Medication safety alert

    Module-specific details (monitoring text, thresholds, scores) are kept
    as extra fields and serialized alongside the core fields.
    """
    model_config = ConfigDict(frozen=True, extra="allow")

    alert_code: AlertCode
    severity: AlertSeverity
    message: str
    reason: Optional[str] = None
    action: Optional[str] = None
    drug: Optional[str] = None
    drugs_involved: Optional[Tuple[str, ...]] = None
    source: str = ""


class RuleResult(BaseModel):
    """Output of one rule module"""
    alerts: List[Alert] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=lambda: {"applies": True})

    @classmethod
    def skipped(cls, reason: str, **metadata) -> "RuleResult":
        """Insufficient data: no alerts, module marked as not applicable"""
        return cls(alerts=[], metadata={"applies": False, "reason": reason, **metadata})


class ModuleOutcome(BaseModel):
    """Result of one isolated module invocation"""
    source: str
    status: ModuleStatus
    result: Optional[RuleResult] = None
    error: Optional[str] = None
    duration_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status == ModuleStatus.SUCCEEDED


class EvaluationResult(BaseModel):
    """Aggregated, deduplicated and severity-sorted evaluation output"""
    alerts: List[Alert] = Field(default_factory=list)
    function_results: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    timing_ms: Dict[str, float] = Field(default_factory=dict)

    @computed_field
    @property
    def alert_count(self) -> int:
        return len(self.alerts)

    @computed_field
    @property
    def critical_count(self) -> int:
        """Count critical alerts"""
        return len([a for a in self.alerts if a.severity == AlertSeverity.CRITICAL])

    @computed_field
    @property
    def high_count(self) -> int:
        """Count high-severity alerts"""
        return len([a for a in self.alerts if a.severity == AlertSeverity.HIGH])

    @computed_field
    @property
    def has_blocking_alerts(self) -> bool:
        """Any CRITICAL alert blocks the order"""
        return self.critical_count > 0

    def codes(self) -> List[str]:
        """Alert codes in result order"""
        return [a.alert_code.value for a in self.alerts]


# ============================================================================
# Knowledge Layer Models
# ============================================================================

class EffectValidation(BaseModel):
    """Outcome of validating a list of effect tags"""
    valid: bool
    invalid: List[str] = Field(default_factory=list)
    normalized: List[str] = Field(default_factory=list)


class DrugResolution(BaseModel):
    """Free-text drug name resolved to a canonical table entry"""
    model_config = ConfigDict(frozen=True)

    query: str
    canonical_name: str
    strategy: str


class ContraindicationRecord(BaseModel):
    """A drug whose effects are on a derived condition's avoid-list"""
    model_config = ConfigDict(frozen=True)

    drug: str
    condition_key: str
    harmful_effects: List[str]
    reason: str


class BurdenScore(BaseModel):
    """Anticholinergic burden across all medications"""
    total: int = 0
    by_drug: Dict[str, int] = Field(default_factory=dict)


class ToxidromeMatch(BaseModel):
    """Toxidrome suggested by a symptom list"""
    toxidrome: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    matched_symptoms: List[str]
    mnemonic: Optional[str] = None
    criteria: Optional[str] = None
    antidote: Optional[str] = None


class ToxidromeRequest(BaseModel):
    """Symptom list for toxidrome identification"""
    symptoms: List[str] = Field(default_factory=list)
