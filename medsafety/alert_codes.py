"""
MedSafety Alert Code Registry
Closed set of alert codes a rule module may emit
"""

from enum import Enum
from typing import Iterable, List


class AlertCode(str, Enum):
    """Registered alert codes, grouped by producing domain"""

    # System / boundary
    SYSTEM_FUNCTION_ERROR = "SYSTEM_FUNCTION_ERROR"
    VALIDATION_INPUT_INVALID = "VALIDATION_INPUT_INVALID"

    # Renal dosing
    RENAL_METFORMIN_CONTRAINDICATED = "RENAL_METFORMIN_CONTRAINDICATED"
    RENAL_METFORMIN_REDUCE = "RENAL_METFORMIN_REDUCE"
    RENAL_DOSE_CAUTION = "RENAL_DOSE_CAUTION"
    RENAL_GABAPENTINOID_ADJUST = "RENAL_GABAPENTINOID_ADJUST"
    RENAL_DOAC_ADJUST = "RENAL_DOAC_ADJUST"
    RENAL_DOAC_CONTRAINDICATED = "RENAL_DOAC_CONTRAINDICATED"
    RENAL_NSAID_AVOID = "RENAL_NSAID_AVOID"
    RENAL_GLYBURIDE_AVOID = "RENAL_GLYBURIDE_AVOID"
    RENAL_NITROFURANTOIN_AVOID = "RENAL_NITROFURANTOIN_AVOID"

    # Triple whammy / RAAS
    TRIPLE_WHAMMY_PRESENT = "TRIPLE_WHAMMY_PRESENT"
    TRIPLE_WHAMMY_NSAID_CKD = "TRIPLE_WHAMMY_NSAID_CKD"
    TRIPLE_WHAMMY_VOLUME_DEPLETION = "TRIPLE_WHAMMY_VOLUME_DEPLETION"
    DUAL_RAAS_ACE_ARB = "DUAL_RAAS_ACE_ARB"
    DUAL_RAAS_ARNI_OVERLAP = "DUAL_RAAS_ARNI_OVERLAP"

    # Opioid safety
    OPIOID_BENZO_COMBINATION = "OPIOID_BENZO_COMBINATION"
    OPIOID_CNS_POLYPHARMACY = "OPIOID_CNS_POLYPHARMACY"
    OPIOID_HIGH_MME = "OPIOID_HIGH_MME"
    OPIOID_NALOXONE_NEEDED = "OPIOID_NALOXONE_NEEDED"
    OPIOID_ER_NAIVE = "OPIOID_ER_NAIVE"

    # Antithrombotic
    ANTITHROMB_DUAL_ANTICOAG = "ANTITHROMB_DUAL_ANTICOAG"
    ANTITHROMB_TRIPLE_THERAPY = "ANTITHROMB_TRIPLE_THERAPY"
    ANTITHROMB_DOAC_DOSE_CHECK = "ANTITHROMB_DOAC_DOSE_CHECK"
    ANTITHROMB_HIGH_BLEED_RISK = "ANTITHROMB_HIGH_BLEED_RISK"
    ANTITHROMB_NO_INDICATION = "ANTITHROMB_NO_INDICATION"

    # Serotonin syndrome
    SEROTONIN_MAOI_COMBINATION = "SEROTONIN_MAOI_COMBINATION"
    SEROTONIN_WASHOUT_VIOLATION = "SEROTONIN_WASHOUT_VIOLATION"
    SEROTONIN_HIGH_RISK = "SEROTONIN_HIGH_RISK"
    SEROTONIN_MODERATE_RISK = "SEROTONIN_MODERATE_RISK"

    # Beers criteria
    BEERS_PIM_TABLE1 = "BEERS_PIM_TABLE1"
    BEERS_DISEASE_INTERACTION = "BEERS_DISEASE_INTERACTION"
    BEERS_ACB_HIGH = "BEERS_ACB_HIGH"
    BEERS_CNS_POLYPHARMACY = "BEERS_CNS_POLYPHARMACY"
    BEERS_PPI_LONG_TERM = "BEERS_PPI_LONG_TERM"


REGISTERED_CODES = frozenset(code.value for code in AlertCode)


def is_registered(code) -> bool:
    """Check a code (enum member or raw string) against the registry"""
    value = code.value if isinstance(code, AlertCode) else str(code)
    return value in REGISTERED_CODES


def validate_alert_codes(codes: Iterable, owner: str = "") -> List[str]:
    """
    Reject any code that is not in the registry

    Args:
        codes: Alert codes declared by a rule module
        owner: Name of the declaring module, used in the error message

    Returns:
        Sorted list of the validated code values

    Raises:
        ValueError: if one or more codes are unregistered
    """
    values = [code.value if isinstance(code, AlertCode) else str(code) for code in codes]
    unknown = sorted(v for v in set(values) if v not in REGISTERED_CODES)
    if unknown:
        prefix = f"{owner}: " if owner else ""
        raise ValueError(f"{prefix}unregistered alert code(s): {', '.join(unknown)}")
    return sorted(set(values))
