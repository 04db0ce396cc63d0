"""
MedSafety - Medication Safety API Routes
Patient evaluation, toxidrome suggestion and knowledge lookup endpoints
"""

import logging
from functools import lru_cache
from typing import Any, Dict, List

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status

from medsafety.schemas import EvaluationResult, ToxidromeMatch, ToxidromeRequest
from medsafety.modules.safety_engine import MedicationSafetyEngine, build_engine
from medsafety.modules.toxidromes import identify_toxidromes

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/safety", tags=["Medication Safety"])


@lru_cache(maxsize=1)
def get_engine() -> MedicationSafetyEngine:
    """Process-wide engine built from settings"""
    return build_engine()


@router.post("/evaluate", response_model=EvaluationResult)
async def evaluate_patient_state(
    patient_state: Dict[str, Any] = Body(..., description="Patient state snapshot"),
    engine: MedicationSafetyEngine = Depends(get_engine)
):
    """
    Evaluate a patient snapshot against every enabled rule module

    Malformed fields are reported as CRITICAL validation alerts in the
    response body rather than as a request error.
    """
    try:
        medications = patient_state.get("current_medications")
        count = len(medications) if isinstance(medications, list) else 0
        logger.info(f"Evaluating patient state with {count} medications")

        result = engine.evaluate(patient_state)

        logger.info(
            f"Evaluation complete: {result.alert_count} alerts "
            f"({result.critical_count} critical, {result.high_count} high)"
        )
        return result

    except Exception as e:
        logger.error(f"Error evaluating patient state: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Evaluation failed: {str(e)}"
        )


@router.post("/toxidromes", response_model=List[ToxidromeMatch])
async def suggest_toxidromes(request: ToxidromeRequest):
    """
    Suggest toxidromes from a symptom list

    Examples:
    - ["miosis", "respiratory_depression", "decreased LOC"]
    - ["tachycardia", "dry_skin", "mydriasis"]
    """
    try:
        matches = identify_toxidromes(request.symptoms)
        logger.info(f"Toxidrome search: {len(request.symptoms)} symptoms, {len(matches)} matches")
        return matches
    except Exception as e:
        logger.error(f"Toxidrome identification failed: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Toxidrome identification failed: {str(e)}"
        )


@router.get("/conditions/derive")
async def derive_conditions(
    codes: List[str] = Query(..., description="ICD-10 codes, dotted or undotted"),
    engine: MedicationSafetyEngine = Depends(get_engine)
):
    """Derive condition keys and their avoid-effects from diagnosis codes"""
    try:
        profile = engine.classifier.contraindicated_effects(codes)
        return {
            "codes": codes,
            "condition_keys": profile.condition_keys,
            "avoid_effects": profile.avoid_effects,
            "by_condition": {
                key: {
                    "avoid_effects": sorted(grouper.avoid_effects),
                    "reason": grouper.reason,
                    "note": grouper.note,
                }
                for key, grouper in profile.by_condition.items()
            },
        }
    except Exception as e:
        logger.error(f"Condition derivation failed: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Condition derivation failed: {str(e)}"
        )


@router.get("/unknown-drugs/summary")
async def unknown_drugs_summary(engine: MedicationSafetyEngine = Depends(get_engine)):
    """Unresolved drug names recorded for knowledge base review"""
    if engine.recorder is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Unknown drug recording is disabled"
        )
    try:
        return engine.recorder.summary()
    except Exception as e:
        logger.error(f"Failed to get unknown drug summary: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to retrieve summary: {str(e)}"
        )
