"""
Shared fixtures for MedSafety tests
"""

from datetime import date

import pytest

from medsafety.knowledge.conditions import default_classifier
from medsafety.knowledge.drug_knowledge import default_knowledge_base
from medsafety.modules.clinical_rules import RuleContext
from medsafety.modules.safety_engine import MedicationSafetyEngine
from medsafety.services.unknown_drugs import UnknownDrugRecorder

TODAY = date(2026, 1, 15)


@pytest.fixture
def knowledge():
    return default_knowledge_base()


@pytest.fixture
def classifier():
    return default_classifier()


@pytest.fixture
def context(knowledge, classifier):
    """Rule context pinned to a fixed evaluation date"""
    return RuleContext(knowledge=knowledge, classifier=classifier, today=TODAY)


@pytest.fixture
def recorder():
    return UnknownDrugRecorder()


@pytest.fixture
def engine(recorder):
    """Engine with every rule module, a fixed clock and a zero timer"""
    return MedicationSafetyEngine(
        recorder=recorder,
        clock=lambda: TODAY,
        timer=lambda: 0.0
    )
