#!/usr/bin/env python3
"""
MedSafety - Knowledge Table Validation Script
Checks drug effect tags, ACB scores, condition groupers and the alert code
registry before a release
"""

import sys
import logging
from pathlib import Path

# Add parent directory to path to import medsafety modules
sys.path.insert(0, str(Path(__file__).parent.parent))

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def check_drug_tables():
    """Validate effect tags and ACB scores; report deprecated aliases"""
    logger.info("\n" + "="*60)
    logger.info("Checking drug effect and ACB tables")
    logger.info("="*60)

    try:
        from medsafety.knowledge.drug_knowledge import DrugKnowledgeBase
        from medsafety.knowledge.effects_vocabulary import AliasUsageLogger

        aliases = AliasUsageLogger()
        knowledge = DrugKnowledgeBase(on_alias=aliases)
        stats = knowledge.stats()

        logger.info(f"Drugs loaded: {stats['total_drugs']}")
        logger.info(f"With effect tags: {stats['with_effects']}")
        logger.info(f"With ACB score > 0: {stats['with_acb_score']}")
        for tag, count in stats["effect_counts"].items():
            logger.info(f"  - {tag:28} | {count}")

        if aliases.seen:
            logger.warning(f"Tables still use deprecated aliases: {', '.join(sorted(aliases.seen))}")
        return True
    except ValueError as e:
        logger.error(f"Drug table validation failed: {e}")
        return False


def check_pim_table():
    """Every Beers PIM entry needs a known severity and a reason"""
    logger.info("\n" + "="*60)
    logger.info("Checking Beers PIM table")
    logger.info("="*60)

    from medsafety.knowledge.drug_tables import PIM_DATABASE

    problems = []
    for drug, entry in PIM_DATABASE.items():
        if entry.get("severity") not in ("AVOID", "CAUTION", "AVOID_HTN"):
            problems.append(f"{drug}: unknown severity {entry.get('severity')!r}")
        if not entry.get("reason"):
            problems.append(f"{drug}: missing reason")

    for problem in problems:
        logger.error(f"  - {problem}")
    logger.info(f"PIM entries: {len(PIM_DATABASE)}, problems: {len(problems)}")
    return not problems


def check_condition_groupers():
    """Build the classifier and probe every grouper prefix"""
    logger.info("\n" + "="*60)
    logger.info("Checking condition groupers")
    logger.info("="*60)

    try:
        from medsafety.knowledge.conditions import ConditionClassifier

        classifier = ConditionClassifier()
        missing = []
        for key in classifier.condition_keys:
            grouper = classifier.grouper(key)
            for prefix in grouper.code_prefixes:
                if key not in classifier.derive_conditions([prefix]):
                    missing.append(f"{key}: prefix {prefix} does not derive its own key")
            logger.info(f"  - {key:32} | {len(grouper.code_prefixes)} prefixes | {len(grouper.avoid_effects)} effects")

        for problem in missing:
            logger.error(f"  - {problem}")
        return not missing
    except ValueError as e:
        logger.error(f"Condition grouper validation failed: {e}")
        return False


def check_alert_codes():
    """Every rule module may only declare registered alert codes"""
    logger.info("\n" + "="*60)
    logger.info("Checking rule module alert codes")
    logger.info("="*60)

    from medsafety.alert_codes import validate_alert_codes
    from medsafety.modules.clinical_rules import default_rules

    ok = True
    for rule in default_rules():
        try:
            codes = validate_alert_codes(rule.alert_codes, owner=rule.rule_id)
            logger.info(f"  - {rule.rule_id:16} | {len(codes)} codes")
        except ValueError as e:
            logger.error(f"  - {e}")
            ok = False

    if ok:
        from medsafety.modules.safety_engine import MedicationSafetyEngine

        try:
            engine = MedicationSafetyEngine(rules=default_rules())
            logger.info(f"Engine built with {len(engine.rules)} rule modules")
        except ValueError as e:
            logger.error(f"  - Engine construction failed: {e}")
            ok = False
    return ok


def run_all_checks():
    """Run all knowledge checks"""
    logger.info("="*60)
    logger.info("MedSafety - Knowledge Table Validation")
    logger.info("="*60)

    results = {
        "drug_tables": check_drug_tables(),
        "pim_table": check_pim_table(),
        "condition_groupers": check_condition_groupers(),
        "alert_codes": check_alert_codes()
    }

    logger.info("\n" + "="*60)
    logger.info("Validation Summary")
    logger.info("="*60)

    for check_name, result in results.items():
        status = "PASS" if result else "FAIL"
        logger.info(f"{check_name:20} : {status}")

    if all(results.values()):
        logger.info("\nAll knowledge checks passed")
        return 0
    else:
        logger.info("\nSome knowledge checks failed")
        return 1


if __name__ == "__main__":
    sys.exit(run_all_checks())
