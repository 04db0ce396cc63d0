"""
MedSafety Drug Knowledge Base
Resolves free-text drug names to canonical entries carrying effect tags and ACB scores

Resolution runs an ordered chain of resolver strategies; the first strategy
that returns a match wins. Every strategy scans the table in declaration
order, so results are reproducible for a given table.
"""

import logging
import re
from functools import lru_cache
from types import MappingProxyType
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

from medsafety.schemas import DrugResolution
from medsafety.knowledge.drug_tables import DRUG_EFFECTS, ACB_SCORES
from medsafety.knowledge.effects_vocabulary import (
    AliasCallback, AliasUsageLogger, validate_effects
)

logger = logging.getLogger(__name__)

UnknownDrugCallback = Callable[[str, str], None]

# Names this short are not reported as unknown
MIN_REPORTABLE_LENGTH = 3


class DrugEffectRecord(BaseModel):
    """Effect tags and anticholinergic burden for one canonical drug"""
    model_config = ConfigDict(frozen=True)

    effects: FrozenSet[str] = frozenset()
    acb_score: int = Field(0, ge=0, le=3)


def normalize_drug_name(name) -> str:
    """Lowercase, trim and collapse internal whitespace"""
    if name is None:
        return ""
    return " ".join(str(name).lower().split())


# =============================================================================
# Resolver Strategies
# =============================================================================

_SPLIT_PATTERN = re.compile(r"[\s,;()/\[\]\-+]+")
_NUMERIC_TOKEN = re.compile(r"^\d+(?:\.\d+)?[a-z%µ]*$")
_FREQUENCY_TOKEN = re.compile(r"^q\d+h?$")

_STRIPPABLE_WORDS = frozenset({
    # units
    "mg", "mcg", "µg", "g", "ml", "hr", "unit", "units", "iu", "meq",
    # release / formulation
    "er", "xr", "sr", "cr", "ir", "la", "dr", "xl", "ec", "odt",
    "extended", "delayed", "immediate", "sustained", "release",
    "tablet", "tablets", "tab", "tabs", "capsule", "capsules", "cap", "caps",
    "solution", "suspension", "injection", "inj", "patch", "cream", "gel",
    # route / frequency
    "oral", "po", "iv", "im", "sl", "daily", "bid", "tid", "qid", "qhs", "hs",
    "prn", "qam", "qpm", "once", "twice",
    # salts
    "hcl", "hydrochloride", "sodium", "potassium", "tartrate", "succinate",
    "besylate", "maleate", "mesylate", "sulfate", "citrate",
})


def _tokens(query: str) -> List[str]:
    return [t for t in _SPLIT_PATTERN.split(query) if t]


class NameResolver:
    """Base resolver strategy: returns a canonical table name or None"""

    strategy = "base"

    def resolve(self, query: str, table: Mapping[str, Any]) -> Optional[str]:
        raise NotImplementedError("Subclasses must implement resolve()")


class ExactNameResolver(NameResolver):
    """Case-insensitive exact match on the canonical name"""

    strategy = "exact"

    def resolve(self, query, table):
        return query if query in table else None


class SuffixStrippedResolver(NameResolver):
    """Exact match after dropping strength, unit, formulation, frequency and salt tokens"""

    strategy = "suffix_stripped"

    @staticmethod
    def strip(query: str) -> str:
        kept = [
            token for token in _tokens(query)
            if token not in _STRIPPABLE_WORDS
            and not _NUMERIC_TOKEN.match(token)
            and not _FREQUENCY_TOKEN.match(token)
        ]
        return " ".join(kept)

    def resolve(self, query, table):
        stripped = self.strip(query)
        if stripped and stripped != query and stripped in table:
            return stripped
        return None


class WordPrefixResolver(NameResolver):
    """First table entry equal to a word of the input, else the first entry the input prefixes"""

    strategy = "word_prefix"

    def __init__(self, min_prefix_length: int = 4):
        self.min_prefix_length = min_prefix_length

    def resolve(self, query, table):
        words = set(_tokens(query))
        for name in table:
            if name in words:
                return name
        if len(query) >= self.min_prefix_length:
            for name in table:
                if name.startswith(query):
                    return name
        return None


class SubstringResolver(NameResolver):
    """First table entry contained in the input, or containing it"""

    strategy = "substring"

    def __init__(self, min_query_length: int = 4):
        self.min_query_length = min_query_length

    def resolve(self, query, table):
        if len(query) < self.min_query_length:
            return None
        for name in table:
            if name in query or query in name:
                return name
        return None


def default_resolvers() -> List[NameResolver]:
    """Resolution chain: exact -> suffix-stripped -> word/prefix -> substring"""
    return [
        ExactNameResolver(),
        SuffixStrippedResolver(),
        WordPrefixResolver(),
        SubstringResolver(),
    ]


# =============================================================================
# Knowledge Base
# =============================================================================

class DrugKnowledgeBase:
    """
    Read-only drug -> (effects, ACB score) lookup

    Tables are validated against the effect vocabulary at construction;
    an unknown tag or out-of-range score raises ValueError.
    """

    def __init__(
        self,
        drug_effects: Mapping[str, Iterable[str]] = DRUG_EFFECTS,
        acb_scores: Mapping[str, int] = ACB_SCORES,
        resolvers: Optional[Sequence[NameResolver]] = None,
        on_alias: Optional[AliasCallback] = None
    ):
        effects_by_name: Dict[str, FrozenSet[str]] = {}
        scores_by_name: Dict[str, int] = {}

        for raw_name, tags in drug_effects.items():
            name = normalize_drug_name(raw_name)
            tags = list(tags)
            if any(not isinstance(t, str) or not t.strip() for t in tags):
                raise ValueError(f"Drug '{raw_name}' has a blank or non-string effect tag")
            result = validate_effects(tags, on_alias)
            if not result.valid:
                raise ValueError(f"Drug '{raw_name}' has unknown effect tag(s): {', '.join(result.invalid)}")
            effects_by_name[name] = frozenset(result.normalized)

        for raw_name, score in acb_scores.items():
            if isinstance(score, bool) or not isinstance(score, int) or not 0 <= score <= 3:
                raise ValueError(f"ACB score for '{raw_name}' must be an integer 0-3, got {score!r}")
            scores_by_name[normalize_drug_name(raw_name)] = score

        # Effect-table order first, then ACB-only entries
        ordered = list(effects_by_name) + [n for n in scores_by_name if n not in effects_by_name]
        self._table = MappingProxyType({
            name: DrugEffectRecord(
                effects=effects_by_name.get(name, frozenset()),
                acb_score=scores_by_name.get(name, 0)
            )
            for name in ordered
        })
        self.resolvers: List[NameResolver] = list(resolvers) if resolvers is not None else default_resolvers()

        logger.info(f"Loaded drug knowledge base with {len(self._table)} drugs")

    @property
    def table(self) -> Mapping[str, DrugEffectRecord]:
        return self._table

    def drug_names(self) -> List[str]:
        """Canonical names in table order"""
        return list(self._table)

    def resolve(self, drug_name, table: Optional[Mapping[str, Any]] = None) -> Optional[DrugResolution]:
        """
        Run the resolver chain; None if no strategy matched

        ``table`` resolves against another name-keyed table (e.g. the PIM
        list) with the same strategies; it defaults to the effect table.
        """
        query = normalize_drug_name(drug_name)
        if not query:
            return None
        target = self._table if table is None else table
        for resolver in self.resolvers:
            match = resolver.resolve(query, target)
            if match is not None:
                return DrugResolution(query=query, canonical_name=match, strategy=resolver.strategy)
        return None

    def knows(self, drug_name) -> bool:
        return self.resolve(drug_name) is not None

    def record_for(self, drug_name) -> Optional[DrugEffectRecord]:
        resolution = self.resolve(drug_name)
        return self._table[resolution.canonical_name] if resolution else None

    def effects_of(
        self,
        drug_name,
        source: str = "",
        on_unknown: Optional[UnknownDrugCallback] = None
    ) -> FrozenSet[str]:
        """
        Effect tags for a drug name

        Unresolved names give an empty set and, when long enough to be a
        real name, are reported through on_unknown(drug_name, source).
        """
        record = self.record_for(drug_name)
        if record is not None:
            return record.effects

        query = normalize_drug_name(drug_name)
        if on_unknown is not None and len(query) >= MIN_REPORTABLE_LENGTH:
            on_unknown(query, source)
        return frozenset()

    def acb_of(self, drug_name) -> int:
        """Anticholinergic burden score 0-3; 0 for unresolved names"""
        record = self.record_for(drug_name)
        return record.acb_score if record else 0

    def stats(self) -> Dict[str, object]:
        """Table statistics for health and validation reporting"""
        effect_counts: Dict[str, int] = {}
        for record in self._table.values():
            for tag in record.effects:
                effect_counts[tag] = effect_counts.get(tag, 0) + 1
        return {
            "total_drugs": len(self._table),
            "with_effects": len([r for r in self._table.values() if r.effects]),
            "with_acb_score": len([r for r in self._table.values() if r.acb_score > 0]),
            "effect_counts": dict(sorted(effect_counts.items())),
        }


@lru_cache(maxsize=1)
def default_knowledge_base() -> DrugKnowledgeBase:
    """Process-wide knowledge base built from the bundled tables"""
    return DrugKnowledgeBase(on_alias=AliasUsageLogger())
