"""
Unknown Drug Recorder Service

Records medication names the knowledge base could not resolve so they can be
reviewed and promoted into the drug tables. Recording is advisory: it never
changes an evaluation result and storage failures are logged, not raised.
"""

import json
import logging
import threading
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

# Supplements and vitamins are never recorded
SKIP_TERMS: Tuple[str, ...] = (
    "vitamin", "calcium", "magnesium", "iron", "zinc", "fish oil",
    "omega", "probiotic", "fiber", "d3", "b12", "b6", "folic",
)


class UnknownDrugEntry(BaseModel):
    """One unresolved drug name, recorded once per (drug, context)"""
    drug: str
    context: str
    timestamp: str
    patient_age: Optional[float] = None
    conditions: List[str] = Field(default_factory=list)


# =============================================================================
# Stores
# =============================================================================

class InMemoryUnknownDrugStore:
    """Process-local store, used in tests and when file logging is disabled"""

    def __init__(self):
        self._entries: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def append_if_absent(self, entry: UnknownDrugEntry) -> bool:
        with self._lock:
            if any(e["drug"] == entry.drug and e["context"] == entry.context for e in self._entries):
                return False
            self._entries.append(entry.model_dump())
            return True

    def load(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [dict(e) for e in self._entries]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class JsonFileUnknownDrugStore:
    """
    JSON-array file store

    Appends use read-modify-write under a lock, so writers in one process
    are serialized; concurrent processes may still lose updates.
    """

    def __init__(self, path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read(self) -> List[Dict[str, Any]]:
        if not self.path.exists():
            return []
        content = self.path.read_text(encoding="utf-8").strip()
        if not content:
            return []
        data = json.loads(content)
        if not isinstance(data, list):
            raise ValueError(f"{self.path} does not contain a JSON array")
        return data

    def _write(self, entries: List[Dict[str, Any]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(entries, indent=2), encoding="utf-8")

    def append_if_absent(self, entry: UnknownDrugEntry) -> bool:
        """Raises OSError or ValueError when the log cannot be read or written"""
        with self._lock:
            existing = self._read()
            if any(e.get("drug") == entry.drug and e.get("context") == entry.context for e in existing):
                return False
            existing.append(entry.model_dump())
            self._write(existing)
            return True

    def load(self) -> List[Dict[str, Any]]:
        with self._lock:
            try:
                return self._read()
            except (OSError, ValueError) as e:
                logger.warning(f"Failed to read unknown drug log {self.path}: {e}")
                return []

    def clear(self) -> None:
        with self._lock:
            try:
                self._write([])
            except OSError as e:
                logger.warning(f"Failed to clear unknown drug log {self.path}: {e}")


# =============================================================================
# Recorder
# =============================================================================

class UnknownDrugRecorder:
    """
    Deduplicating front end over an unknown-drug store

    Once the store has accepted or already holds a (drug, context) pair, the
    recorder stops sending it; pairs whose write failed are tried again.
    The store itself rejects pairs already persisted by earlier sessions.
    """

    def __init__(
        self,
        store=None,
        skip_terms: Iterable[str] = SKIP_TERMS,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)
    ):
        self.store = store if store is not None else InMemoryUnknownDrugStore()
        self.skip_terms = tuple(t.lower() for t in skip_terms)
        self.clock = clock
        self._seen: Set[Tuple[str, str]] = set()
        self._lock = threading.Lock()

    def record(
        self,
        drug_name: Optional[str],
        context: str,
        patient_context: Optional[Dict[str, Any]] = None
    ) -> bool:
        """
        Record an unresolved drug name

        Args:
            drug_name: Name the knowledge base could not resolve
            context: Module that attempted the lookup
            patient_context: Optional {"age", "conditions"} to help later classification

        Returns:
            True if a new entry was written to the store
        """
        name = (drug_name or "").strip().lower()
        if not name:
            return False

        key = (name, context)
        with self._lock:
            if key in self._seen:
                return False

        if any(term in name for term in self.skip_terms):
            return False

        patient_context = patient_context or {}
        entry = UnknownDrugEntry(
            drug=name,
            context=context,
            timestamp=self.clock().isoformat(),
            patient_age=patient_context.get("age"),
            conditions=list(patient_context.get("conditions") or [])
        )
        try:
            written = self.store.append_if_absent(entry)
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to record unknown drug '{name}' from {context}: {e}")
            return False

        # Only pairs the store holds are skipped later; failed writes retry
        with self._lock:
            self._seen.add(key)
        if written:
            logger.info(f"Recorded unknown drug '{name}' from {context}")
        return written

    def entries(self) -> List[Dict[str, Any]]:
        return self.store.load()

    def summary(self) -> Dict[str, Any]:
        """Totals by context and the unique drug names, for periodic review"""
        entries = self.entries()
        by_context: Dict[str, int] = {}
        for entry in entries:
            context = entry.get("context", "")
            by_context[context] = by_context.get(context, 0) + 1
        return {
            "total": len(entries),
            "by_context": by_context,
            "drugs": list(dict.fromkeys(e.get("drug", "") for e in entries)),
        }

    def clear(self) -> None:
        """Empty the store after review and forget pairs seen this session"""
        self.store.clear()
        with self._lock:
            self._seen.clear()


@lru_cache(maxsize=None)
def get_unknown_drug_recorder(path: str) -> UnknownDrugRecorder:
    """Process-wide recorder for a JSON log path"""
    return UnknownDrugRecorder(store=JsonFileUnknownDrugStore(path))
