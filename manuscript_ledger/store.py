"""
Registry state: the Record Store, the Access Matrix and the global counters.

The stores are purely mechanical key-value maps. Business rules live in
`authorization.py` and `registry.py`; nothing here validates fields.

Persistence writes the whole state as one JSON document through a temporary
file and os.replace, so a commit is either fully on disk or not at all.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Dict, Iterator, List, Optional, Tuple

from pydantic import BaseModel, Field

from manuscript_ledger import __schema__
from manuscript_ledger.models import GrantEntry, ManuscriptRecord

logger = logging.getLogger(__name__)


class RecordStore:
    """
    manuscript_id -> ManuscriptRecord map with an optional undo journal.

    While a journal is open, the first touch of an id stores its prior value
    (None when absent), so rollback costs only the entries a mutation touched.
    Records changed in place must be fetched through `checkout`.
    """

    def __init__(self) -> None:
        self._records: Dict[int, ManuscriptRecord] = {}
        self._undo: Optional[Dict[int, Optional[ManuscriptRecord]]] = None

    def _remember(self, manuscript_id: int) -> None:
        if self._undo is None or manuscript_id in self._undo:
            return
        current = self._records.get(manuscript_id)
        self._undo[manuscript_id] = current.model_copy(deep=True) if current else None

    def begin(self) -> None:
        self._undo = {}

    def commit(self) -> None:
        self._undo = None

    def rollback(self) -> None:
        for manuscript_id, prior in (self._undo or {}).items():
            if prior is None:
                self._records.pop(manuscript_id, None)
            else:
                self._records[manuscript_id] = prior
        self._undo = None

    def get(self, manuscript_id: int) -> Optional[ManuscriptRecord]:
        return self._records.get(manuscript_id)

    def checkout(self, manuscript_id: int) -> Optional[ManuscriptRecord]:
        self._remember(manuscript_id)
        return self._records.get(manuscript_id)

    def put(self, manuscript_id: int, record: ManuscriptRecord) -> None:
        self._remember(manuscript_id)
        self._records[manuscript_id] = record

    def delete(self, manuscript_id: int) -> None:
        self._remember(manuscript_id)
        self._records.pop(manuscript_id, None)

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[ManuscriptRecord]:
        return iter(list(self._records.values()))


class AccessMatrix:
    """Sparse (manuscript_id, viewer) -> bool map. Absent keys read as False."""

    def __init__(self) -> None:
        self._grants: Dict[Tuple[int, str], bool] = {}
        self._undo: Optional[Dict[Tuple[int, str], Optional[bool]]] = None

    def _remember(self, key: Tuple[int, str]) -> None:
        if self._undo is not None and key not in self._undo:
            self._undo[key] = self._grants.get(key)

    def begin(self) -> None:
        self._undo = {}

    def commit(self) -> None:
        self._undo = None

    def rollback(self) -> None:
        for key, prior in (self._undo or {}).items():
            if prior is None:
                self._grants.pop(key, None)
            else:
                self._grants[key] = prior
        self._undo = None

    def get(self, manuscript_id: int, viewer: str) -> bool:
        return self._grants.get((manuscript_id, viewer), False)

    def set(self, manuscript_id: int, viewer: str, granted: bool) -> None:
        self._remember((manuscript_id, viewer))
        self._grants[(manuscript_id, viewer)] = granted

    def delete(self, manuscript_id: int, viewer: str) -> None:
        self._remember((manuscript_id, viewer))
        self._grants.pop((manuscript_id, viewer), None)

    def contains(self, manuscript_id: int, viewer: str) -> bool:
        return (manuscript_id, viewer) in self._grants

    def entries(self) -> List[GrantEntry]:
        return [
            GrantEntry(manuscript_id=mid, viewer=viewer, granted=granted)
            for (mid, viewer), granted in sorted(self._grants.items())
        ]

    def __len__(self) -> int:
        return len(self._grants)


class StateSnapshot(BaseModel):
    """On-disk layout of a committed registry state."""
    schema_version: str = Field(default=__schema__, alias="schema")
    manuscript_sequence: int = 0
    total_storage: int = 0
    records: List[ManuscriptRecord] = Field(default_factory=list)
    grants: List[GrantEntry] = Field(default_factory=list)

    model_config = {"populate_by_name": True}


class RegistryState:
    """Record Store + Access Matrix + global counters, committed together."""

    def __init__(self) -> None:
        self.records = RecordStore()
        self.grants = AccessMatrix()
        self.manuscript_sequence = 0
        self.total_storage = 0
        self._counters: Optional[Tuple[int, int]] = None

    def begin(self) -> None:
        """Open an undo journal; every later change is reversible until commit."""
        self.records.begin()
        self.grants.begin()
        self._counters = (self.manuscript_sequence, self.total_storage)

    def commit(self) -> None:
        self.records.commit()
        self.grants.commit()
        self._counters = None

    def rollback(self) -> None:
        self.records.rollback()
        self.grants.rollback()
        if self._counters is not None:
            self.manuscript_sequence, self.total_storage = self._counters
        self._counters = None

    def snapshot(self) -> StateSnapshot:
        return StateSnapshot(
            manuscript_sequence=self.manuscript_sequence,
            total_storage=self.total_storage,
            records=[r.model_copy(deep=True) for r in sorted(self.records, key=lambda r: r.manuscript_id)],
            grants=self.grants.entries(),
        )

    def restore(self, snap: StateSnapshot) -> None:
        records = RecordStore()
        for r in snap.records:
            records.put(r.manuscript_id, r.model_copy(deep=True))
        grants = AccessMatrix()
        for g in snap.grants:
            grants.set(g.manuscript_id, g.viewer, g.granted)
        self.records = records
        self.grants = grants
        self.manuscript_sequence = snap.manuscript_sequence
        self.total_storage = snap.total_storage

    def save(self, path: str) -> None:
        parent = os.path.dirname(path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        data = self.snapshot().model_dump(by_alias=True)
        tmp = f"{path}.tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, sort_keys=True)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
        logger.debug(f"Registry state committed: {path}")

    @classmethod
    def load(cls, path: str) -> RegistryState:
        state = cls()
        if os.path.exists(path):
            with open(path, "r", encoding="utf-8") as f:
                state.restore(StateSnapshot.model_validate(json.load(f)))
            logger.debug(f"Registry state loaded: {path} ({len(state.records)} records)")
        return state
