"""
Entity store used by the engine.

Records are addressed by business code. Writes go through ``save`` which
applies a list of mutations atomically after re-checking guards and record
versions inside one critical section.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from operator import attrgetter
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Type, TypeVar, Union

from pydantic import TypeAdapter

from .errors import ConflictError, NotFoundError, StoreFailure
from .models import ENTITY_TYPES

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Put:
    """Insert (version 0) or update (current version) a record."""
    entity: Any


@dataclass(frozen=True)
class Delete:
    entity_type: type
    code: str
    expected_version: Optional[int] = None


Mutation = Union[Put, Delete]


class StoreReader:
    """Read access to committed rows, handed to guards while the store is locked."""

    def __init__(self, tables: Dict[type, Dict[str, Any]]):
        self._tables = tables

    def get(self, entity_type: Type[T], code: str) -> Optional[T]:
        return self._tables.get(entity_type, {}).get(code)

    def rows(self, entity_type: Type[T], predicate: Optional[Callable[[T], bool]] = None) -> List[T]:
        values = self._tables.get(entity_type, {}).values()
        if predicate is None:
            return list(values)
        return [row for row in values if predicate(row)]


@dataclass(frozen=True)
class Guard:
    """Precondition re-evaluated against committed state right before a commit."""
    description: str
    check: Callable[[StoreReader], bool]
    blocking: Tuple[str, ...] = ()


class InMemoryEntityStore:
    """
    Thread-safe in-memory entity store.

    Reads hand out deep copies so callers never alias committed rows.
    """

    def __init__(self) -> None:
        self._tables: Dict[type, Dict[str, Any]] = {}
        self._lock = threading.RLock()
        self._sequences: Dict[str, int] = {}

    # -- reads -----------------------------------------------------------------

    def find(self, entity_type: Type[T], code: str) -> Optional[T]:
        with self._lock:
            row = self._tables.get(entity_type, {}).get(code)
            return copy.deepcopy(row) if row is not None else None

    def get_by_code(self, entity_type: Type[T], code: str) -> T:
        row = self.find(entity_type, code)
        if row is None:
            raise NotFoundError(entity_type.__name__, code)
        return row

    def query(
        self,
        entity_type: Type[T],
        predicate: Optional[Callable[[T], bool]] = None,
        page: int = 1,
        page_size: Optional[int] = None,
        sort_key: Optional[Callable[[T], Any]] = None,
    ) -> Tuple[List[T], int]:
        """Return one page of matching rows and the total number of matches."""
        with self._lock:
            rows = [
                copy.deepcopy(row)
                for row in self._tables.get(entity_type, {}).values()
                if predicate is None or predicate(row)
            ]
        rows.sort(key=sort_key or attrgetter("code"))
        total = len(rows)
        if page_size:
            start = (max(page, 1) - 1) * page_size
            rows = rows[start:start + page_size]
        return rows, total

    def list(
        self,
        entity_type: Type[T],
        predicate: Optional[Callable[[T], bool]] = None,
        sort_key: Optional[Callable[[T], Any]] = None,
    ) -> List[T]:
        return self.query(entity_type, predicate, sort_key=sort_key)[0]

    def snapshot(self, *entity_types: type) -> Dict[type, List[Any]]:
        """Copy several tables under a single lock acquisition."""
        with self._lock:
            return {
                entity_type: [copy.deepcopy(row) for row in self._tables.get(entity_type, {}).values()]
                for entity_type in entity_types
            }

    # -- codes -----------------------------------------------------------------

    def generate_code(self, prefix: str) -> str:
        with self._lock:
            number = self._sequences.get(prefix, 0)
            while True:
                number += 1
                code = f"{prefix}_{number:05d}"
                if not any(code in table for table in self._tables.values()):
                    break
            self._sequences[prefix] = number
            return code

    # -- writes ----------------------------------------------------------------

    def save(self, mutations: Sequence[Mutation], guards: Iterable[Guard] = ()) -> List[Any]:
        """
        Apply ``mutations`` as one transaction.

        Raises:
            ConflictError: a guard failed or a record version moved on.
            StoreFailure: the commit could not be made durable; nothing is applied.
        """
        with self._lock:
            reader = StoreReader(self._tables)
            for guard in guards:
                if not guard.check(reader):
                    logger.info("Commit rejected by guard: %s", guard.description)
                    raise ConflictError(
                        f"Precondition no longer holds: {guard.description}",
                        blocking=guard.blocking,
                    )
            staged = self._stage(mutations)

            previous = {entity_type: dict(rows) for entity_type, rows in self._tables.items()}
            saved: List[Any] = []
            for entity_type, code, row in staged:
                table = self._tables.setdefault(entity_type, {})
                if row is None:
                    table.pop(code, None)
                else:
                    table[code] = row
                    saved.append(row)
            try:
                self._persist()
            except OSError as exc:
                self._tables = previous
                logger.error("Failed to persist commit, rolled back: %s", exc)
                raise StoreFailure(f"Could not persist changes: {exc}") from exc
            return [copy.deepcopy(row) for row in saved]

    def _stage(self, mutations: Sequence[Mutation]) -> List[Tuple[type, str, Any]]:
        staged: List[Tuple[type, str, Any]] = []
        seen = set()
        for mutation in mutations:
            if isinstance(mutation, Put):
                entity_type = type(mutation.entity)
                code = mutation.entity.code
            else:
                entity_type = mutation.entity_type
                code = mutation.code
            key = (entity_type, code)
            if key in seen:
                raise ValueError(f"{entity_type.__name__} '{code}' appears twice in one commit")
            seen.add(key)

            current = self._tables.get(entity_type, {}).get(code)
            name = entity_type.__name__
            if isinstance(mutation, Put):
                expected = mutation.entity.version
                if current is None and expected != 0:
                    raise ConflictError(f"{name} '{code}' was removed concurrently", blocking=[code])
                if current is not None and expected != current.version:
                    raise ConflictError(f"{name} '{code}' was modified concurrently", blocking=[code])
                row = replace(copy.deepcopy(mutation.entity), version=expected + 1)
                staged.append((entity_type, code, row))
            else:
                if current is None:
                    raise ConflictError(f"{name} '{code}' was removed concurrently", blocking=[code])
                if mutation.expected_version is not None and mutation.expected_version != current.version:
                    raise ConflictError(f"{name} '{code}' was modified concurrently", blocking=[code])
                staged.append((entity_type, code, None))
        return staged

    def _persist(self) -> None:
        """Hook for durable subclasses; the in-memory store keeps nothing on disk."""


_ADAPTERS = {name: TypeAdapter(cls) for name, cls in ENTITY_TYPES.items()}


class JsonEntityStore(InMemoryEntityStore):
    """Entity store that mirrors every commit to a JSON file."""

    def __init__(self, path: Path) -> None:
        super().__init__()
        self.path = Path(path)
        if self.path.exists():
            self._load()

    def _load(self) -> None:
        data = json.loads(self.path.read_text(encoding="utf-8"))
        tables = data.get("tables", {})
        for name, rows in tables.items():
            entity_type = ENTITY_TYPES.get(name)
            if entity_type is None:
                logger.warning("Ignoring unknown table '%s' in %s", name, self.path)
                continue
            adapter = _ADAPTERS[name]
            self._tables[entity_type] = {
                row["code"]: adapter.validate_python(row) for row in rows
            }
        logger.info("Loaded entity store from %s", self.path)

    def _persist(self) -> None:
        payload = {
            "saved_at": datetime.now(timezone.utc).isoformat(),
            "tables": {
                entity_type.__name__: [
                    _ADAPTERS[entity_type.__name__].dump_python(row, mode="json")
                    for row in sorted(rows.values(), key=attrgetter("code"))
                ]
                for entity_type, rows in self._tables.items()
            },
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        temp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        os.replace(temp_path, self.path)


EntityStore = InMemoryEntityStore


__all__ = [
    "Delete",
    "EntityStore",
    "Guard",
    "InMemoryEntityStore",
    "JsonEntityStore",
    "Mutation",
    "Put",
    "StoreReader",
]
