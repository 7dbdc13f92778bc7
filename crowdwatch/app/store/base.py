"""
base.py — Document store interface consumed by the engine.

The engine treats persistence as a narrow collaborator with document
semantics:

    • single-document get
    • query by equality / range filters, optional limit
    • ``in`` membership filter, bounded to MAX_IN_VALUES values
    • batched multi-document writes, all-or-nothing per batch, bounded
      to MAX_BATCH_WRITES operations

═══════════════════════════════════════════════════════════════════════════
LOGICAL COLLECTIONS
═══════════════════════════════════════════════════════════════════════════

    location_samples     ephemeral client pings, deleted after a grace window
    zones                event configuration, read-only to the engine
    density_readings     one document per zone, id = zone id, merged
    alerts               immutable except ``isActive``
    incidents            external; creation / update events feed dispatch
    notifications        one document per (event, user)
    users                role + isActive + optional fcmToken

Batches do not span each other: two commits are two transactions.
"""

from __future__ import annotations

import operator
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from crowdwatch.app.core.errors import StoreLimitError, ValidationError

# ── Collection names ──
LOCATION_SAMPLES = "location_samples"
ZONES = "zones"
DENSITY_READINGS = "density_readings"
ALERTS = "alerts"
INCIDENTS = "incidents"
NOTIFICATIONS = "notifications"
USERS = "users"

# ── Backend limits ──
MAX_IN_VALUES = 30
MAX_BATCH_WRITES = 500
DEFAULT_BATCH_SIZE = 400


_OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "in": lambda value, options: value in options,
}


@dataclass(frozen=True)
class Filter:
    """A single ``field op value`` predicate."""
    field: str
    op: str
    value: Any

    def __post_init__(self) -> None:
        if self.op not in _OPERATORS:
            raise ValidationError(f"Unsupported filter operator '{self.op}'", field=self.field)
        if self.op == "in":
            size = len(self.value)
            if size > MAX_IN_VALUES:
                raise StoreLimitError("'in' filter values", size, MAX_IN_VALUES)

    def matches(self, data: Dict[str, Any]) -> bool:
        if self.field not in data:
            return False
        candidate = data[self.field]
        if self.op in ("<", "<=", ">", ">="):
            if candidate is None or self.value is None:
                return False
            try:
                return _OPERATORS[self.op](candidate, self.value)
            except TypeError:
                return False
        return _OPERATORS[self.op](candidate, self.value)


def where(field_name: str, op: str, value: Any) -> Filter:
    """Shorthand: ``where("role", "in", roles)``."""
    return Filter(field_name, op, value)


def matches_all(data: Dict[str, Any], filters: Sequence[Filter]) -> bool:
    return all(f.matches(data) for f in filters)


def chunked(items: Sequence[Any], size: int) -> Iterator[Sequence[Any]]:
    """Yield consecutive slices of ``items`` no longer than ``size``."""
    if size < 1:
        raise ValueError("chunk size must be >= 1")
    for start in range(0, len(items), size):
        yield items[start:start + size]


def new_document_id() -> str:
    return uuid.uuid4().hex[:20]


@dataclass
class Document:
    """A stored document: its id plus a shallow copy of its fields."""
    id: str
    data: Dict[str, Any]

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)


# ═══════════════════════════════════════════════════════════════════════════
# Write Batch
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class WriteOp:
    kind: str  # set | update | delete
    collection: str
    doc_id: str
    data: Dict[str, Any] = field(default_factory=dict)
    merge: bool = False


class WriteBatch:
    """
    Accumulates writes and applies them atomically on ``commit()``.

    Adding more than MAX_BATCH_WRITES operations raises StoreLimitError
    immediately, before anything is written.
    """

    def __init__(self, store: "DocumentStore"):
        self._store = store
        self._ops: List[WriteOp] = []
        self._committed = False

    def __len__(self) -> int:
        return len(self._ops)

    def _append(self, op: WriteOp) -> None:
        if self._committed:
            raise RuntimeError("batch already committed")
        if len(self._ops) >= MAX_BATCH_WRITES:
            raise StoreLimitError("batch writes", len(self._ops) + 1, MAX_BATCH_WRITES)
        self._ops.append(op)

    def set(
        self,
        collection: str,
        doc_id: str,
        data: Dict[str, Any],
        *,
        merge: bool = False,
    ) -> "WriteBatch":
        self._append(WriteOp("set", collection, doc_id, dict(data), merge))
        return self

    def create(self, collection: str, data: Dict[str, Any]) -> str:
        """Queue a new document with a generated id; returns the id."""
        doc_id = new_document_id()
        self.set(collection, doc_id, data)
        return doc_id

    def update(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> "WriteBatch":
        self._append(WriteOp("update", collection, doc_id, dict(fields)))
        return self

    def delete(self, collection: str, doc_id: str) -> "WriteBatch":
        self._append(WriteOp("delete", collection, doc_id))
        return self

    async def commit(self) -> int:
        """Apply every queued write in one transaction; returns the op count."""
        if self._committed:
            raise RuntimeError("batch already committed")
        self._committed = True
        if not self._ops:
            return 0
        await self._store._apply(self._ops)
        return len(self._ops)


# ═══════════════════════════════════════════════════════════════════════════
# Store Interface
# ═══════════════════════════════════════════════════════════════════════════

class DocumentStore(ABC):
    """Abstract document store. All methods are coroutines."""

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        ...

    @abstractmethod
    async def query(
        self,
        collection: str,
        filters: Iterable[Filter] = (),
        *,
        limit: Optional[int] = None,
    ) -> List[Document]:
        ...

    @abstractmethod
    async def _apply(self, ops: List[WriteOp]) -> None:
        """Apply ``ops`` atomically."""

    async def ping(self) -> bool:
        await self.query(ZONES, limit=1)
        return True

    async def close(self) -> None:
        return None

    def batch(self) -> WriteBatch:
        return WriteBatch(self)

    async def add(self, collection: str, data: Dict[str, Any], *, doc_id: Optional[str] = None) -> str:
        """Create a single document; returns its id."""
        doc_id = doc_id or new_document_id()
        await self.batch().set(collection, doc_id, data).commit()
        return doc_id

    async def set(
        self,
        collection: str,
        doc_id: str,
        data: Dict[str, Any],
        *,
        merge: bool = False,
    ) -> None:
        await self.batch().set(collection, doc_id, data, merge=merge).commit()

    async def delete_matching(
        self,
        collection: str,
        filters: Sequence[Filter],
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> int:
        """
        Delete every document matching ``filters``, ``batch_size`` at a time.

        Each page is its own batch; a failure part-way leaves earlier pages
        deleted.
        """
        total = 0
        while True:
            page = await self.query(collection, filters, limit=batch_size)
            if not page:
                return total
            batch = self.batch()
            for doc in page:
                batch.delete(collection, doc.id)
            total += await batch.commit()
            if len(page) < batch_size:
                return total


def apply_to_snapshot(
    documents: Dict[Tuple[str, str], Dict[str, Any]],
    ops: Iterable[WriteOp],
) -> Dict[Tuple[str, str], Dict[str, Any]]:
    """
    Apply ``ops`` to a copy of ``documents`` and return the copy.

    Updating a missing document raises KeyError, rejecting the whole batch.
    """
    result = dict(documents)
    for op in ops:
        key = (op.collection, op.doc_id)
        if op.kind == "set":
            if op.merge and key in result:
                result[key] = {**result[key], **op.data}
            else:
                result[key] = dict(op.data)
        elif op.kind == "update":
            if key not in result:
                raise KeyError(f"{op.collection}/{op.doc_id} does not exist")
            result[key] = {**result[key], **op.data}
        elif op.kind == "delete":
            result.pop(key, None)
        else:
            raise ValueError(f"unknown write kind {op.kind}")
    return result
