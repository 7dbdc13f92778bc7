"""
sql.py — Document store on SQLAlchemy (async).

Every logical collection lives in the single ``documents`` table keyed by
(collection, doc_id) with a JSON body. A ``WriteBatch`` is one database
transaction, which gives the all-or-nothing-per-batch guarantee the
engine relies on.

JSON has no timestamp type, so datetimes are tagged on the way in and
restored on the way out. The tag carries the UTC ISO string plus integer
epoch microseconds; range filters on datetimes compare the latter.

═══════════════════════════════════════════════════════════════════════════
FILTER PUSH-DOWN
═══════════════════════════════════════════════════════════════════════════

    Filter                        SQL predicate
    ───────────────────────────   ─────────────────────────────────────
    == str / in [str, …]          body[field] as string
    == bool                       body[field] as boolean
    == / in / range on number     body[field] as float
    == / in / range on datetime   body[field]["$epochUs"] as float
    anything else                 evaluated in Python only

Every fetched row is re-checked with ``Filter.matches``, so a SQL
predicate only narrows what is read. ``limit`` is applied in SQL and
topped up page by page when the re-check drops rows.
"""

from __future__ import annotations

import logging
import operator
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.sql.elements import ColumnElement

from crowdwatch.app.core.database import DocumentRow, close_db, init_db, session_factory
from crowdwatch.app.store.base import (
    Document,
    DocumentStore,
    Filter,
    WriteOp,
    matches_all,
)

logger = logging.getLogger(__name__)

_DATETIME_TAG = "$datetime"
_EPOCH_TAG = "$epochUs"
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_RANGE_OPERATORS: Dict[str, Callable[[Any, Any], Any]] = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def epoch_micros(value: datetime) -> int:
    """Whole microseconds since the Unix epoch; naive values are UTC."""
    return (_as_utc(value) - _EPOCH) // timedelta(microseconds=1)


def encode_value(value: Any) -> Any:
    """Make ``value`` JSON-safe, tagging datetimes."""
    if isinstance(value, datetime):
        return {_DATETIME_TAG: _as_utc(value).isoformat(), _EPOCH_TAG: epoch_micros(value)}
    if isinstance(value, dict):
        return {k: encode_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [encode_value(v) for v in value]
    return value


def decode_value(value: Any) -> Any:
    """Inverse of ``encode_value``."""
    if isinstance(value, dict):
        if _DATETIME_TAG in value and set(value) <= {_DATETIME_TAG, _EPOCH_TAG}:
            return datetime.fromisoformat(value[_DATETIME_TAG])
        return {k: decode_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [decode_value(v) for v in value]
    return value


# ═══════════════════════════════════════════════════════════════════════════
# Filter translation
# ═══════════════════════════════════════════════════════════════════════════

def _value_kind(value: Any) -> Optional[str]:
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, datetime):
        return "datetime"
    return None


def _field_expression(field_name: str, kind: str) -> ColumnElement:
    if kind == "datetime":
        return DocumentRow.body[(field_name, _EPOCH_TAG)].as_float()
    element = DocumentRow.body[field_name]
    if kind == "boolean":
        return element.as_boolean()
    if kind == "number":
        return element.as_float()
    return element.as_string()


def _bind(value: Any, kind: str) -> Any:
    return epoch_micros(value) if kind == "datetime" else value


def filter_clause(flt: Filter) -> Optional[ColumnElement]:
    """SQL predicate narrowing rows for ``flt``, or None to filter in Python."""
    if flt.op == "in":
        values = list(flt.value)
        kinds = {_value_kind(v) for v in values}
        if len(kinds) != 1 or kinds & {None, "boolean"}:
            return None
        kind = kinds.pop()
        return _field_expression(flt.field, kind).in_([_bind(v, kind) for v in values])

    kind = _value_kind(flt.value)
    if kind is None:
        return None
    if flt.op == "==":
        return _field_expression(flt.field, kind) == _bind(flt.value, kind)
    if flt.op in _RANGE_OPERATORS and kind in ("number", "datetime"):
        compare = _RANGE_OPERATORS[flt.op]
        return compare(_field_expression(flt.field, kind), _bind(flt.value, kind))
    return None


# ═══════════════════════════════════════════════════════════════════════════
# Store
# ═══════════════════════════════════════════════════════════════════════════

class SqlDocumentStore(DocumentStore):
    """Document store over any SQLAlchemy async engine."""

    def __init__(self, engine: AsyncEngine):
        self._engine = engine
        self._sessions = session_factory(engine)

    async def initialise(self) -> None:
        await init_db(self._engine)

    async def close(self) -> None:
        await close_db(self._engine)

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        async with self._sessions() as session:
            row = await session.get(DocumentRow, (collection, doc_id))
            if row is None:
                return None
            return Document(row.doc_id, decode_value(row.body))

    async def query(
        self,
        collection: str,
        filters: Iterable[Filter] = (),
        *,
        limit: Optional[int] = None,
    ) -> List[Document]:
        filters = list(filters)
        clauses = [DocumentRow.collection == collection]
        for flt in filters:
            clause = filter_clause(flt)
            if clause is not None:
                clauses.append(clause)

        results: List[Document] = []
        after: Optional[str] = None
        async with self._sessions() as session:
            while True:
                stmt = select(DocumentRow).where(*clauses).order_by(DocumentRow.doc_id)
                if after is not None:
                    stmt = stmt.where(DocumentRow.doc_id > after)
                wanted = None if limit is None else limit - len(results)
                if wanted is not None:
                    stmt = stmt.limit(wanted)
                rows = (await session.execute(stmt)).scalars().all()

                for row in rows:
                    data = decode_value(row.body)
                    if matches_all(data, filters):
                        results.append(Document(row.doc_id, data))

                if wanted is None or len(rows) < wanted or len(results) >= limit:
                    return results
                after = rows[-1].doc_id

    async def _apply(self, ops: List[WriteOp]) -> None:
        now = datetime.now(timezone.utc)
        async with self._sessions.begin() as session:
            for op in ops:
                row = await session.get(DocumentRow, (op.collection, op.doc_id))
                if op.kind == "set":
                    body = encode_value(op.data)
                    if row is None:
                        session.add(DocumentRow(
                            collection=op.collection,
                            doc_id=op.doc_id,
                            body=body,
                            updated_at=now,
                        ))
                    else:
                        row.body = {**row.body, **body} if op.merge else body
                        row.updated_at = now
                elif op.kind == "update":
                    if row is None:
                        raise KeyError(f"{op.collection}/{op.doc_id} does not exist")
                    row.body = {**row.body, **encode_value(op.data)}
                    row.updated_at = now
                elif op.kind == "delete":
                    if row is not None:
                        await session.delete(row)
                else:
                    raise ValueError(f"unknown write kind {op.kind}")
                await session.flush()
        logger.debug("Committed batch of %d writes", len(ops))
