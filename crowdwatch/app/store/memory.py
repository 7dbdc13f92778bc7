"""
memory.py — In-process document store.

Used by tests and by ``STORE_BACKEND=memory`` local runs. Reads yield to
the event loop once so concurrent coroutines interleave the way they
would against a networked store.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from crowdwatch.app.store.base import (
    Document,
    DocumentStore,
    Filter,
    WriteOp,
    apply_to_snapshot,
    matches_all,
)

logger = logging.getLogger(__name__)


class InMemoryDocumentStore(DocumentStore):
    """Dict-backed store; batches are applied under a lock, all-or-nothing."""

    def __init__(self) -> None:
        self._docs: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self._lock = asyncio.Lock()
        self.commit_count = 0

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        await asyncio.sleep(0)
        data = self._docs.get((collection, doc_id))
        if data is None:
            return None
        return Document(doc_id, copy.deepcopy(data))

    async def query(
        self,
        collection: str,
        filters: Iterable[Filter] = (),
        *,
        limit: Optional[int] = None,
    ) -> List[Document]:
        await asyncio.sleep(0)
        filters = list(filters)
        results: List[Document] = []
        for (coll, doc_id), data in list(self._docs.items()):
            if coll != collection or not matches_all(data, filters):
                continue
            results.append(Document(doc_id, copy.deepcopy(data)))
            if limit is not None and len(results) >= limit:
                break
        return results

    async def _apply(self, ops: List[WriteOp]) -> None:
        async with self._lock:
            self._docs = apply_to_snapshot(self._docs, ops)
            self.commit_count += 1
        logger.debug("Committed batch of %d writes", len(ops))

    def count(self, collection: str) -> int:
        """Number of documents in ``collection`` (test helper)."""
        return sum(1 for coll, _ in self._docs if coll == collection)
