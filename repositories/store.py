# repositories/store.py
from __future__ import annotations

import asyncio
import copy
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping, Optional, Sequence, TypeVar

from domain.errors import ConcurrencyConflict

log = logging.getLogger(__name__)

T = TypeVar("T")

Doc = dict[str, Any]


@dataclass(frozen=True)
class WriteOp:
    kind: str  # "set" | "update" | "delete"
    collection: str
    doc_id: str
    data: Optional[Doc] = None


def matches_where(doc: Mapping[str, Any], where: Mapping[str, Any]) -> bool:
    return all(doc.get(k) == v for k, v in where.items())


class Transaction(ABC):
    """
    Transaction handle passed to run_transaction callbacks.

    Reads go to the backing store (and are tracked for conflict detection);
    writes are buffered and only reach the store when the callback returns.
    Reads always see this transaction's own buffered writes.
    """

    def __init__(self) -> None:
        self._writes: dict[tuple[str, str], WriteOp] = {}
        self._order: list[tuple[str, str]] = []

    # -------------------------
    # Backend hooks
    # -------------------------

    @abstractmethod
    async def _load(self, collection: str, doc_id: str) -> Optional[Doc]:
        ...

    @abstractmethod
    async def _load_where(self, collection: str, where: Mapping[str, Any]) -> dict[str, Doc]:
        ...

    # -------------------------
    # Reads
    # -------------------------

    async def get(self, collection: str, doc_id: str) -> Optional[Doc]:
        op = self._writes.get((collection, doc_id))
        if op is not None:
            return None if op.kind == "delete" else copy.deepcopy(op.data)
        doc = await self._load(collection, doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def query(self, collection: str, where: Mapping[str, Any] | None = None) -> list[Doc]:
        where = dict(where or {})
        found = await self._load_where(collection, where)
        out: dict[str, Doc] = {k: copy.deepcopy(v) for k, v in found.items()}

        for (coll, doc_id), op in self._writes.items():
            if coll != collection:
                continue
            if op.kind == "delete":
                out.pop(doc_id, None)
            elif matches_where(op.data or {}, where):
                out[doc_id] = copy.deepcopy(op.data)
            else:
                out.pop(doc_id, None)
        return list(out.values())

    # -------------------------
    # Buffered writes
    # -------------------------

    def _buffer(self, op: WriteOp) -> None:
        key = (op.collection, op.doc_id)
        if key not in self._writes:
            self._order.append(key)
        self._writes[key] = op

    def set(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> None:
        self._buffer(WriteOp("set", collection, doc_id, copy.deepcopy(dict(data))))

    async def update(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> None:
        current = await self.get(collection, doc_id)
        if current is None:
            raise KeyError(f"{collection}/{doc_id} does not exist")
        current.update(copy.deepcopy(dict(fields)))
        self._buffer(WriteOp("set", collection, doc_id, current))

    def delete(self, collection: str, doc_id: str) -> None:
        self._buffer(WriteOp("delete", collection, doc_id))

    @property
    def pending_writes(self) -> list[WriteOp]:
        return [self._writes[k] for k in self._order]


class DocumentStore(ABC):
    """
    Abstract transactional document store.
    Backends must make commit_batch all-or-nothing and must raise
    ConcurrencyConflict when a transaction's reads went stale before commit.
    """

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Optional[Doc]:
        ...

    @abstractmethod
    async def query(self, collection: str, where: Mapping[str, Any] | None = None) -> list[Doc]:
        ...

    @abstractmethod
    async def commit_batch(self, ops: Sequence[WriteOp]) -> None:
        ...

    @abstractmethod
    async def run_transaction(self, fn: Callable[[Transaction], Awaitable[T]]) -> T:
        ...


# -------------------------
# In-memory backend
# -------------------------

@dataclass
class _Versioned:
    version: int
    doc: Doc


class MemoryTransaction(Transaction):
    def __init__(self, store: "MemoryStore") -> None:
        super().__init__()
        self._store = store
        self.read_versions: dict[tuple[str, str], int] = {}
        self.query_sets: list[tuple[str, dict[str, Any], frozenset[str]]] = []

    async def _load(self, collection: str, doc_id: str) -> Optional[Doc]:
        row = self._store._rows.get((collection, doc_id))
        self.read_versions.setdefault((collection, doc_id), row.version if row else 0)
        return row.doc if row else None

    async def _load_where(self, collection: str, where: Mapping[str, Any]) -> dict[str, Doc]:
        out: dict[str, Doc] = {}
        for (coll, doc_id), row in self._store._rows.items():
            if coll == collection and matches_where(row.doc, where):
                out[doc_id] = row.doc
                self.read_versions.setdefault((coll, doc_id), row.version)
        self.query_sets.append((collection, dict(where), frozenset(out)))
        return out


class MemoryStore(DocumentStore):
    """
    Process-local store with optimistic concurrency.
    Every document read inside a transaction is version-checked at commit, and
    every query is re-run to catch phantoms; any difference raises ConcurrencyConflict.
    """

    def __init__(self) -> None:
        self._rows: dict[tuple[str, str], _Versioned] = {}
        self._commit_lock = asyncio.Lock()
        self.commits = 0

    async def get(self, collection: str, doc_id: str) -> Optional[Doc]:
        row = self._rows.get((collection, doc_id))
        return copy.deepcopy(row.doc) if row else None

    async def query(self, collection: str, where: Mapping[str, Any] | None = None) -> list[Doc]:
        where = dict(where or {})
        return [
            copy.deepcopy(row.doc)
            for (coll, _), row in self._rows.items()
            if coll == collection and matches_where(row.doc, where)
        ]

    def version_of(self, collection: str, doc_id: str) -> int:
        row = self._rows.get((collection, doc_id))
        return row.version if row else 0

    def _check(self, ops: Sequence[WriteOp]) -> None:
        """Reject the whole batch up front so a bad op never leaves it half applied."""
        present = set(self._rows)
        for op in ops:
            key = (op.collection, op.doc_id)
            if op.kind == "delete":
                present.discard(key)
            elif op.kind == "update" and key not in present:
                raise KeyError(f"{op.collection}/{op.doc_id} does not exist")
            else:
                present.add(key)

    def _apply(self, ops: Sequence[WriteOp]) -> None:
        self._check(ops)
        for op in ops:
            key = (op.collection, op.doc_id)
            if op.kind == "delete":
                self._rows.pop(key, None)
                continue
            prev = self._rows.get(key)
            if op.kind == "update":
                if prev is None:
                    raise KeyError(f"{op.collection}/{op.doc_id} does not exist")
                doc = {**prev.doc, **copy.deepcopy(op.data or {})}
            else:
                doc = copy.deepcopy(op.data or {})
            self._rows[key] = _Versioned(version=(prev.version if prev else 0) + 1, doc=doc)
        self.commits += 1

    async def commit_batch(self, ops: Sequence[WriteOp]) -> None:
        async with self._commit_lock:
            self._apply(ops)

    def _validate(self, tx: MemoryTransaction) -> None:
        for key, seen in tx.read_versions.items():
            if self.version_of(*key) != seen:
                raise ConcurrencyConflict(f"{key[0]}/{key[1]} changed during the transaction")
        for collection, where, ids in tx.query_sets:
            now = frozenset(
                doc_id
                for (coll, doc_id), row in self._rows.items()
                if coll == collection and matches_where(row.doc, where)
            )
            if now != ids:
                raise ConcurrencyConflict(f"query on {collection} {where} changed during the transaction")

    async def run_transaction(self, fn: Callable[[Transaction], Awaitable[T]]) -> T:
        tx = MemoryTransaction(self)
        result = await fn(tx)
        async with self._commit_lock:
            self._validate(tx)
            self._apply(tx.pending_writes)
        log.debug("memory commit: %d writes", len(tx.pending_writes))
        return result
