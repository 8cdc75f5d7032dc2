"""
Crew Datastore
==============

Document store used by the swap workflow. Collections hold dataclass
documents keyed by id. The store is passed explicitly to every operation;
there is no module-level handle.

Transactions are optimistic: reads record document versions, writes are
buffered, and commit re-checks versions before applying every write to
copies of the touched collections. The copies replace the live
collections only when every write succeeded, so a failing write leaves
the store exactly as it was. run_transaction retries version conflicts.
"""

from dataclasses import replace
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple
import asyncio
import copy
import logging
import uuid

from models.data_models import UserActivity
from core.exceptions import (
    EntityNotFoundError, TransactionAbortError, TransactionConflictError,
)

logger = logging.getLogger(__name__)

FLIGHTS = "flights"
ACTIVITIES = "userActivities"
SWAPS = "flightSwaps"
USERS = "users"
AUDIT_LOGS = "auditLogs"

# Collection -> id attribute on its documents
ID_FIELDS: Dict[str, str] = {
    FLIGHTS: 'flight_id',
    ACTIVITIES: 'activity_id',
    SWAPS: 'swap_id',
    USERS: 'user_id',
    AUDIT_LOGS: 'event_id',
}

DocKey = Tuple[str, str]


def new_document_id() -> str:
    return uuid.uuid4().hex


def document_id(collection: str, doc: Any) -> str:
    try:
        return getattr(doc, ID_FIELDS[collection])
    except KeyError:
        raise ValueError(f"Unknown collection '{collection}'") from None


class Transaction:
    """Read-then-write unit of work; writes are applied only on commit"""

    def __init__(self, store: 'InMemoryCrewStore'):
        self._store = store
        self.reads: Dict[DocKey, int] = {}
        self.writes: List[Tuple[str, str, Dict[str, Any]]] = []

    async def get(self, collection: str, doc_id: str) -> Optional[Any]:
        """Read a document; returns None when it does not exist"""
        if self.writes:
            raise TransactionAbortError("All transaction reads must happen before writes.")
        doc, version = self._store._read(collection, doc_id)
        self.reads[(collection, doc_id)] = version
        return doc

    def update(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        self.writes.append((collection, doc_id, dict(fields)))


class InMemoryCrewStore:
    """Process-local document store with transactional commits"""

    def __init__(self):
        self._collections: Dict[str, Dict[str, Any]] = {name: {} for name in ID_FIELDS}
        self._versions: Dict[DocKey, int] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _collection(self, collection: str) -> Dict[str, Any]:
        if collection not in self._collections:
            raise ValueError(f"Unknown collection '{collection}'")
        return self._collections[collection]

    def _read(self, collection: str, doc_id: str) -> Tuple[Optional[Any], int]:
        doc = self._collection(collection).get(doc_id)
        version = self._versions.get((collection, doc_id), 0)
        return copy.deepcopy(doc), version

    def _apply_write(self, collection: str, doc: Any, fields: Dict[str, Any]) -> Any:
        """Return the updated document; must not mutate doc"""
        return replace(doc, **fields)

    # ------------------------------------------------------------------
    # Plain reads and writes
    # ------------------------------------------------------------------

    def load(self, collection: str, docs: Iterable[Any]) -> None:
        """Bulk-insert fixture documents (replaces same-id documents)"""
        target = self._collection(collection)
        for doc in docs:
            doc_id = document_id(collection, doc)
            target[doc_id] = copy.deepcopy(doc)
            key = (collection, doc_id)
            self._versions[key] = self._versions.get(key, 0) + 1

    async def get(self, collection: str, doc_id: str) -> Optional[Any]:
        doc, _ = self._read(collection, doc_id)
        return doc

    async def require(self, collection: str, doc_id: str) -> Any:
        doc = await self.get(collection, doc_id)
        if doc is None:
            raise EntityNotFoundError(collection, doc_id)
        return doc

    async def add(self, collection: str, doc: Any) -> Any:
        async with self._lock:
            self.load(collection, [doc])
        return copy.deepcopy(doc)

    async def add_unless_exists(self, collection: str, doc: Any,
                                duplicate_of: Callable[[Any], bool]) -> Optional[Any]:
        """
        Insert doc unless a document matching duplicate_of is present.

        Check and insert happen under the store lock. Returns the existing
        duplicate (nothing inserted) or None when doc was added.
        """
        async with self._lock:
            for existing in self._collection(collection).values():
                if duplicate_of(existing):
                    return copy.deepcopy(existing)
            self.load(collection, [doc])
        return None

    async def update(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> Any:
        async with self._lock:
            target = self._collection(collection)
            if doc_id not in target:
                raise EntityNotFoundError(collection, doc_id)
            updated = self._apply_write(collection, target[doc_id], fields)
            target[doc_id] = updated
            key = (collection, doc_id)
            self._versions[key] = self._versions.get(key, 0) + 1
        return copy.deepcopy(updated)

    async def list_documents(self, collection: str,
                             predicate: Callable[[Any], bool] = None) -> List[Any]:
        docs = self._collection(collection).values()
        return [copy.deepcopy(d) for d in docs if predicate is None or predicate(d)]

    async def query_activities(self, user_id: str, start: datetime, end: datetime,
                               exclude_flight_id: Optional[str] = None) -> List[UserActivity]:
        """User's activities overlapping [start, end], earliest first"""
        matches = [
            a for a in self._collection(ACTIVITIES).values()
            if a.user_id == user_id
            and a.overlaps(start, end)
            and (exclude_flight_id is None or a.flight_id != exclude_flight_id)
        ]
        matches.sort(key=lambda a: a.start_utc)
        return [copy.deepcopy(a) for a in matches]

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def _commit(self, tx: Transaction) -> None:
        async with self._lock:
            for key, version in tx.reads.items():
                if self._versions.get(key, 0) != version:
                    raise TransactionConflictError(f"{key[0]}/{key[1]} changed during transaction")

            staged: Dict[str, Dict[str, Any]] = {}
            touched: List[DocKey] = []
            try:
                for collection, doc_id, fields in tx.writes:
                    if collection not in staged:
                        staged[collection] = dict(self._collection(collection))
                    target = staged[collection]
                    if doc_id not in target:
                        raise EntityNotFoundError(collection, doc_id)
                    target[doc_id] = self._apply_write(collection, target[doc_id], fields)
                    touched.append((collection, doc_id))
            except Exception as exc:
                raise TransactionAbortError(f"Transaction rolled back: {exc}") from exc

            self._collections.update(staged)
            for key in touched:
                self._versions[key] = self._versions.get(key, 0) + 1

    async def run_transaction(self, fn: Callable[[Transaction], Awaitable[Any]],
                              max_attempts: int = 5) -> Any:
        """
        Run fn inside a transaction and commit its writes atomically.

        Errors raised by fn propagate unchanged with nothing written.
        Version conflicts are retried up to max_attempts, then surface as
        TransactionAbortError.
        """
        for attempt in range(1, max_attempts + 1):
            tx = Transaction(self)
            result = await fn(tx)
            try:
                await self._commit(tx)
            except TransactionConflictError as exc:
                logger.warning(f"Transaction conflict (attempt {attempt}/{max_attempts}): {exc}")
                continue
            return result
        raise TransactionAbortError(
            f"Transaction aborted after {max_attempts} conflicting attempts."
        )
