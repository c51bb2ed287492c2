"""Document sources the runner reads from and commits to."""

from __future__ import annotations

import copy
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, Set, Tuple

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import UpdateOne
from pymongo.errors import PyMongoError

from mongo_backfill.batching import Batch
from mongo_backfill.exceptions import SourceUnavailableError

logger = logging.getLogger(__name__)


class DocumentSource(Protocol):
    def scan_collection(self, name: str) -> AsyncIterator[Tuple[Any, Dict[str, Any]]]:
        ...

    async def commit_batch(self, name: str, batch: Batch) -> None:
        ...


class MongoDocumentSource:
    """Document source backed by a motor client.

    Each batch is written with one ordered ``bulk_write`` of ``$set`` updates.
    With ``use_transactions`` the write runs inside a session transaction, so
    the batch is all-or-nothing; this needs a replica set or sharded cluster.
    A batch whose ids do not all match fails; without transactions the
    matched updates are already written by then.

    ``projection`` limits the fields fetched by the scan.
    """

    def __init__(
        self,
        client: AsyncIOMotorClient,
        database: str,
        use_transactions: bool = True,
        projection: Optional[List[str]] = None,
    ) -> None:
        self.client = client
        self.database = database
        self.use_transactions = use_transactions
        self.projection = projection

    async def scan_collection(self, name: str) -> AsyncIterator[Tuple[Any, Dict[str, Any]]]:
        coll = self.client[self.database][name]
        try:
            async for doc in coll.find({}, projection=self.projection):
                yield doc["_id"], doc
        except PyMongoError as exc:
            raise SourceUnavailableError(f"Failed to read {self.database}.{name}: {exc}") from exc

    async def commit_batch(self, name: str, batch: Batch) -> None:
        if not batch:
            return

        coll = self.client[self.database][name]
        ops = [UpdateOne({"_id": document_id}, {"$set": patch}) for document_id, patch in batch]
        try:
            if self.use_transactions:
                async with await self.client.start_session() as session:
                    async with session.start_transaction():
                        result = await coll.bulk_write(ops, ordered=True, session=session)
                        # Raising inside the transaction aborts it
                        self._check_matched(name, result.matched_count, len(ops))
            else:
                result = await coll.bulk_write(ops, ordered=True)
                self._check_matched(name, result.matched_count, len(ops))
        except PyMongoError as exc:
            raise SourceUnavailableError(f"Failed to write {self.database}.{name}: {exc}") from exc

    def _check_matched(self, name: str, matched: int, expected: int) -> None:
        if matched != expected:
            raise SourceUnavailableError(
                f"Only {matched} of {expected} documents in {self.database}.{name} matched; "
                "some were removed since the scan"
            )


class MemoryDocumentSource:
    """Dict-backed document source with the same merge semantics as Mongo.

    ``fail_on_batches`` holds batch numbers (counted from 0 across every
    ``commit_batch`` call) that raise ``SourceUnavailableError`` without
    writing anything. Every attempted batch is recorded in ``attempts``.
    """

    def __init__(
        self,
        collections: Optional[Dict[str, Dict[Any, Dict[str, Any]]]] = None,
        fail_on_batches: Optional[Set[int]] = None,
        fail_scan: bool = False,
    ) -> None:
        self.collections: Dict[str, Dict[Any, Dict[str, Any]]] = collections or {}
        self.fail_on_batches = fail_on_batches or set()
        self.fail_scan = fail_scan
        self.attempts: List[Batch] = []
        self.committed: List[Batch] = []

    def insert(self, name: str, document_id: Any, fields: Dict[str, Any]) -> None:
        self.collections.setdefault(name, {})[document_id] = dict(fields)

    def get(self, name: str, document_id: Any) -> Dict[str, Any]:
        return self.collections[name][document_id]

    async def scan_collection(self, name: str) -> AsyncIterator[Tuple[Any, Dict[str, Any]]]:
        if self.fail_scan:
            raise SourceUnavailableError(f"Collection {name} is unavailable")
        for document_id, fields in list(self.collections.get(name, {}).items()):
            yield document_id, copy.deepcopy(fields)

    async def commit_batch(self, name: str, batch: Batch) -> None:
        index = len(self.attempts)
        self.attempts.append(batch)
        if index in self.fail_on_batches:
            raise SourceUnavailableError(f"Simulated failure on batch {index}")

        docs = self.collections.get(name, {})
        missing = [document_id for document_id, _ in batch if document_id not in docs]
        if missing:
            raise SourceUnavailableError(f"Documents not found in {name}: {missing}")

        for document_id, patch in batch:
            docs[document_id].update(patch)
        self.committed.append(batch)
        logger.debug(f"Committed {len(batch)} patches to in-memory {name}")
