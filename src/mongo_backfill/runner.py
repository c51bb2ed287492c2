from __future__ import annotations

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel

from mongo_backfill.batching import MAX_BATCH_SIZE, Batch, PatchEntry, accumulate
from mongo_backfill.exceptions import BackfillError, MalformedDocumentError, PartialCommitError
from mongo_backfill.repair import Clock, compute_patch, needs_migration, utc_now
from mongo_backfill.sources import DocumentSource

logger = logging.getLogger(__name__)


class RunState(str, Enum):
    NOT_STARTED = "not_started"
    SCANNING = "scanning"
    COMPUTING = "computing"
    COMMITTING = "committing"
    DONE = "done"
    FAILED = "failed"


class MigrationReport(BaseModel):
    collection: str
    state: RunState
    scanned: int = 0
    candidates: int = 0
    updated: int = 0
    batches_total: int = 0
    batches_committed: int = 0
    elapsed_seconds: float = 0.0
    dry_run: bool = False
    error: Optional[str] = None
    error_type: Optional[str] = None
    failed_batch_index: Optional[int] = None
    failed_document_id: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.state == RunState.DONE


def summary_message(report: MigrationReport) -> str:
    """One-line outcome of a run."""
    if report.state == RunState.FAILED:
        where = ""
        if report.failed_batch_index is not None:
            where = f" at batch {report.failed_batch_index}"
        elif report.failed_document_id is not None:
            where = f" on document {report.failed_document_id}"
        return f"Migration failed{where} after updating {report.updated} documents: {report.error}"

    if report.candidates == 0:
        return "No matches needed migration - all up to date"

    if report.dry_run:
        return f"Dry run: {report.candidates} of {report.scanned} documents need migration"

    return f"Updated {report.updated} of {report.scanned} documents"


class MigrationRunner:
    """Scan a collection, patch every document that needs it, commit in batches.

    Batches are committed one at a time and the run stops at the first
    failed commit. Batches committed before the failure stay committed; a
    rerun picks up whatever is left because fixed documents no longer match
    ``needs_migration``.
    """

    def __init__(
        self,
        source: DocumentSource,
        collection: str = "matches",
        batch_size: int = MAX_BATCH_SIZE,
        now: Clock = utc_now,
        dry_run: bool = False,
        rate_limit_ms: int = 0,
    ) -> None:
        self.source = source
        self.collection = collection
        self.batch_size = batch_size
        self.now = now
        self.dry_run = dry_run
        self.rate_limit_ms = rate_limit_ms
        self.state = RunState.NOT_STARTED
        self.current_batch: Optional[int] = None

    async def run(self) -> MigrationReport:
        if self.state != RunState.NOT_STARTED:
            raise RuntimeError("MigrationRunner instances are single-use")

        started = time.monotonic()
        report = MigrationReport(collection=self.collection, state=self.state, dry_run=self.dry_run)

        try:
            documents = await self._scan(report)
            batches = self._compute(documents, report)
            if not batches or self.dry_run:
                self.state = RunState.DONE
            else:
                await self._commit(batches, report)
                self.state = RunState.DONE
        except BackfillError as exc:
            self.state = RunState.FAILED
            report.error = str(exc)
            report.error_type = type(exc).__name__
            if isinstance(exc, MalformedDocumentError):
                report.failed_document_id = str(exc.document_id)
            logger.error(f"Migration of {self.collection} failed: {exc}")
        except (asyncio.CancelledError, Exception) as exc:
            self.state = RunState.FAILED
            report.error = repr(exc)
            report.error_type = type(exc).__name__
            if report.state == RunState.COMMITTING:
                report.failed_batch_index = self.current_batch
            logger.error(f"Migration of {self.collection} aborted while {report.state.value}")
            report.state = self.state
            logger.error(summary_message(report))
            raise
        finally:
            report.state = self.state
            report.elapsed_seconds = round(time.monotonic() - started, 3)

        return report

    async def _scan(self, report: MigrationReport) -> List[Tuple[Any, Dict[str, Any]]]:
        self.state = report.state = RunState.SCANNING
        documents: List[Tuple[Any, Dict[str, Any]]] = []
        async for document_id, fields in self.source.scan_collection(self.collection):
            report.scanned += 1
            # Only candidates are kept; compliant documents are dropped here
            if needs_migration(fields):
                documents.append((document_id, fields))
        logger.info(f"Found {report.scanned} total documents in {self.collection}")
        return documents

    def _compute(self, documents: List[Tuple[Any, Dict[str, Any]]], report: MigrationReport) -> List[Batch]:
        self.state = report.state = RunState.COMPUTING
        entries: List[PatchEntry] = []
        for document_id, fields in documents:
            patch = compute_patch(fields, now=self.now, document_id=document_id)
            entries.append((document_id, patch))
            report.candidates += 1

        batches = accumulate(entries, self.batch_size)
        report.batches_total = len(batches)
        logger.info(
            f"{report.candidates} of {report.scanned} documents need migration "
            f"({len(batches)} batches of up to {self.batch_size})"
        )
        return batches

    async def _commit(self, batches: List[Batch], report: MigrationReport) -> None:
        self.state = report.state = RunState.COMMITTING
        for index, batch in enumerate(batches):
            self.current_batch = index
            try:
                await self.source.commit_batch(self.collection, batch)
            except BackfillError as exc:
                report.failed_batch_index = index
                if report.updated > 0:
                    raise PartialCommitError(index, report.updated, exc) from exc
                raise

            report.updated += len(batch)
            report.batches_committed += 1
            logger.info(
                f"Committed batch {index + 1}/{len(batches)} ({len(batch)} documents, "
                f"{report.updated} updated so far)"
            )

            if self.rate_limit_ms > 0 and index < len(batches) - 1:
                await asyncio.sleep(self.rate_limit_ms / 1000)
        self.current_batch = None
