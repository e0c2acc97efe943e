"""
Transfer module for cidsync.
Fetches objects from a source endpoint, adds them to a destination endpoint
and verifies the resulting hash, in concurrent batches.
"""

import logging
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, auto
from typing import List, Optional, Sequence, Tuple, Union

from cidsync.core.batch import BatchConfig, effective_batch_size, iter_batches
from cidsync.core.cid import HashMismatchError, InvalidCIDError, cid_version, verify_hash
from cidsync.core.client import (
    FetchError,
    IPFSClient,
    ResponseDecodeError,
    UploadError,
    decode_add_response,
)
from cidsync.core.listing import CIDRecord

logger = logging.getLogger(__name__)


class TransferStatus(Enum):
    """Terminal state of a single CID"""

    SYNCED = auto()
    FAILED = auto()


@dataclass
class TransferOutcome:
    """Result of syncing a single CID"""

    cid: str
    sequence: int
    status: TransferStatus
    error: Optional[str] = None
    result_hash: str = ""

    @property
    def success(self) -> bool:
        return self.status == TransferStatus.SYNCED


@dataclass
class TransferProgress:
    """Progress information sent after each CID"""

    sequence: int
    total: int
    cid: str
    status: TransferStatus
    synced: int
    failed: int


@dataclass
class SyncResult:
    """Result of a sync run"""

    total: int = 0
    synced: int = 0
    failed: int = 0
    batches: int = 0
    started_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None
    duration: float = 0.0
    failed_cids: List[str] = field(default_factory=list)


class RunCounters:
    """Synced/failed counters shared by the workers of a run"""

    def __init__(self):
        self._lock = threading.Lock()
        self._synced = 0
        self._failed = 0

    def increment_synced(self) -> int:
        with self._lock:
            self._synced += 1
            return self._synced

    def increment_failed(self) -> int:
        with self._lock:
            self._failed += 1
            return self._failed

    @property
    def synced(self) -> int:
        with self._lock:
            return self._synced

    @property
    def failed(self) -> int:
        with self._lock:
            return self._failed

    def snapshot(self) -> Tuple[int, int]:
        """Return (synced, failed) read atomically"""
        with self._lock:
            return self._synced, self._failed


class TransferWorker:
    """Syncs one CID at a time from source to destination"""

    def __init__(
        self,
        source: IPFSClient,
        destination: IPFSClient,
        counters: RunCounters,
        count_upload_failure_twice: bool = BatchConfig.COUNT_UPLOAD_FAILURE_TWICE,
    ):
        """
        Initialize transfer worker

        Args:
            source: Client for the endpoint objects are fetched from
            destination: Client for the endpoint objects are added to
            counters: Counters shared with the other workers of the run
            count_upload_failure_twice: Also run verification (and count a
                second failure) when the upload request failed
        """
        self._source = source
        self._destination = destination
        self._counters = counters
        self.count_upload_failure_twice = count_upload_failure_twice

    def _failed(self, cid: str, sequence: int, error: str, result_hash: str = "") -> TransferOutcome:
        self._counters.increment_failed()
        return TransferOutcome(
            cid=cid,
            sequence=sequence,
            status=TransferStatus.FAILED,
            error=error,
            result_hash=result_hash,
        )

    def sync_cid(self, cid: str, sequence: int, total: int) -> TransferOutcome:
        """
        Sync a single CID

        Per-item errors are logged and counted, never raised.

        Args:
            cid: CID to sync
            sequence: 1-based position of the CID in the run
            total: Number of CIDs in the run

        Returns:
            TransferOutcome of the CID
        """
        try:
            return self._sync(cid, sequence, total)
        except Exception as e:
            logger.exception(f"{sequence}/{total}: Unexpected error: {e}; CID: {cid}")
            return self._failed(cid, sequence, str(e))

    def _sync(self, cid: str, sequence: int, total: int) -> TransferOutcome:
        cid = cid.strip()
        prefix = f"{sequence}/{total}"
        logger.info(f"{prefix}: Syncing the CID: {cid}")

        try:
            data = self._source.cat(cid)
        except FetchError as e:
            logger.error(f"{prefix}: {e}; CID: {cid}")
            return self._failed(cid, sequence, str(e))

        try:
            version = cid_version(cid)
        except InvalidCIDError as e:
            logger.error(f"{prefix}: {e}; CID: {cid}")
            return self._failed(cid, sequence, str(e))

        result_hash = ""
        upload_error = None
        try:
            body = self._destination.add(data, version)
        except UploadError as e:
            logger.error(f"{prefix}: {e}; CID: {cid}")
            if not self.count_upload_failure_twice:
                return self._failed(cid, sequence, str(e))
            self._counters.increment_failed()
            upload_error = str(e)
        else:
            try:
                result_hash = decode_add_response(body).hash
            except ResponseDecodeError as e:
                # Verification below decides the outcome
                logger.warning(f"{prefix}: {e}; CID: {cid}")

        try:
            message = verify_hash(cid, result_hash)
        except HashMismatchError as e:
            logger.error(f"{prefix}: {e}")
            return self._failed(cid, sequence, upload_error or str(e), result_hash)

        logger.info(f"{prefix}: {message}")
        self._counters.increment_synced()
        return TransferOutcome(
            cid=cid,
            sequence=sequence,
            status=TransferStatus.SYNCED,
            result_hash=result_hash,
        )


class SyncManager:
    """Runs transfer workers over a list of CIDs in sequential batches"""

    def __init__(
        self,
        source: IPFSClient,
        destination: IPFSClient,
        max_batch_size: int = BatchConfig.MAX_CIDS_PER_BATCH,
        count_upload_failure_twice: bool = BatchConfig.COUNT_UPLOAD_FAILURE_TWICE,
        progress_callback: Optional[Callable[[TransferProgress], None]] = None,
    ):
        """
        Initialize sync manager

        Args:
            source: Client for the source endpoint
            destination: Client for the destination endpoint
            max_batch_size: Maximum number of CIDs synced concurrently
            count_upload_failure_twice: See TransferWorker
            progress_callback: Called from worker threads after each CID
        """
        if max_batch_size < 1:
            raise ValueError(f"Batch size must be at least 1, got {max_batch_size}")

        self._source = source
        self._destination = destination
        self._max_batch_size = max_batch_size
        self._count_upload_failure_twice = count_upload_failure_twice
        self._progress_callback = progress_callback

    @property
    def max_batch_size(self) -> int:
        return self._max_batch_size

    def _sync_one(
        self, worker: TransferWorker, counters: RunCounters, sequence: int, cid: str, total: int
    ) -> TransferOutcome:
        outcome = worker.sync_cid(cid, sequence, total)
        if self._progress_callback:
            synced, failed = counters.snapshot()
            try:
                self._progress_callback(TransferProgress(
                    sequence=sequence,
                    total=total,
                    cid=cid,
                    status=outcome.status,
                    synced=synced,
                    failed=failed,
                ))
            except Exception:
                logger.exception(f"{sequence}/{total}: Progress callback failed; CID: {cid}")
        return outcome

    def _run_batch(
        self,
        worker: TransferWorker,
        counters: RunCounters,
        batch: List[Tuple[int, str]],
        total: int,
    ) -> List[TransferOutcome]:
        """Run one worker per CID and wait for all of them"""
        with ThreadPoolExecutor(max_workers=len(batch), thread_name_prefix="cidsync") as executor:
            futures = [
                executor.submit(self._sync_one, worker, counters, sequence, cid, total)
                for sequence, cid in batch
            ]
            wait(futures)
        return [future.result() for future in futures]

    def run(self, cids: Sequence[Union[str, CIDRecord]]) -> SyncResult:
        """
        Sync every CID from source to destination

        Args:
            cids: CIDs (or CIDRecord objects) to sync

        Returns:
            SyncResult with the run statistics
        """
        cids = [c.cid if isinstance(c, CIDRecord) else c for c in cids]
        total = len(cids)
        result = SyncResult(total=total)
        counters = RunCounters()

        if cids:
            worker = TransferWorker(
                self._source,
                self._destination,
                counters,
                count_upload_failure_twice=self._count_upload_failure_twice,
            )
            batch_size = effective_batch_size(total, self._max_batch_size)
            batches = list(iter_batches(list(enumerate(cids, 1)), batch_size))

            for batch_num, batch in enumerate(batches, 1):
                logger.debug(f"Processing batch {batch_num}/{len(batches)} ({len(batch)} CIDs)")
                outcomes = self._run_batch(worker, counters, batch, total)
                result.failed_cids.extend(o.cid for o in outcomes if not o.success)
                result.batches += 1
        else:
            logger.warning("No CIDs to sync")

        result.synced, result.failed = counters.snapshot()
        result.completed_at = datetime.now()
        result.duration = (result.completed_at - result.started_at).total_seconds()

        logger.info(
            f"Total number of objects: {result.total}; "
            f"Synced: {result.synced}; Failed: {result.failed}"
        )
        logger.info(f"Total time: {result.duration:.3f}s")
        return result
