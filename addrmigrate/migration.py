"""
Batch orchestrator for the legacy address migration.

Reads every unlinked order once, resolves and deduplicates the addresses
in fixed-size batches, and links each order to its canonical address.

Per-record failures (unresolvable address, retries exhausted) are tallied
and the run goes on. Anything else aborts the current batch: its
transaction is rolled back, earlier batches stay committed, and
BatchFailedError carries the partial stats to the caller.
"""

import threading
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Callable, Iterator, List, Optional, Sequence

from .logger import StructuredLogger, get_logger
from .normalize import content_hash, normalize_component
from .resolver import RetryingResolver
from .schema import LegacyRecord, LinkageUpdate, ValidationStatus
from .storage import AddressStore, DryRunAddressStore, build_candidate

DEFAULT_BATCH_SIZE = 50


class RecordState(str, Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    LINKED = "linked"
    UNRESOLVED = "unresolved"
    MARKED_FAILED = "marked_failed"


@dataclass
class BatchCounts:
    """Counters for one batch, folded into MigrationStats on commit."""

    success: int = 0
    unresolvable: int = 0
    unreachable: int = 0
    deduped: int = 0
    new_addresses: int = 0

    @property
    def warnings(self) -> int:
        return self.unresolvable + self.unreachable


@dataclass
class MigrationStats:
    """Process-wide counters for one run."""

    total: int = 0
    success: int = 0
    warnings: int = 0  # semantic failures, both kinds
    unresolvable: int = 0  # resolver said the address does not exist
    unreachable: int = 0  # resolver never answered within the retry policy
    failed: int = 0  # records lost with a rolled-back batch
    deduped: int = 0
    new_addresses: int = 0
    batches: int = 0
    dry_run: bool = False
    cancelled: bool = False
    failed_batch: Optional[int] = None  # batch rolled back by a fatal error
    started_at: float = field(default_factory=time.monotonic)
    duration: float = 0.0

    def absorb(self, counts: BatchCounts) -> None:
        self.success += counts.success
        self.unresolvable += counts.unresolvable
        self.unreachable += counts.unreachable
        self.warnings += counts.warnings
        self.deduped += counts.deduped
        self.new_addresses += counts.new_addresses
        self.batches += 1

    def finalize(self, now: Optional[float] = None) -> "MigrationStats":
        now = time.monotonic() if now is None else now
        self.duration = max(now - self.started_at, 0.0)
        return self

    @property
    def throughput(self) -> float:
        """Successfully linked records per second."""
        if self.duration <= 0:
            return 0.0
        return self.success / self.duration

    @property
    def processed(self) -> int:
        return self.success + self.warnings

    def to_dict(self) -> dict:
        data = asdict(self)
        data.pop("started_at")
        data["throughput"] = round(self.throughput, 2)
        return data


class BatchFailedError(Exception):
    """A batch hit an unrecoverable error and was rolled back."""

    def __init__(self, batch_number: int, processed: int, batch_size: int, stats: MigrationStats, cause: BaseException):
        self.batch_number = batch_number
        self.processed = processed
        self.batch_size = batch_size
        self.stats = stats
        self.cause = cause
        super().__init__(
            f"Batch {batch_number} rolled back after {processed}/{batch_size} records: "
            f"{type(cause).__name__}: {cause}"
        )


def partition(records: Sequence[LegacyRecord], size: int) -> Iterator[List[LegacyRecord]]:
    """Split records into consecutive batches of at most size, order kept."""
    if size < 1:
        raise ValueError("batch size must be at least 1")
    for start in range(0, len(records), size):
        yield list(records[start:start + size])


class Migration:
    """
    Drives one migration run over an AddressStore.

    Args:
        store: Live store; wrapped in DryRunAddressStore for dry runs
        resolver: RetryingResolver applying the retry policy
        batch_size: Records per transaction
        batch_pause: Seconds to wait between batches (throttling)
        stop_event: When set, the run stops before the next batch
        sleep: Sleep function used for throttling
        logger: StructuredLogger (global one by default)
    """

    def __init__(
        self,
        store: AddressStore,
        resolver: RetryingResolver,
        batch_size: int = DEFAULT_BATCH_SIZE,
        batch_pause: float = 0.0,
        stop_event: Optional[threading.Event] = None,
        sleep: Callable[[float], None] = time.sleep,
        logger: Optional[StructuredLogger] = None,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.store = store
        self.resolver = resolver
        self.batch_size = batch_size
        self.batch_pause = batch_pause
        self.stop_event = stop_event or threading.Event()
        self.sleep = sleep
        self.logger = logger or get_logger()

    def run(self, dry_run: bool = False) -> MigrationStats:
        stats = MigrationStats(dry_run=dry_run)
        store = DryRunAddressStore(self.store) if dry_run else self.store

        if dry_run:
            self.logger.info("Dry run: nothing will be written")

        candidates = store.fetch_candidates()
        stats.total = len(candidates)
        self.logger.info("Found orders to migrate", total=stats.total, batch_size=self.batch_size)

        for number, batch in enumerate(partition(candidates, self.batch_size), 1):
            if self.stop_event.is_set():
                stats.cancelled = True
                self.logger.warning(
                    "Migration cancelled between batches",
                    next_batch=number,
                    remaining=stats.total - stats.processed,
                )
                break
            if number > 1 and self.batch_pause:
                self.sleep(self.batch_pause)

            counts = self._run_batch(store, number, batch, stats)
            stats.absorb(counts)
            self.logger.record_batch_commit()
            self.logger.debug("Batch committed", batch=number, **asdict(counts))

        stats.finalize()
        self.logger.log_metrics_summary()
        return stats

    def _run_batch(self, store, number: int, batch: List[LegacyRecord], stats: MigrationStats) -> BatchCounts:
        counts = BatchCounts()
        processed = 0
        try:
            with store.transaction():
                for record in batch:
                    self._process_record(store, record, counts)
                    processed += 1
        except Exception as e:
            stats.failed += len(batch)
            stats.failed_batch = number
            self.logger.record_batch_rollback(type(e).__name__)
            self.logger.error(
                "Batch transaction failed, rolled back",
                batch=number,
                processed=processed,
                batch_size=len(batch),
                failed_record=batch[processed].id if processed < len(batch) else None,
                error=str(e),
            )
            raise BatchFailedError(number, processed, len(batch), stats.finalize(), e) from e
        return counts

    def _process_record(self, store, record: LegacyRecord, counts: BatchCounts) -> RecordState:
        attempt = self.resolver.resolve(record.raw_address)

        if not attempt.resolved:
            store.mark_failed(record.id)
            if attempt.exhausted:
                counts.unreachable += 1
            else:
                counts.unresolvable += 1
            self.logger.warning(
                "Address could not be resolved, order marked failed",
                order_id=record.id,
                tenant_id=record.tenant_id,
                attempts=attempt.attempts,
                exhausted=attempt.exhausted,
            )
            return RecordState.MARKED_FAILED

        resolved = attempt.result
        country = normalize_component(resolved.components.country_code)
        address = store.find_by_hash(record.tenant_id, content_hash(resolved.components), country)
        if address is not None:
            counts.deduped += 1
        else:
            address, created = store.insert_if_absent(build_candidate(record.tenant_id, resolved))
            if created:
                counts.new_addresses += 1
            else:
                counts.deduped += 1

        store.link_record(
            LinkageUpdate(
                record_id=record.id,
                address_id=address.id,
                country_code=country,
                snapshot=resolved.to_snapshot(),
                status=ValidationStatus.VERIFIED,
            )
        )
        counts.success += 1
        return RecordState.LINKED


def format_report(stats: MigrationStats) -> str:
    """Operator-facing summary of a run."""
    rule = "-" * 35
    title = "Migration Complete"
    if stats.failed_batch is not None:
        title = f"Migration Halted (batch {stats.failed_batch} rolled back)"
    elif stats.cancelled:
        title = "Migration Cancelled"
    if stats.dry_run:
        title += " (dry run, nothing written)"

    lines = [
        title,
        rule,
        f"Duration:         {stats.duration:.2f}s",
        f"Throughput:       {stats.throughput:.2f} records/s",
        rule,
        f"Total Orders:     {stats.total}",
        f"Successful:       {stats.success}",
        f"Warnings:         {stats.warnings}",
        f"  unresolvable:   {stats.unresolvable}",
        f"  unreachable:    {stats.unreachable}",
        f"Failed:           {stats.failed}",
        rule,
        f"New Addresses:    {stats.new_addresses}",
        f"Deduped Addrs:    {stats.deduped}",
        rule,
    ]
    return "\n".join(lines)
