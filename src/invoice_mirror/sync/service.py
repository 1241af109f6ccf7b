"""
InvoiceSyncService: mirrors every ERP invoice into the local store.

Flow for a full run:
  1. Take the in-process run lease (one run at a time per service)
  2. Create SyncLog (status="running")
  3. Snapshot the ids and created_at values already in the store
  4. Walk pages 1, 2, ... until an empty or short (< page size) page:
       normalize each record, resolve its salesperson, batch-upsert every 500
  5. Delete local invoices the ERP no longer returned (best effort)
  6. Update SyncLog (status="completed")

On any exception from 3-5 that escapes the per-page isolation: update
SyncLog (status="failed") and re-raise.

Failure isolation:
  - a malformed record is skipped, the rest of its page is kept
  - a failing page is counted and skipped; more than max_failed_pages
    failures stops pagination but the run still completes (partially)
  - a failing batch upsert fails the whole run
  - a failing delete is logged and counted, never fatal

Idempotency: invoices are upserted by ERP id and keep their first-seen
created_at, so re-running against an unchanged ERP changes only
synced_at/updated_at. last_page_processed is recorded as a progress hint;
every run still starts at page 1.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Set

from pydantic import BaseModel

from invoice_mirror.db.store import InvoiceStore, SyncLogStore
from invoice_mirror.erp.client import MAX_PAGE_SIZE
from invoice_mirror.erp.errors import RecordParseError
from invoice_mirror.erp.normalizer import (
    UNKNOWN_EMPLOYEE,
    normalize_employee,
    normalize_invoice,
)
from invoice_mirror.models.invoice import Employee, Invoice
from invoice_mirror.models.sync import (
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_RUNNING,
    SyncLog,
)

logger = logging.getLogger(__name__)

SYNC_TYPE_INVOICES = "invoices"
SYNC_TYPE_EMPLOYEES = "employees"

NO_SALESPERSON = "No Salesperson"
UNKNOWN_SALESPERSON = "Unknown Salesperson"

# A "running" log older than this is assumed to belong to a crashed process
STALE_RUN_AFTER = timedelta(hours=1)
MAX_FAILED_EMPLOYEE_PAGES = 10


class SyncAlreadyRunningError(RuntimeError):
    """Raised when a run is requested while this service is already syncing."""


class PersistenceWriteError(RuntimeError):
    """A batch write to the local store failed; the run cannot continue."""


@dataclass
class SyncConfig:
    page_size: int = 100
    upsert_batch_size: int = 500
    delete_batch_size: int = 100
    page_delay_seconds: float = 0.5
    max_failed_pages: int = 5
    preload_employees: bool = True
    sync_employees_first: bool = False

    def __post_init__(self):
        # The ERP never returns more than MAX_PAGE_SIZE rows, so a larger
        # page size would make every full page look like the last one.
        self.page_size = max(1, min(self.page_size, MAX_PAGE_SIZE))

    @classmethod
    def from_settings(cls, settings) -> "SyncConfig":
        return cls(
            page_size=settings.erp_page_size,
            upsert_batch_size=settings.upsert_batch_size,
            delete_batch_size=settings.delete_batch_size,
            page_delay_seconds=settings.page_delay_seconds,
            max_failed_pages=settings.max_failed_pages,
            preload_employees=settings.preload_employees_on_sync,
            sync_employees_first=settings.sync_employees_first,
        )


@dataclass
class SyncResult:
    """Counters for one invoice run."""

    total_invoices: int = 0
    processed_invoices: int = 0
    api_calls: int = 0
    failed_pages: int = 0
    last_page: int = 0
    has_more_data: bool = True
    deleted_invoices: int = 0
    delete_failures: int = 0


class SyncStatus(BaseModel):
    is_running: bool
    last_sync: Optional[datetime]
    last_sync_status: str
    total_invoices: int
    total_employees: int
    duration: Optional[int]
    error_message: Optional[str]
    processed_records: int = 0
    api_calls: int = 0
    failed_pages: int = 0
    deleted_records: int = 0
    delete_failures: int = 0
    warning: Optional[str] = None


class InvoiceSyncService:
    """Orchestrates ERP → local store sync of invoices (and employees)."""

    def __init__(
        self,
        client,
        store: InvoiceStore,
        log_store: SyncLogStore,
        config: Optional[SyncConfig] = None,
    ):
        """
        Args:
            client: ErpClient instance (or AsyncMock in tests).
            store: Local mirror of invoices and employees.
            log_store: Where SyncLog rows are written.
            config: Batch sizes, delays and thresholds. Defaults to SyncConfig().
        """
        self.client = client
        self.store = store
        self.log_store = log_store
        self.config = config or SyncConfig()
        self._lease = asyncio.Lock()
        self._jobs: Dict[str, asyncio.Task] = {}

    @property
    def is_running(self) -> bool:
        """True while a run holds the lease or a triggered job is still pending."""
        return self._lease.locked() or bool(self._jobs)

    # ── Entry points ──────────────────────────────────────────────────────────

    async def run_full_sync(self) -> SyncResult:
        """
        Mirror every ERP invoice and prune the ones the ERP no longer has.

        Raises:
            SyncAlreadyRunningError: another run holds the lease.
            Any exception that failed the run (after recording it on the log).
        """
        if self._lease.locked():
            raise SyncAlreadyRunningError("An invoice sync is already running")

        async with self._lease:
            if self.config.sync_employees_first:
                try:
                    await self._sync_employees()
                except Exception as exc:
                    logger.warning("Employee sync failed, continuing with invoices: %s", exc)

            log = self.log_store.insert(
                SyncLog(
                    sync_type=SYNC_TYPE_INVOICES,
                    start_time=datetime.utcnow(),
                    status=STATUS_RUNNING,
                )
            )
            logger.info("Starting full invoice sync (log %s)", log.id)

            try:
                if self.config.preload_employees:
                    await self.client.preload_employees()

                result = await self._paginate_and_reconcile(log)

                self._apply_counters(log, result)
                log.notes = (
                    f"Synced {result.processed_invoices} invoices in {result.api_calls} API calls, "
                    f"deleted {result.deleted_invoices} missing invoices"
                )
                if result.failed_pages:
                    log.notes += f", {result.failed_pages} failed pages"
                if result.delete_failures:
                    log.notes += "; deletion of missing invoices failed"
                self._finish_sync_log(log, status=STATUS_COMPLETED)
                logger.info(
                    "Sync complete: %d invoices processed, %d deleted, %d API calls",
                    result.processed_invoices,
                    result.deleted_invoices,
                    result.api_calls,
                )
                return result

            except Exception as exc:
                logger.error("Sync failed: %s", exc)
                self._finish_sync_log(log, status=STATUS_FAILED, error_message=str(exc))
                raise

    async def sync_employees(self) -> int:
        """Mirror the ERP employee list. Returns the number of employees saved."""
        if self._lease.locked():
            raise SyncAlreadyRunningError("A sync is already running")
        async with self._lease:
            return await self._sync_employees()

    def trigger_sync(self) -> str:
        """
        Start run_full_sync() in the background and return a job id.

        Must be called from a running event loop.

        Raises:
            SyncAlreadyRunningError: if a run is in progress or already queued.
        """
        if self.is_running:
            raise SyncAlreadyRunningError("An invoice sync is already running")
        job_id = uuid.uuid4().hex
        task = asyncio.get_running_loop().create_task(self._run_job(job_id))
        self._jobs[job_id] = task
        task.add_done_callback(lambda _: self._jobs.pop(job_id, None))
        logger.info("Sync job %s queued", job_id)
        return job_id

    def get_sync_status(self) -> SyncStatus:
        """Latest invoice run combined with current mirror row counts."""
        latest = self.log_store.get_latest(SYNC_TYPE_INVOICES)
        total_invoices = self.store.count_invoices()
        total_employees = self.store.count_employees()

        if latest is None:
            return SyncStatus(
                is_running=self.is_running,
                last_sync=None,
                last_sync_status="never",
                total_invoices=total_invoices,
                total_employees=total_employees,
                duration=None,
                error_message=None,
            )

        recently_started = latest.start_time > datetime.utcnow() - STALE_RUN_AFTER
        warning = None
        if latest.failed_pages and latest.deleted_records:
            # Invoices on the failed pages were never seen, so they were pruned too
            warning = (
                f"{latest.deleted_records} invoices were deleted during a run "
                f"with {latest.failed_pages} failed pages"
            )
        return SyncStatus(
            is_running=self.is_running or (latest.status == STATUS_RUNNING and recently_started),
            last_sync=latest.start_time,
            last_sync_status=latest.status,
            total_invoices=total_invoices,
            total_employees=total_employees,
            duration=latest.duration_seconds,
            error_message=latest.error_message,
            processed_records=latest.processed_records,
            api_calls=latest.api_calls_count,
            failed_pages=latest.failed_pages,
            deleted_records=latest.deleted_records,
            delete_failures=latest.delete_failures,
            warning=warning,
        )

    # ─── Internal helpers ─────────────────────────────────────────────────────

    async def _run_job(self, job_id: str) -> None:
        try:
            await self.run_full_sync()
            logger.info("Sync job %s finished", job_id)
        except SyncAlreadyRunningError:
            logger.warning("Sync job %s skipped: a sync is already running", job_id)
        except Exception as exc:
            # Already recorded on the SyncLog; nobody awaits this task
            logger.error("Sync job %s failed: %s", job_id, exc)

    async def _paginate_and_reconcile(self, log: SyncLog) -> SyncResult:
        result = SyncResult()
        batch: List[Invoice] = []
        page_size = self.config.page_size

        existing_ids = self.store.get_all_invoice_ids()
        created_at_by_id = self.store.get_created_at_by_id()
        found_ids: Set[int] = set()
        logger.info("%d invoices already in the local store", len(existing_ids))

        page = 1
        while result.has_more_data:
            try:
                if page > 1 and self.config.page_delay_seconds > 0:
                    await asyncio.sleep(self.config.page_delay_seconds)

                logger.info("Fetching page %d...", page)
                records = await self.client.fetch_page(page, page_size)
                result.api_calls += 1

                if not records:
                    logger.info("No more invoices found. Stopping at page %d", page)
                    result.has_more_data = False
                    break

                if len(records) < page_size:
                    result.has_more_data = False
                    logger.info(
                        "Last page reached. Found %d invoices on page %d", len(records), page
                    )

                for raw in records:
                    invoice = await self._build_invoice(raw, created_at_by_id)
                    if invoice is None:
                        continue
                    batch.append(invoice)
                    found_ids.add(invoice.id)
                    result.processed_invoices += 1

                    if len(batch) >= self.config.upsert_batch_size:
                        self._save_batch(batch)
                        batch = []
                        logger.info("Saved batch. Total processed: %d", result.processed_invoices)

                result.total_invoices += len(records)
                result.last_page = page

                self._apply_counters(log, result)
                log.last_page_processed = page
                self.log_store.update(log)

                page += 1

            except PersistenceWriteError:
                raise
            except Exception as exc:
                logger.error("Error processing page %d: %s", page, exc)
                result.failed_pages += 1
                page += 1
                if result.failed_pages > self.config.max_failed_pages:
                    logger.error(
                        "Too many failed pages (%d). Stopping sync.", result.failed_pages
                    )
                    break

        if batch:
            self._save_batch(batch)
            logger.info("Saved final batch of %d invoices", len(batch))

        if result.failed_pages:
            logger.warning(
                "%d pages failed; invoices on those pages may be pruned as missing",
                result.failed_pages,
            )
        self._delete_missing_invoices(existing_ids, found_ids, log, result)
        return result

    async def _build_invoice(
        self, raw, created_at_by_id: Dict[int, datetime]
    ) -> Optional[Invoice]:
        """Normalize one raw record into an Invoice, or None if it must be skipped."""
        try:
            fields = normalize_invoice(raw)
        except RecordParseError as exc:
            logger.warning("Skipping invoice record: %s", exc)
            return None

        now = datetime.utcnow()
        invoice = Invoice(
            **fields,
            salesperson_name=await self._resolve_salesperson(fields["employee_id"]),
            synced_at=now,
            updated_at=now,
        )
        if invoice.id in created_at_by_id:
            invoice.created_at = created_at_by_id[invoice.id]
        return invoice

    async def _resolve_salesperson(self, employee_id: Optional[int]) -> str:
        """Local employee table first, then the ERP. Never raises."""
        if not employee_id:
            return NO_SALESPERSON
        try:
            employee = self.store.get_employee_by_id(employee_id)
            if employee is not None:
                return employee.full_name
            name = await self.client.resolve_employee_name(employee_id)
        except Exception as exc:
            logger.warning("Could not resolve salesperson %s: %s", employee_id, exc)
            return UNKNOWN_SALESPERSON
        if not name or name == UNKNOWN_EMPLOYEE:
            return UNKNOWN_SALESPERSON
        return name

    def _save_batch(self, invoices: List[Invoice]) -> None:
        if not invoices:
            return
        try:
            self.store.upsert_batch(invoices)
        except Exception as exc:
            logger.error("Failed to save invoice batch of %d records: %s", len(invoices), exc)
            raise PersistenceWriteError(
                f"Failed to save invoice batch of {len(invoices)} records: {exc}"
            ) from exc

    def _delete_missing_invoices(
        self,
        existing_ids: Set[int],
        found_ids: Set[int],
        log: SyncLog,
        result: SyncResult,
    ) -> None:
        """Delete local invoices the ERP did not return. Failures are logged, not raised."""
        to_delete = sorted(existing_ids - found_ids)
        if not to_delete:
            logger.info("No invoices to delete - all existing invoices found in ERP")
            return

        logger.info("Found %d invoices to delete (not found in ERP)", len(to_delete))
        size = self.config.delete_batch_size
        try:
            for start in range(0, len(to_delete), size):
                chunk = to_delete[start:start + size]
                self.store.delete_by_ids(chunk)
                result.deleted_invoices += len(chunk)
                logger.info(
                    "Deleted batch of %d invoices. Total deleted: %d",
                    len(chunk),
                    result.deleted_invoices,
                )
                log.deleted_records = result.deleted_invoices
                log.notes = (
                    f"Synced {len(found_ids)} invoices, "
                    f"deleted {result.deleted_invoices} missing invoices"
                )
                self.log_store.update(log)
        except Exception as exc:
            logger.error("Failed to delete missing invoices: %s", exc)
            result.delete_failures += 1

    async def _sync_employees(self) -> int:
        log = self.log_store.insert(
            SyncLog(
                sync_type=SYNC_TYPE_EMPLOYEES,
                start_time=datetime.utcnow(),
                status=STATUS_RUNNING,
            )
        )
        logger.info("Syncing employees (log %s)...", log.id)

        try:
            employees: List[Employee] = []
            page_size = self.config.page_size
            page = 1
            while True:
                try:
                    if page > 1 and self.config.page_delay_seconds > 0:
                        await asyncio.sleep(self.config.page_delay_seconds)
                    records = await self.client.fetch_employees_page(page, page_size)
                    log.api_calls_count += 1
                    if not records:
                        break

                    now = datetime.utcnow()
                    for raw in records:
                        try:
                            fields = normalize_employee(raw)
                        except RecordParseError as exc:
                            logger.warning("Skipping employee record: %s", exc)
                            continue
                        employees.append(Employee(**fields, synced_at=now, updated_at=now))

                    log.total_records += len(records)
                    log.last_page_processed = page
                    page += 1
                    if len(records) < page_size:
                        break
                except Exception as exc:
                    logger.error("Error processing employee page %d: %s", page, exc)
                    log.failed_pages += 1
                    page += 1
                    if log.failed_pages > MAX_FAILED_EMPLOYEE_PAGES:
                        logger.error("Too many failed employee pages. Stopping.")
                        break

            if employees:
                self.store.upsert_employees(employees)
                logger.info("Employee sync completed. Saved %d employees", len(employees))
            else:
                logger.warning("No employees found to sync")

            log.processed_records = len(employees)
            log.notes = f"Synced {len(employees)} employees"
            self._finish_sync_log(log, status=STATUS_COMPLETED)
            return len(employees)

        except Exception as exc:
            logger.error("Employee sync failed: %s", exc)
            self._finish_sync_log(log, status=STATUS_FAILED, error_message=str(exc))
            raise

    @staticmethod
    def _apply_counters(log: SyncLog, result: SyncResult) -> None:
        log.total_records = result.total_invoices
        log.processed_records = result.processed_invoices
        log.api_calls_count = result.api_calls
        log.failed_pages = result.failed_pages
        log.deleted_records = result.deleted_invoices
        log.delete_failures = result.delete_failures

    def _finish_sync_log(
        self,
        log: SyncLog,
        *,
        status: str,
        error_message: Optional[str] = None,
    ) -> None:
        log.status = status
        log.end_time = datetime.utcnow()
        log.duration_seconds = int((log.end_time - log.start_time).total_seconds())
        log.error_message = error_message
        self.log_store.update(log)
