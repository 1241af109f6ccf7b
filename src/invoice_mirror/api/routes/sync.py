"""Sync trigger, status and history routes."""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from invoice_mirror.db.engine import get_engine
from invoice_mirror.sync.factory import build_sync_service
from invoice_mirror.sync.service import (
    InvoiceSyncService,
    SyncAlreadyRunningError,
    SyncStatus,
)

router = APIRouter()

# One service per process so every request shares the same run lease
_service: Optional[InvoiceSyncService] = None


def get_sync_service() -> InvoiceSyncService:
    """FastAPI dependency returning the process-wide sync service."""
    global _service
    if _service is None:
        _service = build_sync_service(get_engine())
    return _service


async def close_sync_service() -> None:
    global _service
    if _service is not None:
        await _service.client.close()
        _service = None


class SyncTriggerResponse(BaseModel):
    message: str
    job_id: str
    status: str = "queued"


class SyncHistoryItem(BaseModel):
    id: int
    sync_type: str
    status: str
    start_time: datetime
    end_time: Optional[datetime]
    duration: Optional[int]
    total_records: int
    processed_records: int
    failed_pages: int
    api_calls: int
    deleted_records: int
    delete_failures: int
    error_message: Optional[str]
    notes: Optional[str]


@router.post("/trigger", response_model=SyncTriggerResponse)
async def trigger_sync(service: InvoiceSyncService = Depends(get_sync_service)):
    """
    Start a full invoice sync in the background.
    Returns immediately; poll /sync/status for progress.
    """
    try:
        job_id = service.trigger_sync()
    except SyncAlreadyRunningError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return SyncTriggerResponse(message="Sync job started", job_id=job_id)


@router.get("/status", response_model=SyncStatus)
def sync_status(service: InvoiceSyncService = Depends(get_sync_service)):
    """Return the most recent invoice run and current mirror counts."""
    return service.get_sync_status()


@router.get("/history", response_model=List[SyncHistoryItem])
def sync_history(
    limit: int = Query(default=10, ge=1, le=100),
    service: InvoiceSyncService = Depends(get_sync_service),
):
    """Most recent sync runs, newest first."""
    return [
        SyncHistoryItem(
            id=log.id,
            sync_type=log.sync_type,
            status=log.status,
            start_time=log.start_time,
            end_time=log.end_time,
            duration=log.duration_seconds,
            total_records=log.total_records,
            processed_records=log.processed_records,
            failed_pages=log.failed_pages,
            api_calls=log.api_calls_count,
            deleted_records=log.deleted_records,
            delete_failures=log.delete_failures,
            error_message=log.error_message,
            notes=log.notes,
        )
        for log in service.log_store.list_recent(limit)
    ]
