"""Sync audit log model."""
from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

STATUS_RUNNING = "running"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
TERMINAL_STATUSES = (STATUS_COMPLETED, STATUS_FAILED)


class SyncLog(SQLModel, table=True):
    """Records each sync run for audit and progress reporting."""

    id: Optional[int] = Field(default=None, primary_key=True)
    sync_type: str = Field(default="invoices", index=True)  # "invoices", "employees"
    start_time: datetime = Field(default_factory=datetime.utcnow, index=True)
    end_time: Optional[datetime] = None
    status: str = STATUS_RUNNING  # "running", "completed", "failed"

    total_records: int = 0
    processed_records: int = 0
    failed_pages: int = 0
    api_calls_count: int = 0
    deleted_records: int = 0
    delete_failures: int = 0

    # Progress hint only; runs always restart at page 1
    last_page_processed: Optional[int] = None

    duration_seconds: Optional[int] = None
    notes: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
