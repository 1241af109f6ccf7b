"""
Storage interfaces the sync service is written against.

The sync algorithm only ever talks to these two ABCs; the SQLModel
implementation lives in invoice_mirror.db.sql_store and any other backend
(a document store, an in-memory fake) can be swapped in without touching
the service.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional, Set

from invoice_mirror.models.invoice import Employee, Invoice
from invoice_mirror.models.sync import SyncLog


class SyncLogClosedError(RuntimeError):
    """Raised when updating a SyncLog that already reached a terminal state."""


class InvoiceStore(ABC):
    """The local mirror of ERP invoices and employees."""

    @abstractmethod
    def get_all_invoice_ids(self) -> Set[int]:
        ...

    @abstractmethod
    def get_invoice_by_id(self, invoice_id: int) -> Optional[Invoice]:
        ...

    @abstractmethod
    def get_created_at_by_id(self) -> Dict[int, datetime]:
        """Snapshot of first-seen timestamps for every stored invoice."""

    @abstractmethod
    def upsert_batch(self, invoices: List[Invoice]) -> None:
        """Insert or update by id. Must never overwrite an existing created_at."""

    @abstractmethod
    def delete_by_ids(self, invoice_ids: List[int]) -> int:
        """Delete the given ids; returns how many rows were removed."""

    @abstractmethod
    def get_employee_by_id(self, employee_id: int) -> Optional[Employee]:
        ...

    @abstractmethod
    def upsert_employees(self, employees: List[Employee]) -> None:
        ...

    @abstractmethod
    def count_invoices(self) -> int:
        ...

    @abstractmethod
    def count_employees(self) -> int:
        ...


class SyncLogStore(ABC):
    """Durable record of sync runs."""

    @abstractmethod
    def insert(self, log: SyncLog) -> SyncLog:
        """Persist a new log and return it with its id assigned."""

    @abstractmethod
    def update(self, log: SyncLog) -> None:
        """
        Overwrite the stored log with log's fields.

        Raises:
            SyncLogClosedError: if the stored log is already completed/failed.
        """

    @abstractmethod
    def get_latest(self, sync_type: Optional[str] = None) -> Optional[SyncLog]:
        ...

    @abstractmethod
    def list_recent(self, limit: int = 10) -> List[SyncLog]:
        ...
