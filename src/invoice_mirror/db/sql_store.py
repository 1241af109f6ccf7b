"""SQLModel-backed implementations of InvoiceStore and SyncLogStore."""
from datetime import datetime
from typing import Dict, List, Optional, Set

from sqlmodel import Session, col, func, select

from invoice_mirror.db.store import InvoiceStore, SyncLogClosedError, SyncLogStore
from invoice_mirror.models.invoice import Employee, Invoice
from invoice_mirror.models.sync import SyncLog


class SqlInvoiceStore(InvoiceStore):
    def __init__(self, engine):
        """
        Args:
            engine: SQLAlchemy engine (SQLModel create_engine result).
        """
        self.engine = engine

    def get_all_invoice_ids(self) -> Set[int]:
        with Session(self.engine) as s:
            return set(s.exec(select(Invoice.id)).all())

    def get_invoice_by_id(self, invoice_id: int) -> Optional[Invoice]:
        with Session(self.engine) as s:
            return s.get(Invoice, invoice_id)

    def get_created_at_by_id(self) -> Dict[int, datetime]:
        with Session(self.engine) as s:
            rows = s.exec(select(Invoice.id, Invoice.created_at)).all()
        return {invoice_id: created_at for invoice_id, created_at in rows}

    def upsert_batch(self, invoices: List[Invoice]) -> None:
        if not invoices:
            return
        with Session(self.engine) as s:
            for invoice in invoices:
                fields = invoice.model_dump()
                existing = s.get(Invoice, invoice.id)
                if existing:
                    # Update in place; created_at is write-once
                    fields.pop("id")
                    fields.pop("created_at")
                    for k, v in fields.items():
                        setattr(existing, k, v)
                    s.add(existing)
                else:
                    # Copy so the caller's object is not bound to this session
                    s.add(Invoice(**fields))
                # Same id twice in one batch must hit the row added above
                s.flush()
            s.commit()

    def delete_by_ids(self, invoice_ids: List[int]) -> int:
        if not invoice_ids:
            return 0
        with Session(self.engine) as s:
            rows = s.exec(select(Invoice).where(col(Invoice.id).in_(invoice_ids))).all()
            for row in rows:
                s.delete(row)
            s.commit()
        return len(rows)

    def get_employee_by_id(self, employee_id: int) -> Optional[Employee]:
        with Session(self.engine) as s:
            return s.get(Employee, employee_id)

    def upsert_employees(self, employees: List[Employee]) -> None:
        if not employees:
            return
        with Session(self.engine) as s:
            for employee in employees:
                s.merge(Employee(**employee.model_dump()))
            s.commit()

    def count_invoices(self) -> int:
        with Session(self.engine) as s:
            return s.exec(select(func.count()).select_from(Invoice)).one()

    def count_employees(self) -> int:
        with Session(self.engine) as s:
            return s.exec(select(func.count()).select_from(Employee)).one()


class SqlSyncLogStore(SyncLogStore):
    def __init__(self, engine):
        self.engine = engine

    def insert(self, log: SyncLog) -> SyncLog:
        with Session(self.engine) as s:
            s.add(log)
            s.commit()
            s.refresh(log)
        return log

    def update(self, log: SyncLog) -> None:
        with Session(self.engine) as s:
            db_log = s.get(SyncLog, log.id)
            if db_log is None:
                raise LookupError(f"SyncLog {log.id} does not exist")
            if db_log.is_terminal:
                raise SyncLogClosedError(
                    f"SyncLog {log.id} is already {db_log.status}"
                )
            for k, v in log.model_dump(exclude={"id"}).items():
                setattr(db_log, k, v)
            s.add(db_log)
            s.commit()

    def get_latest(self, sync_type: Optional[str] = None) -> Optional[SyncLog]:
        with Session(self.engine) as s:
            query = select(SyncLog)
            if sync_type is not None:
                query = query.where(SyncLog.sync_type == sync_type)
            return s.exec(
                query.order_by(col(SyncLog.start_time).desc(), col(SyncLog.id).desc())
            ).first()

    def list_recent(self, limit: int = 10) -> List[SyncLog]:
        with Session(self.engine) as s:
            return list(
                s.exec(
                    select(SyncLog)
                    .order_by(col(SyncLog.start_time).desc(), col(SyncLog.id).desc())
                    .limit(limit)
                ).all()
            )
