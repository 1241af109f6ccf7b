"""Tests for the SQLModel store adapters."""
from datetime import datetime
from decimal import Decimal

import pytest
from sqlmodel import Session

from invoice_mirror.db.sql_store import SqlInvoiceStore, SqlSyncLogStore
from invoice_mirror.db.store import SyncLogClosedError
from invoice_mirror.models.invoice import Employee, Invoice
from invoice_mirror.models.sync import SyncLog


def make_invoice(invoice_id: int, **overrides) -> Invoice:
    fields = dict(
        id=invoice_id,
        invoice_number=f"INV-{invoice_id}",
        invoice_date=datetime(2025, 1, 15),
        created_at=datetime(2025, 1, 15, 8, 0),
    )
    fields.update(overrides)
    return Invoice(**fields)


@pytest.fixture
def store(engine) -> SqlInvoiceStore:
    return SqlInvoiceStore(engine)


@pytest.fixture
def log_store(engine) -> SqlSyncLogStore:
    return SqlSyncLogStore(engine)


class TestInvoiceStore:
    def test_upsert_inserts_new_rows(self, store):
        store.upsert_batch([make_invoice(1), make_invoice(2)])
        assert store.get_all_invoice_ids() == {1, 2}
        assert store.count_invoices() == 2

    def test_upsert_updates_existing_row(self, store, seeded_invoice):
        store.upsert_batch([make_invoice(1, total=Decimal("99.50"), customer_name="Globex")])
        invoice = store.get_invoice_by_id(1)
        assert invoice.total == Decimal("99.50")
        assert invoice.customer_name == "Globex"
        assert store.count_invoices() == 1

    def test_upsert_never_overwrites_created_at(self, store, seeded_invoice):
        store.upsert_batch([make_invoice(1, created_at=datetime(2030, 1, 1))])
        assert store.get_invoice_by_id(1).created_at == datetime(2023, 5, 1, 12, 0)

    def test_same_id_twice_in_one_batch(self, store):
        store.upsert_batch([make_invoice(5, total=Decimal("1")), make_invoice(5, total=Decimal("2"))])
        assert store.count_invoices() == 1
        assert store.get_invoice_by_id(5).total == Decimal("2")

    def test_caller_objects_stay_usable(self, store):
        invoice = make_invoice(3)
        store.upsert_batch([invoice])
        assert invoice.invoice_number == "INV-3"

    def test_get_created_at_by_id(self, store, seeded_invoice):
        assert store.get_created_at_by_id() == {1: datetime(2023, 5, 1, 12, 0)}

    def test_get_invoice_by_id_missing(self, store):
        assert store.get_invoice_by_id(404) is None

    def test_delete_by_ids(self, store):
        store.upsert_batch([make_invoice(i) for i in (1, 2, 3)])
        removed = store.delete_by_ids([2, 3, 99])
        assert removed == 2
        assert store.get_all_invoice_ids() == {1}

    def test_delete_empty_list_is_noop(self, store):
        assert store.delete_by_ids([]) == 0

    def test_employees(self, store):
        store.upsert_employees([Employee(id=7, first_name="Ada", last_name="Lovelace")])
        store.upsert_employees([Employee(id=7, first_name="Ada", last_name="King")])
        assert store.count_employees() == 1
        assert store.get_employee_by_id(7).full_name == "Ada King"
        assert store.get_employee_by_id(8) is None


class TestSyncLogStore:
    def test_insert_assigns_id(self, log_store):
        log = log_store.insert(SyncLog(sync_type="invoices"))
        assert log.id is not None
        assert log.status == "running"

    def test_update_persists_counters(self, log_store, engine):
        log = log_store.insert(SyncLog(sync_type="invoices"))
        log.processed_records = 140
        log.last_page_processed = 2
        log_store.update(log)
        with Session(engine) as s:
            stored = s.get(SyncLog, log.id)
        assert stored.processed_records == 140
        assert stored.last_page_processed == 2

    def test_terminal_log_is_immutable(self, log_store):
        log = log_store.insert(SyncLog(sync_type="invoices"))
        log.status = "completed"
        log_store.update(log)
        log.notes = "rewritten"
        with pytest.raises(SyncLogClosedError):
            log_store.update(log)

    def test_get_latest_filters_by_type(self, log_store):
        log_store.insert(SyncLog(sync_type="invoices", start_time=datetime(2025, 1, 1)))
        log_store.insert(SyncLog(sync_type="employees", start_time=datetime(2025, 1, 2)))
        assert log_store.get_latest("invoices").start_time == datetime(2025, 1, 1)
        assert log_store.get_latest().sync_type == "employees"

    def test_get_latest_none(self, log_store):
        assert log_store.get_latest("invoices") is None

    def test_list_recent_newest_first(self, log_store):
        for day in (1, 3, 2):
            log_store.insert(SyncLog(start_time=datetime(2025, 1, day)))
        logs = log_store.list_recent(limit=2)
        assert [log.start_time.day for log in logs] == [3, 2]
