"""Wire an InvoiceSyncService from settings."""
from typing import Optional

from invoice_mirror.config import Settings, get_settings
from invoice_mirror.db.sql_store import SqlInvoiceStore, SqlSyncLogStore
from invoice_mirror.erp.client import ErpClient, ErpClientConfig
from invoice_mirror.sync.service import InvoiceSyncService, SyncConfig


def build_sync_service(engine, settings: Optional[Settings] = None, transport=None) -> InvoiceSyncService:
    """
    Args:
        engine: SQLAlchemy engine for the local mirror.
        settings: Defaults to get_settings().
        transport: Optional httpx transport passed to the ERP client.

    The caller owns the returned service's client and must close it
    (``await service.client.close()``).
    """
    settings = settings or get_settings()
    client = ErpClient(ErpClientConfig.from_settings(settings), transport=transport)
    return InvoiceSyncService(
        client=client,
        store=SqlInvoiceStore(engine),
        log_store=SqlSyncLogStore(engine),
        config=SyncConfig.from_settings(settings),
    )
