"""
Main entrypoint: one-off sync commands, or the daily scheduler.

FastAPI runs separately under uvicorn.

Usage:
    python -m invoice_mirror sync             # one full invoice sync
    python -m invoice_mirror sync-employees   # mirror the employee list
    python -m invoice_mirror status           # print the latest sync status
    python -m invoice_mirror                  # run the daily scheduler
    uvicorn invoice_mirror.api.main:app --host 0.0.0.0 --port 8000  # starts API
"""
import asyncio
import logging
import sys

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)


def _build_service():
    from invoice_mirror.db.engine import get_engine
    from invoice_mirror.sync.factory import build_sync_service

    return build_sync_service(get_engine())


async def _run_sync() -> int:
    service = _build_service()
    async with service.client:
        try:
            result = await service.run_full_sync()
        except Exception as exc:
            logger.error("Sync failed: %s", exc)
            return 1
    logger.info(
        "Processed %d invoices on %d pages (%d failed), deleted %d",
        result.processed_invoices,
        result.last_page,
        result.failed_pages,
        result.deleted_invoices,
    )
    return 0


async def _run_employee_sync() -> int:
    service = _build_service()
    async with service.client:
        try:
            count = await service.sync_employees()
        except Exception as exc:
            logger.error("Employee sync failed: %s", exc)
            return 1
    logger.info("Saved %d employees", count)
    return 0


async def _print_status() -> int:
    service = _build_service()
    async with service.client:
        print(service.get_sync_status().model_dump_json(indent=2))
    return 0


async def _run_scheduler() -> None:
    from invoice_mirror.config import get_settings
    from invoice_mirror.scheduler.jobs import build_scheduler

    settings = get_settings()
    service = _build_service()

    scheduler = build_scheduler(service)
    scheduler.start()
    logger.info(
        "Scheduler started (daily sync at %02d:00 UTC). Press Ctrl+C to stop.",
        settings.sync_hour,
    )

    try:
        await asyncio.Event().wait()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Shutting down...")
    finally:
        scheduler.shutdown()
        await service.client.close()
        logger.info("Goodbye.")


_COMMANDS = {
    "sync": _run_sync,
    "sync-employees": _run_employee_sync,
    "status": _print_status,
}


if __name__ == "__main__":
    # Dispatch on first argument; no argument runs the scheduler
    if len(sys.argv) > 1:
        command = _COMMANDS.get(sys.argv[1])
        if command is None:
            print(f"Unknown command {sys.argv[1]!r}. Expected one of: {', '.join(_COMMANDS)}")
            sys.exit(2)
        sys.exit(asyncio.run(command()))
    else:
        asyncio.run(_run_scheduler())
