import asyncio
import logging
from typing import Optional

from labsync.config.database import SessionLocal
from labsync.config.settings import settings
from labsync.modules.requests.service import LoanRequestService

logger = logging.getLogger(__name__)


def run_request_purge(days: Optional[int] = None) -> int:
    """Una pasada de depuración con su propia sesión"""
    db = SessionLocal()
    try:
        return LoanRequestService(db).purge_old_requests(days)
    finally:
        db.close()


async def purge_requests_loop():
    """Depurar solicitudes cerradas cada purge_interval_hours hasta que se cancele la tarea"""
    interval = settings.purge_interval_hours * 3600
    while True:
        try:
            await asyncio.to_thread(run_request_purge)
        except Exception as e:
            logger.error(f"Error en la depuración programada de solicitudes: {e}", exc_info=True)
        await asyncio.sleep(interval)


def start_purge_task() -> asyncio.Task:
    logger.info(
        f"Depuración programada activa: cada {settings.purge_interval_hours} h, "
        f"retención {settings.request_retention_days} días"
    )
    return asyncio.create_task(purge_requests_loop())
