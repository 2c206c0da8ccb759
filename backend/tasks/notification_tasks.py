"""Celery tasks for emergency notification fan-out."""
import asyncio
import logging
from uuid import UUID

from tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


def _run_async(coro):
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@celery_app.task(name="tasks.notification_tasks.broadcast_emergency")
def broadcast_emergency(request_id: str, message: str | None = None):
    """Re-broadcast an open emergency request to its matching donors."""
    from bloodfinder.db.postgres import async_session
    from bloodfinder.services import emergency_service, notification_service

    async def _run():
        async with async_session() as session:
            request = await emergency_service.get_request(session, UUID(request_id))
            if not emergency_service.is_open(request):
                await session.commit()
                logger.info("Skipping broadcast of closed request %s", request_id)
                return []
            targets = await notification_service.dispatch_broadcast(session, request, message)
            await session.commit()
            return targets

    targets = _run_async(_run())
    logger.info("Broadcast request %s to %d topics", request_id, len(targets))
    return targets
