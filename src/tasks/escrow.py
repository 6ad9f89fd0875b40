"""
Escrow Background Tasks
"""
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.core.config import settings
from src.core.locks import KeyedLocks
from src.core.logging import get_logger
from src.modules.notifications.dispatcher import NotificationDispatcher
from src.modules.notifications.push import FirebasePushGateway, PushGateway
from src.modules.notifications.sessions import SessionRegistry
from src.worker import celery_app

logger = get_logger(__name__)


async def sweep_expired_funding(
    session_maker: async_sessionmaker[AsyncSession],
    push: PushGateway,
    limit: int = 100,
) -> dict:
    """
    Cancel every job whose escrow stayed pending_funding past the timeout.

    The worker has no live sessions, so participants are reached by push only.
    Each job is handled in its own transaction; one failure does not stop the
    sweep.
    """
    from src.modules.jobs.service import JobLifecycleManager

    dispatcher = NotificationDispatcher(
        SessionRegistry(),
        push,
        session_maker,
        max_push_attempts=settings.push_max_attempts,
        retry_backoff=settings.push_retry_backoff_seconds,
    )
    locks = KeyedLocks()
    await dispatcher.start()

    cancelled: list[str] = []
    failed: list[str] = []
    job_ids: list = []
    try:
        async with session_maker() as session:
            job_ids = await JobLifecycleManager(session, locks, dispatcher).find_expired_funding(limit)

        for job_id in job_ids:
            async with session_maker() as session:
                manager = JobLifecycleManager(session, locks, dispatcher)
                try:
                    job = await manager.expire_unfunded(job_id)
                except Exception:
                    logger.exception("Funding expiry failed", job_id=str(job_id))
                    failed.append(str(job_id))
                    continue
                if job is not None:
                    cancelled.append(str(job_id))
    finally:
        await dispatcher.stop()

    logger.info(
        "Funding timeout sweep completed",
        candidates=len(job_ids),
        cancelled=len(cancelled),
        failed=len(failed),
    )
    return {"status": "completed", "cancelled": cancelled, "failed": failed}


@celery_app.task(name="src.tasks.escrow.expire_pending_funding")
def expire_pending_funding() -> dict:
    """
    Cancel jobs whose accepted bid was never paid for.
    Runs every few minutes via Celery Beat.
    """
    import asyncio
    from src.core.database import async_session_maker, engine

    async def _sweep():
        try:
            return await sweep_expired_funding(
                async_session_maker,
                FirebasePushGateway(settings.firebase_credentials_path, settings.firebase_project_id),
            )
        finally:
            # Pooled connections belong to this event loop only
            await engine.dispose()

    return asyncio.run(_sweep())
