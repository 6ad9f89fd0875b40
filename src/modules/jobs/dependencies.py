"""
Jobs Module - FastAPI Dependencies
"""
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.database import get_db
from src.core.locks import KeyedLocks
from src.modules.jobs.service import JobLifecycleManager
from src.modules.notifications.dependencies import DispatcherDep


def get_job_locks(request: Request) -> KeyedLocks:
    return request.app.state.locks


async def get_lifecycle_manager(
    db: Annotated[AsyncSession, Depends(get_db)],
    locks: Annotated[KeyedLocks, Depends(get_job_locks)],
    dispatcher: DispatcherDep,
) -> JobLifecycleManager:
    """Get JobLifecycleManager bound to the request session and the shared locks."""
    return JobLifecycleManager(db, locks, dispatcher)


# Type aliases
JobLocksDep = Annotated[KeyedLocks, Depends(get_job_locks)]
JobLifecycleDep = Annotated[JobLifecycleManager, Depends(get_lifecycle_manager)]
