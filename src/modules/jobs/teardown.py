"""
Marketplace data teardown.

Removes jobs together with everything hanging off them, children first, in
a single transaction. Users and device tokens are left alone.
"""
from uuid import UUID

from sqlalchemy import delete, select, true
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.logging import get_logger
from src.modules.bids.models import Bid
from src.modules.conversations.models import Conversation, Message
from src.modules.escrow.models import EscrowAccount, Payment
from src.modules.jobs.models import Job, Review

logger = get_logger(__name__)


async def purge_jobs(db: AsyncSession, job_ids: list[UUID] | None = None) -> dict[str, int]:
    """
    Delete the given jobs (every job when ``job_ids`` is None) and their
    reviews, payments, bids, escrow accounts, messages and conversations.

    Returns the number of deleted rows per table. Rolls back on any error.
    """
    def scoped(column):
        return column.in_(job_ids) if job_ids is not None else true()

    escrow_ids = select(EscrowAccount.id).where(scoped(EscrowAccount.job_id))
    conversation_ids = select(Conversation.id).where(scoped(Conversation.job_id))

    statements = [
        ("review", delete(Review).where(scoped(Review.job_id))),
        ("payment", delete(Payment).where(Payment.escrow_id.in_(escrow_ids))),
        ("bid", delete(Bid).where(scoped(Bid.job_id))),
        ("escrow_account", delete(EscrowAccount).where(scoped(EscrowAccount.job_id))),
        ("message", delete(Message).where(Message.conversation_id.in_(conversation_ids))),
        ("conversation", delete(Conversation).where(scoped(Conversation.job_id))),
        ("job", delete(Job).where(scoped(Job.id))),
    ]

    counts: dict[str, int] = {}
    try:
        for table, statement in statements:
            result = await db.execute(statement.execution_options(synchronize_session=False))
            counts[table] = result.rowcount
        await db.commit()
    except Exception:
        await db.rollback()
        logger.exception("Marketplace purge failed, rolled back", job_ids=len(job_ids) if job_ids else "all")
        raise

    logger.warning("Marketplace data purged", **counts)
    return counts
