"""
Model registry.

Importing this module registers every mapped table on ``Base.metadata``
(used by ``init_db``, Alembic and the test suite).
"""
from src.core.models import Base
from src.modules.auth.models import User
from src.modules.bids.models import Bid
from src.modules.conversations.models import Conversation, Message
from src.modules.escrow.models import EscrowAccount, Payment
from src.modules.jobs.models import Job, Review
from src.modules.notifications.models import DeviceToken, NotificationLog

__all__ = [
    "Base",
    "User",
    "Job",
    "Review",
    "Bid",
    "EscrowAccount",
    "Payment",
    "Conversation",
    "Message",
    "DeviceToken",
    "NotificationLog",
]
