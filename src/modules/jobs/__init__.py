"""
Jobs Module

Job lifecycle: OPEN -> BIDDING -> IN_PROGRESS -> COMPLETED, or CANCELLED from
any non-terminal state.
"""
from src.modules.jobs.models import Job, JobStatus, JobUrgency, Review

__all__ = [
    "Job",
    "JobStatus",
    "JobUrgency",
    "Review",
]
