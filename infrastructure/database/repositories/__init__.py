"""Repository facades exposing typed accessors over the low-level mixins.

Usage::

    handler = SQLiteDatabaseHandler("database/homecontrol.db")
    handler.create_tables()
    jobs = JobRepository(handler)
"""

from infrastructure.database.repositories.decisions import DecisionRepository
from infrastructure.database.repositories.feedback import FeedbackRepository
from infrastructure.database.repositories.jobs import JobRepository
from infrastructure.database.repositories.schedules import ScheduleRepository

__all__ = [
    "DecisionRepository",
    "FeedbackRepository",
    "JobRepository",
    "ScheduleRepository",
]
