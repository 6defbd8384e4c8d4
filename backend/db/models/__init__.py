"""Database models for the workflow engine.

This module imports all models to ensure they are registered
with SQLAlchemy's declarative base.
"""

from db.models.workflow import Workflow
from db.models.execution import WorkflowExecution
from db.models.execution_log import WorkflowLog
from db.models.schedule import WorkflowSchedule
from db.models.trigger_firing import TriggerFiring
from db.models.task import Task
from db.models.notification import Notification
from db.models.profile import Profile
from db.models.contract import Contract

__all__ = [
    "Workflow",
    "WorkflowExecution",
    "WorkflowLog",
    "WorkflowSchedule",
    "TriggerFiring",
    "Task",
    "Notification",
    "Profile",
    "Contract",
]
