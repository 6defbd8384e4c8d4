"""Task actions: create, update and complete HR tasks."""

from typing import Any, Dict

from sqlalchemy import select

from actions.base_action import ActionResult, BaseAction
from core.constants import TaskPriority, TaskStatus
from core.exceptions import ActionConfigError
from core.utils import utcnow_naive
from db.models.notification import Notification
from db.models.task import Task
from workflow.context import parse_timestamp

_UPDATABLE_FIELDS = {"title", "description", "assigned_to", "case_id", "priority", "status", "due_date"}


def _task_to_dict(task: Task) -> Dict[str, Any]:
    return {
        "task_id": task.id,
        "title": task.title,
        "assigned_to": task.assigned_to,
        "case_id": task.case_id,
        "priority": task.priority,
        "status": task.status,
        "due_date": task.due_date.isoformat() if task.due_date else None,
        "completed_at": task.completed_at.isoformat() if task.completed_at else None,
    }


def _check_choice(field: str, value: str, allowed: type) -> str:
    choices = {member.value for member in allowed}
    if value not in choices:
        raise ActionConfigError(f"Invalid {field} '{value}' (expected one of {sorted(choices)})")
    return value


async def _load_task(session, task_id: str) -> Task:
    task = (await session.execute(select(Task).where(Task.id == task_id))).scalar_one_or_none()
    if task is None:
        raise ActionConfigError(f"Task not found: {task_id}")
    return task


class CreateTaskAction(BaseAction):
    """Create a task and notify the assignee in-app."""

    action_type = "create_task"
    display_name = "Create Task"
    description = "Create an HR task, optionally assigned and linked to a case"

    async def execute(self, params: Dict[str, Any], context) -> ActionResult:
        title = self.require(params, "title")
        priority = _check_choice(
            "priority", params.get("priority") or TaskPriority.MEDIUM.value, TaskPriority
        )
        due_date = parse_timestamp(params["due_date"]) if params.get("due_date") else None

        task = Task(
            title=str(title),
            description=params.get("description"),
            assigned_to=params.get("assigned_to"),
            case_id=params.get("case_id"),
            priority=priority,
            status=TaskStatus.OPEN.value,
            due_date=due_date,
            created_by_workflow=context.workflow_id,
        )

        async with self.require_session_factory()() as session:
            session.add(task)
            await session.flush()
            if task.assigned_to and params.get("notify", True):
                session.add(Notification(
                    user_id=task.assigned_to,
                    type="task_assigned",
                    title="New task assigned",
                    message=task.title,
                    link=f"/tasks/{task.id}",
                    extra_data={"workflow_execution_id": context.execution_id, "task_id": task.id},
                ))
            await session.commit()

        return ActionResult.ok(_task_to_dict(task))


class UpdateTaskAction(BaseAction):
    """Apply field updates to an existing task."""

    action_type = "update_task"
    display_name = "Update Task"
    description = "Update fields of an existing task"

    async def execute(self, params: Dict[str, Any], context) -> ActionResult:
        task_id = self.require(params, "task_id")
        updates = params.get("updates")
        if updates is None:
            updates = {k: v for k, v in params.items() if k != "task_id"}
        if not isinstance(updates, dict) or not updates:
            raise ActionConfigError("update_task needs at least one field to update")

        unknown = set(updates) - _UPDATABLE_FIELDS
        if unknown:
            raise ActionConfigError(f"Cannot update task field(s): {', '.join(sorted(unknown))}")
        if "priority" in updates:
            _check_choice("priority", updates["priority"], TaskPriority)
        if "status" in updates:
            _check_choice("status", updates["status"], TaskStatus)

        async with self.require_session_factory()() as session:
            task = await _load_task(session, task_id)
            for field_name, value in updates.items():
                if field_name == "due_date" and value:
                    value = parse_timestamp(value)
                setattr(task, field_name, value)
            if updates.get("status") == TaskStatus.COMPLETED.value and task.completed_at is None:
                task.completed_at = utcnow_naive()
            await session.commit()

        result = _task_to_dict(task)
        result["updated_fields"] = sorted(updates)
        return ActionResult.ok(result)


class CompleteTaskAction(BaseAction):
    """Mark a task completed."""

    action_type = "complete_task"
    display_name = "Complete Task"
    description = "Set a task's status to completed"

    async def execute(self, params: Dict[str, Any], context) -> ActionResult:
        task_id = self.require(params, "task_id")

        async with self.require_session_factory()() as session:
            task = await _load_task(session, task_id)
            task.status = TaskStatus.COMPLETED.value
            task.completed_at = utcnow_naive()
            await session.commit()

        return ActionResult.ok(_task_to_dict(task))


TASK_ACTION_TYPES = {
    "create_task": CreateTaskAction,
    "update_task": UpdateTaskAction,
    "complete_task": CompleteTaskAction,
}
