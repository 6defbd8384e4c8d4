"""In-app notification actions."""

from typing import Any, Dict

from sqlalchemy import select

from actions.base_action import ActionResult, BaseAction
from core.exceptions import ActionConfigError
from db.models.notification import Notification
from db.models.profile import Profile


def _build_notifications(user_ids: list, params: Dict[str, Any], context) -> list[Notification]:
    title = params.get("title")
    if not title:
        raise ActionConfigError("Missing required parameter 'title'")
    extra = {
        "workflow_execution_id": context.execution_id,
        "workflow_id": context.workflow_id,
    }
    return [
        Notification(
            user_id=str(user_id),
            type=params.get("type") or "info",
            title=str(title),
            message=params.get("message"),
            link=params.get("link"),
            extra_data=extra,
        )
        for user_id in user_ids
    ]


class SendNotificationAction(BaseAction):
    """Notify one or more specific users."""

    action_type = "send_notification"
    display_name = "Send Notification"
    description = "Create in-app notifications for specific users"

    async def execute(self, params: Dict[str, Any], context) -> ActionResult:
        user_ids = self.as_list(params.get("user_id") or params.get("user_ids"))
        if not user_ids:
            raise ActionConfigError("Missing required parameter 'user_id'")
        notifications = _build_notifications(user_ids, params, context)

        async with self.require_session_factory()() as session:
            session.add_all(notifications)
            await session.commit()

        return ActionResult.ok({
            "notification_ids": [n.id for n in notifications],
            "count": len(notifications),
        })


class SendBulkNotificationAction(BaseAction):
    """Notify every active user with a role or in a department."""

    action_type = "send_bulk_notification"
    display_name = "Send Bulk Notification"
    description = "Notify all users with a given role or department"

    async def execute(self, params: Dict[str, Any], context) -> ActionResult:
        role = params.get("role")
        department_id = params.get("department_id")
        if not role and not department_id:
            raise ActionConfigError("send_bulk_notification needs 'role' or 'department_id'")

        stmt = select(Profile.id).where(Profile.is_active == True)  # noqa: E712
        if role:
            stmt = stmt.where(Profile.role == role)
        if department_id:
            stmt = stmt.where(Profile.department_id == department_id)

        async with self.require_session_factory()() as session:
            user_ids = list((await session.execute(stmt)).scalars().all())
            if not user_ids:
                return ActionResult.ok({"notification_ids": [], "count": 0})
            notifications = _build_notifications(user_ids, params, context)
            session.add_all(notifications)
            await session.commit()

        return ActionResult.ok({
            "notification_ids": [n.id for n in notifications],
            "count": len(notifications),
        })


NOTIFICATION_ACTION_TYPES = {
    "send_notification": SendNotificationAction,
    "send_bulk_notification": SendBulkNotificationAction,
}
