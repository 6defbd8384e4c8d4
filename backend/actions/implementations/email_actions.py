"""Email action: render a built-in or inline template and deliver it.

Params:
    to / recipients: address or list of addresses (required)
    template: built-in template id (welcome_email, contract_expiring,
        task_assigned, onboarding_reminder)
    subject / body: inline content; ``subject`` also overrides a template's
    variables: extra values available to the template placeholders
"""

from typing import Any, Dict

from actions.base_action import ActionResult, BaseAction
from app.config import get_settings
from core.exceptions import ActionConfigError, TransientActionError
from notifications.channels import OutboundMessage, get_email_channel
from workflow.context import ExecutionContext, resolve

EMAIL_TEMPLATES: Dict[str, Dict[str, str]] = {
    "welcome_email": {
        "subject": "Welcome to {{company_name}}!",
        "body": (
            "Hi {{employee.first_name}},\n\n"
            "We are glad you are joining the team. Your first working day is "
            "{{employee.start_date}}.\n"
            "You can sign in to the HR portal at {{portal_url}} with {{employee.email}}.\n"
            "Your manager is {{manager.first_name}} {{manager.last_name}} ({{manager.email}}).\n\n"
            "Kind regards,\nHR"
        ),
    },
    "contract_expiring": {
        "subject": "Contract expiring soon: {{employee.first_name}} {{employee.last_name}}",
        "body": (
            "The contract of {{employee.first_name}} {{employee.last_name}} ends on "
            "{{contract.end_date}} ({{days_remaining}} days from now).\n"
            "Please decide on renewal before that date.\n\n"
            "Open the contract: {{portal_url}}/contracts/{{contract.id}}"
        ),
    },
    "task_assigned": {
        "subject": "New task assigned: {{task.title}}",
        "body": (
            "A new task was assigned to you.\n\n"
            "Title: {{task.title}}\n"
            "Priority: {{task.priority}}\n"
            "Due: {{task.due_date}}\n\n"
            "{{task.description}}\n\n"
            "Open it at {{portal_url}}/tasks/{{task.id}}"
        ),
    },
    "onboarding_reminder": {
        "subject": "Onboarding reminder for {{employee.first_name}}",
        "body": (
            "Onboarding for {{employee.first_name}} {{employee.last_name}} still has "
            "{{open_tasks}} open task(s).\n"
            "Please complete them before {{deadline}}."
        ),
    },
}


class SendEmailAction(BaseAction):
    """Send an email to one or more recipients."""

    action_type = "send_email"
    display_name = "Send Email"
    description = "Render a template and send it by email"

    async def execute(self, params: Dict[str, Any], context) -> ActionResult:
        recipients = self.as_list(params.get("to") or params.get("recipients"))
        if not recipients:
            raise ActionConfigError("Missing required parameter 'to'")

        template_id = params.get("template")
        if template_id:
            template = EMAIL_TEMPLATES.get(template_id)
            if template is None:
                raise ActionConfigError(f"Email template not found: {template_id}")
            subject_template = params.get("subject") or template["subject"]
            body_template = template["body"]
        else:
            subject_template = self.require(params, "subject")
            body_template = params.get("body") or ""

        render_ctx = _render_context(context, params.get("variables") or {})
        subject = str(resolve(subject_template, render_ctx) or "")
        body = str(resolve(body_template, render_ctx) or "")

        mailer = self.mailer or get_email_channel()
        delivery = await mailer.send(OutboundMessage(
            recipients=recipients,
            subject=subject,
            body=body,
            metadata={"execution_id": context.execution_id, "template": template_id},
        ))
        if not delivery.success:
            raise TransientActionError(f"Email delivery failed: {delivery.error}")

        return ActionResult.ok({
            "sent": True,
            "recipients": recipients,
            "subject": subject,
            "template": template_id,
        })

    @classmethod
    def get_config_schema(cls) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "to": {"type": ["string", "array"]},
                "template": {"type": "string", "enum": list(EMAIL_TEMPLATES)},
                "subject": {"type": "string"},
                "body": {"type": "string"},
                "variables": {"type": "object"},
            },
            "required": ["to"],
        }


def _render_context(context: ExecutionContext, extra: dict) -> ExecutionContext:
    """A copy of the run context with template variables layered on top."""
    variables = {"portal_url": get_settings().PORTAL_URL}
    variables.update(context.variables)
    variables.update(extra)
    return ExecutionContext(
        workflow_id=context.workflow_id,
        execution_id=context.execution_id,
        trigger_data=context.trigger_data,
        variables=variables,
        node_outputs=context.node_outputs,
        metadata=context.metadata,
    )


EMAIL_ACTION_TYPES = {
    "send_email": SendEmailAction,
}
