"""
Base interface for workflow action executors.

Every action type (send_email, create_task, run_query, ...) inherits from
BaseAction and implements execute(). Actions are stateless: everything they
need arrives in ``params`` (already template-resolved) and the execution
context, plus the collaborators injected at construction.
"""

import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import structlog

from core.exceptions import ActionConfigError, WorkflowConfigError, WorkflowEngineError

logger = structlog.get_logger(__name__)


class ActionResult:
    """Standardized result from action execution."""

    def __init__(
        self,
        success: bool,
        output: Any = None,
        error: Optional[str] = None,
        retryable: bool = True,
        duration_ms: float = 0,
    ):
        self.success = success
        self.output = output
        self.error = error
        self.retryable = retryable
        self.duration_ms = duration_ms

    @classmethod
    def ok(cls, output: Any = None) -> "ActionResult":
        return cls(success=True, output=output)

    @classmethod
    def fail(cls, error: str, retryable: bool = True) -> "ActionResult":
        return cls(success=False, error=error, retryable=retryable)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "output": self.output,
            "error": self.error,
            "retryable": self.retryable,
            "duration_ms": self.duration_ms,
        }


class BaseAction(ABC):
    """
    Abstract base class for all action executors.

    Subclasses must implement:
    - execute(params, context) -> ActionResult
    - action_type (class attribute)

    Collaborators are injected by the engine:
    - session_factory: async_sessionmaker for actions that touch the database
    - mailer: notification channel used by email actions
    """

    action_type: str = "base"
    display_name: str = "Base Action"
    description: str = "Abstract base action"

    def __init__(self, session_factory=None, mailer=None):
        self.session_factory = session_factory
        self.mailer = mailer

    @abstractmethod
    async def execute(self, params: Dict[str, Any], context) -> ActionResult:
        """
        Execute the action.

        Args:
            params: Action parameters, placeholders already resolved
            context: The run's ExecutionContext (read-only by convention)

        Returns:
            ActionResult with output or error
        """
        pass

    async def run(self, params: Dict[str, Any], context) -> ActionResult:
        """
        Run the action with timing and error capture.

        This is the entry point called by the Action node. Configuration
        errors become non-retryable failures; anything else that escapes
        execute() is treated as transient.
        """
        start = time.monotonic()
        try:
            logger.info(
                "Action starting",
                action_type=self.action_type,
                execution_id=getattr(context, "execution_id", None),
            )
            result = await self.execute(params, context)
            result.duration_ms = (time.monotonic() - start) * 1000

            logger.info(
                "Action completed",
                action_type=self.action_type,
                success=result.success,
                duration_ms=round(result.duration_ms, 2),
            )
            return result

        except WorkflowEngineError as e:
            duration_ms = (time.monotonic() - start) * 1000
            logger.warning(
                "Action failed",
                action_type=self.action_type,
                error=e.message,
                retryable=e.retryable,
                duration_ms=round(duration_ms, 2),
            )
            return ActionResult(
                success=False,
                error=e.message,
                retryable=e.retryable and not isinstance(e, WorkflowConfigError),
                duration_ms=duration_ms,
            )

        except Exception as e:
            duration_ms = (time.monotonic() - start) * 1000
            logger.error(
                "Action raised",
                action_type=self.action_type,
                error=str(e),
                duration_ms=round(duration_ms, 2),
                exc_info=True,
            )
            return ActionResult(
                success=False,
                error=f"{type(e).__name__}: {e}",
                retryable=True,
                duration_ms=duration_ms,
            )

    def require_session_factory(self):
        if self.session_factory is None:
            raise ActionConfigError(f"Action '{self.action_type}' needs a database session")
        return self.session_factory

    @staticmethod
    def require(params: Dict[str, Any], key: str) -> Any:
        """Return ``params[key]`` or raise ActionConfigError when it is empty."""
        value = params.get(key)
        if value is None or value == "" or value == []:
            raise ActionConfigError(f"Missing required parameter '{key}'")
        return value

    @staticmethod
    def as_list(value: Any) -> list:
        if value is None:
            return []
        if isinstance(value, (list, tuple)):
            return [v for v in value if v not in (None, "")]
        if isinstance(value, str):
            return [v.strip() for v in value.split(",") if v.strip()]
        return [value]

    @classmethod
    def get_config_schema(cls) -> Dict[str, Any]:
        """
        Return JSON schema for action parameters.

        Override in subclasses to define expected params shape.
        """
        return {"type": "object", "properties": {}}
