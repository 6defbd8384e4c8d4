"""
Action Registry: maps action_type strings to executor classes.

The built-in set is fixed; new action types are added by registering a
BaseAction subclass under a new name.
"""

from typing import Dict, Optional, Type

from actions.base_action import BaseAction
from actions.implementations.email_actions import EMAIL_ACTION_TYPES
from actions.implementations.notification_actions import NOTIFICATION_ACTION_TYPES
from actions.implementations.record_actions import RECORD_ACTION_TYPES
from actions.implementations.task_actions import TASK_ACTION_TYPES


class ActionRegistry:
    """Central registry for all action executor implementations."""

    def __init__(self, include_builtin: bool = True):
        self._actions: Dict[str, Type[BaseAction]] = {}
        if include_builtin:
            self._register_builtin_actions()

    def _register_builtin_actions(self):
        """Register all built-in action types."""
        for group in (
            EMAIL_ACTION_TYPES,
            TASK_ACTION_TYPES,
            NOTIFICATION_ACTION_TYPES,
            RECORD_ACTION_TYPES,
        ):
            for action_type, action_class in group.items():
                self.register(action_type, action_class)

    def register(self, action_type: str, action_class: Type[BaseAction]):
        """Register a new action type (replaces an existing one of the same name)."""
        self._actions[action_type] = action_class

    def get(self, action_type: str) -> Optional[Type[BaseAction]]:
        """Get an action class by type string."""
        return self._actions.get(action_type)

    def create_instance(self, action_type: str, **services) -> Optional[BaseAction]:
        """Create a new instance of an action, injecting collaborators."""
        action_class = self.get(action_type)
        if action_class:
            return action_class(**services)
        return None

    def list_all(self) -> list:
        """List all registered action types with metadata."""
        return [
            {
                "action_type": action_type,
                "display_name": cls.display_name,
                "description": cls.description,
                "config_schema": cls.get_config_schema(),
            }
            for action_type, cls in self._actions.items()
        ]

    @property
    def available_types(self) -> list:
        return list(self._actions.keys())


# Singleton
_registry: Optional[ActionRegistry] = None


def get_action_registry() -> ActionRegistry:
    """Get or create the singleton action registry."""
    global _registry
    if _registry is None:
        _registry = ActionRegistry()
    return _registry
