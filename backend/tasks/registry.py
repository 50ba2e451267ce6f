"""
Step Type Registry — Central registry for all step executors.

Maps each StepType to the BaseTask subclass that executes it.
"""

from typing import Dict, Optional, Type

from core.constants import StepType
from tasks.base_task import BaseTask
from tasks.implementations.control_task import CONTROL_TASK_TYPES
from tasks.implementations.data_task import DATA_TASK_TYPES
from tasks.implementations.integration_task import INTEGRATION_TASK_TYPES
from tasks.implementations.log_task import LOG_TASK_TYPES
from tasks.implementations.notification_task import NOTIFICATION_TASK_TYPES
from tasks.implementations.strategy_task import STRATEGY_TASK_TYPES
from tasks.implementations.work_item_task import WORK_ITEM_TASK_TYPES


class TaskRegistry:
    """Central registry for all step executor implementations."""

    def __init__(self):
        self._tasks: Dict[StepType, Type[BaseTask]] = {}
        self._register_builtin_tasks()

    def _register_builtin_tasks(self):
        """Register all built-in step types."""
        for group in (
            INTEGRATION_TASK_TYPES,
            STRATEGY_TASK_TYPES,
            DATA_TASK_TYPES,
            LOG_TASK_TYPES,
            NOTIFICATION_TASK_TYPES,
            WORK_ITEM_TASK_TYPES,
            CONTROL_TASK_TYPES,
        ):
            for task_type, task_class in group.items():
                self.register(task_type, task_class)

    def register(self, task_type: StepType, task_class: Type[BaseTask]):
        """Register (or replace) the executor of a step type."""
        self._tasks[task_type] = task_class

    def get(self, task_type: StepType) -> Optional[Type[BaseTask]]:
        return self._tasks.get(task_type)

    def create_instance(self, task_type: StepType) -> Optional[BaseTask]:
        """Create a new instance of a task by type."""
        task_class = self.get(task_type)
        if task_class:
            return task_class()
        return None

    def list_all(self) -> list:
        """List all registered step types with metadata."""
        return [
            {
                "task_type": task_type.value,
                "display_name": cls.display_name,
                "description": cls.description,
                "config_schema": cls.get_config_schema(),
            }
            for task_type, cls in self._tasks.items()
        ]

    @property
    def available_types(self) -> list:
        return [t.value for t in self._tasks]


# Singleton
_registry: Optional[TaskRegistry] = None


def get_task_registry() -> TaskRegistry:
    """Get or create the singleton task registry."""
    global _registry
    if _registry is None:
        _registry = TaskRegistry()
    return _registry
