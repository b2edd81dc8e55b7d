"""Action model, registry, context builder and executor."""

from .context import ActionContext, FileSnapshot, SelectionSnapshot, build_action_context, substitute_variables
from .executor import ActionExecutor, ActionExecutorError
from .models import ActionConfig, ActionDefinition, ExecutionContext, ExecutionResult, MessageType
from .registry import ActionRegistry, ActionRegistryError, create_action_registry

__all__ = [
    "ActionConfig",
    "ActionContext",
    "ActionDefinition",
    "ActionExecutor",
    "ActionExecutorError",
    "ActionRegistry",
    "ActionRegistryError",
    "ExecutionContext",
    "ExecutionResult",
    "FileSnapshot",
    "MessageType",
    "SelectionSnapshot",
    "build_action_context",
    "create_action_registry",
    "substitute_variables",
]
