"""Action registry: built-in and custom actions indexed by id and key."""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Mapping, Optional, Sequence

import structlog

from .models import (
    ActionDefinition,
    ActionEnvironment,
    BuiltinCommand,
    ExecutionContext,
)

if TYPE_CHECKING:
    from ..config.loader import ConfigLoadResult


logger = structlog.get_logger(__name__)


def _builtin(
    action_id: str,
    description: str,
    key: str,
    category: str,
    alternative_keys: Sequence[str] = (),
) -> ActionDefinition:
    return ActionDefinition(
        id=action_id,
        description=description,
        key=key,
        alternative_keys=list(alternative_keys),
        script=BuiltinCommand(builtin=action_id),
        category=category,
    )


BUILTIN_ACTIONS: List[ActionDefinition] = [
    _builtin("quit", "Quit the application", "q", "navigation"),
    _builtin("scrollUp", "Scroll up one line", "k", "navigation", ["arrowup"]),
    _builtin("scrollDown", "Scroll down one line", "j", "navigation", ["arrowdown"]),
    _builtin("pageUp", "Scroll up one page", "b", "navigation", ["pageup"]),
    _builtin("pageDown", "Scroll down one page", "f", "navigation", ["pagedown"]),
    _builtin("goToStart", "Go to the beginning of the file", "g", "navigation"),
    _builtin("goToEnd", "Go to the end of the file", "G", "navigation"),
    _builtin("toggleSelection", "Toggle selection for current line", " ", "selection"),
    _builtin("selectAll", "Select all visible lines", "a", "selection"),
    _builtin("clearSelection", "Clear all selections", "c", "selection"),
    _builtin("showHelp", "Show help and key bindings", "?", "view"),
    _builtin("reload", "Reload the current file", "r", "file"),
]

# Ids a custom action may never reuse
CRITICAL_BUILTIN_IDS = frozenset({"quit", "showHelp"})


class ActionRegistryErrorType(Enum):
    """Kinds of registry construction failure."""

    CRITICAL_BUILTIN_OVERRIDE = "critical_builtin_override"
    KEY_BINDING_CONFLICT = "key_binding_conflict"
    INITIALIZATION_FAILED = "initialization_failed"


class ActionRegistryError(Exception):
    """Raised when a registry cannot be constructed."""

    def __init__(
        self,
        error_type: ActionRegistryErrorType,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.error_type = error_type
        self.details = details or {}


@dataclass
class KeyBindingValidation:
    """Outcome of a key-binding conflict check."""

    valid: bool
    conflicts: List[str] = field(default_factory=list)
    details: Dict[str, List[str]] = field(default_factory=dict)
    error: Optional[str] = None


class ActionRegistry:
    """Immutable index of actions used by the host loop.

    Registration order is fixed: built-ins, then custom actions, then explicit
    key bindings. A later registration wins both in the id map and in the key
    map, so a key always resolves to at most one action.
    """

    def __init__(
        self,
        custom_actions: Iterable[ActionDefinition] = (),
        key_bindings: Optional[Mapping[str, str]] = None,
        environment: Optional[ActionEnvironment] = None,
    ) -> None:
        """Build the registry.

        Args:
            custom_actions: Actions from the effective configuration
            key_bindings: Explicit key -> action id overrides
            environment: Global environment for spawned commands

        Raises:
            ActionRegistryError: A custom action reuses a critical built-in id
        """
        custom_actions = list(custom_actions)

        for action in custom_actions:
            if action.id in CRITICAL_BUILTIN_IDS:
                raise ActionRegistryError(
                    ActionRegistryErrorType.CRITICAL_BUILTIN_OVERRIDE,
                    f"Cannot override critical built-in action: {action.id}",
                    {"action_id": action.id},
                )

        self._actions: Dict[str, ActionDefinition] = {}
        self._key_bindings: Dict[str, str] = {}
        self._builtin_actions = list(BUILTIN_ACTIONS)
        self._custom_ids: List[str] = []
        self._overridden_builtins: List[str] = []
        self._environment = environment or ActionEnvironment()

        for action in self._builtin_actions:
            self._register(action)

        builtin_ids = {action.id for action in self._builtin_actions}
        for action in custom_actions:
            if action.id in builtin_ids and action.id not in self._overridden_builtins:
                self._overridden_builtins.append(action.id)
                logger.info("Custom action overrides built-in", action=action.id)
            if action.id not in self._custom_ids:
                self._custom_ids.append(action.id)
            self._register(action)

        for key, action_id in (key_bindings or {}).items():
            if action_id not in self._actions:
                logger.warning(
                    "Key binding points at unknown action",
                    key=key,
                    action=action_id,
                )
            self._key_bindings[key] = action_id

        logger.debug(
            "Initialized ActionRegistry",
            actions=len(self._actions),
            key_bindings=len(self._key_bindings),
            custom_actions=len(self._custom_ids),
        )

    def _register(self, action: ActionDefinition) -> None:
        previous = self._actions.get(action.id)
        if previous is not None:
            # Keys of the replaced definition must not keep resolving to it
            for key in previous.all_keys():
                if self._key_bindings.get(key) == action.id:
                    del self._key_bindings[key]

        self._actions[action.id] = action
        for key in action.all_keys():
            current = self._key_bindings.get(key)
            if current is not None and current != action.id:
                logger.debug(
                    "Key rebound",
                    key=key,
                    previous_action=current,
                    action=action.id,
                )
            self._key_bindings[key] = action.id

    def action_by_id(self, action_id: str) -> Optional[ActionDefinition]:
        return self._actions.get(action_id)

    def action_by_key(self, key: str) -> Optional[ActionDefinition]:
        """Resolve a key through the binding map, then the action map."""
        action_id = self._key_bindings.get(key)
        if action_id is None:
            return None
        return self._actions.get(action_id)

    def all_actions(self) -> List[ActionDefinition]:
        return list(self._actions.values())

    def available_actions(self, context: ExecutionContext) -> List[ActionDefinition]:
        return [
            action for action in self._actions.values()
            if self.is_action_available(action, context)
        ]

    def is_action_available(self, action: ActionDefinition, context: ExecutionContext) -> bool:
        """Evaluate ``enabled`` and every present ``when`` condition.

        Args:
            action: Action to check
            context: Current viewer snapshot

        Returns:
            True if the action may run in this context
        """
        if not action.enabled:
            return False

        when = action.when
        if when is None:
            return True

        if when.file_types:
            file_name = context.file_name.lower()
            language = (context.detected_language or "").lower()
            matched = False
            for file_type in when.file_types:
                file_type = file_type.lower()
                if (
                    file_name.endswith(file_type)
                    or file_name.endswith(f".{file_type.lstrip('.')}")
                    or (language and language == file_type)
                ):
                    matched = True
                    break
            if not matched:
                return False

        if when.has_selection is not None and context.has_selection != when.has_selection:
            return False

        if when.line_count is not None:
            if when.line_count.min is not None and context.total_lines < when.line_count.min:
                return False
            if when.line_count.max is not None and context.total_lines > when.line_count.max:
                return False

        if when.mode is not None and when.mode != "any" and when.mode != context.mode:
            return False

        return True

    @property
    def builtin_actions(self) -> List[ActionDefinition]:
        return list(self._builtin_actions)

    @property
    def custom_actions(self) -> List[ActionDefinition]:
        return [self._actions[action_id] for action_id in self._custom_ids]

    @property
    def environment(self) -> ActionEnvironment:
        return self._environment

    @property
    def key_bindings(self) -> Mapping[str, str]:
        return MappingProxyType(self._key_bindings)

    def is_builtin(self, action_id: str) -> bool:
        """True when the id resolves to an unmodified built-in."""
        return any(action.id == action_id for action in self._builtin_actions) and (
            action_id not in self._overridden_builtins
        )

    def get_stats(self) -> Dict[str, Any]:
        """Get registry statistics.

        Returns:
            Dictionary with statistics
        """
        return {
            "total_actions": len(self._actions),
            "builtin_actions": len(self._builtin_actions),
            "custom_actions": len(self._custom_ids),
            "overridden_builtins": list(self._overridden_builtins),
            "disabled_actions": [a.id for a in self._actions.values() if not a.enabled],
            "key_bindings": len(self._key_bindings),
        }


def detect_key_binding_conflicts(
    custom_actions: Iterable[ActionDefinition],
    builtin_actions: Iterable[ActionDefinition] = tuple(BUILTIN_ACTIONS),
) -> KeyBindingValidation:
    """Find keys claimed by more than one distinct action.

    Built-ins replaced by a custom action with the same id are left out, so
    overriding a built-in and keeping its keys is not a conflict.

    Args:
        custom_actions: Actions from the effective configuration
        builtin_actions: Built-in action table

    Returns:
        KeyBindingValidation listing conflicting keys and the ids per key
    """
    custom_actions = list(custom_actions)
    custom_ids = {action.id for action in custom_actions}
    builtin_list = [a for a in builtin_actions if a.id not in custom_ids]
    builtin_ids = {action.id for action in builtin_list}

    key_map: Dict[str, List[str]] = {}
    for action in [*builtin_list, *custom_actions]:
        for key in action.all_keys():
            ids = key_map.setdefault(key, [])
            if action.id not in ids:
                ids.append(action.id)

    conflicts = [key for key, ids in key_map.items() if len(ids) > 1]
    if not conflicts:
        return KeyBindingValidation(valid=True)

    messages = []
    for key in conflicts:
        ids = key_map[key]
        clashing_builtins = [action_id for action_id in ids if action_id in builtin_ids]
        if clashing_builtins:
            messages.append(
                f"Key '{key}' conflicts with built-in action(s): {', '.join(clashing_builtins)}"
            )
        else:
            messages.append(f"Key '{key}' is bound by several actions: {', '.join(ids)}")

    return KeyBindingValidation(
        valid=False,
        conflicts=conflicts,
        details={key: list(key_map[key]) for key in conflicts},
        error="; ".join(messages),
    )


def create_action_registry(
    load_result: "ConfigLoadResult",
    strict_key_bindings: bool = False,
) -> ActionRegistry:
    """Build a registry from an effective configuration.

    Args:
        load_result: Output of the configuration loader
        strict_key_bindings: Treat key conflicts as fatal instead of warnings

    Returns:
        Constructed ActionRegistry

    Raises:
        ActionRegistryError: Critical override, strict key conflict, or any
            other construction failure
    """
    config = load_result.config

    validation = detect_key_binding_conflicts(config.actions, BUILTIN_ACTIONS)
    if not validation.valid:
        if strict_key_bindings:
            raise ActionRegistryError(
                ActionRegistryErrorType.KEY_BINDING_CONFLICT,
                f"Key binding conflict detected: {validation.error}",
                {"conflicts": validation.conflicts, "actions": validation.details},
            )
        for key in validation.conflicts:
            logger.warning(
                "Key binding conflict, later registration wins",
                key=key,
                actions=validation.details[key],
            )

    try:
        return ActionRegistry(
            custom_actions=config.actions,
            key_bindings=config.key_bindings,
            environment=config.environment,
        )
    except ActionRegistryError:
        raise
    except Exception as e:
        raise ActionRegistryError(
            ActionRegistryErrorType.INITIALIZATION_FAILED,
            f"Failed to initialize action registry: {e}",
            {"error": str(e), "error_type": type(e).__name__},
        ) from e
