"""Action engine facade used by the viewer's input loop."""

from typing import Any, Mapping, Optional

import structlog

from .actions.bridge import HostBridge
from .actions.builtin import BuiltinHandler
from .actions.context import FileSnapshot, SelectionSnapshot, build_action_context
from .actions.executor import ActionExecutor, ConfirmationHandler
from .actions.models import ActionDefinition, ExecutionContext, ExecutionResult
from .actions.registry import ActionRegistry, ActionRegistryError, create_action_registry
from .config.loader import ConfigError, ConfigLoadOptions, ConfigLoadResult, load_config
from .config.settings import EngineSettings
from .utils.keymap import KeymapHelp, generate_keymap_help


logger = structlog.get_logger(__name__)


class ActionEngine:
    """Owns the registry, the executor and the configuration they came from."""

    def __init__(
        self,
        registry: ActionRegistry,
        executor: ActionExecutor,
        load_result: Optional[ConfigLoadResult] = None,
        startup_error: Optional[str] = None,
    ) -> None:
        self.registry = registry
        self.executor = executor
        self.load_result = load_result or ConfigLoadResult()
        self.startup_error = startup_error

    @classmethod
    def create(
        cls,
        settings: Optional[EngineSettings] = None,
        working_directory: Optional[str] = None,
        *,
        builtin_handlers: Optional[Mapping[str, BuiltinHandler]] = None,
        confirmation_handler: Optional[ConfirmationHandler] = None,
        bridge: Optional[HostBridge] = None,
    ) -> "ActionEngine":
        """Load configuration and build a ready engine.

        Configuration or registry failures never abort the host: the engine
        falls back to built-in actions only and keeps the reason in
        ``startup_error``.

        Args:
            settings: Engine settings (read from the environment when omitted)
            working_directory: Directory searched for the project config
            builtin_handlers: Host-supplied builtin handler table
            confirmation_handler: Callback answering dangerous-action prompts
            bridge: Receiver for embedded script status updates

        Returns:
            Configured ActionEngine
        """
        settings = settings or EngineSettings()
        startup_error: Optional[str] = None

        try:
            load_result = load_config(working_directory, ConfigLoadOptions.from_settings(settings))
            registry = create_action_registry(load_result, settings.strict_key_bindings)
        except (ConfigError, ActionRegistryError) as e:
            error_type = getattr(e, "error_type", None)
            logger.error(
                "Action configuration rejected, using built-in actions only",
                error=str(e),
                error_type=error_type.value if error_type is not None else None,
            )
            startup_error = str(e)
            load_result = ConfigLoadResult()
            registry = ActionRegistry()

        executor = ActionExecutor.from_settings(
            settings,
            builtin_handlers=builtin_handlers,
            confirmation_handler=confirmation_handler,
            bridge=bridge,
            environment=registry.environment,
        )

        logger.info("Action engine ready", **registry.get_stats())
        return cls(registry, executor, load_result=load_result, startup_error=startup_error)

    async def dispatch_key(
        self,
        key: str,
        file: FileSnapshot,
        selection: SelectionSnapshot,
        current_line: int,
        **view: Any,
    ) -> Optional[ExecutionResult]:
        """Run the action bound to ``key``.

        Args:
            key: Key string produced by the input layer
            file: Current file snapshot
            selection: Current selection snapshot
            current_line: 1-based cursor line
            **view: Extra ``ExecutionContext`` fields (viewport, theme, mode)

        Returns:
            Result of the dispatch, or None when no action is bound to the key
        """
        action = self.registry.action_by_key(key)
        if action is None:
            logger.debug("No action bound to key", key=key)
            return None
        return await self.run(action, file, selection, current_line, **view)

    async def run_action(
        self,
        action_id: str,
        file: FileSnapshot,
        selection: SelectionSnapshot,
        current_line: int,
        **view: Any,
    ) -> ExecutionResult:
        action = self.registry.action_by_id(action_id)
        if action is None:
            return ExecutionResult.failure(f"Unknown action: {action_id}")
        return await self.run(action, file, selection, current_line, **view)

    async def run(
        self,
        action: ActionDefinition,
        file: FileSnapshot,
        selection: SelectionSnapshot,
        current_line: int,
        **view: Any,
    ) -> ExecutionResult:
        execution_context = ExecutionContext.from_snapshots(file, selection, current_line, **view)

        if not self.registry.is_action_available(action, execution_context):
            logger.info("Action not available in this context", action=action.id)
            return ExecutionResult.warning(
                f"'{action.display_name}' is not available here",
                error="Action not available in current context",
            )

        action_context = build_action_context(selection, file, current_line)
        return await self.executor.execute_action(action, execution_context, action_context)

    def keymap_help(self) -> KeymapHelp:
        return generate_keymap_help(self.registry, self.load_result.action_sources)
