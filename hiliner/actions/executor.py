"""Action executor: validation, confirmation and dispatch by script kind."""

import inspect
import json
import os
import sys
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Union

import structlog
from prometheus_client import Counter, Histogram

from .bridge import (
    HostBridge,
    LoggingHostBridge,
    bootstrap_argv,
    build_payload,
    is_embedded_script,
    parse_bridge_output,
    replay_messages,
)
from .builtin import BuiltinHandler, call_handler
from .context import UNKNOWN_LANGUAGE, ActionContext, substitute_variables
from .models import (
    ActionDefinition,
    ActionEnvironment,
    BuiltinCommand,
    ExecutionContext,
    ExecutionResult,
    ExternalCommand,
    ScriptCommand,
    SequenceCommand,
)
from .process import (
    DEFAULT_KILL_GRACE_PERIOD,
    CommandResult,
    build_shell_command,
    resolve_shell,
    run_command,
)


logger = structlog.get_logger(__name__)

# Metrics
actions_executed_total = Counter(
    "hiliner_actions_executed_total",
    "Total number of actions dispatched",
    ["action", "kind", "status"],
)

action_duration_seconds = Histogram(
    "hiliner_action_duration_seconds",
    "Time spent executing actions",
    ["kind"],
)

ConfirmationHandler = Callable[[str], Union[bool, Awaitable[bool]]]
Command = Union[BuiltinCommand, ExternalCommand, ScriptCommand, SequenceCommand]


class ActionExecutorErrorType(Enum):
    """Failure kinds raised inside dispatch and converted to results."""

    INVALID_ACTION = "invalid_action"
    EXECUTION_TIMEOUT = "execution_timeout"
    COMMAND_FAILED = "command_failed"
    USER_CANCELLED = "user_cancelled"
    UNKNOWN_BUILTIN = "unknown_builtin"
    INVALID_SCRIPT_TYPE = "invalid_script_type"
    ENVIRONMENT_ERROR = "environment_error"


class ActionExecutorError(Exception):
    """Dispatch failure; never escapes ``ActionExecutor.execute_action``."""

    def __init__(
        self,
        error_type: ActionExecutorErrorType,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.error_type = error_type
        self.details = details or {}


def _default_confirmation(message: str) -> bool:
    logger.warning("Dangerous action confirmed without prompt", prompt=message)
    return True


class ActionExecutor:
    """Runs actions and normalizes every outcome into an ExecutionResult."""

    def __init__(
        self,
        default_timeout: float = 10.0,
        allow_dangerous_actions: bool = True,
        confirmation_handler: Optional[ConfirmationHandler] = None,
        builtin_handlers: Optional[Mapping[str, BuiltinHandler]] = None,
        environment: Optional[ActionEnvironment] = None,
        bridge: Optional[HostBridge] = None,
        kill_grace_period: float = DEFAULT_KILL_GRACE_PERIOD,
        python_executable: Optional[str] = None,
        metrics_enabled: bool = True,
    ) -> None:
        """Initialize the executor.

        Args:
            default_timeout: Seconds before a process is terminated
            allow_dangerous_actions: Whether dangerous actions may run at all
            confirmation_handler: Sync or async callback answering prompts
            builtin_handlers: Builtin name -> handler table
            environment: Global variables, timeout and shell from the config
            bridge: Receiver for status updates from embedded snippets
            kill_grace_period: Seconds between SIGTERM and SIGKILL
            python_executable: Interpreter used for embedded snippets
            metrics_enabled: Record prometheus metrics per dispatch
        """
        self.default_timeout = default_timeout
        self.allow_dangerous_actions = allow_dangerous_actions
        self.confirmation_handler = confirmation_handler or _default_confirmation
        self.builtin_handlers: Mapping[str, BuiltinHandler] = builtin_handlers or {}
        self.environment = environment or ActionEnvironment()
        self.bridge: HostBridge = bridge or LoggingHostBridge()
        self.kill_grace_period = kill_grace_period
        self.python_executable = python_executable or sys.executable
        self.metrics_enabled = metrics_enabled

    @classmethod
    def from_settings(cls, settings: Any, **kwargs: Any) -> "ActionExecutor":
        """Create an executor from ``EngineSettings``; kwargs override."""
        options: Dict[str, Any] = {
            "default_timeout": settings.default_timeout_seconds,
            "allow_dangerous_actions": settings.allow_dangerous_actions,
            "kill_grace_period": settings.kill_grace_period_seconds,
            "python_executable": settings.python_executable,
            "metrics_enabled": settings.metrics_enabled,
        }
        options.update(kwargs)
        return cls(**options)

    async def execute_action(
        self,
        action: ActionDefinition,
        execution_context: ExecutionContext,
        action_context: ActionContext,
    ) -> ExecutionResult:
        """Validate, confirm and dispatch an action.

        Args:
            action: Action to run
            execution_context: Viewer snapshot for builtins and bridge queries
            action_context: Template and environment variables

        Returns:
            Result of the dispatch; failures are results, never exceptions
        """
        start_time = time.time()
        kind = "string" if isinstance(action.script, str) else action.script.type

        try:
            result = await self._execute(action, execution_context, action_context)
        except ActionExecutorError as e:
            logger.warning(
                "Action dispatch failed",
                action=action.id,
                error=str(e),
                error_type=e.error_type.value,
            )
            result = ExecutionResult.failure(
                str(e),
                details={"error_type": e.error_type.value, **e.details},
            )
        except Exception as e:
            logger.error(
                "Action execution failed",
                action=action.id,
                error=str(e),
                error_type=type(e).__name__,
            )
            result = ExecutionResult.failure(
                "Action execution failed",
                error=str(e),
                details={"error_type": type(e).__name__},
            )

        result.execution_time_seconds = time.time() - start_time

        if self.metrics_enabled:
            status = "success" if result.success else result.message_type.value
            actions_executed_total.labels(action=action.id, kind=kind, status=status).inc()
            action_duration_seconds.labels(kind=kind).observe(result.execution_time_seconds)

        logger.info(
            "Action execution completed",
            action=action.id,
            kind=kind,
            success=result.success,
            message_type=result.message_type.value,
            timed_out=result.timed_out,
            execution_time=round(result.execution_time_seconds, 4),
        )
        return result

    async def _execute(
        self,
        action: ActionDefinition,
        execution_context: ExecutionContext,
        action_context: ActionContext,
    ) -> ExecutionResult:
        if not action.id or not action.script:
            return ExecutionResult.failure(
                "Invalid action: missing required fields",
                error="Invalid action: missing required fields",
            )

        if not action.enabled:
            return ExecutionResult.warning(
                "This action is currently disabled",
                error="Action is disabled",
            )

        if action.dangerous:
            if not self.allow_dangerous_actions:
                return ExecutionResult.failure(
                    "This action is marked as dangerous and has been disabled",
                    error="Dangerous actions are disabled",
                )

            prompt = action.confirm_prompt or (
                f'This action "{action.display_name}" may perform potentially '
                "harmful operations. Continue?"
            )
            confirmed = self.confirmation_handler(prompt)
            if inspect.isawaitable(confirmed):
                confirmed = await confirmed
            if not confirmed:
                logger.info("Dangerous action cancelled", action=action.id)
                return ExecutionResult.info(
                    "Action cancelled",
                    success=False,
                    error="Action cancelled by user",
                )

        logger.debug("Dispatching action", action=action.id)

        if isinstance(action.script, str):
            return await self._execute_string(action.script, execution_context, action_context)
        return await self._execute_command(action.script, execution_context, action_context)

    async def _execute_command(
        self,
        command: Command,
        execution_context: ExecutionContext,
        action_context: ActionContext,
    ) -> ExecutionResult:
        if isinstance(command, BuiltinCommand):
            return await self._execute_builtin(command, execution_context)
        if isinstance(command, ExternalCommand):
            return await self._execute_external(command, action_context)
        if isinstance(command, ScriptCommand):
            if not command.command:
                raise ActionExecutorError(
                    ActionExecutorErrorType.INVALID_ACTION,
                    "Script command not specified",
                )
            return await self._execute_string(command.command, execution_context, action_context)
        if isinstance(command, SequenceCommand):
            return await self._execute_sequence(command, execution_context, action_context)

        raise ActionExecutorError(
            ActionExecutorErrorType.INVALID_SCRIPT_TYPE,
            f"Unsupported command type: {getattr(command, 'type', type(command).__name__)}",
        )

    async def _execute_builtin(
        self,
        command: BuiltinCommand,
        execution_context: ExecutionContext,
    ) -> ExecutionResult:
        handler = self.builtin_handlers.get(command.builtin)
        if handler is None:
            raise ActionExecutorError(
                ActionExecutorErrorType.UNKNOWN_BUILTIN,
                f"Unknown builtin action: {command.builtin}",
                {
                    "builtin": command.builtin,
                    "available_builtins": sorted(self.builtin_handlers),
                },
            )

        try:
            return await call_handler(handler, execution_context)
        except Exception as e:
            logger.error("Builtin handler failed", builtin=command.builtin, error=str(e))
            return ExecutionResult.failure(
                f"Builtin action '{command.builtin}' failed",
                error=str(e),
            )

    def _timeout_seconds(self, timeout_ms: Optional[int] = None) -> float:
        if timeout_ms is not None:
            return timeout_ms / 1000.0
        if self.environment.timeout is not None:
            return self.environment.timeout / 1000.0
        return self.default_timeout

    def _build_environment(
        self,
        action_context: ActionContext,
        command_env: Optional[Mapping[str, str]] = None,
    ) -> Dict[str, str]:
        """Ambient < config variables < context variables < command env."""
        env = dict(os.environ)
        env.update(self.environment.variables)
        env.update(action_context.environment_variables)
        if command_env:
            env.update(command_env)
        return env

    async def _execute_string(
        self,
        script: str,
        execution_context: ExecutionContext,
        action_context: ActionContext,
    ) -> ExecutionResult:
        script = substitute_variables(script, action_context)

        if is_embedded_script(script):
            return await self._execute_embedded(script, execution_context, action_context)

        timeout = self._timeout_seconds()
        argv = [*resolve_shell(self.environment.shell), script]
        result = await run_command(
            argv,
            env=self._build_environment(action_context),
            timeout=timeout,
            kill_grace_period=self.kill_grace_period,
        )
        return self._command_result(
            result,
            timeout,
            success_message="Command executed successfully",
            failure_message="Command failed",
        )

    async def _execute_external(
        self,
        command: ExternalCommand,
        action_context: ActionContext,
    ) -> ExecutionResult:
        # Substitute each part separately so values are never re-split
        program = substitute_variables(command.command, action_context)
        args = [substitute_variables(arg, action_context) for arg in command.args]
        cwd = substitute_variables(command.cwd, action_context) if command.cwd else None

        shell_command = build_shell_command(program, args, self.environment.shell)
        timeout = self._timeout_seconds(command.timeout)

        result = await run_command(
            [*resolve_shell(self.environment.shell), shell_command],
            env=self._build_environment(action_context, command.env),
            cwd=cwd,
            timeout=timeout,
            kill_grace_period=self.kill_grace_period,
        )
        execution_result = self._command_result(
            result,
            timeout,
            success_message="External command executed successfully",
            failure_message="External command failed",
        )
        if not command.capture_output:
            execution_result.output = None
        return execution_result

    async def _execute_embedded(
        self,
        script: str,
        execution_context: ExecutionContext,
        action_context: ActionContext,
    ) -> ExecutionResult:
        language = action_context.template_variables.get("language", UNKNOWN_LANGUAGE)
        payload = build_payload(script, execution_context, language)
        timeout = self._timeout_seconds()

        logger.debug("Running embedded script", mode="path" if "path" in payload else "source")

        result = await run_command(
            bootstrap_argv(self.python_executable),
            env=self._build_environment(action_context),
            timeout=timeout,
            kill_grace_period=self.kill_grace_period,
            input_data=json.dumps(payload).encode("utf-8"),
        )

        bridge_output = parse_bridge_output(result.stdout)
        replay_messages(self.bridge, bridge_output.messages)
        result.stdout = bridge_output.output

        execution_result = self._command_result(
            result,
            timeout,
            success_message="Script executed successfully",
            failure_message="Script execution failed",
        )
        status = bridge_output.final_status
        if status and execution_result.success:
            execution_result.message = status
        execution_result.details["status_updates"] = len(bridge_output.messages)
        return execution_result

    async def _execute_sequence(
        self,
        command: SequenceCommand,
        execution_context: ExecutionContext,
        action_context: ActionContext,
    ) -> ExecutionResult:
        if not command.steps:
            raise ActionExecutorError(
                ActionExecutorErrorType.INVALID_ACTION,
                "Sequence command has no steps defined",
            )

        outputs = []
        all_success = True
        failed_result: Optional[ExecutionResult] = None
        executed = 0

        for index, step in enumerate(command.steps):
            result = await self._execute_command(step, execution_context, action_context)
            executed += 1

            if result.output and not step.silent:
                outputs.append(result.output)

            if not result.success:
                all_success = False
                failed_result = result
                logger.info(
                    "Sequence step failed, stopping",
                    step=index,
                    step_type=step.type,
                    error=result.error,
                )
                break

        follow_up = command.on_success if all_success else command.on_failure
        if follow_up is not None:
            if isinstance(follow_up, str):
                follow_result = await self._execute_string(
                    follow_up, execution_context, action_context
                )
            else:
                follow_result = await self._execute_command(
                    follow_up, execution_context, action_context
                )
            if not follow_result.success:
                logger.warning(
                    "Sequence follow-up command failed",
                    hook="on_success" if all_success else "on_failure",
                    error=follow_result.error,
                )

        output = "\n".join(outputs) or None
        details = {"steps_executed": executed, "steps_total": len(command.steps)}
        if all_success:
            return ExecutionResult.ok("All commands executed successfully", output=output, details=details)

        return ExecutionResult.failure(
            "Sequence execution failed",
            error=(failed_result.error if failed_result else None)
            or "One or more commands in sequence failed",
            output=output,
            timed_out=failed_result.timed_out if failed_result else False,
            details=details,
        )

    def _command_result(
        self,
        result: CommandResult,
        timeout: float,
        success_message: str,
        failure_message: str,
    ) -> ExecutionResult:
        details: Dict[str, Any] = {
            "exit_code": result.exit_code,
            "duration_seconds": result.duration_seconds,
        }
        if result.stderr:
            details["stderr"] = result.stderr

        if result.success:
            return ExecutionResult.ok(
                success_message,
                output=result.stdout or None,
                details=details,
            )

        if result.timed_out:
            details["killed"] = result.killed
            return ExecutionResult.failure(
                f"{failure_message}: timed out after {timeout:g}s",
                error=result.stderr or f"Command timed out after {timeout:g}s",
                output=result.stdout or None,
                timed_out=True,
                details=details,
            )

        if result.exit_code is None:
            error = result.stderr or "Command could not be started"
        else:
            error = result.stderr or f"Command exited with code {result.exit_code}"
        return ExecutionResult.failure(
            failure_message,
            error=error,
            output=result.stdout or None,
            details=details,
        )
