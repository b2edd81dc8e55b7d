"""Builtin handler table.

Builtins are host behaviour (navigation, selection, application control).
The host supplies a table mapping builtin name to handler; the executor looks
names up here and never resolves them any other way.
"""

import inspect
from typing import Awaitable, Callable, Dict, Iterator, List, Mapping, Optional, Union

import structlog

from ..models import ExecutionContext, ExecutionResult


logger = structlog.get_logger(__name__)

BuiltinHandler = Callable[
    [ExecutionContext], Union[ExecutionResult, Awaitable[ExecutionResult]]
]

REQUIRED_BUILTINS = (
    "quit",
    "scrollUp",
    "scrollDown",
    "pageUp",
    "pageDown",
    "goToStart",
    "goToEnd",
    "toggleSelection",
    "selectAll",
    "clearSelection",
    "showHelp",
    "reload",
)


class BuiltinHandlerTable(Mapping[str, BuiltinHandler]):
    """Typed mapping from builtin name to handler."""

    def __init__(self, handlers: Optional[Mapping[str, BuiltinHandler]] = None) -> None:
        """Initialize the table.

        Args:
            handlers: Optional initial name -> handler mapping
        """
        self._handlers: Dict[str, BuiltinHandler] = dict(handlers or {})

    def __getitem__(self, name: str) -> BuiltinHandler:
        return self._handlers[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._handlers)

    def __len__(self) -> int:
        return len(self._handlers)

    def add(self, name: str, handler: BuiltinHandler) -> None:
        """Register a handler, replacing any previous one for the name."""
        if name in self._handlers:
            logger.warning("Overriding existing builtin handler", builtin=name)
        self._handlers[name] = handler
        logger.debug("Registered builtin handler", builtin=name)

    def register(self, name: str) -> Callable[[BuiltinHandler], BuiltinHandler]:
        """Decorator registering a function as the handler for ``name``."""

        def decorator(func: BuiltinHandler) -> BuiltinHandler:
            self.add(name, func)
            return func

        return decorator

    def missing(self, names: tuple = REQUIRED_BUILTINS) -> List[str]:
        """Builtin names the host is expected to cover but did not."""
        return [name for name in names if name not in self._handlers]


async def call_handler(handler: BuiltinHandler, context: ExecutionContext) -> ExecutionResult:
    """Invoke a sync or async handler and return its result."""
    result = handler(context)
    if inspect.isawaitable(result):
        result = await result
    return result


__all__ = ["BuiltinHandler", "BuiltinHandlerTable", "REQUIRED_BUILTINS", "call_handler"]
