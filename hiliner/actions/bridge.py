"""Bridge between the viewer and embedded Python snippets.

Snippets run in a separate interpreter. The host sends a JSON payload on
stdin; the snippet gets a ``hiliner`` object whose status calls are written
back as prefixed JSON lines on stdout. That protocol is the whole surface a
snippet can use to affect the host.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Tuple

import structlog

from .models import ExecutionContext, MessageType


logger = structlog.get_logger(__name__)

BRIDGE_PREFIX = "@@hiliner@@ "

# Markers that identify a snippet written against the bridge API
_API_CALL = re.compile(r"\bhiliner\.(update_status|clear_status|get_file_info|get_selection_info)\s*\(")
SCRIPT_DIRECTORY_MARKER = "scripts/python/"

BOOTSTRAP = r'''
import json
import runpy
import sys

PREFIX = "@@hiliner@@ "
payload = json.loads(sys.stdin.read() or "{}")


def _emit(message):
    sys.stdout.write(PREFIX + json.dumps(message) + "\n")
    sys.stdout.flush()


class _Hiliner:
    __slots__ = ()

    def update_status(self, message, type=None, timeout=None):
        _emit({"op": "update_status", "message": str(message), "type": type, "timeout": timeout})

    def clear_status(self):
        _emit({"op": "clear_status"})

    def get_file_info(self):
        return dict(payload.get("file_info", {}))

    def get_selection_info(self):
        info = dict(payload.get("selection_info", {}))
        info["selected_lines"] = list(info.get("selected_lines", []))
        return info


hiliner = _Hiliner()
if payload.get("path"):
    runpy.run_path(payload["path"], init_globals={"hiliner": hiliner}, run_name="__main__")
else:
    exec(compile(payload.get("source", ""), "<hiliner-action>", "exec"), {"__name__": "__main__", "hiliner": hiliner})
'''


class HostBridge(Protocol):
    """Host-side receiver for snippet status updates."""

    def update_status(
        self,
        message: str,
        message_type: MessageType = MessageType.INFO,
        timeout: Optional[int] = None,
    ) -> None: ...

    def clear_status(self) -> None: ...


class LoggingHostBridge:
    """Default bridge that only logs status updates."""

    def update_status(
        self,
        message: str,
        message_type: MessageType = MessageType.INFO,
        timeout: Optional[int] = None,
    ) -> None:
        logger.info("Script status update", message=message, message_type=message_type.value)

    def clear_status(self) -> None:
        logger.info("Script status cleared")


@dataclass
class BridgeMessage:
    """One status call made by a snippet."""

    op: str
    message: str = ""
    message_type: MessageType = MessageType.INFO
    timeout: Optional[int] = None


@dataclass
class BridgeOutput:
    """Snippet stdout split into plain output and bridge messages."""

    output: str
    messages: List[BridgeMessage] = field(default_factory=list)

    @property
    def final_status(self) -> str:
        """Status left on screen after replaying all messages."""
        status = ""
        for message in self.messages:
            if message.op == "update_status":
                status = message.message
            elif message.op == "clear_status":
                status = ""
        return status


def script_path_of(script: str) -> Optional[str]:
    """Return the script file when the snippet names one instead of carrying source."""
    if _API_CALL.search(script):
        return None

    tokens = script.split()
    if len(tokens) == 1 and tokens[0].endswith(".py"):
        return tokens[0]
    for token in tokens:
        token = token.strip("'\"")
        if SCRIPT_DIRECTORY_MARKER in token and token.endswith(".py"):
            return token
    return None


def is_embedded_script(script: str) -> bool:
    """Decide whether a substituted script runs through the bridge.

    A script qualifies when it calls the ``hiliner`` API, is a single path to
    a ``.py`` file, or runs a file from the shared ``scripts/python/`` directory.
    """
    if not script.strip():
        return False
    return bool(_API_CALL.search(script)) or script_path_of(script) is not None


def build_payload(script: str, execution_context: ExecutionContext, language: str) -> Dict[str, Any]:
    """Serialise what the snippet may query about the host."""
    payload: Dict[str, Any] = {
        "file_info": {
            "path": execution_context.current_file,
            "language": language,
            "total_lines": execution_context.total_lines,
            "current_line": execution_context.current_line,
        },
        "selection_info": {
            "selected_lines": list(execution_context.selected_lines),
            "selection_count": len(execution_context.selected_lines),
            "selected_text": execution_context.selected_text,
        },
    }

    path = script_path_of(script)
    if path is not None:
        payload["path"] = path
    else:
        payload["source"] = script
    return payload


def _parse_message(raw: str) -> Optional[BridgeMessage]:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Malformed bridge message", raw=raw[:200])
        return None

    if not isinstance(data, dict) or data.get("op") not in ("update_status", "clear_status"):
        logger.warning("Unknown bridge message", raw=raw[:200])
        return None

    try:
        message_type = MessageType(data.get("type") or MessageType.INFO.value)
    except ValueError:
        message_type = MessageType.INFO

    timeout = data.get("timeout")
    return BridgeMessage(
        op=data["op"],
        message=str(data.get("message") or ""),
        message_type=message_type,
        timeout=timeout if isinstance(timeout, int) else None,
    )


def parse_bridge_output(stdout: str) -> BridgeOutput:
    """Separate bridge protocol lines from ordinary snippet output."""
    output_lines: List[str] = []
    messages: List[BridgeMessage] = []

    for line in stdout.splitlines():
        if line.startswith(BRIDGE_PREFIX):
            message = _parse_message(line[len(BRIDGE_PREFIX):])
            if message is not None:
                messages.append(message)
        else:
            output_lines.append(line)

    return BridgeOutput(output="\n".join(output_lines).rstrip("\n"), messages=messages)


def replay_messages(bridge: HostBridge, messages: List[BridgeMessage]) -> None:
    """Apply snippet status calls to the host in the order they were made."""
    for message in messages:
        if message.op == "update_status":
            bridge.update_status(message.message, message.message_type, message.timeout)
        else:
            bridge.clear_status()


def bootstrap_argv(python_executable: str) -> Tuple[str, ...]:
    return (python_executable, "-c", BOOTSTRAP)
