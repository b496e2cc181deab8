"""
Tool invocation executor.

Executes the ``toolCallList`` of a tool-calls webhook. The voice session is
paused until this returns, so every invocation is bounded by a timeout and
every input ``toolCallId`` gets exactly one result entry.
"""

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any

from vetcall.shared.logging import get_logger
from vetcall.tools.registry import ToolContext, ToolRegistry

logger = get_logger(__name__)

DEFAULT_TOOL_TIMEOUT_SECONDS = 8.0

# Tenants deploy tools as "<prefix><canonical name>", e.g. "acme_vet_book_appointment".
CANONICAL_TOOL_NAMES: frozenset[str] = frozenset(
    {
        "book_appointment",
        "check_availability",
        "check_availability_range",
        "get_clinic_hours",
        "lookup_pet_records",
        "send_sms_notification",
    }
)


@dataclass(frozen=True)
class ToolInvocation:
    """One tool call extracted from a webhook. Never persisted."""

    tool_call_id: str
    raw_name: str
    normalized_name: str
    parameters: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ExecutionContext:
    call_id: str | None = None
    assistant_id: str | None = None


def normalize_tool_name(raw_name: str, canonical_names: frozenset[str] = CANONICAL_TOOL_NAMES) -> str:
    """Strip a tenant prefix by matching a known canonical suffix.

    The canonical name is returned only when the raw name is strictly longer
    and ends with it; anything else comes back unchanged.
    """
    for name in sorted(canonical_names, key=len, reverse=True):
        if len(raw_name) > len(name) and raw_name.endswith(name):
            return name
    return raw_name


def decode_arguments(arguments: Any, tool_call_id: str = "") -> dict[str, Any]:
    """Decode tool arguments given as an object or a JSON string.

    Undecodable or non-object arguments are logged and treated as empty.
    """
    if arguments is None:
        return {}
    if isinstance(arguments, dict):
        return arguments
    if isinstance(arguments, str):
        if not arguments.strip():
            return {}
        try:
            decoded = json.loads(arguments)
        except json.JSONDecodeError:
            logger.warning(
                "Failed to parse tool arguments, using empty parameters",
                extra={"tool_call_id": tool_call_id, "arguments": arguments[:200]},
            )
            return {}
        if isinstance(decoded, dict):
            return decoded
    logger.warning(
        "Tool arguments are not an object, using empty parameters",
        extra={"tool_call_id": tool_call_id, "arguments_type": type(arguments).__name__},
    )
    return {}


def extract_invocation(tool_call: dict[str, Any]) -> ToolInvocation:
    """Extract id/name/parameters from an OpenAI-style or legacy flat tool call."""
    tool_call_id = str(tool_call.get("id") or tool_call.get("toolCallId") or "")
    function = tool_call.get("function")
    if isinstance(function, dict):
        raw_name = str(function.get("name") or "")
        parameters = decode_arguments(function.get("arguments"), tool_call_id)
    else:
        raw_name = str(tool_call.get("name") or "")
        parameters = decode_arguments(
            tool_call.get("parameters", tool_call.get("arguments")),
            tool_call_id,
        )
    return ToolInvocation(
        tool_call_id=tool_call_id,
        raw_name=raw_name,
        normalized_name=normalize_tool_name(raw_name),
        parameters=parameters,
    )


def serialize_result(value: Any) -> str:
    """JSON-encode a handler result, strings included."""
    return json.dumps(value, default=str)


def _error_result(error: str, message: str) -> str:
    return json.dumps({"error": error, "message": message})


async def run_invocation(
    invocation: ToolInvocation,
    registry: ToolRegistry,
    context: ExecutionContext,
    timeout_seconds: float = DEFAULT_TOOL_TIMEOUT_SECONDS,
) -> str:
    """Run one invocation and return its serialized result (errors included)."""
    log_extra = {
        "tool_call_id": invocation.tool_call_id,
        "tool_name": invocation.normalized_name,
        "raw_tool_name": invocation.raw_name,
        "call_id": context.call_id,
    }

    definition = registry.get(invocation.normalized_name)
    if definition is None:
        logger.warning("Unknown tool requested", extra=log_extra)
        return _error_result("unknown_tool", f"Unknown tool: {invocation.raw_name}")

    tool_context = ToolContext(
        call_id=context.call_id,
        tool_call_id=invocation.tool_call_id,
        assistant_id=context.assistant_id,
    )
    try:
        value = await asyncio.wait_for(
            definition.handler(invocation.parameters, tool_context),
            timeout=timeout_seconds,
        )
    except asyncio.TimeoutError:
        logger.error("Tool timed out", extra={**log_extra, "timeout_seconds": timeout_seconds})
        return _error_result("timeout", f"Tool {invocation.normalized_name} timed out")
    except Exception as exc:
        logger.exception("Tool execution failed", extra=log_extra)
        return _error_result("tool_execution_failed", str(exc) or exc.__class__.__name__)

    logger.info("Tool executed", extra=log_extra)
    return serialize_result(value)


async def execute_tool_calls(
    tool_call_list: list[Any],
    context: ExecutionContext,
    registry: ToolRegistry,
    timeout_seconds: float = DEFAULT_TOOL_TIMEOUT_SECONDS,
) -> dict[str, list[dict[str, str]]]:
    """Execute all tool calls concurrently.

    Returns:
        ``{"results": [{"toolCallId": ..., "result": <json string>}]}`` in
        input order, one entry per input tool call.
    """

    async def _one(tool_call: Any) -> dict[str, str]:
        if not isinstance(tool_call, dict):
            return {
                "toolCallId": "",
                "result": _error_result("invalid_tool_call", "Tool call must be an object"),
            }
        invocation = extract_invocation(tool_call)
        result = await run_invocation(invocation, registry, context, timeout_seconds)
        return {"toolCallId": invocation.tool_call_id, "result": result}

    results = await asyncio.gather(*(_one(tool_call) for tool_call in tool_call_list))
    return {"results": list(results)}


async def execute_function_call(
    function_call: dict[str, Any],
    context: ExecutionContext,
    registry: ToolRegistry,
    timeout_seconds: float = DEFAULT_TOOL_TIMEOUT_SECONDS,
) -> dict[str, str]:
    """Legacy single ``function-call`` message: responds ``{"result": ...}``."""
    invocation = extract_invocation(function_call)
    result = await run_invocation(invocation, registry, context, timeout_seconds)
    return {"result": result}
