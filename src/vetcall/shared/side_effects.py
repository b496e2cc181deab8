"""
Non-critical side effects.

Every best-effort write (case escalation, durable job id bookkeeping) goes
through ``run_best_effort`` so that its failure is logged in one shape and
can never fail the primary operation that triggered it.
"""

from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from vetcall.shared.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


async def run_best_effort(
    name: str,
    action: Callable[[], Awaitable[T]],
    **context: Any,
) -> T | None:
    """Run ``action`` inside its own error boundary.

    Returns the action's result, or None if it raised.
    """
    try:
        return await action()
    except Exception as exc:
        logger.warning(
            "Best-effort side effect failed",
            extra={"side_effect": name, "error": str(exc), **context},
            exc_info=True,
        )
        return None
