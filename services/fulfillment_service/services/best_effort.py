"""Best-effort execution of side effects that must never fail their caller.

Notifications, audit writes, course enrollment, license keys, realtime pushes,
chat edits and parcel sync all go through ``run_best_effort``: the failure is
logged with context and reported back, and the caller carries on.
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from libs.common.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class BestEffortOutcome:
    name: str
    ok: bool
    result: Any = None
    error: Optional[str] = None


async def run_best_effort(
    name: str,
    fn: Callable[..., Awaitable[Any]],
    *args: Any,
    context: Optional[dict] = None,
    **kwargs: Any,
) -> BestEffortOutcome:
    """Await ``fn(*args, **kwargs)``, converting any exception into a logged outcome."""
    try:
        result = await fn(*args, **kwargs)
    except Exception as e:
        logger.error(
            "Best-effort step %s failed: %s: %s",
            name,
            type(e).__name__,
            e,
            exc_info=True,
            extra={"extra_fields": {"step": name, **(context or {})}},
        )
        return BestEffortOutcome(name=name, ok=False, error=f"{type(e).__name__}: {e}")
    return BestEffortOutcome(name=name, ok=True, result=result)
