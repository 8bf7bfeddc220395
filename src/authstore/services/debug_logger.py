"""Per-operation debug logging that never alters control flow."""

import time
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, TypeVar

import structlog

from authstore.models.enums import OperationKind
from authstore.services.security import redact

T = TypeVar("T")


def _summarize(result: Any) -> Any:
    if isinstance(result, list):
        return {"rows": len(result)}
    if isinstance(result, Mapping):
        return redact(result)
    if hasattr(result, "rows") and hasattr(result, "rows_affected"):
        return {"rows": len(result.rows), "rows_affected": result.rows_affected}
    return result


class DebugLogger:
    """Emits call records for the operation kinds enabled in ``debug_logs``.

    ``debug_logs`` is either a bool applying to every kind or a mapping of
    operation kind to bool. Disabled kinds await the call and return.
    """

    def __init__(
        self,
        debug_logs: bool | Mapping[OperationKind, bool] = False,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._debug_logs = debug_logs
        self._logger = logger or structlog.get_logger(__name__)

    def enabled(self, kind: OperationKind) -> bool:
        if isinstance(self._debug_logs, bool):
            return self._debug_logs
        return bool(self._debug_logs.get(kind, False))

    async def wrap(self, kind: OperationKind, fn: Callable[[], Awaitable[T]], **context: Any) -> T:
        if not self.enabled(kind):
            return await fn()

        self._logger.info("adapter_call_started", operation=kind.value, **redact(context))
        started = time.perf_counter()
        try:
            result = await fn()
        except Exception as exc:
            self._logger.info(
                "adapter_call_failed",
                operation=kind.value,
                error=str(exc),
                error_type=type(exc).__name__,
                duration_ms=round((time.perf_counter() - started) * 1000, 3),
            )
            raise
        self._logger.info(
            "adapter_call_completed",
            operation=kind.value,
            result=_summarize(result),
            duration_ms=round((time.perf_counter() - started) * 1000, 3),
        )
        return result
