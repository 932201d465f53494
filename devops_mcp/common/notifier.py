"""
Notification channel

Best-effort progress messages sent back to the MCP client while a tool runs.
Delivery failures are logged and dropped; they never change a call outcome.
"""

import logging
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger("devops_mcp.notifier")

Sink = Callable[[str, str], Awaitable[Any]]

_LOG_LEVELS = {
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class Notifier:
    """
    Fire-and-forget notification channel.

    Usage:
        async def sink(level, message): ...
        notifier = Notifier(sink)
        await notifier.info("Fetching work items")
    """

    def __init__(self, sink: Optional[Sink] = None):
        self._sink = sink

    async def info(self, message: str) -> None:
        await self._emit("info", message)

    async def warning(self, message: str) -> None:
        await self._emit("warning", message)

    async def error(self, message: str) -> None:
        await self._emit("error", message)

    async def _emit(self, level: str, message: str) -> None:
        logger.log(_LOG_LEVELS.get(level, logging.INFO), message)
        if self._sink is None:
            return
        try:
            await self._sink(level, message)
        except Exception as e:
            logger.debug(f"Notification delivery failed ({level}): {e}")


class ContextNotifier(Notifier):
    """Notifier backed by a FastMCP Context (ctx.info / ctx.warning / ctx.error)."""

    def __init__(self, ctx):
        async def _send(level: str, message: str) -> None:
            await getattr(ctx, level)(message)

        super().__init__(_send if ctx is not None else None)
