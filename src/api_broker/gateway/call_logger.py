# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Fire-and-forget writes into the call_log table.

record() schedules the insert as a background task with its own store
transaction and returns immediately. A failed write is logged and dropped;
it never reaches the caller. drain() waits for pending writes (tests and
shutdown).
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ..sql import SqlDb

logger = logging.getLogger(__name__)


class CallLogger:
    """Best-effort call recorder.

    Args:
        db: Registry store holding the call_log table.
        table_name: Name of the call log table.
    """

    def __init__(self, db: SqlDb, table_name: str = "call_log"):
        self.db = db
        self.table_name = table_name
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def _write(self, kind: str, fields: dict[str, Any]) -> None:
        try:
            async with self.db.connection():
                await self.db.table(self.table_name).log_call(kind, **fields)
        except Exception as e:
            logger.warning("Failed to write %s call record: %s", kind, e)

    def record(self, kind: str, **fields: Any) -> asyncio.Task[None]:
        """Schedule one call record write.

        Args:
            kind: Log kind ("api", "provider", "external_api", "connection", "query").
            **fields: Columns accepted by CallLogTable.log_call().
        """
        task = asyncio.get_running_loop().create_task(self._write(kind, fields))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait until every scheduled write has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


__all__ = ["CallLogger"]
