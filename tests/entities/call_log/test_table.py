# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Tests for CallLogTable."""

from __future__ import annotations

import pytest


class TestCallLogTable:
    async def test_log_call_returns_id(self, broker):
        async with broker.db.connection():
            table = broker.db.table("call_log")
            first = await table.log_call("api", success=True, created_ts=100)
            second = await table.log_call("provider", success=False, error="boom", created_ts=100)
        assert second > first > 0

    async def test_unknown_kind(self, broker):
        async with broker.db.connection():
            with pytest.raises(ValueError, match="Unknown call log kind"):
                await broker.db.table("call_log").log_call("smtp", success=True)

    async def test_list_filters_and_order(self, broker):
        """Newest first; kind, target, outcome and time filters combine."""
        async with broker.db.connection():
            table = broker.db.table("call_log")
            await table.log_call("provider", success=True, target_id="P1", created_ts=100)
            await table.log_call("provider", success=False, target_id="P1", created_ts=200)
            await table.log_call("provider", success=True, target_id="P2", created_ts=300)
            await table.log_call("query", success=True, target_id="Q1", created_ts=400)

            assert [r["created_ts"] for r in await table.list_records()] == [400, 300, 200, 100]
            assert len(await table.list_records(kind="provider")) == 3
            assert [r["created_ts"] for r in await table.list_records(target_id="P1")] == [200, 100]
            failed = await table.list_records(success=False)
            assert [r["status"] for r in failed] == ["error"]
            window = await table.list_records(since_ts=200, until_ts=300)
            assert [r["created_ts"] for r in window] == [300, 200]
            assert [r["created_ts"] for r in await table.list_records(limit=1, offset=1)] == [300]

    async def test_purge_before(self, broker):
        async with broker.db.connection():
            table = broker.db.table("call_log")
            for ts in (100, 200, 300):
                await table.log_call("api", success=True, created_ts=ts)
            assert await table.purge_before(250) == 2
            assert [r["created_ts"] for r in await table.list_records()] == [300]
