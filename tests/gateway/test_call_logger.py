# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Tests for gateway.call_logger - background call record writes."""

from __future__ import annotations

import logging


class TestCallLogger:
    async def test_record_is_written_in_background(self, broker, call_records):
        """record() returns at once; drain() waits for the insert."""
        logger = broker.call_logger
        logger.record(
            "api",
            target_id="P1",
            method="GET",
            path="/proxy/provider/P1/users",
            action="forward",
            success=True,
            status_code=200,
            duration_ms=12,
        )
        assert logger.pending == 1

        records = await call_records()
        assert logger.pending == 0
        assert len(records) == 1
        record = records[0]
        assert record["kind"] == "api"
        assert record["status"] == "success"
        assert record["duration_ms"] == 12
        assert record["success"] is True
        assert record["cached"] is False

    async def test_failed_write_is_logged_not_raised(self, broker, call_records, caplog):
        """A bad record is dropped with a warning."""
        with caplog.at_level(logging.WARNING, logger="api_broker.gateway.call_logger"):
            broker.call_logger.record("bogus", success=True)
            await broker.call_logger.drain()
        assert "Failed to write bogus call record" in caplog.text
        assert await call_records() == []

    async def test_negative_duration_is_clamped(self, broker, call_records):
        broker.call_logger.record("query", success=False, duration_ms=-5, error="boom")
        (record,) = await call_records(kind="query")
        assert record["duration_ms"] == 0
        assert record["status"] == "error"
        assert record["error"] == "boom"
