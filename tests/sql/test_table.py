# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Tests for sql.table module - Table CRUD, JSON columns and encryption."""

from __future__ import annotations

import base64
from unittest.mock import MagicMock

import pytest

from api_broker.encryption import generate_key, is_encrypted
from api_broker.sql import Boolean, Integer, RecordNotFoundError, SqlDb, String, Table


class ItemsTable(Table):
    name = "items"
    pkey = "id"

    def configure(self) -> None:
        c = self.columns
        c.column("id", String)
        c.column("label", String, nullable=False)
        c.column("tags", String, json_encoded=True)
        c.column("secret", String, encrypted=True)
        c.column("active", Boolean, default=1)

    async def trigger_on_inserting(self, record):
        record["label"] = record["label"].strip()
        return await super().trigger_on_inserting(record)


class EventsTable(Table):
    name = "events"
    pkey = "id"

    def new_pkey_value(self) -> None:
        return None

    def configure(self) -> None:
        self.columns.column("id", Integer)
        self.columns.column("kind", String)


async def _db(path, key: bytes | None = None) -> SqlDb:
    parent = MagicMock()
    parent.encryption_key = key
    db = SqlDb(str(path), parent=parent)
    db.add_table(ItemsTable)
    db.add_table(EventsTable)
    async with db.connection():
        await db.check_structure()
    return db


class TestTableCrud:
    """insert/record/select/update/delete with triggers."""

    async def test_insert_generates_pkey_and_runs_trigger(self, tmp_path):
        """A missing pk gets a hex UUID written back into the dict."""
        db = await _db(tmp_path / "t.db")
        async with db.connection():
            data = {"label": "  first  "}
            await db.table("items").insert(data)
            record = await db.table("items").record(pkey=data["id"])
        assert len(data["id"]) == 32
        assert record["label"] == "first"
        assert record["active"] is True

    async def test_autoincrement_pkey(self, tmp_path):
        """Tables whose new_pkey_value() is None get the rowid back."""
        db = await _db(tmp_path / "t.db")
        async with db.connection():
            first = {"kind": "a"}
            second = {"kind": "b"}
            await db.table("events").insert(first)
            await db.table("events").insert(second)
        assert (first["id"], second["id"]) == (1, 2)

    async def test_record_missing(self, tmp_path):
        """record() raises, or returns {} with ignore_missing."""
        db = await _db(tmp_path / "t.db")
        async with db.connection():
            with pytest.raises(RecordNotFoundError):
                await db.table("items").record(pkey="nope")
            assert await db.table("items").record(pkey="nope", ignore_missing=True) == {}

    async def test_record_by_where(self, tmp_path):
        """record(where=...) returns the first match, decoded."""
        db = await _db(tmp_path / "t.db")
        async with db.connection():
            await db.table("items").insert(
                {"id": "i1", "label": "x", "tags": ["a"], "active": False}
            )
            record = await db.table("items").record(where={"label": "x"})
            assert await db.table("items").record(where={"label": "y"}, ignore_missing=True) == {}
        assert record["id"] == "i1"
        assert record["tags"] == ["a"]
        assert record["active"] is False

    async def test_record_to_update(self, tmp_path):
        """record_to_update() writes the modified dict back."""
        db = await _db(tmp_path / "t.db")
        async with db.connection():
            await db.table("items").insert({"id": "i1", "label": "x", "tags": ["a"]})
            async with db.table("items").record_to_update("i1") as rec:
                rec["tags"] = ["a", "b"]
                rec["active"] = False
            record = await db.table("items").record(pkey="i1")
        assert record["tags"] == ["a", "b"]
        assert record["active"] is False

    async def test_record_to_update_missing_raises(self, tmp_path):
        """An unknown pk raises RecordNotFoundError."""
        db = await _db(tmp_path / "t.db")
        async with db.connection():
            with pytest.raises(RecordNotFoundError):
                async with db.table("items").record_to_update("ghost"):
                    pass

    async def test_delete_returns_rowcount(self, tmp_path):
        """delete() returns the number of removed rows."""
        db = await _db(tmp_path / "t.db")
        async with db.connection():
            await db.table("items").insert({"id": "i1", "label": "x"})
            assert await db.table("items").delete({"id": "i1"}) == 1
            assert await db.table("items").delete({"id": "i1"}) == 0


class TestTableEncryption:
    """encrypted=True columns."""

    async def test_secret_encrypted_at_rest(self, tmp_path):
        """With a key, the stored value is ciphertext and reads back as plaintext."""
        key = base64.b64decode(generate_key())
        db = await _db(tmp_path / "t.db", key=key)
        async with db.connection():
            await db.table("items").insert({"id": "i1", "label": "x", "secret": "hunter2"})
            raw = await db.fetch_one("SELECT secret FROM items WHERE id = 'i1'")
            record = await db.table("items").record(pkey="i1")
        assert is_encrypted(raw["secret"])
        assert record["secret"] == "hunter2"

    async def test_plaintext_without_key(self, tmp_path):
        """Without a key, secrets are stored as given."""
        db = await _db(tmp_path / "t.db")
        async with db.connection():
            await db.table("items").insert({"id": "i1", "label": "x", "secret": "hunter2"})
            raw = await db.fetch_one("SELECT secret FROM items WHERE id = 'i1'")
        assert raw["secret"] == "hunter2"
