# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Table base class for registry records.

A Table subclass declares its columns in configure() and may override the
trigger_on_inserting/updating/deleting hooks to validate or normalize
records. Rows pass through _to_storage()/_from_storage() on the way in and
out: booleans become 0/1, json_encoded columns are serialized and
encrypted columns are sealed with the registry key (when one is set).
"""

from __future__ import annotations

import json
import uuid
from typing import TYPE_CHECKING, Any

from ..encryption import decrypt_value_with_key, encrypt_value_with_key, is_encrypted
from .column import Columns

if TYPE_CHECKING:
    from .sqldb import SqlDb


class RecordNotFoundError(Exception):
    """record() or record_to_update() matched nothing."""

    def __init__(self, table: str, pkey: Any = None, where: dict[str, Any] | None = None):
        self.table = table
        self.pkey = pkey
        self.where = where
        if pkey is not None:
            detail = f" with pkey={pkey!r}"
        elif where:
            detail = f" with where={where!r}"
        else:
            detail = ""
        super().__init__(f"Record not found in '{table}'{detail}")


class RecordUpdater:
    """Read-modify-write of one record, as returned by Table.record_to_update().

    Entering loads the row (locked on PostgreSQL) and yields a mutable copy.
    Leaving without an exception writes the copy back through Table.update(),
    so the updating trigger still runs.
    """

    def __init__(self, table: Table, pkey_value: Any):
        if table.pkey is None:
            raise ValueError(f"Table {table.name} has no primary key defined")
        self.table = table
        self.where: dict[str, Any] = {table.pkey: pkey_value}
        self.record: dict[str, Any] = {}

    async def __aenter__(self) -> dict[str, Any]:
        current = await self.table.select_for_update(self.where)
        if not current:
            raise RecordNotFoundError(self.table.name, where=self.where)
        self.record = dict(current)
        return self.record

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if exc_type is None:
            await self.table.update(self.record, self.where)


class Table:
    """Base class for registry tables.

    Attributes:
        name: SQL table name.
        pkey: Primary key column, or None.
        db: Owning SqlDb.
        columns: Column definitions filled by configure().
    """

    name: str
    pkey: str | None = None

    def __init__(self, db: SqlDb) -> None:
        self.db = db
        if not getattr(self, "name", None):
            raise ValueError(f"{type(self).__name__} must define 'name'")
        self.columns = Columns()
        self.configure()

    def configure(self) -> None:
        """Declare columns here."""

    def new_pkey_value(self) -> Any:
        """Primary key for a new record: a hex UUID, or None for autoincrement."""
        return uuid.uuid4().hex

    # -------------------------------------------------------------------------
    # Triggers
    # -------------------------------------------------------------------------

    async def trigger_on_inserting(self, record: dict[str, Any]) -> dict[str, Any]:
        """Runs before insert and returns the record to store.

        Fills the primary key from new_pkey_value() when the caller left it
        empty; an autoincrement table drops the key so the database assigns it.
        """
        if self.pkey and not record.get(self.pkey):
            value = self.new_pkey_value()
            if value is None:
                record.pop(self.pkey, None)
            else:
                record[self.pkey] = value
        return record

    async def trigger_on_updating(
        self, record: dict[str, Any], old_record: dict[str, Any]
    ) -> dict[str, Any]:
        """Runs before update and returns the values to write."""
        return record

    async def trigger_on_deleting(self, record: dict[str, Any]) -> None:
        """Runs before delete. Raise to refuse it."""

    # -------------------------------------------------------------------------
    # Schema
    # -------------------------------------------------------------------------

    def create_table_sql(self) -> str:
        """CREATE TABLE IF NOT EXISTS statement for the declared columns."""
        autoincrement = self.pkey is not None and self.new_pkey_value() is None
        definitions = []
        for col in self.columns.values():
            if col.name != self.pkey:
                definitions.append(col.to_sql())
            elif autoincrement and col.type_ == "INTEGER":
                definitions.append(self.db.adapter.pk_column(col.name))
            else:
                definitions.append(col.to_sql(primary_key=True))
        definitions.extend(
            f'FOREIGN KEY ("{col.name}") REFERENCES {col.relation_table}("{col.relation_pk}")'
            for col in self.columns.values()
            if col.relation_sql and col.relation_table
        )
        body = ",\n    ".join(definitions)
        return f"CREATE TABLE IF NOT EXISTS {self.name} (\n    {body}\n)"

    async def create_schema(self) -> None:
        await self.db.execute(self.create_table_sql())

    # -------------------------------------------------------------------------
    # Storage encoding
    # -------------------------------------------------------------------------

    def _seal(self, values: dict[str, Any]) -> dict[str, Any]:
        key = self.db.encryption_key
        if key is None:
            return values
        for name in self.columns.encrypted_columns():
            value = values.get(name)
            if isinstance(value, str) and value and not is_encrypted(value):
                values[name] = encrypt_value_with_key(value, key)
        return values

    def _unseal(self, row: dict[str, Any]) -> dict[str, Any]:
        key = self.db.encryption_key
        if key is None:
            return row
        for name in self.columns.encrypted_columns():
            if is_encrypted(row.get(name)):
                row[name] = decrypt_value_with_key(row[name], key)
        return row

    def _to_storage(self, record: dict[str, Any]) -> dict[str, Any]:
        # Boolean columns are INTEGER on both backends
        values = {k: int(v) if isinstance(v, bool) else v for k, v in record.items()}
        for name in self.columns.json_columns():
            if values.get(name) is not None:
                values[name] = json.dumps(values[name])
        return self._seal(values)

    def _from_storage(self, row: dict[str, Any]) -> dict[str, Any]:
        row = self._unseal(dict(row))
        for name in self.columns.json_columns():
            value = row.get(name)
            # Still sealed when no key is configured
            if isinstance(value, str) and not is_encrypted(value):
                row[name] = json.loads(value)
        return row

    # -------------------------------------------------------------------------
    # CRUD
    # -------------------------------------------------------------------------

    async def insert(self, data: dict[str, Any]) -> int:
        """Insert one record.

        data is updated in place with the primary key that was stored,
        whether generated here or assigned by the database.
        """
        record = await self.trigger_on_inserting(data)
        values = self._to_storage(record)
        if self.pkey and self.pkey not in record:
            new_id = await self.db.insert_returning_id(self.name, values, self.pkey)
            if new_id is not None:
                data[self.pkey] = new_id
        else:
            await self.db.insert(self.name, values)
            if self.pkey:
                data[self.pkey] = record[self.pkey]
        return 1

    async def select(
        self,
        columns: list[str] | None = None,
        where: dict[str, Any] | None = None,
        order_by: str | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        rows = await self.db.select(self.name, columns, where, order_by, limit)
        return [self._from_storage(row) for row in rows]

    async def record(
        self,
        pkey: Any = None,
        where: dict[str, Any] | None = None,
        ignore_missing: bool = False,
    ) -> dict[str, Any]:
        """Fetch one record by primary key or by where conditions.

        Args:
            pkey: Primary key value.
            where: Column conditions, used when pkey is None. The first
                matching row is returned.
            ignore_missing: Return {} instead of raising.

        Raises:
            RecordNotFoundError: Nothing matched and ignore_missing is False.
            ValueError: Neither pkey nor where given.
        """
        if pkey is not None:
            if self.pkey is None:
                raise ValueError(f"Table {self.name} has no primary key defined")
            conditions = {self.pkey: pkey}
        elif where is not None:
            conditions = where
        else:
            raise ValueError("record() requires either pkey or where argument")

        rows = await self.db.select(self.name, None, conditions, limit=1)
        if rows:
            return self._from_storage(rows[0])
        if ignore_missing:
            return {}
        raise RecordNotFoundError(self.name, pkey, where)

    async def select_for_update(self, where: dict[str, Any]) -> dict[str, Any] | None:
        """Fetch one row, locking it FOR UPDATE where the backend supports it."""
        clause, params = self.db.where_clause(where)
        lock = self.db.adapter.for_update_clause()
        row = await self.db.fetch_one(f"SELECT * FROM {self.name}{clause}{lock}", params)
        return self._from_storage(row) if row else None

    def record_to_update(self, pkey_value: Any) -> RecordUpdater:
        """Context manager yielding record pkey_value for in-place changes.

        Example:
            ::

                async with table.record_to_update(provider_id) as rec:
                    rec["timeout_ms"] = 5000
        """
        return RecordUpdater(self, pkey_value)

    async def update(self, values: dict[str, Any], where: dict[str, Any]) -> int:
        """Update matching rows through trigger_on_updating. Returns the row count."""
        old_record = await self.select_for_update(where)
        record = await self.trigger_on_updating(values, old_record or {})
        return await self.db.update(self.name, self._to_storage(record), where)

    async def delete(self, where: dict[str, Any]) -> int:
        """Delete matching rows after trigger_on_deleting. Returns the row count."""
        record = await self.record(where=where, ignore_missing=True)
        if record:
            await self.trigger_on_deleting(record)
        return await self.db.delete(self.name, where)

    async def exists(self, where: dict[str, Any]) -> bool:
        return await self.db.exists(self.name, where)

    async def count(self, where: dict[str, Any] | None = None) -> int:
        return await self.db.count(self.name, where)

    async def fetch_all(
        self, query: str, params: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        """Run a raw SELECT and decode its rows like select() does."""
        rows = await self.db.fetch_all(query, params)
        return [self._from_storage(row) for row in rows]

    async def execute(self, query: str, params: dict[str, Any] | None = None) -> int:
        """Run a raw statement and return the affected row count."""
        return await self.db.execute(query, params)


__all__ = ["RecordNotFoundError", "RecordUpdater", "Table"]
