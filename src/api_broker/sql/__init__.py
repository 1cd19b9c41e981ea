# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Async SQL layer holding the broker registry.

Components:
    SqlDb: Database manager with table registry, schema creation and the
           connection() transaction context manager.
    Table: Base class for table definitions with Columns schema.
    DbAdapter, get_adapter: SQLite/PostgreSQL adapters.
    Column, Columns: Schema definition with types and constraints.

Example:
    ::

        from api_broker.sql import SqlDb, Table, String, Boolean

        class ProvidersTable(Table):
            name = "providers"
            pkey = "id"

            def configure(self):
                self.columns.column("id", String)
                self.columns.column("base_url", String, nullable=False)
                self.columns.column("active", Boolean, default=1)

        db = SqlDb("/data/broker.db")
        db.add_table(ProvidersTable)
        async with db.connection():
            await db.check_structure()
"""

from .adapters import DbAdapter, get_adapter
from .column import Boolean, Column, Columns, Integer, String, Timestamp
from .sqldb import SqlDb
from .table import RecordNotFoundError, Table

__all__ = [
    "Boolean",
    "Column",
    "Columns",
    "DbAdapter",
    "Integer",
    "RecordNotFoundError",
    "SqlDb",
    "String",
    "Table",
    "Timestamp",
    "get_adapter",
]
