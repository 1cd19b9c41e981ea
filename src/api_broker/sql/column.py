# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Column definitions for Table schemas.

Types are plain SQL type names shared by SQLite and PostgreSQL. Booleans are
stored as INTEGER 0/1 so both backends read them back the same way (the
SQLite adapter normalizes them to bool by column name).

Example:
    ::

        def configure(self):
            c = self.columns
            c.column("id", String)
            c.column("provider_id", String, nullable=False).relation("providers", sql=True)
            c.column("auth_config", String, json_encoded=True, encrypted=True)
            c.column("active", Boolean, default=1)
"""

from __future__ import annotations

from typing import Any

String = "TEXT"
Integer = "INTEGER"
Boolean = "INTEGER"
Timestamp = "TIMESTAMP"


class Column:
    """Single column definition.

    Attributes:
        name: Column name.
        type_: SQL type name.
        nullable: Allow NULL values.
        default: SQL default (literal value or SQL keyword like CURRENT_TIMESTAMP).
        unique: Add a UNIQUE constraint.
        json_encoded: Store as JSON text, decode on read.
        encrypted: Encrypt with AES-256-GCM when a key is configured.
    """

    _SQL_KEYWORDS = frozenset({"CURRENT_TIMESTAMP", "CURRENT_DATE", "CURRENT_TIME", "NULL"})

    def __init__(
        self,
        name: str,
        type_: str = String,
        *,
        nullable: bool = True,
        default: Any = None,
        unique: bool = False,
        json_encoded: bool = False,
        encrypted: bool = False,
    ):
        self.name = name
        self.type_ = type_
        self.nullable = nullable
        self.default = default
        self.unique = unique
        self.json_encoded = json_encoded
        self.encrypted = encrypted
        self.relation_table: str | None = None
        self.relation_pk: str = "id"
        self.relation_sql: bool = False

    def relation(self, table: str, *, pk: str = "id", sql: bool = False) -> Column:
        """Declare a reference to another table. sql=True emits a FOREIGN KEY."""
        self.relation_table = table
        self.relation_pk = pk
        self.relation_sql = sql
        return self

    def _default_sql(self) -> str:
        value = self.default
        if isinstance(value, bool):
            return str(int(value))
        if isinstance(value, (int, float)):
            return str(value)
        if isinstance(value, str) and value.upper() in self._SQL_KEYWORDS:
            return value.upper()
        escaped = str(value).replace("'", "''")
        return f"'{escaped}'"

    def to_sql(self, primary_key: bool = False) -> str:
        """Return the column definition for CREATE TABLE / ADD COLUMN."""
        parts = [f'"{self.name}"', self.type_]
        if primary_key:
            parts.append("PRIMARY KEY")
        else:
            if not self.nullable:
                parts.append("NOT NULL")
            if self.unique:
                parts.append("UNIQUE")
        if self.default is not None:
            parts.append(f"DEFAULT {self._default_sql()}")
        return " ".join(parts)

    def __repr__(self) -> str:
        return f"Column({self.name!r}, {self.type_!r})"


class Columns:
    """Ordered collection of Column definitions."""

    def __init__(self) -> None:
        self._columns: dict[str, Column] = {}

    def column(self, name: str, type_: str = String, **kwargs: Any) -> Column:
        """Define (or redefine) a column and return it."""
        col = Column(name, type_, **kwargs)
        self._columns[name] = col
        return col

    def get(self, name: str) -> Column | None:
        return self._columns.get(name)

    def values(self):
        return self._columns.values()

    def names(self) -> list[str]:
        return list(self._columns)

    def json_columns(self) -> list[str]:
        return [c.name for c in self._columns.values() if c.json_encoded]

    def encrypted_columns(self) -> list[str]:
        return [c.name for c in self._columns.values() if c.encrypted]

    def __contains__(self, name: str) -> bool:
        return name in self._columns

    def __iter__(self):
        return iter(self._columns.values())

    def __len__(self) -> int:
        return len(self._columns)


__all__ = ["Boolean", "Column", "Columns", "Integer", "String", "Timestamp"]
