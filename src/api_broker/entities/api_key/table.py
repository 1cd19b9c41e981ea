# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Client API keys for the gateway routes.

Only the SHA-256 hash of a key is stored. The raw ``ak_...`` value is
returned once by create_key() and cannot be recovered afterwards.
"""

from __future__ import annotations

import hashlib
import ipaddress
import secrets
from datetime import datetime, timezone
from typing import Any

from ...errors import AuthenticationError
from ...sql import Boolean, String, Table, Timestamp

KEY_PREFIX = "ak_"


def hash_key(raw_key: str) -> str:
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


def generate_raw_key() -> str:
    """Return a new key: "ak_" + 64 hex chars."""
    return KEY_PREFIX + secrets.token_hex(32)


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def format_timestamp(value: datetime) -> str:
    """Format like SQL CURRENT_TIMESTAMP (naive UTC)."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.strftime("%Y-%m-%d %H:%M:%S")


def ip_allowed(client_ip: str | None, whitelist: list[str] | None) -> bool:
    """Check client_ip against addresses or CIDR ranges. Empty list allows all."""
    if not whitelist:
        return True
    if not client_ip:
        return False
    try:
        address = ipaddress.ip_address(client_ip)
    except ValueError:
        return client_ip in whitelist
    for entry in whitelist:
        try:
            if address in ipaddress.ip_network(entry, strict=False):
                return True
        except ValueError:
            if entry == client_ip:
                return True
    return False


class ApiKeysTable(Table):
    """API key storage table.

    Schema: id (PK), name, key_hash (unique), key_prefix, active,
    expires_at, ip_whitelist (JSON), last_used_at, created_at.
    """

    name = "api_keys"
    pkey = "id"

    def configure(self) -> None:
        c = self.columns
        c.column("id", String)
        c.column("name", String, nullable=False)
        c.column("key_hash", String, nullable=False, unique=True)
        c.column("key_prefix", String)
        c.column("active", Boolean, default=1)
        c.column("expires_at", Timestamp)
        c.column("ip_whitelist", String, json_encoded=True)
        c.column("last_used_at", Timestamp)
        c.column("created_at", Timestamp, default="CURRENT_TIMESTAMP")

    async def create_key(
        self,
        name: str,
        expires_at: datetime | str | None = None,
        ip_whitelist: list[str] | None = None,
    ) -> tuple[dict[str, Any], str]:
        """Create a key.

        Returns:
            Tuple of (stored record without hash, raw key).
        """
        raw_key = generate_raw_key()
        if isinstance(expires_at, datetime):
            expires_at = format_timestamp(expires_at)
        record: dict[str, Any] = {
            "name": name,
            "key_hash": hash_key(raw_key),
            "key_prefix": raw_key[:10],
            "expires_at": expires_at,
            "ip_whitelist": ip_whitelist or [],
        }
        await self.insert(record)
        record.pop("key_hash")
        return record, raw_key

    async def authenticate(self, raw_key: str | None, client_ip: str | None = None) -> dict[str, Any]:
        """Resolve a raw key to its record and stamp last_used_at.

        Raises:
            AuthenticationError: 401 for missing, unknown, inactive or
                expired keys; 403 when client_ip is not whitelisted.
        """
        if not raw_key:
            raise AuthenticationError("API key required")
        record = await self.record(where={"key_hash": hash_key(raw_key)}, ignore_missing=True)
        if not record or not record.get("active"):
            raise AuthenticationError("Invalid or inactive API key")

        expires_at = record.get("expires_at")
        if isinstance(expires_at, str):
            expires_at = datetime.fromisoformat(expires_at)
        if isinstance(expires_at, datetime):
            if expires_at.tzinfo is not None:
                expires_at = expires_at.astimezone(timezone.utc).replace(tzinfo=None)
            if expires_at < utc_now():
                raise AuthenticationError("API key expired")

        if not ip_allowed(client_ip, record.get("ip_whitelist")):
            raise AuthenticationError("IP address not allowed", status_code=403)

        await self.db.update(
            self.name, {"last_used_at": format_timestamp(utc_now())}, {"id": record["id"]}
        )
        record.pop("key_hash", None)
        return record


__all__ = ["ApiKeysTable", "generate_raw_key", "hash_key", "ip_allowed"]
