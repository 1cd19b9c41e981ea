# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""SSH tunnels to databases that are not directly reachable.

TunnelManager.open() starts an sshtunnel forwarder (SSH session plus one
local-to-remote port forward) on the worker pool and races it against a
fixed deadline. On timeout the caller gets BrokerTimeoutError right away;
a forwarder that still comes up later is stopped as soon as it does.

Tunnel states::

    connecting -> ready -> forwarding
         \\          \\
          +----------+--> error

The caller owns the returned Tunnel and must close() it.
"""

from __future__ import annotations

import asyncio
import io
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

import paramiko
from sshtunnel import BaseSSHTunnelForwarderError, SSHTunnelForwarder

from ..errors import BrokerTimeoutError, ParameterError, UpstreamError
from .deadline import call_with_deadline, run_in_thread

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT = 10.0
DEFAULT_KEEPALIVE_INTERVAL = 10.0
DEFAULT_KEEPALIVE_COUNT_MAX = 3
LOCAL_HOST = "127.0.0.1"

_KEY_CLASSES = (paramiko.RSAKey, paramiko.ECDSAKey, paramiko.Ed25519Key)


@dataclass(frozen=True)
class TunnelConfig:
    """SSH side of a tunnel.

    Attributes:
        ssh_host: SSH gateway host.
        ssh_port: SSH gateway port.
        ssh_username: Login user.
        ssh_password: Password credential.
        ssh_private_key: PEM private key (takes precedence over password).
        ssh_private_key_passphrase: Passphrase for the private key.
        local_port: Local bind port, 0 for an ephemeral one.
    """

    ssh_host: str
    ssh_username: str
    ssh_port: int = 22
    ssh_password: str | None = None
    ssh_private_key: str | None = None
    ssh_private_key_passphrase: str | None = None
    local_port: int = 0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> TunnelConfig:
        """Build from a stored tunnel_config.

        Raises:
            ParameterError: Host, user or credential missing.
        """
        data = data or {}
        missing = [k for k in ("ssh_host", "ssh_username") if not data.get(k)]
        if missing:
            raise ParameterError(f"Tunnel configuration requires {', '.join(missing)}")
        if not data.get("ssh_password") and not data.get("ssh_private_key"):
            raise ParameterError("Tunnel configuration requires ssh_password or ssh_private_key")
        return cls(
            ssh_host=str(data["ssh_host"]),
            ssh_username=str(data["ssh_username"]),
            ssh_port=int(data.get("ssh_port") or 22),
            ssh_password=data.get("ssh_password") or None,
            ssh_private_key=data.get("ssh_private_key") or None,
            ssh_private_key_passphrase=data.get("ssh_private_key_passphrase") or None,
            local_port=int(data.get("local_port") or 0),
        )


def load_private_key(pem: str, passphrase: str | None = None) -> paramiko.PKey:
    """Parse a PEM private key of any supported type.

    Raises:
        ParameterError: The key cannot be parsed.
    """
    for key_class in _KEY_CLASSES:
        try:
            return key_class.from_private_key(io.StringIO(pem), password=passphrase)
        except paramiko.SSHException:
            continue
    raise ParameterError("Unsupported or invalid SSH private key")


class TunnelState(str, Enum):
    CONNECTING = "connecting"
    READY = "ready"
    FORWARDING = "forwarding"
    ERROR = "error"
    CLOSED = "closed"


class Tunnel:
    """An established SSH port forward. Close it when done."""

    def __init__(self, manager: TunnelManager, remote_host: str, remote_port: int):
        self._manager = manager
        self.remote_host = remote_host
        self.remote_port = remote_port
        self.local_host = LOCAL_HOST
        self.local_port = 0
        self.state = TunnelState.CONNECTING
        self._forwarder: Any = None

    @property
    def is_open(self) -> bool:
        return self.state == TunnelState.FORWARDING

    def _stop(self) -> None:
        if self._forwarder is not None:
            self._forwarder.stop()
            self._forwarder = None

    async def close(self) -> None:
        """Stop the forward and the SSH session. Safe to call twice."""
        if self.state == TunnelState.CLOSED:
            return
        try:
            await run_in_thread(self._stop)
        finally:
            self.state = TunnelState.CLOSED
            self._manager._release(self)
            logger.info(
                "SSH tunnel closed: %s:%s -> %s:%s",
                self.local_host,
                self.local_port,
                self.remote_host,
                self.remote_port,
            )


class TunnelManager:
    """Open SSH tunnels with a connect deadline and keepalive.

    Args:
        connect_timeout: Deadline for handshake plus forward setup, seconds.
        keepalive_interval: Seconds between SSH keepalive probes.
        keepalive_count_max: Missed probes tolerated before the link drops.
            Kept as configuration only; sshtunnel exposes just the interval
            and paramiko drops the link on its own when the peer is gone.
        forwarder_factory: Builds the forwarder; SSHTunnelForwarder by default.
    """

    def __init__(
        self,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        keepalive_interval: float = DEFAULT_KEEPALIVE_INTERVAL,
        keepalive_count_max: int = DEFAULT_KEEPALIVE_COUNT_MAX,
        forwarder_factory: Callable[..., Any] = SSHTunnelForwarder,
    ):
        self.connect_timeout = connect_timeout
        self.keepalive_interval = keepalive_interval
        self.keepalive_count_max = keepalive_count_max
        self._forwarder_factory = forwarder_factory
        self._ports: dict[int, Tunnel] = {}
        self._reserved: set[int] = set()

    @property
    def live_ports(self) -> set[int]:
        """Local ports held by open or opening tunnels."""
        return set(self._ports) | self._reserved

    def _release(self, tunnel: Tunnel) -> None:
        if self._ports.get(tunnel.local_port) is tunnel:
            del self._ports[tunnel.local_port]

    def _forwarder_kwargs(
        self, config: TunnelConfig, remote_host: str, remote_port: int
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "ssh_address_or_host": (config.ssh_host, config.ssh_port),
            "ssh_username": config.ssh_username,
            "remote_bind_address": (remote_host, remote_port),
            "local_bind_address": (LOCAL_HOST, config.local_port),
            "set_keepalive": self.keepalive_interval,
        }
        if config.ssh_private_key:
            kwargs["ssh_pkey"] = load_private_key(
                config.ssh_private_key, config.ssh_private_key_passphrase
            )
        else:
            kwargs["ssh_password"] = config.ssh_password
        return kwargs

    def _start(self, tunnel: Tunnel, kwargs: dict[str, Any]) -> Any:
        """Blocking part: SSH handshake, then the port forward."""
        forwarder = self._forwarder_factory(**kwargs)
        try:
            forwarder.start()
            tunnel.state = TunnelState.READY
            if not forwarder.tunnel_is_up.get((LOCAL_HOST, forwarder.local_bind_port), True):
                raise UpstreamError("SSH port forward could not be established")
        except BaseException:
            forwarder.stop()
            raise
        return forwarder

    async def open(
        self, config: TunnelConfig | Mapping[str, Any], remote_host: str, remote_port: int
    ) -> Tunnel:
        """Open a tunnel to remote_host:remote_port.

        Raises:
            ParameterError: Invalid config or local port already in use.
            BrokerTimeoutError: Setup exceeded connect_timeout.
            UpstreamError: Handshake or forward failed.
        """
        if not isinstance(config, TunnelConfig):
            config = TunnelConfig.from_dict(config)
        if config.local_port and config.local_port in self.live_ports:
            raise ParameterError(
                f"Local port {config.local_port} is already used by another tunnel"
            )

        kwargs = self._forwarder_kwargs(config, remote_host, remote_port)
        tunnel = Tunnel(self, remote_host, remote_port)
        port = config.local_port
        if port:
            self._reserved.add(port)
        # A worker left running past the deadline may still bind the port,
        # so its reservation is dropped only when that worker is done.
        handed_off = False
        try:
            forwarder = await call_with_deadline(
                self._start,
                tunnel,
                kwargs,
                timeout=self.connect_timeout,
                dispose=lambda late: late.stop(),
                message=f"SSH connection timeout after {self.connect_timeout:g} seconds",
                finalize=lambda: self._reserved.discard(port),
            )
        except BaseSSHTunnelForwarderError as e:
            tunnel.state = TunnelState.ERROR
            raise UpstreamError(f"SSH connection failed: {e}") from e
        except (BrokerTimeoutError, asyncio.CancelledError):
            tunnel.state = TunnelState.ERROR
            handed_off = True
            raise
        except Exception:
            tunnel.state = TunnelState.ERROR
            raise
        finally:
            if not handed_off:
                self._reserved.discard(port)

        tunnel._forwarder = forwarder
        tunnel.local_port = int(forwarder.local_bind_port)
        tunnel.state = TunnelState.FORWARDING
        self._ports[tunnel.local_port] = tunnel
        logger.info(
            "SSH tunnel established: %s:%s -> %s:%s via %s",
            tunnel.local_host,
            tunnel.local_port,
            remote_host,
            remote_port,
            config.ssh_host,
        )
        return tunnel


__all__ = [
    "Tunnel",
    "TunnelConfig",
    "TunnelManager",
    "TunnelState",
    "load_private_key",
]
