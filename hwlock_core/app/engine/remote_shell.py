# app/engine/remote_shell.py
# -*- coding: utf-8 -*-
"""
Remote command execution over SSH (paramiko).

Every run() carries a hard wall-clock timeout: once it passes, the session
is closed and the run is reported as failed. Partial remote state is left
as-is; the deploy bundle is idempotent so a retry converges.
"""

import ipaddress
import logging
import socket
import time
from dataclasses import dataclass
from typing import Callable, Optional

import paramiko

from config import SSH_CONNECT_TIMEOUT, SSH_STRICT_HOST_KEYS, DNS_CACHE_TTL
from app.engine.ttl_registry import TTLRegistry

logger = logging.getLogger(__name__)

_POLL_SECONDS = 0.05
_CHUNK = 32768


@dataclass
class CommandResult:
    success: bool
    exit_code: Optional[int] = None
    output: str = ""
    error: Optional[str] = None
    timed_out: bool = False


class HostResolver:
    """Caches host -> address lookups for DNS_CACHE_TTL seconds."""

    def __init__(self, cache: Optional[TTLRegistry] = None,
                 lookup: Callable[..., list] = socket.getaddrinfo):
        if cache is None:
            cache = TTLRegistry(default_ttl=DNS_CACHE_TTL, sweep_interval=60, name="dns-cache")
        self.cache = cache
        self._lookup = lookup

    def resolve(self, host: str, port: int) -> str:
        try:
            ipaddress.ip_address(host)
            return host
        except ValueError:
            pass

        cached = self.cache.get(host)
        if cached:
            return cached

        try:
            infos = self._lookup(host, port, 0, socket.SOCK_STREAM)
        except socket.gaierror as e:
            logger.warning("DNS lookup failed for %s: %s", host, e)
            return host

        address = infos[0][4][0]
        self.cache.set(host, address)
        return address


class RemoteShell:
    def __init__(self, resolver: Optional[HostResolver] = None,
                 client_factory: Callable[[], paramiko.SSHClient] = paramiko.SSHClient,
                 connect_timeout: float = SSH_CONNECT_TIMEOUT,
                 strict_host_keys: bool = SSH_STRICT_HOST_KEYS):
        self.resolver = resolver or HostResolver()
        self._client_factory = client_factory
        self.connect_timeout = connect_timeout
        self.strict_host_keys = strict_host_keys

    def _connect(self, client: paramiko.SSHClient, host: str, port: int, username: str, password: str) -> None:
        if self.strict_host_keys:
            client.load_system_host_keys()
            client.set_missing_host_key_policy(paramiko.RejectPolicy())
            address = host  # known_hosts entries are keyed by name
        else:
            client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
            address = self.resolver.resolve(host, port)

        client.connect(
            hostname=address,
            port=port,
            username=username,
            password=password,
            timeout=self.connect_timeout,
            banner_timeout=self.connect_timeout,
            auth_timeout=self.connect_timeout,
            look_for_keys=False,
            allow_agent=False,
        )

    def run(self, host: str, port: int, username: str, password: str,
            command: str, timeout: float) -> CommandResult:
        deadline = time.monotonic() + timeout
        client = self._client_factory()
        try:
            self._connect(client, host, port, username, password)
            channel = client.get_transport().open_session(timeout=self.connect_timeout)
            channel.exec_command(command)

            out, err = [], []
            while True:
                got = False
                if channel.recv_ready():
                    out.append(channel.recv(_CHUNK))
                    got = True
                if channel.recv_stderr_ready():
                    err.append(channel.recv_stderr(_CHUNK))
                    got = True
                if not got and channel.exit_status_ready():
                    break
                if time.monotonic() > deadline:
                    logger.warning("Remote command on %s timed out after %ss", host, timeout)
                    return CommandResult(
                        success=False,
                        output=b"".join(out).decode("utf-8", "replace").strip(),
                        error=f"Timed out after {timeout}s",
                        timed_out=True,
                    )
                if not got:
                    time.sleep(_POLL_SECONDS)

            code = channel.recv_exit_status()
            stdout = b"".join(out).decode("utf-8", "replace").strip()
            stderr = b"".join(err).decode("utf-8", "replace").strip()
            return CommandResult(
                success=code == 0,
                exit_code=code,
                output=stdout,
                error=stderr or (None if code == 0 else f"Exit status {code}"),
            )

        except (paramiko.SSHException, OSError) as e:
            logger.warning("SSH to %s:%s failed: %s", host, port, e)
            return CommandResult(success=False, error=str(e) or e.__class__.__name__)

        finally:
            client.close()
