"""Configuration data structures for the tunnel reconciler.

These light-weight dataclasses describe the tunnel, the credentials used for
the provider's control plane and the timing knobs of the loop. They carry no
knowledge of where the values come from; the agent runtime builds them from a
YAML file and hands immutable snapshots to the reconciler.
"""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field
from typing import Sequence

from .exceptions import ConfigError

DEFAULT_UPDATE_URL = "https://ipv4.tunnelbroker.net/nic/update"
DEFAULT_KERNEL_MODULES = ("ipv6", "sit")

# IFNAMSIZ minus the trailing NUL
MAX_INTERFACE_NAME = 15


def parse_ipv4(value: str, field_name: str) -> ipaddress.IPv4Address:
    try:
        return ipaddress.IPv4Address(str(value).strip())
    except ValueError as exc:
        raise ConfigError(
            f"'{field_name}' is not a valid IPv4 address: {value!r}"
        ) from exc


def parse_ipv6_interface(value: str, field_name: str) -> ipaddress.IPv6Interface:
    """Parse ``address[/prefix]``; a bare address is taken as ``/128``."""

    try:
        return ipaddress.IPv6Interface(str(value).strip())
    except ValueError as exc:
        raise ConfigError(
            f"'{field_name}' is not a valid IPv6 address/prefix: {value!r}"
        ) from exc


@dataclass(frozen=True)
class Credentials:
    """Authentication material for the control-plane update endpoint.

    Attributes
    ----------
    username:
        Account identifier sent as the HTTP basic auth user.
    password:
        Account password or per-tunnel update key.
    tunnel_id:
        Provider tunnel identifier, passed as the ``hostname`` parameter.
    update_url:
        HTTPS endpoint that records the caller's IPv4 address.
    """

    username: str
    password: str = field(repr=False)
    tunnel_id: str
    update_url: str = DEFAULT_UPDATE_URL


@dataclass(frozen=True)
class TunnelConfig:
    """Desired state of the local end of the tunnel."""

    interface: str
    server_ipv4: ipaddress.IPv4Address
    client_ipv4: ipaddress.IPv4Address
    server_ipv6: ipaddress.IPv6Interface
    client_ipv6: ipaddress.IPv6Interface
    credentials: Credentials
    kernel_modules: Sequence[str] = DEFAULT_KERNEL_MODULES

    @classmethod
    def build(
        cls,
        *,
        interface: str,
        server_ipv4: str,
        client_ipv4: str,
        server_ipv6: str,
        client_ipv6: str,
        credentials: Credentials,
        kernel_modules: Sequence[str] = DEFAULT_KERNEL_MODULES,
    ) -> "TunnelConfig":
        """Create a validated config from plain string values."""

        config = cls(
            interface=str(interface),
            server_ipv4=parse_ipv4(server_ipv4, "server_ipv4"),
            client_ipv4=parse_ipv4(client_ipv4, "client_ipv4"),
            server_ipv6=parse_ipv6_interface(server_ipv6, "server_ipv6"),
            client_ipv6=parse_ipv6_interface(client_ipv6, "client_ipv6"),
            credentials=credentials,
            kernel_modules=tuple(dict.fromkeys(str(m) for m in kernel_modules)),
        )
        config.validate()
        return config

    def validate(self) -> None:
        if not self.interface:
            raise ConfigError("tunnel interface name must not be empty")
        if len(self.interface) > MAX_INTERFACE_NAME:
            raise ConfigError(
                f"tunnel interface name '{self.interface}' exceeds "
                f"{MAX_INTERFACE_NAME} characters"
            )
        if "/" in self.interface or any(ch.isspace() for ch in self.interface):
            raise ConfigError(f"invalid tunnel interface name '{self.interface}'")
        if not self.credentials.tunnel_id:
            raise ConfigError("credentials are missing the tunnel id")

    @property
    def server_ipv6_address(self) -> ipaddress.IPv6Address:
        """Address portion of ``server_ipv6``; this is what gets pinged."""

        return self.server_ipv6.ip


@dataclass(frozen=True)
class ReconcilerSettings:
    """Timing knobs and run mode for the reconciliation loop."""

    frequency: float = 60.0
    max_latency: float = 3.0
    max_backoff: float = 3600.0
    daemon: bool = False
    update_timeout: float = 30.0

    def validate(self) -> None:
        if self.frequency <= 0:
            raise ConfigError("frequency must be a positive number of seconds")
        if self.max_latency <= 0:
            raise ConfigError("max_latency must be a positive number of seconds")
        if self.max_backoff < self.frequency:
            raise ConfigError("max_backoff must not be smaller than frequency")
        if self.update_timeout <= 0:
            raise ConfigError("update_timeout must be a positive number of seconds")
