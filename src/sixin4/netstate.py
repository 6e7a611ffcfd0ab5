"""Structured access to the host's tunnel, address and route state.

The reconciler never parses command output. It asks a :class:`NetworkState`
for an :class:`InterfaceObservation` snapshot and calls its mutators. The
production implementation talks rtnetlink through ``pyroute2``; tests plug in
an in-memory fake.
"""

from __future__ import annotations

import ipaddress
import logging
import socket
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional, Sequence, Tuple

from pyroute2 import IPRoute, NetlinkError

from .exceptions import NetworkStateError

LOG = logging.getLogger(__name__)

IFF_UP = 0x1
RT_SCOPE_UNIVERSE = 0
RT_TABLE_MAIN = 254
TUNNEL_KIND = "sit"
TUNNEL_TTL = 255
DEFAULT_ROUTE = "::/0"


@dataclass(frozen=True)
class InterfaceObservation:
    """Read-only snapshot of one tunnel interface and the IPv6 default route.

    Attributes
    ----------
    exists:
        Whether a link with the configured name is present.
    remote, local:
        Outer IPv4 endpoints of the tunnel, ``None`` when unset or unknown.
    ttl:
        Hop limit of the encapsulating IPv4 header, ``None`` when unknown.
        0 means the kernel inherits it from the inner packet.
    is_up:
        Administrative state (``IFF_UP``), not carrier.
    global_addresses:
        Global-scope IPv6 addresses assigned to the link.
    default_route_interfaces:
        Egress interface names of every IPv6 default route in the main table.
    """

    exists: bool
    remote: Optional[ipaddress.IPv4Address] = None
    local: Optional[ipaddress.IPv4Address] = None
    ttl: Optional[int] = None
    is_up: bool = False
    global_addresses: Tuple[ipaddress.IPv6Interface, ...] = ()
    default_route_interfaces: Tuple[str, ...] = ()

    @classmethod
    def absent(
        cls, default_route_interfaces: Sequence[str] = ()
    ) -> "InterfaceObservation":
        return cls(
            exists=False, default_route_interfaces=tuple(default_route_interfaces)
        )


class NetworkState(ABC):
    """Capabilities the interface reconciler needs from the host."""

    @abstractmethod
    def observe(self, interface: str) -> InterfaceObservation:
        """Return a fresh snapshot for ``interface``."""

    @abstractmethod
    def create_tunnel(
        self,
        interface: str,
        remote: ipaddress.IPv4Address,
        local: ipaddress.IPv4Address,
        ttl: int = TUNNEL_TTL,
    ) -> None:
        """Create a sit (IPv6-in-IPv4) link."""

    @abstractmethod
    def change_tunnel(
        self,
        interface: str,
        remote: ipaddress.IPv4Address,
        local: ipaddress.IPv4Address,
        ttl: int = TUNNEL_TTL,
    ) -> None:
        """Update the endpoints and ttl of an existing link in place."""

    @abstractmethod
    def set_up(self, interface: str) -> None:
        """Set the administrative state of ``interface`` to up."""

    @abstractmethod
    def flush_global_addresses(self, interface: str) -> None:
        """Remove every global-scope IPv6 address from ``interface``."""

    @abstractmethod
    def add_address(self, interface: str, address: ipaddress.IPv6Interface) -> None:
        """Assign ``address`` to ``interface``."""

    @abstractmethod
    def flush_default_routes(self) -> None:
        """Delete every IPv6 default route from the main table."""

    @abstractmethod
    def add_default_route(self, interface: str) -> None:
        """Install an IPv6 default route out of ``interface``."""


def _ipv4_or_none(value) -> Optional[ipaddress.IPv4Address]:
    if not value:
        return None
    addr = ipaddress.IPv4Address(value)
    if addr.is_unspecified:
        return None
    return addr


class NetlinkNetworkState(NetworkState):
    """:class:`NetworkState` backed by ``pyroute2.IPRoute``.

    Every call opens a short-lived netlink socket; nothing is cached between
    calls so observations always reflect the kernel's current view.
    """

    def __init__(self, iproute_factory: Callable[[], IPRoute] = IPRoute) -> None:
        self._iproute = iproute_factory

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def observe(self, interface: str) -> InterfaceObservation:
        try:
            with self._iproute() as ipr:
                defaults = self._default_route_interfaces(ipr)
                index = self._lookup(ipr, interface)
                if index is None:
                    return InterfaceObservation.absent(defaults)

                link = ipr.get_links(index)[0]
                remote, local, ttl = self._tunnel_endpoints(link)
                return InterfaceObservation(
                    exists=True,
                    remote=remote,
                    local=local,
                    ttl=ttl,
                    is_up=bool(link["flags"] & IFF_UP),
                    global_addresses=self._global_addresses(ipr, index),
                    default_route_interfaces=defaults,
                )
        except (NetlinkError, OSError, ValueError) as exc:
            raise NetworkStateError(f"failed to observe {interface}: {exc}") from exc

    @staticmethod
    def _lookup(ipr: IPRoute, interface: str) -> Optional[int]:
        links = ipr.link_lookup(ifname=interface)
        return links[0] if links else None

    def _index(self, ipr: IPRoute, interface: str) -> int:
        index = self._lookup(ipr, interface)
        if index is None:
            raise NetworkStateError(f"interface {interface} does not exist")
        return index

    @staticmethod
    def _tunnel_endpoints(link):
        """Return ``(remote, local, ttl)`` from a link's sit attributes."""
        linkinfo = link.get_attr("IFLA_LINKINFO")
        if not linkinfo:
            return None, None, None
        kind = linkinfo.get_attr("IFLA_INFO_KIND")
        if kind != TUNNEL_KIND:
            LOG.warning("interface %s is of kind %r, expected %r",
                        link.get_attr("IFLA_IFNAME"), kind, TUNNEL_KIND)
        data = linkinfo.get_attr("IFLA_INFO_DATA")
        if not data:
            return None, None, None
        return (
            _ipv4_or_none(data.get_attr("IFLA_SIT_REMOTE")),
            _ipv4_or_none(data.get_attr("IFLA_SIT_LOCAL")),
            data.get_attr("IFLA_SIT_TTL"),
        )

    @staticmethod
    def _global_addresses(
        ipr: IPRoute, index: int
    ) -> Tuple[ipaddress.IPv6Interface, ...]:
        addresses = []
        for msg in ipr.get_addr(family=socket.AF_INET6, index=index):
            if msg["scope"] != RT_SCOPE_UNIVERSE:
                continue
            address = msg.get_attr("IFA_ADDRESS")
            if address:
                addresses.append(
                    ipaddress.IPv6Interface(f"{address}/{msg['prefixlen']}")
                )
        return tuple(addresses)

    @staticmethod
    def _default_routes(ipr: IPRoute):
        return [
            route
            for route in ipr.get_routes(family=socket.AF_INET6, table=RT_TABLE_MAIN)
            if route["dst_len"] == 0
        ]

    def _default_route_interfaces(self, ipr: IPRoute) -> Tuple[str, ...]:
        names = []
        for route in self._default_routes(ipr):
            oif = route.get_attr("RTA_OIF")
            if oif is None:
                names.append("")
                continue
            links = ipr.get_links(oif)
            names.append(links[0].get_attr("IFLA_IFNAME") if links else "")
        return tuple(names)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def _mutate(self, description: str, action: Callable[[IPRoute], None]) -> None:
        LOG.debug("netlink: %s", description)
        try:
            with self._iproute() as ipr:
                action(ipr)
        except (NetlinkError, OSError) as exc:
            raise NetworkStateError(f"{description} failed: {exc}") from exc

    def create_tunnel(self, interface, remote, local, ttl=TUNNEL_TTL):
        self._mutate(
            f"create {TUNNEL_KIND} {interface} remote {remote} local {local} ttl {ttl}",
            lambda ipr: ipr.link(
                "add",
                ifname=interface,
                kind=TUNNEL_KIND,
                sit_remote=str(remote),
                sit_local=str(local),
                sit_ttl=ttl,
            ),
        )

    def change_tunnel(self, interface, remote, local, ttl=TUNNEL_TTL):
        # changelink resets an omitted ttl to the kernel default
        def _change(ipr: IPRoute) -> None:
            ipr.link(
                "set",
                index=self._index(ipr, interface),
                kind=TUNNEL_KIND,
                sit_remote=str(remote),
                sit_local=str(local),
                sit_ttl=ttl,
            )

        self._mutate(
            f"change {interface} remote {remote} local {local} ttl {ttl}", _change
        )

    def set_up(self, interface):
        self._mutate(
            f"set {interface} up",
            lambda ipr: ipr.link("set", index=self._index(ipr, interface), state="up"),
        )

    def flush_global_addresses(self, interface):
        def _flush(ipr: IPRoute) -> None:
            index = self._index(ipr, interface)
            for address in self._global_addresses(ipr, index):
                ipr.addr(
                    "del",
                    index=index,
                    address=str(address.ip),
                    prefixlen=address.network.prefixlen,
                )

        self._mutate(f"flush global addresses on {interface}", _flush)

    def add_address(self, interface, address):
        self._mutate(
            f"add {address} to {interface}",
            lambda ipr: ipr.addr(
                "add",
                index=self._index(ipr, interface),
                address=str(address.ip),
                prefixlen=address.network.prefixlen,
            ),
        )

    def flush_default_routes(self):
        def _flush(ipr: IPRoute) -> None:
            for route in self._default_routes(ipr):
                kwargs = {
                    "family": socket.AF_INET6,
                    "dst": DEFAULT_ROUTE,
                    "table": RT_TABLE_MAIN,
                }
                for attr, key in (
                    ("RTA_OIF", "oif"),
                    ("RTA_GATEWAY", "gateway"),
                    ("RTA_PRIORITY", "priority"),
                ):
                    value = route.get_attr(attr)
                    if value is not None:
                        kwargs[key] = value
                ipr.route("del", **kwargs)

        self._mutate("flush IPv6 default routes", _flush)

    def add_default_route(self, interface):
        self._mutate(
            f"add IPv6 default route dev {interface}",
            lambda ipr: ipr.route(
                "add",
                family=socket.AF_INET6,
                dst=DEFAULT_ROUTE,
                table=RT_TABLE_MAIN,
                oif=self._index(ipr, interface),
            ),
        )
