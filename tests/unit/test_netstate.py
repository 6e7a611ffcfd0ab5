import ipaddress
import socket

import pytest
from pyroute2 import NetlinkError
from pyroute2.netlink.rtnl.ifinfmsg import ifinfmsg

from sixin4.exceptions import NetworkStateError
from sixin4.netstate import NetlinkNetworkState

SERVER = ipaddress.IPv4Address("203.0.113.1")
CLIENT = ipaddress.IPv4Address("198.51.100.2")


class Msg(dict):
    def __init__(self, attrs=None, **fields):
        super().__init__(**fields)
        self.attrs = attrs or {}

    def get_attr(self, name):
        return self.attrs.get(name)


def sit_link(name, remote, local, flags=0x1, ttl=255):
    data = Msg(
        {"IFLA_SIT_REMOTE": remote, "IFLA_SIT_LOCAL": local, "IFLA_SIT_TTL": ttl}
    )
    linkinfo = Msg({"IFLA_INFO_KIND": "sit", "IFLA_INFO_DATA": data})
    return Msg({"IFLA_IFNAME": name, "IFLA_LINKINFO": linkinfo}, flags=flags)


class FakeIPRoute:
    def __init__(self):
        self.links = {
            1: Msg({"IFLA_IFNAME": "lo"}, flags=0x1),
            2: Msg({"IFLA_IFNAME": "eth0"}, flags=0x1),
        }
        self.addrs = {}
        self.routes = []
        self.requests = []
        self.error = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def link_lookup(self, ifname):
        return [
            idx
            for idx, link in self.links.items()
            if link.get_attr("IFLA_IFNAME") == ifname
        ]

    def get_links(self, index):
        return [self.links[index]] if index in self.links else []

    def get_addr(self, family, index):
        assert family == socket.AF_INET6
        return self.addrs.get(index, [])

    def get_routes(self, family, table):
        assert family == socket.AF_INET6
        return [r for r in self.routes if r["table"] == table]

    def _request(self, kind, command, kwargs):
        self.requests.append((kind, command, kwargs))
        if self.error is not None:
            raise self.error

    def link(self, command, **kwargs):
        self._request("link", command, kwargs)

    def addr(self, command, **kwargs):
        self._request("addr", command, kwargs)

    def route(self, command, **kwargs):
        self._request("route", command, kwargs)


@pytest.fixture
def ipr():
    return FakeIPRoute()


@pytest.fixture
def network(ipr):
    return NetlinkNetworkState(iproute_factory=lambda: ipr)


def add_tunnel(ipr, up=True):
    ipr.links[5] = sit_link(
        "he-ipv6", "203.0.113.1", "198.51.100.2", flags=0x1 if up else 0
    )
    ipr.addrs[5] = [
        Msg({"IFA_ADDRESS": "fe80::c633:6402"}, prefixlen=64, scope=253),
        Msg({"IFA_ADDRESS": "2001:db8::2"}, prefixlen=64, scope=0),
    ]


def test_observe_absent_interface_reports_default_routes(network, ipr):
    ipr.routes = [Msg({"RTA_OIF": 2, "RTA_GATEWAY": "fe80::1"}, dst_len=0, table=254)]

    obs = network.observe("he-ipv6")

    assert obs.exists is False
    assert obs.default_route_interfaces == ("eth0",)


def test_observe_existing_tunnel(network, ipr):
    add_tunnel(ipr)
    ipr.routes = [
        Msg({"RTA_OIF": 5}, dst_len=0, table=254),
        Msg({"RTA_OIF": 5, "RTA_DST": "2001:db8::"}, dst_len=64, table=254),
    ]

    obs = network.observe("he-ipv6")

    assert obs.exists
    assert obs.remote == ipaddress.IPv4Address("203.0.113.1")
    assert obs.local == ipaddress.IPv4Address("198.51.100.2")
    assert obs.ttl == 255
    assert obs.is_up
    assert obs.global_addresses == (ipaddress.IPv6Interface("2001:db8::2/64"),)
    assert obs.default_route_interfaces == ("he-ipv6",)


def test_observe_down_tunnel_with_any_local(network, ipr):
    ipr.links[5] = sit_link("he-ipv6", "203.0.113.1", "0.0.0.0", flags=0)

    obs = network.observe("he-ipv6")

    assert obs.is_up is False
    assert obs.local is None


def test_create_tunnel_request(network, ipr):
    network.create_tunnel("he-ipv6", SERVER, CLIENT)

    assert ipr.requests == [
        (
            "link",
            "add",
            {
                "ifname": "he-ipv6",
                "kind": "sit",
                "sit_remote": "203.0.113.1",
                "sit_local": "198.51.100.2",
                "sit_ttl": 255,
            },
        )
    ]


def test_set_up_and_address_use_interface_index(network, ipr):
    add_tunnel(ipr, up=False)

    network.set_up("he-ipv6")
    network.add_address("he-ipv6", ipaddress.IPv6Interface("2001:db8::2/64"))

    assert ipr.requests == [
        ("link", "set", {"index": 5, "state": "up"}),
        ("addr", "add", {"index": 5, "address": "2001:db8::2", "prefixlen": 64}),
    ]


def test_flush_global_addresses_keeps_link_local(network, ipr):
    add_tunnel(ipr)

    network.flush_global_addresses("he-ipv6")

    assert ipr.requests == [
        ("addr", "del", {"index": 5, "address": "2001:db8::2", "prefixlen": 64}),
    ]


def test_default_route_flush_and_install(network, ipr):
    add_tunnel(ipr)
    ipr.routes = [
        Msg(
            {"RTA_OIF": 2, "RTA_GATEWAY": "fe80::1", "RTA_PRIORITY": 1024},
            dst_len=0,
            table=254,
        )
    ]

    network.flush_default_routes()
    network.add_default_route("he-ipv6")

    assert ipr.requests == [
        (
            "route",
            "del",
            {
                "family": socket.AF_INET6,
                "dst": "::/0",
                "table": 254,
                "oif": 2,
                "gateway": "fe80::1",
                "priority": 1024,
            },
        ),
        (
            "route",
            "add",
            {"family": socket.AF_INET6, "dst": "::/0", "table": 254, "oif": 5},
        ),
    ]


def test_netlink_errors_become_network_state_errors(network, ipr):
    ipr.error = NetlinkError(17, "File exists")

    with pytest.raises(NetworkStateError):
        network.create_tunnel("he-ipv6", SERVER, CLIENT)


def test_mutating_missing_interface_fails(network):
    with pytest.raises(NetworkStateError):
        network.set_up("he-ipv6")


def kernel_sit_link(index, name, remote, local, ttl):
    """Encode a sit link the way the kernel sends it and decode it back."""
    msg = ifinfmsg()
    msg["index"] = index
    msg["flags"] = 0x1
    msg["attrs"] = [
        ("IFLA_IFNAME", name),
        (
            "IFLA_LINKINFO",
            {
                "attrs": [
                    ("IFLA_INFO_KIND", "sit"),
                    (
                        "IFLA_INFO_DATA",
                        {
                            "attrs": [
                                ("IFLA_SIT_REMOTE", remote),
                                ("IFLA_SIT_LOCAL", local),
                                ("IFLA_SIT_TTL", ttl),
                            ]
                        },
                    ),
                ]
            },
        ),
    ]
    msg.encode()
    decoded = ifinfmsg(msg.data)
    decoded.decode()
    return decoded


def test_observe_decodes_kernel_sit_attributes(network, ipr):
    ipr.links[5] = kernel_sit_link(5, "he-ipv6", "203.0.113.1", "198.51.100.2", 64)

    obs = network.observe("he-ipv6")

    assert obs.exists
    assert obs.remote == SERVER
    assert obs.local == CLIENT
    assert obs.ttl == 64
    assert obs.is_up


def test_change_tunnel_request_keeps_ttl(network, ipr):
    add_tunnel(ipr)

    network.change_tunnel("he-ipv6", SERVER, CLIENT)

    assert ipr.requests == [
        (
            "link",
            "set",
            {
                "index": 5,
                "kind": "sit",
                "sit_remote": "203.0.113.1",
                "sit_local": "198.51.100.2",
                "sit_ttl": 255,
            },
        )
    ]
