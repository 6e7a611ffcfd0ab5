import ipaddress

from sixin4.interface import InterfaceReconciler

from fakes import FakeLink, FakeNetworkState, build_config


def test_creates_missing_interface_in_order():
    config = build_config()
    network = FakeNetworkState()
    network.default_routes = ["eth0"]

    report = InterfaceReconciler(network).reconcile(config)

    assert report.ok
    assert network.mutations == [
        (
            "create_tunnel",
            "he-ipv6",
            ipaddress.IPv4Address("203.0.113.1"),
            ipaddress.IPv4Address("198.51.100.2"),
            255,
        ),
        ("set_up", "he-ipv6"),
        ("add_address", "he-ipv6", ipaddress.IPv6Interface("2001:db8::2/64")),
        ("flush_default_routes",),
        ("add_default_route", "he-ipv6"),
    ]
    link = network.links["he-ipv6"]
    assert link.up
    assert link.addresses == [ipaddress.IPv6Interface("2001:db8::2/64")]
    assert network.default_routes == ["he-ipv6"]


def test_matching_interface_needs_no_mutation():
    config = build_config()
    network = FakeNetworkState.matching(config)

    report = InterfaceReconciler(network).reconcile(config)

    assert network.mutations == []
    assert not report.changed
    # every step re-reads the live state
    assert [c[0] for c in network.calls] == ["observe"] * 4


def test_second_run_is_idempotent():
    config = build_config()
    network = FakeNetworkState()
    reconciler = InterfaceReconciler(network)

    reconciler.reconcile(config)
    network.calls.clear()
    reconciler.reconcile(config)

    assert network.mutations == []


def test_changed_endpoints_are_updated_in_place():
    config = build_config()
    network = FakeNetworkState.matching(config)
    network.links["he-ipv6"].local = ipaddress.IPv4Address("192.0.2.50")

    InterfaceReconciler(network).reconcile(config)

    assert network.mutations == [
        (
            "change_tunnel",
            "he-ipv6",
            ipaddress.IPv4Address("203.0.113.1"),
            ipaddress.IPv4Address("198.51.100.2"),
            255,
        )
    ]


def test_drifted_ttl_is_reset_to_255():
    config = build_config()
    network = FakeNetworkState.matching(config)
    network.links["he-ipv6"].ttl = 64

    report = InterfaceReconciler(network).reconcile(config)

    assert report.applied == ["change_tunnel"]
    assert network.mutations[0][-1] == 255
    assert network.links["he-ipv6"].ttl == 255


def test_down_interface_is_brought_up():
    config = build_config()
    network = FakeNetworkState.matching(config)
    network.links["he-ipv6"].up = False

    InterfaceReconciler(network).reconcile(config)

    assert network.mutations == [("set_up", "he-ipv6")]


def test_stale_addresses_are_flushed_before_assigning():
    config = build_config()
    network = FakeNetworkState.matching(config)
    network.links["he-ipv6"].addresses = [
        ipaddress.IPv6Interface("2001:db8:ffff::2/64"),
        ipaddress.IPv6Interface("2001:db8::2/64"),
    ]

    InterfaceReconciler(network).reconcile(config)

    assert network.mutations == [
        ("flush_global_addresses", "he-ipv6"),
        ("add_address", "he-ipv6", ipaddress.IPv6Interface("2001:db8::2/64")),
    ]
    assert network.links["he-ipv6"].addresses == [
        ipaddress.IPv6Interface("2001:db8::2/64")
    ]


def test_missing_default_route_is_added_without_flush():
    config = build_config()
    network = FakeNetworkState.matching(config)
    network.default_routes = []

    InterfaceReconciler(network).reconcile(config)

    assert network.mutations == [("add_default_route", "he-ipv6")]


def test_addressing_skipped_when_interface_cannot_be_created():
    config = build_config()
    network = FakeNetworkState()
    network.fail.add("create_tunnel")

    report = InterfaceReconciler(network).reconcile(config)

    assert report.failed == ["create_tunnel"]
    assert report.skipped == ["set_up", "address", "default_route"]
    assert network.mutations == [
        (
            "create_tunnel",
            "he-ipv6",
            ipaddress.IPv4Address("203.0.113.1"),
            ipaddress.IPv4Address("198.51.100.2"),
            255,
        )
    ]


def test_addressing_and_routing_wait_for_link_up():
    config = build_config()
    network = FakeNetworkState()
    network.links["he-ipv6"] = FakeLink(
        remote=config.server_ipv4, local=config.client_ipv4
    )
    network.fail.add("set_up")

    report = InterfaceReconciler(network).reconcile(config)

    assert report.failed == ["set_up"]
    assert report.skipped == ["address", "default_route"]
    assert [m[0] for m in network.mutations] == ["set_up"]


def test_failed_step_does_not_abort_later_steps():
    config = build_config()
    network = FakeNetworkState.matching(config)
    network.links["he-ipv6"].addresses = []
    network.default_routes = ["eth0"]
    network.fail.add("add_address")

    report = InterfaceReconciler(network).reconcile(config)

    assert report.failed == ["add_address"]
    assert report.applied == ["flush_default_routes", "add_default_route"]
    assert network.default_routes == ["he-ipv6"]
