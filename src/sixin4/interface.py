"""Bring the local tunnel interface in line with the desired configuration."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from .config import TunnelConfig
from .exceptions import NetworkStateError
from .netstate import TUNNEL_TTL, InterfaceObservation, NetworkState

LOG = logging.getLogger(__name__)


@dataclass
class ReconcileReport:
    """What a single :meth:`InterfaceReconciler.reconcile` call did."""

    applied: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.applied)

    @property
    def ok(self) -> bool:
        return not self.failed


class InterfaceReconciler:
    """Idempotently converge tunnel, link state, address and default route.

    The four steps run strictly in order and each one re-reads the live state
    before deciding whether to touch anything. When the state already matches
    the configuration a step makes no mutating call at all. A failed mutation
    is logged and recorded; the remaining steps still run as long as their
    preconditions hold, and the next probe decides whether it was enough.
    """

    def __init__(self, network: NetworkState) -> None:
        self._network = network

    def reconcile(self, config: TunnelConfig) -> ReconcileReport:
        report = ReconcileReport()
        self._ensure_tunnel(config, report)
        self._ensure_up(config, report)
        self._ensure_address(config, report)
        self._ensure_default_route(config, report)

        if report.changed:
            LOG.info(
                "interface %s reconciled: %s",
                config.interface,
                ", ".join(report.applied),
            )
        else:
            LOG.debug("interface %s already matches configuration", config.interface)
        return report

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _observe(
        self, config: TunnelConfig, report: ReconcileReport
    ) -> Optional[InterfaceObservation]:
        try:
            return self._network.observe(config.interface)
        except NetworkStateError as exc:
            LOG.error("cannot query %s: %s", config.interface, exc)
            report.failed.append("observe")
            return None

    @staticmethod
    def _apply(report: ReconcileReport, name: str, action: Callable[[], None]) -> bool:
        try:
            action()
        except NetworkStateError as exc:
            LOG.error("%s failed: %s", name, exc)
            report.failed.append(name)
            return False
        report.applied.append(name)
        return True

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------
    def _ensure_tunnel(self, config: TunnelConfig, report: ReconcileReport) -> None:
        obs = self._observe(config, report)
        if obs is None:
            return

        if not obs.exists:
            LOG.info(
                "creating tunnel %s remote %s local %s",
                config.interface,
                config.server_ipv4,
                config.client_ipv4,
            )
            self._apply(
                report,
                "create_tunnel",
                lambda: self._network.create_tunnel(
                    config.interface, config.server_ipv4, config.client_ipv4, TUNNEL_TTL
                ),
            )
            return

        if (
            obs.remote != config.server_ipv4
            or obs.local != config.client_ipv4
            or obs.ttl != TUNNEL_TTL
        ):
            LOG.info(
                "tunnel %s remote %s local %s ttl %s differs from %s/%s/%s, updating",
                config.interface,
                obs.remote,
                obs.local,
                obs.ttl,
                config.server_ipv4,
                config.client_ipv4,
                TUNNEL_TTL,
            )
            self._apply(
                report,
                "change_tunnel",
                lambda: self._network.change_tunnel(
                    config.interface, config.server_ipv4, config.client_ipv4, TUNNEL_TTL
                ),
            )

    def _ensure_up(self, config: TunnelConfig, report: ReconcileReport) -> None:
        obs = self._observe(config, report)
        if obs is None:
            return
        if not obs.exists:
            LOG.warning("interface %s missing, cannot bring it up", config.interface)
            report.skipped.append("set_up")
            return
        if not obs.is_up:
            LOG.info("bringing %s up", config.interface)
            self._apply(
                report, "set_up", lambda: self._network.set_up(config.interface)
            )

    def _ready(self, obs: InterfaceObservation, config: TunnelConfig) -> bool:
        if not obs.exists:
            LOG.warning("interface %s missing", config.interface)
            return False
        if not obs.is_up:
            LOG.warning("interface %s is not up", config.interface)
            return False
        return True

    def _ensure_address(self, config: TunnelConfig, report: ReconcileReport) -> None:
        obs = self._observe(config, report)
        if obs is None:
            return
        if not self._ready(obs, config):
            report.skipped.append("address")
            return
        if obs.global_addresses == (config.client_ipv6,):
            return

        LOG.info(
            "addresses on %s are %s, want %s",
            config.interface,
            [str(a) for a in obs.global_addresses] or "none",
            config.client_ipv6,
        )
        if obs.global_addresses:
            self._apply(
                report,
                "flush_global_addresses",
                lambda: self._network.flush_global_addresses(config.interface),
            )
        self._apply(
            report,
            "add_address",
            lambda: self._network.add_address(config.interface, config.client_ipv6),
        )

    def _ensure_default_route(
        self, config: TunnelConfig, report: ReconcileReport
    ) -> None:
        obs = self._observe(config, report)
        if obs is None:
            return
        if not self._ready(obs, config):
            report.skipped.append("default_route")
            return
        if obs.default_route_interfaces == (config.interface,):
            return

        LOG.info(
            "IPv6 default route goes via %s, moving it to %s",
            list(obs.default_route_interfaces) or "nothing",
            config.interface,
        )
        if obs.default_route_interfaces:
            self._apply(
                report, "flush_default_routes", self._network.flush_default_routes
            )
        self._apply(
            report,
            "add_default_route",
            lambda: self._network.add_default_route(config.interface),
        )
