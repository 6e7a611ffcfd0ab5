"""Tunnel reconciliation loop.

Each cycle follows the same decision sequence:

* reload the configuration, keeping the previous snapshot if that fails;
  the snapshot stays fixed for the rest of the cycle;
* probe the tunnel server over IPv6; if it answers the tunnel is healthy;
* otherwise probe the server over IPv4; if that fails too there is nothing
  local to fix, so wait at the base frequency;
* otherwise make sure kernel modules are loaded, reconcile the interface,
  and probe IPv6 again;
* if IPv6 is still down, ask the provider to update our IPv4 endpoint and
  back off exponentially before the next attempt.

The loop is strictly sequential. Shutdown is only honoured between cycles, so
an interface repair is never left half applied.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from threading import Event
from typing import Optional, Protocol

from .backoff import Backoff
from .config import ReconcilerSettings, TunnelConfig
from .exceptions import ModuleLoadError, TunnelError
from .interface import InterfaceReconciler
from .modules import KernelModules
from .netstate import NetlinkNetworkState
from .probe import Prober
from .updater import EndpointUpdater

LOG = logging.getLogger(__name__)


class Outcome(Enum):
    """How a reconciliation cycle ended."""

    HEALTHY = "healthy"
    IPV4_DOWN = "ipv4-down"
    IPV6_DOWN_REPAIR_ATTEMPTED = "ipv6-down-repair-attempted"
    IPV6_DOWN_REPAIR_FAILED = "ipv6-down-repair-failed"


class ConfigProvider(Protocol):
    def load(self) -> TunnelConfig:
        ...


class StaticConfigProvider:
    """Provider that always returns the same snapshot."""

    def __init__(self, config: TunnelConfig) -> None:
        self._config = config

    def load(self) -> TunnelConfig:
        return self._config


@dataclass
class ReconcilerState:
    """Mutable loop state, lives as long as the process."""

    backoff: Backoff = field(default_factory=Backoff)
    last_outcome: Optional[Outcome] = None
    cycles: int = 0


class Reconciler:
    """Probe, repair and back off, one cycle at a time."""

    def __init__(
        self,
        provider: ConfigProvider,
        settings: ReconcilerSettings,
        *,
        prober: Optional[Prober] = None,
        modules: Optional[KernelModules] = None,
        interface: Optional[InterfaceReconciler] = None,
        updater: Optional[EndpointUpdater] = None,
        stop_event: Optional[Event] = None,
    ) -> None:
        self._provider = provider
        self._settings = settings
        self._prober = prober or Prober()
        self._modules = modules or KernelModules()
        self._interface = interface or InterfaceReconciler(NetlinkNetworkState())
        self._updater = updater or EndpointUpdater(timeout=settings.update_timeout)
        self._stop = stop_event or Event()
        self._state = ReconcilerState()
        self._config = provider.load()

    @property
    def config(self) -> TunnelConfig:
        return self._config

    @property
    def state(self) -> ReconcilerState:
        return self._state

    @property
    def stop_event(self) -> Event:
        return self._stop

    def stop(self) -> None:
        self._stop.set()

    def next_delay(self) -> float:
        return self._state.backoff.delay(self._settings.frequency)

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------
    def _ipv6_up(self, config: TunnelConfig) -> bool:
        return self._prober.reachable(
            config.server_ipv6_address, self._settings.max_latency
        )

    def _reload(self) -> TunnelConfig:
        try:
            config = self._provider.load()
        except TunnelError as exc:
            LOG.warning(
                "configuration reload failed, keeping previous settings: %s", exc
            )
            return self._config
        if config != self._config:
            LOG.info("configuration reloaded for tunnel %s", config.interface)
        self._config = config
        return config

    def _finish(self, outcome: Outcome) -> Outcome:
        self._state.last_outcome = outcome
        return outcome

    def run_cycle(self) -> Outcome:
        """Run one probe/repair cycle and return how it ended.

        :class:`ModuleLoadError` is the only exception that escapes.
        """

        self._state.cycles += 1
        config = self._reload()
        settings = self._settings

        if self._ipv6_up(config):
            LOG.debug("tunnel %s healthy", config.interface)
            self._state.backoff.reset()
            return self._finish(Outcome.HEALTHY)

        LOG.warning(
            "tunnel server %s unreachable over IPv6", config.server_ipv6_address
        )
        if not self._prober.reachable(config.server_ipv4, settings.max_latency):
            LOG.warning(
                "tunnel server %s unreachable over IPv4, waiting for upstream recovery",
                config.server_ipv4,
            )
            self._state.backoff.hold(settings.frequency)
            return self._finish(Outcome.IPV4_DOWN)

        self._modules.ensure(config.kernel_modules)
        report = self._interface.reconcile(config)
        if report.failed:
            LOG.warning(
                "local repair of %s incomplete: %s",
                config.interface,
                ", ".join(report.failed),
            )

        if self._ipv6_up(config):
            LOG.info("tunnel %s restored by local repair", config.interface)
            self._state.backoff.reset()
            return self._finish(Outcome.HEALTHY)

        LOG.warning(
            "tunnel %s still down after local repair, updating remote endpoint",
            config.interface,
        )
        updated = self._updater.update(config.credentials)
        delay = self._state.backoff.escalate(settings.frequency, settings.max_backoff)
        LOG.info("backing off for %.0f seconds", delay)
        if updated:
            return self._finish(Outcome.IPV6_DOWN_REPAIR_ATTEMPTED)
        return self._finish(Outcome.IPV6_DOWN_REPAIR_FAILED)

    def _guarded_cycle(self) -> Outcome:
        try:
            return self.run_cycle()
        except ModuleLoadError:
            raise
        except Exception:
            LOG.exception("reconciliation cycle failed")
            self._state.backoff.escalate(
                self._settings.frequency, self._settings.max_backoff
            )
            return self._finish(Outcome.IPV6_DOWN_REPAIR_FAILED)

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------
    def run(self) -> None:
        """Run one cycle in single-shot mode, or loop until stopped."""

        if not self._settings.daemon:
            outcome = self._guarded_cycle()
            LOG.info("single-shot run finished: %s", outcome.value)
            return

        LOG.info(
            "watching tunnel %s every %.0fs (max backoff %.0fs)",
            self._config.interface,
            self._settings.frequency,
            self._settings.max_backoff,
        )
        while not self._stop.is_set():
            self._guarded_cycle()
            delay = self.next_delay()
            LOG.debug("next check in %.0f seconds", delay)
            self._stop.wait(delay)
        LOG.info("reconciler for %s stopped", self._config.interface)
