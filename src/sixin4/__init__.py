"""Keep an IPv6-in-IPv4 (sit) tunnel alive.

The package is split along the decisions the reconciliation loop makes:

* :mod:`sixin4.probe` answers whether an address replies to ICMP echo;
* :mod:`sixin4.modules` loads the kernel modules the tunnel depends on;
* :mod:`sixin4.netstate` reads and mutates link, address and route state
  through rtnetlink;
* :mod:`sixin4.interface` converges that state onto the configuration;
* :mod:`sixin4.updater` tells the tunnel provider our current IPv4 address;
* :mod:`sixin4.reconciler` ties them together with backoff between attempts.

Everything outside the loop (configuration files, the command line, logging
sinks and pid files) lives in :mod:`sixin4_agent`.
"""

from .config import Credentials, ReconcilerSettings, TunnelConfig  # noqa: F401
from .reconciler import Outcome, Reconciler  # noqa: F401

__all__ = [
    "Credentials",
    "Outcome",
    "Reconciler",
    "ReconcilerSettings",
    "TunnelConfig",
]
