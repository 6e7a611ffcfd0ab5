"""ICMP reachability probe built on the system ``ping`` binary."""

from __future__ import annotations

import ipaddress
import logging
import math
import subprocess
from typing import Sequence, Union

LOG = logging.getLogger(__name__)

Address = Union[str, ipaddress.IPv4Address, ipaddress.IPv6Address]

# Extra seconds granted to the ping process on top of its own reply timeout.
PROCESS_GRACE = 5.0


def _strip_prefix(address: Address) -> ipaddress.IPv4Address | ipaddress.IPv6Address:
    text = str(address)
    if "/" in text:
        return ipaddress.ip_interface(text).ip
    return ipaddress.ip_address(text)


class Prober:
    """Answer "is ``address`` reachable within ``timeout`` seconds?".

    A single echo request is the whole test. Host down, network unreachable,
    timeouts and a failing ``ping`` invocation all collapse to ``False``.
    """

    def __init__(self, ping_command: Sequence[str] = ("ping",)) -> None:
        self._ping = list(ping_command)

    def build_command(self, address: Address, timeout: float) -> list[str]:
        target = _strip_prefix(address)
        family = "-6" if target.version == 6 else "-4"
        wait = str(max(1, math.ceil(timeout)))
        return [*self._ping, family, "-n", "-q", "-c", "1", "-W", wait, str(target)]

    def reachable(self, address: Address, timeout: float) -> bool:
        try:
            cmd = self.build_command(address, timeout)
        except ValueError:
            LOG.warning("refusing to probe invalid address %r", address)
            return False

        LOG.debug("Executing: %s", " ".join(cmd))
        try:
            result = subprocess.run(
                cmd,
                check=False,
                text=True,
                capture_output=True,
                timeout=timeout + PROCESS_GRACE,
            )
        except subprocess.TimeoutExpired:
            LOG.warning("ping to %s did not exit in time, treating as down", cmd[-1])
            return False
        except OSError as exc:
            LOG.warning("could not run ping for %s: %s", cmd[-1], exc)
            return False

        if result.returncode == 0:
            LOG.debug("%s is reachable", cmd[-1])
            return True

        LOG.debug(
            "%s unreachable (rc=%s): %s",
            cmd[-1],
            result.returncode,
            (result.stderr or result.stdout).strip(),
        )
        return False
