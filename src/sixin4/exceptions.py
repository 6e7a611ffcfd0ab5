"""Exception hierarchy shared by the tunnel keepalive modules."""

from __future__ import annotations


class TunnelError(Exception):
    """Base class for all errors raised by :mod:`sixin4`."""


class ConfigError(TunnelError, ValueError):
    """Raised when a tunnel configuration is missing or malformed."""


class NetworkStateError(TunnelError):
    """A query or mutation of the local network state failed."""


class ModuleLoadError(TunnelError):
    """A required kernel module could not be loaded.

    This is the only error the reconciler never absorbs: without the module
    the tunnel cannot work and retrying will not change that.
    """

    def __init__(self, module: str, detail: str = "") -> None:
        message = f"failed to load kernel module '{module}'"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.module = module
