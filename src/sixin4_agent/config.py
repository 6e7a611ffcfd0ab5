"""YAML configuration loader for the tunnel agent."""

from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path
from typing import Iterable, List, Optional

import yaml

from sixin4.config import (
    DEFAULT_KERNEL_MODULES,
    DEFAULT_UPDATE_URL,
    Credentials,
    ReconcilerSettings,
    TunnelConfig,
)
from sixin4.exceptions import ConfigError


@dataclass
class AgentConfig:
    tunnel: TunnelConfig
    settings: ReconcilerSettings


def _require(section: dict, key: str, name: str):
    value = section.get(key)
    if value is None or value == "":
        raise ConfigError(f"'{name}' section missing '{key}'")
    return value


def _parse_modules(entries: Optional[Iterable[str]]) -> List[str]:
    if entries is None:
        return list(DEFAULT_KERNEL_MODULES)
    if isinstance(entries, str) or not isinstance(entries, list):
        raise ConfigError("'kernel_modules' must be a list of module names")
    return [str(entry) for entry in entries]


def _parse_credentials(section: dict) -> Credentials:
    return Credentials(
        username=str(_require(section, "username", "credentials")),
        password=str(_require(section, "password", "credentials")),
        tunnel_id=str(_require(section, "tunnel_id", "credentials")),
        update_url=str(section.get("update_url") or DEFAULT_UPDATE_URL),
    )


def _parse_tunnel(section: dict, credentials: Credentials) -> TunnelConfig:
    return TunnelConfig.build(
        interface=str(section.get("interface") or "he-ipv6"),
        server_ipv4=_require(section, "server_ipv4", "tunnel"),
        client_ipv4=_require(section, "client_ipv4", "tunnel"),
        server_ipv6=_require(section, "server_ipv6", "tunnel"),
        client_ipv6=_require(section, "client_ipv6", "tunnel"),
        credentials=credentials,
        kernel_modules=_parse_modules(section.get("kernel_modules")),
    )


def _parse_settings(section: dict) -> ReconcilerSettings:
    defaults = ReconcilerSettings()
    try:
        settings = ReconcilerSettings(
            frequency=float(section.get("frequency", defaults.frequency)),
            max_latency=float(section.get("max_latency", defaults.max_latency)),
            max_backoff=float(section.get("max_backoff", defaults.max_backoff)),
            update_timeout=float(
                section.get("update_timeout", defaults.update_timeout)
            ),
        )
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"invalid 'timing' value: {exc}") from exc
    settings.validate()
    return settings


def _section(data: dict, name: str, required: bool = True) -> dict:
    section = data.get(name)
    if section is None:
        if required:
            raise ConfigError(f"Configuration missing '{name}' section")
        return {}
    if not isinstance(section, dict):
        raise ConfigError(f"'{name}' section must be a mapping")
    return section


def _read(path: Path) -> dict:
    try:
        data = yaml.safe_load(Path(path).read_text())
    except OSError as exc:
        raise ConfigError(f"cannot read configuration {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"cannot parse configuration {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError("Agent configuration must be a mapping")
    return data


def load_tunnel_config(path: Path) -> TunnelConfig:
    data = _read(path)
    credentials = _parse_credentials(_section(data, "credentials"))
    return _parse_tunnel(_section(data, "tunnel"), credentials)


def load_config(path: Path) -> AgentConfig:
    data = _read(path)
    credentials = _parse_credentials(_section(data, "credentials"))
    tunnel = _parse_tunnel(_section(data, "tunnel"), credentials)
    settings = _parse_settings(_section(data, "timing", required=False))
    return AgentConfig(tunnel=tunnel, settings=settings)


def apply_overrides(
    settings: ReconcilerSettings,
    *,
    daemon: bool = False,
    frequency: Optional[float] = None,
    max_latency: Optional[float] = None,
    max_backoff: Optional[float] = None,
) -> ReconcilerSettings:
    """Layer command-line values over the ``timing`` section."""

    changes = {"daemon": daemon}
    if frequency is not None:
        changes["frequency"] = frequency
    if max_latency is not None:
        changes["max_latency"] = max_latency
    if max_backoff is not None:
        changes["max_backoff"] = max_backoff
    updated = replace(settings, **changes)
    updated.validate()
    return updated


class FileConfigProvider:
    """Re-read the tunnel section of a YAML file on every ``load``."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> TunnelConfig:
        return load_tunnel_config(self._path)
