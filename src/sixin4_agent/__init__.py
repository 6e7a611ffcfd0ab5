"""sixin4 agent runtime helpers."""

from .config import AgentConfig, FileConfigProvider, load_config  # noqa: F401

__all__ = [
    "AgentConfig",
    "FileConfigProvider",
    "load_config",
]
