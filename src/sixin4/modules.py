"""Make sure the kernel modules the tunnel needs are loaded."""

from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path
from typing import Iterable, Optional, Sequence, Set

from .exceptions import ModuleLoadError

LOG = logging.getLogger(__name__)

PROC_MODULES = Path("/proc/modules")


def _canonical(name: str) -> str:
    # the kernel reports dashes in module names as underscores
    return name.strip().replace("-", "_")


def _default_builtin_path() -> Path:
    return Path("/lib/modules") / os.uname().release / "modules.builtin"


class KernelModules:
    """Check the loaded-module registry and ``modprobe`` what is missing.

    Parameters
    ----------
    proc_modules:
        Path of the loaded-module list, ``/proc/modules`` by default.
    builtin_path:
        Path of ``modules.builtin`` for the running kernel. Modules compiled
        into the kernel never show up in ``/proc/modules`` but are always
        available.
    modprobe:
        Command prefix used to load a module.
    """

    def __init__(
        self,
        proc_modules: Path = PROC_MODULES,
        builtin_path: Optional[Path] = None,
        modprobe: Sequence[str] = ("modprobe",),
    ) -> None:
        self._proc_modules = Path(proc_modules)
        self._builtin_path = builtin_path
        self._modprobe = list(modprobe)

    def loaded(self) -> Set[str]:
        try:
            lines = self._proc_modules.read_text().splitlines()
        except OSError as exc:
            LOG.warning("cannot read %s: %s", self._proc_modules, exc)
            return set()
        return {_canonical(line.split()[0]) for line in lines if line.strip()}

    def builtin(self) -> Set[str]:
        path = self._builtin_path or _default_builtin_path()
        try:
            lines = path.read_text().splitlines()
        except OSError:
            LOG.debug("no builtin module list at %s", path)
            return set()
        # entries look like "kernel/net/ipv6/sit.ko"
        return {
            _canonical(Path(line.strip()).name.split(".ko")[0])
            for line in lines
            if line.strip()
        }

    def load(self, module: str) -> None:
        cmd = [*self._modprobe, module]
        LOG.debug("Executing: %s", " ".join(cmd))
        try:
            result = subprocess.run(cmd, check=False, text=True, capture_output=True)
        except OSError as exc:
            raise ModuleLoadError(module, str(exc)) from exc
        if result.returncode != 0:
            raise ModuleLoadError(module, result.stderr.strip())
        LOG.info("loaded kernel module %s", module)

    def ensure(self, modules: Iterable[str]) -> None:
        """Load every module in ``modules`` that is not already present.

        Raises :class:`ModuleLoadError` on the first module that fails.
        """

        present = self.loaded() | self.builtin()
        for module in modules:
            if _canonical(module) in present:
                LOG.debug("kernel module %s already loaded", module)
                continue
            LOG.info("kernel module %s missing, loading it", module)
            self.load(module)
            present.add(_canonical(module))
