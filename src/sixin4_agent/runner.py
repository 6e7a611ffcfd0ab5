"""Background thread hosting the reconciliation loop."""

from __future__ import annotations

import logging
from threading import Thread
from typing import Optional

from sixin4.reconciler import Reconciler

LOG = logging.getLogger(__name__)


class ReconcilerThread(Thread):
    """Run :meth:`Reconciler.run` off the main thread.

    A fatal error ends the loop; it is stored in :attr:`error` and the shared
    stop event is set so the supervising thread wakes up.
    """

    def __init__(self, reconciler: Reconciler) -> None:
        super().__init__(daemon=True, name="sixin4-reconciler")
        self._reconciler = reconciler
        self.error: Optional[BaseException] = None

    @property
    def reconciler(self) -> Reconciler:
        return self._reconciler

    def run(self) -> None:
        try:
            self._reconciler.run()
        except Exception as exc:
            LOG.critical("reconciler terminated: %s", exc)
            self.error = exc
        finally:
            self._reconciler.stop()
