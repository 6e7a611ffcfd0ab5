"""Delay policy between repair attempts."""

from __future__ import annotations


class Backoff:
    """Geometric backoff where 0 means "use the base poll frequency".

    ``escalate`` seeds the delay with the base frequency and doubles it on
    every further call, never exceeding the cap. ``hold`` pins the delay to
    the base frequency without growing it; it is used while the upstream
    IPv4 path is down, which nothing local can fix.
    """

    def __init__(self) -> None:
        self.seconds = 0.0

    def reset(self) -> None:
        self.seconds = 0.0

    def hold(self, base: float) -> None:
        self.seconds = float(base)

    def escalate(self, base: float, maximum: float) -> float:
        if self.seconds <= 0:
            self.seconds = float(base)
        else:
            self.seconds *= 2
        self.seconds = min(self.seconds, float(maximum))
        return self.seconds

    def delay(self, base: float) -> float:
        return self.seconds if self.seconds > 0 else float(base)
