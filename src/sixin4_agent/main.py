"""Entry point for the tunnel keepalive agent."""

from __future__ import annotations

import argparse
import logging
import logging.handlers
import signal
import sys
from pathlib import Path
from typing import Optional

from sixin4.exceptions import ModuleLoadError, TunnelError
from sixin4.reconciler import Reconciler
from sixin4.updater import EndpointUpdater

from .config import FileConfigProvider, apply_overrides, load_config
from .pidfile import AlreadyRunningError, PidFile
from .runner import ReconcilerThread

LOG = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_STARTUP = 2

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
SYSLOG_FORMAT = "sixin4-agent[%(process)d]: %(levelname)s %(name)s: %(message)s"


def _verbosity_level(verbose: int) -> int:
    if verbose >= 2:
        return logging.DEBUG
    if verbose == 1:
        return logging.INFO
    return logging.WARNING


def _setup_logging(
    verbose: int, log_file: Optional[Path] = None, syslog: bool = False
) -> None:
    handlers: list[logging.Handler] = []
    if log_file is not None:
        handlers.append(logging.FileHandler(log_file))
    if syslog:
        handler = logging.handlers.SysLogHandler(address="/dev/log")
        handler.setFormatter(logging.Formatter(SYSLOG_FORMAT))
        handlers.append(handler)
    if not handlers:
        handlers.append(logging.StreamHandler())

    for handler in handlers:
        if handler.formatter is None:
            handler.setFormatter(logging.Formatter(LOG_FORMAT))

    logging.basicConfig(level=_verbosity_level(verbose), handlers=handlers, force=True)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Keep an IPv6-in-IPv4 tunnel alive")
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("/etc/sixin4/tunnel.yaml"),
        help="Path to the agent configuration file",
    )
    parser.add_argument(
        "-d",
        "--daemon",
        action="store_true",
        help="Keep watching the tunnel instead of running a single repair cycle",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase logging verbosity (repeat for debug output)",
    )
    parser.add_argument("--log-file", type=Path, help="Write log records to this file")
    parser.add_argument(
        "--syslog", action="store_true", help="Send log records to syslog"
    )
    parser.add_argument(
        "--pid-file",
        type=Path,
        default=Path("/run/sixin4-agent.pid"),
        help="Pid file used to prevent concurrent instances",
    )
    parser.add_argument("--frequency", type=float, help="Seconds between health checks")
    parser.add_argument("--max-latency", type=float, help="Probe timeout in seconds")
    parser.add_argument(
        "--max-backoff", type=float, help="Upper bound for the retry delay"
    )
    return parser


def _supervise(reconciler: Reconciler) -> int:
    stop_event = reconciler.stop_event
    worker = ReconcilerThread(reconciler)

    def _shutdown(signum, frame):  # pragma: no cover - signal handler
        LOG.info("received signal %s, shutting down", signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    worker.start()
    try:
        while not stop_event.is_set():
            stop_event.wait(1.0)
    except KeyboardInterrupt:  # pragma: no cover - fallback if signal not set
        stop_event.set()
    worker.join()

    if worker.error is not None:
        return EXIT_FATAL
    LOG.info("tunnel agent stopped")
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    _setup_logging(args.verbose, args.log_file, args.syslog)

    try:
        config = load_config(args.config)
        settings = apply_overrides(
            config.settings,
            daemon=args.daemon,
            frequency=args.frequency,
            max_latency=args.max_latency,
            max_backoff=args.max_backoff,
        )
        reconciler = Reconciler(
            FileConfigProvider(args.config),
            settings,
            updater=EndpointUpdater(timeout=settings.update_timeout),
        )
    except TunnelError as exc:
        LOG.critical("invalid configuration: %s", exc)
        return EXIT_STARTUP

    try:
        with PidFile(args.pid_file):
            if settings.daemon:
                return _supervise(reconciler)
            try:
                reconciler.run()
            except ModuleLoadError as exc:
                LOG.critical("%s", exc)
                return EXIT_FATAL
            return EXIT_OK
    except AlreadyRunningError as exc:
        LOG.critical("%s", exc)
        return EXIT_STARTUP
    except TunnelError as exc:
        LOG.critical("start-up failed: %s", exc)
        return EXIT_STARTUP


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
