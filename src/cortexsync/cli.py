"""
Command-line interface for cortexsync.

Usage (examples):
  - One reconciliation pass over a set of manifests:
      cortexsync reconcile -f ./manifests/ --config ./cortexsync.yml

  - Keep reconciling every 30 seconds until interrupted:
      cortexsync reconcile -f ./manifests/ --watch --poll-interval 30

  - Remove the objects declared in a manifest from Cortex:
      cortexsync delete -f ./manifests/rules.yml
"""

from __future__ import annotations

import argparse
import json
import os
import signal
import sys
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from .core.config import AppConfig, load_config, resolve_connection
from .core.cortex_client import CortexClient
from .core.errors import ConfigError
from .core.logging_setup import build_logger
from .core.reconciler import ERROR, Reconciler
from .core.registry import default_registry
from .core.reporting import print_rows, summarize_counts
from .core.resources import ManagedResource, ManifestError, ResourceStatus, load_manifests

EXIT_OK = 0
EXIT_GENERIC_ERROR = 1
EXIT_CONFIG_ERROR = 2
EXIT_VALIDATION_ERROR = 3
EXIT_CYCLE_ERROR = 4


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="cortexsync", description="Reconcile Cortex rule groups and Alertmanager configs")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("-f", "--manifests", action="append", required=True,
                        help="Manifest file or directory (repeatable)")
    common.add_argument("--config", default=None, help="Config file (default: ./cortexsync.yml, ~/.config/..., /etc/...)")
    common.add_argument("--format", choices=["table", "json"], default="table", help="Output format")
    common.add_argument("--status-file", default=None, help="Write per-object status as JSON to this file")

    # HTTP
    common.add_argument("--no-verify", action="store_true", help="Disable TLS verification")
    common.add_argument("--timeout-sec", type=float, default=None, help="HTTP timeout seconds")
    common.add_argument("--retries", type=int, default=None, help="HTTP retries (5xx/network)")

    # Logging
    common.add_argument("--logs-dir", default=None, help="Logs base directory")
    common.add_argument("--console-level", default=None, help="Console log level (INFO..CRITICAL)")
    common.add_argument("--file-level", default=None, help="File log level (DEBUG..CRITICAL)")

    sub = p.add_subparsers(dest="cmd", required=True)

    r = sub.add_parser("reconcile", parents=[common], help="Drive Cortex toward the manifests")
    r.add_argument("--watch", action="store_true", help="Repeat until interrupted")
    r.add_argument("--poll-interval", type=float, default=None, help="Seconds between passes in --watch mode")

    sub.add_parser("delete", parents=[common], help="Delete the objects declared in the manifests")
    return p


def _cli_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    out: Dict[str, Any] = {"http": {}, "logging": {}, "app": {}}
    if args.no_verify:
        out["http"]["verify_tls"] = False
    if args.timeout_sec is not None:
        out["http"]["timeout_sec"] = args.timeout_sec
    if args.retries is not None:
        out["http"]["retries"] = args.retries
    if args.logs_dir:
        out["logging"]["base_dir"] = args.logs_dir
    if args.console_level:
        out["logging"]["console_level"] = args.console_level
    if args.file_level:
        out["logging"]["file_level"] = args.file_level
    if getattr(args, "poll_interval", None) is not None:
        out["app"]["poll_interval_sec"] = args.poll_interval
    return out


class _ClientCache:
    """One CortexClient per provider config for the lifetime of a pass."""

    def __init__(self, cfg: AppConfig, logger) -> None:
        self.cfg = cfg
        self.log = logger
        self._clients: Dict[str, CortexClient] = {}

    def __call__(self, ref: str) -> CortexClient:
        if ref not in self._clients:
            params = resolve_connection(self.cfg, ref)
            self.log.debug("Connecting to %r for provider config %s", params, ref)
            self._clients[ref] = CortexClient(
                params,
                verify_tls=self.cfg.http.verify_tls,
                timeout_sec=self.cfg.http.timeout_sec,
                retries=self.cfg.http.retries,
                logger=self.log,
            )
        return self._clients[ref]


def _load(paths: Iterable[str], statuses: Dict[str, ResourceStatus], deleting: bool) -> List[ManagedResource]:
    resources = load_manifests(paths)
    for res in resources:
        # status survives across passes; desired state is re-read every time
        res.status = statuses.setdefault(res.key, res.status)
        if deleting:
            res.deleting = True
    return resources


def _write_status(path: str, resources: List[ManagedResource]) -> None:
    data = {res.key: res.status.to_dict() for res in resources}
    Path(path).write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")


def _run(args: argparse.Namespace) -> int:
    kwargs: Dict[str, Any] = {}
    if args.config:
        if not os.path.isfile(args.config):
            raise ConfigError(f"Config file not found: {args.config}")
        kwargs["files"] = (args.config,)
    cfg = load_config(_cli_overrides(args), **kwargs)

    logger = build_logger(
        run_id=cfg.run_id,
        action=args.cmd,
        base_dir=cfg.logging.base_dir,
        console_level=cfg.logging.console_level,
        file_level=cfg.logging.file_level,
    )
    logger.info("Starting cortexsync %s", args.cmd)

    statuses: Dict[str, ResourceStatus] = {}
    stop = threading.Event()
    watch = bool(getattr(args, "watch", False))
    if watch:
        signal.signal(signal.SIGTERM, lambda *_: stop.set())

    exit_code = EXIT_OK
    while True:
        resources = _load(args.manifests, statuses, deleting=(args.cmd == "delete"))
        logger.info("Loaded %s managed objects", len(resources))

        reconciler = Reconciler(default_registry(), _ClientCache(cfg, logger), logger=logger)
        results, counts = reconciler.reconcile_all(resources)

        summary = summarize_counts(counts)
        logger.info("Pass summary: %s", summary)
        print_rows(results, args.format)
        print(summary)
        if args.status_file:
            _write_status(args.status_file, resources)

        exit_code = EXIT_CYCLE_ERROR if counts.get(ERROR, 0) else EXIT_OK
        if not watch or stop.wait(cfg.app.poll_interval_sec):
            break
    return exit_code


def main(argv: Optional[Iterable[str]] = None) -> int:
    parser = _build_arg_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    try:
        return _run(args)
    except ManifestError as exc:
        print(f"Manifest error: {exc}", file=sys.stderr)
        return EXIT_VALIDATION_ERROR
    except ConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return EXIT_CONFIG_ERROR
    except FileNotFoundError as exc:
        print(f"File not found: {exc}", file=sys.stderr)
        return EXIT_VALIDATION_ERROR
    except KeyboardInterrupt:
        print("Interrupted", file=sys.stderr)
        return EXIT_GENERIC_ERROR


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
