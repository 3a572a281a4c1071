"""
Logging for cortexsync.

Sinks attached to the base logger (default name "cs"):
  - stderr, INFO and above unless configured otherwise
  - <base_dir>/app.log, rotated at UTC midnight, 14 days kept
Sink attached to the run logger "cs.run.<action>.<run_id>":
  - <base_dir>/<YYYY-MM-DD>/<action>_<run_id>.log

Every line carries run/action/provider/kind context. Records from library
loggers ("cs.http", "cs.controller.*") get "-" for missing fields.

Credentials never reach a sink: Authorization headers, URL userinfo,
password/key/token assignments and credential JSON values are redacted.
"""

from __future__ import annotations

import logging
import logging.handlers
import re
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Union

REDACTED = "***REDACTED***"

LINE_FORMAT = (
    "%(asctime)s | %(levelname)-8s | %(name)s | "
    "run=%(run_id)s action=%(action)s provider=%(provider)s kind=%(kind)s | %(message)s"
)

CONTEXT_FIELDS = ("run_id", "action", "provider", "kind")


class MaskSecretsFilter(logging.Filter):
    """Rewrite message and string args so credentials are replaced by a marker."""

    _rules = (
        (re.compile(r"(Authorization:\s*(?:Bearer|Basic)\s+)\S+", re.IGNORECASE), r"\g<1>" + REDACTED),
        (re.compile(r"(\bhttps?://[^:/@\s]+:)[^@\s]+@", re.IGNORECASE), r"\g<1>" + REDACTED + "@"),
        (re.compile(r'("(?:password|token|key)"\s*:\s*")[^"]*"', re.IGNORECASE), r"\g<1>" + REDACTED + '"'),
        (re.compile(r"(\bapi[_-]?key\s*[=:]\s*)[\w.\-]+", re.IGNORECASE), r"\g<1>" + REDACTED),
        (re.compile(r"(\bpassword\s*[=:]\s*)[^,\s]+", re.IGNORECASE), r"\g<1>" + REDACTED),
        (re.compile(r"(\btoken\s*[=:]\s*)[\w.\-]+", re.IGNORECASE), r"\g<1>" + REDACTED),
    )

    @classmethod
    def redact(cls, text: str) -> str:
        for pattern, replacement in cls._rules:
            text = pattern.sub(replacement, text)
        return text

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self.redact(record.msg)
        if isinstance(record.args, dict):
            record.args = {k: self.redact(v) if isinstance(v, str) else v for k, v in record.args.items()}
        elif record.args:
            record.args = tuple(self.redact(a) if isinstance(a, str) else a for a in record.args)
        return True


class _ContextDefaults(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        for name in CONTEXT_FIELDS:
            if not hasattr(record, name):
                setattr(record, name, "-")
        return True


class ContextAdapter(logging.LoggerAdapter):
    """LoggerAdapter whose context can be narrowed per managed object."""

    def bind(self, **fields: Any) -> "ContextAdapter":
        ctx = dict(self.extra or {})
        ctx.update({k: v for k, v in fields.items() if v})
        return ContextAdapter(self.logger, ctx)


AnyLogger = Union[logging.Logger, logging.LoggerAdapter]


def bind_context(logger: AnyLogger, **fields: Any) -> ContextAdapter:
    """Return *logger* with extra context fields, wrapping plain loggers as needed."""
    if isinstance(logger, ContextAdapter):
        return logger.bind(**fields)
    if isinstance(logger, logging.LoggerAdapter):
        return ContextAdapter(logger.logger, dict(logger.extra or {})).bind(**fields)
    return ContextAdapter(logger, {}).bind(**fields)


def _level(name: str, default: int) -> int:
    value = logging.getLevelName(str(name).upper())
    return value if isinstance(value, int) else default


def _formatter() -> logging.Formatter:
    fmt = logging.Formatter(LINE_FORMAT, datefmt="%Y-%m-%dT%H:%M:%SZ")
    fmt.converter = time.gmtime  # type: ignore[attr-defined]
    return fmt


def _decorate(handler: logging.Handler, level: int, filters: Iterable[logging.Filter]) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(_formatter())
    for flt in filters:
        handler.addFilter(flt)
    return handler


def _install_console(base: logging.Logger, level: int, filters) -> None:
    # stdio may be swapped between runs (pytest capture); rebind to the current stderr
    for h in [h for h in base.handlers if type(h) is logging.StreamHandler]:
        base.removeHandler(h)
        h.close()
    base.addHandler(_decorate(logging.StreamHandler(stream=sys.stderr), level, filters))


def _install_app_file(base: logging.Logger, log_dir: Path, level: int, filters) -> None:
    target = (log_dir / "app.log").resolve()
    keep = False
    for h in [h for h in base.handlers if isinstance(h, logging.handlers.TimedRotatingFileHandler)]:
        if Path(h.baseFilename) == target:
            keep = True
        else:
            base.removeHandler(h)
            h.close()
    if keep:
        return

    log_dir.mkdir(parents=True, exist_ok=True)
    handler = logging.handlers.TimedRotatingFileHandler(
        str(target), when="midnight", backupCount=14, encoding="utf-8", utc=True
    )
    base.addHandler(_decorate(handler, level, filters))


def _install_run_file(run: logging.Logger, log_dir: Path, action: str, run_id: str, level: int, filters) -> None:
    if any(isinstance(h, logging.FileHandler) for h in run.handlers):
        return
    day_dir = log_dir / datetime.now(timezone.utc).strftime("%Y-%m-%d")
    day_dir.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(str(day_dir / f"{action}_{run_id}.log"), encoding="utf-8")
    run.addHandler(_decorate(handler, level, filters))


def build_logger(
    *,
    name: str = "cs",
    run_id: str,
    action: str,
    base_dir: str = "logs",
    console_level: str = "INFO",
    file_level: str = "DEBUG",
    extra: Optional[Dict[str, Any]] = None,
) -> ContextAdapter:
    """
    Wire the sinks and return the run logger wrapped in a ContextAdapter.

    Safe to call repeatedly: existing handlers are reused or replaced, never
    duplicated.
    """
    filters = (_ContextDefaults(), MaskSecretsFilter())
    log_dir = Path(base_dir)
    file_lvl = _level(file_level, logging.DEBUG)

    base = logging.getLogger(name)
    base.setLevel(logging.DEBUG)
    _install_console(base, _level(console_level, logging.INFO), filters)
    _install_app_file(base, log_dir, file_lvl, filters)

    run = logging.getLogger(f"{name}.run.{action}.{run_id}")
    run.setLevel(logging.DEBUG)
    _install_run_file(run, log_dir, action, run_id, file_lvl, filters)

    ctx = {"run_id": run_id, "action": action, "provider": "-", "kind": "-"}
    ctx.update({k: v for k, v in (extra or {}).items() if k in CONTEXT_FIELDS})
    adapter = ContextAdapter(run, ctx)
    adapter.debug("Logging ready (console=%s, files=%s, dir=%s)", console_level, file_level, log_dir)
    return adapter
