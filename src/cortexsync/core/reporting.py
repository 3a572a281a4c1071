"""
Reporting helpers (table or JSON) for reconciliation results.

`print_rows` keeps the mandatory columns, drops optional ones that are empty
everywhere, and renders a compact table for CLI use. JSON output is also
supported for machine consumption.
"""
from __future__ import annotations

import json
import sys
from typing import Any, Dict, Iterable, List, Optional, TextIO

from .reconciler import OUTCOMES, CycleResult

_CANDIDATES = ["kind", "name", "result", "exists", "up_to_date", "error"]
_MANDATORY = {"kind", "name", "result"}


def _fmt(v: Any) -> str:
    if isinstance(v, bool):
        return "✓" if v else "✗"
    s = "" if v is None else str(v)
    if s == "":
        return "—"
    return s.replace("\n", " ")[:160]


def summarize_counts(counts: Dict[str, int]) -> str:
    return " | ".join(f"{k}={counts.get(k, 0)}" for k in OUTCOMES)


def print_rows(results: Iterable[CycleResult], fmt: str = "table", out: Optional[TextIO] = None) -> None:
    """Render cycle results as a table or JSON."""
    out = out or sys.stdout
    rows: List[Dict[str, Any]] = [r.to_row() for r in results]

    if fmt == "json":
        print(json.dumps(rows, indent=2), file=out)
        return

    def _present(v: Any) -> bool:
        return not (v is None or v == "")

    cols = [c for c in _CANDIDATES if c in _MANDATORY or any(_present(r.get(c)) for r in rows)]
    widths = {c: len(c) for c in cols}
    for r in rows:
        for c in cols:
            widths[c] = max(widths[c], len(_fmt(r.get(c))))

    print("| " + " | ".join(c.ljust(widths[c]) for c in cols) + " |", file=out)
    print("| " + " | ".join("-" * widths[c] for c in cols) + " |", file=out)
    for r in rows:
        print("| " + " | ".join(_fmt(r.get(c)).ljust(widths[c]) for c in cols) + " |", file=out)
