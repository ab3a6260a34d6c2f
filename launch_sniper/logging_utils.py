"""
Run log formatting and per-account timing.

The JSON formatter backs the rotating file handler in ``setup_logging``.
MetricsCollector records how long each account's transaction took from
submission to inclusion so the operator can see the spread after a snipe.
"""

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.table import Table

# LogRecord attributes that callers may set through ``extra=``
RECORD_EXTRAS = ("account_index", "tx_hash", "block_number")


@dataclass
class OperationTiming:
    """One account's transaction, from submission to receipt."""
    operation: str
    account_index: Optional[int] = None
    submitted_at: float = field(default_factory=time.time)
    _clock_start: float = field(default_factory=time.perf_counter, repr=False)
    elapsed_ms: Optional[float] = None
    success: bool = False
    error: Optional[str] = None
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None

    @property
    def finished(self) -> bool:
        return self.elapsed_ms is not None

    def finalize(self, success: bool = True, error: Optional[str] = None):
        self.elapsed_ms = (time.perf_counter() - self._clock_start) * 1000
        self.success = success
        self.error = error

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation": self.operation,
            "account_index": self.account_index,
            "submitted_at": datetime.fromtimestamp(self.submitted_at, timezone.utc).isoformat(),
            "elapsed_ms": None if self.elapsed_ms is None else round(self.elapsed_ms, 2),
            "success": self.success,
            "error": self.error,
            "tx_hash": self.tx_hash,
            "block_number": self.block_number,
        }


class MetricsCollector:
    """Timings for every account transaction in one run."""

    def __init__(self):
        self.timings: List[OperationTiming] = []

    def start(self, operation: str, account_index: Optional[int] = None) -> OperationTiming:
        timing = OperationTiming(operation=operation, account_index=account_index)
        self.timings.append(timing)
        return timing

    def get_summary(self) -> Dict[str, Dict[str, Any]]:
        """
        Counts and latency spread per operation. Timings that never finished
        (the run was interrupted) are left out.
        """
        grouped: Dict[str, List[OperationTiming]] = {}
        for timing in self.timings:
            if timing.finished:
                grouped.setdefault(timing.operation, []).append(timing)

        summary = {}
        for operation, timings in grouped.items():
            elapsed = [t.elapsed_ms for t in timings]
            slowest = max(timings, key=lambda t: t.elapsed_ms)
            blocks = {t.block_number for t in timings if t.block_number is not None}
            summary[operation] = {
                "total": len(timings),
                "success": sum(1 for t in timings if t.success),
                "failure": sum(1 for t in timings if not t.success),
                "avg_duration_ms": round(sum(elapsed) / len(elapsed), 2),
                "min_duration_ms": round(min(elapsed), 2),
                "max_duration_ms": round(max(elapsed), 2),
                "slowest_account": slowest.account_index,
                "blocks": sorted(blocks),
            }
        return summary

    def print_summary(self, console: Optional[Console] = None):
        console = console or Console()
        table = Table(title="Inclusion Latency")
        table.add_column("Kind", style="cyan")
        table.add_column("Sent", justify="right")
        table.add_column("OK", justify="right", style="green")
        table.add_column("Failed", justify="right", style="red")
        table.add_column("Fastest", justify="right")
        table.add_column("Slowest", justify="right")
        table.add_column("Blocks", style="dim")

        for operation, stats in self.get_summary().items():
            table.add_row(
                operation,
                str(stats["total"]),
                str(stats["success"]),
                str(stats["failure"]),
                f"{stats['min_duration_ms']:.0f} ms",
                f"{stats['max_duration_ms']:.0f} ms (#{stats['slowest_account']})",
                ", ".join(str(b) for b in stats["blocks"]) or "-",
            )
        console.print(table)


class JSONFormatter(logging.Formatter):
    """One JSON object per line for the run log file."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "where": f"{record.module}:{record.lineno}",
        }
        for name in RECORD_EXTRAS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)
