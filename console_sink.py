# console_sink.py
"""
Console variant — plain line-oriented output for logs, cron jobs and dumb terminals.

Log lines and loss events are printed as they happen; statistics are printed
only when they change, so an idle link does not flood the output.
"""
from __future__ import annotations

import threading
import time
from typing import Optional

import typer

from probe import Pinger, Statistics
from tracker import (
    LossTracker,
    LossTransitionEvent,
    TransitionKind,
    format_loss_event,
    format_rtt,
    format_timestamp,
    run_monitor,
)

STYLE_COLORS = {
    "red": typer.colors.RED,
    "green": typer.colors.GREEN,
    "yellow": typer.colors.YELLOW,
}


def format_stats_line(snapshot: Statistics) -> str:
    return (f"--- {snapshot.addr}: {snapshot.packets_sent} transmitted, {snapshot.packets_recv} received, "
            f"{snapshot.packet_loss:.1f}% packet loss, rtt min/avg/max = "
            f"{format_rtt(snapshot.min_rtt_ms)}/{format_rtt(snapshot.avg_rtt_ms)}/{format_rtt(snapshot.max_rtt_ms)}")


class ConsoleSink:
    """Presentation sink writing through typer.secho."""

    def __init__(self, err: bool = False):
        self.err = err
        self._lock = threading.Lock()
        self._last_stats: Optional[Statistics] = None

    def _write(self, text: str, fg: Optional[str] = None, bold: bool = False) -> None:
        with self._lock:
            typer.secho(text, fg=fg, bold=bold, err=self.err)

    def append_log_line(self, text: str, style: Optional[str] = None) -> None:
        self._write(f"{format_timestamp(time.time())}: {text}", fg=STYLE_COLORS.get(style or ""))

    def append_loss_event(self, event: LossTransitionEvent) -> None:
        if event.kind is TransitionKind.ENTERED_LOSS:
            fg = typer.colors.RED
        else:
            fg = typer.colors.GREEN
        self._write(f"{format_timestamp(event.timestamp)}: {format_loss_event(event)}", fg=fg, bold=True)

    def update_statistics(self, snapshot: Statistics) -> None:
        with self._lock:
            if snapshot == self._last_stats:
                return
            self._last_stats = snapshot
        self._write(format_stats_line(snapshot), fg=typer.colors.CYAN)


async def run_console(pinger: Pinger, stats_interval: float = 1.0, sink: Optional[ConsoleSink] = None) -> LossTracker:
    """Run the monitor printing to the console. A probe run failure ends the run."""
    sink = sink or ConsoleSink()
    return await run_monitor(pinger, sink, stats_interval=stats_interval, fatal_run_errors=True)
