# tui.py
"""
Loss recorder TUI — full-screen terminal view of a running probe.

Layout:
  +------------------+----------------------+
  | Ping Statistics  | Packet Loss Details  |
  +------------------+----------------------+
  | Ping Log                                |
  +-----------------------------------------+

The sink keeps bounded scroll-back buffers; the newest lines are always the ones
rendered. A render task redraws the screen on a fixed refresh interval while the
monitor tasks append to the buffers.

Requirements:
  rich
"""
from __future__ import annotations

import asyncio
import threading
import time
from collections import deque
from typing import Deque, Optional, Tuple

from rich import box
from rich.console import Console, Group
from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.text import Text

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

MAX_LOG_LINES = 500
MAX_LOSS_LINES = 200


# --------------------
# Cell formatting
# --------------------

def fmt_packet_loss(snapshot: Statistics) -> Text:
    """Loss percentage coloured by severity, with duplicates flagged alongside."""
    if snapshot.packets_sent == 0:
        return Text("--", style="dim")
    val = max(0.0, min(100.0, snapshot.packet_loss))
    if snapshot.packets_recv == snapshot.packets_sent:
        style = "bold green"
    elif val < 10.0:
        style = "yellow"
    elif val < 100.0:
        style = "red"
    else:
        style = "bold white on red"
    t = Text(f"{val:.1f}%", style=style)
    if snapshot.packets_dup:
        t.append(f" (+{snapshot.packets_dup} dup)", style="yellow")
    return t


def build_stats_text(snapshot: Optional[Statistics]) -> Text:
    if snapshot is None:
        return Text("Waiting for statistics…", style="dim")
    t = Text(snapshot.addr + "\n", style="bold")
    t.append(f"Transmitted: {snapshot.packets_sent}\n")
    t.append(f"Received: {snapshot.packets_recv}\n")
    t.append("Packet Loss: ")
    t.append_text(fmt_packet_loss(snapshot))
    t.append("\n")
    t.append(f"Min RTT: {format_rtt(snapshot.min_rtt_ms)}\n")
    t.append(f"Avg RTT: {format_rtt(snapshot.avg_rtt_ms)}\n")
    t.append(f"Max RTT: {format_rtt(snapshot.max_rtt_ms)}\n")
    t.append(f"StdDev RTT: {format_rtt(snapshot.stddev_rtt_ms)}")
    return t


def _tail(lines: Deque[Text], height: int) -> Group:
    # Panel borders take two rows
    visible = max(1, height - 2)
    return Group(*list(lines)[-visible:])


# --------------------
# Sink
# --------------------

class TuiSink:
    """Presentation sink backed by rich renderables."""

    def __init__(self):
        self._lock = threading.Lock()
        self._log: Deque[Text] = deque(maxlen=MAX_LOG_LINES)
        self._loss: Deque[Text] = deque(maxlen=MAX_LOSS_LINES)
        self._stats: Optional[Statistics] = None

    def append_log_line(self, text: str, style: Optional[str] = None) -> None:
        line = Text(f"{format_timestamp(time.time())}: ", style="dim")
        line.append(text, style=style or "")
        with self._lock:
            self._log.append(line)

    def append_loss_event(self, event: LossTransitionEvent) -> None:
        style = "red" if event.kind is TransitionKind.ENTERED_LOSS else "green"
        line = Text(f"{format_timestamp(event.timestamp)}: ")
        line.append(format_loss_event(event), style=style)
        with self._lock:
            self._loss.append(line)

    def update_statistics(self, snapshot: Statistics) -> None:
        with self._lock:
            self._stats = snapshot

    def lines(self) -> Tuple[Tuple[str, ...], Tuple[str, ...]]:
        """Plain-text copies of the (log, loss) buffers."""
        with self._lock:
            return tuple(t.plain for t in self._log), tuple(t.plain for t in self._loss)

    def render(self, height: int = 40, in_loss: bool = False) -> Layout:
        with self._lock:
            stats = self._stats
            log = deque(self._log)
            loss = deque(self._loss)

        top_height = max(12, height // 2)
        bottom_height = max(3, height - top_height)

        layout = Layout(name="root")
        layout.split_column(Layout(name="top", size=top_height), Layout(name="log"))
        layout["top"].split_row(Layout(name="stats"), Layout(name="loss"))

        loss_title = "Packet Loss Details"
        if in_loss:
            loss_title += " — [bold white on red] LOSS [/]"
        layout["stats"].update(Panel(build_stats_text(stats), title="Ping Statistics", box=box.SQUARE))
        layout["loss"].update(Panel(_tail(loss, top_height), title=loss_title, box=box.SQUARE))
        layout["log"].update(Panel(_tail(log, bottom_height), title="Ping Log", box=box.SQUARE))
        return layout


# --------------------
# Main loop
# --------------------

async def run_tui(
    pinger: Pinger,
    stats_interval: float = 1.0,
    refresh: float = 0.5,
    console: Optional[Console] = None,
    stop_event: Optional[asyncio.Event] = None,
    handle_signals: bool = True,
) -> LossTracker:
    """Run the monitor behind a full-screen display until interrupted.

    Probe run errors stay on screen; only an interrupt ends the display.
    """
    console = console or Console()
    sink = TuiSink()
    tracker = LossTracker(sink=sink)

    def _view() -> Layout:
        height = console.size.height if console.size else 40
        return sink.render(height, in_loss=tracker.in_loss)

    with Live(_view(), console=console, screen=True, auto_refresh=False) as live:
        monitor = asyncio.create_task(
            run_monitor(
                pinger,
                sink,
                stats_interval=stats_interval,
                fatal_run_errors=False,
                stop_event=stop_event,
                handle_signals=handle_signals,
                tracker=tracker,
            )
        )
        while not monitor.done():
            live.update(_view(), refresh=True)
            await asyncio.wait([monitor], timeout=refresh)
        live.update(_view(), refresh=True)
    return monitor.result()
