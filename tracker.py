# tracker.py
"""
Loss tracking: classifies time into connected and packet-loss windows.

The LossTracker consumes two inputs: "a reply arrived at t" and a fixed-cadence
poll tick. When no reply has been seen for longer than the loss threshold, the
next tick opens a loss window; the next reply closes it. Transitions are
emitted as LossTransitionEvents to an injected presentation sink.

run_monitor() wires a Pinger, a LossTracker, a StatisticsReporter and a sink
together as concurrent asyncio tasks sharing one stop event.
"""
from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
import signal
import threading
import time
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Optional, Protocol

from config import LOSS_THRESHOLD_SECS, POLL_INTERVAL_SECS
from errors import ProbeRunError
from probe import Packet, Pinger, Statistics

logger = logging.getLogger(__name__)


# -------------------------
# Events & state
# -------------------------

class TransitionKind(enum.Enum):
    ENTERED_LOSS = "entered_loss"
    RECOVERED = "recovered"


@dataclass(frozen=True)
class LossTransitionEvent:
    kind: TransitionKind
    timestamp: float
    packets_lost: Optional[int] = None  # RECOVERED only: poll ticks spent in loss
    started_at: Optional[float] = None  # RECOVERED only: when the window opened


@dataclass
class LossState:
    in_loss: bool
    time_last_success: float
    loss_start_time: Optional[float] = None
    ticks_in_loss: int = 0


class PresentationSink(Protocol):
    def append_log_line(self, text: str, style: Optional[str] = None) -> None: ...

    def append_loss_event(self, event: LossTransitionEvent) -> None: ...

    def update_statistics(self, snapshot: Statistics) -> None: ...


class StatisticsSource(Protocol):
    def statistics(self) -> Statistics: ...


# -------------------------
# Formatting helpers shared by sinks
# -------------------------

def format_timestamp(ts: float) -> str:
    """RFC 3339 local time, second precision."""
    return datetime.fromtimestamp(ts).astimezone().isoformat(timespec="seconds")


def format_rtt(rtt_ms: Optional[float]) -> str:
    if rtt_ms is None:
        return "--"
    return f"{rtt_ms:.3f}ms"


def format_reply(packet: Packet) -> str:
    ttl = packet.ttl if packet.ttl is not None else "?"
    return (f"{packet.nbytes} bytes from {packet.addr}: icmp_seq={packet.seq} "
            f"time={format_rtt(packet.rtt_ms)} ttl={ttl}")


def format_loss_event(event: LossTransitionEvent) -> str:
    if event.kind is TransitionKind.ENTERED_LOSS:
        return "Packet Loss Detected!"
    msg = f"Ended up losing {event.packets_lost} packets."
    if event.started_at is not None:
        msg += f" (down {event.timestamp - event.started_at:.1f}s)"
    return msg


def format_statistics(snapshot: Statistics) -> str:
    return "\n".join([
        snapshot.addr,
        f"Transmitted: {snapshot.packets_sent}",
        f"Received: {snapshot.packets_recv}",
        f"Duplicates: {snapshot.packets_dup}",
        f"Packet Loss: {snapshot.packet_loss:.1f}%",
        f"Min RTT: {format_rtt(snapshot.min_rtt_ms)}",
        f"Avg RTT: {format_rtt(snapshot.avg_rtt_ms)}",
        f"Max RTT: {format_rtt(snapshot.max_rtt_ms)}",
        f"StdDev RTT: {format_rtt(snapshot.stddev_rtt_ms)}",
    ])


# -------------------------
# Loss tracker
# -------------------------

class LossTracker:
    """State machine over LossState. Pure: no I/O, never raises.

    All reads and writes of the state happen under one lock, and events are
    handed to the sink while it is held so sink order matches transition order.
    Recovery happens only through on_packet_received.
    """

    def __init__(
        self,
        sink: Optional[PresentationSink] = None,
        threshold: float = LOSS_THRESHOLD_SECS,
        now: Optional[float] = None,
    ):
        self.sink = sink
        self.threshold = threshold
        self._lock = threading.Lock()
        self._state = LossState(in_loss=False, time_last_success=time.time() if now is None else now)

    @property
    def in_loss(self) -> bool:
        with self._lock:
            return self._state.in_loss

    def snapshot(self) -> LossState:
        with self._lock:
            return replace(self._state)

    def on_packet_received(self, timestamp: float) -> Optional[LossTransitionEvent]:
        with self._lock:
            state = self._state
            state.time_last_success = timestamp
            if not state.in_loss:
                return None
            event = LossTransitionEvent(
                kind=TransitionKind.RECOVERED,
                timestamp=timestamp,
                packets_lost=state.ticks_in_loss,
                started_at=state.loss_start_time,
            )
            state.in_loss = False
            state.ticks_in_loss = 0
            self._emit(event)
        logger.info("Recovered from loss after %d ticks", event.packets_lost)
        return event

    def on_poll_tick(self, now: float) -> Optional[LossTransitionEvent]:
        event = None
        with self._lock:
            state = self._state
            if now - state.time_last_success <= self.threshold:
                return None
            if not state.in_loss:
                state.in_loss = True
                state.loss_start_time = now
                state.ticks_in_loss = 0
                event = LossTransitionEvent(kind=TransitionKind.ENTERED_LOSS, timestamp=now)
                self._emit(event)
            state.ticks_in_loss += 1
        if event is not None:
            logger.info("Entered loss at %s", format_timestamp(now))
        return event

    def _emit(self, event: LossTransitionEvent) -> None:
        if self.sink is not None:
            self.sink.append_loss_event(event)


# -------------------------
# Statistics reporter
# -------------------------

class StatisticsReporter:
    """Copies statistics snapshots from the probe source into the sink on a fixed cadence."""

    def __init__(self, source: StatisticsSource, sink: PresentationSink, interval: float = 1.0):
        self.source = source
        self.sink = sink
        self.interval = interval

    def report(self) -> Statistics:
        snapshot = self.source.statistics()
        self.sink.update_statistics(snapshot)
        return snapshot

    async def run(self, stop_event: asyncio.Event) -> None:
        while not await _wait_or_stop(stop_event, self.interval):
            self.report()


async def _wait_or_stop(stop_event: asyncio.Event, interval: float) -> bool:
    """Sleep for `interval`; True if the stop event fired meanwhile."""
    with contextlib.suppress(asyncio.TimeoutError):
        await asyncio.wait_for(stop_event.wait(), timeout=interval)
    return stop_event.is_set()


async def poll_loop(
    tracker: LossTracker,
    stop_event: asyncio.Event,
    interval: float = POLL_INTERVAL_SECS,
    clock: Callable[[], float] = time.time,
) -> None:
    while not await _wait_or_stop(stop_event, interval):
        tracker.on_poll_tick(clock())


# -------------------------
# Monitor
# -------------------------

def attach(pinger: Pinger, tracker: LossTracker, sink: PresentationSink,
           clock: Callable[[], float] = time.time) -> None:
    """Route probe callbacks into the tracker and the sink."""

    def _on_recv(packet: Packet) -> None:
        sink.append_log_line(format_reply(packet))
        tracker.on_packet_received(clock())

    def _on_dup(packet: Packet) -> None:
        sink.append_log_line(f"Duplicate packet received: {format_reply(packet)}", style="yellow")

    def _on_send(packet: Packet) -> None:
        if tracker.in_loss:
            sink.append_log_line(f"Packet sent: icmp_seq={packet.seq} to {packet.addr}", style="red")

    def _on_send_error(packet: Packet, err: Exception) -> None:
        sink.append_log_line(f"Send error (icmp_seq={packet.seq}): {err}", style="red")

    pinger.on_recv = _on_recv
    pinger.on_duplicate_recv = _on_dup
    pinger.on_send = _on_send
    pinger.on_send_error = _on_send_error
    pinger.on_finish = sink.update_statistics


def install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            pass


async def run_monitor(
    pinger: Pinger,
    sink: PresentationSink,
    poll_interval: float = POLL_INTERVAL_SECS,
    stats_interval: float = 1.0,
    fatal_run_errors: bool = False,
    stop_event: Optional[asyncio.Event] = None,
    clock: Callable[[], float] = time.time,
    handle_signals: bool = True,
    tracker: Optional[LossTracker] = None,
) -> LossTracker:
    """Run probe, poll ticker and statistics reporter until the stop event fires.

    A ProbeRunError is written to the sink; it ends the monitor only when
    fatal_run_errors is set, otherwise the display stays up until interrupted.
    """
    stop_event = stop_event or asyncio.Event()
    if handle_signals:
        install_signal_handlers(stop_event)

    if tracker is None:
        tracker = LossTracker(sink=sink, now=clock())
    attach(pinger, tracker, sink, clock)
    reporter = StatisticsReporter(pinger, sink, stats_interval)

    async def _probe() -> None:
        try:
            await pinger.run()
        except ProbeRunError as e:
            logger.error("Probe run failed: %s", e)
            sink.append_log_line(f"Ping error: {e}", style="red")
            if fatal_run_errors:
                stop_event.set()
                raise
        else:
            if pinger.count is not None:
                stop_event.set()

    async def _stopper() -> None:
        await stop_event.wait()
        pinger.stop()

    logger.info("Monitor starting: host=%s addr=%s", pinger.host, pinger.ip_addr)
    tasks = [
        asyncio.create_task(_probe()),
        asyncio.create_task(poll_loop(tracker, stop_event, poll_interval, clock)),
        asyncio.create_task(reporter.run(stop_event)),
        asyncio.create_task(_stopper()),
    ]
    try:
        await asyncio.gather(*tasks)
    finally:
        stop_event.set()
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
    logger.info("Monitor stopped")
    return tracker
