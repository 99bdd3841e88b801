# probe.py
"""
Probe source — sends ICMP echo requests to a single host and reports per-packet events.

Each sequence number is probed with its own short-lived system `ping` process so that
a slow or lost reply never delays the probing cadence. Replies are parsed from ping's
stdout and delivered through callbacks, while cumulative statistics are kept for
periodic snapshots.

Callbacks (all optional, called from the event loop):
  on_send(packet)               probe dispatched
  on_recv(packet)               first reply for a sequence number
  on_duplicate_recv(packet)     further replies flagged (DUP!)
  on_send_error(packet, err)    ping could not send (e.g. network unreachable)
  on_finish(statistics)         run() is about to return

Each probe runs `ping -c 1`, which exits after the first reply, so real ping
output rarely carries `DUP!` lines; on_duplicate_recv fires only when a
duplicate arrives before that first reply is reported.

Stdlib only (asyncio, socket, shutil, re).
"""
from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
import math
import re
import shutil
import socket
from dataclasses import dataclass
from typing import Callable, List, Optional, Set

from errors import PacketSendError, ProbeRunError, ProbeSourceConstructionError

logger = logging.getLogger(__name__)


# -------------------------
# Data types
# -------------------------

class IPFamily(enum.Enum):
    AUTO = "auto"
    V4 = "v4"
    V6 = "v6"


@dataclass
class Packet:
    seq: int
    addr: str
    nbytes: int = 0
    rtt_ms: Optional[float] = None  # None when no reply arrived
    ttl: Optional[int] = None
    dup: bool = False


@dataclass(frozen=True)
class Statistics:
    addr: str
    packets_sent: int = 0
    packets_recv: int = 0
    packets_dup: int = 0
    packet_loss: float = 0.0  # percent
    min_rtt_ms: Optional[float] = None
    avg_rtt_ms: Optional[float] = None
    max_rtt_ms: Optional[float] = None
    stddev_rtt_ms: Optional[float] = None


# -------------------------
# Output parsing
# -------------------------

PING_REPLY_RE = re.compile(
    r"(?P<bytes>\d+) bytes from (?P<addr>\S+?(?: \([^)]*\))?):\s"
    r".*?ttl=(?P<ttl>\d+)"
    r".*?time[=<](?P<ms>[0-9]+\.?[0-9]*) ?ms"
    r"(?P<dup>.*DUP!)?",
    re.IGNORECASE,
)


def parse_ping_reply(line: str) -> Optional[Packet]:
    """Parse one reply line of ping output. Returns None for non-reply lines.

    The returned packet carries seq=0; the caller knows the real sequence number
    because every probe has its own process.
    """
    m = PING_REPLY_RE.search(line)
    if not m:
        return None
    addr = m.group("addr")
    # "host.example (1.2.3.4)" -> "1.2.3.4"
    if "(" in addr:
        addr = addr[addr.index("(") + 1:addr.rindex(")")]
    return Packet(
        seq=0,
        addr=addr,
        nbytes=int(m.group("bytes")),
        rtt_ms=float(m.group("ms")),
        ttl=int(m.group("ttl")),
        dup=m.group("dup") is not None,
    )


def parse_ping_output(text: str) -> List[Packet]:
    return [p for p in (parse_ping_reply(line) for line in text.splitlines()) if p is not None]


# -------------------------
# Host resolution
# -------------------------

def resolve_host(host: str, family: IPFamily) -> str:
    fam = {IPFamily.V4: socket.AF_INET, IPFamily.V6: socket.AF_INET6}.get(family, socket.AF_UNSPEC)
    try:
        infos = socket.getaddrinfo(host, None, fam, socket.SOCK_DGRAM)
    except socket.gaierror as e:
        raise ProbeSourceConstructionError(f"cannot resolve {host}: {e}") from e
    if not infos:
        raise ProbeSourceConstructionError(f"cannot resolve {host}: no addresses")
    return infos[0][4][0]


# -------------------------
# Pinger
# -------------------------

class Pinger:
    """Periodic ICMP echo source for one host."""

    def __init__(
        self,
        host: str,
        interval: float = 1.0,
        timeout: int = 2,
        count: Optional[int] = None,
        family: IPFamily = IPFamily.AUTO,
    ):
        if not host or not host.strip():
            raise ProbeSourceConstructionError("host must not be empty")
        if interval <= 0:
            raise ProbeSourceConstructionError("interval must be positive")
        if timeout <= 0:
            raise ProbeSourceConstructionError("timeout must be positive")

        self.host = host.strip()
        self.interval = interval
        self.timeout = timeout
        self.count = count
        self.ip_addr = resolve_host(self.host, family)
        self._v6 = ":" in self.ip_addr

        binary = "ping6" if self._v6 and shutil.which("ping6") else "ping"
        if not shutil.which(binary):
            raise ProbeSourceConstructionError(f"'{binary}' binary not found in PATH")
        self._binary = binary

        self.on_send: Optional[Callable[[Packet], None]] = None
        self.on_recv: Optional[Callable[[Packet], None]] = None
        self.on_duplicate_recv: Optional[Callable[[Packet], None]] = None
        self.on_send_error: Optional[Callable[[Packet, Exception], None]] = None
        self.on_finish: Optional[Callable[[Statistics], None]] = None

        self._sequence = 0
        self._sent = 0
        self._recv = 0
        self._dup = 0
        self._rtt_count = 0
        self._rtt_mean = 0.0
        self._rtt_m2 = 0.0
        self._rtt_min: Optional[float] = None
        self._rtt_max: Optional[float] = None
        self._pending: Set[asyncio.Task] = set()
        self._stop_event: Optional[asyncio.Event] = None
        self._stop_requested = False
        self._failure: Optional[BaseException] = None

        logger.debug("Pinger created: host=%s addr=%s binary=%s", self.host, self.ip_addr, self._binary)

    # --- statistics ---

    def _record_rtt(self, rtt_ms: float) -> None:
        # Welford's running mean/variance, constant memory
        self._rtt_count += 1
        delta = rtt_ms - self._rtt_mean
        self._rtt_mean += delta / self._rtt_count
        self._rtt_m2 += delta * (rtt_ms - self._rtt_mean)
        if self._rtt_min is None or rtt_ms < self._rtt_min:
            self._rtt_min = rtt_ms
        if self._rtt_max is None or rtt_ms > self._rtt_max:
            self._rtt_max = rtt_ms

    def statistics(self) -> Statistics:
        loss = (100.0 * (self._sent - self._recv) / self._sent) if self._sent else 0.0
        if not self._rtt_count:
            return Statistics(
                addr=self.ip_addr,
                packets_sent=self._sent,
                packets_recv=self._recv,
                packets_dup=self._dup,
                packet_loss=loss,
            )
        return Statistics(
            addr=self.ip_addr,
            packets_sent=self._sent,
            packets_recv=self._recv,
            packets_dup=self._dup,
            packet_loss=loss,
            min_rtt_ms=self._rtt_min,
            avg_rtt_ms=min(max(self._rtt_mean, self._rtt_min), self._rtt_max),
            max_rtt_ms=self._rtt_max,
            stddev_rtt_ms=math.sqrt(max(0.0, self._rtt_m2) / self._rtt_count),
        )

    # --- lifecycle ---

    def stop(self) -> None:
        self._stop_requested = True
        if self._stop_event is not None:
            self._stop_event.set()

    def _command(self) -> List[str]:
        cmd = [self._binary, "-n", "-c", "1", "-w", str(self.timeout)]
        if self._v6 and self._binary == "ping":
            cmd.insert(1, "-6")
        return [*cmd, self.ip_addr]

    async def run(self) -> None:
        """Probe until stop() is called or `count` probes have been sent.

        Raises ProbeRunError when a ping process cannot be launched.
        """
        self._stop_event = asyncio.Event()
        self._failure = None
        if self._stop_requested:
            self._stop_event.set()
        try:
            while not self._stop_event.is_set():
                if self.count is not None and self._sequence >= self.count:
                    break
                task = asyncio.create_task(self._probe(self._sequence))
                self._pending.add(task)
                task.add_done_callback(self._probe_done)
                self._sequence += 1
                with contextlib.suppress(asyncio.TimeoutError):
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)

            if self._failure is None and not self._stop_event.is_set() and self._pending:
                # count reached: give outstanding probes their chance to answer
                await asyncio.wait(set(self._pending), timeout=self.timeout + 1)
        finally:
            await self._cancel_pending()

        if self._failure is not None:
            raise self._failure
        logger.debug("Pinger finished: sent=%d recv=%d", self._sent, self._recv)
        if self.on_finish:
            self.on_finish(self.statistics())

    def _probe_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled() or task.exception() is None:
            return
        if self._failure is None:
            self._failure = task.exception()
        self._stop_event.set()

    async def _cancel_pending(self) -> None:
        pending = list(self._pending)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._pending.clear()

    async def _probe(self, seq: int) -> None:
        packet = Packet(seq=seq, addr=self.ip_addr)
        self._sent += 1
        if self.on_send:
            self.on_send(packet)

        try:
            proc = await asyncio.create_subprocess_exec(
                *self._command(), stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE
            )
        except OSError as e:
            raise ProbeRunError(f"ping failed: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout + 1)
        except asyncio.TimeoutError:
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            logger.debug("Probe %d timed out", seq)
            return
        except asyncio.CancelledError:
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            raise

        if proc.returncode == 1:
            # no reply before the deadline
            logger.debug("Probe %d: no reply", seq)
            return
        if proc.returncode != 0:
            message = stderr.decode(errors="ignore").strip() or f"ping exited with status {proc.returncode}"
            logger.debug("Probe %d send error: %s", seq, message)
            if self.on_send_error:
                self.on_send_error(packet, PacketSendError(message))
            return

        received = False
        for reply in parse_ping_output(stdout.decode(errors="ignore")):
            reply.seq = seq
            if not received and not reply.dup:
                received = True
                self._recv += 1
                self._record_rtt(reply.rtt_ms)
                if self.on_recv:
                    self.on_recv(reply)
            else:
                reply.dup = True
                self._dup += 1
                if self.on_duplicate_recv:
                    self.on_duplicate_recv(reply)
