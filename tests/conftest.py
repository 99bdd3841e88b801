"""Shared fixtures: recording sink, fake ping processes, no-network resolution."""

import asyncio
import socket
import threading

import pytest

import probe
from probe import Statistics


class RecordingSink:
    """Presentation sink that keeps everything it is given."""

    def __init__(self):
        self._lock = threading.Lock()
        self.log = []
        self.events = []
        self.stats = []

    def append_log_line(self, text, style=None):
        with self._lock:
            self.log.append((text, style))

    def append_loss_event(self, event):
        with self._lock:
            self.events.append(event)

    def update_statistics(self, snapshot):
        with self._lock:
            self.stats.append(snapshot)


class FakeProcess:
    """Stand-in for asyncio.subprocess.Process."""

    def __init__(self, returncode=0, stdout=b"", stderr=b"", hang=False):
        self.returncode = returncode
        self._stdout = stdout
        self._stderr = stderr
        self._hang = hang
        self.killed = False

    async def communicate(self):
        if self._hang:
            await asyncio.Event().wait()
        return self._stdout, self._stderr

    def kill(self):
        self.killed = True


def reply_line(seq=1, addr="192.0.2.1", ttl=57, ms="12.3", dup=False):
    line = f"64 bytes from {addr}: icmp_seq={seq} ttl={ttl} time={ms} ms"
    if dup:
        line += " (DUP!)"
    return line


def ping_stdout(*lines):
    body = "\n".join(lines)
    return (f"PING 192.0.2.1 (192.0.2.1) 56(84) bytes of data.\n{body}\n\n"
            "--- 192.0.2.1 ping statistics ---\n").encode()


@pytest.fixture
def recording_sink():
    return RecordingSink()


@pytest.fixture
def fake_resolution(monkeypatch):
    """Resolve every host to 192.0.2.1 and pretend ping is installed."""

    def _getaddrinfo(host, port, family=0, type=0, *args, **kwargs):
        return [(socket.AF_INET, socket.SOCK_RAW, 1, "", ("192.0.2.1", 0))]

    monkeypatch.setattr(probe.socket, "getaddrinfo", _getaddrinfo)
    monkeypatch.setattr(probe.shutil, "which", lambda name: f"/usr/bin/{name}")


@pytest.fixture
def fake_ping(monkeypatch):
    """Replace subprocess creation; returns the list of spawned fake processes.

    Set `factory.next` to a callable returning a FakeProcess to change behaviour.
    """
    spawned = []

    class Factory:
        commands = []

        @staticmethod
        def next(cmd):
            return FakeProcess(stdout=ping_stdout(reply_line()))

    async def _create(*cmd, **kwargs):
        Factory.commands.append(list(cmd))
        proc = Factory.next(cmd)
        spawned.append(proc)
        return proc

    monkeypatch.setattr(asyncio, "create_subprocess_exec", _create)
    Factory.spawned = spawned
    return Factory


class FakePinger:
    """Scriptable probe source for monitor tests; `script` is an async callable."""

    def __init__(self, script=None, host="example.com", ip_addr="192.0.2.1", count=None):
        self.host = host
        self.ip_addr = ip_addr
        self.count = count
        self.script = script
        self.on_send = None
        self.on_recv = None
        self.on_duplicate_recv = None
        self.on_send_error = None
        self.on_finish = None
        self.stopped = False
        self._stop = None

    async def run(self):
        self._stop = asyncio.Event()
        if self.stopped:
            return
        if self.script is not None:
            await self.script(self)
        if self.count is None:
            await self._stop.wait()
        if self.on_finish:
            self.on_finish(self.statistics())

    def stop(self):
        self.stopped = True
        if self._stop is not None:
            self._stop.set()

    def statistics(self):
        return Statistics(addr=self.ip_addr, packets_sent=3, packets_recv=2, packet_loss=100.0 / 3)
