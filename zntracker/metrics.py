"""
Tracker metrics recorder and a minimal Prometheus text exporter.

The recorder is an ordinary object handed to the collaborators that update it
(the announce path, the cleanup sweep, the network listener). The peer
directory itself never touches it.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading

from .peer_db import PeerDatabase
from .version import BUILD_INFO, BuildInfo

__all__ = ["MetricsRecorder", "MetricsServer"]

CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"


def _escape_label(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


class MetricsRecorder:
    """Holds the tracker's gauges and counters."""

    PEERS = "zn_tracker_peers"
    HASHES = "zn_tracker_hashes"
    REQUESTS = "zn_tracker_requests_total"
    OPENED = "zn_tracker_opened_connections_total"
    CLOSED = "zn_tracker_closed_connections_total"
    BUILD = "zn_tracker_build_info"

    _HELP = {
        PEERS: "Peers in database",
        HASHES: "Hashes in database",
        REQUESTS: "Requests received",
        OPENED: "Connections opened since start",
        CLOSED: "Connections closed since start",
        BUILD: "Build information",
    }

    def __init__(self, build_info: BuildInfo = BUILD_INFO) -> None:
        self.build_info = build_info
        self._lock = threading.Lock()
        self._gauges: dict[str, int] = {self.PEERS: 0, self.HASHES: 0}
        self._counters: dict[str, int] = {self.REQUESTS: 0, self.OPENED: 0, self.CLOSED: 0}

    def set_peer_count(self, value: int) -> None:
        with self._lock:
            self._gauges[self.PEERS] = int(value)

    def set_hash_count(self, value: int) -> None:
        with self._lock:
            self._gauges[self.HASHES] = int(value)

    def inc_requests(self, amount: int = 1) -> None:
        self._inc(self.REQUESTS, amount)

    def inc_opened_connections(self, amount: int = 1) -> None:
        self._inc(self.OPENED, amount)

    def inc_closed_connections(self, amount: int = 1) -> None:
        self._inc(self.CLOSED, amount)

    def _inc(self, name: str, amount: int) -> None:
        if amount < 0:
            raise ValueError("Counters can only increase")
        with self._lock:
            self._counters[name] += amount

    def observe(self, db: PeerDatabase) -> None:
        """Refresh the size gauges from the directory's aggregate counts."""
        peers = db.get_peer_count()
        hashes = db.get_hash_count()
        with self._lock:
            self._gauges[self.PEERS] = peers
            self._gauges[self.HASHES] = hashes

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return {**self._gauges, **self._counters}

    def render(self) -> str:
        """Render every metric in the Prometheus text exposition format."""
        with self._lock:
            gauges = dict(self._gauges)
            counters = dict(self._counters)
        lines: list[str] = []
        for name, value in gauges.items():
            lines.extend(self._family(name, "gauge", f"{name} {value}"))
        for name, value in counters.items():
            lines.extend(self._family(name, "counter", f"{name} {value}"))
        labels = ",".join(
            f'{key}="{_escape_label(value)}"' for key, value in self.build_info.labels().items()
        )
        lines.extend(self._family(self.BUILD, "gauge", f"{self.BUILD}{{{labels}}} 1"))
        return "\n".join(lines) + "\n"

    def _family(self, name: str, kind: str, sample: str) -> list[str]:
        return [f"# HELP {name} {self._HELP[name]}", f"# TYPE {name} {kind}", sample]


class MetricsServer:
    """Serves ``GET /metrics`` over plain HTTP/1.1."""

    def __init__(self, host: str, port: int, recorder: MetricsRecorder, *, max_request_bytes: int = 8192):
        self.host = host
        self.port = port
        self.recorder = recorder
        self.max_request_bytes = max_request_bytes
        self.log = logging.getLogger("zntracker.metrics")
        self.server: asyncio.AbstractServer | None = None

    @property
    def bound_port(self) -> int | None:
        if not self.server or not self.server.sockets:
            return None
        return self.server.sockets[0].getsockname()[1]

    async def start(self) -> None:
        if self.server:
            return
        self.server = await asyncio.start_server(self._handle_client, self.host, self.port)
        self.log.info("Metrics exporter listening on %s:%s", self.host, self.bound_port)

    async def stop(self) -> None:
        if not self.server:
            return
        self.server.close()
        await self.server.wait_closed()
        self.server = None

    async def _handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            request_line = await self._read_line(reader)
            if request_line is None:
                await self._write_response(writer, 400, b"Bad Request", b"")
                return
            parts = request_line.decode("utf-8", "replace").strip().split()
            if len(parts) != 3:
                await self._write_response(writer, 400, b"Bad Request", b"")
                return
            method, path, _version = parts
            if await self._read_headers(reader) is None:
                await self._write_response(writer, 400, b"Bad Request", b"")
                return
            if method.upper() != "GET":
                await self._write_response(writer, 405, b"Method Not Allowed", b"", extra_headers={"Allow": "GET"})
                return
            if path.split("?", 1)[0] != "/metrics":
                await self._write_response(writer, 404, b"Not Found", b"")
                return
            body = self.recorder.render().encode("utf-8")
            await self._write_response(writer, 200, b"OK", body, content_type=CONTENT_TYPE)
        except (asyncio.IncompleteReadError, ConnectionError):
            self.log.debug("Metrics client disconnected early")
        finally:
            writer.close()
            with contextlib.suppress(Exception):
                await writer.wait_closed()

    async def _read_line(self, reader: asyncio.StreamReader) -> bytes | None:
        line = await reader.readline()
        if not line or len(line) > self.max_request_bytes:
            return None
        return line

    async def _read_headers(self, reader: asyncio.StreamReader) -> dict[str, str] | None:
        headers: dict[str, str] = {}
        while True:
            line = await reader.readline()
            if not line:
                return None
            if line in (b"\r\n", b"\n"):
                return headers
            if len(line) > self.max_request_bytes:
                return None
            try:
                name, value = line.decode("utf-8").split(":", 1)
            except ValueError:
                return None
            headers[name.strip().lower()] = value.strip()

    async def _write_response(
        self,
        writer: asyncio.StreamWriter,
        status_code: int,
        reason: bytes,
        body: bytes,
        *,
        content_type: str = "text/plain",
        extra_headers: dict[str, str] | None = None,
    ) -> None:
        headers = {
            "Content-Length": str(len(body)),
            "Content-Type": content_type,
            "Connection": "close",
        }
        if extra_headers:
            headers.update(extra_headers)
        status_line = f"HTTP/1.1 {status_code} {reason.decode('ascii')}\r\n".encode("ascii")
        writer.write(status_line)
        for name, value in headers.items():
            writer.write(f"{name}: {value}\r\n".encode("ascii"))
        writer.write(b"\r\n")
        writer.write(body)
        await writer.drain()
