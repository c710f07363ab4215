"""HTTP listener serving the mocks of a single service."""

from __future__ import annotations

import json
import socket
import socketserver
import threading
import time
from enum import Enum
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any

import structlog

from .errors import BindError, ShutdownTimeoutError
from .models import MockEntry, ServiceConfig
from .router import MockRequest, RequestRouter

LOGGER = structlog.get_logger("mock_fleet")

DEFAULT_HOST = "0.0.0.0"
DEFAULT_STOP_TIMEOUT = 5.0
NO_MATCH_BODY = b"No matching mock found"


class RuntimeState(str, Enum):
    CREATED = "created"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


class ThreadedHTTPServer(socketserver.ThreadingMixIn, HTTPServer):
    """Threaded server that tracks its connections so shutdown can drain and close them.

    ``_connections`` holds every accepted socket until its handler thread is done;
    ``_inflight`` is the subset currently serving a request.
    """

    daemon_threads = True

    def __init__(self, server_address: tuple[str, int], handler_class: type[BaseHTTPRequestHandler]) -> None:
        self.force_closed = threading.Event()
        self._inflight_cond = threading.Condition()
        self._inflight: set[socket.socket] = set()
        self._connections: set[socket.socket] = set()
        super().__init__(server_address, handler_class)

    def process_request(self, request: Any, client_address: Any) -> None:
        with self._inflight_cond:
            self._connections.add(request)
        super().process_request(request, client_address)

    def shutdown_request(self, request: Any) -> None:
        with self._inflight_cond:
            self._connections.discard(request)
        super().shutdown_request(request)

    @property
    def connection_count(self) -> int:
        with self._inflight_cond:
            return len(self._connections)

    def request_started(self, connection: socket.socket) -> None:
        with self._inflight_cond:
            self._inflight.add(connection)

    def request_finished(self, connection: socket.socket) -> None:
        with self._inflight_cond:
            self._inflight.discard(connection)
            self._inflight_cond.notify_all()

    def wait_for_drain(self, timeout: float) -> int:
        """Block until no request is in flight or ``timeout`` elapses; return the outstanding count."""

        deadline = time.monotonic() + max(timeout, 0)
        with self._inflight_cond:
            while self._inflight:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                self._inflight_cond.wait(remaining)
            return len(self._inflight)

    def close_connections(self) -> None:
        """Shut down every accepted socket, idle or mid-request."""

        with self._inflight_cond:
            connections = list(self._connections)
        for connection in connections:
            try:
                connection.shutdown(socket.SHUT_RDWR)
            except OSError as exc:
                LOGGER.debug("connection_already_closed", error=str(exc))

    def force_close(self) -> None:
        self.force_closed.set()
        self.close_connections()

    def handle_error(self, request: Any, client_address: Any) -> None:
        LOGGER.debug("connection_error", client_ip=client_address[0], exc_info=True)


class ServiceRuntime:
    """Owns one listener bound to one port, backed by one immutable router."""

    def __init__(
        self,
        name: str,
        usecase: str,
        config: ServiceConfig,
        router: RequestRouter,
        *,
        host: str = DEFAULT_HOST,
    ) -> None:
        self.name = name
        self.usecase = usecase
        self.config = config
        self.router = router
        self.host = host
        self._state = RuntimeState.CREATED
        self._state_lock = threading.Lock()
        self._httpd: ThreadedHTTPServer | None = None
        self._thread: threading.Thread | None = None
        self._logger = LOGGER.bind(service=name, usecase=usecase, port=config.port)

    @property
    def port(self) -> int:
        return self.config.port

    @property
    def state(self) -> RuntimeState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is RuntimeState.RUNNING

    @property
    def open_connections(self) -> int:
        httpd = self._httpd
        return httpd.connection_count if httpd is not None else 0

    def start(self) -> None:
        with self._state_lock:
            if self._state is not RuntimeState.CREATED:
                raise RuntimeError(f"Service runtime '{self.name}' cannot start from state {self._state.value}")
            self._logger.info("server_starting", host=self.host)
            try:
                httpd = ThreadedHTTPServer((self.host, self.port), self._build_handler_factory())
            except OSError as exc:
                self._state = RuntimeState.STOPPED
                raise BindError(self.name, self.port, exc) from exc
            self._httpd = httpd
            self._thread = threading.Thread(
                target=httpd.serve_forever,
                name=f"mock-fleet-{self.name}",
                daemon=True,
            )
            self._thread.start()
            self._state = RuntimeState.RUNNING
        self._logger.info("server_started", routes=len(self.router.mocks))

    def stop(self, timeout: float = DEFAULT_STOP_TIMEOUT) -> None:
        """Stop accepting, drain in-flight requests for up to ``timeout`` seconds, then close.

        Raises :class:`ShutdownTimeoutError` when requests were still running at the
        deadline; the listener is closed either way.
        """

        with self._state_lock:
            if self._state is not RuntimeState.RUNNING:
                return
            self._state = RuntimeState.STOPPING
        httpd = self._httpd
        assert httpd is not None
        self._logger.info("server_stopping", timeout=timeout)
        outstanding = 0
        try:
            httpd.shutdown()
            httpd.server_close()
            outstanding = httpd.wait_for_drain(timeout)
            if outstanding:
                httpd.force_close()
            else:
                # Accepted connections that never sent a request line.
                httpd.close_connections()
        finally:
            if self._thread:
                self._thread.join(timeout=2)
            with self._state_lock:
                self._state = RuntimeState.STOPPED
        if outstanding:
            self._logger.warning("server_force_closed", outstanding=outstanding)
            raise ShutdownTimeoutError(self.name, timeout, outstanding)
        self._logger.info("server_stopped")

    def summary_lines(self) -> list[str]:
        header = f"[mock-fleet] {self.name} ({self.usecase}) listening on {self.host}:{self.port}"
        lines = [header, "    routes:"]
        described = self.router.describe()
        if described:
            lines.extend(f"      - {description}" for description in described)
        else:
            lines.append("      (no routes configured)")
        return lines

    def _build_handler_factory(self) -> type[BaseHTTPRequestHandler]:
        router = self.router
        handler_logger = self._logger

        class Handler(BaseHTTPRequestHandler):
            server: ThreadedHTTPServer

            def log_message(self, format: str, *args: Any) -> None:  # pragma: no cover - avoid stderr
                handler_logger.debug(
                    "http_trace",
                    client_ip=self.client_address[0],
                    message=format % args,
                )

            def do_GET(self) -> None:  # noqa: N802 (BaseHTTPRequestHandler requirement)
                self._handle()

            def do_POST(self) -> None:  # noqa: N802
                self._handle()

            def do_PUT(self) -> None:  # noqa: N802
                self._handle()

            def do_DELETE(self) -> None:  # noqa: N802
                self._handle()

            def do_PATCH(self) -> None:  # noqa: N802
                self._handle()

            def do_HEAD(self) -> None:  # noqa: N802
                self._handle(head_only=True)

            def do_OPTIONS(self) -> None:  # noqa: N802
                self._handle()

            def _handle(self, *, head_only: bool = False) -> None:
                self.server.request_started(self.connection)
                try:
                    self._dispatch(head_only=head_only)
                finally:
                    self.server.request_finished(self.connection)

            def _dispatch(self, *, head_only: bool) -> None:
                request = MockRequest(
                    method=self.command,
                    path=self.path.split("?", 1)[0],
                    headers={key: value for key, value in self.headers.items()},
                    body=self.rfile.read(int(self.headers.get("Content-Length", 0) or 0)),
                )
                handler_logger.debug(
                    "request_received",
                    method=request.method,
                    path=request.path,
                    content_length=len(request.body),
                )
                try:
                    mock = router.match(request)
                    if mock is None:
                        handler_logger.warning("request_unmatched", method=request.method, path=request.path)
                        self._respond_plain(HTTPStatus.NOT_FOUND, NO_MATCH_BODY, head_only=head_only)
                        return
                    delay_ms = router.delay_ms()
                    if delay_ms:
                        handler_logger.debug("delay_applied", delay_ms=delay_ms)
                        if self.server.force_closed.wait(delay_ms / 1000):
                            return
                    self._respond_with_mock(mock, request, delay_ms, head_only=head_only)
                except Exception:  # pragma: no cover - resilience path
                    handler_logger.exception("request_failed", method=request.method, path=request.path)
                    self._respond_plain(HTTPStatus.INTERNAL_SERVER_ERROR, b"mock failure", head_only=head_only)

            def _respond_with_mock(
                self,
                mock: MockEntry,
                request: MockRequest,
                delay_ms: int,
                *,
                head_only: bool = False,
            ) -> None:
                response = mock.response
                body_bytes = b""
                if response.body is not None:
                    body_bytes = json.dumps(response.body).encode("utf-8")
                headers = dict(response.headers)
                if body_bytes and not any(key.lower() == "content-type" for key in headers):
                    headers["Content-Type"] = "application/json"
                self.send_response(response.status_code)
                for key, value in headers.items():
                    self.send_header(key, value)
                self.send_header("Content-Length", str(len(body_bytes)))
                self.end_headers()
                if not head_only:
                    self.wfile.write(body_bytes)
                handler_logger.info(
                    "request_served",
                    method=request.method,
                    path=request.path,
                    status=response.status_code,
                    delay_ms=delay_ms,
                )

            def _respond_plain(self, status: HTTPStatus, body: bytes, *, head_only: bool = False) -> None:
                self.send_response(status)
                self.send_header("Content-Type", "text/plain; charset=utf-8")
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                if not head_only:
                    self.wfile.write(body)

        return Handler
