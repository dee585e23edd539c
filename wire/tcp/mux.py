"""Multiplexing one listener across handlers chosen by a leading header byte."""

from __future__ import annotations

import errno
import logging
import queue
import select
import socket
import ssl
import threading
from typing import Any

from wire.name_address import NameAddress
from wire.tcp.dialer import Dialer

DEFAULT_TIMEOUT = 30.0

NUM_CONNECTIONS_HANDLED = "num_connections_handled"
NUM_UNREGISTERED_HANDLERS = "num_unregistered_handlers"

_POLL_INTERVAL = 0.1
_CLOSED = object()

_logger = logging.getLogger("wire.tcp.mux")
_stats_lock = threading.Lock()
_stats = {NUM_CONNECTIONS_HANDLED: 0, NUM_UNREGISTERED_HANDLERS: 0}


def _add_stat(name: str) -> None:
    with _stats_lock:
        _stats[name] += 1


def _sock_address(sock: socket.socket) -> NameAddress:
    name = sock.getsockname()
    host, port = name[0], name[1]
    if ":" in host:
        return NameAddress(f"[{host}]:{port}")
    return NameAddress(f"{host}:{port}")


def _listener_address(listener: Any) -> Any:
    if isinstance(listener, socket.socket):
        return _sock_address(listener)
    return listener.addr()


def _trim(value: float) -> str:
    return f"{value:.9f}".rstrip("0").rstrip(".")


def _format_duration(seconds: float) -> str:
    ns = round(seconds * 1e9)
    if ns == 0:
        return "0s"
    sign = "-" if ns < 0 else ""
    ns = abs(ns)
    if ns < 1_000:
        return f"{sign}{ns}ns"
    if ns < 1_000_000:
        return f"{sign}{_trim(ns / 1e3)}µs"
    if ns < 1_000_000_000:
        return f"{sign}{_trim(ns / 1e6)}ms"
    hours, rem = divmod(ns, 3600 * 10**9)
    minutes, rem = divmod(rem, 60 * 10**9)
    out = ""
    if hours:
        out += f"{hours}h"
    if hours or minutes:
        out += f"{minutes}m"
    return f"{sign}{out}{_trim(rem / 1e9)}s"


class Layer:
    """Connection layer between nodes: dials out and accepts in."""

    def __init__(self, listener: Any, dialer: Dialer) -> None:
        self._listener = listener
        self._dialer = dialer
        self._addr = _listener_address(listener)
        _logger.debug("creating a new layer")

    def dial(self, addr: str, timeout: float) -> socket.socket:
        """Open a connection to another node."""
        _logger.debug("dialing %s", addr)
        return self._dialer.dial(addr, timeout)

    def accept(self) -> socket.socket:
        """Wait for and return the next incoming connection."""
        conn = self._listener.accept()
        if isinstance(conn, tuple):
            conn = conn[0]
        return conn

    def close(self) -> None:
        """Close the underlying listener."""
        _logger.info("closing the layer")
        self._listener.close()

    def addr(self) -> Any:
        """Return the local address of the layer."""
        return self._addr


class MuxListener:
    """Receives the connections the mux routes to one header byte."""

    def __init__(self, addr: Any) -> None:
        self._addr = addr
        self._queue: queue.Queue = queue.Queue()
        self._lock = threading.Lock()
        self._closed = False

    def accept(self) -> socket.socket:
        """Wait for the next connection; raise once the listener or mux has stopped."""
        conn = self._queue.get()
        if conn is _CLOSED:
            self._queue.put(_CLOSED)
            raise OSError("network connection closed")
        return conn

    def close(self) -> None:
        """Stop this listener: wake waiting accepts and refuse later connections.

        The mux's own listener stays open; close that to stop the mux.
        """
        self._shutdown()

    def addr(self) -> Any:
        """Return the mux's advertised address."""
        return self._addr

    def _deliver(self, conn: socket.socket) -> None:
        with self._lock:
            if not self._closed:
                self._queue.put(conn)
                return
        conn.close()

    def _shutdown(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._queue.put(_CLOSED)


class Mux:
    """Routes each accepted connection by its first byte to a registered listener."""

    def __init__(self, listener: socket.socket, advertise: Any = None) -> None:
        self._listener = listener
        self._addr = advertise if advertise is not None else _sock_address(listener)
        self._handlers: dict[int, MuxListener] = {}
        self._threads: set[threading.Thread] = set()
        self._lock = threading.Lock()
        self._tls_context: ssl.SSLContext | None = None
        self.timeout = DEFAULT_TIMEOUT

    def serve(self) -> None:
        """Accept and route connections until the listener fails or is closed."""
        tls = "TLS " if self._tls_context is not None else ""
        _logger.info("%smux serving on %s, advertising %s",
                     tls, _sock_address(self._listener), self._addr)
        while True:
            try:
                conn = self._accept()
            except (InterruptedError, ConnectionAbortedError):
                continue
            except OSError:
                self._wait_handlers()
                for handler in list(self._handlers.values()):
                    handler._shutdown()
                raise
            if conn is None:
                continue
            thread = threading.Thread(target=self._handle_conn, args=(conn,), daemon=True)
            with self._lock:
                self._threads = {t for t in self._threads if t.is_alive()}
                self._threads.add(thread)
            thread.start()

    def stats(self) -> dict[str, str]:
        """Return the address, timeout, TLS state and registered header bytes."""
        with self._lock:
            handlers = bytes(self._handlers).decode("latin-1")
        return {
            "addr": str(self._addr),
            "timeout": _format_duration(self.timeout),
            "tls": "enabled" if self._tls_context is not None else "disabled",
            "handlers": handlers,
        }

    def listen(self, header: int) -> MuxListener:
        """Register and return the listener for connections starting with header."""
        if not 0 <= header <= 255:
            raise ValueError(f"header must be a single byte value, got {header}")
        with self._lock:
            if header in self._handlers:
                raise ValueError(f"listener already registered under header byte: {header}")
            listener = MuxListener(self._addr)
            self._handlers[header] = listener
        return listener

    def _accept(self) -> socket.socket | None:
        ln = self._listener
        if ln.fileno() == -1:
            raise OSError(errno.EBADF, "use of closed network connection")
        try:
            ready, _, _ = select.select([ln], [], [], _POLL_INTERVAL)
        except ValueError as exc:
            raise OSError(errno.EBADF, "use of closed network connection") from exc
        if not ready:
            return None
        conn, _ = ln.accept()
        return conn

    def _wait_handlers(self) -> None:
        with self._lock:
            threads = list(self._threads)
        for thread in threads:
            thread.join()

    def _handle_conn(self, conn: socket.socket) -> None:
        _add_stat(NUM_CONNECTIONS_HANDLED)
        try:
            if self._tls_context is not None:
                conn.settimeout(self.timeout)
                conn = self._tls_context.wrap_socket(conn, server_side=True)
            conn.settimeout(self.timeout)
            data = conn.recv(1)
            if not data:
                raise ConnectionError("unexpected EOF")
            conn.settimeout(None)
        except OSError as exc:
            conn.close()
            _logger.warning("cannot read header byte: %s", exc)
            return
        header = data[0]
        _logger.debug("read header byte: %d", header)

        with self._lock:
            handler = self._handlers.get(header)
        if handler is None:
            try:
                peer = conn.getpeername()
            except OSError:
                peer = "unknown"
            conn.close()
            _add_stat(NUM_UNREGISTERED_HANDLERS)
            _logger.error("handler not registered for request from %s: %d (unsupported protocol?)",
                          peer, header)
            return
        # The handler is responsible for closing the connection.
        handler._deliver(conn)


def _new_tls_mux(listener: socket.socket, advertise: Any, cert: str, key: str,
                 ca_cert: str, mutual: bool) -> Mux:
    mux = Mux(listener, advertise)
    try:
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        context.load_cert_chain(cert, key)
        if ca_cert:
            context.load_verify_locations(ca_cert)
        if mutual:
            context.verify_mode = ssl.CERT_REQUIRED
    except (OSError, ValueError) as exc:
        raise OSError(f"cannot create TLS config: {exc}") from exc
    mux._tls_context = context
    return mux


def new_tls_mux(listener: socket.socket, advertise: Any, cert: str, key: str, ca_cert: str,
                insecure: bool, mutual: bool) -> Mux:
    """Return a Mux that encrypts all traffic with TLS; client certificates are not required."""
    return _new_tls_mux(listener, advertise, cert, key, ca_cert, False)


def new_mutual_tls_mux(listener: socket.socket, advertise: Any, cert: str, key: str,
                       ca_cert: str) -> Mux:
    """Return a Mux that encrypts traffic with TLS and requires trusted client certificates."""
    return _new_tls_mux(listener, advertise, cert, key, ca_cert, True)