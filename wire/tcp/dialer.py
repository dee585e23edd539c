"""Dialing a cluster service with a one-byte header that selects its handler."""

from __future__ import annotations

import logging
import socket
import ssl

_logger = logging.getLogger("wire.tcp")


def _split_host_port(addr: str) -> tuple[str, int]:
    if addr.startswith("["):
        host, _, rest = addr[1:].partition("]")
        if not rest.startswith(":"):
            raise ValueError(f"missing port in address {addr}")
        port = rest[1:]
    else:
        host, sep, port = addr.rpartition(":")
        if not sep:
            raise ValueError(f"missing port in address {addr}")
    try:
        return host, int(port)
    except ValueError as exc:
        raise ValueError(f"invalid port in address {addr}") from exc


class Dialer:
    """Connects to a cluster service, announcing the message type first."""

    def __init__(self, header: int, tls_context: ssl.SSLContext | None = None) -> None:
        if not 0 <= header <= 255:
            raise ValueError(f"header must be a single byte value, got {header}")
        self.header = header
        self.tls_context = tls_context
        _logger.info("creating a new dialer with header: %d", header)

    def dial(self, addr: str, timeout: float) -> socket.socket:
        """Connect to addr ("host:port") and send the header byte."""
        host, port = _split_host_port(addr)
        _logger.debug("dialing address: %s", addr)
        sock = socket.create_connection((host, port), timeout=timeout)
        try:
            if self.tls_context is not None:
                sock = self.tls_context.wrap_socket(sock, server_hostname=host or None)
            sock.settimeout(timeout)
            sock.sendall(bytes([self.header]))
            sock.settimeout(None)
        except BaseException:
            sock.close()
            raise
        return sock