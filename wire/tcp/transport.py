"""The network service used for consensus traffic, wrapping a connection layer."""

from __future__ import annotations

from typing import Any


class Transport:
    """Dials and accepts consensus connections through a layer."""

    def __init__(self, layer: Any) -> None:
        self._layer = layer

    def dial(self, addr: Any, timeout: float) -> Any:
        """Open a connection to the server at addr."""
        return self._layer.dial(str(addr), timeout)

    def accept(self) -> Any:
        """Wait for the next incoming connection."""
        return self._layer.accept()

    def close(self) -> None:
        """Close the transport."""
        self._layer.close()

    def addr(self) -> Any:
        """Return the binding address of the transport."""
        return self._layer.addr()