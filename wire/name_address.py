"""A named network address."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class NameAddress:
    """Wraps an address string as a TCP network address."""

    address: str

    def network(self) -> str:
        """Return the network type, always "tcp"."""
        return "tcp"

    def __str__(self) -> str:
        return self.address