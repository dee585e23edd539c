"""Human-readable byte sizes and directory size measurement."""

from __future__ import annotations

import math
import os

# IEC sizes.
BYTE = 1
KIBYTE = 1 << 10
MIBYTE = 1 << 20
GIBYTE = 1 << 30
TIBYTE = 1 << 40
PIBYTE = 1 << 50
EIBYTE = 1 << 60

# SI sizes.
KBYTE = 1000
MBYTE = KBYTE * 1000
GBYTE = MBYTE * 1000
TBYTE = GBYTE * 1000
PBYTE = TBYTE * 1000
EBYTE = PBYTE * 1000

_MAX_UINT64 = 2**64

_SIZE_TABLE = {
    "b": BYTE,
    "kib": KIBYTE,
    "kb": KBYTE,
    "mib": MIBYTE,
    "mb": MBYTE,
    "gib": GIBYTE,
    "gb": GBYTE,
    "tib": TIBYTE,
    "tb": TBYTE,
    "pib": PIBYTE,
    "pb": PBYTE,
    "eib": EIBYTE,
    "eb": EBYTE,
    # Without suffix
    "": BYTE,
    "ki": KIBYTE,
    "k": KBYTE,
    "mi": MIBYTE,
    "m": MBYTE,
    "gi": GIBYTE,
    "g": GBYTE,
    "ti": TIBYTE,
    "t": TBYTE,
    "pi": PIBYTE,
    "p": PBYTE,
    "ei": EIBYTE,
    "e": EBYTE,
}

_SI_SUFFIXES = ("B", "kB", "MB", "GB", "TB", "PB", "EB")
_IEC_SUFFIXES = ("B", "KiB", "MiB", "GiB", "TiB", "PiB", "EiB")
_NUMBER_CHARS = frozenset("0123456789.,")


def _humanate(size: int, base: float, suffixes: tuple[str, ...]) -> str:
    if size < 10:
        return f"{size} B"
    exponent = math.floor(math.log(size) / math.log(base))
    suffix = suffixes[exponent]
    value = math.floor(size / math.pow(base, exponent) * 10 + 0.5) / 10
    if value < 10:
        return f"{value:.1f} {suffix}"
    return f"{value:.0f} {suffix}"


def format_bytes(s: int) -> str:
    """Return a human-readable SI representation of a byte count."""
    return _humanate(s, 1000, _SI_SUFFIXES)


def format_ibytes(s: int) -> str:
    """Return a human-readable IEC representation of a byte count."""
    return _humanate(s, 1024, _IEC_SUFFIXES)


def parse_bytes(s: str) -> int:
    """Parse a string such as "42 MB" or "42 mib" into a number of bytes."""
    digits = 0
    for char in s:
        if char not in _NUMBER_CHARS:
            break
        digits += 1

    number = s[:digits].replace(",", "")
    try:
        value = float(number)
    except ValueError as exc:
        raise ValueError(f"invalid number: {number!r}") from exc

    extra = s[digits:].strip().lower()
    multiplier = _SIZE_TABLE.get(extra)
    if multiplier is None:
        raise ValueError(f"unhandled size name: {extra}")
    value *= multiplier
    if value >= _MAX_UINT64:
        raise ValueError(f"too large: {s}")
    return int(value)


def friendly_bytes(n: int) -> str:
    """Return a friendly SI representation of a byte count."""
    return format_bytes(n)


def dir_size(path: str | os.PathLike[str]) -> int:
    """Return the total size of all non-directory entries under path.

    Entries that vanish while walking are ignored.
    """
    try:
        root = os.lstat(path)
    except FileNotFoundError:
        return 0
    if not os.path.isdir(path) or os.path.islink(path):
        return root.st_size
    return _tree_size(os.fspath(path))


def _tree_size(path: str) -> int:
    total = 0
    try:
        entries = list(os.scandir(path))
    except FileNotFoundError:
        return 0
    for entry in entries:
        try:
            if entry.is_dir(follow_symlinks=False):
                total += _tree_size(entry.path)
            else:
                total += entry.stat(follow_symlinks=False).st_size
        except FileNotFoundError:
            continue
    return total