"""Streaming gzip compression and decompression over file-like readers."""

from __future__ import annotations

import gzip
import zlib
from typing import BinaryIO

DEFAULT_BUFFER_SIZE = 65536

_GZIP_WBITS = 31
_CHUNK_SIZE = 65536


class Compressor:
    """Reads from a reader and yields gzip-compressed bytes on read()."""

    def __init__(self, reader: BinaryIO, buffer_size: int = DEFAULT_BUFFER_SIZE) -> None:
        if buffer_size <= 0:
            raise ValueError("buffer size must be positive")
        self._reader = reader
        self._buffer_size = buffer_size
        self._buf = bytearray()
        self._gz: zlib._Compress | None = zlib.compressobj(
            zlib.Z_DEFAULT_COMPRESSION, zlib.DEFLATED, _GZIP_WBITS
        )
        self.bytes_in = 0
        self.bytes_out = 0

    def _read_upto(self, n: int) -> bytes:
        parts = bytearray()
        while len(parts) < n:
            chunk = self._reader.read(n - len(parts))
            if not chunk:
                break
            parts += chunk
        return bytes(parts)

    def _fill(self) -> None:
        assert self._gz is not None
        try:
            data = self._read_upto(self._buffer_size)
        except BaseException:
            self.close()
            raise
        self.bytes_in += len(data)
        self._buf += self._gz.compress(data)
        if len(data) < self._buffer_size:
            # Source exhausted: write the footer.
            self.close()
        else:
            self._buf += self._gz.flush(zlib.Z_SYNC_FLUSH)

    def read(self, size: int = -1) -> bytes:
        """Return up to size bytes of compressed data; b"" at end of stream."""
        if size is None or size < 0:
            out = bytearray()
            while True:
                part = self.read(DEFAULT_BUFFER_SIZE)
                if not part:
                    return bytes(out)
                out += part
        if not self._buf and self._gz is not None:
            self._fill()
        out = bytes(self._buf[:size])
        del self._buf[:size]
        self.bytes_out += len(out)
        return out

    def close(self) -> None:
        """Finish the gzip stream; remaining compressed data stays readable."""
        if self._gz is None:
            return
        self._buf += self._gz.flush(zlib.Z_FINISH)
        self._gz = None

    def __enter__(self) -> Compressor:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class Decompressor:
    """Reads a single gzip member from a reader and returns its contents."""

    def __init__(self, reader: BinaryIO) -> None:
        self._reader: BinaryIO | None = reader
        self._inflater: zlib._Decompress | None = None
        self._pending = bytearray()
        self._got_input = False
        self.bytes_in = 0
        self.bytes_out = 0

    def _feed(self) -> None:
        assert self._reader is not None
        read = getattr(self._reader, "read1", self._reader.read)
        chunk = read(_CHUNK_SIZE)
        if self._inflater is None:
            self._inflater = zlib.decompressobj(_GZIP_WBITS)
        if not chunk:
            self._reader = None
            if self._got_input:
                raise EOFError("unexpected end of gzip stream")
            return
        self._got_input = True
        self.bytes_in += len(chunk)
        try:
            self._pending += self._inflater.decompress(chunk)
        except zlib.error as exc:
            self._reader = None
            raise gzip.BadGzipFile(str(exc)) from exc
        if self._inflater.eof:
            # Only one gzip member is read; the reader is not used again.
            self._reader = None
            self._inflater = None

    def read(self, size: int = -1) -> bytes:
        """Return up to size bytes of decompressed data; b"" at end of stream."""
        want_all = size is None or size < 0
        if size == 0:
            return b""
        while self._reader is not None and (want_all or not self._pending):
            self._feed()
        if want_all:
            out = bytes(self._pending)
            self._pending.clear()
        else:
            out = bytes(self._pending[:size])
            del self._pending[:size]
        self.bytes_out += len(out)
        return out