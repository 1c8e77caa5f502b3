"""
Incremental decoder for a top-level JSON array of click records.

The array is framed byte by byte: each element's extent is found by tracking
nesting and string state, then that slice alone is decoded with msgspec. Only
the current element plus one read chunk is ever held in memory, so memory use
does not grow with the number of records.
"""

import re
from collections.abc import Callable, Iterator
from typing import BinaryIO

import msgspec

from src.common.errors import DecodeError, FramingError, SourceError
from src.common.utils import ClickEvent, click_decoder, open_source


CHUNK_SIZE = 64 * 1024

_WHITESPACE = b" \t\r\n"
_STRUCTURAL = re.compile(rb'["{}\[\]]')
_STRING_SPECIAL = re.compile(rb'["\\]')
_SCALAR_END = re.compile(rb"[ \t\r\n,\]}]")

_OPEN_ARRAY = ord("[")
_CLOSE_ARRAY = ord("]")
_COMMA = ord(",")
_QUOTE = ord('"')
_BACKSLASH = ord("\\")


class ArrayFramer:
    """Splits a JSON array read from ``stream`` into raw per-element byte slices."""

    def __init__(self, stream: BinaryIO, chunk_size: int = CHUNK_SIZE):
        self._stream = stream
        self._chunk_size = chunk_size
        self._buf = b""
        self._pos = 0
        self._eof = False

    def _fill(self) -> bool:
        """Appends one chunk to the buffer. Returns False at end of input."""
        if self._eof:
            return False
        try:
            chunk = self._stream.read(self._chunk_size)
        except OSError as e:
            raise SourceError(getattr(self._stream, "name", "<stream>"), str(e)) from e
        if not chunk:
            self._eof = True
            return False
        self._buf += chunk
        return True

    def _peek(self) -> int | None:
        """Skips whitespace; returns the next byte without consuming it, or None at EOF."""
        while True:
            buf = self._buf
            while self._pos < len(buf) and buf[self._pos] in _WHITESPACE:
                self._pos += 1
            if self._pos < len(buf):
                return buf[self._pos]
            # Nada pendiente entre elementos: se descarta lo ya consumido
            self._buf = b""
            self._pos = 0
            if not self._fill():
                return None

    def _scan_string(self, i: int) -> int | None:
        """Given ``i`` just past an opening quote, returns the index past the closing one."""
        while True:
            m = _STRING_SPECIAL.search(self._buf, i)
            if m is None:
                i = len(self._buf)
                if not self._fill():
                    return None
                continue
            i = m.start()
            if self._buf[i] == _BACKSLASH:
                if i + 1 >= len(self._buf) and not self._fill():
                    return None
                i += 2
                continue
            return i + 1

    def _scan_container(self, i: int) -> int | None:
        depth = 0
        while True:
            m = _STRUCTURAL.search(self._buf, i)
            if m is None:
                i = len(self._buf)
                if not self._fill():
                    return None
                continue
            i = m.start()
            c = self._buf[i]
            if c == _QUOTE:
                i = self._scan_string(i + 1)
                if i is None:
                    return None
                continue
            depth += 1 if c in b"{[" else -1
            i += 1
            if depth == 0:
                return i

    def _scan_scalar(self, i: int) -> int:
        while True:
            m = _SCALAR_END.search(self._buf, i)
            if m is not None:
                return m.start()
            i = len(self._buf)
            if not self._fill():
                return i

    def _take_element(self) -> bytes | None:
        # el buffer arranca en el elemento actual: nunca retiene registros ya emitidos
        self._buf = self._buf[self._pos:]
        self._pos = start = 0
        first = self._buf[start]
        if first in b"{[":
            end = self._scan_container(start)
        elif first == _QUOTE:
            end = self._scan_string(start + 1)
        else:
            end = self._scan_scalar(start)
        if end is None:
            return None
        self._pos = end
        return self._buf[start:end]

    def frames(self) -> Iterator[tuple[int, bytes]]:
        """
        Yields ``(index, raw_element)`` for every element of the array.

        Raises FramingError if the input does not start with ``[`` and
        DecodeError (with the element index) for broken separators or a
        truncated element. End of input where ``]`` was expected is accepted.
        """
        first = self._peek()
        if first is None:
            raise FramingError("expected JSON array, got end of input")
        if first != _OPEN_ARRAY:
            raise FramingError(f"expected JSON array, got {chr(first)!r}")
        self._pos += 1

        index = 0
        while True:
            c = self._peek()
            if c is None:
                return
            if c == _CLOSE_ARRAY:
                self._pos += 1
                return
            if index > 0:
                if c != _COMMA:
                    raise DecodeError(index, f"invalid character {chr(c)!r} after array element")
                self._pos += 1
                c = self._peek()
                if c is None:
                    raise DecodeError(index, "unexpected end of input")
            if c in b",]}:":
                raise DecodeError(index, f"invalid character {chr(c)!r} looking for value")

            raw = self._take_element()
            if raw is None:
                raise DecodeError(index, "unexpected end of input")
            yield index, raw
            index += 1


def decode_clicks(stream: BinaryIO, chunk_size: int = CHUNK_SIZE) -> Iterator[ClickEvent]:
    """Lazily decodes ClickEvents from an already open binary stream."""
    for index, raw in ArrayFramer(stream, chunk_size).frames():
        try:
            event = click_decoder.decode(raw)
        except msgspec.DecodeError as e:
            raise DecodeError(index, str(e)) from e
        yield event


def iter_clicks(file_path: str, chunk_size: int = CHUNK_SIZE) -> Iterator[ClickEvent]:
    """Generator over the click events of a decodes file (local or gs://)."""
    with open_source(file_path) as stream:
        yield from decode_clicks(stream, chunk_size)


def stream_clicks(
    file_path: str,
    on_record: Callable[[ClickEvent], None],
    chunk_size: int = CHUNK_SIZE,
) -> int:
    """
    Calls ``on_record`` once per event, in order, before the next one is decoded.
    Anything ``on_record`` raises stops the stream and propagates unchanged.
    Returns the number of records delivered.
    """
    count = 0
    for event in iter_clicks(file_path, chunk_size):
        on_record(event)
        count += 1
    return count
