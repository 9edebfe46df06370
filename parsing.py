from __future__ import annotations

from functools import wraps

from collections.abc import Callable
from typing import Protocol


class ParseError(ValueError): ...

class BadSignature(ParseError): ...
class InvalidDimensions(ParseError): ...
class TruncatedColorTable(ParseError): ...
class TruncatedStream(ParseError): ...
class UnrecognizedBlock(ParseError): ...
class CorruptDictionary(ParseError): ...
class FrameIndexOutOfRange(ParseError): ...
class InvalidCodeSize(ParseError): ...
class MalformedExtension(ParseError): ...
class CanvasTooLarge(ParseError): ...


class Cursor:
    def __init__(self, buffer: bytes | bytearray | memoryview, position: int=0) -> None:
        self.buffer = memoryview(buffer)
        self.position = position

    @property
    def remaining(self) -> int:
        return len(self.buffer) - self.position

    def read(self, length: int) -> memoryview:
        if length > self.remaining:
            raise TruncatedStream(f"unexpected end of stream at offset {self.position}")

        data = self.buffer[self.position:self.position + length]
        self.position += length

        return data

    def read_byte(self) -> int:
        if self.remaining < 1:
            raise TruncatedStream(f"unexpected end of stream at offset {self.position}")

        byte = self.buffer[self.position]
        self.position += 1

        return byte

    def skip(self, length: int) -> None:
        self.read(length)

    def peek_rest(self) -> memoryview:
        return self.buffer[self.position:]


type Parsed[T] = tuple[T, int]


class Parser[**P, R](Protocol):
    def __call__(self, cursor: Cursor, *args: P.args, **kwargs: P.kwargs) -> R:
        ...


def needs[**P, R](length: int) -> Callable[[Parser[P, R]], Parser[P, R]]:
    def wrapper(f: Parser[P, R]) -> Parser[P, R]:
        @wraps(f)
        def inner(cursor: Cursor, *args: P.args, **kwargs: P.kwargs) -> R:
            if cursor.remaining < length:
                raise TruncatedStream(f"unexpected end of stream at offset {cursor.position}")

            return f(cursor, *args, **kwargs)

        return inner

    return wrapper


def parse_with[**P, T](decoder: Parser[P, T], data: bytes | bytearray | memoryview, *args: P.args, **kwargs: P.kwargs) -> Parsed[T]:
    cursor = Cursor(data)
    value = decoder(cursor, *args, **kwargs)

    return value, cursor.position
