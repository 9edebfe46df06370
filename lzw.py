# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

from __future__ import annotations

from parsing import CorruptDictionary, Cursor, InvalidCodeSize, Parsed, TruncatedStream, parse_with

from enum import Enum, auto
from typing import Optional

import logging

MAX_CODE_SIZE = 12
DICTIONARY_SIZE = 1 << MAX_CODE_SIZE
STACK_LIMIT = 2 * DICTIONARY_SIZE

MINIMUM_CODE_SIZES = range(2, 9)

log = logging.getLogger(__name__)


class ReadStatus(Enum):
    END_OF_STREAM = auto()
    NEED_MORE_DATA = auto()


type CodeResult = int | ReadStatus


class CodeReader:
    def __init__(self, cursor: Cursor) -> None:
        self.cursor = cursor
        self.bits = 0
        self.bit_count = 0
        self.done = False

    def _fill(self) -> bool:
        if self.done or self.cursor.remaining < 1:
            return False

        length = self.cursor.buffer[self.cursor.position]
        if length == 0:
            self.cursor.skip(1)
            self.done = True
            return False

        if self.cursor.remaining < length + 1:
            return False

        self.cursor.skip(1)
        chunk = self.cursor.read(length)
        self.bits |= int.from_bytes(chunk, "little") << self.bit_count
        self.bit_count += 8*length

        return True

    def next_code(self, code_size: int) -> CodeResult:
        while self.bit_count < code_size:
            if not self._fill():
                if self.done and self.bit_count == 0:
                    return ReadStatus.END_OF_STREAM

                return ReadStatus.NEED_MORE_DATA

        code = self.bits & ((1 << code_size) - 1)
        self.bits >>= code_size
        self.bit_count -= code_size

        return code

    def finish(self) -> None:
        while not self.done:
            length = self.cursor.read_byte()
            if length == 0:
                self.done = True
            else:
                self.cursor.skip(length)


class LzwDecoder:
    def __init__(self, minimum_code_size: int) -> None:
        if minimum_code_size not in MINIMUM_CODE_SIZES:
            raise InvalidCodeSize(f"invalid minimum code size: {minimum_code_size}")

        self.minimum_code_size = minimum_code_size
        self.clear_code = 1 << minimum_code_size
        self.end_code = self.clear_code + 1

        self.prefix = [0] * DICTIONARY_SIZE
        self.suffix = list(range(self.clear_code)) + [0] * (DICTIONARY_SIZE - self.clear_code)
        self.next_code = self.clear_code + 2

        self.stack: list[int] = []
        self.reset()

    def reset(self) -> None:
        # only the entries added since the last clear are dirty
        first_entry = self.clear_code + 2
        dirty = self.next_code - first_entry
        self.prefix[first_entry:self.next_code] = [0] * dirty
        self.suffix[first_entry:self.next_code] = [0] * dirty

        self.code_size = self.minimum_code_size + 1
        self.next_code = self.clear_code + 2
        self.threshold = self.clear_code * 2

        self.fresh = True
        self.first_code = 0
        self.old_code = 0

    def read(self, reader: CodeReader) -> int:
        result = reader.next_code(self.code_size)
        if isinstance(result, ReadStatus):
            raise TruncatedStream(f"compressed data ended before the end code ({result.name.lower()})")

        return result

    def expand(self, code: int) -> list[int]:
        stack = self.stack
        stack.clear()

        in_code = code
        if code >= self.next_code:
            stack.append(self.first_code)
            code = self.old_code

        while code >= self.clear_code:
            stack.append(self.suffix[code])
            if self.prefix[code] == code:
                raise CorruptDictionary(f"circular dictionary entry: {code}")

            if len(stack) > STACK_LIMIT:
                raise CorruptDictionary("dictionary chain exceeds the stack limit")

            code = self.prefix[code]

        self.first_code = self.suffix[code]
        stack.append(self.first_code)

        if self.next_code < DICTIONARY_SIZE:
            self.prefix[self.next_code] = self.old_code
            self.suffix[self.next_code] = self.first_code
            self.next_code += 1

            if self.next_code >= self.threshold and self.threshold < DICTIONARY_SIZE:
                self.threshold *= 2
                self.code_size += 1

        self.old_code = in_code

        return stack

    def decode(self, reader: CodeReader, max_output: Optional[int]=None) -> bytes:
        output = bytearray()
        code_count = 0

        while True:
            code = self.read(reader)
            code_count += 1

            if code == self.clear_code:
                self.reset()
                continue

            if code == self.end_code:
                break

            if self.fresh:
                if code > self.clear_code:
                    raise CorruptDictionary(f"first code is not a literal: {code}")

                self.fresh = False
                self.first_code = self.old_code = code
                sequence = [code]
            else:
                sequence = self.expand(code)[::-1]

            if max_output is None or len(output) < max_output:
                output.extend(sequence)

        if max_output is not None:
            del output[max_output:]

        log.debug("decoded %d codes into %d bytes", code_count, len(output))

        return bytes(output)


def decompress_from(cursor: Cursor, max_output: Optional[int]=None) -> bytes:
    decoder = LzwDecoder(cursor.read_byte())
    reader = CodeReader(cursor)

    data = decoder.decode(reader, max_output)
    reader.finish()

    return data


def decompress(data: bytes | bytearray | memoryview, max_output: Optional[int]=None) -> Parsed[bytes]:
    return parse_with(decompress_from, data, max_output)
