# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

from __future__ import annotations

from parsing import (
    BadSignature, CanvasTooLarge, Cursor, FrameIndexOutOfRange, InvalidDimensions, MalformedExtension,
    ParseError, Parsed, TruncatedColorTable, TruncatedStream, UnrecognizedBlock, needs, parse_with
)
import lzw

from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum, IntEnum, auto
from itertools import batched, chain
from os import PathLike
from struct import unpack

from typing import Any, ClassVar, Optional, overload

import logging
import re

type SubBlock = bytes

SIGNATURES = (b"GIF87a", b"GIF89a")

# (first row, row step) of each interlace pass
INTERLACE_PASSES = ((0, 8), (4, 8), (2, 4), (1, 2))

# graphic control extension followed by an image or another extension
ANIMATION_PATTERN = re.compile(rb"\x00\x21\xF9\x04.{4}\x00[\x2C\x21]", re.DOTALL)

log = logging.getLogger(__name__)


class BlockType(IntEnum):
    EXTENSION = 0x21
    IMAGE     = 0x2C
    TRAILER   = 0x3B


class ExtensionType(IntEnum):
    PLAIN_TEXT      = 0x01
    GRAPHIC_CONTROL = 0xF9
    COMMENT         = 0xFE
    APPLICATION     = 0xFF


class Mode(Enum):
    HEADER_ONLY = auto()
    EXTENDED    = auto()


@dataclass(frozen=True)
class DecodeOptions:
    mode: Mode=Mode.HEADER_ONLY
    keep_comments: bool=True
    max_canvas_area: Optional[int]=None  # pixels; only enforced when decoding pixels

    def check_area(self, width: int, height: int, what: str) -> None:
        if self.mode is not Mode.EXTENDED or self.max_canvas_area is None:
            return

        if width*height > self.max_canvas_area:
            raise CanvasTooLarge(f"{what} of {width}x{height} exceeds {self.max_canvas_area} pixels")


@dataclass(frozen=True)
class Color:
    red: int
    green: int
    blue: int


@dataclass(frozen=True)
class ColorTable(Sequence[Color]):
    MAX_SIZE: ClassVar[int] = 256

    data: tuple[Color, ...]
    is_sorted: bool=False

    @staticmethod
    def decode(cursor: Cursor, size: int, is_sorted: bool=False) -> ColorTable:
        if size not in range(2, ColorTable.MAX_SIZE + 1) or size & (size - 1):
            raise ParseError(f"invalid color table size: {size}")

        if cursor.remaining < 3*size:
            raise TruncatedColorTable(f"color table of {size} colors needs {3*size} bytes, {cursor.remaining} left")

        data = tuple(Color(*rgb) for rgb in batched(cursor.read(3*size), 3))

        return ColorTable(data, is_sorted)

    @staticmethod
    def load(data: bytes | bytearray | memoryview, count: int) -> Parsed[ColorTable]:
        return parse_with(ColorTable.decode, data, count)

    def to_rgb(self) -> bytes:
        return bytes(chain.from_iterable((color.red, color.green, color.blue) for color in self.data))

    def to_rgb_quad(self) -> bytes:
        return bytes(chain.from_iterable((color.blue, color.green, color.red, 0) for color in self.data))

    def __len__(self) -> int:
        return len(self.data)

    @overload
    def __getitem__(self, i: int, /) -> Color: ...
    @overload
    def __getitem__(self, i: slice[Any, Any, Any], /) -> Sequence[Color]: ...

    def __getitem__(self, i: int | slice[Any, Any, Any], /) -> Color | Sequence[Color]:
        return self.data[i]


def table_size(packed_fields: int) -> int:
    return 2 << (packed_fields & 7)


@dataclass(frozen=True)
class ScreenHeader:
    version: bytes
    width: int
    height: int
    color_resolution: int
    is_sorted: bool
    global_color_table_size: int
    background_color_index: int
    pixel_aspect_ratio: int
    color_table: Optional[ColorTable]
    looks_animated: bool

    @property
    def has_global_color_table(self) -> bool:
        return self.color_table is not None

    @staticmethod
    def decode(cursor: Cursor) -> ScreenHeader:
        available = cursor.peek_rest()[:len(SIGNATURES[0])].tobytes()
        if not any(signature.startswith(available) for signature in SIGNATURES):
            raise BadSignature(f"invalid signature: {available!r}")

        # heuristic, see DESIGN.md; counts raw byte patterns, not frames
        looks_animated = len(ANIMATION_PATTERN.findall(cursor.peek_rest())) > 1

        version = cursor.read(len(SIGNATURES[0])).tobytes()

        return decode_screen_descriptor(cursor, version, looks_animated)

    @staticmethod
    def parse(data: bytes | bytearray | memoryview) -> Parsed[ScreenHeader]:
        return parse_with(ScreenHeader.decode, data)


@needs(7)
def decode_screen_descriptor(cursor: Cursor, version: bytes, looks_animated: bool) -> ScreenHeader:
    width, height, packed_fields, background_color_index, pixel_aspect_ratio = unpack("<HHBBB", cursor.read(7))
    if not width or not height:
        raise InvalidDimensions(f"invalid logical screen size: {width}x{height}")

    has_color_table = bool((packed_fields >> 7) & 1)
    color_resolution =     (packed_fields >> 4) & 7
    is_sorted =       bool((packed_fields >> 3) & 1)
    color_table_size = table_size(packed_fields)

    color_table = None
    if has_color_table:
        color_table = ColorTable.decode(cursor, color_table_size, is_sorted)

    return ScreenHeader(
        version, width, height, color_resolution, is_sorted, color_table_size,
        background_color_index, pixel_aspect_ratio, color_table, looks_animated
    )


@dataclass(frozen=True)
class ImageDescriptor:
    left: int
    top: int
    width: int
    height: int
    is_interlaced: bool
    is_sorted: bool
    local_color_table_size: int
    color_table: Optional[ColorTable]

    @property
    def has_local_color_table(self) -> bool:
        return self.color_table is not None

    @staticmethod
    @needs(9)
    def decode(cursor: Cursor) -> ImageDescriptor:
        left, top, width, height, packed_fields = unpack("<HHHHB", cursor.read(9))
        if not width or not height:
            raise InvalidDimensions(f"invalid image size: {width}x{height}")

        has_color_table = bool((packed_fields >> 7) & 1)
        is_interlaced =   bool((packed_fields >> 6) & 1)
        is_sorted =       bool((packed_fields >> 5) & 1)
        color_table_size = table_size(packed_fields)

        color_table = None
        if has_color_table:
            color_table = ColorTable.decode(cursor, color_table_size, is_sorted)

        return ImageDescriptor(left, top, width, height, is_interlaced, is_sorted, color_table_size, color_table)

    @staticmethod
    def parse(data: bytes | bytearray | memoryview) -> Parsed[ImageDescriptor]:
        return parse_with(ImageDescriptor.decode, data)


def decode_subblock(cursor: Cursor) -> SubBlock:
    length = cursor.read_byte()
    return cursor.read(length).tobytes()


TERMINATOR_SUBBLOCK = b""


def skip_data_block(cursor: Cursor) -> None:
    while True:
        length = cursor.read_byte()
        if length == 0:
            break

        cursor.skip(length)


@dataclass(frozen=True)
class GraphicControlExtension:
    disposal_method: int
    waits_for_user_input: bool
    has_transparent_color: bool
    delay_time: int
    transparent_color_index: int

    @staticmethod
    def decode(cursor: Cursor) -> GraphicControlExtension:
        block = decode_subblock(cursor)
        if len(block) != 4:
            raise MalformedExtension(f"invalid graphic control extension block size: {len(block)}")

        skip_data_block(cursor)

        packed_fields, delay_time, transparent_color_index = unpack("<BHB", block)

        has_transparent_color = bool((packed_fields >> 0) & 1)
        waits_for_user_input  = bool((packed_fields >> 1) & 1)
        disposal_method =            (packed_fields >> 2) & 7

        return GraphicControlExtension(
            disposal_method, waits_for_user_input, has_transparent_color, delay_time, transparent_color_index
        )


def decode_comment(cursor: Cursor) -> str:
    # only the first sub-block is kept
    block = decode_subblock(cursor)
    if block != TERMINATOR_SUBBLOCK:
        skip_data_block(cursor)

    return block.decode("latin-1")


def deinterlace(data: bytes, width: int, height: int) -> bytes:
    if len(data) != width*height:
        raise ValueError(f"expected {width*height} bytes, got {len(data)}")

    rows = [data[i:i + width] for i in range(0, len(data), width)]
    result: list[bytes] = [b""] * height

    end = 0
    for initial, stride in INTERLACE_PASSES:
        start, end = end, end + len(range(initial, height, stride))
        result[initial::stride] = rows[start:end]

    return b"".join(result)


def decode_pixels(cursor: Cursor, descriptor: ImageDescriptor) -> bytes:
    size = descriptor.width * descriptor.height
    data = lzw.decompress_from(cursor, max_output=size)
    if len(data) < size:
        raise TruncatedStream(f"image data holds {len(data)} of {size} pixels")

    if descriptor.is_interlaced:
        data = deinterlace(data, descriptor.width, descriptor.height)

    return data


def skip_pixels(cursor: Cursor) -> None:
    cursor.skip(1)  # minimum code size
    skip_data_block(cursor)


@dataclass(frozen=True)
class DecodedFrame:
    index: int
    descriptor: ImageDescriptor
    graphic_control: Optional[GraphicControlExtension]
    comment: Optional[str]
    pixel_indices: Optional[bytes]


# in header-only mode the selected frame is returned right after its
# descriptor, leaving the cursor inside its image data
class BlockWalker:
    def __init__(self, cursor: Cursor, options: DecodeOptions) -> None:
        self.cursor = cursor
        self.options = options
        self.frame_count = 0

        self.graphic_control: Optional[GraphicControlExtension] = None
        self.comment: Optional[str] = None

    def next_frame(self, selected: bool=True) -> Optional[DecodedFrame]:
        while True:
            offset = self.cursor.position
            block_type = self.cursor.read_byte()

            match block_type:
                case BlockType.EXTENSION:
                    self.read_extension()
                case BlockType.IMAGE:
                    log.debug("image %d at offset %d", self.frame_count, offset)
                    return self.read_image(selected)
                case BlockType.TRAILER:
                    log.debug("trailer at offset %d", offset)
                    return None
                case _:
                    raise UnrecognizedBlock(f"unknown block type 0x{block_type:02X} at offset {offset}")

    def read_extension(self) -> None:
        label = self.cursor.read_byte()
        log.debug("extension 0x%02X at offset %d", label, self.cursor.position - 2)

        match label:
            case ExtensionType.GRAPHIC_CONTROL:
                self.graphic_control = GraphicControlExtension.decode(self.cursor)
            case ExtensionType.COMMENT:
                comment = decode_comment(self.cursor)
                if self.options.keep_comments:
                    self.comment = comment
            case _:
                skip_data_block(self.cursor)

    def read_image(self, selected: bool) -> DecodedFrame:
        descriptor = ImageDescriptor.decode(self.cursor)
        self.options.check_area(descriptor.width, descriptor.height, "image")

        index = self.frame_count
        self.frame_count += 1

        graphic_control, comment = self.graphic_control, self.comment
        self.graphic_control = self.comment = None

        pixel_indices = None
        if self.options.mode is Mode.EXTENDED:
            pixel_indices = decode_pixels(self.cursor, descriptor)
        elif not selected:
            skip_pixels(self.cursor)

        return DecodedFrame(index, descriptor, graphic_control, comment, pixel_indices)


@dataclass(frozen=True)
class GifDocument:
    header: ScreenHeader
    frame: DecodedFrame
    options: DecodeOptions
    loaded: bool=True

    @property
    def width(self) -> int:
        return self.header.width

    @property
    def height(self) -> int:
        return self.header.height

    @property
    def color_table(self) -> Optional[ColorTable]:
        if self.frame.descriptor.color_table is not None:
            return self.frame.descriptor.color_table

        return self.header.color_table

    @property
    def pixel_indices(self) -> Optional[bytes]:
        return self.frame.pixel_indices

    @staticmethod
    def open(data: bytes | bytearray | memoryview, frame_index: int=0, options: Optional[DecodeOptions]=None) -> GifDocument:
        if options is None:
            options = DecodeOptions()

        if frame_index < 0:
            raise FrameIndexOutOfRange(f"invalid frame index: {frame_index}")

        cursor = Cursor(data)
        header = ScreenHeader.decode(cursor)
        options.check_area(header.width, header.height, "logical screen")

        walker = BlockWalker(cursor, options)
        while True:
            frame = walker.next_frame(selected=walker.frame_count == frame_index)
            if frame is None:
                raise FrameIndexOutOfRange(f"frame {frame_index} requested, stream has {walker.frame_count}")

            if frame.index == frame_index:
                return GifDocument(header, frame, options)

    @staticmethod
    def load_file(path: str | PathLike[str], frame_index: int=0, options: Optional[DecodeOptions]=None) -> GifDocument:
        with open(path, "rb") as handle:
            data = handle.read()

        log.debug("read %d bytes from %s", len(data), path)

        return GifDocument.open(data, frame_index, options)
