# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

from __future__ import annotations

from gif import DecodeOptions, GifDocument, Mode
from parsing import ParseError

from collections.abc import Sequence
from typing import Any, Optional

import argparse
import logging
import sys

log = logging.getLogger(__name__)


def image_info(document: GifDocument) -> dict[str, Any]:
    header = document.header
    descriptor = document.frame.descriptor
    graphic_control = document.frame.graphic_control

    return {
        "width":      header.width,
        "height":     header.height,
        "gifversion": header.version.decode("ascii"),
        "animated":   header.looks_animated,
        "delay":      graphic_control.delay_time if graphic_control else None,
        "trans":      graphic_control.has_transparent_color if graphic_control else False,
        "transcolor": graphic_control.transparent_color_index if graphic_control else None,
        "bgcolor":    header.background_color_index,
        "numcolors":  len(header.color_table) if header.color_table else 0,
        "interlace":  descriptor.is_interlaced,
    }


def format_value(value: Any) -> str:
    if isinstance(value, bool):
        return ("no", "yes")[value]
    if value is None:
        return "none"

    return str(value)


def parse_arguments(argv: Optional[Sequence[str]]=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Print header information of GIF files.")

    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Log every block that is read."
    )
    parser.add_argument(
        "-x", "--extended", action="store_true", help="Also decompress the pixel data of the frame."
    )
    parser.add_argument(
        "-f", "--frame", type=int, default=0, help="Index of the frame to inspect (default=0)."
    )
    parser.add_argument(
        "--max-area", type=int, default=None,
        help="Refuse to decode images larger than this many pixels (extended mode only)."
    )
    parser.add_argument(
        "files", nargs="+", help="GIF files to read."
    )

    args = parser.parse_args(argv)
    if args.frame < 0:
        parser.error("frame index must not be negative")

    return args


def main(argv: Optional[Sequence[str]]=None) -> int:
    args = parse_arguments(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    options = DecodeOptions(
        mode=Mode.EXTENDED if args.extended else Mode.HEADER_ONLY,
        max_canvas_area=args.max_area,
    )

    failures = 0
    for filename in args.files:
        try:
            document = GifDocument.load_file(filename, args.frame, options)
        except (OSError, ParseError) as e:
            log.error("%s: %s", filename, e)
            failures += 1
            continue

        print(f"{filename}:")
        for key, value in image_info(document).items():
            print(4*" " + f"{key}: {format_value(value)}")

        if document.pixel_indices is not None:
            print(4*" " + f"pixels: {len(document.pixel_indices)}")

    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(main())
