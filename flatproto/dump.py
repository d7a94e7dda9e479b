# -*- mode: python; tab-width: 4; indent-tabs-mode: nil; python-indent-offset: 4; coding: utf-8 -*-
"""
Print buffers for debugging
"""
import logging
import sys
from typing import Iterator, Optional

from .error import VerificationError
from .layout import SIZE_PREFIX_LENGTH, UOFFSET
from .reader import open_buffer

logger = logging.getLogger(__name__)

SAME = "\033[0m"
FOUND = "\033[91m"


def get_v(data: bytes, i: int) -> int:
    if i < len(data):
        return data[i]
    return -1


def hexdump(
    data: bytes, other: Optional[bytes] = None, color: bool = False
) -> Iterator[str]:
    """Yield 16 bytes per line with offsets and printable characters.

    If other is given the bytes of data that differ from it are marked.
    """
    if other is None:
        other = data

    def mark(j: int, c: str) -> str:
        if not color:
            return ""
        return SAME if get_v(other, j) == get_v(data, j) else c

    for i in range(0, max(len(data), len(other)), 16):
        line = ["%08X | " % i]
        for j in range(i, i + 16):
            line.append(mark(j, FOUND))
            line.append("%02X" % data[j] if j < len(data) else "  ")
            if j % 4 == 3:
                line.append(" ")
        if color:
            line.append(SAME)
        line.append("| ")
        for j in range(i, i + 16):
            line.append(mark(j, FOUND))
            if j < len(data) and 32 <= data[j] <= 126:
                line.append(chr(data[j]))
            elif j < len(data):
                line.append(".")
            else:
                line.append(" ")
        if color:
            line.append(SAME)
        yield "".join(line).rstrip()


def describe(data: bytes, size_prefixed: bool = False) -> Iterator[str]:
    """Yield a description of the root of a buffer"""
    reader = open_buffer(data, size_prefixed=size_prefixed)
    root = reader.root()
    base = SIZE_PREFIX_LENGTH if size_prefixed else 0
    yield "size: %d bytes" % len(data)
    if size_prefixed:
        yield "size prefix: %d" % UOFFSET.unpack_from(data, 0)
    yield "root offset: %d" % UOFFSET.unpack_from(data, base)
    ident = reader.identifier
    if len(ident) == 4 and all(32 <= c <= 126 for c in ident):
        yield "identifier: %s" % ident.decode("ascii")
    vt = root.vtable
    yield "root table: %d (%d bytes)" % (root.position, vt.object_size)
    yield "vtable: %d (%d bytes, %d slots)" % (vt.position, vt.byte_size, len(vt))
    for slot, o in enumerate(vt):
        if o:
            yield "  slot %d: +%d" % (slot, o)
        else:
            yield "  slot %d: absent" % slot


def read_in(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()


def run_hexdump(args) -> int:
    data = read_in(args.file)
    other = read_in(args.against) if args.against else None
    color = other is not None and sys.stdout.isatty()
    for line in hexdump(data, other, color):
        print(line)
    if other is not None and other != data:
        return 1
    return 0


def run_inspect(args) -> int:
    data = read_in(args.file)
    try:
        for line in describe(data, args.size_prefixed):
            print(line)
        if args.identifier is not None:
            open_buffer(
                data,
                size_prefixed=args.size_prefixed,
                file_identifier=args.identifier,
            )
    except VerificationError as e:
        logger.debug("Inspecting %s failed", args.file, exc_info=True)
        print("Invalid buffer: %s" % e, file=sys.stderr)
        return 1
    return 0


def setup(subparsers) -> None:
    cmd = subparsers.add_parser("hexdump", help="Print a buffer as hex")
    cmd.add_argument("file", help="Buffer to print")
    cmd.add_argument("--against", help="Mark the bytes that differ from this buffer")
    cmd.set_defaults(func=run_hexdump)

    cmd = subparsers.add_parser("inspect", help="Describe the root table of a buffer")
    cmd.add_argument("file", help="Buffer to inspect")
    cmd.add_argument(
        "--size-prefixed", action="store_true", help="Buffer has a size prefix"
    )
    cmd.add_argument("--identifier", help="Require this file identifier")
    cmd.set_defaults(func=run_inspect)
