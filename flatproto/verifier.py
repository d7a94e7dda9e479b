# -*- mode: python; tab-width: 4; indent-tabs-mode: nil; python-indent-offset: 4; coding: utf-8 -*-
"""
Verify a whole buffer against a layout before trusting it
"""
import logging
from typing import Any, NamedTuple, Optional, Union

from .error import VerificationError
from .layout import (
    FILE_IDENTIFIER_LENGTH,
    SIZE_PREFIX_LENGTH,
    SOFFSET,
    STRING,
    TABLE,
    UNION_TYPE,
    UOFFSET,
    UOFFSET_SIZE,
    VOFFSET,
    VOFFSET_SIZE,
    VTABLE_METADATA_FIELDS,
    ElementType,
    FieldKind,
    ScalarType,
    StructType,
    TableLayout,
)

logger = logging.getLogger(__name__)


class VerifierOptions(NamedTuple):
    max_depth: int = 64
    max_tables: int = 1000000
    check_alignment: bool = True


class Verifier(object):
    """Walks every table reachable from the root and checks all offsets and extents"""

    def __init__(self, data: Any, options: Optional[VerifierOptions] = None) -> None:
        self._data = data
        self._options = options or VerifierOptions()
        self._depth = 0
        self._tables = 0

    def _check(self, pos: int, size: int) -> None:
        if pos < 0 or size < 0 or pos + size > len(self._data):
            raise VerificationError(
                "Range of %d bytes outside of the %d byte buffer"
                % (size, len(self._data)),
                pos,
            )

    def _check_aligned(self, pos: int, alignment: int) -> None:
        if self._options.check_alignment and pos % alignment:
            raise VerificationError("Value not aligned to %d bytes" % alignment, pos)

    def _scalar(self, type: ScalarType, pos: int) -> Any:
        self._check(pos, type.width)
        self._check_aligned(pos, type.width)
        return type.unpack_from(self._data, pos)

    def _deref(self, pos: int) -> int:
        off = self._scalar(UOFFSET, pos)
        if off == 0 or off >= 0x80000000:
            raise VerificationError("Invalid offset %d" % off, pos)
        self._check(pos + off, 1)
        return pos + off

    def verify_buffer(
        self,
        layout: TableLayout,
        size_prefixed: bool = False,
        file_identifier: Optional[Union[str, bytes]] = None,
    ) -> None:
        base = 0
        if size_prefixed:
            size = self._scalar(UOFFSET, 0)
            if size != len(self._data) - SIZE_PREFIX_LENGTH:
                raise VerificationError(
                    "Size prefix %d does not match the %d bytes following it"
                    % (size, len(self._data) - SIZE_PREFIX_LENGTH),
                    0,
                )
            base = SIZE_PREFIX_LENGTH
        if file_identifier is not None:
            if isinstance(file_identifier, str):
                file_identifier = file_identifier.encode("utf-8")
            pos = base + UOFFSET_SIZE
            self._check(pos, FILE_IDENTIFIER_LENGTH)
            found = bytes(self._data[pos : pos + FILE_IDENTIFIER_LENGTH])
            if found != file_identifier:
                raise VerificationError(
                    "Expected file identifier %r but got %r" % (file_identifier, found),
                    pos,
                )
        self.verify_table(self._deref(base), layout)

    def verify_table(self, pos: int, layout: TableLayout) -> None:
        self._depth += 1
        self._tables += 1
        if self._depth > self._options.max_depth:
            raise VerificationError(
                "Tables nested deeper than %d" % self._options.max_depth, pos
            )
        if self._tables > self._options.max_tables:
            raise VerificationError(
                "More than %d tables" % self._options.max_tables, pos
            )

        vt = pos - self._scalar(SOFFSET, pos)
        vt_size = self._scalar(VOFFSET, vt)
        object_size = self._scalar(VOFFSET, vt + VOFFSET_SIZE)
        if vt_size < VOFFSET_SIZE * VTABLE_METADATA_FIELDS or vt_size % VOFFSET_SIZE:
            raise VerificationError("Invalid vtable size %d" % vt_size, vt)
        self._check(vt, vt_size)
        if object_size < UOFFSET_SIZE:
            raise VerificationError("Invalid table size %d" % object_size, pos)
        self._check(pos, object_size)

        def field_pos(slot: int, width: int) -> Optional[int]:
            entry = VOFFSET_SIZE * (VTABLE_METADATA_FIELDS + slot)
            if entry + VOFFSET_SIZE > vt_size:
                return None
            o = VOFFSET.unpack_from(self._data, vt + entry)
            if o == 0:
                return None
            if o + width > object_size:
                raise VerificationError(
                    "Field in slot %d extends past its table of %d bytes"
                    % (slot, object_size),
                    pos,
                )
            return pos + o

        for f in layout:
            p = field_pos(f.slot, f.byte_width)
            if f.kind == FieldKind.SCALAR:
                if p is not None:
                    self._scalar(f.type, p)
            elif f.kind == FieldKind.STRUCT:
                if p is not None:
                    self._check(p, f.type.size)
                    self._check_aligned(p, f.type.alignment)
            elif f.kind == FieldKind.UNION:
                tp = field_pos(f.slot - 1, UNION_TYPE.width)
                t = 0 if tp is None else self._scalar(UNION_TYPE, tp)
                if t == 0 or p is None:
                    continue
                # Variants unknown to this layout were added by a newer schema
                if t <= len(f.type.variants):
                    self.verify_table(self._deref(p), f.type.variant(t)[1])
                else:
                    self._deref(p)
            elif p is not None:
                target = self._deref(p)
                if f.kind == FieldKind.STRING:
                    self.verify_string(target)
                elif f.kind == FieldKind.TABLE:
                    self.verify_table(target, f.type)
                else:
                    self.verify_vector(target, f.type)
        self._depth -= 1

    def verify_string(self, pos: int) -> None:
        n = self._scalar(UOFFSET, pos)
        self._check(pos + UOFFSET_SIZE, n + 1)
        if self._data[pos + UOFFSET_SIZE + n] != 0:
            raise VerificationError("String is not zero terminated", pos)
        start = pos + UOFFSET_SIZE
        try:
            str(memoryview(self._data)[start : start + n], "utf-8")
        except UnicodeDecodeError as e:
            raise VerificationError(
                "String is not valid utf-8: %s" % e.reason, pos
            ) from e

    def verify_vector(self, pos: int, element: ElementType) -> None:
        layout = None
        if isinstance(element, TableLayout):
            layout, element = element, TABLE
        n = self._scalar(UOFFSET, pos)
        start = pos + UOFFSET_SIZE
        self._check(start, n * element.size)
        self._check_aligned(start, element.alignment)
        if isinstance(element, (ScalarType, StructType)):
            return
        for i in range(n):
            target = self._deref(start + i * UOFFSET_SIZE)
            if element == STRING:
                self.verify_string(target)
            elif layout is not None:
                self.verify_table(target, layout)


def verify(
    data: Any,
    layout: TableLayout,
    options: Optional[VerifierOptions] = None,
    size_prefixed: bool = False,
    file_identifier: Optional[Union[str, bytes]] = None,
) -> None:
    """Raise VerificationError unless data is a well formed buffer of layout"""
    try:
        Verifier(data, options).verify_buffer(layout, size_prefixed, file_identifier)
    except VerificationError as e:
        logger.debug("Verification of %s failed: %s", layout.name, e)
        raise
