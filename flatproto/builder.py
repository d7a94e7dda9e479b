# -*- mode: python; tab-width: 4; indent-tabs-mode: nil; python-indent-offset: 4; coding: utf-8 -*-
"""
Build flatproto buffers.

The buffer is filled from the end towards the start, so every object must be
completely written before anything that references it: strings, vectors and
nested tables first, then the table holding them, and the root table last.
"""
import contextlib
import logging
import struct
from typing import (
    Any,
    Dict,
    Iterable,
    Iterator,
    List,
    Mapping,
    NamedTuple,
    Optional,
    Sequence,
    Tuple,
    Type,
    Union,
)

from .error import BuilderError, SchemaError
from .layout import (
    FILE_IDENTIFIER_LENGTH,
    MAX_BUFFER_SIZE,
    SIZE_PREFIX_LENGTH,
    SOFFSET,
    SOFFSET_SIZE,
    STRING,
    TABLE,
    UINT8,
    UNION_TYPE,
    UOFFSET,
    UOFFSET_SIZE,
    VOFFSET,
    VOFFSET_SIZE,
    VTABLE_METADATA_FIELDS,
    ElementType,
    Field,
    FieldKind,
    OffsetType,
    ScalarType,
    StructType,
    TableLayout,
    align_padding,
)

logger = logging.getLogger(__name__)

MAX_SLOTS = 0xFFFF // VOFFSET_SIZE - VTABLE_METADATA_FIELDS


class OffsetOut(object):
    """Reference to a finished object inside a builder"""

    __slots__ = ["_builder", "_generation", "_offset"]

    def __init__(self, builder: "Builder", offset: int) -> None:
        """Private constructor. Use the create and end methods on the builder"""
        self._builder = builder
        self._generation = builder._generation
        self._offset = offset

    @property
    def offset(self) -> int:
        """Distance from the end of the buffer"""
        return self._offset

    def __repr__(self) -> str:
        return "%s(%d)" % (type(self).__name__, self._offset)


class StringOut(OffsetOut):
    __slots__ = []


class VectorOut(OffsetOut):
    __slots__ = []


class TableOut(OffsetOut):
    __slots__ = []


class _OpenVector(NamedTuple):
    element: ElementType
    count: int
    start: int
    byte_size: int


class Scope(object):
    """Result holder for the builder's context managers"""

    __slots__ = ["ref"]

    def __init__(self) -> None:
        self.ref: Optional[OffsetOut] = None


def _encode(s: Union[str, bytes]) -> bytes:
    if isinstance(s, str):
        return s.encode("utf-8")
    return bytes(s)


def _sort_key(key: Any) -> Any:
    # Readers compare string keys as raw bytes
    if isinstance(key, str):
        return key.encode("utf-8")
    return key


class Builder(object):
    """Responsible for building a buffer"""

    def __init__(
        self,
        initial_size: int = 1024,
        force_defaults: bool = False,
        share_strings: bool = False,
    ) -> None:
        if not 0 < initial_size <= MAX_BUFFER_SIZE:
            raise BuilderError("Invalid initial size %d" % initial_size)
        self._data = bytearray(initial_size)
        self._force_defaults = force_defaults
        self._share_strings = share_strings
        self._generation = 0
        self._clear()

    def _clear(self) -> None:
        self._head = len(self._data)
        self._minalign = 1
        self._vtable: Optional[Dict[int, int]] = None
        self._num_fields: Optional[int] = None
        self._last_slot = -1
        self._object_end = 0
        self._vtables: List[int] = []
        self._vector: Optional[_OpenVector] = None
        self._strings: Dict[bytes, int] = {}
        self._finished = False

    def reset(self) -> None:
        """Forget everything built so far and reuse the memory for a new buffer"""
        self._generation += 1
        self._data = bytearray(len(self._data))
        self._clear()

    def force_defaults(self, enabled: bool = True) -> None:
        """Write scalar fields even when they equal their default, so they can be
        mutated later"""
        self._force_defaults = enabled

    def offset(self) -> int:
        """Number of bytes written so far"""
        return len(self._data) - self._head

    # Low level writing

    def _reserve(self, n: int) -> None:
        if self._head >= n:
            return
        used = self.offset()
        if used + n > MAX_BUFFER_SIZE:
            raise BuilderError("Buffers can not exceed %d bytes" % MAX_BUFFER_SIZE)
        size = len(self._data)
        while size - used < n:
            size *= 2
        size = min(size, MAX_BUFFER_SIZE)
        grow = size - len(self._data)
        logger.debug("Growing builder from %d to %d bytes", len(self._data), size)
        self._data = bytearray(grow) + self._data
        self._head += grow

    def _prep(self, size: int, additional: int) -> None:
        """Pad so that after writing additional bytes the position is aligned to size,
        and make room for a value of size bytes after that"""
        if size > self._minalign:
            self._minalign = size
        pad = align_padding(self.offset() + additional, size)
        self._reserve(pad + size + additional)
        self._pad(pad)

    def _pad(self, n: int) -> None:
        self._head -= n
        self._data[self._head : self._head + n] = bytes(n)

    def _place(self, value: bytes) -> None:
        self._head -= len(value)
        self._data[self._head : self._head + len(value)] = value

    def _prepend_uoffset(self, off: int) -> None:
        self._prep(UOFFSET_SIZE, 0)
        self._place(UOFFSET.pack(self.offset() - off + UOFFSET_SIZE))

    # Protocol checks

    def _assert_not_finished(self) -> None:
        if self._finished:
            raise BuilderError(
                "Builder is finished, call reset() or use a new builder"
            )

    def _assert_not_nested(self, what: str) -> None:
        self._assert_not_finished()
        if self._vtable is not None:
            raise BuilderError("%s while a table is being built" % what)
        if self._vector is not None:
            raise BuilderError("%s while a vector is being built" % what)

    def _check_ref(self, ref: Any, kind: Type[OffsetOut]) -> int:
        if not isinstance(ref, kind):
            raise BuilderError("Expected %s but got %r" % (kind.__name__, ref))
        if ref._builder is not self or ref._generation != self._generation:
            raise BuilderError(
                "%r does not belong to this buffer, it was made by another "
                "builder or before reset()" % ref
            )
        if ref._offset > self.offset():
            raise BuilderError("%r points past the written data" % ref)
        return ref._offset

    # Strings

    def _write_string(self, b: bytes) -> int:
        self._prep(UOFFSET_SIZE, len(b) + 1)
        self._place(b + b"\0")
        self._place(UOFFSET.pack(len(b)))
        return self.offset()

    def create_string(self, s: Union[str, bytes]) -> StringOut:
        """Write a string, str values are utf-8 encoded"""
        if self._share_strings:
            return self.create_shared_string(s)
        self._assert_not_nested("create_string")
        return StringOut(self, self._write_string(_encode(s)))

    def create_shared_string(self, s: Union[str, bytes]) -> StringOut:
        """Write a string, or reuse an identical one written earlier"""
        self._assert_not_nested("create_shared_string")
        b = _encode(s)
        off = self._strings.get(b)
        if off is None:
            off = self._write_string(b)
            self._strings[b] = off
        return StringOut(self, off)

    # Vectors

    def create_byte_vector(self, b: bytes) -> VectorOut:
        """Write a vector of uint8, for instance a nested buffer"""
        self._assert_not_nested("create_byte_vector")
        b = bytes(b)
        self._prep(UOFFSET_SIZE, len(b))
        self._place(b)
        self._place(UOFFSET.pack(len(b)))
        return VectorOut(self, self.offset())

    def start_vector(self, element: ElementType, count: int) -> None:
        """Start a vector of count elements.

        Elements must be added with prepend, last element first.
        """
        self._assert_not_nested("start_vector")
        if isinstance(element, TableLayout):
            element = TABLE
        if not isinstance(element, (ScalarType, StructType, OffsetType)):
            raise BuilderError("Invalid vector element type %r" % (element,))
        if count < 0:
            raise BuilderError("Negative vector length %d" % count)
        byte_size = element.size * count
        self._prep(UOFFSET_SIZE, byte_size)
        self._prep(element.alignment, byte_size)
        self._vector = _OpenVector(element, count, self.offset(), byte_size)

    def prepend(self, value: Any) -> None:
        """Add the element before those already added to the open vector"""
        v = self._vector
        if v is None:
            self._assert_not_finished()
            raise BuilderError("prepend outside of a vector")
        el = v.element
        if self.offset() - v.start + el.size > v.byte_size:
            raise BuilderError("Vector declared with %d elements got more" % v.count)
        self._prepend_element(el, self._element_data(el, value))

    def _element_data(self, el: ElementType, value: Any) -> Union[bytes, int]:
        """Packed bytes of an inline element, or the offset of a referenced one"""
        if isinstance(el, (ScalarType, StructType)):
            return el.pack(value)
        return self._check_ref(value, StringOut if el == STRING else TableOut)

    def _prepend_element(self, el: ElementType, data: Union[bytes, int]) -> None:
        if isinstance(data, int):
            self._prepend_uoffset(data)
        else:
            self._prep(el.alignment, 0)
            self._place(data)

    def end_vector(self) -> VectorOut:
        v = self._vector
        if v is None:
            self._assert_not_finished()
            raise BuilderError("end_vector without start_vector")
        written = self.offset() - v.start
        if written != v.byte_size:
            raise BuilderError(
                "Vector declared with %d elements but only %d were added"
                % (v.count, written // v.element.size)
            )
        self._vector = None
        self._prep(UOFFSET_SIZE, 0)
        self._place(UOFFSET.pack(v.count))
        return VectorOut(self, self.offset())

    def create_vector(self, element: ElementType, values: Iterable[Any]) -> VectorOut:
        """Write a whole vector, values are given in their logical order.

        Every value is checked before anything is written, so a bad value
        leaves the builder as it was.
        """
        self._assert_not_nested("create_vector")
        if isinstance(element, TableLayout):
            element = TABLE
        if not isinstance(element, (ScalarType, StructType, OffsetType)):
            raise BuilderError("Invalid vector element type %r" % (element,))
        data = [self._element_data(element, value) for value in values]
        self.start_vector(element, len(data))
        for d in reversed(data):
            self._prepend_element(element, d)
        return self.end_vector()

    def create_sorted_vector(self, items: Iterable[Tuple[Any, TableOut]]) -> VectorOut:
        """Write a vector of tables ordered by key, for VectorIn.lookup_by_key.

        items are (key, table) pairs where key is the value of the table's key field.
        """
        ordered = sorted(items, key=lambda kv: _sort_key(kv[0]))
        return self.create_vector(TABLE, [t for _, t in ordered])

    @contextlib.contextmanager
    def vector(self, element: ElementType, count: int) -> Iterator[Scope]:
        self.start_vector(element, count)
        scope = Scope()
        yield scope
        scope.ref = self.end_vector()

    # Tables

    def start_table(self, num_fields: Optional[int] = None) -> None:
        """Start a table, fields must be added in increasing slot order"""
        self._assert_not_nested("start_table")
        if num_fields is not None and not 0 <= num_fields <= MAX_SLOTS:
            raise BuilderError("Invalid number of fields %d" % num_fields)
        self._vtable = {}
        self._num_fields = num_fields
        self._last_slot = -1
        self._object_end = self.offset()

    def _track_slot(self, slot: int) -> None:
        self._assert_not_finished()
        if self._vtable is None:
            raise BuilderError("Field %d added outside of a table" % slot)
        limit = MAX_SLOTS if self._num_fields is None else self._num_fields
        if not 0 <= slot < limit:
            raise BuilderError(
                "Slot %d out of range for a table of %d fields" % (slot, limit)
            )
        if slot <= self._last_slot:
            raise BuilderError(
                "Slot %d added after slot %d, slots must be added in increasing order"
                % (slot, self._last_slot)
            )
        self._last_slot = slot

    def add_field_scalar(
        self, slot: int, type: ScalarType, value: Any, default: Any = 0
    ) -> None:
        """Add a scalar field, skipped when value equals default unless defaults
        are forced"""
        data = type.pack(value)
        self._track_slot(slot)
        if value == default and not self._force_defaults:
            return
        self._prep(type.width, 0)
        self._place(data)
        self._vtable[slot] = self.offset()

    def add_field_offset(self, slot: int, ref: Optional[OffsetOut]) -> None:
        """Add a string, vector or table field. None leaves the field absent"""
        self._track_slot(slot)
        if ref is None:
            return
        off = self._check_ref(ref, OffsetOut)
        self._prepend_uoffset(off)
        self._vtable[slot] = self.offset()

    def add_field_struct(self, slot: int, type: StructType, value: Any) -> None:
        """Write a struct inline in the table. None leaves the field absent"""
        data = None if value is None else type.pack(value)
        self._track_slot(slot)
        if data is None:
            return
        self._prep(type.alignment, 0)
        self._place(data)
        self._vtable[slot] = self.offset()

    def add_field_union(
        self, slot: int, type_value: int, ref: Optional[TableOut]
    ) -> None:
        """Add the discriminant in slot - 1 and the value in slot"""
        if (int(type_value) == 0) != (ref is None):
            raise BuilderError(
                "Union discriminant %d does not match value %r" % (type_value, ref)
            )
        if ref is not None:
            self._check_ref(ref, TableOut)
        self.add_field_scalar(slot - 1, UNION_TYPE, int(type_value), 0)
        self.add_field_offset(slot, ref)

    def _find_vtable(self, vt: bytes) -> Optional[int]:
        for vt_offset in reversed(self._vtables):
            pos = len(self._data) - vt_offset
            if (
                VOFFSET.unpack_from(self._data, pos) == len(vt)
                and self._data[pos : pos + len(vt)] == vt
            ):
                return vt_offset
        return None

    def end_table(self) -> TableOut:
        """Write the table header and its vtable, reusing an identical vtable if
        one exists"""
        if self._vtable is None:
            self._assert_not_finished()
            raise BuilderError("end_table without start_table")
        self._prep(SOFFSET_SIZE, 0)
        self._place(SOFFSET.pack(0))
        object_offset = self.offset()
        object_size = object_offset - self._object_end
        if object_size > 0xFFFF:
            raise BuilderError("Table of %d bytes is too large" % object_size)

        slots = max(self._vtable) + 1 if self._vtable else 0
        entries = [
            object_offset - self._vtable[i] if i in self._vtable else 0
            for i in range(slots)
        ]
        vt = struct.pack(
            "<%dH" % (slots + VTABLE_METADATA_FIELDS),
            (slots + VTABLE_METADATA_FIELDS) * VOFFSET_SIZE,
            object_size,
            *entries
        )
        vt_offset = self._find_vtable(vt)
        if vt_offset is None:
            self._prep(VOFFSET_SIZE, len(vt))
            self._place(vt)
            vt_offset = self.offset()
            self._vtables.append(vt_offset)
        else:
            logger.debug(
                "Reusing vtable at %d for table at %d", vt_offset, object_offset
            )
        SOFFSET.pack_into(
            self._data, len(self._data) - object_offset, vt_offset - object_offset
        )
        self._vtable = None
        self._num_fields = None
        return TableOut(self, object_offset)

    @contextlib.contextmanager
    def table(self, num_fields: Optional[int] = None) -> Iterator[Scope]:
        self.start_table(num_fields)
        scope = Scope()
        yield scope
        scope.ref = self.end_table()

    # Layout driven building

    def add_field(self, field: Field, value: Any) -> None:
        """Add value for field, non inline values must already be written"""
        if field.kind == FieldKind.SCALAR:
            if value is None:
                value = field.default
            self.add_field_scalar(field.slot, field.type, value, field.default)
        elif field.kind == FieldKind.STRUCT:
            self.add_field_struct(field.slot, field.type, value)
        elif field.kind == FieldKind.UNION:
            if value is None:
                self.add_field_union(field.slot, 0, None)
            else:
                t, ref = value
                if isinstance(t, str):
                    t = field.type.type_of(t)
                self.add_field_union(field.slot, t, ref)
        else:
            self.add_field_offset(field.slot, value)

    def build_table(self, layout: TableLayout, values: Mapping[str, Any]) -> TableOut:
        """Write a table and everything it references from a mapping of field names"""
        unknown = [k for k in values if k not in layout]
        if unknown:
            raise SchemaError(
                "Table %s has no field %s" % (layout.name, ", ".join(unknown))
            )
        prepared: Dict[str, Any] = {}
        for f in layout.fields:
            value = values.get(f.name)
            if value is None:
                continue
            if f.deprecated:
                raise SchemaError("Field %s.%s is deprecated" % (layout.name, f.name))
            prepared[f.name] = self._build_child(f, value)
        self.start_table(layout.num_slots)
        for f in layout.fields:
            if f.name in prepared:
                self.add_field(f, prepared[f.name])
        return self.end_table()

    def _build_child(self, field: Field, value: Any) -> Any:
        if isinstance(value, OffsetOut):
            return value
        if field.kind == FieldKind.STRING:
            return self.create_string(value)
        if field.kind == FieldKind.VECTOR:
            return self._build_vector(field.type, value)
        if field.kind == FieldKind.TABLE:
            return self.build_table(field.type, value)
        if field.kind == FieldKind.UNION:
            t, payload = value
            if isinstance(t, str):
                t = field.type.type_of(t)
            if not isinstance(payload, OffsetOut):
                _, variant = field.type.variant(t)
                payload = self.build_table(variant, payload)
            return (t, payload)
        return value

    def _build_vector(self, element: ElementType, values: Sequence[Any]) -> VectorOut:
        if element == UINT8 and isinstance(values, (bytes, bytearray, memoryview)):
            return self.create_byte_vector(values)
        if element == STRING:
            values = [
                v if isinstance(v, StringOut) else self.create_string(v) for v in values
            ]
        elif isinstance(element, TableLayout):
            values = [
                v if isinstance(v, TableOut) else self.build_table(element, v)
                for v in values
            ]
        return self.create_vector(element, values)

    # Finishing

    def finish(
        self,
        root: TableOut,
        file_identifier: Optional[Union[str, bytes]] = None,
        size_prefixed: bool = False,
    ) -> bytes:
        """Write the root offset and return the finished buffer"""
        self._assert_not_nested("finish")
        off = self._check_ref(root, TableOut)
        ident = None
        prep_size = UOFFSET_SIZE
        if file_identifier is not None:
            ident = _encode(file_identifier)
            if len(ident) != FILE_IDENTIFIER_LENGTH:
                raise BuilderError(
                    "File identifier must be %d bytes, got %r"
                    % (FILE_IDENTIFIER_LENGTH, ident)
                )
            prep_size += FILE_IDENTIFIER_LENGTH
        if size_prefixed:
            prep_size += SIZE_PREFIX_LENGTH
        self._prep(self._minalign, prep_size)
        if ident is not None:
            self._place(ident)
        self._prepend_uoffset(off)
        if size_prefixed:
            self._place(UOFFSET.pack(self.offset()))
        self._finished = True
        logger.debug("Finished buffer of %d bytes", self.offset())
        return self.output()

    def output(self) -> bytes:
        """Return the finished buffer"""
        if not self._finished:
            raise BuilderError("Buffer is not finished")
        return bytes(self._data[self._head :])
