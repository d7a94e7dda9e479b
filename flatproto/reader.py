# -*- mode: python; tab-width: 4; indent-tabs-mode: nil; python-indent-offset: 4; coding: utf-8 -*-
"""
Read flatproto buffers without decoding them.

Views hold a reader and an absolute position, every field is looked up
through the table's vtable when it is accessed. Two readers implement the
primitive reads: VerifyingReader checks every position and offset before it
is used, TrustedReader does not and should only be used on data that has
already been verified.
"""
import logging
from typing import (
    Any,
    ClassVar,
    Iterator,
    Optional,
    Sequence,
    Tuple,
    Union,
)

from .error import (
    OutOfRangeError,
    ReadOnlyBufferError,
    SchemaError,
    UnionTypeError,
    VerificationError,
)
from .layout import (
    FILE_IDENTIFIER_LENGTH,
    INT8,
    SIZE_PREFIX_LENGTH,
    SOFFSET,
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
    ScalarType,
    StructType,
    TableLayout,
    UnionLayout,
)

logger = logging.getLogger(__name__)

Data = Union[bytes, bytearray, memoryview]


class Reader(object):
    """Primitive reads over a finished buffer"""

    trusted: ClassVar[bool] = False

    def __init__(
        self,
        data: Data,
        size_prefixed: bool = False,
        file_identifier: Optional[Union[str, bytes]] = None,
        layout: Optional[TableLayout] = None,
    ) -> None:
        self._data = data
        self._base = SIZE_PREFIX_LENGTH if size_prefixed else 0
        self.layout = layout
        if size_prefixed:
            self._check(0, SIZE_PREFIX_LENGTH)
            size = UOFFSET.unpack_from(data, 0)
            if size > len(data) - SIZE_PREFIX_LENGTH:
                raise VerificationError(
                    "Size prefix %d exceeds the %d bytes available"
                    % (size, len(data) - SIZE_PREFIX_LENGTH),
                    0,
                )
        if file_identifier is not None:
            if not has_identifier(data, file_identifier, size_prefixed):
                raise VerificationError(
                    "Expected file identifier %r but got %r"
                    % (file_identifier, self.identifier)
                )

    @property
    def data(self) -> Data:
        return self._data

    @property
    def writable(self) -> bool:
        if isinstance(self._data, bytearray):
            return True
        return isinstance(self._data, memoryview) and not self._data.readonly

    @property
    def identifier(self) -> bytes:
        pos = self._base + UOFFSET_SIZE
        return bytes(self._data[pos : pos + FILE_IDENTIFIER_LENGTH])

    def root(self, layout: Optional[TableLayout] = None) -> "TableIn":
        """Return the root table of the buffer"""
        return TableIn(self, self._deref(self._base), layout or self.layout)

    def verify(self, layout: Optional[TableLayout] = None, options: Any = None) -> None:
        """Verify the whole buffer against layout, raising VerificationError"""
        from .verifier import verify

        layout = layout or self.layout
        if layout is None:
            raise SchemaError("A layout is needed to verify a buffer")
        verify(self._data, layout, options, size_prefixed=self._base != 0)

    # Primitive reads. Subclasses decide how much to check.

    def _check(self, pos: int, size: int) -> None:
        pass

    def _scalar(self, type: ScalarType, pos: int) -> Any:
        return type.unpack_from(self._data, pos)

    def _deref(self, pos: int) -> int:
        """Absolute position pointed to by the uoffset stored at pos"""
        return pos + UOFFSET.unpack_from(self._data, pos)

    def _table(self, pos: int) -> Tuple[int, int]:
        """Position and byte size of the vtable of the table at pos"""
        vt = pos - SOFFSET.unpack_from(self._data, pos)
        return vt, VOFFSET.unpack_from(self._data, vt)

    def _vector(self, pos: int, element_size: int) -> int:
        """Number of elements of the vector at pos"""
        return UOFFSET.unpack_from(self._data, pos)

    def _string(self, pos: int) -> int:
        """Byte length of the string at pos"""
        return UOFFSET.unpack_from(self._data, pos)

    def _slice(self, pos: int, size: int) -> memoryview:
        return memoryview(self._data)[pos : pos + size]

    def _text(self, pos: int, size: int) -> str:
        """Decode size bytes of utf-8 at pos"""
        return str(self._slice(pos, size), "utf-8")

    def _write(self, pos: int, value: bytes) -> None:
        if not self.writable:
            raise ReadOnlyBufferError()
        self._data[pos : pos + len(value)] = value

    def _nested(self, data: memoryview) -> "Reader":
        return type(self)(data)


class TrustedReader(Reader):
    """Reader that does no checking, for buffers known to be well formed"""

    trusted = True


class VerifyingReader(Reader):
    """Reader that checks every access, malformed input raises VerificationError"""

    def _check(self, pos: int, size: int) -> None:
        if pos < 0 or size < 0 or pos + size > len(self._data):
            raise VerificationError(
                "Reading %d bytes outside of the %d byte buffer"
                % (size, len(self._data)),
                pos,
            )

    def _scalar(self, type: ScalarType, pos: int) -> Any:
        self._check(pos, type.width)
        return type.unpack_from(self._data, pos)

    def _deref(self, pos: int) -> int:
        self._check(pos, UOFFSET_SIZE)
        off = UOFFSET.unpack_from(self._data, pos)
        if off == 0 or off >= 0x80000000:
            raise VerificationError("Invalid offset %d" % off, pos)
        if pos + off >= len(self._data):
            raise VerificationError("Offset %d points outside of the buffer" % off, pos)
        return pos + off

    def _table(self, pos: int) -> Tuple[int, int]:
        self._check(pos, UOFFSET_SIZE)
        vt = pos - SOFFSET.unpack_from(self._data, pos)
        self._check(vt, VOFFSET_SIZE * VTABLE_METADATA_FIELDS)
        size = VOFFSET.unpack_from(self._data, vt)
        object_size = VOFFSET.unpack_from(self._data, vt + VOFFSET_SIZE)
        if size < VOFFSET_SIZE * VTABLE_METADATA_FIELDS or size % VOFFSET_SIZE:
            raise VerificationError("Invalid vtable size %d" % size, vt)
        self._check(vt, size)
        if object_size < UOFFSET_SIZE:
            raise VerificationError("Invalid table size %d" % object_size, pos)
        self._check(pos, object_size)
        return vt, size

    def _vector(self, pos: int, element_size: int) -> int:
        self._check(pos, UOFFSET_SIZE)
        n = UOFFSET.unpack_from(self._data, pos)
        self._check(pos + UOFFSET_SIZE, n * element_size)
        return n

    def _string(self, pos: int) -> int:
        n = self._vector(pos, 1)
        self._check(pos + UOFFSET_SIZE + n, 1)
        if self._data[pos + UOFFSET_SIZE + n] != 0:
            raise VerificationError("String is not zero terminated", pos)
        return n

    def _slice(self, pos: int, size: int) -> memoryview:
        self._check(pos, size)
        return memoryview(self._data)[pos : pos + size]

    def _text(self, pos: int, size: int) -> str:
        try:
            return super()._text(pos, size)
        except UnicodeDecodeError as e:
            raise VerificationError(
                "String is not valid utf-8: %s" % e.reason, pos
            ) from e

    def _write(self, pos: int, value: bytes) -> None:
        self._check(pos, len(value))
        super()._write(pos, value)


def has_identifier(
    data: Data, file_identifier: Union[str, bytes], size_prefixed: bool = False
) -> bool:
    """Return True if the buffer carries file_identifier after its root offset"""
    if isinstance(file_identifier, str):
        file_identifier = file_identifier.encode("utf-8")
    pos = (SIZE_PREFIX_LENGTH if size_prefixed else 0) + UOFFSET_SIZE
    if len(data) < pos + FILE_IDENTIFIER_LENGTH:
        return False
    return bytes(data[pos : pos + FILE_IDENTIFIER_LENGTH]) == file_identifier


def open_buffer(
    data: Data,
    trusted: bool = False,
    size_prefixed: bool = False,
    file_identifier: Optional[Union[str, bytes]] = None,
    layout: Optional[TableLayout] = None,
) -> Reader:
    """Open a finished buffer for reading. Verifying unless trusted is given"""
    cls = TrustedReader if trusted else VerifyingReader
    logger.debug("Opening %d byte buffer with %s", len(data), cls.__name__)
    return cls(data, size_prefixed, file_identifier, layout)


def get_root(
    data: Data, layout: Optional[TableLayout] = None, **kwargs: Any
) -> "TableIn":
    """Return the root table of data, see open_buffer for the options"""
    return open_buffer(data, layout=layout, **kwargs).root()


class VTableIn(object):
    """Class for inspecting a vtable"""

    __slots__ = ["_reader", "_pos", "_size"]

    def __init__(self, reader: Reader, pos: int, size: int) -> None:
        self._reader = reader
        self._pos = pos
        self._size = size

    @property
    def position(self) -> int:
        return self._pos

    @property
    def byte_size(self) -> int:
        return self._size

    @property
    def object_size(self) -> int:
        return self._reader._scalar(VOFFSET, self._pos + VOFFSET_SIZE)

    def __len__(self) -> int:
        return self._size // VOFFSET_SIZE - VTABLE_METADATA_FIELDS

    def __getitem__(self, slot: int) -> int:
        """Offset of slot inside its table, 0 when absent"""
        if not 0 <= slot < len(self):
            return 0
        return self._reader._scalar(
            VOFFSET, self._pos + VOFFSET_SIZE * (VTABLE_METADATA_FIELDS + slot)
        )

    def __iter__(self) -> Iterator[int]:
        for i in range(len(self)):
            yield self[i]

    def __str__(self) -> str:
        return "[%s]" % ", ".join(map(str, self))


class StructIn(object):
    """Class for reading an inline struct"""

    __slots__ = ["_reader", "_pos", "_type"]

    def __init__(self, reader: Reader, pos: int, type: StructType) -> None:
        """Private constructor. Use the accessor methods on tables and vectors"""
        self._reader = reader
        self._pos = pos
        self._type = type

    @property
    def position(self) -> int:
        return self._pos

    @property
    def type(self) -> StructType:
        return self._type

    def __getitem__(self, name: str) -> Any:
        m = self._type.member(name)
        if isinstance(m.type, StructType):
            return StructIn(self._reader, self._pos + m.offset, m.type)
        return self._reader._scalar(m.type, self._pos + m.offset)

    def __str__(self) -> str:
        o = []
        for m in self._type.members:
            o.append("%s: %s" % (m.name, self[m.name]))
        return "{%s}" % ", ".join(o)

    def _to_dict(self):
        o = {}
        for m in self._type.members:
            v = self[m.name]
            if hasattr(v, "_to_dict"):
                v = v._to_dict()
            o[m.name] = v
        return o


class VectorIn(Sequence):
    """Class for reading a vector, elements are read when indexed"""

    def __init__(
        self,
        reader: Reader,
        pos: int,
        element: ElementType,
        layout: Optional[TableLayout] = None,
    ) -> None:
        """Private constructor. Use the accessor methods on tables"""
        if isinstance(element, TableLayout):
            layout = element
            element = TABLE
        self._reader = reader
        self._pos = pos
        self._element = element
        self._layout = layout
        self._size = reader._vector(pos, element.size)

    @property
    def position(self) -> int:
        return self._pos

    def __len__(self) -> int:
        return self._size

    def _position(self, idx: int) -> int:
        if idx < 0:
            idx += self._size
        if not 0 <= idx < self._size:
            raise OutOfRangeError(idx, self._size)
        return self._pos + UOFFSET_SIZE + idx * self._element.size

    def __getitem__(self, idx: int) -> Any:
        pos = self._position(idx)
        el = self._element
        if isinstance(el, ScalarType):
            return self._reader._scalar(el, pos)
        if isinstance(el, StructType):
            return StructIn(self._reader, pos, el)
        target = self._reader._deref(pos)
        if el == STRING:
            n = self._reader._string(target)
            return self._reader._text(target + UOFFSET_SIZE, n)
        return TableIn(self._reader, target, self._layout)

    def __iter__(self) -> Iterator[Any]:
        for i in range(self._size):
            yield self[i]

    def as_bytes(self) -> memoryview:
        """Zero copy view of a vector of bytes"""
        if self._element not in (UINT8, INT8):
            raise SchemaError(
                "as_bytes needs a vector of bytes, not %r" % (self._element,)
            )
        return self._reader._slice(self._pos + UOFFSET_SIZE, self._size)

    def lookup_by_key(self, key: Any, field: Union[Field, str]) -> Optional["TableIn"]:
        """Binary search a vector of tables sorted on field for key"""
        if isinstance(field, str):
            if self._layout is None:
                raise SchemaError("Looking up by field name needs a table layout")
            field = self._layout.field(field)
        if field.kind == FieldKind.STRING:
            if isinstance(key, str):
                key = key.encode("utf-8")
            key = bytes(key)
        elif field.kind != FieldKind.SCALAR:
            raise SchemaError("Field %s can not be used as a key" % field.name)
        lo, hi = 0, self._size
        while lo < hi:
            mid = (lo + hi) // 2
            table = self[mid]
            if field.kind == FieldKind.STRING:
                v = table.get_bytes(field.slot)
                v = b"" if v is None else v
            else:
                v = table.get_scalar(field.slot, field.type, field.default)
            if v == key:
                return table
            if v < key:
                lo = mid + 1
            else:
                hi = mid
        return None

    def __str__(self) -> str:
        return "[%s]" % (", ".join(map(str, self)))

    def _to_dict(self):
        o = []
        for v in self:
            if hasattr(v, "_to_dict"):
                v = v._to_dict()
            o.append(v)
        return o


class UnionIn(object):
    """A union value: the discriminant and the table it selects"""

    __slots__ = ["_type", "_value", "_layout"]

    def __init__(
        self,
        type: int,
        value: Optional["TableIn"],
        layout: Optional[UnionLayout] = None,
    ) -> None:
        """Private constructor. Use get_union on tables"""
        self._type = type
        self._value = value
        self._layout = layout

    @property
    def type(self) -> int:
        return self._type

    @property
    def name(self) -> Optional[str]:
        if self._type == 0:
            return None
        if self._layout is None or self._type > len(self._layout.variants):
            return None
        return self._layout.variant(self._type)[0]

    @property
    def value(self) -> Optional["TableIn"]:
        """The variant table. Reading it as the wrong variant is not detected"""
        return self._value

    def is_none(self) -> bool:
        return self._type == 0

    def as_variant(self, type: Union[int, str]) -> "TableIn":
        """Return the value if the discriminant is type, else raise UnionTypeError"""
        if isinstance(type, str):
            if self._layout is None:
                raise SchemaError("Selecting a variant by name needs a union layout")
            type = self._layout.type_of(type)
        if type != self._type or self._value is None:
            raise UnionTypeError(type, self._type)
        return self._value

    def __str__(self) -> str:
        if self._type == 0:
            return "{}"
        return "{%s: %s}" % (self.name or self._type, self._value)

    def _to_dict(self):
        if self._type == 0:
            return {}
        v = self._value
        if v is not None:
            v = v._to_dict()
        return {self.name or str(self._type): v}


class TableIn(object):
    """Class for reading a table"""

    __slots__ = ["_reader", "_pos", "_layout", "_vt", "_vt_size"]

    def __init__(
        self, reader: Reader, pos: int, layout: Optional[TableLayout] = None
    ) -> None:
        """Private constructor. Use the accessor methods on tables or Reader.root"""
        self._reader = reader
        self._pos = pos
        self._layout = layout
        self._vt, self._vt_size = reader._table(pos)

    @property
    def position(self) -> int:
        return self._pos

    @property
    def layout(self) -> Optional[TableLayout]:
        return self._layout

    @property
    def vtable(self) -> VTableIn:
        return VTableIn(self._reader, self._vt, self._vt_size)

    def _field_offset(self, slot: int) -> int:
        entry = VOFFSET_SIZE * (VTABLE_METADATA_FIELDS + slot)
        # Slots past the end of the vtable were added after the buffer was written
        if slot < 0 or entry + VOFFSET_SIZE > self._vt_size:
            return 0
        return self._reader._scalar(VOFFSET, self._vt + entry)

    def has_field(self, slot: int) -> bool:
        return self._field_offset(slot) != 0

    def get_scalar(self, slot: int, type: ScalarType, default: Any = 0) -> Any:
        o = self._field_offset(slot)
        if o == 0:
            return default
        return self._reader._scalar(type, self._pos + o)

    def _indirect(self, slot: int) -> Optional[int]:
        o = self._field_offset(slot)
        if o == 0:
            return None
        return self._reader._deref(self._pos + o)

    def get_bytes(self, slot: int) -> Optional[bytes]:
        """Raw bytes of a string field"""
        pos = self._indirect(slot)
        if pos is None:
            return None
        n = self._reader._string(pos)
        return bytes(self._reader._slice(pos + UOFFSET_SIZE, n))

    def get_string(self, slot: int) -> Optional[str]:
        pos = self._indirect(slot)
        if pos is None:
            return None
        n = self._reader._string(pos)
        return self._reader._text(pos + UOFFSET_SIZE, n)

    def get_table(
        self, slot: int, layout: Optional[TableLayout] = None
    ) -> Optional["TableIn"]:
        pos = self._indirect(slot)
        if pos is None:
            return None
        return TableIn(self._reader, pos, layout)

    def get_vector(self, slot: int, element: ElementType) -> Optional[VectorIn]:
        pos = self._indirect(slot)
        if pos is None:
            return None
        return VectorIn(self._reader, pos, element)

    def get_struct(self, slot: int, type: StructType) -> Optional[StructIn]:
        o = self._field_offset(slot)
        if o == 0:
            return None
        self._reader._check(self._pos + o, type.size)
        return StructIn(self._reader, self._pos + o, type)

    def get_union(self, slot: int, layout: Optional[UnionLayout] = None) -> UnionIn:
        """Read the union whose discriminant is in slot - 1 and value in slot"""
        t = self.get_scalar(slot - 1, UNION_TYPE, 0)
        if t == 0:
            return UnionIn(0, None, layout)
        variant = None
        if layout is not None and t <= len(layout.variants):
            variant = layout.variant(t)[1]
        return UnionIn(t, self.get_table(slot, variant), layout)

    def get_nested_root(
        self, slot: int, layout: Optional[TableLayout] = None
    ) -> Optional["TableIn"]:
        """Root table of a buffer stored in a vector of bytes"""
        vector = self.get_vector(slot, UINT8)
        if vector is None:
            return None
        return self._reader._nested(vector.as_bytes()).root(layout)

    # Layout driven access

    def get(self, field: Union[Field, str]) -> Any:
        if isinstance(field, str):
            if self._layout is None:
                raise SchemaError("Reading a field by name needs a table layout")
            field = self._layout.field(field)
        if field.kind == FieldKind.SCALAR:
            return self.get_scalar(field.slot, field.type, field.default)
        if field.kind == FieldKind.STRING:
            return self.get_string(field.slot)
        if field.kind == FieldKind.VECTOR:
            return self.get_vector(field.slot, field.type)
        if field.kind == FieldKind.TABLE:
            return self.get_table(field.slot, field.type)
        if field.kind == FieldKind.STRUCT:
            return self.get_struct(field.slot, field.type)
        return self.get_union(field.slot, field.type)

    def __getitem__(self, name: str) -> Any:
        return self.get(name)

    def _present(self) -> Iterator[Field]:
        for f in self._layout:
            if f.deprecated:
                continue
            if f.kind == FieldKind.SCALAR or self.has_field(f.slot):
                yield f

    def __str__(self) -> str:
        if self._layout is None:
            return "<table at %d>" % self._pos
        o = []
        for f in self._present():
            o.append("%s: %s" % (f.name, self.get(f)))
        return "{%s}" % ", ".join(o)

    def _to_dict(self):
        if self._layout is None:
            raise SchemaError("Converting a table to a dict needs a table layout")
        o = {}
        for f in self._present():
            v = self.get(f)
            if hasattr(v, "_to_dict"):
                v = v._to_dict()
            o[f.name] = v
        return o

    def to_dict(self):
        """Read the table and everything below it into plain Python values"""
        return self._to_dict()
