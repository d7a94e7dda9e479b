# -*- mode: python; tab-width: 4; indent-tabs-mode: nil; python-indent-offset: 4; coding: utf-8 -*-
"""
Binary layout rules shared by the builder and the reader, and the layout
tables that describe the fields of a schema's tables, structs and unions.

All multi byte values are little endian. Every value is aligned to its own
size inside the buffer, structs to their largest member.
"""
import enum
import struct
from typing import (
    Any,
    Dict,
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

from .error import SchemaError

UOFFSET_SIZE = 4
SOFFSET_SIZE = 4
VOFFSET_SIZE = 2
FILE_IDENTIFIER_LENGTH = 4
SIZE_PREFIX_LENGTH = 4
VTABLE_METADATA_FIELDS = 2
MAX_BUFFER_SIZE = 2 ** 31 - 1


def align_padding(used: int, size: int) -> int:
    """Number of padding bytes needed after used bytes to align to size"""
    return (-used) & (size - 1)


class ScalarType(NamedTuple):
    name: str
    fmt: str
    width: int
    py: Type

    @property
    def alignment(self) -> int:
        return self.width

    @property
    def size(self) -> int:
        return self.width

    def check(self, value: Any) -> None:
        """Raise ValueError if value can not be stored in this type"""
        try:
            struct.pack("<" + self.fmt, value)
        except struct.error as e:
            raise ValueError(
                "Value %r can not be stored as %s: %s" % (value, self.name, e)
            ) from e

    def pack(self, value: Any) -> bytes:
        try:
            return struct.pack("<" + self.fmt, value)
        except struct.error as e:
            raise ValueError(
                "Value %r can not be stored as %s: %s" % (value, self.name, e)
            ) from e

    def unpack_from(self, data: Any, pos: int) -> Any:
        return struct.unpack_from("<" + self.fmt, data, pos)[0]

    def pack_into(self, data: Any, pos: int, value: Any) -> None:
        data[pos : pos + self.width] = self.pack(value)

    def __repr__(self) -> str:
        return self.name


BOOL = ScalarType("bool", "?", 1, bool)
INT8 = ScalarType("int8", "b", 1, int)
UINT8 = ScalarType("uint8", "B", 1, int)
INT16 = ScalarType("int16", "h", 2, int)
UINT16 = ScalarType("uint16", "H", 2, int)
INT32 = ScalarType("int32", "i", 4, int)
UINT32 = ScalarType("uint32", "I", 4, int)
INT64 = ScalarType("int64", "q", 8, int)
UINT64 = ScalarType("uint64", "Q", 8, int)
FLOAT32 = ScalarType("float32", "f", 4, float)
FLOAT64 = ScalarType("float64", "d", 8, float)

SCALAR_TYPES: Dict[str, ScalarType] = {
    t.name: t
    for t in (
        BOOL,
        INT8,
        UINT8,
        INT16,
        UINT16,
        INT32,
        UINT32,
        INT64,
        UINT64,
        FLOAT32,
        FLOAT64,
    )
}

UOFFSET = UINT32
SOFFSET = INT32
VOFFSET = UINT16
UNION_TYPE = UINT8


class OffsetType(NamedTuple):
    """Element type of vectors holding offsets to strings or tables"""

    name: str

    @property
    def size(self) -> int:
        return UOFFSET_SIZE

    @property
    def alignment(self) -> int:
        return UOFFSET_SIZE

    def __repr__(self) -> str:
        return self.name


STRING = OffsetType("string")
TABLE = OffsetType("table")


class StructMember(NamedTuple):
    name: str
    type: Union[ScalarType, "StructType"]
    offset: int


class StructType(object):
    """Fixed size inline aggregate of scalars and structs with C layout"""

    __slots__ = ["name", "members", "size", "alignment", "_by_name"]

    def __init__(
        self,
        name: str,
        members: Sequence[Tuple[str, Union[ScalarType, "StructType"]]],
    ) -> None:
        if not members:
            raise SchemaError("Struct %s has no members" % name)
        self.name = name
        self.members: List[StructMember] = []
        self._by_name: Dict[str, StructMember] = {}
        offset = 0
        alignment = 1
        for mname, mtype in members:
            if not isinstance(mtype, (ScalarType, StructType)):
                raise SchemaError(
                    "Struct member %s.%s must be a scalar or a struct, not %r"
                    % (name, mname, mtype)
                )
            if mname in self._by_name:
                raise SchemaError("Duplicate struct member %s.%s" % (name, mname))
            offset += align_padding(offset, mtype.alignment)
            m = StructMember(mname, mtype, offset)
            self.members.append(m)
            self._by_name[mname] = m
            offset += mtype.size
            alignment = max(alignment, mtype.alignment)
        self.size = offset + align_padding(offset, alignment)
        self.alignment = alignment

    def member(self, name: str) -> StructMember:
        try:
            return self._by_name[name]
        except KeyError:
            raise SchemaError("Struct %s has no member %s" % (self.name, name))

    def pack(self, value: Any) -> bytes:
        """Return the inline bytes of value, a mapping or a sequence in member order"""
        out = bytearray(self.size)
        self._pack_into(out, 0, value)
        return bytes(out)

    def _pack_into(self, out: bytearray, base: int, value: Any) -> None:
        if hasattr(value, "_to_dict"):
            value = value._to_dict()
        if isinstance(value, Mapping):
            missing = [m.name for m in self.members if m.name not in value]
            if missing:
                raise ValueError(
                    "Missing members %s for struct %s" % (", ".join(missing), self.name)
                )
            values = [value[m.name] for m in self.members]
        else:
            values = list(value)
            if len(values) != len(self.members):
                raise ValueError(
                    "Struct %s has %d members, got %d values"
                    % (self.name, len(self.members), len(values))
                )
        for m, v in zip(self.members, values):
            if isinstance(m.type, StructType):
                m.type._pack_into(out, base + m.offset, v)
            else:
                m.type.pack_into(out, base + m.offset, v)

    def __repr__(self) -> str:
        return "StructType(%s)" % self.name


class FieldKind(enum.Enum):
    SCALAR = 1
    STRING = 2
    VECTOR = 3
    TABLE = 4
    STRUCT = 5
    UNION = 6


ElementType = Union[ScalarType, StructType, OffsetType, "TableLayout"]


class Field(NamedTuple):
    """One entry of a layout table.

    For unions slot is the slot of the value, the discriminant lives in
    slot - 1. For vectors type is the element type.
    """

    name: str
    slot: int
    kind: FieldKind
    type: Any = None
    default: Any = None
    deprecated: bool = False

    @property
    def byte_width(self) -> int:
        if self.kind == FieldKind.SCALAR:
            return self.type.width
        if self.kind == FieldKind.STRUCT:
            return self.type.size
        return UOFFSET_SIZE

    @property
    def slots(self) -> Tuple[int, ...]:
        if self.kind == FieldKind.UNION:
            return (self.slot - 1, self.slot)
        return (self.slot,)


def scalar_field(
    name: str, slot: int, type: ScalarType, default: Any = 0, deprecated: bool = False
) -> Field:
    if not isinstance(type, ScalarType):
        raise SchemaError("Field %s must have a scalar type" % name)
    type.check(default)
    return Field(name, slot, FieldKind.SCALAR, type, type.py(default), deprecated)


def string_field(name: str, slot: int, deprecated: bool = False) -> Field:
    return Field(name, slot, FieldKind.STRING, STRING, None, deprecated)


def vector_field(
    name: str, slot: int, element: ElementType, deprecated: bool = False
) -> Field:
    if not isinstance(element, (ScalarType, StructType, OffsetType, TableLayout)):
        raise SchemaError("Vector %s has an invalid element type %r" % (name, element))
    return Field(name, slot, FieldKind.VECTOR, element, None, deprecated)


def table_field(
    name: str, slot: int, layout: "TableLayout", deprecated: bool = False
) -> Field:
    return Field(name, slot, FieldKind.TABLE, layout, None, deprecated)


def struct_field(
    name: str, slot: int, type: StructType, deprecated: bool = False
) -> Field:
    if not isinstance(type, StructType):
        raise SchemaError("Field %s must have a struct type" % name)
    return Field(name, slot, FieldKind.STRUCT, type, None, deprecated)


def union_field(
    name: str, slot: int, layout: "UnionLayout", deprecated: bool = False
) -> Field:
    if slot < 1:
        raise SchemaError(
            "Union %s needs slot %d for its discriminant" % (name, slot - 1)
        )
    return Field(name, slot, FieldKind.UNION, layout, 0, deprecated)


class TableLayout(object):
    """The fields of one table type, by name and by slot"""

    def __init__(self, name: str, fields: Sequence[Field] = ()) -> None:
        self.name = name
        self.fields: List[Field] = []
        self._by_name: Dict[str, Field] = {}
        self._by_slot: Dict[int, Field] = {}
        for f in fields:
            self.add_field(f)

    def add_field(self, field: Field) -> None:
        """Add a field, tables referencing themselves add fields after construction"""
        if field.name in self._by_name:
            raise SchemaError("Duplicate field %s.%s" % (self.name, field.name))
        for s in field.slots:
            if s < 0:
                raise SchemaError("Negative slot for %s.%s" % (self.name, field.name))
            if s in self._by_slot:
                raise SchemaError(
                    "Slot %d of %s.%s is already used by %s"
                    % (s, self.name, field.name, self._by_slot[s].name)
                )
        self.fields.append(field)
        self.fields.sort(key=lambda f: f.slot)
        self._by_name[field.name] = field
        for s in field.slots:
            self._by_slot[s] = field

    def field(self, name: str) -> Field:
        try:
            return self._by_name[name]
        except KeyError:
            raise SchemaError("Table %s has no field %s" % (self.name, name))

    def by_slot(self, slot: int) -> Optional[Field]:
        return self._by_slot.get(slot)

    @property
    def num_slots(self) -> int:
        return max(self._by_slot) + 1 if self._by_slot else 0

    def __contains__(self, name: str) -> bool:
        return name in self._by_name

    def __iter__(self) -> Iterator[Field]:
        return iter(self.fields)

    def __repr__(self) -> str:
        return "TableLayout(%s)" % self.name


class UnionLayout(object):
    """A closed set of table variants, numbered from 1. 0 means NONE"""

    def __init__(self, name: str, variants: Sequence[Tuple[str, TableLayout]]) -> None:
        if len(variants) > 255:
            raise SchemaError("Union %s has more than 255 variants" % name)
        self.name = name
        self.variants: List[Tuple[str, TableLayout]] = list(variants)
        self._types: Dict[str, int] = {}
        for i, (vname, _) in enumerate(self.variants):
            if vname in self._types:
                raise SchemaError("Duplicate variant %s.%s" % (name, vname))
            self._types[vname] = i + 1

    def variant(self, type: int) -> Tuple[str, TableLayout]:
        if not 1 <= type <= len(self.variants):
            raise SchemaError("Union %s has no variant %d" % (self.name, type))
        return self.variants[type - 1]

    def type_of(self, name: str) -> int:
        try:
            return self._types[name]
        except KeyError:
            raise SchemaError("Union %s has no variant %s" % (self.name, name))

    def __repr__(self) -> str:
        return "UnionLayout(%s)" % self.name
