# -*- mode: python; tab-width: 4; indent-tabs-mode: nil; python-indent-offset: 4; coding: utf-8 -*-
"""
Change values of a finished buffer in place.

Only bytes that are already present can be changed. A field that was left
out because it had its default value has no bytes to overwrite, so mutating
it fails; build with force_defaults to make such fields mutable. Nothing here
ever changes the size of a value or moves an offset.
"""
import logging
from typing import Any

from .error import SchemaError
from .layout import FieldKind, ScalarType, StructType
from .reader import StructIn, TableIn, VectorIn

logger = logging.getLogger(__name__)


def mutate_field(table: TableIn, slot: int, type: ScalarType, value: Any) -> bool:
    """Overwrite the scalar in slot.

    Return False, leaving the buffer untouched, if the field is not present.
    """
    data = type.pack(value)
    o = table._field_offset(slot)
    if o == 0:
        logger.debug("Slot %d of table at %d is not present", slot, table.position)
        return False
    table._reader._write(table.position + o, data)
    return True


def mutate_struct_field(view: StructIn, name: str, value: Any) -> None:
    """Overwrite a member of a struct, struct members are always present"""
    m = view.type.member(name)
    view._reader._write(view.position + m.offset, m.type.pack(value))


def mutate_element(vector: VectorIn, index: int, value: Any) -> None:
    """Overwrite element index of a vector of scalars or structs"""
    el = vector._element
    if not isinstance(el, (ScalarType, StructType)):
        raise SchemaError(
            "Only scalar and struct elements can be mutated, not %r" % (el,)
        )
    data = el.pack(value)
    vector._reader._write(vector._position(index), data)


def mutate(table: TableIn, name: str, value: Any) -> bool:
    """Overwrite the scalar or struct field name of a table read with a layout"""
    if table.layout is None:
        raise SchemaError("Mutating a field by name needs a table layout")
    f = table.layout.field(name)
    if f.kind == FieldKind.SCALAR:
        return mutate_field(table, f.slot, f.type, value)
    if f.kind == FieldKind.STRUCT:
        view = table.get_struct(f.slot, f.type)
        if view is None:
            return False
        table._reader._write(view.position, f.type.pack(value))
        return True
    raise SchemaError(
        "Field %s.%s is not a scalar or a struct" % (table.layout.name, name)
    )
