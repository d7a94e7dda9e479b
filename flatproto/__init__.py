# -*- mode: python; tab-width: 4; indent-tabs-mode: nil; python-indent-offset: 4; coding: utf-8 -*-
"""
Zero copy binary serialization: build buffers back to front and read their
fields in place through per table vtables.
"""
from .builder import Builder, OffsetOut, StringOut, TableOut, VectorOut
from .error import (
    BuilderError,
    FlatprotoError,
    OutOfRangeError,
    ReadOnlyBufferError,
    SchemaError,
    UnionTypeError,
    VerificationError,
)
from .layout import (
    BOOL,
    FLOAT32,
    FLOAT64,
    INT8,
    INT16,
    INT32,
    INT64,
    STRING,
    TABLE,
    UINT8,
    UINT16,
    UINT32,
    UINT64,
    Field,
    FieldKind,
    ScalarType,
    StructType,
    TableLayout,
    UnionLayout,
    scalar_field,
    string_field,
    struct_field,
    table_field,
    union_field,
    vector_field,
)
from .mutator import mutate, mutate_element, mutate_field, mutate_struct_field
from .reader import (
    StructIn,
    TableIn,
    TrustedReader,
    UnionIn,
    VectorIn,
    VerifyingReader,
    VTableIn,
    get_root,
    has_identifier,
    open_buffer,
)
from .verifier import Verifier, VerifierOptions, verify
