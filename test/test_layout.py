# -*- mode: python; tab-width: 4; indent-tabs-mode: nil; python-indent-offset: 4; coding: utf-8 -*-
import pytest

from flatproto import (
    BOOL,
    INT8,
    INT16,
    INT64,
    STRING,
    UINT8,
    FieldKind,
    SchemaError,
    StructType,
    TableLayout,
    UnionLayout,
    scalar_field,
    string_field,
    union_field,
)
from flatproto.layout import align_padding

from monster import Monster, Vec3, Weapon


class TestScalars:
    def test_widths(self):
        assert [t.width for t in (BOOL, UINT8, INT16, INT64)] == [1, 1, 2, 8]
        assert INT64.alignment == 8

    def test_pack_is_little_endian(self):
        assert INT16.pack(0x0102) == b"\x02\x01"

    def test_out_of_range(self):
        """Values that do not fit the type are rejected, never truncated"""
        with pytest.raises(ValueError):
            UINT8.pack(256)
        with pytest.raises(ValueError):
            INT8.check(-129)

    def test_padding(self):
        assert align_padding(5, 4) == 3
        assert align_padding(8, 8) == 0
        assert align_padding(1, 2) == 1


class TestStructs:
    def test_vec3(self):
        assert Vec3.size == 12
        assert Vec3.alignment == 4
        assert [m.offset for m in Vec3.members] == [0, 4, 8]

    def test_padding(self):
        mixed = StructType("Mixed", [("a", INT8), ("b", INT64), ("c", INT16)])
        assert [m.offset for m in mixed.members] == [0, 8, 16]
        assert mixed.size == 24
        assert mixed.alignment == 8
        assert mixed.pack((1, 2, 3)) == (
            b"\x01" + bytes(7) + b"\x02" + bytes(7) + b"\x03" + bytes(7)
        )

    def test_nested(self):
        outer = StructType("Outer", [("flag", BOOL), ("inner", Vec3)])
        assert outer.member("inner").offset == 4
        assert outer.size == 16
        packed = outer.pack({"flag": True, "inner": {"x": 1.0, "y": 0.0, "z": 0.0}})
        assert packed[:4] == b"\x01\x00\x00\x00"
        assert packed[4:8] == b"\x00\x00\x80\x3f"

    def test_missing_member(self):
        with pytest.raises(ValueError):
            Vec3.pack({"x": 1.0})

    def test_invalid(self):
        with pytest.raises(SchemaError):
            StructType("Empty", [])
        with pytest.raises(SchemaError):
            StructType("Named", [("name", STRING)])
        with pytest.raises(SchemaError):
            StructType("Twice", [("a", INT8), ("a", INT16)])


class TestTables:
    def test_fields_by_name(self):
        assert Monster.field("hp").slot == 2
        assert Monster.field("equipped").kind == FieldKind.UNION
        assert "name" in Monster
        assert "level" not in Monster
        with pytest.raises(SchemaError):
            Monster.field("level")

    def test_union_takes_two_slots(self):
        f = Monster.field("equipped")
        assert f.slots == (8, 9)
        assert Monster.num_slots == 11

    def test_fields_sorted(self):
        layout = TableLayout("T", [string_field("b", 1), scalar_field("a", 0, INT8)])
        assert [f.name for f in layout] == ["a", "b"]

    def test_conflicts(self):
        with pytest.raises(SchemaError):
            TableLayout("T", [scalar_field("a", 0, INT8), scalar_field("b", 0, INT8)])
        with pytest.raises(SchemaError):
            TableLayout("T", [scalar_field("a", 0, INT8), scalar_field("a", 1, INT8)])
        equipment = UnionLayout("E", [("Weapon", Weapon)])
        with pytest.raises(SchemaError):
            TableLayout(
                "T", [scalar_field("a", 1, INT8), union_field("u", 2, equipment)]
            )
        with pytest.raises(SchemaError):
            union_field("u", 0, equipment)

    def test_default_must_fit(self):
        with pytest.raises(ValueError):
            scalar_field("a", 0, UINT8, 300)


class TestUnions:
    def test_numbering(self):
        u = UnionLayout("U", [("Weapon", Weapon), ("Monster", Monster)])
        assert u.type_of("Weapon") == 1
        assert u.type_of("Monster") == 2
        assert u.variant(2) == ("Monster", Monster)
        with pytest.raises(SchemaError):
            u.type_of("Shield")
