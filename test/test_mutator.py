# -*- mode: python; tab-width: 4; indent-tabs-mode: nil; python-indent-offset: 4; coding: utf-8 -*-
import pytest

from flatproto import (
    INT16,
    Builder,
    OutOfRangeError,
    ReadOnlyBufferError,
    SchemaError,
    get_root,
    mutate,
    mutate_element,
    mutate_field,
    mutate_struct_field,
)

from monster import Monster, build_orc

MANA = Monster.field("mana").slot
HP = Monster.field("hp").slot


@pytest.fixture
def data():
    return bytearray(build_orc(Builder()))


@pytest.fixture
def orc(data):
    return get_root(data, Monster)


class TestFields:
    def test_present(self, data, orc):
        assert mutate_field(orc, HP, INT16, 500)
        assert orc["hp"] == 500
        assert get_root(bytes(data), Monster)["hp"] == 500

    def test_absent_leaves_buffer(self, data, orc):
        """A field stored as its default has no bytes to overwrite"""
        before = bytes(data)
        assert not mutate_field(orc, MANA, INT16, 10)
        assert bytes(data) == before
        assert orc["mana"] == 150

    def test_forced_default(self):
        b = Builder(force_defaults=True)
        data = bytearray(build_orc(b))
        orc = get_root(data, Monster)
        assert mutate_field(orc, MANA, INT16, 10)
        assert orc["mana"] == 10

    def test_out_of_range(self, data, orc):
        before = bytes(data)
        with pytest.raises(ValueError):
            mutate_field(orc, HP, INT16, 70000)
        assert bytes(data) == before

    def test_read_only(self):
        orc = get_root(build_orc(Builder()), Monster)
        with pytest.raises(ReadOnlyBufferError):
            mutate_field(orc, HP, INT16, 1)

    def test_other_fields_unchanged(self, orc):
        before = orc.to_dict()
        mutate_field(orc, HP, INT16, 1)
        after = orc.to_dict()
        assert after.pop("hp") == 1
        before.pop("hp")
        assert after == before


class TestStructs:
    def test_member(self, orc):
        mutate_struct_field(orc["pos"], "y", 9.5)
        assert orc["pos"]["y"] == 9.5
        assert orc["pos"]["x"] == 1.0

    def test_vector_element(self, orc):
        mutate_struct_field(orc["path"][0], "z", -1.0)
        assert orc["path"][0]["z"] == -1.0
        assert orc["path"][1]["z"] == 6.0

    def test_unknown_member(self, orc):
        with pytest.raises(SchemaError):
            mutate_struct_field(orc["pos"], "w", 1.0)


class TestVectors:
    def test_scalar(self, orc):
        inventory = orc["inventory"]
        mutate_element(inventory, 3, 42)
        mutate_element(inventory, -1, 99)
        assert list(inventory) == [0, 1, 2, 42, 4, 5, 6, 7, 8, 99]

    def test_struct(self, orc):
        mutate_element(orc["path"], 1, {"x": 0.0, "y": 0.0, "z": 0.0})
        assert orc["path"][1]._to_dict() == {"x": 0.0, "y": 0.0, "z": 0.0}

    def test_bounds(self, data, orc):
        before = bytes(data)
        with pytest.raises(OutOfRangeError):
            mutate_element(orc["inventory"], 10, 1)
        with pytest.raises(ValueError):
            mutate_element(orc["inventory"], 0, 256)
        assert bytes(data) == before

    def test_tables(self, orc):
        with pytest.raises(SchemaError):
            mutate_element(orc["weapons"], 0, 1)


class TestByName:
    def test_scalar(self, orc):
        assert mutate(orc, "hp", 42)
        assert orc["hp"] == 42
        assert not mutate(orc, "mana", 1)

    def test_struct(self, orc):
        assert mutate(orc, "pos", (4.0, 5.0, 6.0))
        assert orc["pos"]._to_dict() == {"x": 4.0, "y": 5.0, "z": 6.0}

    def test_absent_struct(self):
        b = Builder()
        data = bytearray(b.finish(b.build_table(Monster, {"hp": 1})))
        assert not mutate(get_root(data, Monster), "pos", (1.0, 1.0, 1.0))

    def test_not_inline(self, orc):
        with pytest.raises(SchemaError):
            mutate(orc, "name", "Troll")

    def test_nested_table(self, orc):
        axe = orc["weapons"][1]
        assert mutate(axe, "damage", 50)
        assert orc["equipped"].value["damage"] == 50
