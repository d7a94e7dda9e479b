# -*- mode: python; tab-width: 4; indent-tabs-mode: nil; python-indent-offset: 4; coding: utf-8 -*-
import pytest

from flatproto import (
    STRING,
    UINT32,
    Builder,
    TableLayout,
    VerificationError,
    VerifierOptions,
    get_root,
    open_buffer,
    vector_field,
    verify,
)
from flatproto.layout import SOFFSET

from monster import Monster, Node, Weapon, build_orc


Names = TableLayout("Names", [vector_field("names", 0, STRING)])


@pytest.fixture
def data():
    return build_orc(Builder())


def chain(depth):
    b = Builder()
    child = None
    for i in range(depth):
        child = b.build_table(Node, {"child": child, "value": i})
    return b.finish(child)


class TestVerify:
    def test_valid(self, data):
        verify(data, Monster)
        open_buffer(data, layout=Monster).verify()

    def test_truncated(self, data):
        with pytest.raises(VerificationError):
            verify(data[:-4], Monster)

    def test_empty(self):
        with pytest.raises(VerificationError):
            verify(b"", Monster)

    def test_bad_root_offset(self, data):
        bad = bytearray(data)
        UINT32.pack_into(bad, 0, len(bad) + 100)
        with pytest.raises(VerificationError):
            verify(bad, Monster)
        UINT32.pack_into(bad, 0, 0)
        with pytest.raises(VerificationError):
            verify(bad, Monster)

    def test_bad_vtable(self, data):
        bad = bytearray(data)
        root = UINT32.unpack_from(bad, 0)
        SOFFSET.pack_into(bad, root, -100000)
        with pytest.raises(VerificationError):
            verify(bad, Monster)

    def test_unterminated_string(self, data):
        bad = bytearray(data)
        i = bad.index(b"Orc\x00")
        bad[i + 3] = ord("!")
        with pytest.raises(VerificationError):
            verify(bad, Monster)

    def test_invalid_utf8(self):
        b = Builder()
        data = b.finish(b.build_table(Monster, {"name": b"\xff\xfe"}))
        with pytest.raises(VerificationError):
            verify(data, Monster)
        b = Builder()
        data = b.finish(b.build_table(Names, {"names": ["ok", b"\xc3"]}))
        with pytest.raises(VerificationError):
            verify(data, Names)

    def test_depth(self):
        data = chain(5)
        verify(data, Node)
        with pytest.raises(VerificationError):
            verify(data, Node, VerifierOptions(max_depth=3))
        verify(data, Node, VerifierOptions(max_depth=5))

    def test_table_count(self):
        data = chain(5)
        with pytest.raises(VerificationError):
            verify(data, Node, VerifierOptions(max_tables=4))

    def test_size_prefix(self):
        b = Builder()
        data = b.finish(b.build_table(Weapon, {"name": "Axe"}), size_prefixed=True)
        verify(data, Weapon, size_prefixed=True)
        with pytest.raises(VerificationError):
            verify(data + bytes(4), Weapon, size_prefixed=True)

    def test_identifier(self):
        b = Builder()
        axe = b.build_table(Weapon, {"name": "Axe"})
        data = b.finish(axe, file_identifier="WEAP")
        verify(data, Weapon, file_identifier="WEAP")
        with pytest.raises(VerificationError):
            verify(data, Weapon, file_identifier="MONS")


class TestVerifyingReader:
    def test_truncated(self, data):
        """Malformed input is reported when the bad field is read"""
        monster = get_root(data[:-4], Monster)
        assert monster["hp"] == 300
        with pytest.raises(VerificationError):
            monster.to_dict()

    def test_empty(self):
        with pytest.raises(VerificationError):
            get_root(b"\x01\x00")

    def test_bad_root_offset(self, data):
        bad = bytearray(data)
        UINT32.pack_into(bad, 0, len(bad))
        with pytest.raises(VerificationError):
            get_root(bad)

    def test_bad_vtable(self, data):
        bad = bytearray(data)
        root = UINT32.unpack_from(bad, 0)
        SOFFSET.pack_into(bad, root, -100000)
        with pytest.raises(VerificationError):
            get_root(bad)

    def test_unterminated_string(self, data):
        bad = bytearray(data)
        i = bad.index(b"Orc\x00")
        bad[i + 3] = ord("!")
        monster = get_root(bad, Monster)
        with pytest.raises(VerificationError):
            monster["name"]

    def test_invalid_utf8(self):
        b = Builder()
        data = b.finish(b.build_table(Monster, {"name": b"\xff\xfe"}))
        monster = get_root(data, Monster)
        assert monster["hp"] == 100
        with pytest.raises(VerificationError):
            monster["name"]
        b = Builder()
        data = b.finish(b.build_table(Names, {"names": ["ok", b"\xc3"]}))
        names = get_root(data, Names)["names"]
        assert names[0] == "ok"
        with pytest.raises(VerificationError):
            names[1]

    def test_size_prefix_too_large(self):
        b = Builder()
        data = bytearray(b.finish(b.build_table(Weapon, {}), size_prefixed=True))
        UINT32.pack_into(data, 0, len(data))
        with pytest.raises(VerificationError):
            get_root(data, size_prefixed=True)

    def test_identifier(self, data):
        with pytest.raises(VerificationError):
            open_buffer(data, file_identifier="MONS")
