# -*- mode: python; tab-width: 4; indent-tabs-mode: nil; python-indent-offset: 4; coding: utf-8 -*-
import pytest

from flatproto import Builder
from flatproto.__main__ import main
from flatproto.dump import describe, hexdump

from monster import build_orc


def empty_buffer(**kwargs):
    b = Builder()
    b.start_table()
    return b.finish(b.end_table(), **kwargs)


@pytest.fixture
def orc_file(tmp_path):
    path = tmp_path / "orc.bin"
    path.write_bytes(build_orc(Builder()))
    return path


class TestHexdump:
    def test_lines(self):
        lines = list(hexdump(empty_buffer(file_identifier="MONS")))
        assert lines == [
            "00000000 | 0C000000 4D4F4E53 04000400 04000000 | ....MONS........"
        ]

    def test_partial_line(self):
        lines = list(hexdump(b"abc"))
        assert lines == ["00000000 | 616263" + " " * 30 + "| abc"]

    def test_marks_differences(self):
        lines = list(hexdump(b"ab", b"ac", color=True))
        assert "\033[91m" in lines[0]


class TestDescribe:
    def test_empty_table(self):
        assert list(describe(empty_buffer())) == [
            "size: 12 bytes",
            "root offset: 8",
            "root table: 8 (4 bytes)",
            "vtable: 4 (4 bytes, 0 slots)",
        ]

    def test_identifier_and_prefix(self):
        data = empty_buffer(file_identifier="MONS", size_prefixed=True)
        lines = list(describe(data, size_prefixed=True))
        assert "size prefix: 16" in lines
        assert "identifier: MONS" in lines


class TestMain:
    def test_inspect(self, orc_file, capsys):
        assert main(["inspect", str(orc_file)]) == 0
        out = capsys.readouterr().out
        assert "root offset:" in out
        assert "  slot 1: absent" in out
        assert "  slot 2: +" in out

    def test_inspect_invalid(self, tmp_path, capsys):
        path = tmp_path / "bad.bin"
        path.write_bytes(b"\xff\xff")
        assert main(["inspect", str(path)]) == 1
        assert "Invalid buffer" in capsys.readouterr().err

    def test_inspect_identifier(self, orc_file, capsys):
        assert main(["inspect", str(orc_file), "--identifier", "MONS"]) == 1
        assert "file identifier" in capsys.readouterr().err

    def test_hexdump(self, orc_file, capsys):
        assert main(["hexdump", str(orc_file)]) == 0
        assert capsys.readouterr().out.startswith("00000000 | ")

    def test_hexdump_against(self, orc_file, tmp_path):
        other = tmp_path / "other.bin"
        other.write_bytes(empty_buffer())
        assert main(["hexdump", str(orc_file), "--against", str(orc_file)]) == 0
        assert main(["hexdump", str(orc_file), "--against", str(other)]) == 1

    def test_no_command(self, capsys):
        assert main([]) == 2
        assert "usage" in capsys.readouterr().out
