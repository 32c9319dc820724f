import pytest

from fdtkit.byteorder import pack_u32, read_u32
from fdtkit.fdtdump import (
    dump_blob,
    find_embedded_fdt,
    format_value,
    main,
    tag_name,
    valid_header,
)
from fdtkit.flattree import dt_to_blob
from fdtkit.tree import Data, DtcError, DtInfo, Node, Property, ReserveEntry


def _blob():
    root = Node("")
    root.add_property(Property("compatible", Data(b"test\0")))
    root.add_property(Property("prop-int", Data(pack_u32(0xDEADBEEF))))
    sub = root.add_child(Node("sub@1"))
    sub.add_property(Property("bytes", Data(b"\x01\x02\x03")))
    return dt_to_blob(DtInfo(dt=root, reservelist=[ReserveEntry(0x1000, 0x2000)]))


def _set(blob, index, value):
    b = bytearray(blob)
    b[index * 4:index * 4 + 4] = pack_u32(value)
    return bytes(b)


def test_tag_names():
    assert tag_name(1) == "FDT_BEGIN_NODE"
    assert tag_name(9) == "FDT_END"
    assert tag_name(7) == "FDT_???"


def test_format_value():
    assert format_value(b"") == ""
    assert format_value(b"a\0bc\0") == ' = "a", "bc"'
    assert format_value(pack_u32(1)) == " = <0x00000001>"
    assert format_value(b"\x01\x02") == " = [01 02]"


def test_valid_header_accepts_padded_blob():
    assert valid_header(_blob() + b"\0")


@pytest.mark.parametrize("index,value", [
    (0, 0xD00DFEED ^ 0x1),
    (0, 0xD00DFEED ^ 0x80000000),
    (5, 18),
    (6, 18),
])
def test_valid_header_mangled(index, value):
    assert not valid_header(_set(_blob() + b"\0", index, value))


def test_valid_header_too_short():
    assert not valid_header(_blob()[:20])


def test_dump_contents():
    text = dump_blob(_blob())
    assert text.startswith("/dts-v1/;\n// magic:\t\t0xd00dfeed\n")
    assert "/memreserve/ 0x1000 0x2000;\n" in text
    assert '    compatible = "test";\n' in text
    assert "    prop-int = <0xdeadbeef>;\n" in text
    assert "    sub@1 {\n        bytes = [01 02 03];\n    };\n" in text
    assert text.endswith("};\n")


def test_dump_debug():
    text = dump_blob(_blob(), debug=True)
    assert "tag: 0x00000001 (FDT_BEGIN_NODE)" in text


def test_find_embedded():
    blob = _blob()
    assert find_embedded_fdt(b"junkjunk" + blob + b"\0") == 8


def test_find_embedded_missing():
    with pytest.raises(DtcError):
        find_embedded_fdt(b"\0" * 64)


def test_main_scan(tmp_path, capsys):
    f = tmp_path / "x.bin"
    f.write_bytes(b"abcd" + _blob() + b"\0")
    assert main(["-s", str(f)]) == 0
    out = capsys.readouterr().out
    assert "found fdt at offset 0x4" in out
    assert "prop-int = <0xdeadbeef>;" in out


def test_main_invalid(tmp_path):
    f = tmp_path / "x.bin"
    f.write_bytes(b"\0" * 64)
    assert main([str(f)]) == 1