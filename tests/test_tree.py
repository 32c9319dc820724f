import pytest

from fdtkit.tree import (
    Data,
    DtcError,
    Label,
    MarkerType,
    Node,
    Property,
    align,
    fill_fullpaths,
    phandle_is_valid,
)


def _sample_tree():
    root = Node("")
    root.add_property(Property("compatible", Data(b"test_tree1\0")))
    sub1 = root.add_child(Node("subnode@1"))
    sub1.add_child(Node("subsubnode"))
    sub2 = root.add_child(Node("subnode@2"))
    sub2.add_child(Node("subsubnode@0"))
    return root


def test_phandle_validity():
    assert phandle_is_valid(1)
    assert not phandle_is_valid(0)
    assert not phandle_is_valid(0xFFFFFFFF)


def test_align_rounds_up():
    assert align(5, 4) == 8
    assert align(8, 8) == 8
    assert align(0, 4) == 0


def test_type_markers():
    assert MarkerType.TYPE_STRING.is_type_marker()
    assert MarkerType.TYPE_UINT8.is_type_marker()
    assert not MarkerType.LABEL.is_type_marker()
    assert not MarkerType.REF_PHANDLE.is_type_marker()


def test_append_cell_big_endian():
    d = Data().append_cell(0xDEADBEEF)
    assert bytes(d) == b"\xde\xad\xbe\xef"


def test_append_integer_sizes():
    d = Data().append_integer(0x1234, 16).append_integer(0xAB, 8)
    assert bytes(d) == b"\x12\x34\xab"
    assert len(Data().append_integer(1, 64)) == 8


def test_append_integer_bad_size():
    with pytest.raises(DtcError):
        Data().append_integer(1, 24)


def test_append_re_is_two_u64():
    d = Data().append_re(0xDEADBEEF00000000, 0x100000)
    assert len(d) == 16
    assert bytes(d)[:8] == (0xDEADBEEF00000000).to_bytes(8, "big")
    assert bytes(d)[8:] == (0x100000).to_bytes(8, "big")


def test_append_align_pads_with_zeroes():
    d = Data(b"abc").append_align(8)
    assert len(d) == 8
    assert bytes(d)[3:] == bytes(5)


def test_add_marker_at_current_length():
    d = Data(b"xyz").add_marker(MarkerType.REF_PHANDLE, "node")
    assert d.markers[0].offset == 3
    assert d.markers[0].type is MarkerType.REF_PHANDLE


@pytest.mark.parametrize(
    "raw, expected",
    [
        (b"hello world\0", True),
        (b"", False),
        (b"abc", False),
        (b"subsubnode1\0subsubnode\0", False),
    ],
)
def test_is_one_string(raw, expected):
    assert Data(raw).is_one_string() is expected


def test_fill_fullpaths():
    root = _sample_tree()
    fill_fullpaths(root, "")
    assert root.fullpath == "/"
    sub1 = root.find("/subnode@1")
    assert sub1.fullpath == "/subnode@1"
    assert sub1.basenamelen == len("subnode")
    assert root.find("/subnode@1/subsubnode").fullpath == "/subnode@1/subsubnode"


def test_find_paths():
    root = _sample_tree()
    assert root.find("/") is root
    assert root.find("/subnode@2/subsubnode@0").name == "subsubnode@0"
    assert root.find("/nonexistant-subnode") is None
    assert root.find("/subsubnode") is None


def test_add_child_sets_parent():
    root = _sample_tree()
    assert root.find("/subnode@1").parent is root


def test_deleted_items_are_hidden():
    root = _sample_tree()
    root.proplist[0].deleted = True
    root.children[0].deleted = True
    assert root.get_property("compatible") is None
    assert [c.name for c in root.children_alive()] == ["subnode@2"]


def test_delete_property_and_child():
    root = _sample_tree()
    removed = root.delete_property("compatible")
    assert removed.name == "compatible"
    assert list(root.properties()) == []
    root.delete_child("subnode@1")
    assert root.get_subnode("subnode@1") is None


def test_delete_missing_raises():
    root = _sample_tree()
    with pytest.raises(KeyError):
        root.delete_property("nonexistant-property")
    with pytest.raises(KeyError):
        root.delete_child("nonexistant-subnode")


def test_property_labels_kept():
    prop = Property("reg", Data().append_cell(1), labels=[Label("r")])
    assert prop.labels[0].label == "r"
    assert bytes(prop.val) == b"\x00\x00\x00\x01"