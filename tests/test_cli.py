import pytest

from fdtkit.byteorder import pack_u32, read_u32
from fdtkit.cli import guess_input_format, guess_type_by_name, is_power_of_2, main
from fdtkit.flattree import dt_from_blob, dt_to_blob
from fdtkit.tree import Data, DtInfo, Node, Property, phandle_is_valid


def _tree():
    root = Node("")
    root.add_property(Property("compatible", Data(b"test\0")))
    node4 = root.add_child(Node("node4"))
    node4.add_property(Property("linux,phandle", Data(pack_u32(1))))
    node4.add_property(Property("phandle", Data(pack_u32(1))))
    return root


@pytest.fixture
def dtb(tmp_path):
    path = tmp_path / "in.dtb"
    path.write_bytes(dt_to_blob(DtInfo(dt=_tree(), boot_cpuid_phys=0)))
    return path


@pytest.mark.parametrize("value,expected", [
    (1, True), (2, True), (64, True), (0, False), (3, False), (-4, False),
])
def test_is_power_of_2(value, expected):
    assert is_power_of_2(value) is expected


@pytest.mark.parametrize("name,expected", [
    ("a.dts", "dts"), ("A.DTB", "dtb"), ("x.dtbo", "dtb"),
    ("x.yaml", "yaml"), ("x.txt", "fb"), ("noext", "fb"), ("dir.d/file", "fb"),
])
def test_guess_type_by_name(name, expected):
    assert guess_type_by_name(name, "fb") == expected


def test_guess_input_format(tmp_path, dtb):
    assert guess_input_format(str(tmp_path), "dts") == "fs"
    assert guess_input_format(str(tmp_path / "missing"), "dts") == "dts"
    fake = tmp_path / "blob.dts"
    fake.write_bytes(dtb.read_bytes())
    assert guess_input_format(str(fake), "x") == "dtb"
    other = tmp_path / "plain.dtb"
    other.write_bytes(b"not a blob")
    assert guess_input_format(str(other), "x") == "dtb"


def test_phandle_format_both_roundtrip(tmp_path, dtb):
    out = tmp_path / "out.dtb"
    assert main(["-H", "both", "-o", str(out), str(dtb)]) == 0
    n4 = dt_from_blob(out.read_bytes()).dt.find("/node4")
    h4 = read_u32(bytes(n4.get_property("phandle").val))
    assert phandle_is_valid(h4)
    assert read_u32(bytes(n4.get_property("linux,phandle").val)) == h4


def test_invalid_phandle_format(tmp_path, dtb):
    assert main(["-H", "bogus", "-o", str(tmp_path / "o.dtb"), str(dtb)]) == 1


def test_boot_cpu_override(tmp_path, dtb):
    out = tmp_path / "out.dtb"
    assert main(["-b", "5", "-o", str(out), str(dtb)]) == 0
    assert dt_from_blob(out.read_bytes()).boot_cpuid_phys == 5


def test_padding_options(tmp_path, dtb):
    plain, padded, sized, aligned = (tmp_path / f"{n}.dtb" for n in "abcd")
    assert main(["-o", str(plain), str(dtb)]) == 0
    assert main(["-p", "100", "-o", str(padded), str(dtb)]) == 0
    assert main(["-S", "4096", "-o", str(sized), str(dtb)]) == 0
    assert main(["-a", "256", "-o", str(aligned), str(dtb)]) == 0
    assert len(padded.read_bytes()) == len(plain.read_bytes()) + 100
    assert read_u32(padded.read_bytes(), 4) == len(padded.read_bytes())
    assert len(sized.read_bytes()) == 4096
    assert len(aligned.read_bytes()) % 256 == 0


def test_reserve_slots(tmp_path, dtb):
    plain, reserved = tmp_path / "a.dtb", tmp_path / "b.dtb"
    assert main(["-o", str(plain), str(dtb)]) == 0
    assert main(["-R", "2", "-o", str(reserved), str(dtb)]) == 0
    assert read_u32(reserved.read_bytes(), 8) == read_u32(plain.read_bytes(), 8) + 32


def test_bad_align_and_conflicts(tmp_path, dtb):
    out = str(tmp_path / "o.dtb")
    assert main(["-a", "3", "-o", out, str(dtb)]) == 1
    assert main(["-p", "10", "-S", "100", "-o", out, str(dtb)]) == 1


def test_output_versions(tmp_path, dtb):
    v16, v3 = tmp_path / "v16.dtb", tmp_path / "v3.dtb"
    assert main(["-V", "16", "-o", str(v16), str(dtb)]) == 0
    assert read_u32(v16.read_bytes(), 20) == 16
    assert main(["-V", "3", "-o", str(v3), str(dtb)]) == 0
    assert dt_from_blob(v3.read_bytes()).dt.find("/node4") is not None
    assert main(["-V", "5", "-o", str(tmp_path / "x.dtb"), str(dtb)]) == 1


def test_asm_output(tmp_path, dtb):
    out = tmp_path / "out.S"
    assert main(["-O", "asm", "-o", str(out), str(dtb)]) == 0
    assert out.read_text().startswith("/* autogenerated by dtc, do not edit */")


def test_unknown_and_unsupported_formats(tmp_path, dtb):
    out = str(tmp_path / "o")
    assert main(["-O", "foo", "-o", out, str(dtb)]) == 1
    assert main(["-I", "dts", "-O", "dtb", "-o", out, str(dtb)]) == 1
    assert main(["-I", "xyz", "-O", "dtb", "-o", out, str(dtb)]) == 1


def test_null_output(tmp_path, dtb):
    out = tmp_path / "null.out"
    assert main(["-O", "null", "-o", str(out), str(dtb)]) == 0
    assert out.read_bytes() == b""


def test_fs_input(tmp_path):
    root = tmp_path / "fs"
    cpu = root / "cpus" / "cpu@0"
    cpu.mkdir(parents=True)
    (root / "compatible").write_bytes(b"test_tree1\0")
    (cpu / "reg").write_bytes(pack_u32(7))
    out = tmp_path / "out.dtb"
    assert main(["-o", str(out), str(root)]) == 0
    dti = dt_from_blob(out.read_bytes())
    assert dti.boot_cpuid_phys == 7
    assert bytes(dti.dt.get_property("compatible").val) == b"test_tree1\0"


def test_dependency_file(tmp_path, dtb):
    out = tmp_path / "my out.dtb"
    dep = tmp_path / "deps"
    assert main(["-d", str(dep), "-o", str(out), str(dtb)]) == 0
    assert dep.read_text() == str(out).replace(" ", "\\ ") + ":\n"