import pytest

from fdtkit.byteorder import (
    pack_u16,
    pack_u32,
    pack_u64,
    read_u16,
    read_u32,
    read_u64,
)


def test_pack_u32_magic_is_big_endian():
    assert pack_u32(0xD00DFEED) == b"\xd0\x0d\xfe\xed"


def test_read_u32_magic():
    assert read_u32(b"\xd0\x0d\xfe\xed") == 0xD00DFEED


@pytest.mark.parametrize("value", [0, 1, 0x1234, 0xFFFF])
def test_u16_round_trip(value):
    assert read_u16(pack_u16(value)) == value


@pytest.mark.parametrize("value", [0, 0xDEADBEEF, 0xFFFFFFFF])
def test_u32_round_trip(value):
    assert read_u32(pack_u32(value)) == value


@pytest.mark.parametrize("value", [0, 0xDEADBEEF01ABCDEF, (1 << 64) - 1])
def test_u64_round_trip(value):
    assert read_u64(pack_u64(value)) == value


def test_read_at_offset():
    data = b"\x00\x00" + pack_u32(0xDEADBEEF) + pack_u64(0xDEADBEEF01ABCDEF)
    assert read_u32(data, 2) == 0xDEADBEEF
    assert read_u64(data, 6) == 0xDEADBEEF01ABCDEF


def test_pack_lengths():
    assert len(pack_u16(1)) == 2
    assert len(pack_u32(1)) == 4
    assert len(pack_u64(1)) == 8


def test_read_past_end_raises():
    with pytest.raises(ValueError):
        read_u32(b"\x00\x01\x02", 0)
    with pytest.raises(ValueError):
        read_u64(bytes(8), 1)


@pytest.mark.parametrize("packer", [pack_u16, pack_u32, pack_u64])
def test_pack_negative_raises(packer):
    with pytest.raises(ValueError):
        packer(-1)


def test_pack_too_large_raises():
    with pytest.raises(ValueError):
        pack_u32(1 << 32)
    with pytest.raises(ValueError):
        pack_u16(1 << 16)