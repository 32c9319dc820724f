"""Big-endian integer helpers for flattened device tree data."""

from __future__ import annotations

__all__ = [
    "read_u16",
    "read_u32",
    "read_u64",
    "pack_u16",
    "pack_u32",
    "pack_u64",
]


def _read(data: bytes, offset: int, size: int) -> int:
    if offset < 0 or offset + size > len(data):
        raise ValueError(
            f"cannot read {size} bytes at offset {offset} from {len(data)} bytes"
        )
    return int.from_bytes(data[offset:offset + size], "big")


def _pack(value: int, size: int) -> bytes:
    if not 0 <= value < (1 << (8 * size)):
        raise ValueError(f"value {value} does not fit in {size} bytes")
    return value.to_bytes(size, "big")


def read_u16(data: bytes, offset: int = 0) -> int:
    """Read a big-endian 16-bit unsigned integer."""
    return _read(data, offset, 2)


def read_u32(data: bytes, offset: int = 0) -> int:
    """Read a big-endian 32-bit unsigned integer."""
    return _read(data, offset, 4)


def read_u64(data: bytes, offset: int = 0) -> int:
    """Read a big-endian 64-bit unsigned integer."""
    return _read(data, offset, 8)


def pack_u16(value: int) -> bytes:
    """Encode a 16-bit unsigned integer as big-endian bytes."""
    return _pack(value, 2)


def pack_u32(value: int) -> bytes:
    """Encode a 32-bit unsigned integer as big-endian bytes."""
    return _pack(value, 4)


def pack_u64(value: int) -> bytes:
    """Encode a 64-bit unsigned integer as big-endian bytes."""
    return _pack(value, 8)