"""Low-level dump of a flattened device tree blob."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Optional

from fdtkit.byteorder import read_u32, read_u64
from fdtkit.tree import (
    FDT_BEGIN_NODE,
    FDT_END,
    FDT_END_NODE,
    FDT_MAGIC,
    FDT_NOP,
    FDT_PROP,
    DtcError,
    align,
)

__all__ = [
    "tag_name",
    "valid_header",
    "find_embedded_fdt",
    "format_value",
    "is_printable_string",
    "dump_blob",
    "main",
    "HEADER_SIZE",
    "MAX_VERSION",
]

HEADER_SIZE = 40
MAX_VERSION = 17
_MAGIC_BYTES = FDT_MAGIC.to_bytes(4, "big")

_TAG_NAMES = {
    FDT_BEGIN_NODE: "FDT_BEGIN_NODE",
    FDT_END_NODE: "FDT_END_NODE",
    FDT_PROP: "FDT_PROP",
    FDT_NOP: "FDT_NOP",
    FDT_END: "FDT_END",
}


def tag_name(tag: int) -> str:
    """Symbolic name of a structure block tag."""
    return _TAG_NAMES.get(tag, "FDT_???")


def _field(buf: bytes, index: int) -> int:
    return read_u32(buf, index * 4)


def valid_header(buf: bytes) -> bool:
    """Sanity-check the header at the start of buf."""
    size = len(buf)
    if size < HEADER_SIZE or _field(buf, 0) != FDT_MAGIC:
        return False
    return not (
        _field(buf, 5) > MAX_VERSION
        or _field(buf, 6) > MAX_VERSION
        or _field(buf, 1) >= size
        or _field(buf, 2) >= size
        or _field(buf, 3) >= size
    )


def find_embedded_fdt(buf: bytes) -> int:
    """Return the offset of the first plausible blob embedded in buf."""
    size = len(buf)
    pos = 0
    while size - pos >= 4:
        pos = buf.find(_MAGIC_BYTES, pos)
        if pos < 0 or pos >= size - 4:
            break
        if valid_header(buf[pos:]):
            if size - pos < HEADER_SIZE:
                break
            return pos
        pos += 1
    raise DtcError("could not locate fdt magic")


def is_printable_string(data: bytes) -> bool:
    """True if data is a list of non-empty printable NUL-terminated strings."""
    if not data or data[-1] != 0:
        return False
    for part in data[:-1].split(b"\0"):
        if not part or any(not 0x20 <= b < 0x7F for b in part):
            return False
    return True


def format_value(data: bytes) -> str:
    """Render a property value the way it appears in source, after the name."""
    data = bytes(data)
    if not data:
        return ""
    if is_printable_string(data):
        strings = data[:-1].split(b"\0")
        return " = " + ", ".join(f'"{s.decode("ascii")}"' for s in strings)
    if len(data) % 4 == 0:
        cells = (f"0x{read_u32(data, off):08x}" for off in range(0, len(data), 4))
        return " = <" + " ".join(cells) + ">"
    return " = [" + " ".join(f"{b:02x}" for b in data) + "]"


def _hexalt(value: int) -> str:
    return f"{value:#x}" if value else "0"


def _cstring(blob: bytes, offset: int) -> str:
    end = blob.find(b"\0", offset)
    if end < 0:
        raise DtcError("unterminated string in blob")
    return blob[offset:end].decode("utf-8", "surrogateescape")


def dump_blob(blob: bytes, debug: bool = False) -> str:
    """Return a source-like dump of the blob, with header comments."""
    blob = bytes(blob)
    try:
        return _dump(blob, debug)
    except ValueError as err:
        raise DtcError(f"truncated blob: {err}") from err


def _dump(blob: bytes, debug: bool) -> str:
    out: list[str] = []
    magic = _field(blob, 0)
    totalsize = _field(blob, 1)
    off_dt = _field(blob, 2)
    off_str = _field(blob, 3)
    off_rsv = _field(blob, 4)
    version = _field(blob, 5)

    out.append("/dts-v1/;\n")
    out.append(f"// magic:\t\t0x{magic:x}\n")
    out.append(f"// totalsize:\t\t0x{totalsize:x} ({totalsize})\n")
    out.append(f"// off_dt_struct:\t0x{off_dt:x}\n")
    out.append(f"// off_dt_strings:\t0x{off_str:x}\n")
    out.append(f"// off_mem_rsvmap:\t0x{off_rsv:x}\n")
    out.append(f"// version:\t\t{version}\n")
    out.append(f"// last_comp_version:\t{_field(blob, 6)}\n")
    if version >= 2:
        out.append(f"// boot_cpuid_phys:\t0x{_field(blob, 7):x}\n")
    if version >= 3:
        out.append(f"// size_dt_strings:\t0x{_field(blob, 8):x}\n")
    if version >= 17:
        out.append(f"// size_dt_struct:\t0x{_field(blob, 9):x}\n")
    out.append("\n")

    pos = off_rsv
    while True:
        addr, size = read_u64(blob, pos), read_u64(blob, pos + 8)
        pos += 16
        if addr == 0 and size == 0:
            break
        out.append(f"/memreserve/ {_hexalt(addr)} {_hexalt(size)};\n")

    depth = 0
    p = off_dt
    while True:
        tag = read_u32(blob, p)
        p += 4
        if tag == FDT_END:
            break
        if debug:
            out.append(f"// {p - 4:04x}: tag: 0x{tag:08x} ({tag_name(tag)})\n")
        indent = " " * abs(depth * 4)
        if tag == FDT_BEGIN_NODE:
            name = _cstring(blob, p)
            p = align(blob.index(b"\0", p) + 1, 4)
            out.append(f"{indent}{name or '/'} {{\n")
            depth += 1
            continue
        if tag == FDT_END_NODE:
            depth -= 1
            out.append(" " * abs(depth * 4) + "};\n")
            continue
        if tag == FDT_NOP:
            out.append(f"{indent}// [NOP]\n")
            continue
        if tag != FDT_PROP:
            print(f"{indent} ** Unknown tag 0x{tag:08x}", file=sys.stderr)
            break
        sz = read_u32(blob, p)
        nameoff = read_u32(blob, p + 4)
        p += 8
        s_off = off_str + nameoff
        name = _cstring(blob, s_off)
        if version < 16 and sz >= 8:
            p = align(p, 8)
        t = p
        p = align(p + sz, 4)
        if debug:
            out.append(f"// {s_off:04x}: string: {name}\n")
            out.append(f"// {t:04x}: value\n")
        out.append(f"{indent}{name}{format_value(blob[t:t + sz])};\n")
    return "".join(out)


def _read_input(path: str) -> bytes:
    if path == "-":
        return sys.stdin.buffer.read()
    try:
        return Path(path).read_bytes()
    except OSError as err:
        raise DtcError(f"could not read: {path}") from err


def main(argv: Optional[list[str]] = None) -> int:
    """Command entry point: dump a blob file to standard output."""
    print(
        "\n"
        "**** fdtdump is a low-level debugging tool, not meant for general use.\n"
        "**** If you want to decompile a dtb, you probably want\n"
        "****     dtc -I dtb -O dts <filename>\n",
        file=sys.stderr,
    )
    parser = argparse.ArgumentParser(prog="fdtdump", usage="fdtdump [options] <file>")
    parser.add_argument("-d", "--debug", action="store_true",
                        help="Dump debug information while decoding the file")
    parser.add_argument("-s", "--scan", action="store_true",
                        help="Scan for an embedded fdt in file")
    parser.add_argument("file")
    args = parser.parse_args(argv)

    try:
        buf = _read_input(args.file)
        if args.scan:
            try:
                offset = find_embedded_fdt(buf)
            except DtcError as err:
                raise DtcError(f"{args.file}: {err}") from err
            print(f"{args.file}: found fdt at offset {_hexalt(offset)}")
            buf = buf[offset:]
        elif not valid_header(buf):
            raise DtcError(f"{args.file}: header is not valid")
        sys.stdout.write(dump_blob(buf, args.debug))
    except DtcError as err:
        print(f"FATAL ERROR: {err}", file=sys.stderr)
        return 1
    return 0