"""Conversion between live device trees and flattened blobs or assembler."""

from __future__ import annotations

import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from fdtkit.byteorder import pack_u32, pack_u64, read_u32, read_u64
from fdtkit.tree import (
    DEFAULT_FDT_VERSION,
    DTSF_V1,
    FDT_BEGIN_NODE,
    FDT_END,
    FDT_END_NODE,
    FDT_MAGIC,
    FDT_NOP,
    FDT_PROP,
    Data,
    DtcError,
    DtInfo,
    Label,
    MarkerType,
    Node,
    Property,
    ReserveEntry,
    align,
)

__all__ = [
    "VersionInfo",
    "BlobOptions",
    "VERSION_TABLE",
    "find_version",
    "dt_to_blob",
    "dt_to_asm",
    "dt_from_blob",
    "read_blob_file",
    "FDT_V1_SIZE",
    "FDT_V2_SIZE",
    "FDT_V3_SIZE",
    "FDT_V17_SIZE",
    "RESERVE_ENTRY_SIZE",
]

FTF_FULLPATH = 0x1
FTF_VARALIGN = 0x2
FTF_NAMEPROPS = 0x4
FTF_BOOTCPUID = 0x8
FTF_STRTABSIZE = 0x10
FTF_STRUCTSIZE = 0x20
FTF_NOPS = 0x40

FDT_V1_SIZE = 7 * 4
FDT_V2_SIZE = FDT_V1_SIZE + 4
FDT_V3_SIZE = FDT_V2_SIZE + 4
FDT_V17_SIZE = FDT_V3_SIZE + 4

RESERVE_ENTRY_SIZE = 16
_CELL = 4

# Header field indices, in order of appearance in the header.
_H_MAGIC, _H_TOTALSIZE, _H_OFF_STRUCT, _H_OFF_STRINGS, _H_OFF_RSVMAP = range(5)
_H_VERSION, _H_LAST_COMP, _H_BOOT_CPUID, _H_SIZE_STRINGS, _H_SIZE_STRUCT = range(5, 10)


@dataclass(frozen=True)
class VersionInfo:
    """Layout properties of one blob format version."""

    version: int
    last_comp_version: int
    hdr_size: int
    flags: int


VERSION_TABLE: tuple[VersionInfo, ...] = (
    VersionInfo(1, 1, FDT_V1_SIZE, FTF_FULLPATH | FTF_VARALIGN | FTF_NAMEPROPS),
    VersionInfo(
        2, 1, FDT_V2_SIZE,
        FTF_FULLPATH | FTF_VARALIGN | FTF_NAMEPROPS | FTF_BOOTCPUID,
    ),
    VersionInfo(
        3, 1, FDT_V3_SIZE,
        FTF_FULLPATH | FTF_VARALIGN | FTF_NAMEPROPS | FTF_BOOTCPUID | FTF_STRTABSIZE,
    ),
    VersionInfo(16, 16, FDT_V3_SIZE, FTF_BOOTCPUID | FTF_STRTABSIZE | FTF_NOPS),
    VersionInfo(
        17, 16, FDT_V17_SIZE,
        FTF_BOOTCPUID | FTF_STRTABSIZE | FTF_STRUCTSIZE | FTF_NOPS,
    ),
)


@dataclass
class BlobOptions:
    """Sizing options for generated blobs."""

    reservenum: int = 0
    minsize: int = 0
    padsize: int = 0
    alignsize: int = 0
    quiet: int = 0


def find_version(version: int) -> VersionInfo:
    """Return the layout description of a blob version."""
    for vi in VERSION_TABLE:
        if vi.version == version:
            return vi
    raise DtcError(f"Unknown device tree blob version {version}")


def _enc(text: str) -> bytes:
    return text.encode("utf-8", "surrogateescape")


def _dec(raw: bytes) -> str:
    return raw.decode("utf-8", "surrogateescape")


def _warn(message: str) -> None:
    print(message, file=sys.stderr)


def _live_labels(labels: Optional[Iterable[Label]]) -> Iterable[str]:
    return (lab.label for lab in labels or () if not lab.deleted)


class _BinEmitter:
    def __init__(self) -> None:
        self.buf = Data()

    def cell(self, val: int) -> None:
        self.buf.append_cell(val)

    def string(self, text: str, length: int = 0) -> None:
        if length:
            text = text[:length]
        self.buf.append_data(_enc(text)).append_byte(0)

    def align(self, alignment: int) -> None:
        self.buf.append_align(alignment)

    def data(self, d: Data) -> None:
        self.buf.append_data(bytes(d.val))

    def beginnode(self, labels: Optional[list[Label]]) -> None:
        self.cell(FDT_BEGIN_NODE)

    def endnode(self, labels: Optional[list[Label]]) -> None:
        self.cell(FDT_END_NODE)

    def property(self, labels: Optional[list[Label]]) -> None:
        self.cell(FDT_PROP)


class _AsmEmitter:
    def __init__(self) -> None:
        self.parts: list[str] = []

    def write(self, text: str) -> None:
        self.parts.append(text)

    def text(self) -> str:
        return "".join(self.parts)

    def cell(self, val: int) -> None:
        val &= 0xFFFFFFFF
        for shift in (24, 16, 8, 0):
            self.write(f"\t.byte\t0x{(val >> shift) & 0xFF:02x}\n")

    def string(self, text: str, length: int = 0) -> None:
        if length:
            text = text[:length]
        self.write(f'\t.asciz\t"{text}"\n')

    def align(self, alignment: int) -> None:
        self.write(f"\t.balign\t{alignment}, 0\n")

    def data(self, d: Data) -> None:
        for marker in d.markers:
            if marker.type == MarkerType.LABEL:
                self.offset_label(marker.ref or "", marker.offset)
        raw = bytes(d.val)
        whole = len(raw) - len(raw) % _CELL
        for off in range(0, whole, _CELL):
            self.cell(read_u32(raw, off))
        for byte in raw[whole:]:
            self.write(f"\t.byte\t0x{byte:x}\n")

    def global_label(self, name: str) -> None:
        self.write(f"\t.globl\t{name}\n{name}:\n")

    def beginnode(self, labels: Optional[list[Label]]) -> None:
        for name in _live_labels(labels):
            self.global_label(name)
        self.write("\t/* FDT_BEGIN_NODE */\n")
        self.cell(FDT_BEGIN_NODE)

    def endnode(self, labels: Optional[list[Label]]) -> None:
        self.write("\t/* FDT_END_NODE */\n")
        self.cell(FDT_END_NODE)
        for name in _live_labels(labels):
            self.global_label(f"{name}_end")

    def property(self, labels: Optional[list[Label]]) -> None:
        for name in _live_labels(labels):
            self.global_label(name)
        self.write("\t/* FDT_PROP */\n")
        self.cell(FDT_PROP)

    def label(self, prefix: str, name: str) -> None:
        self.write(f"\t.globl\t{prefix}_{name}\n")
        self.write(f"{prefix}_{name}:\n")
        self.write(f"_{prefix}_{name}:\n")

    def offset_label(self, name: str, offset: int) -> None:
        self.write(f"\t.globl\t{name}\n")
        self.write(f"{name}\t= . + {offset}\n")

    def belong(self, expr: str) -> None:
        self.write(f"\t.byte\t(({expr}) >> 24) & 0xff\n")
        self.write(f"\t.byte\t(({expr}) >> 16) & 0xff\n")
        self.write(f"\t.byte\t(({expr}) >> 8) & 0xff\n")
        self.write(f"\t.byte\t({expr}) & 0xff\n")


def _stringtable_insert(strtab: bytearray, name: str) -> int:
    needle = _enc(name) + b"\0"
    found = strtab.find(needle)
    if found >= 0:
        return found
    offset = len(strtab)
    strtab += needle
    return offset


def _flatten_tree(tree: Node, emit, strtab: bytearray, vi: VersionInfo) -> None:
    if tree.deleted:
        return
    emit.beginnode(tree.labels)
    emit.string(tree.fullpath if vi.flags & FTF_FULLPATH else tree.name)
    emit.align(_CELL)

    seen_name_prop = False
    for prop in tree.properties():
        if prop.name == "name":
            seen_name_prop = True
        nameoff = _stringtable_insert(strtab, prop.name)
        emit.property(prop.labels)
        emit.cell(len(prop.val))
        emit.cell(nameoff)
        if vi.flags & FTF_VARALIGN and len(prop.val) >= 8:
            emit.align(8)
        emit.data(prop.val)
        emit.align(_CELL)

    if vi.flags & FTF_NAMEPROPS and not seen_name_prop:
        emit.property(None)
        emit.cell(tree.basenamelen + 1)
        emit.cell(_stringtable_insert(strtab, "name"))
        if vi.flags & FTF_VARALIGN and tree.basenamelen + 1 >= 8:
            emit.align(8)
        emit.string(tree.name, tree.basenamelen)
        emit.align(_CELL)

    for child in tree.children_alive():
        _flatten_tree(child, emit, strtab, vi)

    emit.endnode(tree.labels)


def _flatten_reserve_list(reservelist: Iterable[ReserveEntry], reservenum: int) -> bytes:
    d = Data()
    for entry in reservelist:
        d.append_re(entry.address, entry.size)
    for _ in range(reservenum):
        d.append_re(0, 0)
    return bytes(d.val)


def dt_to_blob(
    dti: DtInfo,
    version: int = DEFAULT_FDT_VERSION,
    options: Optional[BlobOptions] = None,
) -> bytes:
    """Flatten a tree into a device tree blob of the given version."""
    opts = options or BlobOptions()
    vi = find_version(version)

    emit = _BinEmitter()
    strtab = bytearray()
    _flatten_tree(dti.dt, emit, strtab, vi)
    emit.cell(FDT_END)
    dtbuf = bytes(emit.buf.val)

    reservebuf = _flatten_reserve_list(dti.reservelist, opts.reservenum)
    reservesize = len(reservebuf) + RESERVE_ENTRY_SIZE
    reserve_off = align(vi.hdr_size, 8)
    totalsize = reserve_off + reservesize + len(dtbuf) + len(strtab)

    padlen = 0
    if opts.minsize > 0:
        padlen = opts.minsize - totalsize
        if padlen < 0:
            padlen = 0
            if opts.quiet < 1:
                _warn(f"Warning: blob size {totalsize} >= minimum size {opts.minsize}")
    if opts.padsize > 0:
        padlen = opts.padsize
    if opts.alignsize > 0:
        padlen = align(totalsize + padlen, opts.alignsize) - totalsize
    if padlen > 0:
        totalsize += padlen

    fields = [0xFFFFFFFF] * 10
    fields[_H_MAGIC] = FDT_MAGIC
    fields[_H_TOTALSIZE] = totalsize
    fields[_H_OFF_STRUCT] = reserve_off + reservesize
    fields[_H_OFF_STRINGS] = reserve_off + reservesize + len(dtbuf)
    fields[_H_OFF_RSVMAP] = reserve_off
    fields[_H_VERSION] = vi.version
    fields[_H_LAST_COMP] = vi.last_comp_version
    if vi.flags & FTF_BOOTCPUID:
        fields[_H_BOOT_CPUID] = dti.boot_cpuid_phys & 0xFFFFFFFF
    if vi.flags & FTF_STRTABSIZE:
        fields[_H_SIZE_STRINGS] = len(strtab)
    if vi.flags & FTF_STRUCTSIZE:
        fields[_H_SIZE_STRUCT] = len(dtbuf)
    header = b"".join(pack_u32(f) for f in fields)[: vi.hdr_size]

    blob = Data(header)
    blob.append_align(8)
    blob.append_data(reservebuf)
    blob.append_zeroes(RESERVE_ENTRY_SIZE)
    blob.append_data(dtbuf)
    blob.append_data(bytes(strtab))
    if padlen > 0:
        blob.append_zeroes(padlen)
    return bytes(blob.val)


def dt_to_asm(
    dti: DtInfo,
    version: int = DEFAULT_FDT_VERSION,
    options: Optional[BlobOptions] = None,
) -> str:
    """Render a tree as assembler source that builds the blob."""
    opts = options or BlobOptions()
    vi = find_version(version)
    sym = "dt"
    emit = _AsmEmitter()
    w = emit.write

    w("/* autogenerated by dtc, do not edit */\n\n")
    emit.label(sym, "blob_start")
    emit.label(sym, "header")
    w("\t/* magic */\n")
    emit.cell(FDT_MAGIC)
    w("\t/* totalsize */\n")
    emit.belong(f"_{sym}_blob_abs_end - _{sym}_blob_start")
    w("\t/* off_dt_struct */\n")
    emit.belong(f"_{sym}_struct_start - _{sym}_blob_start")
    w("\t/* off_dt_strings */\n")
    emit.belong(f"_{sym}_strings_start - _{sym}_blob_start")
    w("\t/* off_mem_rsvmap */\n")
    emit.belong(f"_{sym}_reserve_map - _{sym}_blob_start")
    w("\t/* version */\n")
    emit.cell(vi.version)
    w("\t/* last_comp_version */\n")
    emit.cell(vi.last_comp_version)

    if vi.flags & FTF_BOOTCPUID:
        w("\t/* boot_cpuid_phys */\n")
        emit.cell(dti.boot_cpuid_phys)
    if vi.flags & FTF_STRTABSIZE:
        w("\t/* size_dt_strings */\n")
        emit.belong(f"_{sym}_strings_end - _{sym}_strings_start")
    if vi.flags & FTF_STRUCTSIZE:
        w("\t/* size_dt_struct */\n")
        emit.belong(f"_{sym}_struct_end - _{sym}_struct_start")

    emit.align(8)
    emit.label(sym, "reserve_map")
    w("/* Memory reserve map from source file */\n")

    for entry in dti.reservelist:
        for name in _live_labels(entry.labels):
            emit.global_label(name)
        emit.belong(f"0x{(entry.address >> 32) & 0xFFFFFFFF:08x}")
        emit.belong(f"0x{entry.address & 0xFFFFFFFF:08x}")
        emit.belong(f"0x{(entry.size >> 32) & 0xFFFFFFFF:08x}")
        emit.belong(f"0x{entry.size & 0xFFFFFFFF:08x}")
    for _ in range(opts.reservenum):
        w("\t.long\t0, 0\n\t.long\t0, 0\n")
    w("\t.long\t0, 0\n\t.long\t0, 0\n")

    strtab = bytearray()
    emit.label(sym, "struct_start")
    _flatten_tree(dti.dt, emit, strtab, vi)
    w("\t/* FDT_END */\n")
    emit.cell(FDT_END)
    emit.label(sym, "struct_end")

    emit.label(sym, "strings_start")
    if strtab:
        for raw in bytes(strtab[:-1]).split(b"\0"):
            w(f'\t.asciz "{_dec(raw)}"\n')
    emit.label(sym, "strings_end")

    emit.label(sym, "blob_end")
    if opts.minsize > 0:
        w(f"\t.space\t{opts.minsize} - (_{sym}_blob_end - _{sym}_blob_start), 0\n")
    if opts.padsize > 0:
        w(f"\t.space\t{opts.padsize}, 0\n")
    if opts.alignsize > 0:
        emit.align(opts.alignsize)
    emit.label(sym, "blob_abs_end")
    return emit.text()


class _InBuf:
    """A cursor over a bounded region of a blob."""

    def __init__(self, data: bytes, base: int, limit: int) -> None:
        self.data = data
        self.base = base
        self.limit = limit
        self.pos = base

    @staticmethod
    def _premature() -> DtcError:
        return DtcError("Premature end of data parsing flat device tree")

    def read_chunk(self, length: int) -> bytes:
        if self.pos + length > self.limit:
            raise self._premature()
        chunk = self.data[self.pos:self.pos + length]
        self.pos += length
        return chunk

    def read_word(self) -> int:
        assert (self.pos - self.base) % _CELL == 0
        return read_u32(self.read_chunk(_CELL))

    def realign(self, alignment: int) -> None:
        self.pos = self.base + align(self.pos - self.base, alignment)
        if self.pos > self.limit:
            raise self._premature()

    def read_string(self) -> str:
        end = self.data.find(b"\0", self.pos, self.limit)
        if end < 0:
            raise self._premature()
        text = _dec(self.data[self.pos:end])
        self.pos = end + 1
        self.realign(_CELL)
        return text

    def read_data(self, length: int) -> Data:
        if length == 0:
            return Data()
        d = Data(self.read_chunk(length))
        self.realign(_CELL)
        return d

    def read_stringtable(self, offset: int) -> str:
        if offset >= 1 << 31:
            offset -= 1 << 32
        start = self.base + offset
        end = -1
        if self.base <= start < self.limit:
            end = self.data.find(b"\0", start, self.limit)
        if end < 0:
            raise DtcError(f"String offset {offset} overruns string table")
        return _dec(self.data[start:end])


def _read_property(dtbuf: _InBuf, strbuf: _InBuf, flags: int) -> Property:
    proplen = dtbuf.read_word()
    stroff = dtbuf.read_word()
    name = strbuf.read_stringtable(stroff)
    if flags & FTF_VARALIGN and proplen >= 8:
        dtbuf.realign(8)
    return Property(name, dtbuf.read_data(proplen))


def _read_mem_reserve(inb: _InBuf) -> list[ReserveEntry]:
    entries: list[ReserveEntry] = []
    while True:
        chunk = inb.read_chunk(RESERVE_ENTRY_SIZE)
        address, size = read_u64(chunk, 0), read_u64(chunk, 8)
        if size == 0:
            return entries
        entries.append(ReserveEntry(address, size))


def _nodename_from_path(ppath: str, cpath: str) -> str:
    if not cpath.startswith(ppath):
        raise DtcError(f'Path "{cpath}" is not valid as a child of "{ppath}"')
    plen = len(ppath)
    if ppath != "/":
        plen += 1
    return cpath[plen:]


def _unflatten_tree(dtbuf: _InBuf, strbuf: _InBuf, parent_flatname: str, flags: int) -> Node:
    node = Node()
    flatname = dtbuf.read_string()
    if flags & FTF_FULLPATH:
        node.name = _nodename_from_path(parent_flatname, flatname)
    else:
        node.name = flatname

    while True:
        val = dtbuf.read_word()
        if val == FDT_PROP:
            if node.children:
                _warn("Warning: Flat tree input has subnodes preceding a property.")
            node.add_property(_read_property(dtbuf, strbuf, flags))
        elif val == FDT_BEGIN_NODE:
            node.add_child(_unflatten_tree(dtbuf, strbuf, flatname, flags))
        elif val == FDT_END_NODE:
            return node
        elif val == FDT_END:
            raise DtcError("Premature FDT_END in device tree blob")
        elif val == FDT_NOP:
            if not flags & FTF_NOPS:
                _warn("Warning: NOP tag found in flat tree version <16")
        else:
            raise DtcError(f"Invalid opcode word {val:08x} in device tree blob")


def _header_field(blob: bytes, index: int) -> int:
    offset = index * 4
    if offset + 4 > len(blob):
        raise DtcError("DT blob header is truncated")
    return read_u32(blob, offset)


def dt_from_blob(blob: bytes) -> DtInfo:
    """Rebuild a live tree from the bytes of a device tree blob."""
    blob = bytes(blob)
    if len(blob) < 4:
        raise DtcError("EOF reading DT blob magic number")
    if read_u32(blob, 0) != FDT_MAGIC:
        raise DtcError("Blob has incorrect magic number")
    if len(blob) < 8:
        raise DtcError("EOF reading DT blob size")
    totalsize = read_u32(blob, 4)
    if totalsize < FDT_V1_SIZE:
        raise DtcError(f"DT blob size ({totalsize}) is too small")
    if len(blob) < totalsize:
        raise DtcError(f"EOF before reading {totalsize} bytes of DT blob")
    blob = blob[:totalsize]

    off_dt = _header_field(blob, _H_OFF_STRUCT)
    off_str = _header_field(blob, _H_OFF_STRINGS)
    off_mem_rsvmap = _header_field(blob, _H_OFF_RSVMAP)
    version = _header_field(blob, _H_VERSION)
    boot_cpuid_phys = _header_field(blob, _H_BOOT_CPUID) if totalsize >= FDT_V2_SIZE else 0

    if off_mem_rsvmap >= totalsize:
        raise DtcError("Mem Reserve structure offset exceeds total size")
    if off_dt >= totalsize:
        raise DtcError("DT structure offset exceeds total size")
    if off_str > totalsize:
        raise DtcError("String table offset exceeds total size")

    if version >= 3:
        size_str = _header_field(blob, _H_SIZE_STRINGS)
        if off_str + size_str > totalsize:
            raise DtcError("String table extends past total size")
        strbuf = _InBuf(blob, off_str, off_str + size_str)
    else:
        strbuf = _InBuf(blob, off_str, totalsize)

    if version >= 17:
        size_dt = _header_field(blob, _H_SIZE_STRUCT)
        if off_dt + size_dt > totalsize:
            raise DtcError("Structure block extends past total size")

    if version < 16:
        flags = FTF_FULLPATH | FTF_NAMEPROPS | FTF_VARALIGN
    else:
        flags = FTF_NOPS

    memresvbuf = _InBuf(blob, off_mem_rsvmap, totalsize)
    dtbuf = _InBuf(blob, off_dt, totalsize)

    reservelist = _read_mem_reserve(memresvbuf)

    val = dtbuf.read_word()
    if val != FDT_BEGIN_NODE:
        raise DtcError(
            "Device tree blob doesn't begin with FDT_BEGIN_NODE "
            f"(begins with 0x{val:08x})"
        )
    tree = _unflatten_tree(dtbuf, strbuf, "", flags)

    if dtbuf.read_word() != FDT_END:
        raise DtcError("Device tree blob doesn't end with FDT_END")

    return DtInfo(
        dt=tree,
        reservelist=reservelist,
        boot_cpuid_phys=boot_cpuid_phys,
        dtsflags=DTSF_V1,
    )


def read_blob_file(path: str) -> DtInfo:
    """Read a device tree blob from a file, or from standard input for '-'."""
    if path == "-":
        data = sys.stdin.buffer.read()
    else:
        try:
            data = Path(path).read_bytes()
        except OSError as err:
            raise DtcError(f'Couldn\'t open "{path}": {err.strerror}') from err
    return dt_from_blob(data)