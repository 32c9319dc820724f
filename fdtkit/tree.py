"""Live device tree model: property data, nodes and tree information."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum, IntFlag
from typing import Iterator, Optional

from fdtkit.byteorder import pack_u64

__all__ = [
    "DtcError",
    "MarkerType",
    "Marker",
    "Data",
    "Label",
    "Property",
    "Node",
    "ReserveEntry",
    "DtInfo",
    "PhandleFormat",
    "phandle_is_valid",
    "align",
    "fill_fullpaths",
    "DEFAULT_FDT_VERSION",
    "DTSF_V1",
    "DTSF_PLUGIN",
    "FDT_MAGIC",
    "FDT_BEGIN_NODE",
    "FDT_END_NODE",
    "FDT_PROP",
    "FDT_NOP",
    "FDT_END",
    "MAX_PROPNAME_LEN",
    "MAX_NODENAME_LEN",
]

DEFAULT_FDT_VERSION = 17

DTSF_V1 = 0x0001
DTSF_PLUGIN = 0x0002

FDT_MAGIC = 0xD00DFEED
FDT_BEGIN_NODE = 0x1
FDT_END_NODE = 0x2
FDT_PROP = 0x3
FDT_NOP = 0x4
FDT_END = 0x9

MAX_PROPNAME_LEN = 31
MAX_NODENAME_LEN = 31


class DtcError(Exception):
    """Fatal error while building, reading or writing a device tree."""


class MarkerType(IntEnum):
    TYPE_NONE = 0
    REF_PHANDLE = 1
    REF_PATH = 2
    LABEL = 3
    TYPE_UINT8 = 4
    TYPE_UINT16 = 5
    TYPE_UINT32 = 6
    TYPE_UINT64 = 7
    TYPE_STRING = 8

    def is_type_marker(self) -> bool:
        """True for markers that describe the type of the following data."""
        return self >= MarkerType.TYPE_UINT8


class PhandleFormat(IntFlag):
    LEGACY = 0x1
    EPAPR = 0x2
    BOTH = 0x3


def phandle_is_valid(phandle: int) -> bool:
    """A phandle is valid unless it is 0 or all ones."""
    return phandle != 0 and phandle != 0xFFFFFFFF


def align(value: int, alignment: int) -> int:
    """Round value up to a multiple of alignment (a power of two)."""
    return (value + alignment - 1) & ~(alignment - 1)


@dataclass
class Marker:
    type: MarkerType
    offset: int
    ref: Optional[str] = None


@dataclass
class Data:
    """A property value: raw bytes plus markers at offsets into them."""

    val: bytearray = field(default_factory=bytearray)
    markers: list[Marker] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.val = bytearray(self.val)

    def __len__(self) -> int:
        return len(self.val)

    def __bytes__(self) -> bytes:
        return bytes(self.val)

    def append_data(self, raw: bytes) -> "Data":
        self.val += raw
        return self

    def append_cell(self, word: int) -> "Data":
        return self.append_integer(word, 32)

    def append_integer(self, value: int, bits: int) -> "Data":
        if bits not in (8, 16, 32, 64):
            raise DtcError(f"Invalid literal size ({bits})")
        value &= (1 << bits) - 1
        return self.append_data(value.to_bytes(bits // 8, "big"))

    def append_re(self, address: int, size: int) -> "Data":
        return self.append_data(pack_u64(address) + pack_u64(size))

    def append_byte(self, byte: int) -> "Data":
        return self.append_integer(byte, 8)

    def append_zeroes(self, length: int) -> "Data":
        return self.append_data(bytes(length))

    def append_align(self, alignment: int) -> "Data":
        return self.append_zeroes(align(len(self.val), alignment) - len(self.val))

    def merge(self, other: "Data") -> "Data":
        base = len(self.val)
        self.val += other.val
        self.markers.extend(
            Marker(m.type, m.offset + base, m.ref) for m in other.markers
        )
        return self

    def add_marker(self, marker_type: MarkerType, ref: Optional[str] = None) -> "Data":
        self.markers.append(Marker(MarkerType(marker_type), len(self.val), ref))
        return self

    def is_one_string(self) -> bool:
        """True if the value is exactly one NUL-terminated string."""
        if not self.val:
            return False
        return self.val[-1] == 0 and 0 not in self.val[:-1]


@dataclass
class Label:
    label: str
    deleted: bool = False


@dataclass
class Property:
    name: str
    val: Data = field(default_factory=Data)
    labels: list[Label] = field(default_factory=list)
    deleted: bool = False


@dataclass(eq=False)
class Node:
    name: str = ""
    proplist: list[Property] = field(default_factory=list)
    children: list["Node"] = field(default_factory=list)
    parent: Optional["Node"] = field(default=None, repr=False)
    fullpath: str = ""
    basenamelen: int = 0
    phandle: int = 0
    addr_cells: int = -1
    size_cells: int = -1
    labels: list[Label] = field(default_factory=list)
    deleted: bool = False

    def properties(self) -> Iterator[Property]:
        """Iterate over the properties that are not deleted."""
        return (p for p in self.proplist if not p.deleted)

    def children_alive(self) -> Iterator["Node"]:
        """Iterate over the child nodes that are not deleted."""
        return (c for c in self.children if not c.deleted)

    def add_property(self, prop: Property) -> Property:
        self.proplist.append(prop)
        return prop

    def add_child(self, child: "Node") -> "Node":
        child.parent = self
        self.children.append(child)
        return child

    def get_property(self, name: str) -> Optional[Property]:
        return next((p for p in self.properties() if p.name == name), None)

    def get_subnode(self, name: str) -> Optional["Node"]:
        return next((c for c in self.children_alive() if c.name == name), None)

    def find(self, path: str) -> Optional["Node"]:
        """Resolve a '/'-separated path relative to this node."""
        node: Optional[Node] = self
        for component in filter(None, path.split("/")):
            node = node.get_subnode(component)
            if node is None:
                return None
        return node

    def delete_property(self, name: str) -> Property:
        prop = self.get_property(name)
        if prop is None:
            raise KeyError(name)
        self.proplist.remove(prop)
        return prop

    def delete_child(self, name: str) -> "Node":
        child = self.get_subnode(name)
        if child is None:
            raise KeyError(name)
        self.children.remove(child)
        child.parent = None
        return child


@dataclass
class ReserveEntry:
    address: int
    size: int
    labels: list[Label] = field(default_factory=list)


@dataclass
class DtInfo:
    dt: Node
    reservelist: list[ReserveEntry] = field(default_factory=list)
    boot_cpuid_phys: int = 0
    dtsflags: int = DTSF_V1
    outname: str = "-"


def _join_path(prefix: str, name: str) -> str:
    if prefix.endswith("/"):
        return prefix + name
    return f"{prefix}/{name}"


def fill_fullpaths(tree: Node, prefix: str = "") -> None:
    """Set fullpath and basenamelen on every live node under tree."""
    tree.fullpath = _join_path(prefix, tree.name)
    unit = tree.name.find("@")
    tree.basenamelen = unit if unit >= 0 else len(tree.name)
    for child in tree.children_alive():
        fill_fullpaths(child, tree.fullpath)