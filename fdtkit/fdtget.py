"""Read values, property names or subnode names from a device tree blob."""

from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Sequence

from fdtkit.byteorder import read_u16, read_u32
from fdtkit.fdtdump import is_printable_string
from fdtkit.flattree import dt_from_blob
from fdtkit.tree import DtcError, DtInfo, Node

__all__ = [
    "DisplayMode",
    "DisplayInfo",
    "FdtGetError",
    "decode_type",
    "show_data",
    "list_properties",
    "list_subnodes",
    "fdtget",
    "main",
]

MAX_LEVEL = 32


class DisplayMode(Enum):
    SHOW_VALUE = "value"
    LIST_PROPS = "props"
    LIST_SUBNODES = "subnodes"


@dataclass
class DisplayInfo:
    type: str = ""
    size: int = -1
    mode: DisplayMode = DisplayMode.SHOW_VALUE
    default_val: Optional[str] = None


class FdtGetError(DtcError):
    """A node or property lookup failed."""

    def __init__(self, where: str, code: str) -> None:
        super().__init__(f"Error at '{where}': {code}")
        self.where = where
        self.code = code


def decode_type(spec: str) -> tuple[str, int]:
    """Parse a type string such as 'x', 'hx', 'bu' or 's' into (type, size)."""
    rest = spec
    if not rest:
        raise ValueError("empty type string")
    qualifier = ""
    if rest[0] in "hlLb":
        qualifier, rest = rest[0], rest[1:]
        if rest and rest[0] == qualifier:
            rest = rest[1:]
            if qualifier == "h":
                qualifier = "b"
    if len(rest) != 1 or rest not in "iuxsr":
        raise ValueError(f"invalid type string {spec!r}")
    size = -1
    if rest not in "sr":
        size = {"b": 1, "h": 2, "l": 4}.get(qualifier, -1)
    return rest, size


def _format_cell(value: int, size: int, kind: str) -> str:
    if kind in ("", "d", "i"):
        if size == 4 and value >= 1 << 31:
            value -= 1 << 32
        return str(value)
    if kind == "x":
        return f"{value:x}"
    if kind == "o":
        return f"{value:o}"
    return str(value)


def show_data(disp: DisplayInfo, data: bytes) -> str:
    """Render a property value according to the display options."""
    data = bytes(data)
    if not data:
        return ""
    if disp.type == "r":
        return data.decode("utf-8", "surrogateescape")
    if disp.type == "s" or (not disp.type and is_printable_string(data)):
        if data[-1] != 0:
            raise DtcError("Unterminated string")
        return " ".join(
            s.decode("utf-8", "surrogateescape") for s in data[:-1].split(b"\0")
        )
    size = disp.size
    if size == -1:
        size = 4 if len(data) % 4 == 0 else 1
    elif len(data) % size:
        raise DtcError("Property length must be a multiple of selected data size")
    readers = {4: read_u32, 2: read_u16}
    cells = []
    for off in range(0, len(data), size):
        value = readers[size](data, off) if size in readers else data[off]
        cells.append(_format_cell(value, size, disp.type))
    return " ".join(cells)


def list_properties(node: Node) -> list[str]:
    """Names of the node's properties, in order."""
    return [p.name for p in node.properties()]


def _depth(node: Node) -> int:
    return 1 + max((_depth(c) for c in node.children_alive()), default=0)


def list_subnodes(node: Node) -> list[str]:
    """Names of the node's direct children, in order."""
    if _depth(node) >= MAX_LEVEL:
        raise DtcError("Nested too deep, aborting.")
    return [c.name or "/" for c in node.children_alive()]


def _lookup(root: Node, path: str) -> Node:
    if not path.startswith("/"):
        alias, _, rest = path.partition("/")
        aliases = root.get_subnode("aliases")
        prop = aliases.get_property(alias) if aliases else None
        if prop is None or not prop.val or prop.val[-1] != 0:
            raise FdtGetError(path, "FDT_ERR_BADPATH")
        target = bytes(prop.val[:-1]).decode("utf-8", "surrogateescape")
        path = target + "/" + rest if rest else target
        if not path.startswith("/"):
            raise FdtGetError(path, "FDT_ERR_BADPATH")
    node = root.find(path)
    if node is None:
        raise FdtGetError(path, "FDT_ERR_NOTFOUND")
    return node


def _show_item(disp: DisplayInfo, node: Node, prop_name: Optional[str]) -> str:
    if disp.mode is DisplayMode.LIST_PROPS:
        return "".join(name + "\n" for name in list_properties(node))
    if disp.mode is DisplayMode.LIST_SUBNODES:
        return "".join(name + "\n" for name in list_subnodes(node))
    assert prop_name is not None
    prop = node.get_property(prop_name)
    if prop is not None:
        return show_data(disp, bytes(prop.val)) + "\n"
    if disp.default_val is not None:
        return disp.default_val + "\n"
    raise FdtGetError(prop_name, "FDT_ERR_NOTFOUND")


def fdtget(
    disp: DisplayInfo,
    tree: DtInfo | Node,
    args: Sequence[str],
    args_per_step: int = 2,
) -> str:
    """Process node (and property) arguments and return the text to print."""
    root = tree.dt if isinstance(tree, DtInfo) else tree
    out: list[str] = []
    for i in range(0, len(args) - args_per_step + 1, args_per_step):
        try:
            node = _lookup(root, args[i])
        except FdtGetError as err:
            if disp.default_val is not None:
                out.append(disp.default_val + "\n")
                continue
            raise FdtGetError(args[i], err.code) from err
        prop = None if args_per_step == 1 else args[i + 1]
        out.append(_show_item(disp, node, prop))
    return "".join(out)


def main(argv: Optional[list[str]] = None) -> int:
    """Command entry point."""
    parser = argparse.ArgumentParser(
        prog="fdtget",
        description="read values from device tree",
    )
    parser.add_argument("-t", "--type", help="Type of data")
    parser.add_argument("-p", "--properties", action="store_true",
                        help="List properties for each node")
    parser.add_argument("-l", "--list", action="store_true",
                        help="List subnodes for each node")
    parser.add_argument("-d", "--default",
                        help="Default value to display when the property is missing")
    parser.add_argument("filename")
    parser.add_argument("args", nargs="*")
    ns = parser.parse_args(argv)

    disp = DisplayInfo(default_val=ns.default)
    args_per_step = 2
    if ns.type is not None:
        try:
            disp.type, disp.size = decode_type(ns.type)
        except ValueError:
            parser.error("invalid type string")
    if ns.properties:
        disp.mode, args_per_step = DisplayMode.LIST_PROPS, 1
    if ns.list:
        disp.mode, args_per_step = DisplayMode.LIST_SUBNODES, 1

    if not ns.args:
        return 0
    if args_per_step == 2 and len(ns.args) % 2:
        parser.error("must have an even number of arguments")

    try:
        if ns.filename == "-":
            raw = sys.stdin.buffer.read()
        else:
            raw = Path(ns.filename).read_bytes()
        output = fdtget(disp, dt_from_blob(raw), ns.args, args_per_step)
    except OSError as err:
        print(f"Couldn't open blob from '{ns.filename}': {err.strerror}", file=sys.stderr)
        return 1
    except DtcError as err:
        print(err, file=sys.stderr)
        return 1
    sys.stdout.buffer.write(output.encode("utf-8", "surrogateescape"))
    sys.stdout.flush()
    return 0