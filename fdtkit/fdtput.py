"""Write properties, create or remove nodes in a device tree blob file."""

from __future__ import annotations

import argparse
import re
import sys
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Sequence

from fdtkit.fdtget import decode_type
from fdtkit.flattree import dt_from_blob, dt_to_blob
from fdtkit.tree import Data, DtcError, DtInfo, Node, Property, fill_fullpaths

__all__ = [
    "Operation",
    "PutOptions",
    "FdtPutError",
    "encode_value",
    "create_paths",
    "create_node",
    "delete_node",
    "delete_props",
    "fdtput",
    "main",
]


class Operation(Enum):
    WRITE_PROP = "write"
    CREATE_NODE = "create"
    REMOVE_NODE = "remove"
    DELETE_PROP = "delete"


@dataclass
class PutOptions:
    oper: Operation = Operation.WRITE_PROP
    type: str = ""
    size: int = -1
    verbose: bool = False
    auto_path: bool = False


class FdtPutError(DtcError):
    """A node or property operation failed."""

    def __init__(self, where: str, code: str) -> None:
        super().__init__(f"Error at '{where}': {code}")
        self.where = where
        self.code = code


_DEC = re.compile(r"\s*([+-]?)([0-9]+)")
_HEX = re.compile(r"\s*([+-]?)(?:0[xX](?=[0-9a-fA-F]))?([0-9a-fA-F]+)")
_AUTO = re.compile(r"\s*([+-]?)(?:0[xX]([0-9a-fA-F]+)|(0[0-7]*)|([1-9][0-9]*))")


def _scan_int(text: str, kind: str) -> int:
    if kind == "i":
        m = _AUTO.match(text)
        if m:
            sign, hexd, octd, decd = m.groups()
            if hexd is not None:
                value = int(hexd, 16)
            elif octd is not None:
                value = int(octd, 8)
            else:
                value = int(decd)
    elif kind == "x":
        m = _HEX.match(text)
        if m:
            sign, value = m[1], int(m[2], 16)
    else:
        m = _DEC.match(text)
        if m:
            sign, value = m[1], int(m[2])
    if not m:
        raise DtcError(f"Invalid integer value '{text}'")
    return -value if sign == "-" else value


def _to_c_int(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - (1 << 32) if value >= 1 << 31 else value


def _note(opts: PutOptions, message: str) -> None:
    if opts.verbose:
        print(message, file=sys.stderr)


def encode_value(opts: PutOptions, args: Sequence[str]) -> bytes:
    """Join command-line values into one property value."""
    _note(opts, "Decoding value:")
    kind = opts.type or "d"
    out = bytearray()
    for arg in args:
        if opts.type == "s":
            out += arg.encode("utf-8", "surrogateescape") + b"\0"
            _note(opts, f"\tstring: '{arg}'")
            continue
        width = 4 if opts.size == -1 else opts.size
        ival = _to_c_int(_scan_int(arg, kind))
        out += (ival & ((1 << (8 * width)) - 1)).to_bytes(width, "big")
        label = {1: "byte", 2: "short"}.get(opts.size, "int")
        _note(opts, f"\t{label}: {ival}")
    _note(opts, f"Value size {len(out)}")
    return bytes(out)


def _name_matches(node_name: str, wanted: str) -> bool:
    if node_name == wanted:
        return True
    return "@" not in wanted and "@" in node_name and node_name.split("@", 1)[0] == wanted


def _subnode(node: Node, name: str) -> Optional[Node]:
    return next((c for c in node.children_alive() if _name_matches(c.name, name)), None)


def _walk(node: Node, path: str) -> Optional[Node]:
    for component in filter(None, path.split("/")):
        node = _subnode(node, component)
        if node is None:
            return None
    return node


def _find_node(root: Node, path: str) -> Node:
    target = path
    if not path.startswith("/"):
        alias, _, rest = path.partition("/")
        aliases = _subnode(root, "aliases")
        prop = aliases.get_property(alias) if aliases else None
        if prop is None or not prop.val or prop.val[-1] != 0:
            raise FdtPutError(path, "FDT_ERR_BADPATH")
        target = bytes(prop.val[:-1]).decode("utf-8", "surrogateescape")
        if not target.startswith("/"):
            raise FdtPutError(path, "FDT_ERR_BADPATH")
        target = f"{target}/{rest}" if rest else target
    node = _walk(root, target)
    if node is None:
        raise FdtPutError(path, "FDT_ERR_NOTFOUND")
    return node


def _add_subnode(parent: Node, name: str) -> Node:
    if _subnode(parent, name) is not None:
        raise FdtPutError(name, "FDT_ERR_EXISTS")
    child = Node(name)
    child.parent = parent
    parent.children.insert(0, child)
    return child


def _set_property(node: Node, name: str, value: bytes) -> None:
    prop = node.get_property(name)
    if prop is not None:
        prop.val = Data(value)
    else:
        node.proplist.insert(0, Property(name, Data(value)))


def create_paths(root: Node, path: str) -> Node:
    """Create every missing node along path and return the last one."""
    node = root
    for component in filter(None, path.split("/")):
        child = _subnode(node, component)
        node = child if child is not None else _add_subnode(node, component)
    return node


def create_node(root: Node, path: str) -> Node:
    """Create the node at path; its parent must already exist."""
    sep = path.rfind("/")
    if sep < 0:
        raise FdtPutError(path, "FDT_ERR_BADPATH")
    parent_path, name = path[:sep], path[sep + 1:]
    parent = _find_node(root, parent_path) if sep > 0 else root
    return _add_subnode(parent, name)


def delete_node(root: Node, path: str) -> Node:
    """Remove the node at path together with its subnodes."""
    node = _find_node(root, path)
    if node is root or node.parent is None:
        raise FdtPutError(path, "FDT_ERR_BADOFFSET")
    node.parent.children.remove(node)
    node.parent = None
    return node


def delete_props(root: Node, node_path: str, names: Sequence[str]) -> None:
    """Delete the named properties of a node, stopping at the first missing one."""
    node = _find_node(root, node_path)
    for name in names:
        try:
            node.delete_property(name)
        except KeyError:
            raise FdtPutError(node_path, "FDT_ERR_NOTFOUND") from None


def _read_tree(filename: str) -> DtInfo:
    try:
        raw = Path(filename).read_bytes()
    except OSError as err:
        raise DtcError(f"Couldn't open blob from '{filename}': {err.strerror}") from err
    return dt_from_blob(raw)


def fdtput(opts: PutOptions, filename: str, args: Sequence[str]) -> None:
    """Apply one operation to the blob in filename and write it back."""
    dti = _read_tree(filename)
    root = dti.dt
    args = list(args)

    if opts.oper is Operation.WRITE_PROP:
        if len(args) < 2:
            raise DtcError("missing node or property")
        if opts.auto_path:
            create_paths(root, args[0])
        value = encode_value(opts, args[2:])
        _set_property(_find_node(root, args[0]), args[1], value)
    elif opts.oper is Operation.CREATE_NODE:
        for path in args:
            if opts.auto_path:
                create_paths(root, path)
            else:
                create_node(root, path)
    elif opts.oper is Operation.REMOVE_NODE:
        for path in args:
            delete_node(root, path)
    elif opts.oper is Operation.DELETE_PROP:
        if not args:
            raise DtcError("missing node")
        delete_props(root, args[0], args[1:])

    fill_fullpaths(root, "")
    try:
        Path(filename).write_bytes(dt_to_blob(dti))
    except OSError as err:
        raise DtcError(f"Couldn't write blob to '{filename}': {err.strerror}") from err


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fdtput",
        description="write a property value to a device tree",
    )
    parser.set_defaults(oper=Operation.WRITE_PROP)
    parser.add_argument("-c", "--create", dest="oper", action="store_const",
                        const=Operation.CREATE_NODE,
                        help="Create nodes if they don't already exist")
    parser.add_argument("-r", "--remove", dest="oper", action="store_const",
                        const=Operation.REMOVE_NODE,
                        help="Delete nodes (and any subnodes) if they already exist")
    parser.add_argument("-d", "--delete", dest="oper", action="store_const",
                        const=Operation.DELETE_PROP,
                        help="Delete properties if they already exist")
    parser.add_argument("-p", "--auto-path", action="store_true",
                        help="Automatically create nodes as needed for the node path")
    parser.add_argument("-t", "--type", help="Type of data")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Display each value decoded from command line")
    parser.add_argument("filename")
    parser.add_argument("args", nargs="*")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """Command entry point."""
    parser = _build_parser()
    ns = parser.parse_intermixed_args(argv)
    opts = PutOptions(oper=ns.oper, verbose=ns.verbose, auto_path=ns.auto_path)
    if ns.type is not None:
        try:
            opts.type, opts.size = decode_type(ns.type)
        except ValueError:
            parser.error("Invalid type string")
        if opts.type == "r":
            parser.error("Unsupported raw data type")

    if opts.oper is Operation.WRITE_PROP:
        if len(ns.args) < 1:
            parser.error("missing node")
        if len(ns.args) < 2:
            parser.error("missing property")
    if opts.oper is Operation.DELETE_PROP and len(ns.args) < 1:
        parser.error("missing node")

    try:
        fdtput(opts, ns.filename, ns.args)
    except DtcError as err:
        print(err, file=sys.stderr)
        return 1
    return 0