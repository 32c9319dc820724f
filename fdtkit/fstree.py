"""Build a live device tree from a /proc/device-tree style directory."""

from __future__ import annotations

import os
import sys
from pathlib import Path

from fdtkit.byteorder import read_u32
from fdtkit.tree import DTSF_V1, Data, DtcError, DtInfo, Node, Property

__all__ = ["guess_boot_cpuid", "dt_from_fs"]


def guess_boot_cpuid(tree: Node) -> int:
    """Return the reg value of the first CPU under /cpus, or 0 if there is none."""
    cpus = tree.find("/cpus")
    if cpus is None:
        return 0
    bootcpu = next(cpus.children_alive(), None)
    if bootcpu is None:
        return 0
    reg = bootcpu.get_property("reg")
    if reg is None or len(reg.val) != 4:
        raise DtcError("Bootcpu reg property is missing or malformed")
    return read_u32(bytes(reg.val))


def _read_fstree(dirname: Path) -> Node:
    try:
        entries = sorted(os.scandir(dirname), key=lambda e: e.name)
    except OSError as err:
        raise DtcError(f'Couldn\'t opendir() "{dirname}": {err.strerror}') from err

    tree = Node()
    for entry in entries:
        path = Path(entry.path)
        try:
            is_file = entry.is_file()
            is_dir = entry.is_dir()
        except OSError as err:
            raise DtcError(f"stat({path}): {err.strerror}") from err
        if is_file:
            try:
                content = path.read_bytes()
            except OSError as err:
                print(f"WARNING: Cannot open {path}: {err.strerror}", file=sys.stderr)
                continue
            tree.add_property(Property(entry.name, Data(content)))
        elif is_dir:
            child = _read_fstree(path)
            child.name = entry.name
            tree.add_child(child)
    return tree


def dt_from_fs(dirname: str | os.PathLike) -> DtInfo:
    """Read a directory tree where files are properties and directories nodes."""
    tree = _read_fstree(Path(dirname))
    tree.name = ""
    return DtInfo(
        dt=tree,
        reservelist=[],
        boot_cpuid_phys=guess_boot_cpuid(tree),
        dtsflags=DTSF_V1,
    )