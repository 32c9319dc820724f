"""Command line converter between device tree input and output formats."""

from __future__ import annotations

import argparse
import os
import re
import stat
import sys
from pathlib import Path
from typing import Optional

from fdtkit.byteorder import read_u32
from fdtkit.flattree import BlobOptions, dt_to_asm, dt_to_blob, read_blob_file
from fdtkit.fstree import dt_from_fs
from fdtkit.tree import (
    DEFAULT_FDT_VERSION,
    FDT_MAGIC,
    DtcError,
    DtInfo,
    PhandleFormat,
    fill_fullpaths,
)

__all__ = ["is_power_of_2", "guess_type_by_name", "guess_input_format", "main"]

_VERSION = "fdtkit 1.7.0"

_PHANDLE_FORMATS = {
    "legacy": PhandleFormat.LEGACY,
    "epapr": PhandleFormat.EPAPR,
    "both": PhandleFormat.BOTH,
}

_C_INT = re.compile(r"\s*([+-]?)(?:0[xX]([0-9a-fA-F]+)|(0[0-7]*)|([1-9][0-9]*))")


def _strtol(text: str) -> int:
    m = _C_INT.match(text)
    if not m:
        return 0
    sign, hexd, octd, decd = m.groups()
    if hexd is not None:
        value = int(hexd, 16)
    elif octd is not None:
        value = int(octd, 8)
    else:
        value = int(decd)
    return -value if sign == "-" else value


def is_power_of_2(x: int) -> bool:
    """True for positive powers of two."""
    return x > 0 and (x & (x - 1)) == 0


def guess_type_by_name(fname: str, fallback: Optional[str]) -> Optional[str]:
    """Guess a format from the file name's extension."""
    dot = fname.rfind(".")
    if dot < 0:
        return fallback
    ext = fname[dot:].lower()
    return {".dts": "dts", ".yaml": "yaml", ".dtbo": "dtb", ".dtb": "dtb"}.get(ext, fallback)


def guess_input_format(fname: str, fallback: Optional[str]) -> Optional[str]:
    """Guess an input format: directories are fs, blobs by magic, else by name."""
    try:
        st = os.stat(fname)
    except OSError:
        return fallback
    if stat.S_ISDIR(st.st_mode):
        return "fs"
    if not stat.S_ISREG(st.st_mode):
        return fallback
    try:
        with open(fname, "rb") as f:
            magic = f.read(4)
    except OSError:
        return fallback
    if len(magic) < 4:
        return fallback
    if read_u32(magic) == FDT_MAGIC:
        return "dtb"
    return guess_type_by_name(fname, fallback)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dtc", usage="dtc [options] <input file>")
    parser.add_argument("-q", "--quiet", action="count", default=0,
                        help="Quiet: -q suppress warnings, -qq errors, -qqq all")
    parser.add_argument("-I", "--in-format", help="Input format: dtb or fs")
    parser.add_argument("-o", "--out", default="-", help="Output file")
    parser.add_argument("-O", "--out-format", help="Output format: dtb, asm or null")
    parser.add_argument("-V", "--out-version",
                        help=f"Blob version to produce, defaults to {DEFAULT_FDT_VERSION}")
    parser.add_argument("-d", "--out-dependency", help="Output dependency file")
    parser.add_argument("-R", "--reserve",
                        help="Make space for <number> reserve map entries")
    parser.add_argument("-S", "--space", help="Make the blob at least <bytes> long")
    parser.add_argument("-p", "--pad", help="Add padding to the blob of <bytes> long")
    parser.add_argument("-a", "--align", help="Make the blob align to the <bytes>")
    parser.add_argument("-b", "--boot-cpu", help="Set the physical boot cpu")
    parser.add_argument("-H", "--phandle", help="Phandle format: legacy, epapr or both")
    parser.add_argument("-v", "--version", action="version", version=f"Version: {_VERSION}")
    parser.add_argument("input", nargs="?", default="-")
    return parser


def _load(inform: str, arg: str) -> DtInfo:
    if inform == "dts":
        raise DtcError('Input format "dts" is not supported')
    if inform == "fs":
        return dt_from_fs(arg)
    if inform == "dtb":
        return read_blob_file(arg)
    raise DtcError(f'Unknown input format "{inform}"')


def _render(dti: DtInfo, inform: str, outform: str, version: int,
            options: BlobOptions) -> bytes:
    if outform == "dtb":
        return dt_to_blob(dti, version, options)
    if outform == "asm":
        return dt_to_asm(dti, version, options).encode("utf-8", "surrogateescape")
    if outform == "null":
        return b""
    if outform == "yaml" and inform != "dts":
        raise DtcError("YAML output format requires dts input format")
    if outform in ("dts", "yaml"):
        raise DtcError(f'Output format "{outform}" is not supported')
    raise DtcError(f'Unknown output format "{outform}"')


def _run(ns: argparse.Namespace) -> int:
    alignsize = 0
    if ns.align is not None:
        alignsize = _strtol(ns.align)
        if not is_power_of_2(alignsize):
            raise DtcError(f'Invalid argument "{alignsize}" to -a option')
    if ns.phandle is not None and ns.phandle not in _PHANDLE_FORMATS:
        raise DtcError(f'Invalid argument "{ns.phandle}" to -H option')

    options = BlobOptions(
        reservenum=_strtol(ns.reserve) & 0xFFFFFFFF if ns.reserve else 0,
        minsize=_strtol(ns.space) if ns.space else 0,
        padsize=_strtol(ns.pad) if ns.pad else 0,
        alignsize=alignsize,
        quiet=ns.quiet,
    )
    if options.minsize and options.padsize:
        raise DtcError("Can't set both -p and -S")
    version = _strtol(ns.out_version) if ns.out_version else DEFAULT_FDT_VERSION
    outname = ns.out
    arg = ns.input

    inform = ns.in_format or guess_input_format(arg, "dts")
    outform = ns.out_format or guess_type_by_name(outname, None)
    if outform is None:
        outform = "dtb" if inform == "dts" else "dts"

    dti = _load(inform, arg)
    dti.outname = outname

    if ns.out_dependency:
        try:
            Path(ns.out_dependency).write_text(outname.replace(" ", "\\ ") + ":\n")
        except OSError as err:
            raise DtcError(
                f"Couldn't open dependency file {ns.out_dependency}: {err.strerror}"
            ) from err

    if ns.boot_cpu is not None:
        boot_cpuid = _strtol(ns.boot_cpu)
        if boot_cpuid != -1:
            dti.boot_cpuid_phys = boot_cpuid & 0xFFFFFFFF

    fill_fullpaths(dti.dt, "")
    output = _render(dti, inform, outform, version, options)

    if outname == "-":
        sys.stdout.buffer.write(output)
        sys.stdout.flush()
    else:
        try:
            Path(outname).write_bytes(output)
        except OSError as err:
            raise DtcError(f"Couldn't open output file {outname}: {err.strerror}") from err
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    """Command entry point."""
    ns = _build_parser().parse_args(argv)
    try:
        return _run(ns)
    except DtcError as err:
        print(f"FATAL ERROR: {err}", file=sys.stderr)
        return 1