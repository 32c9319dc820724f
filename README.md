# fdtkit

Tools for working with flattened device trees (FDT, `.dtb` files) in pure
Python, using only the standard library.

fdtkit can:

- read a device tree blob into a live tree (`fdtkit.flattree.dt_from_blob`)
  and write a tree back as a blob of version 1, 2, 3, 16 or 17
  (`dt_to_blob`) or as assembler source (`dt_to_asm`);
- build a tree from a `/proc/device-tree` style directory, where files are
  properties and directories are nodes (`fdtkit.fstree.dt_from_fs`);
- dump the raw contents of a blob for low-level debugging;
- read property values, list properties and list subnodes;
- write properties, create and remove nodes, and delete properties in a
  blob file.

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Command-line tools

### fdtkit-dtc

Converts a tree from one format to another.

```
fdtkit-dtc -I dtb -O dtb -o out.dtb in.dtb
fdtkit-dtc -I fs -O dtb -o tree.dtb /proc/device-tree
fdtkit-dtc -I dtb -O asm -o tree.S in.dtb
```

Input formats are `dtb` and `fs`; output formats are `dtb`, `asm` and
`null` (read and check the input, write nothing). When `-I` is left out, a
directory is read as `fs`, a file starting with the FDT magic number as
`dtb`, and otherwise the file extension decides. When `-O` is left out, the
extension of the `-o` name decides (`.dtb` and `.dtbo` give `dtb`); with no
usable extension the output would be source text, which is not supported,
so give `-O` when writing to standard output.

| Option | Meaning |
| --- | --- |
| `-I`, `--in-format` | input format |
| `-O`, `--out-format` | output format |
| `-o`, `--out` | output file, `-` (the default) for standard output |
| `-V`, `--out-version` | blob version to produce (default 17) |
| `-d`, `--out-dependency` | write a make-style dependency line for the output to this file |
| `-R`, `--reserve` | number of extra empty memory reserve entries |
| `-S`, `--space` | make the blob at least this many bytes |
| `-p`, `--pad` | add this many bytes of padding |
| `-a`, `--align` | pad the blob to a multiple of this power of two |
| `-b`, `--boot-cpu` | set the physical boot CPU in the header |
| `-H`, `--phandle` | phandle format, checked to be `legacy`, `epapr` or `both` |
| `-q`, `--quiet` | suppress the warning when the blob is already larger than `-S` |
| `-v`, `--version` | print the version and exit |

Numbers may be written in decimal, hex (`0x…`) or octal (leading `0`).
`-S` and `-p` cannot be used together. Errors are printed as
`FATAL ERROR: …` and the command exits with status 1.

### fdtkit-dump

Prints the header fields, memory reserve map and structure block of a blob
as commented source-like text.

```
fdtkit-dump board.dtb
fdtkit-dump -d board.dtb        # also show offsets and tag names
fdtkit-dump -s firmware.img     # look for a blob embedded in a larger file
```

### fdtkit-get

Reads values from a blob. Arguments come in node/property pairs; each value
is printed on its own line.

```
fdtkit-get board.dtb / compatible
fdtkit-get -t x board.dtb /cpus/cpu@0 reg
fdtkit-get -p board.dtb /chosen          # list properties of each node
fdtkit-get -l board.dtb /                # list subnodes of each node
fdtkit-get -d missing board.dtb / model  # print a default when not found
```

A node path that does not start with `/` is looked up through the
`/aliases` node. Type strings for `-t` are an optional size (`hh` or `b`
byte, `h` 16-bit, `l` 32-bit) followed by a format: `s` string, `i` signed,
`u` unsigned, `x` hex, `r` raw bytes. Without `-t`, printable string lists
are shown as strings and other values as 32-bit cells (or bytes when the
length is not a multiple of four).

### fdtkit-put

Edits a blob file in place; the file is rewritten as a version 17 blob.

```
fdtkit-put -t s board.dtb /chosen bootargs "console=ttyS0"
fdtkit-put board.dtb /node value 1 2 3                    # 32-bit integers
fdtkit-put -t x board.dtb /node value 1 2 ff
fdtkit-put -t bx board.dtb /node bytes 01 02 ff           # one byte each
fdtkit-put -c board.dtb /new-node                         # create node
fdtkit-put -p -t s board.dtb /a/b/c name value            # create path first
fdtkit-put -r board.dtb /old-node                         # remove node
fdtkit-put -d board.dtb /node prop1 prop2                 # delete properties
```

Values are integers unless `-t s` is given; integers are read in decimal
by default, `-t x` reads hex and `-t i` accepts decimal, hex or octal.
The raw type `r` is not accepted. `-v` prints each decoded value to
standard error.

## Python use

```python
from fdtkit.flattree import BlobOptions, dt_from_blob, dt_to_blob, read_blob_file
from fdtkit.tree import fill_fullpaths

dti = read_blob_file("board.dtb")        # or dt_from_blob(raw_bytes)

node = dti.dt.find("/subnode@1")
prop = node.get_property("compatible")
print(bytes(prop.val))

fill_fullpaths(dti.dt, "")               # needed before writing a blob
blob = dt_to_blob(dti, 17, BlobOptions(padsize=64))
```

A tree read from a directory:

```python
from fdtkit.fstree import dt_from_fs

dti = dt_from_fs("/proc/device-tree")
```

The query and edit functions can be used directly too, for example
`fdtkit.fdtget.fdtget`, `fdtkit.fdtget.show_data`,
`fdtkit.fdtput.create_paths`, `fdtkit.fdtput.delete_node` and
`fdtkit.fdtdump.dump_blob`.

Errors in input or arguments are raised as `fdtkit.tree.DtcError`.

## What fdtkit does not do

- It does not read or write device tree source (`.dts`) text, nor YAML;
  `fdtkit-dtc` reports these formats as not supported.
- It does not run semantic checks on trees, resolve labels or phandle
  references, generate `__symbols__` or fixup nodes, or sort trees.
- It does not apply overlays to a base blob.