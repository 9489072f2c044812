# dtcheck

dtcheck validates a device tree held in memory. It runs a table of
checks over every node, and they look for structural, semantic and
style problems. Each problem is reported as a warning or an error. A
run can stop when the tree has errors.

## Installation

```
pip install .
```

To also install what the test suite needs:

```
pip install .[test]
```

## Building a tree

- `dtcheck.data.Data` holds a property value. It is a byte buffer that
  also keeps a list of `Marker`s. A marker has a `MarkerType`: `LABEL`,
  `REF_PHANDLE`, `REF_PATH`, `STRING` or `NONE`.
  - The `append_*` methods change the value in place and return it, so
    calls can be chained. They are `append_cell`, `append_integer`,
    `append_addr`, `append_byte`, `append_zeroes`, `append_align`,
    `append_re` and `append_data`.
  - `add_marker`, `merge` and `insert_at_marker` manage the markers.
  - `copy_mem` and `copy_file` build a new value from bytes or from a
    binary stream.
- `dtcheck.tree.Node` and `dtcheck.tree.Property` make up the tree.
  - `Node` offers lookups by path, label, phandle or reference.
  - `Node.walk()` yields the node and its descendants.
  - `Node.assign_phandle()` allocates phandles.
- `dtcheck.tree.DtInfo` wraps the root node together with these
  settings:
  - `outname`
  - `dtsflags`, a `DtsFlags` value such as `DtsFlags.PLUGIN`
  - `quiet`
  - `generate_symbols`

```python
from dtcheck.data import Data
from dtcheck.tree import DtInfo, Node, Property

root = Node("")
cpus = root.add_child(Node("cpus"))
cpus.add_property(Property("#address-cells", Data().append_cell(1)))
cpus.add_property(Property("#size-cells", Data().append_cell(0)))

dti = DtInfo(root)
```

## Running checks

```python
from dtcheck.checks import (
    ChecksFailed, build_check_table, parse_checks_option, process_checks,
)

table = build_check_table()
parse_checks_option(table, True, False, "no-unit_address_vs_reg")  # silence a warning
parse_checks_option(table, False, True, "avoid_default_addr_size")  # promote to error

try:
    had_errors = process_checks(table, False, dti)
except ChecksFailed:
    print("tree has errors")
```

`build_check_table()` returns a new list of `Check` objects each time it
is called, in the order they run. Every enabled check runs its
prerequisites first. A check whose prerequisite did not pass is not run.

`process_checks(table, force, dti)` returns `True` if any check that
counts as an error failed. If there were errors and `force` is false, it
raises `ChecksFailed`. If `force` is true, it writes a warning that
output was forced, unless `dti.quiet` is 3 or more.

`parse_checks_option(table, warn, error, arg)` works as follows:

- Given a check name, it raises that check's level and the level of its
  prerequisites.
- Given `no-<name>` or `no_<name>`, it lowers that check's level and the
  level of every check that depends on it.
- Given an unknown name, it raises `ValueError`.

`find_check(table, name)` looks a check up by name.

Diagnostics are written to standard error in this form:

```
<location>: Warning (<check name>): <node path>[:<property>]: <message>
```

- The location is the first entry of the property's or the node's
  `srcpos` list. If there is none, it is `dti.outname`, and `"-"` is
  shown as `<stdout>`.
- `dti.quiet` of 1 silences warnings. A value of 2 silences errors as
  well.

## Individual checks

Each check function takes `(check, dti, node)`. Wrap it in a
`dtcheck.checkbase.Check` and call `run(dti)` to apply it to every node.
Afterwards, `check.status` holds a `CheckStatus`.

```python
from dtcheck.checkbase import Check, CheckStatus
from dtcheck.structure import check_reg_format

reg = Check("reg_format", check_reg_format, warn=True)
reg.run(dti)
assert reg.status is CheckStatus.PASSED
```

The functions are grouped into modules:

- `dtcheck.structure`:
  - node and property name characters
  - duplicate names and labels
  - explicit phandles
  - phandle and path reference fixups
  - omitting unused nodes
  - string, string-list and cell properties
  - aliases
  - the `reg` and `ranges` formats
- `dtcheck.buses`:
  - PCI, simple-bus, I2C and SPI bridges and their unit addresses
  - unit address format
  - default and unnecessary `#address-cells`/`#size-cells`
  - unique unit addresses
  - the `/chosen` node
- `dtcheck.references`:
  - phandle-with-arguments properties, described by `Provider`
  - GPIO properties
  - interrupt providers, `interrupt-map` and `interrupts`
  - graph ports and endpoints

## What it does not do

dtcheck works only on trees built in Python code. It does not:

- read device tree source files or flattened device tree blobs
- write any output format
- provide a command-line tool