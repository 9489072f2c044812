"""Structural and fixup checks on node and property names, phandles and cells."""

from __future__ import annotations

from typing import Optional

from dtcheck.checkbase import Check, is_multiple_of
from dtcheck.data import Marker, MarkerType
from dtcheck.tree import DtInfo, DtsFlags, Node, Property, phandle_is_valid

LOWERCASE = "abcdefghijklmnopqrstuvwxyz"
UPPERCASE = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
DIGITS = "0123456789"
NODECHARS = LOWERCASE + UPPERCASE + DIGITS + ",._+-@"
PROPCHARS = LOWERCASE + UPPERCASE + DIGITS + ",._+*#?-"
PROPNODECHARSSTRICT = LOWERCASE + UPPERCASE + DIGITS + ",-"

_CELL_SIZE = 4


def _span(text: str, allowed: str) -> int:
    """Length of the leading run of text made only of allowed characters."""
    for index, char in enumerate(text):
        if char not in allowed:
            return index
    return len(text)


def _cstr(value: bytes) -> str:
    """The value up to its first NUL, as text."""
    return bytes(value).split(b"\0", 1)[0].decode("utf-8", "replace")


def _live_properties(node: Node) -> list[Property]:
    return [p for p in node.properties if not p.deleted]


def _live_children(node: Node) -> list[Node]:
    return [c for c in node.children if not c.deleted]


def _addr_cells(node: Node) -> int:
    return 2 if node.addr_cells == -1 else node.addr_cells


def _size_cells(node: Node) -> int:
    return 1 if node.size_cells == -1 else node.size_cells


def _write_cell(prop: Property, offset: int, value: int) -> None:
    assert offset + _CELL_SIZE <= len(prop.val)
    prop.val.val[offset:offset + _CELL_SIZE] = value.to_bytes(_CELL_SIZE, "big")


def check_always_fail(check: Check, dti: DtInfo, node: Node) -> None:
    """Fail on every node; for testing only."""
    check.fail(dti, node, "always_fail check")


def check_is_string(check: Check, dti: DtInfo, node: Node) -> None:
    """The property named by check.data, if present, holds one string."""
    prop = node.get_property(check.data)
    if prop is None:
        return
    if not prop.val.is_one_string():
        check.fail_prop(dti, node, prop, "property is not a string")


def check_is_string_list(check: Check, dti: DtInfo, node: Node) -> None:
    """The property named by check.data, if present, is a list of strings."""
    prop = node.get_property(check.data)
    if prop is None:
        return
    if prop.val.val and prop.val.val[-1] != 0:
        check.fail_prop(dti, node, prop, "property is not a string list")


def check_is_cell(check: Check, dti: DtInfo, node: Node) -> None:
    """The property named by check.data, if present, is one cell."""
    prop = node.get_property(check.data)
    if prop is None:
        return
    if len(prop.val) != _CELL_SIZE:
        check.fail_prop(dti, node, prop, "property is not a single cell")


def check_duplicate_node_names(check: Check, dti: DtInfo, node: Node) -> None:
    children = _live_children(node)
    for index, child in enumerate(children):
        for later in children[index + 1:]:
            if child.name == later.name:
                check.fail(dti, later, "Duplicate node name")


def check_duplicate_property_names(
    check: Check, dti: DtInfo, node: Node
) -> None:
    props = _live_properties(node)
    for index, prop in enumerate(props):
        for later in props[index + 1:]:
            if prop.name == later.name:
                check.fail_prop(dti, node, prop, "Duplicate property name")


def check_node_name_chars(check: Check, dti: DtInfo, node: Node) -> None:
    n = _span(node.name, check.data)
    if n < len(node.name):
        check.fail(dti, node, f"Bad character '{node.name[n]}' in node name")


def check_node_name_chars_strict(check: Check, dti: DtInfo, node: Node) -> None:
    n = _span(node.name, check.data)
    if n < node.basenamelen:
        check.fail(
            dti, node,
            f"Character '{node.name[n]}' not recommended in node name",
        )


def check_node_name_format(check: Check, dti: DtInfo, node: Node) -> None:
    if "@" in node.unitname:
        check.fail(dti, node, "multiple '@' characters in node name")


def check_node_name_vs_property_name(
    check: Check, dti: DtInfo, node: Node
) -> None:
    if node.parent is None:
        return
    if node.parent.get_property(node.name) is not None:
        check.fail(dti, node, "node name and property name conflict")


def check_unit_address_vs_reg(check: Check, dti: DtInfo, node: Node) -> None:
    if node.get_subnode("__overlay__") is not None:
        # Overlay fragments are a special case.
        return
    prop = node.get_property("reg")
    if prop is None:
        prop = node.get_property("ranges")
        if prop is not None and not len(prop.val):
            prop = None
    if prop is not None:
        if not node.unitname:
            check.fail(
                dti, node,
                "node has a reg or ranges property, but no unit name",
            )
    elif node.unitname:
        check.fail(
            dti, node, "node has a unit name, but no reg or ranges property"
        )


def check_property_name_chars(check: Check, dti: DtInfo, node: Node) -> None:
    for prop in _live_properties(node):
        n = _span(prop.name, check.data)
        if n < len(prop.name):
            check.fail_prop(
                dti, node, prop,
                f"Bad character '{prop.name[n]}' in property name",
            )


def check_property_name_chars_strict(
    check: Check, dti: DtInfo, node: Node
) -> None:
    for prop in _live_properties(node):
        name = prop.name
        n = _span(name, check.data)
        if n == len(name):
            continue
        if name == "device_type":
            continue
        # '#' is allowed only at the start, not counting a vendor prefix.
        if name[n] == "#" and (n == 0 or name[n - 1] == ","):
            name = name[n + 1:]
            n = _span(name, check.data)
        if n < len(name):
            check.fail_prop(
                dti, node, prop,
                f"Character '{name[n]}' not recommended in property name",
            )


def _describe(
    node: Node, prop: Optional[Property], mark: Optional[Marker]
) -> str:
    text = "value of " if mark is not None else ""
    if prop is not None:
        text += f"'{prop.name}' in "
    return text + node.fullpath


def _check_duplicate_label(
    check: Check,
    dti: DtInfo,
    label: str,
    node: Node,
    prop: Optional[Property],
    mark: Optional[Marker],
) -> None:
    dt = dti.dt
    otherprop: Optional[Property] = None
    othermark: Optional[Marker] = None
    othernode = dt.get_node_by_label(label)
    if othernode is None:
        found = dt.get_property_by_label(label)
        if found is not None:
            othernode, otherprop = found
    if othernode is None:
        found_mark = dt.get_marker_label(label)
        if found_mark is not None:
            othernode, otherprop, othermark = found_mark
    if othernode is None:
        return
    if othernode is not node or otherprop is not prop or othermark is not mark:
        check.fail(
            dti, node,
            f"Duplicate label '{label}' on {_describe(node, prop, mark)}"
            f" and {_describe(othernode, otherprop, othermark)}",
        )


def check_duplicate_label_node(check: Check, dti: DtInfo, node: Node) -> None:
    for label in node.labels:
        if not label.deleted:
            _check_duplicate_label(check, dti, label.name, node, None, None)
    for prop in _live_properties(node):
        for label in prop.labels:
            if not label.deleted:
                _check_duplicate_label(check, dti, label.name, node, prop, None)
        for marker in prop.val.markers_of_type(MarkerType.LABEL):
            _check_duplicate_label(check, dti, marker.ref, node, prop, marker)


def _check_phandle_prop(
    check: Check, dti: DtInfo, node: Node, propname: str
) -> int:
    prop = node.get_property(propname)
    if prop is None:
        return 0
    if len(prop.val) != _CELL_SIZE:
        check.fail_prop(
            dti, node, prop,
            f"bad length ({len(prop.val)}) {prop.name} property",
        )
        return 0
    for marker in prop.val.markers_of_type(MarkerType.REF_PHANDLE):
        assert marker.offset == 0
        if dti.dt.get_node_by_ref(marker.ref) is not node:
            check.fail(dti, node, f"{prop.name} is a reference to another node")
        # A reference to the node itself asks for a phandle to be allocated.
        return 0
    phandle = prop.cell()
    if not phandle_is_valid(phandle):
        check.fail_prop(
            dti, node, prop, f"bad value (0x{phandle:x}) in {prop.name} property"
        )
        return 0
    return phandle


def check_explicit_phandles(check: Check, dti: DtInfo, node: Node) -> None:
    assert not node.phandle, "phandle assigned before checking"
    phandle = _check_phandle_prop(check, dti, node, "phandle")
    linux_phandle = _check_phandle_prop(check, dti, node, "linux,phandle")
    if not phandle and not linux_phandle:
        return
    if linux_phandle and phandle and phandle != linux_phandle:
        check.fail(
            dti, node, "mismatching 'phandle' and 'linux,phandle' properties"
        )
    if linux_phandle and not phandle:
        phandle = linux_phandle
    other = dti.dt.get_node_by_phandle(phandle)
    if other is not None and other is not node:
        check.fail(
            dti, node,
            f"duplicated phandle 0x{phandle:x} (seen before at {other.fullpath})",
        )
        return
    node.phandle = phandle


def check_name_properties(check: Check, dti: DtInfo, node: Node) -> None:
    prop = node.get_property("name")
    if prop is None:
        return
    base = node.basename.encode()
    value = bytes(prop.val.val)
    if len(value) != len(base) + 1 or value[: len(base)] != base:
        check.fail(
            dti, node,
            f'"name" property is incorrect ("{_cstr(value)}" instead'
            " of base node name)",
        )
    else:
        # Correct and therefore redundant.
        node.properties.remove(prop)


def fixup_phandle_references(check: Check, dti: DtInfo, node: Node) -> None:
    dt = dti.dt
    for prop in _live_properties(node):
        for marker in list(prop.val.markers_of_type(MarkerType.REF_PHANDLE)):
            refnode = dt.get_node_by_ref(marker.ref)
            if refnode is None:
                if DtsFlags.PLUGIN not in dti.dtsflags:
                    check.fail(
                        dti, node,
                        "Reference to non-existent node or label "
                        f'"{marker.ref}"\n',
                    )
                else:
                    _write_cell(prop, marker.offset, 0xFFFFFFFF)
                continue
            _write_cell(prop, marker.offset, dt.assign_phandle(refnode))
            refnode.is_referenced = True


def fixup_path_references(check: Check, dti: DtInfo, node: Node) -> None:
    dt = dti.dt
    for prop in _live_properties(node):
        for marker in list(prop.val.markers_of_type(MarkerType.REF_PATH)):
            assert marker.offset <= len(prop.val)
            refnode = dt.get_node_by_ref(marker.ref)
            if refnode is None:
                check.fail(
                    dti, node,
                    f'Reference to non-existent node or label "{marker.ref}"\n',
                )
                continue
            prop.val.insert_at_marker(marker, refnode.fullpath.encode() + b"\0")
            refnode.is_referenced = True


def fixup_omit_unused_nodes(check: Check, dti: DtInfo, node: Node) -> None:
    if dti.generate_symbols and node.labels:
        return
    if node.omit_if_unused and not node.is_referenced:
        node.delete()


def check_names_is_string_list(check: Check, dti: DtInfo, node: Node) -> None:
    for prop in _live_properties(node):
        if not prop.name.endswith("-names"):
            continue
        check.data = prop.name
        check_is_string_list(check, dti, node)


def check_alias_paths(check: Check, dti: DtInfo, node: Node) -> None:
    if node.name != "aliases":
        return
    for prop in _live_properties(node):
        if prop.name in ("phandle", "linux,phandle"):
            continue
        if not len(prop.val) or dti.dt.get_node_by_path(_cstr(prop.val.val)) is None:
            shown = _cstr(prop.val.val) if len(prop.val) else "(null)"
            check.fail_prop(
                dti, node, prop, f"aliases property is not a valid node ({shown})"
            )
            continue
        if _span(prop.name, LOWERCASE + DIGITS + "-") != len(prop.name):
            check.fail(
                dti, node,
                "aliases property name must include only lowercase and '-'",
            )


def fixup_addr_size_cells(check: Check, dti: DtInfo, node: Node) -> None:
    node.addr_cells = -1
    node.size_cells = -1
    prop = node.get_property("#address-cells")
    if prop is not None:
        node.addr_cells = prop.cell()
    prop = node.get_property("#size-cells")
    if prop is not None:
        node.size_cells = prop.cell()


def check_reg_format(check: Check, dti: DtInfo, node: Node) -> None:
    prop = node.get_property("reg")
    if prop is None:
        return
    if node.parent is None:
        check.fail(dti, node, 'Root node has a "reg" property')
        return
    if len(prop.val) == 0:
        check.fail_prop(dti, node, prop, "property is empty")
    addr_cells = _addr_cells(node.parent)
    size_cells = _size_cells(node.parent)
    entrylen = (addr_cells + size_cells) * _CELL_SIZE
    if not is_multiple_of(len(prop.val), entrylen):
        check.fail_prop(
            dti, node, prop,
            f"property has invalid length ({len(prop.val)} bytes) "
            f"(#address-cells == {addr_cells}, #size-cells == {size_cells})",
        )


def check_ranges_format(check: Check, dti: DtInfo, node: Node) -> None:
    ranges = check.data
    prop = node.get_property(ranges)
    if prop is None:
        return
    if node.parent is None:
        check.fail_prop(dti, node, prop, f'Root node has a "{ranges}" property')
        return
    p_addr_cells = _addr_cells(node.parent)
    p_size_cells = _size_cells(node.parent)
    c_addr_cells = _addr_cells(node)
    c_size_cells = _size_cells(node)
    entrylen = (p_addr_cells + c_addr_cells + c_size_cells) * _CELL_SIZE
    length = len(prop.val)
    if length == 0:
        if p_addr_cells != c_addr_cells:
            check.fail_prop(
                dti, node, prop,
                f'empty "{ranges}" property but its #address-cells '
                f"({c_addr_cells}) differs from {node.parent.fullpath} "
                f"({p_addr_cells})",
            )
        if p_size_cells != c_size_cells:
            check.fail_prop(
                dti, node, prop,
                f'empty "{ranges}" property but its #size-cells '
                f"({c_size_cells}) differs from {node.parent.fullpath} "
                f"({p_size_cells})",
            )
    elif not is_multiple_of(length, entrylen):
        check.fail_prop(
            dti, node, prop,
            f'"{ranges}" property has invalid length ({length} bytes) '
            f"(parent #address-cells == {p_addr_cells}, child #address-cells"
            f" == {c_addr_cells}, #size-cells == {c_size_cells})",
        )