"""Checks for bus bridges and unit addresses: PCI, simple-bus, I2C, SPI."""

from __future__ import annotations

from typing import Optional

from dtcheck.checkbase import Check
from dtcheck.structure import check_is_string
from dtcheck.tree import BusType, DtInfo, Node, Property

PCI_BUS = BusType("PCI")
SIMPLE_BUS = BusType("simple-bus")
I2C_BUS = BusType("i2c-bus")
SPI_BUS = BusType("spi-bus")

I2C_OWN_SLAVE_ADDRESS = 1 << 30
I2C_TEN_BIT_ADDRESS = 1 << 31

_CELL_SIZE = 4
_U64_MASK = (1 << 64) - 1
_HEXDIGITS = "0123456789abcdefABCDEF"


def _addr_cells(node: Node) -> int:
    return 2 if node.addr_cells == -1 else node.addr_cells


def _size_cells(node: Node) -> int:
    return 1 if node.size_cells == -1 else node.size_cells


def _live_children(node: Node) -> list[Node]:
    return [c for c in node.children if not c.deleted]


def _live_properties(node: Node) -> list[Property]:
    return [p for p in node.properties if not p.deleted]


def _strprefixeq(name: str, length: int, prefix: str) -> bool:
    """True if the first length characters of name are exactly prefix."""
    return len(prefix) == length and name[:length] == prefix


def _cstr(value: bytes) -> str:
    return bytes(value).split(b"\0", 1)[0].decode("utf-8", "replace")


def _cell_at(prop: Property, index: int) -> int:
    """The 32-bit cell at index, reading missing bytes as zero."""
    start = index * _CELL_SIZE
    chunk = bytes(prop.val.val[start:start + _CELL_SIZE])
    return int.from_bytes(chunk.ljust(_CELL_SIZE, b"\0"), "big")


def check_pci_bridge(check: Check, dti: DtInfo, node: Node) -> None:
    prop = node.get_property("device_type")
    if prop is None or not len(prop.val) or _cstr(prop.val.val) != "pci":
        return

    node.bus = PCI_BUS

    if not _strprefixeq(node.name, node.basenamelen, "pci") and not _strprefixeq(
        node.name, node.basenamelen, "pcie"
    ):
        check.fail(dti, node, 'node name is not "pci" or "pcie"')

    if node.get_property("ranges") is None:
        check.fail(dti, node, "missing ranges for PCI bridge (or not a bridge)")

    if _addr_cells(node) != 3:
        check.fail(dti, node, "incorrect #address-cells for PCI bridge")
    if _size_cells(node) != 2:
        check.fail(dti, node, "incorrect #size-cells for PCI bridge")

    prop = node.get_property("bus-range")
    if prop is None:
        return
    if len(prop.val) != _CELL_SIZE * 2:
        check.fail_prop(dti, node, prop, "value must be 2 cells")
        return
    first, last = _cell_at(prop, 0), _cell_at(prop, 1)
    if first > last:
        check.fail_prop(
            dti, node, prop, "1st cell must be less than or equal to 2nd cell"
        )
    if last > 0xFF:
        check.fail_prop(
            dti, node, prop, "maximum bus number must be less than 256"
        )


def check_pci_device_bus_num(check: Check, dti: DtInfo, node: Node) -> None:
    if node.parent is None or node.parent.bus is not PCI_BUS:
        return
    prop: Optional[Property] = node.get_property("reg")
    if prop is None:
        return

    bus_num = (_cell_at(prop, 0) & 0x00FF0000) >> 16

    prop = node.parent.get_property("bus-range")
    if prop is None:
        min_bus = max_bus = 0
    else:
        min_bus, max_bus = _cell_at(prop, 0), _cell_at(prop, 1)
    if bus_num < min_bus or bus_num > max_bus:
        check.fail_prop(
            dti, node, prop,
            f"PCI bus number {bus_num} out of range, expected "
            f"({min_bus} - {max_bus})",
        )


def check_pci_device_reg(check: Check, dti: DtInfo, node: Node) -> None:
    if node.parent is None or node.parent.bus is not PCI_BUS:
        return
    prop = node.get_property("reg")
    if prop is None:
        return

    if _cell_at(prop, 1) or _cell_at(prop, 2):
        check.fail_prop(
            dti, node, prop,
            "PCI reg config space address cells 2 and 3 must be 0",
        )

    reg = _cell_at(prop, 0)
    dev = (reg & 0xF800) >> 11
    func = (reg & 0x700) >> 8

    if reg & 0xFF000000:
        check.fail_prop(
            dti, node, prop, "PCI reg address is not configuration space"
        )
    if reg & 0x000000FF:
        check.fail_prop(
            dti, node, prop,
            "PCI reg config space address register number must be 0",
        )

    unitname = node.unitname
    if func == 0 and unitname == f"{dev:x}":
        return
    unit_addr = f"{dev:x},{func:x}"
    if unitname == unit_addr:
        return
    check.fail(
        dti, node, f'PCI unit address format error, expected "{unit_addr}"'
    )


def node_is_compatible(node: Node, compat: str) -> bool:
    """True if the node's compatible list names compat."""
    prop = node.get_property("compatible")
    if prop is None:
        return False
    raw = bytes(prop.val.val)
    if raw.endswith(b"\0"):
        raw = raw[:-1]
    if not prop.val.val:
        return False
    target = compat.encode()
    return any(entry == target for entry in raw.split(b"\0"))


def check_simple_bus_bridge(check: Check, dti: DtInfo, node: Node) -> None:
    if node_is_compatible(node, "simple-bus"):
        node.bus = SIMPLE_BUS


def check_simple_bus_reg(check: Check, dti: DtInfo, node: Node) -> None:
    if node.parent is None or node.parent.bus is not SIMPLE_BUS:
        return

    cells: Optional[list[int]] = None
    prop = node.get_property("reg")
    if prop is not None:
        if len(prop.val):
            count = -(-len(prop.val) // _CELL_SIZE)
            cells = [_cell_at(prop, i) for i in range(count)]
    else:
        prop = node.get_property("ranges")
        if prop is not None and len(prop.val):
            # Skip over the child address.
            skip = _addr_cells(node)
            count = -(-len(prop.val) // _CELL_SIZE)
            cells = [_cell_at(prop, i) for i in range(skip, max(count, skip))]

    if cells is None:
        if node.parent.parent is not None and node.bus is not SIMPLE_BUS:
            check.fail(dti, node, "missing or empty reg/ranges property")
        return

    size = _addr_cells(node.parent)
    padded = cells + [0] * max(0, size - len(cells))
    reg = 0
    for cell in padded[:size]:
        reg = ((reg << 32) | cell) & _U64_MASK

    unit_addr = f"{reg:x}"
    if node.unitname != unit_addr:
        check.fail(
            dti, node,
            f'simple-bus unit address format error, expected "{unit_addr}"',
        )


def check_i2c_bus_bridge(check: Check, dti: DtInfo, node: Node) -> None:
    if _strprefixeq(node.name, node.basenamelen, "i2c-bus") or _strprefixeq(
        node.name, node.basenamelen, "i2c-arb"
    ):
        node.bus = I2C_BUS
    elif _strprefixeq(node.name, node.basenamelen, "i2c"):
        for child in _live_children(node):
            if _strprefixeq(child.name, node.basenamelen, "i2c-bus"):
                return
        node.bus = I2C_BUS
    else:
        return

    if not _live_children(node):
        return

    if _addr_cells(node) != 1:
        check.fail(dti, node, "incorrect #address-cells for I2C bus")
    if _size_cells(node) != 0:
        check.fail(dti, node, "incorrect #size-cells for I2C bus")


def check_i2c_bus_reg(check: Check, dti: DtInfo, node: Node) -> None:
    if node.parent is None or node.parent.bus is not I2C_BUS:
        return

    prop = node.get_property("reg")
    if prop is None or not len(prop.val):
        check.fail(dti, node, "missing or empty reg property")
        return

    reg = _cell_at(prop, 0) & ~I2C_OWN_SLAVE_ADDRESS
    unit_addr = f"{reg:x}"
    if node.unitname != unit_addr:
        check.fail(
            dti, node,
            f'I2C bus unit address format error, expected "{unit_addr}"',
        )

    for index in range(-(-len(prop.val) // _CELL_SIZE)):
        reg = _cell_at(prop, index) & ~I2C_OWN_SLAVE_ADDRESS
        if reg & I2C_TEN_BIT_ADDRESS:
            if (reg & ~I2C_TEN_BIT_ADDRESS) > 0x3FF:
                check.fail_prop(
                    dti, node, prop,
                    f'I2C address must be less than 10-bits, got "0x{reg:x}"',
                )
        elif reg > 0x7F:
            check.fail_prop(
                dti, node, prop,
                f'I2C address must be less than 7-bits, got "0x{reg:x}". '
                "Set I2C_TEN_BIT_ADDRESS for 10 bit addresses or fix the "
                "property",
            )


def check_spi_bus_bridge(check: Check, dti: DtInfo, node: Node) -> None:
    spi_addr_cells = 1

    if _strprefixeq(node.name, node.basenamelen, "spi"):
        node.bus = SPI_BUS
    else:
        # Try to detect SPI buses which lack a proper node name.
        if _addr_cells(node) != 1 or _size_cells(node) != 0:
            return
        if any(
            prop.name.startswith("spi-")
            for child in _live_children(node)
            for prop in _live_properties(child)
        ):
            node.bus = SPI_BUS
        if node.bus is SPI_BUS and node.get_property("reg") is not None:
            check.fail(dti, node, "node name for SPI buses should be 'spi'")

    if node.bus is not SPI_BUS or not _live_children(node):
        return

    if node.get_property("spi-slave") is not None:
        spi_addr_cells = 0
    if _addr_cells(node) != spi_addr_cells:
        check.fail(dti, node, "incorrect #address-cells for SPI bus")
    if _size_cells(node) != 0:
        check.fail(dti, node, "incorrect #size-cells for SPI bus")


def check_spi_bus_reg(check: Check, dti: DtInfo, node: Node) -> None:
    if node.parent is None or node.parent.bus is not SPI_BUS:
        return
    if node.parent.get_property("spi-slave") is not None:
        return

    prop = node.get_property("reg")
    if prop is None or not len(prop.val):
        check.fail(dti, node, "missing or empty reg property")
        return

    unit_addr = f"{_cell_at(prop, 0):x}"
    if node.unitname != unit_addr:
        check.fail(
            dti, node,
            f'SPI bus unit address format error, expected "{unit_addr}"',
        )


def check_unit_address_format(check: Check, dti: DtInfo, node: Node) -> None:
    if node.parent is not None and node.parent.bus is not None:
        return
    unitname = node.unitname
    if not unitname:
        return
    if unitname.startswith("0x"):
        check.fail(dti, node, 'unit name should not have leading "0x"')
        unitname = unitname[2:]
    if len(unitname) >= 2 and unitname[0] == "0" and unitname[1] in _HEXDIGITS:
        check.fail(dti, node, "unit name should not have leading 0s")


def check_avoid_default_addr_size(
    check: Check, dti: DtInfo, node: Node
) -> None:
    if node.parent is None:
        return
    if node.get_property("reg") is None and node.get_property("ranges") is None:
        return
    if node.parent.addr_cells == -1:
        check.fail(dti, node, "Relying on default #address-cells value")
    if node.parent.size_cells == -1:
        check.fail(dti, node, "Relying on default #size-cells value")


def check_avoid_unnecessary_addr_size(
    check: Check, dti: DtInfo, node: Node
) -> None:
    if node.parent is None or node.addr_cells < 0 or node.size_cells < 0:
        return
    children = _live_children(node)
    if (
        node.get_property("ranges") is not None
        or node.get_property("dma-ranges") is not None
        or not children
    ):
        return
    for child in children:
        # Children with registers or ranges on a local bus need the cells.
        if (
            child.get_property("reg") is not None
            or child.get_property("ranges") is not None
        ):
            return
    check.fail(
        dti, node,
        'unnecessary #address-cells/#size-cells without "ranges", '
        '"dma-ranges" or child "reg" or "ranges" property',
    )


def node_is_disabled(node: Node) -> bool:
    """True if the node's status is "disabled"."""
    prop = node.get_property("status")
    if prop is None or not len(prop.val):
        return False
    return _cstr(prop.val.val) == "disabled"


def _check_unique_unit_address_common(
    check: Check, dti: DtInfo, node: Node, disable_check: bool
) -> None:
    if node.addr_cells < 0 or node.size_cells < 0:
        return
    children = _live_children(node)
    for childa in children:
        addr_a = childa.unitname
        if not addr_a:
            continue
        if disable_check and node_is_disabled(childa):
            continue
        for childb in children:
            if childb is childa:
                break
            if disable_check and node_is_disabled(childb):
                continue
            if addr_a == childb.unitname:
                check.fail(
                    dti, childb,
                    "duplicate unit-address (also used in node "
                    f"{childa.fullpath})",
                )


def check_unique_unit_address(check: Check, dti: DtInfo, node: Node) -> None:
    _check_unique_unit_address_common(check, dti, node, False)


def check_unique_unit_address_if_enabled(
    check: Check, dti: DtInfo, node: Node
) -> None:
    _check_unique_unit_address_common(check, dti, node, True)


def check_obsolete_chosen_interrupt_controller(
    check: Check, dti: DtInfo, node: Node
) -> None:
    if node is not dti.dt:
        return
    chosen = dti.dt.get_node_by_path("/chosen")
    if chosen is None:
        return
    prop = chosen.get_property("interrupt-controller")
    if prop is not None:
        check.fail_prop(
            dti, node, prop,
            '/chosen has obsolete "interrupt-controller" property',
        )


def check_chosen_node_is_root(check: Check, dti: DtInfo, node: Node) -> None:
    if node.name != "chosen":
        return
    if node.parent is not dti.dt:
        check.fail(dti, node, "chosen node must be at root node")


def check_chosen_node_bootargs(check: Check, dti: DtInfo, node: Node) -> None:
    if node.name != "chosen":
        return
    prop = node.get_property("bootargs")
    if prop is None:
        return
    check.data = prop.name
    check_is_string(check, dti, node)


def check_chosen_node_stdout_path(
    check: Check, dti: DtInfo, node: Node
) -> None:
    if node.name != "chosen":
        return
    prop = node.get_property("stdout-path")
    if prop is None:
        prop = node.get_property("linux,stdout-path")
        if prop is None:
            return
        check.fail_prop(dti, node, prop, "Use 'stdout-path' instead")
    check.data = prop.name
    check_is_string(check, dti, node)