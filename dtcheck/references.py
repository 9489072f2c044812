"""Checks on phandle references: provider cells, GPIOs, interrupts and graphs."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from dtcheck.checkbase import Check, is_multiple_of
from dtcheck.data import MarkerType
from dtcheck.tree import BusType, DtInfo, DtsFlags, Node, Property, phandle_is_valid

GRAPH_PORT_BUS = BusType("graph-port")
GRAPH_PORTS_BUS = BusType("graph-ports")

_CELL_SIZE = 4


@dataclass(frozen=True)
class Provider:
    """A property holding phandle+args lists and the provider's cell count name."""

    prop_name: str
    cell_name: str
    optional: bool = False


def _live_properties(node: Node) -> list[Property]:
    return [p for p in node.properties if not p.deleted]


def _live_children(node: Node) -> list[Node]:
    return [c for c in node.children if not c.deleted]


def _addr_cells(node: Node) -> int:
    return 2 if node.addr_cells == -1 else node.addr_cells


def _strprefixeq(name: str, length: int, prefix: str) -> bool:
    """True if the first length characters of name are exactly prefix."""
    return len(prefix) == length and name[:length] == prefix


def _first_cell(prop: Property) -> int:
    """The first 32-bit cell of a value, reading missing bytes as zero."""
    chunk = bytes(prop.val.val[:_CELL_SIZE])
    return int.from_bytes(chunk.ljust(_CELL_SIZE, b"\0"), "big")


def _signed32(value: int) -> int:
    return value - (1 << 32) if value >= (1 << 31) else value


def check_property_phandle_args(
    check: Check,
    dti: DtInfo,
    node: Node,
    prop: Property,
    provider: Provider,
) -> None:
    """Walk a phandle+args list, checking each entry against its provider."""
    length = len(prop.val)
    if not is_multiple_of(length, _CELL_SIZE):
        check.fail_prop(
            dti, node, prop,
            f"property size ({length}) is invalid, expected multiple of "
            f"{_CELL_SIZE}",
        )
        return

    total = length // _CELL_SIZE
    cell = 0
    while cell < total:
        phandle = prop.cell_n(cell)
        # A cell of 0 or -1 skips an optional entry.
        if not phandle_is_valid(phandle):
            if DtsFlags.PLUGIN in dti.dtsflags:
                break
            cell += 1
            continue

        if prop.val.markers:
            offset = cell * _CELL_SIZE
            if not any(
                m.offset == offset
                for m in prop.val.markers_of_type(MarkerType.REF_PHANDLE)
            ):
                check.fail_prop(
                    dti, node, prop, f"cell {cell} is not a phandle reference"
                )

        provider_node = dti.dt.get_node_by_phandle(phandle)
        if provider_node is None:
            check.fail_prop(
                dti, node, prop, f"Could not get phandle node for (cell {cell})"
            )
            break

        cellprop = provider_node.get_property(provider.cell_name)
        if cellprop is not None:
            cellsize = cellprop.cell()
        elif provider.optional:
            cellsize = 0
        else:
            check.fail(
                dti, node,
                f"Missing property '{provider.cell_name}' in node "
                f"{provider_node.fullpath} or bad phandle (referred from "
                f"{prop.name}[{cell}])",
            )
            break

        expected = (cell + cellsize + 1) * _CELL_SIZE
        if length < expected:
            check.fail_prop(
                dti, node, prop,
                f"property size ({length}) too small for cell size {cellsize}",
            )
            break
        cell += cellsize + 1


def check_provider_cells_property(check: Check, dti: DtInfo, node: Node) -> None:
    """Check the property described by the Provider held in check.data."""
    provider: Provider = check.data
    prop = node.get_property(provider.prop_name)
    if prop is None:
        return
    check_property_phandle_args(check, dti, node, prop, provider)


def prop_is_gpio(prop: Property) -> bool:
    """True if the property name marks it as a GPIO specifier list."""
    # One known name ends in "-gpios" without being a GPIO list.
    if prop.name.endswith(",nr-gpios"):
        return False
    return (
        prop.name.endswith("-gpios")
        or prop.name == "gpios"
        or prop.name.endswith("-gpio")
        or prop.name == "gpio"
    )


def check_gpios_property(check: Check, dti: DtInfo, node: Node) -> None:
    # GPIO hog nodes carry a 'gpios' property of their own kind.
    if node.get_property("gpio-hog") is not None:
        return
    for prop in _live_properties(node):
        if not prop_is_gpio(prop):
            continue
        provider = Provider(prop.name, "#gpio-cells", False)
        check_property_phandle_args(check, dti, node, prop, provider)


def check_deprecated_gpio_property(
    check: Check, dti: DtInfo, node: Node
) -> None:
    for prop in _live_properties(node):
        if not prop_is_gpio(prop):
            continue
        if not prop.name.endswith("gpio"):
            continue
        check.fail_prop(
            dti, node, prop, "'[*-]gpio' is deprecated, use '[*-]gpios' instead"
        )


def node_is_interrupt_provider(node: Node) -> bool:
    """True if the node is an interrupt controller or has an interrupt map."""
    return (
        node.get_property("interrupt-controller") is not None
        or node.get_property("interrupt-map") is not None
    )


def check_interrupt_provider(check: Check, dti: DtInfo, node: Node) -> None:
    irq_provider = node_is_interrupt_provider(node)
    prop = node.get_property("#interrupt-cells")
    if irq_provider and prop is None:
        check.fail(dti, node, "Missing '#interrupt-cells' in interrupt provider")
        return
    if not irq_provider and prop is not None:
        check.fail(
            dti, node,
            "'#interrupt-cells' found, but node is not an interrupt provider",
        )


def check_interrupt_map(check: Check, dti: DtInfo, node: Node) -> None:
    irq_map_prop = node.get_property("interrupt-map")
    if irq_map_prop is None:
        return

    if node.addr_cells < 0:
        check.fail(
            dti, node, "Missing '#address-cells' in interrupt-map provider"
        )
        return
    irq_cells_prop = node.get_property("#interrupt-cells")
    cellsize = _addr_cells(node) + (
        irq_cells_prop.cell() if irq_cells_prop is not None else 0
    )

    prop = node.get_property("interrupt-map-mask")
    if prop is not None and len(prop.val) != cellsize * _CELL_SIZE:
        check.fail_prop(
            dti, node, prop,
            f"property size ({len(prop.val)}) is invalid, expected "
            f"{cellsize * _CELL_SIZE}",
        )

    length = len(irq_map_prop.val)
    if not is_multiple_of(length, _CELL_SIZE):
        check.fail_prop(
            dti, node, irq_map_prop,
            f"property size ({length}) is invalid, expected multiple of "
            f"{_CELL_SIZE}",
        )
        return

    map_cells = length // _CELL_SIZE
    cell = 0
    while cell < map_cells:
        if cell + cellsize >= map_cells:
            check.fail_prop(
                dti, node, irq_map_prop,
                f"property size ({length}) too small, expected > "
                f"{(cell + cellsize) * _CELL_SIZE}",
            )
            break
        cell += cellsize

        phandle = irq_map_prop.cell_n(cell)
        if not phandle_is_valid(phandle):
            # An overlay may hold unresolved external references.
            if DtsFlags.PLUGIN not in dti.dtsflags:
                check.fail_prop(
                    dti, node, irq_map_prop,
                    f"Cell {cell} is not a phandle({_signed32(phandle)})",
                )
            break

        provider_node = dti.dt.get_node_by_phandle(phandle)
        if provider_node is None:
            check.fail_prop(
                dti, node, irq_map_prop,
                f"Could not get phandle({_signed32(phandle)}) node for "
                f"(cell {cell})",
            )
            break

        cellprop = provider_node.get_property("#interrupt-cells")
        if cellprop is None:
            check.fail(
                dti, node,
                "Missing property '#interrupt-cells' in node "
                f"{provider_node.fullpath} or bad phandle (referred from "
                f"interrupt-map[{cell}])",
            )
            break
        parent_cellsize = cellprop.cell()

        cellprop = provider_node.get_property("#address-cells")
        if cellprop is not None:
            parent_cellsize += cellprop.cell()
        else:
            check.fail_prop(
                dti, node, irq_map_prop,
                "Missing property '#address-cells' in node "
                f"{provider_node.fullpath}, using 0 as fallback",
            )

        cell += 1 + parent_cellsize
        if cell > map_cells:
            check.fail_prop(
                dti, node, irq_map_prop,
                f"property size ({length}) mismatch, expected "
                f"{cell * _CELL_SIZE}",
            )


def check_interrupts_property(check: Check, dti: DtInfo, node: Node) -> None:
    irq_prop = node.get_property("interrupts")
    if irq_prop is None:
        return

    if not is_multiple_of(len(irq_prop.val), _CELL_SIZE):
        check.fail_prop(
            dti, node, irq_prop,
            f"size ({len(irq_prop.val)}) is invalid, expected multiple of "
            f"{_CELL_SIZE}",
        )

    irq_node: Optional[Node] = None
    parent: Optional[Node] = node
    while parent is not None:
        if parent is not node and node_is_interrupt_provider(parent):
            irq_node = parent
            break

        prop = parent.get_property("interrupt-parent")
        if prop is not None:
            phandle = prop.cell()
            if not phandle_is_valid(phandle):
                # An overlay may hold unresolved external references.
                if DtsFlags.PLUGIN in dti.dtsflags:
                    return
                check.fail_prop(dti, parent, prop, "Invalid phandle")
                break

            irq_node = dti.dt.get_node_by_phandle(phandle)
            if irq_node is None:
                check.fail_prop(dti, parent, prop, "Bad phandle")
                return
            if not node_is_interrupt_provider(irq_node):
                check.fail(
                    dti, irq_node,
                    "Missing interrupt-controller or interrupt-map property",
                )
            break

        parent = parent.parent

    if irq_node is None:
        check.fail(dti, node, "Missing interrupt-parent")
        return

    prop = irq_node.get_property("#interrupt-cells")
    if prop is None:
        # Reported by the interrupt provider check.
        return

    irq_cells = prop.cell()
    if not is_multiple_of(len(irq_prop.val), irq_cells * _CELL_SIZE):
        check.fail_prop(
            dti, node, prop,
            f"size is ({len(irq_prop.val)}), expected multiple of "
            f"{irq_cells * _CELL_SIZE}",
        )


def check_graph_nodes(check: Check, dti: DtInfo, node: Node) -> None:
    for child in _live_children(node):
        if not (
            _strprefixeq(child.name, child.basenamelen, "endpoint")
            or child.get_property("remote-endpoint") is not None
        ):
            continue

        # The root node cannot be a port.
        if node.parent is None:
            check.fail(
                dti, node,
                f"root node contains endpoint node '{child.name}', "
                "potentially misplaced remote-endpoint property",
            )
            continue
        node.bus = GRAPH_PORT_BUS

        # A port's parent is either a 'ports' node or a device.
        if node.parent.bus is None and (
            node.parent.name == "ports" or node.get_property("reg") is not None
        ):
            node.parent.bus = GRAPH_PORTS_BUS
        break


def _check_graph_reg(check: Check, dti: DtInfo, node: Node) -> None:
    prop = node.get_property("reg")
    if prop is None:
        return

    if len(prop.val) != _CELL_SIZE:
        check.fail(dti, node, "graph node malformed 'reg' property")
        return

    unit_addr = f"{prop.cell():x}"
    if node.unitname != unit_addr:
        check.fail(
            dti, node, f'graph node unit address error, expected "{unit_addr}"'
        )

    assert node.parent is not None
    if node.parent.addr_cells != 1:
        check.fail_prop(
            dti, node, node.get_property("#address-cells"),
            f"graph node '#address-cells' is {node.parent.addr_cells}, "
            "must be 1",
        )
    if node.parent.size_cells != 0:
        check.fail_prop(
            dti, node, node.get_property("#size-cells"),
            f"graph node '#size-cells' is {node.parent.size_cells}, must be 0",
        )


def check_graph_port(check: Check, dti: DtInfo, node: Node) -> None:
    if node.bus is not GRAPH_PORT_BUS:
        return
    _check_graph_reg(check, dti, node)
    if DtsFlags.PLUGIN in dti.dtsflags:
        return
    if not _strprefixeq(node.name, node.basenamelen, "port"):
        check.fail(dti, node, "graph port node name should be 'port'")


def _get_remote_endpoint(
    check: Check, dti: DtInfo, endpoint: Node
) -> Optional[Node]:
    prop = endpoint.get_property("remote-endpoint")
    if prop is None:
        return None
    phandle = _first_cell(prop)
    # An overlay may hold unresolved external references.
    if not phandle_is_valid(phandle):
        return None
    node = dti.dt.get_node_by_phandle(phandle)
    if node is None:
        check.fail_prop(dti, endpoint, prop, "graph phandle is not valid")
    return node


def check_graph_endpoint(check: Check, dti: DtInfo, node: Node) -> None:
    if node.parent is None or node.parent.bus is not GRAPH_PORT_BUS:
        return
    _check_graph_reg(check, dti, node)
    if DtsFlags.PLUGIN in dti.dtsflags:
        return
    if not _strprefixeq(node.name, node.basenamelen, "endpoint"):
        check.fail(dti, node, "graph endpoint node name should be 'endpoint'")

    remote_node = _get_remote_endpoint(check, dti, node)
    if remote_node is None:
        return
    if _get_remote_endpoint(check, dti, remote_node) is not node:
        check.fail(
            dti, node,
            f"graph connection to node '{remote_node.fullpath}' is not "
            "bidirectional",
        )


def check_graph_child_address(check: Check, dti: DtInfo, node: Node) -> None:
    if node.bus is not GRAPH_PORTS_BUS and node.bus is not GRAPH_PORT_BUS:
        return
    children = _live_children(node)
    count = 0
    for child in children:
        prop = child.get_property("reg")
        # Any non-zero unit address makes the cells necessary.
        if prop is not None and _first_cell(prop) != 0:
            return
        count += 1
    if count == 1 and node.addr_cells != -1:
        check.fail(
            dti, node,
            f"graph node has single child node '{children[0].name}', "
            "#address-cells/#size-cells are not necessary",
        )