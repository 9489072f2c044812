"""The table of all checks, option handling and the top-level check run."""

from __future__ import annotations

import sys
from typing import Any, Iterable, Optional

from dtcheck import buses, references, structure
from dtcheck.checkbase import Check, CheckFn
from dtcheck.references import Provider
from dtcheck.tree import DtInfo

# Providers whose phandle+args lists are checked: (check prefix, property,
# cell count property, cell count optional).
_PROVIDERS = (
    ("clocks", "clocks", "#clock-cells", False),
    ("cooling_device", "cooling-device", "#cooling-cells", False),
    ("dmas", "dmas", "#dma-cells", False),
    ("hwlocks", "hwlocks", "#hwlock-cells", False),
    ("interrupts_extended", "interrupts-extended", "#interrupt-cells", False),
    ("io_channels", "io-channels", "#io-channel-cells", False),
    ("iommus", "iommus", "#iommu-cells", False),
    ("mboxes", "mboxes", "#mbox-cells", False),
    ("msi_parent", "msi-parent", "#msi-cells", True),
    ("mux_controls", "mux-controls", "#mux-control-cells", False),
    ("phys", "phys", "#phy-cells", False),
    ("power_domains", "power-domains", "#power-domain-cells", False),
    ("pwms", "pwms", "#pwm-cells", False),
    ("resets", "resets", "#reset-cells", False),
    ("sound_dai", "sound-dai", "#sound-dai-cells", False),
    ("thermal_sensors", "thermal-sensors", "#thermal-sensor-cells", False),
)

_TABLE_ORDER = (
    "duplicate_node_names", "duplicate_property_names",
    "node_name_chars", "node_name_format", "property_name_chars",
    "name_is_string", "name_properties", "node_name_vs_property_name",
    "duplicate_label",
    "explicit_phandles",
    "phandle_references", "path_references",
    "omit_unused_nodes",
    "address_cells_is_cell", "size_cells_is_cell",
    "device_type_is_string", "model_is_string", "status_is_string",
    "label_is_string",
    "compatible_is_string_list", "names_is_string_list",
    "property_name_chars_strict",
    "node_name_chars_strict",
    "addr_size_cells", "reg_format", "ranges_format", "dma_ranges_format",
    "unit_address_vs_reg",
    "unit_address_format",
    "pci_bridge",
    "pci_device_reg",
    "pci_device_bus_num",
    "simple_bus_bridge",
    "simple_bus_reg",
    "i2c_bus_bridge",
    "i2c_bus_reg",
    "spi_bus_bridge",
    "spi_bus_reg",
    "avoid_default_addr_size",
    "avoid_unnecessary_addr_size",
    "unique_unit_address",
    "unique_unit_address_if_enabled",
    "obsolete_chosen_interrupt_controller",
    "chosen_node_is_root", "chosen_node_bootargs", "chosen_node_stdout_path",
    *(
        name
        for prefix, *_ in _PROVIDERS
        for name in (f"{prefix}_property", f"{prefix}_is_cell")
    ),
    "deprecated_gpio_property",
    "gpios_property",
    "interrupts_property",
    "interrupt_provider",
    "interrupt_map",
    "alias_paths",
    "graph_nodes", "graph_child_address", "graph_port", "graph_endpoint",
    "always_fail",
)


class ChecksFailed(Exception):
    """The tree has errors and output was not forced."""


class _Registry:
    """Builds checks by name so prerequisites can be named before use."""

    def __init__(self) -> None:
        self.checks: dict[str, Check] = {}

    def add(
        self,
        name: str,
        fn: Optional[CheckFn],
        data: Any = None,
        *,
        warn: bool = False,
        error: bool = False,
        prereqs: Iterable[str] = (),
    ) -> Check:
        check = Check(
            name=name,
            fn=fn,
            data=data,
            warn=warn,
            error=error,
            prereqs=[self.checks[p] for p in prereqs],
        )
        self.checks[name] = check
        return check

    def warning(self, name: str, fn: CheckFn, data: Any = None, *prereqs: str) -> Check:
        return self.add(name, fn, data, warn=True, prereqs=prereqs)

    def error(self, name: str, fn: CheckFn, data: Any = None, *prereqs: str) -> Check:
        return self.add(name, fn, data, error=True, prereqs=prereqs)

    def check(self, name: str, fn: CheckFn, data: Any = None, *prereqs: str) -> Check:
        return self.add(name, fn, data, prereqs=prereqs)


def build_check_table() -> list[Check]:
    """Return a fresh list of every check, in the order they are run."""
    r = _Registry()
    s, b, ref = structure, buses, references

    r.check("always_fail", s.check_always_fail)

    r.error("duplicate_node_names", s.check_duplicate_node_names)
    r.error("duplicate_property_names", s.check_duplicate_property_names)
    r.error("node_name_chars", s.check_node_name_chars, s.NODECHARS)
    r.check("node_name_chars_strict", s.check_node_name_chars_strict,
            s.PROPNODECHARSSTRICT)
    r.error("node_name_format", s.check_node_name_format, None,
            "node_name_chars")
    r.warning("node_name_vs_property_name", s.check_node_name_vs_property_name,
              None, "node_name_chars")
    r.warning("unit_address_vs_reg", s.check_unit_address_vs_reg)
    r.error("property_name_chars", s.check_property_name_chars, s.PROPCHARS)
    r.check("property_name_chars_strict", s.check_property_name_chars_strict,
            s.PROPNODECHARSSTRICT)
    r.error("duplicate_label", s.check_duplicate_label_node)
    r.error("explicit_phandles", s.check_explicit_phandles)
    r.error("name_is_string", s.check_is_string, "name")
    r.error("name_properties", s.check_name_properties, None, "name_is_string")

    r.error("phandle_references", s.fixup_phandle_references, None,
            "duplicate_node_names", "explicit_phandles")
    r.error("path_references", s.fixup_path_references, None,
            "duplicate_node_names")
    r.error("omit_unused_nodes", s.fixup_omit_unused_nodes, None,
            "phandle_references", "path_references")

    r.warning("address_cells_is_cell", s.check_is_cell, "#address-cells")
    r.warning("size_cells_is_cell", s.check_is_cell, "#size-cells")
    r.warning("device_type_is_string", s.check_is_string, "device_type")
    r.warning("model_is_string", s.check_is_string, "model")
    r.warning("status_is_string", s.check_is_string, "status")
    r.warning("label_is_string", s.check_is_string, "label")
    r.warning("compatible_is_string_list", s.check_is_string_list, "compatible")
    r.warning("names_is_string_list", s.check_names_is_string_list)
    r.warning("alias_paths", s.check_alias_paths)

    r.warning("addr_size_cells", s.fixup_addr_size_cells, None,
              "address_cells_is_cell", "size_cells_is_cell")
    r.warning("reg_format", s.check_reg_format, None, "addr_size_cells")
    r.warning("ranges_format", s.check_ranges_format, "ranges",
              "addr_size_cells")
    r.warning("dma_ranges_format", s.check_ranges_format, "dma-ranges",
              "addr_size_cells")

    r.warning("pci_bridge", b.check_pci_bridge, None,
              "device_type_is_string", "addr_size_cells")
    r.warning("pci_device_bus_num", b.check_pci_device_bus_num, None,
              "reg_format", "pci_bridge")
    r.warning("pci_device_reg", b.check_pci_device_reg, None,
              "reg_format", "pci_bridge")
    r.warning("simple_bus_bridge", b.check_simple_bus_bridge, None,
              "addr_size_cells", "compatible_is_string_list")
    r.warning("simple_bus_reg", b.check_simple_bus_reg, None,
              "reg_format", "simple_bus_bridge")
    r.warning("i2c_bus_bridge", b.check_i2c_bus_bridge, None, "addr_size_cells")
    r.warning("i2c_bus_reg", b.check_i2c_bus_reg, None,
              "reg_format", "i2c_bus_bridge")
    r.warning("spi_bus_bridge", b.check_spi_bus_bridge, None, "addr_size_cells")
    r.warning("spi_bus_reg", b.check_spi_bus_reg, None,
              "reg_format", "spi_bus_bridge")
    r.warning("unit_address_format", b.check_unit_address_format, None,
              "node_name_format", "pci_bridge", "simple_bus_bridge")
    r.warning("avoid_default_addr_size", b.check_avoid_default_addr_size, None,
              "addr_size_cells")
    r.warning("avoid_unnecessary_addr_size",
              b.check_avoid_unnecessary_addr_size, None,
              "avoid_default_addr_size")
    r.warning("unique_unit_address", b.check_unique_unit_address, None,
              "avoid_default_addr_size")
    r.check("unique_unit_address_if_enabled",
            b.check_unique_unit_address_if_enabled, None,
            "avoid_default_addr_size")
    r.warning("obsolete_chosen_interrupt_controller",
              b.check_obsolete_chosen_interrupt_controller)
    r.warning("chosen_node_is_root", b.check_chosen_node_is_root)
    r.warning("chosen_node_bootargs", b.check_chosen_node_bootargs)
    r.warning("chosen_node_stdout_path", b.check_chosen_node_stdout_path)

    for prefix, prop_name, cell_name, optional in _PROVIDERS:
        r.warning(f"{prefix}_is_cell", s.check_is_cell, cell_name)
        r.warning(f"{prefix}_property", ref.check_provider_cells_property,
                  Provider(prop_name, cell_name, optional),
                  f"{prefix}_is_cell", "phandle_references")

    r.warning("gpios_property", ref.check_gpios_property, None,
              "phandle_references")
    r.check("deprecated_gpio_property", ref.check_deprecated_gpio_property)
    r.warning("interrupt_provider", ref.check_interrupt_provider, None,
              "interrupts_extended_is_cell")
    r.warning("interrupt_map", ref.check_interrupt_map, None,
              "phandle_references", "addr_size_cells", "interrupt_provider")
    # Declared with the reference fixup as its data, not as a prerequisite.
    r.warning("interrupts_property", ref.check_interrupts_property,
              r.checks["phandle_references"])

    r.warning("graph_nodes", ref.check_graph_nodes)
    r.warning("graph_port", ref.check_graph_port, None, "graph_nodes")
    r.warning("graph_endpoint", ref.check_graph_endpoint, None, "graph_nodes")
    r.warning("graph_child_address", ref.check_graph_child_address, None,
              "graph_nodes", "graph_port", "graph_endpoint")

    return [r.checks[name] for name in _TABLE_ORDER]


def find_check(table: list[Check], name: str) -> Optional[Check]:
    """Return the check with the given name, or None."""
    return next((c for c in table if c.name == name), None)


def disable_warning_error(
    table: list[Check], check: Check, warn: bool, error: bool
) -> None:
    """Lower a check's level, and that of every check depending on it."""
    if (warn and check.warn) or (error and check.error):
        for other in table:
            if any(p is check for p in other.prereqs):
                disable_warning_error(table, other, warn, error)
    check.warn = check.warn and not warn
    check.error = check.error and not error


def parse_checks_option(
    table: list[Check], warn: bool, error: bool, arg: str
) -> None:
    """Apply a -W/-E style option: a check name, or 'no-'/'no_' and a name."""
    name = arg
    enable = True
    if arg.startswith(("no-", "no_")):
        name = arg[3:]
        enable = False
    check = find_check(table, name)
    if check is None:
        raise ValueError(f'Unrecognized check name "{name}"')
    if enable:
        check.enable(warn, error)
    else:
        disable_warning_error(table, check, warn, error)


def process_checks(table: list[Check], force: bool, dti: DtInfo) -> bool:
    """Run every enabled check; return True if errors were found.

    Raises ChecksFailed on errors unless force is set.
    """
    error = False
    for check in table:
        if check.warn or check.error:
            error = error or check.run(dti)

    if error:
        if not force:
            raise ChecksFailed(
                "ERROR: Input tree has errors, aborting "
                "(use -f to force output)"
            )
        if dti.quiet < 3:
            sys.stderr.write("Warning: Input tree has errors, output forced\n")
    return error