"""The live device tree: nodes, properties, labels and lookups."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Iterator, Optional

from dtcheck.data import Data, Marker, MarkerType

MAX_PHANDLE = 0xFFFFFFFE
_CELL_SIZE = 4


def phandle_is_valid(phandle: int) -> bool:
    """A phandle is valid unless it is 0 or all ones."""
    return phandle not in (0, 0xFFFFFFFF)


@dataclass(frozen=True)
class BusType:
    """A kind of bus a node may be recognised as bridging."""

    name: str


class DtsFlags(enum.Flag):
    """Flags describing the source a tree came from."""

    NONE = 0
    V1 = enum.auto()
    PLUGIN = enum.auto()


@dataclass(eq=False)
class Label:
    """A label attached to a node or a property."""

    name: str
    deleted: bool = False


@dataclass(eq=False)
class Property:
    """A named property with its value."""

    name: str
    val: Data = field(default_factory=Data)
    labels: list[Label] = field(default_factory=list)
    deleted: bool = False
    srcpos: list[str] = field(default_factory=list)

    def cell(self) -> int:
        """The value as a single 32-bit cell."""
        if len(self.val) != _CELL_SIZE:
            raise ValueError(f"property {self.name} is not a single cell")
        return int.from_bytes(self.val.val, "big")

    def cell_n(self, index: int) -> int:
        """The 32-bit cell at the given index."""
        start = index * _CELL_SIZE
        if index < 0 or start + _CELL_SIZE > len(self.val):
            raise IndexError(f"cell {index} out of range in {self.name}")
        return int.from_bytes(self.val.val[start:start + _CELL_SIZE], "big")


@dataclass(eq=False)
class Node:
    """A node of the tree; the root has an empty name and no parent."""

    name: str = ""
    properties: list[Property] = field(default_factory=list)
    children: list[Node] = field(default_factory=list)
    parent: Optional[Node] = field(default=None, repr=False)
    labels: list[Label] = field(default_factory=list)
    phandle: int = 0
    addr_cells: int = -1
    size_cells: int = -1
    bus: Optional[BusType] = None
    deleted: bool = False
    omit_if_unused: bool = False
    is_referenced: bool = False
    srcpos: list[str] = field(default_factory=list)

    @property
    def basenamelen(self) -> int:
        """Length of the name before any '@'."""
        return self.name.find("@") if "@" in self.name else len(self.name)

    @property
    def basename(self) -> str:
        return self.name[: self.basenamelen]

    @property
    def unitname(self) -> str:
        """The unit address after the first '@', or an empty string."""
        return self.name[self.basenamelen + 1:] if "@" in self.name else ""

    @property
    def fullpath(self) -> str:
        if self.parent is None:
            return "/"
        return f"{self.parent.fullpath.rstrip('/')}/{self.name}"

    def add_child(self, child: Node) -> Node:
        """Attach a child node and return it."""
        child.parent = self
        self.children.append(child)
        return child

    def add_property(self, prop: Property) -> Property:
        """Attach a property and return it."""
        self.properties.append(prop)
        return prop

    def get_property(self, name: str) -> Optional[Property]:
        return next(
            (p for p in self.properties if not p.deleted and p.name == name),
            None,
        )

    def get_subnode(self, name: str) -> Optional[Node]:
        return next(
            (c for c in self.children if not c.deleted and c.name == name),
            None,
        )

    def walk(self) -> Iterator[Node]:
        """Yield this node and its live descendants, parents first."""
        yield self
        for child in list(self.children):
            if not child.deleted:
                yield from child.walk()

    def get_node_by_path(self, path: str) -> Optional[Node]:
        path = path.lstrip("/")
        if not path:
            return self
        head, sep, rest = path.partition("/")
        for child in self.children:
            if not child.deleted and child.name == head:
                return child.get_node_by_path(rest) if sep else child
        return None

    def get_node_by_label(self, label: str) -> Optional[Node]:
        for node in self.walk():
            if any(not lb.deleted and lb.name == label for lb in node.labels):
                return node
        return None

    def get_property_by_label(
        self, label: str
    ) -> Optional[tuple[Node, Property]]:
        """Find the property carrying a label, with the node it is in."""
        for node in self.walk():
            for prop in node.properties:
                if prop.deleted:
                    continue
                if any(not lb.deleted and lb.name == label for lb in prop.labels):
                    return node, prop
        return None

    def get_marker_label(
        self, label: str
    ) -> Optional[tuple[Node, Property, Marker]]:
        """Find a label placed inside a property value."""
        for node in self.walk():
            for prop in node.properties:
                if prop.deleted:
                    continue
                for marker in prop.val.markers_of_type(MarkerType.LABEL):
                    if marker.ref == label:
                        return node, prop, marker
        return None

    def get_node_by_phandle(self, phandle: int) -> Optional[Node]:
        if not phandle_is_valid(phandle):
            return None
        return next((n for n in self.walk() if n.phandle == phandle), None)

    def get_node_by_ref(self, ref: str) -> Optional[Node]:
        """Resolve a reference: '/' or a path, otherwise a label."""
        if ref.startswith("/"):
            return self.get_node_by_path(ref)
        return self.get_node_by_label(ref)

    def assign_phandle(self, node: Node) -> int:
        """Return the node's phandle, allocating one above the tree's highest."""
        if phandle_is_valid(node.phandle):
            return node.phandle
        highest = max(
            (n.phandle for n in self.walk() if phandle_is_valid(n.phandle)),
            default=0,
        )
        phandle = highest + 1
        if phandle > MAX_PHANDLE:
            raise ValueError("no phandles left to allocate")
        node.phandle = phandle
        if node.get_property("phandle") is None:
            node.add_property(Property("phandle", Data().append_cell(phandle)))
        return phandle

    def delete(self) -> None:
        """Remove this node and everything under it from the tree."""
        for node in list(self.walk()):
            node.deleted = True
            for prop in node.properties:
                prop.deleted = True
            for label in node.labels:
                label.deleted = True
        if self.parent is not None and self in self.parent.children:
            self.parent.children.remove(self)


@dataclass(eq=False)
class DtInfo:
    """A tree under check together with the settings that govern checking."""

    dt: Node
    outname: str = "-"
    dtsflags: DtsFlags = DtsFlags.NONE
    quiet: int = 0
    generate_symbols: bool = False