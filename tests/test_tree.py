import pytest

from dtcheck.data import Data, MarkerType
from dtcheck.tree import (
    BusType,
    DtInfo,
    DtsFlags,
    Label,
    Node,
    Property,
    phandle_is_valid,
)


@pytest.fixture
def tree():
    root = Node()
    soc = root.add_child(Node("soc@0", labels=[Label("soc")]))
    i2c = soc.add_child(Node("i2c@10"))
    i2c.add_property(Property("reg", Data().append_cell(0x10), labels=[Label("reglbl")]))
    value = Data().append_cell(1)
    value.add_marker(MarkerType.LABEL, "inner")
    i2c.add_property(Property("clocks", value))
    root.add_child(Node("chosen"))
    return root


@pytest.mark.parametrize("phandle,valid", [(0, False), (0xFFFFFFFF, False), (1, True)])
def test_phandle_is_valid(phandle, valid):
    assert phandle_is_valid(phandle) is valid


def test_paths_and_names(tree):
    i2c = tree.get_node_by_path("/soc@0/i2c@10")
    assert i2c.fullpath == "/soc@0/i2c@10"
    assert tree.fullpath == "/"
    assert i2c.unitname == "10"
    assert i2c.basename == "i2c"
    assert i2c.basenamelen == len("i2c")
    assert tree.get_node_by_path("/chosen").unitname == ""
    assert tree.get_node_by_path("/") is tree
    assert tree.get_node_by_path("/soc@0/missing") is None


def test_property_cells():
    prop = Property("x", Data().append_cell(5).append_cell(9))
    assert prop.cell_n(0) == 5
    assert prop.cell_n(1) == 9
    with pytest.raises(IndexError):
        prop.cell_n(2)
    with pytest.raises(ValueError):
        prop.cell()
    assert Property("y", Data().append_cell(7)).cell() == 7


def test_get_property_skips_deleted(tree):
    i2c = tree.get_node_by_path("/soc@0/i2c@10")
    assert i2c.get_property("reg").cell() == 0x10
    i2c.get_property("reg").deleted = True
    assert i2c.get_property("reg") is None


def test_get_subnode(tree):
    soc = tree.get_subnode("soc@0")
    assert soc.get_subnode("i2c@10").parent is soc
    assert tree.get_subnode("soc") is None


def test_walk_order(tree):
    assert [n.fullpath for n in tree.walk()] == [
        "/",
        "/soc@0",
        "/soc@0/i2c@10",
        "/chosen",
    ]


def test_label_lookups(tree):
    soc = tree.get_node_by_path("/soc@0")
    i2c = soc.get_subnode("i2c@10")
    assert tree.get_node_by_label("soc") is soc
    assert tree.get_node_by_label("nope") is None
    node, prop = tree.get_property_by_label("reglbl")
    assert node is i2c and prop.name == "reg"
    node, prop, marker = tree.get_marker_label("inner")
    assert node is i2c and prop.name == "clocks" and marker.ref == "inner"
    assert tree.get_marker_label("reglbl") is None


def test_get_node_by_ref(tree):
    assert tree.get_node_by_ref("/") is tree
    assert tree.get_node_by_ref("/chosen") is tree.get_subnode("chosen")
    assert tree.get_node_by_ref("soc") is tree.get_subnode("soc@0")


def test_assign_phandle(tree):
    soc = tree.get_subnode("soc@0")
    chosen = tree.get_subnode("chosen")
    first = tree.assign_phandle(soc)
    second = tree.assign_phandle(chosen)
    assert phandle_is_valid(first) and phandle_is_valid(second)
    assert second > first
    assert tree.assign_phandle(soc) == first
    assert tree.get_node_by_phandle(first) is soc
    assert soc.get_property("phandle").cell() == first
    assert tree.get_node_by_phandle(0) is None


def test_assign_phandle_exhausted(tree):
    tree.phandle = 0xFFFFFFFE
    with pytest.raises(ValueError):
        tree.assign_phandle(tree.get_subnode("chosen"))


def test_delete(tree):
    soc = tree.get_subnode("soc@0")
    i2c = soc.get_subnode("i2c@10")
    soc.delete()
    assert soc.deleted and i2c.deleted
    assert tree.get_subnode("soc@0") is None
    assert tree.get_node_by_label("soc") is None
    assert all(p.deleted for p in i2c.properties)
    assert [n.name for n in tree.walk()] == ["", "chosen"]


def test_dtinfo_defaults_and_types(tree):
    info = DtInfo(tree, dtsflags=DtsFlags.PLUGIN)
    assert info.outname == "-"
    assert DtsFlags.PLUGIN in info.dtsflags
    assert DtsFlags.V1 not in info.dtsflags
    assert BusType("PCI") == BusType("PCI")