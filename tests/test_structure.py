from dtcheck import structure as s
from dtcheck.checkbase import Check, CheckStatus
from dtcheck.data import Data, MarkerType
from dtcheck.tree import DtInfo, DtsFlags, Label, Node, Property


def node(name, *children, props=(), **kw):
    n = Node(name, **kw)
    for p in props:
        n.add_property(p)
    for c in children:
        n.add_child(c)
    return n


def prop(name, value=b""):
    return Property(name, Data(bytearray(value)))


def cells(name, *words):
    d = Data()
    for w in words:
        d.append_cell(w)
    return Property(name, d)


def run(fn, root, data=None, **info):
    check = Check("test", fn, data=data, error=True)
    check.run(DtInfo(root, **info))
    return check.status


def test_always_fail():
    assert run(s.check_always_fail, node("")) is CheckStatus.FAILED


def test_is_string():
    assert run(s.check_is_string, node("", props=[prop("model", b"abc\0")]),
               "model") is CheckStatus.PASSED
    assert run(s.check_is_string, node("", props=[prop("model", b"a\0b\0")]),
               "model") is CheckStatus.FAILED
    assert run(s.check_is_string, node(""), "model") is CheckStatus.PASSED


def test_is_string_list():
    good = node("", props=[prop("compatible", b"a\0b\0")])
    bad = node("", props=[prop("compatible", b"a\0b")])
    assert run(s.check_is_string_list, good, "compatible") is CheckStatus.PASSED
    assert run(s.check_is_string_list, bad, "compatible") is CheckStatus.FAILED


def test_is_cell():
    assert run(s.check_is_cell, node("", props=[cells("#size-cells", 1)]),
               "#size-cells") is CheckStatus.PASSED
    assert run(s.check_is_cell, node("", props=[cells("#size-cells", 1, 2)]),
               "#size-cells") is CheckStatus.FAILED


def test_duplicate_names():
    assert run(s.check_duplicate_node_names,
               node("", node("a"), node("a"))) is CheckStatus.FAILED
    assert run(s.check_duplicate_node_names,
               node("", node("a"), node("b"))) is CheckStatus.PASSED
    assert run(s.check_duplicate_property_names,
               node("", props=[prop("x"), prop("x")])) is CheckStatus.FAILED


def test_node_name_chars(capsys):
    assert run(s.check_node_name_chars, node("", node("foo$")),
               s.NODECHARS) is CheckStatus.FAILED
    assert "Bad character '$' in node name" in capsys.readouterr().err
    assert run(s.check_node_name_chars, node("", node("foo@1")),
               s.NODECHARS) is CheckStatus.PASSED


def test_node_name_chars_strict():
    assert run(s.check_node_name_chars_strict, node("", node("foo_bar")),
               s.PROPNODECHARSSTRICT) is CheckStatus.FAILED
    assert run(s.check_node_name_chars_strict, node("", node("foo@1_2")),
               s.PROPNODECHARSSTRICT) is CheckStatus.PASSED


def test_node_name_format_and_vs_property():
    assert run(s.check_node_name_format,
               node("", node("a@1@2"))) is CheckStatus.FAILED
    assert run(s.check_node_name_vs_property_name,
               node("", node("x"), props=[prop("x")])) is CheckStatus.FAILED


def test_unit_address_vs_reg():
    assert run(s.check_unit_address_vs_reg,
               node("", node("dev@1"))) is CheckStatus.FAILED
    assert run(s.check_unit_address_vs_reg,
               node("", node("dev", props=[cells("reg", 1)]))) is CheckStatus.FAILED
    assert run(s.check_unit_address_vs_reg,
               node("", node("dev@1", props=[cells("reg", 1)]))) is CheckStatus.PASSED
    assert run(s.check_unit_address_vs_reg,
               node("", node("dev@1", props=[prop("ranges")]))) is CheckStatus.FAILED


def test_property_name_chars():
    assert run(s.check_property_name_chars, node("", props=[prop("a$b")]),
               s.PROPCHARS) is CheckStatus.FAILED
    assert run(s.check_property_name_chars, node("", props=[prop("#a,b")]),
               s.PROPCHARS) is CheckStatus.PASSED


def test_property_name_chars_strict():
    ok = node("", props=[prop("#address-cells"), prop("vendor,#foo-cells"),
                         prop("device_type")])
    assert run(s.check_property_name_chars_strict, ok,
               s.PROPNODECHARSSTRICT) is CheckStatus.PASSED
    assert run(s.check_property_name_chars_strict, node("", props=[prop("foo_bar")]),
               s.PROPNODECHARSSTRICT) is CheckStatus.FAILED


def test_duplicate_label(capsys):
    root = node("", node("a", labels=[Label("lbl")]), node("b", labels=[Label("lbl")]))
    assert run(s.check_duplicate_label_node, root) is CheckStatus.FAILED
    assert "Duplicate label 'lbl'" in capsys.readouterr().err
    unique = node("", node("a", labels=[Label("one")]), node("b", labels=[Label("two")]))
    assert run(s.check_duplicate_label_node, unique) is CheckStatus.PASSED


def test_explicit_phandles():
    child = node("a", props=[cells("phandle", 5)])
    root = node("", child)
    assert run(s.check_explicit_phandles, root) is CheckStatus.PASSED
    assert child.phandle == 5

    dup = node("", node("a", props=[cells("phandle", 5)]),
               node("b", props=[cells("phandle", 5)]))
    assert run(s.check_explicit_phandles, dup) is CheckStatus.FAILED

    mismatch = node("", node("a", props=[cells("phandle", 5),
                                         cells("linux,phandle", 6)]))
    assert run(s.check_explicit_phandles, mismatch) is CheckStatus.FAILED

    invalid = node("", node("a", props=[cells("phandle", 0xFFFFFFFF)]))
    assert run(s.check_explicit_phandles, invalid) is CheckStatus.FAILED


def test_name_properties():
    child = node("cpu@0", props=[prop("name", b"cpu\0")])
    assert run(s.check_name_properties, node("", child)) is CheckStatus.PASSED
    assert child.get_property("name") is None
    wrong = node("", node("cpu@0", props=[prop("name", b"gpu\0")]))
    assert run(s.check_name_properties, wrong) is CheckStatus.FAILED


def _ref_prop(kind, ref):
    d = Data()
    d.add_marker(kind, ref)
    if kind is MarkerType.REF_PHANDLE:
        d.append_cell(0)
    return Property("ref", d)


def test_phandle_references():
    target = node("t", labels=[Label("target")])
    user = node("u", props=[_ref_prop(MarkerType.REF_PHANDLE, "target")])
    root = node("", target, user)
    assert run(s.fixup_phandle_references, root) is CheckStatus.PASSED
    assert user.get_property("ref").cell() == target.phandle
    assert target.is_referenced


def test_phandle_references_missing():
    user = node("u", props=[_ref_prop(MarkerType.REF_PHANDLE, "nowhere")])
    assert run(s.fixup_phandle_references, node("", user)) is CheckStatus.FAILED
    plugin_user = node("u", props=[_ref_prop(MarkerType.REF_PHANDLE, "nowhere")])
    status = run(s.fixup_phandle_references, node("", plugin_user),
                 dtsflags=DtsFlags.PLUGIN)
    assert status is CheckStatus.PASSED
    assert plugin_user.get_property("ref").cell() == 0xFFFFFFFF


def test_path_references():
    target = node("t", labels=[Label("target")])
    user = node("u", props=[_ref_prop(MarkerType.REF_PATH, "target")])
    assert run(s.fixup_path_references, node("", target, user)) is CheckStatus.PASSED
    assert bytes(user.get_property("ref").val) == target.fullpath.encode() + b"\0"


def test_omit_unused_nodes():
    gone = node("gone", omit_if_unused=True)
    kept = node("kept", omit_if_unused=True, is_referenced=True)
    root = node("", gone, kept)
    run(s.fixup_omit_unused_nodes, root)
    assert [c.name for c in root.children] == ["kept"]

    labelled = node("lab", omit_if_unused=True, labels=[Label("x")])
    root = node("", labelled)
    run(s.fixup_omit_unused_nodes, root, generate_symbols=True)
    assert root.children == [labelled]


def test_names_is_string_list():
    bad = node("", props=[prop("clock-names", b"a\0b")])
    assert run(s.check_names_is_string_list, bad) is CheckStatus.FAILED
    good = node("", props=[prop("clock-names", b"a\0b\0")])
    assert run(s.check_names_is_string_list, good) is CheckStatus.PASSED


def test_alias_paths():
    good = node("", node("aliases", props=[prop("serial0", b"/uart\0")]), node("uart"))
    assert run(s.check_alias_paths, good) is CheckStatus.PASSED
    missing = node("", node("aliases", props=[prop("serial0", b"/none\0")]))
    assert run(s.check_alias_paths, missing) is CheckStatus.FAILED
    upper = node("", node("aliases", props=[prop("Serial", b"/uart\0")]), node("uart"))
    assert run(s.check_alias_paths, upper) is CheckStatus.FAILED


def test_addr_size_cells():
    root = node("", props=[cells("#address-cells", 1), cells("#size-cells", 0)])
    child = node("c")
    root.add_child(child)
    run(s.fixup_addr_size_cells, root)
    assert (root.addr_cells, root.size_cells) == (1, 0)
    assert (child.addr_cells, child.size_cells) == (-1, -1)


def test_reg_format():
    good = node("", node("d@0", props=[cells("reg", 0, 4)]), addr_cells=1, size_cells=1)
    assert run(s.check_reg_format, good) is CheckStatus.PASSED
    bad = node("", node("d@0", props=[cells("reg", 0)]), addr_cells=1, size_cells=1)
    assert run(s.check_reg_format, bad) is CheckStatus.FAILED
    rooted = node("", props=[cells("reg", 0)])
    assert run(s.check_reg_format, rooted) is CheckStatus.FAILED


def test_ranges_format():
    def tree(ranges, child_addr=1):
        child = node("b", props=[ranges], addr_cells=child_addr, size_cells=1)
        return node("", child, addr_cells=1, size_cells=1)

    assert run(s.check_ranges_format, tree(prop("ranges")), "ranges") is CheckStatus.PASSED
    assert run(s.check_ranges_format, tree(prop("ranges"), 2), "ranges") is CheckStatus.FAILED
    assert run(s.check_ranges_format, tree(cells("ranges", 0, 0, 1)),
               "ranges") is CheckStatus.PASSED
    assert run(s.check_ranges_format, tree(cells("ranges", 0, 0)),
               "ranges") is CheckStatus.FAILED