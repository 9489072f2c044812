import pytest

from dtcheck.checkbase import Check, CheckStatus, is_multiple_of
from dtcheck.tree import DtInfo, Node, Property


def _tree():
    root = Node()
    root.add_child(Node("a", srcpos=["a.dts:1", "b.dts:2"]))
    return root


@pytest.mark.parametrize(
    "multiple, divisor, expected",
    [(0, 0, True), (4, 0, False), (8, 4, True), (6, 4, False), (0, 4, True)],
)
def test_is_multiple_of(multiple, divisor, expected):
    assert is_multiple_of(multiple, divisor) is expected


def test_run_passes_and_visits_every_node():
    seen = []
    check = Check("visit", lambda c, dti, n: seen.append(n.fullpath), warn=True)
    assert check.run(DtInfo(_tree())) is False
    assert check.status is CheckStatus.PASSED
    assert seen == ["/", "/a"]


def test_run_failure_counts_as_error_only_for_error_checks(capsys):
    fn = lambda c, dti, n: c.fail(dti, n, "bad")  # noqa: E731
    warning = Check("w", fn, warn=True)
    error = Check("e", fn, error=True)
    assert warning.run(DtInfo(_tree())) is False
    assert warning.status is CheckStatus.FAILED
    assert error.run(DtInfo(_tree())) is True
    assert "ERROR (e)" in capsys.readouterr().err


def test_failed_prerequisite_skips_check():
    calls = []
    prereq = Check("pre", lambda c, dti, n: c.fail(dti, n, "x"))
    check = Check("main", lambda c, dti, n: calls.append(n), prereqs=[prereq])
    check.run(DtInfo(_tree()))
    assert check.status is CheckStatus.PREREQ
    assert calls == []


def test_run_does_not_repeat():
    calls = []
    check = Check("once", lambda c, dti, n: calls.append(n))
    dti = DtInfo(_tree())
    check.run(dti)
    check.run(dti)
    assert len(calls) == 2


def test_message_format_with_node_position():
    root = _tree()
    check = Check("demo", warn=True)
    text = check.message(DtInfo(root), root.children[0], None, "hello")
    assert text == (
        "a.dts:1: Warning (demo): /a: hello\n  also defined at b.dts:2\n"
    )


def test_message_uses_outname_and_property():
    root = Node()
    child = root.add_child(Node("a"))
    prop = child.add_property(Property("reg"))
    check = Check("demo", error=True)
    text = check.message(DtInfo(root, outname="out.dtb"), child, prop, "x")
    assert text.startswith("out.dtb: ERROR (demo): /a:reg: x")
    stdout_text = check.message(DtInfo(root), None, None, "y")
    assert stdout_text.startswith("<stdout>: ")


def test_message_quietened(capsys):
    check = Check("demo", warn=True)
    assert check.message(DtInfo(_tree(), quiet=1), None, None, "x") is None
    assert capsys.readouterr().err == ""


def test_fail_prop_sets_failed():
    root = Node()
    prop = root.add_property(Property("p"))
    check = Check("demo")
    check.fail_prop(DtInfo(root), root, prop, "x")
    assert check.status is CheckStatus.FAILED


def test_enable_raises_prerequisites():
    prereq = Check("pre")
    check = Check("main", prereqs=[prereq])
    check.enable(True, False)
    assert (check.warn, prereq.warn, prereq.error) == (True, True, False)