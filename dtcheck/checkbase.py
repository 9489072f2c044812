"""The check object: prerequisites, status tracking and diagnostics."""

from __future__ import annotations

import enum
import sys
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from dtcheck.tree import DtInfo, Node, Property

CheckFn = Callable[["Check", DtInfo, Node], None]


class CheckStatus(enum.Enum):
    """Where a check stands after (or before) running."""

    UNCHECKED = 0
    PREREQ = 1
    PASSED = 2
    FAILED = 3


def is_multiple_of(multiple: int, divisor: int) -> bool:
    """True if multiple is a multiple of divisor; only 0 is a multiple of 0."""
    if divisor == 0:
        return multiple == 0
    return multiple % divisor == 0


@dataclass(eq=False)
class Check:
    """A named test run over every node of a tree.

    ``warn`` and ``error`` decide whether a failure is reported and whether
    it counts as an error.  ``data`` is free for the check function to use.
    """

    name: str
    fn: Optional[CheckFn] = None
    data: Any = None
    warn: bool = False
    error: bool = False
    prereqs: list[Check] = field(default_factory=list)
    status: CheckStatus = CheckStatus.UNCHECKED
    inprogress: bool = False

    def run(self, dti: DtInfo) -> bool:
        """Run prerequisites and then this check; return True on error."""
        assert not self.inprogress, f"check {self.name} re-entered"
        error = False
        if self.status is CheckStatus.UNCHECKED:
            self.inprogress = True
            try:
                for prereq in self.prereqs:
                    error = error or prereq.run(dti)
                    if prereq.status is not CheckStatus.PASSED:
                        self.status = CheckStatus.PREREQ
                        self.message(
                            dti, None, None,
                            f"Failed prerequisite '{prereq.name}'",
                        )
                if self.status is CheckStatus.UNCHECKED:
                    if self.fn is not None:
                        for node in dti.dt.walk():
                            self.fn(self, dti, node)
                    if self.status is CheckStatus.UNCHECKED:
                        self.status = CheckStatus.PASSED
            finally:
                self.inprogress = False
        if self.status is not CheckStatus.PASSED and self.error:
            error = True
        return error

    def fail(self, dti: DtInfo, node: Optional[Node], message: str) -> None:
        """Mark the check failed and report a problem with a node."""
        self.status = CheckStatus.FAILED
        self.message(dti, node, None, message)

    def fail_prop(
        self,
        dti: DtInfo,
        node: Optional[Node],
        prop: Optional[Property],
        message: str,
    ) -> None:
        """Mark the check failed and report a problem with a property."""
        self.status = CheckStatus.FAILED
        self.message(dti, node, prop, message)

    def message(
        self,
        dti: DtInfo,
        node: Optional[Node],
        prop: Optional[Property],
        message: str,
    ) -> Optional[str]:
        """Write a diagnostic to stderr and return it, unless quietened."""
        if not (self.warn and dti.quiet < 1) and not (
            self.error and dti.quiet < 2
        ):
            return None

        pos: Optional[str] = None
        if prop is not None and prop.srcpos:
            pos = prop.srcpos[0]
        elif node is not None and node.srcpos:
            pos = node.srcpos[0]

        if pos is not None:
            text = pos
        elif dti.outname == "-":
            text = "<stdout>"
        else:
            text = dti.outname

        kind = "ERROR" if self.error else "Warning"
        text += f": {kind} ({self.name}): "
        if node is not None:
            if prop is not None:
                text += f"{node.fullpath}:{prop.name}: "
            else:
                text += f"{node.fullpath}: "
        text += message + "\n"

        if prop is None and pos is not None and node is not None:
            for extra in node.srcpos[1:]:
                text += f"  also defined at {extra}\n"

        sys.stderr.write(text)
        return text

    def enable(self, warn: bool, error: bool) -> None:
        """Raise the reporting level, raising it for prerequisites too."""
        if (warn and not self.warn) or (error and not self.error):
            for prereq in self.prereqs:
                prereq.enable(warn, error)
        self.warn = self.warn or warn
        self.error = self.error or error