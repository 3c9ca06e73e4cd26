# errors.py
# Error taxonomy. Structural errors abort planning before anything runs;
# execution errors stay attached to the record that produced them.
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional


class ActionGraphError(Exception):
    """Base class for every error this package raises on purpose."""


class StructuralError(ActionGraphError):
    """The declared graph itself is invalid. Fatal, nothing is executed."""


@dataclass(eq=False)
class DuplicateActionError(StructuralError):
    action: str

    def __str__(self) -> str:
        return f"Action '{self.action}' is already registered"


@dataclass(eq=False)
class NotFoundError(StructuralError):
    action: str
    known: List[str] = field(default_factory=list)

    def __str__(self) -> str:
        msg = f"Unknown action or target '{self.action}'"
        if self.known:
            msg += f". Known actions: {self.known}"
        return msg


@dataclass(eq=False)
class CycleDetectedError(StructuralError):
    """`cycle` is the full path, first element repeated at the end."""
    cycle: List[str]

    @property
    def action(self) -> str:
        return self.cycle[0]

    def __str__(self) -> str:
        return "Dependency cycle: " + " -> ".join(self.cycle)


@dataclass(eq=False)
class DanglingInputError(StructuralError):
    action: str
    path: str

    def __str__(self) -> str:
        return (
            f"Action '{self.action}' needs '{self.path}', which no action produces "
            f"and which is not a source file"
        )


@dataclass(eq=False)
class ConflictingOutputError(StructuralError):
    path: str
    actions: List[str]

    @property
    def action(self) -> str:
        return self.actions[-1]

    def __str__(self) -> str:
        return f"Output '{self.path}' is declared by more than one action: {self.actions}"


@dataclass(eq=False)
class SubstitutionError(StructuralError):
    """A $(location ...) placeholder names a file the action does not declare."""
    action: str
    ref: str
    known: List[str] = field(default_factory=list)

    def __str__(self) -> str:
        return (
            f"Action '{self.action}' references $(location {self.ref}), "
            f"which is not one of its inputs, outputs or tool. Declared: {self.known}"
        )


@dataclass(eq=False)
class ToolExecutionError(ActionGraphError):
    """
    The tool ran (or tried to) and the record did not succeed.

    reason is one of: "exit", "missing-output", "empty-output", "spawn",
    "cancelled".
    """
    action: str
    tag: str
    reason: str
    message: str
    exit_code: Optional[int] = None
    stdout: str = ""
    stderr: str = ""

    def __str__(self) -> str:
        lines = [f"[{self.action}@{self.tag}] {self.message}"]
        if self.exit_code is not None:
            lines.append(f"exit={self.exit_code}")
        if self.stderr:
            lines.append(self.stderr.rstrip())
        return "\n".join(lines)


@dataclass(eq=False)
class BlockedError(ActionGraphError):
    """A dependency failed, so this record was never executed."""
    action: str
    tag: str
    root: str

    def __str__(self) -> str:
        return f"[{self.action}@{self.tag}] blocked by failed dependency {self.root}"
