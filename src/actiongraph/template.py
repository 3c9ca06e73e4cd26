# template.py
# Argument templates: a small closed expression type resolved against a
# table of declared path -> filesystem path. Plain strings never get
# interpolated; "$(location ...)" is parsed once, at declaration time.
from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, List, Mapping, Tuple, Union

from .errors import SubstitutionError

_LOCATION_RE = re.compile(r"\$\(location\s+([^)\s]+)\s*\)")


@dataclass(frozen=True)
class Literal:
    text: str

    def __str__(self) -> str:
        return self.text


@dataclass(frozen=True)
class LocationRef:
    """Placeholder for the final filesystem path of a declared file."""
    path: str

    def __str__(self) -> str:
        return f"$(location {self.path})"


@dataclass(frozen=True)
class Joined:
    """Literal text and location refs concatenated into one argv entry."""
    parts: Tuple[Union[Literal, LocationRef], ...]

    def __str__(self) -> str:
        return "".join(str(p) for p in self.parts)


ArgTemplate = Union[Literal, LocationRef, Joined]


def parse_arg(value: Union[str, ArgTemplate]) -> ArgTemplate:
    """
    Turn a declared argument into a template.

      "-o"                      -> Literal("-o")
      "$(location gen/out.h)"   -> LocationRef("gen/out.h")
      "--out=$(location x.cc)"  -> Joined((Literal("--out="), LocationRef("x.cc")))
    """
    if isinstance(value, (Literal, LocationRef, Joined)):
        return value
    if not isinstance(value, str):
        raise TypeError(f"Argument must be a string or template, got {type(value).__name__}")

    parts: List[Union[Literal, LocationRef]] = []
    pos = 0
    for m in _LOCATION_RE.finditer(value):
        if m.start() > pos:
            parts.append(Literal(value[pos:m.start()]))
        parts.append(LocationRef(m.group(1)))
        pos = m.end()
    if pos < len(value):
        parts.append(Literal(value[pos:]))

    if not parts:
        return Literal("")
    if len(parts) == 1:
        return parts[0]
    return Joined(tuple(parts))


def iter_refs(args: Iterable[ArgTemplate]) -> Iterator[str]:
    """Yield every declared path referenced by a location placeholder."""
    for arg in args:
        if isinstance(arg, LocationRef):
            yield arg.path
        elif isinstance(arg, Joined):
            for part in arg.parts:
                if isinstance(part, LocationRef):
                    yield part.path


def _expand_one(arg: Union[Literal, LocationRef], action: str, table: Mapping[str, Path]) -> str:
    if isinstance(arg, Literal):
        return arg.text
    try:
        return str(table[arg.path])
    except KeyError:
        raise SubstitutionError(
            action=action,
            ref=arg.path,
            known=sorted(table),
        ) from None


def expand_args(action: str, args: Iterable[ArgTemplate], table: Mapping[str, Path]) -> List[str]:
    """Resolve templates into argv strings; unknown refs raise SubstitutionError."""
    out: List[str] = []
    for arg in args:
        if isinstance(arg, Joined):
            out.append("".join(_expand_one(p, action, table) for p in arg.parts))
        else:
            out.append(_expand_one(arg, action, table))
    return out
