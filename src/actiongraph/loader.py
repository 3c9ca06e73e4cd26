# loader.py
# Build files come in two flavours:
#   BUILD.py    - python, defines build_actions() -> List[Action] or ACTIONS = [...]
#                 and optionally SOURCES = [...]
#   BUILD.json  - {"actions": [{name, inputs, outputs, tool, args, configuration}, ...],
#                  "sources": [...]}
from __future__ import annotations

import json
import runpy
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .dsl import action
from .model import Action
from .template import LocationRef

DEFAULT_BUILD_FILES = ("BUILD.py", "BUILD.json")


@dataclass
class LoadedBuild:
    path: Path
    actions: List[Action]
    # None means "whatever exists in the workspace"
    sources: Optional[List[str]] = None


# -------------------- JSON schema --------------------

class LocationDecl(BaseModel):
    model_config = ConfigDict(extra="forbid")
    location: str = Field(..., min_length=1)


class ActionDecl(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1)
    tool: Union[str, LocationDecl]
    inputs: List[str] = Field(default_factory=list)
    outputs: List[str] = Field(default_factory=list)
    args: List[Union[str, LocationDecl]] = Field(default_factory=list)
    configuration: Literal["host", "target", "inherit"] = "inherit"
    tags: List[str] = Field(default_factory=list)
    test: bool = False
    allow_empty: List[str] = Field(default_factory=list)
    tool_version: Optional[str] = None
    env: Dict[str, str] = Field(default_factory=dict)

    def to_action(self) -> Action:
        def conv(v):
            return LocationRef(v.location) if isinstance(v, LocationDecl) else v

        return action(
            self.name,
            tool=conv(self.tool),
            inputs=self.inputs,
            outputs=self.outputs,
            args=[conv(a) for a in self.args],
            configuration=self.configuration,
            tags=self.tags,
            test=self.test,
            allow_empty=self.allow_empty,
            tool_version=self.tool_version,
            env=self.env,
        )


class BuildFileDecl(BaseModel):
    model_config = ConfigDict(extra="forbid")

    actions: List[ActionDecl]
    sources: Optional[List[str]] = None


# -------------------- loading --------------------

def _load_json(path: Path) -> LoadedBuild:
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ValueError(f"{path.name} is not valid JSON: {e}") from e
    try:
        decl = BuildFileDecl.model_validate(raw)
    except ValidationError as e:
        raise ValueError(f"{path.name} does not match the build file format:\n{e}") from e
    return LoadedBuild(
        path=path,
        actions=[a.to_action() for a in decl.actions],
        sources=decl.sources,
    )


def _load_python(path: Path) -> LoadedBuild:
    module_name = f"actiongraph_build_{path.stem}"
    globals_dict = runpy.run_path(str(path), run_name=module_name)

    found = None
    if "build_actions" in globals_dict and callable(globals_dict["build_actions"]):
        found = globals_dict["build_actions"]()
    elif "ACTIONS" in globals_dict:
        found = globals_dict["ACTIONS"]

    if not isinstance(found, list) or not all(isinstance(a, Action) for a in found):
        raise TypeError(
            "Build file must return/define a List[Action]. "
            "Define build_actions() -> List[Action] or ACTIONS = [Action, ...]."
        )

    sources = globals_dict.get("SOURCES")
    if sources is not None:
        sources = [str(s) for s in sources]
    return LoadedBuild(path=path, actions=found, sources=sources)


def load_build_file(path: str | Path) -> LoadedBuild:
    """Load a BUILD.py or BUILD.json file."""
    p = Path(path).expanduser().resolve()
    if not p.exists():
        raise FileNotFoundError(f"Build file not found: {p}")
    if p.suffix == ".py":
        return _load_python(p)
    if p.suffix == ".json":
        return _load_json(p)
    raise ValueError(f"Build file must be a .py or .json file, got: {p.name}")


def find_build_files(directory: str | Path = ".") -> List[Path]:
    """BUILD.py / BUILD.json plus any *_build.py or *_build.json in `directory`."""
    d = Path(directory)
    found: List[Path] = [d / n for n in DEFAULT_BUILD_FILES if (d / n).exists()]
    for pattern in ("*_build.py", "*_build.json"):
        for p in sorted(d.glob(pattern)):
            if p not in found:
                found.append(p)
    return found
