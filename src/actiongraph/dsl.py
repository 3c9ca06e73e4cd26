# dsl.py
from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Sequence, Union

from .model import Action, ConfigTag, parse_configuration
from .template import ArgTemplate, LocationRef, parse_arg


# ---------------------------------------------------------------------
# Location helper
# ---------------------------------------------------------------------

def loc(path: str) -> LocationRef:
    """Placeholder for the on-disk path of a declared file: loc("gen/out.h")."""
    return LocationRef(path)


# ---------------------------------------------------------------------
# Functional Action helper
# ---------------------------------------------------------------------

def _tool_ref(tool: Union[str, LocationRef]) -> Union[str, LocationRef]:
    if isinstance(tool, LocationRef):
        return tool
    parsed = parse_arg(tool)
    # "$(location bin/gen)" as a tool means a generated tool
    return parsed if isinstance(parsed, LocationRef) else tool


def action(
    name: str,
    *,
    tool: Union[str, LocationRef],
    inputs: Optional[Sequence[str]] = None,
    outputs: Optional[Sequence[str]] = None,
    args: Optional[Sequence[Union[str, ArgTemplate]]] = None,
    configuration: Union[str, ConfigTag, None] = "inherit",
    tags: Optional[Sequence[str]] = None,
    test: bool = False,
    allow_empty: Optional[Sequence[str]] = None,
    tool_version: Optional[str] = None,
    env: Optional[Dict[str, str]] = None,
) -> Action:
    """
    Declare an action.

    Example:
        action(
            "mksnapshot",
            tool=loc("bin/mksnapshot"),
            inputs=["src/snapshot.js"],
            outputs=["gen/snapshot.cc"],
            args=["--out", loc("gen/snapshot.cc"), loc("src/snapshot.js")],
            configuration="target",
        )
    """
    if not name:
        raise ValueError("action() needs a name")
    outputs = list(outputs or [])
    if len(set(outputs)) != len(outputs):
        raise ValueError(f"action({name!r}) declares the same output twice: {outputs}")
    empty_ok = list(allow_empty or [])
    unknown = [p for p in empty_ok if p not in outputs]
    if unknown:
        raise ValueError(f"action({name!r}) allow_empty names undeclared outputs: {unknown}")

    return Action(
        name=name,
        tool=_tool_ref(tool),
        inputs=tuple(inputs or ()),
        outputs=tuple(outputs),
        args=tuple(parse_arg(a) for a in (args or ())),
        configuration=parse_configuration(configuration),
        tags=tuple(tags or ()),
        test=test,
        allow_empty=tuple(empty_ok),
        tool_version=tool_version,
        # force values to str for stable hashing + env compatibility
        env=tuple(sorted((k, str(v)) for k, v in (env or {}).items())),
    )


def test_action(name: str, **kwargs) -> Action:
    """action(..., test=True): only selected by `actiongraph test`."""
    return action(name, test=True, **kwargs)


# keep pytest from collecting the helper when a test module imports it
test_action.__test__ = False


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class ActionBuilder:
    def __init__(self, name: str):
        self.name = name
        self._tool: Union[str, LocationRef, None] = None
        self._inputs: List[str] = []
        self._outputs: List[str] = []
        self._args: List[Union[str, ArgTemplate]] = []
        self._configuration: Union[str, ConfigTag, None] = "inherit"
        self._tags: List[str] = []
        self._test = False
        self._allow_empty: List[str] = []
        self._tool_version: Optional[str] = None
        self._env: Dict[str, str] = {}

    def uses(self, tool: Union[str, LocationRef], version: Optional[str] = None):
        self._tool = tool
        self._tool_version = version
        return self

    def reads(self, *paths: str):
        self._inputs.extend(paths)
        return self

    def writes(self, *paths: str, allow_empty: bool = False):
        self._outputs.extend(paths)
        if allow_empty:
            self._allow_empty.extend(paths)
        return self

    def with_args(self, *args: Union[str, ArgTemplate]):
        self._args.extend(args)
        return self

    def pinned(self, tag: Union[str, ConfigTag]):
        self._configuration = tag
        return self

    def tagged(self, *tags: str):
        self._tags.extend(tags)
        return self

    def as_test(self, enabled: bool = True):
        self._test = enabled
        return self

    def with_env(self, **env):
        self._env.update({k: str(v) for k, v in env.items()})
        return self

    def build(self) -> Action:
        if self._tool is None:
            raise ValueError(f"Action '{self.name}' has no tool")
        return action(
            self.name,
            tool=self._tool,
            inputs=self._inputs,
            outputs=self._outputs,
            args=self._args,
            configuration=self._configuration,
            tags=self._tags,
            test=self._test,
            allow_empty=self._allow_empty,
            tool_version=self._tool_version,
            env=self._env,
        )


def build(name: str) -> ActionBuilder:
    """Convenience: build('gen').uses('python3').writes('out.h').build()"""
    return ActionBuilder(name)


# ---------------------------------------------------------------------
# Build file helper
# ---------------------------------------------------------------------

def actions(*items: Union[Action, Iterable[Action]]) -> List[Action]:
    """
    Build file helper:

        from actiongraph import actions, action, loc

        def build_actions():
            return actions(action(...), action(...))

    Lists of actions are flattened.
    """
    out: List[Action] = []
    for item in items:
        if isinstance(item, Action):
            out.append(item)
        else:
            out.extend(item)
    return out
