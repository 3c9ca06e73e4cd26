# dag.py
from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Union

from .errors import (
    ConflictingOutputError,
    CycleDetectedError,
    DanglingInputError,
    NotFoundError,
    SubstitutionError,
)
from .model import Action
from .registry import ActionRegistry
from .template import iter_refs

WILDCARDS = ("//...", "...", "all")


@dataclass
class BuildGraph:
    """
    Actions wired together through the files they declare.

    deps[a]       = actions whose outputs `a` consumes (inputs or tool)
    dependents[a] = actions consuming an output of `a`
    """
    actions: Dict[str, Action]
    producers: Dict[str, str]
    sources: Set[str]
    deps: Dict[str, Set[str]]
    dependents: Dict[str, Set[str]] = field(default_factory=dict)

    def __post_init__(self):
        if not self.dependents:
            self.dependents = {n: set() for n in self.actions}
            for name, ds in self.deps.items():
                for d in ds:
                    self.dependents[d].add(name)

    def action(self, name: str) -> Action:
        try:
            return self.actions[name]
        except KeyError:
            raise NotFoundError(action=name, known=sorted(self.actions)) from None

    def producer_of(self, path: str) -> Optional[str]:
        return self.producers.get(path)

    def is_source(self, path: str) -> bool:
        return path in self.sources

    def levels(self) -> List[List[str]]:
        """
        Topological "levels": every action only depends on actions in
        earlier levels, so each level could run in parallel.
        """
        indeg = {n: len(ds) for n, ds in self.deps.items()}
        q = deque(sorted([n for n, d in indeg.items() if d == 0]))

        levels: List[List[str]] = []
        processed = 0
        while q:
            level: List[str] = []
            for _ in range(len(q)):
                node = q.popleft()
                level.append(node)
                processed += 1
                for child in sorted(self.dependents.get(node, set())):
                    indeg[child] -= 1
                    if indeg[child] == 0:
                        q.append(child)
            levels.append(level)

        if processed != len(indeg):
            # build_graph rejects cycles, so only a hand-built graph gets here
            cycle = find_cycle(self.deps) or sorted(n for n, d in indeg.items() if d > 0)
            raise CycleDetectedError(cycle=cycle)
        return levels

    def order(self) -> List[str]:
        """A total order: producers always come before their consumers."""
        return [n for level in self.levels() for n in level]

    def expand_targets(self, targets: Iterable[str], *, include_tests: bool = False, config=None) -> List[str]:
        """
        Map command-line targets to action names.

        A wildcard selects every action, minus test actions (unless
        include_tests) and minus actions rejected by the tag filters. An
        action name or a declared output path selects that action as-is.
        """
        out: List[str] = []
        for t in targets:
            if t in WILDCARDS:
                for name in sorted(self.actions):
                    a = self.actions[name]
                    if a.test and not include_tests:
                        continue
                    if config is not None and not config.selects(a.tags):
                        continue
                    out.append(name)
            elif t in self.actions:
                out.append(t)
            elif t in self.producers:
                out.append(self.producers[t])
            else:
                raise NotFoundError(action=t, known=sorted(self.actions))

        seen: Set[str] = set()
        uniq: List[str] = []
        for n in out:
            if n not in seen:
                seen.add(n)
                uniq.append(n)
        return uniq


def find_cycle(deps: Dict[str, Set[str]]) -> Optional[List[str]]:
    """
    Iterative DFS over index arrays. Returns the cycle as a path whose
    first and last element are the same action, or None.
    """
    names = sorted(deps)
    index = {n: i for i, n in enumerate(names)}
    succ = [sorted(index[d] for d in deps[n] if d in index) for n in names]

    visited = [False] * len(names)
    on_stack = [False] * len(names)
    stack_pos = [-1] * len(names)

    for root in range(len(names)):
        if visited[root]:
            continue
        stack = [[root, 0]]
        visited[root] = on_stack[root] = True
        stack_pos[root] = 0

        while stack:
            frame = stack[-1]
            node, i = frame
            if i < len(succ[node]):
                frame[1] += 1
                nxt = succ[node][i]
                if on_stack[nxt]:
                    path = [names[f[0]] for f in stack[stack_pos[nxt]:]]
                    return path + [names[nxt]]
                if not visited[nxt]:
                    visited[nxt] = on_stack[nxt] = True
                    stack_pos[nxt] = len(stack)
                    stack.append([nxt, 0])
            else:
                stack.pop()
                on_stack[node] = False
    return None


def build_graph(
    actions: Union[ActionRegistry, Iterable[Action]],
    *,
    sources: Optional[Iterable[str]] = None,
    workspace: Union[str, Path, None] = None,
) -> BuildGraph:
    """
    Link actions into a DAG.

    An input that no action produces must be an external source: listed in
    `sources`, or an existing file/dir under `workspace`.

    Raises DuplicateActionError, ConflictingOutputError, DanglingInputError,
    SubstitutionError or CycleDetectedError. Nothing is executed.
    """
    registry = actions if isinstance(actions, ActionRegistry) else ActionRegistry(actions)
    by_name: Dict[str, Action] = {a.name: a for a in registry}

    producers: Dict[str, str] = {}
    for a in registry:
        for out in a.outputs:
            if out in producers:
                raise ConflictingOutputError(path=out, actions=[producers[out], a.name])
            producers[out] = a.name

    declared_sources = set(sources) if sources is not None else set()
    root = Path(workspace).resolve() if workspace is not None else None

    def _is_source(path: str) -> bool:
        if path in declared_sources:
            return True
        return root is not None and (root / path).exists()

    used_sources: Set[str] = set()
    deps: Dict[str, Set[str]] = {n: set() for n in by_name}

    for a in registry:
        needed = list(a.inputs)
        if a.generated_tool is not None:
            needed.append(a.generated_tool)

        for path in needed:
            producer = producers.get(path)
            if producer is not None:
                deps[a.name].add(producer)
            elif path == a.generated_tool:
                # tools referenced by location must come out of the graph
                raise DanglingInputError(action=a.name, path=path)
            elif _is_source(path):
                used_sources.add(path)
            else:
                raise DanglingInputError(action=a.name, path=path)

        declared = set(a.inputs) | set(a.outputs) | set(needed)
        for ref in iter_refs(a.args):
            if ref not in declared:
                raise SubstitutionError(action=a.name, ref=ref, known=sorted(declared))

    cycle = find_cycle(deps)
    if cycle is not None:
        raise CycleDetectedError(cycle=cycle)

    return BuildGraph(actions=by_name, producers=producers, sources=used_sources, deps=deps)
