# planner.py
# Turns requested targets into the set of distinct (action, tag) records.
#
# Every consumer asks for its producers under some tag: inputs under the
# consumer's own tag, generated tools under the exec tag. The resolver
# then applies the producer's pin. Two requests that resolve to the same
# RecordKey share one ExecutionRecord; that is the whole point.
from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set

from .config import BuildConfig, ConfigurationResolver
from .dag import BuildGraph
from .model import ConfigTag, ExecutionRecord, RecordKey, RecordStatus, parse_configuration


@dataclass
class BuildPlan:
    graph: BuildGraph
    config: BuildConfig
    targets: List[RecordKey]
    records: Dict[RecordKey, ExecutionRecord]
    # record -> declared path -> producing record (None for source files)
    links: Dict[RecordKey, Dict[str, Optional[RecordKey]]]
    requests: int = 0
    dependents: Dict[RecordKey, Set[RecordKey]] = field(default_factory=dict)

    def __post_init__(self):
        if not self.dependents:
            self.dependents = {k: set() for k in self.records}
            for key, rec in self.records.items():
                for d in rec.deps:
                    self.dependents[d].add(key)

    @property
    def collapsed(self) -> int:
        """How many requests were satisfied by an already planned record."""
        return self.requests - len(self.records)

    def records_for(self, action: str) -> List[ExecutionRecord]:
        return [r for k, r in sorted(self.records.items()) if k.action == action]

    def levels(self) -> List[List[RecordKey]]:
        indeg = {k: len(r.deps) for k, r in self.records.items()}
        q = deque(sorted(k for k, d in indeg.items() if d == 0))
        levels: List[List[RecordKey]] = []
        while q:
            level: List[RecordKey] = []
            for _ in range(len(q)):
                k = q.popleft()
                level.append(k)
                for child in sorted(self.dependents[k]):
                    indeg[child] -= 1
                    if indeg[child] == 0:
                        q.append(child)
            levels.append(level)
        return levels

    def order(self) -> List[RecordKey]:
        return [k for level in self.levels() for k in level]

    def critical_path(self) -> Dict[RecordKey, int]:
        """Length of the longest chain of dependents hanging off each record."""
        length: Dict[RecordKey, int] = {}
        for key in reversed(self.order()):
            length[key] = 1 + max((length[d] for d in self.dependents[key]), default=0)
        return length

    # ---- paths ----

    def resolve_path(self, key: RecordKey, declared: str) -> Path:
        """Filesystem location of a file declared by (or for) record `key`."""
        action = self.graph.action(key.action)
        if declared in action.outputs:
            return self.config.output_path(key.tag, declared)
        producer = self.links[key].get(declared)
        if producer is not None:
            return self.config.output_path(producer.tag, declared)
        return self.config.source_path(declared)

    def path_table(self, key: RecordKey) -> Dict[str, Path]:
        """Every declared path the record may reference, resolved."""
        action = self.graph.action(key.action)
        table = {p: self.resolve_path(key, p) for p in action.inputs}
        if action.generated_tool is not None:
            table[action.generated_tool] = self.resolve_path(key, action.generated_tool)
        for p in action.outputs:
            table[p] = self.resolve_path(key, p)
        return table


def plan_build(
    graph: BuildGraph,
    targets: Iterable[str],
    config: BuildConfig,
    *,
    requested: ConfigTag | str | None = None,
    include_tests: bool = False,
    resolver: Optional[ConfigurationResolver] = None,
) -> BuildPlan:
    """
    Compute every distinct ExecutionRecord needed for `targets` before
    anything runs. `requested` is the tag asked for at the top level
    (defaults to config.default_tag).
    """
    resolver = resolver or ConfigurationResolver(config)
    top_tag = parse_configuration(requested) if requested is not None else None
    top_tag = top_tag or config.default_tag

    records: Dict[RecordKey, ExecutionRecord] = {}
    links: Dict[RecordKey, Dict[str, Optional[RecordKey]]] = {}
    requests = 0
    stack: List[RecordKey] = []

    def request(name: str, tag: ConfigTag) -> RecordKey:
        nonlocal requests
        requests += 1
        key = RecordKey(name, resolver.resolve(graph.action(name), tag))
        if key not in records:
            records[key] = ExecutionRecord(key=key, status=RecordStatus.PENDING)
            stack.append(key)
        return key

    top: List[RecordKey] = []
    for name in graph.expand_targets(targets, include_tests=include_tests, config=config):
        key = request(name, top_tag)
        if key not in top:
            top.append(key)

    while stack:
        key = stack.pop()
        action = graph.action(key.action)
        rec = records[key]
        links[key] = {}

        wanted = [(p, key.tag) for p in action.inputs]
        if action.generated_tool is not None:
            wanted.append((action.generated_tool, config.exec_tag))

        for path, tag in wanted:
            producer = graph.producer_of(path)
            if producer is None:
                links[key][path] = None
                continue
            pkey = request(producer, tag)
            rec.deps.add(pkey)
            links[key][path] = pkey

    return BuildPlan(
        graph=graph,
        config=config,
        targets=top,
        records=records,
        links=links,
        requests=requests,
    )
