# runner.py
from __future__ import annotations

import os
import shutil
import subprocess
import threading
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from .cache import CacheStore, compute_fingerprint, tool_version
from .config import BuildConfig, ConfigurationResolver
from .dag import build_graph
from .errors import BlockedError, ToolExecutionError
from .model import Action, ConfigTag, ExecutionRecord, RecordKey, RecordStatus
from .planner import BuildPlan, plan_build
from .template import expand_args
from .ui.console import Console, get_console

# Result strings per record, as shown in the final summary.
OK = "ok"
CACHED = "cached"
FAILED = "failed"
BLOCKED = "blocked"
SKIPPED = "skipped"        # never started because fail-fast stopped scheduling
CANCELLED = "cancelled"    # never started because the build was cancelled

OUTPUT_TAIL = 4000


@dataclass
class BuildResult:
    plan: BuildPlan
    results: Dict[RecordKey, str]
    spawned: int = 0
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return not self.cancelled and all(v in (OK, CACHED) for v in self.results.values())

    @property
    def records(self) -> Dict[RecordKey, ExecutionRecord]:
        return self.plan.records

    def status_of(self, action: str, tag: ConfigTag | str) -> str:
        return self.results[RecordKey(action, ConfigTag(tag))]

    def failures(self) -> List[ExecutionRecord]:
        """Records that failed on their own (not merely blocked)."""
        return [
            r for k, r in sorted(self.plan.records.items())
            if self.results.get(k) == FAILED
        ]

    def summary(self) -> Dict[str, str]:
        return {str(k): v for k, v in sorted(self.results.items())}


class Scheduler:
    """
    Runs every record of a plan exactly once on a bounded worker pool.

    Pending -> Ready when all deps Succeeded; Ready -> Running while fewer
    than max_workers records are in flight; Running -> Succeeded/Failed.
    A failure turns every transitive dependent into Failed(BlockedError)
    without running it. Independent branches keep going unless
    config.fail_fast is set.
    """

    def __init__(
        self,
        plan: BuildPlan,
        *,
        cache: Optional[CacheStore] = None,
        console: Optional[Console] = None,
    ):
        self.plan = plan
        self.config: BuildConfig = plan.config
        if cache is None and self.config.cache_enabled:
            cache = CacheStore(self.config.cache_dir)
        self.cache = cache if self.config.cache_enabled else None
        self.console = console or get_console()

        self._cancel = threading.Event()
        self._lock = threading.Lock()
        self._procs: Dict[RecordKey, subprocess.Popen] = {}
        self.spawned = 0

    # ------------------------------------------------------------------
    # cancellation
    # ------------------------------------------------------------------

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def cancel(self) -> None:
        """Stop starting records and ask running tools to terminate."""
        self._cancel.set()
        with self._lock:
            procs = list(self._procs.values())
        for proc in procs:
            if proc.poll() is None:
                proc.terminate()

    # ------------------------------------------------------------------
    # main loop
    # ------------------------------------------------------------------

    def run(self) -> BuildResult:
        records = self.plan.records
        waiting: Dict[RecordKey, int] = {k: len(r.deps) for k, r in records.items()}

        ready: List[RecordKey] = []
        for key, rec in records.items():
            if waiting[key] == 0:
                rec.status = RecordStatus.READY
                ready.append(key)

        results: Dict[RecordKey, str] = {}
        with ThreadPoolExecutor(max_workers=self.config.max_workers) as pool:
            try:
                self._loop(pool, ready, waiting, results)
            except KeyboardInterrupt:
                # terminate tools before the pool joins its workers
                self.cancel()
                raise

        for key in records:
            if key not in results:
                results[key] = CANCELLED if self._cancel.is_set() else SKIPPED

        return BuildResult(
            plan=self.plan,
            results=results,
            spawned=self.spawned,
            cancelled=self._cancel.is_set(),
        )

    def _loop(
        self,
        pool: ThreadPoolExecutor,
        ready: List[RecordKey],
        waiting: Dict[RecordKey, int],
        results: Dict[RecordKey, str],
    ) -> None:
        records = self.plan.records
        priority = self.plan.critical_path()
        max_workers = self.config.max_workers
        in_flight: Dict[Future, RecordKey] = {}
        failed = False

        while ready or in_flight:
            # schedule ready records, longest critical path first
            while (
                ready
                and len(in_flight) < max_workers
                and not self._cancel.is_set()
                and not (self.config.fail_fast and failed)
            ):
                ready.sort(key=lambda k: (-priority[k], k))
                key = ready.pop(0)
                records[key].status = RecordStatus.RUNNING
                fut = pool.submit(self._execute, records[key])
                in_flight[fut] = key

            if not in_flight:
                break

            # wait for one completion, then loop to schedule newly-ready records
            fut = next(as_completed(list(in_flight.keys())))
            key = in_flight.pop(fut)
            rec = records[key]

            try:
                fut.result()
            except Exception as e:
                rec.status = RecordStatus.FAILED
                rec.error = e
                results[key] = FAILED
                failed = True
                self.console.print_failure(str(key), str(e), getattr(e, "exit_code", None))
                for blocked in self._block_dependents(key):
                    results[blocked] = BLOCKED
                continue

            rec.status = RecordStatus.SUCCEEDED
            results[key] = CACHED if rec.cached else OK
            self.console.print_record_done(str(key), rec.cached)

            for nxt in self.plan.dependents[key]:
                waiting[nxt] -= 1
                if waiting[nxt] == 0 and records[nxt].status == RecordStatus.PENDING:
                    records[nxt].status = RecordStatus.READY
                    ready.append(nxt)

    def _block_dependents(self, root: RecordKey) -> List[RecordKey]:
        records = self.plan.records
        blocked: List[RecordKey] = []
        stack = list(self.plan.dependents[root])
        while stack:
            key = stack.pop()
            rec = records[key]
            if rec.status.terminal:
                continue
            rec.status = RecordStatus.FAILED
            rec.error = BlockedError(action=key.action, tag=key.tag.value, root=str(root))
            blocked.append(key)
            stack.extend(self.plan.dependents[key])
        return sorted(blocked)

    # ------------------------------------------------------------------
    # one record
    # ------------------------------------------------------------------

    def _env_for(self, action: Action, key: RecordKey) -> Dict[str, str]:
        env = os.environ.copy()
        env.update(self.config.env)
        env.update(action.env_dict())
        env["ACTIONGRAPH_CONFIG"] = key.tag.value
        env["ACTIONGRAPH_VARIANT"] = self.config.variant
        return env

    def _relative(self, path: Path) -> str:
        try:
            return str(path.relative_to(self.config.workspace_dir)).replace("\\", "/")
        except ValueError:
            return str(path)

    def _in_workspace(self, path: Path) -> bool:
        root = self.config.workspace_dir
        return root in path.resolve().parents

    def _resolve_tool(self, action: Action, table: Dict[str, Path]) -> Tuple[str, Optional[Path]]:
        """
        The executable as Popen will start it, plus the file whose content
        identifies the tool when it lives in the workspace (generated
        tools included). System tools are identified by their version.
        """
        if action.generated_tool is not None:
            path = table[action.generated_tool]
            return str(path), path

        tool = action.tool
        if "/" not in tool and os.sep not in tool:
            return shutil.which(tool) or tool, None

        path = Path(tool).expanduser()
        if not path.is_absolute():
            # relative paths are resolved against cwd, which is the workspace
            path = self.config.workspace_dir / path
        if path.is_file() and self._in_workspace(path):
            return str(path), path
        return str(path), None

    def _execute(self, rec: ExecutionRecord) -> None:
        key = rec.key
        action = self.plan.graph.action(key.action)
        table = self.plan.path_table(key)
        rec.outputs = {p: table[p] for p in action.outputs}

        tool, tool_file = self._resolve_tool(action, table)
        argv = [tool, *expand_args(action.name, action.args, table)]

        if self.cache is None:
            self._run_with_retries(rec, action, argv)
            return

        inputs = {p: table[p] for p in action.inputs}
        if tool_file is not None:
            inputs[action.generated_tool or action.tool] = tool_file
            version = action.tool_version
        else:
            version = action.tool_version or tool_version(tool, str(self.config.workspace_dir))

        rel_table = {p: Path(self._relative(path)) for p, path in table.items()}
        fingerprint, details = compute_fingerprint(
            action=action.name,
            tag=key.tag,
            variant=self.config.variant,
            tool=action.generated_tool or action.tool,
            tool_version=version,
            args=expand_args(action.name, action.args, rel_table),
            env={**self.config.env, **action.env_dict()},
            inputs=inputs,
            outputs=action.outputs,
        )
        rec.fingerprint = fingerprint

        # identical computations wait for each other instead of racing
        with self.cache.single_flight(fingerprint):
            hit = self.cache.get(fingerprint)
            if hit is not None and self.cache.restore(fingerprint, rec.outputs):
                rec.cached = True
                return
            self._run_with_retries(rec, action, argv)
            if self.cache.put(fingerprint, rec, details):
                self.console.print_cache_saved(str(key), fingerprint)

    def _run_with_retries(self, rec: ExecutionRecord, action: Action, argv: List[str]) -> None:
        allowed = 1 + self.config.max_retries
        for attempt in range(1, allowed + 1):
            rec.attempts = attempt
            self.console.print_record_start(str(rec.key), attempt)
            try:
                self._attempt(rec, action, argv)
                return
            except ToolExecutionError as e:
                if attempt >= allowed or e.reason == "cancelled" or self._cancel.is_set():
                    raise
                delay = self.config.retry_backoff * (2 ** (attempt - 1))
                self.console.print_retry(str(rec.key), attempt, delay)
                if self._cancel.wait(delay):
                    raise

    def _attempt(self, rec: ExecutionRecord, action: Action, argv: List[str]) -> None:
        key = rec.key
        for out in rec.outputs.values():
            if out.is_file():
                out.unlink()
            out.parent.mkdir(parents=True, exist_ok=True)

        try:
            proc = subprocess.Popen(
                argv,
                cwd=str(self.config.workspace_dir),
                env=self._env_for(action, key),
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
            )
        except OSError as e:
            raise ToolExecutionError(
                action=key.action,
                tag=key.tag.value,
                reason="spawn",
                message=f"could not start tool {argv[0]!r}: {e}",
            ) from e

        with self._lock:
            self._procs[key] = proc
            self.spawned += 1
        if self._cancel.is_set():
            proc.terminate()
        try:
            stdout, stderr = proc.communicate()
        finally:
            with self._lock:
                self._procs.pop(key, None)

        if proc.returncode != 0:
            cancelled = self._cancel.is_set()
            raise ToolExecutionError(
                action=key.action,
                tag=key.tag.value,
                reason="cancelled" if cancelled else "exit",
                message="tool terminated (build cancelled)" if cancelled else "tool exited with a failure status",
                exit_code=proc.returncode,
                stdout=(stdout or "")[-OUTPUT_TAIL:],
                stderr=(stderr or "")[-OUTPUT_TAIL:],
            )

        for declared, path in rec.outputs.items():
            if not path.is_file():
                raise ToolExecutionError(
                    action=key.action,
                    tag=key.tag.value,
                    reason="missing-output",
                    message=f"declared output '{declared}' was not created",
                    stdout=(stdout or "")[-OUTPUT_TAIL:],
                    stderr=(stderr or "")[-OUTPUT_TAIL:],
                )
            if path.stat().st_size == 0 and declared not in action.allow_empty:
                raise ToolExecutionError(
                    action=key.action,
                    tag=key.tag.value,
                    reason="empty-output",
                    message=f"declared output '{declared}' is empty",
                )


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def run_build(
    actions: Iterable[Action],
    targets: Iterable[str],
    config: BuildConfig,
    *,
    sources: Optional[Iterable[str]] = None,
    requested: ConfigTag | str | None = None,
    include_tests: bool = False,
    cache: Optional[CacheStore] = None,
    console: Optional[Console] = None,
) -> BuildResult:
    """Validate, plan and execute in one call. Structural errors raise."""
    console = console or get_console()
    graph = build_graph(actions, sources=sources, workspace=config.workspace_dir)
    plan = plan_build(
        graph,
        targets,
        config,
        requested=requested,
        include_tests=include_tests,
        resolver=ConfigurationResolver(config, console),
    )
    return Scheduler(plan, cache=cache, console=console).run()
