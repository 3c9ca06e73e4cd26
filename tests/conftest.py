# conftest.py
# Shared fixtures. Every tool the tests run is a small python script
# executed with the current interpreter; each one appends "action@config"
# to a spawn log so tests can count how often a tool really ran.
from __future__ import annotations

import sys
import textwrap
from pathlib import Path

import pytest

from actiongraph import BuildConfig, action, loc
from actiongraph.ui.console import Console, set_console

PY = sys.executable

CONCAT = textwrap.dedent(
    """
    import os
    import sys

    name, out, ins = sys.argv[1], sys.argv[2], sys.argv[3:]
    config = os.environ.get("ACTIONGRAPH_CONFIG", "?")
    with open(os.environ["SPAWN_LOG"], "a") as log:
        log.write(f"{name}@{config}\\n")
    with open(out, "w") as f:
        f.write(f"{name}[{config}]\\n")
        for path in ins:
            with open(path) as src:
                f.write(src.read())
    """
)

FAIL = textwrap.dedent(
    """
    import os
    import sys

    with open(os.environ["SPAWN_LOG"], "a") as log:
        log.write(f"{sys.argv[1]}@{os.environ.get('ACTIONGRAPH_CONFIG', '?')}\\n")
    print("something went wrong", file=sys.stderr)
    sys.exit(int(sys.argv[2]))
    """
)

# fails until it has been started `times` times, then behaves like concat
FLAKY = textwrap.dedent(
    """
    import os
    import sys

    counter, times, out = sys.argv[1], int(sys.argv[2]), sys.argv[3]
    n = int(open(counter).read()) if os.path.exists(counter) else 0
    with open(counter, "w") as f:
        f.write(str(n + 1))
    if n < times:
        sys.exit(1)
    with open(out, "w") as f:
        f.write("finally\\n")
    """
)

SLEEP = textwrap.dedent(
    """
    import os
    import sys
    import time

    with open(os.environ["SPAWN_LOG"], "a") as log:
        log.write(f"{sys.argv[1]}@{os.environ.get('ACTIONGRAPH_CONFIG', '?')}\\n")
    time.sleep(float(sys.argv[2]))
    """
)

# logs "name start|end time" around a sleep, for measuring overlap
SPAN = textwrap.dedent(
    """
    import os
    import sys
    import time

    name, seconds, out = sys.argv[1], float(sys.argv[2]), sys.argv[3]
    with open(os.environ["SPAN_LOG"], "a") as log:
        log.write(f"{name} start {time.time()}\\n")
    time.sleep(seconds)
    with open(out, "w") as f:
        f.write(name)
    with open(os.environ["SPAN_LOG"], "a") as log:
        log.write(f"{name} end {time.time()}\\n")
    """
)

# writes an executable tool that behaves like concat.py
MKTOOL = textwrap.dedent(
    """
    import os
    import stat
    import sys

    out, concat = sys.argv[1], os.path.abspath(sys.argv[2])
    with open(out, "w") as f:
        f.write(f"#!{sys.executable}\\n")
        f.write("import runpy\\n")
        f.write(f"runpy.run_path({concat!r}, run_name='__main__')\\n")
    os.chmod(out, os.stat(out).st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    """
)

TOOLS = {
    "tools/concat.py": CONCAT,
    "tools/fail.py": FAIL,
    "tools/flaky.py": FLAKY,
    "tools/sleep.py": SLEEP,
    "tools/span.py": SPAN,
    "tools/mktool.py": MKTOOL,
}


@pytest.fixture(autouse=True)
def quiet_console():
    console = Console(quiet=True)
    set_console(console)
    yield console
    set_console(Console())


class RecordingConsole(Console):
    """Keeps warnings and failures instead of printing them."""

    def __init__(self):
        super().__init__(quiet=True)
        self.warnings: list[str] = []
        self.failures: list[str] = []

    def print_warning(self, message: str) -> None:
        self.warnings.append(message)

    def print_failure(self, key, reason, exit_code=None) -> None:
        self.failures.append(key)


@pytest.fixture
def console() -> RecordingConsole:
    return RecordingConsole()


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    ws = tmp_path / "ws"
    for rel, text in TOOLS.items():
        p = ws / rel
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(text)
    (ws / "src").mkdir()
    (ws / "src" / "lib.c").write_text("int lib() { return 1; }\n")
    (ws / "src" / "app.c").write_text("int main() { return lib(); }\n")
    (ws / "src" / "other.c").write_text("int other() { return 2; }\n")
    return ws


@pytest.fixture
def spawn_log(tmp_path: Path) -> Path:
    return tmp_path / "spawns.log"


@pytest.fixture
def config(workspace: Path, spawn_log: Path, tmp_path: Path) -> BuildConfig:
    return BuildConfig(
        workspace=workspace,
        out_root=tmp_path / "out",
        cache_root=tmp_path / "cache",
        max_workers=2,
        retry_backoff=0.01,
        env={"SPAWN_LOG": str(spawn_log)},
    )


def spawns(log: Path) -> list[str]:
    if not log.exists():
        return []
    return log.read_text().splitlines()


def concat(name: str, out: str, *ins: str, **kwargs):
    """An action that writes `out` from its inputs using tools/concat.py."""
    return action(
        name,
        tool=PY,
        inputs=["tools/concat.py", *ins],
        outputs=[out],
        args=[loc("tools/concat.py"), name, loc(out), *[loc(i) for i in ins]],
        **kwargs,
    )


def engine_actions(generator_config: str = "target"):
    """
    lib.o is linked into both the generator and the app. The generator is
    a generated tool, so it is requested under the exec (host) tag.
    """
    return [
        concat("lib", "obj/lib.o", "src/lib.c"),
        action(
            "gen",
            tool=PY,
            inputs=["tools/mktool.py", "tools/concat.py", "obj/lib.o"],
            outputs=["bin/gen"],
            args=[loc("tools/mktool.py"), loc("bin/gen"), loc("tools/concat.py")],
            configuration=generator_config,
        ),
        action(
            "snapshot",
            tool=loc("bin/gen"),
            inputs=["src/app.c"],
            outputs=["gen/snapshot.cc"],
            args=["snapshot", loc("gen/snapshot.cc"), loc("src/app.c")],
        ),
        concat("app", "bin/app", "gen/snapshot.cc", "obj/lib.o", "src/app.c"),
    ]
