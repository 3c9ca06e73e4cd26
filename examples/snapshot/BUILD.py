# BUILD.py
# A miniature engine build: a code generator links against a shared
# library that the engine itself links against too. The generator is
# pinned to the target configuration, so the shared library is compiled
# once instead of once for host and once for target.
#
#   actiongraph build            # base_lib runs once
#   actiongraph test //...       # also runs engine_test
from __future__ import annotations

import sys

from actiongraph import action, actions, loc, test_action

PY = sys.executable

SOURCES = [
    "src/base.txt",
    "src/generator.py",
    "src/engine.txt",
    "tools/compile.py",
    "tools/link_tool.py",
    "tools/check.py",
]


def build_actions():
    return actions(
        action(
            "base_lib",
            tool=PY,
            inputs=["src/base.txt", "tools/compile.py"],
            outputs=["obj/base.o"],
            args=[loc("tools/compile.py"), loc("obj/base.o"), loc("src/base.txt")],
        ),
        action(
            "generator",
            tool=PY,
            inputs=["src/generator.py", "obj/base.o", "tools/link_tool.py"],
            outputs=["bin/generator"],
            args=[loc("tools/link_tool.py"), loc("bin/generator"), loc("src/generator.py"), loc("obj/base.o")],
            # build the generator for target: base_lib is shared with the engine
            configuration="target",
        ),
        action(
            "builtins",
            tool=loc("bin/generator"),
            outputs=["gen/builtins.cc"],
            args=[loc("gen/builtins.cc")],
        ),
        action(
            "engine",
            tool=PY,
            inputs=["src/engine.txt", "gen/builtins.cc", "obj/base.o", "tools/compile.py"],
            outputs=["bin/engine"],
            args=[
                loc("tools/compile.py"),
                loc("bin/engine"),
                loc("src/engine.txt"),
                loc("gen/builtins.cc"),
                loc("obj/base.o"),
            ],
        ),
        test_action(
            "engine_test",
            tool=PY,
            inputs=["bin/engine", "tools/check.py"],
            args=[loc("tools/check.py"), loc("bin/engine"), "builtins"],
        ),
        action(
            "engine_benchmark",
            tool=PY,
            inputs=["bin/engine", "tools/check.py"],
            outputs=["bench/report.txt"],
            args=[loc("tools/check.py"), loc("bin/engine"), "engine", "--report", loc("bench/report.txt")],
            tags=["benchmark"],
        ),
    )
