import pytest

from actiongraph import BuildConfig, action, loc, test_action
from actiongraph.dag import build_graph, find_cycle
from actiongraph.errors import (
    ConflictingOutputError,
    CycleDetectedError,
    DanglingInputError,
    DuplicateActionError,
    NotFoundError,
    SubstitutionError,
)


def _a(name, inputs=(), outputs=(), **kw):
    return action(name, tool="cc", inputs=list(inputs), outputs=list(outputs), **kw)


def test_deps_follow_declared_files():
    g = build_graph(
        [
            _a("app", ["obj/lib.o", "src/app.c"], ["bin/app"]),
            _a("lib", ["src/lib.c"], ["obj/lib.o"]),
        ],
        sources=["src/lib.c", "src/app.c"],
    )
    assert g.deps == {"app": {"lib"}, "lib": set()}
    assert g.dependents["lib"] == {"app"}
    assert g.producer_of("obj/lib.o") == "lib"
    assert g.is_source("src/app.c")
    assert not g.is_source("obj/lib.o")


def test_order_puts_producers_first():
    g = build_graph(
        [
            _a("d", ["b.out", "c.out"], ["d.out"]),
            _a("c", ["a.out"], ["c.out"]),
            _a("b", ["a.out"], ["b.out"]),
            _a("a", [], ["a.out"]),
        ]
    )
    assert g.levels() == [["a"], ["b", "c"], ["d"]]
    order = g.order()
    for name, ds in g.deps.items():
        for d in ds:
            assert order.index(d) < order.index(name)


def test_cycle_names_full_path():
    with pytest.raises(CycleDetectedError) as e:
        build_graph(
            [
                _a("a", ["c.out"], ["a.out"]),
                _a("b", ["a.out"], ["b.out"]),
                _a("c", ["b.out"], ["c.out"]),
                _a("d", ["a.out"], ["d.out"]),
            ]
        )
    cycle = e.value.cycle
    assert cycle[0] == cycle[-1]
    assert sorted(cycle[:-1]) == ["a", "b", "c"]
    assert "d" not in cycle
    assert " -> ".join(cycle) in str(e.value)


def test_self_cycle():
    with pytest.raises(CycleDetectedError) as e:
        build_graph([_a("loop", ["x"], ["x"])])
    assert e.value.cycle == ["loop", "loop"]


def test_find_cycle_none_for_dag():
    assert find_cycle({"a": {"b"}, "b": set()}) is None


def test_find_cycle_deep_chain_is_iterative():
    n = 5000
    deps = {f"n{i}": {f"n{i + 1}"} for i in range(n)}
    deps[f"n{n}"] = {"n0"}
    cycle = find_cycle(deps)
    assert cycle is not None
    assert len(cycle) == n + 2


def test_duplicate_action():
    with pytest.raises(DuplicateActionError):
        build_graph([_a("a", [], ["x"]), _a("a", [], ["y"])])


def test_conflicting_outputs():
    with pytest.raises(ConflictingOutputError) as e:
        build_graph([_a("a", [], ["gen/x.h"]), _a("b", [], ["gen/x.h"])])
    assert e.value.path == "gen/x.h"
    assert e.value.actions == ["a", "b"]


def test_dangling_input():
    with pytest.raises(DanglingInputError) as e:
        build_graph([_a("a", ["src/missing.c"], ["a.o"])], sources=[])
    assert e.value.path == "src/missing.c"


def test_existing_file_in_workspace_is_a_source(tmp_path):
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "a.c").write_text("int a;\n")
    g = build_graph([_a("a", ["src/a.c"], ["a.o"])], workspace=tmp_path)
    assert g.sources == {"src/a.c"}


def test_generated_tool_must_be_produced(tmp_path):
    (tmp_path / "bin").mkdir()
    (tmp_path / "bin" / "gen").write_text("")
    with pytest.raises(DanglingInputError):
        build_graph([action("use", tool=loc("bin/gen"), outputs=["x"])], workspace=tmp_path)


def test_generated_tool_is_a_dependency():
    g = build_graph(
        [
            _a("gen", [], ["bin/gen"]),
            action("use", tool=loc("bin/gen"), outputs=["x"], args=[loc("bin/gen"), loc("x")]),
        ]
    )
    assert g.deps["use"] == {"gen"}


def test_undeclared_location_ref():
    with pytest.raises(SubstitutionError) as e:
        build_graph([_a("a", [], ["a.o"], args=["-o", loc("b.o")])])
    assert e.value.ref == "b.o"


def test_expand_targets():
    g = build_graph(
        [
            _a("lib", [], ["lib.o"]),
            _a("bench", ["lib.o"], ["bench.txt"], tags=["benchmark"]),
            test_action("lib_test", tool="cc", inputs=["lib.o"]),
        ]
    )
    assert g.expand_targets(["//..."]) == ["bench", "lib"]
    assert g.expand_targets(["..."], include_tests=True) == ["bench", "lib", "lib_test"]
    assert g.expand_targets(["all"], config=BuildConfig(tag_filters=("-benchmark",))) == ["lib"]
    # explicit names and outputs are taken as-is
    assert g.expand_targets(["lib_test", "bench.txt", "lib"]) == ["lib_test", "bench", "lib"]
    with pytest.raises(NotFoundError):
        g.expand_targets(["nope"])
