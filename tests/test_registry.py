import pytest

from actiongraph import action
from actiongraph.errors import DuplicateActionError, NotFoundError
from actiongraph.registry import ActionRegistry


def _a(name):
    return action(name, tool="true", outputs=[f"{name}.out"])


def test_register_and_lookup():
    reg = ActionRegistry()
    a = reg.register(_a("b"))
    reg.register(_a("a"))
    assert reg.lookup("b") is a
    assert "a" in reg
    assert len(reg) == 2
    assert reg.names() == ["a", "b"]
    # iteration keeps registration order
    assert [x.name for x in reg] == ["b", "a"]


def test_duplicate_name():
    reg = ActionRegistry([_a("gen")])
    with pytest.raises(DuplicateActionError) as e:
        reg.register(_a("gen"))
    assert e.value.action == "gen"


def test_lookup_unknown():
    reg = ActionRegistry([_a("gen")])
    with pytest.raises(NotFoundError) as e:
        reg.lookup("nope")
    assert e.value.known == ["gen"]
