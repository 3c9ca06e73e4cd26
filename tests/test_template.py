from pathlib import Path

import pytest

from actiongraph.errors import SubstitutionError
from actiongraph.template import Joined, Literal, LocationRef, expand_args, iter_refs, parse_arg


def test_parse_plain_string_is_literal():
    assert parse_arg("-o") == Literal("-o")
    assert parse_arg("") == Literal("")


def test_parse_location():
    assert parse_arg("$(location gen/out.h)") == LocationRef("gen/out.h")


def test_parse_joined():
    arg = parse_arg("--out=$(location x.cc),$(location y.cc)")
    assert arg == Joined((Literal("--out="), LocationRef("x.cc"), Literal(","), LocationRef("y.cc")))
    assert str(arg) == "--out=$(location x.cc),$(location y.cc)"


def test_parse_rejects_non_strings():
    with pytest.raises(TypeError):
        parse_arg(3)


def test_iter_refs():
    args = [Literal("-c"), LocationRef("a"), parse_arg("-I$(location inc)")]
    assert list(iter_refs(args)) == ["a", "inc"]


def test_expand_args():
    table = {"a": Path("/ws/a"), "inc": Path("/out/target/inc")}
    args = [Literal("-c"), LocationRef("a"), parse_arg("-I$(location inc)")]
    assert expand_args("compile", args, table) == ["-c", "/ws/a", "-I/out/target/inc"]


def test_expand_unknown_ref():
    with pytest.raises(SubstitutionError) as e:
        expand_args("compile", [LocationRef("missing.h")], {"a": Path("a")})
    assert e.value.action == "compile"
    assert e.value.ref == "missing.h"
    assert "missing.h" in str(e.value)
