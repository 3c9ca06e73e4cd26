import json
import shutil
import sys
from pathlib import Path

import pytest
from click.testing import CliRunner

from actiongraph.cli import EXIT_CYCLE, EXIT_FAILED, EXIT_OK, EXIT_STRUCTURAL, cli

EXAMPLE = Path(__file__).resolve().parents[1] / "examples" / "snapshot"


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def snapshot(tmp_path) -> Path:
    dest = tmp_path / "snapshot"
    shutil.copytree(EXAMPLE, dest)
    return dest / "BUILD.py"


def _invoke(runner, *args):
    return runner.invoke(cli, [str(a) for a in args], obj={})


def test_build_example(runner, snapshot):
    result = _invoke(runner, "build", "-f", snapshot)
    assert result.exit_code == EXIT_OK, result.output
    assert "base_lib@target: SUCCESS" in result.output
    assert "base_lib@host" not in result.output
    # the generator is requested for host and pinned to target
    assert "WARNING: generator" in result.output

    out = snapshot.parent / ".actiongraph" / "out" / "target"
    assert (out / "bin" / "engine").read_text().count("base library") == 1
    assert "kBuiltins" in (out / "gen" / "builtins.cc").read_text()
    assert not (snapshot.parent / ".actiongraph" / "out" / "host").exists()

    again = _invoke(runner, "build", "-f", snapshot)
    assert again.exit_code == EXIT_OK, again.output
    assert "base_lib@target: CACHED" in again.output


def test_plan_example(runner, snapshot):
    result = _invoke(runner, "plan", "-f", snapshot, "engine")
    assert result.exit_code == EXIT_OK, result.output
    assert "Level 1: ['base_lib@target']" in result.output
    assert "collapsed" in result.output
    assert not (snapshot.parent / ".actiongraph" / "out").exists()


def test_tag_filter(runner, snapshot):
    result = _invoke(runner, "plan", "-f", snapshot, "--tag-filter=-benchmark")
    assert result.exit_code == EXIT_OK, result.output
    assert "engine_benchmark" not in result.output
    assert "engine@target" in result.output


def test_test_command(runner, snapshot):
    result = _invoke(runner, "test", "-f", snapshot, "--no-cache", "-j", "2")
    assert result.exit_code == EXIT_OK, result.output
    assert "engine_test@target: PASSED" in result.output


def _write_json(path: Path, actions) -> Path:
    path.write_text(json.dumps({"actions": actions}))
    return path


def test_cycle_exit_code(runner, tmp_path):
    build_file = _write_json(
        tmp_path / "BUILD.json",
        [
            {"name": "a", "tool": "cc", "inputs": ["b.out"], "outputs": ["a.out"]},
            {"name": "b", "tool": "cc", "inputs": ["a.out"], "outputs": ["b.out"]},
        ],
    )
    result = _invoke(runner, "build", "-f", build_file)
    assert result.exit_code == EXIT_CYCLE
    assert "a -> b -> a" in result.output


def test_structural_error_exit_code(runner, tmp_path):
    build_file = _write_json(
        tmp_path / "BUILD.json",
        [{"name": "a", "tool": "cc", "inputs": ["src/missing.c"], "outputs": ["a.out"]}],
    )
    result = _invoke(runner, "build", "-f", build_file)
    assert result.exit_code == EXIT_STRUCTURAL
    assert "src/missing.c" in result.output


def test_failed_action_exit_code(runner, tmp_path):
    build_file = _write_json(
        tmp_path / "BUILD.json",
        [{"name": "boom", "tool": sys.executable, "args": ["-c", "import sys; sys.exit(2)"], "outputs": ["x"]}],
    )
    result = _invoke(runner, "build", "-f", build_file)
    assert result.exit_code == EXIT_FAILED
    assert "FAILED boom@target" in result.output
    assert "Exit code: 2" in result.output


def test_missing_build_file(runner, tmp_path):
    result = _invoke(runner, "build", "-f", tmp_path / "BUILD.py")
    assert result.exit_code == EXIT_STRUCTURAL


def test_unknown_target(runner, snapshot):
    result = _invoke(runner, "build", "-f", snapshot, "nope")
    assert result.exit_code == EXIT_STRUCTURAL
    assert "nope" in result.output


def test_cache_usage_and_trim(runner, snapshot):
    assert _invoke(runner, "-q", "build", "-f", snapshot).exit_code == EXIT_OK
    cache_dir = snapshot.parent / ".actiongraph" / "cache"

    usage = _invoke(runner, "cache", "usage", "--cache-dir", cache_dir)
    assert usage.exit_code == EXIT_OK
    assert "5 entries" in usage.output

    trimmed = _invoke(runner, "cache", "trim", "--cache-dir", cache_dir, "--max-size", "0")
    assert trimmed.exit_code == EXIT_OK
    assert "Removed 5 entries" in trimmed.output
