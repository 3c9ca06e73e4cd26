# cli.py
from __future__ import annotations

import sys
from pathlib import Path

import click

from actiongraph.cache import CacheStore
from actiongraph.config import BuildConfig, ConfigurationResolver, parse_tag_filters
from actiongraph.dag import build_graph
from actiongraph.errors import CycleDetectedError, StructuralError
from actiongraph.loader import LoadedBuild, find_build_files, load_build_file
from actiongraph.model import ConfigTag
from actiongraph.planner import BuildPlan, plan_build
from actiongraph.runner import BuildResult, Scheduler
from actiongraph.ui.console import Console, get_console, set_console

EXIT_OK = 0
EXIT_FAILED = 1
# click uses 2 for usage errors
EXIT_CYCLE = 3
EXIT_STRUCTURAL = 4
EXIT_INTERRUPTED = 130


def discover_build_file(file_arg: str | None) -> Path:
    """
    Discover the build file from argument or default.

    Raises:
        SystemExit: If no build file can be found or several exist
    """
    console = get_console()

    if file_arg:
        path = Path(file_arg)
        if path.is_dir():
            found = find_build_files(path)
            if found:
                return found[0]
        if not path.exists():
            console.print_error(
                "Build file not found",
                f"Could not find build file: {file_arg}",
                suggestion="Create a BUILD.py or BUILD.json, or point at one:\n  actiongraph build --file path/to/BUILD.py",
            )
            sys.exit(EXIT_STRUCTURAL)
        return path

    found = find_build_files(".")
    if not found:
        console.print_error(
            "No build file found",
            "Could not find any build files.",
            details=["Looked for:", "  BUILD.py", "  BUILD.json", "  *_build.py", "  *_build.json"],
            suggestion="Create a BUILD.py, or specify one explicitly:\n  actiongraph build --file my_build.py",
        )
        sys.exit(EXIT_STRUCTURAL)
    if len(found) > 1:
        console.print_error(
            "Multiple build files found",
            "Found multiple build files. Please specify which one to use:",
            details=[f"  {f}" for f in found],
            suggestion="Specify a build file explicitly:\n  actiongraph build --file BUILD.py",
        )
        sys.exit(EXIT_STRUCTURAL)
    return found[0]


def _config_from_options(build_file: Path, opts: dict) -> BuildConfig:
    return BuildConfig.from_env(
        workspace=build_file.resolve().parent,
        cache_root=Path(opts["cache_dir"]) if opts.get("cache_dir") else None,
        out_root=Path(opts["out_dir"]) if opts.get("out_dir") else None,
        cache_enabled=False if opts.get("no_cache") else None,
        max_workers=opts.get("jobs"),
        max_retries=opts.get("retries"),
        fail_fast=opts.get("fail_fast"),
        variant=opts.get("variant"),
        tag_filters=parse_tag_filters(opts["tag_filter"]) if opts.get("tag_filter") else None,
    )


def _plan(ctx, targets, opts, *, include_tests: bool) -> tuple[LoadedBuild, BuildPlan]:
    """Load + validate + plan. Structural problems exit here, before anything runs."""
    console = get_console()
    build_file = discover_build_file(opts.get("file"))
    try:
        loaded = load_build_file(build_file)
        config = _config_from_options(build_file, opts)
        graph = build_graph(loaded.actions, sources=loaded.sources, workspace=config.workspace_dir)
        plan = plan_build(
            graph,
            list(targets) or ["//..."],
            config,
            requested=opts.get("config"),
            include_tests=include_tests,
            resolver=ConfigurationResolver(config, console),
        )
    except CycleDetectedError as e:
        console.print_error(
            "Dependency cycle",
            str(e),
            suggestion="Break the cycle by removing one of the inputs along this path.",
        )
        sys.exit(EXIT_CYCLE)
    except StructuralError as e:
        console.print_error("Invalid build graph", str(e))
        sys.exit(EXIT_STRUCTURAL)
    except (FileNotFoundError, TypeError, ValueError) as e:
        console.print_error("Failed to load build file", f"Could not load {build_file}", details=[str(e)])
        if ctx.obj.get("debug", False):
            console.print_exception(e)
        sys.exit(EXIT_STRUCTURAL)
    return loaded, plan


def _execute(plan: BuildPlan) -> BuildResult:
    scheduler = Scheduler(plan, console=get_console())
    try:
        return scheduler.run()
    except KeyboardInterrupt:
        get_console().print_info("\nInterrupted by user")
        sys.exit(EXIT_INTERRUPTED)


def build_options(fn):
    """Options shared by `build`, `test` and `plan`."""
    options = [
        click.argument("targets", nargs=-1),
        click.option("--file", "-f", "file", default=None, help="Build file (defaults to BUILD.py / BUILD.json)"),
        click.option("--jobs", "-j", default=None, type=int, help="Number of parallel workers (default: CPU count)"),
        click.option("--cache-dir", default=None, help="Cache directory (default: .actiongraph/cache)"),
        click.option("--out-dir", default=None, help="Output directory (default: .actiongraph/out)"),
        click.option("--no-cache", is_flag=True, default=False, help="Do not read or write the cache"),
        click.option(
            "--config",
            type=click.Choice([t.value for t in ConfigTag]),
            default=None,
            help="Configuration requested for the top-level targets",
        ),
        click.option("--variant", default=None, help="Build variant suffix (e.g. debug, asan); kept apart in the cache"),
        click.option("--retries", default=None, type=int, help="Retries per failed action"),
        click.option(
            "--fail-fast/--keep-going",
            default=None,
            help="Stop starting new actions after the first failure (default: keep going)",
        ),
        click.option("--tag-filter", default=None, help="Comma separated, e.g. -benchmark,-off-by-default"),
    ]
    for option in reversed(options):
        fn = option(fn)
    return fn


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.option("--quiet", "-q", is_flag=True, default=False, help="Only print warnings, errors and results")
@click.pass_context
def cli(ctx, debug, quiet):
    """actiongraph: build actions per configuration, once, with a content-addressed cache."""
    set_console(Console(debug=debug, quiet=quiet))
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@build_options
@click.pass_context
def build(ctx, targets, **opts):
    """Build TARGETS (action names, output paths or //...)."""
    console = get_console()
    loaded, plan = _plan(ctx, targets, opts, include_tests=False)
    console.print_build_started(
        build_file=loaded.path.name,
        targets=[str(k) for k in plan.targets],
        records=len(plan.records),
        collapsed=plan.collapsed,
    )
    result = _execute(plan)
    console.print_results(result.summary())
    sys.exit(EXIT_OK if result.ok else EXIT_FAILED)


@cli.command()
@build_options
@click.pass_context
def test(ctx, targets, **opts):
    """Build TARGETS and run the test actions among them."""
    console = get_console()
    loaded, plan = _plan(ctx, targets, opts, include_tests=True)
    console.print_build_started(
        build_file=loaded.path.name,
        targets=[str(k) for k in plan.targets],
        records=len(plan.records),
        collapsed=plan.collapsed,
    )
    result = _execute(plan)

    tests = {
        str(k): v for k, v in sorted(result.results.items())
        if plan.graph.action(k.action).test
    }
    if not tests:
        console.print_warning("No test actions matched the given targets")
    console.print_test_results(tests)
    sys.exit(EXIT_OK if result.ok else EXIT_FAILED)


@cli.command()
@build_options
@click.pass_context
def plan(ctx, targets, **opts):
    """Show the deduplicated records for TARGETS without running anything."""
    console = get_console()
    loaded, build_plan = _plan(ctx, targets, opts, include_tests=True)
    console.print_build_started(
        build_file=loaded.path.name,
        targets=[str(k) for k in build_plan.targets],
        records=len(build_plan.records),
        collapsed=build_plan.collapsed,
    )
    for i, level in enumerate(build_plan.levels()):
        console.print_plan_level(i, [str(k) for k in level])


@cli.group()
def cache():
    """Inspect and maintain the action cache."""


def _cache_store(cache_dir: str | None) -> CacheStore:
    config = BuildConfig.from_env(cache_root=Path(cache_dir) if cache_dir else None)
    return CacheStore(config.cache_dir)


@cache.command("usage")
@click.option("--cache-dir", default=None, help="Cache directory (default: .actiongraph/cache)")
def cache_usage(cache_dir):
    """Report how many entries the cache holds and how big it is."""
    store = _cache_store(cache_dir)
    usage = store.usage()
    get_console().print_info(f"{store.root}: {usage.entries} entries, {usage.megabytes:.1f} MB")


@cache.command("trim")
@click.option("--cache-dir", default=None, help="Cache directory (default: .actiongraph/cache)")
@click.option("--max-size", default=100.0, show_default=True, type=float, help="Drop entries larger than this many MB")
def cache_trim(cache_dir, max_size):
    """Drop cache entries larger than --max-size."""
    console = get_console()
    store = _cache_store(cache_dir)
    removed = store.trim(int(max_size * 1024 * 1024))
    for fp in removed:
        console.print_debug(f"removed {fp}")
    usage = store.usage()
    console.print_info(
        f"Removed {len(removed)} entries; {usage.entries} entries, {usage.megabytes:.1f} MB left"
    )


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
