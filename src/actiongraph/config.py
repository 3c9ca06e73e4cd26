# config.py
# Build-wide settings live in one explicit object that is passed around.
# Nothing in this package reads configuration from module globals.
from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .model import Action, ConfigTag, parse_configuration
from .ui.console import Console, get_console

DEFAULT_OUT_DIR = ".actiongraph/out"
DEFAULT_CACHE_DIR = ".actiongraph/cache"

ENV_PREFIX = "ACTIONGRAPH_"


def _default_workers() -> int:
    return os.cpu_count() or 2


def parse_tag_filters(raw: str | Sequence[str] | None) -> Tuple[str, ...]:
    """'-benchmark,+fast' -> ('-benchmark', '+fast')"""
    if not raw:
        return ()
    items = raw.split(",") if isinstance(raw, str) else list(raw)
    return tuple(i.strip() for i in items if i.strip())


@dataclass(frozen=True)
class BuildConfig:
    """Everything one build needs to know that is not part of the graph."""
    workspace: Path = field(default_factory=lambda: Path("."))
    out_root: Path = Path(DEFAULT_OUT_DIR)
    cache_root: Path = Path(DEFAULT_CACHE_DIR)
    cache_enabled: bool = True

    # configuration policy
    default_tag: ConfigTag = ConfigTag.TARGET
    exec_tag: ConfigTag = ConfigTag.HOST
    variant: str = ""

    # scheduling
    max_workers: int = field(default_factory=_default_workers)
    max_retries: int = 0
    retry_backoff: float = 0.5
    fail_fast: bool = False

    tag_filters: Tuple[str, ...] = ()
    env: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if self.max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {self.max_workers}")
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")

    # ---- paths ----

    @property
    def workspace_dir(self) -> Path:
        return Path(self.workspace).resolve()

    def _under_workspace(self, p: Path) -> Path:
        p = Path(p).expanduser()
        return p if p.is_absolute() else self.workspace_dir / p

    @property
    def out_dir(self) -> Path:
        return self._under_workspace(self.out_root)

    @property
    def cache_dir(self) -> Path:
        return self._under_workspace(self.cache_root)

    def output_path(self, tag: ConfigTag, declared: str) -> Path:
        """Where a declared output of a record with `tag` lives on disk."""
        return self.out_dir / tag.value / declared

    def source_path(self, declared: str) -> Path:
        return self.workspace_dir / declared

    # ---- selection ----

    def selects(self, tags: Sequence[str]) -> bool:
        """
        Apply tag filters: '-t' excludes actions tagged t, '+t' or 't'
        requires at least one of the listed tags.
        """
        tagset = set(tags)
        required: List[str] = []
        for f in self.tag_filters:
            if f.startswith("-"):
                if f[1:] in tagset:
                    return False
            else:
                required.append(f.lstrip("+"))
        if required and not tagset.intersection(required):
            return False
        return True

    def with_overrides(self, **overrides) -> "BuildConfig":
        """Copy with every non-None override applied (CLI flags on top of env)."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> "BuildConfig":
        """
        Read ACTIONGRAPH_* variables:
          WORKSPACE, OUT_DIR, CACHE_DIR, NO_CACHE, CONFIG, EXEC_CONFIG,
          VARIANT, WORKERS, RETRIES, RETRY_BACKOFF, FAIL_FAST, TAG_FILTERS
        """
        env = os.environ if environ is None else environ

        def get(name: str) -> Optional[str]:
            v = env.get(ENV_PREFIX + name)
            return v if v not in (None, "") else None

        def flag(name: str) -> Optional[bool]:
            v = get(name)
            if v is None:
                return None
            return v.lower() in ("1", "true", "yes", "on")

        values: Dict[str, object] = {}
        if get("WORKSPACE"):
            values["workspace"] = Path(get("WORKSPACE"))
        if get("OUT_DIR"):
            values["out_root"] = Path(get("OUT_DIR"))
        if get("CACHE_DIR"):
            values["cache_root"] = Path(get("CACHE_DIR"))
        if flag("NO_CACHE") is not None:
            values["cache_enabled"] = not flag("NO_CACHE")
        # "inherit" means no override; unknown names raise ValueError
        for name, attr in (("CONFIG", "default_tag"), ("EXEC_CONFIG", "exec_tag")):
            tag = parse_configuration(get(name))
            if tag is not None:
                values[attr] = tag
        if get("VARIANT"):
            values["variant"] = get("VARIANT")
        if get("WORKERS"):
            values["max_workers"] = int(get("WORKERS"))
        if get("RETRIES"):
            values["max_retries"] = int(get("RETRIES"))
        if get("RETRY_BACKOFF"):
            values["retry_backoff"] = float(get("RETRY_BACKOFF"))
        if flag("FAIL_FAST") is not None:
            values["fail_fast"] = flag("FAIL_FAST")
        if get("TAG_FILTERS"):
            values["tag_filters"] = parse_tag_filters(get("TAG_FILTERS"))

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


class ConfigurationResolver:
    """
    Decides which tag an action is built for.

    A pinned action always gets its pinned tag ("fixed wins"); an
    inheriting action gets whatever the consumer requested. When a pin
    overrides a different request a warning is printed once per
    (action, requested tag).
    """

    def __init__(self, config: BuildConfig, console: Optional[Console] = None):
        self.config = config
        self._console = console
        self._noted: set[Tuple[str, ConfigTag]] = set()

    def resolve(self, action: Action, requested: ConfigTag | str | None = None) -> ConfigTag:
        req = parse_configuration(requested) if requested is not None else None
        if req is None:
            req = self.config.default_tag

        if action.configuration is None:
            return req

        if action.configuration != req and (action.name, req) not in self._noted:
            self._noted.add((action.name, req))
            console = self._console or get_console()
            console.print_warning(
                f"{action.name}: requested '{req.value}' but action is pinned to "
                f"'{action.configuration.value}'; using '{action.configuration.value}'"
            )
        return action.configuration
