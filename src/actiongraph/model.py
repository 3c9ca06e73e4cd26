# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Optional, Tuple, Union

from .template import ArgTemplate, LocationRef


class ConfigTag(str, Enum):
    """Build variant an action is compiled/run for."""
    HOST = "host"
    TARGET = "target"

    def __str__(self) -> str:
        return self.value


# Declared configuration value meaning "use whatever the consumer asked for".
INHERIT = "inherit"


def parse_configuration(value: Union[str, ConfigTag, None]) -> Optional[ConfigTag]:
    """
    Normalize a declared configuration.

    Returns None for "inherit" (or None), a ConfigTag otherwise.
    """
    if value is None or value == INHERIT:
        return None
    if isinstance(value, ConfigTag):
        return value
    try:
        return ConfigTag(str(value).lower())
    except ValueError:
        allowed = ", ".join([t.value for t in ConfigTag] + [INHERIT])
        raise ValueError(f"Unknown configuration {value!r} (expected one of: {allowed})") from None


@dataclass(frozen=True)
class Action:
    """
    A declared tool invocation: inputs -> outputs.

    `configuration` is None when the action inherits the consumer's tag,
    otherwise the tag it is pinned to.
    """
    name: str
    tool: Union[str, LocationRef]
    inputs: Tuple[str, ...] = ()
    outputs: Tuple[str, ...] = ()
    args: Tuple[ArgTemplate, ...] = ()
    configuration: Optional[ConfigTag] = None

    # selection / execution metadata
    tags: Tuple[str, ...] = ()
    test: bool = False
    allow_empty: Tuple[str, ...] = ()
    tool_version: Optional[str] = None
    env: Tuple[Tuple[str, str], ...] = ()

    @property
    def is_pinned(self) -> bool:
        return self.configuration is not None

    @property
    def generated_tool(self) -> Optional[str]:
        """Declared path of the tool when it is produced by another action."""
        if isinstance(self.tool, LocationRef):
            return self.tool.path
        return None

    def env_dict(self) -> Dict[str, str]:
        return dict(self.env)


@dataclass(frozen=True, order=True)
class RecordKey:
    """Identity of an ExecutionRecord: one action under one configuration."""
    action: str
    tag: ConfigTag

    def __str__(self) -> str:
        return f"{self.action}@{self.tag.value}"


class RecordStatus(str, Enum):
    PENDING = "pending"
    READY = "ready"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (RecordStatus.SUCCEEDED, RecordStatus.FAILED)


@dataclass
class ExecutionRecord:
    """The deduplicated, materialized instance of an Action under a tag."""
    key: RecordKey
    status: RecordStatus = RecordStatus.PENDING
    deps: set[RecordKey] = field(default_factory=set)

    # filled in while executing
    outputs: Dict[str, Path] = field(default_factory=dict)
    fingerprint: Optional[str] = None
    attempts: int = 0
    cached: bool = False
    error: Optional[Exception] = None

    @property
    def action(self) -> str:
        return self.key.action

    @property
    def tag(self) -> ConfigTag:
        return self.key.tag
