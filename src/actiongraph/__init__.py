from .dsl import action, test_action, loc, actions, ActionBuilder, build
from .model import Action, ConfigTag, ExecutionRecord, RecordKey, RecordStatus
from .config import BuildConfig
from .runner import run_build, Scheduler

__all__ = [
    "action", "test_action", "loc", "actions", "ActionBuilder", "build",
    "Action", "ConfigTag", "ExecutionRecord", "RecordKey", "RecordStatus",
    "BuildConfig", "run_build", "Scheduler",
]
