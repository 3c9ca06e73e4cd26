# registry.py
from __future__ import annotations

from typing import Dict, Iterable, Iterator, List

from .errors import DuplicateActionError, NotFoundError
from .model import Action


class ActionRegistry:
    """Name -> Action mapping. Actions are immutable once registered."""

    def __init__(self, actions: Iterable[Action] = ()):
        self._actions: Dict[str, Action] = {}
        for a in actions:
            self.register(a)

    def register(self, action: Action) -> Action:
        if action.name in self._actions:
            raise DuplicateActionError(action=action.name)
        self._actions[action.name] = action
        return action

    def lookup(self, name: str) -> Action:
        try:
            return self._actions[name]
        except KeyError:
            raise NotFoundError(action=name, known=sorted(self._actions)) from None

    def names(self) -> List[str]:
        return sorted(self._actions)

    def __contains__(self, name: object) -> bool:
        return name in self._actions

    def __iter__(self) -> Iterator[Action]:
        # registration order
        return iter(list(self._actions.values()))

    def __len__(self) -> int:
        return len(self._actions)
