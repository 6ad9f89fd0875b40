"""
Transition Tables

Pure, I/O-free description of which status changes an entity allows.
"""
from collections.abc import Mapping
from enum import Enum
from typing import Generic, TypeVar

from src.core.exceptions import InvalidTransition

S = TypeVar("S", bound=Enum)


class TransitionTable(Generic[S]):
    """
    Allowed moves for one status enum.

    ``plan(current, target)`` answers three ways: ``True`` to apply the move,
    ``False`` when the entity is already in ``target`` (idempotent no-op), and
    ``InvalidTransition`` for everything else.
    """

    def __init__(self, entity: str, status_type: type[S], allowed: Mapping[S, frozenset[S]]):
        self.entity = entity
        self.status_type = status_type
        self.allowed = dict(allowed)
        missing = set(status_type) - set(self.allowed)
        if missing:
            raise ValueError(f"{entity} transition table misses {sorted(m.value for m in missing)}")

    def can_transition(self, current: str | S, target: str | S) -> bool:
        return self.status_type(target) in self.allowed[self.status_type(current)]

    def is_terminal(self, status: str | S) -> bool:
        return not self.allowed[self.status_type(status)]

    def plan(self, current: str | S, target: str | S) -> bool:
        current, target = self.status_type(current), self.status_type(target)
        if current == target:
            return False
        if target not in self.allowed[current]:
            raise InvalidTransition(self.entity, current.value, target.value)
        return True
