"""Simple finite state machine utility for enforcing allowed status transitions.

Usage:
    from tailorshop.utils.fsm import TransitionValidator
    ORDER_FSM = TransitionValidator({
        'Pending': {'Trial', 'Cancelled'},
        'Trial': {'Finished', 'Cancelled'},
        'Finished': {'Completed', 'Cancelled'},
        'Completed': set(),
        'Cancelled': set(),
    })
    ORDER_FSM.assert_can_transition(current_status, target_status)

Raises ValidationError if invalid.
"""
from __future__ import annotations
from typing import Dict, Set

from tailorshop.errors import ValidationError


class TransitionValidator:
    def __init__(self, graph: Dict[str, Set[str]], field_name: str = 'status'):
        self.graph = graph
        self.field_name = field_name

    def can_transition(self, current: str, target: str) -> bool:
        return target in self.graph.get(current, set())

    def assert_can_transition(self, current: str, target: str):
        if not self.can_transition(current, target):
            raise ValidationError(f"Invalid {self.field_name} transition {current} -> {target}")
        return True

    def is_terminal(self, state: str) -> bool:
        return not self.graph.get(state)

__all__ = ['TransitionValidator']
