"""Pure domain layer: state values, transitions, definitions, events, clock."""

from state_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from state_kernel.domain.definition import DefinitionBuilder, StateDefinition, StateType
from state_kernel.domain.events import EventRouter, StateEvent
from state_kernel.domain.registry import StateRegistry, default_registry
from state_kernel.domain.transition import Transition, TransitionBuilder
from state_kernel.domain.values import StateValue

__all__ = [
    "Clock",
    "DefinitionBuilder",
    "DeterministicClock",
    "EventRouter",
    "StateDefinition",
    "StateEvent",
    "StateRegistry",
    "StateType",
    "StateValue",
    "SystemClock",
    "Transition",
    "TransitionBuilder",
    "default_registry",
]
