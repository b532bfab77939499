"""
EventRouter -- post-commit notifications for state changes.

Responsibility
--------------
After a committed transition two notifications fire, in this order:

1. transition-fired, key ``"{dimension}.transition.{name}"``
2. state-reached,    key ``"{dimension}.{state}"``

Handlers are plain callables taking a ``StateEvent``.  They are registered
explicitly (``on_event``) or collected from an observer object by a
one-time scan of its method names (``register_observer``):

    ``{dimension}_{state}``                 e.g. ``state_paid``
    ``{dimension}_transition_{transition}`` e.g. ``state_transition_pay``
    ``{dimension}_{a}_or_{b}[_or_{c}...]``  e.g. ``state_paid_or_failed``

The scan builds the dispatch table once; firing is a dict lookup.

Architecture position
---------------------
**Kernel domain layer** -- no I/O.  Handler exceptions propagate to the
caller of ``fire``; by then the transition is already committed.
"""

from __future__ import annotations

import re
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Mapping

from state_kernel.domain.definition import StateType
from state_kernel.domain.registry import StateRegistry, default_registry
from state_kernel.domain.values import StateValue, to_text
from state_kernel.logging_config import get_logger

if TYPE_CHECKING:
    from state_kernel.models.transition_log import TransitionLog

logger = get_logger("domain.events")


@dataclass(frozen=True)
class StateEvent:
    """Payload handed to every handler of one committed transition."""

    owner: Any
    dimension: str
    transition: str
    from_state: StateValue
    to_state: StateValue
    row: TransitionLog


Handler = Callable[[StateEvent], Any]

_NON_IDENTIFIER = re.compile(r"[^0-9a-zA-Z]+")
_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def snake_case(text: str) -> str:
    """``"paymentFailed"`` / ``"payment-failed"`` -> ``"payment_failed"``."""
    text = _CAMEL_BOUNDARY.sub("_", text)
    return _NON_IDENTIFIER.sub("_", text).strip("_").lower()


def state_event_key(dimension: str, state: StateValue | str) -> str:
    return f"{dimension}.{to_text(state)}"


def transition_event_key(dimension: str, transition: str) -> str:
    return f"{dimension}.transition.{transition}"


def state_event_method(dimension: str, state: StateValue | str) -> str:
    return snake_case(f"{dimension}_{to_text(state)}")


def transition_event_method(dimension: str, transition: str) -> str:
    return snake_case(f"{dimension}_transition_{transition}")


class EventRouter:
    """Dispatch table from event key to handlers."""

    def __init__(self) -> None:
        self._handlers: dict[str, tuple[Handler, ...]] = {}
        self._lock = threading.Lock()

    def on_event(self, key: str, handler: Handler) -> None:
        """Register ``handler`` for ``key``; handlers run in registration order.

        Safe while other threads fire: each key maps to an immutable tuple
        that is replaced, never mutated, under the lock.
        """
        with self._lock:
            self._handlers[key] = self._handlers.get(key, ()) + (handler,)

    def handlers_for(self, key: str) -> tuple[Handler, ...]:
        return self._handlers.get(key, ())

    def fire(self, key: str, event: StateEvent) -> int:
        """Run every handler for ``key``.  Returns how many ran."""
        handlers = self._handlers.get(key, ())
        if not handlers:
            return 0
        for handler in handlers:
            handler(event)
        return len(handlers)

    def fire_transition(self, event: StateEvent) -> None:
        """Fire transition-fired, then state-reached, for one committed row."""
        self.fire(transition_event_key(event.dimension, event.transition), event)
        self.fire(state_event_key(event.dimension, event.to_state), event)

    def register_observer(
        self,
        observer: object,
        state_types: Mapping[str, type[StateType]],
        registry: StateRegistry | None = None,
    ) -> list[str]:
        """Scan ``observer`` once and register its convention-named methods.

        Args:
            observer: Object whose methods follow the naming convention.
            state_types: dimension name -> StateType, as declared by the host.
            registry: Definition source; defaults to ``default_registry``.

        Returns:
            The event keys that received a handler.
        """
        registry = registry or default_registry
        method_names = {
            name for name in dir(observer)
            if not name.startswith("_") and callable(getattr(observer, name))
        }
        registered: list[str] = []

        def _bind(key: str, method_name: str) -> None:
            self.on_event(key, getattr(observer, method_name))
            registered.append(key)

        for dimension, state_type in state_types.items():
            definition = registry.definition_for(state_type)
            states_by_method = {
                snake_case(to_text(s)): s for s in definition.all_state_values()
            }

            for state in definition.all_state_values():
                method = state_event_method(dimension, state)
                if method in method_names:
                    _bind(state_event_key(dimension, state), method)

            for transition in definition.all_transition_names():
                method = transition_event_method(dimension, transition)
                if method in method_names:
                    _bind(transition_event_key(dimension, transition), method)

            prefix = f"{snake_case(dimension)}_"
            for method in sorted(method_names):
                if not method.startswith(prefix):
                    continue
                rest = method[len(prefix):]
                if rest in states_by_method or "_or_" not in rest:
                    continue
                parts = rest.split("_or_")
                # every part must name a declared state, else skip the method
                if not all(part in states_by_method for part in parts):
                    continue
                for part in parts:
                    _bind(state_event_key(dimension, states_by_method[part]), method)

        logger.info(
            "observer_registered",
            extra={
                "observer": type(observer).__name__,
                "handler_count": len(registered),
            },
        )
        return registered
