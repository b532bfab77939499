"""
Transition value objects (``state_kernel.domain.transition``).

Responsibility
--------------
``Transition`` is one allowed, named edge of a dimension's state graph.
``TransitionBuilder`` is the fluent object handed out by
``DefinitionBuilder.register`` while a definition is being configured:

    builder.register("pay").from_(BookingStatus.PENDING).to(BookingStatus.PAID)

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* A built ``Transition`` always has a name and both endpoints.
* Endpoint membership in the dimension's values is NOT checked here; it is
  checked lazily by ``StateDefinition.validate_transition``.
"""

from __future__ import annotations

from dataclasses import dataclass

from state_kernel.domain.values import StateValue, to_text
from state_kernel.exceptions import ConfigurationError


@dataclass(frozen=True)
class Transition:
    """A named edge ``from_state -> to_state``.

    Several transitions may share a name when they leave different states.
    """

    name: str
    from_state: StateValue | str
    to_state: StateValue | str

    def describe(self) -> str:
        return f"{self.name}: {to_text(self.from_state)} -> {to_text(self.to_state)}"


class TransitionBuilder:
    """Collects the endpoints of one transition during configuration."""

    def __init__(self, name: str):
        if not name:
            raise ConfigurationError("<unnamed>", "transition name must be non-empty")
        self.name = name
        self._from: StateValue | str | None = None
        self._to: StateValue | str | None = None

    def from_(self, state: StateValue | str) -> TransitionBuilder:
        self._from = state
        return self

    def to(self, state: StateValue | str) -> TransitionBuilder:
        self._to = state
        return self

    def build(self, owner: str) -> Transition:
        """Freeze into a ``Transition``; ``owner`` names the state type in errors."""
        if self._from is None or self._to is None:
            raise ConfigurationError(
                owner,
                f"transition '{self.name}' needs both from_() and to()",
            )
        return Transition(name=self.name, from_state=self._from, to_state=self._to)
