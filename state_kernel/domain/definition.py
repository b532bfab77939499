"""
State definitions (``state_kernel.domain.definition``).

Responsibility
--------------
A dimension type is declared once, by subclassing ``StateType``:

    class BookingState(StateType):
        values = BookingStatus
        initial_state = BookingStatus.PENDING
        final_states = (BookingStatus.PAID, BookingStatus.FAILED)

        @classmethod
        def config(cls, builder):
            builder.register("pay").from_(BookingStatus.PENDING).to(BookingStatus.PAID)
            builder.register("fail").from_(BookingStatus.PENDING).to(BookingStatus.FAILED)

``StateDefinition.build`` runs ``config`` exactly once against a fresh
``DefinitionBuilder`` and freezes the result.  Callers never build
definitions themselves; they go through ``StateRegistry``.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* ``initial_state`` and every ``final_states`` member belong to ``values``
  (checked at build, fail fast).
* Transition endpoints belong to ``values`` -- checked lazily, the first
  time a transition is evaluated for execution (``validate_transition``).
* A ``DefinitionBuilder`` is sealed after build; later ``register`` calls
  raise ``ConfigurationError``.
* ``final_states`` are informational only; the engine never blocks a
  transition out of a final state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar, Iterable

from state_kernel.domain.transition import Transition, TransitionBuilder
from state_kernel.domain.values import StateValue, to_text
from state_kernel.exceptions import ConfigurationError, InvalidStateValueError


class StateType:
    """Base class for a dimension type.

    Subclasses set ``values``, ``initial_state`` and optionally
    ``final_states``, and implement ``config``.
    """

    values: ClassVar[type[StateValue]]
    initial_state: ClassVar[StateValue]
    final_states: ClassVar[tuple[StateValue, ...]] = ()

    @classmethod
    def config(cls, builder: DefinitionBuilder) -> None:
        """Declare the dimension's transitions on ``builder``."""
        raise NotImplementedError(f"{cls.__name__} must implement config()")


class DefinitionBuilder:
    """Collects transitions while a ``StateType.config`` pass runs."""

    def __init__(self, owner: str):
        self.owner = owner
        self._builders: list[TransitionBuilder] = []
        self._sealed = False

    def register(self, name: str) -> TransitionBuilder:
        """Begin declaring a transition; endpoints are set on the result."""
        if self._sealed:
            raise ConfigurationError(
                self.owner,
                f"cannot register '{name}': definition already built",
            )
        transition = TransitionBuilder(name)
        self._builders.append(transition)
        return transition

    def seal(self) -> tuple[Transition, ...]:
        """Freeze the collected transitions.  Further registration fails."""
        self._sealed = True
        return tuple(b.build(self.owner) for b in self._builders)


@dataclass(frozen=True)
class StateDefinition:
    """Immutable, built configuration of one dimension type.

    Contract: frozen; produced only by ``StateDefinition.build``.
    """

    name: str
    state_type: type[StateType]
    state_values: tuple[StateValue, ...]
    initial_state: StateValue
    final_states: frozenset[StateValue]
    transitions: tuple[Transition, ...]
    _validated: set[Transition] = field(
        default_factory=set, repr=False, compare=False
    )

    @classmethod
    def build(cls, state_type: type[StateType]) -> StateDefinition:
        """Run ``state_type.config`` once and freeze the result.

        Raises:
            ConfigurationError: ``values`` is not a StateValue enum, or the
                initial/final states are not declared values.
        """
        owner = state_type.__name__
        values = getattr(state_type, "values", None)
        if not (isinstance(values, type) and issubclass(values, StateValue)):
            raise ConfigurationError(owner, "values must be a StateValue enum")
        state_values = tuple(values)
        if not state_values:
            raise ConfigurationError(owner, "values declares no states")

        initial = getattr(state_type, "initial_state", None)
        if initial is None:
            raise ConfigurationError(owner, "initial_state is not set")
        initial = cls._member(owner, values, initial)
        finals = frozenset(
            cls._member(owner, values, s) for s in state_type.final_states
        )

        builder = DefinitionBuilder(owner)
        state_type.config(builder)
        transitions = builder.seal()

        return cls(
            name=owner,
            state_type=state_type,
            state_values=state_values,
            initial_state=initial,
            final_states=finals,
            transitions=transitions,
        )

    @staticmethod
    def _member(owner: str, values: type[StateValue], state) -> StateValue:
        try:
            return values(to_text(state))
        except ValueError:
            raise InvalidStateValueError(owner, to_text(state)) from None

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def all_state_values(self) -> tuple[StateValue, ...]:
        """All declared values, in declaration order."""
        return self.state_values

    def all_transition_names(self) -> tuple[str, ...]:
        """Distinct transition names in first-seen order."""
        return tuple(dict.fromkeys(t.name for t in self.transitions))

    def transitions_allowed_from(self, state: StateValue | str) -> tuple[str, ...]:
        """Names of the transitions leaving ``state``."""
        text = to_text(state)
        return tuple(
            dict.fromkeys(
                t.name for t in self.transitions if to_text(t.from_state) == text
            )
        )

    def transitions_named(self, name: str) -> tuple[Transition, ...]:
        """Every transition registered as ``name``, in registration order."""
        return tuple(t for t in self.transitions if t.name == name)

    def find_transition(self, state: StateValue | str, name: str) -> Transition | None:
        """The first transition named ``name`` leaving ``state``, if any."""
        text = to_text(state)
        for t in self.transitions:
            if t.name == name and to_text(t.from_state) == text:
                return t
        return None

    def can_transition(self, state: StateValue | str, name: str) -> bool:
        return self.find_transition(state, name) is not None

    def transition_exists(self, name: str) -> bool:
        return any(t.name == name for t in self.transitions)

    def is_final(self, state: StateValue | str) -> bool:
        return to_text(state) in {s.value for s in self.final_states}

    def parse(self, text: StateValue | str) -> StateValue:
        """Map stored text (or a member) to this dimension's StateValue.

        Raises:
            InvalidStateValueError: ``text`` is not a declared value.
        """
        values = self.state_type.values
        if isinstance(text, Enum) and not isinstance(text, values):
            raise InvalidStateValueError(self.name, to_text(text))
        return self._member(self.name, values, text)

    def parse_many(self, states: Iterable[StateValue | str]) -> tuple[StateValue, ...]:
        return tuple(self.parse(s) for s in states)

    def validate_transition(self, transition: Transition) -> Transition:
        """Check both endpoints are declared values (once per transition).

        Raises:
            ConfigurationError: an endpoint is not a declared value.
        """
        if transition in self._validated:
            return transition
        declared = {v.value for v in self.state_values}
        for endpoint in (transition.from_state, transition.to_state):
            if to_text(endpoint) not in declared:
                raise ConfigurationError(
                    self.name,
                    f"transition {transition.describe()} references "
                    f"undeclared state '{to_text(endpoint)}'",
                )
        self._validated.add(transition)
        return transition
