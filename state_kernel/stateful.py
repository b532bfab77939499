"""
Stateful host contract -- what an entity provides to carry state dimensions.

Responsibility:
    Binds the engine to arbitrary persisted ORM entities.  A host model
    mixes in ``StatefulMixin`` and declares one ``StateField`` per
    dimension; the attribute name is the dimension name:

        class Booking(StatefulMixin, EntityBase):
            __tablename__ = "bookings"

            state = StateField(BookingState)
            payment_state = StateField(PaymentState)

        booking.state.transition("pay")
        booking.payment_state.current()

Architecture position:
    Kernel > Stateful -- the outermost kernel seam.  Imports services and
    selectors; nothing in the kernel imports this module except for typing.

Invariants enforced:
    - The owner reference is (``state_owner_type()``, primary key as text).
      The same text is produced in Python (``state_owner_id``) and in SQL
      (``state_owner_key``), so predicates and handles agree.
    - The current-row cache lives on the entity instance, keyed by
      ``current_state_relation_name(dimension)``; every handle for the
      entity shares it.
    - Host entities have a single-column primary key.
"""

from __future__ import annotations

import threading
from typing import Any, Callable, ClassVar, Iterable, Mapping, Protocol, runtime_checkable

from sqlalchemy import ColumnElement, String, cast, inspect as sa_inspect, select
from sqlalchemy.orm import Session

from state_kernel.config import DEFAULT_TRANSITION_MAX_ATTEMPTS
from state_kernel.domain.clock import Clock
from state_kernel.domain.definition import StateType
from state_kernel.domain.events import EventRouter
from state_kernel.domain.registry import StateRegistry
from state_kernel.domain.values import StateValue
from state_kernel.exceptions import UnknownDimensionError
from state_kernel.logging_config import get_logger
from state_kernel.models.transition_log import TransitionLog
from state_kernel.selectors.transition_log_selector import TransitionLogSelector
from state_kernel.services.state_handle import StateHandle

logger = get_logger("stateful")

_CACHE_ATTR = "_state_row_cache"

_routers: dict[type, EventRouter] = {}
_routers_lock = threading.Lock()


def reset_event_routers() -> None:
    """Drop every class's event router.  FOR TESTING ONLY."""
    with _routers_lock:
        _routers.clear()


def current_state_relation_name(dimension: str) -> str:
    """``"state"`` -> ``"current_state"``, ``"payment_state"`` -> ``"current_payment_state"``."""
    return f"current_{dimension}"


@runtime_checkable
class Stateful(Protocol):
    """Operations the engine needs from a host entity."""

    @classmethod
    def state_types(cls) -> Mapping[str, type[StateType]]: ...

    @classmethod
    def state_type_for(cls, dimension: str) -> type[StateType]: ...

    @classmethod
    def state_owner_type(cls) -> str: ...

    def state_owner_id(self) -> str | None: ...

    def current_state(self, dimension: str = "state") -> StateValue: ...

    def get_cached_row(self, dimension: str) -> TransitionLog | None: ...

    def has_cached_row(self, dimension: str) -> bool: ...

    def set_cached_row(self, dimension: str, row: TransitionLog | None) -> None: ...

    def forget_cached_row(self, dimension: str) -> None: ...

    def lock_state_owner(self, session: Session) -> None: ...


class StateField:
    """Declares a state dimension on a host class.

    Reading the attribute on an instance returns a fresh ``StateHandle``;
    on the class it returns the field itself.
    """

    def __init__(self, state_type: type[StateType]):
        self.state_type = state_type
        self.dimension: str | None = None

    def __set_name__(self, owner: type, name: str) -> None:
        self.dimension = name

    def __get__(self, instance: Any, owner: type | None = None):
        if instance is None:
            return self
        return instance.state_handle(self.dimension)

    def __set__(self, instance: Any, value: Any) -> None:
        raise AttributeError(
            f"'{self.dimension}' is a state dimension; "
            f"use .{self.dimension}.transition() or set_state()"
        )

    def __repr__(self) -> str:
        return f"StateField({self.state_type.__name__}, dimension={self.dimension!r})"


class StatefulMixin:
    """
    Mixin giving an ORM entity state dimensions backed by the transition log.

    Class-level hooks (all optional):
        __state_owner_type__: owner_type text stored in the log; defaults
            to the class name.
        __state_registry__: StateRegistry; defaults to ``default_registry``.
        __state_session_factory__: session source for handle transactions;
            defaults to the engine's factory.
        __state_clock__: Clock stamping ``created_at``.
        __state_max_attempts__: retry bound for transitions.
    """

    __state_owner_type__: ClassVar[str | None] = None
    __state_registry__: ClassVar[StateRegistry | None] = None
    __state_session_factory__: ClassVar[Callable[[], Session] | None] = None
    __state_clock__: ClassVar[Clock | None] = None
    __state_max_attempts__: ClassVar[int] = DEFAULT_TRANSITION_MAX_ATTEMPTS

    # ------------------------------------------------------------------
    # Declarations
    # ------------------------------------------------------------------

    @classmethod
    def state_types(cls) -> dict[str, type[StateType]]:
        """Dimension name -> StateType for every StateField, base classes first."""
        types: dict[str, type[StateType]] = {}
        for klass in reversed(cls.__mro__):
            for value in vars(klass).values():
                if isinstance(value, StateField):
                    types[value.dimension] = value.state_type
        return types

    @classmethod
    def state_type_for(cls, dimension: str) -> type[StateType]:
        state_type = cls.state_types().get(dimension)
        if state_type is None:
            raise UnknownDimensionError(cls.state_owner_type(), dimension)
        return state_type

    @classmethod
    def state_owner_type(cls) -> str:
        return cls.__state_owner_type__ or cls.__name__

    @classmethod
    def _state_pk_column(cls):
        return sa_inspect(cls).primary_key[0]

    @classmethod
    def state_owner_key(cls) -> ColumnElement[str]:
        """SQL expression of this entity's owner id, as stored in the log."""
        return cast(cls._state_pk_column(), String)

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    @classmethod
    def state_event_router(cls) -> EventRouter:
        """This class's event router, created on first use."""
        router = _routers.get(cls)
        if router is None:
            with _routers_lock:
                router = _routers.setdefault(cls, EventRouter())
        return router

    @classmethod
    def observe(cls, observer: object) -> list[str]:
        """Register ``observer``'s convention-named methods; see EventRouter."""
        return cls.state_event_router().register_observer(
            observer, cls.state_types(), cls.__state_registry__
        )

    # ------------------------------------------------------------------
    # Identity and locking
    # ------------------------------------------------------------------

    def state_owner_id(self) -> str | None:
        """Primary key as text, or None while the entity is unsaved."""
        identity = sa_inspect(self).identity
        if identity is None:
            return None
        return str(identity[0])

    def lock_state_owner(self, session: Session) -> None:
        """Row-lock this entity's table row in ``session``'s transaction."""
        pk = self._state_pk_column()
        session.execute(
            select(pk).where(pk == sa_inspect(self).identity[0]).with_for_update()
        ).scalar_one_or_none()

    # ------------------------------------------------------------------
    # Current-row cache
    # ------------------------------------------------------------------

    def _state_cache(self) -> dict[str, TransitionLog | None]:
        return self.__dict__.setdefault(_CACHE_ATTR, {})

    def get_cached_row(self, dimension: str) -> TransitionLog | None:
        return self._state_cache().get(current_state_relation_name(dimension))

    def has_cached_row(self, dimension: str) -> bool:
        return current_state_relation_name(dimension) in self._state_cache()

    def set_cached_row(self, dimension: str, row: TransitionLog | None) -> None:
        self._state_cache()[current_state_relation_name(dimension)] = row

    def forget_cached_row(self, dimension: str) -> None:
        self._state_cache().pop(current_state_relation_name(dimension), None)

    # ------------------------------------------------------------------
    # Handles
    # ------------------------------------------------------------------

    def state_handle(self, dimension: str = "state") -> StateHandle:
        cls = type(self)
        return StateHandle(
            self,
            dimension,
            registry=cls.__state_registry__,
            router=cls.state_event_router(),
            session_factory=cls.__state_session_factory__,
            clock=cls.__state_clock__,
            max_attempts=cls.__state_max_attempts__,
        )

    def current_state(self, dimension: str = "state") -> StateValue:
        return self.state_handle(dimension).current()

    def set_state(
        self,
        value: StateValue | str,
        dimension: str = "state",
        reason: str | None = None,
        session: Session | None = None,
    ) -> TransitionLog:
        """Write ``value`` directly, bypassing the transition graph."""
        return self.state_handle(dimension).set(value, reason=reason, session=session)


def load_current_state(
    session: Session,
    entity: StatefulMixin,
    dimensions: Iterable[str] | None = None,
) -> StatefulMixin:
    """Fill the entity's current-row cache for ``dimensions`` (default: all)."""
    owner_id = entity.state_owner_id()
    selector = TransitionLogSelector(session)
    for dimension in dimensions if dimensions is not None else entity.state_types():
        entity.state_type_for(dimension)
        row = None
        if owner_id is not None:
            row = selector.latest_row(entity.state_owner_type(), owner_id, dimension)
        entity.set_cached_row(dimension, row)
    return entity


def with_current_state(
    session: Session,
    entities: Iterable[StatefulMixin],
    dimension: str = "state",
) -> list[StatefulMixin]:
    """
    Eager-load the current row of ``dimension`` for many entities.

    One query per owner type, however many entities.  Unsaved entities
    are returned untouched.
    """
    entities = list(entities)
    by_type: dict[str, list[StatefulMixin]] = {}
    for entity in entities:
        entity.state_type_for(dimension)
        if entity.state_owner_id() is not None:
            by_type.setdefault(entity.state_owner_type(), []).append(entity)

    selector = TransitionLogSelector(session)
    for owner_type, group in by_type.items():
        rows = selector.latest_rows(
            owner_type, [e.state_owner_id() for e in group], dimension
        )
        for entity in group:
            entity.set_cached_row(dimension, rows.get(entity.state_owner_id()))
        logger.debug(
            "current_state_eager_loaded",
            extra={
                "owner_type": owner_type,
                "dimension": dimension,
                "entity_count": len(group),
                "row_count": len(rows),
            },
        )
    return entities
