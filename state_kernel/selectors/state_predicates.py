"""
State predicates -- set-based state filters over the transition log.

Responsibility:
    Turn "entity currently has state X on dimension D" and "entity ever had
    state X on dimension D" into self-contained boolean SQL expressions that
    combine freely with ``and_()`` / ``or_()`` in any query on the host
    entity:

        session.scalars(
            select(Booking).where(
                or_(
                    where_state_is(Booking, "state", "paid"),
                    where_state_was(Booking, "payment_state", "refunded"),
                )
            )
        )

Architecture position:
    Kernel > Selectors -- pure query construction, no session access.

Invariants enforced:
    - "Latest equals X" is: a row with state X exists for the owner and
      dimension AND no row with a higher id exists for the same owner and
      dimension.  A bare ``EXISTS (... state = X)`` would also match
      entities that passed through X and moved on.
    - "No row" means "in the initial state" for every predicate.  So
      ``where_state_is_not`` is the exact complement of ``where_state_is``
      over all entities, and likewise for the ``_in`` forms.
    - ``where_state_was`` is vacuously true for the initial state.

Host contract:
    ``entity_cls`` provides ``state_owner_type()``, ``state_owner_key()``
    (a SQL expression of the owner id as text) and
    ``state_type_for(dimension)`` -- see ``state_kernel.stateful``.
"""

from typing import Any, Iterable

from sqlalchemy import ColumnElement, and_, false, or_, select, true
from sqlalchemy.orm import aliased

from state_kernel.domain.definition import StateDefinition
from state_kernel.domain.registry import StateRegistry, default_registry
from state_kernel.domain.values import StateValue
from state_kernel.models.transition_log import TransitionLog


def _definition(
    entity_cls: Any,
    dimension: str,
    registry: StateRegistry | None,
) -> StateDefinition:
    return (registry or default_registry).definition_for(
        entity_cls.state_type_for(dimension)
    )


def _owner_criteria(log: Any, entity_cls: Any, dimension: str) -> ColumnElement[bool]:
    return and_(
        log.owner_type == entity_cls.state_owner_type(),
        log.owner_id == entity_cls.state_owner_key(),
        log.dimension == dimension,
    )


def _no_rows(entity_cls: Any, dimension: str) -> ColumnElement[bool]:
    log = aliased(TransitionLog)
    return ~select(log.id).where(_owner_criteria(log, entity_cls, dimension)).exists()


def _latest_state(
    entity_cls: Any,
    dimension: str,
    texts: list[str],
    negate: bool = False,
) -> ColumnElement[bool]:
    """Latest row exists and its state is (or, negated, is not) in ``texts``."""
    log = aliased(TransitionLog)
    newer = aliased(TransitionLog)
    state_match = log.to_state.not_in(texts) if negate else log.to_state.in_(texts)
    newer_exists = (
        select(newer.id)
        .where(_owner_criteria(newer, entity_cls, dimension), newer.id > log.id)
        .exists()
    )
    return (
        select(log.id)
        .where(_owner_criteria(log, entity_cls, dimension), state_match, ~newer_exists)
        .exists()
    )


def where_state_is_in(
    entity_cls: Any,
    dimension: str,
    values: Iterable[StateValue | str],
    registry: StateRegistry | None = None,
) -> ColumnElement[bool]:
    """Current state of ``dimension`` is one of ``values``."""
    definition = _definition(entity_cls, dimension, registry)
    states = definition.parse_many(values)
    texts = [s.to_text() for s in states]
    latest = _latest_state(entity_cls, dimension, texts)
    if definition.initial_state in states:
        return or_(_no_rows(entity_cls, dimension), latest)
    return latest


def where_state_is_not_in(
    entity_cls: Any,
    dimension: str,
    values: Iterable[StateValue | str],
    registry: StateRegistry | None = None,
) -> ColumnElement[bool]:
    """Current state of ``dimension`` is none of ``values``."""
    definition = _definition(entity_cls, dimension, registry)
    states = definition.parse_many(values)
    texts = [s.to_text() for s in states]
    latest = _latest_state(entity_cls, dimension, texts, negate=True)
    if definition.initial_state in states:
        return latest
    return or_(_no_rows(entity_cls, dimension), latest)


def where_state_is(
    entity_cls: Any,
    dimension: str,
    value: StateValue | str,
    registry: StateRegistry | None = None,
) -> ColumnElement[bool]:
    """Current state of ``dimension`` equals ``value``.

    For the initial state this also matches entities whose latest row
    returned to it; use ``where_has_no_states`` for "never transitioned".
    """
    return where_state_is_in(entity_cls, dimension, [value], registry)


def where_state_is_not(
    entity_cls: Any,
    dimension: str,
    value: StateValue | str,
    registry: StateRegistry | None = None,
) -> ColumnElement[bool]:
    """Current state of ``dimension`` differs from ``value``."""
    return where_state_is_not_in(entity_cls, dimension, [value], registry)


def where_state_was(
    entity_cls: Any,
    dimension: str,
    value: StateValue | str,
    registry: StateRegistry | None = None,
) -> ColumnElement[bool]:
    """``dimension`` has ever been ``value`` (recency ignored)."""
    definition = _definition(entity_cls, dimension, registry)
    state = definition.parse(value)
    if state == definition.initial_state:
        return true()
    log = aliased(TransitionLog)
    return (
        select(log.id)
        .where(_owner_criteria(log, entity_cls, dimension), log.to_state == state.to_text())
        .exists()
    )


def where_has_no_states(entity_cls: Any, dimension: str) -> ColumnElement[bool]:
    """No transition row exists yet for ``dimension``."""
    # raises UnknownDimensionError for an undeclared dimension
    entity_cls.state_type_for(dimension)
    return _no_rows(entity_cls, dimension)


def where_state_never_was(
    entity_cls: Any,
    dimension: str,
    value: StateValue | str,
    registry: StateRegistry | None = None,
) -> ColumnElement[bool]:
    """Complement of ``where_state_was``."""
    definition = _definition(entity_cls, dimension, registry)
    if definition.parse(value) == definition.initial_state:
        return false()
    return ~where_state_was(entity_cls, dimension, value, registry)
