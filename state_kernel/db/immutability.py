"""
ORM-Level Immutability Enforcement for the transition log.

===============================================================================
WHY THIS EXISTS
===============================================================================

The transition log IS the state.  Current state is derived from the latest
row, and history queries (``was``, ``where_state_was``) read every row.  An
UPDATE or DELETE would silently rewrite an entity's past, so the log is
append-only: the engine inserts rows and nothing else.

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
We register listeners that intercept them:

    session.flush()
         |
         v
    [before_update event] --> _check_transition_log_update() --> ImmutabilityViolationError
         |
         v
    [before_delete event] --> _check_transition_log_delete() --> ImmutabilityViolationError

    session.execute(update(TransitionLog) / delete(TransitionLog))
         |
         v
    [do_orm_execute event] --> _check_bulk_transition_log_write() --> ImmutabilityViolationError

Core statements on a raw Connection are not intercepted; that path is left
to database permissions (and to test teardown, which truncates tables).

===============================================================================
USAGE
===============================================================================

Called once during application startup:

    from state_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()

To temporarily disable (TESTS ONLY - never in production):

    unregister_immutability_listeners()
"""

from sqlalchemy import event
from sqlalchemy.orm import ORMExecuteState, Session

from state_kernel.exceptions import ImmutabilityViolationError
from state_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_ENTITY_TYPE = "TransitionLog"
_REASON = "transition log rows are append-only"


def _blocked(entity_id: str, operation: str) -> ImmutabilityViolationError:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": _ENTITY_TYPE,
            "entity_id": entity_id,
            "operation": operation,
        },
    )
    return ImmutabilityViolationError(
        entity_type=_ENTITY_TYPE,
        entity_id=entity_id,
        reason=_REASON,
    )


def _check_transition_log_update(mapper, connection, target):
    """Prevent any update to a TransitionLog row."""
    raise _blocked(str(target.id), "UPDATE")


def _check_transition_log_delete(mapper, connection, target):
    """Prevent deletion of a TransitionLog row."""
    raise _blocked(str(target.id), "DELETE")


def _check_bulk_transition_log_write(orm_execute_state: ORMExecuteState):
    """Prevent ORM-enabled bulk UPDATE/DELETE statements against the log."""
    if not (orm_execute_state.is_update or orm_execute_state.is_delete):
        return

    from state_kernel.models.transition_log import TransitionLog

    mapper = orm_execute_state.bind_mapper
    if mapper is not None and mapper.class_ is TransitionLog:
        operation = "UPDATE" if orm_execute_state.is_update else "DELETE"
        raise _blocked("*", f"BULK {operation}")


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners (idempotent).

    Call this after the models are imported but before any database
    operations begin.
    """
    from state_kernel.models.transition_log import TransitionLog

    listeners = (
        (TransitionLog, "before_update", _check_transition_log_update),
        (TransitionLog, "before_delete", _check_transition_log_delete),
        (Session, "do_orm_execute", _check_bulk_transition_log_write),
    )
    for target, event_name, listener_fn in listeners:
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests.
    """
    from state_kernel.models.transition_log import TransitionLog

    _safe_remove_listener(TransitionLog, "before_update", _check_transition_log_update)
    _safe_remove_listener(TransitionLog, "before_delete", _check_transition_log_delete)
    _safe_remove_listener(Session, "do_orm_execute", _check_bulk_transition_log_write)
