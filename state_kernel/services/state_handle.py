"""
StateHandle -- runtime accessor for one (entity, dimension) pair.

Responsibility:
    Current-state lookup, history checks, and the transition execution
    protocol:

        1. open a transaction (retried on lock conflicts, bounded)
        2. lock the dimension, then re-read its latest row
        3. re-validate the transition against the locked current state
        4. insert the new row, commit
        5. cache the new row on the entity, fire transition-fired then
           state-reached events

Architecture position:
    Kernel > Services -- imperative shell.  Owns its transactions (via
    ``run_in_transaction``) for ``transition``/``set``; borrows the caller's
    for ``lock_for_update`` and for ``transition``/``set`` given a session.

Invariants enforced:
    - Only the check made under the lock decides.  ``can()`` is an unlocked
      read for display and may be stale under concurrency.
    - No row is ever inserted without the dimension lock held through
      commit, so concurrent transitions of one (entity, dimension) are
      fully serialized.
    - A rejected transition writes nothing.
    - "No row" means the dimension's initial state; it is never written.

Failure modes:
    - UnknownTransitionError: name not registered (never suppressed).
    - TransitionRejectedError: registered but not from the current state
      (suppressed to a ``None`` result by ``fail_on_reject=False``).
    - ConfigurationError: the transition names an undeclared state.
    - ConcurrencyConflictError: lock conflicts outlasted every attempt.
    - OwnerNotPersistedError: the entity has no primary key yet.

Usage:
    handle = booking.state          # via StateField
    if handle.can("pay"):
        handle.transition("pay", reason="card captured")
    handle.current()                # BookingStatus.PAID
    handle.was("pending")           # True
"""

from __future__ import annotations

import json
from enum import Enum
from typing import TYPE_CHECKING, Callable, Iterable

from sqlalchemy import event as sa_event
from sqlalchemy.orm import Session

from state_kernel.config import DEFAULT_TRANSITION_MAX_ATTEMPTS
from state_kernel.db.engine import get_session_factory, run_in_transaction
from state_kernel.domain.clock import Clock, SystemClock
from state_kernel.domain.definition import StateDefinition
from state_kernel.domain.events import EventRouter, StateEvent
from state_kernel.domain.registry import StateRegistry, default_registry
from state_kernel.domain.values import StateValue
from state_kernel.exceptions import (
    OwnerNotPersistedError,
    TransitionRejectedError,
    UnknownTransitionError,
)
from state_kernel.logging_config import LogContext, get_logger
from state_kernel.models.transition_log import TransitionLog
from state_kernel.selectors.transition_log_selector import TransitionLogSelector
from state_kernel.services.transition_log_writer import TransitionLogWriter

if TYPE_CHECKING:
    from state_kernel.stateful import Stateful

logger = get_logger("services.state_handle")


class HandleStatus(str, Enum):
    """Load status of a handle's cached current row."""

    UNLOADED = "unloaded"
    LOADED = "loaded"
    LOCKED = "locked"


class StateHandle:
    """
    Accessor bound to one entity and one state dimension.

    Contract:
        Ephemeral; create one per access.  The cached current row lives on
        the entity, so handles for the same entity share it.

    Non-goals:
        - Does NOT enforce final states (they are informational).
        - Does NOT retry inside a caller-owned transaction
          (``lock_for_update``): the caller owns that transaction.
    """

    def __init__(
        self,
        owner: Stateful,
        dimension: str,
        *,
        registry: StateRegistry | None = None,
        router: EventRouter | None = None,
        session_factory: Callable[[], Session] | None = None,
        clock: Clock | None = None,
        max_attempts: int = DEFAULT_TRANSITION_MAX_ATTEMPTS,
    ):
        self.owner = owner
        self.dimension = dimension
        self.definition: StateDefinition = (registry or default_registry).definition_for(
            owner.state_type_for(dimension)
        )
        self._router = router
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._max_attempts = max_attempts
        self._status = (
            HandleStatus.LOADED if owner.has_cached_row(dimension) else HandleStatus.UNLOADED
        )

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    @property
    def status(self) -> HandleStatus:
        return self._status

    @property
    def owner_type(self) -> str:
        return self.owner.state_owner_type()

    @property
    def owner_id(self) -> str | None:
        return self.owner.state_owner_id()

    def _factory(self) -> Callable[[], Session]:
        return self._session_factory or get_session_factory()

    def _require_owner_id(self) -> str:
        owner_id = self.owner_id
        if owner_id is None:
            raise OwnerNotPersistedError(self.owner_type, self.dimension)
        return owner_id

    def _state_of(self, row: TransitionLog | None) -> StateValue:
        if row is None:
            return self.definition.initial_state
        return self.definition.parse(row.to_state)

    # ------------------------------------------------------------------
    # Reads (no locks)
    # ------------------------------------------------------------------

    def current_row(self) -> TransitionLog | None:
        """The latest log row, loading it once; None means initial state."""
        if not self.owner.has_cached_row(self.dimension):
            row = None
            owner_id = self.owner_id
            if owner_id is not None:
                with self._factory()() as session:
                    row = TransitionLogSelector(session).latest_row(
                        self.owner_type, owner_id, self.dimension
                    )
            self.owner.set_cached_row(self.dimension, row)
            self._status = HandleStatus.LOADED
        return self.owner.get_cached_row(self.dimension)

    def current(self) -> StateValue:
        return self._state_of(self.current_row())

    def is_(self, state: StateValue | str) -> bool:
        return self.current() == self.definition.parse(state)

    def is_any_of(self, states: Iterable[StateValue | str]) -> bool:
        return self.current() in self.definition.parse_many(states)

    def is_final(self) -> bool:
        return self.definition.is_final(self.current())

    def was(self, state: StateValue | str) -> bool:
        """True if the entity is or has ever been in ``state``.

        Always true for the initial state, with or without history.
        """
        state = self.definition.parse(state)
        if state == self.definition.initial_state:
            return True
        owner_id = self.owner_id
        if owner_id is None:
            return False
        with self._factory()() as session:
            return TransitionLogSelector(session).has_reached(
                self.owner_type, owner_id, self.dimension, state
            )

    def can(self, name: str) -> bool:
        """Unlocked check against the cached current state; for display only."""
        return self.definition.can_transition(self.current(), name)

    def allowed_transitions(self) -> tuple[str, ...]:
        return self.definition.transitions_allowed_from(self.current())

    def history(self) -> list[TransitionLog]:
        owner_id = self.owner_id
        if owner_id is None:
            return []
        with self._factory()() as session:
            return TransitionLogSelector(session).history(
                self.owner_type, owner_id, self.dimension
            )

    def reload(self) -> StateHandle:
        """Drop the cached row; the next read queries the log again."""
        self.owner.forget_cached_row(self.dimension)
        self._status = HandleStatus.UNLOADED
        return self

    # ------------------------------------------------------------------
    # Locking
    # ------------------------------------------------------------------

    def _lock_and_read(self, session: Session, owner_id: str) -> TransitionLog | None:
        """Take the dimension lock in ``session``, then read the latest row."""
        writer = TransitionLogWriter(session, self._clock)
        if not writer.lock_dimension(self.owner_type, owner_id, self.dimension):
            # First row not written yet: serialize on the owner entity, then
            # pick up a first row committed while we waited.
            self.owner.lock_state_owner(session)
            writer.lock_dimension(self.owner_type, owner_id, self.dimension)
        return TransitionLogSelector(session).latest_row(
            self.owner_type, owner_id, self.dimension
        )

    def lock_for_update(self, session: Session) -> StateHandle:
        """
        Lock this dimension inside the caller's transaction, without
        transitioning, and refresh the cached row under the lock.

        The lock is held until ``session``'s transaction ends.  Follow up
        with ``transition(name, session=session)`` to write under it.
        """
        owner_id = self._require_owner_id()
        row = self._lock_and_read(session, owner_id)
        self.owner.set_cached_row(self.dimension, row)
        self._status = HandleStatus.LOCKED
        return self

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def transition(
        self,
        name: str,
        fail_on_reject: bool = True,
        reason: str | None = None,
        session: Session | None = None,
    ) -> TransitionLog | None:
        """
        Execute transition ``name``.

        Without ``session`` the handle runs its own retried transaction and
        fires events once it has committed.  With ``session`` (typically
        after ``lock_for_update(session)``) the row is written inside the
        caller's transaction: no retry, no commit, and events fire when
        that transaction commits.  A rollback drops the cached row.

        Returns:
            The committed (or, with ``session``, flushed) row, or None when
            rejected with ``fail_on_reject=False``.

        Raises:
            UnknownTransitionError: ``name`` is not registered at all.
            ConfigurationError: a transition named ``name`` references an
                undeclared state.
            TransitionRejectedError: not allowed from the current state
                (only when ``fail_on_reject``).
        """
        candidates = self.definition.transitions_named(name)
        if not candidates:
            raise UnknownTransitionError(self.dimension, name)
        # an edge out of an undeclared state could never match, so check all
        for candidate in candidates:
            self.definition.validate_transition(candidate)
        owner_id = self._require_owner_id()
        owner_type = self.owner_type
        detach = session is None

        def body(session: Session) -> tuple[TransitionLog | None, TransitionLog | None]:
            locked_row = self._lock_and_read(session, owner_id)
            current = self._state_of(locked_row)
            transition = self.definition.find_transition(current, name)

            if transition is None:
                logger.warning(
                    "transition_rejected",
                    extra={
                        "transition": name,
                        "current_state": current,
                        "fail_on_reject": fail_on_reject,
                    },
                )
                if fail_on_reject:
                    raise TransitionRejectedError(
                        self.dimension, name, current.to_text()
                    )
                if detach and locked_row is not None:
                    session.expunge(locked_row)
                return None, locked_row

            row = TransitionLogWriter(session, self._clock).append(
                owner_type,
                owner_id,
                self.dimension,
                transition=name,
                from_state=current,
                to_state=self.definition.parse(transition.to_state),
                reason=reason,
            )
            if detach:
                # detach before commit so the returned row keeps its attributes
                session.expunge(row)
            return row, locked_row

        with LogContext.bind(
            owner_type=owner_type, owner_id=owner_id, dimension=self.dimension
        ):
            if session is None:
                row, previous = run_in_transaction(
                    body,
                    session_factory=self._factory(),
                    max_attempts=self._max_attempts,
                    operation=f"transition {self.dimension}.{name}",
                )
            else:
                row, previous = body(session)

            if row is None:
                self.owner.set_cached_row(self.dimension, previous)
                self._status = HandleStatus.LOADED
                return None

            self.owner.set_cached_row(self.dimension, row)
            self._status = HandleStatus.LOADED
            logger.info(
                "transition_applied",
                extra={
                    "log_id": row.id,
                    "transition": name,
                    "from_state": row.from_state,
                    "to_state": row.to_state,
                    "joined_transaction": session is not None,
                },
            )

            event = StateEvent(
                owner=self.owner,
                dimension=self.dimension,
                transition=name,
                from_state=self._state_of(previous),
                to_state=self.definition.parse(row.to_state),
                row=row,
            )
            if session is None:
                if self._router is not None:
                    self._router.fire_transition(event)
            else:
                self._on_outcome(session, event)
        return row

    def set(
        self,
        state: StateValue | str,
        reason: str | None = None,
        session: Session | None = None,
    ) -> TransitionLog:
        """
        Directly set the state, bypassing the transition graph.

        Writes a row with ``transition = NULL`` under the same lock and
        retry protocol, or inside ``session``'s transaction when given (no
        retry, no commit).  Fires no events: it is not a transition.

        Raises:
            InvalidStateValueError: ``state`` is not a declared value.
        """
        target = self.definition.parse(state)
        owner_id = self._require_owner_id()
        owner_type = self.owner_type
        detach = session is None

        def body(session: Session) -> TransitionLog:
            current = self._state_of(self._lock_and_read(session, owner_id))
            row = TransitionLogWriter(session, self._clock).append(
                owner_type,
                owner_id,
                self.dimension,
                transition=None,
                from_state=current,
                to_state=target,
                reason=reason,
            )
            if detach:
                session.expunge(row)
            return row

        with LogContext.bind(
            owner_type=owner_type, owner_id=owner_id, dimension=self.dimension
        ):
            if session is None:
                row = run_in_transaction(
                    body,
                    session_factory=self._factory(),
                    max_attempts=self._max_attempts,
                    operation=f"set {self.dimension}",
                )
            else:
                row = body(session)
                self._on_outcome(session, None)
            self.owner.set_cached_row(self.dimension, row)
            self._status = HandleStatus.LOADED
            logger.info(
                "state_set",
                extra={
                    "log_id": row.id,
                    "from_state": row.from_state,
                    "to_state": row.to_state,
                },
            )
        return row

    def _on_outcome(self, session: Session, event: StateEvent | None) -> None:
        """Fire ``event`` when ``session`` commits; forget the cache on rollback.

        Whichever happens first wins; the other listener becomes a no-op.
        """
        settled = False

        def _committed(_session: Session) -> None:
            nonlocal settled
            if settled:
                return
            settled = True
            if event is not None and self._router is not None:
                self._router.fire_transition(event)

        def _rolled_back(_session: Session) -> None:
            nonlocal settled
            if settled:
                return
            settled = True
            self.owner.forget_cached_row(self.dimension)
            self._status = HandleStatus.UNLOADED

        sa_event.listen(session, "after_commit", _committed, once=True)
        sa_event.listen(session, "after_rollback", _rolled_back, once=True)

    # ------------------------------------------------------------------
    # Text forms
    # ------------------------------------------------------------------

    def __str__(self) -> str:
        return self.current().to_text()

    def to_json(self) -> str:
        return json.dumps(self.current().to_text())

    def __repr__(self) -> str:
        return (
            f"<StateHandle {self.owner_type}:{self.owner_id} "
            f"{self.dimension} {self._status.value}>"
        )
