"""
TransitionLogWriter -- locking and appending transition log rows.

Responsibility:
    The write side of the transition log: take the per-(owner, dimension)
    lock and insert new rows.  Never updates or deletes.

Architecture position:
    Kernel > Services -- imperative shell.  Called by StateHandle inside
    ``run_in_transaction``.

Invariants enforced:
    - Append-only: the only write is INSERT.
    - Lock anchor: the lock for an (owner, dimension) is taken on its
      EARLIEST row.  That row never changes once written, so every writer
      of the dimension contends on the same row.  Locking the latest row
      would not serialize: under READ COMMITTED a blocked
      ``SELECT ... ORDER BY id DESC LIMIT 1 FOR UPDATE`` returns the row it
      first saw, not the one committed while it waited.
    - Callers re-read the latest row AFTER the lock is held.

Failure modes:
    - OperationalError / DBAPIError on lock timeout, deadlock or
      serialization failure (retried by ``run_in_transaction``).
"""

from sqlalchemy import select
from sqlalchemy.orm import Session

from state_kernel.domain.clock import Clock, SystemClock
from state_kernel.domain.values import StateValue, to_text
from state_kernel.logging_config import get_logger
from state_kernel.models.transition_log import TransitionLog
from state_kernel.selectors.transition_log_selector import owned_by
from state_kernel.services.base import BaseService

logger = get_logger("services.transition_log_writer")


class TransitionLogWriter(BaseService):
    """
    Appends rows to the transition log under the dimension lock.

    Non-goals:
        - Does NOT validate transitions -- StateHandle does, under the lock.
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def lock_dimension(self, owner_type: str, owner_id: str, dimension: str) -> bool:
        """
        Lock the anchor row of (owner, dimension) until transaction end.

        Returns:
            True if a row was locked, False if the dimension has no rows
            yet (the caller must then lock the owner entity instead).
        """
        anchor = self.session.execute(
            select(TransitionLog.id)
            .where(owned_by(owner_type, owner_id, dimension))
            .order_by(TransitionLog.id)
            .limit(1)
            .with_for_update()
        ).scalar_one_or_none()
        return anchor is not None

    def append(
        self,
        owner_type: str,
        owner_id: str,
        dimension: str,
        *,
        transition: str | None,
        from_state: StateValue | str | None,
        to_state: StateValue | str,
        reason: str | None = None,
    ) -> TransitionLog:
        """
        Insert one row and flush it so its id is assigned.

        Preconditions:
            - The caller holds the dimension lock in this transaction.
        Postconditions:
            - The row is flushed (has an id) but not committed.
        """
        row = TransitionLog(
            owner_type=owner_type,
            owner_id=owner_id,
            dimension=dimension,
            transition=transition,
            from_state=to_text(from_state) if from_state is not None else None,
            to_state=to_text(to_state),
            reason=reason,
            created_at=self._clock.now(),
        )
        self.session.add(row)
        self.session.flush()
        logger.debug(
            "transition_row_appended",
            extra={
                "log_id": row.id,
                "owner_type": owner_type,
                "owner_id": owner_id,
                "dimension": dimension,
                "to_state": row.to_state,
            },
        )
        return row
