"""
Module: state_kernel.models.transition_log
Responsibility: ORM persistence for the append-only transition log.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Append-only: no UPDATE or DELETE through the ORM (db/immutability.py).
    - ``id`` is the sole ordering key: the latest row for an (owner, dimension)
      is the one with the highest id, never the latest timestamp.
    - For a fixed (owner, dimension) the rows written by the engine, ordered
      by id, form a valid walk of the dimension's transition graph starting
      at its initial state.  Historical rows are not re-validated.

Failure modes:
    - ImmutabilityViolationError on any UPDATE/DELETE attempt.

Audit relevance:
    Every row records who moved (owner), along which axis (dimension), by
    which edge (transition), from where to where, and optionally why.
"""

from datetime import datetime

from sqlalchemy import DateTime, Index
from sqlalchemy.orm import Mapped, mapped_column

from state_kernel.db.base import Base
from state_kernel.db.types import LogId, OwnerId, OwnerType, ReasonText, ShortName


class TransitionLog(Base):
    """
    One applied transition (or directly-set state) of one entity dimension.

    Contract:
        Rows are immutable once inserted.  ``transition`` is NULL for rows
        written by a direct state set rather than a named transition;
        ``from_state`` is NULL only when the writer had no prior state.

    Non-goals:
        - Does NOT validate the transition graph at INSERT time; that is
          the StateHandle's job, under the row lock.
    """

    __tablename__ = "state_transitions"

    __table_args__ = (
        Index(
            "idx_state_transitions_owner_dimension",
            "owner_type",
            "owner_id",
            "dimension",
            "id",
        ),
        Index("idx_state_transitions_dimension_state", "dimension", "to_state"),
    )

    id: Mapped[int] = mapped_column(
        LogId,
        primary_key=True,
        autoincrement=True,
    )

    # Polymorphic reference to the stateful entity
    owner_type: Mapped[str] = mapped_column(OwnerType, nullable=False)
    owner_id: Mapped[str] = mapped_column(OwnerId, nullable=False)

    # State axis, e.g. "state" or "payment_state"
    dimension: Mapped[str] = mapped_column(ShortName, nullable=False)

    transition: Mapped[str | None] = mapped_column(ShortName, nullable=True)

    from_state: Mapped[str | None] = mapped_column(ShortName, nullable=True)
    to_state: Mapped[str] = mapped_column(ShortName, nullable=False)

    reason: Mapped[str | None] = mapped_column(ReasonText, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<TransitionLog {self.id} {self.owner_type}:{self.owner_id} "
            f"{self.dimension} {self.from_state}->{self.to_state}>"
        )
