"""
TransitionLogSelector -- read queries over the transition log.

Responsibility:
    Current-row lookup, history, "ever reached" checks and the batched
    latest-row-per-owner fetch used for eager loading.

Architecture position:
    Kernel > Selectors -- read-only, lock-free.

Invariants enforced:
    - "Latest" always means highest ``id``, never latest ``created_at``.
    - ``latest_rows`` issues exactly one query for the whole batch.
"""

from typing import Iterable

from sqlalchemy import ColumnElement, and_, func, select

from state_kernel.domain.values import StateValue, to_text
from state_kernel.models.transition_log import TransitionLog
from state_kernel.selectors.base import BaseSelector


def owned_by(
    owner_type: str,
    owner_id: str,
    dimension: str | None = None,
) -> ColumnElement[bool]:
    """Criteria selecting one owner's rows, optionally one dimension."""
    criteria = [
        TransitionLog.owner_type == owner_type,
        TransitionLog.owner_id == owner_id,
    ]
    if dimension is not None:
        criteria.append(TransitionLog.dimension == dimension)
    return and_(*criteria)


class TransitionLogSelector(BaseSelector):
    """Read-only access to transition log rows."""

    def latest_row(
        self,
        owner_type: str,
        owner_id: str,
        dimension: str,
    ) -> TransitionLog | None:
        """The highest-id row for (owner, dimension), or None."""
        return self.session.execute(
            select(TransitionLog)
            .where(owned_by(owner_type, owner_id, dimension))
            .order_by(TransitionLog.id.desc())
            .limit(1)
        ).scalar_one_or_none()

    def history(
        self,
        owner_type: str,
        owner_id: str,
        dimension: str | None = None,
    ) -> list[TransitionLog]:
        """All rows for the owner in id order, optionally one dimension."""
        return list(
            self.session.scalars(
                select(TransitionLog)
                .where(owned_by(owner_type, owner_id, dimension))
                .order_by(TransitionLog.id)
            )
        )

    def has_reached(
        self,
        owner_type: str,
        owner_id: str,
        dimension: str,
        state: StateValue | str,
    ) -> bool:
        """True if any row for (owner, dimension) has ``to_state == state``."""
        return bool(
            self.session.scalar(
                select(
                    select(TransitionLog.id)
                    .where(
                        owned_by(owner_type, owner_id, dimension),
                        TransitionLog.to_state == to_text(state),
                    )
                    .exists()
                )
            )
        )

    def count_rows(
        self,
        owner_type: str,
        owner_id: str,
        dimension: str | None = None,
    ) -> int:
        return self.session.scalar(
            select(func.count(TransitionLog.id)).where(
                owned_by(owner_type, owner_id, dimension)
            )
        ) or 0

    def query_rows(self, *criteria: ColumnElement[bool]) -> list[TransitionLog]:
        """Rows matching arbitrary criteria, in id order."""
        return list(
            self.session.scalars(
                select(TransitionLog).where(*criteria).order_by(TransitionLog.id)
            )
        )

    def latest_rows(
        self,
        owner_type: str,
        owner_ids: Iterable[str],
        dimension: str,
    ) -> dict[str, TransitionLog]:
        """Latest row per owner for a batch of owners, in one query.

        Owners without rows are absent from the result.
        """
        ids = list(dict.fromkeys(owner_ids))
        if not ids:
            return {}

        latest_ids = (
            select(func.max(TransitionLog.id))
            .where(
                TransitionLog.owner_type == owner_type,
                TransitionLog.owner_id.in_(ids),
                TransitionLog.dimension == dimension,
            )
            .group_by(TransitionLog.owner_id)
        )
        rows = self.session.scalars(
            select(TransitionLog).where(TransitionLog.id.in_(latest_ids))
        )
        return {row.owner_id: row for row in rows}
