"""ORM models for the state kernel."""

from state_kernel.models.transition_log import TransitionLog

__all__ = [
    "TransitionLog",
]
