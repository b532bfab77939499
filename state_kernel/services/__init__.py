"""Services for the state kernel (write side)."""

from state_kernel.services.state_handle import HandleStatus, StateHandle
from state_kernel.services.transition_log_writer import TransitionLogWriter

__all__ = [
    "HandleStatus",
    "StateHandle",
    "TransitionLogWriter",
]
