"""Read-only selectors and state predicates over the transition log."""

from state_kernel.selectors.state_predicates import (
    where_has_no_states,
    where_state_is,
    where_state_is_in,
    where_state_is_not,
    where_state_is_not_in,
    where_state_never_was,
    where_state_was,
)
from state_kernel.selectors.transition_log_selector import TransitionLogSelector

__all__ = [
    "TransitionLogSelector",
    "where_has_no_states",
    "where_state_is",
    "where_state_is_in",
    "where_state_is_not",
    "where_state_is_not_in",
    "where_state_never_was",
    "where_state_was",
]
