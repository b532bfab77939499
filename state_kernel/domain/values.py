"""
State values -- the enumerated type behind each dimension.

Each dimension declares its states as a ``StateValue`` subclass:

    class BookingStatus(StateValue):
        PENDING = "pending"
        PAID = "paid"
        FAILED = "failed"

Members compare equal to their text (``BookingStatus.PAID == "paid"``), so
callers may pass either.  Conversion to the stored text is explicit
(``to_text``); ``str()`` is never relied on.
"""

from enum import Enum


class StateValue(str, Enum):
    """Base class for a dimension's enumerated state values."""

    def to_text(self) -> str:
        """The text stored in the transition log for this state."""
        return self.value


def to_text(state: "StateValue | str") -> str:
    """Text form of a state given as a member or as plain text."""
    if isinstance(state, Enum):
        return state.value
    return state
