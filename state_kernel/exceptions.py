"""
Typed Exception Hierarchy for the State Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the transition engine must be able to tell a rejected
transition from a typo in a transition name, and both from a lock
conflict.  Parsing messages for that is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example - WRONG way to handle errors:
    try:
        booking.state.transition("pay")
    except Exception as e:
        if "not allowed" in str(e):  # FRAGILE
            ...

Example - RIGHT way:
    try:
        booking.state.transition("pay")
    except TransitionRejectedError as e:
        notify(f"{e.transition} not allowed from {e.current_state}")

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    StateKernelError (base)
    |
    +-- TransitionError
    |   +-- UnknownTransitionError
    |   +-- TransitionRejectedError
    |   +-- OwnerNotPersistedError
    |
    +-- ConcurrencyError
    |   +-- ConcurrencyConflictError
    |
    +-- ConfigurationError
    |   +-- InvalidStateValueError
    |   +-- UnknownDimensionError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                   | When Raised
----------------|------------------------|--------------------------------------
Transition      | UNKNOWN_TRANSITION     | Name not registered for the dimension
                | TRANSITION_REJECTED    | Registered, but not from current state
                | OWNER_NOT_PERSISTED    | Entity has no primary key yet
----------------|------------------------|--------------------------------------
Concurrency     | CONCURRENCY_CONFLICT   | Lock/serialization failure, retries
                |                        | exhausted
----------------|------------------------|--------------------------------------
Configuration   | CONFIGURATION_ERROR    | Definition references undeclared
                |                        | state, or is modified after build
                | INVALID_STATE_VALUE    | Text is not a declared state value
                | UNKNOWN_DIMENSION      | Entity declares no such dimension
----------------|------------------------|--------------------------------------
Immutability    | IMMUTABILITY_VIOLATION | UPDATE/DELETE of a transition row

===============================================================================
HANDLING PATTERNS
===============================================================================

1. REJECTION IS OFTEN EXPECTED:

    row = booking.state.transition("pay", fail_on_reject=False)
    if row is None:
        ...  # a warning was logged, nothing was written

2. UNKNOWN TRANSITIONS ARE ALWAYS RAISED (programming error):

    booking.state.transition("pya", fail_on_reject=False)  # raises

3. CONCURRENCY CONFLICTS ARE ALREADY RETRIED:

    except ConcurrencyConflictError as e:
        log.error("gave up after %s attempts", e.attempts)
"""


class StateKernelError(Exception):
    """
    Base exception for all state kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "STATE_KERNEL_ERROR"


# Transition-related exceptions


class TransitionError(StateKernelError):
    """Base exception for transition execution errors."""

    code: str = "TRANSITION_ERROR"


class UnknownTransitionError(TransitionError):
    """Transition name is not registered for the dimension at all.

    Never suppressed by ``fail_on_reject=False``.
    """

    code: str = "UNKNOWN_TRANSITION"

    def __init__(self, dimension: str, transition: str):
        self.dimension = dimension
        self.transition = transition
        super().__init__(
            f"Transition [{transition}] is not defined for [{dimension}]"
        )


class TransitionRejectedError(TransitionError):
    """Transition is registered but not allowed from the current state."""

    code: str = "TRANSITION_REJECTED"

    def __init__(self, dimension: str, transition: str, current_state: str):
        self.dimension = dimension
        self.transition = transition
        self.current_state = current_state
        super().__init__(
            f"Transition [{transition}] to change [{dimension}] "
            f"not allowed for [{current_state}]"
        )


class OwnerNotPersistedError(TransitionError):
    """The stateful entity has no primary key yet, so it owns no log rows."""

    code: str = "OWNER_NOT_PERSISTED"

    def __init__(self, owner_type: str, dimension: str):
        self.owner_type = owner_type
        self.dimension = dimension
        super().__init__(
            f"Cannot change [{dimension}] of unsaved {owner_type}: "
            "persist the entity first"
        )


# Concurrency exceptions


class ConcurrencyError(StateKernelError):
    """Base exception for concurrency errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrencyConflictError(ConcurrencyError):
    """Lock or serialization failure that survived every retry attempt."""

    code: str = "CONCURRENCY_CONFLICT"

    def __init__(self, operation: str, attempts: int, detail: str):
        self.operation = operation
        self.attempts = attempts
        self.detail = detail
        super().__init__(
            f"{operation} failed after {attempts} attempt(s): {detail}"
        )


# Configuration exceptions


class ConfigurationError(StateKernelError):
    """A state definition is inconsistent or used incorrectly.

    Unrecoverable: the defining code path must be fixed.
    """

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, state_type: str, reason: str):
        self.state_type = state_type
        self.reason = reason
        super().__init__(f"Invalid state definition {state_type}: {reason}")


class InvalidStateValueError(ConfigurationError):
    """Text does not name a declared state value."""

    code: str = "INVALID_STATE_VALUE"

    def __init__(self, state_type: str, value: str):
        self.value = value
        super().__init__(state_type, f"'{value}' is not a declared state value")


class UnknownDimensionError(ConfigurationError):
    """Entity type declares no state dimension with this name."""

    code: str = "UNKNOWN_DIMENSION"

    def __init__(self, owner_type: str, dimension: str):
        self.owner_type = owner_type
        self.dimension = dimension
        super().__init__(
            owner_type, f"no state dimension named '{dimension}'"
        )


# Immutability exceptions


class ImmutabilityError(StateKernelError):
    """Base exception for immutability violations."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempt to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Cannot modify immutable {entity_type} {entity_id}: {reason}"
        )
