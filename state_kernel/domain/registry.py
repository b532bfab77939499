"""StateRegistry -- dimension type to built StateDefinition, built once."""

import threading

from state_kernel.domain.definition import StateDefinition, StateType
from state_kernel.logging_config import get_logger

logger = get_logger("domain.registry")


class StateRegistry:
    """Keyed table of built state definitions.

    Contract:
        ``definition_for`` builds a type's definition on first request and
        returns the same object forever after.  Construction is guarded by
        a lock, so concurrent first requests build exactly once.
        ``initialize`` builds a set of types eagerly, at process start.

    Non-goals:
        - No teardown: definitions are pure data derived from class
          declarations and live for the registry's lifetime.
    """

    def __init__(self) -> None:
        self._definitions: dict[type[StateType], StateDefinition] = {}
        self._lock = threading.Lock()

    def definition_for(self, state_type: type[StateType]) -> StateDefinition:
        definition = self._definitions.get(state_type)
        if definition is not None:
            return definition

        with self._lock:
            definition = self._definitions.get(state_type)
            if definition is None:
                definition = StateDefinition.build(state_type)
                self._definitions[state_type] = definition
                logger.info(
                    "state_definition_built",
                    extra={
                        "state_type": definition.name,
                        "state_count": len(definition.state_values),
                        "transition_count": len(definition.transitions),
                    },
                )
        return definition

    def initialize(self, *state_types: type[StateType]) -> None:
        """Build the given definitions now rather than on first use."""
        for state_type in state_types:
            self.definition_for(state_type)

    def __contains__(self, state_type: type[StateType]) -> bool:
        return state_type in self._definitions


# Process-wide registry used when no explicit registry is passed.
default_registry = StateRegistry()
