"""
State Kernel - finite-state machines over an append-only transition log

Layered over arbitrary persisted entities:
- Declarative state types with named transitions
- Current state derived from the latest log row, never stored
- Row-locked, retried transition execution
- Set-based state predicates for queries
- Post-commit transition and state events
"""

__version__ = "0.1.0"
