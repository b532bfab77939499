"""
Module: state_kernel.db.types
Responsibility: Column types for the transition log, so the model and any host
    migration agree on column widths.
Architecture position: Kernel > DB.  MUST NOT import from models/, domain/,
    services/, or selectors/.
"""

from sqlalchemy import BigInteger, Integer, String, Text

# Monotonic row id.  SQLite only auto-increments INTEGER PRIMARY KEY.
LogId = BigInteger().with_variant(Integer(), "sqlite")

# Polymorphic owner reference
OwnerType = String(255)
OwnerId = String(64)

# Dimension, transition and state names
ShortName = String(100)

# Free-text audit note
ReasonText = Text()
