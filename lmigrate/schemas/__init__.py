"""
lmigrate.schemas - Persisted record types.

MigrationRecord -> ComponentRecord -> AuthorizationGrant

Lifecycle:
1. MigrationRecord: created when a step is first attempted, tracks its status
2. ComponentRecord: created by a step for every confirmed deploy
3. AuthorizationGrant: created by a step for every confirmed grant

All three are persisted per target by a RecordStore.
"""

from .migration_record import (
    MigrationRecord,
    MigrationStatus,
)
from .component import (
    Address,
    AuthorizationGrant,
    ComponentRecord,
)

__all__ = [
    # Migration Record
    "MigrationRecord",
    "MigrationStatus",
    # Components
    "Address",
    "ComponentRecord",
    "AuthorizationGrant",
]
