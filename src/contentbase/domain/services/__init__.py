"""Domain services for ContentBase.

Only the dependency-free services are exported here; services that talk to
the database are imported from their modules.
"""

from contentbase.domain.services.collection_validator import (
    RESERVED_FIELD_NAMES,
    CollectionValidationError,
    CollectionValidator,
)
from contentbase.domain.services.record_codec import (
    BASE_COLUMNS,
    RecordCodec,
    RecordValidationError,
)

__all__ = [
    "BASE_COLUMNS",
    "CollectionValidationError",
    "CollectionValidator",
    "RESERVED_FIELD_NAMES",
    "RecordCodec",
    "RecordValidationError",
]
