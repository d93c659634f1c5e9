"""ContentBase - runtime-defined content collections.

Collections (content types) are declared at runtime, materialized as
physical tables and served through generic record operations.
"""

__version__ = "0.1.0"

from contentbase.domain.services.collection_service import CollectionService

__all__ = ["CollectionService", "__version__"]
