"""Input and output schemas for ContentBase operations."""

from contentbase.schemas.collection_schemas import (
    CollectionCreate,
    CollectionResponse,
    CollectionUpdate,
    FieldDefinitionSchema,
    InverseSideSchema,
    RelationConfigSchema,
)
from contentbase.schemas.query_schemas import (
    CursorPagination,
    CursorPaginationMeta,
    PagePagination,
    PagePaginationMeta,
    PaginationOptions,
    QueryOptions,
    QueryResult,
    SortField,
)

__all__ = [
    "CollectionCreate",
    "CollectionResponse",
    "CollectionUpdate",
    "CursorPagination",
    "CursorPaginationMeta",
    "FieldDefinitionSchema",
    "InverseSideSchema",
    "PagePagination",
    "PagePaginationMeta",
    "PaginationOptions",
    "QueryOptions",
    "QueryResult",
    "RelationConfigSchema",
    "SortField",
]
