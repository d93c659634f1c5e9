"""Pydantic schemas for record queries: pagination, sorting and results."""

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class PagePagination(BaseModel):
    """Offset pagination by page number.

    ``perPage`` defaults to the configured page size.
    """

    model_config = ConfigDict(populate_by_name=True)

    type: Literal["page"] = "page"
    page: int = Field(default=1, ge=1)
    per_page: int | None = Field(default=None, ge=1, alias="perPage")


class CursorPagination(BaseModel):
    """Keyset pagination on the internal record id.

    ``limit`` defaults to the configured page size.
    """

    type: Literal["cursor"] = "cursor"
    limit: int | None = Field(default=None, ge=1)
    cursor: int | None = Field(default=None, ge=0)


PaginationOptions = Annotated[
    Union[PagePagination, CursorPagination], Field(discriminator="type")
]


class SortField(BaseModel):
    """One key of a multi-key sort."""

    field: str = Field(..., min_length=1)
    direction: Literal["asc", "desc"] = "asc"


class QueryOptions(BaseModel):
    """Options for listing records of a collection.

    ``filter`` is a filter tree: field name -> {operator: operand}, plus
    optional ``$or`` / ``$and`` lists of nested trees.
    """

    model_config = ConfigDict(populate_by_name=True)

    pagination: PaginationOptions | None = None
    filter: dict[str, Any] | None = None
    sort: list[SortField] = Field(default_factory=list)
    include_relations: bool = Field(default=False, alias="includeRelations")


class PagePaginationMeta(BaseModel):
    """Pagination metadata for page mode."""

    model_config = ConfigDict(populate_by_name=True)

    type: Literal["page"] = "page"
    current_page: int = Field(..., alias="currentPage")
    per_page: int = Field(..., alias="perPage")
    total: int
    page_count: int = Field(..., alias="pageCount")
    has_next_page: bool = Field(..., alias="hasNextPage")
    has_prev_page: bool = Field(..., alias="hasPrevPage")


class CursorPaginationMeta(BaseModel):
    """Pagination metadata for cursor mode."""

    model_config = ConfigDict(populate_by_name=True)

    type: Literal["cursor"] = "cursor"
    has_more: bool = Field(..., alias="hasMore")
    next_cursor: int | None = Field(default=None, alias="nextCursor")
    prev_cursor: int | None = Field(default=None, alias="prevCursor")
    total: int


class QueryResult(BaseModel):
    """A page of decoded records with its pagination metadata."""

    data: list[dict[str, Any]]
    meta: Union[PagePaginationMeta, CursorPaginationMeta]
