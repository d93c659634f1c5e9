"""Repository for collection definitions.

Persists CollectionDefinition rows in the ``collections`` registry table and
converts them to domain entities. The store flushes but never commits; the
caller owns the transaction.
"""

import json
import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from contentbase.core.clock import utcnow
from contentbase.core.logging import get_logger
from contentbase.domain.entities import CollectionDefinition, FieldDefinition
from contentbase.domain.exceptions import (
    CollectionAlreadyExistsError,
    CollectionNotFoundError,
    FieldValidationError,
)
from contentbase.domain.services.collection_validator import CollectionValidator
from contentbase.infrastructure.persistence.models import CollectionModel

logger = get_logger(__name__)

UPDATABLE_ATTRIBUTES = frozenset({"name", "slug", "description", "fields"})


class SchemaStore:
    """Repository for collection definition persistence."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize the store with a database session.

        Args:
            session: SQLAlchemy async session.
        """
        self.session = session

    @staticmethod
    def _to_entity(model: CollectionModel) -> CollectionDefinition:
        try:
            raw_fields = json.loads(model.fields)
            fields = [FieldDefinition.from_dict(f) for f in raw_fields]
        except (TypeError, ValueError, KeyError) as e:
            logger.error(
                "Stored field list is corrupt",
                collection_slug=model.slug,
                error=str(e),
            )
            raise FieldValidationError(
                f"Stored field definitions of collection '{model.slug}' are invalid",
                {"collection_slug": model.slug, "original_error": str(e)},
            ) from e

        return CollectionDefinition(
            id=model.id,
            document_id=model.document_id,
            name=model.name,
            slug=model.slug,
            fields=fields,
            description=model.description,
            parent_id=model.parent_id,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    @staticmethod
    def _encode_fields(fields: list[FieldDefinition]) -> str:
        return json.dumps([f.to_dict() for f in fields])

    @staticmethod
    def validate_definition(
        name: str | None, slug: str | None, fields: list[FieldDefinition]
    ) -> None:
        """Raise FieldValidationError listing every structural error."""
        errors = CollectionValidator.validate(name, slug, fields)
        if errors:
            raise FieldValidationError(
                "Collection definition is invalid",
                {"errors": [e.to_dict() for e in errors]},
            )

    async def _get_model(self, collection_id: int) -> CollectionModel | None:
        result = await self.session.execute(
            select(CollectionModel).where(CollectionModel.id == collection_id)
        )
        return result.scalar_one_or_none()

    async def create(
        self,
        name: str,
        slug: str,
        fields: list[FieldDefinition],
        description: str | None = None,
        parent_id: int | None = None,
    ) -> CollectionDefinition:
        """Create a collection definition.

        Args:
            name: Display name.
            slug: Full slug, including the parent's slug for nested collections.
            fields: Ordered field definitions.
            description: Optional description.
            parent_id: Optional parent collection id.

        Returns:
            The stored definition with its generated ids.

        Raises:
            FieldValidationError: If the slug is missing or a field is invalid.
            CollectionAlreadyExistsError: If the slug is already taken.
        """
        if not slug:
            raise FieldValidationError("Collection slug is required", {"field": "slug"})

        self.validate_definition(name, slug, fields)

        if await self.slug_exists(slug):
            raise CollectionAlreadyExistsError(slug)

        now = utcnow()
        model = CollectionModel(
            document_id=str(uuid.uuid4()),
            name=name,
            slug=slug,
            description=description,
            fields=self._encode_fields(fields),
            parent_id=parent_id,
            created_at=now,
            updated_at=now,
        )
        self.session.add(model)
        await self.session.flush()

        logger.debug("Collection definition stored", collection_slug=slug, collection_id=model.id)
        return self._to_entity(model)

    async def update(self, collection_id: int, patch: dict[str, Any]) -> CollectionDefinition:
        """Update a collection definition.

        Args:
            collection_id: Id of the collection.
            patch: Attributes to change; keys among ``name``, ``slug``,
                ``description`` and ``fields`` (a list of FieldDefinition).

        Returns:
            The updated definition.

        Raises:
            CollectionNotFoundError: If no collection has this id.
            CollectionAlreadyExistsError: If the new slug belongs to another collection.
            FieldValidationError: If the patch is invalid.
        """
        unknown = set(patch) - UPDATABLE_ATTRIBUTES
        if unknown:
            raise FieldValidationError(
                "Unknown collection attributes in update",
                {"attributes": sorted(unknown)},
            )

        model = await self._get_model(collection_id)
        if model is None:
            raise CollectionNotFoundError(collection_id)

        current = self._to_entity(model)
        name = patch.get("name", current.name)
        slug = patch.get("slug", current.slug)
        fields = patch.get("fields", current.fields)
        self.validate_definition(name, slug, fields)

        if slug != model.slug:
            owner = await self.find_by_slug(slug)
            if owner is not None and owner.id != collection_id:
                raise CollectionAlreadyExistsError(slug)

        model.name = name
        model.slug = slug
        if "description" in patch:
            model.description = patch["description"]
        if "fields" in patch:
            model.fields = self._encode_fields(fields)
        model.updated_at = utcnow()

        await self.session.flush()
        return self._to_entity(model)

    async def find_by_slug(self, slug: str) -> CollectionDefinition | None:
        """Get a collection definition by slug.

        Args:
            slug: The collection slug.

        Returns:
            The definition if found, None otherwise.
        """
        result = await self.session.execute(
            select(CollectionModel).where(CollectionModel.slug == slug)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def find_by_id(self, collection_id: int) -> CollectionDefinition | None:
        """Get a collection definition by internal id."""
        model = await self._get_model(collection_id)
        return self._to_entity(model) if model else None

    async def find_by_document_id(self, document_id: str) -> CollectionDefinition | None:
        """Get a collection definition by its external documentId."""
        result = await self.session.execute(
            select(CollectionModel).where(CollectionModel.document_id == document_id)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def find_all(self) -> list[CollectionDefinition]:
        """Get all collection definitions ordered by name."""
        result = await self.session.execute(
            select(CollectionModel).order_by(CollectionModel.name, CollectionModel.id)
        )
        return [self._to_entity(model) for model in result.scalars().all()]

    async def find_children(self, parent_id: int) -> list[CollectionDefinition]:
        """Get the immediate children of a collection ordered by name."""
        result = await self.session.execute(
            select(CollectionModel)
            .where(CollectionModel.parent_id == parent_id)
            .order_by(CollectionModel.name, CollectionModel.id)
        )
        return [self._to_entity(model) for model in result.scalars().all()]

    async def get_parent_id(self, collection_id: int) -> int | None:
        """Get the parent id of a collection.

        Raises:
            CollectionNotFoundError: If no collection has this id.
        """
        result = await self.session.execute(
            select(CollectionModel.id, CollectionModel.parent_id).where(
                CollectionModel.id == collection_id
            )
        )
        row = result.one_or_none()
        if row is None:
            raise CollectionNotFoundError(collection_id)
        return row.parent_id

    async def set_parent(self, collection_id: int, parent_id: int | None) -> CollectionDefinition:
        """Change the parent of a collection without touching its slug.

        Raises:
            CollectionNotFoundError: If no collection has this id.
        """
        model = await self._get_model(collection_id)
        if model is None:
            raise CollectionNotFoundError(collection_id)

        model.parent_id = parent_id
        model.updated_at = utcnow()
        await self.session.flush()
        return self._to_entity(model)

    async def slug_exists(self, slug: str) -> bool:
        """Check if a collection with the given slug exists."""
        result = await self.session.execute(
            select(CollectionModel.id).where(CollectionModel.slug == slug).limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def delete(self, collection_id: int) -> bool:
        """Delete a collection definition row.

        Children of the deleted collection become roots.

        Returns:
            True if a row was deleted, False if none existed.
        """
        model = await self._get_model(collection_id)
        if model is None:
            return False

        children = await self.session.execute(
            select(CollectionModel).where(CollectionModel.parent_id == collection_id)
        )
        now = utcnow()
        for child in children.scalars().all():
            child.parent_id = None
            child.updated_at = now

        await self.session.delete(model)
        await self.session.flush()
        return True
