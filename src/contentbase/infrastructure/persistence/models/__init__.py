"""SQLAlchemy models for the registry tables."""

from contentbase.infrastructure.persistence.models.collection import CollectionModel

__all__ = ["CollectionModel"]
