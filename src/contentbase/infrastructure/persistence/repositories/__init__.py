"""Repositories for the registry tables."""

from contentbase.infrastructure.persistence.repositories.schema_store import SchemaStore

__all__ = ["SchemaStore"]
