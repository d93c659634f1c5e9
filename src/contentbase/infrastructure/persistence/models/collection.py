"""SQLAlchemy model for the collections registry table.

Each row describes one runtime-defined collection. The field list is stored
as JSON text; the records themselves live in a separate physical table per
collection.
"""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from contentbase.infrastructure.persistence.database import Base


class CollectionModel(Base):
    """SQLAlchemy model for the collections table.

    Attributes:
        id: Internal primary key, used for hierarchy links.
        document_id: Stable external identifier (UUID).
        name: Display name.
        slug: Unique identifier, ``parent/child`` for nested collections.
        description: Optional description.
        fields: JSON-encoded ordered list of field definitions.
        parent_id: Parent collection id, NULL for roots.
        created_at: Timestamp when the collection was created.
        updated_at: Timestamp when the collection was last updated.
    """

    __tablename__ = "collections"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    document_id: Mapped[str] = mapped_column(
        String(36),
        nullable=False,
        unique=True,
        comment="External collection ID (UUID)",
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
        index=True,
    )
    description: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    fields: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="JSON list of field definitions",
    )
    parent_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("collections.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    def __repr__(self) -> str:
        return f"<Collection(id={self.id}, slug={self.slug})>"
