"""Parent/child organization of collections.

Collections form a forest through ``parent_id``. Trees are assembled from an
id -> node index and walked iteratively, so deep hierarchies never hit the
recursion limit.
"""

from contentbase.core.logging import get_logger
from contentbase.domain.entities import CollectionDefinition, CollectionNode
from contentbase.domain.exceptions import CollectionNotFoundError, HierarchyCycleError
from contentbase.infrastructure.persistence.repositories import SchemaStore

logger = get_logger(__name__)


class HierarchyManager:
    """Builds collection trees and moves collections between parents."""

    def __init__(self, store: SchemaStore) -> None:
        self.store = store

    async def get_collection_hierarchy(self) -> list[CollectionNode]:
        """Get every collection as a forest.

        Returns:
            Root nodes ordered by name, each with its children ordered by
            name at every level.
        """
        definitions = await self.store.find_all()
        nodes = {d.id: CollectionNode(collection=d) for d in definitions}

        roots: list[CollectionNode] = []
        for definition in definitions:
            node = nodes[definition.id]
            parent = nodes.get(definition.parent_id) if definition.parent_id is not None else None
            if parent is None:
                roots.append(node)
            else:
                parent.children.append(node)

        stack = list(roots)
        seen: set[int] = set()
        while stack:
            node = stack.pop()
            if node.collection.id in seen:
                continue
            seen.add(node.collection.id)
            node.children.sort(key=lambda child: (child.collection.name, child.collection.id))
            stack.extend(node.children)

        roots.sort(key=lambda root: (root.collection.name, root.collection.id))
        return roots

    async def get_subcollections(self, parent_id: int) -> list[CollectionDefinition]:
        """Get the immediate children of a collection ordered by name.

        Raises:
            CollectionNotFoundError: If the parent does not exist.
        """
        if await self.store.find_by_id(parent_id) is None:
            raise CollectionNotFoundError(parent_id)
        return await self.store.find_children(parent_id)

    async def move_collection(
        self, collection_id: int, new_parent_id: int | None
    ) -> CollectionDefinition:
        """Move a collection under a new parent, or to the root with None.

        Only the parent link changes; the slug and the physical table stay.

        Raises:
            CollectionNotFoundError: If the collection or the new parent does
                not exist.
            HierarchyCycleError: If the new parent is the collection itself
                or one of its descendants.
        """
        if await self.store.find_by_id(collection_id) is None:
            raise CollectionNotFoundError(collection_id)

        if new_parent_id is not None:
            if await self.store.find_by_id(new_parent_id) is None:
                raise CollectionNotFoundError(new_parent_id)
            await self._check_cycle(collection_id, new_parent_id)

        moved = await self.store.set_parent(collection_id, new_parent_id)
        logger.info(
            "Collection moved",
            collection_id=collection_id,
            collection_slug=moved.slug,
            new_parent_id=new_parent_id,
        )
        return moved

    async def _check_cycle(self, collection_id: int, new_parent_id: int) -> None:
        visited: set[int] = set()
        current: int | None = new_parent_id
        while current is not None:
            if current == collection_id or current in visited:
                logger.warning(
                    "Hierarchy cycle rejected",
                    collection_id=collection_id,
                    new_parent_id=new_parent_id,
                )
                raise HierarchyCycleError(collection_id, new_parent_id)
            visited.add(current)
            current = await self.store.get_parent_id(current)

    async def validate_hierarchical_slug(self, parent_id: int | None, slug: str) -> str:
        """Compose the full slug of a collection under ``parent_id``.

        Returns:
            ``slug`` for roots, ``parentSlug/slug`` otherwise.

        Raises:
            CollectionNotFoundError: If the parent does not exist.
        """
        if parent_id is None:
            return slug
        parent = await self.store.find_by_id(parent_id)
        if parent is None:
            raise CollectionNotFoundError(parent_id)
        return f"{parent.slug}/{slug}"
