"""
Catalog Service

Menu browsing for everyone, menu maintenance for admins.
"""

import logging
from typing import Optional

from food_ordering.core.config import Settings
from food_ordering.core.errors import NotFoundError
from food_ordering.domain import Account, CatalogItem, NewCatalogItem, Role, UNCATEGORIZED
from food_ordering.schemas import CatalogItemCreate, CatalogItemUpdate
from food_ordering.services.identity import authorize
from food_ordering.services.storage.base import BaseStorage

logger = logging.getLogger(__name__)


class CatalogService:
    """Menu operations on top of the storage layer."""

    def __init__(self, storage: BaseStorage, settings: Settings):
        self.storage = storage
        self.settings = settings

    async def list_items(
        self,
        category: Optional[str] = None,
        include_unavailable: bool = False,
    ) -> list[CatalogItem]:
        """
        List menu items.

        Unavailable items are hidden unless ``include_unavailable`` is set.
        """
        filters = {}
        if not include_unavailable:
            filters["available"] = True
        if category:
            filters["category"] = category
        return await self.storage.list_catalog_items(filters)

    async def categories(self) -> list[str]:
        """Distinct categories of all items, "none" first, the rest sorted."""
        items = await self.storage.list_catalog_items({})
        names = {item.category for item in items}
        ordered = sorted(names - {UNCATEGORIZED})
        if UNCATEGORIZED in names:
            ordered.insert(0, UNCATEGORIZED)
        return ordered

    async def get_item(self, item_id: str) -> CatalogItem:
        item = await self.storage.find_catalog_item_by_id(item_id)
        if item is None:
            raise NotFoundError("Menu item not found")
        return item

    async def create_item(self, actor: Account, payload: CatalogItemCreate) -> CatalogItem:
        authorize(actor, [Role.ADMIN])
        return await self.storage.create_catalog_item(
            NewCatalogItem(
                name=payload.name,
                description=payload.description,
                price=payload.price,
                category=payload.category or UNCATEGORIZED,
                image=payload.image or self.settings.default_item_image,
                available=payload.available,
            )
        )

    async def update_item(self, actor: Account, item_id: str, payload: CatalogItemUpdate) -> CatalogItem:
        authorize(actor, [Role.ADMIN])
        changes = payload.model_dump(exclude_unset=True, exclude_none=True)
        item = await self.storage.update_catalog_item(item_id, changes)
        if item is None:
            raise NotFoundError("Menu item not found")
        return item

    async def toggle_availability(self, actor: Account, item_id: str) -> CatalogItem:
        authorize(actor, [Role.ADMIN])
        item = await self.get_item(item_id)
        updated = await self.storage.update_catalog_item(item_id, {"available": not item.available})
        if updated is None:
            raise NotFoundError("Menu item not found")
        logger.info(f"Menu item {item_id} available={updated.available}")
        return updated

    async def delete_item(self, actor: Account, item_id: str) -> None:
        authorize(actor, [Role.ADMIN])
        if not await self.storage.delete_catalog_item(item_id):
            raise NotFoundError("Menu item not found")
