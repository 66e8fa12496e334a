# storefront/services/cart.py
import time
import uuid
import logging
from typing import Dict, List, Optional

from storefront.core.store import Store
from storefront.models.cart import CartItem, CartItemCreate, HistoryEntry, HistoryEntryCreate, SellerGroup
from storefront.models.checkout import LineItem

logger = logging.getLogger(__name__)


def cart_key(buyer_id: str) -> str:
    return f"cart:{buyer_id}"


def history_key(buyer_id: str) -> str:
    return f"history:{buyer_id}"


class Cart:
    """Buyer cart persisted as a list of items under one store key."""

    def __init__(self, store: Store, key: str):
        self.store = store
        self.key = key

    @staticmethod
    def _parse(raw) -> List[CartItem]:
        return [CartItem.model_validate(entry) for entry in raw]

    @staticmethod
    def _dump(items: List[CartItem]) -> list:
        return [item.model_dump() for item in items]

    async def items(self) -> List[CartItem]:
        return self._parse(await self.store.get(self.key, []))

    async def add_item(self, item: CartItemCreate) -> List[CartItem]:
        def apply(raw):
            items = self._parse(raw)
            existing = next((i for i in items if i.product_id == item.product_id), None)
            if existing is not None:
                existing.quantity = max(existing.moq, existing.quantity + item.quantity)
            else:
                quantity = max(item.moq, item.quantity)
                items.append(CartItem(id=f"cart-{uuid.uuid4().hex}", **item.model_dump(exclude={"quantity"}), quantity=quantity))
            return self._dump(items)

        return self._parse(await self.store.update(self.key, apply, []))

    async def update_quantity(self, item_id: str, quantity: int) -> Optional[CartItem]:
        updated: Optional[CartItem] = None

        def apply(raw):
            nonlocal updated
            items = self._parse(raw)
            for item in items:
                if item.id == item_id:
                    item.quantity = max(item.moq, quantity)
                    updated = item
                    return self._dump(items)
            return None

        await self.store.update(self.key, apply, [])
        return updated

    async def remove_item(self, item_id: str) -> bool:
        removed = False

        def apply(raw):
            nonlocal removed
            items = self._parse(raw)
            remaining = [i for i in items if i.id != item_id]
            if len(remaining) == len(items):
                return None
            removed = True
            return self._dump(remaining)

        await self.store.update(self.key, apply, [])
        return removed

    async def clear(self) -> None:
        await self.store.clear(self.key)

    async def item_count(self) -> int:
        return sum(item.quantity for item in await self.items())

    async def total(self) -> float:
        return sum(item.price * item.quantity for item in await self.items())

    async def seller_groups(self) -> List[SellerGroup]:
        groups: Dict[Optional[str], SellerGroup] = {}
        for item in await self.items():
            group = groups.get(item.seller_id)
            if group is None:
                group = SellerGroup(seller_id=item.seller_id, seller_name=item.seller_name)
                groups[item.seller_id] = group
            group.items.append(item)
            group.subtotal += item.price * item.quantity
        return list(groups.values())

    async def line_items(self) -> List[LineItem]:
        return [
            LineItem(
                product_id=item.product_id,
                title=item.title,
                price=item.price,
                quantity=item.quantity,
                seller_id=item.seller_id,
                seller_name=item.seller_name,
                unit=item.unit,
            )
            for item in await self.items()
        ]


class BrowsingHistory:
    def __init__(self, store: Store, key: str, max_items: int = 20):
        self.store = store
        self.key = key
        self.max_items = max_items

    async def entries(self) -> List[HistoryEntry]:
        raw = await self.store.get(self.key, [])
        return [HistoryEntry.model_validate(entry) for entry in raw]

    async def add(self, entry: HistoryEntryCreate) -> List[HistoryEntry]:
        viewed = HistoryEntry(**entry.model_dump(), viewed_at=int(time.time() * 1000))

        def apply(raw):
            # Re-viewing an item moves it to the front instead of duplicating it
            entries = [viewed] + [e for e in (HistoryEntry.model_validate(r) for r in raw) if e.id != entry.id]
            return [e.model_dump() for e in entries[: self.max_items]]

        raw = await self.store.update(self.key, apply, [])
        return [HistoryEntry.model_validate(r) for r in raw]

    async def clear(self) -> None:
        await self.store.clear(self.key)
