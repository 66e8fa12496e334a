# storefront/routes/cart.py
from fastapi import APIRouter, Depends, HTTPException, status
import asyncpg
from typing import List
from storefront.core.config import settings
from storefront.core.database import get_db_connection
from storefront.core.security import get_current_buyer
from storefront.core.store import PostgresStore
from storefront.models.cart import (
    CartItemCreate,
    CartResponse,
    HistoryEntry,
    HistoryEntryCreate,
    QuantityUpdate,
    SellerGroup,
)
from storefront.services.cart import BrowsingHistory, Cart, cart_key, history_key
import logging

router = APIRouter()
history_router = APIRouter()
logger = logging.getLogger(__name__)


def _cart(conn, buyer_id: str) -> Cart:
    return Cart(PostgresStore(conn), cart_key(buyer_id))


def _history(conn, buyer_id: str) -> BrowsingHistory:
    return BrowsingHistory(PostgresStore(conn), history_key(buyer_id), max_items=settings.HISTORY_MAX_ITEMS)


async def _cart_response(cart: Cart) -> CartResponse:
    return CartResponse(
        items=await cart.items(),
        item_count=await cart.item_count(),
        total=await cart.total(),
    )


@router.get("/items", response_model=CartResponse)
async def get_cart(
    conn: asyncpg.Connection = Depends(get_db_connection),
    buyer_id: str = Depends(get_current_buyer),
):
    try:
        return await _cart_response(_cart(conn, buyer_id))
    except Exception as e:
        logger.error(f"Error fetching cart: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch cart",
        )


@router.get("/groups", response_model=List[SellerGroup])
async def get_cart_groups(
    conn: asyncpg.Connection = Depends(get_db_connection),
    buyer_id: str = Depends(get_current_buyer),
):
    try:
        return await _cart(conn, buyer_id).seller_groups()
    except Exception as e:
        logger.error(f"Error grouping cart: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch cart",
        )


@router.post("/items", response_model=CartResponse)
async def add_cart_item(
    item: CartItemCreate,
    conn: asyncpg.Connection = Depends(get_db_connection),
    buyer_id: str = Depends(get_current_buyer),
):
    try:
        cart = _cart(conn, buyer_id)
        await cart.add_item(item)
        return await _cart_response(cart)
    except Exception as e:
        logger.error(f"Error adding item to cart: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to add item to cart",
        )


@router.put("/items/{item_id}", response_model=CartResponse)
async def update_cart_item(
    item_id: str,
    update: QuantityUpdate,
    conn: asyncpg.Connection = Depends(get_db_connection),
    buyer_id: str = Depends(get_current_buyer),
):
    try:
        cart = _cart(conn, buyer_id)
        if await cart.update_quantity(item_id, update.quantity) is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Cart item not found",
            )
        return await _cart_response(cart)
    except Exception as e:
        logger.error(f"Error updating cart item: {e}")
        if isinstance(e, HTTPException):
            raise
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update cart item",
        )


@router.delete("/items/{item_id}", response_model=CartResponse)
async def remove_cart_item(
    item_id: str,
    conn: asyncpg.Connection = Depends(get_db_connection),
    buyer_id: str = Depends(get_current_buyer),
):
    try:
        cart = _cart(conn, buyer_id)
        if not await cart.remove_item(item_id):
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Cart item not found",
            )
        return await _cart_response(cart)
    except Exception as e:
        logger.error(f"Error removing cart item: {e}")
        if isinstance(e, HTTPException):
            raise
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to remove cart item",
        )


@router.delete("/")
async def clear_cart(
    conn: asyncpg.Connection = Depends(get_db_connection),
    buyer_id: str = Depends(get_current_buyer),
):
    try:
        await _cart(conn, buyer_id).clear()
        return {"message": "Cart cleared"}
    except Exception as e:
        logger.error(f"Error clearing cart: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to clear cart",
        )


@history_router.get("/", response_model=List[HistoryEntry])
async def get_history(
    conn: asyncpg.Connection = Depends(get_db_connection),
    buyer_id: str = Depends(get_current_buyer),
):
    try:
        return await _history(conn, buyer_id).entries()
    except Exception as e:
        logger.error(f"Error fetching browsing history: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch browsing history",
        )


@history_router.post("/", response_model=List[HistoryEntry])
async def add_history_entry(
    entry: HistoryEntryCreate,
    conn: asyncpg.Connection = Depends(get_db_connection),
    buyer_id: str = Depends(get_current_buyer),
):
    try:
        return await _history(conn, buyer_id).add(entry)
    except Exception as e:
        logger.error(f"Error recording browsing history: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to record browsing history",
        )


@history_router.delete("/")
async def clear_history(
    conn: asyncpg.Connection = Depends(get_db_connection),
    buyer_id: str = Depends(get_current_buyer),
):
    try:
        await _history(conn, buyer_id).clear()
        return {"message": "Browsing history cleared"}
    except Exception as e:
        logger.error(f"Error clearing browsing history: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to clear browsing history",
        )
