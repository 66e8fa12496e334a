# storefront/routes/orders.py
from fastapi import APIRouter, HTTPException, Depends, status
import asyncpg
from typing import List, Optional
from storefront.core.database import get_db_connection
from storefront.core.security import get_current_buyer
from storefront.models.order import (
    OrderDetailResponse,
    OrderResponse,
    OrderStatus,
    tracking_steps,
)
import logging

router = APIRouter()
logger = logging.getLogger(__name__)

async def _order_items(conn, order_id: int) -> List[dict]:
    items = await conn.fetch(
        "SELECT * FROM order_items WHERE order_id = $1 ORDER BY id", order_id
    )
    return [dict(item) for item in items]

@router.get("/", response_model=List[OrderResponse])
async def get_buyer_orders(
    skip: int = 0,
    limit: int = 100,
    order_status: Optional[OrderStatus] = None,
    conn: asyncpg.Connection = Depends(get_db_connection),
    buyer_id: str = Depends(get_current_buyer),
):
    try:
        conditions = ["buyer_id = $1"]
        params = [buyer_id]

        if order_status:
            conditions.append("status = $2")
            params.append(order_status)

        where_clause = " AND ".join(conditions)

        orders = await conn.fetch(f"""
            SELECT * FROM orders
            WHERE {where_clause}
            ORDER BY created_at DESC
            LIMIT $%d OFFSET $%d
        """ % (len(params) + 1, len(params) + 2), *params, limit, skip)

        result = []
        for order in orders:
            order_dict = dict(order)
            order_dict["items"] = await _order_items(conn, order_dict["id"])
            result.append(order_dict)

        return result
    except Exception as e:
        logger.error(f"Error fetching orders for buyer {buyer_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch orders"
        )

@router.get("/{order_id}", response_model=OrderDetailResponse)
async def get_order(
    order_id: int,
    conn: asyncpg.Connection = Depends(get_db_connection),
    buyer_id: str = Depends(get_current_buyer),
):
    try:
        order = await conn.fetchrow(
            """
            SELECT o.*, t.card_brand, t.card_last_four
            FROM orders o
            LEFT JOIN payment_transactions t ON t.id = o.transaction_id
            WHERE o.id = $1 AND o.buyer_id = $2
            """,
            order_id, buyer_id
        )

        if not order:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Order not found"
            )

        order_dict = dict(order)
        order_dict.pop("shipping_details", None)
        order_dict["items"] = await _order_items(conn, order_id)
        order_dict["tracking"] = tracking_steps(OrderStatus(order_dict["status"]))

        return order_dict
    except Exception as e:
        logger.error(f"Error fetching order {order_id}: {e}")
        if isinstance(e, HTTPException):
            raise
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch order"
        )
