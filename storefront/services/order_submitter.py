# storefront/services/order_submitter.py
import json
import uuid
import logging
from decimal import Decimal
from typing import Optional, Protocol

import asyncpg

from storefront.core.config import settings
from storefront.core.database import log_activity
from storefront.models.checkout import CheckoutSession, CheckoutStep
from storefront.models.order import OrderReceipt, OrderStatus, TransactionStatus
from storefront.services.errors import (
    StepError,
    SubmissionError,
    VerificationRequiredError,
)

logger = logging.getLogger(__name__)


class OrderStore(Protocol):
    """Order/transaction collaborator. Every call must be safe to repeat."""

    async def create_pending_transaction(self, session: CheckoutSession) -> str: ...

    async def create_order(self, session: CheckoutSession, transaction_id: str) -> str: ...

    async def confirm_transaction(self, transaction_id: str) -> None: ...


def _money(value: float) -> Decimal:
    return Decimal(str(round(value, 2)))


class PostgresOrderStore:
    def __init__(self, dsn: Optional[str] = None):
        self._dsn = dsn or settings.DATABASE_URL

    async def _connect(self):
        return await asyncpg.connect(self._dsn)

    async def create_pending_transaction(self, session: CheckoutSession) -> str:
        conn = await self._connect()
        try:
            payment = session.payment
            # Keyed by session id so a retried call returns the same transaction
            transaction_id = await conn.fetchval(
                """
                INSERT INTO payment_transactions (
                    id, session_id, buyer_id, amount, currency,
                    card_last_four, card_brand, status, metadata
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9::jsonb)
                ON CONFLICT (session_id) DO UPDATE SET
                    amount = EXCLUDED.amount,
                    currency = EXCLUDED.currency,
                    card_last_four = EXCLUDED.card_last_four,
                    card_brand = EXCLUDED.card_brand,
                    status = EXCLUDED.status,
                    metadata = EXCLUDED.metadata,
                    updated_at = CURRENT_TIMESTAMP
                WHERE payment_transactions.status <> 'confirmed'
                RETURNING id
                """,
                str(uuid.uuid4()),
                session.id,
                session.buyer_id,
                _money(session.total),
                session.currency,
                payment.last_four if payment else None,
                payment.brand if payment else None,
                TransactionStatus.PENDING,
                json.dumps({"item_count": len(session.items)}),
            )
            if transaction_id is None:
                raise RuntimeError(f"Transaction for session {session.id} is already confirmed")
            await log_activity(
                conn,
                session.buyer_id,
                "transaction_created",
                "payment_transactions",
                transaction_id,
                {"session_id": session.id, "amount": session.total},
            )
            return transaction_id
        finally:
            await conn.close()

    async def create_order(self, session: CheckoutSession, transaction_id: str) -> str:
        conn = await self._connect()
        try:
            async with conn.transaction():
                existing = await conn.fetchrow(
                    "SELECT id, status FROM orders WHERE transaction_id = $1", transaction_id
                )
                if existing is not None and existing["status"] == OrderStatus.CONFIRMED:
                    return str(existing["id"])

                shipping_address = session.shipping.formatted_address() if session.shipping else None
                shipping_details = session.shipping.model_dump_json() if session.shipping else None

                if existing is not None:
                    # Unconfirmed order from an earlier attempt; bring it up to date
                    order_id = existing["id"]
                    await conn.execute(
                        """
                        UPDATE orders
                        SET total_amount = $1, currency = $2, shipping_address = $3,
                            shipping_details = $4::jsonb, status = $5,
                            updated_at = CURRENT_TIMESTAMP
                        WHERE id = $6
                        """,
                        _money(session.total),
                        session.currency,
                        shipping_address,
                        shipping_details,
                        OrderStatus.PENDING,
                        order_id,
                    )
                    await conn.execute("DELETE FROM order_items WHERE order_id = $1", order_id)
                else:
                    order_id = await conn.fetchval(
                        """
                        INSERT INTO orders (
                            buyer_id, transaction_id, status, total_amount, currency,
                            shipping_address, shipping_details
                        )
                        VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb)
                        RETURNING id
                        """,
                        session.buyer_id,
                        transaction_id,
                        OrderStatus.PENDING,
                        _money(session.total),
                        session.currency,
                        shipping_address,
                        shipping_details,
                    )

                for item in session.items:
                    await conn.execute(
                        """
                        INSERT INTO order_items (
                            order_id, product_id, seller_id, title,
                            quantity, unit_price, total_price
                        )
                        VALUES ($1, $2, $3, $4, $5, $6, $7)
                        """,
                        order_id,
                        item.product_id,
                        item.seller_id,
                        item.title,
                        item.quantity,
                        _money(item.price),
                        _money(item.subtotal),
                    )

                await conn.execute(
                    """
                    UPDATE payment_transactions
                    SET order_id = $1, updated_at = CURRENT_TIMESTAMP
                    WHERE id = $2
                    """,
                    order_id,
                    transaction_id,
                )

                await log_activity(
                    conn,
                    session.buyer_id,
                    "order_created",
                    "orders",
                    order_id,
                    {"transaction_id": transaction_id},
                )
            return str(order_id)
        finally:
            await conn.close()

    async def confirm_transaction(self, transaction_id: str) -> None:
        conn = await self._connect()
        try:
            async with conn.transaction():
                await conn.execute(
                    """
                    UPDATE payment_transactions
                    SET status = $1, updated_at = CURRENT_TIMESTAMP
                    WHERE id = $2
                    """,
                    TransactionStatus.CONFIRMED,
                    transaction_id,
                )
                await conn.execute(
                    """
                    UPDATE orders
                    SET status = $1, updated_at = CURRENT_TIMESTAMP
                    WHERE transaction_id = $2
                    """,
                    OrderStatus.CONFIRMED,
                    transaction_id,
                )
        finally:
            await conn.close()


class OrderSubmitter:
    def __init__(self, store: OrderStore):
        self.store = store

    async def submit(self, session: CheckoutSession) -> OrderReceipt:
        # A confirmed session keeps answering with the order it already has
        if session.order is not None:
            return session.order

        if session.step != CheckoutStep.REVIEW:
            raise StepError(f"Orders can only be placed from review, not {session.step.value}")
        if not session.payment_verified:
            raise VerificationRequiredError("Payment must be verified before the order is placed")

        transaction_id = session.transaction_id
        try:
            if transaction_id is None:
                transaction_id = await self.store.create_pending_transaction(session)
            order_id = await self.store.create_order(session, transaction_id)
            await self.store.confirm_transaction(transaction_id)
        except Exception as e:
            logger.error(f"Order submission failed for session {session.id}: {e}")
            raise SubmissionError(
                "We could not place your order. Please try again.",
                transaction_id=transaction_id,
            ) from e

        logger.info(f"Order {order_id} confirmed for session {session.id} (transaction {transaction_id})")
        return OrderReceipt(
            order_id=str(order_id),
            transaction_id=str(transaction_id),
            total=session.total,
            currency=session.currency,
            status=OrderStatus.CONFIRMED,
        )
