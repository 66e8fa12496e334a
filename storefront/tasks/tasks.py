from .celery_app import celery_app
import asyncio
import asyncpg
import logging
from storefront.core.config import settings
from storefront.core.database import log_activity
from storefront.core.utils import create_notification, fail_stale_transactions
from storefront.models.notification import CheckoutSummary

logger = logging.getLogger(__name__)

async def record_checkout_summary(summary: CheckoutSummary) -> None:
    info = summary.order_info
    message = f"Your order of {info.currency} {info.amount:.2f} has been confirmed."
    conn = await asyncpg.connect(settings.DATABASE_URL)
    try:
        order_id = int(info.order_id) if info.order_id.isdigit() else None
        await create_notification(conn, summary.buyer_id, message, order_id)
        await log_activity(
            conn,
            summary.buyer_id,
            "checkout_summary_delivered",
            "orders",
            info.order_id,
            {
                "session_id": summary.session_id,
                "card_brand": summary.payment.brand,
                "card_last_four": summary.payment.last_four,
            },
        )
    finally:
        await conn.close()

@celery_app.task
def deliver_checkout_summary_task(summary: dict) -> None:
    asyncio.run(record_checkout_summary(CheckoutSummary.model_validate(summary)))

@celery_app.task
def fail_stale_transactions_task(minutes: int = settings.STALE_TRANSACTION_MINUTES) -> int:
    return asyncio.run(fail_stale_transactions(minutes))
