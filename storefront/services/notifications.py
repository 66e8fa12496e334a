# storefront/services/notifications.py
import asyncio
import logging
from typing import Protocol

from storefront.core.utils import spawn_detached
from storefront.models.checkout import CheckoutSession
from storefront.models.notification import CheckoutSummary, OrderInfo
from storefront.services.errors import NotificationDeliveryError

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    async def deliver(self, summary: CheckoutSummary) -> bool: ...


def build_checkout_summary(session: CheckoutSession) -> CheckoutSummary:
    if session.order is None or session.shipping is None or session.payment is None:
        raise ValueError(f"Session {session.id} has no confirmed order to summarize")

    items = session.items
    product_name = items[0].title if len(items) == 1 else f"{len(items)} items"
    return CheckoutSummary(
        session_id=session.id,
        buyer_id=session.buyer_id,
        shipping=session.shipping,
        payment=session.payment,
        order_info=OrderInfo(
            order_id=session.order.order_id,
            product_name=product_name,
            quantity=sum(item.quantity for item in items),
            amount=session.order.total,
            currency=session.order.currency,
        ),
    )


class LoggingNotificationSink:
    async def deliver(self, summary: CheckoutSummary) -> bool:
        payment = summary.payment
        info = summary.order_info
        logger.info(
            f"Order {info.order_id} for buyer {summary.buyer_id}: "
            f"{info.currency} {info.amount:.2f}, {payment.brand} ending {payment.last_four}"
        )
        return True


class CeleryNotificationSink:
    """Queues the summary for the worker, which records the buyer's in-app notification."""

    async def deliver(self, summary: CheckoutSummary) -> bool:
        from storefront.tasks.tasks import deliver_checkout_summary_task

        await asyncio.to_thread(
            deliver_checkout_summary_task.delay, summary.model_dump(mode="json")
        )
        return True


async def _deliver(sink: NotificationSink, summary: CheckoutSummary) -> bool:
    order_id = summary.order_info.order_id
    try:
        delivered = await sink.deliver(summary)
    except Exception as e:
        error = NotificationDeliveryError(f"Notification for order {order_id} failed: {e}")
        logger.error(error.message)
        return False

    if not delivered:
        error = NotificationDeliveryError(f"Notification for order {order_id} was not accepted")
        logger.error(error.message)
        return False

    logger.info(f"Notification for order {order_id} delivered")
    return True


def dispatch_summary(sink: NotificationSink, summary: CheckoutSummary) -> asyncio.Task:
    """Hand the summary to the sink without waiting; outcomes are only logged."""
    return spawn_detached(_deliver(sink, summary))
