# storefront/services/sessions.py
import uuid
import logging
from typing import Dict, List, Optional

from storefront.core.clock import AsyncioTickScheduler, SystemClock
from storefront.core.config import settings
from storefront.models.checkout import CheckoutSession, LineItem, PaymentSettings
from storefront.services.errors import ValidationError
from storefront.services.notifications import CeleryNotificationSink, LoggingNotificationSink, NotificationSink
from storefront.services.orchestrator import CheckoutOrchestrator
from storefront.services.order_submitter import OrderSubmitter, PostgresOrderStore
from storefront.services.otp_challenge import WellFormedCodeVerifier

logger = logging.getLogger(__name__)


def notification_sink_from_settings() -> NotificationSink:
    if settings.NOTIFICATION_SINK == "celery":
        return CeleryNotificationSink()
    return LoggingNotificationSink()


def build_orchestrator(session: CheckoutSession, payment_settings: PaymentSettings) -> CheckoutOrchestrator:
    return CheckoutOrchestrator(
        session=session,
        payment_settings=payment_settings,
        clock=SystemClock(),
        scheduler=AsyncioTickScheduler(),
        submitter=OrderSubmitter(PostgresOrderStore(settings.DATABASE_URL)),
        notifier=notification_sink_from_settings(),
        verifier=WellFormedCodeVerifier(),
        tick_interval=settings.OTP_TICK_INTERVAL_SECONDS,
    )


class CheckoutRegistry:
    """Live checkout sessions, at most one per buyer."""

    def __init__(self, factory=build_orchestrator):
        self._factory = factory
        self._sessions: Dict[str, CheckoutOrchestrator] = {}
        self._by_buyer: Dict[str, str] = {}

    def start(
        self,
        buyer_id: str,
        items: List[LineItem],
        payment_settings: PaymentSettings,
        currency: Optional[str] = None,
        from_cart: bool = False,
    ) -> CheckoutOrchestrator:
        if not items:
            raise ValidationError("There is nothing to check out", fields=["items"])

        previous = self._by_buyer.get(buyer_id)
        if previous is not None:
            self.discard(previous)

        session = CheckoutSession(
            id=f"chk-{uuid.uuid4().hex}",
            buyer_id=buyer_id,
            items=list(items),
            total=round(sum(item.subtotal for item in items), 2),
            currency=currency or settings.DEFAULT_CURRENCY,
            from_cart=from_cart,
        )
        orchestrator = self._factory(session, payment_settings)
        self._sessions[session.id] = orchestrator
        self._by_buyer[buyer_id] = session.id
        logger.info(f"Checkout session {session.id} started for buyer {buyer_id} ({len(items)} items)")
        return orchestrator

    def get(self, session_id: str, buyer_id: str) -> Optional[CheckoutOrchestrator]:
        orchestrator = self._sessions.get(session_id)
        if orchestrator is None or orchestrator.session.buyer_id != buyer_id:
            return None
        return orchestrator

    def discard(self, session_id: str) -> bool:
        orchestrator = self._sessions.pop(session_id, None)
        if orchestrator is None:
            return False
        orchestrator.close()
        buyer_id = orchestrator.session.buyer_id
        if self._by_buyer.get(buyer_id) == session_id:
            del self._by_buyer[buyer_id]
        return True

    def session_ids(self) -> List[str]:
        return list(self._sessions)

    def __len__(self) -> int:
        return len(self._sessions)


registry = CheckoutRegistry()
