import asyncio
import pytest
import os
import sys
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))
from storefront.core.clock import ManualClock
from storefront.models.checkout import (
    CardSubmission,
    CheckoutSession,
    CheckoutStep,
    LineItem,
    PaymentSettings,
    ShippingDetails,
)
from storefront.models.otp import OTPStatus
from storefront.models.order import OrderReceipt
from storefront.services.errors import (
    CheckoutBusyError,
    StepError,
    SubmissionError,
    ValidationError,
)
from storefront.services.orchestrator import CheckoutOrchestrator
from storefront.services.order_submitter import OrderSubmitter


SHIPPING = {
    "full_name": "Jane Doe",
    "phone_number": "+15551234567",
    "email": "jane@example.com",
    "street_address": "1 Market Street",
    "city": "Springfield",
    "state_province": "IL",
    "postal_code": "62701",
    "country": "US",
}

CARD = CardSubmission(
    cardholder_name="Jane Doe",
    card_number="4111111111111234",
    expiry_month="09",
    expiry_year="28",
    cvv="123",
)


class DummySubmitter:
    def __init__(self, fail_times=0):
        self.fail_times = fail_times
        self.calls = []

    async def submit(self, session):
        self.calls.append(session.transaction_id)
        if session.order is not None:
            return session.order
        if len(self.calls) <= self.fail_times:
            raise SubmissionError("We could not place your order. Please try again.", transaction_id="tx-1")
        return OrderReceipt(order_id="42", transaction_id="tx-1", total=session.total, currency=session.currency)


class DummySink:
    def __init__(self, result=True, error=None):
        self.result = result
        self.error = error
        self.summaries = []

    async def deliver(self, summary):
        self.summaries.append(summary)
        if self.error:
            raise self.error
        return self.result


class CardRecordingStore:
    """Keeps one transaction per session and refreshes its card until confirmed."""

    def __init__(self, failing_orders=1):
        self.failing_orders = failing_orders
        self.transactions = {}
        self.by_session = {}
        self.orders = {}

    async def create_pending_transaction(self, session):
        tx_id = self.by_session.setdefault(session.id, f"tx-{len(self.by_session) + 1}")
        record = self.transactions.setdefault(tx_id, {"status": "pending"})
        if record["status"] != "confirmed":
            record.update(last_four=session.payment.last_four, status="pending")
        return tx_id

    async def create_order(self, session, transaction_id):
        if self.failing_orders > 0:
            self.failing_orders -= 1
            raise RuntimeError("database unavailable")
        return self.orders.setdefault(transaction_id, "77")

    async def confirm_transaction(self, transaction_id):
        self.transactions[transaction_id]["status"] = "confirmed"


class RejectingVerifier:
    async def verify(self, candidate):
        return False


class GatedVerifier:
    def __init__(self):
        self.release = asyncio.Event()
        self.entered = asyncio.Event()

    async def verify(self, candidate):
        self.entered.set()
        await self.release.wait()
        return True


def make_orchestrator(verifier=None, submitter=None, sink=None, settings=None, validator=None):
    clock = ManualClock()
    session = CheckoutSession(
        id="chk-1",
        buyer_id="buyer-1",
        items=[LineItem(product_id="p1", title="Widget", price=6.0, quantity=2)],
        total=12.0,
    )
    orchestrator = CheckoutOrchestrator(
        session=session,
        payment_settings=settings or PaymentSettings(),
        clock=clock,
        scheduler=clock,
        submitter=submitter or DummySubmitter(),
        notifier=sink or DummySink(),
        verifier=verifier,
        shipping_validator=validator,
    )
    return orchestrator, clock


async def reach_otp(orchestrator):
    await orchestrator.submit_shipping(SHIPPING)
    return await orchestrator.submit_payment(CARD)


async def reach_review(orchestrator):
    await reach_otp(orchestrator)
    return await orchestrator.verify_otp("123456")


@pytest.mark.asyncio
async def test_full_checkout_flow():
    sink = DummySink()
    orchestrator, clock = make_orchestrator(sink=sink)

    view = await orchestrator.submit_shipping(SHIPPING)
    assert view.step == CheckoutStep.PAYMENT

    view = await orchestrator.submit_payment(CARD)
    assert view.step == CheckoutStep.OTP
    assert view.payment.masked_number == "**** **** **** 1234"
    assert view.otp.status == OTPStatus.PENDING
    assert view.otp.remaining_seconds == 60
    assert clock.active_subscriptions == 1

    view = await orchestrator.verify_otp("123456")
    assert view.step == CheckoutStep.REVIEW
    assert view.can_confirm is True
    assert clock.active_subscriptions == 0

    view = await orchestrator.confirm()
    assert view.step == CheckoutStep.CONFIRMATION
    assert view.order.order_id == "42"
    await asyncio.sleep(0)
    assert len(sink.summaries) == 1
    summary = sink.summaries[0]
    assert summary.payment.last_four == "1234"
    assert summary.order_info.amount == 12.0
    assert summary.order_info.quantity == 2


@pytest.mark.asyncio
async def test_invalid_shipping_keeps_step():
    orchestrator, _ = make_orchestrator()
    with pytest.raises(ValidationError) as exc:
        await orchestrator.submit_shipping({**SHIPPING, "email": "not-an-email"})
    assert "email" in exc.value.fields
    assert orchestrator.view().step == CheckoutStep.SHIPPING


@pytest.mark.asyncio
async def test_shipping_validator_collaborator():
    async def no_po_boxes(details):
        return ["PO boxes are not supported"] if "PO Box" in details.street_address else []

    orchestrator, _ = make_orchestrator(validator=no_po_boxes)
    with pytest.raises(ValidationError):
        await orchestrator.submit_shipping({**SHIPPING, "street_address": "PO Box 12"})
    view = await orchestrator.submit_shipping(SHIPPING)
    assert view.step == CheckoutStep.PAYMENT


@pytest.mark.asyncio
async def test_short_card_number_stays_on_payment():
    orchestrator, clock = make_orchestrator()
    await orchestrator.submit_shipping(SHIPPING)
    with pytest.raises(ValidationError):
        await orchestrator.submit_payment(CARD.model_copy(update={"card_number": "4111"}))
    assert orchestrator.view().step == CheckoutStep.PAYMENT
    assert clock.active_subscriptions == 0


@pytest.mark.asyncio
async def test_actions_outside_their_step_are_refused():
    orchestrator, _ = make_orchestrator()
    with pytest.raises(StepError):
        await orchestrator.submit_payment(CARD)
    with pytest.raises(StepError):
        await orchestrator.verify_otp("123456")
    with pytest.raises(StepError):
        await orchestrator.confirm()
    with pytest.raises(StepError):
        await orchestrator.go_back()


@pytest.mark.asyncio
async def test_going_back_from_otp_cancels_ticks():
    orchestrator, clock = make_orchestrator()
    await reach_otp(orchestrator)
    assert clock.active_subscriptions == 1

    view = await orchestrator.go_back()
    assert view.step == CheckoutStep.PAYMENT
    assert view.otp is None
    assert clock.active_subscriptions == 0

    view = await orchestrator.go_back()
    assert view.step == CheckoutStep.SHIPPING
    assert view.shipping.full_name == "Jane Doe"


@pytest.mark.asyncio
async def test_edit_from_review_keeps_data_and_requires_new_verification():
    orchestrator, clock = make_orchestrator()
    await reach_review(orchestrator)

    view = await orchestrator.edit(CheckoutStep.PAYMENT)
    assert view.step == CheckoutStep.PAYMENT
    assert view.payment.last_four == "1234"
    assert view.can_confirm is False

    view = await orchestrator.submit_payment(CARD)
    assert view.step == CheckoutStep.OTP
    assert view.otp.attempts == 0
    assert clock.active_subscriptions == 1


@pytest.mark.asyncio
async def test_edit_only_targets_shipping_or_payment():
    orchestrator, _ = make_orchestrator()
    await reach_review(orchestrator)
    with pytest.raises(StepError):
        await orchestrator.edit(CheckoutStep.CONFIRMATION)


@pytest.mark.asyncio
async def test_expiry_is_reported_in_view():
    orchestrator, clock = make_orchestrator()
    await reach_otp(orchestrator)
    clock.advance(60)

    view = orchestrator.view()
    assert view.otp.status == OTPStatus.EXPIRED
    assert view.error.code == "otp_expired"
    assert clock.active_subscriptions == 0

    view = await orchestrator.verify_otp("123456")
    assert view.step == CheckoutStep.OTP
    assert view.error.code == "otp_expired"

    view = await orchestrator.resend_otp()
    assert view.otp.status == OTPStatus.PENDING
    assert view.otp.remaining_seconds == 60
    assert view.error is None
    assert clock.active_subscriptions == 1


@pytest.mark.asyncio
async def test_blocked_session_stays_blocked_after_going_back():
    orchestrator, clock = make_orchestrator(verifier=RejectingVerifier())
    await reach_otp(orchestrator)

    for code in ("111111", "222222"):
        view = await orchestrator.verify_otp(code)
        assert view.error.code == "otp_rejected"
    view = await orchestrator.verify_otp("333333")
    assert view.blocked is True
    assert view.otp.status == OTPStatus.BLOCKED
    assert view.otp.can_verify is False
    assert view.error.code == "otp_blocked"
    assert clock.active_subscriptions == 0

    await orchestrator.go_back()
    view = await orchestrator.submit_payment(CARD)
    assert view.step == CheckoutStep.PAYMENT
    assert view.blocked is True
    assert view.otp is None
    assert clock.active_subscriptions == 0


@pytest.mark.asyncio
async def test_pasted_code_is_normalized():
    orchestrator, _ = make_orchestrator()
    await reach_otp(orchestrator)
    view = await orchestrator.verify_otp("Your code: 123-456", pasted=True)
    assert view.step == CheckoutStep.REVIEW


@pytest.mark.asyncio
async def test_reentrant_verify_is_busy_and_resend_waits():
    verifier = GatedVerifier()
    orchestrator, _ = make_orchestrator(verifier=verifier)
    await reach_otp(orchestrator)

    verify_task = asyncio.create_task(orchestrator.verify_otp("123456"))
    await verifier.entered.wait()

    with pytest.raises(CheckoutBusyError):
        await orchestrator.verify_otp("123456")

    resend_task = asyncio.create_task(orchestrator.resend_otp())
    await asyncio.sleep(0)
    assert not resend_task.done()

    verifier.release.set()
    view = await verify_task
    assert view.step == CheckoutStep.REVIEW

    view = await resend_task
    assert view.step == CheckoutStep.REVIEW
    assert view.otp.status == OTPStatus.VERIFIED


@pytest.mark.asyncio
async def test_confirmation_failure_stays_on_review_and_retries():
    submitter = DummySubmitter(fail_times=1)
    orchestrator, _ = make_orchestrator(submitter=submitter)
    await reach_review(orchestrator)

    with pytest.raises(SubmissionError):
        await orchestrator.confirm()
    view = orchestrator.view()
    assert view.step == CheckoutStep.REVIEW
    assert view.error.retryable is True
    assert orchestrator.session.transaction_id == "tx-1"

    view = await orchestrator.confirm()
    assert view.step == CheckoutStep.CONFIRMATION
    assert submitter.calls == [None, "tx-1"]


@pytest.mark.asyncio
async def test_confirm_twice_returns_same_order():
    submitter = DummySubmitter()
    orchestrator, _ = make_orchestrator(submitter=submitter)
    await reach_review(orchestrator)
    first = await orchestrator.confirm()
    second = await orchestrator.confirm()
    assert first.order.order_id == second.order.order_id
    assert len(submitter.calls) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("sink", [DummySink(result=False), DummySink(error=RuntimeError("sink down"))])
async def test_notification_failure_does_not_affect_confirmation(sink):
    orchestrator, _ = make_orchestrator(sink=sink)
    await reach_review(orchestrator)
    view = await orchestrator.confirm()
    await asyncio.sleep(0)
    assert view.step == CheckoutStep.CONFIRMATION
    assert orchestrator.view().error is None


@pytest.mark.asyncio
async def test_never_confirms_without_verification():
    orchestrator, _ = make_orchestrator(verifier=RejectingVerifier())
    await reach_otp(orchestrator)
    await orchestrator.verify_otp("111111")
    with pytest.raises(StepError):
        await orchestrator.confirm()
    assert orchestrator.view().order is None


@pytest.mark.asyncio
async def test_disabled_verification_goes_straight_to_review():
    orchestrator, clock = make_orchestrator(settings=PaymentSettings(otp_enabled=False))
    view = await reach_otp(orchestrator)
    assert view.step == CheckoutStep.REVIEW
    assert view.verification_waived is True
    assert view.otp is None
    assert view.can_confirm is True
    assert clock.active_subscriptions == 0


@pytest.mark.asyncio
async def test_close_cancels_countdown():
    orchestrator, clock = make_orchestrator()
    await reach_otp(orchestrator)
    orchestrator.close()
    assert clock.active_subscriptions == 0
    with pytest.raises(StepError):
        await orchestrator.verify_otp("123456")


@pytest.mark.asyncio
async def test_custom_code_length_from_settings():
    orchestrator, _ = make_orchestrator(settings=PaymentSettings(code_length=4, max_attempts=5))
    view = await reach_otp(orchestrator)
    assert view.otp.code_length == 4
    assert view.otp.remaining_attempts == 5
    with pytest.raises(ValidationError):
        await orchestrator.verify_otp("123456")
    view = await orchestrator.verify_otp("1234")
    assert view.step == CheckoutStep.REVIEW


@pytest.mark.asyncio
async def test_new_card_after_failed_confirm_reaches_transaction():
    store = CardRecordingStore(failing_orders=1)
    orchestrator, _ = make_orchestrator(submitter=OrderSubmitter(store))
    await reach_review(orchestrator)

    with pytest.raises(SubmissionError):
        await orchestrator.confirm()
    assert orchestrator.session.transaction_id == "tx-1"
    assert store.transactions["tx-1"]["last_four"] == "1234"

    await orchestrator.edit(CheckoutStep.PAYMENT)
    view = await orchestrator.submit_payment(CARD.model_copy(update={"card_number": "4111111111119999"}))
    assert orchestrator.session.transaction_id is None
    assert view.payment.last_four == "9999"
    await orchestrator.verify_otp("123456")

    view = await orchestrator.confirm()
    assert view.step == CheckoutStep.CONFIRMATION
    assert view.order.transaction_id == "tx-1"
    assert store.transactions["tx-1"] == {"last_four": "9999", "status": "confirmed"}
