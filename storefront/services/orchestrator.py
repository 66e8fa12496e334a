# storefront/services/orchestrator.py
"""
Outer checkout state machine: shipping -> payment -> otp -> review -> confirmation.

Each orchestrator owns one CheckoutSession. Mutating actions are serialized
through a per-session asyncio.Lock; verify and confirm additionally refuse
re-entrant calls while one is in flight. Blocked and expired challenges are
reported through the view, not raised.
"""
import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Union

import pydantic

from storefront.core.clock import Clock, Scheduler, Subscription
from storefront.models.checkout import (
    CardSubmission,
    CheckoutErrorInfo,
    CheckoutSession,
    CheckoutSessionView,
    CheckoutStep,
    PaymentSettings,
    ShippingDetails,
)
from storefront.services.errors import (
    BlockedError,
    CheckoutBusyError,
    CheckoutError,
    ExpiredChallengeError,
    StepError,
    SubmissionError,
    ValidationError,
)
from storefront.services.notifications import NotificationSink, build_checkout_summary, dispatch_summary
from storefront.services.order_submitter import OrderSubmitter
from storefront.services.otp_challenge import OTPChallenge, Verifier, normalize_pasted_code
from storefront.services import payment_capture

logger = logging.getLogger(__name__)

ShippingValidator = Callable[[ShippingDetails], Awaitable[List[str]]]

EXPIRED_MESSAGE = "OTP has expired. Please request a new code."
BLOCKED_MESSAGE = "Too many failed attempts. Please contact support."


def _error_info(error: CheckoutError) -> CheckoutErrorInfo:
    return CheckoutErrorInfo(code=error.code, message=error.message, retryable=error.retryable)


class CheckoutOrchestrator:
    def __init__(
        self,
        session: CheckoutSession,
        payment_settings: PaymentSettings,
        clock: Clock,
        scheduler: Scheduler,
        submitter: OrderSubmitter,
        notifier: NotificationSink,
        verifier: Optional[Verifier] = None,
        shipping_validator: Optional[ShippingValidator] = None,
        tick_interval: float = 1.0,
    ):
        self.session = session
        self.payment_settings = payment_settings
        self._clock = clock
        self._scheduler = scheduler
        self._submitter = submitter
        self._notifier = notifier
        self._verifier = verifier
        self._shipping_validator = shipping_validator
        self._tick_interval = tick_interval

        self._challenge: Optional[OTPChallenge] = None
        self._subscription: Optional[Subscription] = None
        self._error: Optional[CheckoutErrorInfo] = None
        self._lock = asyncio.Lock()
        self._verifying = False
        self._confirming = False

    @property
    def challenge(self) -> Optional[OTPChallenge]:
        return self._challenge

    @property
    def ticking(self) -> bool:
        return self._subscription is not None

    # helpers

    def _ensure_open(self) -> None:
        if self.session.closed:
            raise StepError("This checkout session has been closed")

    def _require_step(self, *steps: CheckoutStep) -> None:
        if self.session.step not in steps:
            allowed = ", ".join(s.value for s in steps)
            raise StepError(f"Action not available at step {self.session.step.value} (expected {allowed})")

    def _subscribe_ticks(self) -> None:
        self._cancel_ticks()
        self._subscription = self._scheduler.every(self._tick_interval, self._on_tick)

    def _cancel_ticks(self) -> None:
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None

    def _discard_challenge(self) -> None:
        self._cancel_ticks()
        self._challenge = None

    def _mark_expired(self) -> None:
        self._cancel_ticks()
        self._error = _error_info(ExpiredChallengeError(EXPIRED_MESSAGE))

    def _mark_blocked(self, message: str = BLOCKED_MESSAGE) -> None:
        self._cancel_ticks()
        if not self.session.blocked:
            logger.warning(f"Checkout session {self.session.id} blocked after failed verification")
        self.session.blocked = True
        self._error = _error_info(BlockedError(message))

    def _on_tick(self) -> None:
        if self._challenge is not None and self._challenge.tick():
            logger.info(f"OTP expired for checkout session {self.session.id}")
            self._mark_expired()

    def _refresh_expiry(self) -> None:
        if self.session.step == CheckoutStep.OTP and self._challenge is not None:
            if self._challenge.tick():
                self._mark_expired()

    # actions

    async def submit_shipping(self, data: Union[ShippingDetails, dict]) -> CheckoutSessionView:
        async with self._lock:
            self._ensure_open()
            self._require_step(CheckoutStep.SHIPPING)

            if isinstance(data, ShippingDetails):
                details = data
            else:
                try:
                    details = ShippingDetails.model_validate(data)
                except pydantic.ValidationError as e:
                    fields = [".".join(str(p) for p in err["loc"]) for err in e.errors()]
                    raise ValidationError("Please fill in all required shipping fields", fields=fields)

            if self._shipping_validator is not None:
                problems = await self._shipping_validator(details)
                if problems:
                    raise ValidationError("; ".join(problems))

            self.session.shipping = details
            self.session.step = CheckoutStep.PAYMENT
            self._error = None
            logger.info(f"Shipping accepted for checkout session {self.session.id}")
            return self.view()

    async def submit_payment(self, card: CardSubmission) -> CheckoutSessionView:
        async with self._lock:
            self._ensure_open()
            self._require_step(CheckoutStep.PAYMENT)

            if self.session.blocked:
                self._error = _error_info(BlockedError(BLOCKED_MESSAGE))
                return self.view()

            descriptor = payment_capture.capture(card)
            self.session.payment = descriptor
            self.session.verified_payment = None
            # A new card needs its own transaction details on the next confirm
            self.session.transaction_id = None
            self._discard_challenge()
            self._error = None

            if not self.payment_settings.verification_required:
                self.session.verified_payment = descriptor
                self.session.verification_waived = True
                self.session.step = CheckoutStep.REVIEW
                logger.info(
                    f"Card verification disabled, session {self.session.id} moves to review "
                    f"({descriptor.brand} ending {descriptor.last_four})"
                )
                return self.view()

            self.session.verification_waived = False
            challenge = OTPChallenge(self.payment_settings.challenge_config(), self._clock, self._verifier)
            challenge.start()
            self._challenge = challenge
            self._subscribe_ticks()
            self.session.step = CheckoutStep.OTP
            logger.info(
                f"Payment captured for session {self.session.id} "
                f"({descriptor.brand} ending {descriptor.last_four}), awaiting OTP"
            )
            return self.view()

    async def verify_otp(self, code: str, pasted: bool = False) -> CheckoutSessionView:
        if self._verifying:
            raise CheckoutBusyError("A verification is already in progress")
        self._verifying = True
        try:
            async with self._lock:
                self._ensure_open()
                self._require_step(CheckoutStep.OTP)
                challenge = self._challenge

                if pasted:
                    code = "".join(normalize_pasted_code(code, challenge.config.code_length))

                try:
                    result = await challenge.submit(code)
                except BlockedError as e:
                    self._mark_blocked(e.message)
                    return self.view()
                except ExpiredChallengeError:
                    self._mark_expired()
                    return self.view()

                if challenge.verified:
                    self._cancel_ticks()
                    self.session.verified_payment = self.session.payment
                    self.session.step = CheckoutStep.REVIEW
                    self._error = None
                    logger.info(f"Payment verified for checkout session {self.session.id}")
                elif challenge.blocked:
                    self._mark_blocked(result.message or BLOCKED_MESSAGE)
                else:
                    self._error = CheckoutErrorInfo(code="otp_rejected", message=result.message, retryable=True)
                return self.view()
        finally:
            self._verifying = False

    async def resend_otp(self) -> CheckoutSessionView:
        async with self._lock:
            self._ensure_open()
            # A verify that finished while we waited for the lock wins
            if self._challenge is not None and self._challenge.verified:
                return self.view()
            self._require_step(CheckoutStep.OTP)

            try:
                resent = self._challenge.resend()
            except BlockedError as e:
                self._mark_blocked(e.message)
                return self.view()

            if resent:
                self._error = None
                self._subscribe_ticks()
            return self.view()

    async def go_back(self) -> CheckoutSessionView:
        async with self._lock:
            self._ensure_open()
            step = self.session.step
            if step == CheckoutStep.PAYMENT:
                self.session.step = CheckoutStep.SHIPPING
            elif step in (CheckoutStep.OTP, CheckoutStep.REVIEW):
                self._discard_challenge()
                self.session.step = CheckoutStep.PAYMENT
            else:
                raise StepError(f"Cannot go back from {step.value}")
            self._error = None
            return self.view()

    async def edit(self, step: CheckoutStep) -> CheckoutSessionView:
        async with self._lock:
            self._ensure_open()
            self._require_step(CheckoutStep.REVIEW)
            if step not in (CheckoutStep.SHIPPING, CheckoutStep.PAYMENT):
                raise StepError(f"Cannot edit the {step.value} step")
            self._discard_challenge()
            self.session.step = step
            self._error = None
            return self.view()

    async def confirm(self) -> CheckoutSessionView:
        if self._confirming:
            raise CheckoutBusyError("The order is already being submitted")
        self._confirming = True
        try:
            async with self._lock:
                self._ensure_open()
                if self.session.order is not None:
                    return self.view()
                self._require_step(CheckoutStep.REVIEW)

                try:
                    receipt = await self._submitter.submit(self.session)
                except SubmissionError as e:
                    if e.transaction_id is not None:
                        self.session.transaction_id = e.transaction_id
                    self._error = _error_info(e)
                    raise

                self.session.transaction_id = receipt.transaction_id
                self.session.order = receipt
                self.session.step = CheckoutStep.CONFIRMATION
                self._error = None
                self._cancel_ticks()

                dispatch_summary(self._notifier, build_checkout_summary(self.session))
                return self.view()
        finally:
            self._confirming = False

    def close(self) -> None:
        self._cancel_ticks()
        if not self.session.closed:
            self.session.closed = True
            logger.info(f"Checkout session {self.session.id} closed at step {self.session.step.value}")

    def view(self) -> CheckoutSessionView:
        self._refresh_expiry()
        session = self.session

        error = self._error
        if error is None and session.blocked:
            error = _error_info(BlockedError(BLOCKED_MESSAGE))

        return CheckoutSessionView(
            id=session.id,
            step=session.step,
            shipping=session.shipping,
            payment=session.payment,
            items=session.items,
            total=session.total,
            currency=session.currency,
            otp=self._challenge.view() if self._challenge is not None else None,
            order=session.order,
            blocked=session.blocked,
            verification_waived=session.verification_waived,
            can_confirm=(
                session.step == CheckoutStep.REVIEW
                and session.payment_verified
                and session.order is None
                and not self._confirming
            ),
            error=error,
        )
