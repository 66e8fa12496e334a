# storefront/services/otp_challenge.py
"""
One-time-code challenge used to gate progression past the payment step.

All state changes go through `reduce`, a pure function of
(config, state, event). `OTPChallenge` wraps it with an injected clock and
verifier and turns terminal outcomes into the checkout error taxonomy.
"""
import math
import re
import logging
from typing import List, Optional, Protocol

from storefront.core.clock import Clock
from storefront.models.otp import (
    Abort,
    Blocked,
    ChallengeConfig,
    ChallengeEvent,
    ChallengeState,
    Decide,
    Expired,
    OTPStatus,
    OTPView,
    Outcome,
    Pending,
    Resend,
    Start,
    Submit,
    Tick,
    Transition,
    VerificationResult,
    Verified,
    Verifying,
)
from storefront.services.errors import (
    BlockedError,
    CheckoutBusyError,
    ExpiredChallengeError,
    ValidationError,
)

logger = logging.getLogger(__name__)

_NON_DIGITS = re.compile(r"\D", re.ASCII)


def is_well_formed(code: str, length: int) -> bool:
    return re.fullmatch(r"\d{%d}" % length, code or "", re.ASCII) is not None


def normalize_pasted_code(raw: str, length: int) -> List[str]:
    """Spread pasted text over `length` input slots, digits only, unused slots empty."""
    digits = _NON_DIGITS.sub("", raw or "")[:length]
    return list(digits) + [""] * (length - len(digits))


def remaining_attempts(config: ChallengeConfig, attempts: int) -> int:
    return max(0, config.max_attempts - attempts)


def reduce(config: ChallengeConfig, state: Optional[ChallengeState], event: ChallengeEvent) -> Transition:
    if isinstance(event, Start):
        return Transition(Pending(deadline=event.now + config.expiry_seconds), Outcome.STARTED)

    if state is None:
        raise ValueError("Challenge has not been started")

    if isinstance(event, Tick):
        if isinstance(state, Pending) and event.now >= state.deadline:
            return Transition(Expired(attempts=state.attempts), Outcome.EXPIRED)
        return Transition(state, Outcome.UNCHANGED)

    if isinstance(event, Submit):
        if isinstance(state, Blocked):
            return Transition(state, Outcome.BLOCKED)
        if isinstance(state, Verified):
            return Transition(state, Outcome.ALREADY_VERIFIED)
        if isinstance(state, Verifying):
            return Transition(state, Outcome.BUSY)
        if isinstance(state, Expired):
            return Transition(state, Outcome.EXPIRED)
        # Deadline is wall-clock: a missed tick must not extend the code's life
        if event.now >= state.deadline:
            return Transition(Expired(attempts=state.attempts), Outcome.EXPIRED)
        if not is_well_formed(event.code, config.code_length):
            return Transition(state, Outcome.INVALID)
        return Transition(Verifying(state.deadline, state.attempts, event.code), Outcome.VERIFYING)

    if isinstance(event, Decide):
        if not isinstance(state, Verifying):
            return Transition(state, Outcome.UNCHANGED)
        if event.accepted:
            return Transition(Verified(attempts=state.attempts, verified_at=event.now), Outcome.VERIFIED)
        attempts = state.attempts + 1
        if attempts >= config.max_attempts:
            return Transition(Blocked(attempts=attempts), Outcome.BLOCKED)
        return Transition(Pending(deadline=state.deadline, attempts=attempts), Outcome.REJECTED)

    if isinstance(event, Abort):
        if isinstance(state, Verifying):
            return Transition(Pending(deadline=state.deadline, attempts=state.attempts), Outcome.UNCHANGED)
        return Transition(state, Outcome.UNCHANGED)

    if isinstance(event, Resend):
        if isinstance(state, Blocked):
            return Transition(state, Outcome.BLOCKED)
        if isinstance(state, Verified):
            return Transition(state, Outcome.ALREADY_VERIFIED)
        if isinstance(state, Verifying):
            return Transition(state, Outcome.BUSY)
        return Transition(Pending(deadline=event.now + config.expiry_seconds), Outcome.RESENT)

    raise TypeError(f"Unknown challenge event: {event!r}")


class Verifier(Protocol):
    async def verify(self, candidate: str) -> bool: ...


class WellFormedCodeVerifier:
    """Accepts every candidate that reaches it.

    Shape is enforced by the reducer before a verifier is consulted, so this
    amounts to "any well-formed code passes". Swap in a verifier that compares
    against an issued code once one is delivered to the buyer.
    """

    async def verify(self, candidate: str) -> bool:
        return True


class OTPChallenge:
    def __init__(self, config: ChallengeConfig, clock: Clock, verifier: Optional[Verifier] = None):
        self.config = config
        self._clock = clock
        self._verifier = verifier or WellFormedCodeVerifier()
        self._state: Optional[ChallengeState] = None

    @property
    def state(self) -> Optional[ChallengeState]:
        return self._state

    @property
    def status(self) -> Optional[OTPStatus]:
        return self._state.status if self._state is not None else None

    @property
    def attempts(self) -> int:
        return self._state.attempts if self._state is not None else 0

    @property
    def remaining_attempts(self) -> int:
        return remaining_attempts(self.config, self.attempts)

    @property
    def verified(self) -> bool:
        return isinstance(self._state, Verified)

    @property
    def blocked(self) -> bool:
        return isinstance(self._state, Blocked)

    @property
    def expired(self) -> bool:
        return isinstance(self._state, Expired)

    @property
    def deadline(self) -> Optional[float]:
        if isinstance(self._state, (Pending, Verifying)):
            return self._state.deadline
        return None

    def remaining_seconds(self) -> int:
        deadline = self.deadline
        if deadline is None:
            return 0
        return max(0, math.ceil(deadline - self._clock.now()))

    def _apply(self, event: ChallengeEvent) -> Outcome:
        transition = reduce(self.config, self._state, event)
        self._state = transition.state
        return transition.outcome

    def _result(self, message: Optional[str] = None) -> VerificationResult:
        return VerificationResult(
            status=self.status,
            attempts=self.attempts,
            remaining_attempts=self.remaining_attempts,
            message=message,
        )

    def start(self) -> None:
        self._apply(Start(self._clock.now()))
        logger.info(
            f"OTP challenge started via {self.config.channel}, "
            f"{self.config.code_length} digits, expires in {self.config.expiry_seconds}s"
        )

    def tick(self) -> bool:
        """Apply the current time; True when this tick expired the challenge."""
        outcome = self._apply(Tick(self._clock.now()))
        if outcome is Outcome.EXPIRED:
            logger.info("OTP challenge expired")
            return True
        return False

    async def submit(self, code: str) -> VerificationResult:
        outcome = self._apply(Submit(code, self._clock.now()))
        if outcome is Outcome.BLOCKED:
            raise BlockedError("Too many failed attempts. Please contact support.")
        if outcome is Outcome.EXPIRED:
            raise ExpiredChallengeError("OTP has expired. Please request a new code.")
        if outcome is Outcome.INVALID:
            raise ValidationError(f"Please enter all {self.config.code_length} digits", fields=["code"])
        if outcome is Outcome.BUSY:
            raise CheckoutBusyError("A verification is already in progress")
        if outcome is Outcome.ALREADY_VERIFIED:
            return self._result()

        try:
            accepted = await self._verifier.verify(code)
        except Exception:
            self._apply(Abort())
            raise

        outcome = self._apply(Decide(bool(accepted), self._clock.now()))
        if outcome is Outcome.VERIFIED:
            logger.info(f"OTP verified after {self.attempts} failed attempts")
            return self._result()
        if outcome is Outcome.BLOCKED:
            max_attempts = self.config.max_attempts
            logger.warning(f"OTP challenge blocked after {self.attempts} failed attempts")
            return self._result(f"Too many failed attempts ({max_attempts}/{max_attempts}). Checkout blocked.")
        logger.warning(f"OTP rejected, {self.remaining_attempts} attempts remaining")
        return self._result(f"Invalid OTP. {self.remaining_attempts} attempts remaining.")

    def resend(self) -> bool:
        """Issue a fresh code window. False when the challenge is already verified."""
        outcome = self._apply(Resend(self._clock.now()))
        if outcome is Outcome.BLOCKED:
            raise BlockedError("Too many failed attempts. Please contact support.")
        if outcome is Outcome.BUSY:
            raise CheckoutBusyError("A verification is already in progress")
        if outcome is Outcome.ALREADY_VERIFIED:
            return False
        logger.info(f"OTP resent via {self.config.channel}")
        return True

    def view(self) -> OTPView:
        status = self.status
        return OTPView(
            status=status,
            code_length=self.config.code_length,
            channel=self.config.channel,
            attempts=self.attempts,
            max_attempts=self.config.max_attempts,
            remaining_attempts=self.remaining_attempts,
            remaining_seconds=self.remaining_seconds(),
            expiry_seconds=self.config.expiry_seconds,
            can_verify=status is OTPStatus.PENDING,
            can_resend=status in (OTPStatus.PENDING, OTPStatus.EXPIRED),
        )
