# storefront/services/errors.py
from typing import List, Optional


class CheckoutError(Exception):
    code = "checkout_error"
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(CheckoutError):
    """Malformed shipping, payment or code input. The step does not advance."""
    code = "validation_error"

    def __init__(self, message: str, fields: Optional[List[str]] = None):
        super().__init__(message)
        self.fields = fields or []


class ExpiredChallengeError(CheckoutError):
    code = "otp_expired"


class BlockedError(CheckoutError):
    code = "otp_blocked"


class SubmissionError(CheckoutError):
    code = "submission_failed"
    retryable = True

    def __init__(self, message: str, transaction_id: Optional[str] = None):
        super().__init__(message)
        self.transaction_id = transaction_id


class NotificationDeliveryError(CheckoutError):
    code = "notification_failed"


class StepError(CheckoutError):
    """The requested action is not defined for the session's current step."""
    code = "invalid_step"


class CheckoutBusyError(CheckoutError):
    code = "busy"
    retryable = True


class VerificationRequiredError(CheckoutError):
    code = "verification_required"
