# storefront/models/otp.py
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union
from pydantic import BaseModel


class OTPStatus(str, Enum):
    PENDING = "pending"
    VERIFYING = "verifying"
    VERIFIED = "verified"
    EXPIRED = "expired"
    BLOCKED = "blocked"


@dataclass(frozen=True)
class ChallengeConfig:
    code_length: int = 6
    expiry_seconds: int = 60
    max_attempts: int = 3
    channel: str = "mock_sms"


# Challenge states. Each variant only carries the data meaningful in it.

@dataclass(frozen=True)
class Pending:
    deadline: float
    attempts: int = 0
    status = OTPStatus.PENDING


@dataclass(frozen=True)
class Verifying:
    deadline: float
    attempts: int
    candidate: str
    status = OTPStatus.VERIFYING


@dataclass(frozen=True)
class Verified:
    attempts: int
    verified_at: float
    status = OTPStatus.VERIFIED


@dataclass(frozen=True)
class Expired:
    attempts: int
    status = OTPStatus.EXPIRED


@dataclass(frozen=True)
class Blocked:
    attempts: int
    status = OTPStatus.BLOCKED


ChallengeState = Union[Pending, Verifying, Verified, Expired, Blocked]


# Events fed to the reducer

@dataclass(frozen=True)
class Start:
    now: float


@dataclass(frozen=True)
class Tick:
    now: float


@dataclass(frozen=True)
class Submit:
    code: str
    now: float


@dataclass(frozen=True)
class Decide:
    accepted: bool
    now: float


@dataclass(frozen=True)
class Abort:
    """The verifier failed before reaching a decision."""


@dataclass(frozen=True)
class Resend:
    now: float


ChallengeEvent = Union[Start, Tick, Submit, Decide, Abort, Resend]


class Outcome(str, Enum):
    STARTED = "started"
    UNCHANGED = "unchanged"
    EXPIRED = "expired"
    INVALID = "invalid"
    BUSY = "busy"
    VERIFYING = "verifying"
    VERIFIED = "verified"
    REJECTED = "rejected"
    BLOCKED = "blocked"
    ALREADY_VERIFIED = "already_verified"
    RESENT = "resent"


@dataclass(frozen=True)
class Transition:
    state: ChallengeState
    outcome: Outcome


@dataclass(frozen=True)
class VerificationResult:
    status: OTPStatus
    attempts: int
    remaining_attempts: int
    message: Optional[str] = None


class OTPView(BaseModel):
    status: OTPStatus
    code_length: int
    channel: str
    attempts: int
    max_attempts: int
    remaining_attempts: int
    remaining_seconds: int
    expiry_seconds: int
    can_verify: bool
    can_resend: bool
