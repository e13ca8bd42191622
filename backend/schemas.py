from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

WALLET_ID_PATTERN = r"^[a-zA-Z0-9._@-]+$"
WALLET_ID_MAX_LENGTH = 255


class Provider(str, Enum):
    discord = "discord"
    twitter = "twitter"
    github = "github"
    google = "google"
    steam = "steam"
    telegram = "telegram"
    tiktok = "tiktok"
    evm = "evm"
    solana = "solana"

    @property
    def is_wallet(self):
        return self in (Provider.evm, Provider.solana)


class SessionStatus(str, Enum):
    pending = "pending"
    verified = "verified"
    failed = "failed"


def utcnow():
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# Scoring

class Criterion(BaseModel):
    condition: str
    description: str
    points: float
    achieved: bool
    partialPoints: Optional[float] = None


class ScoreResult(BaseModel):
    score: float
    maxScore: float
    criteria: List[Criterion]


# Persisted entities

class VerificationRecord(BaseModel):
    walletId: str
    provider: str
    commitment: Optional[str] = None
    score: float = 0
    maxScore: float = 0
    status: str = SessionStatus.verified.value
    metadata: Dict[str, Any] = Field(default_factory=dict)
    verifiedAt: datetime = Field(default_factory=utcnow)
    expiresAt: Optional[datetime] = None

    @property
    def criteria(self) -> List[Criterion]:
        return [Criterion.model_validate(c) for c in self.metadata.get("criteria", [])]

    def is_expired(self, now=None):
        if self.expiresAt is None:
            return False
        return as_utc(self.expiresAt) <= (now or utcnow())


class SessionRecord(BaseModel):
    sessionId: str
    provider: str
    walletId: str
    status: SessionStatus = SessionStatus.pending
    stateData: Dict[str, Any] = Field(default_factory=dict)
    createdAt: datetime = Field(default_factory=utcnow)
    expiresAt: datetime

    def is_expired(self, now=None):
        return as_utc(self.expiresAt) <= (now or utcnow())


class ProfileRecord(BaseModel):
    walletId: str
    provider: str
    displayName: Optional[str] = None
    avatarUrl: Optional[str] = None
    profileLink: Optional[str] = None
    updatedAt: datetime = Field(default_factory=utcnow)


# Adapter contract

class AuthorizationRequest(BaseModel):
    redirectTarget: Optional[str] = None
    descriptor: Optional[Dict[str, Any]] = None
    stateData: Dict[str, Any] = Field(default_factory=dict)


class VerificationProof(BaseModel):
    """Everything a callback can carry, normalized once at the HTTP boundary."""
    code: Optional[str] = None
    codeVerifier: Optional[str] = None
    address: Optional[str] = None
    signature: Optional[str] = None
    message: Optional[str] = None
    params: Dict[str, Any] = Field(default_factory=dict)


class PublicResult(BaseModel):
    provider: str
    score: float
    maxScore: float
    criteria: List[Criterion]
    commitment: Optional[str] = None


class VerificationResult(BaseModel):
    valid: bool
    errors: List[str] = Field(default_factory=list)
    score: Optional[float] = None
    maxScore: Optional[float] = None
    criteria: List[Criterion] = Field(default_factory=list)
    commitment: Optional[str] = None
    # Display data only; never leaves the service
    profile: Optional[ProfileRecord] = Field(default=None, exclude=True)

    @classmethod
    def failure(cls, *errors):
        return cls(valid=False, errors=[str(e) for e in errors])

    def public(self, provider) -> PublicResult:
        return PublicResult(
            provider=getattr(provider, "value", provider),
            score=self.score or 0,
            maxScore=self.maxScore or 0,
            criteria=self.criteria,
            commitment=self.commitment,
        )


class VerificationOutcome(BaseModel):
    sessionId: str
    provider: str
    status: SessionStatus
    result: Optional[PublicResult] = None
    errors: List[str] = Field(default_factory=list)

    @property
    def success(self):
        return self.status == SessionStatus.verified


# Request payloads

class WalletProofPayload(BaseModel):
    sessionId: Optional[str] = None
    session: Optional[str] = None
    address: str
    signature: str
    message: str
