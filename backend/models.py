from sqlalchemy import JSON, Column, DateTime, Float, Integer, String, UniqueConstraint
from sqlalchemy.sql import func

from database import Base


class Verification(Base):
    __tablename__ = "verifications"
    __table_args__ = (UniqueConstraint("wallet_id", "provider", name="uq_verifications_wallet_provider"),)

    id = Column(Integer, primary_key=True, index=True)
    wallet_id = Column(String, index=True, nullable=False)
    provider = Column(String, nullable=False)
    commitment = Column(String, nullable=True)
    score = Column(Float, nullable=False, default=0)
    max_score = Column(Float, nullable=False, default=0)
    status = Column(String, nullable=False, default="verified")
    # 'metadata' is reserved on declarative classes
    details = Column("metadata", JSON, nullable=False, default=dict)
    verified_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class VerificationSession(Base):
    __tablename__ = "verification_sessions"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(String, unique=True, index=True, nullable=False)
    wallet_id = Column(String, nullable=False)
    provider = Column(String, nullable=False)
    status = Column(String, nullable=False, default="pending")
    state_data = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), index=True, nullable=False)


class Profile(Base):
    __tablename__ = "profiles"

    id = Column(Integer, primary_key=True, index=True)
    wallet_id = Column(String, unique=True, index=True, nullable=False)
    provider = Column(String, nullable=False)
    display_name = Column(String, nullable=True)
    avatar_url = Column(String, nullable=True)
    profile_link = Column(String, nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False)
