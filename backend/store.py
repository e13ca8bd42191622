"""
Persistence for verification records, sessions and profiles.

Two backends share one async contract: ``SqlStore`` keeps everything in a
relational database through the SQLAlchemy models, ``MemoryStore`` keeps
keyed maps in the process and can mirror them to a JSON snapshot file.
``open_store`` picks one at startup and falls back to memory when the
database cannot be reached.
"""
import asyncio
import json
import logging
import os
from contextlib import suppress
from datetime import timedelta

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError

import models
from database import DEFAULT_TIMEOUT, Base, make_engine, make_session_factory, session_scope
from schemas import ProfileRecord, SessionRecord, VerificationRecord, as_utc, utcnow

logger = logging.getLogger(__name__)


def _verification_values(wallet_id, provider, data):
    verified_at = data.get("verifiedAt") or utcnow()
    expires_at = data.get("expiresAt")
    if expires_at is None and data.get("ttlDays"):
        expires_at = verified_at + timedelta(days=data["ttlDays"])
    return VerificationRecord(
        walletId=wallet_id,
        provider=provider,
        commitment=data.get("commitment"),
        score=data.get("score") or 0,
        maxScore=data.get("maxScore") or 0,
        status=data.get("status", "verified"),
        metadata=data.get("metadata") or {},
        verifiedAt=verified_at,
        expiresAt=expires_at,
    )


class Store:
    name = "base"

    def __init__(self):
        self._sweeper = None

    async def open(self):
        pass

    async def close(self):
        if self._sweeper is not None:
            self._sweeper.cancel()
            with suppress(asyncio.CancelledError):
                await self._sweeper
            self._sweeper = None

    def start_sweeper(self, interval):
        if self._sweeper is None:
            self._sweeper = asyncio.create_task(self._sweep_loop(interval))
        return self._sweeper

    async def _sweep_loop(self, interval):
        while True:
            await asyncio.sleep(interval)
            try:
                removed = await self.sweep_expired()
            except Exception:
                logger.exception("Session sweep failed on %s store", self.name)
                continue
            if removed:
                logger.info("Removed %d expired sessions", removed)

    async def sweep_expired(self):
        raise NotImplementedError

    async def save_verification(self, wallet_id, provider, data):
        raise NotImplementedError

    async def get_verification(self, wallet_id, provider):
        raise NotImplementedError

    async def get_user_verifications(self, wallet_id):
        raise NotImplementedError

    async def delete_verification(self, wallet_id, provider):
        raise NotImplementedError

    async def save_session(self, session):
        raise NotImplementedError

    async def get_session(self, session_id):
        raise NotImplementedError

    async def update_session(self, session):
        raise NotImplementedError

    async def save_profile(self, profile):
        raise NotImplementedError

    async def get_profile(self, wallet_id):
        raise NotImplementedError


class MemoryStore(Store):
    """Process-local maps, optionally mirrored to ``snapshot_path``."""

    name = "memory"

    def __init__(self, snapshot_path=None):
        super().__init__()
        self.snapshot_path = snapshot_path
        self.verifications = {}
        self.sessions = {}
        self.profiles = {}

    @staticmethod
    def _key(wallet_id, provider):
        return f"{wallet_id}:{provider}"

    async def open(self):
        if self.snapshot_path and os.path.exists(self.snapshot_path):
            self._load()

    def _load(self):
        try:
            with open(self.snapshot_path, "r", encoding="utf-8") as fh:
                snapshot = json.load(fh)
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable snapshot %s: %s", self.snapshot_path, exc)
            return

        self.verifications = {
            key: VerificationRecord.model_validate(value)
            for key, value in snapshot.get("verifications", [])
        }
        self.sessions = {
            key: SessionRecord.model_validate(value)
            for key, value in snapshot.get("sessions", [])
        }
        self.profiles = {
            key: ProfileRecord.model_validate(value)
            for key, value in snapshot.get("profiles", [])
        }
        logger.info(
            "Loaded snapshot: %d verifications, %d sessions, %d profiles",
            len(self.verifications), len(self.sessions), len(self.profiles),
        )

    def _persist(self):
        if not self.snapshot_path:
            return
        snapshot = {
            "verifications": [[k, v.model_dump(mode="json")] for k, v in self.verifications.items()],
            "sessions": [[k, v.model_dump(mode="json")] for k, v in self.sessions.items()],
            "profiles": [[k, v.model_dump(mode="json")] for k, v in self.profiles.items()],
        }
        tmp_path = f"{self.snapshot_path}.tmp"
        try:
            with open(tmp_path, "w", encoding="utf-8") as fh:
                json.dump(snapshot, fh)
            os.replace(tmp_path, self.snapshot_path)
        except OSError as exc:
            logger.error("Could not write snapshot %s: %s", self.snapshot_path, exc)

    async def sweep_expired(self):
        now = utcnow()
        expired = [sid for sid, s in self.sessions.items() if s.is_expired(now)]
        for sid in expired:
            del self.sessions[sid]
        if expired:
            self._persist()
        return len(expired)

    async def save_verification(self, wallet_id, provider, data):
        record = _verification_values(wallet_id, provider, data)
        self.verifications[self._key(wallet_id, provider)] = record
        self._persist()
        return record.model_copy(deep=True)

    async def get_verification(self, wallet_id, provider):
        record = self.verifications.get(self._key(wallet_id, provider))
        return record.model_copy(deep=True) if record else None

    async def get_user_verifications(self, wallet_id):
        records = [r for r in self.verifications.values() if r.walletId == wallet_id]
        records.sort(key=lambda r: as_utc(r.verifiedAt), reverse=True)
        return [r.model_copy(deep=True) for r in records]

    async def delete_verification(self, wallet_id, provider):
        removed = self.verifications.pop(self._key(wallet_id, provider), None)
        if removed is not None:
            self._persist()
        return removed is not None

    async def save_session(self, session):
        self.sessions[session.sessionId] = session.model_copy(deep=True)
        self._persist()
        return session

    async def get_session(self, session_id):
        session = self.sessions.get(session_id)
        if session is None:
            return None
        if session.is_expired():
            del self.sessions[session_id]
            self._persist()
            return None
        return session.model_copy(deep=True)

    async def update_session(self, session):
        current = self.sessions.get(session.sessionId)
        if current is None or current.is_expired():
            return None
        self.sessions[session.sessionId] = session.model_copy(deep=True)
        self._persist()
        return session

    async def save_profile(self, profile):
        self.profiles[profile.walletId] = profile.model_copy(deep=True)
        self._persist()
        return profile

    async def get_profile(self, wallet_id):
        profile = self.profiles.get(wallet_id)
        return profile.model_copy(deep=True) if profile else None


class SqlStore(Store):
    """Relational backend; blocking ORM work runs in worker threads."""

    name = "sql"

    def __init__(self, url, timeout=DEFAULT_TIMEOUT):
        super().__init__()
        self.url = url
        self.timeout = timeout
        self.engine = None
        self.factory = None

    async def open(self):
        self.engine = make_engine(self.url, self.timeout)
        self.factory = make_session_factory(self.engine)
        await asyncio.to_thread(Base.metadata.create_all, bind=self.engine)

    async def close(self):
        await super().close()
        if self.engine is not None:
            self.engine.dispose()

    def _upsert(self, db, model, values, keys):
        table = model.__table__
        dialect = self.engine.dialect.name
        updates = {k: v for k, v in values.items() if k not in keys}

        if dialect in ("postgresql", "sqlite"):
            if dialect == "postgresql":
                from sqlalchemy.dialects.postgresql import insert
            else:
                from sqlalchemy.dialects.sqlite import insert
            stmt = insert(table).values(**values)
            stmt = stmt.on_conflict_do_update(index_elements=list(keys), set_=updates)
            db.execute(stmt)
            return

        query = db.query(model)
        for key in keys:
            query = query.filter(table.c[key] == values[key])
        if query.first() is None:
            db.execute(table.insert().values(**values))
        else:
            query.update({table.c[k]: v for k, v in updates.items()}, synchronize_session=False)

    # Verifications

    @staticmethod
    def _to_verification(row):
        return VerificationRecord(
            walletId=row.wallet_id,
            provider=row.provider,
            commitment=row.commitment,
            score=row.score,
            maxScore=row.max_score,
            status=row.status,
            metadata=row.details or {},
            verifiedAt=as_utc(row.verified_at),
            expiresAt=as_utc(row.expires_at),
        )

    def _save_verification(self, record):
        values = {
            "wallet_id": record.walletId,
            "provider": record.provider,
            "commitment": record.commitment,
            "score": record.score,
            "max_score": record.maxScore,
            "status": record.status,
            "metadata": record.metadata,
            "verified_at": record.verifiedAt,
            "expires_at": record.expiresAt,
            "updated_at": utcnow(),
        }
        with session_scope(self.factory) as db:
            self._upsert(db, models.Verification, values, ("wallet_id", "provider"))
        return self._get_verification(record.walletId, record.provider)

    def _get_verification(self, wallet_id, provider):
        with session_scope(self.factory) as db:
            row = db.query(models.Verification).filter(
                models.Verification.wallet_id == wallet_id,
                models.Verification.provider == provider,
            ).first()
            return self._to_verification(row) if row else None

    def _get_user_verifications(self, wallet_id):
        with session_scope(self.factory) as db:
            rows = db.query(models.Verification).filter(
                models.Verification.wallet_id == wallet_id
            ).order_by(models.Verification.verified_at.desc()).all()
            return [self._to_verification(row) for row in rows]

    def _delete_verification(self, wallet_id, provider):
        with session_scope(self.factory) as db:
            removed = db.query(models.Verification).filter(
                models.Verification.wallet_id == wallet_id,
                models.Verification.provider == provider,
            ).delete(synchronize_session=False)
        return removed > 0

    async def save_verification(self, wallet_id, provider, data):
        record = _verification_values(wallet_id, provider, data)
        return await asyncio.to_thread(self._save_verification, record)

    async def get_verification(self, wallet_id, provider):
        return await asyncio.to_thread(self._get_verification, wallet_id, provider)

    async def get_user_verifications(self, wallet_id):
        return await asyncio.to_thread(self._get_user_verifications, wallet_id)

    async def delete_verification(self, wallet_id, provider):
        return await asyncio.to_thread(self._delete_verification, wallet_id, provider)

    # Sessions

    @staticmethod
    def _to_session(row):
        return SessionRecord(
            sessionId=row.session_id,
            provider=row.provider,
            walletId=row.wallet_id,
            status=row.status,
            stateData=row.state_data or {},
            createdAt=as_utc(row.created_at),
            expiresAt=as_utc(row.expires_at),
        )

    def _save_session(self, session):
        with session_scope(self.factory) as db:
            db.add(models.VerificationSession(
                session_id=session.sessionId,
                wallet_id=session.walletId,
                provider=session.provider,
                status=session.status.value,
                state_data=session.stateData,
                created_at=session.createdAt,
                expires_at=session.expiresAt,
            ))
        return session

    def _get_session(self, session_id):
        with session_scope(self.factory) as db:
            row = db.query(models.VerificationSession).filter(
                models.VerificationSession.session_id == session_id
            ).first()
            if row is None:
                return None
            session = self._to_session(row)
        return None if session.is_expired() else session

    def _update_session(self, session):
        with session_scope(self.factory) as db:
            row = db.query(models.VerificationSession).filter(
                models.VerificationSession.session_id == session.sessionId
            ).first()
            if row is None or self._to_session(row).is_expired():
                return None
            row.status = session.status.value
            row.state_data = dict(session.stateData)
            row.expires_at = session.expiresAt
        return session

    def _sweep_expired(self):
        with session_scope(self.factory) as db:
            result = db.execute(
                delete(models.VerificationSession).where(
                    models.VerificationSession.expires_at < utcnow()
                )
            )
        return result.rowcount or 0

    async def save_session(self, session):
        return await asyncio.to_thread(self._save_session, session)

    async def get_session(self, session_id):
        return await asyncio.to_thread(self._get_session, session_id)

    async def update_session(self, session):
        return await asyncio.to_thread(self._update_session, session)

    async def sweep_expired(self):
        return await asyncio.to_thread(self._sweep_expired)

    # Profiles

    def _save_profile(self, profile):
        values = {
            "wallet_id": profile.walletId,
            "provider": profile.provider,
            "display_name": profile.displayName,
            "avatar_url": profile.avatarUrl,
            "profile_link": profile.profileLink,
            "updated_at": profile.updatedAt,
        }
        with session_scope(self.factory) as db:
            self._upsert(db, models.Profile, values, ("wallet_id",))
        return profile

    def _get_profile(self, wallet_id):
        with session_scope(self.factory) as db:
            row = db.query(models.Profile).filter(models.Profile.wallet_id == wallet_id).first()
            if row is None:
                return None
            return ProfileRecord(
                walletId=row.wallet_id,
                provider=row.provider,
                displayName=row.display_name,
                avatarUrl=row.avatar_url,
                profileLink=row.profile_link,
                updatedAt=as_utc(row.updated_at),
            )

    async def save_profile(self, profile):
        return await asyncio.to_thread(self._save_profile, profile)

    async def get_profile(self, wallet_id):
        return await asyncio.to_thread(self._get_profile, wallet_id)


async def open_store(settings):
    """Open the relational store when configured and reachable, else memory."""
    if settings.database_url:
        store = SqlStore(settings.database_url, settings.database_timeout)
        try:
            await store.open()
        except (SQLAlchemyError, ImportError) as exc:
            logger.error("Database unavailable, falling back to in-memory store: %s", exc)
            await store.close()
        else:
            logger.info("Using relational store (%s)", store.engine.dialect.name)
            return store

    store = MemoryStore(settings.local_db_file)
    await store.open()
    logger.info(
        "Using in-memory store%s",
        f" with snapshot {settings.local_db_file}" if settings.local_db_file else "",
    )
    return store
