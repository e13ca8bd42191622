import asyncio
import logging
import uuid
from datetime import timedelta
from typing import NamedTuple

from errors import SessionNotFound
from providers.base import redact
from providers.telegram import parse_start_command
from schemas import (
    AuthorizationRequest,
    Provider,
    PublicResult,
    SessionRecord,
    SessionStatus,
    VerificationOutcome,
    VerificationResult,
    utcnow,
)

logger = logging.getLogger(__name__)

LINKED_REPLY = "Telegram account linked. Return to the app to finish verification."
SESSION_EXPIRED_REPLY = "This verification link is invalid or has expired. Start again from the app."
SESSION_CLOSED_REPLY = "This verification session is already complete."


class StartedSession(NamedTuple):
    sessionId: str
    authorization: AuthorizationRequest


class SessionManager:
    """Owns the pending -> verified | failed lifecycle of verification sessions."""

    def __init__(self, store, registry, settings):
        self.store = store
        self.registry = registry
        self.settings = settings
        self._locks = {}

    def adapter(self, provider):
        return self.registry[Provider(provider)]

    async def start(self, provider, wallet_id) -> StartedSession:
        provider = Provider(provider)
        adapter = self.adapter(provider)
        adapter.ensure_configured()

        session_id = f"{provider.value}_{uuid.uuid4()}"
        authorization = adapter.build_authorization_request(session_id)
        now = utcnow()
        session = SessionRecord(
            sessionId=session_id,
            provider=provider.value,
            walletId=wallet_id,
            stateData={"walletId": wallet_id, **authorization.stateData},
            createdAt=now,
            expiresAt=now + timedelta(seconds=self.settings.session_ttl_seconds),
        )
        await self.store.save_session(session)
        logger.info("Started %s session for wallet %s", provider.value, redact(wallet_id))
        return StartedSession(session_id, authorization)

    async def status(self, session_id) -> VerificationOutcome:
        session = await self.store.get_session(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return self._outcome(session)

    async def _locked(self, session_id, work):
        # Serialize work on the same session; distinct sessions never contend
        entry = self._locks.setdefault(session_id, [asyncio.Lock(), 0])
        entry[1] += 1
        try:
            async with entry[0]:
                return await work()
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                self._locks.pop(session_id, None)

    async def complete_callback(self, session_id, proof, provider=None) -> VerificationOutcome:
        return await self._locked(session_id, lambda: self._complete(session_id, proof, provider))

    async def fail(self, session_id, errors, provider=None) -> VerificationOutcome:
        """Close a pending session without running the adapter (e.g. consent denied)."""
        async def mark():
            session = await self.store.get_session(session_id)
            if session is None or (provider is not None and session.provider != Provider(provider).value):
                raise SessionNotFound(session_id)
            if session.status == SessionStatus.pending:
                session.status = SessionStatus.failed
                session.stateData = {**session.stateData, "errors": list(errors)}
                if await self.store.update_session(session) is None:
                    raise SessionNotFound(session_id)
            return self._outcome(session)

        return await self._locked(session_id, mark)

    async def _complete(self, session_id, proof, provider):
        session = await self.store.get_session(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        if provider is not None and session.provider != Provider(provider).value:
            raise SessionNotFound(session_id)

        if session.status != SessionStatus.pending:
            logger.debug("Session %s already %s", session_id, session.status.value)
            return self._outcome(session)

        adapter = self.adapter(session.provider)
        try:
            result = await adapter.verify(proof, session)
        except Exception:
            logger.exception("Unexpected error verifying %s session", session.provider)
            result = VerificationResult.failure("Verification failed")

        if result.valid and not result.score:
            result = VerificationResult.failure("Verification produced a zero score")

        pending_state = session.stateData
        state = dict(pending_state)
        if result.valid:
            session.status = SessionStatus.verified
            state["result"] = result.public(session.provider).model_dump(mode="json", exclude_none=True)
        else:
            session.status = SessionStatus.failed
            state["errors"] = result.errors
        session.stateData = state

        # The session may have expired while the adapter was talking upstream
        if await self.store.update_session(session) is None:
            raise SessionNotFound(session_id)

        if result.valid:
            try:
                await self._record(session, result)
            except Exception:
                session.status = SessionStatus.pending
                session.stateData = pending_state
                await self.store.update_session(session)
                raise
        return self._outcome(session)

    async def _record(self, session, result):
        if self.settings.persist_verifications:
            criteria = [c.model_dump(exclude_none=True) for c in result.criteria]
            await self.store.save_verification(session.walletId, session.provider, {
                "commitment": result.commitment,
                "score": result.score,
                "maxScore": result.maxScore,
                "status": SessionStatus.verified.value,
                "metadata": {"criteria": criteria, "commitment": result.commitment},
                "ttlDays": self.settings.verification_ttl_days or None,
            })
        if self.settings.store_profiles and result.profile is not None:
            await self.store.save_profile(result.profile)

    async def record_telegram_start(self, update):
        """Attach the sender of '/start <session>' to a pending Telegram session."""
        parsed = parse_start_command(update)
        if parsed is None:
            return False
        session_id, sender = parsed
        bot = self.adapter(Provider.telegram)
        session = await self.store.get_session(session_id)
        if session is None or session.provider != Provider.telegram.value:
            await bot.notify(sender["id"], SESSION_EXPIRED_REPLY)
            return False
        if session.status != SessionStatus.pending:
            await bot.notify(sender["id"], SESSION_CLOSED_REPLY)
            return False

        session.stateData = {
            **session.stateData,
            "telegramUserId": sender["id"],
            "telegramUsername": sender.get("username"),
        }
        if await self.store.update_session(session) is None:
            await bot.notify(sender["id"], SESSION_EXPIRED_REPLY)
            return False
        await bot.notify(sender["id"], LINKED_REPLY)
        return True

    @staticmethod
    def _outcome(session):
        result = session.stateData.get("result")
        return VerificationOutcome(
            sessionId=session.sessionId,
            provider=session.provider,
            status=session.status,
            result=PublicResult.model_validate(result) if result else None,
            errors=session.stateData.get("errors", []),
        )
