import logging
import secrets

from errors import SignatureMismatch, UpstreamError, VerificationError
from providers.base import ProviderAdapter, redact
from schemas import AuthorizationRequest, utcnow

logger = logging.getLogger(__name__)

RECENT_ACTIVITY_DAYS = 30


class WalletAdapter(ProviderAdapter):
    """Signature-based ownership proof followed by best-effort chain lookups.

    The signature is checked before any network call. Chain data lookups
    never fail the verification: missing data scores as zero activity.
    """

    chain = None
    signing_scheme = None

    def ensure_configured(self):
        self.settings.require_salt(self.name)

    def challenge_message(self, session_id, nonce):
        host = self.settings.frontend_url.split("://", 1)[-1]
        return (
            f"{host} wants you to verify ownership of your {self.chain} wallet.\n\n"
            f"Session: {session_id}\n"
            f"Nonce: {nonce}\n"
            f"Issued At: {utcnow().isoformat()}"
        )

    def build_authorization_request(self, session_id):
        nonce = secrets.token_hex(16)
        message = self.challenge_message(session_id, nonce)
        return AuthorizationRequest(
            descriptor={
                "type": self.signing_scheme,
                "sessionId": session_id,
                "message": message,
                "nonce": nonce,
            },
            stateData={"nonce": nonce},
        )

    def recover_ok(self, address, signature, message):
        raise NotImplementedError

    async def exchange(self, proof, session):
        if not (proof.address and proof.signature and proof.message):
            raise VerificationError("Address, signature and message are required")
        nonce = session.stateData.get("nonce") if session else None
        if nonce and nonce not in proof.message:
            raise SignatureMismatch("Signed message does not match the issued challenge")
        if not self.recover_ok(proof.address, proof.signature, proof.message):
            raise SignatureMismatch()
        return proof.address

    async def lookup(self, label, address, call, default):
        try:
            return await call()
        except (UpstreamError, KeyError, TypeError, ValueError) as exc:
            logger.warning(
                "%s %s lookup failed for %s, using default: %s",
                self.name, label, redact(address), exc,
            )
            return default

    def external_id(self, account):
        return account["address"]
