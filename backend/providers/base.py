import base64
import hashlib
import logging
import secrets
from datetime import datetime, timezone
from urllib.parse import urlencode

import commitment
from errors import EligibilityFailure, VerificationError
from http_client import DEFAULT_POLICY, request_with_retry
from schemas import AuthorizationRequest, VerificationResult, utcnow
from scoring import score_for

logger = logging.getLogger(__name__)

STEPS = (
    "initiated",
    "exchanging-token",
    "fetching-profile",
    "validating-eligibility",
    "scoring",
    "committing",
)


def pkce_pair():
    verifier = secrets.token_urlsafe(48)
    challenge = base64.urlsafe_b64encode(hashlib.sha256(verifier.encode()).digest())
    return verifier, challenge.decode().rstrip("=")


def parse_timestamp(value):
    if not value:
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def days_since(moment, now=None):
    if moment is None:
        return 0
    return max(0, ((now or utcnow()) - moment).days)


def redact(value, keep=6):
    value = str(value or "")
    return value if len(value) <= keep * 2 else f"{value[:keep]}...{value[-4:]}"


class ProviderAdapter:
    """One external identity system.

    Subclasses fill in ``exchange``, ``fetch_account``, ``check_eligibility``
    and ``external_id``; ``verify`` runs them in order, scores the account with
    the provider rules and turns any ``VerificationError`` into a failed result.
    """

    provider = None
    authorize_url = None
    scopes = ""

    def __init__(self, settings, client, policy=DEFAULT_POLICY):
        self.settings = settings
        self.client = client
        self.policy = policy

    @property
    def name(self):
        return self.provider.value

    @property
    def redirect_uri(self):
        return self.settings.redirect_uri(self.name)

    def ensure_configured(self):
        self.settings.credentials(self.name)
        self.settings.require_salt(self.name)

    def credential(self, suffix):
        return self.settings.credentials(self.name)[f"{self.name.upper()}_{suffix}"]

    def authorization_url(self, **params):
        return f"{self.authorize_url}?{urlencode(params)}"

    def build_authorization_request(self, session_id) -> AuthorizationRequest:
        raise NotImplementedError

    async def request(self, method, url, **kwargs):
        return await request_with_retry(self.client, method, url, policy=self.policy, **kwargs)

    async def get_json(self, url, **kwargs):
        return (await self.request("GET", url, **kwargs)).json()

    async def post_json(self, url, **kwargs):
        return (await self.request("POST", url, **kwargs)).json()

    # Hooks

    async def exchange(self, proof, session):
        raise NotImplementedError

    async def fetch_account(self, token, proof, session):
        raise NotImplementedError

    def check_eligibility(self, account):
        return []

    def score(self, account):
        return score_for(self.provider, account)

    def external_id(self, account):
        raise NotImplementedError

    def profile(self, account, session):
        return None

    async def verify(self, proof, session) -> VerificationResult:
        step = STEPS[0]
        wallet = redact(session.walletId) if session else "-"

        def advance(next_step):
            logger.debug("%s [%s] %s -> %s", self.name, wallet, step, next_step)
            return next_step

        try:
            step = advance("exchanging-token")
            token = await self.exchange(proof, session)

            step = advance("fetching-profile")
            account = await self.fetch_account(token, proof, session)

            step = advance("validating-eligibility")
            unmet = self.check_eligibility(account)
            if unmet:
                raise EligibilityFailure(unmet)

            step = advance("scoring")
            result = self.score(account)

            step = advance("committing")
            salt = self.settings.require_salt(self.name)
            value = commitment.for_provider(self.name, self.external_id(account), salt)
        except EligibilityFailure as exc:
            logger.info("%s [%s] not eligible: %s", self.name, wallet, exc)
            return VerificationResult.failure(*exc.unmet)
        except VerificationError as exc:
            logger.warning("%s [%s] failed while %s: %s", self.name, wallet, step, exc)
            return VerificationResult.failure(exc)

        logger.info("%s [%s] succeeded with %s/%s", self.name, wallet, result.score, result.maxScore)
        return VerificationResult(
            valid=True,
            score=result.score,
            maxScore=result.maxScore,
            criteria=result.criteria,
            commitment=value,
            profile=self.profile(account, session),
        )


class OAuthAdapter(ProviderAdapter):
    """Authorization-code flow with ``state`` carrying the session id."""

    uses_pkce = False
    client_id_param = "client_id"

    def authorization_params(self, session_id):
        return {
            self.client_id_param: self.credential("CLIENT_ID"),
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": self.scopes,
        }

    def build_authorization_request(self, session_id):
        params = self.authorization_params(session_id)
        state_data = {}
        if self.uses_pkce:
            verifier, challenge = pkce_pair()
            params.update(
                state=f"{session_id}:{verifier}",
                code_challenge=challenge,
                code_challenge_method="S256",
            )
            state_data["codeVerifier"] = verifier
        else:
            params["state"] = session_id
        return AuthorizationRequest(
            redirectTarget=self.authorization_url(**params), stateData=state_data
        )

    def require_code(self, proof):
        if not proof.code:
            raise VerificationError("Authorization code missing")
        return proof.code

    def code_verifier(self, proof, session):
        verifier = proof.codeVerifier or (session.stateData.get("codeVerifier") if session else None)
        if not verifier:
            raise VerificationError("PKCE code verifier missing")
        return verifier

    @staticmethod
    def bearer(token):
        return {"Authorization": f"Bearer {token}"}

    @staticmethod
    def access_token(body):
        token = body.get("access_token") if isinstance(body, dict) else None
        if not token:
            message = "No access token received"
            if isinstance(body, dict):
                message = body.get("error_description") or body.get("error") or message
            raise VerificationError(message)
        return token
