import hashlib
import hmac
import logging
import time

from errors import UpstreamError, VerificationError
from providers.base import ProviderAdapter, redact
from schemas import AuthorizationRequest, Provider

logger = logging.getLogger(__name__)

BOT_API = "https://api.telegram.org"
AUTH_MAX_AGE_SECONDS = 86400
WIDGET_FIELDS = ("id", "first_name", "last_name", "username", "photo_url", "auth_date", "hash")


def check_widget_hash(data, bot_token):
    """Verify a Login Widget payload signed with the bot token."""
    received = data.get("hash")
    if not received:
        return False
    lines = sorted(f"{k}={v}" for k, v in data.items() if k != "hash" and v is not None)
    secret = hashlib.sha256(bot_token.encode()).digest()
    expected = hmac.new(secret, "\n".join(lines).encode(), hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, str(received))


def parse_start_command(update):
    """Return (session_id, user) for a '/start <session>' message, else None."""
    message = update.get("message") or {}
    text = (message.get("text") or "").strip()
    if not text.startswith("/start "):
        return None
    session_id = text.split(maxsplit=1)[1].strip()
    sender = message.get("from") or {}
    if not session_id or not sender.get("id"):
        return None
    return session_id, sender


class TelegramAdapter(ProviderAdapter):
    provider = Provider.telegram

    def build_authorization_request(self, session_id):
        username = self.settings.credentials(self.name)["TELEGRAM_BOT_USERNAME"]
        return AuthorizationRequest(redirectTarget=f"https://t.me/{username}?start={session_id}")

    def _bot_url(self, method):
        token = self.settings.credentials(self.name)["TELEGRAM_BOT_TOKEN"]
        return f"{BOT_API}/bot{token}/{method}"

    async def exchange(self, proof, session):
        widget = {k: proof.params[k] for k in WIDGET_FIELDS if k in proof.params}
        if widget.get("hash"):
            token = self.settings.credentials(self.name)["TELEGRAM_BOT_TOKEN"]
            if not check_widget_hash(widget, token):
                raise VerificationError("Telegram authentication data is invalid")
            if time.time() - int(widget.get("auth_date") or 0) > AUTH_MAX_AGE_SECONDS:
                raise VerificationError("Telegram authentication data has expired")
            return {"source": "widget", "user": widget}

        user_id = session.stateData.get("telegramUserId") if session else None
        if not user_id:
            raise VerificationError("Open the Telegram bot and press Start before continuing")
        return {"source": "bot", "user": {"id": user_id, "username": session.stateData.get("telegramUsername")}}

    async def fetch_account(self, token, proof, session):
        user = dict(token["user"])
        if token["source"] == "bot":
            body = await self.get_json(self._bot_url("getChat"), params={"chat_id": user["id"]})
            chat = body.get("result") or {}
            user["username"] = chat.get("username") or user.get("username")
            user["has_photo"] = bool(chat.get("photo"))
        # Telegram does not expose account creation dates
        user["account_age_days"] = 0
        return user

    def check_eligibility(self, account):
        if not account.get("id"):
            return ["Telegram account identifier missing"]
        return []

    def external_id(self, account):
        return account["id"]

    async def notify(self, chat_id, text):
        try:
            await self.request("POST", self._bot_url("sendMessage"), json={"chat_id": chat_id, "text": text})
        except UpstreamError as exc:
            logger.warning("Could not message Telegram chat %s: %s", redact(chat_id, 3), exc)
