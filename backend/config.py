import os

from dotenv import load_dotenv

from errors import ConfigurationError

# Credentials each provider needs before a verification flow can start
REQUIRED_ENV = {
    "discord": ["DISCORD_CLIENT_ID", "DISCORD_CLIENT_SECRET"],
    "twitter": ["TWITTER_CLIENT_ID", "TWITTER_CLIENT_SECRET"],
    "github": ["GITHUB_CLIENT_ID", "GITHUB_CLIENT_SECRET"],
    "google": ["GOOGLE_CLIENT_ID", "GOOGLE_CLIENT_SECRET"],
    "tiktok": ["TIKTOK_CLIENT_ID", "TIKTOK_CLIENT_SECRET"],
    "telegram": ["TELEGRAM_BOT_TOKEN", "TELEGRAM_BOT_USERNAME"],
    "steam": [],
    "evm": [],
    "solana": [],
}

# Optional keys: their absence degrades a provider instead of disabling it
OPTIONAL_ENV = {
    "steam": ["STEAM_API_KEY"],
    "evm": ["ETHERSCAN_API_KEY"],
    "solana": ["SOLANA_RPC_URL"],
}

DEFAULT_SOLANA_RPC_URL = "https://api.mainnet-beta.solana.com"


def _flag(value, default=False):
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _number(value, default, cast=int):
    if value is None or value == "":
        return default
    return cast(value)


class Settings:
    """Runtime configuration, built once from the process environment."""

    def __init__(self, env=None):
        env = dict(os.environ if env is None else env)
        self.env = env

        self.backend_url = env.get("BACKEND_URL", "http://localhost:3001").rstrip("/")
        self.frontend_url = env.get("FRONTEND_URL", "http://localhost:5173").rstrip("/")

        self.database_url = env.get("DATABASE_URL") or None
        self.local_db_file = env.get("LOCAL_DB_FILE", "local_db.json") or None

        self.secret_salt = env.get("SECRET_SALT") or None
        self.solana_rpc_url = env.get("SOLANA_RPC_URL") or DEFAULT_SOLANA_RPC_URL

        self.http_timeout = _number(env.get("HTTP_TIMEOUT_SECONDS"), 5.0, float)
        self.database_timeout = _number(env.get("DATABASE_TIMEOUT_SECONDS"), 5.0, float)
        self.session_ttl_seconds = _number(env.get("SESSION_TTL_SECONDS"), 3600)
        self.session_sweep_seconds = _number(env.get("SESSION_SWEEP_SECONDS"), 3600)
        self.verification_ttl_days = _number(env.get("VERIFICATION_TTL_DAYS"), 0)
        self.persist_verifications = _flag(env.get("PERSIST_VERIFICATIONS"), True)
        self.store_profiles = _flag(env.get("STORE_PROFILES"), False)
        self.log_level = env.get("LOG_LEVEL", "INFO").upper()
        self.rate_limit = env.get("RATE_LIMIT", "100/15 minutes")

    @classmethod
    def from_env(cls, dotenv=True):
        if dotenv:
            load_dotenv()
        return cls()

    def get(self, name, default=None):
        return self.env.get(name) or default

    def redirect_uri(self, provider):
        return f"{self.backend_url}/auth/{provider}/callback"

    def missing(self, provider):
        return [name for name in REQUIRED_ENV.get(provider, []) if not self.env.get(name)]

    def credentials(self, provider):
        """Return the provider's required credentials or raise ConfigurationError."""
        missing = self.missing(provider)
        if missing:
            raise ConfigurationError(provider, missing)
        return {name: self.env[name] for name in REQUIRED_ENV.get(provider, [])}

    def require_salt(self, provider):
        if not self.secret_salt:
            raise ConfigurationError(provider, ["SECRET_SALT"])
        return self.secret_salt

    def provider_status(self):
        status = {}
        for provider in REQUIRED_ENV:
            missing = self.missing(provider)
            if not self.secret_salt:
                missing.append("SECRET_SALT")
            status[provider] = {
                "configured": not missing,
                "missing": missing,
                "optionalMissing": [
                    name for name in OPTIONAL_ENV.get(provider, []) if not self.env.get(name)
                ],
            }
        return status
