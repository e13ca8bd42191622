from datetime import datetime, timezone

from providers.base import OAuthAdapter, days_since
from schemas import ProfileRecord, Provider

API = "https://discord.com/api"
DISCORD_EPOCH_MS = 1420070400000

MIN_ACCOUNT_AGE_DAYS = 365
MIN_GUILDS = 10
MIN_CONNECTIONS = 2


def snowflake_created_at(snowflake):
    ms = (int(snowflake) >> 22) + DISCORD_EPOCH_MS
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


class DiscordAdapter(OAuthAdapter):
    provider = Provider.discord
    authorize_url = f"{API}/oauth2/authorize"
    scopes = "identify email guilds guilds.members.read connections"

    def authorization_params(self, session_id):
        params = super().authorization_params(session_id)
        params["prompt"] = "consent"
        return params

    async def exchange(self, proof, session):
        body = await self.post_json(f"{API}/oauth2/token", data={
            "client_id": self.credential("CLIENT_ID"),
            "client_secret": self.credential("CLIENT_SECRET"),
            "grant_type": "authorization_code",
            "code": self.require_code(proof),
            "redirect_uri": self.redirect_uri,
        })
        return self.access_token(body)

    async def fetch_account(self, token, proof, session):
        headers = self.bearer(token)
        user = await self.get_json(f"{API}/v10/users/@me", headers=headers)
        guilds = await self.get_json(f"{API}/users/@me/guilds", headers=headers)
        connections = await self.get_json(f"{API}/users/@me/connections", headers=headers)
        return {"user": user, "guilds": guilds or [], "connections": connections or []}

    def check_eligibility(self, account):
        unmet = []
        age = days_since(snowflake_created_at(account["user"]["id"]))
        if age < MIN_ACCOUNT_AGE_DAYS:
            unmet.append(
                f"Discord account must be at least {MIN_ACCOUNT_AGE_DAYS} days old (current: {age} days)"
            )
        guilds = len(account["guilds"])
        if guilds < MIN_GUILDS:
            unmet.append(f"Must be a member of at least {MIN_GUILDS} servers (current: {guilds})")
        verified = sum(1 for c in account["connections"] if c.get("verified"))
        if verified < MIN_CONNECTIONS:
            unmet.append(
                f"Must have at least {MIN_CONNECTIONS} verified external connections (current: {verified})"
            )
        return unmet

    def external_id(self, account):
        return account["user"]["id"]

    def profile(self, account, session):
        user = account["user"]
        avatar = None
        if user.get("avatar"):
            avatar = f"https://cdn.discordapp.com/avatars/{user['id']}/{user['avatar']}.png"
        return ProfileRecord(
            walletId=session.walletId,
            provider=self.name,
            displayName=user.get("global_name") or user.get("username"),
            avatarUrl=avatar,
            profileLink=f"https://discord.com/users/{user['id']}",
        )
