from errors import VerificationError
from providers.base import OAuthAdapter, days_since, parse_timestamp
from schemas import Provider

TOKEN_URL = "https://api.twitter.com/2/oauth2/token"
ME_URL = "https://api.twitter.com/2/users/me"

MIN_ACCOUNT_AGE_DAYS = 30


class TwitterAdapter(OAuthAdapter):
    provider = Provider.twitter
    authorize_url = "https://twitter.com/i/oauth2/authorize"
    scopes = "tweet.read users.read offline.access"
    uses_pkce = True

    async def exchange(self, proof, session):
        client_id = self.credential("CLIENT_ID")
        body = await self.post_json(
            TOKEN_URL,
            auth=(client_id, self.credential("CLIENT_SECRET")),
            data={
                "code": self.require_code(proof),
                "grant_type": "authorization_code",
                "client_id": client_id,
                "redirect_uri": self.redirect_uri,
                "code_verifier": self.code_verifier(proof, session),
            },
        )
        return self.access_token(body)

    async def fetch_account(self, token, proof, session):
        body = await self.get_json(
            ME_URL,
            params={"user.fields": "created_at,public_metrics,verified"},
            headers=self.bearer(token),
        )
        user = body.get("data")
        if not user:
            raise VerificationError("Twitter returned no user data")
        user["account_age_days"] = days_since(parse_timestamp(user.get("created_at")))
        return user

    def check_eligibility(self, account):
        unmet = []
        if not account.get("id") or not account.get("username"):
            unmet.append("Twitter account data is incomplete")
        age = account["account_age_days"]
        if age < MIN_ACCOUNT_AGE_DAYS:
            unmet.append(
                f"Twitter account must be at least {MIN_ACCOUNT_AGE_DAYS} days old (current: {age} days)"
            )
        return unmet

    def external_id(self, account):
        return account["id"]
