from errors import VerificationError
from providers.base import OAuthAdapter
from schemas import Provider

TOKEN_URL = "https://open.tiktokapis.com/v2/oauth/token/"
USER_URL = "https://open.tiktokapis.com/v2/user/info/"
USER_FIELDS = "open_id,union_id,avatar_url,display_name,username"


class TikTokAdapter(OAuthAdapter):
    provider = Provider.tiktok
    authorize_url = "https://www.tiktok.com/v2/auth/authorize"
    scopes = "user.info.basic"
    client_id_param = "client_key"

    async def exchange(self, proof, session):
        body = await self.post_json(TOKEN_URL, data={
            "client_key": self.credential("CLIENT_ID"),
            "client_secret": self.credential("CLIENT_SECRET"),
            "code": self.require_code(proof),
            "grant_type": "authorization_code",
            "redirect_uri": self.redirect_uri,
        })
        return self.access_token(body)

    async def fetch_account(self, token, proof, session):
        body = await self.get_json(USER_URL, params={"fields": USER_FIELDS}, headers=self.bearer(token))
        error = body.get("error") or {}
        if error.get("code") not in (None, "ok"):
            raise VerificationError(error.get("message") or "TikTok user lookup failed")
        return (body.get("data") or {}).get("user") or {}

    def check_eligibility(self, account):
        if not account.get("open_id"):
            return ["TikTok account identifier missing"]
        return []

    def external_id(self, account):
        return account["open_id"]
