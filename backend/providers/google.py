from providers.base import OAuthAdapter
from schemas import Provider

TOKEN_URL = "https://oauth2.googleapis.com/token"
USERINFO_URL = "https://www.googleapis.com/oauth2/v3/userinfo"


class GoogleAdapter(OAuthAdapter):
    provider = Provider.google
    authorize_url = "https://accounts.google.com/o/oauth2/v2/auth"
    scopes = "openid profile email"
    uses_pkce = True

    def authorization_params(self, session_id):
        params = super().authorization_params(session_id)
        params.update(access_type="online", prompt="consent")
        return params

    async def exchange(self, proof, session):
        body = await self.post_json(TOKEN_URL, data={
            "client_id": self.credential("CLIENT_ID"),
            "client_secret": self.credential("CLIENT_SECRET"),
            "code": self.require_code(proof),
            "grant_type": "authorization_code",
            "redirect_uri": self.redirect_uri,
            "code_verifier": self.code_verifier(proof, session),
        })
        return self.access_token(body)

    async def fetch_account(self, token, proof, session):
        return await self.get_json(USERINFO_URL, headers=self.bearer(token))

    def check_eligibility(self, account):
        if not account.get("email_verified"):
            return ["Google account email must be verified"]
        return []

    def external_id(self, account):
        return account["sub"]
