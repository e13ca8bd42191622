import re

from errors import VerificationError
from providers.base import ProviderAdapter
from schemas import AuthorizationRequest, Provider

OPENID_URL = "https://steamcommunity.com/openid/login"
OPENID_NS = "http://specs.openid.net/auth/2.0"
IDENTIFIER_SELECT = "http://specs.openid.net/auth/2.0/identifier_select"
SUMMARIES_URL = "https://api.steampowered.com/ISteamUser/GetPlayerSummaries/v0002/"

STEAM_ID_RE = re.compile(r"/id/(\d+)$")


class SteamAdapter(ProviderAdapter):
    """Steam sign-in over OpenID 2.0; the session id rides on return_to."""

    provider = Provider.steam
    authorize_url = OPENID_URL

    def build_authorization_request(self, session_id):
        return AuthorizationRequest(redirectTarget=self.authorization_url(**{
            "openid.ns": OPENID_NS,
            "openid.mode": "checkid_setup",
            "openid.return_to": f"{self.redirect_uri}?state={session_id}",
            "openid.realm": self.settings.backend_url,
            "openid.identity": IDENTIFIER_SELECT,
            "openid.claimed_id": IDENTIFIER_SELECT,
        }))

    async def exchange(self, proof, session):
        params = {k: v for k, v in proof.params.items() if k.startswith("openid.")}
        claimed = params.get("openid.claimed_id")
        if not claimed:
            raise VerificationError("Steam OpenID response missing")

        params["openid.mode"] = "check_authentication"
        response = await self.request("POST", OPENID_URL, data=params)
        if "is_valid:true" not in response.text:
            raise VerificationError("Steam OpenID assertion could not be validated")

        match = STEAM_ID_RE.search(claimed)
        if not match:
            raise VerificationError("Could not extract Steam id")
        return match.group(1)

    async def fetch_account(self, steam_id, proof, session):
        account = {"steam_id": steam_id, "player": None}
        api_key = self.settings.get("STEAM_API_KEY")
        if api_key:
            body = await self.get_json(SUMMARIES_URL, params={"key": api_key, "steamids": steam_id})
            players = (body.get("response") or {}).get("players") or []
            account["player"] = players[0] if players else None
        return account

    def external_id(self, account):
        return account["steam_id"]
