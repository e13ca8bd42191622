from providers.base import OAuthAdapter, days_since, parse_timestamp
from schemas import Provider

TOKEN_URL = "https://github.com/login/oauth/access_token"
API = "https://api.github.com"

MIN_ACCOUNT_AGE_DAYS = 30
MIN_PUBLIC_REPOS = 1


class GitHubAdapter(OAuthAdapter):
    provider = Provider.github
    authorize_url = "https://github.com/login/oauth/authorize"
    scopes = "read:user user:email"

    def authorization_params(self, session_id):
        params = super().authorization_params(session_id)
        del params["response_type"]
        return params

    async def exchange(self, proof, session):
        # GitHub reports bad codes with a 200 and an 'error' field
        body = await self.post_json(
            TOKEN_URL,
            headers={"Accept": "application/json"},
            data={
                "client_id": self.credential("CLIENT_ID"),
                "client_secret": self.credential("CLIENT_SECRET"),
                "code": self.require_code(proof),
                "redirect_uri": self.redirect_uri,
            },
        )
        return self.access_token(body)

    async def fetch_account(self, token, proof, session):
        headers = {**self.bearer(token), "Accept": "application/vnd.github+json"}
        user = await self.get_json(f"{API}/user", headers=headers)
        if not user.get("public_repos"):
            repos = await self.get_json(
                f"{API}/users/{user['login']}/repos",
                params={"per_page": 100, "type": "owner"},
                headers=headers,
            )
            user["public_repos"] = len(repos or [])
        user["account_age_days"] = days_since(parse_timestamp(user.get("created_at")))
        return user

    def check_eligibility(self, account):
        unmet = []
        age = account["account_age_days"]
        if age < MIN_ACCOUNT_AGE_DAYS:
            unmet.append(
                f"GitHub account must be at least {MIN_ACCOUNT_AGE_DAYS} days old (current: {age} days)"
            )
        repos = account.get("public_repos") or 0
        if repos < MIN_PUBLIC_REPOS:
            unmet.append(f"Must have at least {MIN_PUBLIC_REPOS} public repository (current: {repos})")
        return unmet

    def external_id(self, account):
        return account["id"]
