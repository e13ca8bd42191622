from urllib.parse import parse_qs, urlparse

import pytest
from eth_account import Account
from eth_account.messages import encode_defunct
from fastapi.testclient import TestClient

from config import Settings
from conftest import TEST_ENV, discord_routes, etherscan
from main import _oauth_proof, create_app
from store import MemoryStore

WALLET = "aleo1abc"


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def client(upstream, store):
    app = create_app(settings=Settings(env=dict(TEST_ENV)), store=store, transport=upstream.transport())
    with TestClient(app) as client:
        yield client


def start_oauth(client, provider="discord"):
    response = client.get(f"/auth/{provider}/start", params={"walletId": WALLET}, follow_redirects=False)
    assert response.status_code == 302
    state = parse_qs(urlparse(response.headers["location"]).query)["state"][0]
    return state


def signed_wallet_proof(client):
    started = client.get("/auth/evm/start", params={"walletId": WALLET}).json()
    account = Account.create()
    signed = Account.sign_message(encode_defunct(text=started["message"]), private_key=account.key)
    return started["sessionId"], {
        "address": account.address,
        "signature": "0x" + bytes(signed.signature).hex(),
        "message": started["message"],
    }


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["store"] == "memory"


def test_config_status(client):
    providers = client.get("/config/status").json()["providers"]

    assert providers["github"]["configured"] is True
    assert providers["evm"]["missing"] == []


def test_start_redirects_to_provider(client, store):
    session_id = start_oauth(client)

    assert session_id.startswith("discord_")
    assert session_id in store.sessions


def test_start_requires_wallet(client):
    assert client.get("/auth/discord/start").status_code == 422
    assert client.get("/auth/unknown/start", params={"walletId": WALLET}).status_code == 422


def test_start_unconfigured_provider_is_400(upstream):
    app = create_app(settings=Settings(env={"SECRET_SALT": "s"}), store=MemoryStore(), transport=upstream.transport())
    with TestClient(app) as client:
        response = client.get("/auth/github/start", params={"walletId": WALLET})
        wallet = client.get("/auth/solana/start", params={"walletId": WALLET})

    assert response.status_code == 400
    assert response.json()["missing"] == ["GITHUB_CLIENT_ID", "GITHUB_CLIENT_SECRET"]
    assert wallet.status_code == 200


def test_wallet_start_returns_descriptor(client):
    body = client.get("/auth/solana/start", params={"walletId": WALLET}).json()

    assert body["sessionId"].startswith("solana_")
    assert body["type"] == "ed25519"
    assert body["nonce"] in body["message"]


def test_oauth_callback_renders_post_message(client, upstream, store):
    session_id = start_oauth(client)
    discord_routes(upstream)

    response = client.get("/auth/discord/callback", params={"code": "abc", "state": session_id})

    assert response.status_code == 200
    assert "oauth-complete" in response.text
    assert "window.opener.postMessage" in response.text
    assert "nick" not in response.text
    record = store.verifications[f"{WALLET}:discord"]
    assert record.commitment in response.text

    status = client.get("/auth/discord/status", params={"session": session_id}).json()
    assert status["status"] == "verified"
    assert status["result"]["score"] == 7.8


def test_oauth_callback_without_session_redirects(client):
    missing = client.get("/auth/discord/callback", params={"code": "abc"}, follow_redirects=False)
    invalid = client.get(
        "/auth/discord/callback", params={"code": "abc", "state": "discord_nope"}, follow_redirects=False
    )

    assert missing.headers["location"] == "http://app.test/verify/callback?provider=discord&error=missing_session"
    assert invalid.headers["location"].endswith("error=invalid_session")


def test_oauth_callback_with_pkce_state(client, upstream):
    state = start_oauth(client, "twitter")
    session_id, verifier = state.split(":", 1)
    upstream.add("POST", "https://api.twitter.com/2/oauth2/token", {"access_token": "tok"})
    upstream.add("GET", "https://api.twitter.com/2/users/me", {"data": {
        "id": "99", "username": "someone", "created_at": "2018-01-01T00:00:00Z",
        "public_metrics": {"tweet_count": 1, "followers_count": 1},
    }})

    response = client.get("/auth/twitter/callback", params={"code": "c", "state": state})

    assert "oauth-complete" in response.text
    assert parse_qs(upstream.calls[0].content.decode())["code_verifier"] == [verifier]
    assert client.get("/auth/twitter/status", params={"session": session_id}).json()["status"] == "verified"


def test_oauth_denied_marks_session_failed(client):
    session_id = start_oauth(client, "github")

    response = client.get("/auth/github/callback", params={"error": "access_denied", "state": session_id})

    assert "oauth-error" in response.text
    assert "access_denied" in response.text
    status = client.get("/auth/github/status", params={"session": session_id}).json()
    assert status["status"] == "failed"


def test_wallet_callback_and_user_views(client, upstream):
    upstream.add("GET", "https://api.etherscan.io/v2/api", etherscan())
    session_id, proof = signed_wallet_proof(client)

    response = client.post("/auth/evm/callback", json={"sessionId": session_id, **proof})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["result"]["score"] == 35
    assert body["result"]["commitment"].endswith("field")

    # A second submission returns the stored outcome
    repeat = client.post("/auth/evm/callback", json={"sessionId": session_id, **proof})
    assert repeat.json() == body

    listing = client.get(f"/user/{WALLET}/verifications").json()["verifications"]
    assert listing[0]["provider"] == "evm"
    assert len(listing[0]["criteria"]) == 4

    score = client.get(f"/user/{WALLET}/score").json()
    assert score["totalScore"] == 35
    assert score["breakdown"]["evm"]["maxScore"] == 35

    assert client.delete(f"/user/{WALLET}/verifications/evm").status_code == 200
    assert client.delete(f"/user/{WALLET}/verifications/evm").status_code == 404
    assert client.get(f"/user/{WALLET}/verifications").json()["verifications"] == []


def test_wallet_callback_accepts_query_shape(client, upstream):
    upstream.add("GET", "https://api.etherscan.io/v2/api", etherscan())
    session_id, proof = signed_wallet_proof(client)

    response = client.get("/auth/evm/callback", params={"session": session_id, **proof})

    assert response.status_code == 200
    assert response.json()["status"] == "verified"


def test_wallet_callback_errors(client, upstream):
    session_id, proof = signed_wallet_proof(client)
    proof["address"] = Account.create().address

    unknown = client.post("/auth/evm/callback", json={"sessionId": "evm_nope", **proof})
    mismatch = client.post("/auth/evm/callback", json={"sessionId": session_id, **proof})

    assert unknown.status_code == 404
    assert mismatch.status_code == 400
    assert mismatch.json()["errors"] == ["Signature does not match the claimed address"]
    assert upstream.calls == []


def test_post_callback_is_wallet_only(client):
    response = client.post(
        "/auth/discord/callback", json={"sessionId": "x", "address": "a", "signature": "s", "message": "m"}
    )

    assert response.status_code == 405


def test_status_of_unknown_session(client):
    assert client.get("/auth/discord/status", params={"session": "discord_nope"}).status_code == 404


def test_telegram_webhook_always_acknowledges(client, upstream, store):
    upstream.add("POST", "https://api.telegram.org/bot123456:bot-token/sendMessage", {"ok": True})
    response = client.get("/auth/telegram/start", params={"walletId": WALLET}, follow_redirects=False)
    session_id = response.headers["location"].split("start=", 1)[1]

    linked = client.post("/auth/telegram/webhook", json={
        "message": {"text": f"/start {session_id}", "from": {"id": 555, "username": "tg"}},
    })
    ignored = client.post("/auth/telegram/webhook", json={"message": {"text": "hi"}})

    assert linked.json() == {"ok": True}
    assert ignored.json() == {"ok": True}
    assert store.sessions[session_id].stateData["telegramUserId"] == 555


def test_unexpected_errors_become_generic_failure(upstream):
    class BrokenStore(MemoryStore):
        async def get_user_verifications(self, wallet_id):
            raise RuntimeError("disk on fire")

    app = create_app(settings=Settings(env=dict(TEST_ENV)), store=BrokenStore(), transport=upstream.transport())
    with TestClient(app, raise_server_exceptions=False) as client:
        response = client.get(f"/user/{WALLET}/score")

    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "Verification failed"}


def test_wallet_id_must_be_well_formed(client):
    bad = client.get("/auth/discord/start", params={"walletId": "aleo1 abc<script>"}, follow_redirects=False)
    long = client.get("/auth/evm/start", params={"walletId": "a" * 256})
    email = client.get("/auth/evm/start", params={"walletId": "someone@example.com"})

    assert bad.status_code == 422
    assert long.status_code == 422
    assert email.status_code == 200
    assert client.get("/user/bad$wallet/score").status_code == 422


def test_start_and_callback_are_rate_limited(upstream):
    settings = Settings(env={**TEST_ENV, "RATE_LIMIT": "2/minute"})
    app = create_app(settings=settings, store=MemoryStore(), transport=upstream.transport())
    with TestClient(app) as client:
        starts = [client.get("/auth/evm/start", params={"walletId": WALLET}).status_code for _ in range(3)]
        callbacks = [
            client.get("/auth/discord/callback", params={"code": "abc"}, follow_redirects=False).status_code
            for _ in range(3)
        ]

    assert starts == [200, 200, 429]
    assert callbacks == [302, 302, 429]


def test_oauth_state_is_split_into_session_and_verifier():
    session_id, proof = _oauth_proof({"state": "twitter_abc:verifier", "code": "c"})

    assert session_id == "twitter_abc"
    assert proof.codeVerifier == "verifier"
    assert "state" not in proof.model_dump()
