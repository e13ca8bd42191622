import time

import httpx
import pytest

from config import Settings
from http_client import RetryPolicy
from store import MemoryStore, SqlStore

TEST_ENV = {
    "SECRET_SALT": "test-salt",
    "BACKEND_URL": "http://api.test",
    "FRONTEND_URL": "http://app.test",
    "LOCAL_DB_FILE": "",
    "DISCORD_CLIENT_ID": "discord-id",
    "DISCORD_CLIENT_SECRET": "discord-secret",
    "TWITTER_CLIENT_ID": "twitter-id",
    "TWITTER_CLIENT_SECRET": "twitter-secret",
    "GITHUB_CLIENT_ID": "github-id",
    "GITHUB_CLIENT_SECRET": "github-secret",
    "GOOGLE_CLIENT_ID": "google-id",
    "GOOGLE_CLIENT_SECRET": "google-secret",
    "TIKTOK_CLIENT_ID": "tiktok-key",
    "TIKTOK_CLIENT_SECRET": "tiktok-secret",
    "TELEGRAM_BOT_TOKEN": "123456:bot-token",
    "TELEGRAM_BOT_USERNAME": "persona_test_bot",
    "STEAM_API_KEY": "steam-key",
    "ETHERSCAN_API_KEY": "etherscan-key",
    "SOLANA_RPC_URL": "http://solana.test",
}

FAST_RETRY = RetryPolicy(max_attempts=3, base_delay=0, max_delay=0)


class FakeUpstream:
    """Routes requests to canned handlers and records every call."""

    def __init__(self):
        self.routes = []
        self.calls = []

    def add(self, method, prefix, handler):
        if not callable(handler):
            payload = handler
            handler = lambda request: httpx.Response(200, json=payload)
        self.routes.append((method, prefix, handler))
        return self

    def __call__(self, request):
        self.calls.append(request)
        url = str(request.url)
        for method, prefix, handler in self.routes:
            if request.method == method and url.startswith(prefix):
                return handler(request)
        return httpx.Response(404, json={"message": f"no route for {request.method} {url}"})

    def transport(self):
        return httpx.MockTransport(self)

    def client(self):
        return httpx.AsyncClient(transport=self.transport())


@pytest.fixture
def settings():
    return Settings(env=dict(TEST_ENV))


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest.fixture
async def http(upstream):
    client = upstream.client()
    yield client
    await client.aclose()


@pytest.fixture
async def memory_store():
    store = MemoryStore()
    await store.open()
    yield store
    await store.close()


@pytest.fixture
async def sql_store():
    store = SqlStore("sqlite:///:memory:")
    await store.open()
    yield store
    await store.close()


@pytest.fixture(params=["memory", "sql"])
async def any_store(request):
    store = MemoryStore() if request.param == "memory" else SqlStore("sqlite:///:memory:")
    await store.open()
    yield store
    await store.close()


DAY_MS = 86400 * 1000


def snowflake(age_days):
    from providers.discord import DISCORD_EPOCH_MS

    created_ms = int(time.time() * 1000) - age_days * DAY_MS
    return str((created_ms - DISCORD_EPOCH_MS) << 22)


def discord_routes(upstream, age_days=400, guilds=12, connections=2):
    upstream.add("POST", "https://discord.com/api/oauth2/token", {"access_token": "tok"})
    upstream.add("GET", "https://discord.com/api/v10/users/@me", {
        "id": snowflake(age_days), "username": "nick", "verified": True, "avatar": "abc",
    })
    upstream.add(
        "GET", "https://discord.com/api/users/@me/guilds",
        [{"name": "Aleo"}] + [{"name": f"guild {i}"} for i in range(guilds - 1)],
    )
    upstream.add(
        "GET", "https://discord.com/api/users/@me/connections",
        [{"type": "github", "verified": True} for _ in range(connections)],
    )


def etherscan(balance_wei="200000000000000000", nonce="0x96", first_ts=None, last_ts=None):
    now = int(time.time())
    first_ts = first_ts or now - 400 * 86400
    last_ts = last_ts or now - 86400

    def handler(request):
        params = request.url.params
        if params["action"] == "balance":
            return httpx.Response(200, json={"status": "1", "message": "OK", "result": balance_wei})
        if params["action"] == "eth_getTransactionCount":
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": nonce})
        ts = first_ts if params["sort"] == "asc" else last_ts
        return httpx.Response(200, json={"status": "1", "message": "OK", "result": [{"timeStamp": str(ts)}]})

    return handler
