import json
from datetime import datetime, timedelta, timezone

from config import Settings
from database import engine_options, make_engine
from schemas import ProfileRecord, SessionRecord, SessionStatus, utcnow
from store import MemoryStore, SqlStore, open_store


def make_session(session_id="discord_abc", ttl=3600, **kwargs):
    now = utcnow()
    return SessionRecord(
        sessionId=session_id,
        provider=kwargs.pop("provider", "discord"),
        walletId=kwargs.pop("walletId", "aleo1abc"),
        stateData=kwargs.pop("stateData", {"walletId": "aleo1abc"}),
        createdAt=now,
        expiresAt=now + timedelta(seconds=ttl),
        **kwargs,
    )


VERIFICATION = {
    "commitment": "123field",
    "score": 6.8,
    "maxScore": 7.8,
    "status": "verified",
    "metadata": {"criteria": [{"condition": "Account exists", "description": "d", "points": 1.0, "achieved": True}],
                 "commitment": "123field"},
}


async def test_save_then_get_verification(any_store):
    await any_store.save_verification("aleo1abc", "discord", VERIFICATION)
    record = await any_store.get_verification("aleo1abc", "discord")

    assert record.score == 6.8
    assert record.maxScore == 7.8
    assert record.commitment == "123field"
    assert record.criteria[0].condition == "Account exists"


async def test_second_save_overwrites(any_store):
    await any_store.save_verification("aleo1abc", "discord", VERIFICATION)
    await any_store.save_verification("aleo1abc", "discord", {**VERIFICATION, "score": 7.8, "commitment": "456field"})

    records = await any_store.get_user_verifications("aleo1abc")
    assert len(records) == 1
    assert records[0].score == 7.8
    assert records[0].commitment == "456field"


async def test_user_verifications_newest_first(any_store):
    older = utcnow() - timedelta(days=2)
    await any_store.save_verification("w", "github", {**VERIFICATION, "verifiedAt": older})
    await any_store.save_verification("w", "discord", VERIFICATION)
    await any_store.save_verification("other", "discord", VERIFICATION)

    records = await any_store.get_user_verifications("w")
    assert [r.provider for r in records] == ["discord", "github"]


async def test_delete_verification(any_store):
    await any_store.save_verification("w", "github", VERIFICATION)

    assert await any_store.delete_verification("w", "github") is True
    assert await any_store.delete_verification("w", "github") is False
    assert await any_store.get_verification("w", "github") is None


async def test_verification_ttl_sets_expiry(any_store):
    record = await any_store.save_verification("w", "github", {**VERIFICATION, "ttlDays": 30})

    assert record.expiresAt - record.verifiedAt == timedelta(days=30)


async def test_session_roundtrip_and_update(any_store):
    await any_store.save_session(make_session())
    session = await any_store.get_session("discord_abc")
    assert session.status == SessionStatus.pending

    session.status = SessionStatus.verified
    session.stateData = {**session.stateData, "result": {"score": 1}}
    assert await any_store.update_session(session) is not None

    reloaded = await any_store.get_session("discord_abc")
    assert reloaded.status == SessionStatus.verified
    assert reloaded.stateData["result"] == {"score": 1}


async def test_expired_session_is_absent(any_store):
    await any_store.save_session(make_session("discord_old", ttl=-1))

    assert await any_store.get_session("discord_old") is None
    assert await any_store.get_session("discord_old") is None
    assert await any_store.update_session(make_session("discord_old")) is None


async def test_sweep_removes_only_expired(any_store):
    await any_store.save_session(make_session("discord_old", ttl=-10))
    await any_store.save_session(make_session("discord_live"))

    assert await any_store.sweep_expired() == 1
    assert await any_store.get_session("discord_live") is not None


async def test_profiles(any_store):
    await any_store.save_profile(ProfileRecord(walletId="w", provider="discord", displayName="first"))
    await any_store.save_profile(ProfileRecord(walletId="w", provider="discord", displayName="second"))

    profile = await any_store.get_profile("w")
    assert profile.displayName == "second"
    assert await any_store.get_profile("nobody") is None


async def test_memory_snapshot_reload_restores_dates(tmp_path):
    path = tmp_path / "local_db.json"
    store = MemoryStore(str(path))
    await store.open()
    await store.save_verification("w", "discord", VERIFICATION)
    await store.save_session(make_session())
    await store.save_profile(ProfileRecord(walletId="w", provider="discord", displayName="nick"))

    snapshot = json.loads(path.read_text())
    assert set(snapshot) == {"verifications", "sessions", "profiles"}
    assert snapshot["sessions"][0][0] == "discord_abc"

    reloaded = MemoryStore(str(path))
    await reloaded.open()
    record = await reloaded.get_verification("w", "discord")
    session = await reloaded.get_session("discord_abc")

    assert isinstance(record.verifiedAt, datetime)
    assert record.verifiedAt.tzinfo is not None
    assert isinstance(session.expiresAt, datetime)
    assert (await reloaded.get_profile("w")).displayName == "nick"


async def test_memory_returns_copies(memory_store):
    await memory_store.save_session(make_session())
    session = await memory_store.get_session("discord_abc")
    session.stateData["tampered"] = True

    assert "tampered" not in (await memory_store.get_session("discord_abc")).stateData


async def test_sql_store_reads_naive_datetimes_as_utc(sql_store):
    await sql_store.save_session(make_session())
    session = await sql_store.get_session("discord_abc")

    assert session.expiresAt.tzinfo == timezone.utc


async def test_open_store_without_url_uses_memory():
    store = await open_store(Settings(env={"LOCAL_DB_FILE": ""}))

    assert isinstance(store, MemoryStore)
    await store.close()


async def test_open_store_uses_database_when_reachable():
    store = await open_store(Settings(env={"DATABASE_URL": "sqlite:///:memory:", "LOCAL_DB_FILE": ""}))

    assert isinstance(store, SqlStore)
    await store.close()


async def test_open_store_falls_back_when_database_unreachable(tmp_path):
    url = f"sqlite:///{tmp_path}/missing/dir/db.sqlite"
    store = await open_store(Settings(env={"DATABASE_URL": url, "LOCAL_DB_FILE": ""}))

    assert isinstance(store, MemoryStore)
    await store.close()


async def test_sweeper_task_is_owned_by_store(memory_store):
    task = memory_store.start_sweeper(3600)

    assert memory_store.start_sweeper(3600) is task
    await memory_store.close()
    assert task.cancelled()


def test_postgres_engine_bounds_connect_and_statement_time():
    options = engine_options("postgresql://user:pw@db.test/persona", timeout=3)

    assert options["connect_args"] == {"connect_timeout": 3, "options": "-c statement_timeout=3000"}
    assert options["pool_timeout"] == 3


def test_engine_accepts_legacy_postgres_scheme():
    engine = make_engine("postgres://user:pw@db.test/persona", timeout=3)

    assert engine.url.drivername == "postgresql"
    assert engine.pool.timeout() == 3
    engine.dispose()
