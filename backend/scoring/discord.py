from scoring import build, criterion

MAX_SCORE = 7.8

MIN_SERVERS = 5


def _in_aleo_server(guilds):
    return any("aleo" in (g.get("name") or "").lower() for g in guilds)


def score(data):
    user = data.get("user") or {}
    guilds = data.get("guilds") or []
    guild_count = len(guilds)

    criteria = [
        criterion("Account exists", "Discord account is linked", 1.0, bool(user.get("id"))),
        criterion("Email verified", "Discord email address is verified", 0.8, bool(user.get("verified"))),
        criterion(
            f"≥ {MIN_SERVERS} server memberships",
            f"Member of {guild_count} servers",
            1.0,
            guild_count >= MIN_SERVERS,
            partial=0.5 if guild_count >= 1 else None,
        ),
        criterion(
            "Aleo Official Server",
            "Member of the official Aleo Discord server",
            5.0,
            _in_aleo_server(guilds),
        ),
    ]
    return build(criteria, MAX_SCORE)
