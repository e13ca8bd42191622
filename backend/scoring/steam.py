from scoring import build, criterion

MAX_SCORE = 2.8

PROFILE_CONFIGURED = 1
VISIBILITY_PUBLIC = 3


def score(data):
    player = data.get("player") or {}
    configured = player.get("profilestate") == PROFILE_CONFIGURED
    public = player.get("communityvisibilitystate") == VISIBILITY_PUBLIC

    criteria = [
        criterion("Account exists", "Steam account is linked", 1.0, bool(data.get("steam_id"))),
        criterion("Public profile", "Steam community profile is set up", 0.8, configured),
        criterion(
            "Established account",
            "Profile is set up and publicly visible",
            1.0,
            configured and public,
        ),
    ]
    return build(criteria, MAX_SCORE)
