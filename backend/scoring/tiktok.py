from scoring import build, criterion

MAX_SCORE = 10


def score(data):
    criteria = [
        criterion("Account exists", "TikTok account is linked", 3, bool(data.get("open_id"))),
        criterion("Username set", "Account has a username", 2, bool(data.get("username"))),
        criterion("Profile avatar", "Account has a profile picture", 2, bool(data.get("avatar_url"))),
        criterion("Display name set", "Account has a display name", 3, bool(data.get("display_name"))),
    ]
    return build(criteria, MAX_SCORE)
