from scoring import build, criterion, tier

MAX_SCORE = 10


def score(data):
    age_days = data.get("account_age_days") or 0
    age_points = tier(age_days, [(365, 3), (180, 1.5)])

    criteria = [
        criterion("Account exists", "Telegram account is linked", 3, bool(data.get("id"))),
        criterion("Username set", "Account has a public username", 2, bool(data.get("username"))),
        criterion("Profile photo", "Account has a profile photo", 2, bool(data.get("photo_url") or data.get("has_photo"))),
        criterion(
            "Account age ≥ 1 year",
            f"Account is {int(age_days)} days old" if age_days else "Account age unknown",
            3,
            age_points == 3,
            partial=age_points,
        ),
    ]
    return build(criteria, MAX_SCORE)
