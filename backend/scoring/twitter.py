from scoring import build, criterion, tier

MAX_SCORE = 30


def score(data):
    age_days = data.get("account_age_days") or 0
    metrics = data.get("public_metrics") or {}
    tweets = metrics.get("tweet_count", 0)
    followers = metrics.get("followers_count", 0)

    age_points = tier(age_days, [(730, 10), (365, 5)])
    criteria = [
        criterion("Account exists", "Twitter account is linked", 5, bool(data.get("id"))),
        criterion(
            "Account age ≥ 2 years",
            f"Account is {int(age_days)} days old",
            10,
            age_points == 10,
            partial=age_points,
        ),
        criterion("≥ 100 tweets", f"{tweets} tweets posted", 5, tweets >= 100),
        criterion("≥ 10 followers", f"{followers} followers", 5, followers >= 10),
        criterion("Verified account", "Account carries Twitter verification", 5, bool(data.get("verified"))),
    ]
    return build(criteria, MAX_SCORE)
