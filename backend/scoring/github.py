from scoring import build, criterion, tier

MAX_SCORE = 30


def score(data):
    age_days = data.get("account_age_days") or 0
    repos = data.get("public_repos") or 0
    followers = data.get("followers") or 0

    repo_points = tier(repos, [(3, 10), (1, 5)])
    criteria = [
        criterion("Account exists", "GitHub account is linked", 5, bool(data.get("id"))),
        criterion("Account age ≥ 6 months", f"Account is {int(age_days)} days old", 10, age_days >= 180),
        criterion(
            "≥ 3 public repositories",
            f"{repos} public repositories",
            10,
            repo_points == 10,
            partial=repo_points,
        ),
        criterion("≥ 10 followers", f"{followers} followers", 5, followers >= 10),
    ]
    return build(criteria, MAX_SCORE)
