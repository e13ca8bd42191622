from scoring import build, criterion

MAX_SCORE = 15


def score(data):
    email_verified = bool(data.get("email_verified"))
    criteria = [
        criterion("Account exists", "Google account is linked", 5, bool(data.get("sub"))),
        criterion("Email verified", "Google email address is verified", 5, email_verified),
        # Google exposes no creation date; a verified address is the proxy
        criterion(
            "Account age ≥ 1 year",
            "Estimated from a verified email address",
            5,
            email_verified,
        ),
    ]
    return build(criteria, MAX_SCORE)
