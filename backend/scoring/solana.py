from scoring import build, criterion

MAX_SCORE = 40


def score(data):
    balance = data.get("balance_sol") or 0
    tx_count = data.get("tx_count") or 0
    age_days = data.get("wallet_age_days") or 0

    criteria = [
        criterion(
            "Wallet connected & signature verified",
            "Ownership proven by signature",
            5,
            bool(data.get("signature_verified", True)),
        ),
        criterion("Tier 2 balance ≥ 1.0 SOL", f"Wallet holds {balance:.4f} SOL", 5, balance >= 1.0),
        criterion("Tier 1 balance ≥ 0.1 SOL", f"Wallet holds {balance:.4f} SOL", 5, balance >= 0.1),
        criterion("Tier 2 ≥ 100 transactions", f"{tx_count} transactions", 5, tx_count >= 100),
        criterion("Tier 1 ≥ 20 transactions", f"{tx_count} transactions", 5, tx_count >= 20),
        criterion("Wallet age ≥ 1 year", f"Oldest transaction {int(age_days)} days ago", 10, age_days >= 365),
        criterion("Recent activity", "Transaction within the last 30 days", 5, bool(data.get("recent_activity"))),
    ]
    return build(criteria, MAX_SCORE)
