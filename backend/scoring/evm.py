from scoring import build, criterion, tier

MAX_SCORE = 35

BALANCE_TIERS = [(0.1, 10), (0.05, 7), (0.01, 5), (0.001, 2)]
TX_TIERS = [(100, 10), (50, 7), (20, 5), (5, 3)]
AGE_TIERS = [(365, 10), (180, 7), (90, 5), (30, 3)]


def score(data):
    balance = data.get("balance_eth") or 0
    tx_count = data.get("tx_count") or 0
    age_days = data.get("wallet_age_days") or 0

    balance_points = tier(balance, BALANCE_TIERS)
    tx_points = tier(tx_count, TX_TIERS)
    age_points = tier(age_days, AGE_TIERS)

    criteria = [
        criterion(
            "Balance ≥ 0.1 ETH",
            f"Wallet holds {balance:.4f} ETH",
            10,
            balance_points == 10,
            partial=balance_points,
        ),
        criterion(
            "≥ 100 transactions",
            f"{tx_count} transactions sent",
            10,
            tx_points == 10,
            partial=tx_points,
        ),
        criterion(
            "Wallet age ≥ 1 year",
            f"First transaction {int(age_days)} days ago",
            10,
            age_points == 10,
            partial=age_points,
        ),
        criterion(
            "Recent activity",
            "Transaction within the last 30 days",
            5,
            bool(data.get("recent_activity")),
        ),
    ]
    return build(criteria, MAX_SCORE)
