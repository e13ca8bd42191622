"""
Per-provider scoring rules.

Every module exposes ``score(data) -> ScoreResult`` and a ``MAX_SCORE``.
Rules always appear in the criteria list, achieved or not, so a client can
render progress; tiered rules that are only partly met report the points
they earned in ``partialPoints``.
"""
from schemas import Criterion, ScoreResult


def criterion(condition, description, points, achieved, partial=None):
    if achieved or not partial:
        partial = None
    return Criterion(
        condition=condition,
        description=description,
        points=points,
        achieved=bool(achieved),
        partialPoints=partial,
    )


def tier(value, tiers):
    """Points for the first (threshold, points) pair ``value`` reaches, else 0."""
    for threshold, points in tiers:
        if value >= threshold:
            return points
    return 0


def build(criteria, max_score) -> ScoreResult:
    total = 0.0
    for c in criteria:
        total += c.points if c.achieved else (c.partialPoints or 0)
    total = max(0.0, min(float(max_score), total))
    return ScoreResult(score=round(total, 2), maxScore=max_score, criteria=criteria)


def _load():
    from scoring import discord, evm, github, google, solana, steam, telegram, tiktok, twitter

    return {
        "discord": discord,
        "twitter": twitter,
        "github": github,
        "google": google,
        "steam": steam,
        "telegram": telegram,
        "tiktok": tiktok,
        "evm": evm,
        "solana": solana,
    }


def score_for(provider, data) -> ScoreResult:
    return _load()[getattr(provider, "value", provider)].score(data)
