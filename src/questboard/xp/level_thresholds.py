"""Level thresholds and computation.

Titles and cumulative values are shown by the client level bar; keep the
two in step when changing them.
"""

from __future__ import annotations

LEVEL_THRESHOLDS: list[dict] = [
    {"level": 1, "title": "Newcomer", "xp_required": 0, "cumulative": 0},
    {"level": 2, "title": "Explorer", "xp_required": 100, "cumulative": 100},
    {"level": 3, "title": "Depositor", "xp_required": 400, "cumulative": 500},
    {"level": 4, "title": "Liquidity Scout", "xp_required": 1000, "cumulative": 1500},
    {"level": 5, "title": "Yield Seeker", "xp_required": 2000, "cumulative": 3500},
    {"level": 6, "title": "Strategist", "xp_required": 3000, "cumulative": 6500},
    {"level": 7, "title": "Market Maker", "xp_required": 4500, "cumulative": 11000},
    {"level": 8, "title": "Vault Keeper", "xp_required": 6000, "cumulative": 17000},
    {"level": 9, "title": "Protocol Regular", "xp_required": 8000, "cumulative": 25000},
    {"level": 10, "title": "DeFi Veteran", "xp_required": 10000, "cumulative": 35000},
    {"level": 15, "title": "Whale in Training", "xp_required": 25000, "cumulative": 60000},
    {"level": 20, "title": "Governance Voice", "xp_required": 50000, "cumulative": 110000},
    {"level": 30, "title": "Legend", "xp_required": 150000, "cumulative": 260000},
]


def compute_level(total_xp: int) -> dict:
    """Compute level info from total XP.

    Negative totals (after admin corrections) clamp to level 1.
    """
    current = LEVEL_THRESHOLDS[0]
    next_level = LEVEL_THRESHOLDS[1]

    for i in range(len(LEVEL_THRESHOLDS) - 1):
        if total_xp >= LEVEL_THRESHOLDS[i]["cumulative"]:
            current = LEVEL_THRESHOLDS[i]
            next_level = LEVEL_THRESHOLDS[i + 1]

    # XP beyond max level
    if total_xp >= LEVEL_THRESHOLDS[-1]["cumulative"]:
        current = LEVEL_THRESHOLDS[-1]
        next_level = LEVEL_THRESHOLDS[-1]

    xp_into_level = max(0, total_xp - current["cumulative"])
    xp_for_level = next_level["cumulative"] - current["cumulative"]

    # At max level, avoid division by zero on the client
    if xp_for_level == 0:
        xp_for_level = 1

    return {
        "level": current["level"],
        "title": current["title"],
        "xp_into_level": xp_into_level,
        "xp_for_level": xp_for_level,
        "next_level": next_level["level"],
        "next_title": next_level["title"],
    }
