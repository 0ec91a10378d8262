"""Deterministic leaderboard ranking.

Users ranked by score DESC, then by user_id ASC, so equal scores always
come out in the same order. Ranks are dense and 1-based: the n-th row
gets rank n, ties included.
"""

from __future__ import annotations

from typing import Any

LEADERBOARD_PERIODS: tuple[str, ...] = ("all-time", "daily", "weekly")


def rank_scores(scores: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Rank users by score.

    Input: list of dicts with at least:
        - user_id: int
        - score: int

    Rows with a non-positive score are dropped. Output: the remaining rows
    sorted and augmented with ``rank``.
    """
    ranked = sorted(
        (row for row in scores if row.get("score", 0) > 0),
        key=lambda row: (-row["score"], row["user_id"]),
    )
    for idx, row in enumerate(ranked):
        row["rank"] = idx + 1
    return ranked


def snapshot_stats(ranked: list[dict[str, Any]]) -> dict[str, Any]:
    """Aggregate stats for a ranked list: user count, top and average score."""
    if not ranked:
        return {"total_users": 0, "top_score": 0, "average_score": 0.0}
    total = sum(row["score"] for row in ranked)
    return {
        "total_users": len(ranked),
        "top_score": ranked[0]["score"],
        "average_score": round(total / len(ranked), 2),
    }


def is_strictly_ordered(rows: list[dict[str, Any]]) -> bool:
    """Whether rows follow (score desc, user_id asc) with ranks 1..n and no repeated user."""
    seen: set[int] = set()
    for idx, row in enumerate(rows):
        if row["rank"] != idx + 1 or row["user_id"] in seen:
            return False
        seen.add(row["user_id"])
        if idx and (-rows[idx - 1]["score"], rows[idx - 1]["user_id"]) >= (-row["score"], row["user_id"]):
            return False
    return True
