"""Unit tests for deterministic leaderboard ranking."""

from questboard.leaderboard.ranking import is_strictly_ordered, rank_scores, snapshot_stats


class TestRankScores:
    """Score DESC, then user_id ASC."""

    def test_ties_broken_by_user_id(self):
        ranked = rank_scores(
            [
                {"user_id": 7, "score": 300},
                {"user_id": 5, "score": 150},
                {"user_id": 3, "score": 300},
            ]
        )
        assert [(r["user_id"], r["score"], r["rank"]) for r in ranked] == [
            (3, 300, 1),
            (7, 300, 2),
            (5, 150, 3),
        ]

    def test_non_positive_scores_dropped(self):
        ranked = rank_scores(
            [
                {"user_id": 1, "score": 0},
                {"user_id": 2, "score": -40},
                {"user_id": 3, "score": 10},
            ]
        )
        assert [r["user_id"] for r in ranked] == [3]
        assert ranked[0]["rank"] == 1

    def test_input_order_does_not_matter(self):
        rows = [{"user_id": i, "score": (i * 37) % 11 + 1} for i in range(1, 40)]
        forward = [(r["user_id"], r["rank"]) for r in rank_scores([dict(r) for r in rows])]
        backward = [(r["user_id"], r["rank"]) for r in rank_scores([dict(r) for r in reversed(rows)])]
        assert forward == backward

    def test_empty(self):
        assert rank_scores([]) == []


class TestSnapshotStats:
    def test_stats(self):
        ranked = rank_scores([{"user_id": 1, "score": 300}, {"user_id": 2, "score": 300}, {"user_id": 3, "score": 150}])
        assert snapshot_stats(ranked) == {"total_users": 3, "top_score": 300, "average_score": 250.0}

    def test_average_rounded_to_two_places(self):
        ranked = rank_scores([{"user_id": 1, "score": 10}, {"user_id": 2, "score": 10}, {"user_id": 3, "score": 11}])
        assert snapshot_stats(ranked)["average_score"] == 10.33

    def test_empty_stats(self):
        assert snapshot_stats([]) == {"total_users": 0, "top_score": 0, "average_score": 0.0}


class TestStrictOrdering:
    def test_ranked_output_is_strictly_ordered(self):
        ranked = rank_scores([{"user_id": i, "score": 100 - (i % 5)} for i in range(1, 30)])
        assert is_strictly_ordered(ranked)

    def test_gap_in_ranks_detected(self):
        rows = [{"user_id": 1, "score": 10, "rank": 1}, {"user_id": 2, "score": 5, "rank": 3}]
        assert not is_strictly_ordered(rows)

    def test_wrong_tie_order_detected(self):
        rows = [{"user_id": 9, "score": 10, "rank": 1}, {"user_id": 2, "score": 10, "rank": 2}]
        assert not is_strictly_ordered(rows)

    def test_repeated_user_detected(self):
        rows = [{"user_id": 1, "score": 10, "rank": 1}, {"user_id": 1, "score": 5, "rank": 2}]
        assert not is_strictly_ordered(rows)
