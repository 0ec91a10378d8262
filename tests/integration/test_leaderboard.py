"""Leaderboard snapshot generation, visibility and reads."""

from __future__ import annotations

import asyncio

import pytest

from questboard.errors import SnapshotTimeoutError, ValidationError
from questboard.leaderboard.ranking import is_strictly_ordered
from questboard.users.service import set_user_active

pytestmark = pytest.mark.asyncio


async def _users_with_scores(engine, make_user, scores: list[int]):
    users = []
    for score in scores:
        user = await make_user()
        if score:
            await engine.xp.admin_adjust(user.id, score, "seed score")
        users.append(user)
    return users


class TestGeneration:
    async def test_ties_ranked_by_user_id(self, engine, make_user):
        a, b, c = await _users_with_scores(engine, make_user, [300, 300, 150])

        snapshot = await engine.generate_leaderboard("all-time")
        assert snapshot.status == "completed"
        assert snapshot.total_users == 3
        assert snapshot.top_score == 300
        assert snapshot.average_score == 250.0

        board = await engine.get_leaderboard("all-time")
        assert [(r["rank"], r["user_id"], r["score"]) for r in board["rows"]] == [
            (1, min(a.id, b.id), 300),
            (2, max(a.id, b.id), 300),
            (3, c.id, 150),
        ]
        assert is_strictly_ordered(board["rows"])
        assert board["rows"][0]["wallet_address"] is not None

    async def test_zero_and_negative_totals_excluded(self, engine, make_user):
        scored, _ = await _users_with_scores(engine, make_user, [100, 0])
        negative = await make_user()
        await engine.xp.admin_adjust(negative.id, -10, "penalty")

        board = await engine.get_leaderboard("all-time")
        assert [r["user_id"] for r in board["rows"]] == [scored.id]

    async def test_inactive_users_excluded(self, engine, make_user, session_factory):
        active, banned = await _users_with_scores(engine, make_user, [100, 500])
        async with session_factory() as db:
            await set_user_active(db, banned.id, False)
            await db.commit()

        await engine.generate_leaderboard("all-time")
        board = await engine.get_leaderboard("all-time")
        assert [r["user_id"] for r in board["rows"]] == [active.id]

    async def test_daily_window_only_counts_today(self, engine, make_user, clock):
        veteran, newcomer = await _users_with_scores(engine, make_user, [1000, 0])
        clock.advance(days=1)
        await engine.xp.admin_adjust(newcomer.id, 40, "today")
        await engine.xp.admin_adjust(veteran.id, 10, "today")

        daily = await engine.get_leaderboard("daily")
        assert [(r["user_id"], r["score"]) for r in daily["rows"]] == [(newcomer.id, 40), (veteran.id, 10)]

        all_time = await engine.get_leaderboard("all-time")
        assert [(r["user_id"], r["score"]) for r in all_time["rows"]] == [(veteran.id, 1010), (newcomer.id, 40)]

    async def test_invalid_period(self, engine):
        with pytest.raises(ValidationError):
            await engine.generate_leaderboard("monthly")


class TestVisibility:
    async def test_failed_snapshot_never_served(self, engine, make_user, monkeypatch):
        await _users_with_scores(engine, make_user, [100])
        good = await engine.generate_leaderboard("all-time")

        async def boom(db, period, window):
            raise RuntimeError("aggregate query failed")

        monkeypatch.setattr(engine.leaderboard, "aggregate_scores", boom)
        with pytest.raises(RuntimeError):
            await engine.generate_leaderboard("all-time")

        latest = await engine.leaderboard.get_latest("all-time")
        assert latest.id == good.id

        snapshots = await engine.leaderboard.list_snapshots("all-time")
        failed = [s for s in snapshots if s.status == "failed"]
        assert len(failed) == 1
        assert failed[0].error_message == "aggregate query failed"

    async def test_timeout_marks_snapshot_failed(self, engine, make_user, monkeypatch):
        await _users_with_scores(engine, make_user, [100])

        async def slow(db, period, window):
            await asyncio.sleep(5)
            return []

        monkeypatch.setattr(engine.leaderboard, "aggregate_scores", slow)
        engine.leaderboard.timeout_seconds = 0.05

        with pytest.raises(SnapshotTimeoutError) as exc_info:
            await engine.generate_leaderboard("weekly")
        assert exc_info.value.is_retryable is True

        snapshots = await engine.leaderboard.list_snapshots("weekly")
        assert [s.status for s in snapshots] == ["failed"]
        assert await engine.leaderboard.get_latest("weekly") is None

    async def test_latest_wins(self, engine, make_user):
        (user,) = await _users_with_scores(engine, make_user, [100])
        await engine.generate_leaderboard("all-time")
        await engine.xp.admin_adjust(user.id, 50, "more")
        second = await engine.generate_leaderboard("all-time")

        board = await engine.get_leaderboard("all-time")
        assert board["snapshot_id"] == second.id
        assert board["rows"][0]["score"] == 150

    async def test_overlapping_generation_is_tolerated(self, engine, make_user):
        await _users_with_scores(engine, make_user, [30, 20, 10])
        snapshots = await asyncio.gather(*(engine.generate_leaderboard("all-time") for _ in range(3)))

        assert all(s.status == "completed" for s in snapshots)
        board = await engine.get_leaderboard("all-time")
        assert board["snapshot_id"] == max(s.id for s in snapshots)
        assert [r["score"] for r in board["rows"]] == [30, 20, 10]


class TestReads:
    async def test_cold_start_generates(self, engine, make_user):
        await _users_with_scores(engine, make_user, [100, 200])
        assert await engine.leaderboard.get_latest("weekly") is None

        board = await engine.get_leaderboard("weekly")
        assert board["snapshot_id"] is not None
        assert board["total_users"] == 2

    async def test_paging_and_limit_clamp(self, engine, make_user):
        await _users_with_scores(engine, make_user, [50, 40, 30, 20, 10])

        page = await engine.get_leaderboard("all-time", limit=2, skip=2)
        assert [r["rank"] for r in page["rows"]] == [3, 4]

        engine.leaderboard.max_limit = 3
        clamped = await engine.get_leaderboard("all-time", limit=100)
        assert len(clamped["rows"]) == 3

    async def test_user_rank(self, engine, make_user):
        first, second = await _users_with_scores(engine, make_user, [500, 100])
        outsider = await make_user()

        rank = await engine.get_user_rank(second.id)
        assert rank["found"] is True
        assert rank["rank"] == 2
        assert rank["score"] == 100
        assert rank["total_users"] == 2

        missing = await engine.get_user_rank(outsider.id)
        assert missing["found"] is False
        assert missing["rank"] is None


class TestScheduledJobs:
    async def test_engine_jobs_generate_every_period(self, engine, make_user):
        await _users_with_scores(engine, make_user, [100])

        engine.scheduler.run_pending()
        await engine.scheduler.join()

        for period in ("all-time", "weekly", "daily"):
            latest = await engine.leaderboard.get_latest(period)
            assert latest is not None
            assert latest.total_users == 1
        assert all(job.runs == 1 for job in engine.scheduler.jobs.values())
