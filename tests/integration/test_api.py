"""HTTP surface: auth, response shapes and error mapping."""

from __future__ import annotations

import pytest
from httpx import AsyncClient

pytestmark = pytest.mark.asyncio

OTHER_WALLET = "0x2222222222222222222222222222222222222222"


class TestAuth:
    async def test_missing_token(self, client: AsyncClient):
        response = await client.get("/api/v1/xp/me")
        assert response.status_code in (401, 403)

    async def test_invalid_token(self, client: AsyncClient):
        response = await client.get("/api/v1/xp/me", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401

    async def test_first_request_creates_user(self, client: AsyncClient, user_headers):
        response = await client.get("/api/v1/users/me", headers=user_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["wallet_address"] == "0x1111111111111111111111111111111111111111"
        assert data["is_active"] is True
        assert data["is_admin"] is False
        assert len(data["referral_code"]) == 8

    async def test_admin_routes_refuse_regular_users(self, client: AsyncClient, user_headers):
        response = await client.post(
            "/api/v1/admin/leaderboard/generate", json={"period": "all-time"}, headers=user_headers
        )
        assert response.status_code == 403
        assert response.json()["detail"] == "Admin access required"


class TestEvents:
    async def test_submit_awards_xp(self, client: AsyncClient, user_headers):
        response = await client.post(
            "/api/v1/events",
            json={"type": "supply", "metadata": {"amount": "100"}, "dedup_key": "supply-1"},
            headers=user_headers,
        )
        assert response.status_code == 200
        data = response.json()
        assert data["awarded"] is True
        assert data["xp_awarded"] == 150

        repeat = await client.post(
            "/api/v1/events",
            json={"type": "supply", "metadata": {"amount": "100"}, "dedup_key": "supply-1"},
            headers=user_headers,
        )
        assert repeat.status_code == 200
        assert repeat.json()["duplicate"] is True
        assert repeat.json()["awarded"] is False

    async def test_unknown_type_is_400(self, client: AsyncClient, user_headers):
        response = await client.post("/api/v1/events", json={"type": "teleport"}, headers=user_headers)
        assert response.status_code == 400
        assert response.json()["error_code"] == "ValidationError"

    async def test_malformed_body_is_422(self, client: AsyncClient, user_headers):
        response = await client.post("/api/v1/events", json={"metadata": {}}, headers=user_headers)
        assert response.status_code == 422
        assert response.json()["detail"] == "Validation error"

    async def test_list_my_events(self, client: AsyncClient, user_headers):
        await client.post("/api/v1/events", json={"type": "swap"}, headers=user_headers)
        response = await client.get("/api/v1/events/me", headers=user_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["events"][0]["type"] == "swap"
        assert data["events"][0]["status"] == "processed"


class TestXP:
    async def test_summary_after_events(self, client: AsyncClient, user_headers):
        await client.post("/api/v1/events", json={"type": "deposit"}, headers=user_headers)
        await client.post("/api/v1/events", json={"type": "swap"}, headers=user_headers)

        response = await client.get("/api/v1/xp/me", headers=user_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["total_xp"] == 150
        assert data["level"] == 2
        assert data["by_reason"] == {"event": 150}

        ledger = await client.get("/api/v1/xp/ledger", headers=user_headers)
        assert ledger.json()["total"] == 2

    async def test_ledger_rejects_unknown_reason(self, client: AsyncClient, user_headers):
        response = await client.get("/api/v1/xp/ledger", params={"reason": "bribe"}, headers=user_headers)
        assert response.status_code == 400

    async def test_rules_and_levels_are_public(self, client: AsyncClient):
        rules = await client.get("/api/v1/xp/rules")
        assert rules.status_code == 200
        assert len(rules.json()["rules"]) == 7

        levels = await client.get("/api/v1/xp/levels")
        assert levels.status_code == 200
        assert levels.json()["levels"][0]["title"] == "Newcomer"

    async def test_admin_adjust(self, client: AsyncClient, admin_headers, headers_for):
        me = await client.get("/api/v1/users/me", headers=headers_for(OTHER_WALLET))
        user_id = me.json()["id"]

        response = await client.post(
            "/api/v1/admin/xp/adjust",
            json={"user_id": user_id, "delta": 75, "description": "bug bounty", "idempotency_key": "bounty-1"},
            headers=admin_headers,
        )
        assert response.status_code == 200
        assert response.json()["reason"] == "admin_adjustment"

        again = await client.post(
            "/api/v1/admin/xp/adjust",
            json={"user_id": user_id, "delta": 75, "description": "bug bounty", "idempotency_key": "bounty-1"},
            headers=admin_headers,
        )
        assert again.status_code == 200
        assert again.json() is None


class TestQuests:
    async def test_list_and_claim(self, client: AsyncClient, user_headers):
        listing = await client.get("/api/v1/quests", headers=user_headers)
        assert listing.status_code == 200
        quests = listing.json()["quests"]
        assert len(quests) == 5
        deposit = next(q for q in quests if q["quest"]["name"] == "Make a Deposit")
        assert deposit["progress"]["target"] == 1
        assert deposit["progress"]["state"] == "not_started"
        quest_id = deposit["quest"]["id"]

        early = await client.post("/api/v1/quests/claim", json={"quest_id": quest_id}, headers=user_headers)
        assert early.status_code == 409
        assert early.json()["success"] is False
        assert early.json()["error_code"] == "NotCompleted"

        await client.post("/api/v1/events", json={"type": "deposit"}, headers=user_headers)
        claim = await client.post("/api/v1/quests/claim", json={"quest_id": quest_id}, headers=user_headers)
        assert claim.status_code == 200
        assert claim.json()["success"] is True
        assert claim.json()["xp_awarded"] == 100

        again = await client.post("/api/v1/quests/claim", json={"quest_id": quest_id}, headers=user_headers)
        assert again.status_code == 409
        assert again.json()["error_code"] == "AlreadyClaimed"

        history = await client.get("/api/v1/quests/history", headers=user_headers)
        assert history.json()["total"] == 1

    async def test_claim_unknown_quest(self, client: AsyncClient, user_headers):
        response = await client.post("/api/v1/quests/claim", json={"quest_id": 9999}, headers=user_headers)
        assert response.status_code == 404
        assert response.json()["success"] is False

    async def test_admin_create_and_complete(self, client: AsyncClient, admin_headers, headers_for):
        user_id = (await client.get("/api/v1/users/me", headers=headers_for(OTHER_WALLET))).json()["id"]

        created = await client.post(
            "/api/v1/admin/quests",
            json={
                "name": "Weekly Supplier",
                "cadence": "weekly",
                "rule": {"type": "event_count", "event_type": "supply", "target_count": 3},
                "reward_xp": 300,
                "metadata": {"icon": "supply"},
            },
            headers=admin_headers,
        )
        assert created.status_code == 201
        quest = created.json()
        assert quest["metadata"] == {"icon": "supply"}

        updated = await client.put(
            f"/api/v1/admin/quests/{quest['id']}", json={"reward_xp": 350}, headers=admin_headers
        )
        assert updated.json()["reward_xp"] == 350

        completed = await client.post(
            f"/api/v1/admin/quests/{quest['id']}/complete", json={"user_id": user_id}, headers=admin_headers
        )
        assert completed.status_code == 200
        assert completed.json()["state"] == "completed"
        assert completed.json()["period_key"] == "weekly:2026-10-11"

    async def test_admin_update_rejects_null(self, client: AsyncClient, admin_headers):
        quests = (await client.get("/api/v1/quests", headers=admin_headers)).json()["quests"]
        quest_id = quests[0]["quest"]["id"]

        response = await client.put(
            f"/api/v1/admin/quests/{quest_id}", json={"reward_xp": None, "name": None}, headers=admin_headers
        )
        assert response.status_code == 400
        assert response.json()["error_code"] == "ValidationError"

    async def test_admin_rejects_bad_rule(self, client: AsyncClient, admin_headers):
        response = await client.post(
            "/api/v1/admin/quests",
            json={"name": "Broken", "rule": {"type": "telepathy"}, "reward_xp": 10},
            headers=admin_headers,
        )
        assert response.status_code == 400


class TestReferrals:
    async def test_track_and_reward(self, client: AsyncClient, user_headers, headers_for):
        code = (await client.get("/api/v1/users/me", headers=user_headers)).json()["referral_code"]
        invitee = headers_for(OTHER_WALLET)

        verify = await client.get(f"/api/v1/referrals/verify/{code.lower()}")
        assert verify.json() == {"valid": True, "referral_code": code, "referral_count": 0}

        tracked = await client.post("/api/v1/referrals/track", json={"referral_code": code}, headers=invitee)
        assert tracked.status_code == 200
        assert tracked.json()["referral"]["status"] == "pending"

        await client.post("/api/v1/events", json={"type": "deposit"}, headers=invitee)

        stats = await client.get("/api/v1/referrals/me", headers=user_headers)
        assert stats.json()["rewarded"] == 1
        assert stats.json()["xp_earned"] == 500

        history = await client.get("/api/v1/referrals/history", headers=user_headers)
        assert history.json()["referrals"][0]["status"] == "rewarded"

    async def test_self_referral(self, client: AsyncClient, user_headers):
        code = (await client.get("/api/v1/users/me", headers=user_headers)).json()["referral_code"]
        response = await client.post("/api/v1/referrals/track", json={"referral_code": code}, headers=user_headers)
        assert response.status_code == 409
        assert response.json()["error_code"] == "SelfReferral"

    async def test_unknown_code(self, client: AsyncClient, user_headers):
        verify = await client.get("/api/v1/referrals/verify/NOPE0000")
        assert verify.json()["valid"] is False

        response = await client.post(
            "/api/v1/referrals/track", json={"referral_code": "NOPE0000"}, headers=user_headers
        )
        assert response.status_code == 404
        assert response.json()["success"] is False
        assert response.json()["error_code"] == "InvalidReferralCodeError"

    async def test_admin_reject(self, client: AsyncClient, user_headers, admin_headers, headers_for):
        code = (await client.get("/api/v1/users/me", headers=user_headers)).json()["referral_code"]
        tracked = await client.post(
            "/api/v1/referrals/track", json={"referral_code": code}, headers=headers_for(OTHER_WALLET)
        )
        referral_id = tracked.json()["referral"]["id"]

        rejected = await client.post(
            f"/api/v1/admin/referrals/{referral_id}/override",
            json={"action": "reject", "reason": "sybil"},
            headers=admin_headers,
        )
        assert rejected.status_code == 200
        assert rejected.json()["status"] == "rejected"

        again = await client.post(
            f"/api/v1/admin/referrals/{referral_id}/override",
            json={"action": "approve"},
            headers=admin_headers,
        )
        assert again.status_code == 409
        assert again.json()["error_code"] == "InvalidTransitionError"


class TestLeaderboard:
    async def test_cold_start_and_rank(self, client: AsyncClient, user_headers):
        await client.post("/api/v1/events", json={"type": "supply"}, headers=user_headers)

        board = await client.get("/api/v1/leaderboard", params={"period": "daily"})
        assert board.status_code == 200
        data = board.json()
        assert data["total_users"] == 1
        assert data["rows"][0]["score"] == 150
        assert data["rows"][0]["rank"] == 1

        me = await client.get("/api/v1/leaderboard/me", params={"period": "daily"}, headers=user_headers)
        assert me.json()["found"] is True
        assert me.json()["rank"] == 1

    async def test_invalid_period(self, client: AsyncClient):
        response = await client.get("/api/v1/leaderboard", params={"period": "monthly"})
        assert response.status_code == 400

    async def test_latest_snapshot_missing(self, client: AsyncClient):
        response = await client.get("/api/v1/leaderboard/snapshot/latest", params={"period": "weekly"})
        assert response.status_code == 404

    async def test_admin_generate_and_list(self, client: AsyncClient, admin_headers):
        generated = await client.post(
            "/api/v1/admin/leaderboard/generate", json={"period": "weekly"}, headers=admin_headers
        )
        assert generated.status_code == 200
        assert generated.json()["status"] == "completed"

        latest = await client.get("/api/v1/leaderboard/snapshot/latest", params={"period": "weekly"})
        assert latest.json()["id"] == generated.json()["id"]

        listing = await client.get(
            "/api/v1/admin/leaderboard/snapshots", params={"period": "weekly"}, headers=admin_headers
        )
        assert [s["id"] for s in listing.json()["snapshots"]] == [generated.json()["id"]]


class TestUserStatus:
    async def test_disabled_user_is_refused(self, client: AsyncClient, admin_headers, headers_for):
        target = headers_for(OTHER_WALLET)
        user_id = (await client.get("/api/v1/users/me", headers=target)).json()["id"]

        response = await client.put(
            f"/api/v1/admin/users/{user_id}/status", json={"is_active": False}, headers=admin_headers
        )
        assert response.status_code == 200
        assert response.json()["is_active"] is False

        refused = await client.get("/api/v1/xp/me", headers=target)
        assert refused.status_code == 403

    async def test_unknown_user(self, client: AsyncClient, admin_headers):
        response = await client.put(
            "/api/v1/admin/users/9999/status", json={"is_active": False}, headers=admin_headers
        )
        assert response.status_code == 404
