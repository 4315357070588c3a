import pytest
from httpx import AsyncClient


@pytest.mark.api
@pytest.mark.referral
class TestReferralAPI:
    """Test suite for referral endpoints."""

    async def test_apply_referral_code(self, client: AsyncClient, referrer, new_user):
        response = await client.post(
            "/api/v1/referrals/apply",
            json={"user_id": new_user.id, "referral_code": "priy0042"}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["mock_mode"] is False
        assert data["referral"]["status"] == "pending"
        assert data["referral"]["reward_amount"] == 500.0
        assert sorted(r["type"] for r in data["rewards"]) == ["order_discount", "signup_bonus"]

    async def test_self_referral_returns_typed_conflict(self, client: AsyncClient, referrer):
        response = await client.post(
            "/api/v1/referrals/apply",
            json={"user_id": referrer.id, "referral_code": "PRIY0042"}
        )

        assert response.status_code == 409
        data = response.json()
        assert data["error"] == "SELF_REFERRAL"
        assert data["message"] == "Cannot use your own referral code"

    async def test_invalid_code(self, client: AsyncClient, new_user):
        response = await client.post(
            "/api/v1/referrals/apply",
            json={"user_id": new_user.id, "referral_code": "NOPE0000"}
        )

        assert response.status_code == 404
        assert response.json()["error"] == "INVALID_REFERRAL_CODE"

    async def test_missing_fields(self, client: AsyncClient):
        response = await client.post("/api/v1/referrals/apply", json={"user_id": "u1"})
        assert response.status_code == 422

    async def test_complete_twice(self, client: AsyncClient, referrer, new_user):
        applied = await client.post(
            "/api/v1/referrals/apply",
            json={"user_id": new_user.id, "referral_code": "PRIY0042"}
        )
        referral_id = applied.json()["referral"]["id"]
        body = {"referral_id": referral_id, "order_id": "ORD100", "order_amount": 3200.0}

        first = await client.post("/api/v1/referrals/complete", json=body)
        second = await client.post("/api/v1/referrals/complete", json=body)

        assert first.status_code == 200
        assert first.json()["referrer_reward"]["amount"] == 500.0
        assert first.json()["referral"]["reward_given"] is True
        assert second.status_code == 409
        assert second.json()["error"] == "ALREADY_COMPLETED"

    async def test_complete_unknown_referral(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/referrals/complete",
            json={"referral_id": "missing", "order_id": "ORD1"}
        )
        assert response.status_code == 404

    async def test_list_and_stats(self, client: AsyncClient, referrer, new_user):
        await client.post(
            "/api/v1/referrals/apply",
            json={"user_id": new_user.id, "referral_code": "PRIY0042"}
        )

        listed = await client.get("/api/v1/referrals", params={"user_id": referrer.id})
        stats = await client.get("/api/v1/referrals/stats", params={"user_id": "priya@example.com"})

        assert listed.status_code == 200
        assert len(listed.json()["referrals"]) == 1
        assert stats.status_code == 200
        assert stats.json()["stats"]["pending_referrals"] == 1
        assert stats.json()["stats"]["total_earnings"] == 0.0

    async def test_stats_require_user_id(self, client: AsyncClient):
        response = await client.get("/api/v1/referrals/stats")
        assert response.status_code == 422

    async def test_cancel(self, client: AsyncClient, referrer, new_user):
        applied = await client.post(
            "/api/v1/referrals/apply",
            json={"user_id": new_user.id, "referral_code": "PRIY0042"}
        )
        referral_id = applied.json()["referral"]["id"]

        response = await client.post(f"/api/v1/referrals/{referral_id}/cancel")

        assert response.status_code == 200
        assert response.json()["referral"]["status"] == "cancelled"

    async def test_register_and_validate(self, client: AsyncClient, referrer):
        validation = await client.post(
            "/api/v1/auth/validate-referral", json={"referral_code": "PRIY0042"}
        )
        registered = await client.post(
            "/api/v1/auth/register",
            json={
                "user_id": "firebase-uid-kavya",
                "email": "kavya@example.com",
                "name": "Kavya Menon",
                "referral_code_used": "PRIY0042"
            }
        )

        assert validation.json()["valid"] is True
        assert validation.json()["referrer"]["email"] == "pr***@example.com"
        assert registered.status_code == 201
        assert registered.json()["referral"]["referral"]["referrer_id"] == referrer.id

    async def test_register_duplicate_email(self, client: AsyncClient, referrer):
        response = await client.post(
            "/api/v1/auth/register",
            json={"email": "priya@example.com", "name": "Priya"}
        )
        assert response.status_code == 409
        assert response.json()["error"] == "DUPLICATE_USER"

    async def test_order_completed_hook(self, client: AsyncClient, referrer, new_user):
        await client.post(
            "/api/v1/referrals/apply",
            json={"user_id": new_user.id, "referral_code": "PRIY0042"}
        )

        response = await client.post(
            "/api/v1/orders/ORD555/completed",
            json={"user_id": new_user.id, "order_amount": 4500.0}
        )

        assert response.status_code == 200
        assert response.json()["referral"]["status"] == "completed"

    async def test_get_user(self, client: AsyncClient, referrer):
        response = await client.get("/api/v1/users/priya@example.com")

        assert response.status_code == 200
        assert response.json()["referral_code"] == "PRIY0042"


@pytest.mark.api
@pytest.mark.reward
class TestRewardAPI:
    """Test suite for reward endpoints."""

    async def test_use_reward_flow(self, client: AsyncClient, make_reward, new_user):
        reward = await make_reward(new_user.id)

        available = await client.get("/api/v1/rewards/available", params={"user_id": new_user.id})
        used = await client.post(f"/api/v1/rewards/{reward.id}/use", json={"order_id": "ORD42"})
        again = await client.post(f"/api/v1/rewards/{reward.id}/use", json={"order_id": "ORD43"})

        assert available.json()["total_amount"] == 200.0
        assert used.status_code == 200
        assert used.json()["reward"]["order_id"] == "ORD42"
        assert again.status_code == 409
        assert again.json()["error"] == "ALREADY_USED"

    async def test_use_expired_reward(self, client: AsyncClient, make_reward, new_user):
        reward = await make_reward(new_user.id, expires_in_days=-1)

        response = await client.post(f"/api/v1/rewards/{reward.id}/use")

        assert response.status_code == 410
        assert response.json()["error"] == "EXPIRED"

    async def test_available_by_type(self, client: AsyncClient, make_reward, new_user):
        await make_reward(new_user.id)

        response = await client.get(
            "/api/v1/rewards/available", params={"user_id": new_user.id, "type": "signup_bonus"}
        )

        assert response.status_code == 200
        assert response.json()["rewards"] == []

    async def test_create_reward(self, client: AsyncClient, new_user):
        response = await client.post(
            "/api/v1/rewards",
            json={"user_id": new_user.id, "type": "order_discount", "amount": 120.0, "description": "Diwali offer"}
        )

        assert response.status_code == 201
        assert response.json()["reward"]["amount"] == 120.0

    async def test_create_reward_rejects_non_positive_amount(self, client: AsyncClient, new_user):
        response = await client.post(
            "/api/v1/rewards",
            json={"user_id": new_user.id, "type": "order_discount", "amount": 0}
        )
        assert response.status_code == 422


@pytest.mark.api
class TestMockModeAPI:
    """Endpoints without a configured database."""

    async def test_apply_is_flagged_as_mock(self, mock_client: AsyncClient):
        response = await mock_client.post(
            "/api/v1/referrals/apply",
            json={"user_id": "user-1", "referral_code": "PRIY0042"}
        )

        assert response.status_code == 200
        assert response.json()["mock_mode"] is True

    async def test_stats_degrade_to_zero(self, mock_client: AsyncClient):
        response = await mock_client.get("/api/v1/referrals/stats", params={"user_id": "user-1"})

        assert response.status_code == 200
        assert response.json()["stats"]["total_referrals"] == 0
        assert response.json()["mock_mode"] is True

    async def test_user_lookup_is_unavailable(self, mock_client: AsyncClient):
        response = await mock_client.get("/api/v1/users/user-1")

        assert response.status_code == 503
        assert response.json()["error"] == "SERVICE_UNAVAILABLE"

    async def test_health(self, mock_client: AsyncClient):
        response = await mock_client.get("/health")
        assert response.json()["status"] == "healthy"
