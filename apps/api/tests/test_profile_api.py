"""
Tests for the per-user profile (training focus and onboarding state).
"""
from core.security import create_access_token


class TestProfile:
    def test_unknown_profile_is_404(self, client, auth_headers):
        resp = client.get("/api/profile", headers=auth_headers)

        assert resp.status_code == 404
        assert resp.json()["code"] == "NOT_FOUND"

    def test_first_update_creates_profile(self, client, auth_headers):
        resp = client.patch("/api/profile", json={"trainingFocus": "HYBRID"}, headers=auth_headers)

        assert resp.status_code == 200
        assert resp.json() == {"trainingFocus": "HYBRID", "onboardingComplete": False}
        assert client.get("/api/profile", headers=auth_headers).json()["trainingFocus"] == "HYBRID"

    def test_update_touches_only_given_fields(self, client, auth_headers):
        client.patch("/api/profile", json={"trainingFocus": "STRENGTH"}, headers=auth_headers)

        resp = client.patch("/api/profile", json={"onboardingComplete": True}, headers=auth_headers)

        assert resp.json() == {"trainingFocus": "STRENGTH", "onboardingComplete": True}

    def test_null_focus_clears_it(self, client, auth_headers):
        client.patch(
            "/api/profile",
            json={"trainingFocus": "HYPERTROPHY", "onboardingComplete": True},
            headers=auth_headers,
        )

        resp = client.patch(
            "/api/profile",
            json={"trainingFocus": None, "onboardingComplete": None},
            headers=auth_headers,
        )

        assert resp.json() == {"trainingFocus": None, "onboardingComplete": True}

    def test_unknown_focus_rejected(self, client, auth_headers):
        resp = client.patch("/api/profile", json={"trainingFocus": "CARDIO"}, headers=auth_headers)

        assert resp.status_code == 400
        assert client.get("/api/profile", headers=auth_headers).status_code == 404

    def test_requires_session(self, client):
        assert client.get("/api/profile").status_code == 401
        assert client.patch("/api/profile", json={}).status_code == 401

    def test_profile_is_per_user(self, client, auth_headers):
        client.patch("/api/profile", json={"trainingFocus": "HYBRID"}, headers=auth_headers)
        other = {"Authorization": f"Bearer {create_access_token({'sub': 'user-2'})}"}

        assert client.get("/api/profile", headers=other).status_code == 404
