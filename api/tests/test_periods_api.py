"""Tests for period endpoints."""
import pytest

from app.core.locks import organization_gate


@pytest.fixture
def risks(client, auth_headers):
    created = []
    for title, likelihood, impact in (("Fraud", 3, 3), ("Outage", 4, 2), ("Churn", 2, 2)):
        created.append(client.post("/risks/", json={
            "title": title, "inherent_likelihood": likelihood, "inherent_impact": impact,
        }, headers=auth_headers).json())
    return created


class TestCommitEndpoint:

    def test_admin_only(self, client, auth_headers, risks):
        response = client.post("/periods/commit", headers=auth_headers)
        assert response.status_code == 403

    def test_commit(self, client, admin_headers, risks):
        current = client.get("/periods/current", headers=admin_headers).json()

        response = client.post("/periods/commit", json={"notes": "Quarter close"}, headers=admin_headers)

        assert response.status_code == 200
        result = response.json()
        assert result["period_id"] == current["period_id"]
        assert result["snapshot_count"] == 3
        new_current = client.get("/periods/current", headers=admin_headers).json()
        assert new_current["period_id"] == result["next_period_id"]

        committed = client.get(f"/periods/{result['period_id']}", headers=admin_headers).json()
        assert committed["status"] == "committed"
        assert committed["notes"] == "Quarter close"
        assert committed["risks_count"] == 3
        assert committed["label"].startswith("Q")

    def test_commit_without_period(self, client, admin_headers):
        response = client.post("/periods/commit", headers=admin_headers)
        assert response.status_code == 409
        assert response.json()["code"] == "NO_OPEN_PERIOD"

    def test_commit_while_committing(self, client, admin_headers, admin_user, risks):
        with organization_gate.exclusive(admin_user.organization_id):
            response = client.post("/periods/commit", headers=admin_headers)
        assert response.status_code == 423


class TestPeriodReads:

    def test_current_without_period(self, client, auth_headers):
        assert client.get("/periods/current", headers=auth_headers).status_code == 409

    def test_list(self, client, auth_headers, admin_headers, risks):
        client.post("/periods/commit", headers=admin_headers)
        periods = client.get("/periods/", headers=auth_headers).json()
        assert [p["status"] for p in periods] == ["committed", "open"]
        committed = client.get("/periods/", params={"status": "committed"}, headers=auth_headers).json()
        assert len(committed) == 1

    def test_snapshot(self, client, auth_headers, admin_headers, risks):
        result = client.post("/periods/commit", headers=admin_headers).json()
        rows = client.get(f"/periods/{result['period_id']}/snapshot", headers=auth_headers).json()
        assert [r["risk_code"] for r in rows] == ["RSK-00001", "RSK-00002", "RSK-00003"]
        assert [r["residual_score"] for r in rows] == [9, 8, 4]

    def test_compare(self, client, auth_headers, admin_headers, risks):
        first = client.post("/periods/commit", headers=admin_headers).json()
        client.patch(f"/risks/{risks[2]['risk_id']}", json={"version": risks[2]["version"], "status": "CLOSED"},
                     headers=auth_headers)
        second = client.post("/periods/commit", headers=admin_headers).json()

        response = client.get("/periods/compare", params={
            "from_period_id": first["period_id"], "to_period_id": second["period_id"],
        }, headers=auth_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["new_risks"] == []
        assert [c["risk_code"] for c in data["changed_risks"]] == ["RSK-00003"]
        assert data["changed_risks"][0]["new_status"] == "CLOSED"

    def test_compare_open_period_rejected(self, client, auth_headers, admin_headers, risks):
        result = client.post("/periods/commit", headers=admin_headers).json()
        response = client.get("/periods/compare", params={
            "from_period_id": result["period_id"], "to_period_id": result["next_period_id"],
        }, headers=auth_headers)
        assert response.status_code == 422

    def test_other_organization(self, client, admin_headers, outsider_headers, risks):
        result = client.post("/periods/commit", headers=admin_headers).json()
        assert client.get(f"/periods/{result['period_id']}", headers=outsider_headers).status_code == 404


class TestReportingEndpoints:

    def test_trends(self, client, auth_headers, admin_headers, risks):
        client.post("/periods/commit", headers=admin_headers)
        client.post("/periods/commit", headers=admin_headers)

        response = client.get("/periods/trends", headers=auth_headers)
        assert response.status_code == 200
        trends = response.json()
        assert len(trends) == 2
        # Residual scores 9, 8 and 4
        assert trends[0]["by_level"]["Moderate"] == 2
        assert trends[0]["by_level"]["Low"] == 1
        assert trends[0]["avg_residual_score"] == 7.0
        assert trends[0]["high_severe_count"] == 0

    def test_trends_empty_before_first_commit(self, client, auth_headers, risks):
        assert client.get("/periods/trends", headers=auth_headers).json() == []

    def test_migrations(self, client, auth_headers, admin_headers, risks):
        first = client.post("/periods/commit", headers=admin_headers).json()
        alert = client.post("/treatment-alerts/", json={
            "risk_id": risks[0]["risk_id"], "likelihood_delta": 2,
        }, headers=auth_headers).json()
        client.post(f"/treatment-alerts/{alert['alert_id']}/accept", headers=auth_headers)
        client.post(f"/treatment-alerts/{alert['alert_id']}/apply", headers=auth_headers)
        second = client.post("/periods/commit", headers=admin_headers).json()

        response = client.get("/periods/migrations", params={
            "from_period_id": first["period_id"], "to_period_id": second["period_id"],
        }, headers=auth_headers)
        assert response.status_code == 200
        migrations = response.json()
        assert len(migrations) == 1
        assert migrations[0]["risk_code"] == "RSK-00001"
        assert (migrations[0]["from_level"], migrations[0]["to_level"]) == ("Moderate", "High")
        assert migrations[0]["direction"] == "deteriorated"

