"""HTTP end-to-end tests against the FastAPI app."""
from datetime import datetime, timedelta

from experiment_engine.jobs.harm_check import run_harm_checks


def _create(client, **overrides):
    now = datetime.utcnow()
    payload = {
        "name": "Pricing Test A",
        "category": "pricing",
        "variantA": {"discount": 0},
        "variantB": {"discount": 0.10},
        "metric": "revenue_per_booking",
        "startAt": (now - timedelta(days=1)).isoformat(),
        "endAt": (now + timedelta(days=30)).isoformat(),
    }
    payload.update(overrides)
    response = client.post("/experiments", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


def test_pricing_experiment_end_to_end(client):
    experiment = _create(client)
    experiment_id = experiment["experiment_id"]
    assert experiment["status"] == "STOPPED"

    assert client.post(f"/experiments/{experiment_id}/start").json()["status"] == "RUNNING"

    variants = {}
    for i in range(60):
        resolved = client.get(f"/categories/pricing/config/booking_{i}").json()
        assert resolved["experiment_id"] == experiment_id
        expected = {"discount": 0} if resolved["variant"] == "A" else {"discount": 0.10}
        assert resolved["config"] == expected
        variants[f"booking_{i}"] = resolved["variant"]

    for entity_id, variant in variants.items():
        value = 100.0 if variant == "A" else 108.0
        response = client.post(
            "/outcomes",
            json={
                "experimentId": experiment_id,
                "entityId": entity_id,
                "variant": variant,
                "metric": "revenue_per_booking",
                "value": value,
            },
        )
        assert response.status_code == 201

    summary = client.get(f"/experiments/{experiment_id}/results").json()
    assert summary["variant_a"]["primary_mean"] == 100.0
    assert summary["variant_b"]["primary_mean"] == 108.0
    assert summary["variant_a"]["assignment_count"] + summary["variant_b"]["assignment_count"] == 60
    assert summary["winner"] == "B"

    promoted = client.post(
        f"/experiments/{experiment_id}/promote", json={"variant": "B", "markPromoted": True}
    ).json()
    assert promoted["winner_variant"] == "B"
    assert promoted["promoted_at"] is not None


def test_no_active_experiment_returns_null(client):
    response = client.get("/categories/pricing/config/booking_1")
    assert response.status_code == 200
    assert response.json() is None


def test_assignment_endpoint_is_stable(client):
    experiment_id = _create(client)["experiment_id"]
    first = client.get(f"/experiments/{experiment_id}/assignment/user_1").json()
    second = client.get(f"/experiments/{experiment_id}/assignment/user_1").json()
    assert first["variant"] == second["variant"]
    assert first["assigned_at"] == second["assigned_at"]


def test_error_mapping(client):
    assert client.get("/experiments/missing").status_code == 404
    assert client.get("/experiments/missing/config/e1").json() is None

    experiment_id = _create(client)["experiment_id"]
    client.post(f"/experiments/{experiment_id}/start")
    assert client.post(f"/experiments/{experiment_id}/start").status_code == 409
    response = client.patch(f"/experiments/{experiment_id}", json={"metric": "margin"})
    assert response.status_code == 409
    assert client.get(f"/experiments/{experiment_id}").json()["metric"] == "revenue_per_booking"

    bad = client.post("/experiments", json={"name": "No metric"})
    assert bad.status_code == 422


def test_update_then_list(client):
    experiment_id = _create(client)["experiment_id"]
    response = client.patch(
        f"/experiments/{experiment_id}",
        json={"variantB": {"discount": 0.2}, "harmThreshold": {"metric": "margin", "minValue": 0.05}},
    )
    assert response.status_code == 200
    assert response.json()["variant_b"] == {"discount": 0.2}
    assert response.json()["harm_threshold"] == {"metric": "margin", "minValue": 0.05}

    listed = client.get("/experiments").json()
    assert [e["experiment_id"] for e in listed] == [experiment_id]


def test_harm_check_endpoints(client):
    experiment_id = _create(
        client,
        metric="conversion_rate",
        harmThreshold={"metric": "conversion_rate", "minValue": 0.10},
    )["experiment_id"]
    client.post(f"/experiments/{experiment_id}/start")
    for variant, value in (("A", 0.20), ("B", 0.05)):
        client.post(
            "/outcomes",
            json={
                "experimentId": experiment_id,
                "entityId": f"{variant}_1",
                "variant": variant,
                "metric": "conversion_rate",
                "value": value,
            },
        )

    results = client.post("/experiments/harm-check").json()
    assert results == [
        {
            "experiment_id": experiment_id,
            "stopped": True,
            "reason": results[0]["reason"],
        }
    ]
    assert "conversion_rate" in results[0]["reason"]
    assert client.post(f"/experiments/{experiment_id}/harm-check").json()["stopped"] is False

    snapshot = client.get("/experiments/snapshot").json()
    assert snapshot["running_count"] == 0
    assert snapshot["total"] == 1


def test_options(client):
    options = client.get("/experiments/options").json()
    assert "pricing" in options["categories"]
    assert "revenue_per_booking" in options["primary_metrics"]


def test_harm_check_job(session_factory, client):
    _create(client)
    assert run_harm_checks(session_factory) == []
