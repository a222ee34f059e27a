from crewclock.infra.metrics import configure_metrics
from crewclock.main import app
from crewclock.settings import settings


def _samples(counter) -> list:
    samples = []
    for metric in counter.collect():
        samples.extend(metric.samples)
    return samples


def test_metrics_endpoint_exports_time_tracking_series(client, frozen_clock):
    settings.app_env = "dev"
    app.state.metrics = configure_metrics(True)

    client.post("/v1/time-tracking/clock-in", json={"user_id": "worker-1", "event_id": "event-1"})
    client.post("/v1/time-tracking/clock-in", json={"user_id": "worker-1", "event_id": "event-1"})

    response = client.get("/metrics")

    assert response.status_code == 200
    body = response.text
    assert 'time_tracking_actions_total{action="clock_in",outcome="ok"} 1.0' in body
    assert 'time_tracking_actions_total{action="clock_in",outcome="already_clocked_in"} 1.0' in body
    assert "http_request_latency_seconds" in body


def test_stale_sessions_are_counted(client, frozen_clock):
    app.state.metrics = configure_metrics(True)

    client.post("/v1/time-tracking/clock-in", json={"user_id": "worker-1", "event_id": "event-1"})
    frozen_clock.advance(hours=30)
    client.put("/v1/time-tracking/clock-out/worker-1")

    samples = _samples(app.state.metrics.stale_sessions)
    assert any(
        sample.name == "time_tracking_stale_sessions_total"
        and sample.labels.get("reason") == "clock_out"
        and sample.value == 1.0
        for sample in samples
    )


def test_metrics_endpoint_requires_token_in_prod(client):
    app.state.metrics = configure_metrics(True)
    settings.app_env = "prod"
    settings.metrics_token = "secret-token"

    unauthorized = client.get("/metrics")
    assert unauthorized.status_code == 401

    authorized = client.get("/metrics", headers={"Authorization": "Bearer secret-token"})
    assert authorized.status_code == 200


def test_metrics_unmatched_path_uses_placeholder(client_no_raise):
    app.state.metrics = configure_metrics(True)

    response = client_no_raise.get("/does-not-exist/12345")
    assert response.status_code == 404

    samples = _samples(app.state.metrics.http_latency)
    assert any(sample.labels.get("path") == "unmatched" for sample in samples)


def test_metrics_endpoint_disabled_when_metrics_off(client):
    app.state.metrics = configure_metrics(False)
    try:
        response = client.get("/metrics")
    finally:
        app.state.metrics = configure_metrics(True)

    assert response.status_code == 404
