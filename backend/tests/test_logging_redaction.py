import json
import logging

from crewclock.infra.logging import (
    clear_log_context,
    configure_logging,
    redact_pii,
    update_log_context,
)
from crewclock.main import app


def _last_json_line(capsys, marker: str | None = None) -> dict:
    captured = capsys.readouterr()
    lines = (captured.out + captured.err).strip().splitlines()
    assert lines
    if marker is None:
        return json.loads(lines[-1])
    return json.loads(next(line for line in reversed(lines) if marker in line))


def test_redact_pii_masks_contact_details():
    redacted = redact_pii("call 555-123-4567 or mail crew@example.com with Bearer abc.def")

    assert "555-123-4567" not in redacted
    assert "crew@example.com" not in redacted
    assert "abc.def" not in redacted
    assert "[REDACTED_EMAIL]" in redacted


def test_structured_extra_is_flattened_and_redacted(capsys):
    configure_logging()
    logger = logging.getLogger("crewclock.test")

    logger.info(
        "time_tracking_clock_in",
        extra={"authorization": "Bearer secret", "extra": {"user_id": "worker-1", "email": "a@b.co"}},
    )

    payload = _last_json_line(capsys)
    assert payload["message"] == "time_tracking_clock_in"
    assert payload["user_id"] == "worker-1"
    assert payload["authorization"] == "[REDACTED]"
    assert payload["email"] == "[REDACTED]"


def test_log_context_is_merged_then_cleared(capsys):
    configure_logging()
    logger = logging.getLogger("crewclock.test")
    update_log_context(request_id="req-7", path="/v1/time-tracking/status/worker-1")

    logger.info("with_context")
    with_context = _last_json_line(capsys)

    clear_log_context()
    logger.info("without_context")
    without_context = _last_json_line(capsys)

    assert with_context["request_id"] == "req-7"
    assert "request_id" not in without_context


def test_domain_errors_are_logged_with_request_id(client, frozen_clock, capsys):
    configure_logging()

    response = client.put("/v1/time-tracking/clock-out/worker-1", headers={"X-Request-ID": "req-123"})

    assert response.status_code == 409
    assert response.json()["request_id"] == "req-123"
    payload = _last_json_line(capsys, marker="domain_error")
    assert payload["request_id"] == "req-123"
    assert payload["title"] == "Not Clocked In"


def test_request_id_present_in_unhandled_exception_logs(client_no_raise, capsys):
    configure_logging()

    async def boom():  # pragma: no cover - executed via HTTP
        raise RuntimeError("boom")

    route_path = "/boom-log"
    app.router.add_api_route(route_path, boom, methods=["GET"])
    try:
        response = client_no_raise.get(route_path, headers={"X-Request-ID": "req-500"})
    finally:
        app.router.routes = [route for route in app.router.routes if getattr(route, "path", None) != route_path]

    assert response.status_code == 500
    assert response.json()["request_id"] == "req-500"
    payload = _last_json_line(capsys, marker="unhandled_exception")
    assert payload["request_id"] == "req-500"
    assert "RuntimeError" in payload["exc_info"]
