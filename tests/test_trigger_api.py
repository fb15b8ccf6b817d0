"""Tests for the /sync trigger endpoint."""

import threading
from typing import List

import pytest
from fastapi.testclient import TestClient

from sitesync.dispatch import AckResult
from sitesync.main import create_app
from sitesync.trigger.models import AuthMethod, DeploymentTrigger

from conftest import OVERRIDE_KEY, push_body, signed


class RecordingDispatcher:
    name = "recording"

    def __init__(self, accept: bool = True):
        self.accept = accept
        self.triggers: List[DeploymentTrigger] = []
        self.shut_down = False

    def dispatch(self, trigger: DeploymentTrigger) -> AckResult:
        self.triggers.append(trigger)
        if self.accept:
            return AckResult.accept(trigger.runId)
        return AckResult.reject(trigger.runId, "worker unavailable: boom")

    def shutdown(self, wait: bool = True) -> None:
        self.shut_down = True


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def client(settings, dispatcher) -> TestClient:
    return TestClient(create_app(settings, dispatcher=dispatcher))


def post_push(client, body: bytes, **headers):
    base = {"X-GitHub-Event": "push", "Content-Type": "application/json"}
    base.update(headers)
    return client.post("/sync", content=body, headers=base)


def test_push_to_master_is_accepted_and_dispatched(client, dispatcher):
    body = b'{"ref":"refs/heads/master","repository":{"default_branch":"master"},"after":"f00d"}'
    r = post_push(client, body, **{"X-Hub-Signature": signed(body)})
    assert r.status_code == 202, r.text
    data = r.json()
    assert data["status"] == "accepted"
    assert len(dispatcher.triggers) == 1
    trigger = dispatcher.triggers[0]
    assert data["runId"] == trigger.runId
    assert trigger.source is AuthMethod.SIGNATURE
    assert trigger.ref == "refs/heads/master"
    assert trigger.commit == "f00d"


def test_sha256_signature_header_is_preferred(client, dispatcher):
    body = push_body()
    r = post_push(
        client,
        body,
        **{"X-Hub-Signature-256": signed(body, "sha256"), "X-Hub-Signature": "sha1=" + "00" * 20},
    )
    assert r.status_code == 202
    assert len(dispatcher.triggers) == 1


def test_wrong_signature_is_rejected_without_dispatch(client, dispatcher):
    body = push_body()
    r = post_push(client, body, **{"X-Hub-Signature": "sha1=" + "deadbeef" * 5})
    assert r.status_code == 403
    assert r.json() == {"status": "rejected", "reason": "incorrect signature"}
    assert dispatcher.triggers == []


def test_missing_signature_is_rejected(client, dispatcher):
    r = post_push(client, push_body())
    assert r.status_code == 403
    assert r.json()["reason"] == "missing signature"
    assert dispatcher.triggers == []


def test_other_branch_is_acknowledged_but_ignored(client, dispatcher):
    body = b'{"ref":"refs/heads/feature-x","repository":{"default_branch":"master"}}'
    r = post_push(client, body, **{"X-Hub-Signature": signed(body)})
    assert r.status_code == 200
    assert r.json()["status"] == "ignored"
    assert dispatcher.triggers == []


def test_push_to_a_default_branch_that_is_not_deployed_is_ignored(client, dispatcher):
    body = b'{"ref":"refs/heads/main","repository":{"default_branch":"main"}}'
    r = post_push(client, body, **{"X-Hub-Signature": signed(body)})
    assert r.status_code == 200
    assert r.json()["status"] == "ignored"
    assert dispatcher.triggers == []


def test_ping_event_is_ignored(client, dispatcher):
    body = b'{"zen":"Keep it logically awesome."}'
    r = post_push(client, body, **{"X-GitHub-Event": "ping", "X-Hub-Signature": signed(body)})
    assert r.status_code == 200
    assert r.json()["status"] == "ignored"
    assert dispatcher.triggers == []


def test_missing_event_header_defaults_to_push(client, dispatcher):
    body = push_body()
    r = client.post("/sync", content=body, headers={"X-Hub-Signature": signed(body)})
    assert r.status_code == 202
    assert len(dispatcher.triggers) == 1


def test_malformed_payload_is_bad_request(client, dispatcher):
    body = b'{"repository":{"default_branch":"master"}}'
    r = post_push(client, body, **{"X-Hub-Signature": signed(body)})
    assert r.status_code == 400
    assert r.json()["status"] == "malformed"
    assert dispatcher.triggers == []


def test_manual_override_triggers_deploy(client, dispatcher):
    r = client.post("/sync", headers={"X-Deploy-Key": OVERRIDE_KEY})
    assert r.status_code == 202
    assert dispatcher.triggers[0].source is AuthMethod.OVERRIDE


def test_wrong_override_is_rejected_even_with_valid_signature(client, dispatcher):
    body = push_body()
    r = post_push(client, body, **{"X-Deploy-Key": "nope", "X-Hub-Signature": signed(body)})
    assert r.status_code == 403
    assert r.json()["reason"] == "bad override credential"
    assert dispatcher.triggers == []


def test_dispatch_failure_is_reported(settings):
    client = TestClient(create_app(settings, dispatcher=RecordingDispatcher(accept=False)))
    body = push_body()
    r = post_push(client, body, **{"X-Hub-Signature": signed(body)})
    assert r.status_code == 503
    data = r.json()
    assert data["status"] == "dispatch_failed"
    assert "boom" in data["reason"]


def test_endpoint_does_not_wait_for_the_deployment(settings):
    release = threading.Event()

    class SlowOrchestrator:
        def run(self, trigger):
            release.wait(5)

    from sitesync.dispatch import BackgroundDispatcher

    background = BackgroundDispatcher(SlowOrchestrator())
    client = TestClient(create_app(settings, dispatcher=background))
    try:
        r = client.post("/sync", headers={"X-Deploy-Key": OVERRIDE_KEY})
        assert r.status_code == 202
    finally:
        release.set()
        background.shutdown(wait=True)


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "healthy"
    assert "X-Request-ID" in r.headers


def test_lifespan_shuts_dispatcher_down(settings, dispatcher):
    with TestClient(create_app(settings, dispatcher=dispatcher)):
        pass
    assert dispatcher.shut_down


def test_metrics_endpoint_counts_trigger_results(settings, dispatcher):
    app = create_app(settings.model_copy(update={"metrics_enabled": True}), dispatcher=dispatcher)
    client = TestClient(app)
    client.post("/sync", headers={"X-Deploy-Key": "wrong"})

    r = client.get("/metrics/")
    assert r.status_code == 200
    assert 'sitesync_trigger_requests_total{result="rejected"}' in r.text


def test_unknown_route_and_wrong_method_get_json_errors(client):
    r = client.get("/nope")
    assert r.status_code == 404
    assert r.json() == {"status": "error", "reason": "Not Found"}

    r = client.get("/sync")
    assert r.status_code == 405
    assert r.json()["status"] == "error"


def test_crash_is_a_generic_500(settings):
    class ExplodingDispatcher(RecordingDispatcher):
        def dispatch(self, trigger):
            raise RuntimeError("secret internals")

    client = TestClient(create_app(settings, dispatcher=ExplodingDispatcher()), raise_server_exceptions=False)
    r = client.post("/sync", headers={"X-Deploy-Key": OVERRIDE_KEY})
    assert r.status_code == 500
    assert r.json() == {"status": "error", "reason": "internal error"}
    assert "secret internals" not in r.text


def test_delivery_id_becomes_request_id(client):
    r = client.get("/health", headers={"X-GitHub-Delivery": "72d3162e-cc78-11e3-81ab-4c9367dc0958"})
    assert r.headers["X-Request-ID"] == "72d3162e-cc78-11e3-81ab-4c9367dc0958"


def test_http_metrics_are_labelled_by_route(settings, dispatcher):
    client = TestClient(create_app(settings.model_copy(update={"metrics_enabled": True}), dispatcher=dispatcher))
    client.get("/health")
    client.get("/does-not-exist-12345")

    text = client.get("/metrics/").text
    assert 'route="/health"' in text
    assert "does-not-exist-12345" not in text
