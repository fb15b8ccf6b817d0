"""Tests for trigger hand-off to workers."""

import json
import threading
from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from sitesync.core.exceptions import ConfigurationError
from sitesync.deploy.models import RunOutcome, RunStatus
from sitesync.dispatch import (
    AckStatus,
    BackgroundDispatcher,
    LambdaDispatcher,
    RetryPolicy,
    create_dispatcher,
)
from sitesync.trigger.models import AuthMethod, DeploymentTrigger


def trigger() -> DeploymentTrigger:
    return DeploymentTrigger(source=AuthMethod.SIGNATURE, ref="refs/heads/master", commit="abc")


class BlockingOrchestrator:
    def __init__(self):
        self.release = threading.Event()
        self.finished = threading.Event()
        self.runs = []

    def run(self, trig):
        self.runs.append(trig)
        self.release.wait(5)
        self.finished.set()
        return RunOutcome(runId=trig.runId, status=RunStatus.SUCCEEDED)


def test_background_dispatch_returns_before_run_completes():
    orchestrator = BlockingOrchestrator()
    dispatcher = BackgroundDispatcher(orchestrator)
    t = trigger()

    ack = dispatcher.dispatch(t)

    assert ack.status is AckStatus.ACCEPTED
    assert ack.runId == t.runId
    assert not orchestrator.finished.is_set()
    orchestrator.release.set()
    dispatcher.shutdown(wait=True)
    assert orchestrator.finished.is_set()
    assert orchestrator.runs == [t]


def test_background_dispatch_after_shutdown_is_rejected():
    dispatcher = BackgroundDispatcher(BlockingOrchestrator())
    dispatcher.shutdown()
    ack = dispatcher.dispatch(trigger())
    assert ack.status is AckStatus.REJECTED
    assert "shut down" in ack.reason


def test_background_dispatch_reports_thread_start_failure():
    dispatcher = BackgroundDispatcher(BlockingOrchestrator())
    with patch("threading.Thread.start", side_effect=RuntimeError("can't start new thread")):
        ack = dispatcher.dispatch(trigger())
    assert ack.status is AckStatus.REJECTED
    assert "can't start new thread" in ack.reason


def test_background_worker_survives_orchestrator_crash():
    class Crashing:
        def run(self, trig):
            raise RuntimeError("bug")

    dispatcher = BackgroundDispatcher(Crashing())
    assert dispatcher.dispatch(trigger()).accepted
    dispatcher.shutdown(wait=True)


def lambda_client(reserved=1) -> MagicMock:
    client = MagicMock()
    client.get_function_concurrency.return_value = (
        {"ReservedConcurrentExecutions": reserved} if reserved is not None else {}
    )
    return client


def test_lambda_dispatch_invokes_asynchronously():
    client = lambda_client()
    client.invoke.return_value = {"StatusCode": 202}
    dispatcher = LambdaDispatcher("sitesync-worker", client=client)
    t = trigger()

    ack = dispatcher.dispatch(t)

    assert ack.accepted
    kwargs = client.invoke.call_args.kwargs
    assert kwargs["FunctionName"] == "sitesync-worker"
    assert kwargs["InvocationType"] == "Event"
    payload = json.loads(kwargs["Payload"])
    assert payload["runId"] == t.runId
    assert payload["source"] == "signature"
    assert DeploymentTrigger.model_validate(payload) == t


def test_lambda_client_error_is_rejected():
    client = lambda_client()
    client.invoke.side_effect = ClientError(
        {"Error": {"Code": "ResourceNotFoundException", "Message": "Function not found"}}, "Invoke"
    )
    ack = LambdaDispatcher("missing", client=client).dispatch(trigger())
    assert ack.status is AckStatus.REJECTED
    assert "Function not found" in ack.reason
    assert client.invoke.call_count == 1


def test_lambda_unexpected_status_is_rejected():
    client = lambda_client()
    client.invoke.return_value = {"StatusCode": 500}
    ack = LambdaDispatcher("fn", client=client).dispatch(trigger())
    assert not ack.accepted
    assert "500" in ack.reason


def test_lambda_retry_policy():
    client = lambda_client()
    client.invoke.side_effect = [
        EndpointConnectionError(endpoint_url="https://lambda.us-east-1.amazonaws.com"),
        {"StatusCode": 202},
    ]
    dispatcher = LambdaDispatcher("fn", client=client, retry=RetryPolicy(max_attempts=3, backoff_seconds=0.5))
    with patch("sitesync.dispatch.backends.time.sleep") as sleep:
        ack = dispatcher.dispatch(trigger())
    assert ack.accepted
    assert client.invoke.call_count == 2
    sleep.assert_called_once_with(0.5)


def test_retry_policy_backoff():
    policy = RetryPolicy(max_attempts=4, backoff_seconds=0.25)
    assert [policy.delay(n) for n in (1, 2, 3)] == [0.25, 0.5, 1.0]
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)


def test_create_dispatcher_background(settings):
    dispatcher = create_dispatcher(settings)
    assert isinstance(dispatcher, BackgroundDispatcher)
    dispatcher.shutdown()


def test_create_dispatcher_lambda(settings):
    lambda_settings = settings.model_copy(
        update={"dispatch_backend": "lambda", "worker_function_name": "fn", "dispatch_max_attempts": 2}
    )
    with patch("sitesync.dispatch.backends.boto3.client", return_value=lambda_client()) as client:
        dispatcher = create_dispatcher(lambda_settings)
    client.assert_called_once_with("lambda", region_name="us-east-1")
    assert isinstance(dispatcher, LambdaDispatcher)
    assert dispatcher.retry.max_attempts == 2


@pytest.mark.parametrize("reserved", [None, 0, 5])
def test_lambda_worker_must_run_one_at_a_time(reserved):
    client = lambda_client(reserved)
    with pytest.raises(ConfigurationError, match="reserved concurrency 1"):
        LambdaDispatcher("sitesync-worker", client=client)
    client.get_function_concurrency.assert_called_once_with(FunctionName="sitesync-worker")
    client.invoke.assert_not_called()


def test_lambda_concurrency_lookup_failure_is_a_configuration_error():
    client = lambda_client()
    client.get_function_concurrency.side_effect = ClientError(
        {"Error": {"Code": "AccessDeniedException", "Message": "not allowed"}}, "GetFunctionConcurrency"
    )
    with pytest.raises(ConfigurationError, match="not allowed"):
        LambdaDispatcher("sitesync-worker", client=client)
