import asyncio
import logging

import pytest
import requests

from tube_orchestrator.errors import (
    MissingPrerequisiteError,
    PermanentProviderError,
    StageExecutionFailure,
    TransientProviderError,
)
from tube_orchestrator.retry import RetryExecutor, RetryPolicy, is_transient


class Flaky:
    """Async operation that raises the queued errors, then returns 'ok'"""

    def __init__(self, *errors):
        self.errors = list(errors)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return "ok"


def test_transient_failures_are_retried_with_exponential_backoff(retry_executor, sleep_recorder):
    op = Flaky(TransientProviderError("timeout"), TransientProviderError("timeout"))
    result = asyncio.run(retry_executor.execute("script", op))
    assert result == "ok"
    assert op.calls == 3
    assert sleep_recorder.delays == [2.0, 4.0]


def test_exhausted_retries_raise_stage_execution_failure(retry_executor, sleep_recorder):
    errors = [TransientProviderError(f"timeout {i}") for i in range(4)]
    op = Flaky(*errors)

    with pytest.raises(StageExecutionFailure) as excinfo:
        asyncio.run(retry_executor.execute("research", op, label="fetch"))

    failure = excinfo.value
    assert failure.stage == "research"
    assert failure.attempts == 4
    assert failure.cause is errors[-1]
    assert failure.__cause__ is errors[-1]
    assert op.calls == 4
    assert sleep_recorder.delays == [2.0, 4.0, 8.0]


def test_permanent_failure_propagates_immediately(retry_executor, sleep_recorder):
    error = PermanentProviderError("invalid api key")
    op = Flaky(error)

    with pytest.raises(PermanentProviderError) as excinfo:
        asyncio.run(retry_executor.execute("script", op))

    assert excinfo.value is error
    assert op.calls == 1
    assert sleep_recorder.delays == []


def test_unclassified_errors_are_not_retried(retry_executor):
    op = Flaky(MissingPrerequisiteError("Script"))
    with pytest.raises(MissingPrerequisiteError):
        asyncio.run(retry_executor.execute("assembly", op))
    assert op.calls == 1


def test_each_attempt_is_logged(retry_executor, caplog):
    op = Flaky(TransientProviderError("timeout"))
    with caplog.at_level(logging.INFO, logger="tube_orchestrator.retry"):
        asyncio.run(retry_executor.execute("fan_out", op, label="audio"))

    messages = [r.getMessage() for r in caplog.records]
    assert any("fan_out:audio attempt 1/4 starting" in m for m in messages)
    assert any("failed transiently" in m and "retrying in 2.0s" in m for m in messages)
    assert any("attempt 2/4 succeeded" in m for m in messages)


def test_zero_retries_means_single_attempt(sleep_recorder):
    executor = RetryExecutor(RetryPolicy(max_retries=0), sleep=sleep_recorder)
    op = Flaky(TransientProviderError("timeout"))
    with pytest.raises(StageExecutionFailure):
        asyncio.run(executor.execute("script", op))
    assert op.calls == 1
    assert sleep_recorder.delays == []


@pytest.mark.parametrize(
    "error, expected",
    [
        (TransientProviderError("x"), True),
        (requests.Timeout("x"), True),
        (requests.ConnectionError("x"), True),
        (TimeoutError("x"), True),
        (asyncio.TimeoutError(), True),
        (ConnectionResetError("x"), True),
        (PermanentProviderError("x"), False),
        (ValueError("x"), False),
        (MissingPrerequisiteError("NewsItems"), False),
    ],
)
def test_is_transient_classification(error, expected):
    assert is_transient(error) is expected


def test_policy_delay_schedule():
    policy = RetryPolicy()
    assert policy.max_attempts == 4
    assert [policy.delay_for(n) for n in (1, 2, 3)] == [2.0, 4.0, 8.0]
    assert RetryPolicy(backoff_base_seconds=0).delay_for(3) == 0.0
