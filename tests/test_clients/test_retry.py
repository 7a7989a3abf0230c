"""Tests for RetryPolicy — backoff math and which errors are worth retrying."""

import httpx
import pytest

from clients.errors import ClientError, JobApiRejected, JobApiUnavailable, TransientError
from clients.retry import RetryPolicy, is_transient


class TestBackoff:

    def test_delays_double(self):
        policy = RetryPolicy(base_delay=1.0, factor=2.0)
        assert policy.delay_for(1) == 1.0
        assert policy.delay_for(2) == 2.0
        assert policy.delay_for(3) == 4.0

    def test_custom_base(self):
        policy = RetryPolicy(base_delay=0.5, factor=3.0)
        assert policy.delay_for(2) == 1.5

    def test_max_attempts_must_be_positive(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)


def test_transient_classification():
    assert is_transient(TransientError("x"))
    assert is_transient(JobApiUnavailable("x", status_code=503))
    assert is_transient(httpx.ConnectError("refused"))
    assert not is_transient(JobApiRejected("x", status_code=400))
    assert not is_transient(ValueError("x"))


@pytest.mark.asyncio
async def test_succeeds_after_transient_failures(retry_policy, sleeps):
    attempts = []

    async def flaky():
        attempts.append(1)
        if len(attempts) < 3:
            raise TransientError("503 Service Unavailable", status_code=503)
        return "ok"

    assert await retry_policy.run(flaky, "flaky call") == "ok"
    assert len(attempts) == 3
    assert sleeps == [1.0, 2.0]


@pytest.mark.asyncio
async def test_gives_up_after_max_attempts(retry_policy, sleeps):
    attempts = []

    async def down():
        attempts.append(1)
        raise TransientError("down")

    with pytest.raises(TransientError):
        await retry_policy.run(down)
    assert len(attempts) == 3
    assert sleeps == [1.0, 2.0]


@pytest.mark.asyncio
async def test_rejection_is_not_retried(retry_policy, sleeps):
    attempts = []

    async def rejected():
        attempts.append(1)
        raise ClientError("400 Bad Request", status_code=400)

    with pytest.raises(ClientError):
        await retry_policy.run(rejected)
    assert len(attempts) == 1
    assert sleeps == []
