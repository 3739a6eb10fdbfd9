import pytest

from chat_core.domain.exceptions import ApiError, GenerationCancelled, NetworkError, ValidationError
from chat_core.infrastructure.retry import RetryPolicy, with_retry


@pytest.mark.asyncio
async def test_retry_recovers_after_two_503(recorded_sleep):
    policy = RetryPolicy(max_attempts=3, base_delay=1.0, sleep=recorded_sleep)
    calls = {"n": 0}

    async def op():
        calls["n"] += 1
        if calls["n"] < 3:
            raise ApiError(code="API_ERROR", message="HTTP Error 503: unavailable", http_status=503)
        return "ok"

    assert await with_retry(op, policy) == "ok"
    assert calls["n"] == 3
    assert recorded_sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_retry_exhausted_raises_last_error(recorded_sleep):
    policy = RetryPolicy(max_attempts=2, base_delay=0.5, sleep=recorded_sleep)
    calls = {"n": 0}

    async def op():
        calls["n"] += 1
        raise NetworkError(code="NETWORK_ERROR", message=f"Network error: attempt {calls['n']}")

    with pytest.raises(NetworkError) as ei:
        await with_retry(op, policy)
    assert "attempt 2" in str(ei.value)
    assert recorded_sleep.delays == [0.5]


@pytest.mark.asyncio
async def test_non_retryable_error_fails_immediately(recorded_sleep):
    policy = RetryPolicy(sleep=recorded_sleep)
    calls = {"n": 0}

    async def op():
        calls["n"] += 1
        raise ValidationError(code="BAD", message="HTTP Error 401: invalid api key")

    with pytest.raises(ValidationError):
        await with_retry(op, policy)
    assert calls["n"] == 1
    assert recorded_sleep.delays == []


@pytest.mark.asyncio
async def test_cancellation_is_never_retried(recorded_sleep):
    policy = RetryPolicy(sleep=recorded_sleep)

    async def op():
        raise GenerationCancelled("timeout while cancelled")

    with pytest.raises(GenerationCancelled):
        await with_retry(op, policy)
    assert recorded_sleep.delays == []


def test_policy_from_settings(settings_stub):
    policy = RetryPolicy.from_settings(settings_stub)
    assert policy.max_attempts == 3
    assert RetryPolicy.from_settings(settings_stub, balance=True).max_attempts == 2
    assert [policy.delay_for(i) for i in range(3)] == [1.0, 2.0, 4.0]


def test_is_retryable_patterns():
    policy = RetryPolicy()
    assert policy.is_retryable(Exception("Read timed out"))
    assert policy.is_retryable(Exception("HTTP Error 429: slow down"))
    assert not policy.is_retryable(Exception("HTTP Error 404: missing"))
