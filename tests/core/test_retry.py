"""
Tests for the peripheral retry helper.
"""

import pytest

from portalflow.core.exceptions import AIProviderError, StepConfigurationError
from portalflow.core.retry import with_retry


async def no_sleep(_seconds):
    return None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_retries_until_success():
    """Test a transient failure is retried"""
    calls = []

    async def operation():
        calls.append(1)
        if len(calls) < 3:
            raise AIProviderError("flaky")
        return "ok"

    result = await with_retry(operation, "scan", max_attempts=3, retry_on=(AIProviderError,), sleep=no_sleep)

    assert result == "ok"
    assert len(calls) == 3


@pytest.mark.unit
@pytest.mark.asyncio
async def test_reraises_after_last_attempt():
    """Test the last error propagates once attempts run out"""
    calls = []

    async def operation():
        calls.append(1)
        raise AIProviderError(f"attempt {len(calls)}")

    with pytest.raises(AIProviderError, match="attempt 2"):
        await with_retry(operation, "scan", max_attempts=2, retry_on=(AIProviderError,), sleep=no_sleep)

    assert len(calls) == 2


@pytest.mark.unit
@pytest.mark.asyncio
async def test_non_retryable_error_propagates_immediately():
    """Test errors outside retry_on are not retried"""
    calls = []

    async def operation():
        calls.append(1)
        raise StepConfigurationError("bad config")

    with pytest.raises(StepConfigurationError):
        await with_retry(operation, "scan", max_attempts=3, retry_on=(AIProviderError,), sleep=no_sleep)

    assert len(calls) == 1
