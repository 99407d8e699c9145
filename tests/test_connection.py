"""Tests for engine connection retry helpers."""
import pytest
import paramiko

from mcp_loadbalancer.configuration.errors import EngineError
from mcp_loadbalancer.engine.ssh import SSH_RETRYABLE
from mcp_loadbalancer.utils.connection import with_retry, RETRYABLE_EXCEPTIONS


class TestWithRetry:
    """Tests for retry decorator."""

    @pytest.mark.asyncio
    async def test_async_success_no_retry(self):
        """Successful async function doesn't retry."""
        call_count = 0

        @with_retry(max_attempts=3)
        async def succeeding_func():
            nonlocal call_count
            call_count += 1
            return "success"

        result = await succeeding_func()
        assert result == "success"
        assert call_count == 1

    @pytest.mark.asyncio
    async def test_async_retry_then_success(self):
        """Async function retries on failure then succeeds."""
        call_count = 0

        @with_retry(max_attempts=3, min_wait=0.01, max_wait=0.1)
        async def failing_then_succeeding():
            nonlocal call_count
            call_count += 1
            if call_count < 2:
                raise ConnectionRefusedError("Connection refused")
            return "success"

        result = await failing_then_succeeding()
        assert result == "success"
        assert call_count == 2

    @pytest.mark.asyncio
    async def test_async_max_retries_exceeded(self):
        """Async function raises after max retries."""
        call_count = 0

        @with_retry(max_attempts=3, min_wait=0.01, max_wait=0.1)
        async def always_failing():
            nonlocal call_count
            call_count += 1
            raise TimeoutError("Always times out")

        with pytest.raises(TimeoutError):
            await always_failing()
        assert call_count == 3

    def test_sync_success_no_retry(self):
        """Successful sync function doesn't retry."""
        call_count = 0

        @with_retry(max_attempts=3)
        def succeeding_func():
            nonlocal call_count
            call_count += 1
            return "success"

        result = succeeding_func()
        assert result == "success"
        assert call_count == 1

    @pytest.mark.asyncio
    async def test_non_retryable_exception(self):
        """Non-retryable exceptions are not retried."""
        call_count = 0

        @with_retry(max_attempts=3, exceptions=(ConnectionRefusedError,))
        async def raising_value_error():
            nonlocal call_count
            call_count += 1
            raise ValueError("Not retryable")

        with pytest.raises(ValueError):
            await raising_value_error()
        assert call_count == 1  # Only one attempt


class TestRetryableExceptions:
    """Tests for retryable exceptions list."""

    def test_connection_refused_is_retryable(self):
        """ConnectionRefusedError is retryable."""
        assert ConnectionRefusedError in RETRYABLE_EXCEPTIONS

    def test_timeout_is_retryable(self):
        """TimeoutError is retryable."""
        assert TimeoutError in RETRYABLE_EXCEPTIONS

    def test_connection_reset_is_retryable(self):
        """ConnectionResetError is retryable."""
        assert ConnectionResetError in RETRYABLE_EXCEPTIONS

    def test_os_error_is_retryable(self):
        """OSError is retryable."""
        assert OSError in RETRYABLE_EXCEPTIONS

    def test_eof_error_is_retryable(self):
        """EOFError is retryable."""
        assert EOFError in RETRYABLE_EXCEPTIONS

    def test_engine_errors_not_retryable(self):
        """A command that ran and failed is never retried."""
        assert not issubclass(EngineError, RETRYABLE_EXCEPTIONS)

    def test_ssh_errors_retryable(self):
        """SSH transport errors are retried by the SSH runner."""
        assert paramiko.SSHException in SSH_RETRYABLE
        assert set(RETRYABLE_EXCEPTIONS) <= set(SSH_RETRYABLE)


class TestSyncRetry:
    """Tests for retrying blocking calls (SSH runner executor path)."""

    def test_sync_retry_then_success(self):
        call_count = 0

        @with_retry(max_attempts=3, min_wait=0.01, max_wait=0.05)
        def flaky():
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                raise ConnectionResetError("reset by peer")
            return "ok"

        assert flaky() == "ok"
        assert call_count == 3

    def test_sync_max_retries_exceeded(self):
        call_count = 0

        @with_retry(max_attempts=2, min_wait=0.01, max_wait=0.05, exceptions=(EOFError,))
        def always_eof():
            nonlocal call_count
            call_count += 1
            raise EOFError()

        with pytest.raises(EOFError):
            always_eof()
        assert call_count == 2
