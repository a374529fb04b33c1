"""Tests for the timeout/retry call executor."""

import logging
import threading

import httpx
import pytest

from conftest import SequenceJitter, status_error
from memsync.errors import CallCancelled, CallTimeout, RemoteCallError
from memsync.retry import CallExecutor, describe_failure, is_retryable


def _executor(sleeps: list[float], **kwargs) -> CallExecutor:
    kwargs.setdefault("jitter", SequenceJitter([0.5, 0.5, 0.5, 0.5]))
    return CallExecutor(sleep=sleeps.append, **kwargs)


class _Flaky:
    def __init__(self, failures):
        self.failures = list(failures)
        self.calls = 0
        self.timeouts = []

    def __call__(self, timeout):
        self.calls += 1
        self.timeouts.append(timeout)
        if self.failures:
            raise self.failures.pop(0)
        return "ok"


class TestClassification:
    def test_rate_limit_is_retryable(self):
        assert is_retryable(status_error(429))

    @pytest.mark.parametrize("status", [400, 401, 403, 404, 422])
    def test_client_errors_not_retryable(self, status):
        assert not is_retryable(status_error(status))

    @pytest.mark.parametrize("status", [500, 502, 503])
    def test_server_errors_retryable(self, status):
        assert is_retryable(status_error(status))

    def test_executor_timeout_is_retryable(self):
        assert is_retryable(CallTimeout())
        assert is_retryable(httpx.ReadTimeout("read timed out"))

    def test_caller_cancellation_not_retryable(self):
        assert not is_retryable(CallCancelled())

    def test_cancellation_judged_by_origin_not_message(self):
        assert is_retryable(RemoteCallError("request was cancelled by upstream proxy", status_code=503))

    def test_httpx_status_error(self):
        request = httpx.Request("POST", "https://memory.invalid/v3/documents")
        response = httpx.Response(404, request=request)
        exc = httpx.HTTPStatusError("not found", request=request, response=response)
        assert describe_failure(exc) == (404, "remote")
        assert not is_retryable(exc)

    def test_network_error(self):
        exc = httpx.ConnectError("connection refused")
        assert describe_failure(exc) == (None, "network")
        assert is_retryable(exc)


class TestBackoff:
    def test_exponential_with_jitter(self):
        executor = CallExecutor(base_delay_sec=1.0, jitter=lambda: 0.25)
        assert executor.retry_delay(0) == pytest.approx(1.25)
        assert executor.retry_delay(1) == pytest.approx(2.25)
        assert executor.retry_delay(2) == pytest.approx(4.25)

    def test_capped_at_max(self):
        executor = CallExecutor(base_delay_sec=1.0, max_delay_sec=30.0, jitter=lambda: 0.9)
        assert executor.retry_delay(10) == 30.0


class TestExecute:
    def test_success_first_try(self):
        sleeps: list[float] = []
        op = _Flaky([])
        assert _executor(sleeps, timeout_sec=7.5).execute(op, "Upload") == "ok"
        assert op.calls == 1
        assert op.timeouts == [7.5]
        assert sleeps == []

    def test_rate_limited_twice_then_succeeds(self, caplog):
        sleeps: list[float] = []
        op = _Flaky([status_error(429), status_error(429)])
        executor = _executor(sleeps, attempts=3, base_delay_sec=1.0)
        with caplog.at_level(logging.WARNING, logger="memsync.retry"):
            assert executor.execute(op, "Batch #1 upload") == "ok"

        retry_lines = [r for r in caplog.records if "Retrying in" in r.getMessage()]
        assert len(retry_lines) == 2
        assert "attempt 1/3" in retry_lines[0].getMessage()
        assert "attempt 2/3" in retry_lines[1].getMessage()
        assert sleeps == [pytest.approx(1.5), pytest.approx(2.5)]
        assert sleeps[0] < sleeps[1] <= executor.max_delay_sec

    def test_not_found_raises_immediately(self):
        sleeps: list[float] = []
        op = _Flaky([status_error(404)])
        with pytest.raises(RemoteCallError) as info:
            _executor(sleeps).execute(op, "Upload")
        assert info.value.status_code == 404
        assert op.calls == 1
        assert sleeps == []

    def test_exhaustion_reraises_last_failure(self):
        sleeps: list[float] = []
        last = status_error(503)
        op = _Flaky([status_error(500), status_error(502), last])
        with pytest.raises(RemoteCallError) as info:
            _executor(sleeps, attempts=3).execute(op, "Upload")
        assert info.value is last
        assert op.calls == 3
        assert len(sleeps) == 2

    def test_timeouts_are_retried(self):
        sleeps: list[float] = []
        op = _Flaky([httpx.ReadTimeout("timed out")])
        assert _executor(sleeps).execute(op, "Upload") == "ok"
        assert op.calls == 2

    def test_caller_cancellation_not_retried(self):
        sleeps: list[float] = []
        op = _Flaky([CallCancelled()])
        with pytest.raises(CallCancelled):
            _executor(sleeps).execute(op, "Upload")
        assert op.calls == 1

    def test_cancel_event_stops_before_attempt(self):
        event = threading.Event()
        event.set()
        op = _Flaky([])
        with pytest.raises(CallCancelled):
            CallExecutor(cancel_event=event).execute(op, "Upload")
        assert op.calls == 0

    def test_cancel_event_interrupts_backoff(self):
        event = threading.Event()

        def op(timeout):
            event.set()
            raise status_error(503)

        with pytest.raises(CallCancelled):
            CallExecutor(attempts=3, base_delay_sec=5.0, cancel_event=event).execute(op, "Upload")

    def test_retry_log_is_scrubbed(self, caplog):
        sleeps: list[float] = []
        op = _Flaky([RemoteCallError("upstream rejected sm_secretKEY99", status_code=500)])
        with caplog.at_level(logging.WARNING, logger="memsync.retry"):
            _executor(sleeps).execute(op, "Upload")
        assert "sm_secretKEY99" not in caplog.text
