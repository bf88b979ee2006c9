"""Unit tests for aegis.core.backoff: delay schedule, retry decisions and attempt limits."""

import asyncio
import unittest
from unittest.mock import AsyncMock, MagicMock

import httpx

from aegis.core.backoff import BackoffPolicy, backoff_from_settings, is_retriable_http_error


def _status_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://api.osv.dev/v1/query")
    response = httpx.Response(status, request=request)
    return httpx.HTTPStatusError(f"HTTP {status}", request=request, response=response)


class TestDelay(unittest.TestCase):
    def test_exponential_without_jitter(self) -> None:
        policy = BackoffPolicy(base_delay=0.5, factor=2.0, jitter=0.0)
        self.assertEqual([policy.delay(n) for n in range(3)], [0.5, 1.0, 2.0])

    def test_capped_at_max_delay(self) -> None:
        policy = BackoffPolicy(base_delay=1.0, factor=10.0, max_delay=5.0, jitter=0.0)
        self.assertEqual(policy.delay(3), 5.0)

    def test_jitter_stays_in_band(self) -> None:
        policy = BackoffPolicy(base_delay=1.0, jitter=0.2)
        for _ in range(20):
            self.assertTrue(0.8 <= policy.delay(0) <= 1.2)

    def test_invalid_configuration(self) -> None:
        with self.assertRaises(ValueError):
            BackoffPolicy(max_attempts=0)
        with self.assertRaises(ValueError):
            BackoffPolicy(jitter=1.0)
        with self.assertRaises(ValueError):
            BackoffPolicy(base_delay=-1)


class TestRun(unittest.TestCase):
    def setUp(self) -> None:
        self.sleep = AsyncMock()
        self.policy = BackoffPolicy(max_attempts=3, base_delay=0.5, jitter=0.0, sleep=self.sleep)

    def test_retries_then_succeeds(self) -> None:
        operation = AsyncMock(side_effect=[httpx.ConnectError("refused"), "ok"])
        result = asyncio.run(self.policy.run(operation, is_retriable_http_error))
        self.assertEqual(result, "ok")
        self.assertEqual(operation.await_count, 2)
        self.sleep.assert_awaited_once_with(0.5)

    def test_non_retriable_raised_immediately(self) -> None:
        operation = AsyncMock(side_effect=_status_error(404))
        with self.assertRaises(httpx.HTTPStatusError):
            asyncio.run(self.policy.run(operation, is_retriable_http_error))
        self.assertEqual(operation.await_count, 1)
        self.sleep.assert_not_awaited()

    def test_gives_up_after_max_attempts(self) -> None:
        operation = AsyncMock(side_effect=_status_error(503))
        with self.assertRaises(httpx.HTTPStatusError):
            asyncio.run(self.policy.run(operation, is_retriable_http_error))
        self.assertEqual(operation.await_count, 3)
        self.assertEqual([c.args[0] for c in self.sleep.await_args_list], [0.5, 1.0])


class TestIsRetriableHttpError(unittest.TestCase):
    def test_server_errors_and_rate_limits(self) -> None:
        self.assertTrue(is_retriable_http_error(_status_error(503)))
        self.assertTrue(is_retriable_http_error(_status_error(429)))

    def test_client_errors(self) -> None:
        self.assertFalse(is_retriable_http_error(_status_error(404)))
        self.assertFalse(is_retriable_http_error(_status_error(401)))

    def test_transport_errors(self) -> None:
        self.assertTrue(is_retriable_http_error(httpx.ReadTimeout("slow")))
        self.assertTrue(is_retriable_http_error(httpx.ConnectError("refused")))

    def test_other_errors(self) -> None:
        self.assertFalse(is_retriable_http_error(ValueError("bad json")))


class TestBackoffFromSettings(unittest.TestCase):
    def test_uses_configured_attempts_and_delay(self) -> None:
        settings = MagicMock(HTTP_RETRY_MAX_ATTEMPTS=5, HTTP_RETRY_BASE_DELAY_SEC=1.5)
        policy = backoff_from_settings(settings)
        self.assertEqual(policy.max_attempts, 5)
        self.assertEqual(policy.base_delay, 1.5)


if __name__ == "__main__":
    unittest.main()
