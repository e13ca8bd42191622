import asyncio
import logging

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from errors import UpstreamError, UpstreamRateLimited

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5.0


class RetryPolicy:
    """Bounded retry for rate-limited upstream calls."""

    def __init__(self, max_attempts=3, base_delay=1.0, max_delay=10.0, sleep=asyncio.sleep):
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.sleep = sleep
        self._backoff = wait_exponential(multiplier=base_delay, max=max_delay)

    def wait(self, retry_state):
        # Retry-After wins over the exponential schedule, both capped at max_delay
        retry_after = getattr(retry_state.outcome.exception(), "retry_after", None)
        if retry_after is not None:
            return min(retry_after, self.max_delay)
        return self._backoff(retry_state)

    def retrying(self, host):
        def log_retry(retry_state):
            logger.info(
                "Rate limited by %s, retrying in %.1fs (attempt %d)",
                host, retry_state.next_action.sleep, retry_state.attempt_number,
            )

        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self.wait,
            retry=retry_if_exception_type(UpstreamRateLimited),
            before_sleep=log_retry,
            sleep=self.sleep,
            reraise=True,
        )


DEFAULT_POLICY = RetryPolicy()


def make_client(timeout=DEFAULT_TIMEOUT, transport=None):
    return httpx.AsyncClient(timeout=timeout, transport=transport, follow_redirects=False)


def _retry_after(response):
    value = response.headers.get("retry-after")
    if value is None:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def _error_message(response):
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        for key in ("error_description", "error", "message", "detail"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
            if isinstance(value, dict) and value.get("message"):
                return value["message"]
    return f"HTTP {response.status_code}"


async def _send(client, method, url, host, **kwargs):
    try:
        response = await client.request(method, url, **kwargs)
    except httpx.TimeoutException as exc:
        raise UpstreamError(f"{host} timed out") from exc
    except httpx.HTTPError as exc:
        raise UpstreamError(f"{host} unreachable: {exc.__class__.__name__}") from exc

    if response.status_code == 429:
        raise UpstreamRateLimited(_error_message(response), _retry_after(response))
    if response.is_success:
        return response
    raise UpstreamError(_error_message(response), status_code=response.status_code)


async def request_with_retry(client, method, url, policy=DEFAULT_POLICY, **kwargs):
    """Send a request, retrying only on 429 responses.

    Any other non-2xx response, timeout or transport error raises
    ``UpstreamError`` straight away; running out of attempts on 429 raises
    ``UpstreamError`` as well.
    """
    host = httpx.URL(url).host
    try:
        return await policy.retrying(host)(_send, client, method, url, host, **kwargs)
    except UpstreamRateLimited as exc:
        raise UpstreamError(
            f"{host} rate limit exceeded after {policy.max_attempts} attempts", status_code=429
        ) from exc
