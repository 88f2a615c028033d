import asyncio
import logging
import time
from typing import Any, Dict, Optional

import httpx

from databricks.aiosql.config import ClientConfig
from databricks.aiosql.exc import RequestError, RetryError, RetryErrorCode

logger = logging.getLogger(__name__)


def is_retryable_status(status_code: int) -> bool:
    """429 and every 5xx except 501 Not Implemented are worth retrying"""
    return status_code == 429 or (status_code >= 500 and status_code != 501)


def get_backoff_delay(attempt: int, delay_min: float, delay_max: float) -> float:
    return min(2 ** attempt * delay_min, delay_max)


def get_retry_after(response: Optional[httpx.Response], delay_min: float) -> Optional[float]:
    """Delay seconds from a `Retry-After` header, never below `delay_min`.

    HTTP-date values are not supported and yield None.
    """
    if response is None:
        return None
    header = response.headers.get("Retry-After", "")
    try:
        value = float(header)
    except ValueError:
        return None
    if value <= 0:
        return None
    return max(delay_min, value)


class RestHttpClient:
    """
    JSON client for the Statement Execution REST API.

    Requests that fail with a transport error or a retryable status are
    retried with exponential backoff, bounded both by
    `config.retry_max_attempts` and by `config.retries_timeout`.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: str,
        config: ClientConfig,
        headers: Optional[Dict[str, str]] = None,
    ):
        """
        Args:
            http_client: Shared httpx client the requests go through
            base_url: Scheme and host of the workspace, e.g. https://host:443
            config: Retry settings are read from here
            headers: Headers added to every request, typically authorization
                and user agent
        """
        self._http_client = http_client
        self.base_url = base_url.rstrip("/")
        self.config = config
        self.headers: Dict[str, str] = dict(headers or {})
        self.headers.setdefault("Content-Type", "application/json")

    async def request(
        self,
        method: str,
        path: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Make an HTTP request to the REST API, retrying transient failures.

        Args:
            method: HTTP method (GET, POST, DELETE)
            path: API endpoint path
            data: Request payload data

        Returns:
            Dict[str, Any]: Response data parsed from JSON

        Raises:
            RetryError: If the request kept failing with a retryable error
            RequestError: If the server rejected the request
        """
        url = self.base_url + path
        start_time = time.monotonic()
        attempt = 0

        while True:
            response: Optional[httpx.Response] = None
            error: Optional[Exception] = None
            logger.debug("Making %s request to %s", method, path)
            try:
                response = await self._http_client.request(
                    method, url, json=data, headers=self.headers
                )
            except httpx.TransportError as e:
                logger.debug("%s %s failed: %s", method, path, e)
                error = e

            if response is not None and not is_retryable_status(response.status_code):
                return self._handle_response(method, path, response)

            elapsed = time.monotonic() - start_time
            context = {
                "method": method,
                "path": path,
                "http-code": response.status_code if response is not None else None,
                "original-exception": error,
                "attempt": "{}/{}".format(attempt + 1, self.config.retry_max_attempts),
                "elapsed-seconds": "{}/{}".format(elapsed, self.config.retries_timeout),
            }
            if elapsed >= self.config.retries_timeout:
                raise RetryError(RetryErrorCode.TIMEOUT_EXCEEDED, context=context) from error

            attempt += 1
            if attempt >= self.config.retry_max_attempts:
                raise RetryError(RetryErrorCode.ATTEMPTS_EXCEEDED, context=context) from error

            delay_min = get_retry_after(response, self.config.retry_delay_min)
            delay = get_backoff_delay(
                attempt,
                delay_min if delay_min is not None else self.config.retry_delay_min,
                self.config.retry_delay_max,
            )
            logger.info(
                "Retrying %s %s in %.1f seconds (attempt %d/%d)",
                method,
                path,
                delay,
                attempt + 1,
                self.config.retry_max_attempts,
            )
            await asyncio.sleep(delay)

    @staticmethod
    def _handle_response(
        method: str, path: str, response: httpx.Response
    ) -> Dict[str, Any]:
        if response.is_success:
            if not response.content:
                return {}
            return response.json()

        error_message = None
        try:
            body = response.json()
            if isinstance(body, dict):
                error_message = body.get("message")
        except ValueError:
            pass
        error_message = error_message or "HTTP request failed with status {} {}".format(
            response.status_code, response.reason_phrase
        )
        logger.error("%s %s failed: %s", method, path, error_message)
        raise RequestError(
            error_message,
            {
                "method": method,
                "path": path,
                "http-code": response.status_code,
                "error-message": error_message,
            },
        )
