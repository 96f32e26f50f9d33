"""
Client for the Guesty Open API with bounded retries, rate-limit backoff and
token invalidation on 401.

Every call carries a timeout. Transient failures (429, 5xx, timeouts) get a
small bounded number of retries; the background refresh cycle is the real
retry mechanism, so nothing here loops aggressively. POSTs are only retried
when Guesty provably did not process them (401 and 429).
"""

import time
from datetime import date
from typing import Any, Callable, Dict, List, Optional, cast
from urllib.parse import urljoin

import requests
import structlog

from sync_guesty.config import GUESTY_API_BASE_URL, GUESTY_REQUEST_TIMEOUT_SECONDS
from sync_guesty.errors import UpstreamError
from sync_guesty.metrics import api_latency, api_requests

logger = structlog.get_logger(__name__)

MAX_RETRIES = 2
REQUEST_DELAY = 1.0


def should_retry(
    method: str, res: Optional[requests.Response], err: Optional[Exception]
) -> bool:
    """
    Determine whether the request should be retried based on response or error.

    Args:
        method (str): HTTP method of the request.
        res (Optional[requests.Response]): Response object if available.
        err (Optional[Exception]): Exception raised by the request, if any.

    Returns:
        bool: True if the request should be retried, False otherwise.
    """
    if res is not None and res.status_code == 429:
        return True
    if method != "GET":
        return False
    if isinstance(err, (requests.Timeout, requests.ConnectionError)):
        return True
    if res is not None and 500 <= res.status_code < 600:
        return True
    return False


def extract_calendar_days(body: Any) -> List[Dict[str, Any]]:
    """
    Pull the list of day objects out of a calendar response.

    Accepts {"data": {"days": [...]}}, {"days": [...]}, {"data": [...]} or a bare list.
    """
    if isinstance(body, dict) and "data" in body:
        body = body["data"]
    if isinstance(body, dict):
        body = body.get("days", [])
    if not isinstance(body, list):
        return []
    return [day for day in body if isinstance(day, dict)]


class GuestyClient:
    """
    Thin wrapper over the Guesty Open API endpoints this service uses.

    Attributes:
        base_url: API root, e.g. https://open-api.guesty.com/v1/
        timeout: Per-request timeout in seconds
    """

    def __init__(
        self,
        token_provider: Callable[[], str],
        on_unauthorized: Optional[Callable[[], None]] = None,
        base_url: str = GUESTY_API_BASE_URL,
        timeout: float = GUESTY_REQUEST_TIMEOUT_SECONDS,
        max_retries: int = MAX_RETRIES,
    ):
        self._token_provider = token_provider
        self._on_unauthorized = on_unauthorized
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"
        self.timeout = timeout
        self.max_retries = max_retries

    def request(
        self,
        method: str,
        endpoint: str,
        metric_name: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """
        Perform one API call with auth, metrics and bounded retries.

        Args:
            method (str): HTTP method.
            endpoint (str): Path relative to base_url.
            metric_name (str): Low-cardinality endpoint label for metrics.
            params (Optional[Dict[str, Any]]): Query parameters.
            json (Optional[Dict[str, Any]]): JSON body.

        Returns:
            Any: Decoded JSON body.

        Raises:
            UpstreamError: On a non-retryable error or once retries are exhausted.
            ConfigurationError: If credentials are missing when a token is needed.
        """
        url = urljoin(self.base_url, endpoint)
        retries = 0

        while True:
            token = self._token_provider()
            headers = {"Authorization": f"Bearer {token}", "Accept": "application/json"}
            res: Optional[requests.Response] = None

            try:
                start_time = time.time()
                res = requests.request(
                    method,
                    url,
                    headers=headers,
                    params=params,
                    json=json,
                    timeout=self.timeout,
                )
                latency = time.time() - start_time

                api_requests.labels(endpoint=metric_name, status_code=str(res.status_code)).inc()
                api_latency.labels(endpoint=metric_name).observe(latency)

                if res.status_code == 401:
                    logger.warning("guesty_unauthorized", endpoint=metric_name)
                    if self._on_unauthorized is not None:
                        self._on_unauthorized()
                    retries += 1
                    if retries > self.max_retries:
                        raise UpstreamError(
                            "Guesty rejected the access token", metric_name, res.status_code
                        )
                    continue

                if res.status_code == 429:
                    retry_after = _retry_after_seconds(res, REQUEST_DELAY * 2 * (retries + 1))
                    logger.warning(
                        "guesty_rate_limited", endpoint=metric_name, sleep_seconds=retry_after
                    )
                    retries += 1
                    if retries > self.max_retries:
                        raise UpstreamError("Guesty rate limit exceeded", metric_name, 429)
                    time.sleep(retry_after)
                    continue

                res.raise_for_status()
                if not res.content:
                    return {}
                return res.json()

            except requests.RequestException as err:
                if res is None:
                    api_requests.labels(endpoint=metric_name, status_code="error").inc()
                logger.warning(
                    "guesty_request_failed",
                    endpoint=metric_name,
                    status_code=getattr(res, "status_code", None),
                    error=str(err),
                )
                retries += 1
                if retries > self.max_retries or not should_retry(method, res, err):
                    raise UpstreamError(
                        f"Guesty {metric_name} request failed: {err}",
                        metric_name,
                        getattr(res, "status_code", None),
                    ) from err
                time.sleep(REQUEST_DELAY * retries)

    def get_calendar(self, listing_id: str, start: date, end: date) -> List[Dict[str, Any]]:
        """
        Fetch calendar days for a listing over [start, end].

        Returns:
            List[Dict[str, Any]]: Day objects with at least "date" and "status".
        """
        body = self.request(
            "GET",
            f"listings/{listing_id}/calendar",
            metric_name="calendar",
            params={"from": start.isoformat(), "to": end.isoformat()},
        )
        return extract_calendar_days(body)

    def create_reservation(self, payload: Dict[str, Any]) -> str:
        """
        Create a reservation and return its Guesty id.

        Raises:
            UpstreamError: If the request fails or the answer has no id.
        """
        body = self.request("POST", "reservations", metric_name="reservations", json=payload)
        reservation_id = None
        if isinstance(body, dict):
            reservation_id = body.get("_id") or body.get("id")
        if not reservation_id:
            raise UpstreamError("Guesty reservation response has no id", "reservations")
        return str(reservation_id)

    def get_reservation(self, reservation_id: str) -> Dict[str, Any]:
        return cast(
            Dict[str, Any],
            self.request("GET", f"reservations/{reservation_id}", metric_name="reservation"),
        )

    def get_listing(self, listing_id: str) -> Dict[str, Any]:
        return cast(
            Dict[str, Any],
            self.request("GET", f"listings/{listing_id}", metric_name="listing"),
        )


def _retry_after_seconds(res: requests.Response, default: float) -> float:
    value = res.headers.get("Retry-After") if res.headers is not None else None
    try:
        return min(float(value), 30.0) if value is not None else default
    except (TypeError, ValueError):
        return default
