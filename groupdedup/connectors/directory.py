"""
Directory (Okta) groups API client.

Provides:
- Cursor pagination via the Link header
- Pre-emptive throttling on the remaining-calls header
- Retries with exponential backoff for 5xx and transport failures
- Retries timed by the server's reset headers for HTTP 429
- Single group deletion

Calls are made one at a time from a single thread; the only blocking
points are network I/O and the rate-limit/backoff sleeps.
"""

import time
from collections.abc import Callable, Iterator
from typing import Any
from urllib.parse import quote

import httpx
from loguru import logger
from tenacity import (
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from groupdedup.connectors.types import GroupRecord, GroupType
from groupdedup.utils.http import (
    LINK_HEADER,
    RateLimitExceeded,
    TerminalClientError,
    TransientNetworkError,
    parse_next_link,
    rate_limit_delay,
    throttle_delay,
)

GROUPS_PATH = "/api/v1/groups"


class DirectoryClient:
    """
    Groups API client with rate-limit awareness.

    The sleep and clock functions are injectable so the timing policy can
    be exercised without real waits.
    """

    def __init__(
        self,
        org_url: str,
        api_token: str,
        page_size: int = 200,
        timeout: float = 30.0,
        max_attempts: int = 5,
        rate_limit_threshold: int = 5,
        backoff_initial: float = 1.0,
        backoff_max: float = 30.0,
        user_agent: str = "groupdedup/1.0",
        http_client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the client.

        Args:
            org_url: Base URL of the directory, e.g. https://example.okta.com
            api_token: API token sent as "SSWS <token>"
            page_size: Items requested per list page
            timeout: Request timeout in seconds
            max_attempts: Total attempts per call before giving up
            rate_limit_threshold: Pause when remaining calls drop to this value
            backoff_initial: First backoff delay in seconds (doubles per retry)
            backoff_max: Backoff ceiling in seconds
            user_agent: User-Agent header value
            http_client: Optional shared HTTP client
            sleep: Sleep function
            clock: Epoch-seconds clock used against the reset headers
        """
        if not org_url:
            raise ValueError("org_url must be set")
        if not api_token:
            raise ValueError("api_token must be set")
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        self.base_url = org_url.rstrip("/")
        self.page_size = page_size
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.rate_limit_threshold = rate_limit_threshold
        self.default_headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "Authorization": f"SSWS {api_token}",
            "User-Agent": user_agent,
        }

        self._backoff = wait_exponential(multiplier=backoff_initial, min=backoff_initial, max=backoff_max)
        self._sleep = sleep
        self._clock = clock

        self._http_client = http_client
        self._owns_client = http_client is None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self) -> None:
        if self._owns_client and self._http_client is not None:
            self._http_client.close()
            self._http_client = None

    @property
    def client(self) -> httpx.Client:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.Client(timeout=self.timeout, follow_redirects=True)
            self._owns_client = True
        return self._http_client

    def build_url(self, path: str) -> str:
        """Absolute URL for a path; absolute URLs (pagination links) pass through."""
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    # =========================================================================
    # Request / retry
    # =========================================================================

    def _wait(self, retry_state) -> float:
        backoff = self._backoff(retry_state)
        error = retry_state.outcome.exception()
        if isinstance(error, RateLimitExceeded):
            return rate_limit_delay(error.headers, fallback=backoff, now=self._clock())
        return backoff

    def _log_retry(self, retry_state) -> None:
        error = retry_state.outcome.exception()
        logger.warning(
            f"{error} - sleeping {retry_state.next_action.sleep:.1f}s before retry "
            f"(attempt {retry_state.attempt_number}/{self.max_attempts})"
        )

    @staticmethod
    def _error_summary(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text[:200]
        if isinstance(body, dict) and body.get("errorSummary"):
            return str(body["errorSummary"])
        return response.text[:200]

    def _send(
        self,
        method: str,
        url: str,
        params: dict[str, Any] | None,
        attempt: int,
    ) -> httpx.Response:
        """Issue one attempt and map the outcome onto the error taxonomy."""
        logger.debug(f"{method} {url} params={params} (attempt {attempt}/{self.max_attempts})")

        try:
            response = self.client.request(method, url, params=params, headers=self.default_headers)
        except httpx.TimeoutException as e:
            raise TransientNetworkError(f"Timeout on {method} {url}: {e}") from e
        except httpx.TransportError as e:
            raise TransientNetworkError(f"Connection failure on {method} {url}: {e}") from e
        except httpx.HTTPError as e:
            # Redirect loops, undecodable bodies: retrying will not help.
            raise TerminalClientError(f"{type(e).__name__} on {method} {url}: {e}") from e

        status = response.status_code
        if status == 429:
            raise RateLimitExceeded(
                f"Rate limited on {method} {url}",
                status_code=status,
                headers=response.headers,
            )
        if status >= 500:
            raise TransientNetworkError(
                f"HTTP {status} for {method} {url}",
                status_code=status,
                headers=response.headers,
            )
        if status >= 400:
            raise TerminalClientError(
                f"HTTP {status} for {method} {url}: {self._error_summary(response)}",
                status_code=status,
                headers=response.headers,
            )
        return response

    def _throttle(self, response: httpx.Response) -> None:
        delay = throttle_delay(response.headers, threshold=self.rate_limit_threshold, now=self._clock())
        if delay is not None:
            logger.info(f"Rate limit nearly exhausted - pausing {delay:.1f}s")
            self._sleep(delay)

    def request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """
        Make a request with retries and rate-limit handling.

        Args:
            method: HTTP method
            path: URL path or absolute URL
            params: Query parameters

        Returns:
            The successful (2xx/3xx) response

        Raises:
            TerminalClientError: For non-429 4xx responses, or once
                max_attempts transient/429 failures have been seen
        """
        url = self.build_url(path)
        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self._wait,
            retry=retry_if_exception_type((TransientNetworkError, RateLimitExceeded)),
            before_sleep=self._log_retry,
            sleep=self._sleep,
        )

        try:
            for attempt in retrying:
                with attempt:
                    response = self._send(method, url, params, attempt.retry_state.attempt_number)
        except RetryError as e:
            last_error = e.last_attempt.exception()
            logger.error(f"Giving up on {method} {url} after {self.max_attempts} attempts: {last_error}")
            raise TerminalClientError(
                f"{last_error} (gave up after {self.max_attempts} attempts)",
                status_code=last_error.status_code,
                headers=last_error.headers,
                attempts=self.max_attempts,
            ) from last_error
        except TerminalClientError as e:
            logger.error(f"Request failed: {e}")
            raise

        self._throttle(response)
        return response

    # =========================================================================
    # Groups API
    # =========================================================================

    def iter_pages(
        self,
        path: str,
        params: dict[str, Any] | None = None,
    ) -> Iterator[list[dict[str, Any]]]:
        """
        Yield pages of a list endpoint, following rel="next" links.

        Stops when there is no continuation link or a page comes back empty.
        """
        url = path
        page = 0

        while url:
            response = self.request("GET", url, params=params)
            try:
                items = response.json()
            except ValueError as e:
                raise TerminalClientError(
                    f"Invalid JSON from {url}: {e}",
                    status_code=response.status_code,
                ) from e
            if not isinstance(items, list):
                raise TerminalClientError(
                    f"Expected a JSON array from {url}, got {type(items).__name__}",
                    status_code=response.status_code,
                )
            if not items:
                logger.debug(f"Empty page after {page} pages - done")
                return

            page += 1
            logger.debug(f"Page {page}: {len(items)} items")
            yield items

            url = parse_next_link(response.headers.get_list(LINK_HEADER))
            # The next link already carries the cursor and original query.
            params = None

    def fetch_all(
        self,
        resource_path: str = GROUPS_PATH,
        filter_expression: str | None = None,
    ) -> Iterator[GroupRecord]:
        """
        Lazily fetch every group from a list endpoint.

        Member counts come from the stats expansion so no call per group
        is needed. A fresh call always restarts from the first page.

        Args:
            resource_path: Collection path
            filter_expression: Optional server-side filter, e.g. 'type eq "OKTA_GROUP"'

        Yields:
            GroupRecord objects in server order
        """
        params = {"limit": self.page_size, "expand": "stats"}
        if filter_expression:
            params["filter"] = filter_expression

        total = 0
        for items in self.iter_pages(resource_path, params):
            for item in items:
                total += 1
                yield GroupRecord.from_api(item)

        logger.info(f"Fetched {total} groups from {resource_path}")

    def fetch_groups(self, include_app_groups: bool = False) -> Iterator[GroupRecord]:
        """Fetch directory-managed groups, plus application groups if asked."""
        filter_expression = None if include_app_groups else f'type eq "{GroupType.OKTA_GROUP.value}"'
        logger.info(
            "Fetching groups "
            + ("(including application groups)" if include_app_groups else "(directory-managed only)")
        )
        return self.fetch_all(GROUPS_PATH, filter_expression)

    def delete(self, group_id: str) -> int:
        """
        Delete one group.

        Returns:
            The response status code (any 2xx)

        Raises:
            DirectoryAPIError: Subclass describing why the delete failed
        """
        response = self.request("DELETE", f"{GROUPS_PATH}/{quote(group_id, safe='')}")
        logger.info(f"Deleted group {group_id} (HTTP {response.status_code})")
        return response.status_code
