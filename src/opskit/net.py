"""
Throttled HTTP client.

Wraps one ``httpx.Client`` (and therefore one cookie jar) per instance,
enforces a minimum delay between requests, follows redirects explicitly
and downloads files atomically.
"""

import logging
import os
import re
import threading
import time
from dataclasses import replace
from pathlib import Path
from typing import Mapping, Optional, Union

import httpx

from opskit.cancellation import CancellationToken
from opskit.errors import (
    HttpStatusError,
    InvalidInputError,
    OperationCancelled,
    OpsError,
    RedirectError,
)
from opskit.retry import NO_RETRY, RetryPolicy, retry_call

logger = logging.getLogger(__name__)

URL_PATTERN = re.compile(r"^https?://[^\s\"']+$", re.DOTALL)
REDIRECT_STATUSES = {301, 302, 303, 307, 308}
CHUNK_SIZE = 64 * 1024

PathLike = Union[str, Path]


def is_valid_url(url: Optional[str]) -> bool:
    return bool(url) and URL_PATTERN.match(url) is not None


def fail_if_bad_url(url: Optional[str]) -> None:
    if not is_valid_url(url):
        raise InvalidInputError(f"Invalid URL: {url}")


def is_forbidden(error: BaseException) -> bool:
    """Abort predicate: stop retrying on HTTP 403."""
    return isinstance(error, HttpStatusError) and error.status_code == 403


def temp_download_path(destination: Path) -> Path:
    return destination.with_name(f"{destination.name}_temp")


class ThrottleGate:
    """Minimum-delay enforcement between successive calls.

    The gate is locked so that a client shared between threads still
    spaces its requests out; callers queue on the lock while one of them
    sleeps out the remainder of the delay.
    """

    def __init__(self, min_delay: float = 0.05):
        self.min_delay = min_delay
        self._last_call: Optional[float] = None
        self._lock = threading.Lock()

    def wait_turn(self, cancellation: Optional[CancellationToken] = None) -> None:
        token = cancellation or CancellationToken.none()
        with self._lock:
            if self._last_call is not None:
                elapsed = time.monotonic() - self._last_call
                if elapsed < self.min_delay:
                    token.sleep(self.min_delay - elapsed)
            self._last_call = time.monotonic()


class ThrottledClient:
    """HTTP client with throttling, explicit redirects and retrying GETs."""

    def __init__(
        self,
        min_delay: float = 0.05,
        user_agent: Optional[str] = None,
        follow_redirects: bool = True,
        max_redirects: int = 10,
        retry_policy: Optional[RetryPolicy] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Initialize client.

        Args:
            min_delay: Minimum seconds between two requests on this client
            user_agent: User-Agent header sent with every request
            follow_redirects: Re-issue requests at the Location target
            max_redirects: Maximum redirect hops per request
            retry_policy: Policy for GETs and downloads (default RetryPolicy())
            timeout: Per-request timeout in seconds
            transport: Custom httpx transport (used for testing)
        """
        self.gate = ThrottleGate(min_delay)
        self.follow_redirects = follow_redirects
        self.max_redirects = max_redirects
        self.retry_policy = retry_policy or RetryPolicy()

        headers = {"User-Agent": user_agent} if user_agent else None
        self._client = httpx.Client(
            headers=headers,
            timeout=timeout,
            follow_redirects=False,
            transport=transport,
        )

    @property
    def cookies(self) -> httpx.Cookies:
        return self._client.cookies

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "ThrottledClient":
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def _send(
        self,
        method: str,
        url: str,
        token: CancellationToken,
        stream: bool = False,
        data: Optional[Mapping[str, str]] = None,
    ) -> httpx.Response:
        """Send one request, following redirects when enabled."""
        hops = 0
        while True:
            token.raise_if_cancelled()
            self.gate.wait_turn(token)

            request = self._client.build_request(method, url, data=data)
            response = self._client.send(request, stream=stream)

            if not self.follow_redirects or response.status_code not in REDIRECT_STATUSES:
                return response

            response.close()
            location = response.headers.get("location")
            if not location:
                raise RedirectError(
                    f"Redirect {response.status_code} from {url} has no Location header"
                )

            hops += 1
            if hops > self.max_redirects:
                raise RedirectError(f"Too many redirects (>{self.max_redirects}) from {url}")

            url = str(response.url.join(location))
            logger.debug(f"Following redirect to {url}")
            if response.status_code == 303 or (
                response.status_code in (301, 302) and method == "POST"
            ):
                method, data = "GET", None

    def _raise_for_status(self, method: str, url: str, response: httpx.Response) -> None:
        if response.is_success:
            return
        if not response.is_closed:
            response.read()
        raise HttpStatusError(
            f"Bad status code from {method} {url}: {response.status_code}",
            response.status_code,
            response.text,
        )

    def _policy(self, policy: Optional[RetryPolicy], intro: Optional[str] = None) -> RetryPolicy:
        policy = policy or self.retry_policy
        if intro and not policy.intro_message:
            policy = replace(policy, intro_message=intro)
        return policy

    def get(
        self,
        url: str,
        cancellation: Optional[CancellationToken] = None,
        policy: Optional[RetryPolicy] = None,
    ) -> httpx.Response:
        """GET a URL, retrying transient failures and non-2xx responses."""
        fail_if_bad_url(url)
        token = cancellation or CancellationToken.none()

        def attempt() -> httpx.Response:
            logger.debug(f"GETting {url}")
            response = self._send("GET", url, token)
            self._raise_for_status("GET", url, response)
            return response

        return retry_call(attempt, self._policy(policy), token)

    def get_text(
        self,
        url: str,
        cancellation: Optional[CancellationToken] = None,
        policy: Optional[RetryPolicy] = None,
    ) -> str:
        return self.get(url, cancellation, policy).text

    def post_form(
        self,
        url: str,
        fields: Mapping[str, str],
        cancellation: Optional[CancellationToken] = None,
    ) -> httpx.Response:
        """POST form-encoded fields. Non-2xx responses are not retried."""
        fail_if_bad_url(url)
        token = cancellation or CancellationToken.none()

        logger.debug(f"POSTing {url}")
        response = self._send("POST", url, token, data=fields)
        if not response.is_success:
            logger.error(response.text)
        self._raise_for_status("POST", url, response)
        return response

    def _stream_to(self, url: str, target: Path, token: CancellationToken) -> None:
        response = self._send("GET", url, token, stream=True)
        try:
            self._raise_for_status("GET", url, response)
            with open(target, "wb") as f:
                for chunk in response.iter_bytes(CHUNK_SIZE):
                    token.raise_if_cancelled()
                    f.write(chunk)
        finally:
            response.close()

    def download(
        self,
        url: str,
        destination: PathLike,
        cancellation: Optional[CancellationToken] = None,
        policy: Optional[RetryPolicy] = None,
    ) -> Path:
        """
        Download a URL to a file atomically.

        The body is streamed into ``<destination>_temp`` and renamed into
        place once complete; the temp file is removed on any failure.

        Raises:
            InvalidInputError: Bad URL, or destination already exists
            OperationCancelled: The token fired mid-download
            RetryError: Every attempt failed
        """
        fail_if_bad_url(url)
        destination = Path(destination)
        if destination.exists():
            raise InvalidInputError(f"Download destination already exists: {destination}")

        destination.parent.mkdir(parents=True, exist_ok=True)
        token = cancellation or CancellationToken.none()
        temp = temp_download_path(destination)

        try:
            retry_call(
                lambda: self._stream_to(url, temp, token),
                self._policy(policy, f"Downloading {url} to {destination}"),
                token,
            )
            os.replace(temp, destination)
        finally:
            if temp.exists():
                temp.unlink()

        return destination

    def try_download(
        self,
        url: str,
        destination: PathLike,
        cancellation: Optional[CancellationToken] = None,
    ) -> bool:
        """Single download attempt; returns False instead of raising on failure."""
        fail_if_bad_url(url)
        logger.info(f"Attempt download {url} to {destination}")
        try:
            self.download(url, destination, cancellation, NO_RETRY)
        except (InvalidInputError, OperationCancelled):
            raise
        except (OpsError, httpx.HTTPError, OSError) as e:
            logger.info(f"Failed: {e}")
            return False

        logger.info("Success")
        return True
