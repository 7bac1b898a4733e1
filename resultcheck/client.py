"""
client.py - HTTP Client for the Results API
===========================================
This module handles all HTTP communication with the results API:
- Bearer token authentication on a shared requests Session
- Building the patient results query for one subject
- Running blocking requests off the event loop so the dispatcher can keep
  several of them in flight

Behaviour worth knowing:
------------------------
- One attempt per request. Failures are reported, never retried.
- Redirects are NOT followed. A 3xx means the base URL is misconfigured and
  is reported like any other non-2xx response.
- Every request carries a fixed timeout (default 20 seconds). A timeout is
  reported the same way as a refused connection.
"""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Dict, Tuple

import requests

from .config import Settings


logger = logging.getLogger(__name__)

# Path of the lookup endpoint, relative to the base URL (which ends in /v2)
RESULTS_PATH = "/results/patient"


@dataclass(frozen=True)
class ResultQuery:
    """
    One outbound lookup: which subject it is for, and the query parameters.

    Example:
        ResultQuery(key="id|S1234567D||", params=(("uin", "S1234567D"),))
    """

    key: str
    params: Tuple[Tuple[str, str], ...]

    def as_dict(self) -> Dict[str, str]:
        return dict(self.params)


class ResultsClient:
    """
    Client for the results API.

    Usage:
        with ResultsClient(settings) as client:
            payload = client.fetch(query)            # blocking
            payload = await client.execute(query)    # from the event loop

    Errors are raised raw from requests so the caller can tell a response
    apart from no response at all:
        - requests.HTTPError (with .response) : status >= 300
        - requests.ConnectionError / Timeout  : nothing came back
        - ValueError                          : 2xx body was not JSON
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self.base = settings.base_url
        self.timeout = settings.timeout_sec

        self.s = requests.Session()
        self.s.headers.update({
            "Authorization": f"Bearer {settings.api_key}",
            "Accept": "application/json",
        })

        # One worker per concurrent request slot
        self._pool = ThreadPoolExecutor(
            max_workers=settings.concurrency_limit,
            thread_name_prefix="resultcheck",
        )

    def fetch(self, query: ResultQuery) -> Dict[str, Any]:
        """
        Make one GET request for a subject's results.

        Args:
            query: The lookup to perform

        Returns:
            The decoded JSON body, e.g. {"results": [...]}

        Raises:
            requests.HTTPError: On any status >= 300 (redirects included)
            requests.RequestException: When no response was received
            ValueError: When a 2xx body is not valid JSON
        """
        url = f"{self.base}{RESULTS_PATH}"
        r = self.s.get(
            url,
            params=query.as_dict(),
            timeout=self.timeout,
            allow_redirects=False,
        )

        if r.status_code >= 300:
            raise requests.HTTPError(
                f"{r.status_code} response for {query.key}",
                response=r,
            )

        logger.debug(f"[{r.status_code}] {query.key}")

        # requests' own JSONDecodeError is also a RequestException, which
        # would read as "no response" further up
        try:
            return r.json()
        except ValueError as e:
            raise ValueError(f"Invalid JSON body for {query.key}: {e}") from None

    async def execute(self, query: ResultQuery) -> Dict[str, Any]:
        """Run fetch() on the worker pool and wait for it without blocking the loop."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._pool, self.fetch, query)

    def close(self):
        """Close the HTTP session and shut the worker pool down."""
        self._pool.shutdown(wait=True)
        self.s.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()
