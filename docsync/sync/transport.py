"""Transports carrying documents to and from a remote endpoint.

Handles network communication with retry logic and exponential backoff.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

from ..errors import ConnectionFailure, TransportError

logger = logging.getLogger(__name__)


class Transport(ABC):
    """Moves documents between the replicator and a remote endpoint."""

    @abstractmethod
    async def push(self, documents: list[dict[str, Any]]) -> None:
        """Send documents to the remote.

        Raises:
            TransportError: The remote did not accept the documents.
        """
        pass

    @abstractmethod
    async def pull(
        self, last_document: dict[str, Any] | None, batch_size: int
    ) -> list[dict[str, Any]]:
        """Fetch documents newer than ``last_document``.

        Args:
            last_document: Last document pulled so far, None to start over.
            batch_size: Maximum documents to return.

        Returns:
            Documents in remote order.
        """
        pass


class HttpTransport(Transport):
    """JSON-over-HTTP transport.

    Pushes to ``POST <url>/push`` and pulls from ``POST <url>/pull``.
    Server errors, timeouts and refused connections are retried with
    exponential backoff; client errors fail at once.
    """

    def __init__(
        self,
        url: str,
        max_retries: int = 3,
        timeout: float = 30.0,
        backoff: float = 1.0,
    ):
        """Initialize the transport.

        Args:
            url: Base URL of the remote endpoint.
            max_retries: Maximum attempts per request.
            timeout: Request timeout in seconds.
            backoff: Delay before the first retry, doubled on each retry.
        """
        self.url = url
        self.max_retries = max_retries
        self.timeout = timeout
        self.backoff = backoff

    async def _request_with_retry(self, path: str, json_data: Any) -> Any:
        """POST JSON with exponential backoff retry.

        Returns:
            Decoded JSON response body.

        Raises:
            ConnectionFailure: Remote unreachable after all attempts.
            TransportError: Remote rejected the request.
        """
        url = f"{self.url.rstrip('/')}{path}"
        backoff = self.backoff
        unreachable = False

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            for attempt in range(self.max_retries):
                try:
                    response = await client.post(url, json=json_data)

                    if response.status_code == 200:
                        try:
                            return response.json()
                        except ValueError as e:
                            raise TransportError(
                                f"Invalid JSON from {url}: {e}", reason="malformed"
                            ) from e

                    elif response.status_code >= 500:
                        # Server error, retry
                        unreachable = False
                        logger.warning(
                            f"Server error {response.status_code}, "
                            f"attempt {attempt + 1}/{self.max_retries}"
                        )
                    else:
                        # Client error, don't retry
                        raise TransportError(
                            f"HTTP {response.status_code}: {response.text}",
                            reason="rejected",
                        )

                except httpx.ConnectError:
                    unreachable = True
                    logger.warning(
                        f"Connection failed, attempt {attempt + 1}/{self.max_retries}"
                    )
                except httpx.TimeoutException:
                    unreachable = True
                    logger.warning(
                        f"Request timeout, attempt {attempt + 1}/{self.max_retries}"
                    )
                except httpx.HTTPError as e:
                    raise TransportError(f"Request error: {e}") from e

                # Exponential backoff
                if attempt < self.max_retries - 1:
                    await asyncio.sleep(backoff)
                    backoff *= 2

        message = f"Max retries ({self.max_retries}) exceeded for {url}"
        if unreachable:
            raise ConnectionFailure(message, reason="offline")
        raise TransportError(message, reason="server_error")

    async def push(self, documents: list[dict[str, Any]]) -> None:
        await self._request_with_retry("/push", {"documents": documents})
        logger.debug(f"Pushed {len(documents)} documents to {self.url}")

    async def pull(
        self, last_document: dict[str, Any] | None, batch_size: int
    ) -> list[dict[str, Any]]:
        data = await self._request_with_retry(
            "/pull", {"lastDocument": last_document, "limit": batch_size}
        )
        if not isinstance(data, dict) or not isinstance(data.get("documents"), list):
            raise TransportError("Pull response has no documents list", reason="malformed")
        if not all(isinstance(document, dict) for document in data["documents"]):
            raise TransportError(
                "Pull response documents must be objects", reason="malformed"
            )
        return data["documents"]
