"""
HTTP client used by API steps.

Wraps httpx.AsyncClient and returns a small HttpResponse with the body
parsed as JSON when possible, raw text otherwise. Non-2xx responses are
returned (ok=False), not raised; the step decides how to report them.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

import httpx

from ..exceptions import ExternalCallError

logger = logging.getLogger(__name__)

# (field name, (filename or None for text parts, bytes, content type))
FilePart = Tuple[str, Tuple[Optional[str], bytes, str]]


@dataclass
class HttpResponse:
    """Status plus parsed body of one HTTP exchange."""
    status_code: int
    reason: str
    body: Any
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


def parse_body(text: str) -> Any:
    """JSON body if it parses, raw text otherwise."""
    if not text:
        return text
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


class HttpClient:
    """
    Async HTTP client for workflow steps.

    Environment Variables:
        HTTP_TIMEOUT_SECONDS: Request timeout (default: 60)

    Example:
        client = HttpClient()
        response = await client.request("GET", "https://api.example.com/orders/A1")
        if response.ok:
            print(response.body)
    """

    def __init__(self, timeout: Optional[float] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout or float(os.getenv("HTTP_TIMEOUT_SECONDS", "60"))
        self.client = httpx.AsyncClient(timeout=self.timeout, transport=transport)

    async def request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        body: Optional[Union[str, bytes]] = None,
        params: Optional[Dict[str, str]] = None,
        files: Optional[List[FilePart]] = None,
        data: Optional[Dict[str, str]] = None,
    ) -> HttpResponse:
        """
        Send one request.

        Args:
            method: HTTP method
            url: Fully resolved URL
            headers: Request headers
            body: Raw request body (ignored when files/data are given)
            params: Query parameters
            files: Multipart file parts
            data: Multipart/form text fields

        Raises:
            ExternalCallError: On transport failure (DNS, connect, timeout)
        """
        logger.info(f"HTTP {method.upper()} {url}")
        kwargs: Dict[str, Any] = {"headers": headers or {}, "params": params}
        if files is not None or data is not None:
            kwargs["files"] = files
            kwargs["data"] = data
        elif body is not None:
            kwargs["content"] = body

        try:
            response = await self.client.request(method.upper(), url, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"HTTP {method.upper()} {url} failed: {e}")
            raise ExternalCallError(
                f"HTTP request failed: {e}",
                output_data={"url": url, "method": method.upper(), "error": str(e)},
            ) from e

        return HttpResponse(
            status_code=response.status_code,
            reason=response.reason_phrase,
            body=parse_body(response.text),
            headers=dict(response.headers),
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()
