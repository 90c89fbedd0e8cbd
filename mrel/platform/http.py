"""HTTP client abstraction for the release host API and asset downloads.

This module provides:
- HttpClient: Protocol for HTTP operations (injectable for tests)
- RealHttpClient: Real implementation using urllib
- MockHttpClient: Mock implementation for testing

Any HTTP status is returned as an ``HttpResponse``; only transport failures
(DNS, TLS, timeouts) are an ``Err(NetworkError)``. Callers decide which
status codes count as success.
"""

from __future__ import annotations

import base64
import json
import ssl
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from mrel.core.result import Err, Ok, Result
from mrel.core.structured import as_str_dict, get_str

__all__ = [
    "BasicAuth",
    "HttpClient",
    "HttpResponse",
    "MockHttpClient",
    "NetworkError",
    "RealHttpClient",
]


@dataclass(frozen=True, slots=True)
class NetworkError:
    """HTTP error details.

    Attributes:
        url: The URL that failed
        status: HTTP status code (0 for transport errors)
        message: Human-readable error message (host-provided when available)
    """

    url: str
    status: int
    message: str

    def __str__(self) -> str:
        if self.status:
            return f"HTTP {self.status}: {self.message} ({self.url})"
        return f"{self.message} ({self.url})"


@dataclass(frozen=True, slots=True)
class BasicAuth:
    user: str
    password: str

    def header(self) -> str:
        raw = f"{self.user}:{self.password}".encode("utf-8")
        return "Basic " + base64.b64encode(raw).decode("ascii")


@dataclass(frozen=True, slots=True)
class HttpResponse:
    status: int
    text: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def json(self) -> object | None:
        """Parsed body, or None when the body is not JSON."""
        if not self.text:
            return None
        try:
            return json.loads(self.text)
        except json.JSONDecodeError:
            return None

    def message(self) -> str:
        """The host-provided ``message`` field, falling back to the raw body."""
        data = as_str_dict(self.json())
        if data is not None:
            msg = get_str(data, "message")
            if msg is not None:
                return msg
        return self.text.strip() or f"HTTP {self.status}"


@runtime_checkable
class HttpClient(Protocol):
    """Protocol for HTTP operations.

    This abstraction allows injecting mock clients for testing,
    avoiding real network calls in unit tests.
    """

    def request(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        json_body: object | None = None,
        auth: BasicAuth | None = None,
    ) -> Result[HttpResponse, NetworkError]: ...


class RealHttpClient:
    """Real HTTP client using urllib with system certificates."""

    def __init__(self, timeout: float = 30.0, user_agent: str = "mrel-release") -> None:
        self.timeout = timeout
        self.user_agent = user_agent
        self._ssl_context = ssl.create_default_context()

    def request(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        json_body: object | None = None,
        auth: BasicAuth | None = None,
    ) -> Result[HttpResponse, NetworkError]:
        all_headers = {"User-Agent": self.user_agent}
        all_headers.update(headers or {})
        data: bytes | None = None
        if json_body is not None:
            data = json.dumps(json_body).encode("utf-8")
            all_headers["Content-Type"] = "application/json"
        if auth is not None:
            all_headers["Authorization"] = auth.header()

        try:
            req = urllib.request.Request(url, data=data, headers=all_headers, method=method)
            with urllib.request.urlopen(
                req,
                timeout=self.timeout,
                context=self._ssl_context,
            ) as response:
                body = response.read()
                return Ok(HttpResponse(status=response.status, text=_decode(body)))
        except urllib.error.HTTPError as e:
            # Non-2xx: still a response, the caller surfaces the host message.
            return Ok(HttpResponse(status=e.code, text=_decode(e.read())))
        except urllib.error.URLError as e:
            return Err(NetworkError(url=url, status=0, message=str(e.reason)))
        except TimeoutError:
            return Err(NetworkError(url=url, status=0, message="Request timed out"))
        except (ValueError, OSError) as e:
            return Err(NetworkError(url=url, status=0, message=str(e)))


def _decode(body: bytes) -> str:
    return body.decode("utf-8", errors="replace")


@dataclass(frozen=True, slots=True)
class RecordedRequest:
    method: str
    url: str
    headers: dict[str, str]
    json_body: object | None
    auth: BasicAuth | None


class MockHttpClient:
    """Mock HTTP client for testing.

    Responses are registered per (method, url). Unregistered requests get a 404.

    Usage:
        client = MockHttpClient()
        client.set_json("POST", "https://api.github.com/authorizations", 201, {"token": "t"})
        result = client.request("POST", "https://api.github.com/authorizations")
    """

    def __init__(self) -> None:
        self._responses: dict[tuple[str, str], list[HttpResponse | NetworkError]] = {}
        self.calls: list[RecordedRequest] = []

    def set_json(self, method: str, url: str, status: int, body: object) -> None:
        self.set_response(method, url, HttpResponse(status=status, text=json.dumps(body)))

    def set_text(self, method: str, url: str, status: int, text: str) -> None:
        self.set_response(method, url, HttpResponse(status=status, text=text))

    def set_response(self, method: str, url: str, response: HttpResponse | NetworkError) -> None:
        """Queue a response; the last queued one repeats once the others are consumed."""
        self._responses.setdefault((method, url), []).append(response)

    def request(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        json_body: object | None = None,
        auth: BasicAuth | None = None,
    ) -> Result[HttpResponse, NetworkError]:
        self.calls.append(
            RecordedRequest(
                method=method,
                url=url,
                headers=dict(headers or {}),
                json_body=json_body,
                auth=auth,
            )
        )
        queue = self._responses.get((method, url))
        if not queue:
            return Ok(HttpResponse(status=404, text='{"message": "Not Found (mock)"}'))

        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(response, NetworkError):
            return Err(response)
        return Ok(response)

    def urls(self, method: str | None = None) -> list[str]:
        return [c.url for c in self.calls if method is None or c.method == method]
