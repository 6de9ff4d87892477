"""Requests, responses and the per-request context shared between them."""

from __future__ import annotations

import re
import threading
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.parse import urljoin, urlsplit

from requests.structures import CaseInsensitiveDict

from .errors import RetryBodyUnseekableError
from .util import normalize_url

_TAB_OR_NEWLINE = re.compile(r"[\t\n\r]")
_SPECIAL_SCHEMES = frozenset({"http", "https", "ws", "wss", "ftp", "file"})


class Context:
    """A thread-safe key/value store that travels from a request to its response."""

    def __init__(self, values: Optional[Mapping[str, Any]] = None) -> None:
        self._values: dict[str, Any] = dict(values or {})
        self._lock = threading.RLock()

    def put(self, key: str, value: Any) -> None:
        """Store ``value`` under ``key``."""
        with self._lock:
            self._values[key] = value

    def get(self, key: str) -> str:
        """Return the string stored under ``key``, or ``""`` if there is none."""
        with self._lock:
            value = self._values.get(key)
        return value if isinstance(value, str) else ""

    def get_any(self, key: str) -> Any:
        """Return whatever is stored under ``key``, or ``None``."""
        with self._lock:
            return self._values.get(key)

    def __iter__(self) -> Iterator[str]:
        with self._lock:
            return iter(list(self._values))

    def __len__(self) -> int:
        with self._lock:
            return len(self._values)

    def __repr__(self) -> str:
        with self._lock:
            return f"Context({self._values!r})"


def _headers(value: Any) -> CaseInsensitiveDict:
    if isinstance(value, CaseInsensitiveDict):
        return value
    return CaseInsensitiveDict(value or {})


@dataclass(eq=False)
class Request:
    """An HTTP request made, or about to be made, by a collector."""

    url: str
    method: str = "GET"
    headers: Any = field(default_factory=CaseInsensitiveDict)
    host: str = ""
    ctx: Context = field(default_factory=Context)
    depth: int = 1
    body: Any = None
    id: int = 0
    proxy_url: str = ""
    response_character_encoding: str = ""
    collector: Any = field(default=None, repr=False)
    base_url: Optional[str] = None
    aborted: bool = False

    def __post_init__(self) -> None:
        self.headers = _headers(self.headers)

    def abort(self) -> None:
        """Cancel the request; callbacks that follow are not run."""
        self.aborted = True

    def absolute_url(self, url: str) -> str:
        """Resolve ``url`` against the base URL of the page; ``""`` if it cannot be."""
        if url.startswith("#"):
            return ""
        base = self.base_url or self.url
        reference = _TAB_OR_NEWLINE.sub("", url.strip())
        if urlsplit(base).scheme.lower() in _SPECIAL_SCHEMES:
            reference = reference.replace("\\", "/")
        try:
            joined = urljoin(base, reference)
        except ValueError:
            return ""
        if not urlsplit(joined).scheme:
            return ""
        return normalize_url(joined).partition("#")[0]

    def _bound_collector(self) -> Any:
        if self.collector is None:
            raise RuntimeError("request is not bound to a collector")
        return self.collector

    def visit(self, url: str) -> None:
        """Visit ``url``, relative to this request, one level deeper, sharing the context."""
        self._bound_collector()._scrape(
            url=self.absolute_url(url),
            method="GET",
            depth=self.depth + 1,
            body=None,
            ctx=self.ctx,
            headers=None,
            check_revisit=True,
        )

    def retry(self) -> None:
        """Send this request again, rewinding its body first."""
        collector = self._bound_collector()
        body = self.body
        if body is not None and not isinstance(body, (bytes, bytearray, str)):
            seekable = getattr(body, "seekable", None)
            if seekable is None or not seekable():
                raise RetryBodyUnseekableError()
            body.seek(0)
        collector._scrape(
            url=self.url,
            method=self.method,
            depth=self.depth,
            body=body,
            ctx=self.ctx,
            headers=CaseInsensitiveDict(self.headers),
            check_revisit=False,
        )


@dataclass(eq=False)
class Response:
    """The answer to a request, as handed to response callbacks."""

    status_code: int = 0
    body: bytes = b""
    headers: Any = field(default_factory=CaseInsensitiveDict)
    ctx: Optional[Context] = None
    request: Optional[Request] = None
    trace: Any = None

    def __post_init__(self) -> None:
        self.headers = _headers(self.headers)
        if self.ctx is None and self.request is not None:
            self.ctx = self.request.ctx