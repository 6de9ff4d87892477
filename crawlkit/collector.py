"""The collector: visits URLs, enforces crawl rules and dispatches callbacks."""

from __future__ import annotations

import base64
import hashlib
import io
import itertools
import json
import logging
import os
import re
import threading
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from http.cookiejar import Cookie, DefaultCookiePolicy
from pathlib import Path
from typing import Any, Optional, Pattern, Union
from urllib.parse import parse_qsl, urlencode, urljoin, urlsplit

import lxml.html
import requests
from bs4 import BeautifulSoup
from lxml import etree
from requests.cookies import RequestsCookieJar, create_cookie
from requests.structures import CaseInsensitiveDict

from .elements import HTMLElement, XMLElement
from .env import apply_env_settings
from .errors import (
    AbortedAfterHeadersError,
    AlreadyVisitedError,
    CollyError,
    ForbiddenDomainError,
    ForbiddenURLError,
    HTTPStatusError,
    MaxDepthError,
    MaxRequestsError,
    MissingURLError,
    NoCookieJarError,
    NoURLFiltersMatchError,
    RobotsTxtBlockedError,
)
from .messages import Context, Request, Response
from .util import (
    create_form_body,
    create_multipart_body,
    is_matching_filter,
    normalize_url,
    random_boundary,
    request_hash,
)

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "colly - https://github.com/gocolly/colly/v2"
DEFAULT_MAX_BODY_SIZE = 10 * 1024 * 1024
DEFAULT_TIMEOUT = 10.0
_MAX_REDIRECTS = 10
_REDIRECT_CODES = frozenset({301, 302, 303, 307, 308})
_TAB_OR_NEWLINE = re.compile(r"[\t\n\r]")

_collector_ids = itertools.count(1)
_collector_ids_lock = threading.Lock()

Filter = Union[Pattern[str], str]
RedirectHandler = Callable[[str, list], bool]


def _next_collector_id() -> int:
    with _collector_ids_lock:
        return next(_collector_ids)


class _NoCookiesPolicy(DefaultCookiePolicy):
    def set_ok(self, cookie: Cookie, request: Any) -> bool:
        return False

    def return_ok(self, cookie: Cookie, request: Any) -> bool:
        return False


class _VisitStore:
    """Thread-safe set of visited request hashes."""

    def __init__(self) -> None:
        self._visited: set[int] = set()
        self._lock = threading.Lock()

    def is_visited(self, key: int) -> bool:
        with self._lock:
            return key in self._visited

    def visit(self, key: int) -> bool:
        """Record ``key``; return ``False`` if it was already recorded."""
        with self._lock:
            if key in self._visited:
                return False
            self._visited.add(key)
            return True


class _WaitGroup:
    def __init__(self) -> None:
        self._count = 0
        self._cond = threading.Condition()

    def add(self) -> None:
        with self._cond:
            self._count += 1

    def done(self) -> None:
        with self._cond:
            self._count -= 1
            if self._count <= 0:
                self._cond.notify_all()

    def wait(self) -> None:
        with self._cond:
            self._cond.wait_for(lambda: self._count <= 0)


@dataclass
class _RobotsGroup:
    rules: list[tuple[bool, str]] = field(default_factory=list)

    def test(self, path: str) -> bool:
        best_len = -1
        allowed = True
        for allow, pattern in self.rules:
            if not pattern:
                continue
            if _robots_pattern(pattern).match(path):
                if len(pattern) > best_len or (len(pattern) == best_len and allow):
                    best_len = len(pattern)
                    allowed = allow
        return allowed


def _robots_pattern(pattern: str) -> Pattern[str]:
    anchored = pattern.endswith("$")
    core = pattern[:-1] if anchored else pattern
    regex = ".*".join(re.escape(part) for part in core.split("*"))
    return re.compile(regex + ("$" if anchored else ""))


class _Robots:
    def __init__(self, groups: dict[str, _RobotsGroup], allow_all: bool = False, deny_all: bool = False):
        self._groups = groups
        self._allow_all = allow_all
        self._deny_all = deny_all

    @classmethod
    def parse(cls, text: str) -> _Robots:
        groups: dict[str, _RobotsGroup] = {}
        current: list[str] = []
        in_rules = False
        for raw_line in text.splitlines():
            line = raw_line.split("#", 1)[0].strip()
            if ":" not in line:
                continue
            key, _, value = line.partition(":")
            key = key.strip().lower()
            value = value.strip()
            if key == "user-agent":
                if in_rules:
                    current = []
                    in_rules = False
                agent = value.lower()
                current.append(agent)
                groups.setdefault(agent, _RobotsGroup())
            elif key in ("allow", "disallow") and current:
                in_rules = True
                for agent in current:
                    groups[agent].rules.append((key == "allow", value))
        return cls(groups)

    @classmethod
    def from_status(cls, status: int, text: str) -> _Robots:
        if 200 <= status < 300:
            return cls.parse(text)
        if 400 <= status < 500:
            return cls({}, allow_all=True)
        if status >= 500:
            return cls({}, deny_all=True)
        return cls({}, allow_all=True)

    def find_group(self, user_agent: str) -> Optional[_RobotsGroup]:
        if self._deny_all:
            return _RobotsGroup([(False, "/")])
        if self._allow_all:
            return None
        agent = user_agent.lower()
        matches = [name for name in self._groups if name != "*" and name in agent]
        if matches:
            return self._groups[max(matches, key=len)]
        return self._groups.get("*")


@dataclass
class _HTMLCallback:
    selector: str
    callback: Callable[[HTMLElement], Any]
    active: bool = True


@dataclass
class _XMLCallback:
    query: str
    callback: Callable[[XMLElement], Any]
    active: bool = True


_SNIFF_HTML = (
    b"<!DOCTYPE HTML", b"<HTML", b"<HEAD", b"<SCRIPT", b"<IFRAME", b"<H1", b"<DIV",
    b"<FONT", b"<TABLE", b"<A", b"<STYLE", b"<TITLE", b"<B", b"<BODY", b"<BR", b"<P", b"<!--",
)


def _sniff_content_type(body: bytes) -> str:
    data = body[:512].lstrip(b"\t\n\x0c\r ")
    upper = data.upper()
    for tag in _SNIFF_HTML:
        if upper.startswith(tag) and len(data) > len(tag) and data[len(tag)] in b" >":
            return "text/html; charset=utf-8"
    if data.startswith(b"<?xml"):
        return "text/xml; charset=utf-8"
    try:
        body[:512].decode("utf-8")
    except UnicodeDecodeError:
        return "application/octet-stream"
    return "text/plain; charset=utf-8"


def _resolve(base: str, href: str) -> Optional[str]:
    joined = urljoin(base, _TAB_OR_NEWLINE.sub("", href.strip()))
    if not urlsplit(joined).scheme:
        return None
    return normalize_url(joined)


class Collector:
    """A scraper instance: configuration, visited-URL store and callbacks."""

    def __init__(
        self,
        *,
        user_agent: str = DEFAULT_USER_AGENT,
        headers: Optional[Mapping[str, str]] = None,
        max_depth: int = 0,
        max_requests: int = 0,
        allowed_domains: Optional[Iterable[str]] = None,
        disallowed_domains: Optional[Iterable[str]] = None,
        disallowed_url_filters: Optional[Iterable[Filter]] = None,
        url_filters: Optional[Iterable[Filter]] = None,
        allow_url_revisit: bool = False,
        max_body_size: int = DEFAULT_MAX_BODY_SIZE,
        cache_dir: str = "",
        cache_expiration: float = 0.0,
        ignore_robots_txt: bool = True,
        async_: bool = False,
        parse_http_error_response: bool = False,
        id: Optional[int] = None,
        detect_charset: bool = False,
        check_head: bool = False,
        trace_http: bool = False,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.user_agent = user_agent
        self.headers = CaseInsensitiveDict(headers) if headers is not None else None
        self.max_depth = max_depth
        self.max_requests = max_requests
        self.allowed_domains = list(allowed_domains) if allowed_domains is not None else None
        self.disallowed_domains = list(disallowed_domains) if disallowed_domains is not None else None
        self.disallowed_url_filters = list(disallowed_url_filters or [])
        self.url_filters = list(url_filters or [])
        self.allow_url_revisit = allow_url_revisit
        self.max_body_size = max_body_size
        self.cache_dir = cache_dir
        self.cache_expiration = cache_expiration
        self.ignore_robots_txt = ignore_robots_txt
        self.async_ = async_
        self.parse_http_error_response = parse_http_error_response
        self.id = _next_collector_id() if id is None else id
        self.detect_charset = detect_charset
        self.check_head = check_head
        self.trace_http = trace_http

        self._session = requests.Session()
        self._session.headers = CaseInsensitiveDict()
        self._cookies_enabled = True
        self._timeout: Optional[float] = DEFAULT_TIMEOUT
        self._proxy_url = ""
        self._redirect_handler: Optional[RedirectHandler] = None
        self._store = _VisitStore()
        self._robots: dict[str, _Robots] = {}
        self._lock = threading.RLock()
        self._wait_group = _WaitGroup()
        self._counter_lock = threading.Lock()
        self._request_count = 0
        self._response_count = 0
        self._reset_callbacks()

        apply_env_settings(self, environ)

    def _reset_callbacks(self) -> None:
        self._html_callbacks: list[_HTMLCallback] = []
        self._xml_callbacks: list[_XMLCallback] = []
        self._request_callbacks: list[Callable[[Request], Any]] = []
        self._response_callbacks: list[Callable[[Response], Any]] = []
        self._response_headers_callbacks: list[Callable[[Response], Any]] = []
        self._error_callbacks: list[Callable[[Response, Exception], Any]] = []
        self._scraped_callbacks: list[Callable[[Response], Any]] = []

    # --- starting jobs -------------------------------------------------

    def visit(self, url: str) -> None:
        """Fetch ``url`` with GET (after a HEAD if ``check_head`` is set)."""
        if self.check_head:
            self._scrape(url, "HEAD", 1, None, None, None, True)
        self._scrape(url, "GET", 1, None, None, None, True)

    def has_visited(self, url: str) -> bool:
        """Tell whether ``url`` was already visited."""
        return self._store.is_visited(request_hash(url, create_form_body(None)))

    def has_posted(self, url: str, request_data: Mapping[str, str]) -> bool:
        """Tell whether ``url`` was already posted with ``request_data``."""
        return self._store.is_visited(request_hash(url, create_form_body(request_data)))

    def head(self, url: str) -> None:
        """Fetch ``url`` with HEAD."""
        self._scrape(url, "HEAD", 1, None, None, None, False)

    def post(self, url: str, request_data: Mapping[str, str]) -> None:
        """POST a url-encoded form to ``url``."""
        self._scrape(url, "POST", 1, create_form_body(request_data), None, None, True)

    def post_raw(self, url: str, request_data: bytes) -> None:
        """POST raw bytes to ``url``."""
        self._scrape(url, "POST", 1, bytes(request_data), None, None, True)

    def post_multipart(self, url: str, request_data: Mapping[str, bytes]) -> None:
        """POST a multipart form to ``url``."""
        boundary = random_boundary()
        headers = CaseInsensitiveDict(
            {"Content-Type": f"multipart/form-data; boundary={boundary}", "User-Agent": self.user_agent}
        )
        body = create_multipart_body(boundary, request_data)
        self._scrape(url, "POST", 1, body, None, headers, True)

    def request(
        self,
        method: str,
        url: str,
        request_data: Any = None,
        ctx: Optional[Context] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> None:
        """Make a custom request; ``request_data`` may be bytes, str or a readable file."""
        hdr = CaseInsensitiveDict(headers) if headers is not None else None
        self._scrape(url, method, 1, request_data, ctx, hdr, True)

    def unmarshal_request(self, data: Union[bytes, str]) -> Request:
        """Build a request bound to this collector from its JSON form."""
        fields = json.loads(data)
        url = fields.get("URL", "")
        if not url:
            raise MissingURLError()
        body_text = fields.get("Body")
        body = io.BytesIO(base64.b64decode(body_text) if body_text else b"")
        headers = CaseInsensitiveDict()
        for key, values in (fields.get("Headers") or {}).items():
            headers[key] = ", ".join(values) if isinstance(values, list) else str(values)
        return Request(
            url=url,
            method=fields.get("Method", "GET"),
            depth=int(fields.get("Depth", 1)),
            body=body,
            ctx=Context(fields.get("Ctx") or {}),
            id=self._next_request_id(),
            headers=headers,
            collector=self,
        )

    # --- callbacks -----------------------------------------------------

    def on_request(self, callback: Callable[[Request], Any]) -> None:
        """Run ``callback`` before every request."""
        with self._lock:
            self._request_callbacks.append(callback)

    def on_response_headers(self, callback: Callable[[Response], Any]) -> None:
        """Run ``callback`` once headers arrive; it may abort the transfer."""
        with self._lock:
            self._response_headers_callbacks.append(callback)

    def on_response(self, callback: Callable[[Response], Any]) -> None:
        """Run ``callback`` on every response."""
        with self._lock:
            self._response_callbacks.append(callback)

    def on_html(self, selector: str, callback: Callable[[HTMLElement], Any]) -> None:
        """Run ``callback`` on every HTML element matching the CSS ``selector``."""
        with self._lock:
            self._html_callbacks.append(_HTMLCallback(selector, callback))

    def on_xml(self, query: str, callback: Callable[[XMLElement], Any]) -> None:
        """Run ``callback`` on every node matching the XPath ``query``."""
        with self._lock:
            self._xml_callbacks.append(_XMLCallback(query, callback))

    def on_html_detach(self, selector: str) -> None:
        """Stop running the HTML callbacks registered for ``selector``."""
        with self._lock:
            for container in self._html_callbacks:
                if container.selector == selector:
                    container.active = False

    def on_xml_detach(self, query: str) -> None:
        """Stop running the XML callbacks registered for ``query``."""
        with self._lock:
            for container in self._xml_callbacks:
                if container.query == query:
                    container.active = False

    def on_error(self, callback: Callable[[Response, Exception], Any]) -> None:
        """Run ``callback(response, error)`` when a request fails."""
        with self._lock:
            self._error_callbacks.append(callback)

    def on_scraped(self, callback: Callable[[Response], Any]) -> None:
        """Run ``callback`` after the HTML and XML callbacks of a response."""
        with self._lock:
            self._scraped_callbacks.append(callback)

    def wait(self) -> None:
        """Block until every asynchronous job has finished."""
        self._wait_group.wait()

    # --- configuration -------------------------------------------------

    def clone(self) -> Collector:
        """Copy the configuration without callbacks; store, session and robots cache are shared."""
        other = Collector.__new__(Collector)
        other.__dict__.update(self.__dict__)
        other.id = _next_collector_id()
        other._wait_group = _WaitGroup()
        other._counter_lock = threading.Lock()
        other._request_count = 0
        other._response_count = 0
        other._reset_callbacks()
        return other

    def set_cookies(self, url: str, cookies: Union[Mapping[str, str], Iterable[Cookie]]) -> None:
        """Store cookies for ``url``."""
        if not self._cookies_enabled:
            raise NoCookieJarError()
        parts = urlsplit(url)
        items = cookies.items() if isinstance(cookies, Mapping) else None
        if items is not None:
            for name, value in items:
                self._session.cookies.set_cookie(
                    create_cookie(name, value, domain=parts.hostname or "", path="/")
                )
        else:
            for cookie in cookies:
                self._session.cookies.set_cookie(cookie)

    def cookies(self, url: str) -> list[Cookie]:
        """Return the cookies that would be sent to ``url``."""
        if not self._cookies_enabled:
            return []
        parts = urlsplit(url)
        host = (parts.hostname or "").lower()
        path = parts.path or "/"
        now = time.time()
        result = []
        for cookie in self._session.cookies:
            domain = cookie.domain.lower().lstrip(".")
            if domain and host != domain and not host.endswith("." + domain):
                continue
            if not path.startswith(cookie.path or "/"):
                continue
            if cookie.secure and parts.scheme != "https":
                continue
            if cookie.expires is not None and cookie.expires < now:
                continue
            result.append(cookie)
        return result

    def disable_cookies(self) -> None:
        """Turn cookie handling off."""
        self._cookies_enabled = False
        self._session.cookies = RequestsCookieJar(policy=_NoCookiesPolicy())

    def set_request_timeout(self, timeout: Optional[float]) -> None:
        """Set the per-request timeout in seconds (``None`` waits forever)."""
        self._timeout = timeout

    def set_proxy(self, proxy_url: str) -> None:
        """Send every request through ``proxy_url``."""
        self._proxy_url = proxy_url
        self._session.proxies = {"http": proxy_url, "https": proxy_url}

    def set_redirect_handler(self, handler: Optional[RedirectHandler]) -> None:
        """Set ``handler(url, via)``: return True to follow, False to keep the last response."""
        self._redirect_handler = handler

    def __str__(self) -> str:
        return (
            f"Requests made: {self._request_count} ({self._response_count} responses) | "
            f"Callbacks: OnRequest: {len(self._request_callbacks)}, OnHTML: {len(self._html_callbacks)}, "
            f"OnResponse: {len(self._response_callbacks)}, OnError: {len(self._error_callbacks)}"
        )

    # --- internals -----------------------------------------------------

    def _next_request_id(self) -> int:
        with self._counter_lock:
            self._request_count += 1
            return self._request_count

    @staticmethod
    def _payload(body: Any) -> Optional[bytes]:
        if body is None:
            return None
        if isinstance(body, str):
            return body.encode("utf-8")
        if isinstance(body, (bytes, bytearray)):
            return bytes(body)
        seekable = getattr(body, "seekable", None)
        can_seek = callable(seekable) and seekable()
        if can_seek:
            body.seek(0)
        data = body.read()
        if can_seek:
            body.seek(0)
        return data.encode("utf-8") if isinstance(data, str) else bytes(data)

    def _scrape(
        self,
        url: str,
        method: str,
        depth: int,
        body: Any,
        ctx: Optional[Context],
        headers: Optional[CaseInsensitiveDict],
        check_revisit: bool,
    ) -> None:
        if not url:
            raise MissingURLError()
        normalized = normalize_url(url)
        parts = urlsplit(normalized)
        if not parts.scheme or (parts.scheme in ("http", "https") and not parts.hostname):
            raise ValueError(f"invalid URL: {url!r}")
        if headers is None:
            headers = CaseInsensitiveDict(self.headers or {})
        if "User-Agent" not in headers:
            headers["User-Agent"] = self.user_agent
        payload = self._payload(body)
        self._request_check(normalized, method, payload, depth, check_revisit)
        self._wait_group.add()
        if self.async_:
            threading.Thread(
                target=self._fetch_quietly,
                args=(normalized, method, depth, body, payload, ctx, headers),
                daemon=True,
            ).start()
            return
        try:
            self._fetch(normalized, method, depth, body, payload, ctx, headers)
        finally:
            self._wait_group.done()

    def _fetch_quietly(self, *args: Any) -> None:
        try:
            self._fetch(*args)
        except Exception as exc:  # errors already went to on_error callbacks
            logger.debug("request failed: %s", exc)
        finally:
            self._wait_group.done()

    def _request_check(
        self, url: str, method: str, payload: Optional[bytes], depth: int, check_revisit: bool
    ) -> None:
        if 0 < self.max_depth < depth:
            raise MaxDepthError()
        if self.max_requests > 0 and self._request_count >= self.max_requests:
            raise MaxRequestsError()
        self._check_filters(url, urlsplit(url).hostname or "")
        if method != "HEAD" and not self.ignore_robots_txt:
            self._check_robots(url)
        if check_revisit and not self.allow_url_revisit:
            if method != "GET" and payload is None:
                return
            if not self._store.visit(request_hash(url, payload)):
                raise AlreadyVisitedError(url)

    def _check_filters(self, url: str, domain: str) -> None:
        if self.disallowed_url_filters and is_matching_filter(self.disallowed_url_filters, url):
            raise ForbiddenURLError()
        if self.url_filters and not is_matching_filter(self.url_filters, url):
            raise NoURLFiltersMatchError()
        if not self._is_domain_allowed(domain):
            raise ForbiddenDomainError()

    def _is_domain_allowed(self, domain: str) -> bool:
        if domain in (self.disallowed_domains or ()):
            return False
        if not self.allowed_domains:
            return True
        return domain in self.allowed_domains

    def _check_robots(self, url: str) -> None:
        parts = urlsplit(url)
        with self._lock:
            robots = self._robots.get(parts.netloc)
        if robots is None:
            headers = CaseInsensitiveDict(self.headers or {})
            headers.setdefault("User-Agent", self.user_agent)
            answer = self._session.get(
                f"{parts.scheme}://{parts.netloc}/robots.txt",
                headers=dict(headers),
                timeout=self._timeout,
            )
            robots = _Robots.from_status(answer.status_code, answer.text)
            with self._lock:
                self._robots[parts.netloc] = robots
        group = robots.find_group(self.user_agent)
        if group is None:
            return
        path = parts.path or "/"
        if parts.query:
            path += "?" + urlencode(sorted(parse_qsl(parts.query, keep_blank_values=True)))
        if not group.test(path):
            raise RobotsTxtBlockedError()

    def _fetch(
        self,
        url: str,
        method: str,
        depth: int,
        body: Any,
        payload: Optional[bytes],
        ctx: Optional[Context],
        headers: CaseInsensitiveDict,
    ) -> None:
        ctx = ctx if ctx is not None else Context()
        request = Request(
            url=url,
            method=method,
            headers=headers,
            host=headers.get("Host", ""),
            ctx=ctx,
            depth=depth,
            body=body,
            id=self._next_request_id(),
            collector=self,
        )
        if not request.headers.get("Accept"):
            request.headers["Accept"] = "*/*"
        self._handle_on_request(request)
        if request.aborted:
            return
        if method == "POST" and not request.headers.get("Content-Type"):
            request.headers["Content-Type"] = "application/x-www-form-urlencoded"

        try:
            response = self._perform(request, payload)
        except (CollyError, requests.RequestException, OSError) as exc:
            request.proxy_url = self._proxy_url
            self._handle_on_error(None, exc, request, ctx)
            raise
        request.proxy_url = self._proxy_url
        self._handle_on_error(response, None, request, ctx)
        with self._counter_lock:
            self._response_count += 1
        response.ctx = ctx
        response.request = request
        self._fix_charset(response, request.response_character_encoding)

        self._handle_on_response(response)
        error: Optional[Exception] = None
        for handler in (self._handle_on_html, self._handle_on_xml):
            try:
                handler(response)
            except (ValueError, etree.LxmlError) as exc:
                error = exc
                self._notify_error(response, exc, request, ctx)
        self._handle_on_scraped(response)
        if error is not None:
            raise error

    def _perform(self, request: Request, payload: Optional[bytes]) -> Response:
        use_cache = (
            bool(self.cache_dir)
            and request.method == "GET"
            and request.headers.get("Cache-Control") != "no-cache"
        )
        if use_cache:
            cached = self._load_cache(request)
            if cached is not None:
                return cached
        response = self._send(request, payload)
        if use_cache and response.status_code < 500:
            self._save_cache(request.url, response)
        return response

    def _cache_path(self, url: str) -> Path:
        digest = hashlib.sha1(url.encode("utf-8")).hexdigest()
        return Path(self.cache_dir) / digest[:2] / digest

    def _load_cache(self, request: Request) -> Optional[Response]:
        path = self._cache_path(request.url)
        try:
            stat = path.stat()
        except OSError:
            return None
        if self.cache_expiration and time.time() - stat.st_mtime > self.cache_expiration:
            return None
        try:
            data = json.loads(path.read_text("utf-8"))
        except (OSError, ValueError):
            return None
        return Response(
            status_code=data["status"],
            body=base64.b64decode(data["body"]),
            headers=CaseInsensitiveDict(data["headers"]),
            request=request,
        )

    def _save_cache(self, url: str, response: Response) -> None:
        path = self._cache_path(url)
        path.parent.mkdir(parents=True, exist_ok=True)
        record = {
            "status": response.status_code,
            "headers": dict(response.headers),
            "body": base64.b64encode(response.body).decode("ascii"),
        }
        tmp = path.with_suffix(".tmp")
        tmp.write_text(json.dumps(record), "utf-8")
        os.replace(tmp, path)

    def _send(self, request: Request, payload: Optional[bytes]) -> Response:
        url = request.url
        method = request.method
        headers = CaseInsensitiveDict(request.headers)
        data = payload
        via = [url]
        started = time.monotonic()
        while True:
            raw = self._session.request(
                method,
                url,
                headers=dict(headers),
                data=data,
                allow_redirects=False,
                stream=True,
                timeout=self._timeout,
            )
            location = raw.headers.get("Location")
            if raw.status_code not in _REDIRECT_CODES or location is None:
                break
            next_url = normalize_url(urljoin(url, location))
            next_method, next_data = method, data
            if (raw.status_code == 303 and method != "HEAD") or (
                raw.status_code in (301, 302) and method == "POST"
            ):
                next_method, next_data = "GET", None
                headers.pop("Content-Type", None)
            try:
                follow = self._check_redirect(next_url, next_data, via, headers)
            except BaseException:
                raw.close()
                raise
            if not follow:
                break
            raw.close()
            url, method, data = next_url, next_method, next_data
            via.append(next_url)

        if url != request.url:
            request.url = url
            request.headers = headers
        response = Response(
            status_code=raw.status_code,
            headers=CaseInsensitiveDict(raw.headers),
            ctx=request.ctx,
            request=request,
        )
        self._handle_on_response_headers(response)
        if request.aborted:
            raw.close()
            raise AbortedAfterHeadersError()
        try:
            response.body = self._read_body(raw)
        finally:
            raw.close()
        if self.trace_http:
            response.trace = {
                "first_byte": raw.elapsed.total_seconds(),
                "total": time.monotonic() - started,
            }
        return response

    def _read_body(self, raw: requests.Response) -> bytes:
        limit = self.max_body_size
        chunks: list[bytes] = []
        size = 0
        for chunk in raw.iter_content(chunk_size=65536):
            chunks.append(chunk)
            size += len(chunk)
            if 0 < limit <= size:
                break
        body = b"".join(chunks)
        return body[:limit] if limit > 0 else body

    def _check_redirect(
        self, url: str, payload: Optional[bytes], via: list[str], headers: CaseInsensitiveDict
    ) -> bool:
        try:
            self._check_filters(url, urlsplit(url).hostname or "")
        except CollyError as exc:
            raise type(exc)(f"Not following redirect to {json.dumps(url)}: {exc}") from exc
        same_page = normalize_url(url) == normalize_url(via[0])
        if not self.allow_url_revisit and not same_page:
            if not self._store.visit(request_hash(url, payload)):
                raise AlreadyVisitedError(url)
        if self._redirect_handler is not None:
            return bool(self._redirect_handler(url, list(via)))
        if len(via) >= _MAX_REDIRECTS:
            return False
        if urlsplit(url).netloc != urlsplit(via[-1]).netloc:
            headers.pop("Authorization", None)
        return True

    def _fix_charset(self, response: Response, override: str) -> None:
        if not response.body:
            return
        content_type = response.headers.get("Content-Type", "")
        charset = override
        if not charset:
            for param in content_type.split(";")[1:]:
                key, _, value = param.partition("=")
                if key.strip().lower() == "charset":
                    charset = value.strip().strip('"')
        if charset:
            if charset.lower().replace("-", "") == "utf8":
                return
            try:
                response.body = response.body.decode(charset).encode("utf-8")
            except LookupError:
                return
            return
        if self.detect_charset:
            try:
                response.body.decode("utf-8")
            except UnicodeDecodeError:
                response.body = response.body.decode("cp1252", "replace").encode("utf-8")

    def _handle_on_request(self, request: Request) -> None:
        for callback in list(self._request_callbacks):
            callback(request)

    def _handle_on_response_headers(self, response: Response) -> None:
        for callback in list(self._response_headers_callbacks):
            callback(response)

    def _handle_on_response(self, response: Response) -> None:
        for callback in list(self._response_callbacks):
            callback(response)

    def _handle_on_html(self, response: Response) -> None:
        with self._lock:
            callbacks = list(self._html_callbacks)
        if not callbacks:
            return
        content_type = response.headers.get("Content-Type") or _sniff_content_type(response.body)
        media = content_type.split(";", 1)[0].strip().lower()
        if media not in ("text/html", "application/xhtml+xml"):
            return
        soup = BeautifulSoup(response.body, "lxml")
        base = soup.select_one("base[href]")
        request = response.request
        if base is not None and request is not None:
            resolved = _resolve(request.url, str(base["href"]))
            if resolved:
                request.base_url = resolved
        for container in callbacks:
            if not container.active:
                continue
            for index, tag in enumerate(soup.select(container.selector)):
                container.callback(HTMLElement.from_tag(response, tag, index))

    def _handle_on_xml(self, response: Response) -> None:
        with self._lock:
            callbacks = list(self._xml_callbacks)
        if not callbacks:
            return
        request = response.request
        content_type = response.headers.get("Content-Type", "").lower()
        path = urlsplit(request.url).path.lower() if request is not None else ""
        is_xml_file = path.endswith(".xml") or path.endswith(".xml.gz")
        if "html" not in content_type and "xml" not in content_type and not is_xml_file:
            return
        if "html" in content_type:
            doc = lxml.html.document_fromstring(response.body)
            bases = doc.xpath("//base")
            if bases and request is not None:
                href = bases[0].get("href")
                if href is not None:
                    resolved = _resolve(request.url, href)
                    if resolved:
                        request.base_url = resolved
        else:
            doc = etree.fromstring(response.body)
        for container in callbacks:
            if not container.active:
                continue
            found = doc.xpath(container.query)
            for node in found if isinstance(found, list) else []:
                if isinstance(node, etree._Element) and isinstance(node.tag, str):
                    container.callback(XMLElement.from_node(response, node))

    def _notify_error(
        self, response: Optional[Response], error: Exception, request: Request, ctx: Context
    ) -> None:
        if response is None:
            response = Response(request=request, ctx=ctx)
        if response.request is None:
            response.request = request
        if response.ctx is None:
            response.ctx = request.ctx
        for callback in list(self._error_callbacks):
            callback(response, error)

    def _handle_on_error(
        self, response: Optional[Response], error: Optional[Exception], request: Request, ctx: Context
    ) -> None:
        if error is None and response is not None:
            if self.parse_http_error_response or response.status_code < 203:
                return
            error = HTTPStatusError(response.status_code)
        assert error is not None
        self._notify_error(response, error, request, ctx)
        if isinstance(error, HTTPStatusError):
            raise error

    def _handle_on_scraped(self, response: Response) -> None:
        for callback in list(self._scraped_callbacks):
            callback(response)
        with self._lock:
            self._html_callbacks = [c for c in self._html_callbacks if c.active]
            self._xml_callbacks = [c for c in self._xml_callbacks if c.active]