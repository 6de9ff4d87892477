"""Exceptions raised while crawling."""

from __future__ import annotations

import json
from http import HTTPStatus


class CollyError(Exception):
    """Base class for every error the crawler raises."""

    default_message = "crawl error"

    def __str__(self) -> str:
        return super().__str__() or self.default_message


class ForbiddenDomainError(CollyError):
    """The URL's domain is not allowed."""

    default_message = "Forbidden domain"


class MissingURLError(CollyError):
    """No URL was given."""

    default_message = "Missing URL"


class MaxDepthError(CollyError):
    """The request is deeper than the collector's depth limit."""

    default_message = "Max depth limit reached"


class ForbiddenURLError(CollyError):
    """The URL matches one of the disallowed URL filters."""

    default_message = "ForbiddenURL"


class NoURLFiltersMatchError(CollyError):
    """The URL matches none of the URL filters."""

    default_message = "No URLFilters match"


class RobotsTxtBlockedError(CollyError):
    """The host's robots.txt forbids the URL."""

    default_message = "URL blocked by robots.txt"


class NoCookieJarError(CollyError):
    """Cookies were used while cookie handling is off."""

    default_message = "Cookie jar is not available"


class MaxRequestsError(CollyError):
    """The collector has made as many requests as it may."""

    default_message = "Max Requests limit reached"


class RetryBodyUnseekableError(CollyError):
    """A request cannot be retried because its body cannot be rewound."""

    default_message = "Retry Body Unseekable"


class AbortedAfterHeadersError(CollyError):
    """The transfer was aborted once the response headers arrived."""

    default_message = "Aborted after receiving response headers"


class HTTPStatusError(CollyError):
    """The server answered with a status the collector treats as failure."""

    def __init__(self, status_code: int) -> None:
        self.status_code = status_code
        try:
            text = HTTPStatus(status_code).phrase
        except ValueError:
            text = ""
        super().__init__(text)

    def __str__(self) -> str:
        return self.args[0] if self.args else ""


class AlreadyVisitedError(CollyError):
    """The destination URL was already visited."""

    def __init__(self, destination: object) -> None:
        self.destination = destination
        super().__init__(f"{json.dumps(str(destination))} already visited")