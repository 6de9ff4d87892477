"""Collector settings read from ``COLLY_*`` environment variables."""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Callable, Mapping
from typing import Any

logger = logging.getLogger(__name__)

_PREFIX = "COLLY_"
_MAX_UINT32 = 0xFFFFFFFF
_DECIMAL = re.compile(r"[+-]?[0-9]+")
_UNSIGNED = re.compile(r"(0[xX][0-9a-fA-F_]+|0[oO][0-7_]+|0[bB][01_]+|0[0-7_]*|[1-9][0-9_]*)")


def is_yes_string(value: str) -> bool:
    """Tell whether ``value`` spells an affirmative answer."""
    return value.lower() in {"1", "yes", "true", "y"}


def _parse_int(value: str) -> int | None:
    return int(value) if _DECIMAL.fullmatch(value) else None


def _parse_uint32(value: str) -> int | None:
    if not _UNSIGNED.fullmatch(value) or "__" in value or value.endswith("_"):
        return None
    if len(value) > 1 and value[0] == "0" and value[1] not in "xXoObB":
        number = int(value[1:].replace("_", "") or "0", 8)
    else:
        try:
            number = int(value, 0)
        except ValueError:
            return None
    return number if number <= _MAX_UINT32 else None


def _set_int(attribute: str, parser: Callable[[str], int | None]) -> Callable[[Any, str], None]:
    def apply(collector: Any, value: str) -> None:
        number = parser(value)
        if number is not None:
            setattr(collector, attribute, number)

    return apply


def _set_flag(attribute: str) -> Callable[[Any, str], None]:
    def apply(collector: Any, value: str) -> None:
        setattr(collector, attribute, is_yes_string(value))

    return apply


def _follow_redirects(collector: Any, value: str) -> None:
    if not is_yes_string(value):
        # A handler answering False keeps the last response instead of following.
        collector.set_redirect_handler(lambda request, via: False)


_SETTINGS: dict[str, Callable[[Any, str], None]] = {
    "ALLOWED_DOMAINS": lambda c, v: setattr(c, "allowed_domains", v.split(",")),
    "CACHE_DIR": lambda c, v: setattr(c, "cache_dir", v),
    "DETECT_CHARSET": _set_flag("detect_charset"),
    "DISABLE_COOKIES": lambda c, _v: c.disable_cookies(),
    "DISALLOWED_DOMAINS": lambda c, v: setattr(c, "disallowed_domains", v.split(",")),
    "IGNORE_ROBOTSTXT": _set_flag("ignore_robots_txt"),
    "FOLLOW_REDIRECTS": _follow_redirects,
    "MAX_BODY_SIZE": _set_int("max_body_size", _parse_int),
    "MAX_DEPTH": _set_int("max_depth", _parse_int),
    "MAX_REQUESTS": _set_int("max_requests", _parse_uint32),
    "PARSE_HTTP_ERROR_RESPONSE": _set_flag("parse_http_error_response"),
    "TRACE_HTTP": _set_flag("trace_http"),
    "USER_AGENT": lambda c, v: setattr(c, "user_agent", v),
}


def apply_env_settings(collector: Any, environ: Mapping[str, str] | None = None) -> None:
    """Apply every ``COLLY_*`` variable in ``environ`` (default ``os.environ``) to ``collector``.

    ``COLLY_FOLLOW_REDIRECTS`` set to a negative value installs a redirect
    handler that returns ``False``, meaning the last response is kept.
    Unknown ``COLLY_*`` names are logged and otherwise ignored.
    """
    source = os.environ if environ is None else environ
    for name, value in source.items():
        if not name.startswith(_PREFIX):
            continue
        setting = name[len(_PREFIX):]
        apply = _SETTINGS.get(setting)
        if apply is None:
            logger.warning("Unknown environment variable: %s", setting)
            continue
        apply(collector, value)