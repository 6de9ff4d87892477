"""Helpers for URLs, request bodies, hashing and file names."""

from __future__ import annotations

import re
import secrets
import unicodedata
from collections.abc import Iterable, Mapping
from typing import Pattern, Union
from urllib.parse import urlencode, urlsplit

_SPECIAL_PORTS: dict[str, int | None] = {
    "http": 80,
    "https": 443,
    "ws": 80,
    "wss": 443,
    "ftp": 21,
    "file": None,
}

_C0_OR_SPACE = "".join(chr(code) for code in range(0x21))
_TAB_OR_NEWLINE = re.compile(r"[\t\n\r]")
_LONE_PERCENT = re.compile(r"%(?![0-9A-Fa-f]{2})")

_PATH_EXTRA = frozenset(' "#<>?`{}')
_QUERY_EXTRA = frozenset(' "#<>')
_SPECIAL_QUERY_EXTRA = _QUERY_EXTRA | {"'"}
_FRAGMENT_EXTRA = frozenset(' "<>`')

_BASE_NAME_SEPARATORS = re.compile(r"[./]")
_NAME_SEPARATORS = re.compile(r"[ &_=+:]")
_ILLEGAL_NAME = re.compile(r"[^A-Za-z0-9\-.]")
_DASHES = re.compile(r"-+")

_FNV_OFFSET = 0xCBF29CE484222325
_FNV_PRIME = 0x100000001B3
_MASK64 = 0xFFFFFFFFFFFFFFFF


def _strip_accents(text: str) -> str:
    decomposed = unicodedata.normalize("NFD", text)
    kept = "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")
    return unicodedata.normalize("NFC", kept)


def _base_name(text: str) -> str:
    name = _BASE_NAME_SEPARATORS.sub("-", text)
    name = name.strip(" ")
    name = _strip_accents(name)
    name = _NAME_SEPARATORS.sub("-", name)
    name = _ILLEGAL_NAME.sub("", name)
    return _DASHES.sub("-", name)


def _extension(file_name: str) -> str:
    last_dot = file_name.rfind(".")
    last_sep = file_name.rfind("/")
    return file_name[last_dot:] if last_dot > last_sep else ""


def sanitize_file_name(file_name: str) -> str:
    """Replace dangerous characters so the result is a safe file name."""
    ext = _extension(file_name)
    clean_ext = _base_name(ext) or ".unknown"
    stem = file_name[: len(file_name) - len(ext)]
    return f"{_base_name(stem)}.{clean_ext[1:]}".replace("-", "_")


def create_form_body(data: Mapping[str, str] | None) -> bytes:
    """Encode a form as ``application/x-www-form-urlencoded``, keys sorted."""
    if not data:
        return b""
    return urlencode(sorted(data.items())).encode("ascii")


def create_multipart_body(boundary: str, data: Mapping[str, bytes]) -> bytes:
    """Build a multipart form body with one part per entry of ``data``."""
    dash_boundary = f"--{boundary}"
    parts = [f"Content-type: multipart/form-data; boundary={boundary}\n\n".encode()]
    for name, content in data.items():
        parts.append(
            (
                f"{dash_boundary}\n"
                f"Content-Disposition: form-data; name={name}\n"
                f"Content-Length: {len(content)} \n\n"
            ).encode()
        )
        parts.append(bytes(content))
        parts.append(b"\n")
    parts.append(f"{dash_boundary}--\n\n".encode())
    return b"".join(parts)


def random_boundary() -> str:
    """Return a random multipart boundary of 60 hex digits."""
    return secrets.token_hex(30)


def _encode_char(ch: str, extra: frozenset[str]) -> str:
    code = ord(ch)
    if code < 0x20 or code > 0x7E or ch in extra:
        return "".join(f"%{byte:02X}" for byte in ch.encode("utf-8", "surrogatepass"))
    return ch


def _percent_encode(text: str, extra: frozenset[str]) -> str:
    return "".join(_encode_char(ch, extra) for ch in text)


def _remove_dot_segments(path: str) -> str:
    segments = path.split("/")[1:]
    last = len(segments) - 1
    output: list[str] = []
    for position, segment in enumerate(segments):
        lowered = segment.lower()
        if lowered in ("..", ".%2e", "%2e.", "%2e%2e"):
            if output:
                output.pop()
            if position == last:
                output.append("")
        elif lowered in (".", "%2e"):
            if position == last:
                output.append("")
        else:
            output.append(segment)
    return "/" + "/".join(output)


class _InvalidURL(ValueError):
    pass


def _split_netloc(netloc: str, scheme: str) -> str:
    userinfo, at, hostport = netloc.rpartition("@")
    if hostport.startswith("["):
        host, bracket, rest = hostport.partition("]")
        if not bracket:
            raise _InvalidURL(netloc)
        host += "]"
        if rest and not rest.startswith(":"):
            raise _InvalidURL(netloc)
        port_text = rest[1:]
    else:
        host, _, port_text = hostport.partition(":")
    if not host and scheme != "file":
        raise _InvalidURL(netloc)
    if not host.isascii():
        try:
            host = host.encode("idna").decode("ascii")
        except UnicodeError as exc:
            raise _InvalidURL(netloc) from exc
    host = host.lower()
    port = ""
    if port_text:
        if not port_text.isdigit() or not port_text.isascii():
            raise _InvalidURL(netloc)
        number = int(port_text)
        if number > 65535:
            raise _InvalidURL(netloc)
        if number != _SPECIAL_PORTS[scheme]:
            port = f":{number}"
    prefix = f"{userinfo}@" if at else ""
    return f"{prefix}{host}{port}"


def _normalize(url: str) -> str:
    text = _TAB_OR_NEWLINE.sub("", url.strip(_C0_OR_SPACE))
    parts = urlsplit(text)
    scheme = parts.scheme.lower()
    if not scheme:
        raise _InvalidURL(url)
    if scheme not in _SPECIAL_PORTS:
        return f"{scheme}:{text.split(':', 1)[1]}"
    text = text.replace("\\", "/")
    parts = urlsplit(text)
    if not text.split(":", 1)[1].startswith("//"):
        raise _InvalidURL(url)
    netloc = _split_netloc(parts.netloc, scheme)
    path = _LONE_PERCENT.sub("%25", parts.path or "/")
    path = _remove_dot_segments(_percent_encode(path, _PATH_EXTRA))
    before_fragment, has_fragment, _ = text.partition("#")
    result = f"{scheme}://{netloc}{path}"
    if "?" in before_fragment:
        extra = _SPECIAL_QUERY_EXTRA if scheme != "file" else _QUERY_EXTRA
        result += "?" + _percent_encode(parts.query, extra)
    if has_fragment:
        result += "#" + _percent_encode(parts.fragment, _FRAGMENT_EXTRA)
    return result


def normalize_url(url: str) -> str:
    """Return the canonical form of an absolute URL, or ``url`` if it cannot be parsed."""
    try:
        return _normalize(url)
    except ValueError:
        return url


def _fnv1a64(chunks: Iterable[bytes]) -> int:
    value = _FNV_OFFSET
    for chunk in chunks:
        for byte in chunk:
            value = ((value ^ byte) * _FNV_PRIME) & _MASK64
    return value


def request_hash(url: str, body: Union[bytes, str, None] = None) -> int:
    """Hash a URL and optional body with 64-bit FNV-1a, after normalizing the URL."""
    chunks = [normalize_url(url).encode("utf-8")]
    if body is not None:
        chunks.append(body.encode("utf-8") if isinstance(body, str) else bytes(body))
    return _fnv1a64(chunks)


def is_matching_filter(filters: Iterable[Union[Pattern[str], str]], url: str) -> bool:
    """Tell whether any of the regular expressions matches somewhere in ``url``."""
    return any(re.search(pattern, url) for pattern in filters)