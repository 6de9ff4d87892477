import re

import pytest

from crawlkit.util import (
    create_form_body,
    create_multipart_body,
    is_matching_filter,
    normalize_url,
    random_boundary,
    request_hash,
    sanitize_file_name,
)


@pytest.mark.parametrize(
    "name, expected",
    [
        ("index.html", "index.html"),
        ("foo bar.html", "foo_bar.html"),
        ("noext", "noext.unknown"),
        ("a/b.txt", "a_b.txt"),
        ("foo.bar.html", "foo_bar.html"),
        ("café.html", "cafe.html"),
        ("a--b.txt", "a_b.txt"),
    ],
)
def test_sanitize_file_name(name, expected):
    assert sanitize_file_name(name) == expected


def test_form_body_single_value():
    assert create_form_body({"name": "hello"}) == b"name=hello"


def test_form_body_sorted_and_escaped():
    assert create_form_body({"b": "2", "a": "x y"}) == b"a=x+y&b=2"


def test_form_body_empty():
    assert create_form_body(None) == b""
    assert create_form_body({}) == b""


def test_multipart_body_layout():
    body = create_multipart_body("XYZ", {"first": b"one"})
    assert body == (
        b"Content-type: multipart/form-data; boundary=XYZ\n\n"
        b"--XYZ\n"
        b"Content-Disposition: form-data; name=first\n"
        b"Content-Length: 3 \n\n"
        b"one\n"
        b"--XYZ--\n\n"
    )


def test_multipart_body_without_parts():
    assert create_multipart_body("B", {}) == (
        b"Content-type: multipart/form-data; boundary=B\n\n--B--\n\n"
    )


def test_random_boundary_shape():
    boundary = random_boundary()
    assert re.fullmatch(r"[0-9a-f]{60}", boundary)
    assert random_boundary() != boundary or len(boundary) == 60


@pytest.mark.parametrize(
    "url, expected",
    [
        ("http://example.com", "http://example.com/"),
        ("HTTP://Example.COM:80/a", "http://example.com/a"),
        ("https://example.com:443/", "https://example.com/"),
        ("http://example.com:8080", "http://example.com:8080/"),
        ("http://x/100%", "http://x/100%25"),
        ("http://x/?a=100%zz", "http://x/?a=100%zz"),
        ("http://x/foo\tbar/", "http://x/foobar/"),
        ("http://x/a/../b", "http://x/b"),
        ("http://x/a b", "http://x/a%20b"),
        ("  http://x/  ", "http://x/"),
        ("http://x/p#frag", "http://x/p#frag"),
    ],
)
def test_normalize_url(url, expected):
    assert normalize_url(url) == expected


def test_normalize_url_keeps_unparsable_input():
    assert normalize_url("/relative/path") == "/relative/path"
    assert normalize_url("http://example.com:abc/") == "http://example.com:abc/"


def test_request_hash_fnv_vectors():
    assert request_hash("") == 0xCBF29CE484222325
    assert request_hash("a") == 0xAF63DC4C8601EC8C
    assert request_hash("foobar") == 0x85944171F73967E8


def test_request_hash_body_is_appended():
    assert request_hash("foo", b"bar") == request_hash("foobar")


def test_request_hash_normalizes_url():
    assert request_hash("http://example.com") == request_hash("http://example.com/")


def test_request_hash_empty_body_equals_no_body():
    assert request_hash("http://example.com/", b"") == request_hash("http://example.com/")


def test_request_hash_differs_by_body():
    first = request_hash("http://example.com/login", b"name=hello")
    second = request_hash("http://example.com/login", b"name=hello&lastname=world")
    assert first != second
    assert first == request_hash("http://example.com/login", "name=hello")


def test_is_matching_filter():
    filters = [re.compile(r"http://httpbin\.org/(|e.+)$"), re.compile(r"http://httpbin\.org/h.+")]
    assert is_matching_filter(filters, "http://httpbin.org/")
    assert is_matching_filter(filters, "http://httpbin.org/headers")
    assert not is_matching_filter(filters, "http://httpbin.org/ip")


def test_is_matching_filter_searches_anywhere():
    assert is_matching_filter([re.compile(r".*not_allowed.*")], "http://x/not_allowed/page")
    assert not is_matching_filter([], "http://x/")