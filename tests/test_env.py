import logging

import pytest

from crawlkit.env import apply_env_settings, is_yes_string


class _FakeCollector:
    def __init__(self):
        self.user_agent = "default"
        self.allowed_domains = None
        self.disallowed_domains = None
        self.cache_dir = ""
        self.detect_charset = False
        self.ignore_robots_txt = True
        self.max_body_size = 10 * 1024 * 1024
        self.max_depth = 0
        self.max_requests = 0
        self.parse_http_error_response = False
        self.trace_http = False
        self.cookies_enabled = True
        self.redirect_handler = None

    def disable_cookies(self):
        self.cookies_enabled = False

    def set_redirect_handler(self, handler):
        self.redirect_handler = handler


@pytest.fixture
def collector():
    return _FakeCollector()


@pytest.mark.parametrize("value", ["1", "yes", "YES", "true", "True", "y", "Y"])
def test_is_yes_string_true(value):
    assert is_yes_string(value) is True


@pytest.mark.parametrize("value", ["0", "no", "", "false", "yep", "on"])
def test_is_yes_string_false(value):
    assert is_yes_string(value) is False


def test_user_agent_from_env(collector):
    apply_env_settings(collector, {"COLLY_USER_AGENT": "test"})
    assert collector.user_agent == "test"


def test_domains_split_on_comma(collector):
    apply_env_settings(
        collector,
        {"COLLY_ALLOWED_DOMAINS": "example.com,example.net", "COLLY_DISALLOWED_DOMAINS": "example.org"},
    )
    assert collector.allowed_domains == ["example.com", "example.net"]
    assert collector.disallowed_domains == ["example.org"]


def test_flags(collector):
    apply_env_settings(
        collector,
        {
            "COLLY_DETECT_CHARSET": "yes",
            "COLLY_IGNORE_ROBOTSTXT": "no",
            "COLLY_PARSE_HTTP_ERROR_RESPONSE": "1",
            "COLLY_TRACE_HTTP": "true",
            "COLLY_CACHE_DIR": "/tmp/cache",
        },
    )
    assert collector.detect_charset is True
    assert collector.ignore_robots_txt is False
    assert collector.parse_http_error_response is True
    assert collector.trace_http is True
    assert collector.cache_dir == "/tmp/cache"


def test_disable_cookies(collector):
    apply_env_settings(collector, {"COLLY_DISABLE_COOKIES": ""})
    assert collector.cookies_enabled is False


def test_follow_redirects_off_installs_stopping_handler(collector):
    apply_env_settings(collector, {"COLLY_FOLLOW_REDIRECTS": "no"})
    assert collector.redirect_handler is not None
    assert collector.redirect_handler(None, []) is False


def test_follow_redirects_on_keeps_default(collector):
    apply_env_settings(collector, {"COLLY_FOLLOW_REDIRECTS": "yes"})
    assert collector.redirect_handler is None


@pytest.mark.parametrize(
    "value, expected",
    [("5", 5), ("+3", 3), ("x", 0), (" 5", 0), ("1_0", 0)],
)
def test_max_depth(collector, value, expected):
    apply_env_settings(collector, {"COLLY_MAX_DEPTH": value})
    assert collector.max_depth == expected


def test_max_body_size(collector):
    apply_env_settings(collector, {"COLLY_MAX_BODY_SIZE": "1024"})
    assert collector.max_body_size == 1024


@pytest.mark.parametrize(
    "value, expected",
    [
        ("7", 7),
        ("0x10", 16),
        ("010", 8),
        ("0b101", 5),
        ("4294967295", 4294967295),
        ("4294967296", 0),
        ("-1", 0),
        ("+1", 0),
        ("abc", 0),
    ],
)
def test_max_requests(collector, value, expected):
    apply_env_settings(collector, {"COLLY_MAX_REQUESTS": value})
    assert collector.max_requests == expected


def test_unknown_variable_is_logged(collector, caplog):
    with caplog.at_level(logging.WARNING):
        apply_env_settings(collector, {"COLLY_NOPE": "1"})
    assert "Unknown environment variable: NOPE" in caplog.text


def test_other_variables_ignored(collector, caplog):
    with caplog.at_level(logging.WARNING):
        apply_env_settings(collector, {"USER_AGENT": "other", "PATH": "/bin"})
    assert collector.user_agent == "default"
    assert caplog.text == ""


def test_reads_process_environment_by_default(collector, monkeypatch):
    monkeypatch.setenv("COLLY_USER_AGENT", "from-env")
    apply_env_settings(collector)
    assert collector.user_agent == "from-env"