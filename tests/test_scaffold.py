import ast

import pytest

from crawlkit.scaffold import main, render_scraper


def _called_methods(source):
    tree = ast.parse(source)
    return [
        node.func.attr
        for node in ast.walk(tree)
        if isinstance(node, ast.Call)
        and isinstance(node.func, ast.Attribute)
        and isinstance(node.func.value, ast.Name)
        and node.func.value.id == "c"
    ]


def _allowed_domains(source):
    tree = ast.parse(source)
    for node in ast.walk(tree):
        if isinstance(node, ast.Assign):
            target = node.targets[0]
            if isinstance(target, ast.Attribute) and target.attr == "allowed_domains":
                return ast.literal_eval(node.value)
    return None


def test_default_scraper_is_valid_and_only_visits():
    source = render_scraper()
    assert _called_methods(source) == ["visit"]
    assert _allowed_domains(source) is None
    assert 'c.visit("https://yourdomain.com/")' in source


def test_hosts_from_string_and_list_agree():
    from_string = render_scraper("xy.com,abcd.com", None)
    from_list = render_scraper(["xy.com", "abcd.com"], None)
    assert from_string == from_list
    assert _allowed_domains(from_string) == ["xy.com", "abcd.com"]


def test_host_with_quote_is_escaped():
    source = render_scraper(['a"b.com'], None)
    assert _allowed_domains(source) == ['a"b.com']


def test_callbacks_follow_given_order():
    source = render_scraper(None, "response,html,error,request")
    assert _called_methods(source) == [
        "on_response",
        "on_html",
        "on_error",
        "on_request",
        "visit",
    ]


def test_unknown_callbacks_are_ignored():
    assert render_scraper(None, "bogus,other") == render_scraper()
    assert _called_methods(render_scraper(None, "html,bogus")) == ["on_html", "visit"]


def test_empty_inputs_add_nothing():
    assert render_scraper("", "") == render_scraper(None, None)


@pytest.mark.parametrize("callbacks", ["html", "request", "response", "error"])
def test_each_callback_parses(callbacks):
    source = render_scraper("example.com", callbacks)
    assert _called_methods(source) == [f"on_{callbacks}", "visit"]


def test_main_writes_to_path(tmp_path):
    target = tmp_path / "scraper.py"
    code = main(["new", "--hosts=example.com", "--callbacks=html,error", str(target)])
    assert code == 0
    assert target.read_text(encoding="utf-8") == render_scraper("example.com", "html,error")


def test_main_writes_to_stdout(capsys):
    assert main(["new", "--callbacks", "response"]) == 0
    out = capsys.readouterr().out
    assert out == render_scraper(None, "response")


def test_main_requires_command():
    with pytest.raises(SystemExit) as info:
        main([])
    assert info.value.code == 2