"""Generate the skeleton of a new scraper script."""

from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Optional, Union

_HEAD = '''import logging

from crawlkit.collector import Collector


def main():
    logging.basicConfig(level=logging.INFO)
    c = Collector()
'''

_END = '''
    c.visit("https://yourdomain.com/")


if __name__ == "__main__":
    main()
'''

_CALLBACKS = {
    "html": '''
    def on_html(e):
        logging.info(e.text)

    c.on_html("element-selector", on_html)
''',
    "request": '''
    def on_request(r):
        logging.info("Visiting %s", r.url)

    c.on_request(on_request)
''',
    "response": '''
    def on_response(r):
        logging.info("Visited %s %s", r.request.url, r.status_code)

    c.on_response(on_response)
''',
    "error": '''
    def on_error(r, err):
        logging.error("Error on %s: %s", r.request.url, err)

    c.on_error(on_error)
''',
}


def _names(value: Union[str, Iterable[str], None]) -> list[str]:
    if not value:
        return []
    if isinstance(value, str):
        return value.split(",")
    return list(value)


def render_scraper(
    hosts: Union[str, Iterable[str], None] = None,
    callbacks: Union[str, Iterable[str], None] = None,
) -> str:
    """Return the source of a scraper script.

    ``hosts`` and ``callbacks`` are comma-separated strings or sequences of
    names. Known callbacks are ``html``, ``request``, ``response`` and
    ``error``; other names are ignored.
    """
    parts = [_HEAD]
    host_names = _names(hosts)
    if host_names:
        quoted = ", ".join(json.dumps(host) for host in host_names)
        parts.append(f"\n    c.allowed_domains = [{quoted}]\n")
    parts.extend(_CALLBACKS[name] for name in _names(callbacks) if name in _CALLBACKS)
    parts.append(_END)
    return "".join(parts)


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="crawlkit", description="Scraping framework")
    commands = parser.add_subparsers(dest="command", required=True)
    new = commands.add_parser("new", help="Create new scraper")
    new.add_argument(
        "--callbacks",
        default="",
        help="Add callbacks to the template. (e.g. '--callbacks=html,response,error')",
    )
    new.add_argument(
        "--hosts",
        default="",
        help="Specify scraper's allowed hosts. (e.g. '--hosts=xy.com,abcd.com')",
    )
    new.add_argument("path", nargs="?", default="", metavar="PATH", help="Path of the new scraper")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the command line; ``new`` writes a scraper to PATH or standard output."""
    args = _parser().parse_args(argv)
    source = render_scraper(args.hosts, args.callbacks)
    if args.path:
        Path(args.path).write_text(source, encoding="utf-8")
    else:
        sys.stdout.write(source)
    return 0


if __name__ == "__main__":
    sys.exit(main())