# crawlkit

crawlkit is a small framework for writing web scrapers and crawlers.
You create a `Collector`, register callbacks for the events you are
interested in, and start a job by visiting a URL. The collector fetches
pages, remembers what it has already visited, applies domain and URL
filters, and hands matched HTML or XML elements to your callbacks.

## Installation

```
pip install crawlkit
```

To run the test suite:

```
pip install "crawlkit[test]"
pytest
```

## A first scraper

```python
from crawlkit.collector import Collector


def main():
    collector = Collector(allowed_domains=["example.com"])

    def on_link(element):
        link = element.attr("href")
        print("Link found:", element.text, "->", link)
        element.request.visit(link)

    def on_request(request):
        print("Visiting", request.url)

    collector.on_html("a[href]", on_link)
    collector.on_request(on_request)

    collector.visit("https://example.com/")


if __name__ == "__main__":
    main()
```

## Configuring a collector

`Collector` takes keyword arguments; each is also an attribute that can be
changed later:

| Argument                     | Default   | Meaning                                                      |
|------------------------------|-----------|--------------------------------------------------------------|
| `user_agent`                 | built in  | `User-Agent` header sent with every request                  |
| `headers`                    | `None`    | extra headers sent with every request                        |
| `max_depth`                  | `0`       | deepest level followed through `Request.visit`; 0 is no limit |
| `max_requests`               | `0`       | most requests the collector makes; 0 is no limit             |
| `allowed_domains`            | `None`    | if set, only these host names are visited                    |
| `disallowed_domains`         | `None`    | host names that are never visited                            |
| `disallowed_url_filters`     | `[]`      | regular expressions; a matching URL is refused               |
| `url_filters`                | `[]`      | regular expressions; if set, a URL must match one            |
| `allow_url_revisit`          | `False`   | allow the same request to be made more than once             |
| `max_body_size`              | 10 MiB    | response bodies are cut to this many bytes; 0 is no limit    |
| `cache_dir`                  | `""`      | directory in which GET responses are cached                  |
| `cache_expiration`           | `0.0`     | seconds after which a cached response is fetched again       |
| `ignore_robots_txt`          | `True`    | set to `False` to obey each host's `robots.txt`              |
| `async_`                     | `False`   | run each request in its own thread; call `wait()` at the end |
| `parse_http_error_response`  | `False`   | run the usual callbacks for responses with error statuses    |
| `detect_charset`             | `False`   | re-decode non-UTF-8 bodies that declare no charset           |
| `check_head`                 | `False`   | send a HEAD request before every `visit`                     |
| `trace_http`                 | `False`   | fill `Response.trace` with timing figures                    |
| `environ`                    | `None`    | mapping read for `COLLY_*` settings instead of `os.environ`  |

### Settings from the environment

When a collector is created, `COLLY_*` variables override its settings:
`COLLY_ALLOWED_DOMAINS`, `COLLY_DISALLOWED_DOMAINS` (comma separated),
`COLLY_CACHE_DIR`, `COLLY_USER_AGENT`, `COLLY_MAX_BODY_SIZE`,
`COLLY_MAX_DEPTH`, `COLLY_MAX_REQUESTS`, `COLLY_DETECT_CHARSET`,
`COLLY_IGNORE_ROBOTSTXT`, `COLLY_PARSE_HTTP_ERROR_RESPONSE`,
`COLLY_TRACE_HTTP`, `COLLY_DISABLE_COOKIES` and `COLLY_FOLLOW_REDIRECTS`.
Flags are true for `1`, `yes`, `true` or `y`. Unknown `COLLY_*` names are
logged as warnings. The same rules are available as
`crawlkit.env.apply_env_settings(collector, environ)`.

## Callbacks

Callbacks run in this order for every request:

| Registration                              | Called with                | When                                              |
|-------------------------------------------|----------------------------|---------------------------------------------------|
| `on_request(callback)`                    | `Request`                  | before the request is sent                        |
| `on_response_headers(callback)`           | `Response`                 | once status and headers arrive, before the body   |
| `on_error(callback)`                      | `Response`, exception      | when the request fails or the status is an error  |
| `on_response(callback)`                   | `Response`                 | after the body has been received                  |
| `on_html(selector, callback)`             | `HTMLElement`              | for each element matching a CSS selector          |
| `on_xml(query, callback)`                 | `XMLElement`               | for each node matching an XPath query             |
| `on_scraped(callback)`                    | `Response`                 | last, after all HTML and XML callbacks            |

`on_response_headers` is not called for responses served from the cache.
An HTML or XML callback can be switched off with `on_html_detach(selector)`
or `on_xml_detach(query)`.

HTML callbacks run on `text/html` and `application/xhtml+xml` responses
(the type is sniffed when the server sends none). XML callbacks run on
responses whose content type mentions `html` or `xml`, or whose path ends
in `.xml` or `.xml.gz`. A `<base href>` in an HTML page changes what
relative links resolve against.

Inside a callback, a `Request` (from `crawlkit.messages`) can be stopped
with `abort()`, sent again with `retry()`, or used to follow a link
relative to the current page with `visit(url)` and `absolute_url(url)`.
Values stored on the request's `Context` with `put(key, value)` can be read
back from the response with `get(key)` (strings) or `get_any(key)`.

Elements (from `crawlkit.elements`) have `name`, `text` and `request`, and
offer `attr(name)`, `child_text(selector)`, `child_attr(selector, name)`
and `child_attrs(selector, name)`; `HTMLElement` also has
`child_texts(selector)` and `for_each(selector, callback)`.

## Other requests

```python
collector.post("https://example.com/login", {"username": "admin", "password": "password"})
collector.post_raw("https://example.com/api", b'{"q": "search"}')
collector.post_multipart("https://example.com/upload", {"file": b"..."})
collector.head("https://example.com/")
collector.request("PUT", "https://example.com/item", b"data", None, {"X-Test": "1"})
```

`has_visited(url)` and `has_posted(url, data)` tell whether a request has
already been made. Making the same request again raises
`AlreadyVisitedError` unless `allow_url_revisit` is set.

## Errors

Every error the collector raises itself derives from
`crawlkit.errors.CollyError`; network failures from `requests` are passed
on to `on_error` callbacks and then raised as they are.

```python
from crawlkit.collector import Collector
from crawlkit.errors import AlreadyVisitedError, ForbiddenDomainError

collector = Collector(allowed_domains=["example.com"])
try:
    collector.visit("https://example.org/")
except ForbiddenDomainError:
    print("domain not allowed")
except AlreadyVisitedError as exc:
    print("already visited:", exc)
```

Other errors include `MissingURLError`, `MaxDepthError`,
`MaxRequestsError`, `ForbiddenURLError`, `NoURLFiltersMatchError`,
`RobotsTxtBlockedError`, `NoCookieJarError`, `RetryBodyUnseekableError`,
`AbortedAfterHeadersError` and `HTTPStatusError` (raised for statuses of
203 and above unless `parse_http_error_response` is set).

## Collector management

- `clone()` makes a collector with the same settings, visited store, HTTP
  session and robots.txt cache, but no callbacks.
- `set_cookies(url, cookies)` takes a mapping of names to values or
  `http.cookiejar.Cookie` objects; `cookies(url)` returns the cookies that
  would be sent to `url`; `disable_cookies()` turns cookie handling off.
- `set_request_timeout(timeout)` sets the timeout in seconds (10 by
  default), `set_proxy(proxy_url)` routes every request through a proxy,
  and `set_redirect_handler(handler)` installs `handler(url, via)`, which
  returns true to follow a redirect and false to keep the last response.
- `wait()` blocks until all asynchronous requests are done.
- `unmarshal_request(data)` rebuilds a `Request` from JSON with the keys
  `URL`, `Method`, `Depth`, `Body` (base64), `Ctx` and `Headers`.
- `str(collector)` reports request, response and callback counts.

Helpers such as `sanitize_file_name`, `normalize_url` and `request_hash`
live in `crawlkit.util`.

## Starting a new scraper

The `crawlkit` command writes a starter scraper script:

```
crawlkit new --callbacks=html,request,response,error --hosts=example.com,www.example.com my_scraper.py
```

Without a path the script is printed to standard output. `--callbacks`
accepts any of `html`, `request`, `response` and `error`; `--hosts` sets the
allowed domains of the generated collector. The same text is returned by
`crawlkit.scaffold.render_scraper(hosts, callbacks)`.

## What crawlkit does not do

- The visited-request store lives in memory only; nothing persists between
  runs except the response cache in `cache_dir`.
- There are no request queues, per-domain rate limits or parallelism
  limits; asynchronous mode starts one thread per request.
- There is no debugging or event-logging hook beyond the standard
  `logging` module.
- Only one fixed proxy can be set; there is no proxy rotation.