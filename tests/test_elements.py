import pytest
from bs4 import BeautifulSoup
from lxml import etree, html

from crawlkit.elements import HTMLElement, XMLElement
from crawlkit.messages import Context, Request, Response

HTML_PAGE = """<!DOCTYPE html>
<html>
<head>
<title>Test Page</title>
</head>
<body>
<h1>Hello World</h1>
<p class="description">This is a test page</p>
<p class="description">This is a test paragraph</p>
</body>
</html>
"""

XML_PAGE = b"""<?xml version="1.0" encoding="UTF-8"?>
<page>
	<title>Test Page</title>
	<paragraph type="description">This is a test page</paragraph>
	<paragraph type="description">This is a test paragraph</paragraph>
</page>
"""


@pytest.fixture
def response():
    ctx = Context()
    return Response(request=Request(url="http://example.com/", ctx=ctx), ctx=ctx)


@pytest.fixture
def body_element(response):
    soup = BeautifulSoup(HTML_PAGE, "lxml")
    return HTMLElement.from_tag(response, soup.body, 0)


def test_html_element_from_anchor(response):
    soup = BeautifulSoup('<a href="http://go-colly.org">Colly</a>', "lxml")
    elements = [HTMLElement.from_tag(response, tag, i) for i, tag in enumerate(soup.select("a[href]"))]
    assert len(elements) == 1
    element = elements[0]
    assert element.name == "a"
    assert element.text == "Colly"
    assert element.attr("href") == "http://go-colly.org"
    assert element.request is response.request


def test_html_title_text(response):
    soup = BeautifulSoup(HTML_PAGE, "lxml")
    element = HTMLElement.from_tag(response, soup.select_one("title"))
    assert element.text == "Test Page"


def test_html_paragraph_class(response):
    soup = BeautifulSoup(HTML_PAGE, "lxml")
    elements = [HTMLElement.from_tag(response, tag) for tag in soup.select("p")]
    assert [e.attr("class") for e in elements] == ["description", "description"]
    assert elements[0].attr("missing") == ""


def test_html_child_attr_and_attrs(body_element):
    assert body_element.child_attr("p", "class") == "description"
    assert body_element.child_attrs("p", "class") == ["description", "description"]
    assert body_element.child_attr("p", "id") == ""


def test_html_child_text(body_element):
    assert body_element.child_text("h1") == "Hello World"
    assert body_element.child_text("p") == "This is a test pageThis is a test paragraph"
    assert body_element.child_text("table") == ""


def test_html_child_texts(body_element):
    assert body_element.child_texts("p") == ["This is a test page", "This is a test paragraph"]


def test_html_for_each_indices(body_element):
    seen = []
    body_element.for_each("p", lambda i, el: seen.append((i, el.index, el.text)))
    assert seen == [
        (0, 0, "This is a test page"),
        (1, 1, "This is a test paragraph"),
    ]


def test_xml_element_with_xml(response):
    root = etree.fromstring(XML_PAGE)
    titles = [XMLElement.from_node(response, n) for n in root.xpath("//page/title")]
    assert [t.text for t in titles] == ["Test Page"]
    paragraphs = [XMLElement.from_node(response, n) for n in root.xpath("//page/paragraph")]
    assert [p.attr("type") for p in paragraphs] == ["description", "description"]
    page = XMLElement.from_node(response, root.xpath("/page")[0])
    assert page.name == "page"
    assert page.child_attr("paragraph", "type") == "description"
    assert len(page.child_attrs("paragraph", "type")) == 2
    assert page.child_text("title") == "Test Page"


def test_xml_element_with_html(response):
    doc = html.document_fromstring(HTML_PAGE)
    title = XMLElement.from_node(response, doc.xpath("/html/head/title")[0])
    assert title.text == "Test Page"
    paragraphs = [XMLElement.from_node(response, n) for n in doc.xpath("/html/body/p")]
    assert [p.attr("class") for p in paragraphs] == ["description", "description"]
    body = XMLElement.from_node(response, doc.xpath("/html/body")[0])
    assert body.child_attr("p", "class") == "description"
    assert body.child_attrs("p", "class") == ["description", "description"]


def test_xml_child_queries_missing(response):
    root = etree.fromstring(XML_PAGE)
    page = XMLElement.from_node(response, root)
    assert page.child_text("nothing") == ""
    assert page.child_attr("nothing", "type") == ""
    assert page.child_attrs("title", "type") == []


def test_xml_child_text_of_text_node(response):
    root = etree.fromstring(XML_PAGE)
    page = XMLElement.from_node(response, root)
    assert page.child_text("title/text()") == "Test Page"