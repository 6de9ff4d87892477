"""Wrappers around matched HTML and XML elements handed to callbacks."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Optional

from bs4 import Tag
from lxml import etree

from .messages import Request, Response


def _attr_value(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return " ".join(value)
    return str(value)


@dataclass(eq=False)
class HTMLElement:
    """An HTML element matched by a CSS selector."""

    name: str
    text: str
    response: Optional[Response]
    dom: Tag = field(repr=False)
    index: int = 0
    attributes: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_tag(cls, response: Optional[Response], tag: Tag, index: int = 0) -> HTMLElement:
        """Wrap a parsed tag."""
        return cls(
            name=tag.name,
            text=tag.get_text(),
            response=response,
            dom=tag,
            index=index,
            attributes={key: _attr_value(value) for key, value in tag.attrs.items()},
        )

    @property
    def request(self) -> Optional[Request]:
        return self.response.request if self.response is not None else None

    def attr(self, name: str) -> str:
        """Return the value of attribute ``name``, or ``""``."""
        return self.attributes.get(name, "")

    def child_text(self, selector: str) -> str:
        """Return the stripped, concatenated text of all matching descendants."""
        return "".join(tag.get_text() for tag in self.dom.select(selector)).strip()

    def child_texts(self, selector: str) -> list[str]:
        """Return the stripped text of each matching descendant."""
        return [tag.get_text().strip() for tag in self.dom.select(selector)]

    def child_attr(self, selector: str, name: str) -> str:
        """Return the stripped attribute of the first matching descendant, or ``""``."""
        tag = self.dom.select_one(selector)
        if tag is None or not tag.has_attr(name):
            return ""
        return _attr_value(tag[name]).strip()

    def child_attrs(self, selector: str, name: str) -> list[str]:
        """Return the stripped attribute of every matching descendant that has it."""
        return [
            _attr_value(tag[name]).strip()
            for tag in self.dom.select(selector)
            if tag.has_attr(name)
        ]

    def for_each(self, selector: str, callback: Callable[[int, HTMLElement], Any]) -> None:
        """Call ``callback(index, element)`` for every matching descendant."""
        for index, tag in enumerate(self.dom.select(selector)):
            callback(index, HTMLElement.from_tag(self.response, tag, index))


def _local_name(node: Any) -> str:
    if not isinstance(node.tag, str):
        return ""
    return etree.QName(node).localname


def _is_element(node: Any) -> bool:
    return isinstance(node, etree._Element) and isinstance(node.tag, str)


@dataclass(eq=False)
class XMLElement:
    """An element of an XML or HTML document matched by an XPath query."""

    name: str
    text: str
    response: Optional[Response]
    dom: Any = field(repr=False)
    attributes: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_node(cls, response: Optional[Response], node: Any) -> XMLElement:
        """Wrap a parsed lxml element."""
        return cls(
            name=_local_name(node),
            text="".join(node.itertext()),
            response=response,
            dom=node,
            attributes={etree.QName(key).localname: value for key, value in node.attrib.items()},
        )

    @property
    def request(self) -> Optional[Request]:
        return self.response.request if self.response is not None else None

    def attr(self, name: str) -> str:
        """Return the value of attribute ``name``, or ``""``."""
        return self.attributes.get(name, "")

    def _query(self, query: str) -> list[Any]:
        result = self.dom.xpath(query)
        return result if isinstance(result, list) else [result]

    def child_text(self, query: str) -> str:
        """Return the stripped text of the first node the query finds, or ``""``."""
        for node in self._query(query):
            if _is_element(node):
                return "".join(node.itertext()).strip()
            if isinstance(node, str):
                return node.strip()
        return ""

    def child_attr(self, query: str, name: str) -> str:
        """Return the stripped attribute of the first element found, or ``""``."""
        for node in self._query(query):
            if _is_element(node):
                value = node.get(name)
                return value.strip() if value is not None else ""
        return ""

    def child_attrs(self, query: str, name: str) -> list[str]:
        """Return the stripped attribute of every element found that has it."""
        return [
            node.get(name).strip()
            for node in self._query(query)
            if _is_element(node) and node.get(name) is not None
        ]