"""Conversion between policy XML and an attributed key-value tree.

Attributes become keys prefixed with ``@_``; element text becomes ``#text``
when the element also carries attributes or children, and a plain string
otherwise. Repeated children collapse into lists. Because a single child and
a list of children are otherwise indistinguishable, ``parse`` always runs
``normalize`` so that journey-level repeatable elements are lists.
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from typing import Any

from .constants import (
    ATTRIBUTE_PREFIX,
    KNOWN_NAMESPACE_PREFIXES,
    REPEATABLE_ELEMENTS,
    TEXT_KEY,
    XML_DECLARATION,
)
from .errors import EmptyContentError, XmlParseError

LOGGER = logging.getLogger(__name__)

ParsedPolicy = dict[str, Any]


def _split_tag(tag: str) -> tuple[str, str]:
    if tag.startswith("{"):
        uri, _, local = tag[1:].partition("}")
        return uri, local
    return "", tag


class XmlParserService:
    def parse(self, xml_content: str) -> ParsedPolicy:
        if not xml_content or not xml_content.strip():
            raise EmptyContentError("XML content is empty")

        parser = ET.XMLPullParser(events=("start-ns", "end"))
        try:
            parser.feed(xml_content.lstrip("\ufeff"))
            parser.close()
        except ET.ParseError as exc:
            raise XmlParseError(f"Invalid XML: {exc}") from exc

        declared: list[tuple[str, str]] = []
        root: ET.Element | None = None
        for event, payload in parser.read_events():
            if event == "start-ns":
                declared.append(payload)
            else:
                root = payload
        if root is None:
            raise XmlParseError("Invalid XML: no root element")

        prefixes = dict(KNOWN_NAMESPACE_PREFIXES)
        prefixes.update({uri: prefix for prefix, uri in declared if prefix})

        _, root_name = _split_tag(root.tag)
        root_value = self._convert(root, prefixes)
        if not isinstance(root_value, dict):
            root_value = {TEXT_KEY: root_value} if root_value else {}
        namespace_attrs = {}
        for prefix, uri in declared:
            name = f"xmlns:{prefix}" if prefix else "xmlns"
            namespace_attrs[ATTRIBUTE_PREFIX + name] = uri
        parsed = {root_name: {**namespace_attrs, **root_value}}
        LOGGER.debug("parsed <%s> with %d namespace declarations", root_name, len(declared))
        return self.normalize(parsed)

    def normalize(self, parsed: ParsedPolicy) -> ParsedPolicy:
        """Turn every repeatable element into a list, in place.

        Idempotent: values that are already lists are left untouched.
        """
        self._normalize_node(parsed)
        return parsed

    def _normalize_node(self, node: Any) -> None:
        if isinstance(node, list):
            for item in node:
                self._normalize_node(item)
            return
        if not isinstance(node, dict):
            return
        for key, value in node.items():
            if key in REPEATABLE_ELEMENTS and not isinstance(value, list):
                value = [value]
                node[key] = value
            self._normalize_node(value)

    def _attribute_name(self, key: str, prefixes: dict[str, str]) -> str:
        uri, local = _split_tag(key)
        if uri and uri in prefixes:
            return f"{prefixes[uri]}:{local}"
        return local

    def _convert(self, element: ET.Element, prefixes: dict[str, str]) -> Any:
        attrs = {
            ATTRIBUTE_PREFIX + self._attribute_name(key, prefixes): value
            for key, value in element.attrib.items()
        }
        children = list(element)
        text = (element.text or "").strip()
        if not attrs and not children:
            return text

        node: dict[str, Any] = dict(attrs)
        for child in children:
            _, name = _split_tag(child.tag)
            value = self._convert(child, prefixes)
            if name not in node:
                node[name] = value
            elif isinstance(node[name], list):
                node[name].append(value)
            else:
                node[name] = [node[name], value]
        if text:
            node[TEXT_KEY] = text
        return node

    def serialize(self, parsed: ParsedPolicy) -> str:
        """Render a parsed tree back to an XML document."""
        if len(parsed) != 1:
            raise XmlParseError(f"Expected exactly one root element, found {len(parsed)}")
        (root_name, root_value), = parsed.items()
        return XML_DECLARATION + "\n" + to_xml_fragment(root_name, root_value) + "\n"


def _build_element(name: str, value: Any) -> ET.Element:
    element = ET.Element(name)
    if isinstance(value, dict):
        for key, child in value.items():
            if key.startswith(ATTRIBUTE_PREFIX):
                element.set(key[len(ATTRIBUTE_PREFIX) :], str(child))
            elif key == TEXT_KEY:
                element.text = str(child)
            else:
                items = child if isinstance(child, list) else [child]
                for item in items:
                    element.append(_build_element(key, item))
    elif value is not None and value != "":
        element.text = str(value)
    return element


def to_xml_fragment(name: str, value: Any) -> str:
    """Serialize a single parsed element without an XML declaration."""
    element = _build_element(name, value)
    ET.indent(element, space="  ")
    return ET.tostring(element, encoding="unicode")
