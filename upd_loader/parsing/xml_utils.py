"""Helpers for namespace-agnostic XML access and safe value conversion.

UPD payloads come from several operators. Some declare a default namespace
and some do not, so elements are matched by local name only.
"""

import re
from decimal import Decimal, InvalidOperation

from lxml import etree

_XML_DECLARATION = re.compile(r"^\s*<\?xml[^>]*\?>")
_DIGITS = re.compile(r"\d+")


def parse_xml_text(text: str) -> etree._Element:
    """Parse already-decoded XML text.

    The XML declaration is dropped first: it names the legacy code page,
    which no longer applies to decoded text.

    Raises:
        etree.XMLSyntaxError: If the text is not well-formed XML
    """
    parser = etree.XMLParser(resolve_entities=False, no_network=True, huge_tree=False)
    return etree.fromstring(_XML_DECLARATION.sub("", text, count=1).strip(), parser)


def parse_xml_bytes(data: bytes) -> etree._Element:
    """Parse raw XML bytes, honouring the declared encoding."""
    parser = etree.XMLParser(resolve_entities=False, no_network=True, huge_tree=False)
    return etree.fromstring(data, parser)


def local_name(element: etree._Element) -> str:
    if not isinstance(element.tag, str):
        return ""
    return etree.QName(element).localname


def _children(element: etree._Element, name: str) -> list[etree._Element]:
    return [child for child in element if local_name(child) == name]


def find_all(element: etree._Element | None, path: str) -> list[etree._Element]:
    """Find elements by a slash-separated path of local names.

    The first step matches at any depth below ``element`` (or ``element``
    itself); each following step matches direct children only.

    Example:
        >>> find_all(root, "СвПрод/ИдСв/СвЮЛУч")
    """
    if element is None:
        return []

    first, *rest = path.split("/")
    current = [el for el in element.iter() if local_name(el) == first]
    for step in rest:
        current = [child for el in current for child in _children(el, step)]
    return current


def find_first(element: etree._Element | None, path: str) -> etree._Element | None:
    matches = find_all(element, path)
    return matches[0] if matches else None


def get_attribute(element: etree._Element | None, name: str, strip: bool = True) -> str:
    """Get an attribute value (stripped unless ``strip`` is False), or an empty string."""
    if element is None:
        return ""
    value = element.get(name) or ""
    return value.strip() if strip else value


def get_text(element: etree._Element | None) -> str:
    if element is None or element.text is None:
        return ""
    return element.text.strip()


def first_attribute(element: etree._Element | None, *names: str, strip: bool = True) -> str:
    """Return the first non-blank attribute among ``names``."""
    for name in names:
        value = get_attribute(element, name, strip=strip)
        if value.strip():
            return value
    return ""


def parse_decimal(value: str | None) -> Decimal:
    """Convert text to Decimal, returning zero instead of raising.

    Args:
        value: Source text, possibly empty or not a number

    Returns:
        Parsed value, or Decimal("0") for empty, invalid or non-finite input
    """
    if value is None:
        return Decimal("0")

    cleaned = value.strip()
    if not cleaned:
        return Decimal("0")

    try:
        result = Decimal(cleaned)
    except InvalidOperation:
        return Decimal("0")

    if not result.is_finite():
        return Decimal("0")
    return result


def first_digit_run(value: str | None) -> str | None:
    """Return the first run of digits in free text, if any."""
    if not value:
        return None
    match = _DIGITS.search(value)
    return match.group(0) if match else None
