"""Text helpers shared by the XML feed generators."""

from typing import Optional
from xml.sax.saxutils import escape

XML_DECLARATION = '<?xml version="1.0" encoding="utf-8"?>'

_QUOTE_ENTITIES = {'"': "&quot;", "'": "&apos;"}


def escape_xml(value: Optional[object]) -> str:
    """Escape & < > " ' for element text and attribute values."""
    if value is None:
        return ""
    return escape(str(value), _QUOTE_ENTITIES)


def cdata(text: Optional[str]) -> str:
    """Wrap free text in a CDATA section.

    An embedded "]]>" is split across two sections.
    """
    text = text or ""
    return "<![CDATA[" + text.replace("]]>", "]]]]><![CDATA[>") + "]]>"


def format_number(value: Optional[float]) -> str:
    """Render integral floats without a trailing ".0"."""
    if value is None:
        return "0"
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def clamp_length(text: str, min_length: int, max_length: int, filler: str = "...") -> str:
    """Truncate to max_length, or pad with repeated filler up to exactly min_length."""
    text = text[:max_length]
    if len(text) < min_length:
        missing = min_length - len(text)
        text += (filler * missing)[:missing]
    return text
