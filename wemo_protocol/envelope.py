#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
SOAP envelope codec for the WeMo control protocol.

Requests are built as text. Responses are parsed with ElementTree and the
interesting element is converted into plain Python data:

  - a leaf element becomes its stripped text
  - an element with attributes becomes a wrapper dict {"#text": ..., "@_name": ...}
  - an element with children becomes a dict keyed by the children's local names
    (repeated children become a list)

Because a value may therefore be a bare scalar or a one-field wrapper, callers
should read values through as_text()/as_number() rather than inspecting them.
"""

from __future__ import annotations

import math
import xml.etree.ElementTree as ET
from dataclasses import dataclass

from .internal_types import *
from .pkg_logging import logger
from .constants import SOAP_ENVELOPE_NAMESPACE, SOAP_ENCODING_NAMESPACE
from .exceptions import InvalidEnvelopeError

TEXT_KEY = "#text"
ATTRIBUTE_PREFIX = "@_"

_XML_ESCAPES = (
    ("&", "&amp;"),
    ("<", "&lt;"),
    (">", "&gt;"),
    ('"', "&quot;"),
    ("'", "&apos;"),
  )

@dataclass(frozen=True)
class SoapFault:
    """A structured fault returned by a device in place of a response."""
    fault_code: str
    fault_string: str
    detail: Optional[str] = None

def xml_escape(text: str) -> str:
    """Escape the five XML metacharacters so text can be embedded in an element."""
    for raw, escaped in _XML_ESCAPES:
        text = text.replace(raw, escaped)
    return text

def build_soap_envelope(service_type: str, action: str, body: Optional[str]=None) -> str:
    """Wrap an action and an optional inner XML fragment in a SOAP request envelope.

    Parameters:
        service_type:  The UPnP service type URN (e.g., "urn:Belkin:service:basicevent:1").
        action:        The action name (e.g., "SetBinaryState").
        body:          Inner XML for the action element, e.g. "<BinaryState>1</BinaryState>".
                       Must already be escaped.
    """
    body_content = "" if body is None else body
    return (
        '<?xml version="1.0" encoding="utf-8"?>\n'
        f'<s:Envelope xmlns:s="{SOAP_ENVELOPE_NAMESPACE}" s:encodingStyle="{SOAP_ENCODING_NAMESPACE}">\n'
        '  <s:Body>\n'
        f'    <u:{action} xmlns:u="{service_type}">\n'
        f'      {body_content}\n'
        f'    </u:{action}>\n'
        '  </s:Body>\n'
        '</s:Envelope>'
      )

def local_name(tag: str) -> str:
    """Strip a Clark-notation namespace ("{ns}name") or a prefix artifact ("u:name") from a tag."""
    if tag.startswith('{'):
        tag = tag.split('}', 1)[1]
    if ':' in tag:
        tag = tag.rsplit(':', 1)[1]
    return tag

def _find_child(parent: ET.Element, name: str) -> Optional[ET.Element]:
    for child in parent:
        if isinstance(child.tag, str) and local_name(child.tag) == name:
            return child
    return None

def _add_child_value(result: Dict[str, Any], key: str, value: XmlValue) -> None:
    if key in result:
        existing = result[key]
        if isinstance(existing, list):
            existing.append(value)
        else:
            result[key] = [existing, value]
    else:
        result[key] = value

def children_to_dict(elem: ET.Element) -> Dict[str, Any]:
    """Convert the children of an element into a dict keyed by local name."""
    result: Dict[str, Any] = {}
    for child in elem:
        if not isinstance(child.tag, str):
            # comments and processing instructions
            continue
        _add_child_value(result, local_name(child.tag), element_to_value(child))
    return result

def element_to_value(elem: ET.Element) -> XmlValue:
    """Convert an element into a scalar string, a wrapper dict, or a nested dict."""
    text = (elem.text or "").strip()
    has_children = any(isinstance(child.tag, str) for child in elem)
    if not has_children and len(elem.attrib) == 0:
        return text
    result: Dict[str, Any] = {}
    for name, value in elem.attrib.items():
        result[ATTRIBUTE_PREFIX + local_name(name)] = value
    if has_children:
        result.update(children_to_dict(elem))
        if text != "":
            result[TEXT_KEY] = text
    else:
        result[TEXT_KEY] = text
    return result

def parse_xml(xml: Union[str, bytes]) -> ET.Element:
    """Parse an XML document, raising InvalidEnvelopeError if it is not well-formed."""
    data = xml.encode('utf-8') if isinstance(xml, str) else xml
    try:
        return ET.fromstring(data.strip())
    except ET.ParseError as e:
        raise InvalidEnvelopeError(f"Failed to parse XML response: {e}") from e

def _find_body(root: ET.Element) -> ET.Element:
    if local_name(root.tag) != "Envelope":
        raise InvalidEnvelopeError("Invalid SOAP response: missing Envelope")
    body = _find_child(root, "Body")
    if body is None:
        raise InvalidEnvelopeError("Invalid SOAP response: missing Body")
    return body

def parse_soap_body(xml: Union[str, bytes], element_name: str) -> Dict[str, Any]:
    """Locate Envelope/Body/<element_name> and return its children as a dict.

    Raises InvalidEnvelopeError if the document is not well-formed or has no Envelope
    or Body. A missing element is not an error: {} is returned.
    """
    root = parse_xml(xml)
    body = _find_body(root)
    elem = _find_child(body, element_name)
    if elem is None:
        logger.debug(f"SOAP body has no <{element_name}> element; treating as empty")
        return {}
    return children_to_dict(elem)

def parse_soap_response(xml: Union[str, bytes], action: str) -> Dict[str, Any]:
    """Parse the response envelope for an action, returning the <Action>Response payload."""
    return parse_soap_body(xml, f"{action}Response")

def parse_soap_fault(xml: Union[str, bytes]) -> Optional[SoapFault]:
    """Extract a SOAP fault from an error response. Returns None if there is no recognizable fault."""
    try:
        body = _find_body(parse_xml(xml))
    except InvalidEnvelopeError:
        return None
    fault = _find_child(body, "Fault")
    if fault is None:
        return None
    values = children_to_dict(fault)
    fault_code = as_text(values.get("faultcode", values.get("faultCode"))) or "Unknown"
    fault_string = as_text(values.get("faultstring", values.get("faultString"))) or "Unknown error"
    detail_elem = _find_child(fault, "detail")
    detail: Optional[str] = None
    if detail_elem is not None:
        detail = " ".join(t.strip() for t in detail_elem.itertext() if t.strip() != "") or None
    return SoapFault(fault_code=fault_code, fault_string=fault_string, detail=detail)

def as_text(value: Any) -> str:
    """Read a parsed value as text. Accepts a bare scalar or a {"#text": ...} wrapper; anything
       else (including None) yields ""."""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return str(int(value))
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, Mapping) and TEXT_KEY in value:
        return as_text(value[TEXT_KEY])
    return ""

def as_number(value: Any) -> Union[int, float]:
    """Read a parsed value as a number. Text that is not numeric yields 0."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value if math.isfinite(value) else 0
    text = as_text(value).strip()
    if text == "":
        return 0
    try:
        return int(text)
    except ValueError:
        pass
    try:
        result = float(text)
    except ValueError:
        return 0
    return result if math.isfinite(result) else 0

def as_int(value: Any) -> int:
    """Read a parsed value as an int, truncating any fractional part."""
    return int(as_number(value))
