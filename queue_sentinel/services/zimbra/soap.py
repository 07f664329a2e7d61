"""
SOAP envelope construction and response traversal for the Zimbra admin API.

Requests are built with ElementTree so every interpolated value (passwords,
notes, addresses) is escaped. Responses are walked by local element name,
which keeps the parsers indifferent to the prefixes the server chooses.

https://files.zimbra.com/docs/soap_api/8.6.0/api-reference/index.html
"""

import xml.etree.ElementTree as ET
from dataclasses import dataclass

from queue_sentinel.models.domain.queue_domain import (
    ConnectionRecord,
    QueueSnapshot,
    QueueSummaryItem,
)

SOAP_NS = "http://www.w3.org/2003/05/soap-envelope"
ZIMBRA_NS = "urn:zimbra"
ADMIN_NS = "urn:zimbraAdmin"

ET.register_namespace("soap", SOAP_NS)


class SoapParseError(ValueError):
    """Response body was not the XML shape we expected."""


@dataclass(frozen=True, slots=True)
class SoapFault:
    """Decoded SOAP fault: the Zimbra error code (e.g. account.NO_SUCH_ACCOUNT) and reason."""

    code: str | None
    reason: str


def _admin(name: str) -> str:
    return f"{{{ADMIN_NS}}}{name}"


def local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def find_local(element: ET.Element, name: str) -> ET.Element | None:
    """First descendant (or the element itself) whose local name is ``name``."""
    for candidate in element.iter():
        if local_name(candidate.tag) == name:
            return candidate
    return None


def children_local(element: ET.Element, name: str) -> list[ET.Element]:
    return [child for child in element if local_name(child.tag) == name]


def build_envelope(request: ET.Element, auth_token: str | None = None) -> bytes:
    """Wrap an admin request element in a SOAP 1.2 envelope."""
    envelope = ET.Element(f"{{{SOAP_NS}}}Envelope")
    header = ET.SubElement(envelope, f"{{{SOAP_NS}}}Header")
    if auth_token:
        context = ET.SubElement(header, f"{{{ZIMBRA_NS}}}context")
        ET.SubElement(context, f"{{{ZIMBRA_NS}}}authToken").text = auth_token
    body = ET.SubElement(envelope, f"{{{SOAP_NS}}}Body")
    body.append(request)
    return ET.tostring(envelope, encoding="utf-8")


# =================================================================
# REQUEST BUILDERS
# =================================================================


def auth_request(username: str, password: str) -> ET.Element:
    request = ET.Element(_admin("AuthRequest"))
    ET.SubElement(request, _admin("account"), by="name").text = username
    ET.SubElement(request, _admin("password")).text = password
    return request


def get_mail_queue_request(server_name: str, limit: int, wait: int) -> ET.Element:
    request = ET.Element(_admin("GetMailQueueRequest"))
    server = ET.SubElement(request, _admin("server"), name=server_name)
    queue = ET.SubElement(server, _admin("queue"), name="deferred", scan="1", wait=str(wait))
    ET.SubElement(queue, _admin("query"), offset="0", limit=str(limit))
    return request


def get_account_info_request(address: str) -> ET.Element:
    request = ET.Element(_admin("GetAccountInfoRequest"))
    ET.SubElement(request, _admin("account"), by="name").text = address
    return request


def get_account_request(account_id: str, attrs: str | None = None) -> ET.Element:
    request = ET.Element(_admin("GetAccountRequest"))
    if attrs:
        request.set("attrs", attrs)
    ET.SubElement(request, _admin("account"), by="id").text = account_id
    return request


def set_password_request(account_id: str, new_password: str) -> ET.Element:
    return ET.Element(_admin("SetPasswordRequest"), id=account_id, newPassword=new_password)


def modify_account_request(account_id: str, attributes: dict[str, str]) -> ET.Element:
    request = ET.Element(_admin("ModifyAccountRequest"))
    ET.SubElement(request, _admin("id")).text = account_id
    for name, value in attributes.items():
        ET.SubElement(request, _admin("a"), n=name).text = value
    return request


# =================================================================
# RESPONSE PARSERS
# =================================================================


def parse_body(content: bytes | str) -> ET.Element:
    """Parse a SOAP response and return its Body element."""
    try:
        root = ET.fromstring(content)
    except ET.ParseError as e:
        raise SoapParseError(f"Invalid SOAP response: {e}") from e

    body = find_local(root, "Body")
    if body is None:
        raise SoapParseError("SOAP response has no Body element")
    return body


def extract_fault(body: ET.Element) -> SoapFault | None:
    """Decode a SOAP 1.2 (or 1.1) fault if the body carries one."""
    fault = find_local(body, "Fault")
    if fault is None:
        return None

    code = None
    detail = find_local(fault, "Detail")
    if detail is None:
        detail = find_local(fault, "detail")
    if detail is not None:
        error = find_local(detail, "Error")
        code_element = find_local(error, "Code") if error is not None else None
        if code_element is not None and code_element.text:
            code = code_element.text.strip()

    reason_element = find_local(fault, "Reason")
    text_element = find_local(reason_element, "Text") if reason_element is not None else None
    if text_element is None:
        text_element = find_local(fault, "faultstring")
    reason = (text_element.text or "").strip() if text_element is not None else ""

    return SoapFault(code=code, reason=reason or "SOAP fault")


def _require(body: ET.Element, name: str) -> ET.Element:
    element = find_local(body, name)
    if element is None:
        raise SoapParseError(f"SOAP response is missing {name}")
    return element


def parse_auth_token(body: ET.Element) -> str:
    response = _require(body, "AuthResponse")
    token = find_local(response, "authToken")
    if token is None or not token.text:
        raise SoapParseError("AuthResponse carries no authToken")
    return token.text.strip()


def attribute_values(element: ET.Element) -> dict[str, str]:
    """Collect ``<a n="name">value</a>`` children into a dict (first value wins)."""
    values: dict[str, str] = {}
    for attr in children_local(element, "a"):
        name = attr.get("n")
        if name and name not in values:
            values[name] = attr.text or ""
    return values


def parse_account_id(body: ET.Element) -> str:
    response = _require(body, "GetAccountInfoResponse")
    account_id = attribute_values(response).get("zimbraId")
    if not account_id:
        raise SoapParseError("GetAccountInfoResponse carries no zimbraId")
    return account_id


def parse_account_attributes(body: ET.Element) -> dict[str, str]:
    response = _require(body, "GetAccountResponse")
    account = find_local(response, "account")
    return attribute_values(account) if account is not None else {}


def has_response(body: ET.Element, name: str) -> bool:
    return find_local(body, name) is not None


def _parse_count(raw: str | None) -> int:
    try:
        return int(raw or 0)
    except ValueError:
        return 0


def parse_mail_queue(body: ET.Element, server_name: str) -> QueueSnapshot | None:
    """
    Turn a GetMailQueueResponse into a QueueSnapshot.

    Returns None when the response holds no queue element at all.
    """
    response = _require(body, "GetMailQueueResponse")
    queue = find_local(response, "queue")
    if queue is None:
        return None

    summaries: dict[str, tuple[QueueSummaryItem, ...]] = {}
    for summary in children_local(queue, "qs"):
        kind = summary.get("type")
        if not kind:
            continue
        summaries[kind] = tuple(
            QueueSummaryItem(term=item.get("t", ""), count=_parse_count(item.get("n")))
            for item in children_local(summary, "qsi")
        )

    connections = tuple(
        ConnectionRecord(sender=item.get("from", ""), origin_ip=item.get("received", ""))
        for item in children_local(queue, "qi")
    )

    total = queue.get("total")
    return QueueSnapshot(
        server=server_name,
        summaries=summaries,
        connections=connections,
        total=_parse_count(total) if total is not None else None,
    )
