"""Conversion between payload trees and the gateway's XML encoding.

Payloads are plain dicts everywhere except here. A tree has exactly one
root key (``request`` outbound, ``response`` inbound); nested dicts become
child elements, lists become repeated elements, ``None`` is omitted.
"""

import xml.etree.ElementTree as ET
from typing import Any

from reservations.domain.errors import GatewayProtocolError


def encode(tree: dict[str, Any]) -> bytes:
    if len(tree) != 1:
        raise ValueError("Payload tree must have exactly one root")
    (tag, body), = tree.items()
    root = ET.Element(tag)
    _fill(root, body)
    return ET.tostring(root, encoding="unicode").encode("utf-8")


def decode(payload: bytes | str) -> dict[str, Any]:
    try:
        root = ET.fromstring(payload)
    except ET.ParseError as exc:
        raise GatewayProtocolError(f"Malformed gateway response: {exc}") from exc
    return {root.tag: _read(root)}


def _fill(element: ET.Element, value: Any) -> None:
    if isinstance(value, dict):
        for key, child in value.items():
            if child is None:
                continue
            if isinstance(child, (list, tuple)):
                for entry in child:
                    _fill(ET.SubElement(element, key), entry)
            else:
                _fill(ET.SubElement(element, key), child)
    elif value is not None:
        element.text = str(value)


def _read(element: ET.Element) -> Any:
    children = list(element)
    if not children:
        return element.text or ""
    result: dict[str, Any] = {}
    for child in children:
        value = _read(child)
        if child.tag in result:
            existing = result[child.tag]
            if not isinstance(existing, list):
                result[child.tag] = existing = [existing]
            existing.append(value)
        else:
            result[child.tag] = value
    return result


def voucher_lines(voucher: Any) -> list[str]:
    """Flatten a decoded ``<voucher>`` node into its lines, verbatim."""
    if not voucher:
        return []
    if isinstance(voucher, str):
        return voucher.split("\n")
    lines = voucher.get("linea", []) if isinstance(voucher, dict) else voucher
    if not isinstance(lines, list):
        lines = [lines]
    return [line if isinstance(line, str) else "" for line in lines]
