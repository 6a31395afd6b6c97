"""Pact contract file parser.

Parses Pact v2, v3 and v4 JSON files into Interaction models. Only
HTTP interactions are loaded; message interactions are skipped.
"""

import base64
import binascii
import json
import logging
from pathlib import Path
from typing import Any
from urllib.parse import parse_qs

from contract_compat.checker.media import is_json
from contract_compat.errors import MalformedInteraction
from contract_compat.parser.base import Contract, Interaction, InteractionRequest, InteractionResponse

logger = logging.getLogger(__name__)

HTTP_INTERACTION_TYPE = "Synchronous/HTTP"


def load_pact(document: Any) -> Contract:
    """Load a parsed Pact document into a Contract."""
    if not isinstance(document, dict):
        raise MalformedInteraction("pact document must be a mapping")
    records = document.get("interactions")
    if not isinstance(records, list):
        raise MalformedInteraction("pact document must contain an 'interactions' list", "interactions")

    v4 = _pact_version(document).startswith("4")
    interactions = []
    for index, record in enumerate(records):
        if isinstance(record, dict) and record.get("type", HTTP_INTERACTION_TYPE) != HTTP_INTERACTION_TYPE:
            logger.warning("Skipping interaction[%d]: %s interactions are not checked", index, record["type"])
            continue
        interactions.append(load_interaction(record, index, v4=v4))

    return Contract(
        consumer=_party_name(document.get("consumer")),
        provider=_party_name(document.get("provider")),
        interactions=tuple(interactions),
    )


def load_pact_file(file_path: Path) -> Contract:
    """Load a Pact JSON file."""
    try:
        document = json.loads(file_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise MalformedInteraction(f"cannot parse {file_path}: {e.msg} (line {e.lineno})") from e
    return load_pact(document)


def load_interaction(record: Any, index: int, v4: bool = False) -> Interaction:
    """Load a single interaction record.

    No defaults are applied: an absent body stays absent, which is not
    the same as a body that is present and null.
    """
    location = f"interaction[{index}]"
    if not isinstance(record, dict):
        raise MalformedInteraction("interaction must be a mapping", location)

    request = record.get("request")
    response = record.get("response")
    if not isinstance(request, dict):
        raise MalformedInteraction("interaction must contain a request", f"{location}.request")
    if not isinstance(response, dict):
        raise MalformedInteraction("interaction must contain a response", f"{location}.response")

    return Interaction(
        index=index,
        description=str(record.get("description", "")),
        provider_state=_provider_state(record),
        request=_load_request(request, f"{location}.request", v4),
        response=_load_response(response, f"{location}.response", v4),
    )


def _load_request(raw: dict, location: str, v4: bool) -> InteractionRequest:
    method = raw.get("method")
    path = raw.get("path")
    if not isinstance(method, str) or not method:
        raise MalformedInteraction("request must have a method", f"{location}.method")
    if not isinstance(path, str) or not path.startswith("/"):
        raise MalformedInteraction("request path must start with '/'", f"{location}.path")

    fields: dict[str, Any] = {
        "method": method.upper(),
        "path": path,
        "query": _normalize_query(raw.get("query"), f"{location}.query"),
        "headers": _normalize_headers(raw.get("headers"), f"{location}.headers"),
    }
    _load_body(raw, fields, v4, location)
    return InteractionRequest(**fields)


def _load_response(raw: dict, location: str, v4: bool) -> InteractionResponse:
    status = raw.get("status")
    if isinstance(status, str) and status.isdigit():
        status = int(status)
    if not isinstance(status, int) or isinstance(status, bool) or not 100 <= status <= 599:
        raise MalformedInteraction("response must have an HTTP status code", f"{location}.status")

    fields: dict[str, Any] = {
        "status": status,
        "headers": _normalize_headers(raw.get("headers"), f"{location}.headers"),
    }
    _load_body(raw, fields, v4, location)
    return InteractionResponse(**fields)


def _load_body(raw: dict, fields: dict[str, Any], v4: bool, location: str) -> None:
    """Copy the body into fields only when the record has one."""
    if "body" not in raw:
        return
    body = raw["body"]
    if v4 and isinstance(body, dict) and "content" in body:
        content_type = body.get("contentType")
        if content_type and "content-type" not in fields["headers"]:
            fields["headers"] = {**fields["headers"], "content-type": str(content_type)}
        encoded = body.get("encoded")
        body = body["content"]
        if isinstance(encoded, str) and encoded.lower() == "base64":
            body = _decode_base64_body(body, fields["headers"].get("content-type"), f"{location}.body")
    fields["body"] = body


def _decode_base64_body(content: Any, content_type: str | None, location: str) -> Any:
    """Decode a v4 base64 body to text, parsed as JSON when the content type says so.

    Binary content that is not UTF-8 text stays base64 encoded.
    """
    try:
        raw_bytes = base64.b64decode(str(content), validate=True)
    except binascii.Error as e:
        raise MalformedInteraction(f"body is not valid base64: {e}", location) from e
    try:
        text = raw_bytes.decode("utf-8")
    except UnicodeDecodeError:
        logger.debug("%s is binary, keeping it base64 encoded", location)
        return content
    if content_type and is_json(content_type):
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise MalformedInteraction(f"base64 body is not valid JSON: {e.msg}", location) from e
    return text


def _normalize_headers(raw: Any, location: str) -> dict[str, str]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise MalformedInteraction("headers must be a mapping", location)

    headers: dict[str, str] = {}
    for name, value in raw.items():
        if isinstance(value, list):
            value = ", ".join(str(v) for v in value)
        key = str(name).lower()
        headers[key] = f"{headers[key]}, {value}" if key in headers else str(value)
    return headers


def _normalize_query(raw: Any, location: str) -> dict[str, tuple[str, ...]]:
    if raw is None or raw == "":
        return {}
    if isinstance(raw, str):
        return {name: tuple(values) for name, values in parse_qs(raw, keep_blank_values=True).items()}
    if not isinstance(raw, dict):
        raise MalformedInteraction("query must be a string or a mapping", location)

    query = {}
    for name, value in raw.items():
        values = value if isinstance(value, list) else [value]
        query[str(name)] = tuple(str(v) for v in values)
    return query


def _provider_state(record: dict) -> str | None:
    if record.get("providerState"):
        return str(record["providerState"])
    states = record.get("providerStates")
    if isinstance(states, list):
        names = [str(s["name"]) for s in states if isinstance(s, dict) and s.get("name")]
        if names:
            return ", ".join(names)
    return None


def _party_name(raw: Any) -> str:
    if isinstance(raw, dict):
        return str(raw.get("name", ""))
    return ""


def _pact_version(document: dict) -> str:
    metadata = document.get("metadata") or {}
    for key in ("pactSpecification", "pact-specification"):
        spec = metadata.get(key)
        if isinstance(spec, dict) and "version" in spec:
            return str(spec["version"])
    return ""
