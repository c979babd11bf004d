"""HTTP and JSON node handlers."""

import json
import math
from typing import Dict

from ..core.collaborators import HTTP_CLIENT
from ..core.logging import get_logger
from ..core.results import Continue
from ..core.templating import format_value, parse_float, strip_code_fence, to_json_text
from .utils import failure, missing_property, parse_json_object, resolve_flag

logger = get_logger(__name__)

BODY_METHODS = ("POST", "PUT", "PATCH")


def parse_headers(text: str) -> Dict[str, str]:
    """Parse headers given as a JSON object or as ``Key: Value`` lines."""
    parsed = parse_json_object(text)
    if parsed is not None:
        return {str(key): str(value) for key, value in parsed.items()}

    headers = {}
    for line in text.split("\n"):
        key, sep, value = line.partition(":")
        if sep and key.strip():
            headers[key.strip()] = value.strip()
    return headers


def _has_header(headers: Dict[str, str], name: str) -> bool:
    return any(key.lower() == name.lower() for key in headers)


def compact_json(text: str) -> str:
    """Re-serialize JSON text compactly; non-JSON text is returned unchanged."""
    try:
        return to_json_text(json.loads(text))
    except (ValueError, TypeError):
        return text


async def handle_http(node, context, runtime):
    """
    Send an HTTP request and store the response.

    JSON responses are stored as compact JSON text, anything else as-is.
    ``saveStatus`` receives the status code. With ``throwOnError`` a status of
    400 or above fails the node.
    """
    config = node.config
    url = runtime.resolve(config.url, context)
    if not url:
        raise missing_property(node, "url")
    method = config.method

    headers = parse_headers(runtime.resolve(config.headers, context)) if config.headers else {}

    body = None
    if config.body and method in BODY_METHODS:
        body = runtime.resolve(config.body, context)
        default_type = "text/plain" if config.content_type == "text" else "application/json"
        if not _has_header(headers, "Content-Type"):
            headers["Content-Type"] = default_type

    client = runtime.collaborator(HTTP_CLIENT)
    timeout = runtime.http_timeout
    if config.timeout:
        seconds = parse_float(runtime.resolve(config.timeout, context))
        if seconds is None or not 0 < seconds < math.inf:
            raise failure(node, f"Invalid timeout: {config.timeout}")
        timeout = seconds
    try:
        response = await client.request(url, method, headers=headers, body=body, timeout=timeout)
    except Exception as e:
        raise failure(node, f"HTTP request failed: {method} {url} - {e}") from e

    if config.save_status:
        context.set(config.save_status, response.status)

    if response.status >= 400 and resolve_flag(runtime, config.throw_on_error, context):
        raise failure(node, f"HTTP {response.status} {method} {url}: {response.body}")

    data = compact_json(response.body)
    if config.save_to:
        context.set(config.save_to, data)

    logger.debug(f"HTTP {method} {url} returned {response.status}")
    return Continue(
        message=f"HTTP {method} {url} -> {response.status}",
        input={"url": url, "method": method},
        output={"status": response.status, "length": len(response.body)}
    )


def handle_json(node, context, runtime):
    """Parse a variable's JSON text (code fences allowed) and store it compactly."""
    config = node.config
    if not config.source:
        raise missing_property(node, "source")
    if not config.save_to:
        raise missing_property(node, "saveTo")

    value = context.get(config.source)
    if value is None:
        raise failure(node, f"Variable '{config.source}' not found")

    text = strip_code_fence(format_value(value))
    try:
        parsed = json.loads(text)
    except ValueError as e:
        raise failure(node, f"Failed to parse JSON from '{config.source}': {e}")

    result = to_json_text(parsed)
    context.set(config.save_to, result)
    return Continue(input={"source": config.source}, output=result)
