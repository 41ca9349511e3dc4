"""Translate raw Prism error output into a single actionable message."""

import json
import re
from typing import Any, Dict, Optional

MAX_ERROR_LENGTH = 200

MISSING_POINTER_MARKERS = ("EMISSINGPOINTER", "MissingPointerError")

_MISSING_TOKEN_RE = re.compile(r'token "([^"]+)" in "([^"]+)" does not exist')
_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


def extract_error_object(raw: str) -> Optional[Dict[str, Any]]:
    """Parse the first embedded JSON object in ``raw``, if there is one.

    Prism frequently prints JavaScript object literals rather than JSON;
    those fail to parse and the caller falls back to plain text.
    """
    match = _JSON_OBJECT_RE.search(raw)
    if not match:
        return None
    try:
        parsed = json.loads(match.group(0))
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


def translate_error(raw: str) -> str:
    """Convert raw process error text into a user-displayable message.

    Rules are applied in priority order: missing schema pointer, reference
    resolution, unreadable file, YAML/JSON syntax, then a truncated
    verbatim fallback.

    Args:
        raw: Raw stderr text, optionally containing a JSON error object

    Returns:
        str: Translated message
    """
    raw = (raw or "").strip()
    if not raw:
        return (
            "Mock server startup failed. Please check your OpenAPI "
            "specification for errors."
        )

    error_obj = extract_error_object(raw) or {}
    embedded_message = str(error_obj.get("message") or "")
    markers = " ".join(
        str(error_obj.get(key) or "") for key in ("code", "name")
    )
    text = f"{raw}\n{embedded_message}\n{markers}"

    token_match = _MISSING_TOKEN_RE.search(embedded_message) or (
        _MISSING_TOKEN_RE.search(raw)
    )
    if token_match:
        token, reference = token_match.groups()
        return (
            f'Invalid OpenAPI specification: Missing schema reference "{reference}". '
            f'The schema component "{token}" is referenced but not defined in the spec. '
            f'Please add the "{token}" schema to your components/schemas section.'
        )

    if any(marker in text for marker in MISSING_POINTER_MARKERS):
        detail = embedded_message or raw
        return f"Invalid OpenAPI specification: {detail[:MAX_ERROR_LENGTH]}"

    if "ResolverError" in text:
        return (
            "Invalid OpenAPI specification: Unable to resolve schema references. "
            "Please check that all $ref pointers are valid."
        )

    if "Error opening file" in text:
        return (
            "Unable to read OpenAPI specification file. "
            "Please ensure the file is accessible."
        )

    if "YAML" in text:
        return (
            "Invalid OpenAPI specification: YAML parsing error. "
            "Please check your spec syntax."
        )

    if "JSON" in text:
        return (
            "Invalid OpenAPI specification: JSON parsing error. "
            "Please check your spec syntax."
        )

    if embedded_message:
        return f"OpenAPI specification error: {embedded_message[:MAX_ERROR_LENGTH]}"

    return f"Mock server startup failed: {raw[:MAX_ERROR_LENGTH]}"
