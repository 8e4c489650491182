"""
Plain-text views of line content.

Lines are stored either as plain strings or as rich delta payloads ({"ops": [...]}),
sometimes serialized to JSON by the persistence layer. Matching only ever looks at
plain text, so everything funnels through plain_text().
"""

import hashlib
import json
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

EMBED_PLACEHOLDER = "[embedded content]"


def is_delta_payload(content: Any) -> bool:
    """True for {"ops": [...]} dicts and delta objects exposing an ops list."""
    if isinstance(content, dict):
        return isinstance(content.get("ops"), list)
    return isinstance(getattr(content, "ops", None), list)


def is_stringified_delta(content: Any) -> bool:
    if not isinstance(content, str):
        return False
    if not (content.startswith("{") and '"ops"' in content):
        return False
    try:
        parsed = json.loads(content)
    except ValueError:
        return False
    return isinstance(parsed, dict) and isinstance(parsed.get("ops"), list)


def parse_stringified_delta(content: Any) -> Any:
    """Returns the parsed delta dict for a JSON-encoded delta, otherwise the content unchanged."""
    if not is_stringified_delta(content):
        return content
    return json.loads(content)


def _delta_text(ops: list) -> str:
    parts = []
    for op in ops:
        insert = op.get("insert") if isinstance(op, dict) else getattr(op, "insert", None)
        if isinstance(insert, str):
            parts.append(insert)
        elif insert is not None:
            parts.append(EMBED_PLACEHOLDER)
    text = "".join(parts)
    # A line delta carries its own terminating newline
    if text.endswith("\n"):
        text = text[:-1]
    return text


def plain_text(content: Any) -> str:
    """
    Extracts plain text from a string, a delta payload or a JSON-encoded delta.
    Anything unparseable falls back to str(content) rather than raising.
    """
    if content is None:
        return ""
    if isinstance(content, str):
        if is_stringified_delta(content):
            return _delta_text(json.loads(content)["ops"])
        return content
    try:
        if is_delta_payload(content):
            ops = content["ops"] if isinstance(content, dict) else content.ops
            return _delta_text(ops)
    except Exception as e:
        logger.warning(f"Could not extract text from delta payload, using raw value: {e}")
    return str(content)


def is_content_empty(content: Any) -> bool:
    return not plain_text(content).strip()


def content_hash(text: str) -> str:
    """Stable key for trimmed line text, used to pair lines before and after a mutation."""
    return hashlib.sha1(text.strip().encode("utf-8")).hexdigest()
