from datetime import datetime, timezone
from typing import Any, Dict

import orjson


def utc_timestamp() -> str:
    """ISO-8601 UTC timestamp with millisecond precision, e.g. 2024-05-01T12:00:00.000Z."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_json_body(raw: bytes) -> Dict[str, Any]:
    """Decode a request body into a field mapping.

    An empty body, or a JSON document that is not an object, has no fields.
    Malformed JSON raises ``orjson.JSONDecodeError``.
    """
    if not raw.strip():
        return {}
    data = orjson.loads(raw)
    return data if isinstance(data, dict) else {}


def extract_text(content: Any) -> str:
    """Flatten completion content (plain string or list of parts) into text."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        texts = []
        for part in content:
            if isinstance(part, str):
                texts.append(part)
            elif isinstance(part, dict) and isinstance(part.get("text"), str):
                texts.append(part["text"])
        return "".join(texts)
    return ""


def describe_error(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__
