"""
Extract the assistant's answer from a ChatGPT web backend response body.

The upstream format is not stable: the same endpoint may answer with a single
JSON object or with an event stream of ``data: {...}`` lines. Extraction
degrades through increasingly permissive attempts and never raises; the worst
case is a bounded preview of the raw body.
"""

import json
from typing import Any, Optional, Union

from .debug import debug_print

SSE_DATA_PREFIX = "data:"
SSE_DONE = "[DONE]"
PREVIEW_LIMIT = 1000
UNPARSED_MARKER = "Unable to parse upstream response. Raw content: "


def _first_part(obj: Any) -> Optional[str]:
    if not isinstance(obj, dict):
        return None
    message = obj.get("message")
    if not isinstance(message, dict):
        return None
    content = message.get("content")
    if not isinstance(content, dict):
        return None
    parts = content.get("parts")
    if isinstance(parts, list) and parts and isinstance(parts[0], str):
        return parts[0]
    return None


def extract_text(obj: Any) -> Optional[str]:
    """Try the known answer paths of a parsed JSON object, in priority order."""
    text = _first_part(obj)
    if text is not None:
        return text
    if not isinstance(obj, dict):
        return None

    message = obj.get("message")
    if isinstance(message, dict) and isinstance(message.get("content"), str):
        return message["content"]
    if isinstance(obj.get("content"), str):
        return obj["content"]
    if isinstance(obj.get("text"), str):
        return obj["text"]
    return None


def _serialize(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, separators=(",", ":"))


def _preview(text: str) -> str:
    if len(text) > PREVIEW_LIMIT:
        return f"{text[:PREVIEW_LIMIT]}... (truncated)"
    return text


def normalize(raw: Union[bytes, str, None]) -> str:
    if raw is None:
        raw = b""
    if isinstance(raw, (bytes, bytearray)):
        text = bytes(raw).decode("utf-8", errors="replace")
    else:
        text = str(raw)

    debug_print(f"📥 Upstream body preview: {text[:100]!r}")

    # 1. Plain JSON reply
    if text.startswith("{"):
        try:
            obj = json.loads(text)
        except json.JSONDecodeError as e:
            debug_print(f"⚠️  JSON parse failed, trying event-stream format: {e}")
        else:
            answer = extract_text(obj)
            return answer if answer is not None else _serialize(obj)

    # 2. Event stream: each data line carries an incremental chunk
    answer_parts = []
    last_event = None
    for line in text.splitlines():
        if not line.startswith(SSE_DATA_PREFIX):
            continue
        payload = line[len(SSE_DATA_PREFIX):]
        if payload.startswith(" "):
            payload = payload[1:]
        if payload == SSE_DONE:
            continue
        try:
            event = json.loads(payload)
        except json.JSONDecodeError:
            # Plain-text data lines are part of the answer as they stand.
            answer_parts.append(payload)
            continue
        last_event = event
        chunk = _first_part(event)
        if chunk is not None:
            answer_parts.append(chunk)

    # 3.
    answer = "".join(answer_parts)
    if answer:
        return answer

    # 4.
    if last_event is not None:
        debug_print("🔍 No streamed content, extracting from last event")
        answer = extract_text(last_event)
        return answer if answer is not None else _serialize(last_event)

    # 5.
    preview = _preview(text)
    debug_print(f"⚠️  Could not parse upstream response, returning raw preview: {preview[:200]}")
    return UNPARSED_MARKER + preview
