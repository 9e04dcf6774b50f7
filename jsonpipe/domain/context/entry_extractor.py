"""
Entry extraction: turns chat messages and live tool results into Entries.

Only explicit JSON sources count:

1. tool-call outputs (``function.output`` or ``output``), including the
   ``[{"type": "text", "text": "<json>"}]`` wrapping that MCP tools return;
2. fenced ```json blocks in the message text and in text content parts.

Parse failures are never errors here. Every decision, added or skipped, is
recorded as an ExtractionEvent and logged.
"""

from typing import Any, Dict, Iterable, List, Mapping, Optional
from datetime import datetime
import json
import re

import structlog
from langchain_core.messages import BaseMessage
from pydantic import ValidationError

from jsonpipe.domain.models.context_state import (
    Entry, ExtractionAction, ExtractionEvent, ExtractionResult,
    ExtractionSource, JsonKind, MessageRecord, ParsedJson, utcnow
)
from jsonpipe.infrastructure.observability.logging import context_logger

logger = structlog.get_logger(__name__)

TOOL_CALL_TYPE = "tool_call"
TEXT_TYPE = "text"

_JSON_BLOCK_RE = re.compile(r"```\s*json\s*(.*?)\s*```", re.IGNORECASE | re.DOTALL)


def decode_json(text: Any) -> Optional[ParsedJson]:
    """Parse a JSON string into a tagged value, None when it does not parse"""

    if not isinstance(text, str):
        return None
    try:
        value = json.loads(text)
    except ValueError:
        return None
    return classify_json(value)


def classify_json(value: Any) -> ParsedJson:
    """Tag an already decoded value with its shape"""

    if isinstance(value, dict):
        return ParsedJson(kind=JsonKind.OBJECT, value=value)
    if isinstance(value, list):
        return ParsedJson(kind=JsonKind.ARRAY, value=value)
    return ParsedJson(kind=JsonKind.SCALAR, value=value)


def extract_json_code_blocks(text: Any) -> List[str]:
    """Return the bodies of ```json fenced blocks, in document order"""

    if not isinstance(text, str) or not text:
        return []
    return [match.group(1) for match in _JSON_BLOCK_RE.finditer(text)]


def parse_tool_call_output(parsed: Optional[ParsedJson]) -> List[Dict[str, Any]]:
    """Turn a decoded tool output into entry payloads.

    An array of ``{"type": "text"}`` parts yields one payload per part whose
    ``text`` decodes to an object; parts decoding to arrays or scalars add
    nothing. Only when no part's ``text`` decodes at all is the array kept
    whole, wrapped as ``{"items": [...]}`` so every payload stays an object.
    """

    if parsed is None:
        return []

    if parsed.kind == JsonKind.OBJECT:
        return [parsed.value]

    if parsed.kind == JsonKind.ARRAY:
        payloads = []
        decoded_any = False
        for item in parsed.value:
            if not isinstance(item, dict) or item.get("type") != TEXT_TYPE:
                continue
            inner = decode_json(item.get("text"))
            if inner is None:
                continue
            decoded_any = True
            if inner.kind == JsonKind.OBJECT:
                payloads.append(inner.value)
        if not decoded_any:
            payloads.append({"items": parsed.value})
        return payloads

    return []


def find_tool_call(part: Any) -> Optional[Mapping[str, Any]]:
    """Return the tool-call body of a content part, if it is one"""

    if not isinstance(part, Mapping):
        return None
    nested = part.get(TOOL_CALL_TYPE)
    if isinstance(nested, Mapping) and nested:
        return nested
    if part.get("type") == TOOL_CALL_TYPE:
        return part
    return None


def tool_call_output(tool_call: Mapping[str, Any]) -> Optional[str]:
    """First string among ``function.output`` and ``output``"""

    function = tool_call.get("function")
    if isinstance(function, Mapping) and isinstance(function.get("output"), str):
        return function["output"]
    if isinstance(tool_call.get("output"), str):
        return tool_call["output"]
    return None


def _message_time(message: MessageRecord) -> datetime:
    return message.created_at or utcnow()


def _record(
    result: ExtractionResult,
    action: ExtractionAction,
    source: ExtractionSource,
    message: Optional[MessageRecord] = None,
    index: Optional[int] = None,
    reason: Optional[str] = None,
    count: int = 0,
) -> None:
    event = ExtractionEvent(
        action=action,
        source=source,
        reason=reason,
        message_id=message.message_id if message is not None else None,
        message_index=index,
        count=count,
    )
    result.events.append(event)
    context_logger.log_extraction_event(event)


def _add_payloads(
    result: ExtractionResult,
    payloads: Iterable[Dict[str, Any]],
    message: MessageRecord,
) -> int:
    added = 0
    for payload in payloads:
        result.entries.append(Entry(
            payload=payload,
            time=_message_time(message),
            message_id=message.message_id,
            role=message.sender,
        ))
        added += 1
    return added


def _extract_tool_calls(message: MessageRecord, index: int, result: ExtractionResult) -> int:
    added = 0
    for part in message.content:
        tool_call = find_tool_call(part)
        if tool_call is None:
            continue

        output = tool_call_output(tool_call)
        if not output:
            _record(result, ExtractionAction.SKIPPED, ExtractionSource.TOOL_CALL,
                    message, index, reason="no_output")
            continue

        parsed = decode_json(output)
        if parsed is None:
            _record(result, ExtractionAction.SKIPPED, ExtractionSource.TOOL_CALL,
                    message, index, reason="invalid_json")
            continue

        payloads = parse_tool_call_output(parsed)
        if not payloads:
            _record(result, ExtractionAction.SKIPPED, ExtractionSource.TOOL_CALL,
                    message, index, reason="not_an_object")
            continue

        count = _add_payloads(result, payloads, message)
        _record(result, ExtractionAction.ADDED, ExtractionSource.TOOL_CALL,
                message, index, count=count)
        added += count
    return added


def _extract_blocks(
    text: Any,
    source: ExtractionSource,
    message: MessageRecord,
    index: int,
    result: ExtractionResult,
) -> int:
    added = 0
    for block in extract_json_code_blocks(text):
        parsed = decode_json(block)
        if parsed is None:
            _record(result, ExtractionAction.SKIPPED, source, message, index, reason="invalid_json")
            continue
        if parsed.kind != JsonKind.OBJECT:
            _record(result, ExtractionAction.SKIPPED, source, message, index, reason="not_an_object")
            continue
        added += _add_payloads(result, [parsed.value], message)
        _record(result, ExtractionAction.ADDED, source, message, index, count=1)
    return added


def _text_parts(message: MessageRecord) -> List[str]:
    return [
        part["text"] for part in message.content
        if isinstance(part, Mapping) and part.get("type") == TEXT_TYPE
        and isinstance(part.get("text"), str)
    ]


def _extract_whole_text(message: MessageRecord, index: int, result: ExtractionResult) -> int:
    text = message.text or "".join(_text_parts(message))
    if not text.strip():
        return 0
    parsed = decode_json(text.strip())
    if parsed is None or parsed.kind != JsonKind.OBJECT:
        return 0
    added = _add_payloads(result, [parsed.value], message)
    _record(result, ExtractionAction.ADDED, ExtractionSource.WHOLE_TEXT, message, index, count=added)
    return added


def extract_message_entries(
    message: MessageRecord,
    index: int = 0,
    whole_text_fallback: bool = False,
) -> ExtractionResult:
    """Extract entries from one message: tool calls, then text blocks, then part blocks.

    With ``whole_text_fallback`` the full message text is tried as a JSON
    object first; when it is one, fenced blocks in ``message.text`` are not
    scanned. Per-part blocks are always scanned.
    """

    result = ExtractionResult()
    added = _extract_tool_calls(message, index, result)

    whole = _extract_whole_text(message, index, result) if whole_text_fallback else 0
    added += whole
    if not whole:
        added += _extract_blocks(message.text, ExtractionSource.TEXT_BLOCK, message, index, result)

    for text in _text_parts(message):
        added += _extract_blocks(text, ExtractionSource.PART_BLOCK, message, index, result)

    if added == 0:
        _record(result, ExtractionAction.SKIPPED, ExtractionSource.MESSAGE,
                message, index, reason="no_json_sources")
    return result


def build_entries_from_messages(
    messages: Optional[Iterable[Any]],
    whole_text_fallback: bool = False,
) -> ExtractionResult:
    """Extract entries from persisted messages, preserving message order.

    A record that does not validate as a message is skipped on its own.
    """

    result = ExtractionResult()
    for index, raw in enumerate(messages or []):
        try:
            message = raw if isinstance(raw, MessageRecord) else MessageRecord.model_validate(raw)
        except ValidationError as e:
            logger.info("Skipping invalid message record", message_index=index, error=str(e))
            _record(result, ExtractionAction.SKIPPED, ExtractionSource.MESSAGE,
                    index=index, reason="invalid_message")
            continue
        result.extend(extract_message_entries(message, index, whole_text_fallback))
    return result


def entries_from_tool_result(result_value: Any) -> ExtractionResult:
    """Extract entries from a tool result that has not been persisted yet"""

    if isinstance(result_value, BaseMessage):
        result_value = result_value.content
    elif isinstance(result_value, Mapping) and result_value.get("content"):
        result_value = result_value["content"]

    if isinstance(result_value, str):
        parsed = decode_json(result_value)
    else:
        parsed = classify_json(result_value)

    result = ExtractionResult()
    payloads = parse_tool_call_output(parsed)
    now = utcnow()
    for payload in payloads:
        result.entries.append(Entry(payload=payload, time=now))

    if payloads:
        _record(result, ExtractionAction.ADDED, ExtractionSource.LIVE_TOOL_RESULT, count=len(payloads))
    else:
        reason = "invalid_json" if parsed is None else "not_an_object"
        _record(result, ExtractionAction.SKIPPED, ExtractionSource.LIVE_TOOL_RESULT, reason=reason)
    return result
