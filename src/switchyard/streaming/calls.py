"""Normalization of tool-call payloads emitted by the model."""

from __future__ import annotations

import json
from typing import Any

from switchyard.types import ToolInvocationRequest


def parse_tool_calls(raw_calls: list[dict[str, Any]], *, turn_index: int | None = None) -> list[ToolInvocationRequest]:
    """Turn raw `{"id", "function": {"name", "arguments"}}` payloads into invocation requests.

    Calls without a name are dropped. Arguments given as several concatenated JSON
    objects become one request per object, with suffixed call ids.
    """
    requests: list[ToolInvocationRequest] = []
    for position, item in enumerate(raw_calls):
        requests.extend(_parse_tool_call(item, position, turn_index))
    return requests


def _parse_tool_call(item: object, position: int, turn_index: int | None) -> list[ToolInvocationRequest]:
    if not isinstance(item, dict):
        return []
    function = item.get("function")
    if not isinstance(function, dict):
        function = item
    name = function.get("name")
    if not isinstance(name, str) or not name:
        return []

    argument_objects = _normalize_tool_arguments(function.get("arguments", function.get("args")))
    if argument_objects is None:
        return []

    call_id = item.get("id")
    base_id = call_id if isinstance(call_id, str) and call_id else f"call_{position}"
    requests: list[ToolInvocationRequest] = []
    for index, arguments in enumerate(argument_objects):
        requests.append(
            ToolInvocationRequest(
                name=name,
                arguments=arguments,
                call_id=base_id if index == 0 else f"{base_id}__{index + 1}",
                turn_index=turn_index,
            )
        )
    return requests


def _normalize_tool_arguments(value: object) -> list[dict[str, Any]] | None:
    if value is None:
        return [{}]
    if isinstance(value, dict):
        return [dict(value)]
    if not isinstance(value, str):
        return None

    raw = value.strip()
    if not raw:
        return [{}]

    parsed = _parse_json_object(raw)
    if parsed is not None:
        return [parsed]

    chunks = _split_json_objects(raw)
    if len(chunks) <= 1:
        return None
    return chunks


def _parse_json_object(raw: str) -> dict[str, Any] | None:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict):
        return None
    return parsed


def _split_json_objects(raw: str) -> list[dict[str, Any]]:
    decoder = json.JSONDecoder()
    chunks: list[dict[str, Any]] = []
    position = 0
    total = len(raw)
    while position < total:
        while position < total and raw[position].isspace():
            position += 1
        if position >= total:
            break
        try:
            parsed, end = decoder.raw_decode(raw, position)
        except json.JSONDecodeError:
            return []
        if not isinstance(parsed, dict):
            return []
        chunks.append(parsed)
        position = end
    return chunks


def render_payload(payload: object) -> str:
    if isinstance(payload, str):
        return payload
    try:
        return json.dumps(payload, ensure_ascii=False)
    except TypeError:
        return str(payload)
