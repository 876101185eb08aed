"""OpenAI Chat Completions <-> Anthropic Messages translation.

Requests arrive in Chat Completions format and are rewritten into a Messages
API request; the complete upstream response is rewritten back.

Key mappings:
- OpenAI system messages -> Anthropic top-level ``system`` blocks
- OpenAI tool messages -> ``tool_result`` blocks inside a user turn
- OpenAI assistant tool_calls -> ``tool_use`` blocks
- OpenAI tools / tool_choice -> Anthropic tools / tool_choice
- Anthropic stop_reason -> OpenAI finish_reason

Prompt caching: the last system block and the last block of the
second-to-last message (when that message is the assistant's) carry a
one-hour ``cache_control`` breakpoint, so the conversation prefix before the
newest turn is served from cache on the next call.

Reference:
- Anthropic Messages API: https://docs.anthropic.com/en/api/messages
- OpenAI Chat Completions: https://platform.openai.com/docs/api-reference/chat
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Mapping, Optional

from ..core.exceptions import InvalidRequestError
from ..types import (
    CacheControl,
    ChatCompletionResponse,
    ContentBlock,
    ImageSource,
    Message,
    MessagesRequest,
    Role,
    SystemBlock,
    ToolCall,
    ToolSchema,
    Usage,
)

logger = logging.getLogger("chatrelay")

PLACEHOLDER_TEXT = "..."
CACHE_TTL = "1h"

_SCHEMA_PULLED_KEYS = ("type", "properties", "required")

_STOP_REASON_MAP = {
    "end_turn": "stop",
    "stop_sequence": "stop",
    "max_tokens": "length",
    "tool_use": "tool_calls",
    "refusal": "content_filter",
}


def _cache_control() -> CacheControl:
    return {"type": "ephemeral", "ttl": CACHE_TTL}


def _positive_int(value: Any) -> Optional[int]:
    """Return ``value`` as a positive int, or None when it is not one."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, float) and value.is_integer() and value > 0:
        return int(value)
    return None


def parse_role(raw: Any) -> Role:
    """Parse an inbound role; an empty or missing role means "user"."""
    if raw is None or raw == "":
        return Role.USER
    try:
        return Role(raw)
    except ValueError:
        raise InvalidRequestError(
            f"unknown message role '{raw}'", code="invalid_role"
        ) from None


# =============================================================================
# Request: tools, tool_choice, max_tokens
# =============================================================================


def convert_tools(tools: Any) -> list[ToolSchema]:
    """Convert OpenAI tools to Anthropic tool schemas.

    OpenAI: {"type": "function", "function": {"name", "description", "parameters"}}
    Anthropic: {"name", "description", "input_schema"}

    A tool whose ``parameters`` is not a JSON object is skipped.
    """
    if not isinstance(tools, list):
        return []

    converted: list[ToolSchema] = []
    for tool in tools:
        if not isinstance(tool, Mapping):
            continue
        function = tool.get("function")
        if not isinstance(function, Mapping):
            continue
        params = function.get("parameters")
        if not isinstance(params, Mapping):
            logger.debug(
                "Skipping tool %r: parameters is not an object", function.get("name")
            )
            continue

        schema_type = params.get("type")
        input_schema: dict[str, Any] = {
            "type": schema_type if isinstance(schema_type, str) else "object"
        }
        for key in ("properties", "required"):
            if key in params:
                input_schema[key] = params[key]
        for key, value in params.items():
            if key not in _SCHEMA_PULLED_KEYS:
                input_schema[key] = value

        schema: ToolSchema = {
            "name": str(function.get("name") or ""),
            "input_schema": input_schema,
        }
        description = function.get("description")
        if description:
            schema["description"] = str(description)
        converted.append(schema)
    return converted


def convert_tool_choice(tool_choice: Any) -> Optional[dict[str, Any]]:
    """Convert OpenAI tool_choice to Anthropic format.

    OpenAI: "auto" | "required" | "none" | {"type": "function", "function": {"name": "..."}}
    Anthropic: {"type": "auto"} | {"type": "any"} | {"type": "none"} | {"type": "tool", "name": "..."}
    """
    if tool_choice is None:
        return None

    if isinstance(tool_choice, str):
        if tool_choice == "required":
            return {"type": "any"}
        if tool_choice in ("auto", "none"):
            return {"type": tool_choice}
        return None

    if isinstance(tool_choice, Mapping):
        if tool_choice.get("type") == "function":
            function = tool_choice.get("function") or {}
            return {"type": "tool", "name": function.get("name", "")}
        return dict(tool_choice)

    return None


def default_max_tokens_for_model(model: str) -> int:
    """Output cap picked from the model family when nothing else applies."""
    name = (model or "").lower()
    if "opus-4" in name:
        return 16384
    if "opus" in name or "sonnet" in name:
        return 8192
    if "haiku" in name:
        return 4096
    return 8192


def resolve_max_tokens(
    model: str,
    requested: Any = None,
    max_tokens_mapping: Optional[Mapping[str, int]] = None,
    default_max_tokens: Optional[int] = None,
) -> int:
    """Resolve the outbound ``max_tokens`` (always a positive integer).

    Priority: the request's own value, the per-model mapping, the global
    default, then the model-family heuristic.
    """
    explicit = _positive_int(requested)
    if explicit is not None:
        return explicit

    if max_tokens_mapping:
        mapped = _positive_int(max_tokens_mapping.get(model))
        if mapped is not None:
            return mapped

    configured = _positive_int(default_max_tokens)
    if configured is not None:
        return configured

    return default_max_tokens_for_model(model)


# =============================================================================
# Request: messages
# =============================================================================


def normalize_messages(messages: list[Any]) -> list[dict[str, Any]]:
    """Normalize the inbound message list before conversion.

    - A missing role becomes "user"; the role is parsed into ``Role``.
    - Two consecutive messages with the same role (except "tool") that both
      carry string content are merged: ``(prev + " " + cur).strip('"')``.
    - None content becomes ``PLACEHOLDER_TEXT`` unless the message carries
      tool_calls (those become its content).
    """
    normalized: list[dict[str, Any]] = []

    for raw in messages:
        if not isinstance(raw, Mapping):
            raise InvalidRequestError(
                "each message must be a JSON object", code="invalid_message"
            )
        message = dict(raw)
        role = parse_role(message.get("role"))
        message["role"] = role

        if normalized and role is not Role.TOOL:
            previous = normalized[-1]
            if (
                previous["role"] is role
                and isinstance(previous.get("content"), str)
                and isinstance(message.get("content"), str)
            ):
                merged = f"{previous['content']} {message['content']}".strip('"')
                merged_calls = list(previous.get("tool_calls") or []) + list(
                    message.get("tool_calls") or []
                )
                message["content"] = merged
                if merged_calls:
                    message["tool_calls"] = merged_calls
                normalized.pop()

        if message.get("content") is None and not message.get("tool_calls"):
            message["content"] = PLACEHOLDER_TEXT

        normalized.append(message)

    return normalized


def extract_system_text(content: Any) -> str:
    """Text of a system message: the string itself or its text parts joined."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        texts = [
            part.get("text", "")
            for part in content
            if isinstance(part, Mapping)
            and part.get("type") == "text"
            and isinstance(part.get("text"), str)
        ]
        return "\n".join(texts)
    return ""


def _image_source(url: str) -> ImageSource:
    """Build an Anthropic image source from an OpenAI image URL.

    ``data:image/png;base64,...`` URLs become base64 sources; anything else
    is referenced by URL.
    """
    if url.startswith("data:") and ";base64," in url:
        header, data = url[5:].split(";base64,", 1)
        return {"type": "base64", "media_type": header or "image/png", "data": data}
    return {"type": "url", "url": url}


def parse_tool_arguments(arguments: Any, call_id: str = "", name: str = "") -> dict[str, Any]:
    """Decode serialized tool-call arguments into an object.

    Empty, unparseable or non-object payloads yield ``{}``.
    """
    if isinstance(arguments, Mapping):
        return dict(arguments)
    if not isinstance(arguments, str) or arguments.strip() in ("", "{}"):
        return {}
    try:
        decoded = json.loads(arguments)
    except json.JSONDecodeError as exc:
        logger.warning(
            f"Failed to parse tool call arguments: id={call_id}, name={name}, error={exc}"
        )
        return {}
    if not isinstance(decoded, dict):
        logger.warning(
            f"Tool call arguments are not an object: id={call_id}, name={name}"
        )
        return {}
    return decoded


def _convert_content_parts(content: Any) -> list[ContentBlock]:
    """Convert OpenAI content (string or part list) to Anthropic blocks."""
    if isinstance(content, str):
        return [{"type": "text", "text": content}] if content else []
    if not isinstance(content, list):
        return []

    blocks: list[ContentBlock] = []
    for part in content:
        if not isinstance(part, Mapping):
            continue
        part_type = part.get("type")
        if part_type == "text":
            text = part.get("text")
            if not isinstance(text, str) or not text:
                logger.debug("Skipping empty text block")
                continue
            blocks.append({"type": "text", "text": text})
        elif part_type == "image_url":
            image_url = part.get("image_url")
            url = image_url.get("url") if isinstance(image_url, Mapping) else image_url
            if isinstance(url, str) and url:
                blocks.append({"type": "image", "source": _image_source(url)})
        else:
            logger.debug(f"Dropping unsupported content part type: {part_type}")
    return blocks


def _convert_tool_calls(tool_calls: list[Any]) -> list[ContentBlock]:
    blocks: list[ContentBlock] = []
    for call in tool_calls:
        if not isinstance(call, Mapping):
            continue
        function = call.get("function") or {}
        call_id = str(call.get("id") or "")
        name = str(function.get("name") or "")
        blocks.append({
            "type": "tool_use",
            "id": call_id,
            "name": name,
            "input": parse_tool_arguments(function.get("arguments"), call_id, name),
        })
    return blocks


def _append_tool_result(messages: list[Message], block: ContentBlock) -> None:
    """Add a tool_result to the preceding user turn, or open a new one."""
    if messages and messages[-1]["role"] == Role.USER.value:
        previous = messages[-1]
        if isinstance(previous["content"], str):
            text = previous["content"]
            previous["content"] = [{"type": "text", "text": text}] if text else []
        previous["content"].append(block)
        logger.debug("Merged tool_result into previous user message")
        return
    messages.append({"role": Role.USER.value, "content": [block]})


def _add_cache_control_to_message(message: Message) -> bool:
    content = message["content"]
    if isinstance(content, list):
        if not content:
            return False
        content[-1]["cache_control"] = _cache_control()
        return True
    if content:
        message["content"] = [
            {"type": "text", "text": content, "cache_control": _cache_control()}
        ]
        return True
    return False


def convert_messages(
    messages: list[Any],
) -> tuple[list[Message], list[SystemBlock]]:
    """Convert the inbound conversation into Anthropic messages + system blocks.

    The returned message list always starts with a user turn and contains
    only "user" and "assistant" roles. Cache breakpoints are not applied
    here; see ``apply_cache_control``.
    """
    converted: list[Message] = []
    system_blocks: list[SystemBlock] = []
    first_message = True

    for message in normalize_messages(messages):
        role: Role = message["role"]
        content = message.get("content")

        if role is Role.SYSTEM:
            text = extract_system_text(content)
            if text:
                system_blocks.append({"type": "text", "text": text})
            continue

        if first_message:
            first_message = False
            if role is not Role.USER:
                logger.info("First message is not user, adding placeholder user message")
                converted.append({
                    "role": Role.USER.value,
                    "content": [{"type": "text", "text": PLACEHOLDER_TEXT}],
                })

        tool_call_id = message.get("tool_call_id")
        if role is Role.TOOL and tool_call_id:
            _append_tool_result(converted, {
                "type": "tool_result",
                "tool_use_id": str(tool_call_id),
                "content": content,
            })
            continue

        if role is Role.ASSISTANT:
            out_role = Role.ASSISTANT.value
        elif role is Role.USER or role is Role.TOOL:
            out_role = Role.USER.value
        else:
            raise AssertionError(f"unhandled role {role!r}")

        tool_calls = message.get("tool_calls") or []
        if isinstance(content, str) and not tool_calls:
            converted.append({"role": out_role, "content": content})
            continue

        blocks = _convert_content_parts(content)
        if isinstance(tool_calls, list):
            blocks.extend(_convert_tool_calls(tool_calls))
        if not blocks:
            logger.warning(f"Skipping empty {out_role} message after conversion")
            continue
        converted.append({"role": out_role, "content": blocks})

    return converted, system_blocks


def apply_cache_control(
    messages: list[Message], system_blocks: list[SystemBlock]
) -> None:
    """Place the prompt-cache breakpoints (in place)."""
    if system_blocks:
        system_blocks[-1]["cache_control"] = _cache_control()
        logger.debug("Added cache_control to system (1h TTL)")

    if len(messages) >= 2 and messages[-2]["role"] == Role.ASSISTANT.value:
        if _add_cache_control_to_message(messages[-2]):
            logger.debug("Added cache_control to second-to-last assistant message (1h TTL)")


def chat_completions_to_messages(
    payload: Mapping[str, Any],
    *,
    max_tokens_mapping: Optional[Mapping[str, int]] = None,
    default_max_tokens: Optional[int] = None,
) -> MessagesRequest:
    """Translate an OpenAI Chat Completions request to an Anthropic Messages request.

    Handles:
    - System messages -> top-level system blocks (with cache breakpoint)
    - Consecutive same-role merging and the leading user-turn requirement
    - Content parts (text, image_url), tool_calls and tool results
    - Tools, tool_choice, stop, temperature, top_p, user
    - max_tokens resolution (see ``resolve_max_tokens``)

    Args:
        payload: OpenAI Chat Completions request body (model already mapped)
        max_tokens_mapping: Per-model output caps
        default_max_tokens: Global output cap

    Returns:
        Anthropic Messages API request body

    Raises:
        InvalidRequestError: If ``messages`` is not a list or a role is unknown
    """
    inbound_messages = payload.get("messages")
    if not isinstance(inbound_messages, list):
        raise InvalidRequestError(
            "messages must be a list", code="invalid_messages"
        )

    model = str(payload.get("model") or "")
    messages, system_blocks = convert_messages(inbound_messages)
    apply_cache_control(messages, system_blocks)

    result: MessagesRequest = {
        "model": model,
        "max_tokens": resolve_max_tokens(
            model,
            payload.get("max_tokens"),
            max_tokens_mapping,
            default_max_tokens,
        ),
        "messages": messages,
    }
    if system_blocks:
        result["system"] = system_blocks

    for param in ("temperature", "top_p"):
        value = payload.get(param)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            result[param] = value

    stop = payload.get("stop")
    if isinstance(stop, str) and stop:
        result["stop_sequences"] = [stop]
    elif isinstance(stop, list):
        sequences = [s for s in stop if isinstance(s, str) and s]
        if sequences:
            result["stop_sequences"] = sequences

    if payload.get("stream"):
        result["stream"] = True

    tools = convert_tools(payload.get("tools"))
    if tools:
        result["tools"] = tools

    tool_choice = convert_tool_choice(payload.get("tool_choice"))
    if tool_choice is not None:
        result["tool_choice"] = tool_choice

    user = payload.get("user")
    if isinstance(user, str) and user:
        result["metadata"] = {"user_id": user}

    return result


# =============================================================================
# Response
# =============================================================================


def convert_stop_reason(stop_reason: Optional[str]) -> str:
    """Convert Anthropic stop_reason to OpenAI finish_reason.

    Anthropic: end_turn, max_tokens, stop_sequence, tool_use, refusal
    OpenAI: stop, length, tool_calls, content_filter

    Unknown values pass through unchanged.
    """
    if not stop_reason:
        return "stop"
    return _STOP_REASON_MAP.get(stop_reason, stop_reason)


def _token_count(usage: Mapping[str, Any], key: str) -> int:
    value = usage.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return int(value)


def convert_usage(usage: Optional[Mapping[str, Any]]) -> Usage:
    """Convert Anthropic usage counters to OpenAI usage."""
    usage = usage or {}
    input_tokens = _token_count(usage, "input_tokens")
    output_tokens = _token_count(usage, "output_tokens")
    cache_creation = _token_count(usage, "cache_creation_input_tokens")
    cache_read = _token_count(usage, "cache_read_input_tokens")

    result: Usage = {
        "prompt_tokens": input_tokens,
        "completion_tokens": output_tokens,
        "total_tokens": input_tokens + output_tokens,
        "prompt_tokens_details": {"cached_tokens": cache_read},
    }
    if cache_creation:
        result["cache_creation_input_tokens"] = cache_creation
    if cache_read:
        result["cache_read_input_tokens"] = cache_read
    return result


def serialize_tool_input(input_data: Any) -> str:
    """Serialize tool input to the JSON string OpenAI expects."""
    if input_data is None:
        return "{}"
    if isinstance(input_data, str):
        return input_data
    try:
        return json.dumps(input_data, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(input_data)


def message_to_chat_completion(
    payload: Mapping[str, Any], created: Optional[int] = None
) -> ChatCompletionResponse:
    """Translate an Anthropic Messages response to an OpenAI Chat Completion.

    Text blocks are concatenated into ``message.content``; tool_use blocks
    become ``message.tool_calls``. Any tool call forces finish_reason
    "tool_calls".
    """
    text_parts: list[str] = []
    tool_calls: list[ToolCall] = []

    for block in payload.get("content") or []:
        if not isinstance(block, Mapping):
            continue
        block_type = block.get("type")
        if block_type == "text":
            text = block.get("text")
            if isinstance(text, str):
                text_parts.append(text)
        elif block_type == "tool_use":
            tool_calls.append({
                "id": str(block.get("id") or ""),
                "type": "function",
                "function": {
                    "name": str(block.get("name") or ""),
                    "arguments": serialize_tool_input(block.get("input")),
                },
            })

    message: dict[str, Any] = {
        "role": payload.get("role") or Role.ASSISTANT.value,
        "content": "".join(text_parts),
    }
    if tool_calls:
        message["tool_calls"] = tool_calls
        finish_reason = "tool_calls"
    else:
        finish_reason = convert_stop_reason(payload.get("stop_reason"))

    return {
        "id": str(payload.get("id") or ""),
        "object": "chat.completion",
        "created": created if created is not None else int(time.time()),
        "model": str(payload.get("model") or ""),
        "choices": [
            {
                "index": 0,
                "message": message,
                "finish_reason": finish_reason,
            }
        ],
        "usage": convert_usage(payload.get("usage")),
    }
