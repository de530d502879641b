"""
Anthropic Messages API client.
"""

import json
from contextlib import aclosing
from typing import Any, AsyncIterator, Sequence

import httpx
from pydantic import SecretStr

from conduit.domain import (
    AssistantMessage,
    ChatChoice,
    ChatOptions,
    ChatResponse,
    Message,
    TokenUsage,
    ToolCall,
    ToolDefinition,
)
from conduit.exceptions import ApiError, CancellationError
from conduit.llm.base import LLMClient, StreamChunk
from conduit.llm.transport import HttpTransport, resolve_api_key
from conduit.runtime.control import CancellationToken
from conduit.tools.arguments import decode_tool_arguments
from conduit.utils.logging import get_logger
from conduit.utils.retry import RETRY_ON_RATE_LIMIT_OR_SERVER_ERROR, RetryCallback, SleepFn

logger = get_logger(__name__)

DEFAULT_MAX_TOKENS = 4096


def map_stop_reason(stop_reason: str | None) -> str | None:
    # Anthropic stop reasons: end_turn, max_tokens, stop_sequence, tool_use
    if stop_reason == "tool_use":
        return "tool_calls"
    return stop_reason


def _parse_tool_input(raw: str) -> str:
    """Normalize buffered partial JSON into a JSON object string, ``{}`` on failure."""
    if not raw.strip():
        return "{}"
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("tool_input_json_invalid", preview=raw[:200])
        return "{}"
    return json.dumps(value if isinstance(value, dict) else {})


class AnthropicClient(LLMClient):
    """
    Anthropic Claude client speaking the Messages API directly.

    The system prompt is hoisted into ``system``; tool calls travel as
    ``tool_use`` blocks and results as ``tool_result`` blocks in a user turn.
    """

    provider = "anthropic"

    def __init__(
        self,
        model: str | None = None,
        api_key: str | SecretStr | None = None,
        base_url: str | None = None,
        anthropic_version: str | None = None,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        http_client: httpx.AsyncClient | None = None,
        max_attempts: int | None = None,
        on_retry: RetryCallback | None = None,
        sleep: SleepFn | None = None,
    ):
        from conduit.config import settings

        self.model = model or settings.anthropic_model
        self.base_url = (base_url or settings.anthropic_base_url).rstrip("/")
        self.anthropic_version = anthropic_version or settings.anthropic_version
        self.max_tokens = max_tokens
        self._api_key = resolve_api_key(api_key, settings.anthropic_api_key, "ANTHROPIC_API_KEY")
        self._transport = HttpTransport(
            self.provider,
            http_client=http_client,
            retry_policy=RETRY_ON_RATE_LIMIT_OR_SERVER_ERROR,
            max_attempts=max_attempts,
            on_retry=on_retry,
            sleep=sleep,
        )

    @property
    def url(self) -> str:
        return f"{self.base_url}/messages"

    def _headers(self, stream: bool) -> dict[str, str]:
        headers = {
            "x-api-key": self._api_key or "",
            "anthropic-version": self.anthropic_version,
            "content-type": "application/json",
        }
        if stream:
            headers["accept"] = "text/event-stream"
        return headers

    def _convert_messages(self, messages: Sequence[Message]) -> tuple[str | None, list[dict]]:
        """Convert canonical messages to Anthropic format."""
        system_parts: list[str] = []
        anthropic_messages: list[dict[str, Any]] = []

        for msg in messages:
            if msg.role == "system":
                system_parts.append(msg.content)
            elif msg.role == "user":
                anthropic_messages.append({"role": "user", "content": msg.content})
            elif msg.role == "assistant":
                if msg.tool_calls:
                    content_blocks: list[dict[str, Any]] = []
                    if msg.content:
                        content_blocks.append({"type": "text", "text": msg.content})
                    for tool_call in msg.tool_calls:
                        content_blocks.append(
                            {
                                "type": "tool_use",
                                "id": tool_call.id,
                                "name": tool_call.tool_name,
                                "input": decode_tool_arguments(tool_call.arguments),
                            }
                        )
                    anthropic_messages.append({"role": "assistant", "content": content_blocks})
                else:
                    anthropic_messages.append({"role": "assistant", "content": msg.content or ""})
            elif msg.role == "tool":
                block = {
                    "type": "tool_result",
                    "tool_use_id": msg.tool_call_id,
                    "content": msg.content,
                }
                previous = anthropic_messages[-1] if anthropic_messages else None
                # Results of one batch share a single user turn
                if (
                    previous is not None
                    and previous["role"] == "user"
                    and isinstance(previous["content"], list)
                    and all(b.get("type") == "tool_result" for b in previous["content"])
                ):
                    previous["content"].append(block)
                else:
                    anthropic_messages.append({"role": "user", "content": [block]})

        system_prompt = "\n\n".join(system_parts) if system_parts else None
        return system_prompt, anthropic_messages

    def _convert_tools(self, tools: Sequence[ToolDefinition] | None) -> list[dict] | None:
        if not tools:
            return None
        return [
            {"name": t.name, "description": t.description, "input_schema": t.parameters}
            for t in tools
        ]

    def _build_body(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolDefinition] | None,
        options: ChatOptions | None,
        stream: bool,
    ) -> dict[str, Any]:
        options = options or ChatOptions()
        system_prompt, anthropic_messages = self._convert_messages(messages)
        body: dict[str, Any] = {
            "model": self.model,
            "max_tokens": options.max_tokens or self.max_tokens,
            "messages": anthropic_messages,
        }
        if system_prompt:
            body["system"] = system_prompt
        anthropic_tools = self._convert_tools(tools)
        if anthropic_tools:
            body["tools"] = anthropic_tools
        if options.temperature is not None:
            body["temperature"] = options.temperature
        if options.top_p is not None:
            body["top_p"] = options.top_p
        if options.stop:
            body["stop_sequences"] = options.stop
        if stream:
            body["stream"] = True
        return body

    def _parse_response(self, payload: dict[str, Any]) -> ChatResponse:
        texts: list[str] = []
        tool_calls: list[ToolCall] = []
        for block in payload.get("content") or []:
            if block.get("type") == "text":
                texts.append(block.get("text", ""))
            elif block.get("type") == "tool_use":
                tool_calls.append(
                    ToolCall(
                        id=block.get("id", ""),
                        tool_name=block.get("name", ""),
                        arguments=json.dumps(block.get("input") or {}),
                    )
                )
        usage = payload.get("usage") or {}
        return ChatResponse(
            choices=[
                ChatChoice(
                    message=AssistantMessage(
                        content="".join(texts) if texts else None,
                        tool_calls=tool_calls,
                    ),
                    finish_reason=map_stop_reason(payload.get("stop_reason")),
                )
            ],
            usage=TokenUsage.of(usage.get("input_tokens"), usage.get("output_tokens")),
            model=payload.get("model", self.model),
        )

    def _log_failure(self, error: Exception, body: dict[str, Any]) -> None:
        logger.error(
            "llm_request_failed",
            provider=self.provider,
            model=self.model,
            error=str(error),
            error_type=type(error).__name__,
            messages_count=len(body["messages"]),
            tools_count=len(body.get("tools", [])),
            exc_info=True,
        )

    async def send(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolDefinition] | None = None,
        options: ChatOptions | None = None,
        cancellation: CancellationToken | None = None,
    ) -> ChatResponse:
        body = self._build_body(messages, tools, options, stream=False)
        logger.info(
            "llm_request",
            provider=self.provider,
            model=self.model,
            messages_count=len(body["messages"]),
            tools_count=len(body.get("tools", [])),
            max_tokens=body["max_tokens"],
            stream=False,
        )
        try:
            payload = await self._transport.post_json(
                self.url, self._headers(stream=False), body, cancellation
            )
        except CancellationError:
            raise
        except Exception as e:
            self._log_failure(e, body)
            raise
        return self._parse_response(payload)

    async def send_streaming(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolDefinition] | None = None,
        options: ChatOptions | None = None,
        cancellation: CancellationToken | None = None,
    ) -> AsyncIterator[StreamChunk]:
        body = self._build_body(messages, tools, options, stream=True)
        logger.info(
            "llm_request",
            provider=self.provider,
            model=self.model,
            messages_count=len(body["messages"]),
            tools_count=len(body.get("tools", [])),
            max_tokens=body["max_tokens"],
            stream=True,
        )
        try:
            response = await self._transport.open_stream(
                self.url, self._headers(stream=True), body, cancellation
            )
        except CancellationError:
            raise
        except Exception as e:
            self._log_failure(e, body)
            raise

        # Track tool_use blocks being built during streaming, by block index
        tool_calls_buffer: dict[int, dict[str, str]] = {}
        input_tokens = 0
        output_tokens = 0
        stop_reason: str | None = None
        malformed = 0

        async with aclosing(self._transport.iter_sse(response, cancellation)) as frames:
            async for frame in frames:
                try:
                    event = json.loads(frame.data)
                except json.JSONDecodeError:
                    malformed += 1
                    logger.warning(
                        "sse_frame_malformed", provider=self.provider, preview=frame.data[:200]
                    )
                    continue

                event_type = frame.event or event.get("type")

                if event_type == "message_start":
                    usage = (event.get("message") or {}).get("usage") or {}
                    input_tokens = usage.get("input_tokens", input_tokens) or 0
                    output_tokens = usage.get("output_tokens", output_tokens) or 0

                elif event_type == "content_block_start":
                    block = event.get("content_block") or {}
                    index = event.get("index", 0)
                    if block.get("type") == "tool_use":
                        tool_calls_buffer[index] = {
                            "id": block.get("id", ""),
                            "name": block.get("name", ""),
                            "input": "",
                        }
                    elif block.get("type") == "text" and block.get("text"):
                        yield StreamChunk(content=block["text"])

                elif event_type == "content_block_delta":
                    delta = event.get("delta") or {}
                    if delta.get("type") == "text_delta":
                        if delta.get("text"):
                            yield StreamChunk(content=delta["text"])
                    elif delta.get("type") == "input_json_delta":
                        index = event.get("index", 0)
                        if index in tool_calls_buffer:
                            tool_calls_buffer[index]["input"] += delta.get("partial_json", "")

                elif event_type == "message_delta":
                    delta = event.get("delta") or {}
                    if delta.get("stop_reason"):
                        stop_reason = delta["stop_reason"]
                    usage = event.get("usage") or {}
                    if usage.get("output_tokens") is not None:
                        output_tokens = usage["output_tokens"]
                    if usage.get("input_tokens"):
                        input_tokens = usage["input_tokens"]

                elif event_type == "message_stop":
                    break

                elif event_type == "error":
                    error = event.get("error") or {}
                    raise ApiError(
                        message=f"anthropic stream error: {error.get('message', 'unknown')}",
                        status_code=529 if error.get("type") == "overloaded_error" else 500,
                        response_body=frame.data,
                    )

        if malformed:
            logger.warning("sse_stream_malformed_frames", provider=self.provider, count=malformed)

        tool_calls = [
            ToolCall(
                id=entry["id"],
                tool_name=entry["name"],
                arguments=_parse_tool_input(entry["input"]),
            )
            for _, entry in sorted(tool_calls_buffer.items())
        ]
        finish_reason = map_stop_reason(stop_reason)
        if finish_reason is None:
            finish_reason = "tool_calls" if tool_calls else "stop"

        yield StreamChunk(
            tool_calls=tool_calls or None,
            usage=TokenUsage.of(input_tokens, output_tokens),
            finish_reason=finish_reason,
        )

    async def close(self) -> None:
        await self._transport.close()


__all__ = ["AnthropicClient", "map_stop_reason"]
