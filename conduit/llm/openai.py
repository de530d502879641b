"""
OpenAI-compatible client - pass-through wire format.

Works against any ``/chat/completions`` endpoint (OpenAI, Groq, DeepSeek, vLLM...).
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
from conduit.exceptions import CancellationError
from conduit.llm.base import LLMClient, StreamChunk
from conduit.llm.transport import HttpTransport, resolve_api_key
from conduit.runtime.control import CancellationToken
from conduit.utils.logging import get_logger
from conduit.utils.retry import RETRY_ON_RATE_LIMIT, RetryCallback, SleepFn

logger = get_logger(__name__)

DONE_SENTINEL = "[DONE]"


def _parse_usage(payload: dict[str, Any]) -> TokenUsage | None:
    # Groq reports streamed usage under x_groq.usage
    usage = payload.get("usage") or (payload.get("x_groq") or {}).get("usage")
    if not usage:
        return None
    return TokenUsage.of(
        usage.get("prompt_tokens"),
        usage.get("completion_tokens"),
        usage.get("total_tokens"),
    )


class OpenAIClient(LLMClient):
    """
    Client for the OpenAI chat-completions wire format.

    Messages and tools map almost 1:1. Streaming tool-call deltas are merged
    by index and emitted once, in the final chunk.
    """

    provider = "openai"

    def __init__(
        self,
        model: str | None = None,
        api_key: str | SecretStr | None = None,
        base_url: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        max_attempts: int | None = None,
        on_retry: RetryCallback | None = None,
        sleep: SleepFn | None = None,
    ):
        from conduit.config import settings

        self.model = model or settings.openai_model
        self.base_url = (base_url or settings.openai_base_url).rstrip("/")
        self._api_key = resolve_api_key(api_key, settings.openai_api_key, "OPENAI_API_KEY")
        self._transport = HttpTransport(
            self.provider,
            http_client=http_client,
            retry_policy=RETRY_ON_RATE_LIMIT,
            max_attempts=max_attempts,
            on_retry=on_retry,
            sleep=sleep,
        )

    @property
    def url(self) -> str:
        return f"{self.base_url}/chat/completions"

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _convert_messages(self, messages: Sequence[Message]) -> list[dict[str, Any]]:
        """Convert canonical messages to OpenAI format."""
        result = []
        for msg in messages:
            if msg.role == "assistant":
                item: dict[str, Any] = {"role": "assistant", "content": msg.content}
                if msg.tool_calls:
                    item["tool_calls"] = [tc.to_openai_dict() for tc in msg.tool_calls]
                result.append(item)
            elif msg.role == "tool":
                result.append(
                    {"role": "tool", "tool_call_id": msg.tool_call_id, "content": msg.content}
                )
            else:
                result.append({"role": msg.role, "content": msg.content})
        return result

    def _build_body(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolDefinition] | None,
        options: ChatOptions | None,
        stream: bool,
    ) -> dict[str, Any]:
        options = options or ChatOptions()
        body: dict[str, Any] = {
            "model": self.model,
            "messages": self._convert_messages(messages),
            "stream": stream,
        }
        if tools:
            body["tools"] = [t.to_openai_dict() for t in tools]
            body["tool_choice"] = "auto"
        if options.temperature is not None:
            body["temperature"] = options.temperature
        if options.max_tokens is not None:
            body["max_completion_tokens"] = options.max_tokens
        if options.top_p is not None:
            body["top_p"] = options.top_p
        if options.stop:
            body["stop"] = options.stop
        if options.reasoning_effort is not None:
            body["reasoning_effort"] = options.reasoning_effort
        if stream:
            body["stream_options"] = {"include_usage": True}
        return body

    def _parse_response(self, payload: dict[str, Any]) -> ChatResponse:
        choices = payload.get("choices") or []
        choice = choices[0] if choices else {}
        message = choice.get("message") or {}
        tool_calls = [ToolCall.from_openai_dict(tc) for tc in message.get("tool_calls") or []]
        return ChatResponse(
            choices=[
                ChatChoice(
                    message=AssistantMessage(content=message.get("content"), tool_calls=tool_calls),
                    finish_reason=choice.get("finish_reason"),
                )
            ],
            usage=_parse_usage(payload) or TokenUsage(),
            model=payload.get("model", self.model),
        )

    def _log_request(self, body: dict[str, Any]) -> None:
        logger.info(
            "llm_request",
            provider=self.provider,
            model=self.model,
            messages_count=len(body["messages"]),
            tools_count=len(body.get("tools", [])),
            stream=body["stream"],
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
        self._log_request(body)
        try:
            payload = await self._transport.post_json(self.url, self._headers(), body, cancellation)
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
        self._log_request(body)
        try:
            response = await self._transport.open_stream(
                self.url, self._headers(), body, cancellation
            )
        except CancellationError:
            raise
        except Exception as e:
            self._log_failure(e, body)
            raise

        # index -> {"id", "name", "arguments"}
        tool_calls_buffer: dict[int, dict[str, str]] = {}
        finish_reason: str | None = None
        usage: TokenUsage | None = None
        malformed = 0

        async with aclosing(self._transport.iter_sse(response, cancellation)) as frames:
            async for frame in frames:
                if frame.data == DONE_SENTINEL:
                    break
                try:
                    payload = json.loads(frame.data)
                except json.JSONDecodeError:
                    malformed += 1
                    logger.warning(
                        "sse_frame_malformed", provider=self.provider, preview=frame.data[:200]
                    )
                    continue

                usage = _parse_usage(payload) or usage

                for choice in payload.get("choices") or []:
                    delta = choice.get("delta") or {}
                    content = delta.get("content")
                    if content:
                        yield StreamChunk(content=content)

                    for tc_delta in delta.get("tool_calls") or []:
                        index = tc_delta.get("index", 0)
                        entry = tool_calls_buffer.setdefault(
                            index, {"id": "", "name": "", "arguments": ""}
                        )
                        if tc_delta.get("id"):
                            entry["id"] = tc_delta["id"]
                        function = tc_delta.get("function") or {}
                        if function.get("name") and not entry["name"]:
                            entry["name"] = function["name"]
                        if function.get("arguments"):
                            entry["arguments"] += function["arguments"]

                    if choice.get("finish_reason"):
                        finish_reason = choice["finish_reason"]

        if malformed:
            logger.warning("sse_stream_malformed_frames", provider=self.provider, count=malformed)

        tool_calls = [
            ToolCall(
                id=entry["id"] or f"call_{index}",
                tool_name=entry["name"],
                arguments=entry["arguments"] or "{}",
            )
            for index, entry in sorted(tool_calls_buffer.items())
        ]
        if tool_calls and finish_reason is None:
            finish_reason = "tool_calls"

        yield StreamChunk(
            tool_calls=tool_calls or None,
            usage=usage,
            finish_reason=finish_reason or "stop",
        )

    async def close(self) -> None:
        await self._transport.close()


__all__ = ["OpenAIClient"]
