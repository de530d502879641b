"""
Gemini generateContent client.
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
from conduit.tools.arguments import decode_tool_arguments
from conduit.utils.logging import get_logger
from conduit.utils.retry import RETRY_ON_RATE_LIMIT_OR_SERVER_ERROR, RetryCallback, SleepFn

logger = get_logger(__name__)

DEFAULT_MAX_OUTPUT_TOKENS = 8192


def map_finish_reason(finish_reason: str | None) -> str | None:
    if finish_reason is None:
        return None
    if finish_reason == "STOP":
        return "stop"
    return finish_reason.lower()


def _parse_usage(payload: dict[str, Any]) -> TokenUsage | None:
    metadata = payload.get("usageMetadata")
    if not metadata:
        return None
    return TokenUsage.of(
        metadata.get("promptTokenCount"),
        metadata.get("candidatesTokenCount"),
        metadata.get("totalTokenCount"),
    )


class GeminiClient(LLMClient):
    """
    Google Gemini client for the generateContent API.

    Gemini has no call ids: function responses are matched to calls by
    function name, and ids are derived as ``call_<index>_<name>``.
    """

    provider = "gemini"

    def __init__(
        self,
        model: str | None = None,
        api_key: str | SecretStr | None = None,
        base_url: str | None = None,
        max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS,
        http_client: httpx.AsyncClient | None = None,
        max_attempts: int | None = None,
        on_retry: RetryCallback | None = None,
        sleep: SleepFn | None = None,
    ):
        from conduit.config import settings

        self.model = model or settings.gemini_model
        self.base_url = (base_url or settings.gemini_base_url).rstrip("/")
        self.max_output_tokens = max_output_tokens
        self._api_key = resolve_api_key(api_key, settings.gemini_api_key, "GEMINI_API_KEY")
        self._transport = HttpTransport(
            self.provider,
            http_client=http_client,
            retry_policy=RETRY_ON_RATE_LIMIT_OR_SERVER_ERROR,
            max_attempts=max_attempts,
            on_retry=on_retry,
            sleep=sleep,
        )

    def _url(self, stream: bool) -> str:
        key = self._api_key or ""
        if stream:
            return f"{self.base_url}/models/{self.model}:streamGenerateContent?alt=sse&key={key}"
        return f"{self.base_url}/models/{self.model}:generateContent?key={key}"

    def _headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json"}

    def _convert_messages(
        self, messages: Sequence[Message]
    ) -> tuple[dict[str, Any] | None, list[dict[str, Any]]]:
        """Convert canonical messages to Gemini ``contents``."""
        system_parts: list[str] = []
        contents: list[dict[str, Any]] = []
        call_names: dict[str, str] = {}

        for msg in messages:
            if msg.role == "system":
                system_parts.append(msg.content)
            elif msg.role == "user":
                contents.append({"role": "user", "parts": [{"text": msg.content}]})
            elif msg.role == "assistant":
                parts: list[dict[str, Any]] = []
                if msg.content:
                    parts.append({"text": msg.content})
                for tool_call in msg.tool_calls:
                    call_names[tool_call.id] = tool_call.tool_name
                    parts.append(
                        {
                            "functionCall": {
                                "name": tool_call.tool_name,
                                "args": decode_tool_arguments(tool_call.arguments),
                            }
                        }
                    )
                if parts:
                    contents.append({"role": "model", "parts": parts})
            elif msg.role == "tool":
                name = call_names.get(msg.tool_call_id) or msg.name or msg.tool_call_id
                part = {"functionResponse": {"name": name, "response": {"result": msg.content}}}
                previous = contents[-1] if contents else None
                # Responses to one batch of calls share a single user turn
                if (
                    previous is not None
                    and previous["role"] == "user"
                    and all("functionResponse" in p for p in previous["parts"])
                ):
                    previous["parts"].append(part)
                else:
                    contents.append({"role": "user", "parts": [part]})

        system_instruction = None
        if system_parts:
            system_instruction = {"parts": [{"text": "\n\n".join(system_parts)}]}
        return system_instruction, contents

    def _convert_tools(self, tools: Sequence[ToolDefinition] | None) -> list[dict] | None:
        if not tools:
            return None
        return [
            {
                "functionDeclarations": [
                    {"name": t.name, "description": t.description, "parameters": t.parameters}
                    for t in tools
                ]
            }
        ]

    def _build_body(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolDefinition] | None,
        options: ChatOptions | None,
    ) -> dict[str, Any]:
        options = options or ChatOptions()
        system_instruction, contents = self._convert_messages(messages)
        body: dict[str, Any] = {"contents": contents}
        if system_instruction:
            body["systemInstruction"] = system_instruction
        gemini_tools = self._convert_tools(tools)
        if gemini_tools:
            body["tools"] = gemini_tools

        generation_config: dict[str, Any] = {
            "maxOutputTokens": options.max_tokens or self.max_output_tokens,
        }
        if options.temperature is not None:
            generation_config["temperature"] = options.temperature
        if options.top_p is not None:
            generation_config["topP"] = options.top_p
        if options.stop:
            generation_config["stopSequences"] = options.stop
        body["generationConfig"] = generation_config
        return body

    @staticmethod
    def _tool_call(index: int, function_call: dict[str, Any]) -> ToolCall:
        name = function_call.get("name", "")
        return ToolCall(
            id=f"call_{index}_{name}",
            tool_name=name,
            arguments=json.dumps(function_call.get("args") or {}),
        )

    def _parse_response(self, payload: dict[str, Any]) -> ChatResponse:
        candidates = payload.get("candidates") or []
        candidate = candidates[0] if candidates else {}
        texts: list[str] = []
        tool_calls: list[ToolCall] = []
        for part in (candidate.get("content") or {}).get("parts") or []:
            if "text" in part:
                texts.append(part["text"])
            elif "functionCall" in part:
                tool_calls.append(self._tool_call(len(tool_calls), part["functionCall"]))

        finish_reason = map_finish_reason(candidate.get("finishReason"))
        if tool_calls:
            finish_reason = "tool_calls"

        return ChatResponse(
            choices=[
                ChatChoice(
                    message=AssistantMessage(
                        content="".join(texts) if texts else None,
                        tool_calls=tool_calls,
                    ),
                    finish_reason=finish_reason,
                )
            ],
            usage=_parse_usage(payload) or TokenUsage(),
            model=payload.get("modelVersion", self.model),
        )

    def _log_request(self, body: dict[str, Any], stream: bool) -> None:
        logger.info(
            "llm_request",
            provider=self.provider,
            model=self.model,
            messages_count=len(body["contents"]),
            tools_count=len(body["tools"][0]["functionDeclarations"]) if "tools" in body else 0,
            stream=stream,
        )

    def _log_failure(self, error: Exception, body: dict[str, Any]) -> None:
        logger.error(
            "llm_request_failed",
            provider=self.provider,
            model=self.model,
            error=str(error),
            error_type=type(error).__name__,
            messages_count=len(body["contents"]),
            exc_info=True,
        )

    async def send(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolDefinition] | None = None,
        options: ChatOptions | None = None,
        cancellation: CancellationToken | None = None,
    ) -> ChatResponse:
        body = self._build_body(messages, tools, options)
        self._log_request(body, stream=False)
        try:
            payload = await self._transport.post_json(
                self._url(stream=False), self._headers(), body, cancellation
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
        body = self._build_body(messages, tools, options)
        self._log_request(body, stream=True)
        try:
            response = await self._transport.open_stream(
                self._url(stream=True), self._headers(), body, cancellation
            )
        except CancellationError:
            raise
        except Exception as e:
            self._log_failure(e, body)
            raise

        call_count = 0
        finish_reason: str | None = None
        usage: TokenUsage | None = None
        malformed = 0

        async with aclosing(self._transport.iter_sse(response, cancellation)) as frames:
            async for frame in frames:
                try:
                    payload = json.loads(frame.data)
                except json.JSONDecodeError:
                    malformed += 1
                    logger.warning(
                        "sse_frame_malformed", provider=self.provider, preview=frame.data[:200]
                    )
                    continue

                frame_usage = _parse_usage(payload)
                if frame_usage is not None:
                    usage = frame_usage

                candidates = payload.get("candidates") or []
                if not candidates:
                    if frame_usage is not None:
                        yield StreamChunk(usage=frame_usage)
                    continue

                candidate = candidates[0]
                tool_calls: list[ToolCall] = []
                for part in (candidate.get("content") or {}).get("parts") or []:
                    if part.get("text"):
                        yield StreamChunk(content=part["text"])
                    elif "functionCall" in part:
                        tool_calls.append(self._tool_call(call_count, part["functionCall"]))
                        call_count += 1
                if tool_calls:
                    yield StreamChunk(tool_calls=tool_calls)

                if candidate.get("finishReason"):
                    finish_reason = map_finish_reason(candidate["finishReason"])

        if malformed:
            logger.warning("sse_stream_malformed_frames", provider=self.provider, count=malformed)

        if call_count:
            finish_reason = "tool_calls"
        yield StreamChunk(usage=usage, finish_reason=finish_reason or "stop")

    async def close(self) -> None:
        await self._transport.close()


__all__ = ["GeminiClient", "map_finish_reason"]
