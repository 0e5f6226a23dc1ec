"""
Provider backend — generates content using Claude or OpenAI.

Translates a Session into the provider's message format, forwards the
generation options (sampling, tools, tool choice, structured output),
and maps the reply back into a ModelOutput. Tool calls with a local
handler are executed and their results attached as ``tool_results``.

Structured output is requested as a synthetic tool the model is forced
to call; its arguments become ``structured_output``.
"""
from __future__ import annotations

import inspect
import json
from typing import Any, Optional

import structlog

from promptweave.backends.base import GenerationBackend
from promptweave.errors import ConfigurationError, GenerationError
from promptweave.models.schemas import (
    GenerationOptions, MessageRole, ModelOutput, ProviderConfig, ProviderType,
    ToolCall, ToolChoice, ToolResult, ToolSpec,
)
from promptweave.models.session import Session

logger = structlog.get_logger()


class ProviderBackend(GenerationBackend):

    def __init__(self):
        self._clients: dict[tuple, Any] = {}

    async def _get_client(self, provider: ProviderConfig):
        key = (provider.type, provider.api_key, provider.base_url)
        if key in self._clients:
            return self._clients[key]
        if not provider.api_key:
            raise ConfigurationError(f"No API key configured for {provider.type.value}")

        try:
            if provider.type == ProviderType.OPENAI:
                from openai import AsyncOpenAI
                client = AsyncOpenAI(api_key=provider.api_key, base_url=provider.base_url)
            else:
                import anthropic
                client = anthropic.AsyncAnthropic(
                    api_key=provider.api_key, base_url=provider.base_url,
                )
        except ImportError as e:
            raise ConfigurationError(f"{provider.type.value} SDK is not installed: {e}") from e

        logger.info("llm_client_initialized", provider=provider.type.value, model=provider.model)
        self._clients[key] = client
        return client

    async def generate(self, session: Session, options: GenerationOptions) -> ModelOutput:
        client = await self._get_client(options.provider)
        if options.provider.type == ProviderType.OPENAI:
            output = await self._call_openai(client, session, options)
        else:
            output = await self._call_anthropic(client, session, options)
        if output.tool_calls:
            output.tool_results = await self._run_tool_handlers(output.tool_calls, options.tools)
        return output

    # ══════════════════════════════════════════════════════════
    #  ANTHROPIC
    # ══════════════════════════════════════════════════════════

    def _anthropic_messages(self, session: Session) -> tuple[str, list[dict[str, Any]]]:
        system_parts: list[str] = []
        messages: list[dict[str, Any]] = []
        for m in session.messages:
            if m.role == MessageRole.SYSTEM:
                system_parts.append(m.content)
            elif m.role == MessageRole.USER:
                messages.append({"role": "user", "content": m.content})
            elif m.role == MessageRole.ASSISTANT:
                blocks: list[dict[str, Any]] = []
                if m.content:
                    blocks.append({"type": "text", "text": m.content})
                for call in m.tool_calls or []:
                    blocks.append({"type": "tool_use", "id": call.id,
                                   "name": call.name, "input": call.arguments})
                messages.append({"role": "assistant", "content": blocks or m.content})
            else:
                # Anthropic carries tool results inside a user turn
                messages.append({"role": "user", "content": [{
                    "type": "tool_result",
                    "tool_use_id": m.attrs.get("tool_call_id", ""),
                    "content": m.content,
                }]})
        return "\n\n".join(system_parts), messages

    async def _call_anthropic(
        self, client, session: Session, options: GenerationOptions,
    ) -> ModelOutput:
        system, messages = self._anthropic_messages(session)
        kwargs: dict[str, Any] = {
            "model": options.provider.model,
            "max_tokens": options.max_tokens or 1024,
            "temperature": options.temperature,
            "messages": messages,
        }
        if system:
            kwargs["system"] = system
        if options.top_p is not None:
            kwargs["top_p"] = options.top_p
        if options.top_k is not None:
            kwargs["top_k"] = options.top_k

        tools = [
            {"name": t.name, "description": t.description, "input_schema": t.parameters}
            for t in options.tools
        ]
        structured = options.structured_output
        if structured is not None:
            tools.append({"name": structured.name,
                          "description": "Respond with the requested structure.",
                          "input_schema": structured.json_schema})
            kwargs["tool_choice"] = {"type": "tool", "name": structured.name}
        elif options.tool_choice is not None and tools:
            kwargs["tool_choice"] = {
                ToolChoice.AUTO: {"type": "auto"},
                ToolChoice.REQUIRED: {"type": "any"},
                ToolChoice.NONE: {"type": "none"},
            }[options.tool_choice]
        if tools:
            kwargs["tools"] = tools
        kwargs.update(options.sdk_options)

        response = await client.messages.create(**kwargs)

        text_parts: list[str] = []
        calls: list[ToolCall] = []
        structured_output: Optional[dict[str, Any]] = None
        for block in response.content:
            if block.type == "text":
                text_parts.append(block.text)
            elif block.type == "tool_use":
                if structured is not None and block.name == structured.name:
                    structured_output = dict(block.input)
                else:
                    calls.append(ToolCall(id=block.id, name=block.name,
                                          arguments=dict(block.input)))

        return ModelOutput(
            content="".join(text_parts),
            tool_calls=calls,
            structured_output=structured_output,
            metadata={
                "provider": "anthropic",
                "model": getattr(response, "model", options.provider.model),
                "stop_reason": getattr(response, "stop_reason", None),
            },
        )

    # ══════════════════════════════════════════════════════════
    #  OPENAI
    # ══════════════════════════════════════════════════════════

    def _openai_messages(self, session: Session) -> list[dict[str, Any]]:
        messages: list[dict[str, Any]] = []
        for m in session.messages:
            if m.role == MessageRole.TOOL_RESULT:
                messages.append({"role": "tool",
                                 "tool_call_id": m.attrs.get("tool_call_id", ""),
                                 "content": m.content})
            elif m.role == MessageRole.ASSISTANT and m.tool_calls:
                messages.append({
                    "role": "assistant",
                    "content": m.content or None,
                    "tool_calls": [
                        {"id": c.id, "type": "function",
                         "function": {"name": c.name, "arguments": json.dumps(c.arguments)}}
                        for c in m.tool_calls
                    ],
                })
            else:
                messages.append({"role": m.role.value, "content": m.content})
        return messages

    async def _call_openai(
        self, client, session: Session, options: GenerationOptions,
    ) -> ModelOutput:
        kwargs: dict[str, Any] = {
            "model": options.provider.model,
            "temperature": options.temperature,
            "messages": self._openai_messages(session),
        }
        if options.max_tokens:
            kwargs["max_tokens"] = options.max_tokens
        if options.top_p is not None:
            kwargs["top_p"] = options.top_p
        if options.top_k is not None:
            logger.debug("openai_top_k_ignored", top_k=options.top_k)

        tools: list[dict[str, Any]] = [
            {"type": "function",
             "function": {"name": t.name, "description": t.description,
                          "parameters": t.parameters}}
            for t in options.tools
        ]
        structured = options.structured_output
        if structured is not None:
            function: dict[str, Any] = {
                "name": structured.name,
                "description": "Respond with the requested structure.",
                "parameters": structured.json_schema,
            }
            if structured.mode == "strict":
                function["strict"] = True
            tools.append({"type": "function", "function": function})
            kwargs["tool_choice"] = {"type": "function", "function": {"name": structured.name}}
        elif options.tool_choice is not None and tools:
            kwargs["tool_choice"] = options.tool_choice.value
        if tools:
            kwargs["tools"] = tools
        kwargs.update(options.sdk_options)

        response = await client.chat.completions.create(**kwargs)
        if not response.choices:
            raise GenerationError("OpenAI returned no choices")
        message = response.choices[0].message

        calls: list[ToolCall] = []
        structured_output: Optional[dict[str, Any]] = None
        for tc in message.tool_calls or []:
            try:
                arguments = json.loads(tc.function.arguments or "{}")
            except json.JSONDecodeError as e:
                raise GenerationError(
                    f"Malformed tool arguments for {tc.function.name}: {e}"
                ) from e
            if structured is not None and tc.function.name == structured.name:
                structured_output = arguments
            else:
                calls.append(ToolCall(id=tc.id, name=tc.function.name, arguments=arguments))

        return ModelOutput(
            content=message.content or "",
            tool_calls=calls,
            structured_output=structured_output,
            metadata={
                "provider": "openai",
                "model": getattr(response, "model", options.provider.model),
                "finish_reason": response.choices[0].finish_reason,
            },
        )

    # ══════════════════════════════════════════════════════════
    #  TOOL EXECUTION
    # ══════════════════════════════════════════════════════════

    async def _run_tool_handlers(
        self, calls: list[ToolCall], tools: tuple[ToolSpec, ...],
    ) -> list[ToolResult]:
        handlers = {t.name: t.handler for t in tools if t.handler is not None}
        results: list[ToolResult] = []
        for call in calls:
            handler = handlers.get(call.name)
            if handler is None:
                continue
            try:
                value = handler(**call.arguments)
                if inspect.isawaitable(value):
                    value = await value
            except Exception as e:
                logger.warning("tool_handler_failed", tool=call.name, error=str(e))
                value = {"error": str(e)}
            results.append(ToolResult(tool_call_id=call.id, result=value))
        return results
