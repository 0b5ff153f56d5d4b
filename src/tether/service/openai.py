"""OpenAI Assistants adapter (threads / runs API)."""

from __future__ import annotations

import contextlib
from typing import TYPE_CHECKING, Any

import openai

from tether.core.errors import (
    ServiceAuthError,
    ServiceNotFoundError,
    ServiceOverloadedError,
    ServiceRateLimitError,
    ServiceTimeoutError,
)
from tether.service.base import RunSnapshot, ServiceMessage
from tether.tools.base import ToolCall

if TYPE_CHECKING:
    from collections.abc import Sequence

    from tether.tools.base import ToolOutput

SERVICE_ID = "openai"


def _map_error(e: openai.APIError) -> Exception:
    """Map OpenAI SDK errors to the tether error hierarchy."""
    if isinstance(e, openai.AuthenticationError):
        return ServiceAuthError(SERVICE_ID, str(e))
    if isinstance(e, openai.RateLimitError):
        retry_after = None
        if hasattr(e, "response") and e.response is not None:
            raw = e.response.headers.get("retry-after")
            if raw is not None:
                with contextlib.suppress(ValueError):
                    retry_after = float(raw)
        return ServiceRateLimitError(SERVICE_ID, retry_after=retry_after)
    if isinstance(e, openai.APITimeoutError):
        return ServiceTimeoutError(SERVICE_ID, str(e))
    if isinstance(e, openai.InternalServerError):
        return ServiceOverloadedError(SERVICE_ID, str(e))
    if isinstance(e, openai.NotFoundError):
        return ServiceNotFoundError(SERVICE_ID, str(e))
    # Fallback for unknown API errors
    return ServiceOverloadedError(SERVICE_ID, str(e))


def _error_detail(run: Any) -> str | None:
    last_error = getattr(run, "last_error", None)
    if last_error is None:
        return None
    message = getattr(last_error, "message", None)
    code = getattr(last_error, "code", None)
    return message or code or None


def _required_calls(run: Any) -> tuple[ToolCall, ...]:
    action = getattr(run, "required_action", None)
    if action is None or getattr(action, "submit_tool_outputs", None) is None:
        return ()
    return tuple(
        ToolCall(
            id=call.id,
            name=call.function.name,
            arguments=call.function.arguments or "{}",
        )
        for call in action.submit_tool_outputs.tool_calls
    )


def _message_text(message: Any) -> str:
    """Concatenate the text blocks of a thread message."""
    parts: list[str] = []
    for block in message.content or []:
        text = getattr(block, "text", None)
        if text is not None:
            parts.append(text.value)
    return "\n".join(parts)


class OpenAIAssistantsService:
    """Reasoning service backed by OpenAI's assistants threads/runs API.

    Implements the :class:`ReasoningService` protocol.
    """

    def __init__(
        self,
        api_key: str | None = None,
        *,
        base_url: str | None = None,
        client: openai.AsyncOpenAI | None = None,
    ) -> None:
        if client is not None:
            self._client = client
        else:
            kwargs: dict[str, Any] = {}
            if api_key is not None:
                kwargs["api_key"] = api_key
            if base_url is not None:
                kwargs["base_url"] = base_url
            self._client = openai.AsyncOpenAI(**kwargs)

    @property
    def service_id(self) -> str:
        return SERVICE_ID

    async def create_thread(self) -> str:
        try:
            thread = await self._client.beta.threads.create()
        except openai.APIError as e:
            raise _map_error(e) from e
        return str(thread.id)

    async def post_message(self, thread_id: str, content: str) -> None:
        try:
            await self._client.beta.threads.messages.create(
                thread_id, role="user", content=content
            )
        except openai.APIError as e:
            raise _map_error(e) from e

    async def create_run(self, thread_id: str, assistant_id: str) -> str:
        try:
            run = await self._client.beta.threads.runs.create(
                thread_id=thread_id, assistant_id=assistant_id
            )
        except openai.APIError as e:
            raise _map_error(e) from e
        return str(run.id)

    async def get_run_status(self, thread_id: str, run_id: str) -> RunSnapshot:
        try:
            run = await self._client.beta.threads.runs.retrieve(
                run_id, thread_id=thread_id
            )
        except openai.APIError as e:
            raise _map_error(e) from e
        return RunSnapshot(
            status=str(run.status),
            required_calls=_required_calls(run),
            error_detail=_error_detail(run),
        )

    async def submit_tool_outputs(
        self, thread_id: str, run_id: str, outputs: Sequence[ToolOutput]
    ) -> None:
        try:
            await self._client.beta.threads.runs.submit_tool_outputs(
                run_id,
                thread_id=thread_id,
                tool_outputs=[
                    {"tool_call_id": o.call_id, "output": o.output} for o in outputs
                ],
            )
        except openai.APIError as e:
            raise _map_error(e) from e

    async def cancel_run(self, thread_id: str, run_id: str) -> None:
        try:
            await self._client.beta.threads.runs.cancel(run_id, thread_id=thread_id)
        except openai.APIError as e:
            raise _map_error(e) from e

    async def list_messages(self, thread_id: str) -> list[ServiceMessage]:
        try:
            page = await self._client.beta.threads.messages.list(
                thread_id, order="desc"
            )
        except openai.APIError as e:
            raise _map_error(e) from e
        return [
            ServiceMessage(role=str(m.role), content=_message_text(m), id=str(m.id))
            for m in page.data
        ]
