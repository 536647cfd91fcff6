"""Chat gateway: validate -> build upstream request -> call -> map result."""

from __future__ import annotations

from typing import Any, List, Mapping

import structlog
from pydantic import ValidationError as PydanticValidationError

from .errors import UpstreamError, ValidationError
from .llm_service import Conversation, UpstreamClient
from .schemas import (
    ChatHistoryRequest,
    ChatReply,
    ChatRequest,
    ChatResponse,
    ContentPart,
    HealthResponse,
    ImagePart,
    TextPart,
    UpstreamMessage,
    UpstreamResult,
)
from .utils import utc_timestamp

logger = structlog.get_logger()

MESSAGE_REQUIRED = "Message is required"
MESSAGES_NOT_ARRAY = "Messages must be an array"
CHAT_FAILED = "Error processing request"
HISTORY_FAILED = "Error processing chat history"
EMPTY_COMPLETION = "Empty response from upstream model"


def _first_error(exc: PydanticValidationError, field: str) -> str:
    err = exc.errors()[0]
    return f"{field}: {err['msg']}"


def build_user_message(request: ChatRequest) -> UpstreamMessage:
    """Text part first, then the image reference when one was given."""
    content: List[ContentPart] = [TextPart(text=request.message)]
    if request.image_reference is not None:
        content.append(ImagePart(image_url=request.image_reference))
    return UpstreamMessage(content=content)


def to_response(result: UpstreamResult) -> ChatResponse:
    text = result.reply_text()
    if not text:
        raise UpstreamError(EMPTY_COMPLETION)
    return ChatResponse(
        response=ChatReply(message=text, model=result.model),
        timestamp=utc_timestamp(),
    )


class ChatGateway:
    """Request-scoped chat logic on top of an injected upstream client.

    Holds no per-request state; every call builds its own upstream request
    and performs its own upstream call.
    """

    def __init__(self, upstream: UpstreamClient):
        self.upstream = upstream

    def health(self) -> HealthResponse:
        return HealthResponse(timestamp=utc_timestamp())

    async def chat(self, body: Mapping[str, Any]) -> ChatResponse:
        try:
            request = ChatRequest.model_validate(body)
        except PydanticValidationError as e:
            details = _first_error(e, "message")
            logger.warning("chat.validation_error", error=details)
            raise ValidationError(MESSAGE_REQUIRED, details=details) from e

        message = build_user_message(request)
        return await self._complete([message], operation="chat", label=CHAT_FAILED)

    async def chat_history(self, body: Mapping[str, Any]) -> ChatResponse:
        try:
            request = ChatHistoryRequest.model_validate(body)
        except PydanticValidationError as e:
            details = _first_error(e, "messages")
            logger.warning("chat_history.validation_error", error=details)
            raise ValidationError(MESSAGES_NOT_ARRAY, details=details) from e

        return await self._complete(request.messages, operation="chat_history", label=HISTORY_FAILED)

    async def _complete(self, conversation: Conversation, operation: str, label: str) -> ChatResponse:
        try:
            result = await self.upstream.complete(conversation)
            return to_response(result)
        except UpstreamError as e:
            logger.error(f"{operation}.upstream_failed", status_code=e.status_code, details=e.details)
            raise UpstreamError(e.details, status_code=e.status_code, error=label) from e
