import asyncio
from typing import Any, Dict, List, Sequence

import structlog
from azure.ai.inference.aio import ChatCompletionsClient
from azure.ai.inference.models import ImageContentItem, ImageUrl, TextContentItem, UserMessage
from azure.core.credentials import AzureKeyCredential
from azure.core.exceptions import AzureError, HttpResponseError

from .config import Settings
from .errors import UpstreamError
from .schemas import CompletionChoice, CompletionMessage, TextPart, UpstreamMessage
from .utils import describe_error

logger = structlog.get_logger()

EMPTY_RESPONSE = "Empty response from upstream model"
TIMED_OUT = "Upstream request timed out"


def _value(x: Any) -> Any:
    """Plain value of an SDK enum member (ChatRole, CompletionsFinishReason)."""
    return getattr(x, "value", x)


def to_sdk_message(item: Any) -> Any:
    """Translate gateway-built messages into SDK models; history items pass as-is."""
    if not isinstance(item, UpstreamMessage):
        return item
    content = []
    for part in item.content:
        if isinstance(part, TextPart):
            content.append(TextContentItem(text=part.text))
        else:
            content.append(ImageContentItem(image_url=ImageUrl(url=part.image_url)))
    return UserMessage(content=content)


class InferenceUpstreamClient:
    """Hosted inference client (Azure AI Inference chat-completions API)."""

    def __init__(self, settings: Settings, client: ChatCompletionsClient | None = None):
        self.settings = settings
        self._client = client or ChatCompletionsClient(
            endpoint=settings.QWEN_INFERENCE_ENDPOINT,
            credential=AzureKeyCredential(settings.QWEN_API_KEY or ""),
        )

    def generation_kwargs(self) -> Dict[str, Any]:
        # Sampling off means greedy decoding
        temperature = self.settings.QWEN_TEMPERATURE if self.settings.QWEN_DO_SAMPLE else 0.0
        return {
            "model": self.settings.QWEN_MODEL,
            "max_tokens": self.settings.QWEN_MAX_TOKENS,
            "temperature": temperature,
        }

    async def complete(self, conversation: Sequence[Any]) -> CompletionChoice:
        messages = [to_sdk_message(m) for m in conversation]
        logger.debug(
            "upstream.request",
            backend="inference",
            model=self.settings.QWEN_MODEL,
            messages=len(messages),
            stream=self.settings.QWEN_STREAM,
        )

        call = self._complete_streaming(messages) if self.settings.QWEN_STREAM else self._complete_once(messages)
        try:
            return await asyncio.wait_for(call, timeout=self.settings.UPSTREAM_TIMEOUT)
        except asyncio.TimeoutError as e:
            raise UpstreamError(TIMED_OUT) from e
        except HttpResponseError as e:
            raise UpstreamError(e.message or describe_error(e), status_code=e.status_code) from e
        except AzureError as e:
            raise UpstreamError(describe_error(e)) from e

    async def _complete_once(self, messages: List[Any]) -> CompletionChoice:
        response = await self._client.complete(messages=messages, **self.generation_kwargs())
        if not response.choices:
            raise UpstreamError(EMPTY_RESPONSE)

        choice = response.choices[0]
        finish_reason = _value(choice.finish_reason)
        return CompletionChoice(
            message=CompletionMessage(role=_value(choice.message.role) or "assistant", content=choice.message.content),
            model=response.model or self.settings.QWEN_MODEL,
            finish_reason=finish_reason,
        )

    async def _complete_streaming(self, messages: List[Any]) -> CompletionChoice:
        """Consume a streamed completion and fold the deltas into one choice."""
        response = await self._client.complete(messages=messages, stream=True, **self.generation_kwargs())
        parts: List[str] = []
        model = None
        finish_reason = None
        try:
            async for update in response:
                model = update.model or model
                for choice in update.choices:
                    if choice.delta and choice.delta.content:
                        parts.append(choice.delta.content)
                    if choice.finish_reason:
                        finish_reason = _value(choice.finish_reason)
        finally:
            await response.aclose()

        if not parts:
            raise UpstreamError(EMPTY_RESPONSE)
        return CompletionChoice(
            message=CompletionMessage(content="".join(parts)),
            model=model or self.settings.QWEN_MODEL,
            finish_reason=finish_reason,
        )

    async def aclose(self) -> None:
        await self._client.close()
