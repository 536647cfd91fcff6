import asyncio
from typing import Any, Dict, Protocol, Sequence

import httpx
import structlog
from pydantic import ValidationError as PydanticValidationError

from .config import Settings
from .errors import UpstreamError
from .inference_service import TIMED_OUT, InferenceUpstreamClient
from .schemas import CompletionChoice, CompletionMessage, GeneratedText, UpstreamMessage, UpstreamResult
from .utils import describe_error

logger = structlog.get_logger()

MALFORMED_RESPONSE = "Malformed response from upstream model"

# UpstreamMessage objects built by the gateway, or history items as sent by the client
Conversation = Sequence[Any]


class UpstreamClient(Protocol):
    """Given an upstream conversation, produce a completion or raise UpstreamError."""

    async def complete(self, conversation: Conversation) -> UpstreamResult: ...

    async def aclose(self) -> None: ...


# ---------------------------------------------------
# Helpers
# ---------------------------------------------------
def serialize_message(item: Any) -> Any:
    if isinstance(item, UpstreamMessage):
        return item.model_dump()
    return item


def parse_upstream_payload(data: Any, model: str) -> UpstreamResult:
    """Normalize the shapes a Qwen endpoint may answer with.

    Text-generation style (``[{"generated_text": ...}]``, ``{"output": {"text": ...}}``)
    becomes ``GeneratedText``; chat-completion style (``{"choices": [{"message": ...}]}``,
    optionally nested under ``output``) becomes ``CompletionChoice``.
    """
    if isinstance(data, list) and data:
        data = data[0]
    if not isinstance(data, dict):
        raise UpstreamError(MALFORMED_RESPONSE)

    model = str(data.get("model") or model)
    output = data["output"] if isinstance(data.get("output"), dict) else data

    choices = output.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        choice = choices[0]
        if isinstance(choice.get("message"), dict):
            try:
                message = CompletionMessage.model_validate(choice["message"])
            except PydanticValidationError as e:
                raise UpstreamError(MALFORMED_RESPONSE) from e
            finish_reason = choice.get("finish_reason")
            return CompletionChoice(
                message=message,
                model=model,
                finish_reason=str(finish_reason) if finish_reason is not None else None,
            )

    for key in ("generated_text", "text"):
        if isinstance(output.get(key), str):
            return GeneratedText(text=output[key], model=model)

    raise UpstreamError(MALFORMED_RESPONSE)


# ---------------------------------------------------
# Direct HTTPS call
# ---------------------------------------------------
class HttpUpstreamClient:
    """Posts the conversation straight to the Qwen HTTP API."""

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None):
        self.settings = settings
        headers = {"Content-Type": "application/json"}
        if settings.QWEN_API_KEY:
            headers["Authorization"] = f"Bearer {settings.QWEN_API_KEY}"
        self._client = httpx.AsyncClient(
            base_url=settings.QWEN_API_URL,
            headers=headers,
            timeout=settings.UPSTREAM_TIMEOUT,
            transport=transport,
        )

    def build_payload(self, conversation: Conversation) -> Dict[str, Any]:
        return {
            "model": self.settings.QWEN_MODEL,
            "input": {"messages": [serialize_message(m) for m in conversation]},
            "parameters": {
                "max_new_tokens": self.settings.QWEN_MAX_TOKENS,
                "temperature": self.settings.QWEN_TEMPERATURE,
                "do_sample": self.settings.QWEN_DO_SAMPLE,
            },
        }

    async def complete(self, conversation: Conversation) -> UpstreamResult:
        payload = self.build_payload(conversation)
        logger.debug("upstream.request", backend="http", model=self.settings.QWEN_MODEL, messages=len(conversation))

        try:
            response = await asyncio.wait_for(
                self._client.post(self.settings.QWEN_API_PATH, json=payload),
                timeout=self.settings.UPSTREAM_TIMEOUT,
            )
        except asyncio.TimeoutError as e:
            raise UpstreamError(TIMED_OUT) from e
        except httpx.HTTPError as e:
            raise UpstreamError(describe_error(e)) from e

        if response.is_error:
            raise UpstreamError(response.text, status_code=response.status_code)

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamError(MALFORMED_RESPONSE) from e

        return parse_upstream_payload(data, self.settings.QWEN_MODEL)

    async def aclose(self) -> None:
        await self._client.aclose()


def build_upstream_client(settings: Settings) -> UpstreamClient:
    """Pick the upstream adapter named by UPSTREAM_BACKEND."""
    if settings.UPSTREAM_BACKEND == "inference":
        return InferenceUpstreamClient(settings)
    return HttpUpstreamClient(settings)
