from pydantic import BaseModel, ConfigDict, Field, StrictStr
from typing import Annotated, Any, List, Literal, Optional, Union

from .utils import extract_text


# ---------------------------------------------------
# Client requests
# ---------------------------------------------------
class ChatRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    message: StrictStr = Field(min_length=1)
    image_url: Any = None

    @property
    def image_reference(self) -> Optional[str]:
        """The image URL, only when the client sent a non-empty string."""
        if isinstance(self.image_url, str) and self.image_url:
            return self.image_url
        return None


class ChatHistoryRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    # Items are forwarded untouched
    messages: List[Any] = Field(strict=True)


# ---------------------------------------------------
# Upstream request
# ---------------------------------------------------
class TextPart(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ImagePart(BaseModel):
    type: Literal["image_url"] = "image_url"
    image_url: str


ContentPart = Annotated[Union[TextPart, ImagePart], Field(discriminator="type")]


class UpstreamMessage(BaseModel):
    role: Literal["user"] = "user"
    content: List[ContentPart]


# ---------------------------------------------------
# Upstream result (tagged by `kind`)
# ---------------------------------------------------
class GeneratedText(BaseModel):
    """Raw text-generation output (a `generated_text`/`text` field)."""

    kind: Literal["generated_text"] = "generated_text"
    text: str
    model: str

    def reply_text(self) -> str:
        return self.text


class CompletionMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    role: str = "assistant"
    content: Any = None


class CompletionChoice(BaseModel):
    """First choice of a chat-completion response."""

    kind: Literal["completion"] = "completion"
    message: CompletionMessage
    model: str
    finish_reason: Optional[str] = None

    def reply_text(self) -> str:
        return extract_text(self.message.content)


UpstreamResult = Annotated[Union[GeneratedText, CompletionChoice], Field(discriminator="kind")]


# ---------------------------------------------------
# Client responses
# ---------------------------------------------------
class ChatReply(BaseModel):
    message: str
    model: str


class ChatResponse(BaseModel):
    response: ChatReply
    timestamp: str


class HealthResponse(BaseModel):
    status: Literal["ok"] = "ok"
    timestamp: str


class ErrorResponse(BaseModel):
    error: str
    details: Optional[str] = None
    timestamp: Optional[str] = None
