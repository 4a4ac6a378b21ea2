# docpipeline/app/models/llm.py

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from docpipeline.app.core.errors import UnsupportedMediaTypeError


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class BlockType(str, Enum):
    TEXT = "text"
    IMAGE = "image"


class MediaType(str, Enum):
    """Closed set of document formats the pipeline accepts."""
    JPEG = "image/jpeg"
    PNG = "image/png"
    GIF = "image/gif"
    WEBP = "image/webp"
    PDF = "application/pdf"

    @classmethod
    def from_content_type(cls, content_type: str) -> "MediaType":
        # Drop parameters such as "; charset=binary"
        normalized = (content_type or "").split(";", 1)[0].strip().lower()
        try:
            return cls(normalized)
        except ValueError:
            raise UnsupportedMediaTypeError(content_type) from None

    @property
    def is_pdf(self) -> bool:
        return self is MediaType.PDF


@dataclass
class ContentBlock:
    type: BlockType
    text: str = ""
    media_type: Optional[MediaType] = None
    data: bytes = b""

    @classmethod
    def text_block(cls, text: str) -> "ContentBlock":
        return cls(type=BlockType.TEXT, text=text)

    @classmethod
    def image_block(cls, media_type: MediaType, data: bytes) -> "ContentBlock":
        return cls(type=BlockType.IMAGE, media_type=media_type, data=data)


@dataclass
class Message:
    role: Role
    content: List[ContentBlock] = field(default_factory=list)

    @classmethod
    def text(cls, role: Role, text: str) -> "Message":
        return cls(role=role, content=[ContentBlock.text_block(text)])

    @classmethod
    def image(cls, role: Role, media_type: MediaType, data: bytes, text: str = "") -> "Message":
        """An image (or PDF) block followed by an optional instruction block."""
        blocks = [ContentBlock.image_block(media_type, data)]
        if text:
            blocks.append(ContentBlock.text_block(text))
        return cls(role=role, content=blocks)


@dataclass
class LLMRequest:
    """One provider call.

    When ``output_schema`` is set the provider must return JSON conforming to
    it, either via native constrained decoding or by parsing and validating
    free text itself.
    """
    messages: List[Message]
    system_prompt: str = ""
    model: str = ""
    max_tokens: int = 0
    temperature: float = 0.0
    output_schema: Optional[Dict[str, Any]] = None
    schema_name: str = "extraction"


@dataclass
class LLMResponse:
    content: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    stop_reason: str = ""
    duration_ms: int = 0
