"""
Primary Provider Wire Models

Explicit models of the generateContent request and response bodies. Field
names serialize to the provider's camelCase names; optional fields that are
absent are omitted from the body rather than sent as null.

A content part is a tagged variant: either ``{"text": ...}`` or
``{"inlineData": {"mimeType": ..., "data": ...}}``. A part carrying both is
rejected at construction.
"""

from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Base for wire structures: camelCase aliases, unknown fields ignored."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class _PartBase(WireModel):
    @model_validator(mode="before")
    @classmethod
    def _single_variant(cls, data: Any) -> Any:
        if isinstance(data, dict):
            has_text = "text" in data
            has_inline = "inlineData" in data or "inline_data" in data
            if has_text and has_inline:
                raise ValueError("a part carries either text or inlineData, not both")
        return data


class TextPart(_PartBase):
    text: str


class InlineData(WireModel):
    mime_type: str
    data: str  # base64


class InlineDataPart(_PartBase):
    inline_data: InlineData


Part = Annotated[TextPart | InlineDataPart, Field(union_mode="left_to_right")]


class Content(WireModel):
    role: str | None = None
    parts: list[Part] = Field(default_factory=list)


class GenerationConfig(WireModel):
    temperature: float | None = None
    top_p: float | None = None
    top_k: int | None = None
    max_output_tokens: int | None = None
    response_mime_type: str | None = None


class SafetySetting(WireModel):
    category: str
    threshold: str


# Relaxed-but-bounded thresholds: marine and medical-looking imagery trips the
# default filters, but high-probability harmful content is still blocked.
DEFAULT_SAFETY_SETTINGS = (
    SafetySetting(category="HARM_CATEGORY_DANGEROUS_CONTENT", threshold="BLOCK_NONE"),
    SafetySetting(category="HARM_CATEGORY_HARASSMENT", threshold="BLOCK_ONLY_HIGH"),
    SafetySetting(category="HARM_CATEGORY_HATE_SPEECH", threshold="BLOCK_ONLY_HIGH"),
    SafetySetting(category="HARM_CATEGORY_SEXUALLY_EXPLICIT", threshold="BLOCK_ONLY_HIGH"),
)


class GenerateContentRequest(WireModel):
    contents: list[Content]
    generation_config: GenerationConfig | None = None
    safety_settings: list[SafetySetting] | None = None


class SafetyRating(WireModel):
    category: str
    probability: str
    blocked: bool | None = None


class Candidate(WireModel):
    content: Content | None = None
    finish_reason: str | None = None
    index: int | None = None
    safety_ratings: list[SafetyRating] | None = None

    @property
    def text(self) -> str:
        """Concatenated text of all text parts."""
        if self.content is None:
            return ""
        return "".join(part.text for part in self.content.parts if isinstance(part, TextPart))


class UsageMetadata(WireModel):
    prompt_token_count: int | None = None
    candidates_token_count: int | None = None
    total_token_count: int | None = None


class PromptFeedback(WireModel):
    block_reason: str | None = None
    safety_ratings: list[SafetyRating] | None = None


class ErrorEnvelope(WireModel):
    code: int | None = None
    message: str | None = None
    status: str | None = None


class GenerateContentResponse(WireModel):
    candidates: list[Candidate] | None = None
    usage_metadata: UsageMetadata | None = None
    prompt_feedback: PromptFeedback | None = None
    error: ErrorEnvelope | None = None
