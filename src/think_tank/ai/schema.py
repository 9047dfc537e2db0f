"""Canonical structured-response contract shared by every provider adapter."""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

RESPOND_TOOL_NAME = "respond_as_persona"
RESPOND_TOOL_DESCRIPTION = "Generate a response as a specific persona in the conversation"

Tone = Literal["friendly", "professional", "casual", "formal", "enthusiastic", "neutral"]


class ResponseMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    tone: Optional[Tone] = None
    is_follow_up: Optional[bool] = Field(default=None, alias="isFollowUp")
    mentioned_speakers: Optional[list[str]] = Field(default=None, alias="mentionedSpeakers")
    topics: Optional[list[str]] = None


class StructuredResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    speaker: str
    content: str
    confidence: Optional[float] = Field(default=None, ge=0, le=1)
    reasoning: Optional[str] = None
    metadata: Optional[ResponseMetadata] = None

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# JSON Schema handed to the backends (function parameters, tool input schema, response schema).
STRUCTURED_OUTPUT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "speaker": {
            "type": "string",
            "description": "The name of the persona/agent that is speaking this response",
        },
        "content": {
            "type": "string",
            "description": "The actual response content",
        },
        "confidence": {
            "type": "number",
            "description": "Confidence level from 0 to 1",
            "minimum": 0,
            "maximum": 1,
        },
        "reasoning": {
            "type": "string",
            "description": "Optional reasoning or thought process behind the response",
        },
        "metadata": {
            "type": "object",
            "properties": {
                "tone": {
                    "type": "string",
                    "enum": ["friendly", "professional", "casual", "formal", "enthusiastic", "neutral"],
                    "description": "The tone of the response",
                },
                "isFollowUp": {
                    "type": "boolean",
                    "description": "Whether this is a follow-up to a previous statement",
                },
                "mentionedSpeakers": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Other speakers mentioned in the response",
                },
                "topics": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Topics identified in the response",
                },
            },
        },
    },
    "required": ["speaker", "content"],
}
