"""Turn whatever a backend returned into a StructuredResponse.

This is the only place the ``speaker`` field is assigned. Models sometimes
answer in another participant's name; the requesting persona always wins.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Optional, Union

from pydantic import ValidationError

from think_tank.ai.schema import StructuredResponse
from think_tank.log import get_logger

logger = get_logger(__name__)

FILLER_CONTENT = "I understand."

_CODE_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


@dataclass(frozen=True, slots=True)
class RawOutput:
    """Backend output before normalization.

    ``structured`` is the native schema channel: function-call arguments (JSON
    text), a tool-use input dict, or JSON text from a response schema.
    ``text`` is the plain-text channel of the same response.
    """

    structured: Union[str, dict[str, Any], None] = None
    text: Optional[str] = None
    provider: str = ""


def normalize(raw: RawOutput, persona_name: str) -> StructuredResponse:
    """Build a StructuredResponse. Never raises and never returns empty content."""
    if raw.structured is not None:
        parsed = _parse_structured(raw.structured, persona_name, raw.provider)
        if parsed is not None:
            return parsed

    text = (raw.text or "").strip()
    if text:
        return StructuredResponse(speaker=persona_name, content=text)

    logger.warning("structured_output_empty", provider=raw.provider, persona=persona_name)
    return StructuredResponse(speaker=persona_name, content=FILLER_CONTENT)


def _parse_structured(payload: Union[str, dict[str, Any]], persona_name: str, provider: str) -> StructuredResponse | None:
    if isinstance(payload, str):
        text = payload.strip()
        fenced = _CODE_FENCE.match(text)
        if fenced:
            text = fenced.group(1)
        try:
            data = json.loads(text)
        except (json.JSONDecodeError, TypeError) as e:
            logger.warning("structured_output_degraded", provider=provider, reason="invalid_json", error=str(e))
            return None
    else:
        data = payload

    if not isinstance(data, dict):
        logger.warning("structured_output_degraded", provider=provider, reason="not_an_object")
        return None

    claimed = data.get("speaker")
    if claimed and claimed != persona_name:
        logger.info("speaker_overridden", provider=provider, claimed=claimed, persona=persona_name)

    try:
        response = StructuredResponse.model_validate({**data, "speaker": persona_name})
    except ValidationError as e:
        content = data.get("content")
        if not isinstance(content, str) or not content.strip():
            logger.warning("structured_output_degraded", provider=provider, reason="schema_mismatch", error=str(e))
            return None
        # Keep the content, drop the optional fields that failed validation.
        logger.warning("structured_output_partial", provider=provider, error_count=e.error_count())
        return StructuredResponse(speaker=persona_name, content=content.strip())

    if not response.content.strip():
        logger.warning("structured_output_degraded", provider=provider, reason="empty_content")
        return None
    return response
