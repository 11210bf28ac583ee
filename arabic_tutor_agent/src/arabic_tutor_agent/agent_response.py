"""
Tutor Response Shapes

Pydantic models for what the tutor returns to clients (AgentResponse) and for
the free-form JSON the LLM sends back (TutorReply, CorrectionsReply).

LLM output is never trusted: every field has a default, and malformed entries
are dropped one by one instead of rejecting the whole reply.
"""

import logging
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

TeachingType = Literal["explain", "correct", "encourage", "challenge", "suggest"]


class _CamelModel(BaseModel):
    """Python attributes in snake_case, JSON keys in camelCase."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TeachingAction(_CamelModel):
    type: TeachingType
    content: str
    context: Optional[str] = None


class PronunciationFeedback(_CamelModel):
    score: float = Field(ge=0.0, le=1.0)
    corrections: List[str] = Field(default_factory=list)
    tips: List[str] = Field(default_factory=list)


class NextStep(_CamelModel):
    topic: str
    difficulty: int = 1
    type: str = "lesson"


class AgentResponse(_CamelModel):
    """
    Result of one tutoring turn.

    Optional sections stay None (and are omitted from JSON) when they do not
    apply; on failure only response, teaching and error are populated.
    """
    response: str = ""
    teaching: List[TeachingAction] = Field(default_factory=list)
    suggested_topics: Optional[List[str]] = None
    pronunciation_feedback: Optional[PronunciationFeedback] = None
    next_steps: Optional[List[NextStep]] = None
    error: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# ==================== LLM reply parsing ====================

def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _string_list(value: Any) -> List[str]:
    if isinstance(value, str):
        return [value] if value.strip() else []
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if isinstance(item, (str, int, float)) and str(item).strip()]


def _teaching_actions(value: Any) -> List[TeachingAction]:
    if not isinstance(value, list):
        return []

    actions = []
    for item in value:
        if not isinstance(item, dict):
            continue
        candidate = dict(item)
        if isinstance(candidate.get("type"), str):
            candidate["type"] = candidate["type"].strip().lower()
        try:
            actions.append(TeachingAction.model_validate(candidate))
        except ValidationError as e:
            logger.debug(f"⏭️ [TutorReply] Dropping malformed teaching action {item!r}: {e.error_count()} error(s)")
    return actions


class TutorReply(_CamelModel):
    """The {arabic, translation, teaching[], nextPrompts[]} reply contract."""
    arabic: str = ""
    translation: str = ""
    teaching: List[TeachingAction] = Field(default_factory=list)
    next_prompts: List[str] = Field(default_factory=list)

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "TutorReply":
        return cls(
            arabic=_text(data.get("arabic")),
            translation=_text(data.get("translation")),
            teaching=_teaching_actions(data.get("teaching")),
            next_prompts=_string_list(data.get("nextPrompts")),
        )


class CorrectionsReply(_CamelModel):
    """The {corrections[], tips[]} reply of the pronunciation coach prompt."""
    corrections: List[str] = Field(default_factory=list)
    tips: List[str] = Field(default_factory=list)

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "CorrectionsReply":
        return cls(
            corrections=_string_list(data.get("corrections")),
            tips=_string_list(data.get("tips")),
        )
