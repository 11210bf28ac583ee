"""
Conversation Context Data Model

Per-session state owned by one TutorAgent: learner and lesson metadata plus
the append-only history of exchanges, and the immutable agent configuration.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Tuple

from arabic_tutor_agent.transcription_gateway import MODES, MODE_REAL, AudioPayload


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class UserLevel(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"

    @classmethod
    def parse(cls, value: Optional[str], default: Optional["UserLevel"] = None) -> "UserLevel":
        """Lenient conversion for values coming from profiles or forms."""
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return default or cls.BEGINNER


class AgentRole(str, Enum):
    CONVERSATION_PARTNER = "conversationPartner"
    GRAMMAR_TUTOR = "grammarTutor"
    CULTURAL_GUIDE = "culturalGuide"
    PRONUNCIATION_COACH = "pronunciationCoach"
    PROGRESS_MENTOR = "progressMentor"


class TeachingStyle(str, Enum):
    CASUAL = "casual"
    FORMAL = "formal"
    ENCOURAGING = "encouraging"
    CHALLENGING = "challenging"


@dataclass(frozen=True)
class AgentPersonality:
    role: AgentRole = AgentRole.CONVERSATION_PARTNER
    teaching_style: TeachingStyle = TeachingStyle.ENCOURAGING
    traits: Tuple[str, ...] = ("patient", "clear")


@dataclass(frozen=True)
class AgentConfig:
    """Tutor behaviour and resource bounds for one session."""
    personality: AgentPersonality = field(default_factory=AgentPersonality)
    context_window: int = 5  # Most recent exchanges replayed into the prompt
    temperature: float = 0.7
    max_response_tokens: int = 250
    response_timeout_ms: int = 10000
    transcription_mode: str = MODE_REAL

    def __post_init__(self):
        if self.context_window < 0:
            raise ValueError("context_window must be >= 0")
        if self.transcription_mode not in MODES:
            raise ValueError(f"transcription_mode must be one of {MODES}")


@dataclass(frozen=True)
class UserInput:
    text: str
    audio: Optional[AudioPayload] = None
    timestamp: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class AgentTurnRecord:
    """What the tutor said, including the raw JSON replayed into later prompts."""
    text: str
    raw_response: str = ""
    feedback: Optional[str] = None
    corrections: Tuple[str, ...] = ()
    next_prompts: Tuple[str, ...] = ()
    timestamp: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class ConversationExchange:
    user_input: UserInput
    agent_response: AgentTurnRecord


@dataclass
class ConversationContext:
    """
    Learner/lesson metadata and exchange history for one lesson session.

    previous_exchanges is append-only and chronological; grows without bound,
    but only the last AgentConfig.context_window entries are read.
    """
    user_level: UserLevel = UserLevel.BEGINNER
    enrollment_id: Optional[str] = None
    curriculum_id: Optional[str] = None
    lesson_id: Optional[str] = None
    lesson_topic: Optional[str] = None
    focus_area: Optional[str] = None
    previous_exchanges: List[ConversationExchange] = field(default_factory=list)
    user_goals: List[str] = field(default_factory=list)
    cultural_context: Optional[str] = None

    @property
    def last_timestamp(self) -> Optional[datetime]:
        if not self.previous_exchanges:
            return None
        return self.previous_exchanges[-1].agent_response.timestamp

    def recent_exchanges(self, window: int) -> List[ConversationExchange]:
        """Last `window` exchanges, oldest first."""
        if window <= 0:
            return []
        return self.previous_exchanges[-window:]

    def append_exchange(self, exchange: ConversationExchange) -> None:
        """Append an exchange, enforcing non-decreasing timestamps."""
        if exchange.agent_response.timestamp < exchange.user_input.timestamp:
            raise ValueError("Agent response cannot predate the user input it answers")

        last = self.last_timestamp
        if last is not None and exchange.user_input.timestamp < last:
            raise ValueError(
                f"Exchange timestamp {exchange.user_input.timestamp.isoformat()} "
                f"is earlier than the previous exchange ({last.isoformat()})"
            )
        self.previous_exchanges.append(exchange)
