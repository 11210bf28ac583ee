"""
Arabic Tutor Agent - conversation orchestration

One turn of a lesson conversation:
1. Build the system prompt from config + context
2. Replay the last `context_window` exchanges (raw assistant JSON included)
3. Ask the chat gateway for a structured reply
4. For audio turns: transcribe against the reply's Arabic text, score it, and
   ask for corrections unless the learner said it exactly
5. Record the exchange in the context
6. Suggest topics and the next curriculum lesson

Any failure in steps 1-4 turns into a safe fallback response; the context is
left untouched so the session can continue with the next turn.
"""

import asyncio
import dataclasses
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from arabic_tutor_agent.agent_response import (
    AgentResponse,
    CorrectionsReply,
    NextStep,
    PronunciationFeedback,
    TeachingAction,
    TutorReply,
)
from arabic_tutor_agent.chat_gateway import ChatCompletionGateway, parse_json_object
from arabic_tutor_agent.conversation_context import (
    AgentConfig,
    AgentTurnRecord,
    ConversationContext,
    ConversationExchange,
    UserInput,
    utc_now,
)
from arabic_tutor_agent.curriculum_service import CurriculumProvider
from arabic_tutor_agent.errors import ConfigurationError, TutorError
from arabic_tutor_agent.pronunciation import PronunciationScorer
from arabic_tutor_agent.transcription_gateway import TranscriptionGateway

logger = logging.getLogger(__name__)

ERROR_RESPONSE = "عفواً، حدث خطأ. (Sorry, an error occurred.)"
ERROR_TEACHING = "There was an error processing your input. Please try again."

PERFECT_PRONUNCIATION_TIP = "Excellent pronunciation! Perfect. 🎉"
AUDIO_UNAVAILABLE_TIP = "Could not analyze audio."
CORRECTIONS_TEMPERATURE = 0.5

GENERIC_TOPICS = ["Greetings", "Family", "Food", "Travel"]


class TurnState(Enum):
    """Per-turn progress; the agent holds no state across turns besides the context."""
    IDLE = "idle"
    PROMPT_BUILT = "prompt_built"
    AWAITING_CHAT_COMPLETION = "awaiting_chat_completion"
    AWAITING_TRANSCRIPTION = "awaiting_transcription"
    AWAITING_SCORE_FEEDBACK = "awaiting_score_feedback"
    CONTEXT_UPDATED = "context_updated"
    RESPONDED = "responded"
    FAILED = "failed"


class TutorAgent:
    """
    Orchestrates tutoring turns for a single session.

    Gateways, scorer and curriculum provider are injected; the agent owns its
    ConversationContext exclusively and serializes turns on it.
    """

    def __init__(
        self,
        config: AgentConfig,
        context: ConversationContext,
        chat_gateway: ChatCompletionGateway,
        transcription_gateway: Optional[TranscriptionGateway] = None,
        scorer: Optional[PronunciationScorer] = None,
        curriculum: Optional[CurriculumProvider] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._config = config
        self._context = context
        self.chat_gateway = chat_gateway
        self.transcription_gateway = transcription_gateway
        self.scorer = scorer or PronunciationScorer()
        self.curriculum = curriculum
        self._clock = clock
        self._turn_lock = asyncio.Lock()
        self.last_turn_state = TurnState.IDLE

    @property
    def config(self) -> AgentConfig:
        return self._config

    @property
    def context(self) -> ConversationContext:
        return self._context

    def _transition(self, state: TurnState) -> None:
        logger.debug(f"🔄 [TutorAgent] {self.last_turn_state.value} → {state.value}")
        self.last_turn_state = state

    # ==================== Prompt assembly ====================

    def build_system_prompt(self) -> str:
        personality = self._config.personality
        context = self._context

        return f"""You are an Arabic language {personality.role.value}, teaching with a {personality.teaching_style.value} style.
Your traits: {', '.join(personality.traits)}.
The student's level is: {context.user_level.value}.
The current lesson is "{context.lesson_topic or 'General Conversation'}".
The learning objective for this lesson is: "{context.focus_area or 'Practice speaking freely'}".

Your responses should:
1. Be culturally appropriate and engaging
2. Use Modern Standard Arabic (MSA) unless specifically teaching dialects
3. Include transliteration when introducing new words
4. Provide gentle corrections for mistakes
5. Maintain conversation flow while teaching
6. Adapt to the student's level and progress

Respond in this JSON structure:
{{
  "arabic": "Arabic response",
  "translation": "English translation",
  "teaching": [{{
    "type": "explain|correct|encourage|challenge|suggest",
    "content": "Teaching point"
  }}],
  "nextPrompts": ["Suggested responses for student"]
}}"""

    def prepare_history(self) -> List[Dict[str, str]]:
        """
        Flatten the windowed exchanges into chat messages, oldest first.

        The assistant side replays the raw JSON the model produced so it keeps
        seeing its own structured output.
        """
        messages = []
        for exchange in self._context.recent_exchanges(self._config.context_window):
            messages.append({"role": "user", "content": exchange.user_input.text})
            messages.append({"role": "assistant", "content": exchange.agent_response.raw_response or ""})
        return messages

    # ==================== Turn processing ====================

    async def process_turn(self, text: str, audio: Any = None) -> AgentResponse:
        """
        Process one learner turn.

        Args:
            text: What the learner typed (or said, as text)
            audio: Optional AudioPayload with the learner's recording

        Returns:
            AgentResponse; never raises for pipeline failures
        """
        response, _ = await self.process_turn_with_exchange(text, audio)
        return response

    async def process_turn_with_exchange(
        self, text: str, audio: Any = None
    ) -> Tuple[AgentResponse, Optional[ConversationExchange]]:
        """
        Process one learner turn and hand back the exchange it recorded.

        The exchange is captured under the turn lock, so callers persisting
        history see exactly this turn's exchange even when turns overlap.
        It is None when the turn failed and the context was left unchanged.
        """
        async with self._turn_lock:
            self.last_turn_state = TurnState.IDLE
            try:
                return await self._run_turn(text, audio)
            except Exception as e:
                self._transition(TurnState.FAILED)
                logger.error(f"❌ [TutorAgent] Turn failed: {type(e).__name__}: {e}", exc_info=not isinstance(e, TutorError))
                fallback = AgentResponse(
                    response=ERROR_RESPONSE,
                    teaching=[TeachingAction(type="explain", content=ERROR_TEACHING)],
                    error=str(e) or type(e).__name__,
                )
                return fallback, None

    async def _run_turn(self, text: str, audio: Any) -> Tuple[AgentResponse, ConversationExchange]:
        user_timestamp = self._next_timestamp()

        system_prompt = self.build_system_prompt()
        history = self.prepare_history()
        self._transition(TurnState.PROMPT_BUILT)

        self._transition(TurnState.AWAITING_CHAT_COMPLETION)
        reply, raw_reply = await self._call_tutor(system_prompt, history, text)
        logger.info(f"🤖 [TutorAgent] Reply received ({len(reply.teaching)} teaching actions, {len(history) // 2} exchanges replayed)")

        pronunciation_feedback = None
        if audio is not None:
            pronunciation_feedback = await self.analyze_pronunciation(audio, reply.arabic)

        exchange = self._record_exchange(text, audio, reply, raw_reply, pronunciation_feedback, user_timestamp)
        self._transition(TurnState.CONTEXT_UPDATED)

        response = AgentResponse(
            response=reply.arabic,
            teaching=reply.teaching,
            suggested_topics=self.suggest_topics(),
            pronunciation_feedback=pronunciation_feedback,
            next_steps=await self.determine_next_steps(),
        )
        self._transition(TurnState.RESPONDED)
        return response, exchange

    async def _call_tutor(
        self,
        system_prompt: str,
        history: List[Dict[str, str]],
        user_input: str,
    ) -> Tuple[TutorReply, str]:
        """Returns the validated reply and the raw JSON string kept for history."""
        messages = [*history, {"role": "user", "content": user_input}]
        raw = await self.chat_gateway.complete(
            system_prompt,
            messages,
            temperature=self._config.temperature,
            max_tokens=self._config.max_response_tokens,
            timeout_ms=self._config.response_timeout_ms,
        )
        return TutorReply.from_payload(parse_json_object(raw)), raw

    async def analyze_pronunciation(self, audio: Any, expected_text: str) -> PronunciationFeedback:
        """
        Transcribe the learner's audio and score it against expected_text.

        Transcription problems degrade to a zero score with a tip; a failing
        corrections call propagates and fails the turn.
        """
        self._transition(TurnState.AWAITING_TRANSCRIPTION)
        try:
            if self.transcription_gateway is None:
                raise ConfigurationError("No transcription gateway configured")
            transcription = await self.transcription_gateway.transcribe(
                audio, expected_text, mode=self._config.transcription_mode
            )
        except TutorError as e:
            logger.warning(f"⚠️ [TutorAgent] Could not analyze audio ({e.code}): {e.message}")
            return PronunciationFeedback(score=0.0, corrections=[], tips=[AUDIO_UNAVAILABLE_TIP])

        transcribed = transcription.transcribed_text
        score = self.scorer.score(transcribed, expected_text)
        logger.info(f"🎯 [TutorAgent] Pronunciation score {score:.2f} ({transcription.mode} transcription)")

        if transcribed == expected_text:
            return PronunciationFeedback(score=score, corrections=[], tips=[PERFECT_PRONUNCIATION_TIP])

        self._transition(TurnState.AWAITING_SCORE_FEEDBACK)
        coach_prompt = (
            f'As an Arabic pronunciation coach, a student was asked to say: "{expected_text}". '
            f'They actually said: "{transcribed}". Provide short, actionable feedback. '
            f'Identify the main error and give a tip to fix it. Respond in JSON like this: '
            f'{{ "corrections": ["\'said\' -> \'expected\'"], "tips": ["Your tip here."] }}'
        )
        raw = await self.chat_gateway.complete(
            coach_prompt,
            [],
            temperature=CORRECTIONS_TEMPERATURE,
            timeout_ms=self._config.response_timeout_ms,
        )
        coaching = CorrectionsReply.from_payload(parse_json_object(raw))
        return PronunciationFeedback(score=score, corrections=coaching.corrections, tips=coaching.tips)

    def _next_timestamp(self) -> datetime:
        """Current time, never earlier than the last recorded exchange."""
        now = self._clock()
        last = self._context.last_timestamp
        if last is not None and now < last:
            return last
        return now

    def _record_exchange(
        self,
        text: str,
        audio: Any,
        reply: TutorReply,
        raw_reply: str,
        pronunciation_feedback: Optional[PronunciationFeedback],
        user_timestamp: datetime,
    ) -> ConversationExchange:
        agent_timestamp = max(self._clock(), user_timestamp)
        exchange = ConversationExchange(
            user_input=UserInput(text=text, audio=audio, timestamp=user_timestamp),
            agent_response=AgentTurnRecord(
                text=reply.arabic,
                raw_response=raw_reply,
                feedback=reply.teaching[0].content if reply.teaching else None,
                corrections=tuple(pronunciation_feedback.corrections) if pronunciation_feedback else (),
                next_prompts=tuple(reply.next_prompts),
                timestamp=agent_timestamp,
            ),
        )
        self._context.append_exchange(exchange)
        return exchange

    # ==================== Suggestions ====================

    def suggest_topics(self) -> List[str]:
        topic = self._context.lesson_topic
        if topic:
            return [f"More about {topic}", "Review previous lesson", "Practice a different topic"]
        return list(GENERIC_TOPICS)

    async def determine_next_steps(self) -> List[NextStep]:
        """Point at the next uncompleted lesson; lookup failures yield []."""
        enrollment_id = self._context.enrollment_id
        if not enrollment_id or self.curriculum is None:
            return []

        try:
            next_lesson = await self.curriculum.get_next_lesson(enrollment_id)
        except Exception as e:
            logger.warning(f"⚠️ [TutorAgent] Next lesson lookup failed, continuing without next steps: {e}")
            return []

        if next_lesson is None:
            return []
        return [NextStep(topic=next_lesson.title, difficulty=1, type="lesson")]

    # ==================== Reconfiguration ====================

    def update_config(self, **changes) -> AgentConfig:
        """Replace config fields (validated like a fresh AgentConfig)."""
        self._config = dataclasses.replace(self._config, **changes)
        return self._config

    def update_context(self, **changes) -> ConversationContext:
        """Update context fields in place so the session keeps the same object."""
        field_names = {f.name for f in dataclasses.fields(self._context)}
        unknown = set(changes) - field_names
        if unknown:
            raise TypeError(f"Unknown context fields: {', '.join(sorted(unknown))}")
        for name, value in changes.items():
            setattr(self._context, name, value)
        return self._context
