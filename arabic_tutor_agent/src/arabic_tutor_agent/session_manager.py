"""
Context Store for Session Persistence

Keeps one ConversationContext per lesson session. Contexts always live in
memory; when a Supabase client is given, every exchange is also written to the
`conversation_exchanges` table and history is reloaded the first time a
session is seen after a restart.

Persistence is best-effort: database failures are logged and the in-memory
context stays authoritative for the running process. The number of contexts
held in memory is bounded; the least recently used session is evicted first.
"""

import json
import logging
from collections import OrderedDict
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from arabic_tutor_agent.conversation_context import (
    AgentTurnRecord,
    ConversationContext,
    ConversationExchange,
    UserInput,
    UserLevel,
    utc_now,
)

logger = logging.getLogger(__name__)

EXCHANGES_TABLE = "conversation_exchanges"
DEFAULT_MAX_SESSIONS = 1000


def _parse_timestamp(value: Optional[str]) -> datetime:
    if not value:
        return utc_now()
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class ContextStore:
    """
    Session id -> ConversationContext, least recently used first.

    Audio is never persisted; reloaded exchanges carry text only. on_evict is
    called with the session id whenever a context leaves memory, through
    eviction or discard, so per-session state kept elsewhere can go with it.
    """

    def __init__(
        self,
        supabase_client=None,
        max_sessions: int = DEFAULT_MAX_SESSIONS,
        on_evict: Optional[Callable[[str], None]] = None,
    ):
        if max_sessions < 1:
            raise ValueError("max_sessions must be at least 1")
        self.supabase = supabase_client
        self.use_supabase = supabase_client is not None
        self.max_sessions = max_sessions
        self.on_evict = on_evict
        self._contexts: "OrderedDict[str, ConversationContext]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._contexts)

    def exchange_to_row(self, session_id: str, exchange: ConversationExchange) -> Dict[str, Any]:
        """Flatten an exchange into a conversation_exchanges row."""
        agent = exchange.agent_response
        return {
            "session_id": session_id,
            "user_text": exchange.user_input.text,
            "user_timestamp": exchange.user_input.timestamp.isoformat(),
            "agent_text": agent.text,
            "raw_response": agent.raw_response,
            "feedback": agent.feedback,
            "corrections": json.dumps(list(agent.corrections), ensure_ascii=False),
            "next_prompts": json.dumps(list(agent.next_prompts), ensure_ascii=False),
            "agent_timestamp": agent.timestamp.isoformat(),
        }

    def row_to_exchange(self, row: Dict[str, Any]) -> ConversationExchange:
        return ConversationExchange(
            user_input=UserInput(
                text=row.get("user_text") or "",
                timestamp=_parse_timestamp(row.get("user_timestamp")),
            ),
            agent_response=AgentTurnRecord(
                text=row.get("agent_text") or "",
                raw_response=row.get("raw_response") or "",
                feedback=row.get("feedback"),
                corrections=tuple(json.loads(row.get("corrections") or "[]")),
                next_prompts=tuple(json.loads(row.get("next_prompts") or "[]")),
                timestamp=_parse_timestamp(row.get("agent_timestamp")),
            ),
        )

    async def _load_exchanges(self, session_id: str) -> List[ConversationExchange]:
        if not self.use_supabase:
            return []

        try:
            result = self.supabase.table(EXCHANGES_TABLE) \
                .select('*') \
                .eq('session_id', session_id) \
                .order('agent_timestamp', desc=False) \
                .execute()
        except Exception as e:
            logger.warning(f"⚠️ [ContextStore] Could not load history for session {session_id}: {e}")
            return []

        exchanges = []
        for row in result.data or []:
            try:
                exchanges.append(self.row_to_exchange(row))
            except (TypeError, ValueError) as e:
                logger.warning(f"⚠️ [ContextStore] Skipping unreadable exchange row: {e}")

        if exchanges:
            logger.info(f"✅ [ContextStore] Loaded {len(exchanges)} exchanges for session {session_id}")
        return exchanges

    def get(self, session_id: str) -> Optional[ConversationContext]:
        return self._contexts.get(session_id)

    async def get_or_create(
        self,
        session_id: str,
        user_level: UserLevel = UserLevel.BEGINNER,
        enrollment_id: Optional[str] = None,
        curriculum_id: Optional[str] = None,
        lesson_id: Optional[str] = None,
        lesson_topic: Optional[str] = None,
        focus_area: Optional[str] = None,
    ) -> ConversationContext:
        """
        Return the session's context, creating it on first use.

        Lesson metadata is refreshed on every call so a session that moves to
        another lesson keeps its history but prompts with the new lesson.
        """
        context = self._contexts.get(session_id)
        if context is None:
            context = ConversationContext(
                user_level=user_level,
                previous_exchanges=await self._load_exchanges(session_id),
            )
            self._contexts[session_id] = context
            logger.debug(f"🆕 [ContextStore] Created context for session {session_id}")
            self._evict_overflow()
        else:
            self._contexts.move_to_end(session_id)

        context.enrollment_id = enrollment_id or context.enrollment_id
        context.curriculum_id = curriculum_id or context.curriculum_id
        context.lesson_id = lesson_id or context.lesson_id
        if lesson_topic is not None:
            context.lesson_topic = lesson_topic
        if focus_area is not None:
            context.focus_area = focus_area
        return context

    async def save_exchange(self, session_id: str, exchange: ConversationExchange) -> bool:
        """
        Persist one exchange.

        Returns:
            True if written (or nothing to write to), False on database error
        """
        if not self.use_supabase:
            return True

        try:
            self.supabase.table(EXCHANGES_TABLE).insert(self.exchange_to_row(session_id, exchange)).execute()
            return True
        except Exception as e:
            logger.warning(f"⚠️ [ContextStore] Error saving exchange for session {session_id}: {e}")
            return False

    async def discard(self, session_id: str) -> bool:
        """Drop a session's in-memory context (persisted rows are kept)."""
        if self._contexts.pop(session_id, None) is None:
            return False
        logger.debug(f"🗑️ [ContextStore] Discarded context for session {session_id}")
        self._notify_evicted(session_id)
        return True

    def _evict_overflow(self) -> None:
        while len(self._contexts) > self.max_sessions:
            session_id, _ = self._contexts.popitem(last=False)
            logger.info(f"♻️ [ContextStore] Evicted least recently used session {session_id}")
            self._notify_evicted(session_id)

    def _notify_evicted(self, session_id: str) -> None:
        if self.on_evict is not None:
            self.on_evict(session_id)
