"""
Unit Tests for Conversation Context and Agent Config
"""

from datetime import datetime, timedelta, timezone

import pytest
import sys
import os

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "arabic_tutor_agent", "src"))

from arabic_tutor_agent.conversation_context import (
    AgentConfig,
    AgentTurnRecord,
    ConversationContext,
    ConversationExchange,
    UserInput,
    UserLevel,
)

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def exchange(n: int, user_at: datetime = None, agent_at: datetime = None) -> ConversationExchange:
    user_at = user_at or T0 + timedelta(minutes=n)
    agent_at = agent_at or user_at + timedelta(seconds=2)
    return ConversationExchange(
        user_input=UserInput(text=f"user {n}", timestamp=user_at),
        agent_response=AgentTurnRecord(text=f"agent {n}", raw_response=f'{{"n": {n}}}', timestamp=agent_at),
    )


class TestConversationContext:

    def test_defaults(self):
        context = ConversationContext()

        assert context.user_level == UserLevel.BEGINNER
        assert context.previous_exchanges == []
        assert context.last_timestamp is None

    def test_recent_exchanges_window(self):
        context = ConversationContext()
        for n in range(7):
            context.append_exchange(exchange(n))

        recent = context.recent_exchanges(5)
        assert [e.user_input.text for e in recent] == [f"user {n}" for n in range(2, 7)]

    def test_window_larger_than_history(self):
        context = ConversationContext(previous_exchanges=[exchange(0), exchange(1)])
        assert len(context.recent_exchanges(5)) == 2

    def test_zero_window(self):
        context = ConversationContext(previous_exchanges=[exchange(0)])
        assert context.recent_exchanges(0) == []

    def test_last_timestamp_is_latest_agent_time(self):
        context = ConversationContext()
        context.append_exchange(exchange(0))
        assert context.last_timestamp == T0 + timedelta(seconds=2)

    def test_rejects_exchange_older_than_history(self):
        context = ConversationContext()
        context.append_exchange(exchange(5))

        with pytest.raises(ValueError):
            context.append_exchange(exchange(1))
        assert len(context.previous_exchanges) == 1

    def test_rejects_agent_reply_before_user_input(self):
        context = ConversationContext()
        with pytest.raises(ValueError):
            context.append_exchange(exchange(0, user_at=T0, agent_at=T0 - timedelta(seconds=1)))

    def test_equal_timestamps_are_allowed(self):
        context = ConversationContext()
        context.append_exchange(exchange(0, user_at=T0, agent_at=T0))
        context.append_exchange(exchange(1, user_at=T0, agent_at=T0))
        assert len(context.previous_exchanges) == 2


class TestAgentConfig:

    def test_defaults(self):
        config = AgentConfig()

        assert config.personality.role.value == "conversationPartner"
        assert config.personality.teaching_style.value == "encouraging"
        assert config.personality.traits == ("patient", "clear")
        assert config.context_window == 5
        assert config.temperature == 0.7
        assert config.max_response_tokens == 250
        assert config.response_timeout_ms == 10000

    def test_negative_window_rejected(self):
        with pytest.raises(ValueError):
            AgentConfig(context_window=-1)

    def test_unknown_transcription_mode_rejected(self):
        with pytest.raises(ValueError):
            AgentConfig(transcription_mode="cloud")


class TestUserLevel:

    @pytest.mark.parametrize("raw, expected", [
        ("beginner", UserLevel.BEGINNER),
        ("Intermediate", UserLevel.INTERMEDIATE),
        (" advanced ", UserLevel.ADVANCED),
        (None, UserLevel.BEGINNER),
        ("expert", UserLevel.BEGINNER),
    ])
    def test_parse(self, raw, expected):
        assert UserLevel.parse(raw) == expected

    def test_parse_with_default(self):
        assert UserLevel.parse("unknown", default=UserLevel.ADVANCED) == UserLevel.ADVANCED
