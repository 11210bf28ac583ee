"""
End-to-End Tests for the HTTP Backend

Drives the FastAPI app through TestClient. Auth, gateways, curriculum and the
context store are replaced through dependency overrides so no credentials or
network are needed.
"""

import asyncio
import json
import random
from types import SimpleNamespace

import httpx
import pytest
import sys
import os
from fastapi.testclient import TestClient

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "arabic_tutor_agent", "src"))
sys.path.insert(0, os.path.join(project_root, "backend"))

import main
from arabic_tutor_agent.curriculum_service import CurriculumService
from arabic_tutor_agent.errors import TransientServiceError
from arabic_tutor_agent.mock_transcriber import MockTranscriber
from arabic_tutor_agent.session_manager import ContextStore
from arabic_tutor_agent.settings import TutorSettings
from arabic_tutor_agent.transcription_gateway import TranscriptionGateway

TUTOR_REPLY = json.dumps({
    "arabic": "أهلا وسهلا",
    "translation": "Welcome",
    "teaching": [{"type": "explain", "content": "Ahlan wa sahlan is a warm welcome."}],
    "nextPrompts": ["شكرا"],
}, ensure_ascii=False)


class RejectingAuth:
    def get_user(self, token):
        raise RuntimeError("invalid JWT")


class TestBackendApi:
    """Test the HTTP surface."""

    @pytest.fixture
    def supabase(self, make_supabase):
        return make_supabase({
            "user_enrollments": [{"id": "enr-1", "curriculum_id": "c-1"}],
            "lessons": [
                {"id": "l-1", "curriculum_id": "c-1", "order": 1, "title": "Greetings", "objective": "Say hello"},
                {"id": "l-2", "curriculum_id": "c-1", "order": 2, "title": "Family", "objective": "Relatives"},
            ],
        })

    @pytest.fixture
    def chat(self, make_chat_gateway):
        return make_chat_gateway(TUTOR_REPLY)

    @pytest.fixture
    def store(self):
        return ContextStore(on_evict=main._forget_agent)

    @pytest.fixture
    def client(self, supabase, chat, store):
        transcription = TranscriptionGateway(
            mock_transcriber=MockTranscriber(rng=random.Random(3), variants={"مرحبا": ["مرحبا"]})
        )
        overrides = {
            main.get_settings: lambda: TutorSettings(),
            main.get_supabase: lambda: supabase,
            main.get_current_user: lambda: {"id": "user-1", "email": "learner@example.com", "level": "beginner"},
            main.get_chat_gateway: lambda: chat,
            main.get_transcription_gateway: lambda: transcription,
            main.get_curriculum_service: lambda: CurriculumService(supabase),
            main.get_context_store: lambda: store,
        }
        main.app.dependency_overrides.update(overrides)
        main._session_agents.clear()

        yield TestClient(main.app)

        main.app.dependency_overrides.clear()
        main._session_agents.clear()

    def test_health(self, client):
        response = client.get("/")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["openai_configured"] is False
        assert body["supabase_configured"] is False

    # ==================== /api/agent ====================

    def test_agent_turn(self, client, chat):
        response = client.post("/api/agent", data={
            "input": "مرحبا",
            "enrollmentId": "enr-1",
            "lessonId": "l-1",
        })

        assert response.status_code == 200
        body = response.json()
        assert body["response"] == "أهلا وسهلا"
        assert body["teaching"] == [{"type": "explain", "content": "Ahlan wa sahlan is a warm welcome."}]
        assert body["suggestedTopics"][0] == "More about Greetings"
        assert body["nextSteps"] == [{"topic": "Greetings", "difficulty": 1, "type": "lesson"}]
        assert "pronunciationFeedback" not in body
        assert 'The current lesson is "Greetings".' in chat.calls[0]["system_prompt"]

    def test_agent_session_keeps_history(self, client, chat):
        chat.outcomes.append(TUTOR_REPLY)

        client.post("/api/agent", data={"input": "مرحبا", "sessionId": "s-1"})
        client.post("/api/agent", data={"input": "شكرا", "sessionId": "s-1"})

        assert len(chat.calls[1]["history"]) == 3

    def test_agent_with_audio(self, client, chat):
        chat.outcomes[0] = TUTOR_REPLY.replace("أهلا وسهلا", "مرحبا")

        response = client.post(
            "/api/agent",
            data={"input": "مرحبا"},
            files={"audio": ("clip.webm", b"\x1a\x45\xdf\xa3", "audio/webm")},
        )

        assert response.status_code == 200
        assert response.json()["pronunciationFeedback"]["score"] == 0.95

    @pytest.mark.asyncio
    async def test_overlapping_turns_persist_each_exchange_once(self, client, supabase, make_chat_gateway):
        slow_chat = make_chat_gateway(TUTOR_REPLY, TUTOR_REPLY, delay=0.05)
        persistent_store = ContextStore(supabase, on_evict=main._forget_agent)
        main.app.dependency_overrides[main.get_chat_gateway] = lambda: slow_chat
        main.app.dependency_overrides[main.get_context_store] = lambda: persistent_store

        transport = httpx.ASGITransport(app=main.app)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as async_client:
            responses = await asyncio.gather(
                async_client.post("/api/agent", data={"input": "مرحبا", "sessionId": "s"}),
                async_client.post("/api/agent", data={"input": "شكرا", "sessionId": "s"}),
            )

        assert [r.status_code for r in responses] == [200, 200]
        inserts = [w for w in supabase.writes if w["table"] == "conversation_exchanges"]
        assert len(inserts) == 2
        assert sorted(w["payload"]["user_text"] for w in inserts) == ["شكرا", "مرحبا"]
        assert len(persistent_store.get("s").previous_exchanges) == 2

    def test_evicted_session_drops_its_agent(self, client):
        small_store = ContextStore(max_sessions=1, on_evict=main._forget_agent)
        main.app.dependency_overrides[main.get_context_store] = lambda: small_store

        client.post("/api/agent", data={"input": "مرحبا", "sessionId": "a"})
        client.post("/api/agent", data={"input": "مرحبا", "sessionId": "b"})

        assert small_store.get("a") is None
        assert "a" not in main._session_agents
        assert main._session_agents["b"].context is small_store.get("b")

    def test_agent_requires_input(self, client):
        response = client.post("/api/agent", data={"lessonId": "l-1"})

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid input"}

    def test_agent_failure_is_500(self, client, chat):
        chat.outcomes[0] = TransientServiceError("Chat completion failed after 3 attempts: timeout")

        response = client.post("/api/agent", data={"input": "مرحبا"})

        assert response.status_code == 500
        body = response.json()
        assert body["error"] == "Failed to get response from agent"
        assert "failed after 3 attempts" in body["details"]

    def test_agent_requires_auth(self, client):
        del main.app.dependency_overrides[main.get_current_user]

        response = client.post("/api/agent", data={"input": "مرحبا"})

        assert response.status_code == 401

    def test_agent_rejects_bad_token(self, client, supabase):
        del main.app.dependency_overrides[main.get_current_user]
        supabase.auth = RejectingAuth()

        response = client.post(
            "/api/agent",
            data={"input": "مرحبا"},
            headers={"Authorization": "Bearer not-a-token"},
        )

        assert response.status_code == 401

    def test_agent_authenticates_with_supabase(self, client, supabase):
        del main.app.dependency_overrides[main.get_current_user]
        supabase.tables["profiles"] = [{"id": "user-9", "level": "advanced"}]
        supabase.auth = SimpleNamespace(get_user=lambda token: SimpleNamespace(
            user=SimpleNamespace(id="user-9", email="a@example.com")
        ))

        response = client.post(
            "/api/agent",
            data={"input": "مرحبا", "sessionId": "s-9"},
            headers={"Authorization": "Bearer good-token"},
        )

        assert response.status_code == 200
        context = main.app.dependency_overrides[main.get_context_store]().get("s-9")
        assert context.user_level.value == "advanced"

    # ==================== /api/speech ====================

    def test_speech_requires_multipart(self, client):
        response = client.post("/api/speech", json={"expectedText": "مرحبا"})

        assert response.status_code == 400
        assert response.json() == {"error": "Content-Type must be multipart/form-data"}

    def test_speech_mock_transcription(self, client):
        response = client.post(
            "/api/speech",
            data={"expectedText": "مرحبا"},
            files={"audio": ("clip.webm", b"\x00" * 64, "audio/webm")},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        data = body["data"]
        assert data["transcribed_text"] == "مرحبا"
        assert data["expected_text"] == "مرحبا"
        assert data["pronunciation_score"] == 0.95
        assert data["feedback"] == "Excellent pronunciation! 🎉"
        assert data["mode"] == "mock"
        assert 0.85 <= data["confidence"] < 0.95
        assert data["phoneme_analysis"] == {"total_phonemes": 5, "correct_phonemes": 5, "problem_areas": []}

    def test_speech_missing_audio(self, client):
        response = client.post(
            "/api/speech",
            data={"expectedText": "مرحبا"},
            files={"attachment": ("notes.txt", b"notes", "text/plain")},
        )

        assert response.status_code == 400
        assert response.json()["code"] == "audio_missing"

    def test_speech_audio_not_a_file(self, client):
        response = client.post(
            "/api/speech",
            data={"audio": "just text"},
            files={"attachment": ("notes.txt", b"notes", "text/plain")},
        )

        assert response.status_code == 400
        assert response.json()["code"] == "audio_invalid"

    def test_speech_unsupported_type(self, client):
        response = client.post(
            "/api/speech",
            files={"audio": ("clip.mp4", b"\x00" * 8, "video/mp4")},
        )

        assert response.status_code == 415
        assert response.json()["error"] == "Unsupported audio mime type: video/mp4"

    def test_speech_too_large(self, client):
        response = client.post(
            "/api/speech",
            files={"audio": ("clip.wav", b"\x00" * (5 * 1024 * 1024 + 1), "audio/wav")},
        )

        assert response.status_code == 413

    def test_speech_real_mode_not_configured(self, client):
        response = client.post(
            "/api/speech",
            data={"expectedText": "مرحبا", "mode": "real"},
            files={"audio": ("clip.webm", b"\x00" * 8, "audio/webm")},
        )

        assert response.status_code == 501
        assert response.json()["code"] == "not_configured"

    # ==================== /api/progress/complete-lesson ====================

    def test_complete_lesson(self, client, supabase):
        response = client.post(
            "/api/progress/complete-lesson",
            json={"lessonId": "l-1", "enrollmentId": "enr-1"},
        )

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Lesson marked as complete."}
        assert supabase.writes[0]["on_conflict"] == "enrollment_id,lesson_id"

    def test_complete_lesson_releases_lesson_session(self, client, store, chat):
        chat.outcomes.append(TUTOR_REPLY)
        client.post("/api/agent", data={"input": "مرحبا", "lessonId": "l-1"})
        client.post("/api/agent", data={"input": "مرحبا", "lessonId": "l-2"})
        assert "user-1:l-1" in main._session_agents

        response = client.post(
            "/api/progress/complete-lesson",
            json={"lessonId": "l-1", "enrollmentId": "enr-1"},
        )

        assert response.status_code == 200
        assert store.get("user-1:l-1") is None
        assert "user-1:l-1" not in main._session_agents
        assert store.get("user-1:l-2") is not None
        assert "user-1:l-2" in main._session_agents

    def test_complete_lesson_releases_named_session(self, client, store):
        client.post("/api/agent", data={"input": "مرحبا", "sessionId": "custom"})

        client.post(
            "/api/progress/complete-lesson",
            json={"lessonId": "l-1", "enrollmentId": "enr-1", "sessionId": "custom"},
        )

        assert store.get("custom") is None
        assert "custom" not in main._session_agents

    def test_complete_lesson_requires_ids(self, client):
        response = client.post("/api/progress/complete-lesson", json={"lessonId": "l-1"})

        assert response.status_code == 400
        assert response.json() == {"error": "Missing lessonId or enrollmentId"}

    def test_complete_lesson_database_error(self, client, supabase):
        supabase.failing_tables.add("user_lesson_progress")

        response = client.post(
            "/api/progress/complete-lesson",
            json={"lessonId": "l-1", "enrollmentId": "enr-1"},
        )

        assert response.status_code == 500
        assert response.json()["error"] == "Failed to complete lesson"

    # ==================== /api/demo ====================

    def test_demo_greeting(self, client):
        response = client.post("/api/demo", data={"transcript": "مرحبا"})

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "reply": "أهلًا! كيف يمكنني مساعدتك اليوم؟ هل تريد ممارسة محادثة بسيطة؟",
        }

    def test_demo_empty(self, client):
        response = client.post("/api/demo", data={})
        assert response.json()["reply"].startswith("مرحبًا!")
