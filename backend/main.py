"""
FastAPI Backend for the Arabic Tutor Agent

Provides REST API endpoints for:
- Tutoring turns (text + optional audio) with Supabase auth
- Standalone pronunciation checks (mock or real transcription)
- Lesson completion tracking
- A credential-free demo conversation
"""

import logging
import os
import signal
import sys
import time
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.datastructures import UploadFile

# Add the arabic_tutor_agent package to Python path
backend_dir = os.path.dirname(os.path.abspath(__file__))
project_root = os.path.dirname(backend_dir)
package_src = os.path.join(project_root, 'arabic_tutor_agent', 'src')
if os.path.exists(package_src) and package_src not in sys.path:
    sys.path.insert(0, package_src)

from lib.logger import setup_logging, get_logger
from lib.supabase_client import get_supabase_client
from lib.auth import authenticate

from arabic_tutor_agent.chat_gateway import ChatCompletionGateway
from arabic_tutor_agent.conversation_context import AgentConfig, AgentPersonality, UserLevel
from arabic_tutor_agent.curriculum_service import CurriculumService
from arabic_tutor_agent.demo_responder import demo_reply
from arabic_tutor_agent.errors import TutorError
from arabic_tutor_agent.pronunciation import PronunciationScorer
from arabic_tutor_agent.session_manager import ContextStore
from arabic_tutor_agent.settings import TutorSettings
from arabic_tutor_agent.transcription_gateway import (
    MODE_MOCK,
    MODE_REAL,
    AudioPayload,
    TranscriptionGateway,
)
from arabic_tutor_agent.tutor_agent import TutorAgent

setup_logging(level=logging.INFO, use_colors=True)

logger = get_logger("backend.main")
agent_logger = get_logger("backend.agent")
speech_logger = get_logger("backend.speech")
progress_logger = get_logger("backend.progress")

# ==================== Dependencies ====================
# Lazily built singletons; tests replace them through app.dependency_overrides.

_settings: Optional[TutorSettings] = None
_chat_gateway: Optional[ChatCompletionGateway] = None
_transcription_gateway: Optional[TranscriptionGateway] = None
_context_store: Optional[ContextStore] = None
_session_agents: Dict[str, TutorAgent] = {}

_scorer = PronunciationScorer()


def get_settings() -> TutorSettings:
    global _settings
    if _settings is None:
        _settings = TutorSettings.from_env()
    return _settings


def get_supabase(settings: TutorSettings = Depends(get_settings)):
    return get_supabase_client(settings)


def get_chat_gateway(settings: TutorSettings = Depends(get_settings)) -> ChatCompletionGateway:
    global _chat_gateway
    if _chat_gateway is None:
        _chat_gateway = ChatCompletionGateway.from_settings(settings)
    return _chat_gateway


def get_transcription_gateway(settings: TutorSettings = Depends(get_settings)) -> TranscriptionGateway:
    global _transcription_gateway
    if _transcription_gateway is None:
        _transcription_gateway = TranscriptionGateway.from_settings(settings)
    return _transcription_gateway


def get_curriculum_service(supabase=Depends(get_supabase)) -> CurriculumService:
    return CurriculumService(supabase)


def get_context_store(settings: TutorSettings = Depends(get_settings)) -> ContextStore:
    global _context_store
    if _context_store is None:
        supabase = get_supabase_client(settings) if settings.supabase_configured else None
        _context_store = ContextStore(
            supabase_client=supabase,
            max_sessions=settings.max_active_sessions,
            on_evict=_forget_agent,
        )
    return _context_store


def get_current_user(
    authorization: Optional[str] = Header(None),
    supabase=Depends(get_supabase),
) -> dict:
    return authenticate(supabase, authorization)


# ==================== App ====================

app = FastAPI(
    title="Arabic Tutor Agent API",
    description="REST API for the AI Arabic conversation tutor",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(TutorError)
async def tutor_error_handler(request: Request, exc: TutorError):
    logger.warning(f"{request.method} {request.url.path} failed", data={
        "status": exc.status_code,
        "code": exc.code,
        "error": exc.message,
    })
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(HTTPException)
async def http_error_handler(request: Request, exc: HTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


def _form_text(form, name: str) -> Optional[str]:
    value = form.get(name)
    return value if isinstance(value, str) and value else None


async def _audio_payload(value: Any) -> Any:
    """Turn an uploaded file into an AudioPayload; anything else passes through."""
    if isinstance(value, UploadFile):
        return AudioPayload(
            data=await value.read(),
            mime_type=value.content_type or "",
            filename=value.filename or "recording.webm",
        )
    return value


def _forget_agent(session_id: str) -> None:
    """Drop the cached agent of a session whose context left the store."""
    if _session_agents.pop(session_id, None) is not None:
        agent_logger.debug("Dropped session agent", data={"session_id": session_id})


def _build_agent(
    session_id: str,
    context,
    chat_gateway: ChatCompletionGateway,
    transcription_gateway: TranscriptionGateway,
    curriculum: CurriculumService,
) -> TutorAgent:
    agent = _session_agents.get(session_id)
    if agent is not None and agent.context is context:
        return agent

    config = AgentConfig(
        personality=AgentPersonality(),
        context_window=5,
        temperature=0.7,
        max_response_tokens=250,
        response_timeout_ms=10000,
        transcription_mode=MODE_REAL if transcription_gateway.real_configured else MODE_MOCK,
    )
    agent = TutorAgent(
        config,
        context,
        chat_gateway,
        transcription_gateway=transcription_gateway,
        scorer=_scorer,
        curriculum=curriculum,
    )
    _session_agents[session_id] = agent
    return agent


# ==================== API Endpoints ====================

@app.get("/")
async def root(settings: TutorSettings = Depends(get_settings)):
    """Health check endpoint."""
    return {
        "status": "ok",
        "service": "Arabic Tutor Agent API",
        "version": "1.0.0",
        "openai_configured": bool(settings.openai_api_key),
        "supabase_configured": settings.supabase_configured,
    }


@app.post("/api/agent")
async def agent_turn(
    request: Request,
    user: dict = Depends(get_current_user),
    chat_gateway: ChatCompletionGateway = Depends(get_chat_gateway),
    transcription_gateway: TranscriptionGateway = Depends(get_transcription_gateway),
    curriculum: CurriculumService = Depends(get_curriculum_service),
    store: ContextStore = Depends(get_context_store),
):
    """
    Run one tutoring turn.

    Form fields: input (required), audio (optional file), enrollmentId,
    lessonId, sessionId. Requires authentication.
    """
    start_time = time.time()
    form = await request.form()

    user_input = form.get("input")
    if not isinstance(user_input, str):
        return JSONResponse(status_code=400, content={"error": "Invalid input"})

    enrollment_id = _form_text(form, "enrollmentId")
    lesson_id = _form_text(form, "lessonId")
    session_id = _form_text(form, "sessionId") or f"{user['id']}:{lesson_id or 'free'}"

    # Non-file audio values are ignored for tutoring turns
    audio = form.get("audio")
    audio = await _audio_payload(audio) if isinstance(audio, UploadFile) else None

    agent_logger.request("POST", "/api/agent", user_id=user["id"], data={
        "session_id": session_id,
        "lesson_id": lesson_id,
        "input_length": len(user_input),
        "has_audio": audio is not None,
    })

    lesson = await curriculum.get_lesson(lesson_id) if lesson_id else None
    if lesson_id and lesson is None:
        agent_logger.warning(f"Could not fetch lesson {lesson_id}, continuing without lesson context")

    context = await store.get_or_create(
        session_id,
        user_level=UserLevel.parse(user.get("level")),
        enrollment_id=enrollment_id,
        curriculum_id=lesson.curriculum_id if lesson else None,
        lesson_id=lesson_id,
        lesson_topic=lesson.title if lesson else None,
        focus_area=lesson.objective if lesson else None,
    )

    agent = _build_agent(session_id, context, chat_gateway, transcription_gateway, curriculum)
    response, exchange = await agent.process_turn_with_exchange(user_input, audio)

    if response.error:
        agent_logger.error("Agent turn failed", data={"session_id": session_id, "error": response.error})
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to get response from agent", "details": response.error},
        )

    saved = await store.save_exchange(session_id, exchange)
    agent_logger.debug("Turn recorded", data={
        "session_id": session_id,
        "exchanges": len(context.previous_exchanges),
        "persisted": saved,
    })

    agent_logger.response(200, "/api/agent", duration=time.time() - start_time, data={
        "session_id": session_id,
        "teaching_actions": len(response.teaching),
        "pronunciation_score": response.pronunciation_feedback.score if response.pronunciation_feedback else None,
    })
    return response.to_payload()


@app.post("/api/speech")
async def speech_check(
    request: Request,
    transcription_gateway: TranscriptionGateway = Depends(get_transcription_gateway),
):
    """
    Transcribe an uploaded clip and score it against the expected phrase.

    Multipart fields: audio (file), expectedText, mode ("mock" | "real").
    """
    content_type = request.headers.get("content-type", "")
    if "multipart/form-data" not in content_type:
        return JSONResponse(status_code=400, content={"error": "Content-Type must be multipart/form-data"})

    form = await request.form()
    audio = await _audio_payload(form.get("audio"))
    expected_text = form.get("expectedText")
    expected_text = expected_text if isinstance(expected_text, str) else ""
    mode = form.get("mode")
    mode = mode if isinstance(mode, str) and mode else MODE_MOCK

    result = await transcription_gateway.transcribe(audio, expected_text, mode=mode)

    score = _scorer.score(result.transcribed_text, expected_text)
    phonemes = result.phonemes or _scorer.phoneme_analysis(expected_text, result.transcribed_text)

    speech_logger.info(f"Scored {result.mode} transcription", data={
        "expected": expected_text,
        "transcribed": result.transcribed_text,
        "score": f"{score:.2f}",
    })

    return {
        "success": True,
        "data": {
            "transcribed_text": result.transcribed_text,
            "expected_text": expected_text,
            "pronunciation_score": score,
            "confidence": result.confidence,
            "feedback": _scorer.feedback(score),
            "phoneme_analysis": phonemes.to_dict(),
            "mode": result.mode,
        },
    }


@app.post("/api/progress/complete-lesson")
async def complete_lesson(
    request: Request,
    user: dict = Depends(get_current_user),
    curriculum: CurriculumService = Depends(get_curriculum_service),
    store: ContextStore = Depends(get_context_store),
):
    """
    Mark a lesson as completed for an enrollment. Requires authentication.

    The lesson's conversation session ends here: its in-memory context and
    agent are released. JSON body: lessonId, enrollmentId, optional sessionId.
    """
    try:
        body = await request.json()
    except ValueError:
        body = None

    if not isinstance(body, dict):
        body = {}
    lesson_id = body.get("lessonId")
    enrollment_id = body.get("enrollmentId")
    if not lesson_id or not enrollment_id:
        return JSONResponse(status_code=400, content={"error": "Missing lessonId or enrollmentId"})

    try:
        await curriculum.complete_lesson(enrollment_id, lesson_id)
    except Exception as e:
        progress_logger.error("Error completing lesson", error=e, data={
            "user_id": user["id"],
            "lesson_id": lesson_id,
        })
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to complete lesson", "details": str(e)},
        )

    session_id = body.get("sessionId") or f"{user['id']}:{lesson_id}"
    if await store.discard(session_id):
        progress_logger.debug("Released lesson session", data={"session_id": session_id})

    progress_logger.success("Lesson completed", data={"lesson_id": lesson_id, "enrollment_id": enrollment_id})
    return {"success": True, "message": "Lesson marked as complete."}


@app.post("/api/demo")
async def demo(request: Request):
    """Keyword-based demo conversation; no credentials needed."""
    form = await request.form()
    transcript = form.get("transcript")
    reply = demo_reply(transcript if isinstance(transcript, str) else "")
    return {"success": True, "reply": reply}


if __name__ == "__main__":
    import uvicorn

    def handle_exit(*args):
        """Handle graceful shutdown."""
        logger.section("SERVER SHUTDOWN", {"reason": "signal received"})
        sys.exit(0)

    signal.signal(signal.SIGINT, handle_exit)
    signal.signal(signal.SIGTERM, handle_exit)

    try:
        uvicorn.run(app, host="0.0.0.0", port=8000)
    except KeyboardInterrupt:
        logger.info("🛑 Server stopped.")
        sys.exit(0)
