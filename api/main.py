"""
=====================================================
AI Phone Receptionist - Main FastAPI Application
=====================================================
Twilio voice and status webhooks. `create_app` is the composition root:
it owns the call-state store and wires the orchestrator's collaborators.
"""

import secrets
import sys
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from loguru import logger

from config.settings import Settings, get_settings
from services.calls.postgres_records import PostgresCallRecordStore
from services.conversation.call_state import CallStateStore
from services.conversation.orchestrator import StatusEvent, TurnOrchestrator, VoiceEvent
from services.database import close_db_pool
from services.llm.openai_service import create_openai_llm
from services.llm.turn_service import TurnService
from services.reporting.error_reporter import capture_exception, init_error_reporting
from services.security import validate_twilio_signature


XML_MEDIA_TYPE = "application/xml"


def configure_logging(settings: Settings) -> None:
    """Replace loguru's default sink with the configured ones"""
    logger.remove()
    logger.add(sys.stderr, level=settings.log_level, serialize=settings.log_json)
    if settings.log_file:
        logger.add(
            settings.log_file,
            rotation="500 MB",
            level=settings.log_level,
            backtrace=True,
            diagnose=False,
        )


def build_orchestrator(settings: Settings) -> TurnOrchestrator:
    """Wire the orchestrator from settings"""
    llm = create_openai_llm(settings.model_dump())
    turn_service = TurnService(
        llm,
        temperature=settings.openai_temperature,
        max_tokens=settings.openai_max_tokens,
        turn_timeout=settings.turn_timeout_seconds,
        max_tool_rounds=settings.max_tool_rounds,
        default_timezone=settings.default_timezone,
    )

    records = None
    if settings.persistence_enabled:
        records = PostgresCallRecordStore()
    else:
        logger.warning("DATABASE_URL not set, call persistence disabled")

    return TurnOrchestrator(
        store=CallStateStore(),
        turn_service=turn_service,
        settings=settings,
        records=records,
    )


def _parse_duration(value) -> Optional[int]:
    try:
        return int(value) if value not in (None, "") else None
    except (TypeError, ValueError):
        logger.warning(f"Ignoring invalid CallDuration {value!r}")
        return None


def create_app(
    settings: Optional[Settings] = None,
    orchestrator: Optional[TurnOrchestrator] = None,
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        settings: Settings (defaults to environment)
        orchestrator: Pre-built orchestrator (tests inject fakes here)
    """
    settings = settings or get_settings()
    orchestrator = orchestrator or build_orchestrator(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan management"""
        logger.info("AI Phone Receptionist starting up...")
        logger.info(f"Voice webhook: {settings.voice_url}")
        logger.info(f"Status callback: {settings.status_url}")
        yield
        logger.info("AI Phone Receptionist shutting down...")
        await orchestrator.drain()
        await orchestrator.turn_service.llm.close()
        if settings.persistence_enabled:
            await close_db_pool()

    app = FastAPI(
        title="AI Phone Receptionist",
        description="Twilio voice receptionist driven by a language model",
        version=settings.app_version,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.orchestrator = orchestrator

    # =====================================================
    # HEALTH CHECK
    # =====================================================

    @app.get("/", response_class=PlainTextResponse)
    async def root():
        """Confirm the server is running (browser or health check)"""
        return (
            "AI phone assistant is running.\n"
            f"Voice webhook: {settings.voice_url}\n"
            f"Status callback: {settings.status_url}"
        )

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "ai-phone-receptionist",
            "version": settings.app_version,
            "environment": settings.environment,
            "active_calls": len(orchestrator.store),
        }

    # =====================================================
    # TWILIO WEBHOOKS
    # =====================================================

    @app.post("/twilio/voice")
    async def voice_webhook(request: Request, _: bool = Depends(validate_twilio_signature)):
        """
        Handle one speech turn (or silence) for a call.
        Always returns TwiML, even when the turn fails.
        """
        form = await request.form()
        event = VoiceEvent(
            call_sid=str(form.get("CallSid", "")),
            to_number=str(form.get("To", "")),
            from_number=str(form.get("From", "")),
            speech=str(form.get("SpeechResult", "") or ""),
        )

        with logger.contextualize(request_id=secrets.token_hex(6), call_sid=event.call_sid):
            logger.info(f"Voice webhook: speech={'yes' if event.speech.strip() else 'no'}")
            try:
                twiml = await orchestrator.handle_voice(event)
            except Exception as e:
                logger.exception(f"Voice webhook: Unhandled error: {e}")
                capture_exception(e, call_sid=event.call_sid, operation="voice_webhook")
                twiml = orchestrator.technical_difficulty_response()

        return Response(content=twiml, media_type=XML_MEDIA_TYPE)

    @app.post("/twilio/status")
    async def status_webhook(request: Request, _: bool = Depends(validate_twilio_signature)):
        """Call status callback; always acknowledged with an empty 200"""
        form = await request.form()
        event = StatusEvent(
            call_sid=str(form.get("CallSid", "")),
            status=str(form.get("CallStatus", "")),
            duration=_parse_duration(form.get("CallDuration")),
        )

        with logger.contextualize(request_id=secrets.token_hex(6), call_sid=event.call_sid):
            try:
                await orchestrator.handle_status(event)
            except Exception as e:
                logger.exception(f"Status webhook: Unhandled error: {e}")
                capture_exception(e, call_sid=event.call_sid, operation="status_webhook")

        return Response(status_code=200)

    # =====================================================
    # ERROR HANDLERS
    # =====================================================

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler"""
        logger.error(f"Unhandled exception: {exc}")
        capture_exception(exc, path=request.url.path)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    return app


# =====================================================
# MAIN ENTRY POINT
# =====================================================

def main() -> None:
    import uvicorn

    settings = get_settings()
    configure_logging(settings)
    init_error_reporting(settings.sentry_dsn, settings.environment)

    uvicorn.run(
        create_app(settings),
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
