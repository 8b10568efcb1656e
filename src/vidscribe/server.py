import contextlib
import hmac
import logging

from fastapi import FastAPI, Header, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from vidscribe import types as t
from vidscribe.errors import InvalidReferenceError, TranscriptionError
from vidscribe.main import Pipeline
from vidscribe.runtime import Settings
from vidscribe.transcribe import Provider, WebhookHub

log = logging.getLogger(__name__)


class TranscribeRequest(BaseModel):
    videoUrl: str | None = None


class ChapterModel(BaseModel):
    id: str
    title: str
    startTime: str
    content: str


class TranscribeResponse(BaseModel):
    success: bool
    transcription: str
    chapters: list[ChapterModel]
    summary: str


class WebhookPayload(BaseModel):
    transcript_id: str | None = None
    status: str | None = None


class WebhookResponse(BaseModel):
    success: bool
    status: str | None = None


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"success": False, "error": message}, status_code=status_code)


def create_app(
    pipeline: Pipeline,
    hub: WebhookHub | None = None,
    provider: Provider | None = None,
    settings: Settings | None = None,
) -> FastAPI:
    settings = settings or Settings()
    hub = hub or WebhookHub()

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI):
        pipeline.cache.rehydrate()
        yield

    app = FastAPI(title="vidscribe", lifespan=lifespan)

    @app.post("/transcribe", response_model=TranscribeResponse)
    async def transcribe(req: TranscribeRequest):
        if not req.videoUrl:
            return _error(400, "Video URL is required")
        try:
            result = await pipeline.process(req.videoUrl)
        except InvalidReferenceError as exc:
            return _error(400, str(exc))
        except Exception:
            log.exception("Transcription request failed")
            return _error(500, "Failed to transcribe video")
        return TranscribeResponse(
            success=True,
            transcription=result.transcription,
            chapters=[ChapterModel(**c.to_dict()) for c in result.chapters],
            summary=result.summary,
        )

    @app.post("/webhook/transcription/{session_id}", response_model=WebhookResponse)
    async def webhook(
        session_id: str,
        payload: WebhookPayload,
        x_webhook_secret: str | None = Header(default=None),
    ):
        log.info("Webhook for session %s: %s is %s", session_id, payload.transcript_id, payload.status)
        if settings.hardened and not hmac.compare_digest(
            x_webhook_secret or "", settings.webhook_secret or "",
        ):
            log.warning("Rejected webhook for session %s: bad secret", session_id)
            return JSONResponse({"error": "Unauthorized"}, status_code=401)
        if not payload.transcript_id:
            return JSONResponse({"error": "Invalid webhook data"}, status_code=400)
        if provider is None:
            raise HTTPException(status_code=503, detail="No provider configured")

        try:
            status = await provider.get_job(payload.transcript_id)
        except TranscriptionError as exc:
            return JSONResponse({"error": str(exc)}, status_code=500)
        hub.deliver(session_id, status)
        return WebhookResponse(success=True, status=payload.status)

    @app.get("/webhook/transcription/{session_id}")
    def webhook_result(session_id: str):
        status = hub.result(session_id)
        if status is None:
            raise HTTPException(status_code=404, detail="Result not found")
        return {"success": True, "result": {"transcript_id": status.job_id, "status": t.status_name(status)}}

    @app.delete("/cache/{video_id}")
    def invalidate(video_id: str):
        pipeline.cache.invalidate(video_id)
        return {"success": True}

    return app
