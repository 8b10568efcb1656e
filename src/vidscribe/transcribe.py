import asyncio
import logging
import os
import time
import uuid
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Awaitable, Callable, Protocol, runtime_checkable

from vidscribe import types as t
from vidscribe.errors import TranscriptionError, UploadError

log = logging.getLogger(__name__)

UPLOAD_RETRIES = 3
# Pushed statuses stay readable over GET for an hour, and at most this many are kept.
RESULT_TTL_SECONDS = 60 * 60
MAX_RESULTS = 1000


@runtime_checkable
class Provider(Protocol):
    async def upload(self, path: Path) -> t.RemoteHandle: ...
    async def create_job(self, audio_url: str, options: t.TranscribeOptions, summarize_only: bool = False) -> str: ...
    async def get_job(self, job_id: str) -> t.JobStatus: ...


class AssemblyAIProvider:
    """The provider protocol on top of the AssemblyAI SDK.

    The SDK is synchronous, so every call runs in a worker thread. Job status
    is read through the SDK's REST helper rather than ``Transcript.get_by_id``,
    which blocks until the job finishes.
    """

    def __init__(self, api_key: str | None = None):
        import assemblyai as aai
        aai.settings.api_key = api_key or os.environ["ASSEMBLYAI_API_KEY"]
        self._aai = aai

    async def upload(self, path: Path) -> t.RemoteHandle:
        try:
            url = await asyncio.to_thread(self._aai.Transcriber().upload_file, str(path))
        except Exception as exc:
            raise UploadError(f"upload of {path.name} failed: {exc}") from exc
        return t.RemoteHandle(upload_url=url)

    def _config(self, options: t.TranscribeOptions, summarize_only: bool):
        aai = self._aai
        if summarize_only:
            return aai.TranscriptionConfig(
                language_code=options.language,
                speech_model=aai.SpeechModel.nano,
                summarization=True,
                summary_model=aai.SummarizationModel.informative,
                summary_type=aai.SummarizationType.bullets,
            )
        config = aai.TranscriptionConfig(
            language_code=options.language,
            speech_model=aai.SpeechModel.nano if options.speed_profile == "fast" else aai.SpeechModel.best,
            auto_chapters=options.auto_chapters,
            punctuate=True,
            format_text=True,
        )
        if options.webhook:
            config.set_webhook(
                options.webhook.url,
                options.webhook.auth_header_name,
                options.webhook.auth_header_value,
            )
        return config

    async def create_job(self, audio_url: str, options: t.TranscribeOptions, summarize_only: bool = False) -> str:
        config = self._config(options, summarize_only)
        try:
            transcript = await asyncio.to_thread(self._aai.Transcriber().submit, audio_url, config)
        except Exception as exc:
            raise TranscriptionError(f"could not create job: {exc}") from exc
        return transcript.id

    async def get_job(self, job_id: str) -> t.JobStatus:
        def _fetch():
            client = self._aai.Client.get_default()
            return self._aai.api.get_transcript(client.http_client, job_id)
        try:
            response = await asyncio.to_thread(_fetch)
        except Exception as exc:
            raise TranscriptionError(f"could not read job {job_id}: {exc}") from exc
        return self.to_status(response)

    def to_status(self, transcript) -> t.JobStatus:
        statuses = self._aai.TranscriptStatus
        job_id = transcript.id
        if transcript.status == statuses.completed:
            return t.Completed(
                job_id=job_id,
                text=transcript.text or "",
                chapters=tuple(
                    t.RawChapter(headline=c.headline, start_ms=c.start, end_ms=c.end, summary_text=c.summary or "")
                    for c in transcript.chapters or []
                ),
                summary=transcript.summary or "",
                words=tuple(t.Word(text=w.text, start_ms=w.start, end_ms=w.end) for w in transcript.words or []),
                audio_url=transcript.audio_url or "",
            )
        if transcript.status == statuses.error:
            return t.Failed(job_id=job_id, reason=transcript.error or "unknown provider error")
        if transcript.status == statuses.processing:
            return t.Processing(job_id=job_id)
        return t.Queued(job_id=job_id)


@dataclass(frozen=True)
class PollSchedule:
    fast_interval: float = 3.0
    fast_attempts: int = 5
    medium_interval: float = 5.0
    medium_attempts: int = 10
    slow_interval: float = 10.0
    max_attempts: int = 60

    def interval(self, attempt: int) -> float:
        if attempt < self.fast_attempts:
            return self.fast_interval
        if attempt < self.fast_attempts + self.medium_attempts:
            return self.medium_interval
        return self.slow_interval

    def budget(self) -> float:
        return sum(self.interval(i) for i in range(self.max_attempts))


class WebhookHub:
    """Hands provider push notifications to whichever request is waiting on them."""

    def __init__(
        self,
        result_ttl: float = RESULT_TTL_SECONDS,
        max_results: int = MAX_RESULTS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._waiting: dict[str, asyncio.Future] = {}
        # session id -> (delivered at, status), oldest first
        self._results: dict[str, tuple[float, t.JobStatus]] = {}
        self.result_ttl = result_ttl
        self.max_results = max_results
        self._clock = clock

    def _evict(self) -> None:
        cutoff = self._clock() - self.result_ttl
        for session_id, (delivered, _) in list(self._results.items()):
            if delivered > cutoff and len(self._results) <= self.max_results:
                break
            del self._results[session_id]

    def register(self, session_id: str) -> None:
        self._waiting[session_id] = asyncio.get_running_loop().create_future()

    def deliver(self, session_id: str, status: t.JobStatus) -> bool:
        self._results.pop(session_id, None)
        self._results[session_id] = (self._clock(), status)
        self._evict()
        fut = self._waiting.get(session_id)
        if fut is None or fut.done():
            return False
        fut.set_result(status)
        return True

    def discard(self, session_id: str) -> None:
        fut = self._waiting.pop(session_id, None)
        if fut is not None and not fut.done():
            fut.cancel()

    def result(self, session_id: str) -> t.JobStatus | None:
        self._evict()
        entry = self._results.get(session_id)
        return entry[1] if entry else None

    async def wait(self, session_id: str, timeout: float) -> t.JobStatus | None:
        fut = self._waiting.get(session_id)
        if fut is None:
            return self.result(session_id)
        try:
            return await asyncio.wait_for(asyncio.shield(fut), timeout)
        except asyncio.TimeoutError:
            return None
        finally:
            self._waiting.pop(session_id, None)


class RemoteTranscriber:
    def __init__(
        self,
        provider: Provider,
        schedule: PollSchedule | None = None,
        hub: WebhookHub | None = None,
        sleep: Callable[[float], Awaitable] = asyncio.sleep,
    ):
        self._provider = provider
        self.schedule = schedule or PollSchedule()
        self._hub = hub
        self._sleep = sleep

    async def upload(self, asset: t.AudioAsset) -> t.RemoteHandle:
        path = Path(asset.path)
        attempt = 1
        while True:
            try:
                return await self._provider.upload(path)
            except UploadError as exc:
                if attempt >= UPLOAD_RETRIES:
                    raise
                log.warning("Upload of %s failed (attempt %d/%d): %s", path.name, attempt, UPLOAD_RETRIES, exc)
            await self._sleep(self.schedule.fast_interval)
            attempt += 1

    async def poll(self, job_id: str) -> t.JobStatus:
        status: t.JobStatus = t.Queued(job_id=job_id)
        for attempt in range(self.schedule.max_attempts):
            try:
                status = await self._provider.get_job(job_id)
            except TranscriptionError as exc:
                log.warning("Status check %d for job %s failed: %s", attempt + 1, job_id, exc)
            if t.is_terminal(status):
                return status
            await self._sleep(self.schedule.interval(attempt))
        log.warning("Job %s still %s after %d checks", job_id, t.status_name(status), self.schedule.max_attempts)
        return status

    async def await_status(self, job_id: str, session_id: str | None = None) -> t.JobStatus:
        """Waits for the job to reach a terminal state, by webhook or by polling.

        Returns the last status observed, which is non-terminal only when the
        attempt budget ran out.
        """
        if session_id and self._hub:
            status = await self._hub.wait(session_id, timeout=self.schedule.budget())
            if status is not None and t.is_terminal(status):
                return status
            log.info("No terminal webhook for job %s, polling instead", job_id)
        return await self.poll(job_id)

    async def transcribe(self, handle: t.RemoteHandle, options: t.TranscribeOptions) -> t.RawTranscript:
        session_id = None
        job_options = options
        if options.webhook and self._hub:
            session_id = uuid.uuid4().hex
            self._hub.register(session_id)
            job_options = replace(options, webhook=replace(
                options.webhook, url=f"{options.webhook.url.rstrip('/')}/{session_id}",
            ))

        try:
            job_id = await self._provider.create_job(handle.upload_url, job_options)
        except TranscriptionError:
            if session_id:
                self._hub.discard(session_id)
            raise
        log.info("Created transcription job %s", job_id)
        status = await self.await_status(job_id, session_id)

        if isinstance(status, t.Failed):
            raise TranscriptionError(f"job {job_id} failed: {status.reason}")
        if not isinstance(status, t.Completed):
            raise TranscriptionError(f"job {job_id} never finished, last seen {t.status_name(status)}")

        raw = t.RawTranscript(
            text=status.text,
            chapters=list(status.chapters),
            summary=status.summary,
            words=list(status.words),
        )
        if options.summarize and not raw.summary:
            raw.summary = await self.summarize(status.audio_url or handle.upload_url, options)
        return raw

    async def summarize(self, audio_url: str, options: t.TranscribeOptions) -> str:
        """Runs a separate summarization job. Failures only cost the summary."""
        try:
            job_id = await self._provider.create_job(audio_url, options, summarize_only=True)
            status = await self.poll(job_id)
        except TranscriptionError as exc:
            log.warning("Summary job failed, continuing without a summary: %s", exc)
            return ""
        if isinstance(status, t.Completed):
            return status.summary
        log.warning("Summary job %s ended as %s, continuing without a summary", job_id, t.status_name(status))
        return ""

    async def transcribe_file(self, asset: t.AudioAsset, options: t.TranscribeOptions) -> t.RawTranscript:
        handle = await self.upload(asset)
        return await self.transcribe(handle, options)
