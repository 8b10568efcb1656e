import asyncio
import enum
import logging
from dataclasses import dataclass, field

from vidscribe import chapters as ch, types as t, youtube
from vidscribe.acquire import Acquirer
from vidscribe.cache import FileStore, TranscriptionCache
from vidscribe.enrich import ClaudeEnricher
from vidscribe.errors import AcquisitionError, InvalidReferenceError, TranscriptionError, UploadError
from vidscribe.runtime import Settings
from vidscribe.segment import SegmentingProcessor
from vidscribe.transcribe import AssemblyAIProvider, RemoteTranscriber, WebhookHub

log = logging.getLogger(__name__)

# Below this many words a catch-all chapter reads better than a length-based split.
BASIC_CHAPTER_MIN_WORDS = 450
WEBHOOK_SECRET_HEADER = "x-webhook-secret"


class State(enum.Enum):
    IDLE = "idle"
    ACQUIRING = "acquiring"
    TRANSCRIBING = "transcribing"
    ENRICHING = "enriching"
    CACHING = "caching"
    DONE = "done"
    FALLBACK = "fallback"


@dataclass
class Run:
    reference: t.VideoReference | None = None
    states: list[State] = field(default_factory=lambda: [State.IDLE])
    result: t.TranscriptionResult | None = None
    cached: bool = False
    error: str | None = None

    @property
    def state(self) -> State:
        return self.states[-1]

    @property
    def degraded(self) -> bool:
        return State.FALLBACK in self.states

    def enter(self, state: State):
        vid = self.reference.video_id if self.reference else "-"
        log.debug("[%s] %s -> %s", vid, self.state.value, state.value)
        self.states.append(state)


class Pipeline:
    """Takes a video URL to a cached, never-empty TranscriptionResult.

    Acquisition and transcription failures swap in a placeholder result;
    enrichment failures keep the provider's output. Only an unrecognizable
    video URL raises.
    """

    def __init__(
        self,
        cache: TranscriptionCache,
        acquirer: Acquirer,
        client: RemoteTranscriber,
        segmenter: SegmentingProcessor | None = None,
        enricher: ClaudeEnricher | None = None,
        options: t.TranscribeOptions | None = None,
    ):
        self.cache = cache
        self._acquirer = acquirer
        self._client = client
        self._segmenter = segmenter
        self._enricher = enricher
        self.options = options or t.TranscribeOptions()
        self._inflight: dict[str, asyncio.Future] = {}

    @classmethod
    def from_settings(cls, settings: Settings, hub: WebhookHub | None = None,
                      skip_enrich: bool = False) -> "Pipeline":
        client = RemoteTranscriber(AssemblyAIProvider(settings.assemblyai_api_key or None), hub=hub)
        enricher = None
        if settings.enrichment_enabled and not skip_enrich:
            enricher = ClaudeEnricher(api_key=settings.anthropic_api_key, model=settings.claude_model)
        webhook = None
        if settings.webhook_url and hub is not None:
            webhook = t.Webhook(
                url=settings.webhook_url,
                auth_header_name=WEBHOOK_SECRET_HEADER if settings.webhook_secret else None,
                auth_header_value=settings.webhook_secret or None,
            )
        return cls(
            cache=TranscriptionCache(FileStore(settings.results_dir)),
            acquirer=Acquirer(settings.scratch_dir),
            client=client,
            segmenter=SegmentingProcessor(client),
            enricher=enricher,
            options=t.TranscribeOptions(webhook=webhook),
        )

    @staticmethod
    def resolve(video_url: str) -> t.VideoReference:
        video_id = youtube.extract_video_id(video_url or "")
        if not video_id:
            raise InvalidReferenceError(f"not a recognizable YouTube video URL: {video_url!r}")
        return t.VideoReference(video_id=video_id, url=youtube.video_url(video_id))

    async def process(self, video_url: str) -> t.TranscriptionResult:
        return (await self.run(video_url)).result

    async def run(self, video_url: str) -> Run:
        run = Run()
        run.reference = self.resolve(video_url)
        vid = run.reference.video_id

        # Runs for one video share its scratch audio, so only one produces at a time;
        # the others wait for it and then read its result from the cache.
        while True:
            cached = self.cache.get(vid)
            if cached is not None:
                run.cached = True
                run.result = cached
                run.enter(State.DONE)
                return run
            pending = self._inflight.get(vid)
            if pending is None:
                break
            log.info("[%s] Waiting for the run already in flight", vid)
            await asyncio.wait([pending])

        finished = asyncio.get_running_loop().create_future()
        self._inflight[vid] = finished
        try:
            try:
                result = await self._produce(run)
            except (AcquisitionError, UploadError, TranscriptionError) as exc:
                log.warning("[%s] Pipeline failed in %s, using placeholder: %s", vid, run.state.value, exc)
                run.enter(State.FALLBACK)
                run.error = str(exc)
                result = ch.placeholder_result()

            run.enter(State.CACHING)
            run.result = ch.fill_placeholders(result)
            self.cache.put(vid, run.result)
            run.enter(State.DONE)
            return run
        finally:
            del self._inflight[vid]
            finished.set_result(None)

    async def _produce(self, run: Run) -> t.TranscriptionResult:
        vid = run.reference.video_id
        run.enter(State.ACQUIRING)
        async with self._acquirer.scoped(vid) as asset:
            run.enter(State.TRANSCRIBING)
            duration = asset.duration_seconds
            if self._segmenter and self._segmenter.should_segment(asset):
                log.info("[%s] Long audio (%.0fs), transcribing in segments", vid, duration)
                raw = await self._segmenter.process(asset, self.options)
            else:
                log.info("[%s] Transcribing...", vid)
                raw = await self._client.transcribe_file(asset, self.options)

        chapters = ch.normalize(ch.from_raw(raw.chapters))
        summary = raw.summary
        if self._enricher and raw.text.strip():
            run.enter(State.ENRICHING)
            log.info("[%s] Enriching...", vid)
            enrichment = await self._enricher.enhance(raw.text, chapters, summary)
            chapters = ch.normalize(enrichment.chapters)
            summary = enrichment.summary or summary

        if not chapters and len(raw.text.split()) >= BASIC_CHAPTER_MIN_WORDS:
            chapters = ch.basic_chapters(raw.text, duration)
        return t.TranscriptionResult(transcription=raw.text, chapters=chapters, summary=summary)
