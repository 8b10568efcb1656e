import asyncio
import json
import tempfile
from pathlib import Path

import pytest

from vidscribe import chapters as ch, enrich, types as t
from vidscribe.acquire import Acquirer
from vidscribe.cache import FileStore, TranscriptionCache
from vidscribe.errors import InvalidReferenceError, TranscriptionError, UploadError
from vidscribe.main import Pipeline, State
from vidscribe.segment import SegmentingProcessor
from vidscribe.transcribe import RemoteTranscriber

from conftest import FakeProvider, no_sleep

URL = "https://youtu.be/abc12345678"


class FakeDownloader:
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.calls = 0

    def download_audio(self, video_id, download_dir, bitrate_kbps=128):
        self.calls += 1
        if self.error:
            raise self.error
        path = download_dir / f"{video_id}.mp3"
        path.write_bytes(b"ID3")
        return path


class FakeEnricher:
    def __init__(self, result: enrich.Enrichment):
        self.result = result
        self.calls = []

    async def enhance(self, transcript, chapters=None, summary="", context=""):
        self.calls.append((transcript, chapters, summary))
        return self.result


async def _cut(path, start, duration, out):
    out.write_bytes(b"ID3")
    return out


def _words(n, start_ms=0):
    return tuple(t.Word(f"w{i}", start_ms + i * 1000, start_ms + i * 1000 + 500) for i in range(n))


@pytest.fixture
def workdir():
    with tempfile.TemporaryDirectory() as tmp:
        yield Path(tmp)


def _pipeline(workdir, provider=None, downloader=None, duration=60.0, enricher=None):
    async def probe(path):
        return duration

    provider = provider or FakeProvider()
    client = RemoteTranscriber(provider, sleep=no_sleep)
    pipeline = Pipeline(
        cache=TranscriptionCache(FileStore(workdir / "results")),
        acquirer=Acquirer(workdir / "audio", downloader=downloader or FakeDownloader(), probe=probe, retry_delay=0),
        client=client,
        segmenter=SegmentingProcessor(client, cutter=_cut),
        enricher=enricher,
    )
    return pipeline, provider


def test_end_to_end_then_cache_hit(workdir):
    provider = FakeProvider(lambda url, summarize_only: [t.Completed(job_id="", text="hello world")])
    downloader = FakeDownloader()
    pipeline, _ = _pipeline(workdir, provider=provider, downloader=downloader)

    run = asyncio.run(pipeline.run(URL))
    result = run.result
    assert result.transcription == "hello world"
    assert len(result.chapters) == 1
    assert result.chapters[0].title == ch.FULL_CONTENT_TITLE
    assert result.chapters[0].start_time == "0:00"
    assert result.chapters[0].content == "hello world"
    assert result.summary == ch.SUMMARY_UNAVAILABLE
    assert run.states == [State.IDLE, State.ACQUIRING, State.TRANSCRIBING, State.CACHING, State.DONE]
    assert not run.degraded
    record = json.loads((workdir / "results" / "abc12345678.json").read_text())
    assert record["transcription"] == "hello world"

    jobs_before = len(provider.jobs)
    again = asyncio.run(pipeline.run("https://www.youtube.com/watch?v=abc12345678"))
    assert again.cached
    assert again.result == result
    assert again.states == [State.IDLE, State.DONE]
    assert len(provider.jobs) == jobs_before
    assert downloader.calls == 1


def test_audio_is_released_after_run(workdir):
    pipeline, _ = _pipeline(workdir)
    asyncio.run(pipeline.process(URL))
    assert list((workdir / "audio").iterdir()) == []


def test_invalid_reference_fails_fast(workdir):
    downloader = FakeDownloader()
    pipeline, provider = _pipeline(workdir, downloader=downloader)
    with pytest.raises(InvalidReferenceError):
        asyncio.run(pipeline.process("https://example.com/not-a-video"))
    with pytest.raises(InvalidReferenceError):
        asyncio.run(pipeline.process(""))
    assert downloader.calls == 0
    assert provider.jobs == {}


def _assert_usable(result: t.TranscriptionResult):
    assert result.transcription.strip()
    assert len(result.chapters) >= 1
    assert result.summary.strip()


@pytest.mark.parametrize("scenario", ["download", "upload", "job-failed", "job-stuck", "create-job"])
def test_failures_degrade_to_placeholder(workdir, scenario):
    downloader = FakeDownloader(error=OSError("network down") if scenario == "download" else None)
    respond = {
        "job-failed": lambda url, s: [t.Failed(job_id="", reason="provider outage")],
        "job-stuck": lambda url, s: [t.Processing(job_id="")],
        "create-job": lambda url, s: [t.Completed(job_id="", text="unused")],
    }.get(scenario)
    provider = FakeProvider(respond, failing_uploads=10 if scenario == "upload" else 0)
    if scenario == "create-job":
        async def broken_create_job(*args, **kwargs):
            raise TranscriptionError("401 unauthorized")
        provider.create_job = broken_create_job
    pipeline, _ = _pipeline(workdir, provider=provider, downloader=downloader)

    run = asyncio.run(pipeline.run(URL))
    assert run.degraded
    assert State.FALLBACK in run.states
    assert run.states[-2:] == [State.CACHING, State.DONE]
    _assert_usable(run.result)
    assert "unavailable" in run.result.transcription.lower()
    assert pipeline.cache.get("abc12345678") == run.result
    assert not (workdir / "audio" / "abc12345678.mp3").exists()


def test_enrichment_replaces_chapters_and_summary(workdir):
    provider = FakeProvider(lambda url, summarize_only: [t.Completed(
        job_id="", text="hello world", summary="- provider bullet",
        chapters=(t.RawChapter(headline="Provider", start_ms=0, end_ms=1000, summary_text="p"),),
    )])
    enricher = FakeEnricher(enrich.Enrichment(summary="- model bullet", chapters=[
        t.Chapter(id="chapter-1", title="Late", start_time="2:15", content=""),
        t.Chapter(id="chapter-2", title="Early", start_time="0:00", content=""),
        t.Chapter(id="chapter-3", title="Middle", start_time="1:30", content=""),
    ]))
    pipeline, _ = _pipeline(workdir, provider=provider, enricher=enricher)

    run = asyncio.run(pipeline.run(URL))
    assert State.ENRICHING in run.states
    assert [c.start_time for c in run.result.chapters] == ["0:00", "1:30", "2:15"]
    assert run.result.summary == "- model bullet"
    transcript, chapters, summary = enricher.calls[0]
    assert transcript == "hello world"
    assert chapters[0].title == "Provider"
    assert summary == "- provider bullet"


def test_enrichment_failure_keeps_provider_output(workdir):
    class Broken:
        async def create(self, **kwargs):
            raise ConnectionError("model overloaded")

    class Client:
        messages = Broken()

    provider = FakeProvider(lambda url, summarize_only: [t.Completed(
        job_id="", text="hello world", summary="- provider bullet",
        chapters=(t.RawChapter(headline="Provider", start_ms=61_000, end_ms=90_000, summary_text="p"),),
    )])
    pipeline, _ = _pipeline(workdir, provider=provider, enricher=enrich.ClaudeEnricher(client=Client()))

    run = asyncio.run(pipeline.run(URL))
    assert not run.degraded
    assert run.result.summary == "- provider bullet"
    assert [(c.title, c.start_time) for c in run.result.chapters] == [("Provider", "1:01")]


def test_empty_transcript_skips_enrichment(workdir):
    provider = FakeProvider(lambda url, summarize_only: [t.Completed(job_id="", text="   ")])
    enricher = FakeEnricher(enrich.Enrichment(summary="unused"))
    pipeline, _ = _pipeline(workdir, provider=provider, enricher=enricher)

    run = asyncio.run(pipeline.run(URL))
    assert State.ENRICHING not in run.states
    assert enricher.calls == []
    _assert_usable(run.result)


def test_long_audio_goes_through_segments(workdir):
    def respond(url, summarize_only):
        index = int(url.rsplit("_seg", 1)[1].split(".")[0])
        return [t.Completed(job_id="", text=f"part {index}", words=_words(4))]

    provider = FakeProvider(respond)
    pipeline, _ = _pipeline(workdir, provider=provider, duration=1000.0)

    run = asyncio.run(pipeline.run(URL))
    assert sorted(provider.uploads) == [f"abc12345678_seg00{i}.mp3" for i in range(4)]
    assert run.result.transcription.split("\n\n") == ["part 0", "part 1", "part 2", "part 3"]
    assert [c.start_time for c in run.result.chapters] == ["0:00", "0:03", "5:02", "10:01", "15:00"]
    assert all(not j["summarize_only"] for j in provider.jobs.values())
    assert list((workdir / "audio").iterdir()) == []


def test_one_failed_segment_degrades_whole_request(workdir):
    def respond(url, summarize_only):
        if url.endswith("_seg002.mp3"):
            return [t.Failed(job_id="", reason="corrupt segment")]
        return [t.Completed(job_id="", text="fine", words=_words(2))]

    pipeline, _ = _pipeline(workdir, provider=FakeProvider(respond), duration=1000.0)
    run = asyncio.run(pipeline.run(URL))
    assert run.degraded
    assert "fine" not in run.result.transcription
    assert list((workdir / "audio").iterdir()) == []


def test_long_transcript_without_chapters_gets_basic_chapters(workdir):
    text = " ".join(f"word{i}" for i in range(900))
    provider = FakeProvider(lambda url, summarize_only: [t.Completed(job_id="", text=text)])
    pipeline, _ = _pipeline(workdir, provider=provider, duration=600.0)

    result = asyncio.run(pipeline.process(URL))
    assert len(result.chapters) == 5
    assert result.chapters[0].id == "auto-1"


def test_overlapping_runs_for_one_video_share_the_work(workdir):
    class ExistenceCheckingProvider(FakeProvider):
        async def upload(self, path):
            if not path.exists():
                raise UploadError(f"{path.name} vanished")
            return await super().upload(path)

    provider = ExistenceCheckingProvider(lambda url, summarize_only: [
        t.Processing(job_id=""), t.Processing(job_id=""), t.Completed(job_id="", text="hello world"),
    ])
    downloader = FakeDownloader()
    pipeline, _ = _pipeline(workdir, provider=provider, downloader=downloader)

    async def both():
        return await asyncio.gather(pipeline.run(URL), pipeline.run(URL))

    first, second = asyncio.run(both())
    assert not first.degraded and not second.degraded
    assert first.result.transcription == second.result.transcription == "hello world"
    assert [first.cached, second.cached] == [False, True]
    assert downloader.calls == 1
    assert provider.uploads == ["abc12345678.mp3"]
    assert pipeline.cache.get("abc12345678").transcription == "hello world"
    assert pipeline._inflight == {}


def test_waiting_run_takes_over_when_the_first_one_crashes(workdir):
    pipeline, _ = _pipeline(workdir)
    calls = []
    produce = pipeline._produce

    async def crash_once(run):
        calls.append(run)
        if len(calls) == 1:
            await asyncio.sleep(0)
            raise RuntimeError("disk full")
        return await produce(run)

    pipeline._produce = crash_once

    async def both():
        return await asyncio.gather(pipeline.run(URL), pipeline.run(URL), return_exceptions=True)

    first, second = asyncio.run(both())
    assert isinstance(first, RuntimeError)
    assert second.result.transcription == "hello world"
    assert not second.cached
    assert len(calls) == 2
