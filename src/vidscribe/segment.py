import asyncio
import logging
import math
from dataclasses import dataclass
from pathlib import Path

from vidscribe import types as t, youtube
from vidscribe.errors import SegmentationError
from vidscribe.transcribe import RemoteTranscriber

log = logging.getLogger(__name__)

SEGMENT_SECONDS = 300
THRESHOLD_SECONDS = 15 * 60
MAX_CHAPTERS = 5
SEGMENT_SEPARATOR = "\n\n"


@dataclass
class SegmentResult:
    index: int
    transcript: t.RawTranscript


def segment_count(duration_seconds: float, segment_seconds: int = SEGMENT_SECONDS) -> int:
    return max(1, math.ceil(duration_seconds / segment_seconds))


def merge(results: list[SegmentResult], segment_seconds: int = SEGMENT_SECONDS) -> t.RawTranscript:
    """Joins per-segment transcripts by segment index, whatever order they finished in.

    Word timestamps are shifted from segment-local to global time.
    """
    ordered = sorted(results, key=lambda r: r.index)
    texts = []
    words: list[t.Word] = []
    for r in ordered:
        offset = r.index * segment_seconds * 1000
        texts.append(r.transcript.text.strip())
        words.extend(
            t.Word(text=w.text, start_ms=w.start_ms + offset, end_ms=w.end_ms + offset)
            for w in r.transcript.words
        )
    return t.RawTranscript(text=SEGMENT_SEPARATOR.join(texts), words=words)


def word_bucket_chapters(words: list[t.Word], n_segments: int, max_chapters: int = MAX_CHAPTERS) -> list[t.RawChapter]:
    if not words:
        return []
    n_chapters = min(max_chapters, math.ceil(n_segments * 1.5), len(words))
    chapters = []
    for i in range(n_chapters):
        bucket = words[i * len(words) // n_chapters:(i + 1) * len(words) // n_chapters]
        chapters.append(t.RawChapter(
            headline=f"Part {len(chapters) + 1}",
            start_ms=bucket[0].start_ms,
            end_ms=bucket[-1].end_ms,
            summary_text=" ".join(w.text for w in bucket),
        ))
    return chapters


class SegmentingProcessor:
    def __init__(
        self,
        client: RemoteTranscriber,
        segment_seconds: int = SEGMENT_SECONDS,
        threshold_seconds: float = THRESHOLD_SECONDS,
        max_chapters: int = MAX_CHAPTERS,
        cutter=youtube.cut,
    ):
        self._client = client
        self.segment_seconds = segment_seconds
        self.threshold_seconds = threshold_seconds
        self.max_chapters = max_chapters
        self._cut = cutter

    def should_segment(self, asset: t.AudioAsset) -> bool:
        return asset.duration_seconds > self.threshold_seconds

    def _segment_path(self, asset: t.AudioAsset, work_dir: Path, index: int) -> Path:
        stem = asset.video_id or Path(asset.path).stem
        suffix = Path(asset.path).suffix or f".{youtube.AUDIO_EXT}"
        return work_dir / f"{stem}_seg{index:03d}{suffix}"

    async def split(self, asset: t.AudioAsset, work_dir: Path) -> list[t.AudioAsset]:
        count = segment_count(asset.duration_seconds, self.segment_seconds)
        work_dir.mkdir(parents=True, exist_ok=True)
        paths = [self._segment_path(asset, work_dir, i) for i in range(count)]
        results = await asyncio.gather(
            *(self._cut(Path(asset.path), i * self.segment_seconds, self.segment_seconds, p)
              for i, p in enumerate(paths)),
            return_exceptions=True,
        )
        failed = [r for r in results if isinstance(r, BaseException)]
        if failed:
            for p in paths:
                p.unlink(missing_ok=True)
            raise SegmentationError(f"could not cut {asset.path} into {count} segments: {failed[0]}")
        last = asset.duration_seconds - (count - 1) * self.segment_seconds
        return [
            t.AudioAsset(
                path=str(p),
                duration_seconds=float(self.segment_seconds) if i < count - 1 else last,
                format=asset.format,
                video_id=asset.video_id,
            )
            for i, p in enumerate(paths)
        ]

    async def _transcribe_one(self, index: int, segment: t.AudioAsset, options: t.TranscribeOptions) -> SegmentResult:
        log.info("Segment %d: uploading %s", index, Path(segment.path).name)
        raw = await self._client.transcribe_file(segment, options)
        log.info("Segment %d: transcribed (%d words)", index, len(raw.words))
        return SegmentResult(index=index, transcript=raw)

    async def transcribe_segments(self, segments: list[t.AudioAsset], options: t.TranscribeOptions) -> list[SegmentResult]:
        """Transcribes every segment at once and waits for all of them.

        The first failure cancels the rest and raises; there is no partial result.
        """
        tasks = [
            asyncio.create_task(self._transcribe_one(i, seg, options))
            for i, seg in enumerate(segments)
        ]
        try:
            return list(await asyncio.gather(*tasks))
        except Exception as exc:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise SegmentationError(f"segment batch failed: {exc}") from exc

    async def process(self, asset: t.AudioAsset, options: t.TranscribeOptions, work_dir: Path | None = None) -> t.RawTranscript:
        work_dir = work_dir or Path(asset.path).parent
        segment_options = t.TranscribeOptions(
            auto_chapters=False,
            language=options.language,
            speed_profile=options.speed_profile,
            webhook=options.webhook,
            summarize=False,
        )
        segments: list[t.AudioAsset] = []
        try:
            segments = await self.split(asset, work_dir)
            log.info("Split %s into %d segments", Path(asset.path).name, len(segments))
            results = await self.transcribe_segments(segments, segment_options)
        finally:
            for seg in segments:
                Path(seg.path).unlink(missing_ok=True)

        merged = merge(results, self.segment_seconds)
        merged.chapters = word_bucket_chapters(merged.words, len(segments), self.max_chapters)
        return merged
