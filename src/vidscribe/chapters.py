"""Chapter post-processing and the placeholder content used when a stage fails.

Chapters reach the pipeline from three places (provider auto-chapters, the
word-bucket split of long audio, and the language model) in no guaranteed
order and with no guaranteed time format. Everything here normalizes them to
``M:SS`` start times, ascending, with unique ids.
"""

import math
import re

from vidscribe import types as t
from vidscribe.util import Time

FULL_CONTENT_TITLE = "Full Content"
TRANSCRIPT_UNAVAILABLE = (
    "Transcript unavailable: the audio for this video could not be transcribed right now. "
    "Please try again later."
)
SUMMARY_UNAVAILABLE = "Summary unavailable for this video."
CONTENT_PREVIEW_CHARS = 500


def format_time(seconds: float) -> str:
    return Time.seconds(max(int(seconds), 0)).clock()


def parse_time(text: str) -> int | None:
    time = Time.parse_clock(text or "")
    return None if time is None else time.s


def from_raw(raw_chapters: list[t.RawChapter]) -> list[t.Chapter]:
    return [
        t.Chapter(
            id=f"chapter-{i + 1}",
            title=(c.headline or "").strip() or f"Chapter {i + 1}",
            start_time=Time.millis(c.start_ms).clock(),
            content=c.summary_text,
        )
        for i, c in enumerate(raw_chapters)
    ]


def normalize(chapters: list[t.Chapter]) -> list[t.Chapter]:
    """Repairs start times, sorts ascending and makes ids unique.

    An unparseable start time becomes ``<index>:00``; the sort is stable so
    ties keep their incoming order.
    """
    repaired = []
    for i, c in enumerate(chapters):
        start = c.start_time if parse_time(c.start_time) is not None else f"{i}:00"
        repaired.append(t.Chapter(
            id=c.id or f"chapter-{i + 1}",
            title=c.title.strip() or f"Chapter {i + 1}",
            start_time=format_time(parse_time(start)),
            content=c.content,
        ))
    repaired.sort(key=lambda c: parse_time(c.start_time))

    seen: set[str] = set()
    for c in repaired:
        if c.id in seen:
            n = 2
            while f"{c.id}-{n}" in seen:
                n += 1
            c.id = f"{c.id}-{n}"
        seen.add(c.id)
    return repaired


def catch_all(transcript: str) -> t.Chapter:
    return t.Chapter(
        id="chapter-1",
        title=FULL_CONTENT_TITLE,
        start_time="0:00",
        content=transcript[:CONTENT_PREVIEW_CHARS] if transcript else TRANSCRIPT_UNAVAILABLE,
    )


def basic_chapters(transcript: str, duration_seconds: float = 0.0) -> list[t.Chapter]:
    """Length-based chapters for when nothing better is available.

    Assumes ~150 spoken words per minute when the duration is unknown and
    aims for one chapter per two minutes, between 3 and 7 chapters.
    """
    if not transcript.strip():
        return []
    word_count = len(transcript.split())
    duration = duration_seconds or max(60, round(word_count / 150 * 60))
    n = max(3, min(7, math.ceil(duration / 120)))
    chunk = math.ceil(len(transcript) / n)

    chapters = []
    for i in range(n):
        start = i * chunk
        if start >= len(transcript):
            break
        content = transcript[start:start + chunk]
        first_words = " ".join(content.split()[:5])
        chapters.append(t.Chapter(
            id=f"auto-{i + 1}",
            title=f"{first_words}..." if first_words else f"Chapter {i + 1}",
            start_time=format_time(i / n * duration),
            content=content[:CONTENT_PREVIEW_CHARS],
        ))
    return chapters


_BULLET = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s+")


def bullets(summary: str) -> list[str]:
    return [_BULLET.sub("", line).strip() for line in summary.splitlines() if line.strip()]


def placeholder_result(reason: str = "") -> t.TranscriptionResult:
    transcription = TRANSCRIPT_UNAVAILABLE if not reason else f"{TRANSCRIPT_UNAVAILABLE} ({reason})"
    return t.TranscriptionResult(
        transcription=transcription,
        chapters=[catch_all("")],
        summary=SUMMARY_UNAVAILABLE,
    )


def fill_placeholders(result: t.TranscriptionResult) -> t.TranscriptionResult:
    """Guarantees a non-empty transcription, at least one chapter and a summary."""
    transcription = result.transcription if result.transcription.strip() else TRANSCRIPT_UNAVAILABLE
    chapters = normalize(result.chapters) if result.chapters else [catch_all(result.transcription)]
    summary = result.summary if result.summary.strip() else SUMMARY_UNAVAILABLE
    return t.TranscriptionResult(transcription=transcription, chapters=chapters, summary=summary)
