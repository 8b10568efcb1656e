from dataclasses import dataclass, field
from typing import Union


@dataclass(frozen=True)
class VideoReference:
    video_id: str
    url: str


@dataclass
class AudioAsset:
    path: str
    duration_seconds: float = 0.0
    format: str = "mp3"
    video_id: str = ""


@dataclass(frozen=True)
class Word:
    text: str
    start_ms: int
    end_ms: int


@dataclass
class Chapter:
    id: str
    title: str
    start_time: str
    content: str

    def to_dict(self) -> dict:
        return {"id": self.id, "title": self.title,
                "startTime": self.start_time, "content": self.content}

    @classmethod
    def from_dict(cls, d: dict) -> "Chapter":
        return cls(
            id=str(d.get("id", "")),
            title=str(d.get("title", "")),
            start_time=str(d.get("startTime", d.get("start_time", "0:00"))),
            content=str(d.get("content", "")),
        )


@dataclass
class TranscriptionResult:
    transcription: str
    chapters: list[Chapter] = field(default_factory=list)
    summary: str = ""

    def to_dict(self) -> dict:
        return {
            "transcription": self.transcription,
            "chapters": [c.to_dict() for c in self.chapters],
            "summary": self.summary,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "TranscriptionResult":
        return cls(
            transcription=d.get("transcription", ""),
            chapters=[Chapter.from_dict(c) for c in d.get("chapters", [])],
            summary=d.get("summary", ""),
        )


@dataclass
class CacheEntry:
    key: str
    timestamp: int
    payload: TranscriptionResult


@dataclass
class RawChapter:
    headline: str
    start_ms: int
    end_ms: int
    summary_text: str = ""


@dataclass
class RawTranscript:
    text: str
    chapters: list[RawChapter] = field(default_factory=list)
    summary: str = ""
    words: list[Word] = field(default_factory=list)


@dataclass(frozen=True)
class RemoteHandle:
    upload_url: str


@dataclass(frozen=True)
class Webhook:
    url: str
    auth_header_name: str | None = None
    auth_header_value: str | None = None


@dataclass
class TranscribeOptions:
    auto_chapters: bool = True
    language: str = "en"
    speed_profile: str = "accurate"
    webhook: Webhook | None = None
    summarize: bool = True


# Provider job states. A job moves Queued -> Processing -> Completed | Failed.

@dataclass(frozen=True)
class Queued:
    job_id: str


@dataclass(frozen=True)
class Processing:
    job_id: str


@dataclass(frozen=True)
class Completed:
    job_id: str
    text: str
    chapters: tuple[RawChapter, ...] = ()
    summary: str = ""
    words: tuple[Word, ...] = ()
    audio_url: str = ""


@dataclass(frozen=True)
class Failed:
    job_id: str
    reason: str


JobStatus = Union[Queued, Processing, Completed, Failed]


def is_terminal(status: JobStatus) -> bool:
    return isinstance(status, (Completed, Failed))


def status_name(status: JobStatus) -> str:
    return {
        Queued: "queued", Processing: "processing",
        Completed: "completed", Failed: "error",
    }[type(status)]
