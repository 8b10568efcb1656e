import os
import shutil
import sys
from dataclasses import dataclass
from pathlib import Path

CACHE_DIR = Path.home() / ".cache" / "vidscribe"
TRUTHY = ("1", "true", "yes", "on")


def _flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in TRUTHY


@dataclass(frozen=True)
class Settings:
    assemblyai_api_key: str = ""
    anthropic_api_key: str = ""
    webhook_secret: str = ""
    use_webhook: bool = False
    public_url: str = ""
    hardened: bool = False
    cache_dir: Path = CACHE_DIR
    claude_model: str | None = None

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            assemblyai_api_key=os.environ.get("ASSEMBLYAI_API_KEY", ""),
            anthropic_api_key=os.environ.get("ANTHROPIC_API_KEY", ""),
            webhook_secret=os.environ.get("WEBHOOK_SECRET", ""),
            use_webhook=_flag("VIDSCRIBE_USE_WEBHOOK"),
            public_url=os.environ.get("VIDSCRIBE_PUBLIC_URL", "").rstrip("/"),
            hardened=_flag("VIDSCRIBE_HARDENED"),
            cache_dir=Path(os.environ.get("VIDSCRIBE_CACHE_DIR", str(CACHE_DIR))),
            claude_model=os.environ.get("VIDSCRIBE_CLAUDE_MODEL") or None,
        )

    @property
    def results_dir(self) -> Path:
        return self.cache_dir / "transcriptions"

    @property
    def scratch_dir(self) -> Path:
        return self.cache_dir / "audio"

    @property
    def enrichment_enabled(self) -> bool:
        return bool(self.anthropic_api_key)

    @property
    def webhook_url(self) -> str | None:
        if not (self.use_webhook and self.public_url):
            return None
        return f"{self.public_url}/webhook/transcription"


def _check_binary(name: str) -> bool:
    return shutil.which(name) is not None


def check(settings: Settings, needs_ffmpeg: bool = False, needs_assemblyai: bool = False) -> list[str]:
    errors = []

    if needs_ffmpeg:
        for binary in ("ffmpeg", "ffprobe"):
            if not _check_binary(binary):
                errors.append(f"{binary} not found in PATH — install from https://ffmpeg.org/")

    if needs_assemblyai and not settings.assemblyai_api_key:
        errors.append("ASSEMBLYAI_API_KEY not set — add it to .env or export it")

    if settings.use_webhook and not settings.public_url:
        errors.append("VIDSCRIBE_USE_WEBHOOK is set but VIDSCRIBE_PUBLIC_URL is not")

    if settings.hardened and not settings.webhook_secret:
        errors.append("VIDSCRIBE_HARDENED is set but WEBHOOK_SECRET is not")

    return errors


def require(settings: Settings, needs_ffmpeg: bool = False, needs_assemblyai: bool = False):
    errors = check(settings, needs_ffmpeg=needs_ffmpeg, needs_assemblyai=needs_assemblyai)
    if errors:
        print("Missing requirements:", file=sys.stderr)
        for e in errors:
            print(f"  - {e}", file=sys.stderr)
        sys.exit(1)
