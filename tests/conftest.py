import asyncio
import pathlib
from dataclasses import replace
from typing import Callable

import dotenv
import pytest

from vidscribe import types as t
from vidscribe.errors import UploadError

dotenv.load_dotenv(pathlib.Path(__file__).parent.parent / ".env")


async def no_sleep(_seconds: float) -> None:
    await asyncio.sleep(0)


class FakeProvider:
    """In-memory stand-in for the speech-recognition service.

    ``respond(audio_url, summarize_only)`` returns the sequence of statuses
    successive ``get_job`` calls observe; the last one repeats.
    """

    def __init__(self, respond: Callable[[str, bool], list] | None = None, failing_uploads: int = 0):
        self._respond = respond or (lambda url, summarize_only: [t.Completed(job_id="", text="hello world")])
        self.failing_uploads = failing_uploads
        self.uploads: list[str] = []
        self.jobs: dict[str, dict] = {}
        self.polls: dict[str, int] = {}

    async def upload(self, path: pathlib.Path) -> t.RemoteHandle:
        self.uploads.append(path.name)
        if self.failing_uploads > 0:
            self.failing_uploads -= 1
            raise UploadError("connection reset")
        return t.RemoteHandle(upload_url=f"https://cdn.test/{path.name}")

    async def create_job(self, audio_url: str, options: t.TranscribeOptions, summarize_only: bool = False) -> str:
        job_id = f"job-{len(self.jobs) + 1}"
        self.jobs[job_id] = {
            "audio_url": audio_url, "options": options, "summarize_only": summarize_only,
            "statuses": list(self._respond(audio_url, summarize_only)),
        }
        return job_id

    async def get_job(self, job_id: str) -> t.JobStatus:
        n = self.polls.get(job_id, 0)
        self.polls[job_id] = n + 1
        statuses = self.jobs[job_id]["statuses"]
        status = statuses[min(n, len(statuses) - 1)]
        if isinstance(status, Exception):
            raise status
        return _with_id(status, job_id)


def _with_id(status: t.JobStatus, job_id: str) -> t.JobStatus:
    return replace(status, job_id=job_id)


@pytest.fixture
def fake_provider():
    return FakeProvider


@pytest.fixture
def sleep():
    return no_sleep
