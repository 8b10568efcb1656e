import json
import logging
import os
import re
from dataclasses import dataclass, field

from vidscribe import chapters as ch, types as t
from vidscribe.errors import EnrichmentError

log = logging.getLogger(__name__)

MODEL = "claude-sonnet-4-5-20250929"
MAX_CHARS = 120_000
MAX_TOKENS = 2048
OMITTED_MARKER = "\n\n[... middle of transcript omitted for length ...]\n\n"

SYSTEM = (
    "You are an assistant that turns raw video transcripts into a concise summary "
    "and a list of chapters. You answer with JSON only."
)

PROMPT = """Below is the transcript of a video{extras}.

Produce:
- "summary": 5 to 7 short bullet points, one per line, each starting with "- "
- "chapters": 3 to 5 chapters in the order they occur, each with "title", "startTime" (M:SS) and "content" (two or three sentences describing that part)

Respond with ONLY a JSON object of this exact shape:
{{"summary": "- point\\n- point", "chapters": [{{"title": "...", "startTime": "0:00", "content": "..."}}]}}
{context}
Transcript:
{transcript}"""

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$")


@dataclass
class Enrichment:
    summary: str
    chapters: list[t.Chapter] = field(default_factory=list)


def truncate(text: str, max_chars: int = MAX_CHARS) -> str:
    """Keeps the head and tail of an overlong transcript, half the budget each."""
    if len(text) <= max_chars:
        return text
    half = max_chars // 2
    return text[:half] + OMITTED_MARKER + text[-half:]


def _format_existing(chapters: list[t.Chapter], summary: str) -> str:
    parts = []
    if chapters:
        lines = "\n".join(f"[{c.start_time}] {c.title}: {c.content}" for c in chapters)
        parts.append(f"\nAutomatically detected chapters (timestamps are reliable, titles may not be):\n{lines}\n")
    if summary:
        parts.append(f"\nAutomatically generated summary:\n{summary}\n")
    return "".join(parts)


def parse_response(text: str) -> Enrichment:
    body = _FENCE.sub("", text.strip())
    start, end = body.find("{"), body.rfind("}")
    if start < 0 or end < start:
        raise EnrichmentError("model response contains no JSON object")
    try:
        data = json.loads(body[start:end + 1])
    except json.JSONDecodeError as exc:
        raise EnrichmentError(f"model response is not valid JSON: {exc}") from exc

    summary = data.get("summary")
    if isinstance(summary, list):
        summary = "\n".join(f"- {s}" for s in summary)
    raw_chapters = data.get("chapters")
    if not isinstance(summary, str) or not summary.strip():
        raise EnrichmentError("model response has no summary")
    if not isinstance(raw_chapters, list) or not raw_chapters:
        raise EnrichmentError("model response has no chapters")

    chapters = [
        t.Chapter(
            id=f"chapter-{i + 1}",
            title=str(c.get("title") or f"Chapter {i + 1}"),
            start_time=str(c.get("startTime") or "0:00"),
            content=str(c.get("content") or ""),
        )
        for i, c in enumerate(raw_chapters) if isinstance(c, dict)
    ]
    if not chapters:
        raise EnrichmentError("model response chapters are malformed")
    summary = "\n".join(f"- {b}" for b in ch.bullets(summary))
    return Enrichment(summary=summary, chapters=ch.normalize(chapters))


def fallback(transcript: str, chapters: list[t.Chapter], summary: str) -> Enrichment:
    return Enrichment(
        summary=summary,
        chapters=list(chapters) if chapters else [ch.catch_all(transcript)],
    )


class ClaudeEnricher:
    def __init__(self, api_key: str | None = None, model: str | None = None, client=None, max_chars: int = MAX_CHARS):
        if client is None:
            import anthropic
            client = anthropic.AsyncAnthropic(api_key=api_key or os.environ["ANTHROPIC_API_KEY"])
        self._client = client
        self.model = model or MODEL
        self.max_chars = max_chars

    async def _request(self, transcript: str, chapters: list[t.Chapter], summary: str, context: str) -> Enrichment:
        prompt = PROMPT.format(
            extras=" along with automatically detected chapters and summary" if chapters or summary else "",
            context=_format_existing(chapters, summary) + (f"\nVideo context: {context}\n" if context else ""),
            transcript=truncate(transcript, self.max_chars),
        )
        try:
            resp = await self._client.messages.create(
                model=self.model,
                max_tokens=MAX_TOKENS,
                system=SYSTEM,
                messages=[{"role": "user", "content": prompt}],
            )
        except Exception as exc:
            raise EnrichmentError(f"model call failed: {exc}") from exc
        text = "".join(getattr(block, "text", "") for block in resp.content)
        return parse_response(text)

    async def enhance(
        self,
        transcript: str,
        chapters: list[t.Chapter] | None = None,
        summary: str = "",
        context: str = "",
    ) -> Enrichment:
        """Asks the model for a summary and chapters; never raises.

        On any failure the provider's own chapters and summary come back
        unchanged, or a single catch-all chapter when there were none.
        """
        chapters = chapters or []
        try:
            return await self._request(transcript, chapters, summary, context)
        except EnrichmentError as exc:
            log.warning("Enrichment failed, keeping provider output: %s", exc)
            return fallback(transcript, chapters, summary)
