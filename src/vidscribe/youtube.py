import asyncio
import json
import logging
import re
from pathlib import Path
from typing import Optional
from urllib import parse as urlparse

import yt_dlp

from vidscribe import util

log = logging.getLogger(__name__)

AUDIO_EXT = 'mp3'
_VIDEO_ID = re.compile(r'^[A-Za-z0-9_-]{11}$')
_LEGACY_PATH = re.compile(r'^.*((youtu\.be/)|(v/)|(/u/\w/)|(embed/)|(shorts/)|(watch\?))\??v?=?([^#&?/]*).*')

# yt-dlp reports these for sources that will never succeed on retry.
PERMANENT_MARKERS = (
    'video unavailable', 'this video is not available', 'private video',
    'not available in your country', 'blocked it in your country',
    'copyright', 'members-only', 'sign in to confirm your age',
)


def extract_video_id(url: str) -> Optional[str]:
    parsed = urlparse.urlparse(url.strip())
    params = urlparse.parse_qs(parsed.query)
    if 'v' in params:
        candidate = params['v'][0]
    elif parsed.hostname in ('youtu.be',):
        candidate = parsed.path.lstrip('/').split('/')[0]
    else:
        match = _LEGACY_PATH.match(url.strip())
        candidate = match.group(8) if match else ''
    return candidate if _VIDEO_ID.match(candidate or '') else None


def video_url(video_id: str) -> str:
    return f"https://www.youtube.com/watch?{urlparse.urlencode({'v': video_id})}"


def is_permanent(error: Exception) -> bool:
    message = str(error).lower()
    return any(marker in message for marker in PERMANENT_MARKERS)


class RealDownloader:
    """Downloads audio through yt-dlp and normalizes it with ffmpeg."""

    @classmethod
    def download_audio(cls, video_id: str, download_dir: Path, bitrate_kbps: int = 128) -> Path:
        ydl_opts = {
            'format': f'bestaudio[abr<={bitrate_kbps}]/bestaudio/best',
            'paths': {'home': str(download_dir)},
            'outtmpl': f'{video_id}.%(ext)s',
            'quiet': True,
            'noprogress': True,
            'postprocessors': [{
                'key': 'FFmpegExtractAudio',
                'preferredcodec': AUDIO_EXT,
                'preferredquality': str(bitrate_kbps),
            }],
            # mono, 16 kHz: what the recognizer expects, nothing more
            'postprocessor_args': {'extractaudio': ['-ac', '1', '-ar', '16000']},
        }
        with yt_dlp.YoutubeDL(ydl_opts) as ydl:
            ydl.download([video_url(video_id)])
        produced = download_dir / f'{video_id}.{AUDIO_EXT}'
        if produced.exists():
            return produced
        match = util.find(lambda f: f.stem == video_id, download_dir.iterdir())
        if match is not None:
            return match
        raise FileNotFoundError(f'No matching file produced in directory {download_dir}')


async def probe_duration(path: Path) -> float:
    """Duration in seconds according to ffprobe, 0.0 when it can't be determined."""
    try:
        proc = await asyncio.create_subprocess_exec(
            'ffprobe', '-v', 'error', '-show_entries', 'format=duration',
            '-of', 'json', str(path),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except FileNotFoundError:
        log.warning('ffprobe not found, duration unknown for %s', path)
        return 0.0
    out, _ = await proc.communicate()
    if proc.returncode != 0:
        log.warning('ffprobe failed for %s, duration unknown', path)
        return 0.0
    try:
        return float(json.loads(out)['format']['duration'])
    except (ValueError, KeyError, TypeError):
        return 0.0


async def cut(path: Path, start_seconds: float, duration_seconds: float, out: Path) -> Path:
    # the source is already mono 16 kHz, so slices are stream copies
    proc = await asyncio.create_subprocess_exec(
        'ffmpeg', '-y', '-ss', str(start_seconds), '-t', str(duration_seconds),
        '-i', str(path), '-c', 'copy', str(out),
        stdout=asyncio.subprocess.DEVNULL,
        stderr=asyncio.subprocess.DEVNULL,
    )
    await proc.wait()
    if proc.returncode != 0 or not out.exists() or out.stat().st_size == 0:
        out.unlink(missing_ok=True)
        raise RuntimeError(f'ffmpeg could not cut {path} at {start_seconds}s')
    return out
