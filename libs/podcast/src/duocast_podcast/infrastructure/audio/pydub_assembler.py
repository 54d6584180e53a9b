from __future__ import annotations

import asyncio
from io import BytesIO
from pathlib import Path
from typing import List

from duocast_podcast.domain.models import AudioChunk, AudioEncoding
from duocast_podcast.infrastructure.logging import get_logger

log = get_logger(__name__)


def format_duration(seconds: float) -> str:
    total = int(round(seconds))
    return f"{total // 60}:{total % 60:02d}"


def _audio_segment():
    try:
        from pydub import AudioSegment
    except Exception as e:  # pragma: no cover
        raise RuntimeError("pydub is required for audio assembly. Install with `pip install pydub`.") from e
    return AudioSegment


class PydubAudioAssembler:
    """Concatenate segment audio with fixed gaps, normalize loudness, and export one file.

    pydub shells out to ffmpeg for mp3 encode/decode. Blocking work runs in a
    worker thread so the event loop stays responsive.
    """

    def __init__(
        self,
        target_format: str = "mp3",
        bitrate: str = "192k",
        frame_rate: int = 44100,
        channels: int = 2,
        target_dbfs: float | None = -16.0,
    ) -> None:
        self.target_format = target_format
        self.bitrate = bitrate
        self.frame_rate = frame_rate
        self.channels = channels
        self.target_dbfs = target_dbfs

    async def concatenate(self, files: List[Path], *, silence_ms: int, out_path: Path) -> Path:
        if not files:
            raise ValueError("No audio segments provided.")
        return await asyncio.to_thread(self._concatenate, list(files), silence_ms, Path(out_path))

    async def transcode(self, chunk: AudioChunk, out_path: Path) -> Path:
        return await asyncio.to_thread(self._transcode, chunk, Path(out_path))

    async def probe_duration(self, path: Path) -> str:
        return await asyncio.to_thread(self._probe, Path(path))

    def _concatenate(self, files: List[Path], silence_ms: int, out: Path) -> Path:
        AudioSegment = _audio_segment()
        combined = AudioSegment.silent(duration=0)
        for idx, path in enumerate(files):
            combined += AudioSegment.from_file(str(path))
            if idx < len(files) - 1 and silence_ms > 0:
                combined += AudioSegment.silent(duration=silence_ms)

        # Approximate loudness normalization.
        if self.target_dbfs is not None and combined.dBFS != float("-inf"):
            combined = combined.apply_gain(self.target_dbfs - combined.dBFS)

        self._export(combined, out)
        log.info("audio.assembled files=%s seconds=%.1f out=%s", len(files), combined.duration_seconds, out.name)
        return out

    def _transcode(self, chunk: AudioChunk, out: Path) -> Path:
        AudioSegment = _audio_segment()
        if chunk.encoding is AudioEncoding.PCM:
            audio = AudioSegment(data=chunk.data, sample_width=2, frame_rate=chunk.sample_rate, channels=chunk.channels)
        else:
            audio = AudioSegment.from_file(BytesIO(chunk.data), format=chunk.encoding.value)
        out = out.with_suffix(f".{self.target_format}")
        self._export(audio, out)
        return out

    def _export(self, audio, out: Path) -> None:
        out.parent.mkdir(parents=True, exist_ok=True)
        audio = audio.set_frame_rate(self.frame_rate).set_channels(self.channels)
        if self.target_format == "mp3":
            audio.export(str(out), format="mp3", codec="libmp3lame", bitrate=self.bitrate)
        else:
            audio.export(str(out), format=self.target_format)

    def _probe(self, path: Path) -> str:
        AudioSegment = _audio_segment()
        return format_duration(AudioSegment.from_file(str(path)).duration_seconds)
