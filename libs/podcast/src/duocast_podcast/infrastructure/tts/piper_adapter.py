from __future__ import annotations

import asyncio
import tempfile
from pathlib import Path

from duocast_contracts.errors import ConfigurationError, FatalRequestError
from duocast_podcast.domain.models import AudioChunk, AudioEncoding, Voice


class PiperSynthesizer:
    """Piper CLI synthesizer (requires the piper binary and a voice model). Output is WAV."""

    name = "piper"

    def __init__(
        self,
        model_path: str | None,
        *,
        sentence_silence: float = 0.2,
        speed: float | None = None,
        binary: str = "piper",
    ) -> None:
        if not model_path:
            raise ConfigurationError("piper requires PIPER_MODEL_PATH")
        self.model_path = model_path
        self.sentence_silence = sentence_silence
        # Piper's length_scale is the inverse of speaking rate.
        self.length_scale = 1.0 / speed if speed else None
        self.binary = binary

    async def synthesize(self, text: str, voice: Voice) -> AudioChunk:
        with tempfile.TemporaryDirectory(prefix="duocast-piper-") as tmp:
            path = Path(tmp) / "out.wav"
            cmd = [
                self.binary,
                "--model",
                self.model_path,
                "--output_file",
                str(path),
                "--sentence_silence",
                f"{self.sentence_silence:.3f}",
            ]
            if voice.id.isdigit():
                cmd += ["--speaker", voice.id]
            if self.length_scale:
                cmd += ["--length_scale", f"{self.length_scale:.3f}"]
            try:
                proc = await asyncio.create_subprocess_exec(
                    *cmd,
                    stdin=asyncio.subprocess.PIPE,
                    stdout=asyncio.subprocess.DEVNULL,
                    stderr=asyncio.subprocess.PIPE,
                )
            except FileNotFoundError as e:
                raise ConfigurationError(f"piper binary not found: {self.binary}") from e
            try:
                _, stderr = await proc.communicate(text.encode("utf-8"))
            except asyncio.CancelledError:
                proc.kill()
                raise
            if proc.returncode != 0:
                raise FatalRequestError(
                    f"Piper synthesis failed ({proc.returncode}): {stderr.decode(errors='replace')[:300]}",
                    provider=self.name,
                )
            return AudioChunk(data=path.read_bytes(), encoding=AudioEncoding.WAV)

    async def aclose(self) -> None:
        return None
