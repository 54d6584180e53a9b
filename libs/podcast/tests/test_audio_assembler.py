from __future__ import annotations

import asyncio
import sys
import types
from pathlib import Path

import pytest

from duocast_podcast.domain.models import AudioChunk, AudioEncoding
from duocast_podcast.infrastructure.audio.pydub_assembler import PydubAudioAssembler, format_duration


class DummyAudioSegment:
    exports: list[dict] = []

    def __init__(self, duration_ms: int = 0, dBFS: float = -20.0, **raw) -> None:
        if "data" in raw:
            # raw PCM: 2 bytes per sample
            duration_ms = int(len(raw["data"]) / 2 / raw["frame_rate"] * 1000)
        self.duration_ms = duration_ms
        self.dBFS = dBFS
        self.raw = raw
        self.frame_rate = None
        self.channels = None

    @property
    def duration_seconds(self) -> float:
        return self.duration_ms / 1000.0

    def __iadd__(self, other: "DummyAudioSegment") -> "DummyAudioSegment":
        self.duration_ms += other.duration_ms
        return self

    @classmethod
    def silent(cls, duration: int) -> "DummyAudioSegment":
        return cls(duration_ms=duration)

    @classmethod
    def from_file(cls, path, format: str | None = None) -> "DummyAudioSegment":
        return cls(duration_ms=65_000)

    def apply_gain(self, gain: float) -> "DummyAudioSegment":
        self.dBFS += gain
        return self

    def set_frame_rate(self, rate: int) -> "DummyAudioSegment":
        self.frame_rate = rate
        return self

    def set_channels(self, channels: int) -> "DummyAudioSegment":
        self.channels = channels
        return self

    def export(self, out: str, format: str, **kwargs) -> None:
        DummyAudioSegment.exports.append(
            {"out": out, "format": format, "duration_ms": self.duration_ms, "dBFS": self.dBFS,
             "frame_rate": self.frame_rate, "channels": self.channels, **kwargs}
        )
        Path(out).write_bytes(b"fake-audio")


def install_dummy_pydub(monkeypatch: pytest.MonkeyPatch) -> None:
    module = types.ModuleType("pydub")
    module.AudioSegment = DummyAudioSegment
    monkeypatch.setitem(sys.modules, "pydub", module)
    DummyAudioSegment.exports = []


def test_format_duration() -> None:
    assert format_duration(0) == "0:00"
    assert format_duration(65.4) == "1:05"
    assert format_duration(3600) == "60:00"


def test_concatenate_inserts_gaps_and_normalizes(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    install_dummy_pydub(monkeypatch)
    files = []
    for name in ("a.mp3", "b.mp3", "c.mp3"):
        path = tmp_path / name
        path.write_bytes(b"x")
        files.append(path)
    out = tmp_path / "out" / "episode.mp3"

    result = asyncio.run(PydubAudioAssembler().concatenate(files, silence_ms=200, out_path=out))

    assert result == out
    assert out.exists()
    export = DummyAudioSegment.exports[-1]
    assert export["duration_ms"] == 3 * 65_000 + 2 * 200
    assert export["dBFS"] == -16.0
    assert export["codec"] == "libmp3lame"
    assert export["bitrate"] == "192k"
    assert (export["frame_rate"], export["channels"]) == (44100, 2)


def test_concatenate_requires_segments(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    install_dummy_pydub(monkeypatch)
    with pytest.raises(ValueError):
        asyncio.run(PydubAudioAssembler().concatenate([], silence_ms=200, out_path=tmp_path / "out.mp3"))


def test_transcode_pcm_to_mp3(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    install_dummy_pydub(monkeypatch)
    chunk = AudioChunk(data=b"\x00\x00" * 24000, encoding=AudioEncoding.PCM)

    out = asyncio.run(PydubAudioAssembler().transcode(chunk, tmp_path / "segment_0001.wav"))

    assert out == tmp_path / "segment_0001.mp3"
    assert DummyAudioSegment.exports[-1]["duration_ms"] == 1000


def test_probe_duration(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    install_dummy_pydub(monkeypatch)
    path = tmp_path / "episode.mp3"
    path.write_bytes(b"x")
    assert asyncio.run(PydubAudioAssembler().probe_duration(path)) == "1:05"
