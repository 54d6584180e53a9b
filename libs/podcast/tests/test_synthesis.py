from __future__ import annotations

import asyncio
import random
from pathlib import Path

import pytest

from duocast_contracts.errors import ConfigurationError, FatalRequestError
from duocast_contracts.podcast_job import Script, Segment, TtsOptions
from duocast_podcast.application.synthesis import SpeechSynthesizer, use_batch
from duocast_podcast.domain.models import AudioChunk, AudioEncoding, Voice, VoiceAssignment
from duocast_podcast.infrastructure.config import ProviderKeys, Settings
from duocast_podcast.infrastructure.tts.registry import ProviderPool, check_tts_backend
from duocast_podcast.infrastructure.tts.voices import build_assignment, parse_voice_spec


class DummyProvider:
    def __init__(self, name: str, *, jitter: bool = False) -> None:
        self.name = name
        self.jitter = jitter
        self.calls: list[tuple[str, str]] = []
        self.closed = False

    async def synthesize(self, text: str, voice: Voice) -> AudioChunk:
        self.calls.append((text, voice.id))
        if self.jitter:
            await asyncio.sleep(random.uniform(0, 0.02))
        return AudioChunk(data=f"{self.name}:{text}".encode(), encoding=AudioEncoding.MP3)

    async def aclose(self) -> None:
        self.closed = True


class DummyBatchProvider(DummyProvider):
    def __init__(self, name: str) -> None:
        super().__init__(name)
        self.batches: list[int] = []

    async def synthesize_batch(self, segments, assignment) -> AudioChunk:
        self.batches.append(len(segments))
        return AudioChunk(data=b"\x00\x00" * 10, encoding=AudioEncoding.PCM)


class DummyProviders:
    def __init__(self, *providers: DummyProvider) -> None:
        self.providers = {p.name: p for p in providers}

    def get(self, name: str) -> DummyProvider:
        return self.providers[name]


class DummyAssembler:
    def __init__(self) -> None:
        self.transcoded: list[AudioEncoding] = []

    async def transcode(self, chunk: AudioChunk, out_path: Path) -> Path:
        self.transcoded.append(chunk.encoding)
        out_path.write_bytes(b"mp3")
        return out_path

    async def concatenate(self, files, *, silence_ms: int, out_path: Path) -> Path:  # pragma: no cover
        raise AssertionError("not used")

    async def probe_duration(self, path: Path) -> str:  # pragma: no cover
        return "0:00"


def _script(speakers: list[str]) -> Script:
    return Script(title="t", segments=[Segment(speaker=s, text=f"line {i}") for i, s in enumerate(speakers)])


async def _noop(done: int, total: int) -> None:
    return None


def test_parse_voice_spec_prefix_rules() -> None:
    assert parse_voice_spec("elevenlabs:abc123", "gemini") == Voice("elevenlabs", "abc123", "abc123")
    assert parse_voice_spec("Kore", "gemini").provider == "gemini"
    # Unknown prefix stays part of the id.
    assert parse_voice_spec("en-US:custom", "google") == Voice("google", "en-US:custom", "en-US:custom")


def test_build_assignment_uses_defaults_and_overrides() -> None:
    assignment = build_assignment({"host2": "elevenlabs:EXAVITQu4vr4xnSDxMaL"}, default_provider="gemini", count=3)
    assert assignment.speakers == ["Charon", "Sarah", "Fenrir"]
    assert assignment.providers == {"gemini", "elevenlabs"}


def test_build_assignment_falls_back_on_duplicate_names() -> None:
    assignment = build_assignment({"host1": "Kore", "host2": "Kore"}, default_provider="gemini", count=2)
    assert assignment.speakers == ["Alex", "Sam"]


def test_voice_for_legacy_speaker() -> None:
    assignment = build_assignment({}, default_provider="gemini", count=2)
    assert assignment.voice_for("Sam").id == "Leda"
    assert assignment.voice_for("Jordan").id == "Charon"


def test_build_assignment_rejects_unknown_provider() -> None:
    with pytest.raises(ConfigurationError):
        build_assignment({}, default_provider="nope", count=2)


def test_batch_selection() -> None:
    batch = DummyBatchProvider("gemini")
    plain = DummyProvider("gemini")
    same = build_assignment({}, default_provider="gemini", count=2)
    mixed = build_assignment({"host2": "elevenlabs:EXAVITQu4vr4xnSDxMaL"}, default_provider="gemini", count=2)

    assert use_batch(batch, "gemini", same)
    assert not use_batch(batch, "gemini", same, disable_batch=True)
    assert not use_batch(batch, "gemini", mixed)
    assert not use_batch(plain, "gemini", same)


def test_batch_path_makes_one_call(tmp_path: Path) -> None:
    provider = DummyBatchProvider("gemini")
    assembler = DummyAssembler()
    assignment = build_assignment({}, default_provider="gemini", count=2)
    progress: list[tuple[int, int]] = []

    async def on_segment(done: int, total: int) -> None:
        progress.append((done, total))

    synth = SpeechSynthesizer(DummyProviders(provider), assembler, selected="gemini")
    files = asyncio.run(synth.synthesize(_script(["Charon", "Leda", "Charon"]), assignment, tmp_path, on_segment))

    assert len(files) == 1
    assert provider.batches == [3]
    assert provider.calls == []
    assert assembler.transcoded == [AudioEncoding.PCM]
    assert progress == [(3, 3)]


def test_per_segment_routes_by_voice_provider(tmp_path: Path) -> None:
    gemini = DummyBatchProvider("gemini")
    eleven = DummyProvider("elevenlabs")
    assignment = build_assignment({"host2": "elevenlabs:EXAVITQu4vr4xnSDxMaL"}, default_provider="gemini", count=2)
    synth = SpeechSynthesizer(DummyProviders(gemini, eleven), DummyAssembler(), selected="gemini")

    files = asyncio.run(synth.synthesize(_script(["Charon", "Sarah", "Charon"]), assignment, tmp_path, _noop))

    assert [f.read_bytes() for f in files] == [b"gemini:line 0", b"elevenlabs:line 1", b"gemini:line 2"]
    assert gemini.batches == []
    assert eleven.calls == [("line 1", "EXAVITQu4vr4xnSDxMaL")]


def test_concurrent_synthesis_keeps_script_order(tmp_path: Path) -> None:
    providers = DummyProviders(DummyProvider("gemini", jitter=True), DummyProvider("elevenlabs", jitter=True))
    assignment = VoiceAssignment(
        {
            "A": Voice("gemini", "Charon", "A"),
            "B": Voice("elevenlabs", "x", "B"),
            "C": Voice("gemini", "Leda", "C"),
        }
    )
    speakers = ["A", "B", "A", "C"] * 5
    synth = SpeechSynthesizer(providers, DummyAssembler(), selected="gemini", concurrency=4)

    files = asyncio.run(synth.synthesize(_script(speakers), assignment, tmp_path, _noop))

    expected = [
        f"{'elevenlabs' if s == 'B' else 'gemini'}:line {i}".encode() for i, s in enumerate(speakers)
    ]
    assert [f.read_bytes() for f in files] == expected


def test_concurrent_failure_surfaces_the_provider_error(tmp_path: Path) -> None:
    class Broken(DummyProvider):
        async def synthesize(self, text: str, voice: Voice) -> AudioChunk:
            raise FatalRequestError("unknown voice", status_code=400)

    assignment = build_assignment({}, default_provider="gemini", count=2)
    synth = SpeechSynthesizer(DummyProviders(Broken("gemini")), DummyAssembler(), selected="gemini", concurrency=3)

    with pytest.raises(FatalRequestError):
        asyncio.run(synth.synthesize(_script(["Charon", "Leda"]), assignment, tmp_path, _noop))


def test_check_tts_backend() -> None:
    check_tts_backend("elevenlabs", "eleven_v3")
    check_tts_backend("piper")
    with pytest.raises(ConfigurationError, match="valid choices"):
        check_tts_backend("polly")
    with pytest.raises(ConfigurationError, match="eleven_v3"):
        check_tts_backend("elevenlabs", "gemini-2.5-pro-preview-tts")


def test_provider_pool_caches_and_closes() -> None:
    built: list[tuple[str, TtsOptions]] = []

    def factory(settings: Settings, keys: ProviderKeys, tuning: TtsOptions) -> DummyProvider:
        built.append((tuning.backend, tuning))
        return DummyProvider(tuning.backend)

    tuning = TtsOptions(backend="elevenlabs", speed=1.1)
    pool = ProviderPool(Settings(), keys=ProviderKeys(), tuning=tuning, factories={"elevenlabs": factory, "gemini": factory})

    async def run_test() -> list[DummyProvider]:
        async with pool:
            first = pool.get("elevenlabs")
            assert pool.get("elevenlabs") is first
            second = pool.get("gemini")
        return [first, second]

    providers = asyncio.run(run_test())

    assert all(p.closed for p in providers)
    assert built[0][1].speed == 1.1
    assert built[1][1].speed is None
    with pytest.raises(ConfigurationError):
        pool.get("nope")
