from __future__ import annotations

import asyncio
import json

import pytest

from duocast_contracts.errors import (
    ConfigurationError,
    FatalRequestError,
    InvalidOutputError,
    RetryExhaustedError,
    TransientProviderError,
)
from duocast_contracts.podcast_job import Duration, Script, ScriptOptions, Segment
from duocast_podcast.application.review import ScriptReviewer, review_script
from duocast_podcast.infrastructure.retry import RetryPolicy
from duocast_podcast.infrastructure.script.backends import SCRIPT_BACKENDS, check_script_backend
from duocast_podcast.infrastructure.script.parsing import extract_json_object, parse_script
from duocast_podcast.infrastructure.script.prompts import build_user_prompt
from duocast_podcast.infrastructure.script.script_io import load_script, save_script
from duocast_podcast.infrastructure.script.script_writer import LlmScriptGenerator

HOSTS = ["Charon", "Leda"]


async def _no_sleep(seconds: float) -> None:
    return None


FAST = RetryPolicy(max_attempts=3, initial_delay_s=1.0, sleep=_no_sleep)


def script_json(count: int, hosts: list[str] = HOSTS, text: str = "Here is a concrete detail about the topic.") -> str:
    segments = [{"speaker": hosts[i % len(hosts)], "text": f"{text} ({i})"} for i in range(count)]
    return json.dumps({"title": "Test Episode", "summary": "A test.", "segments": segments})


class DummyGenerator:
    name = "dummy"

    def __init__(self, responses: list) -> None:
        self.responses = list(responses)
        self.prompts: list[str] = []
        self.closed = False

    async def generate(self, *, prompt: str, system: str | None = None, max_tokens: int = 8192) -> str:
        self.prompts.append(prompt)
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    async def aclose(self) -> None:
        self.closed = True


def test_parse_script_strips_scratchpad_and_fences() -> None:
    raw = "<scratchpad>plan {not json}</scratchpad>\n```json\n" + script_json(2) + "\n```"
    script = parse_script(raw, HOSTS)
    assert [s.speaker for s in script.segments] == ["Charon", "Leda"]
    assert script.title == "Test Episode"


def test_extract_json_object_ignores_braces_in_strings() -> None:
    text = 'preamble {"a": "brace } inside", "b": {"c": 1}} trailing }'
    assert json.loads(extract_json_object(text)) == {"a": "brace } inside", "b": {"c": 1}}


def test_extract_json_object_skips_unbalanced_prefix() -> None:
    text = 'broken { start then {"ok": true}'
    assert json.loads(extract_json_object(text)) == {"ok": True}


def test_parse_script_rejects_unknown_speaker_and_blank_text() -> None:
    with pytest.raises(InvalidOutputError, match="unknown speaker"):
        parse_script(script_json(2, hosts=["Charon", "Bob"]), HOSTS)
    blank = json.dumps({"segments": [{"speaker": "Charon", "text": "   "}]})
    with pytest.raises(InvalidOutputError, match="blank"):
        parse_script(blank, HOSTS)
    with pytest.raises(InvalidOutputError):
        parse_script("", HOSTS)
    with pytest.raises(InvalidOutputError):
        parse_script('{"segments": []}', HOSTS)


def test_generator_retries_invalid_output_then_succeeds() -> None:
    generator = DummyGenerator(["not json at all", TransientProviderError("503", status_code=503), script_json(4)])
    writer = LlmScriptGenerator(generator=generator, retry=FAST)

    script = asyncio.run(writer.generate("content " * 200, ScriptOptions(), HOSTS))

    assert len(script.segments) == 4
    assert len(generator.prompts) == 3


def test_generator_exhaustion_reports_last_error() -> None:
    generator = DummyGenerator(["nope", "still nope", '{"segments": []}'])
    writer = LlmScriptGenerator(generator=generator, retry=FAST)

    with pytest.raises(RetryExhaustedError) as exc_info:
        asyncio.run(writer.generate("content", ScriptOptions(), HOSTS))

    assert exc_info.value.attempts == 3
    assert "no segments" in str(exc_info.value)


def test_generator_fatal_error_is_not_retried() -> None:
    generator = DummyGenerator([FatalRequestError("invalid key", status_code=401), script_json(2)])
    writer = LlmScriptGenerator(generator=generator, retry=FAST)

    with pytest.raises(FatalRequestError):
        asyncio.run(writer.generate("content", ScriptOptions(), HOSTS))
    assert len(generator.prompts) == 1


def test_unknown_backend_lists_choices() -> None:
    with pytest.raises(ConfigurationError) as exc_info:
        check_script_backend("gpt-9")
    for name in SCRIPT_BACKENDS:
        assert name in str(exc_info.value)


def test_user_prompt_carries_options() -> None:
    options = ScriptOptions(topic="battery chemistry", styles=("humorous",), duration=Duration.LONG)
    prompt = build_user_prompt("SOURCE TEXT", options, HOSTS)
    assert "battery chemistry" in prompt
    assert "humorous" in prompt
    assert prompt.rstrip().endswith("SOURCE TEXT")


def test_review_flags_count_balance_and_filler() -> None:
    segments = [Segment(speaker="Charon", text="Absolutely, and more.") for _ in range(8)]
    segments.append(Segment(speaker="Leda", text="A real point."))
    issues = review_script(Script(segments=segments), ScriptOptions(duration=Duration.SHORT), HOSTS)
    categories = {i.category: i.severity for i in issues}
    assert categories["segment_count"] == "error"
    assert categories["balance"] == "error"
    assert categories["filler"] == "error"


def test_review_passes_a_balanced_script() -> None:
    script = parse_script(script_json(20), HOSTS)
    assert review_script(script, ScriptOptions(duration=Duration.SHORT), HOSTS) == []


def test_refine_revises_once() -> None:
    original = parse_script(script_json(6), HOSTS)
    generator = DummyGenerator([script_json(20), script_json(40)])
    writer = LlmScriptGenerator(generator=generator, retry=FAST)

    outcome = asyncio.run(ScriptReviewer(writer).refine(original, "content", ScriptOptions(duration=Duration.SHORT), HOSTS))

    assert outcome.revised
    assert len(outcome.script.segments) == 20
    assert len(generator.prompts) == 1
    assert "ISSUES FOUND" in generator.prompts[0]


def test_refine_keeps_original_when_revision_is_invalid() -> None:
    original = parse_script(script_json(6), HOSTS)
    generator = DummyGenerator(["garbage"])
    writer = LlmScriptGenerator(generator=generator, retry=FAST)

    outcome = asyncio.run(ScriptReviewer(writer).refine(original, "content", ScriptOptions(duration=Duration.SHORT), HOSTS))

    assert not outcome.revised
    assert outcome.script == original
    assert len(generator.prompts) == 1


def test_refine_skips_clean_script() -> None:
    original = parse_script(script_json(20), HOSTS)
    generator = DummyGenerator([])
    outcome = asyncio.run(
        ScriptReviewer(LlmScriptGenerator(generator=generator)).refine(
            original, "content", ScriptOptions(duration=Duration.SHORT), HOSTS
        )
    )
    assert outcome.script is original
    assert generator.prompts == []


def test_script_file_round_trip(tmp_path) -> None:
    script = parse_script(script_json(3), HOSTS)
    path = save_script(script, tmp_path / "nested" / "episode.json")
    assert load_script(path) == script


def test_load_script_rejects_bad_files(tmp_path) -> None:
    bad = tmp_path / "bad.json"
    bad.write_text('{"segments": "nope"}', encoding="utf-8")
    with pytest.raises(InvalidOutputError):
        load_script(bad)
    empty = tmp_path / "empty.json"
    empty.write_text('{"title": "x", "segments": []}', encoding="utf-8")
    with pytest.raises(InvalidOutputError):
        load_script(empty)


def test_system_prompt_uses_packaged_template(monkeypatch, tmp_path) -> None:
    from duocast_podcast.infrastructure.script.prompts import build_system_prompt

    monkeypatch.delenv("PROMPTS_DIR", raising=False)
    monkeypatch.chdir(tmp_path)
    system = build_system_prompt(HOSTS)
    assert "Spell out numbers" in system
    assert HOSTS[0] in system
    assert "at least 30%" in system

    (tmp_path / "override").mkdir()
    (tmp_path / "override" / "script_system.md").write_text("Hosts: {names}", encoding="utf-8")
    monkeypatch.setenv("PROMPTS_DIR", str(tmp_path / "override"))
    assert build_system_prompt(HOSTS) == "Hosts: " + ", ".join(HOSTS)
