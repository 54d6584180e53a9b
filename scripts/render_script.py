#!/usr/bin/env python
"""
Render a saved (possibly hand-edited) script to audio without re-running ingestion or scripting.
"""
from __future__ import annotations

import argparse
import asyncio
from pathlib import Path

from duocast_contracts.podcast_job import GenerationRequest, TtsOptions
from duocast_podcast.domain.models import ProgressEvent
from duocast_podcast.infrastructure.config import Settings, load_env
from duocast_podcast.infrastructure.logging import get_logger, setup_logging
from duocast_podcast.infrastructure.runtime import pipeline_factory
from duocast_podcast.infrastructure.script.script_io import load_script

log = get_logger("render_script")


async def _print_progress(event: ProgressEvent) -> None:
    log.info("%3d%% %s %s", int(event.percent * 100), event.stage.value, event.message)


async def render(script_path: Path, out: Path, tts: TtsOptions, voices: dict[str, str]) -> Path:
    settings = Settings.from_env()
    script = load_script(script_path)
    request = GenerationRequest(input_text=script.title or script_path.stem, tts=tts, voices=voices)
    async with pipeline_factory(settings)(request) as pipeline:
        result = await pipeline.run_from_script(script, request, out, _print_progress)
    log.info("wrote %s (%s, %s bytes)", result.output_path, result.duration, result.size_bytes)
    return result.output_path


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("script_json", type=Path)
    ap.add_argument("--out", type=Path, default=Path("episode.mp3"))
    ap.add_argument("--tts", default="gemini", help="TTS backend name.")
    ap.add_argument("--model", default=None)
    ap.add_argument("--voice", action="append", default=[], metavar="SLOT=SPEC", help="e.g. host1=elevenlabs:George")
    args = ap.parse_args()

    load_env()
    setup_logging("INFO")
    voices = dict(v.split("=", 1) for v in args.voice)
    asyncio.run(render(args.script_json, args.out, TtsOptions(backend=args.tts, model=args.model), voices))


if __name__ == "__main__":
    main()
