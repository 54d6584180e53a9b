from __future__ import annotations

from typing import List

from duocast_contracts.podcast_job import Script, ScriptOptions
from duocast_podcast.application.ports import TextGenerator
from duocast_podcast.infrastructure.logging import get_logger
from duocast_podcast.infrastructure.retry import SCRIPT_RETRY, RetryPolicy, retry_async
from duocast_podcast.infrastructure.script.parsing import parse_script
from duocast_podcast.infrastructure.script.prompts import (
    build_revision_prompt,
    build_system_prompt,
    build_user_prompt,
)

log = get_logger(__name__)


class LlmScriptGenerator:
    """Turns source text into a validated Script through any TextGenerator.

    Transport failures and unusable output share one retry budget.
    """

    def __init__(self, *, generator: TextGenerator, retry: RetryPolicy = SCRIPT_RETRY) -> None:
        self.generator = generator
        self.retry = retry

    @property
    def name(self) -> str:
        return self.generator.name

    async def generate(self, content: str, options: ScriptOptions, hosts: List[str]) -> Script:
        system = build_system_prompt(hosts)
        prompt = build_user_prompt(content, options, hosts)

        async def attempt() -> Script:
            raw = await self.generator.generate(prompt=prompt, system=system, max_tokens=options.duration.max_tokens)
            return parse_script(raw, hosts)

        script = await retry_async(attempt, policy=self.retry, label=f"script:{self.name}")
        log.info("script.generated backend=%s segments=%s title=%r", self.name, len(script.segments), script.title)
        return script

    async def revise(
        self, script: Script, content: str, options: ScriptOptions, hosts: List[str], issues: List[str]
    ) -> Script:
        """One revision call, no retries."""
        prompt = build_revision_prompt(script.model_dump_json(indent=2), content, options, hosts, issues)
        raw = await self.generator.generate(
            prompt=prompt, system=build_system_prompt(hosts), max_tokens=options.duration.max_tokens
        )
        return parse_script(raw, hosts)

    async def aclose(self) -> None:
        await self.generator.aclose()
